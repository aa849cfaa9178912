from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
import os
import yaml

from .timefilter import parse_tz


def _env_override(value: Any, env_key: str) -> Any:
    env_val = os.getenv(env_key)
    if env_val is None:
        return value
    # basic parsing
    if isinstance(value, bool):
        return env_val.strip().lower() in ("1", "true", "yes", "y", "on")
    if isinstance(value, int):
        try:
            return int(env_val)
        except ValueError:
            return value
    if isinstance(value, float):
        try:
            return float(env_val)
        except ValueError:
            return value
    return env_val


def _split_ids(raw: str) -> List[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


@dataclass
class AppConfig:
    name: str = "Forex M5 Signals"
    log_level: str = "INFO"


@dataclass
class ProviderConfig:
    type: str = "finnhub"
    api_key: str = ""
    base_url: str = "https://finnhub.io/api/v1"
    resolution: str = "5"
    lookback_minutes: int = 360
    timeout_s: float = 5.0
    venues: Optional[List[str]] = None  # subset/order of known venues, None = all


@dataclass
class ScoringConfig:
    weights: Optional[Dict[str, int]] = None  # overrides merged onto DEFAULT_WEIGHTS
    counter_trend_factor: float = 0.25
    overextension_factor: float = 0.6
    weak_trend_factor: float = 0.5
    strong_trend_adx: float = 25.0
    rsi_overbought: float = 70.0
    rsi_oversold: float = 30.0
    stoch_overbought: float = 95.0
    stoch_oversold: float = 5.0
    level_proximity_atr: float = 0.5
    advisory_divisor: float = 8.0


@dataclass
class SignalConfig:
    timezone: str = "UTC+3"
    timezone_label: str = "EAT"
    extreme_threshold: float = 8.0
    elite_threshold: float = 3.5
    extreme_confidence: int = 99
    elite_confidence: int = 94
    confidence_factor: float = 12.0
    confidence_cap: int = 90
    atr_sl_multiplier: float = 1.5
    reward_risk: float = 2.0
    structure_buffer_atr: float = 0.1
    max_structure_atr: float = 3.0
    synthetic_confidence_cap: int = 60
    fallback_confidence: int = 60


@dataclass
class AdvisoryConfig:
    enabled: bool = True
    api_key: str = ""
    base_url: str = "https://api.openai.com/v1"
    model: str = "gpt-4o"
    timeout_s: float = 15.0


@dataclass
class TelegramConfig:
    enabled: bool = True
    token: str = ""
    chat_ids: List[str] = None
    disable_web_page_preview: bool = True


@dataclass
class AutoModeConfig:
    enabled: bool = False
    active_pairs: List[str] = field(default_factory=lambda: ["EUR/USD", "GBP/USD", "USD/JPY"])
    tick_s: int = 60
    trigger_probability: float = 0.7
    trigger_all_pairs: bool = False


@dataclass
class Config:
    app: AppConfig = field(default_factory=AppConfig)
    provider: ProviderConfig = field(default_factory=ProviderConfig)
    scoring: ScoringConfig = field(default_factory=ScoringConfig)
    signal: SignalConfig = field(default_factory=SignalConfig)
    advisory: AdvisoryConfig = field(default_factory=AdvisoryConfig)
    telegram: TelegramConfig = field(default_factory=TelegramConfig)
    auto_mode: AutoModeConfig = field(default_factory=AutoModeConfig)


def load_config(path: Optional[str] = None) -> Config:
    raw: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    cfg = Config(
        app=AppConfig(**raw.get("app", {})),
        provider=ProviderConfig(**raw.get("provider", {})),
        scoring=ScoringConfig(**raw.get("scoring", {})),
        signal=SignalConfig(**raw.get("signal", {})),
        advisory=AdvisoryConfig(**raw.get("advisory", {})),
        telegram=TelegramConfig(**raw.get("telegram", {})),
        auto_mode=AutoModeConfig(**raw.get("auto_mode", {})),
    )

    # env overrides (secrets usually live here)
    cfg.provider.api_key = _env_override(cfg.provider.api_key, "FINNHUB_API_KEY")
    cfg.advisory.api_key = _env_override(cfg.advisory.api_key, "AI_INTEGRATIONS_OPENAI_API_KEY")
    cfg.advisory.base_url = _env_override(cfg.advisory.base_url, "AI_INTEGRATIONS_OPENAI_BASE_URL")
    cfg.telegram.token = _env_override(cfg.telegram.token, "TELEGRAM_BOT_TOKEN")

    if cfg.telegram.chat_ids is None:
        cfg.telegram.chat_ids = []
    cfg.telegram.chat_ids = [str(x).strip() for x in cfg.telegram.chat_ids if str(x).strip()]

    # Allow TELEGRAM_CHAT_ID="id1,id2"
    chat_env = os.getenv("TELEGRAM_CHAT_ID")
    if chat_env:
        cfg.telegram.chat_ids = _split_ids(chat_env)

    if not 0.0 <= cfg.auto_mode.trigger_probability <= 1.0:
        raise ValueError(f"auto_mode.trigger_probability must be within 0..1, got {cfg.auto_mode.trigger_probability}")

    parse_tz(cfg.signal.timezone)  # raises ValueError on bad offsets

    return cfg
