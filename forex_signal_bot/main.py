from __future__ import annotations

import argparse
import asyncio
import logging

from .config import load_config
from .formatters import format_signal
from .generator import SignalGenerator
from .runner import AutoModeRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Forex M5 signal bot")
    p.add_argument("--config", default=None, help="Path to YAML config (defaults + env when omitted)")
    p.add_argument("--pair", default=None, help="Generate one manual signal for PAIR (e.g. EUR/USD) and exit")
    args = p.parse_args(argv)

    cfg = load_config(args.config)
    _setup_logging(cfg.app.log_level)

    generator = SignalGenerator.from_config(cfg)
    runner = AutoModeRunner(cfg, generator)

    async def _run() -> None:
        try:
            if args.pair:
                sig = await runner.generate_now(args.pair)
                print(format_signal(sig, tz_label=cfg.signal.timezone_label))
            else:
                await runner.run_forever()
        finally:
            # Close shared HTTP sessions cleanly.
            await generator.close()

    try:
        asyncio.run(_run())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
