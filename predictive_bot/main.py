from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import yaml

from .config import load_config
from .runner import AnalysisRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def main(argv=None) -> int:
    p = argparse.ArgumentParser(description="Binance Predictive Bot - order book + candle signal alerts")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--timeframe", default=None, help="Override analysis.timeframe (1m, 5m, 15m, 1h, 4h, 1d)")
    args = p.parse_args(argv)

    try:
        cfg = load_config(args.config)
    except (OSError, yaml.YAMLError, TypeError, ValueError) as e:
        _setup_logging("INFO")
        logging.getLogger("main").error("fatal config=%s err=%s", args.config, e)
        return 1
    if args.timeframe:
        cfg.analysis.timeframe = args.timeframe
    _setup_logging(cfg.app.log_level)

    try:
        runner = AnalysisRunner(cfg)
    except ValueError as e:
        logging.getLogger("main").error("fatal err=%s", e)
        return 1

    try:
        asyncio.run(runner.run_forever())
        return 0
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
