from __future__ import annotations

import argparse
import pprint
from dataclasses import asdict

from predictive_bot.config import load_config
from predictive_bot.profiles import adapt_risk, get_profile, resolve_intervals


def main():
    p = argparse.ArgumentParser(description="Print the timeframe profile and adapted risk block for a config")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--timeframe", default=None, help="Override analysis.timeframe")
    args = p.parse_args()

    cfg = load_config(args.config)
    tf = args.timeframe or cfg.analysis.timeframe
    profile = get_profile(tf)

    print(f"TIMEFRAME: {tf}")
    pprint.pprint(asdict(profile))
    print("\nANALYSIS:")
    pprint.pprint(asdict(resolve_intervals(cfg.analysis, profile)))
    print("\nRISK:")
    pprint.pprint(asdict(adapt_risk(cfg.risk, profile)))


if __name__ == "__main__":
    main()
