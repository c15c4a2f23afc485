#!/usr/bin/env python
"""
Strategy Projection CLI

Projects a strategy against the most recent hourly snapshot bucket stored in
Delta Lake and prints per-leg results, totals, SD bands, payoff summary and
the payoff table.

Legs file (JSON list):
    [{"identifier": "43650", "direction": "Buy", "entry_price": 150, "lots": 1}]

Usage:
    python scripts/project_strategy.py --legs legs.json --target-price 22500 --target-date 2024-05-30
"""

import argparse
import json
import sys
from datetime import date, datetime
from pathlib import Path
from zoneinfo import ZoneInfo

from loguru import logger

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "src"))

from greekfeed.config.engine_config import load_engine_config
from greekfeed.data.hourly_snapshots import HourlySnapshotReader
from greekfeed.data.instrument_registry import InstrumentRegistry
from greekfeed.data.live_table import LiveInstrumentView
from greekfeed.strategy_builder.models import Scenario, StrategyLeg
from greekfeed.strategy_builder.projection import ScenarioProjectionEngine
from greekfeed.utils.logging_setup import setup_logging


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Project strategy P&L and Greeks under a scenario")
    parser.add_argument("--config", type=str, default=None, help="Path to engine YAML config")
    parser.add_argument("--legs", type=str, required=True, help="JSON file with strategy legs")
    parser.add_argument("--target-price", type=float, required=True, help="Underlying target price")
    parser.add_argument("--target-date", type=str, required=True, help="Target date (YYYY-MM-DD)")
    parser.add_argument(
        "--vol-offset",
        type=float,
        default=0.0,
        help="Global IV offset in vol points (e.g., 2 for +2%%)"
    )
    parser.add_argument("--interval", type=float, default=None, help="Payoff table row interval")
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    try:
        config = load_engine_config(args.config)
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    config.logging.log_file = None
    setup_logging(config.logging)

    try:
        with open(args.legs, "r") as f:
            legs = [StrategyLeg.from_dict(item) for item in json.load(f)]
    except (OSError, json.JSONDecodeError, KeyError, ValueError) as e:
        logger.error(f"Could not read legs from {args.legs}: {e}")
        return 1

    reader = HourlySnapshotReader(config.storage.hourly_snapshots_path)
    snapshots = reader.latest_snapshots()
    if not snapshots:
        logger.warning("No stored snapshots found; legs will use default volatility")

    registry = InstrumentRegistry.from_file(
        config.registry.scrip_master_path,
        config=config.registry,
        normalizer_config=config.normalizer,
    )
    lookup = LiveInstrumentView.from_snapshots(snapshots, registry=registry)

    scenario = Scenario(
        target_price=args.target_price,
        target_date=date.fromisoformat(args.target_date),
        valuation_time=datetime.now(ZoneInfo(config.market_hours.timezone)),
        global_vol_offset=args.vol_offset / 100.0,
    )

    engine = ScenarioProjectionEngine(config)
    result = engine.project(legs, scenario, lookup)

    logger.info("=" * 60)
    for leg in result.legs:
        if not leg.available:
            logger.warning(f"  {leg.identifier}: data unavailable")
            continue
        logger.info(
            f"  {leg.symbol} {leg.leg.direction.value} x{leg.quantity}: "
            f"value={leg.theoretical_value:.2f} pnl={leg.pnl:,.2f}"
        )

    totals = result.totals
    logger.info(
        f"Totals: pnl={totals.pnl:,.2f} delta={totals.delta:.2f} gamma={totals.gamma:.4f} "
        f"theta={totals.theta:.2f} vega={totals.vega / 100:.2f} (per 1% IV)"
    )

    if result.sd_bands:
        bands = result.sd_bands
        logger.info(
            f"SD bands ({bands.horizon_days:.1f}d @ {bands.vol:.1%}): "
            f"-2σ {bands.minus_two:.0f} | -1σ {bands.minus_one:.0f} | "
            f"+1σ {bands.plus_one:.0f} | +2σ {bands.plus_two:.0f}"
        )

    if result.summary:
        summary = result.summary
        max_profit = "unlimited" if summary.profit_unbounded else f"{summary.max_profit:,.2f}"
        max_loss = "unlimited" if summary.loss_unbounded else f"{summary.max_loss:,.2f}"
        logger.info(f"Max profit: {max_profit}  Max loss: {max_loss}  Breakevens: {summary.breakevens}")

    for row in engine.payoff_table(legs, scenario, lookup, interval=args.interval):
        logger.info(f"  {row.target_price:>10.2f}  target {row.target_pnl:>12,.2f}  expiry {row.expiry_pnl:>12,.2f}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
