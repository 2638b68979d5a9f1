"""CLI and main logic."""

import argparse
import logging
import sys
from dataclasses import replace

from leveraged_vaults.analytics import calculate_vault_analytics, format_analytics_summary
from leveraged_vaults.config import SimulationConfig, load_config
from leveraged_vaults.console import print_simulation_report, print_vault_state
from leveraged_vaults.constants import CONFIG_ENV_VAR
from leveraged_vaults.persistence import export_state, load_snapshot, restore_state, save_snapshot
from leveraged_vaults.simulation import build_world, run_simulation


def parse_args(argv: list[str]) -> argparse.Namespace:
    """Parse command-line arguments."""
    p = argparse.ArgumentParser(description="Simulate a pooled vault with leveraged lending strategies.")
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--verbose", action="store_true", help="Enable debug logging on stderr.")
    sub = p.add_subparsers(dest="command", required=True)

    sim = sub.add_parser("simulate", parents=[common], help="Run harvest periods against in-memory markets.")
    sim.add_argument(
        "--config",
        default=None,
        help=f"JSON simulation config. Defaults to ${CONFIG_ENV_VAR}, then to built-in defaults.",
    )
    sim.add_argument("--periods", type=int, default=None, help="Number of harvest periods (overrides config).")
    sim.add_argument("--period-seconds", type=int, default=None, help="Seconds between harvests (overrides config).")
    sim.add_argument("--save", metavar="NAME", default=None, help="Save the final state as a named snapshot.")
    sim.add_argument("--no-progress", action="store_true", help="Hide the progress bar.")

    inspect = sub.add_parser("inspect", parents=[common], help="Print a saved snapshot.")
    inspect.add_argument("name", help="Snapshot name given to --save.")
    inspect.add_argument("--config", default=None, help="Config the snapshot was produced with.")
    return p.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def _load(path: str | None) -> SimulationConfig | None:
    try:
        return load_config(path)
    except (OSError, ValueError) as ex:
        print(f"Error: failed to load config: {ex}", file=sys.stderr)
        return None


def _simulate(args: argparse.Namespace) -> int:
    config = _load(args.config)
    if config is None:
        return 2
    if args.periods is not None:
        config = replace(config, periods=args.periods)
    if args.period_seconds is not None:
        config = replace(config, period_seconds=args.period_seconds)
    if config.periods < 0 or config.period_seconds <= 0:
        print("Error: --periods must be >= 0 and --period-seconds > 0", file=sys.stderr)
        return 2

    world = build_world(config)
    print(f"ℹ️ Simulating {config.periods} periods of {config.period_seconds}s", file=sys.stderr)
    result = run_simulation(config, world=world, progress=not args.no_progress)

    print_simulation_report(result, world)
    print(format_analytics_summary(result.analytics, decimals=config.asset_decimals, symbol=config.asset_symbol))

    if args.save:
        path = save_snapshot(args.save, export_state(world.ledger))
        print(f"💾 Saved state to {path}", file=sys.stderr)
    return 0


def _inspect(args: argparse.Namespace) -> int:
    config = _load(args.config)
    if config is None:
        return 2
    data = load_snapshot(args.name)
    if data is None:
        print(f"Error: no snapshot named {args.name!r}", file=sys.stderr)
        return 1
    world = build_world(config, deposit=False)
    try:
        restore_state(world.ledger, data)
    except ValueError as ex:
        print(f"Error: {ex}", file=sys.stderr)
        return 2
    world.clock.advance(max(data["timestamp"] - world.clock.now(), 0))
    print_vault_state(world)
    analytics = calculate_vault_analytics(world.vault)
    print(format_analytics_summary(analytics, decimals=config.asset_decimals, symbol=config.asset_symbol))
    return 0


def main(argv: list[str]) -> int:
    """Main entry point."""
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "simulate":
        return _simulate(args)
    return _inspect(args)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
