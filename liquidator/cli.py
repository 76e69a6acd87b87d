"""Command-line interface for the liquidator."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import sys

from .chains.solana import SolanaClient, load_keypair
from .config import AppConfig, load_config, validate
from .interfaces.notifier import Notifier
from .logging_setup import configure_logging
from .notifications import TelegramNotifier
from .sdk import load_sdk
from .services import ExecutionCoordinator, LiquidationExecutor
from .sync import MirrorContext, RateLimitedScheduler


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="paged-liquidator",
        description="Liquidation bot for paged lending markets",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    run_parser = sub.add_parser("run", help="Watch borrowers and liquidate unsafe ones")
    run_parser.add_argument(
        "--pages",
        nargs=2,
        type=int,
        metavar=("START", "END"),
        default=None,
        help="Users page range [START, END) (overrides config)",
    )
    run_parser.add_argument(
        "--keypair",
        default=None,
        help="Path to the liquidator keypair JSON (overrides config)",
    )

    sub.add_parser("check-config", help="Validate the configuration and print pools")

    return parser


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line overrides and re-validate."""
    bot = config.bot
    if getattr(args, "pages", None):
        start, end = args.pages
        bot = dataclasses.replace(bot, page_start=start, page_end=end)
    if getattr(args, "keypair", None):
        bot = dataclasses.replace(bot, keypair_path=args.keypair)
    if bot is config.bot:
        return config
    config = dataclasses.replace(config, bot=bot)
    validate(config)
    return config


def build_coordinator(config: AppConfig) -> ExecutionCoordinator:
    """Wire the ledger client, SDK, mirror tree and executor together."""
    sdk = load_sdk(config.sdk.factory, config)
    keypair = load_keypair(config.bot.keypair_path)
    ledger = SolanaClient(config.ledger)
    scheduler = RateLimitedScheduler(config.scheduler.interval_seconds)
    ctx = MirrorContext(
        ledger=ledger,
        scheduler=scheduler,
        decoder=sdk.decoder,
        addresses=sdk.addresses,
        commitment=config.ledger.commitment,
    )

    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))

    executor = LiquidationExecutor(
        config, ledger, sdk.builder, sdk.venues, keypair, notifiers=notifiers
    )
    return ExecutionCoordinator(config, ctx, executor)


def _print_pools(config: AppConfig) -> None:
    print(f"Stable token: {config.stable_token}")
    for pool in config.pools:
        print(
            f"  pool {pool.pool_id:>3}  {pool.token_id:<8} ltv={pool.ltv:.2f} "
            f"discount={pool.liquidation_discount:.3f} decimals={pool.decimals} "
            f"mint={pool.mint}"
        )


async def _run(args: argparse.Namespace) -> None:
    """Execute the selected command."""
    configure_logging(args.log_level)
    config = apply_overrides(load_config(args.config), args)

    if args.command == "check-config":
        _print_pools(config)
        return

    if args.command == "run":
        if config.logging.log_dir:
            configure_logging(args.log_level, config.logging.log_dir)
        coordinator = build_coordinator(config)
        try:
            await coordinator.run()
        finally:
            await coordinator.stop()
        return

    build_parser().print_help()
    sys.exit(1)


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    asyncio.run(_run(args))
