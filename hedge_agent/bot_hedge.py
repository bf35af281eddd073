#!/usr/bin/env python3
"""
Delta-Neutral Hedge Bot
=======================
Opens opposite positions of equal size on two accounts, holds them for a
random time, then closes both. Repeats until interrupted.

Usage:
    # Two Lighter accounts, BTC only
    python -m hedge_agent.bot_hedge --exchange lighter --symbols BTC

    # Two Paradex subkeys with the paradex preset
    python -m hedge_agent.bot_hedge --exchange paradex --preset paradex --symbols BTC ETH

    # Custom sizing and hold times (seconds)
    python -m hedge_agent.bot_hedge --exchange lighter --min-size 50 --max-size 150 --min-hold 15 --max-hold 60

Required Environment Variables:
    lighter: LIGHTER_API_PRIVATE_KEY_{1,2}, LIGHTER_ACCOUNT_INDEX_{1,2}, LIGHTER_API_INDEX_{1,2}
    paradex: PARADEX_PRIVATE_KEY_{1,2}, PARADEX_ACCOUNT_ADDRESS_{1,2}

Optional:
    LIGHTER_BASE_URL, PARADEX_ENV (default prod)
    DB_ENABLED=true + DATABASE_URL=sqlite:///data/hedge.db to record trades
"""

import os
import sys
import asyncio
import logging
import argparse
import signal
from datetime import datetime
from typing import Tuple

from dotenv import load_dotenv

from hedge_agent.core.config import (
    PRESETS, DatabaseConfig, HedgeConfig, lighter_accounts_from_env, paradex_accounts_from_env,
)
from hedge_agent.core.hedge_manager import HedgeManager
from hedge_agent.exchanges.base import ExchangeAdapter
from hedge_agent.exchanges.lighter_adapter import LighterAdapter
from hedge_agent.exchanges.paradex_adapter import ParadexAdapter
from hedge_agent.storage.trade_history import create_trade_history_repository

logger = logging.getLogger(__name__)


def setup_logging(log_file: str = "logs/hedge.log", level: str = "INFO"):
    """Set up logging configuration"""
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, level.upper()),
        format='%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler()
        ]
    )

    # Suppress noisy loggers
    logging.getLogger('aiohttp').setLevel(logging.WARNING)
    logging.getLogger('urllib3').setLevel(logging.WARNING)
    logging.getLogger('asyncio').setLevel(logging.WARNING)


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='Delta-Neutral Hedge Bot',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    %(prog)s --exchange lighter                        # Lighter with default preset
    %(prog)s --exchange paradex --preset paradex       # Paradex minimum sizes
    %(prog)s --exchange lighter --min-size 50 --max-size 100
        """
    )

    parser.add_argument('--exchange', choices=['lighter', 'paradex'], default='lighter',
                        help='Venue holding both accounts (default: lighter)')
    parser.add_argument('--symbols', nargs='+', default=['BTC'],
                        help='Symbols to trade (default: BTC)')

    # Presets
    parser.add_argument('--preset', choices=sorted(PRESETS), default=None,
                        help='Configuration preset (default: same as --exchange)')

    # Custom config
    parser.add_argument('--min-size', type=float, help='Minimum notional per leg in USD')
    parser.add_argument('--max-size', type=float, help='Maximum notional per leg in USD')
    parser.add_argument('--min-hold', type=float, help='Minimum hold time in seconds')
    parser.add_argument('--max-hold', type=float, help='Maximum hold time in seconds')
    parser.add_argument('--slippage', type=float, help='Slippage tolerance (0.02 = 2%%)')

    parser.add_argument('--service-id', default=None,
                        help='Tag stored with every trade record (default: <exchange>-hedge)')

    # Logging
    parser.add_argument('--log-file', default='logs/hedge.log', help='Log file path')
    parser.add_argument('--log-level', default='INFO', help='Log level')

    return parser.parse_args(argv)


def create_config(args) -> HedgeConfig:
    """Create configuration from args"""

    # Start with preset
    config = PRESETS[args.preset or args.exchange]()

    # Override with command line args
    overrides = {}
    if args.min_size is not None:
        overrides['min_size_usd'] = args.min_size
    if args.max_size is not None:
        overrides['max_size_usd'] = args.max_size
    if args.min_hold is not None:
        overrides['min_hold_time_ms'] = args.min_hold * 1000
    if args.max_hold is not None:
        overrides['max_hold_time_ms'] = args.max_hold * 1000
    if args.slippage is not None:
        overrides['slippage'] = args.slippage

    return config.with_overrides(**overrides) if overrides else config


def create_exchanges(exchange: str, environ=None) -> Tuple[ExchangeAdapter, ExchangeAdapter]:
    """Two adapters for the chosen venue, one per account"""
    if exchange == 'lighter':
        first, second = lighter_accounts_from_env(environ)
        return LighterAdapter(**first), LighterAdapter(**second)

    first, second = paradex_accounts_from_env(environ)
    return ParadexAdapter(**first), ParadexAdapter(**second)


async def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)

    # Setup logging
    setup_logging(args.log_file, args.log_level)

    # Load environment variables
    load_dotenv()

    config = create_config(args)
    service_id = args.service_id or f"{args.exchange}-hedge"

    # Print banner
    logger.info("")
    logger.info("=" * 70)
    logger.info(" DELTA-NEUTRAL HEDGE BOT")
    logger.info("=" * 70)
    logger.info(f" Started: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    logger.info(f" Exchange: {args.exchange} (service: {service_id})")
    logger.info(f" Symbols: {', '.join(args.symbols)}")
    logger.info(f" Size: ${config.min_size_usd:.2f} - ${config.max_size_usd:.2f} per leg")
    logger.info(f" Hold: {config.min_hold_time_ms / 1000:.0f}s - {config.max_hold_time_ms / 1000:.0f}s")
    logger.info(f" Slippage: {config.slippage:.2%}")
    logger.info("=" * 70)
    logger.info("")

    first_exchange, second_exchange = create_exchanges(args.exchange)
    trade_history = create_trade_history_repository(DatabaseConfig.from_env())

    manager = HedgeManager(
        first_exchange,
        second_exchange,
        service_id=service_id,
        trade_history=trade_history,
        config=config,
    )

    # Setup signal handlers
    stop_tasks = []

    def signal_handler(sig, frame):
        logger.info("Shutdown signal received")
        stop_tasks.append(asyncio.create_task(manager.stop(args.symbols[0])))

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        await manager.initialize()
        await manager.run(args.symbols)
        if stop_tasks:
            await asyncio.gather(*stop_tasks, return_exceptions=True)
    finally:
        await first_exchange.close()
        await second_exchange.close()
        if trade_history:
            trade_history.close()


def run():
    """Console script entry point"""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nInterrupted by user")
    except Exception as e:
        print(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    run()
