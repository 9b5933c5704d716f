"""
Treasury agent command line

    python -m treasury_agent --config treasury_config.yaml
    python -m treasury_agent --once --mock-pools --dry-run-balance 2000000000000000
"""

import argparse
import asyncio
import os
import signal
import sys
from loguru import logger

from .agent import TreasuryAgent, graceful_shutdown
from .config import AgentConfig
from .errors import ConfigError, TreasuryError
from .ledger import StaticLedger
from .yield_optimizer import FixturePoolSource

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


def setup_logging(level: str = "INFO"):
    logger.remove()
    logger.add(
        sys.stderr,
        level=level.upper(),
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
               "<cyan>{name}</cyan>:<cyan>{function}</cyan> - <level>{message}</level>"
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="treasury-agent",
        description="Monitor a treasury account and route funds to the best-yield pool"
    )
    parser.add_argument('--config', default="treasury_config.yaml", help="YAML config path")
    parser.add_argument('--once', action='store_true', help="Run a single cycle and exit")
    parser.add_argument('--mock-pools', action='store_true', help="Use built-in fixture pools")
    parser.add_argument(
        '--dry-run-balance', type=int, default=None, metavar='WEI',
        help="Use a static ledger with this balance instead of the RPC node"
    )
    parser.add_argument('--log-level', default=os.environ.get('LOG_LEVEL', 'INFO'))
    return parser


async def run(args) -> int:
    config = AgentConfig.load(args.config)

    ledger = None
    if args.dry_run_balance is not None:
        ledger = StaticLedger(balance=args.dry_run_balance)
        config.account_address = config.account_address or ZERO_ADDRESS
        logger.info(f"Dry run: static ledger balance {args.dry_run_balance} wei")

    pool_source = FixturePoolSource() if args.mock_pools else None
    agent = TreasuryAgent.from_config(config, ledger=ledger, pool_source=pool_source)

    try:
        if args.once:
            await agent.recover_interrupted_transfers()
            report = await agent.run_cycle()
            return 0 if report.success else 1

        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, stop_event.set)
            except NotImplementedError:
                pass

        await agent.run_forever(stop_event)
        return 0
    finally:
        await graceful_shutdown(agent)


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.log_level)
    logger.info("Starting treasury agent...")

    try:
        return asyncio.run(run(args))
    except ConfigError as e:
        logger.error(str(e))
        return 2
    except TreasuryError as e:
        logger.error(f"Failed to start treasury agent: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
