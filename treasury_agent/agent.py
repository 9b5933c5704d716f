"""
Treasury Agent

Periodic orchestrator: each cycle checks the balance, picks the best yield
pool and, when that pool lives off the home chain, routes funds to it.

Cycle outcomes are returned as `CycleReport` values. Errors from the core
are captured there with their category; the loop waits a fixed interval
after validation/resource failures and backs off after transient ones.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional
from loguru import logger

from .balance_monitor import Account, BalanceHealth, BalanceMonitor, format_eth
from .bridge_journal import BridgeJournal
from .chains import Chain, ChainRegistry
from .config import AgentConfig
from .errors import ConfigError, TreasuryError, error_category
from .ledger import LedgerClient, Web3Ledger
from .transfer_router import BridgeBackend, SimulatedBridge, TransferResult, TransferRouter
from .yield_optimizer import LlamaPoolSource, PoolCandidate, PoolDataSource, YieldOptimizer


@dataclass
class CycleReport:
    """Outcome of one monitoring cycle"""
    success: bool = False
    balance: Optional[int] = None
    health: Optional[BalanceHealth] = None
    below_minimum: Optional[bool] = None
    best_pool: Optional[PoolCandidate] = None
    transfer: Optional[TransferResult] = None
    skipped_reason: Optional[str] = None
    error: Optional[TreasuryError] = None
    category: Optional[str] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def duration_seconds(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


class TreasuryAgent:
    """
    Orchestrates BalanceMonitor -> YieldOptimizer -> TransferRouter

    At most one cycle runs at a time.
    """

    def __init__(
        self,
        monitor: BalanceMonitor,
        optimizer: YieldOptimizer,
        router: TransferRouter,
        home_chain: Chain = Chain.ETHEREUM,
        transfer_amount: float = 100.0,
        cycle_interval: float = 60.0,
        max_retry_delay: float = 600.0
    ):
        self.monitor = monitor
        self.optimizer = optimizer
        self.router = router
        self.home_chain = home_chain
        self.transfer_amount = transfer_amount
        self.cycle_interval = cycle_interval
        self.max_retry_delay = max_retry_delay

        self.transient_failures = 0
        self.last_report: Optional[CycleReport] = None
        self._cycle_lock = asyncio.Lock()

    @classmethod
    def from_config(
        cls,
        config: AgentConfig,
        ledger: Optional[LedgerClient] = None,
        pool_source: Optional[PoolDataSource] = None,
        bridge: Optional[BridgeBackend] = None
    ) -> 'TreasuryAgent':
        """
        Wire the real components from configuration

        Args:
            config: Agent configuration
            ledger: Ledger override (defaults to Web3Ledger on config.rpc_url)
            pool_source: Pool data override (defaults to LlamaPoolSource)
            bridge: Bridge backend override (defaults to SimulatedBridge)

        Raises:
            ConfigError: missing ledger endpoint or account address
            InvalidChain: home chain not in the supported set
        """
        if not config.account_address:
            raise ConfigError('ACCOUNT_ADDRESS', "must be set")
        if ledger is None:
            config.require_ledger()
            ledger = Web3Ledger(config.rpc_url, timeout=config.api_timeout)

        registry = ChainRegistry(active=config.supported_chains)
        home_chain = registry.resolve(config.home_chain)

        account = Account(address=config.account_address, home_chain=home_chain)
        monitor = BalanceMonitor(
            account,
            ledger,
            min_balance=config.min_balance,
            call_timeout=config.api_timeout
        )
        optimizer = YieldOptimizer(
            pool_source or LlamaPoolSource(config.pool_api_url, timeout=config.api_timeout)
        )
        router = TransferRouter(
            registry=registry,
            bridge=bridge or SimulatedBridge(phase_delay=config.phase_delay),
            journal=BridgeJournal(config.journal_path),
            min_transfer=config.min_transfer,
            corridor_liquidity=config.corridor_liquidity,
            phase_timeout=config.phase_timeout,
            allow_same_chain=config.allow_same_chain
        )

        logger.info("Treasury agent initialized successfully")
        logger.info(f"Monitoring address: {account.address}")
        logger.info(f"Home chain: {home_chain.value}")
        logger.info(f"API timeout: {config.api_timeout}s")

        return cls(
            monitor,
            optimizer,
            router,
            home_chain=home_chain,
            transfer_amount=config.transfer_amount,
            cycle_interval=config.cycle_interval,
            max_retry_delay=config.max_retry_delay
        )

    def _needs_bridge(self, pool: PoolCandidate) -> bool:
        registry = self.router.registry
        if registry.is_supported(pool.chain):
            return registry.resolve(pool.chain) is not self.home_chain
        return True

    async def _cycle(self, report: CycleReport):
        logger.debug("Starting monitoring cycle...")

        balance = await self.monitor.get_balance()
        report.balance = balance
        logger.info(f"Current balance: {format_eth(balance):.6f} ETH ({balance} wei)")

        report.below_minimum = await self.monitor.check_threshold()
        report.health = self.monitor.last_health
        if report.below_minimum:
            logger.warning("Balance is below minimum threshold - initiating optimization process")
        else:
            logger.debug("Balance is within acceptable range")

        logger.debug("Analyzing DeFi opportunities across chains...")
        pool = await self.optimizer.get_best_pool()
        report.best_pool = pool
        apy = pool.apy or 0.0

        if apy <= 0 or pool.tvl <= 0:
            report.skipped_reason = "insufficient pool metrics"
            logger.warning(
                f"Skipping pool {pool.protocol} due to insufficient metrics "
                f"(APY: {apy:.2f}%, TVL: ${pool.tvl:,.2f})"
            )
            return

        logger.info(
            f"Found optimal pool: {pool.protocol} on {pool.chain} "
            f"(APY: {apy:.2f}%, TVL: ${pool.tvl:,.2f})"
        )

        if not self._needs_bridge(pool):
            report.skipped_reason = "pool on home chain"
            logger.debug(f"Optimal pool is on {self.home_chain.value} - no bridge required")
            return

        logger.info(f"Initiating cross-chain optimization to {pool.chain}")
        report.transfer = await self.router.route_funds(
            self.transfer_amount, self.home_chain, pool.chain
        )
        logger.info(f"Successfully routed funds to {pool.chain}")

    async def run_cycle(self) -> CycleReport:
        """
        Run one monitoring cycle

        Returns:
            CycleReport; core errors are captured in `error` / `category`
        """
        async with self._cycle_lock:
            report = CycleReport()
            try:
                await self._cycle(report)
                report.success = True
                logger.debug("Monitoring cycle completed successfully")
            except TreasuryError as e:
                report.error = e
                report.category = error_category(e)
                logger.error(f"Error in monitoring cycle ({report.category}): {e}")
                if report.category == 'resource':
                    logger.error("Action required before the next cycle can make progress")

            report.finished_at = datetime.now(timezone.utc)

            if report.category == 'transient':
                self.transient_failures += 1
            else:
                self.transient_failures = 0
            self.last_report = report
            return report

    def next_delay(self, report: Optional[CycleReport] = None) -> float:
        """
        Delay before the next cycle

        Transient failures double the interval per consecutive failure,
        capped at max_retry_delay. Everything else waits cycle_interval.
        """
        report = report or self.last_report
        if report is None or report.category != 'transient' or self.transient_failures == 0:
            return self.cycle_interval
        delay = self.cycle_interval * (2 ** (self.transient_failures - 1))
        return min(delay, self.max_retry_delay)

    def report_pending_transfers(self):
        pending = self.router.pending_transfers()
        if not pending:
            return pending

        logger.warning(f"Found {len(pending)} bridge transfers that did not complete")
        for record in pending:
            logger.warning(
                f"  {record.request_id}: {record.amount} {record.source_chain} -> "
                f"{record.destination_chain} ({record.state.value})"
            )
        return pending

    async def recover_interrupted_transfers(self):
        """
        Fail transfers a previous run left mid-flight, then report what needs unlocking

        Runs under the cycle lock so no transfer of this agent is in flight.
        """
        async with self._cycle_lock:
            recovered = self.router.recover_interrupted()
        if recovered:
            logger.warning(f"Marked {len(recovered)} interrupted bridge transfers as failed_after_lock")
        return self.report_pending_transfers()

    async def run_forever(
        self,
        stop_event: Optional[asyncio.Event] = None,
        max_cycles: Optional[int] = None
    ) -> int:
        """
        Run cycles until stopped

        Args:
            stop_event: Set to stop the loop between cycles
            max_cycles: Stop after this many cycles

        Returns:
            Number of cycles run
        """
        stop_event = stop_event or asyncio.Event()
        await self.recover_interrupted_transfers()

        cycles = 0
        while not stop_event.is_set():
            report = await self.run_cycle()
            cycles += 1
            if max_cycles is not None and cycles >= max_cycles:
                break

            delay = self.next_delay(report)
            if not report.success:
                logger.error(f"Will retry in {delay:.0f} seconds...")
            logger.info(f"Waiting {delay:.0f} seconds before next monitoring cycle...")
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass

        return cycles

    async def close(self):
        await self.optimizer.close()
        await self.monitor.ledger.close()
        self.router.close()


async def graceful_shutdown(agent: TreasuryAgent, timeout: float = 15.0):
    """
    Close the agent's sessions and journal within a deadline

    Example:
        agent = TreasuryAgent.from_config(config)
        try:
            await agent.run_forever()
        finally:
            await graceful_shutdown(agent)
    """
    logger.info("Starting graceful shutdown...")
    try:
        await asyncio.wait_for(agent.close(), timeout=timeout)
        logger.info("✓ Graceful shutdown complete")
    except asyncio.TimeoutError:
        logger.warning(f"Shutdown timeout after {timeout}s, forcing cleanup")
        agent.router.close()
