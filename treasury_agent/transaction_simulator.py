"""
Transaction Simulator

Pre-flight checks before any transfer leaves the managed account:
balance sufficiency and fee estimation. Execution is a dry run; the
transaction is never signed or broadcast.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from loguru import logger

from .balance_monitor import BalanceMonitor
from .errors import GasEstimationFailed, InsufficientBalance, InvalidAmount, TreasuryError
from .ledger import to_checksum


@dataclass
class Transaction:
    """Outgoing transaction descriptor"""
    to: str
    value: int
    data: bytes = b''
    operation: int = 0
    safe_tx_gas: int = 0
    nonce: Optional[int] = None

    def __post_init__(self):
        self.to = to_checksum(self.to)
        if isinstance(self.value, bool) or not isinstance(self.value, int) or self.value < 0:
            raise InvalidAmount(self.value, "transaction value must be a non-negative integer")

    def to_request(self, sender: str) -> Dict[str, Any]:
        request = {
            'from': sender,
            'to': self.to,
            'value': self.value,
            'data': '0x' + self.data.hex(),
        }
        if self.nonce is not None:
            request['nonce'] = self.nonce
        return request


@dataclass
class ExecutionReport:
    success: bool
    estimated_cost: int
    total_required: int
    balance: int
    executed: bool = False
    notes: list = field(default_factory=list)


class TransactionSimulator:
    """Balance and fee pre-flight for the monitored account"""

    def __init__(self, monitor: BalanceMonitor):
        self.monitor = monitor
        self.ledger = monitor.ledger

    async def _estimate_fee(self, tx: Transaction) -> int:
        try:
            return int(await asyncio.wait_for(
                self.ledger.estimate_fee(tx.to_request(self.monitor.address)),
                timeout=self.monitor.call_timeout
            ))
        except asyncio.TimeoutError:
            reason = f"fee estimation timed out after {self.monitor.call_timeout}s"
            logger.error(f"Gas estimation failed: {reason}")
            raise GasEstimationFailed(reason)
        except TreasuryError:
            raise
        except Exception as e:
            logger.error(
                f"Gas estimation failed: {e}. Please verify transaction parameters "
                f"and network conditions"
            )
            raise GasEstimationFailed(str(e)) from e

    async def simulate_transfer(self, tx: Transaction) -> int:
        """
        Simulate a transfer

        Args:
            tx: Transaction to simulate

        Returns:
            Estimated fee in wei

        Raises:
            InsufficientBalance: balance < tx.value
            GasEstimationFailed: fee estimation errored
            ProviderError: balance could not be read
        """
        logger.info(f"Simulating transaction to: {tx.to}")
        logger.debug(f"Transaction details: value={tx.value}, data_len={len(tx.data)}")

        balance = await self.monitor.get_balance()
        if balance < tx.value:
            logger.error(
                f"Insufficient balance for transaction. Required: {tx.value} wei, "
                f"Available: {balance} wei. Please fund the account with at least "
                f"{tx.value - balance} wei"
            )
            raise InsufficientBalance(required=tx.value, available=balance)

        return await self._estimate_fee(tx)

    async def execute_transfer(self, tx: Transaction) -> ExecutionReport:
        """
        Validate a transfer end to end without broadcasting it

        Raises:
            InsufficientBalance: balance < value + estimated fee
        """
        logger.info(f"Preparing to execute transaction to: {tx.to}")
        logger.debug(f"Transaction value: {tx.value} wei")

        estimated_cost = await self.simulate_transfer(tx)
        logger.info(f"Gas estimation successful: {estimated_cost} wei")

        total_required = tx.value + estimated_cost
        balance = await self.monitor.get_balance()

        if balance < total_required:
            logger.error(
                f"✗ Insufficient balance including fees. Required: {total_required} wei, "
                f"Available: {balance} wei"
            )
            raise InsufficientBalance(required=total_required, available=balance)

        logger.info("✓ Transaction validated (dry run, not broadcast)")
        return ExecutionReport(
            success=True,
            estimated_cost=estimated_cost,
            total_required=total_required,
            balance=balance,
            executed=False,
            notes=["signing and broadcast are not implemented"]
        )
