"""
Balance Monitor

Reads the managed account's balance and evaluates it against two thresholds:

- min_balance: below it the account is in WARNING
- critical_balance: at or below it the account is CRITICAL and the cycle aborts

critical_balance is always min_balance // 2. Both live in one frozen
`Thresholds` value that `set_min_balance` swaps in with a single assignment,
so readers never observe a half-updated pair.
"""

import asyncio
from enum import Enum
from dataclasses import dataclass
from typing import Optional, Union
from loguru import logger

from .chains import Chain
from .errors import CriticalBalance, InvalidAmount, ProviderError, TreasuryError
from .ledger import LedgerClient, to_checksum

DEFAULT_MIN_BALANCE = 1_000_000_000_000_000  # 0.001 ETH
WEI_PER_ETH = 10**18


def format_eth(wei: int) -> float:
    return wei / WEI_PER_ETH


class BalanceHealth(Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class Thresholds:
    min_balance: int
    critical_balance: int

    @classmethod
    def from_minimum(cls, min_balance: int) -> 'Thresholds':
        return cls(min_balance=min_balance, critical_balance=min_balance // 2)


@dataclass
class Account:
    """Managed account"""
    address: str
    home_chain: Chain = Chain.ETHEREUM
    balance: Optional[int] = None  # last read, informational only

    def __post_init__(self):
        self.address = to_checksum(self.address)


class BalanceMonitor:
    """
    Balance query and threshold evaluation for a single account

    Every call re-reads the ledger; nothing is cached between cycles.
    """

    def __init__(
        self,
        account: Account,
        ledger: LedgerClient,
        min_balance: int = DEFAULT_MIN_BALANCE,
        call_timeout: float = 10.0
    ):
        """
        Initialize balance monitor

        Args:
            account: Account to monitor
            ledger: Ledger client used for balance reads
            min_balance: Warning threshold in wei
            call_timeout: Deadline for each ledger call (seconds)
        """
        self.account = account
        self.ledger = ledger
        self.call_timeout = call_timeout
        self._thresholds = Thresholds.from_minimum(self._check_amount(min_balance))
        self.last_health: Optional[BalanceHealth] = None

        logger.debug(f"Initializing BalanceMonitor for address: {account.address}")
        logger.debug(f"Minimum balance threshold: {self.min_balance} wei")
        logger.debug(f"Critical balance threshold: {self.critical_balance} wei")

    @staticmethod
    def _check_amount(value: Union[int, float]) -> int:
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidAmount(value, "threshold must be an integer amount of wei")
        if value < 0:
            raise InvalidAmount(value, "threshold must not be negative")
        return value

    @property
    def thresholds(self) -> Thresholds:
        return self._thresholds

    @property
    def min_balance(self) -> int:
        return self._thresholds.min_balance

    @property
    def critical_balance(self) -> int:
        return self._thresholds.critical_balance

    @property
    def address(self) -> str:
        return self.account.address

    def set_min_balance(self, min_balance: int):
        """Update both thresholds; critical becomes min_balance // 2"""
        self._thresholds = Thresholds.from_minimum(self._check_amount(min_balance))
        logger.info(
            f"Updated balance thresholds - Minimum: {self.min_balance} wei, "
            f"Critical: {self.critical_balance} wei"
        )

    async def get_balance(self) -> int:
        """
        Fetch the account balance

        Returns:
            Balance in wei

        Raises:
            ProviderError: ledger query failed or exceeded the call timeout
        """
        logger.debug(f"Fetching balance for address: {self.address}")

        try:
            balance = await asyncio.wait_for(
                self.ledger.get_balance(self.address),
                timeout=self.call_timeout
            )
        except asyncio.TimeoutError:
            logger.error(f"Provider error while fetching balance: timed out after {self.call_timeout}s")
            raise ProviderError(f"balance query timed out after {self.call_timeout}s")
        except TreasuryError:
            raise
        except Exception as e:
            logger.error(f"Provider error while fetching balance: {e}")
            raise ProviderError(str(e)) from e

        self.account.balance = int(balance)
        return self.account.balance

    def evaluate(self, balance: int) -> BalanceHealth:
        thresholds = self._thresholds
        if balance <= thresholds.critical_balance:
            return BalanceHealth.CRITICAL
        if balance < thresholds.min_balance:
            return BalanceHealth.WARNING
        return BalanceHealth.HEALTHY

    async def check_threshold(self) -> bool:
        """
        Check the balance against the thresholds

        Returns:
            True when the balance is below min_balance (but above critical),
            False when it is at or above min_balance

        Raises:
            CriticalBalance: balance <= critical_balance
            ProviderError: balance could not be read
        """
        balance = await self.get_balance()
        thresholds = self._thresholds
        health = self.evaluate(balance)

        if health != self.last_health:
            previous = self.last_health.value if self.last_health else 'unknown'
            logger.debug(f"Balance health transition: {previous} -> {health.value}")
        self.last_health = health

        if health is BalanceHealth.CRITICAL:
            logger.error(
                f"CRITICAL: Balance extremely low! Current: {balance} wei, "
                f"Minimum: {thresholds.critical_balance} wei. Action required: "
                f"Please fund the account with at least {thresholds.min_balance} wei"
            )
            raise CriticalBalance(current=balance, minimum=thresholds.critical_balance)

        if health is BalanceHealth.WARNING:
            logger.warning(
                f"WARNING: Balance ({balance} wei) is below minimum threshold "
                f"({thresholds.min_balance} wei). Consider funding the account soon."
            )
            return True

        logger.info(
            f"Balance is sufficient. Current: {balance} wei, "
            f"Minimum required: {thresholds.min_balance} wei"
        )
        return False
