"""
Treasury Agent Errors

Closed error taxonomy shared by every component.

Categories:
- ValidationError: caller-correctable input problems, never retried
- ResourceError: hard shortfalls carrying required vs available context,
  bridge and journal failures
- TransientError: provider / network / data-source failures, retried by the agent
"""

from typing import List, Optional


class TreasuryError(Exception):
    """Base class for all treasury agent errors"""

    category = "unknown"

    def to_dict(self) -> dict:
        data = {k: v for k, v in vars(self).items() if not k.startswith('_')}
        data['error'] = type(self).__name__
        data['category'] = self.category
        data['message'] = str(self)
        return data


class ValidationError(TreasuryError):
    category = "validation"


class ResourceError(TreasuryError):
    category = "resource"


class TransientError(TreasuryError):
    category = "transient"


# ============================================================================
# Validation errors
# ============================================================================

class InvalidChain(ValidationError):
    def __init__(self, chain: str, supported: List[str]):
        self.chain = chain
        self.supported = list(supported)
        super().__init__(
            f"Invalid chain '{chain}'. Supported chains: {', '.join(self.supported)}"
        )


class AmountTooLow(ValidationError):
    def __init__(self, amount: float, minimum: float):
        self.amount = amount
        self.minimum = minimum
        super().__init__(f"Amount {amount} is below minimum {minimum}")


class InvalidAddress(ValidationError):
    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Invalid address: {address}")


class InvalidAmount(ValidationError):
    def __init__(self, amount, reason: str):
        self.amount = amount
        self.reason = reason
        super().__init__(f"Invalid amount {amount}: {reason}")


class SameChainTransfer(ValidationError):
    def __init__(self, chain: str):
        self.chain = chain
        super().__init__(f"Source and destination chain are both '{chain}'")


class ConfigError(ValidationError):
    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Configuration error for {key}: {reason}")


# ============================================================================
# Resource errors
# ============================================================================

class InsufficientBalance(ResourceError):
    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient balance for transaction. Required: {required}, Available: {available}"
        )

    @property
    def shortfall(self) -> int:
        return self.required - self.available


class InsufficientLiquidity(ResourceError):
    def __init__(self, required: float, available: float):
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient liquidity for transfer. Required: {required}, Available: {available}"
        )


class CriticalBalance(ResourceError):
    def __init__(self, current: int, minimum: int):
        self.current = current
        self.minimum = minimum
        super().__init__(
            f"Balance below critical threshold. Current: {current}, Minimum: {minimum}. "
            f"Action required: Please fund the account with at least {minimum} wei"
        )


class BridgeError(ResourceError):
    """
    Bridge phase failure

    `state` is the journal state the transfer was left in. `timed_out` marks
    a phase whose outcome on chain is unknown.
    """

    def __init__(
        self,
        reason: str,
        phase: Optional[str] = None,
        state: Optional[str] = None,
        timed_out: bool = False
    ):
        self.reason = reason
        self.phase = phase
        self.state = state
        self.timed_out = timed_out
        super().__init__(f"Bridge error: {reason}")


class JournalError(ResourceError):
    """Bridge journal could not record or find a transfer"""

    def __init__(self, reason: str, request_id: Optional[str] = None):
        self.reason = reason
        self.request_id = request_id
        super().__init__(f"Bridge journal error: {reason}")


class InvalidTransition(JournalError):
    pass


# ============================================================================
# Transient errors
# ============================================================================

class ProviderError(TransientError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Provider error: {reason}")


class GasEstimationFailed(TransientError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Gas estimation failed: {reason}")


class DataSourceError(TransientError):
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"API request failed: {reason}")


class NoPoolsFound(TransientError):
    def __init__(self):
        super().__init__("No pools found in response")


class NoValidPools(TransientError):
    def __init__(self):
        super().__init__("No valid pools with positive APY and TVL")


def error_category(exc: BaseException) -> str:
    """Return 'validation', 'resource', 'transient' or 'unknown'"""
    if isinstance(exc, TreasuryError):
        return exc.category
    return "unknown"
