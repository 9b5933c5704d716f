"""
Treasury Agent

Automated treasury management for a single account: balance monitoring,
yield pool selection and cross-chain fund routing.

Components:
- balance_monitor: Balance reads and threshold evaluation
- transaction_simulator: Balance and fee pre-flight for outgoing transactions
- yield_optimizer: Pool fetch, tolerant parsing and apy * log10(tvl) scoring
- transfer_router: Transfer validation and lock -> prove -> release bridging
- bridge_journal: SQLite journal of bridge state transitions
- chains: Supported chain registry
- agent: Periodic orchestrator

Balance States:
- HEALTHY: balance >= min_balance
- WARNING: critical_balance < balance < min_balance
- CRITICAL: balance <= critical_balance (cycle aborts)
"""

from .errors import (
    TreasuryError,
    ValidationError,
    ResourceError,
    TransientError,
    InvalidChain,
    AmountTooLow,
    InvalidAddress,
    InvalidAmount,
    SameChainTransfer,
    ConfigError,
    InsufficientBalance,
    InsufficientLiquidity,
    CriticalBalance,
    BridgeError,
    JournalError,
    InvalidTransition,
    ProviderError,
    GasEstimationFailed,
    DataSourceError,
    NoPoolsFound,
    NoValidPools,
    error_category,
)
from .chains import (
    Chain,
    ChainInfo,
    ChainRegistry,
)
from .ledger import (
    LedgerClient,
    Web3Ledger,
    StaticLedger,
)
from .balance_monitor import (
    Account,
    BalanceHealth,
    BalanceMonitor,
    Thresholds,
)
from .transaction_simulator import (
    Transaction,
    TransactionSimulator,
    ExecutionReport,
)
from .yield_optimizer import (
    PoolCandidate,
    PoolDataSource,
    LlamaPoolSource,
    FixturePoolSource,
    YieldOptimizer,
    parse_pool_record,
)
from .bridge_journal import (
    BridgeJournal,
    BridgeRecord,
    BridgeState,
)
from .transfer_router import (
    TransferRequest,
    TransferResult,
    BridgeBackend,
    SimulatedBridge,
    TransferRouter,
)
from .config import AgentConfig
from .agent import (
    TreasuryAgent,
    CycleReport,
    graceful_shutdown,
)

__all__ = [
    # Errors
    'TreasuryError',
    'ValidationError',
    'ResourceError',
    'TransientError',
    'InvalidChain',
    'AmountTooLow',
    'InvalidAddress',
    'InvalidAmount',
    'SameChainTransfer',
    'ConfigError',
    'InsufficientBalance',
    'InsufficientLiquidity',
    'CriticalBalance',
    'BridgeError',
    'JournalError',
    'InvalidTransition',
    'ProviderError',
    'GasEstimationFailed',
    'DataSourceError',
    'NoPoolsFound',
    'NoValidPools',
    'error_category',

    # Chains
    'Chain',
    'ChainInfo',
    'ChainRegistry',

    # Ledger
    'LedgerClient',
    'Web3Ledger',
    'StaticLedger',

    # Balance monitoring
    'Account',
    'BalanceHealth',
    'BalanceMonitor',
    'Thresholds',
    'Transaction',
    'TransactionSimulator',
    'ExecutionReport',

    # Yield optimization
    'PoolCandidate',
    'PoolDataSource',
    'LlamaPoolSource',
    'FixturePoolSource',
    'YieldOptimizer',
    'parse_pool_record',

    # Routing
    'BridgeJournal',
    'BridgeRecord',
    'BridgeState',
    'TransferRequest',
    'TransferResult',
    'BridgeBackend',
    'SimulatedBridge',
    'TransferRouter',

    # Orchestration
    'AgentConfig',
    'TreasuryAgent',
    'CycleReport',
    'graceful_shutdown',
]

__version__ = '0.1.0'
