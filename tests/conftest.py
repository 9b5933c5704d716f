import asyncio
from typing import Any, Dict, List, Optional

import pytest

from treasury_agent.ledger import LedgerClient
from treasury_agent.yield_optimizer import PoolDataSource

TEST_ADDRESS = "0x0000000000000000000000000000000000000000"
RECIPIENT = "0x1234567890123456789012345678901234567890"


class FakeLedger(LedgerClient):
    def __init__(
        self,
        balance: int = 0,
        fee: int = 21_000,
        balance_error: Optional[Exception] = None,
        fee_error: Optional[Exception] = None,
        delay: float = 0.0,
    ):
        self.balance = balance
        self.fee = fee
        self.balance_error = balance_error
        self.fee_error = fee_error
        self.delay = delay
        self.balance_calls = 0
        self.fee_requests: List[Dict[str, Any]] = []
        self.closed = False

    async def get_balance(self, address: str) -> int:
        self.balance_calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    async def estimate_fee(self, tx: Dict[str, Any]) -> int:
        self.fee_requests.append(tx)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fee_error is not None:
            raise self.fee_error
        return self.fee

    async def close(self):
        self.closed = True


class RecordingPoolSource(PoolDataSource):
    def __init__(self, records=None, error: Optional[Exception] = None):
        self.records = list(records or [])
        self.error = error
        self.fetches = 0
        self.closed = False

    async def fetch(self):
        self.fetches += 1
        if self.error is not None:
            raise self.error
        return list(self.records)

    async def close(self):
        self.closed = True


@pytest.fixture
def fake_ledger_cls():
    return FakeLedger


@pytest.fixture
def pool_source_cls():
    return RecordingPoolSource


@pytest.fixture
def test_address():
    return TEST_ADDRESS


@pytest.fixture
def recipient():
    return RECIPIENT
