import asyncio

import pytest

from treasury_agent.balance_monitor import Account, BalanceMonitor
from treasury_agent.errors import (
    GasEstimationFailed,
    InsufficientBalance,
    InvalidAddress,
    InvalidAmount,
    ProviderError,
)
from treasury_agent.transaction_simulator import Transaction, TransactionSimulator


def _simulator(ledger, call_timeout=1.0):
    monitor = BalanceMonitor(
        Account("0x0000000000000000000000000000000000000000"),
        ledger,
        min_balance=1000,
        call_timeout=call_timeout,
    )
    return TransactionSimulator(monitor)


def test_simulate_returns_fee_estimate(fake_ledger_cls, recipient):
    ledger = fake_ledger_cls(balance=10**18, fee=21_000 * 30)
    simulator = _simulator(ledger)

    cost = asyncio.run(simulator.simulate_transfer(Transaction(to=recipient, value=10**17)))

    assert cost == 630_000
    request = ledger.fee_requests[0]
    assert request['to'] == recipient
    assert request['value'] == 10**17
    assert request['from'] == "0x0000000000000000000000000000000000000000"
    assert request['data'] == '0x'


def test_simulate_rejects_value_above_balance(fake_ledger_cls, recipient):
    ledger = fake_ledger_cls(balance=10**17)
    simulator = _simulator(ledger)

    with pytest.raises(InsufficientBalance) as exc_info:
        asyncio.run(simulator.simulate_transfer(Transaction(to=recipient, value=10**18)))

    assert exc_info.value.required == 10**18
    assert exc_info.value.available == 10**17
    assert exc_info.value.shortfall == 9 * 10**17
    # no fee query when the value alone does not fit
    assert ledger.fee_requests == []


def test_simulate_wraps_fee_failure(fake_ledger_cls, recipient):
    simulator = _simulator(fake_ledger_cls(balance=10**18, fee_error=ValueError("execution reverted")))
    with pytest.raises(GasEstimationFailed) as exc_info:
        asyncio.run(simulator.simulate_transfer(Transaction(to=recipient, value=1)))
    assert "execution reverted" in exc_info.value.reason


def test_simulate_propagates_provider_error(fake_ledger_cls, recipient):
    simulator = _simulator(fake_ledger_cls(balance_error=OSError("connection refused")))
    with pytest.raises(ProviderError):
        asyncio.run(simulator.simulate_transfer(Transaction(to=recipient, value=1)))


def test_execute_requires_value_plus_fee(fake_ledger_cls, recipient):
    simulator = _simulator(fake_ledger_cls(balance=1000, fee=200))

    with pytest.raises(InsufficientBalance) as exc_info:
        asyncio.run(simulator.execute_transfer(Transaction(to=recipient, value=900)))

    assert exc_info.value.required == 1100
    assert exc_info.value.available == 1000


def test_execute_is_a_dry_run(fake_ledger_cls, recipient):
    ledger = fake_ledger_cls(balance=5000, fee=200)
    simulator = _simulator(ledger)

    report = asyncio.run(simulator.execute_transfer(Transaction(to=recipient, value=900)))

    assert report.success is True
    assert report.executed is False
    assert report.estimated_cost == 200
    assert report.total_required == 1100
    assert report.balance == 5000
    assert ledger.balance == 5000


def test_transaction_validation(recipient):
    with pytest.raises(InvalidAddress):
        Transaction(to="0x1234", value=1)
    with pytest.raises(InvalidAmount):
        Transaction(to=recipient, value=-5)
    with pytest.raises(InvalidAmount):
        Transaction(to=recipient, value=1.5)


def test_transaction_request_includes_nonce(recipient):
    tx = Transaction(to=recipient, value=7, data=b'\x01\x02', nonce=4)
    request = tx.to_request("0x0000000000000000000000000000000000000000")
    assert request['nonce'] == 4
    assert request['data'] == '0x0102'
