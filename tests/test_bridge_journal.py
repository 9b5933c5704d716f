import pytest

from treasury_agent.bridge_journal import (
    ALLOWED_TRANSITIONS,
    IN_FLIGHT_STATES,
    BridgeJournal,
    BridgeState,
)
from treasury_agent.errors import InvalidTransition, JournalError, ResourceError


@pytest.fixture
def journal():
    journal = BridgeJournal(":memory:")
    yield journal
    journal.close()


def test_begin_creates_pending_record(journal):
    record = journal.begin("BRIDGE_1", 10.0, "Ethereum", "Arbitrum", nonce=3)

    assert record.state is BridgeState.PENDING
    assert record.amount == 10.0
    assert record.nonce == 3
    assert record.proof is None
    assert journal.events("BRIDGE_1")[0]['to_state'] == 'pending'


def test_happy_path_transitions(journal):
    journal.begin("BRIDGE_1", 10.0, "Ethereum", "Arbitrum")
    journal.transition("BRIDGE_1", BridgeState.LOCKED)
    journal.transition("BRIDGE_1", BridgeState.PROOF_GENERATED, proof="0xabc")
    record = journal.transition("BRIDGE_1", BridgeState.RELEASED)

    assert record.state is BridgeState.RELEASED
    assert record.proof == "0xabc"
    assert [e['to_state'] for e in journal.events("BRIDGE_1")] == [
        'pending', 'locked', 'proof_generated', 'released'
    ]


def test_error_message_recorded(journal):
    journal.begin("BRIDGE_1", 10.0, "Ethereum", "Arbitrum")
    journal.transition("BRIDGE_1", BridgeState.LOCKED)
    record = journal.transition("BRIDGE_1", BridgeState.FAILED_AFTER_LOCK, error="prove failed")

    assert record.error_message == "prove failed"
    assert journal.events("BRIDGE_1")[-1]['detail'] == "prove failed"


@pytest.mark.parametrize("path, bad_state", [
    ([], BridgeState.RELEASED),
    ([], BridgeState.UNLOCKED),
    ([BridgeState.LOCKED], BridgeState.RELEASED),
    ([BridgeState.LOCKED], BridgeState.FAILED),
    ([BridgeState.FAILED], BridgeState.LOCKED),
])
def test_disallowed_transitions(journal, path, bad_state):
    journal.begin("BRIDGE_1", 10.0, "Ethereum", "Arbitrum")
    for state in path:
        journal.transition("BRIDGE_1", state)

    with pytest.raises(InvalidTransition) as exc_info:
        journal.transition("BRIDGE_1", bad_state)
    assert exc_info.value.request_id == "BRIDGE_1"
    assert isinstance(exc_info.value, ResourceError)


def test_unknown_lock_outcome_goes_to_failed_after_lock(journal):
    journal.begin("BRIDGE_1", 10.0, "Ethereum", "Arbitrum")
    record = journal.transition("BRIDGE_1", BridgeState.FAILED_AFTER_LOCK, error="lock timed out")
    assert record.state is BridgeState.FAILED_AFTER_LOCK
    assert journal.transition("BRIDGE_1", BridgeState.UNLOCKED).state is BridgeState.UNLOCKED


def test_terminal_states_have_no_exits():
    for state in BridgeState:
        assert state.is_terminal == (ALLOWED_TRANSITIONS[state] == set())


def test_in_flight_states_can_all_fail_after_lock():
    for state in IN_FLIGHT_STATES:
        assert BridgeState.FAILED_AFTER_LOCK in ALLOWED_TRANSITIONS[state]
        assert not state.is_terminal


def test_transition_unknown_request(journal):
    with pytest.raises(JournalError) as exc_info:
        journal.transition("BRIDGE_missing", BridgeState.LOCKED)
    assert exc_info.value.request_id == "BRIDGE_missing"


def test_get_unknown_returns_none(journal):
    assert journal.get("BRIDGE_missing") is None


@pytest.mark.parametrize("amount", [0.0, -1.0, float('nan')])
def test_bad_amount_rejected_by_schema(journal, amount):
    with pytest.raises(JournalError):
        journal.begin("BRIDGE_1", amount, "Ethereum", "Arbitrum")
    assert journal.get("BRIDGE_1") is None


def test_duplicate_request_id_rejected(journal):
    journal.begin("BRIDGE_1", 1.0, "Ethereum", "Arbitrum")
    with pytest.raises(JournalError):
        journal.begin("BRIDGE_1", 1.0, "Ethereum", "Arbitrum")


def test_incomplete_lists_open_transfers_oldest_first(journal):
    journal.begin("BRIDGE_a", 1.0, "Ethereum", "Arbitrum")
    journal.begin("BRIDGE_b", 2.0, "Ethereum", "Polygon")
    journal.begin("BRIDGE_c", 3.0, "Ethereum", "Fantom")
    journal.transition("BRIDGE_b", BridgeState.FAILED)
    journal.transition("BRIDGE_c", BridgeState.LOCKED)

    assert [r.request_id for r in journal.incomplete()] == ["BRIDGE_a", "BRIDGE_c"]
    assert [r.request_id for r in journal.history(limit=2)] == ["BRIDGE_c", "BRIDGE_b"]


def test_record_to_dict(journal):
    data = journal.begin("BRIDGE_1", 1.5, "Ethereum", "Arbitrum").to_dict()
    assert data['state'] == 'pending'
    assert data['amount'] == 1.5
    assert isinstance(data['created_at'], str)


def test_close_is_idempotent():
    journal = BridgeJournal(":memory:")
    journal.close()
    journal.close()
    assert journal.conn is None


def test_creates_parent_directory(tmp_path):
    db_path = tmp_path / "state" / "journal.db"
    journal = BridgeJournal(str(db_path))
    journal.begin("BRIDGE_1", 1.0, "Ethereum", "Arbitrum")
    journal.close()
    assert db_path.exists()
