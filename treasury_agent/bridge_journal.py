"""
Bridge Journal

SQLite journal for cross-chain transfers. Every phase transition is
committed before the next phase starts, so a crash mid-transfer leaves a
record of exactly how far it got.

States:
    PENDING -> LOCKED -> PROOF_GENERATED -> RELEASED
    PENDING -> FAILED                      (lock rejected, nothing locked)
    PENDING | LOCKED | PROOF_GENERATED -> FAILED_AFTER_LOCK -> UNLOCKED

PENDING -> FAILED_AFTER_LOCK covers a lock whose outcome is unknown
(timed out, cancelled, or interrupted by a crash).

Tables:
- bridge_transfers: one row per transfer request
- bridge_events: append-only state transition log
"""

import sqlite3
from enum import Enum
from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Dict, List, Optional
from loguru import logger

from .errors import InvalidTransition, JournalError


class BridgeState(Enum):
    PENDING = "pending"
    LOCKED = "locked"
    PROOF_GENERATED = "proof_generated"
    RELEASED = "released"
    FAILED = "failed"
    FAILED_AFTER_LOCK = "failed_after_lock"
    UNLOCKED = "unlocked"

    @property
    def is_terminal(self) -> bool:
        return self in (BridgeState.RELEASED, BridgeState.FAILED, BridgeState.UNLOCKED)


ALLOWED_TRANSITIONS = {
    BridgeState.PENDING: {BridgeState.LOCKED, BridgeState.FAILED, BridgeState.FAILED_AFTER_LOCK},
    BridgeState.LOCKED: {BridgeState.PROOF_GENERATED, BridgeState.FAILED_AFTER_LOCK},
    BridgeState.PROOF_GENERATED: {BridgeState.RELEASED, BridgeState.FAILED_AFTER_LOCK},
    BridgeState.FAILED_AFTER_LOCK: {BridgeState.UNLOCKED},
    BridgeState.RELEASED: set(),
    BridgeState.FAILED: set(),
    BridgeState.UNLOCKED: set(),
}

# States a transfer is only in while a route() call is driving it
IN_FLIGHT_STATES = frozenset({BridgeState.PENDING, BridgeState.LOCKED, BridgeState.PROOF_GENERATED})


@dataclass
class BridgeRecord:
    """Journal row for one transfer"""
    request_id: str
    amount: float
    source_chain: str
    destination_chain: str
    state: BridgeState
    nonce: Optional[int]
    proof: Optional[str]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['state'] = self.state.value
        data['created_at'] = self.created_at.isoformat()
        data['updated_at'] = self.updated_at.isoformat()
        return data

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'BridgeRecord':
        return cls(
            request_id=row['request_id'],
            amount=row['amount'],
            source_chain=row['source_chain'],
            destination_chain=row['destination_chain'],
            state=BridgeState(row['state']),
            nonce=row['nonce'],
            proof=row['proof'],
            error_message=row['error_message'],
            created_at=datetime.fromisoformat(row['created_at']),
            updated_at=datetime.fromisoformat(row['updated_at']),
        )


class BridgeJournal:
    """
    Durable record of bridge transfers

    Features:
    - State machine enforcement on every transition
    - Event log for auditing
    - Recovery query for transfers interrupted mid-flight
    """

    def __init__(self, db_path: str = "bridge_journal.db"):
        """
        Initialize journal

        Args:
            db_path: SQLite path, or ':memory:' for a throwaway journal
        """
        self.db_path = db_path
        self.conn: Optional[sqlite3.Connection] = None
        self._initialize_db()
        logger.info(f"Bridge journal initialized: {self.db_path}")

    def _initialize_db(self):
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self._create_tables()

    def _create_tables(self):
        states = ", ".join(f"'{s.value}'" for s in BridgeState)
        cursor = self.conn.cursor()

        cursor.execute(f"""
            CREATE TABLE IF NOT EXISTS bridge_transfers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT UNIQUE NOT NULL,
                amount REAL NOT NULL,
                source_chain TEXT NOT NULL,
                destination_chain TEXT NOT NULL,
                state TEXT NOT NULL,
                nonce INTEGER,
                proof TEXT,
                error_message TEXT,
                created_at TIMESTAMP NOT NULL,
                updated_at TIMESTAMP NOT NULL,
                CONSTRAINT positive_amount CHECK (amount > 0),
                CONSTRAINT valid_state CHECK (state IN ({states}))
            )
        """)

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS bridge_events (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                request_id TEXT NOT NULL,
                from_state TEXT,
                to_state TEXT NOT NULL,
                detail TEXT,
                occurred_at TIMESTAMP NOT NULL,
                FOREIGN KEY (request_id) REFERENCES bridge_transfers(request_id)
            )
        """)

        cursor.execute("CREATE INDEX IF NOT EXISTS idx_bridge_state ON bridge_transfers(state)")
        cursor.execute("CREATE INDEX IF NOT EXISTS idx_bridge_events_request ON bridge_events(request_id)")

        self.conn.commit()
        logger.debug("Bridge journal tables created successfully")

    def begin(
        self,
        request_id: str,
        amount: float,
        source_chain: str,
        destination_chain: str,
        nonce: Optional[int] = None
    ) -> BridgeRecord:
        """
        Insert a PENDING record

        Raises:
            JournalError: the row was rejected (duplicate id, non-positive amount)
        """
        now = datetime.now(timezone.utc).isoformat()
        try:
            with self.conn:
                self.conn.execute("""
                    INSERT INTO bridge_transfers (
                        request_id, amount, source_chain, destination_chain,
                        state, nonce, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    request_id, amount, source_chain, destination_chain,
                    BridgeState.PENDING.value, nonce, now, now
                ))
                self.conn.execute("""
                    INSERT INTO bridge_events (request_id, from_state, to_state, detail, occurred_at)
                    VALUES (?, NULL, ?, NULL, ?)
                """, (request_id, BridgeState.PENDING.value, now))
        except sqlite3.Error as e:
            logger.error(f"Failed to journal bridge transfer {request_id}: {e}")
            raise JournalError(str(e), request_id=request_id) from e

        logger.debug(f"Bridge transfer journaled: {request_id}")
        return self.get(request_id)

    def transition(
        self,
        request_id: str,
        state: BridgeState,
        proof: Optional[str] = None,
        error: Optional[str] = None
    ) -> BridgeRecord:
        """
        Move a record to a new state

        Raises:
            JournalError: unknown request_id or write failure
            InvalidTransition: state change not allowed from the current state
        """
        current = self.get(request_id)
        if current is None:
            raise JournalError(f"unknown transfer {request_id}", request_id=request_id)
        if state not in ALLOWED_TRANSITIONS[current.state]:
            raise InvalidTransition(
                f"{request_id}: cannot move from {current.state.value} to {state.value}",
                request_id=request_id
            )

        now = datetime.now(timezone.utc).isoformat()
        try:
            with self.conn:
                self.conn.execute("""
                    UPDATE bridge_transfers
                    SET state = ?, proof = COALESCE(?, proof),
                        error_message = COALESCE(?, error_message), updated_at = ?
                    WHERE request_id = ?
                """, (state.value, proof, error, now, request_id))
                self.conn.execute("""
                    INSERT INTO bridge_events (request_id, from_state, to_state, detail, occurred_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (request_id, current.state.value, state.value, error or proof, now))
        except sqlite3.Error as e:
            logger.error(f"Failed to journal {request_id} -> {state.value}: {e}")
            raise JournalError(str(e), request_id=request_id) from e

        logger.debug(f"Bridge transfer {request_id}: {current.state.value} -> {state.value}")
        return self.get(request_id)

    def get(self, request_id: str) -> Optional[BridgeRecord]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM bridge_transfers WHERE request_id = ?", (request_id,))
        row = cursor.fetchone()
        return BridgeRecord.from_row(row) if row else None

    def incomplete(self) -> List[BridgeRecord]:
        """Transfers not in a terminal state, oldest first"""
        open_states = [s.value for s in BridgeState if not s.is_terminal]
        placeholders = ", ".join("?" for _ in open_states)
        cursor = self.conn.cursor()
        cursor.execute(
            f"SELECT * FROM bridge_transfers WHERE state IN ({placeholders}) ORDER BY id",
            open_states
        )
        return [BridgeRecord.from_row(row) for row in cursor.fetchall()]

    def history(self, limit: int = 50) -> List[BridgeRecord]:
        cursor = self.conn.cursor()
        cursor.execute("SELECT * FROM bridge_transfers ORDER BY id DESC LIMIT ?", (limit,))
        return [BridgeRecord.from_row(row) for row in cursor.fetchall()]

    def events(self, request_id: str) -> List[Dict]:
        cursor = self.conn.cursor()
        cursor.execute(
            "SELECT from_state, to_state, detail, occurred_at FROM bridge_events "
            "WHERE request_id = ? ORDER BY id",
            (request_id,)
        )
        return [dict(row) for row in cursor.fetchall()]

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.info("Bridge journal closed")
