"""
Cross-Chain Transfer Router

Validates a proposed transfer and drives the bridge protocol:

1. Both chains supported by the registry
2. Amount at or above the minimum transfer
3. Amount within the corridor liquidity
4. Lock on source -> generate proof -> release on destination

Phases run strictly in order and each transition is committed to the
bridge journal first. A failure after the lock, or a lock with an unknown
outcome, leaves the transfer in FAILED_AFTER_LOCK until `unlock` is called
for it. Records stranded mid-flight by a crash are moved there by `recover`.
"""

import asyncio
import hashlib
import math
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Union
from loguru import logger

from .bridge_journal import IN_FLIGHT_STATES, BridgeJournal, BridgeRecord, BridgeState
from .chains import Chain, ChainRegistry
from .errors import (
    AmountTooLow,
    BridgeError,
    InsufficientLiquidity,
    InvalidAmount,
    InvalidChain,
    SameChainTransfer,
)

MIN_TRANSFER = 0.1
SIMULATED_LIQUIDITY = 1000.0


@dataclass
class TransferRequest:
    """Cross-chain transfer request"""
    amount: float
    source_chain: Union[str, Chain]
    destination_chain: Union[str, Chain]
    nonce: Optional[int] = None
    request_id: Optional[str] = None

    def __post_init__(self):
        if self.request_id is None:
            self.request_id = f"BRIDGE_{uuid.uuid4().hex[:12]}"


@dataclass
class TransferResult:
    """Successful transfer outcome"""
    request_id: str
    success: bool
    amount: float
    source_chain: str
    destination_chain: str
    state: BridgeState
    proof: Optional[str]
    total_time_seconds: float
    completed_at: datetime

    def to_dict(self) -> Dict:
        data = asdict(self)
        data['state'] = self.state.value
        data['completed_at'] = self.completed_at.isoformat()
        return data


class BridgeBackend(ABC):
    """The three bridge phases plus the recovery unlock"""

    @abstractmethod
    async def lock(self, request: TransferRequest, source: Chain):
        ...

    @abstractmethod
    async def prove(self, request: TransferRequest, source: Chain, destination: Chain) -> str:
        ...

    @abstractmethod
    async def release(self, request: TransferRequest, destination: Chain, proof: str):
        ...

    @abstractmethod
    async def unlock(self, record: BridgeRecord):
        ...


class SimulatedBridge(BridgeBackend):
    """
    Timing-only bridge

    Each phase waits `phase_delay` seconds. `fail_phase` makes the named
    phase ('lock', 'prove', 'release' or 'unlock') raise.
    """

    def __init__(self, phase_delay: float = 1.0, fail_phase: Optional[str] = None):
        self.phase_delay = phase_delay
        self.fail_phase = fail_phase
        self.calls: List[str] = []

    async def _step(self, phase: str):
        self.calls.append(phase)
        await asyncio.sleep(self.phase_delay)
        if self.fail_phase == phase:
            raise RuntimeError(f"simulated {phase} failure")

    async def lock(self, request: TransferRequest, source: Chain):
        logger.debug("Waiting for lock transaction confirmation...")
        await self._step('lock')

    async def prove(self, request: TransferRequest, source: Chain, destination: Chain) -> str:
        logger.debug("Computing merkle proof for bridge transaction...")
        await self._step('prove')
        digest = hashlib.sha256(
            f"{request.request_id}:{request.amount}:{source.value}:{destination.value}".encode()
        ).hexdigest()
        return f"0x{digest}"

    async def release(self, request: TransferRequest, destination: Chain, proof: str):
        logger.debug("Simulating release transaction on target chain...")
        await self._step('release')

    async def unlock(self, record: BridgeRecord):
        logger.debug(f"Simulating unlock on {record.source_chain}...")
        await self._step('unlock')


class TransferRouter:
    """
    Cross-chain transfer validator and executor

    One transfer at a time per account; the caller serializes cycles.
    """

    def __init__(
        self,
        registry: Optional[ChainRegistry] = None,
        bridge: Optional[BridgeBackend] = None,
        journal: Optional[BridgeJournal] = None,
        min_transfer: float = MIN_TRANSFER,
        corridor_liquidity: float = SIMULATED_LIQUIDITY,
        phase_timeout: float = 30.0,
        allow_same_chain: bool = False
    ):
        """
        Initialize router

        Args:
            registry: Supported chains
            bridge: Bridge backend, defaults to SimulatedBridge
            journal: Durable transfer journal, defaults to an in-memory one
            min_transfer: Global minimum transfer amount
            corridor_liquidity: Per-request liquidity ceiling
            phase_timeout: Deadline for each bridge phase (seconds)
            allow_same_chain: Accept transfers whose source equals destination
        """
        self.registry = registry or ChainRegistry()
        self.bridge = bridge or SimulatedBridge()
        self.journal = journal or BridgeJournal(":memory:")
        self.min_transfer = min_transfer
        self.corridor_liquidity = corridor_liquidity
        self.phase_timeout = phase_timeout
        self.allow_same_chain = allow_same_chain
        self._active: Set[str] = set()

    def get_supported_chains(self) -> List[str]:
        return self.registry.supported_names()

    def _validate_chain(self, chain: Union[str, Chain], role: str) -> Chain:
        logger.debug(f"Validating {role} chain: {chain}")
        try:
            return self.registry.resolve(chain)
        except InvalidChain as e:
            logger.error(f"{role.capitalize()} chain validation failed: {e}")
            logger.error(f"Supported chains: {', '.join(self.get_supported_chains())}")
            raise

    def minimum_for(self, source: Chain) -> float:
        """Global minimum, raised by the source chain's own minimum when it has one"""
        chain_minimum = self.registry.info(source).min_transfer
        if chain_minimum is None:
            return self.min_transfer
        return max(self.min_transfer, chain_minimum)

    def _validate_amount(self, amount: float, source: Chain) -> float:
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise InvalidAmount(amount, "amount must be a number")
        if not math.isfinite(amount):
            logger.error(f"Transfer amount rejected: {amount} is not a finite number")
            raise InvalidAmount(amount, "amount must be finite")

        minimum = self.minimum_for(source)
        logger.debug(f"Validating transfer amount: {amount} tokens")
        if amount <= 0 or amount < minimum:
            error = AmountTooLow(amount=amount, minimum=minimum)
            logger.error(f"Transfer amount too low: {error}")
            logger.error(f"Please increase the transfer amount to at least {minimum} tokens")
            raise error
        return float(amount)

    def check_liquidity(self, amount: float, source: Chain, destination: Chain):
        """
        Check corridor liquidity

        Raises:
            InsufficientLiquidity: amount exceeds the corridor ceiling
        """
        available = self.corridor_liquidity
        if amount > available:
            error = InsufficientLiquidity(required=amount, available=available)
            logger.error(f"Liquidity check failed: {error}")
            logger.error("Please try again with a smaller amount or wait for liquidity to increase")
            raise error

        logger.debug(f"Liquidity check passed. Required: {amount}, Available: {available}")

    def validate(self, request: TransferRequest) -> tuple:
        """
        Run every pre-bridge check

        Returns:
            (source Chain, destination Chain, amount)
        """
        logger.debug("Starting cross-chain transfer validation")
        source = self._validate_chain(request.source_chain, 'source')
        destination = self._validate_chain(request.destination_chain, 'target')

        if source is destination and not self.allow_same_chain:
            logger.error(f"Transfer rejected: source and destination are both {source.value}")
            raise SameChainTransfer(source.value)

        amount = self._validate_amount(request.amount, source)

        logger.debug("Checking bridge liquidity...")
        self.check_liquidity(amount, source, destination)
        return source, destination, amount

    async def _run_phase(self, phase: str, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.phase_timeout)
        except asyncio.TimeoutError:
            raise BridgeError(
                f"{phase} timed out after {self.phase_timeout}s",
                phase=phase,
                timed_out=True
            )
        except BridgeError:
            raise
        except Exception as e:
            raise BridgeError(f"{phase} failed: {e}", phase=phase) from e

    def _record_failure(self, request_id: str, source: Chain, locked: bool, reason: str) -> BridgeState:
        failed_state = BridgeState.FAILED_AFTER_LOCK if locked else BridgeState.FAILED
        self.journal.transition(request_id, failed_state, error=reason)

        logger.error(f"✗ Bridge transaction failed: {reason}")
        if locked:
            logger.error(
                f"Funds may remain locked on {source.value} for {request_id}; "
                f"explicit unlock required"
            )
        else:
            logger.error("Transaction simulation encountered an error - please check network conditions")
        return failed_state

    async def route(self, request: TransferRequest) -> TransferResult:
        """
        Validate and execute a transfer request

        Raises:
            InvalidChain, SameChainTransfer, AmountTooLow, InvalidAmount:
                validation failures, nothing journaled
            InsufficientLiquidity: corridor ceiling exceeded, nothing journaled
            BridgeError: a bridge phase failed; `state` tells whether funds are locked

        Cancellation is journaled as FAILED_AFTER_LOCK before it propagates.
        """
        source, destination, amount = self.validate(request)
        start_time = datetime.now(timezone.utc)

        logger.info(
            f"Initiating cross-chain transfer: {amount} tokens from {source.value} to {destination.value}"
        )
        logger.debug("All validations passed, proceeding with bridge transaction")

        request_id = request.request_id
        self.journal.begin(request_id, amount, source.value, destination.value, request.nonce)
        state = BridgeState.PENDING
        proof = None
        self._active.add(request_id)

        try:
            logger.info(f"Step 1: Locking {amount} tokens on {source.value}")
            await self._run_phase('lock', self.bridge.lock(request, source))
            state = self.journal.transition(request_id, BridgeState.LOCKED).state

            logger.info(f"Step 2: Generating proof for {amount} tokens {source.value} -> {destination.value}")
            proof = await self._run_phase('prove', self.bridge.prove(request, source, destination))
            state = self.journal.transition(request_id, BridgeState.PROOF_GENERATED, proof=proof).state

            logger.info(f"Step 3: Releasing {amount} tokens on {destination.value}")
            await self._run_phase('release', self.bridge.release(request, destination, proof))
            state = self.journal.transition(request_id, BridgeState.RELEASED).state

        except BridgeError as e:
            # a rejected lock left nothing locked; a timed-out one may have landed
            locked = state is not BridgeState.PENDING or e.timed_out
            e.state = self._record_failure(request_id, source, locked, e.reason).value
            raise
        except asyncio.CancelledError:
            self._record_failure(request_id, source, True, f"cancelled during {state.value}")
            raise
        finally:
            self._active.discard(request_id)

        total_time = (datetime.now(timezone.utc) - start_time).total_seconds()
        logger.info(f"✓ Successfully routed {amount} tokens from {source.value} to {destination.value}")
        logger.debug("Cross-chain transfer completed successfully")

        return TransferResult(
            request_id=request_id,
            success=True,
            amount=amount,
            source_chain=source.value,
            destination_chain=destination.value,
            state=state,
            proof=proof,
            total_time_seconds=total_time,
            completed_at=datetime.now(timezone.utc)
        )

    async def route_funds(
        self,
        amount: float,
        source_chain: Union[str, Chain],
        dest_chain: Union[str, Chain],
        nonce: Optional[int] = None
    ) -> TransferResult:
        return await self.route(TransferRequest(amount, source_chain, dest_chain, nonce=nonce))

    async def unlock(self, request_id: str) -> BridgeRecord:
        """
        Release funds left locked by a failed transfer

        Raises:
            BridgeError: unknown transfer, wrong state, or unlock failed
        """
        record = self.journal.get(request_id)
        if record is None:
            raise BridgeError(f"unknown transfer {request_id}", phase='unlock')
        if record.state is not BridgeState.FAILED_AFTER_LOCK:
            raise BridgeError(
                f"transfer {request_id} is {record.state.value}, not failed_after_lock",
                phase='unlock',
                state=record.state.value
            )

        logger.info(f"Unlocking {record.amount} tokens on {record.source_chain} for {request_id}")
        try:
            await self._run_phase('unlock', self.bridge.unlock(record))
        except BridgeError as e:
            e.state = record.state.value
            logger.error(f"✗ Unlock failed for {request_id}: {e}")
            raise

        record = self.journal.transition(request_id, BridgeState.UNLOCKED)
        logger.info(f"✓ Unlocked {request_id}")
        return record

    def recover(self, request_id: str) -> BridgeRecord:
        """
        Mark a transfer interrupted mid-flight as failed after lock

        A record left in PENDING, LOCKED or PROOF_GENERATED by a crash or kill
        has an unknown lock outcome, so it moves to FAILED_AFTER_LOCK and can
        then be passed to `unlock`.

        Raises:
            BridgeError: unknown transfer, still being routed, or not in flight
        """
        record = self.journal.get(request_id)
        if record is None:
            raise BridgeError(f"unknown transfer {request_id}", phase='recover')
        if request_id in self._active:
            raise BridgeError(
                f"transfer {request_id} is still being routed",
                phase='recover',
                state=record.state.value
            )
        if record.state not in IN_FLIGHT_STATES:
            raise BridgeError(
                f"transfer {request_id} is {record.state.value}, not in flight",
                phase='recover',
                state=record.state.value
            )

        logger.warning(f"Recovering interrupted transfer {request_id} (was {record.state.value})")
        return self.journal.transition(
            request_id,
            BridgeState.FAILED_AFTER_LOCK,
            error=f"interrupted during {record.state.value}"
        )

    def recover_interrupted(self) -> List[BridgeRecord]:
        """Recover every in-flight record not driven by a route() call on this router"""
        return [
            self.recover(record.request_id)
            for record in self.journal.incomplete()
            if record.state in IN_FLIGHT_STATES and record.request_id not in self._active
        ]

    def pending_transfers(self) -> List[BridgeRecord]:
        return self.journal.incomplete()

    def close(self):
        self.journal.close()
