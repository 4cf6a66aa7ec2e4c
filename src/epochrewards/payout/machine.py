"""
epochrewards/payout/machine.py

Resumable payout state machine.

Phases (one direction only):
    idle -> funding -> signing -> broadcasting -> complete

Every step that changes the workflow state persists it before moving on,
so a crash or Ctrl-C at any point resumes from the last completed step:
- funding is detected on chain, never re-requested once seen
- records that already carry a signed transaction are not re-signed
- records that already carry a tx id are never resubmitted
- a signed record without a tx id is looked up by hash before it is
  resubmitted, so a transfer sent just before a crash is recorded, not resent

Blocking HTTP calls run in worker threads and are not abandoned on cancel;
trio sleeps between polls and retries are the only cancellation points.
"""

import logging
import time
from typing import Callable, Optional

import trio

from ..config import (
    BROADCAST_MAX_RETRIES,
    BROADCAST_RETRY_DELAY,
    DEFAULT_FUNDING_SOURCE_ADDRESS,
    FEE_RESERVE_PER_TRANSFER,
    FUNDING_MAX_QUERY_FAILURES,
    FUNDING_POLL_INTERVAL,
)
from ..epoch import DistributionStatus, Epoch
from ..errors import (
    BroadcastIncompleteError,
    ChainError,
    FundingError,
    TransientError,
    ResumeError,
    SigningIncompleteError,
)
from ..retry import RetryPolicy, retry_async
from .state import EpochStateStore, PayoutPhase, PayoutRecord, PayoutWorkflowState
from .thornode import BroadcastOutcome, BroadcastResult, ThornodeClient, tx_hash
from .wallet import TransferSigner, UnsignedTransfer, funding_memo, reward_memo, unsigned_funding_tx

logger = logging.getLogger("epochrewards.payout.machine")

FUNDING_POLICY = RetryPolicy.fixed(FUNDING_POLL_INTERVAL)
BROADCAST_POLICY = RetryPolicy(interval=BROADCAST_RETRY_DELAY, max_attempts=BROADCAST_MAX_RETRIES + 1, backoff=2.0)


def funding_amount(state: PayoutWorkflowState, fee_reserve: int = FEE_RESERVE_PER_TRANSFER) -> int:
    """Total transfers plus a network fee reserve for each of them."""
    return state.total_amount + fee_reserve * state.total


class PayoutStateMachine:
    """
    Drives one epoch's payout to completion, resuming persisted progress.

    Example:
        machine = PayoutStateMachine(store, thornode, wallet)
        completed = await machine.run(epoch, epoch_hash)
    """

    def __init__(
        self,
        store: EpochStateStore,
        thornode: ThornodeClient,
        signer: TransferSigner,
        funding_source_address: str = DEFAULT_FUNDING_SOURCE_ADDRESS,
        funding_policy: RetryPolicy = FUNDING_POLICY,
        funding_failure_limit: int = FUNDING_MAX_QUERY_FAILURES,
        broadcast_policy: RetryPolicy = BROADCAST_POLICY,
        fee_reserve: int = FEE_RESERVE_PER_TRANSFER,
        clock: Callable[[], float] = time.time,
    ):
        self.store = store
        self.thornode = thornode
        self.signer = signer
        self.funding_source_address = funding_source_address
        self.funding_policy = funding_policy
        self.funding_failure_limit = funding_failure_limit
        self.broadcast_policy = broadcast_policy
        self.fee_reserve = fee_reserve
        self._clock = clock

    # ========================================================================
    # ENTRY POINT
    # ========================================================================

    def load_or_start(self, epoch: Epoch, epoch_hash: str) -> PayoutWorkflowState:
        """Persisted state for the epoch, or a new one written to disk."""
        state = self.store.load_state(epoch.number)
        if state is None:
            state = PayoutWorkflowState.for_epoch(epoch, epoch_hash, self.signer.address)
            self.store.save_state(state)
            logger.info(f"Starting payout for epoch #{epoch.number}: {state.total} transfers")
            return state

        self._check_resumable(state, epoch, epoch_hash)
        logger.info(
            f"Resuming payout for epoch #{epoch.number} in phase {state.phase.value}: "
            f"{state.signed_count}/{state.total} signed, {state.broadcast_count}/{state.total} broadcasted"
        )
        return state

    def _check_resumable(self, state: PayoutWorkflowState, epoch: Epoch, epoch_hash: str) -> None:
        if state.epoch_hash != epoch_hash:
            raise ResumeError(
                f"payout state for epoch #{epoch.number} was started from {state.epoch_hash}, not {epoch_hash}"
            )
        if state.wallet_address != self.signer.address:
            raise ResumeError(
                f"payout state for epoch #{epoch.number} belongs to wallet {state.wallet_address}, "
                f"not {self.signer.address}"
            )
        expected = [
            (contract, address, int(d.amount), d.reward_address)
            for contract, address, d in epoch.payable_distributions()
        ]
        recorded = [(r.staking_contract, r.staking_address, r.amount, r.reward_address) for r in state.records]
        if expected != recorded:
            raise ResumeError(f"payout records for epoch #{epoch.number} do not match the epoch's distributions")

    async def run(self, epoch: Epoch, epoch_hash: str) -> Epoch:
        """Run every remaining phase; returns the epoch with tx ids folded in."""
        state = self.load_or_start(epoch, epoch_hash)

        if state.total and state.phase in (PayoutPhase.IDLE, PayoutPhase.FUNDING):
            await self.fund(state)
        if state.total and state.phase is PayoutPhase.SIGNING:
            await self.sign_all(state)
        if state.total and state.phase is PayoutPhase.BROADCASTING:
            await self.broadcast_all(state)

        return self.complete(state, epoch)

    # ========================================================================
    # FUNDING
    # ========================================================================

    async def fund(self, state: PayoutWorkflowState) -> None:
        """Wait until the hot wallet has received the funding transfer."""
        state.advance_to(PayoutPhase.FUNDING)
        state.funding_amount = funding_amount(state, self.fee_reserve)
        self.store.save_state(state)

        logger.info(
            f"Hot wallet {state.wallet_address} needs {state.funding_amount} base units "
            f"({state.total_amount} rewards + fees for {state.total} transfers)"
        )

        failures = 0
        requested = False
        attempt = 1
        while True:
            try:
                tx_id = await trio.to_thread.run_sync(
                    self.thornode.find_funding_tx, state.wallet_address, state.funding_amount,
                )
            except ChainError as e:
                failures += 1
                logger.warning(f"Failed to verify if hot wallet is funded ({failures}/{self.funding_failure_limit}): {e}")
                if failures >= self.funding_failure_limit:
                    raise FundingError(
                        f"Failed to verify if hot wallet is funded after {failures} attempts: {e}"
                    ) from e
            else:
                failures = 0
                if tx_id is not None:
                    break
                if not requested:
                    self._request_funding(state)
                    requested = True

            await trio.sleep(self.funding_policy.delay(attempt))
            attempt += 1

        state.funding_tx_id = tx_id
        state.advance_to(PayoutPhase.SIGNING)
        self.store.save_state(state)
        logger.info("Hot wallet is funded and ready to distribute rewards")

    def _request_funding(self, state: PayoutWorkflowState) -> None:
        unsigned = unsigned_funding_tx(
            self.funding_source_address,
            state.wallet_address,
            state.funding_amount,
            funding_memo(state.epoch_number, state.epoch_hash),
        )
        path = self.store.save_unsigned_funding_tx(state.epoch_number, unsigned)
        logger.info(f"Unsigned funding transaction created ({path})")
        logger.info("Waiting for hot wallet to be funded...")

    # ========================================================================
    # SIGNING
    # ========================================================================

    def _transfer(self, state: PayoutWorkflowState, record: PayoutRecord) -> UnsignedTransfer:
        return UnsignedTransfer(
            from_address=state.wallet_address,
            to_address=record.reward_address,
            amount=record.amount,
            memo=reward_memo(state.epoch_number, state.epoch_hash, record.staking_contract, record.staking_address),
            account_number=state.account_number,
            sequence=record.sequence,
        )

    async def sign_all(self, state: PayoutWorkflowState) -> None:
        """Sign every record not yet broadcast; sequence numbers follow record order."""
        if state.account_number is None or state.base_sequence is None:
            account = await trio.to_thread.run_sync(self.thornode.get_account, state.wallet_address)
            state.account_number = account.account_number
            state.base_sequence = account.sequence
            self.store.save_state(state)
            logger.info(f"Account {account.account_number}, starting sequence {account.sequence}")

        pending = [record for record in state.records if not record.broadcast]
        for i, record in enumerate(pending):
            if record.signed:
                continue
            record.sequence = state.base_sequence + i
            try:
                signed_tx = await trio.to_thread.run_sync(self.signer.sign, self._transfer(state, record))
            except Exception as e:
                self.store.save_state(state)
                logger.error(f"Failed to sign transaction for {record.staking_address}: {e}")
                raise SigningIncompleteError(state.signed_count, state.total, str(e)) from e
            if not signed_tx:
                self.store.save_state(state)
                raise SigningIncompleteError(state.signed_count, state.total, "signer returned no transaction")

            record.signed_tx = signed_tx
            self.store.save_state(state)
            logger.debug(f"{state.signed_count}/{state.total} transactions signed")

        state.advance_to(PayoutPhase.BROADCASTING)
        self.store.save_state(state)
        logger.info(f"{state.signed_count}/{state.total} transactions signed")

    # ========================================================================
    # BROADCASTING
    # ========================================================================

    async def submit(self, record: PayoutRecord) -> BroadcastResult:
        """Submit one signed record, retrying transient failures per policy."""
        results = []

        async def attempt() -> BroadcastResult:
            result = await trio.to_thread.run_sync(self.thornode.submit, record.signed_tx, record.staking_address)
            results.append(result)
            if result.outcome is BroadcastOutcome.TRANSIENT:
                raise TransientError(result.log or "transient broadcast failure")
            return result

        try:
            return await retry_async(attempt, self.broadcast_policy, description=f"Broadcast for {record.staking_address}")
        except TransientError:
            return results[-1]

    async def find_committed(self, record: PayoutRecord) -> Optional[str]:
        """Hash of the record's signed transaction if the chain already has it."""
        tx_id = tx_hash(record.signed_tx)
        committed = await retry_async(
            lambda: trio.to_thread.run_sync(self.thornode.find_tx, tx_id),
            self.broadcast_policy,
            description=f"Transaction lookup for {record.staking_address}",
        )
        return tx_id if committed else None

    async def broadcast_all(self, state: PayoutWorkflowState) -> None:
        """Submit every record without a tx id, stopping at the first failure."""
        for record in state.records:
            if record.broadcast:
                continue
            try:
                committed = await self.find_committed(record)
            except ChainError as e:
                self.store.save_state(state)
                logger.error(f"Failed to look up transaction for {record.staking_address}: {e}")
                raise BroadcastIncompleteError(state.broadcast_count, state.total, str(e)) from e
            if committed:
                logger.info(f"Transaction for {record.staking_address} already committed as {committed}")
                record.tx_id = committed
                self.store.save_state(state)
                continue

            result = await self.submit(record)
            if not result.accepted:
                self.store.save_state(state)
                logger.error(
                    f"Failed to broadcast transaction for {record.staking_address} "
                    f"({result.outcome.value}): {result.log}"
                )
                raise BroadcastIncompleteError(state.broadcast_count, state.total, result.log)

            record.tx_id = result.tx_id
            self.store.save_state(state)
            logger.debug(f"{state.broadcast_count}/{state.total} transactions broadcasted")

        logger.info(f"{state.broadcast_count}/{state.total} transactions broadcasted")

    # ========================================================================
    # COMPLETION
    # ========================================================================

    def complete(self, state: PayoutWorkflowState, epoch: Epoch) -> Epoch:
        """Fold tx ids into the epoch record and mark both complete."""
        if state.broadcast_count != state.total:
            raise BroadcastIncompleteError(state.broadcast_count, state.total)

        for record in state.records:
            details = epoch.details_by_staking_contract[record.staking_contract]
            details.distributions_by_staking_address[record.staking_address].tx_id = record.tx_id

        if state.phase is not PayoutPhase.COMPLETE:
            state.advance_to(PayoutPhase.COMPLETE)
            self.store.save_state(state)

        epoch.distribution_status = DistributionStatus.COMPLETE
        epoch.distribution_timestamp = int(self._clock() * 1000)
        logger.info(f"rFOX reward distribution for Epoch #{epoch.number} has been completed")
        return epoch


def describe(state: Optional[PayoutWorkflowState]) -> str:
    """One line operator summary of a payout's progress."""
    if state is None:
        return "no payout started"
    return (
        f"epoch #{state.epoch_number}: {state.phase.value}, "
        f"{state.signed_count}/{state.total} signed, {state.broadcast_count}/{state.total} broadcasted"
    )
