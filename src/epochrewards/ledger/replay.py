"""
epochrewards/ledger/replay.py

Off-chain replay of the staking contract's reward accounting.

The contract keeps a global reward-per-token accumulator that grows with
elapsed time, inversely to the total stake:

    reward_per_token += reward_rate * elapsed * SCALE // total_staked

and settles an account on every balance change:

    earned += balance * (reward_per_token - reward_per_token_paid) // SCALE
    reward_per_token_paid = reward_per_token

The replay reproduces this with the same integer floor divisions so the
result matches the contract's earned() view bit for bit. State is threaded
explicitly: replay() never mutates its input, so any returned state can be
used as a snapshot to replay from.

Usage:
    state = initial_state(creation_timestamp)
    state = replay(events, state, through_block=start_block - 1)
    before = earned_at(state, start_boundary_timestamp)
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from ..config import PRECISION_SCALE, REWARD_RATE
from ..errors import DataIntegrityError
from .events import SetRewardAddressEvent, StakeEvent, StakingEvent, UnstakeEvent

logger = logging.getLogger("epochrewards.ledger.replay")

# Log index marking a block as fully replayed
BLOCK_SEALED = 2**63


# ============================================================================
# STATE
# ============================================================================

@dataclass
class GlobalAccumulator:
    """Contract-wide reward-per-token accumulator."""
    reward_per_token: int = 0
    last_update_time: int = 0
    total_staked: int = 0

    def value_at(self, timestamp: int, reward_rate: int = REWARD_RATE, scale: int = PRECISION_SCALE) -> int:
        """Accumulator value at `timestamp` without mutating (rewardPerToken())."""
        if self.total_staked == 0:
            return self.reward_per_token
        elapsed = timestamp - self.last_update_time
        return self.reward_per_token + reward_rate * elapsed * scale // self.total_staked


@dataclass
class AccountStakingState:
    """Per-account staking position as the contract tracks it."""
    balance: int = 0
    reward_per_token_paid: int = 0
    earned: int = 0
    reward_address: str = ""

    def earned_at(self, reward_per_token: int, scale: int = PRECISION_SCALE) -> int:
        return self.balance * (reward_per_token - self.reward_per_token_paid) // scale + self.earned


@dataclass
class LedgerState:
    """Everything the replay needs to continue from a given point."""
    accumulator: GlobalAccumulator = field(default_factory=GlobalAccumulator)
    accounts: Dict[str, AccountStakingState] = field(default_factory=dict)
    last_block: int = -1
    last_log_index: int = -1

    def copy(self) -> "LedgerState":
        return copy.deepcopy(self)


def initial_state(creation_timestamp: int) -> LedgerState:
    """Empty ledger whose accumulator was last updated at contract creation."""
    return LedgerState(accumulator=GlobalAccumulator(last_update_time=creation_timestamp))


# ============================================================================
# REPLAY
# ============================================================================

def apply_event(
    state: LedgerState,
    event: StakingEvent,
    reward_rate: int = REWARD_RATE,
    scale: int = PRECISION_SCALE,
) -> None:
    """Apply one event to `state` in place (the contract's updateReward + effect)."""
    acc = state.accumulator

    if (event.block_number, event.log_index) <= (state.last_block, state.last_log_index):
        raise DataIntegrityError(
            f"event at block {event.block_number} index {event.log_index} is not after "
            f"block {state.last_block} index {state.last_log_index}",
            account=event.account,
            block_number=event.block_number,
        )
    if event.timestamp < acc.last_update_time:
        raise DataIntegrityError(
            f"timestamp {event.timestamp} precedes last update {acc.last_update_time}",
            account=event.account,
            block_number=event.block_number,
        )

    # 1. advance the accumulator (nothing accrues while nothing is staked)
    acc.reward_per_token = acc.value_at(event.timestamp, reward_rate, scale)

    # 2. settle the account against the current accumulator
    account = state.accounts.get(event.account)
    if account is None:
        account = AccountStakingState(reward_per_token_paid=acc.reward_per_token)
        state.accounts[event.account] = account
    account.earned = account.earned_at(acc.reward_per_token, scale)
    account.reward_per_token_paid = acc.reward_per_token

    # 3. apply the balance change
    if isinstance(event, StakeEvent):
        account.balance += event.staked
        acc.total_staked += event.staked
        account.reward_address = event.reward_address
    elif isinstance(event, UnstakeEvent):
        if event.unstaked > account.balance:
            raise DataIntegrityError(
                f"unstake of {event.unstaked} exceeds balance {account.balance} "
                f"for {event.account} at block {event.block_number}",
                account=event.account,
                block_number=event.block_number,
            )
        if event.unstaked > acc.total_staked:
            raise DataIntegrityError(
                f"unstake of {event.unstaked} exceeds total staked {acc.total_staked} "
                f"at block {event.block_number}",
                account=event.account,
                block_number=event.block_number,
            )
        account.balance -= event.unstaked
        acc.total_staked -= event.unstaked
    elif isinstance(event, SetRewardAddressEvent):
        account.reward_address = event.reward_address
    else:
        raise DataIntegrityError(
            f"unhandled event type {type(event).__name__}",
            account=event.account,
            block_number=event.block_number,
        )

    # 4. move the update instant forward
    acc.last_update_time = event.timestamp
    state.last_block = event.block_number
    state.last_log_index = event.log_index


def replay(
    events: Iterable[StakingEvent],
    state: LedgerState,
    through_block: Optional[int] = None,
    reward_rate: int = REWARD_RATE,
    scale: int = PRECISION_SCALE,
) -> LedgerState:
    """
    Return a new state with every event after `state` and at or before
    `through_block` applied. `events` must be sorted by (block, log index).
    """
    result = state.copy()
    applied = 0
    for event in events:
        if through_block is not None and event.block_number > through_block:
            break
        if (event.block_number, event.log_index) <= (result.last_block, result.last_log_index):
            continue
        apply_event(result, event, reward_rate, scale)
        applied += 1
    if through_block is not None and through_block > result.last_block:
        result.last_block = through_block
        result.last_log_index = BLOCK_SEALED
    logger.debug(f"Replayed {applied} events through block {result.last_block}")
    return result


def earned_at(
    state: LedgerState,
    timestamp: int,
    reward_rate: int = REWARD_RATE,
    scale: int = PRECISION_SCALE,
) -> Dict[str, int]:
    """Cumulative earned units per account at `timestamp` (the earned() view)."""
    if timestamp < state.accumulator.last_update_time:
        raise DataIntegrityError(
            f"snapshot timestamp {timestamp} precedes last update "
            f"{state.accumulator.last_update_time}"
        )
    reward_per_token = state.accumulator.value_at(timestamp, reward_rate, scale)
    return {
        address: account.earned_at(reward_per_token, scale)
        for address, account in state.accounts.items()
    }


# ============================================================================
# EPOCH DELTAS
# ============================================================================

@dataclass
class EpochLedger:
    """Replay output for one epoch of one staking contract."""
    start_block: int
    end_block: int
    reward_units: Dict[str, int]          # earned within the epoch
    total_reward_units: Dict[str, int]    # cumulative earned at end block
    reward_addresses: Dict[str, str]      # latest payout address at end block

    @property
    def epoch_reward_units(self) -> int:
        return sum(self.reward_units.values())

    def earners(self) -> Dict[str, int]:
        """Accounts with a positive delta, in ledger order."""
        return {a: units for a, units in self.reward_units.items() if units > 0}


def epoch_reward_deltas(
    events: List[StakingEvent],
    creation_timestamp: int,
    start_block: int,
    start_boundary_timestamp: int,
    end_block: int,
    end_timestamp: int,
    reward_rate: int = REWARD_RATE,
    scale: int = PRECISION_SCALE,
) -> EpochLedger:
    """
    Earned units per account strictly within [start_block, end_block].

    `start_boundary_timestamp` is the timestamp of block start_block - 1
    (the end of the previous epoch); `end_timestamp` that of end_block.
    """
    if start_block > end_block:
        raise ValueError(f"start_block {start_block} > end_block {end_block}")

    genesis = initial_state(creation_timestamp)
    before = replay(events, genesis, through_block=start_block - 1, reward_rate=reward_rate, scale=scale)
    earned_before = earned_at(before, start_boundary_timestamp, reward_rate, scale)

    after = replay(events, before, through_block=end_block, reward_rate=reward_rate, scale=scale)
    earned_after = earned_at(after, end_timestamp, reward_rate, scale)

    deltas: Dict[str, int] = {}
    for account, total in earned_after.items():
        delta = total - earned_before.get(account, 0)
        if delta < 0:
            raise DataIntegrityError(
                f"earned for {account} decreased by {-delta} over blocks {start_block}..{end_block}",
                account=account,
                block_number=end_block,
            )
        deltas[account] = delta

    logger.info(
        f"Replayed {len(deltas)} accounts for blocks {start_block}..{end_block}: "
        f"{sum(deltas.values())} reward units"
    )
    return EpochLedger(
        start_block=start_block,
        end_block=end_block,
        reward_units=deltas,
        total_reward_units=earned_after,
        reward_addresses={a: s.reward_address for a, s in after.accounts.items()},
    )
