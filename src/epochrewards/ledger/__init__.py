"""
epochrewards.ledger - Staking event replay, allocation and validation.
"""

from .events import (
    StakingEvent,
    StakeEvent,
    UnstakeEvent,
    SetRewardAddressEvent,
    fetch_staking_events,
    find_contract_creation_block,
)
from .replay import (
    GlobalAccumulator,
    AccountStakingState,
    LedgerState,
    EpochLedger,
    initial_state,
    apply_event,
    replay,
    earned_at,
    epoch_reward_deltas,
)
from .allocation import allocate, assert_valid_allocation
from .validation import validate_epoch_rewards

__all__ = [
    "StakingEvent",
    "StakeEvent",
    "UnstakeEvent",
    "SetRewardAddressEvent",
    "fetch_staking_events",
    "find_contract_creation_block",
    "GlobalAccumulator",
    "AccountStakingState",
    "LedgerState",
    "EpochLedger",
    "initial_state",
    "apply_event",
    "replay",
    "earned_at",
    "epoch_reward_deltas",
    "allocate",
    "assert_valid_allocation",
    "validate_epoch_rewards",
]
