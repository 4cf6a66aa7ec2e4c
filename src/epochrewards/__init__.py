"""
epochrewards - Epoch staking-reward ledger and resumable payout engine

Replays on-chain staking events to work out what every staker earned during
an epoch, cross-checks the result against the contract's earned() view,
allocates the epoch's revenue share with exact conservation, and pays it out
through a crash-recoverable fund / sign / broadcast workflow.

Usage:
    from epochrewards import ChainClient, EpochProcessor, EpochArchive
    from epochrewards.archive import PinataObjectStore
    from epochrewards.revenue import RevenueClient

    archive = EpochArchive(PinataObjectStore(...))
    processor = EpochProcessor(ChainClient(rpc_url), RevenueClient(unchained_url), archive)
    result = processor.process(archive.get_metadata(metadata_hash))

Payout Usage:
    from epochrewards.payout import EpochStateStore, LocalKeyWallet, PayoutStateMachine, ThornodeClient

    machine = PayoutStateMachine(EpochStateStore(rfox_dir), ThornodeClient(thornode_url), wallet)
    completed = trio.run(machine.run, epoch, epoch_hash)
"""

from .config import Settings, REWARD_RATE, PRECISION_SCALE, STAKING_CONTRACTS
from .errors import (
    EpochRewardsError,
    ConfigError,
    ChainError,
    TransientError,
    DataIntegrityError,
    ValidationMismatchError,
    NoEarnersError,
    AllocationError,
    SchemaError,
    ResumeError,
    FundingError,
    SigningIncompleteError,
    BroadcastIncompleteError,
)
from .retry import RetryPolicy
from .evm import ChainClient
from .ledger import allocate, epoch_reward_deltas, fetch_staking_events, validate_epoch_rewards
from .epoch import Epoch, EpochDetails, RewardDistribution, Metadata, DistributionStatus
from .archive import EpochArchive, MemoryObjectStore, PinataObjectStore
from .process import EpochProcessor

__version__ = "1.0.0"
__all__ = [
    # Config
    "Settings",
    "REWARD_RATE",
    "PRECISION_SCALE",
    "STAKING_CONTRACTS",
    "RetryPolicy",
    # Errors
    "EpochRewardsError",
    "ConfigError",
    "ChainError",
    "TransientError",
    "DataIntegrityError",
    "ValidationMismatchError",
    "NoEarnersError",
    "AllocationError",
    "SchemaError",
    "ResumeError",
    "FundingError",
    "SigningIncompleteError",
    "BroadcastIncompleteError",
    # Ledger
    "ChainClient",
    "allocate",
    "epoch_reward_deltas",
    "fetch_staking_events",
    "validate_epoch_rewards",
    # Records
    "Epoch",
    "EpochDetails",
    "RewardDistribution",
    "Metadata",
    "DistributionStatus",
    "EpochArchive",
    "MemoryObjectStore",
    "PinataObjectStore",
    "EpochProcessor",
]
