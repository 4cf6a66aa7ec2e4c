"""
epochrewards/errors.py

Error taxonomy for reward calculation and payout.

Fatal errors (data integrity, validation mismatch, allocation, resume) halt
the run. Transient errors are retried locally and only escalate once the
retry policy is exhausted.
"""

from typing import Optional


class EpochRewardsError(Exception):
    """Base class for all epochrewards errors."""
    pass


class ConfigError(EpochRewardsError):
    """Required configuration is missing or invalid."""
    pass


# ============================================================================
# CHAIN / NETWORK
# ============================================================================

class ChainError(EpochRewardsError):
    """A chain or HTTP query failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientError(ChainError):
    """A query failed in a way that is worth retrying."""
    pass


class UnknownEventError(EpochRewardsError):
    """A log could not be mapped onto a known staking event kind."""

    def __init__(self, message: str, block_number: int = 0, log_index: int = 0):
        super().__init__(message)
        self.block_number = block_number
        self.log_index = log_index


# ============================================================================
# LEDGER
# ============================================================================

class DataIntegrityError(EpochRewardsError):
    """The replay hit an impossible state transition."""

    def __init__(self, message: str, account: str = "", block_number: int = 0):
        super().__init__(message)
        self.account = account
        self.block_number = block_number


class ValidationMismatchError(EpochRewardsError):
    """Replayed rewards disagree with the on-chain earned() view."""

    def __init__(
        self,
        account: str,
        expected: int,
        calculated: int,
        start_block: int,
        end_block: int,
    ):
        super().__init__(
            f"Expected reward for {account} to be {expected}, got {calculated} "
            f"(blocks {start_block}..{end_block})"
        )
        self.account = account
        self.expected = expected
        self.calculated = calculated
        self.start_block = start_block
        self.end_block = end_block


class NoEarnersError(EpochRewardsError):
    """A positive total was requested but no account earned anything."""
    pass


class AllocationError(EpochRewardsError):
    """An allocation does not conserve the requested total."""
    pass


# ============================================================================
# RECORDS / PAYOUT
# ============================================================================

class SchemaError(EpochRewardsError):
    """Stored content does not match the expected record schema."""
    pass


class ResumeError(EpochRewardsError):
    """Persisted workflow state exists but cannot be used."""
    pass


class FundingError(EpochRewardsError):
    """The funding check failed beyond the tolerated number of attempts."""
    pass


class PartialProgressError(EpochRewardsError):
    """A payout stage finished with only part of its work done."""

    stage = ""

    def __init__(self, processed: int, total: int, reason: str = ""):
        message = f"{processed}/{total} transactions {self.stage}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.processed = processed
        self.total = total
        self.reason = reason


class SigningIncompleteError(PartialProgressError):
    stage = "signed"


class BroadcastIncompleteError(PartialProgressError):
    stage = "broadcasted"


class EpochNotEndedError(EpochRewardsError):
    """The epoch being processed is still accruing rewards."""

    def __init__(self, epoch: int, remaining_ms: int):
        days = round(remaining_ms / (24 * 60 * 60 * 1000))
        super().__init__(f"{days} days remaining in epoch #{epoch}")
        self.epoch = epoch
        self.remaining_ms = remaining_ms


class DistributionCompleteError(EpochRewardsError):
    """The epoch's distribution has already been completed."""
    pass
