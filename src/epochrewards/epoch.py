"""
epochrewards/epoch.py

Published epoch records and program metadata.

These are the JSON documents pinned to the object store. Field names on
the wire are camelCase and every document is validated on read; a record
that does not match raises SchemaError instead of being used half-parsed.

Timestamps in Metadata and Epoch are Unix milliseconds.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterator, Tuple

from .errors import SchemaError


class DistributionStatus(Enum):
    """Whether an epoch's rewards have been paid out."""
    PENDING = "pending"
    COMPLETE = "complete"


def _require(data: Any, key: str, kind: Any, where: str) -> Any:
    if not isinstance(data, dict):
        raise SchemaError(f"{where}: expected an object, got {type(data).__name__}")
    if key not in data:
        raise SchemaError(f"{where}: missing field {key!r}")
    value = data[key]
    if kind is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
    elif kind is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    else:
        ok = isinstance(value, kind)
    if not ok:
        raise SchemaError(f"{where}: field {key!r} has type {type(value).__name__}")
    return value


def _require_int_string(data: Any, key: str, where: str) -> str:
    value = _require(data, key, str, where)
    if not value.isdigit():
        raise SchemaError(f"{where}: field {key!r} is not a base-unit integer: {value!r}")
    return value


# ============================================================================
# EPOCH RECORDS
# ============================================================================

@dataclass
class RewardDistribution:
    """Payout to one staking address for one epoch."""
    amount: str                 # base units (RUNE)
    reward_units: str           # reward units earned within the epoch
    total_reward_units: str     # cumulative reward units at epoch end
    reward_address: str         # payout (THORChain) address
    tx_id: str = ""             # broadcast transaction id, set once

    def to_dict(self) -> dict:
        return {
            'amount': self.amount,
            'rewardUnits': self.reward_units,
            'totalRewardUnits': self.total_reward_units,
            'txId': self.tx_id,
            'rewardAddress': self.reward_address,
        }

    @classmethod
    def from_dict(cls, data: dict, where: str = "distribution") -> "RewardDistribution":
        return cls(
            amount=_require_int_string(data, 'amount', where),
            reward_units=_require_int_string(data, 'rewardUnits', where),
            total_reward_units=_require_int_string(data, 'totalRewardUnits', where),
            tx_id=_require(data, 'txId', str, where),
            reward_address=_require(data, 'rewardAddress', str, where),
        )


@dataclass
class EpochDetails:
    """Per staking contract results within an epoch."""
    total_reward_units: str
    distribution_rate: float
    distributions_by_staking_address: Dict[str, RewardDistribution] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'totalRewardUnits': self.total_reward_units,
            'distributionRate': self.distribution_rate,
            'distributionsByStakingAddress': {
                address: d.to_dict() for address, d in self.distributions_by_staking_address.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict, where: str = "details") -> "EpochDetails":
        raw = _require(data, 'distributionsByStakingAddress', dict, where)
        return cls(
            total_reward_units=_require_int_string(data, 'totalRewardUnits', where),
            distribution_rate=_require(data, 'distributionRate', float, where),
            distributions_by_staking_address={
                address: RewardDistribution.from_dict(d, f"{where}.{address}")
                for address, d in raw.items()
            },
        )


@dataclass
class Epoch:
    """A processed epoch, pending or completed."""
    number: int
    start_timestamp: int
    end_timestamp: int
    distribution_timestamp: int
    start_block: int
    end_block: int
    treasury_address: str
    total_revenue: str
    burn_rate: float
    distribution_status: DistributionStatus
    details_by_staking_contract: Dict[str, EpochDetails] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'number': self.number,
            'startTimestamp': self.start_timestamp,
            'endTimestamp': self.end_timestamp,
            'distributionTimestamp': self.distribution_timestamp,
            'startBlock': self.start_block,
            'endBlock': self.end_block,
            'treasuryAddress': self.treasury_address,
            'totalRevenue': self.total_revenue,
            'burnRate': self.burn_rate,
            'distributionStatus': self.distribution_status.value,
            'detailsByStakingContract': {
                contract: details.to_dict() for contract, details in self.details_by_staking_contract.items()
            },
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Epoch":
        where = "epoch"
        status = _require(data, 'distributionStatus', str, where)
        try:
            distribution_status = DistributionStatus(status)
        except ValueError:
            raise SchemaError(f"{where}: unknown distributionStatus {status!r}")
        details = _require(data, 'detailsByStakingContract', dict, where)
        return cls(
            number=_require(data, 'number', int, where),
            start_timestamp=_require(data, 'startTimestamp', int, where),
            end_timestamp=_require(data, 'endTimestamp', int, where),
            distribution_timestamp=_require(data, 'distributionTimestamp', int, where),
            start_block=_require(data, 'startBlock', int, where),
            end_block=_require(data, 'endBlock', int, where),
            treasury_address=_require(data, 'treasuryAddress', str, where),
            total_revenue=_require_int_string(data, 'totalRevenue', where),
            burn_rate=_require(data, 'burnRate', float, where),
            distribution_status=distribution_status,
            details_by_staking_contract={
                contract: EpochDetails.from_dict(d, f"{where}.{contract}")
                for contract, d in details.items()
            },
        )

    def iter_distributions(self) -> Iterator[Tuple[str, str, RewardDistribution]]:
        """(staking contract, staking address, distribution) in record order."""
        for contract, details in self.details_by_staking_contract.items():
            for address, distribution in details.distributions_by_staking_address.items():
                yield contract, address, distribution

    def payable_distributions(self) -> Iterator[Tuple[str, str, RewardDistribution]]:
        """Distributions with a positive amount, i.e. the transfers to make."""
        for contract, address, distribution in self.iter_distributions():
            if int(distribution.amount) > 0:
                yield contract, address, distribution

    @property
    def total_distribution(self) -> int:
        return sum(int(d.amount) for _, _, d in self.iter_distributions())

    @property
    def month(self) -> str:
        return datetime.fromtimestamp(self.start_timestamp / 1000, tz=timezone.utc).strftime("%B")


# ============================================================================
# METADATA
# ============================================================================

def next_epoch_window(end_timestamp: int) -> Tuple[int, int]:
    """Start/end (ms) of the calendar month following an epoch ending at `end_timestamp`."""
    start = end_timestamp + 1
    start_dt = datetime.fromtimestamp(start / 1000, tz=timezone.utc)
    year, month = (start_dt.year + 1, 1) if start_dt.month == 12 else (start_dt.year, start_dt.month + 1)
    end = int(datetime(year, month, 1, tzinfo=timezone.utc).timestamp() * 1000) - 1
    return start, end


@dataclass
class Metadata:
    """Program-wide state: the epoch currently accruing and where past epochs live."""
    epoch: int
    epoch_start_timestamp: int
    epoch_end_timestamp: int
    treasury_address: str
    burn_rate: float
    distribution_rate_by_staking_contract: Dict[str, float] = field(default_factory=dict)
    ipfs_hash_by_epoch: Dict[int, str] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            'epoch': self.epoch,
            'epochStartTimestamp': self.epoch_start_timestamp,
            'epochEndTimestamp': self.epoch_end_timestamp,
            'treasuryAddress': self.treasury_address,
            'burnRate': self.burn_rate,
            'distributionRateByStakingContract': dict(self.distribution_rate_by_staking_contract),
            'ipfsHashByEpoch': {str(n): h for n, h in sorted(self.ipfs_hash_by_epoch.items())},
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Metadata":
        where = "metadata"
        rates = _require(data, 'distributionRateByStakingContract', dict, where)
        hashes = _require(data, 'ipfsHashByEpoch', dict, where)
        for contract, rate in rates.items():
            if isinstance(rate, bool) or not isinstance(rate, (int, float)) or not 0 <= rate <= 1:
                raise SchemaError(f"{where}: invalid distribution rate {rate!r} for {contract}")
        try:
            ipfs_hash_by_epoch = {int(n): h for n, h in hashes.items()}
        except ValueError:
            raise SchemaError(f"{where}: ipfsHashByEpoch keys must be epoch numbers")
        if not all(isinstance(h, str) for h in ipfs_hash_by_epoch.values()):
            raise SchemaError(f"{where}: ipfsHashByEpoch values must be strings")
        return cls(
            epoch=_require(data, 'epoch', int, where),
            epoch_start_timestamp=_require(data, 'epochStartTimestamp', int, where),
            epoch_end_timestamp=_require(data, 'epochEndTimestamp', int, where),
            treasury_address=_require(data, 'treasuryAddress', str, where),
            burn_rate=_require(data, 'burnRate', float, where),
            distribution_rate_by_staking_contract={c.lower(): float(r) for c, r in rates.items()},
            ipfs_hash_by_epoch=ipfs_hash_by_epoch,
        )

    def advance(self, epoch_hash: str) -> "Metadata":
        """Metadata after the current epoch is processed and pinned as `epoch_hash`."""
        start, end = next_epoch_window(self.epoch_end_timestamp)
        hashes = dict(self.ipfs_hash_by_epoch)
        hashes[self.epoch] = epoch_hash
        return Metadata(
            epoch=self.epoch + 1,
            epoch_start_timestamp=start,
            epoch_end_timestamp=end,
            treasury_address=self.treasury_address,
            burn_rate=self.burn_rate,
            distribution_rate_by_staking_contract=dict(self.distribution_rate_by_staking_contract),
            ipfs_hash_by_epoch=hashes,
        )

    def with_epoch_hash(self, number: int, epoch_hash: str) -> "Metadata":
        """Same metadata with the record for epoch `number` replaced."""
        hashes = dict(self.ipfs_hash_by_epoch)
        hashes[number] = epoch_hash
        return Metadata(
            epoch=self.epoch,
            epoch_start_timestamp=self.epoch_start_timestamp,
            epoch_end_timestamp=self.epoch_end_timestamp,
            treasury_address=self.treasury_address,
            burn_rate=self.burn_rate,
            distribution_rate_by_staking_contract=dict(self.distribution_rate_by_staking_contract),
            ipfs_hash_by_epoch=hashes,
        )
