"""
epochrewards/process.py

Epoch processing: turn a finished epoch into a pinned, pending distribution.

Steps:
1. Refuse if the current epoch has not ended
2. Fetch affiliate revenue for the epoch window
3. Find the epoch's first and last blocks by timestamp
4. Per staking contract: replay events, cross-validate, allocate
5. Pin the pending epoch record
6. Advance metadata to the next monthly epoch and pin it
"""

import logging
import time
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext
from fractions import Fraction
from typing import Callable, Dict, Optional

from .archive import EpochArchive
from .config import REWARD_RATE, REWARD_UNITS_MARGIN, STAKING_CONTRACTS
from .epoch import DistributionStatus, Epoch, EpochDetails, Metadata, RewardDistribution
from .errors import DataIntegrityError, EpochNotEndedError
from .evm.client import ChainClient
from .ledger import (
    EpochLedger,
    allocate,
    epoch_reward_deltas,
    fetch_staking_events,
    find_contract_creation_block,
    validate_epoch_rewards,
)
from .payout.wallet import is_valid_address
from .revenue import RevenueClient

logger = logging.getLogger("epochrewards.process")


def share_of(amount: str, rate: float) -> int:
    """`amount * rate` rounded to a whole base unit, halves away from zero."""
    with localcontext() as ctx:
        ctx.prec = len(amount) + 32
        return int((Decimal(amount) * Decimal(str(rate))).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def reward_units_within_margin(total_reward_units: int, seconds_in_epoch: int, reward_rate: int = REWARD_RATE) -> bool:
    """Whether replayed units are within the tolerated drift of rate * seconds."""
    expected = reward_rate * seconds_in_epoch
    return abs(expected - total_reward_units) < Fraction(REWARD_UNITS_MARGIN) * expected


def build_distributions(ledger: EpochLedger, total_distribution: int) -> Dict[str, RewardDistribution]:
    """Allocate `total_distribution` over the ledger's earners."""
    earners = ledger.earners()
    if not earners:
        logger.warning(f"No account earned rewards in blocks {ledger.start_block}..{ledger.end_block}")
        return {}

    allocation = allocate(total_distribution, earners)

    distributions: Dict[str, RewardDistribution] = {}
    for account, amount in allocation.items():
        reward_address = ledger.reward_addresses.get(account, "")
        if not reward_address:
            raise DataIntegrityError(f"no reward address set for {account}", account=account)
        if not is_valid_address(reward_address):
            raise DataIntegrityError(f"invalid reward address {reward_address!r} for {account}", account=account)
        distributions[account] = RewardDistribution(
            amount=str(amount),
            reward_units=str(ledger.reward_units[account]),
            total_reward_units=str(ledger.total_reward_units[account]),
            reward_address=reward_address,
        )
    return distributions


@dataclass
class ProcessResult:
    epoch: Epoch
    epoch_hash: str
    metadata: Metadata
    metadata_hash: str


class EpochProcessor:
    """
    Computes the pending distribution for the epoch named by metadata.

    Example:
        processor = EpochProcessor(chain, revenue, archive)
        result = processor.process(archive.get_metadata(metadata_hash))
    """

    def __init__(
        self,
        chain: ChainClient,
        revenue: RevenueClient,
        archive: EpochArchive,
        staking_contracts=STAKING_CONTRACTS,
        clock: Callable[[], float] = time.time,
    ):
        self.chain = chain
        self.revenue = revenue
        self.archive = archive
        self.staking_contracts = [c.lower() for c in staking_contracts]
        self._clock = clock

    def calculate_contract(
        self,
        contract: str,
        start_block: int,
        end_block: int,
        seconds_in_epoch: int,
        total_distribution: int,
        distribution_rate: float,
    ) -> EpochDetails:
        """Replay, validate and allocate one staking contract's share."""
        logger.info(f"Calculating reward distribution for staking contract: {contract}")

        creation_block = find_contract_creation_block(self.chain, contract, end_block)
        events = fetch_staking_events(self.chain, contract, creation_block, end_block)

        ledger = epoch_reward_deltas(
            events,
            creation_timestamp=self.chain.get_block_timestamp(creation_block),
            start_block=start_block,
            start_boundary_timestamp=self.chain.get_block_timestamp(start_block - 1),
            end_block=end_block,
            end_timestamp=self.chain.get_block_timestamp(end_block),
        )
        validate_epoch_rewards(self.chain, contract, ledger)

        total_units = ledger.epoch_reward_units
        if not reward_units_within_margin(total_units, seconds_in_epoch):
            logger.warning(
                f"Total reward units for {contract} ({total_units}) are outside the expected "
                f".01% margin of {REWARD_RATE * seconds_in_epoch}"
            )

        distributions = build_distributions(ledger, total_distribution)
        logger.info(f"Total addresses receiving rewards from {contract}: {len(distributions)}")

        return EpochDetails(
            total_reward_units=str(total_units),
            distribution_rate=distribution_rate,
            distributions_by_staking_address=distributions,
        )

    def process(self, metadata: Metadata) -> ProcessResult:
        now_ms = int(self._clock() * 1000)
        if metadata.epoch_end_timestamp > now_ms:
            raise EpochNotEndedError(metadata.epoch, metadata.epoch_end_timestamp - now_ms)

        logger.info(f"Processing rFOX Epoch #{metadata.epoch}")

        revenue = self.revenue.get_revenue(metadata.epoch_start_timestamp, metadata.epoch_end_timestamp)
        logger.info(
            f"Share of total revenue to buy back fox and burn: {metadata.burn_rate * 100}% "
            f"({share_of(revenue.amount, metadata.burn_rate)} base units)"
        )

        start_block = self.chain.find_block_by_timestamp(metadata.epoch_start_timestamp // 1000, "earliest")
        end_block = self.chain.find_block_by_timestamp(metadata.epoch_end_timestamp // 1000, "latest")
        logger.info(f"Start Block: {start_block}")
        logger.info(f"End Block: {end_block}")

        seconds_in_epoch = (metadata.epoch_end_timestamp - metadata.epoch_start_timestamp) // 1000

        details: Dict[str, EpochDetails] = {}
        for contract in self.staking_contracts:
            rate = metadata.distribution_rate_by_staking_contract.get(contract, 0.0)
            total_distribution = share_of(revenue.amount, rate)
            logger.info(
                f"Staking contract {contract}: {rate * 100}% of revenue, "
                f"{total_distribution} base units to distribute"
            )
            details[contract] = self.calculate_contract(
                contract, start_block, end_block, seconds_in_epoch, total_distribution, rate,
            )

        epoch = Epoch(
            number=metadata.epoch,
            start_timestamp=metadata.epoch_start_timestamp,
            end_timestamp=metadata.epoch_end_timestamp,
            distribution_timestamp=metadata.epoch_end_timestamp + 1,
            start_block=start_block,
            end_block=end_block,
            treasury_address=metadata.treasury_address,
            total_revenue=revenue.amount,
            burn_rate=metadata.burn_rate,
            distribution_status=DistributionStatus.PENDING,
            details_by_staking_contract=details,
        )
        epoch_hash = self.archive.add_epoch(epoch)

        next_metadata = metadata.advance(epoch_hash)
        metadata_hash = self.archive.add_metadata(next_metadata)

        logger.info(f"rFOX Epoch #{metadata.epoch} has been processed")
        return ProcessResult(epoch=epoch, epoch_hash=epoch_hash, metadata=next_metadata, metadata_hash=metadata_hash)


def previous_epoch(archive: EpochArchive, metadata: Metadata, number: Optional[int] = None) -> Epoch:
    """The epoch awaiting distribution (metadata.epoch - 1 unless given)."""
    number = metadata.epoch - 1 if number is None else number
    epoch_hash = metadata.ipfs_hash_by_epoch.get(number)
    if not epoch_hash:
        raise DataIntegrityError(f"No IPFS hash found for epoch {number}")
    return archive.get_epoch(epoch_hash)
