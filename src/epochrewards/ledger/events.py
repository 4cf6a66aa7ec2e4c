"""
epochrewards/ledger/events.py

Staking event types and the log normalizer.

Raw eth_getLogs results are fetched in bounded, inclusive block pages,
decoded into a closed set of event variants, stamped with their block
timestamp and totally ordered by (block_number, log_index).

Event kinds:
- StakeEvent: balance increases, sets the payout (RUNE) address
- UnstakeEvent: balance decreases (amount carried negative)
- SetRewardAddressEvent: payout address changes, balance untouched

Any log whose topic0 is not a requested kind is rejected here rather than
ignored by the ledger.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple, TYPE_CHECKING

from ..config import GET_LOGS_BLOCK_STEP
from ..errors import ChainError, UnknownEventError
from ..evm.abi import (
    TOPIC_INITIALIZED,
    TOPIC_SET_RUNE_ADDRESS,
    TOPIC_STAKE,
    TOPIC_UNSTAKE,
    decode_string,
    decode_uint,
    split_words,
    topic_to_address,
)

if TYPE_CHECKING:
    from ..evm.client import ChainClient

logger = logging.getLogger("epochrewards.ledger.events")


# ============================================================================
# EVENT TYPES
# ============================================================================

@dataclass(frozen=True)
class StakingEvent:
    """Common fields of every staking event."""
    account: str
    block_number: int
    log_index: int
    timestamp: int

    @property
    def sort_key(self) -> Tuple[int, int]:
        return (self.block_number, self.log_index)

    @property
    def amount(self) -> int:
        """Signed change to the staked balance."""
        return 0


@dataclass(frozen=True)
class StakeEvent(StakingEvent):
    staked: int = 0
    reward_address: str = ""

    @property
    def amount(self) -> int:
        return self.staked


@dataclass(frozen=True)
class UnstakeEvent(StakingEvent):
    unstaked: int = 0

    @property
    def amount(self) -> int:
        return -self.unstaked


@dataclass(frozen=True)
class SetRewardAddressEvent(StakingEvent):
    reward_address: str = ""


EVENT_KINDS: Dict[str, str] = {
    "Stake": TOPIC_STAKE,
    "Unstake": TOPIC_UNSTAKE,
    "SetRuneAddress": TOPIC_SET_RUNE_ADDRESS,
}

ALL_KINDS: Tuple[str, ...] = tuple(EVENT_KINDS)


# ============================================================================
# DECODING
# ============================================================================

def _log_position(log: Dict[str, Any]) -> Tuple[int, int]:
    try:
        return int(log["blockNumber"], 16), int(log["logIndex"], 16)
    except (KeyError, TypeError, ValueError) as e:
        raise UnknownEventError(f"log without a position: {log!r:.200}") from e


def decode_log(log: Dict[str, Any], timestamp: int, topics: Sequence[str] = tuple(EVENT_KINDS.values())) -> StakingEvent:
    """
    Decode one raw log into a staking event.

    Raises UnknownEventError if the topic is not in `topics` or the payload
    does not match the event's ABI.
    """
    block_number, log_index = _log_position(log)
    raw_topics = log.get("topics") or []
    topic0 = str(raw_topics[0]).lower() if raw_topics else ""

    if topic0 not in topics:
        raise UnknownEventError(
            f"unexpected log topic {topic0 or '<none>'} at block {block_number} index {log_index}",
            block_number=block_number,
            log_index=log_index,
        )

    try:
        account = topic_to_address(str(raw_topics[1]))
        words = split_words(str(log.get("data") or "0x"))

        if topic0 == TOPIC_STAKE:
            return StakeEvent(
                account=account,
                block_number=block_number,
                log_index=log_index,
                timestamp=timestamp,
                staked=decode_uint(words[0]),
                reward_address=decode_string(words, decode_uint(words[1])),
            )
        if topic0 == TOPIC_UNSTAKE:
            return UnstakeEvent(
                account=account,
                block_number=block_number,
                log_index=log_index,
                timestamp=timestamp,
                unstaked=decode_uint(words[0]),
            )
        if topic0 == TOPIC_SET_RUNE_ADDRESS:
            return SetRewardAddressEvent(
                account=account,
                block_number=block_number,
                log_index=log_index,
                timestamp=timestamp,
                reward_address=decode_string(words, decode_uint(words[1])),
            )
    except (IndexError, ValueError, UnicodeDecodeError) as e:
        raise UnknownEventError(
            f"malformed log at block {block_number} index {log_index}: {e}",
            block_number=block_number,
            log_index=log_index,
        ) from e

    raise UnknownEventError(
        f"no decoder for topic {topic0}",
        block_number=block_number,
        log_index=log_index,
    )


# ============================================================================
# NORMALIZER
# ============================================================================

def block_ranges(from_block: int, to_block: int, step: int) -> Iterator[Tuple[int, int]]:
    """Split [from_block, to_block] into inclusive pages of at most `step` blocks."""
    if step < 1:
        raise ValueError("step must be >= 1")
    start = from_block
    while start <= to_block:
        end = min(start + step - 1, to_block)
        yield start, end
        start = end + 1


def fetch_staking_events(
    chain: "ChainClient",
    contract: str,
    from_block: int,
    to_block: int,
    kinds: Sequence[str] = ALL_KINDS,
    step: int = GET_LOGS_BLOCK_STEP,
) -> List[StakingEvent]:
    """
    Fetch, decode and totally order staking events for a closed block range.

    Any page or timestamp failure propagates; a partial event set is never
    returned.
    """
    if from_block > to_block:
        raise ValueError(f"from_block {from_block} > to_block {to_block}")
    unknown = [k for k in kinds if k not in EVENT_KINDS]
    if unknown:
        raise ValueError(f"unknown event kinds: {unknown}")

    topics = [EVENT_KINDS[k] for k in kinds]
    raw_logs: List[Dict[str, Any]] = []
    for page_from, page_to in block_ranges(from_block, to_block, step):
        page = chain.get_logs(contract, topics, page_from, page_to)
        for log in page:
            block_number, _ = _log_position(log)
            if not page_from <= block_number <= page_to:
                raise ChainError(f"log at block {block_number} outside page {page_from}..{page_to}")
        raw_logs.extend(page)
        logger.debug(f"fetched {len(page)} logs for blocks {page_from}..{page_to}")

    seen: Dict[Tuple[int, int], bool] = {}
    events: List[StakingEvent] = []
    for log in raw_logs:
        position = _log_position(log)
        if position in seen:
            raise UnknownEventError(
                f"duplicate log at block {position[0]} index {position[1]}",
                block_number=position[0],
                log_index=position[1],
            )
        seen[position] = True
        timestamp = chain.get_block_timestamp(position[0])
        events.append(decode_log(log, timestamp, topics))

    events.sort(key=lambda e: e.sort_key)
    logger.info(f"Fetched {len(events)} staking events for {contract} ({from_block}..{to_block})")
    return events


def find_contract_creation_block(chain: "ChainClient", contract: str, to_block: Optional[int] = None) -> int:
    """Block of the contract's first Initialized event."""
    to_block = chain.get_block_number() if to_block is None else to_block
    logs = chain.get_logs(contract, [TOPIC_INITIALIZED], 0, to_block)
    if not logs:
        raise ChainError(f"no Initialized event found for {contract}")
    return min(_log_position(log)[0] for log in logs)
