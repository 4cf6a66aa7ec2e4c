"""
epochrewards/ledger/allocation.py

Largest-remainder allocation of an integer payout.

Each account's base allocation is its exact share (Fraction arithmetic)
rounded to the nearest integer, ties toward -infinity. Whatever is left over
(positive or negative) is handed out one base unit at a time, cycling over
accounts ordered by share descending. Equal shares keep the input order,
so callers control the tie-break through mapping order.
"""

import logging
import math
from fractions import Fraction
from typing import Dict, Mapping

from ..errors import AllocationError, NoEarnersError

logger = logging.getLogger("epochrewards.ledger.allocation")

HALF = Fraction(1, 2)


def round_half_floor(value: Fraction) -> int:
    """Nearest integer; exact halves round toward -infinity."""
    return math.ceil(value - HALF)


def allocate(total: int, earned_by_account: Mapping[str, int]) -> Dict[str, int]:
    """
    Split `total` base units across accounts in proportion to earned units.

    Returns an allocation for every input account, in input order. The sum
    always equals `total`; accounts that earned nothing receive 0.
    """
    if total < 0:
        raise ValueError(f"total to distribute must be >= 0, got {total}")
    for account, earned in earned_by_account.items():
        if earned < 0:
            raise ValueError(f"earned units for {account} must be >= 0, got {earned}")

    if total == 0:
        return {account: 0 for account in earned_by_account}

    total_earned = sum(earned_by_account.values())
    if total_earned == 0:
        raise NoEarnersError(f"nothing to allocate {total} to: no account earned rewards")

    shares = {account: Fraction(earned, total_earned) for account, earned in earned_by_account.items()}
    allocation = {account: round_half_floor(share * total) for account, share in shares.items()}

    remainder = total - sum(allocation.values())
    if remainder:
        # sorted() is stable: equal shares keep input order
        ranked = sorted(
            (account for account, share in shares.items() if share > 0),
            key=lambda account: shares[account],
            reverse=True,
        )
        logger.debug(f"Distributing remainder of {remainder} across {len(ranked)} accounts")
        step = 1 if remainder > 0 else -1
        i = 0
        while remainder:
            allocation[ranked[i]] += step
            remainder -= step
            i = (i + 1) % len(ranked)

    assert_valid_allocation(allocation, total, earned_by_account)
    return allocation


def assert_valid_allocation(
    allocation: Mapping[str, int],
    total: int,
    earned_by_account: Mapping[str, int] = None,
) -> None:
    """Raise AllocationError unless the allocation conserves `total` exactly."""
    allocated = sum(allocation.values())
    if allocated != total:
        raise AllocationError(f"Expected total allocated amount to be {total}, got {allocated}")

    for account, amount in allocation.items():
        if amount < 0:
            raise AllocationError(f"negative allocation {amount} for {account}")
        if earned_by_account is not None and earned_by_account.get(account, 0) == 0 and amount != 0:
            raise AllocationError(f"{account} earned nothing but was allocated {amount}")
