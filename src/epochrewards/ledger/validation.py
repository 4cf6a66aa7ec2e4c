"""
epochrewards/ledger/validation.py

Cross-check replayed epoch rewards against the contract's earned() view.

For every account in the replay output, the authoritative delta is
earned(end_block) - earned(start_block - 1). Any difference is fatal: it
means either a replay bug or an on-chain transition the replay does not
model, and the distribution must not go ahead.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import TYPE_CHECKING, Optional

from ..errors import ValidationMismatchError
from .replay import EpochLedger

if TYPE_CHECKING:
    from ..evm.client import ChainClient

logger = logging.getLogger("epochrewards.ledger.validation")


def validate_epoch_rewards(
    chain: "ChainClient",
    contract: str,
    ledger: EpochLedger,
    executor: Optional[ThreadPoolExecutor] = None,
) -> int:
    """
    Assert on-chain deltas equal `ledger.reward_units` for every account.

    The two reads for one account are issued together; accounts are checked
    one after another in ledger order. Returns the number of accounts checked.
    """
    previous_block = ledger.start_block - 1
    total = len(ledger.reward_units)
    own_executor = executor is None
    pool = executor or ThreadPoolExecutor(max_workers=2)

    try:
        for i, (account, calculated) in enumerate(ledger.reward_units.items(), start=1):
            before = pool.submit(chain.read_earned, contract, account, previous_block)
            after = pool.submit(chain.read_earned, contract, account, ledger.end_block)
            on_chain = after.result() - before.result()

            if on_chain != calculated:
                logger.error(
                    f"Reward mismatch for {account}: on-chain {on_chain}, replay {calculated}"
                )
                raise ValidationMismatchError(
                    account=account,
                    expected=on_chain,
                    calculated=calculated,
                    start_block=ledger.start_block,
                    end_block=ledger.end_block,
                )
            logger.debug(f"Validated {i}/{total} accounts")
    finally:
        if own_executor:
            pool.shutdown(wait=True)

    logger.info(f"Validation passed for {total} accounts on {contract}")
    return total
