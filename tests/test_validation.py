"""
epochrewards/tests/test_validation.py

Tests for cross-checking replayed rewards against on-chain earned().
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from epochrewards.errors import ValidationMismatchError
from epochrewards.ledger.replay import EpochLedger
from epochrewards.ledger.validation import validate_epoch_rewards

from fakes import ALICE, BOB, CONTRACT, FakeEarnedChain


def make_ledger(reward_units):
    return EpochLedger(
        start_block=10,
        end_block=20,
        reward_units=reward_units,
        total_reward_units={},
        reward_addresses={},
    )


class TestValidateEpochRewards:
    """Test the earned() delta comparison."""

    def test_matching_deltas_pass(self):
        """Test every account matching returns the count checked."""
        chain = FakeEarnedChain({
            (ALICE, 9): 100, (ALICE, 20): 150,
            (BOB, 9): 0, (BOB, 20): 30,
        })
        assert validate_epoch_rewards(chain, CONTRACT, make_ledger({ALICE: 50, BOB: 30})) == 2

    def test_mismatch_raises(self):
        """Test a single off-by-one delta is fatal and names the account."""
        chain = FakeEarnedChain({
            (ALICE, 9): 100, (ALICE, 20): 150,
            (BOB, 9): 0, (BOB, 20): 31,
        })
        with pytest.raises(ValidationMismatchError) as exc:
            validate_epoch_rewards(chain, CONTRACT, make_ledger({ALICE: 50, BOB: 30}))

        assert exc.value.account == BOB
        assert exc.value.expected == 31
        assert exc.value.calculated == 30
        assert (exc.value.start_block, exc.value.end_block) == (10, 20)

    def test_zero_delta_accounts_checked(self):
        """Test accounts that earned nothing are still checked."""
        chain = FakeEarnedChain({(ALICE, 9): 5, (ALICE, 20): 6})
        with pytest.raises(ValidationMismatchError):
            validate_epoch_rewards(chain, CONTRACT, make_ledger({ALICE: 0}))

    def test_empty_ledger(self):
        """Test an empty ledger validates trivially."""
        assert validate_epoch_rewards(FakeEarnedChain({}), CONTRACT, make_ledger({})) == 0

    def test_shared_executor_left_running(self):
        """Test a caller-supplied executor is not shut down."""
        chain = FakeEarnedChain({(ALICE, 20): 4})
        with ThreadPoolExecutor(max_workers=2) as pool:
            validate_epoch_rewards(chain, CONTRACT, make_ledger({ALICE: 4}), executor=pool)
            assert pool.submit(lambda: 1).result() == 1
