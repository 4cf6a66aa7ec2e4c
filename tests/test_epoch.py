"""
epochrewards/tests/test_epoch.py

Tests for epoch records and program metadata.
"""

import copy

import pytest

from epochrewards.epoch import DistributionStatus, Epoch, Metadata, next_epoch_window
from epochrewards.errors import SchemaError

from fakes import ALICE, CONTRACT, JAN_2025_END, JAN_2025_START, RUNE_ALICE, make_epoch, make_metadata

FEB_2025_END = 1740787199999
DEC_2024_START = 1733011200000


class TestEpoch:
    """Test the epoch record."""

    def test_round_trip(self):
        """Test to_dict/from_dict preserves the record."""
        epoch = make_epoch()
        assert Epoch.from_dict(epoch.to_dict()) == epoch

    def test_complete_round_trip(self):
        """Test a completed epoch keeps its status through serialization."""
        epoch = make_epoch(DistributionStatus.COMPLETE)
        assert Epoch.from_dict(epoch.to_dict()).distribution_status is DistributionStatus.COMPLETE

    def test_wire_names(self):
        """Test the camelCase field names on the wire."""
        data = make_epoch().to_dict()
        assert data["distributionStatus"] == "pending"
        distribution = data["detailsByStakingContract"][CONTRACT]["distributionsByStakingAddress"][ALICE]
        assert distribution == {
            "amount": "90",
            "rewardUnits": "20",
            "totalRewardUnits": "50",
            "txId": "",
            "rewardAddress": RUNE_ALICE,
        }

    def test_missing_field(self):
        """Test a missing nested field raises SchemaError naming it."""
        data = make_epoch().to_dict()
        del data["detailsByStakingContract"][CONTRACT]["distributionsByStakingAddress"][ALICE]["rewardAddress"]

        with pytest.raises(SchemaError) as exc:
            Epoch.from_dict(data)
        assert "rewardAddress" in str(exc.value)

    def test_amount_must_be_integer_string(self):
        """Test amounts are base-unit integer strings."""
        data = make_epoch().to_dict()
        data["totalRevenue"] = "1.5"
        with pytest.raises(SchemaError):
            Epoch.from_dict(data)

    def test_number_type(self):
        """Test a numeric field sent as a string is refused."""
        data = make_epoch().to_dict()
        data["number"] = "3"
        with pytest.raises(SchemaError):
            Epoch.from_dict(data)

    def test_unknown_status(self):
        """Test an unknown distribution status is refused."""
        data = make_epoch().to_dict()
        data["distributionStatus"] = "paid"
        with pytest.raises(SchemaError):
            Epoch.from_dict(data)

    def test_not_an_object(self):
        """Test a non-object document is refused."""
        with pytest.raises(SchemaError):
            Epoch.from_dict(["not", "an", "epoch"])

    def test_payable_distributions(self):
        """Test only positive amounts are payable."""
        payable = list(make_epoch().payable_distributions())
        assert [(c, a) for c, a, _ in payable] == [(CONTRACT, ALICE)]
        assert len(list(make_epoch().iter_distributions())) == 2

    def test_total_distribution_and_month(self):
        """Test derived totals and the month name."""
        epoch = make_epoch()
        assert epoch.total_distribution == 90
        assert epoch.month == "January"


class TestMetadata:
    """Test program metadata."""

    def test_round_trip(self):
        """Test to_dict/from_dict preserves metadata with int epoch keys."""
        metadata = make_metadata()
        data = metadata.to_dict()
        assert data["ipfsHashByEpoch"] == {"0": "Qm0", "1": "Qm1", "2": "Qm2"}
        assert Metadata.from_dict(data) == metadata

    def test_rate_out_of_range(self):
        """Test a distribution rate above 1 is refused."""
        data = make_metadata().to_dict()
        data["distributionRateByStakingContract"][CONTRACT] = 1.5
        with pytest.raises(SchemaError):
            Metadata.from_dict(data)

    def test_rate_bool_refused(self):
        """Test a boolean is not accepted as a rate."""
        data = make_metadata().to_dict()
        data["distributionRateByStakingContract"][CONTRACT] = True
        with pytest.raises(SchemaError):
            Metadata.from_dict(data)

    def test_bad_epoch_key(self):
        """Test ipfsHashByEpoch keys must be numbers."""
        data = make_metadata().to_dict()
        data["ipfsHashByEpoch"]["latest"] = "QmX"
        with pytest.raises(SchemaError):
            Metadata.from_dict(data)

    def test_contract_keys_lowercased(self):
        """Test contract addresses are normalized on read."""
        data = make_metadata().to_dict()
        data["distributionRateByStakingContract"] = {CONTRACT.upper().replace("0X", "0x"): 0.1}
        assert Metadata.from_dict(data).distribution_rate_by_staking_contract == {CONTRACT: 0.1}

    def test_advance(self):
        """Test advancing moves to the next calendar month and records the hash."""
        metadata = make_metadata()
        before = copy.deepcopy(metadata)
        advanced = metadata.advance("Qm3")

        assert advanced.epoch == 4
        assert advanced.epoch_start_timestamp == JAN_2025_END + 1
        assert advanced.epoch_end_timestamp == FEB_2025_END
        assert advanced.ipfs_hash_by_epoch[3] == "Qm3"
        assert metadata == before

    def test_with_epoch_hash(self):
        """Test replacing one epoch's record keeps everything else."""
        updated = make_metadata().with_epoch_hash(2, "Qm2-complete")
        assert updated.ipfs_hash_by_epoch == {0: "Qm0", 1: "Qm1", 2: "Qm2-complete"}
        assert updated.epoch == 3


class TestNextEpochWindow:
    """Test calendar month windows."""

    def test_january_to_february(self):
        """Test the window after January 2025."""
        assert next_epoch_window(JAN_2025_END) == (JAN_2025_END + 1, FEB_2025_END)

    def test_december_to_january(self):
        """Test the window after December 2024 is January 2025."""
        assert next_epoch_window(JAN_2025_START - 1) == (JAN_2025_START, JAN_2025_END)

    def test_year_end_month(self):
        """Test a window starting in December ends on the last millisecond of the year."""
        assert next_epoch_window(DEC_2024_START - 1) == (DEC_2024_START, JAN_2025_START - 1)
