"""
epochrewards/tests/test_state.py

Tests for payout workflow state and its atomic file store.
"""

import json
import os
import tempfile
from pathlib import Path

import pytest

from epochrewards.errors import ResumeError
from epochrewards.payout.state import (
    EpochStateStore,
    PayoutPhase,
    PayoutRecord,
    PayoutWorkflowState,
    state_key,
    unsigned_funding_key,
)

from fakes import ALICE, CONTRACT, RUNE_ALICE, make_epoch

WALLET = "thor1hotwallet"


@pytest.fixture
def store():
    with tempfile.TemporaryDirectory() as tmp:
        yield EpochStateStore(Path(tmp) / "rfox")


def make_state():
    return PayoutWorkflowState.for_epoch(make_epoch(), "QmEpoch3", WALLET)


class TestPayoutWorkflowState:
    """Test the in-memory workflow state."""

    def test_for_epoch(self):
        """Test one record per positive distribution."""
        state = make_state()

        assert state.phase is PayoutPhase.IDLE
        assert state.total == 1
        record = state.records[0]
        assert (record.staking_contract, record.staking_address) == (CONTRACT, ALICE)
        assert record.amount == 90
        assert record.reward_address == RUNE_ALICE
        assert not record.signed and not record.broadcast

    def test_for_epoch_keeps_existing_tx_ids(self):
        """Test distributions already carrying a tx id start as broadcast."""
        epoch = make_epoch()
        epoch.details_by_staking_contract[CONTRACT].distributions_by_staking_address[ALICE].tx_id = "ABC"

        state = PayoutWorkflowState.for_epoch(epoch, "QmEpoch3", WALLET)
        assert state.broadcast_count == 1

    def test_counts(self):
        """Test signed and broadcast counters."""
        state = make_state()
        state.records.append(PayoutRecord(CONTRACT, "0xbeef", 10, "thor1x", signed_tx="c2ln"))

        assert state.total == 2
        assert state.signed_count == 1
        assert state.broadcast_count == 0
        assert state.total_amount == 100

    def test_advance_forward(self):
        """Test forward transitions, including staying in place."""
        state = make_state()
        state.advance_to(PayoutPhase.FUNDING)
        state.advance_to(PayoutPhase.FUNDING)
        state.advance_to(PayoutPhase.BROADCASTING)
        assert state.phase is PayoutPhase.BROADCASTING

    def test_advance_backward_refused(self):
        """Test a phase can never move backward."""
        state = make_state()
        state.advance_to(PayoutPhase.SIGNING)
        with pytest.raises(ResumeError):
            state.advance_to(PayoutPhase.FUNDING)

    def test_round_trip(self):
        """Test to_dict/from_dict preserves every field."""
        state = make_state()
        state.advance_to(PayoutPhase.SIGNING)
        state.funding_amount = 2000090
        state.account_number = 42
        state.base_sequence = 7
        state.records[0].sequence = 7
        state.records[0].signed_tx = "c2lnbmVk"

        data = state.to_dict()
        assert data["version"] == 1
        assert data["records"][0]["amount"] == "90"
        assert PayoutWorkflowState.from_dict(data) == state

    def test_version_mismatch(self):
        """Test an unknown state version refuses to load."""
        data = make_state().to_dict()
        data["version"] = 99
        with pytest.raises(ResumeError):
            PayoutWorkflowState.from_dict(data)


class TestEpochStateStore:
    """Test the atomic file store."""

    def test_key_names(self):
        """Test the per-epoch file names."""
        assert state_key(5) == "state_epoch-5.json"
        assert unsigned_funding_key(5) == "unsignedTx_epoch-5.json"

    def test_creates_root(self, store):
        """Test the root directory is created."""
        assert store.root.is_dir()

    def test_write_read(self, store):
        """Test bytes round-trip and no temp file is left behind."""
        store.write("a.json", b"one")
        store.write("a.json", b"two")

        assert store.read("a.json") == b"two"
        assert os.listdir(store.root) == ["a.json"]

    def test_read_missing(self, store):
        """Test a missing key reads as None."""
        assert store.read("missing.json") is None
        assert not store.exists("missing.json")

    @pytest.mark.parametrize("key", ["../escape.json", "sub/dir.json", ".hidden"])
    def test_invalid_keys(self, store, key):
        """Test keys cannot escape the root or collide with temp files."""
        with pytest.raises(ValueError):
            store.path(key)

    def test_failed_write_keeps_previous(self, store, monkeypatch):
        """Test a failure before the rename leaves the old document and no temp file."""
        store.write("a.json", b"old")

        def broken_replace(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", broken_replace)
        with pytest.raises(OSError):
            store.write("a.json", b"new")

        assert store.read("a.json") == b"old"
        assert os.listdir(store.root) == ["a.json"]

    def test_state_round_trip(self, store):
        """Test saving and loading workflow state."""
        state = make_state()
        assert store.load_state(3) is None
        assert not store.has_state(3)

        store.save_state(state)

        assert store.has_state(3)
        loaded = store.load_state(3)
        assert loaded == state
        assert loaded.updated_at > 0

    def test_corrupt_state(self, store):
        """Test corrupt JSON raises ResumeError and the file is kept."""
        store.write(state_key(3), b"{not json")

        with pytest.raises(ResumeError):
            store.load_state(3)
        assert store.read(state_key(3)) == b"{not json"

    def test_incomplete_state(self, store):
        """Test a document missing required fields raises ResumeError."""
        store.write(state_key(3), json.dumps({"version": 1}).encode())
        with pytest.raises(ResumeError):
            store.load_state(3)

    def test_epoch_mismatch(self, store):
        """Test a state file holding another epoch's state is refused."""
        data = make_state().to_dict()
        store.write(state_key(4), json.dumps(data).encode())

        with pytest.raises(ResumeError):
            store.load_state(4)

    def test_unsigned_funding_tx(self, store):
        """Test the unsigned funding document is written where the operator expects it."""
        path = store.save_unsigned_funding_tx(3, {"msgs": []})

        assert path == store.root / "unsignedTx_epoch-3.json"
        assert json.loads(path.read_text()) == {"msgs": []}
