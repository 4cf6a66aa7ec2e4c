"""
epochrewards/tests/test_thornode.py

Tests for the THORNode client.
"""

import base64
import hashlib

import pytest
import requests
from unittest.mock import Mock

from epochrewards.errors import ChainError, TransientError
from epochrewards.payout.thornode import BroadcastOutcome, ThornodeClient, tx_hash

from fakes import json_response

SIGNED = base64.b64encode(b"signed-transfer").decode()


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def thornode(session):
    return ThornodeClient("https://thornode.example/", session=session)


def broadcast_response(code, txid="", log=""):
    return json_response({"jsonrpc": "2.0", "id": "x", "result": {"code": code, "hash": txid, "log": log}})


class TestQueries:
    """Test funding search and account lookup."""

    def test_funding_not_found(self, thornode, session):
        """Test zero matches means not funded yet."""
        session.request.return_value = json_response({"result": {"total_count": "0", "txs": []}})

        assert thornode.find_funding_tx("thor1hot", 2000090) is None
        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://thornode.example/rpc/tx_search")
        query = session.request.call_args.kwargs["params"]["query"]
        assert query == "\"transfer.recipient='thor1hot' AND transfer.amount='2000090rune'\""

    def test_funding_found(self, thornode, session):
        """Test a match returns the funding hash."""
        session.request.return_value = json_response({"result": {"total_count": "1", "txs": [{"hash": "F00D"}]}})
        assert thornode.find_funding_tx("thor1hot", 5) == "F00D"

    def test_funding_counted_but_not_listed(self, thornode, session):
        """Test a count without a listed hash keeps polling instead of reading as funded."""
        session.request.return_value = json_response({"result": {"total_count": "1", "txs": []}})
        assert thornode.find_funding_tx("thor1hot", 5) is None

    def test_funding_query_failure(self, thornode, session):
        """Test a failed query raises instead of reading as not funded."""
        session.request.side_effect = requests.ConnectionError("down")
        with pytest.raises(TransientError):
            thornode.find_funding_tx("thor1hot", 5)

    def test_find_tx_committed(self, thornode, session):
        """Test a known hash is found through the rpc tx endpoint."""
        session.request.return_value = json_response({"result": {"hash": "ABCD", "height": "100"}})

        assert thornode.find_tx("ABCD")
        assert session.request.call_args.args == ("GET", "https://thornode.example/rpc/tx")
        assert session.request.call_args.kwargs["params"] == {"hash": "0xABCD"}

    def test_find_tx_not_found(self, thornode, session):
        """Test the node's not-found error reads as not committed."""
        session.request.return_value = json_response(
            {"error": {"code": -32603, "message": "Internal error", "data": "tx (ABCD) not found"}},
            status_code=500,
        )
        assert not thornode.find_tx("ABCD")

    def test_find_tx_other_error(self, thornode, session):
        """Test any other lookup error is transient, never read as not committed."""
        session.request.return_value = json_response(
            {"error": {"code": -32603, "message": "Internal error", "data": "height is not available"}},
            status_code=500,
        )
        with pytest.raises(TransientError):
            thornode.find_tx("ABCD")

    def test_find_tx_unavailable(self, thornode, session):
        """Test a gateway error without a JSON-RPC body is transient."""
        session.request.return_value = json_response(ValueError("not json"), status_code=502)
        with pytest.raises(TransientError):
            thornode.find_tx("ABCD")

    def test_get_account(self, thornode, session):
        """Test account number and sequence parsing."""
        session.request.return_value = json_response(
            {"account": {"address": "thor1hot", "account_number": "123", "sequence": "9"}}
        )
        account = thornode.get_account("thor1hot")
        assert (account.account_number, account.sequence) == (123, 9)
        assert session.request.call_args.args[1] == (
            "https://thornode.example/lcd/cosmos/auth/v1beta1/accounts/thor1hot"
        )

    def test_get_account_new_wallet(self, thornode, session):
        """Test a wallet that never sent has sequence 0."""
        session.request.return_value = json_response({"account": {"account_number": "5"}})
        assert thornode.get_account("thor1hot").sequence == 0

    def test_get_account_malformed(self, thornode, session):
        """Test a response without an account number raises."""
        session.request.return_value = json_response({"account": {}})
        with pytest.raises(ChainError):
            thornode.get_account("thor1hot")


class TestSubmit:
    """Test broadcast outcome classification."""

    def test_accepted(self, thornode, session):
        """Test code 0 with a hash is accepted."""
        session.request.return_value = broadcast_response(0, "ABCD")

        result = thornode.submit(SIGNED)

        assert result.accepted
        assert result.tx_id == "ABCD"
        body = session.request.call_args.kwargs["json"]
        assert body["method"] == "broadcast_tx_sync"
        assert body["params"] == {"tx": SIGNED}

    def test_already_in_mempool(self, thornode, session):
        """Test code 19 counts as accepted with the computed hash."""
        session.request.return_value = broadcast_response(19, log="tx already exists in cache")

        result = thornode.submit(SIGNED)

        assert result.outcome is BroadcastOutcome.ACCEPTED
        assert result.tx_id == hashlib.sha256(b"signed-transfer").hexdigest().upper()

    def test_mempool_full_is_transient(self, thornode, session):
        """Test code 20 is retried."""
        session.request.return_value = broadcast_response(20, log="mempool is full")
        assert thornode.submit(SIGNED).outcome is BroadcastOutcome.TRANSIENT

    def test_sequence_mismatch_rejected(self, thornode, session):
        """Test other non-zero codes are rejected with the node log."""
        session.request.return_value = broadcast_response(32, log="account sequence mismatch")

        result = thornode.submit(SIGNED)

        assert result.outcome is BroadcastOutcome.REJECTED
        assert result.code == 32
        assert "sequence" in result.log

    def test_transport_error_is_transient(self, thornode, session):
        """Test a network failure is transient, never raised."""
        session.request.side_effect = requests.Timeout("slow")
        assert thornode.submit(SIGNED).outcome is BroadcastOutcome.TRANSIENT

    def test_http_client_error_rejected(self, thornode, session):
        """Test HTTP 400 is rejected."""
        session.request.return_value = json_response({}, status_code=400)
        assert thornode.submit(SIGNED).outcome is BroadcastOutcome.REJECTED

    def test_rpc_error_is_transient(self, thornode, session):
        """Test a JSON-RPC level error is transient."""
        session.request.return_value = json_response({"jsonrpc": "2.0", "id": "x", "error": {"code": -32603}})
        assert thornode.submit(SIGNED).outcome is BroadcastOutcome.TRANSIENT

    def test_already_in_cache_error(self, thornode, session):
        """Test a resubmitted transaction reported as an RPC error counts as accepted."""
        session.request.return_value = json_response(
            {
                "jsonrpc": "2.0",
                "id": "x",
                "error": {"code": -32603, "message": "Internal error", "data": "tx already exists in cache"},
            },
            status_code=500,
        )

        result = thornode.submit(SIGNED)

        assert result.outcome is BroadcastOutcome.ACCEPTED
        assert result.tx_id == tx_hash(SIGNED)

    def test_tx_hash(self):
        """Test the hash is upper-case sha256 of the decoded bytes."""
        assert tx_hash(SIGNED) == hashlib.sha256(b"signed-transfer").hexdigest().upper()
