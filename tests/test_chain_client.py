"""
epochrewards/tests/test_chain_client.py

Tests for the JSON-RPC chain client.
"""

import pytest
import requests
from unittest.mock import Mock

from epochrewards.errors import ChainError, TransientError
from epochrewards.evm.abi import SELECTOR_EARNED, SELECTOR_STAKING_INFO
from epochrewards.evm.client import ChainClient
from epochrewards.retry import RetryPolicy

from fakes import ALICE, CONTRACT, json_response, rpc_handler_session, string_words, word


NO_WAIT = RetryPolicy(interval=0, max_attempts=3)


def rpc_result(result, request_id=1):
    return json_response({"jsonrpc": "2.0", "id": request_id, "result": result})


def block_chain(latest=100, genesis=1000, spacing=10):
    """Handler serving blocks with timestamp genesis + spacing * n."""
    calls = []

    def handler(method, params):
        calls.append((method, params))
        if method == "eth_getBlockByNumber":
            tag = params[0]
            number = latest if tag == "latest" else int(tag, 16)
            return {"number": hex(number), "timestamp": hex(genesis + spacing * number)}
        if method == "eth_blockNumber":
            return hex(latest)
        raise AssertionError(f"unexpected method {method}")

    return handler, calls


class TestTransport:
    """Test retry and error classification."""

    def test_returns_result(self):
        """Test a successful call returns the result field."""
        session = Mock()
        session.post.return_value = rpc_result("0x10")
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        assert client.get_block_number() == 16

    def test_retries_rate_limit(self):
        """Test HTTP 429 is retried until success."""
        session = Mock()
        session.post.side_effect = [json_response({}, status_code=429), rpc_result("0x2")]
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        assert client.get_block_number() == 2
        assert session.post.call_count == 2

    def test_retries_transport_error(self):
        """Test connection errors are retried."""
        session = Mock()
        session.post.side_effect = [requests.ConnectionError("reset"), rpc_result("0x3")]
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        assert client.get_block_number() == 3

    def test_exhausted_retries_raise_transient(self):
        """Test the last transient error escapes once attempts run out."""
        session = Mock()
        session.post.return_value = json_response({}, status_code=503)
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        with pytest.raises(TransientError):
            client.get_block_number()
        assert session.post.call_count == 3

    def test_client_error_not_retried(self):
        """Test HTTP 400 fails immediately."""
        session = Mock()
        session.post.return_value = json_response({}, status_code=400)
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        with pytest.raises(ChainError) as exc:
            client.get_block_number()
        assert not isinstance(exc.value, TransientError)
        assert exc.value.status_code == 400
        assert session.post.call_count == 1

    def test_revert_not_retried(self):
        """Test an execution revert is a permanent error."""
        session = Mock()
        session.post.return_value = json_response(
            {"jsonrpc": "2.0", "id": 1, "error": {"code": 3, "message": "execution reverted"}}
        )
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        with pytest.raises(ChainError) as exc:
            client.eth_call(CONTRACT, "0x", 1)
        assert not isinstance(exc.value, TransientError)

    def test_rate_limit_rpc_error_retried(self):
        """Test a rate-limit RPC error is retried."""
        session = Mock()
        session.post.side_effect = [
            json_response({"jsonrpc": "2.0", "id": 1, "error": {"code": -32005, "message": "rate limit exceeded"}}),
            rpc_result("0x4"),
        ]
        client = ChainClient("http://rpc", retry=NO_WAIT, session=session)

        assert client.get_block_number() == 4


class TestBlocks:
    """Test block lookups and timestamp search."""

    def test_get_block_caches_timestamp(self):
        """Test timestamps fetched once are served from cache."""
        handler, calls = block_chain()
        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))

        assert client.get_block(5) == {"number": 5, "timestamp": 1050}
        assert client.get_block_timestamp(5) == 1050
        assert len(calls) == 1

    def test_find_earliest(self):
        """Test the first block at or after a timestamp."""
        handler, _ = block_chain()
        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))

        assert client.find_block_by_timestamp(1055, "earliest") == 6
        assert client.find_block_by_timestamp(1050, "earliest") == 5

    def test_find_latest(self):
        """Test the last block at or before a timestamp."""
        handler, _ = block_chain()
        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))

        assert client.find_block_by_timestamp(1055, "latest") == 5
        assert client.find_block_by_timestamp(1050, "latest") == 5
        assert client.find_block_by_timestamp(2000, "latest") == 100

    def test_find_before_genesis(self):
        """Test a target before the first block resolves to the first block."""
        handler, _ = block_chain()
        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))

        assert client.find_block_by_timestamp(500, "earliest") == 0

    def test_find_future_timestamp(self):
        """Test a timestamp past the chain head is refused."""
        handler, _ = block_chain()
        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))

        with pytest.raises(ChainError):
            client.find_block_by_timestamp(3000, "latest")

    def test_find_invalid_mode(self):
        """Test an unknown search mode is rejected."""
        client = ChainClient("http://rpc", retry=NO_WAIT, session=Mock())
        with pytest.raises(ValueError):
            client.find_block_by_timestamp(1000, "middle")


class TestContractReads:
    """Test eth_call encoding and decoding."""

    def test_read_earned(self):
        """Test earned() call data and historical block tag."""
        seen = {}

        def handler(method, params):
            seen["method"] = method
            seen["params"] = params
            return "0x" + word(12345)

        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))

        assert client.read_earned(CONTRACT, ALICE, 77) == 12345
        call, block = seen["params"]
        assert seen["method"] == "eth_call"
        assert call["to"] == CONTRACT
        assert call["data"] == SELECTOR_EARNED + "0" * 24 + ALICE[2:]
        assert block == hex(77)

    def test_read_staking_info(self):
        """Test decoding the stakingInfo() tuple with its string member."""
        rune = "thor1" + "z" * 38

        def handler(method, params):
            assert params[0]["data"].startswith(SELECTOR_STAKING_INFO)
            return "0x" + word(100) + word(5) + word(9) + word(3) + word(160) + string_words(rune)

        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))
        info = client.read_staking_info(CONTRACT, ALICE, 1)

        assert info["staking_balance"] == 100
        assert info["unstaking_balance"] == 5
        assert info["earned_rewards"] == 9
        assert info["reward_per_token_stored"] == 3
        assert info["rune_address"] == rune
        assert client.read_staking_balance(CONTRACT, ALICE, 1) == 100

    def test_get_logs_request(self):
        """Test eth_getLogs filter shape."""
        seen = {}

        def handler(method, params):
            seen["filter"] = params[0]
            return []

        client = ChainClient("http://rpc", retry=NO_WAIT, session=rpc_handler_session(handler))
        assert client.get_logs(CONTRACT, ["0xaa", "0xbb"], 10, 20) == []
        assert seen["filter"] == {
            "address": CONTRACT,
            "fromBlock": hex(10),
            "toBlock": hex(20),
            "topics": [["0xaa", "0xbb"]],
        }
