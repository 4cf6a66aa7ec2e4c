"""
epochrewards/evm/client.py

JSON-RPC client for the EVM chain hosting the staking contracts.

Provides:
- Block and timestamp lookups (with a per-client timestamp cache)
- eth_getLogs for a closed block range
- eth_call at a historical block (earned(), stakingInfo())
- Block-by-timestamp search

Transient failures (HTTP 429/5xx, timeouts, rate limits) are retried with
exponential backoff; anything else raises ChainError immediately.
"""

import logging
from typing import Any, Dict, List, Optional

import requests

from ..errors import ChainError, TransientError
from ..retry import RetryPolicy, retry_sync
from .abi import (
    SELECTOR_EARNED,
    SELECTOR_STAKING_INFO,
    decode_string,
    decode_uint,
    encode_call,
    normalize_address,
    split_words,
)

logger = logging.getLogger("epochrewards.evm.client")


# ============================================================================
# CONFIGURATION
# ============================================================================

USER_AGENT = "epochrewards/1.0"
DEFAULT_TIMEOUT = 45
DEFAULT_RETRY = RetryPolicy(interval=0.5, max_attempts=6, backoff=2.0, max_interval=30.0, jitter=0.15)

RETRYABLE_HTTP = {429, 500, 502, 503, 504}
RETRYABLE_MESSAGES = (
    "timeout",
    "timed out",
    "too many requests",
    "rate limit",
    "temporarily unavailable",
    "service unavailable",
    "header not found",
)


def _is_retryable_rpc_error(err: Any) -> bool:
    if not isinstance(err, dict):
        return True
    msg = str(err.get("message", "")).lower()
    if "revert" in msg:
        return False
    if err.get("code") in (-32601, -32602):
        return False
    return any(s in msg for s in RETRYABLE_MESSAGES) or err.get("code") in (-32000, -32005)


class ChainClient:
    """
    Read-only client for an EVM JSON-RPC endpoint.

    Example:
        chain = ChainClient("https://arbitrum-mainnet.infura.io/v3/<key>")
        latest = chain.get_block("latest")
        earned = chain.read_earned(contract, account, latest["number"])
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = DEFAULT_TIMEOUT,
        retry: RetryPolicy = DEFAULT_RETRY,
        session: Optional[requests.Session] = None,
    ):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.retry = retry
        self._session = session or requests.Session()
        self._id = 0
        self._timestamps: Dict[int, int] = {}

    # ========================================================================
    # TRANSPORT
    # ========================================================================

    def _call_once(self, method: str, params: list) -> Any:
        self._id += 1
        payload = {"jsonrpc": "2.0", "id": self._id, "method": method, "params": params}
        try:
            resp = self._session.post(
                self.rpc_url,
                json=payload,
                timeout=self.timeout,
                headers={"User-Agent": USER_AGENT},
            )
        except requests.RequestException as e:
            raise TransientError(f"{method}: transport error: {e}") from e

        if resp.status_code in RETRYABLE_HTTP:
            raise TransientError(f"{method}: HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code >= 400:
            raise ChainError(f"{method}: HTTP {resp.status_code}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise TransientError(f"{method}: invalid JSON-RPC response") from e

        if isinstance(data, dict) and data.get("error"):
            err = data["error"]
            if _is_retryable_rpc_error(err):
                raise TransientError(f"{method}: {err}")
            raise ChainError(f"{method}: {err}")
        return data.get("result") if isinstance(data, dict) else data

    def call(self, method: str, params: list) -> Any:
        """Make a JSON-RPC call, retrying transient failures per policy."""
        return retry_sync(lambda: self._call_once(method, params), self.retry, description=method)

    # ========================================================================
    # BLOCKS
    # ========================================================================

    def get_block(self, block: Any = "latest") -> Dict[str, int]:
        """Return {"number", "timestamp"} for a block number or tag."""
        tag = hex(block) if isinstance(block, int) else block
        raw = self.call("eth_getBlockByNumber", [tag, False])
        if not isinstance(raw, dict):
            raise ChainError(f"missing block {block}")
        number = int(raw["number"], 16)
        timestamp = int(raw["timestamp"], 16)
        self._timestamps[number] = timestamp
        return {"number": number, "timestamp": timestamp}

    def get_block_number(self) -> int:
        return int(self.call("eth_blockNumber", []), 16)

    def get_block_timestamp(self, block_number: int) -> int:
        if block_number not in self._timestamps:
            self.get_block(block_number)
        return self._timestamps[block_number]

    def find_block_by_timestamp(
        self,
        target_ts: int,
        mode: str = "earliest",
        low_block: int = 0,
        high_block: Optional[int] = None,
    ) -> int:
        """
        Binary search for a block by timestamp.

        mode="earliest": first block with timestamp >= target_ts
        mode="latest":   last block with timestamp <= target_ts
        """
        if mode not in ("earliest", "latest"):
            raise ValueError("mode must be 'earliest' or 'latest'")

        latest = self.get_block("latest")
        high = latest["number"] if high_block is None else high_block
        low = max(0, low_block)

        if target_ts > latest["timestamp"]:
            raise ChainError(f"no block exists yet for timestamp {target_ts}")

        if mode == "earliest":
            if self.get_block_timestamp(low) >= target_ts:
                return low
            while low + 1 < high:
                mid = (low + high) // 2
                if self.get_block_timestamp(mid) >= target_ts:
                    high = mid
                else:
                    low = mid
            return high

        if self.get_block_timestamp(high) <= target_ts:
            return high
        while low < high:
            mid = (low + high + 1) // 2
            if self.get_block_timestamp(mid) <= target_ts:
                low = mid
            else:
                high = mid - 1
        return low

    # ========================================================================
    # LOGS
    # ========================================================================

    def get_logs(
        self,
        address: str,
        topics: List[str],
        from_block: int,
        to_block: int,
    ) -> List[Dict[str, Any]]:
        """eth_getLogs for a closed block range; topic0 may be any of `topics`."""
        result = self.call(
            "eth_getLogs",
            [{
                "address": normalize_address(address),
                "fromBlock": hex(from_block),
                "toBlock": hex(to_block),
                "topics": [list(topics)],
            }],
        )
        if not isinstance(result, list):
            raise ChainError(f"eth_getLogs returned {type(result).__name__}")
        return result

    # ========================================================================
    # CONTRACT READS
    # ========================================================================

    def eth_call(self, to: str, data: str, block_number: int) -> str:
        return self.call("eth_call", [{"to": normalize_address(to), "data": data}, hex(block_number)])

    def read_earned(self, contract: str, account: str, block_number: int) -> int:
        """Cumulative earned reward units for `account` at `block_number`."""
        result = self.eth_call(contract, encode_call(SELECTOR_EARNED, account), block_number)
        return decode_uint(split_words(result)[0])

    def read_staking_info(self, contract: str, account: str, block_number: int) -> Dict[str, Any]:
        result = self.eth_call(contract, encode_call(SELECTOR_STAKING_INFO, account), block_number)
        words = split_words(result)
        return {
            "staking_balance": decode_uint(words[0]),
            "unstaking_balance": decode_uint(words[1]),
            "earned_rewards": decode_uint(words[2]),
            "reward_per_token_stored": decode_uint(words[3]),
            "rune_address": decode_string(words, decode_uint(words[4])),
        }

    def read_staking_balance(self, contract: str, account: str, block_number: int) -> int:
        return self.read_staking_info(contract, account, block_number)["staking_balance"]
