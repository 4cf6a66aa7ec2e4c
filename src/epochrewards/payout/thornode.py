"""
epochrewards/payout/thornode.py

THORNode client for the payout workflow.

Provides:
- Funding search (tx_search for a transfer of an exact amount)
- Committed transaction lookup by hash
- Account number / sequence lookup
- Synchronous broadcast with a three-way outcome

All calls are blocking; the state machine runs them in a worker thread.
"""

import base64
import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import requests

from ..config import RUNE_DENOM
from ..errors import ChainError, TransientError

logger = logging.getLogger("epochrewards.payout.thornode")

DEFAULT_TIMEOUT = 30

# Cosmos SDK ABCI codes
CODE_OK = 0
CODE_TX_IN_MEMPOOL_CACHE = 19
CODE_MEMPOOL_FULL = 20
TRANSIENT_CODES = {CODE_MEMPOOL_FULL}

# Tendermint reports a resubmitted tx as a JSON-RPC error, not an ABCI code
TX_IN_CACHE_ERROR = "tx already exists in cache"
TX_NOT_FOUND_ERROR = "not found"


class BroadcastOutcome(Enum):
    ACCEPTED = "accepted"      # in the mempool, tx_id is final
    TRANSIENT = "transient"    # worth retrying
    REJECTED = "rejected"      # will not succeed as-is


@dataclass
class BroadcastResult:
    outcome: BroadcastOutcome
    tx_id: str = ""
    code: Optional[int] = None
    log: str = ""

    @property
    def accepted(self) -> bool:
        return self.outcome is BroadcastOutcome.ACCEPTED


@dataclass
class AccountInfo:
    address: str
    account_number: int
    sequence: int


def tx_hash(signed_tx: str) -> str:
    """Tendermint transaction hash: upper-case sha256 of the raw bytes."""
    return hashlib.sha256(base64.b64decode(signed_tx)).hexdigest().upper()


def _error_text(error) -> str:
    if isinstance(error, dict):
        return " ".join(str(error.get(k, "")) for k in ("message", "data")).lower()
    return str(error).lower()


def _rpc_error_envelope(resp) -> Optional[dict]:
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) and data.get("error") else None


class ThornodeClient:
    """
    Example:
        thornode = ThornodeClient("https://thornode.ninerealms.com")
        account = thornode.get_account(wallet.address)
        result = thornode.submit(signed_tx)
    """

    def __init__(self, base_url: str, timeout: float = DEFAULT_TIMEOUT, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _json(self, method: str, url: str, rpc: bool = False, **kwargs) -> dict:
        """
        Decoded JSON body of a successful response.

        With `rpc` set, a JSON-RPC error envelope is returned as is whatever
        the HTTP status, since Tendermint pairs those with HTTP 500.
        """
        try:
            resp = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise TransientError(f"{method} {url}: {e}") from e
        if rpc:
            envelope = _rpc_error_envelope(resp)
            if envelope is not None:
                return envelope
        if resp.status_code == 429 or resp.status_code >= 500:
            raise TransientError(f"{method} {url}: HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code >= 400:
            raise ChainError(f"{method} {url}: HTTP {resp.status_code}", status_code=resp.status_code)
        try:
            return resp.json()
        except ValueError as e:
            raise TransientError(f"{method} {url}: invalid JSON response") from e

    # ========================================================================
    # QUERIES
    # ========================================================================

    def find_funding_tx(self, recipient: str, amount: int) -> Optional[str]:
        """Hash of a transfer of exactly `amount` rune to `recipient`, if one exists."""
        query = f"\"transfer.recipient='{recipient}' AND transfer.amount='{amount}{RUNE_DENOM}'\""
        data = self._json("GET", f"{self.base_url}/rpc/tx_search", params={"query": query})
        result = data.get("result") or {}
        if int(result.get("total_count", "0")) < 1:
            return None
        txs = result.get("txs") or []
        tx_id = txs[0].get("hash", "") if txs else ""
        if not tx_id:
            logger.debug(f"Funding transfer to {recipient} counted but not listed yet")
            return None
        return tx_id

    def find_tx(self, tx_id: str) -> bool:
        """Whether a transaction with this hash has been committed."""
        data = self._json("GET", f"{self.base_url}/rpc/tx", rpc=True, params={"hash": f"0x{tx_id}"})
        error = data.get("error")
        if error:
            if TX_NOT_FOUND_ERROR in _error_text(error):
                return False
            raise TransientError(f"tx lookup for {tx_id}: {error}")
        return bool(data.get("result"))

    def get_account(self, address: str) -> AccountInfo:
        data = self._json("GET", f"{self.base_url}/lcd/cosmos/auth/v1beta1/accounts/{address}")
        account = data.get("account") or {}
        try:
            return AccountInfo(
                address=address,
                account_number=int(account["account_number"]),
                sequence=int(account.get("sequence", 0)),
            )
        except (KeyError, ValueError) as e:
            raise ChainError(f"Failed to get account details for {address}: {e}") from e

    # ========================================================================
    # BROADCAST
    # ========================================================================

    def submit(self, signed_tx: str, request_id: str = "epochrewards") -> BroadcastResult:
        """broadcast_tx_sync; never raises for network-level failures."""
        payload = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": "broadcast_tx_sync",
            "params": {"tx": signed_tx},
        }
        try:
            data = self._json("POST", f"{self.base_url}/rpc", rpc=True, json=payload)
        except TransientError as e:
            return BroadcastResult(BroadcastOutcome.TRANSIENT, log=str(e))
        except ChainError as e:
            return BroadcastResult(BroadcastOutcome.REJECTED, log=str(e))

        error = data.get("error")
        if error:
            if TX_IN_CACHE_ERROR in _error_text(error):
                return BroadcastResult(BroadcastOutcome.ACCEPTED, tx_id=tx_hash(signed_tx), log=str(error))
            return BroadcastResult(BroadcastOutcome.TRANSIENT, log=str(error))

        result = data.get("result") or {}
        code = int(result.get("code", -1))
        log = result.get("log") or result.get("data") or ""
        txid = result.get("hash", "")

        if code == CODE_OK and txid:
            return BroadcastResult(BroadcastOutcome.ACCEPTED, tx_id=txid, code=code)
        if code == CODE_TX_IN_MEMPOOL_CACHE:
            # already submitted by an earlier attempt
            return BroadcastResult(BroadcastOutcome.ACCEPTED, tx_id=txid or tx_hash(signed_tx), code=code, log=log)
        if code in TRANSIENT_CODES or (code == CODE_OK and not txid):
            return BroadcastResult(BroadcastOutcome.TRANSIENT, code=code, log=log)
        return BroadcastResult(BroadcastOutcome.REJECTED, code=code, log=log)
