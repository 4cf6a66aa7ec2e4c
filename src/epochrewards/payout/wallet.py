"""
epochrewards/payout/wallet.py

Transfer construction and signing for the disbursing hot wallet.

TransferSigner is the seam the state machine depends on. LocalKeyWallet is
a secp256k1 key held in memory. It signs the legacy amino-JSON sign document
(SIGN_MODE_LEGACY_AMINO_JSON) and wraps the signature in a protobuf TxRaw,
base64 encoded, ready for broadcast_tx_sync.
"""

import base64
import hashlib
import json
import logging
import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict

import bech32
from Crypto.Hash import RIPEMD160
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature

from ..config import RUNE_DENOM, THORCHAIN_CHAIN_ID
from ..errors import ResumeError
from . import cosmos_tx

logger = logging.getLogger("epochrewards.payout.wallet")

THOR_PREFIX = "thor"

# secp256k1 group order
SECP256K1_N = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141


# ============================================================================
# TRANSFERS
# ============================================================================

@dataclass(frozen=True)
class UnsignedTransfer:
    """A single MsgSend from the hot wallet."""
    from_address: str
    to_address: str
    amount: int
    memo: str
    account_number: int
    sequence: int
    chain_id: str = THORCHAIN_CHAIN_ID
    denom: str = RUNE_DENOM

    def msg(self) -> Dict[str, Any]:
        return {
            "type": "thorchain/MsgSend",
            "value": {
                "amount": [{"amount": str(self.amount), "denom": self.denom}],
                "from_address": self.from_address,
                "to_address": self.to_address,
            },
        }

    def sign_doc(self) -> Dict[str, Any]:
        return {
            "account_number": str(self.account_number),
            "chain_id": self.chain_id,
            "fee": {"amount": [], "gas": "0"},
            "memo": self.memo,
            "msgs": [self.msg()],
            "sequence": str(self.sequence),
        }

    def sign_bytes(self) -> bytes:
        """Canonical amino-JSON: sorted keys, no whitespace."""
        return json.dumps(self.sign_doc(), sort_keys=True, separators=(",", ":")).encode()

    def body_bytes(self) -> bytes:
        message = cosmos_tx.msg_send(
            address_bytes(self.from_address), address_bytes(self.to_address), self.amount, self.denom,
        )
        return cosmos_tx.body_bytes([message], self.memo)

    def auth_info_bytes(self, public_key: bytes) -> bytes:
        return cosmos_tx.auth_info_bytes(public_key, self.sequence, cosmos_tx.SIGN_MODE_LEGACY_AMINO_JSON)


def reward_memo(epoch_number: int, epoch_hash: str, staking_contract: str, staking_address: str) -> str:
    return (
        f"rFOX reward (Staking Contract: {staking_contract}, Staking Address: {staking_address}) "
        f"- Epoch #{epoch_number} (IPFS Hash: {epoch_hash})"
    )


def funding_memo(epoch_number: int, epoch_hash: str) -> str:
    return f"Fund rFOX rewards distribution - Epoch #{epoch_number} (IPFS Hash: {epoch_hash})"


def unsigned_funding_tx(source_address: str, hot_wallet_address: str, amount: int, memo: str) -> Dict[str, Any]:
    """Unsigned multisig funding transaction for the treasury signers."""
    return {
        "body": {
            "messages": [{
                "@type": "/types.MsgSend",
                "from_address": source_address,
                "to_address": hot_wallet_address,
                "amount": [{"denom": RUNE_DENOM, "amount": str(amount)}],
            }],
            "memo": memo,
            "timeout_height": "0",
            "extension_options": [],
            "non_critical_extension_options": [],
        },
        "auth_info": {
            "signer_infos": [],
            "fee": {"amount": [], "gas_limit": "0", "payer": "", "granter": ""},
        },
        "signatures": [],
    }


# ============================================================================
# SIGNERS
# ============================================================================

class TransferSigner(ABC):
    """Anything that can sign transfers for a single address."""

    @property
    @abstractmethod
    def address(self) -> str:
        pass

    @abstractmethod
    def sign(self, transfer: UnsignedTransfer) -> str:
        """Return the signed transaction, base64 encoded."""
        pass


def pubkey_to_address(compressed_pubkey: bytes, prefix: str = THOR_PREFIX) -> str:
    sha = hashlib.sha256(compressed_pubkey).digest()
    h20 = RIPEMD160.new(sha).digest()
    words = bech32.convertbits(h20, 8, 5)
    if words is None:
        raise ValueError("Error converting to bech32 words")
    return bech32.bech32_encode(prefix, words)


def address_bytes(address: str, prefix: str = THOR_PREFIX) -> bytes:
    """The 20 byte account behind a bech32 address."""
    hrp, data = bech32.bech32_decode(address)
    if hrp != prefix or data is None:
        raise ValueError(f"not a {prefix} address: {address!r}")
    decoded = bech32.convertbits(data, 5, 8, False)
    if decoded is None or len(decoded) != 20:
        raise ValueError(f"not a 20 byte {prefix} address: {address!r}")
    return bytes(decoded)


def is_valid_address(address: str, prefix: str = THOR_PREFIX) -> bool:
    try:
        address_bytes(address, prefix)
    except ValueError:
        return False
    return True


class LocalKeyWallet(TransferSigner):
    """
    secp256k1 hot wallet.

    Example:
        wallet = LocalKeyWallet.generate()
        signed = wallet.sign(transfer)
    """

    def __init__(self, private_key: ec.EllipticCurvePrivateKey):
        if not isinstance(private_key.curve, ec.SECP256K1):
            raise ValueError("hot wallet key must be secp256k1")
        self._key = private_key
        self._pubkey = private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint,
        )
        self._address = pubkey_to_address(self._pubkey)

    @classmethod
    def generate(cls) -> "LocalKeyWallet":
        return cls(ec.generate_private_key(ec.SECP256K1()))

    @classmethod
    def from_secret(cls, secret: bytes) -> "LocalKeyWallet":
        return cls(ec.derive_private_key(int.from_bytes(secret, "big"), ec.SECP256K1()))

    @classmethod
    def from_file(cls, path: Path) -> "LocalKeyWallet":
        """Load a hex-encoded 32 byte secret."""
        return cls.from_secret(bytes.fromhex(Path(path).read_text().strip()))

    def save(self, path: Path) -> None:
        """Write the secret as hex, readable by the owner only."""
        secret = self._key.private_numbers().private_value.to_bytes(32, "big")
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "w") as f:
            f.write(secret.hex())

    @property
    def address(self) -> str:
        return self._address

    @property
    def public_key(self) -> bytes:
        return self._pubkey

    def sign_bytes(self, message: bytes) -> bytes:
        """64 byte r||s signature over sha256(message), low-S normalized."""
        der = self._key.sign(message, ec.ECDSA(hashes.SHA256()))
        r, s = decode_dss_signature(der)
        if s > SECP256K1_N // 2:
            s = SECP256K1_N - s
        return r.to_bytes(32, "big") + s.to_bytes(32, "big")

    def sign(self, transfer: UnsignedTransfer) -> str:
        if transfer.from_address != self.address:
            raise ValueError(f"transfer is from {transfer.from_address}, wallet is {self.address}")
        signature = self.sign_bytes(transfer.sign_bytes())
        raw = cosmos_tx.tx_raw(transfer.body_bytes(), transfer.auth_info_bytes(self._pubkey), [signature])
        return base64.b64encode(raw).decode()


def load_or_create_wallet(path: Path, create: bool = True) -> LocalKeyWallet:
    """Wallet from `path`; a new key is written there when missing and `create` is set."""
    path = Path(path)
    if path.exists():
        wallet = LocalKeyWallet.from_file(path)
        logger.info(f"Hot wallet address: {wallet.address} (loaded from {path})")
        return wallet
    if not create:
        raise ResumeError(f"no hot wallet key at {path}")
    wallet = LocalKeyWallet.generate()
    wallet.save(path)
    logger.info(f"Hot wallet address: {wallet.address} (new key written to {path})")
    return wallet
