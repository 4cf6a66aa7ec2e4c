"""
epochrewards/evm/abi.py

Minimal ABI helpers for the staking contract: event topics, function
selectors and word decoding. Hashing uses keccak-256 from pycryptodome.
"""

from typing import List

from Crypto.Hash import keccak


WORD_HEX = 64


def keccak_hex(text: str) -> str:
    h = keccak.new(digest_bits=256)
    h.update(text.encode("utf-8"))
    return h.hexdigest()


def event_topic(signature: str) -> str:
    """topic0 for an event signature, e.g. "Stake(address,uint256,string)"."""
    return "0x" + keccak_hex(signature)


def function_selector(signature: str) -> str:
    """4-byte selector for a function signature, 0x-prefixed."""
    return "0x" + keccak_hex(signature)[:8]


# ============================================================================
# STAKING CONTRACT ABI
# ============================================================================

STAKE_SIGNATURE = "Stake(address,uint256,string)"
UNSTAKE_SIGNATURE = "Unstake(address,uint256,uint256)"
SET_RUNE_ADDRESS_SIGNATURE = "SetRuneAddress(address,string,string)"
INITIALIZED_SIGNATURE = "Initialized(uint64)"

TOPIC_STAKE = event_topic(STAKE_SIGNATURE)
TOPIC_UNSTAKE = event_topic(UNSTAKE_SIGNATURE)
TOPIC_SET_RUNE_ADDRESS = event_topic(SET_RUNE_ADDRESS_SIGNATURE)
TOPIC_INITIALIZED = event_topic(INITIALIZED_SIGNATURE)

SELECTOR_EARNED = function_selector("earned(address)")
SELECTOR_STAKING_INFO = function_selector("stakingInfo(address)")


# ============================================================================
# ENCODING / DECODING
# ============================================================================

def normalize_address(addr: str) -> str:
    a = str(addr).lower()
    if not a.startswith("0x") or len(a) != 42:
        raise ValueError(f"invalid address: {addr}")
    int(a[2:], 16)
    return a


def encode_address(addr: str) -> str:
    return normalize_address(addr)[2:].rjust(WORD_HEX, "0")


def topic_to_address(topic: str) -> str:
    if not topic.startswith("0x") or len(topic) != 66:
        raise ValueError(f"unexpected topic format: {topic}")
    return "0x" + topic[-40:].lower()


def split_words(data_hex: str) -> List[str]:
    if not data_hex.startswith("0x"):
        raise ValueError("data must be 0x-prefixed")
    body = data_hex[2:]
    if len(body) % WORD_HEX:
        raise ValueError(f"data length {len(body)} is not a multiple of {WORD_HEX}")
    return [body[i:i + WORD_HEX] for i in range(0, len(body), WORD_HEX)]


def decode_uint(word: str) -> int:
    return int(word, 16)


def decode_string(words: List[str], offset_bytes: int) -> str:
    """Decode a dynamic `string` whose head offset (in bytes) is given."""
    if offset_bytes % 32:
        raise ValueError(f"unaligned string offset: {offset_bytes}")
    idx = offset_bytes // 32
    if idx >= len(words):
        raise ValueError(f"string offset {offset_bytes} out of range")
    length = decode_uint(words[idx])
    n_words = (length + 31) // 32
    if idx + 1 + n_words > len(words):
        raise ValueError(f"string of length {length} overruns data")
    raw = bytes.fromhex("".join(words[idx + 1:idx + 1 + n_words]))[:length]
    return raw.decode("utf-8")


def encode_call(selector: str, *addresses: str) -> str:
    return selector + "".join(encode_address(a) for a in addresses)
