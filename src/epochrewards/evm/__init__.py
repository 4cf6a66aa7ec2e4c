"""
epochrewards.evm - EVM chain access for the staking contracts.
"""

from .client import ChainClient
from .abi import (
    TOPIC_STAKE,
    TOPIC_UNSTAKE,
    TOPIC_SET_RUNE_ADDRESS,
    TOPIC_INITIALIZED,
    event_topic,
    function_selector,
    normalize_address,
)

__all__ = [
    "ChainClient",
    "TOPIC_STAKE",
    "TOPIC_UNSTAKE",
    "TOPIC_SET_RUNE_ADDRESS",
    "TOPIC_INITIALIZED",
    "event_topic",
    "function_selector",
    "normalize_address",
]
