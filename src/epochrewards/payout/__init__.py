"""
epochrewards.payout - Resumable funding, signing and broadcast of epoch rewards.
"""

from .state import (
    PayoutPhase,
    PayoutRecord,
    PayoutWorkflowState,
    EpochStateStore,
)
from .thornode import (
    BroadcastOutcome,
    BroadcastResult,
    AccountInfo,
    ThornodeClient,
)
from .wallet import (
    UnsignedTransfer,
    TransferSigner,
    LocalKeyWallet,
    load_or_create_wallet,
)
from .machine import PayoutStateMachine, describe

__all__ = [
    "PayoutPhase",
    "PayoutRecord",
    "PayoutWorkflowState",
    "EpochStateStore",
    "BroadcastOutcome",
    "BroadcastResult",
    "AccountInfo",
    "ThornodeClient",
    "UnsignedTransfer",
    "TransferSigner",
    "LocalKeyWallet",
    "load_or_create_wallet",
    "PayoutStateMachine",
    "describe",
]
