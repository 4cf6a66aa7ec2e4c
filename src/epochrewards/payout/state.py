"""
epochrewards/payout/state.py

Durable payout workflow state.

One JSON document per epoch (state_epoch-N.json) holds the phase, the
funding details and every transfer record. It is rewritten atomically
(write temp, fsync, rename) after each step that changes it, so a crash
at any point leaves either the previous or the next document on disk,
never a torn one.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..epoch import Epoch
from ..errors import ResumeError

logger = logging.getLogger("epochrewards.payout.state")

STATE_VERSION = 1


# ============================================================================
# DATA STRUCTURES
# ============================================================================

class PayoutPhase(Enum):
    """Phases of a payout run. Transitions only move forward."""
    IDLE = "idle"                      # Nothing done yet
    FUNDING = "funding"                # Waiting for the hot wallet to be funded
    SIGNING = "signing"                # Signing transfers
    BROADCASTING = "broadcasting"      # Submitting signed transfers
    COMPLETE = "complete"              # Every transfer has a tx id

    @property
    def order(self) -> int:
        return _PHASE_ORDER.index(self)


_PHASE_ORDER = [
    PayoutPhase.IDLE,
    PayoutPhase.FUNDING,
    PayoutPhase.SIGNING,
    PayoutPhase.BROADCASTING,
    PayoutPhase.COMPLETE,
]


@dataclass
class PayoutRecord:
    """One outbound transfer."""
    staking_contract: str
    staking_address: str
    amount: int
    reward_address: str
    sequence: int = 0
    signed_tx: str = ""
    tx_id: str = ""

    @property
    def signed(self) -> bool:
        return bool(self.signed_tx)

    @property
    def broadcast(self) -> bool:
        return bool(self.tx_id)

    def to_dict(self) -> dict:
        return {
            'staking_contract': self.staking_contract,
            'staking_address': self.staking_address,
            'amount': str(self.amount),
            'reward_address': self.reward_address,
            'sequence': self.sequence,
            'signed_tx': self.signed_tx,
            'tx_id': self.tx_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PayoutRecord":
        return cls(
            staking_contract=data['staking_contract'],
            staking_address=data['staking_address'],
            amount=int(data['amount']),
            reward_address=data['reward_address'],
            sequence=int(data.get('sequence', 0)),
            signed_tx=data.get('signed_tx', ""),
            tx_id=data.get('tx_id', ""),
        )


@dataclass
class PayoutWorkflowState:
    """Everything needed to resume a payout after a crash."""
    epoch_number: int
    epoch_hash: str
    wallet_address: str
    phase: PayoutPhase = PayoutPhase.IDLE
    funding_amount: int = 0
    funding_tx_id: str = ""
    account_number: Optional[int] = None
    base_sequence: Optional[int] = None
    records: List[PayoutRecord] = field(default_factory=list)
    updated_at: float = 0.0

    @classmethod
    def for_epoch(cls, epoch: Epoch, epoch_hash: str, wallet_address: str) -> "PayoutWorkflowState":
        """Fresh state with one record per positive distribution, in record order."""
        records = [
            PayoutRecord(
                staking_contract=contract,
                staking_address=address,
                amount=int(distribution.amount),
                reward_address=distribution.reward_address,
                tx_id=distribution.tx_id,
            )
            for contract, address, distribution in epoch.payable_distributions()
        ]
        return cls(
            epoch_number=epoch.number,
            epoch_hash=epoch_hash,
            wallet_address=wallet_address,
            records=records,
            updated_at=time.time(),
        )

    @property
    def total(self) -> int:
        return len(self.records)

    @property
    def signed_count(self) -> int:
        return sum(1 for r in self.records if r.signed)

    @property
    def broadcast_count(self) -> int:
        return sum(1 for r in self.records if r.broadcast)

    @property
    def total_amount(self) -> int:
        return sum(r.amount for r in self.records)

    def advance_to(self, phase: PayoutPhase) -> None:
        """Move forward to `phase`; moving backward is an error."""
        if phase.order < self.phase.order:
            raise ResumeError(f"cannot move payout for epoch {self.epoch_number} from {self.phase.value} back to {phase.value}")
        if phase is not self.phase:
            logger.info(f"Epoch #{self.epoch_number} payout: {self.phase.value} -> {phase.value}")
        self.phase = phase

    def to_dict(self) -> dict:
        return {
            'version': STATE_VERSION,
            'epoch_number': self.epoch_number,
            'epoch_hash': self.epoch_hash,
            'phase': self.phase.value,
            'wallet_address': self.wallet_address,
            'funding_amount': str(self.funding_amount),
            'funding_tx_id': self.funding_tx_id,
            'account_number': self.account_number,
            'base_sequence': self.base_sequence,
            'records': [r.to_dict() for r in self.records],
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "PayoutWorkflowState":
        if data.get('version') != STATE_VERSION:
            raise ResumeError(f"unsupported payout state version {data.get('version')!r}")
        return cls(
            epoch_number=int(data['epoch_number']),
            epoch_hash=data['epoch_hash'],
            wallet_address=data['wallet_address'],
            phase=PayoutPhase(data['phase']),
            funding_amount=int(data.get('funding_amount', 0)),
            funding_tx_id=data.get('funding_tx_id', ""),
            account_number=data.get('account_number'),
            base_sequence=data.get('base_sequence'),
            records=[PayoutRecord.from_dict(r) for r in data.get('records', [])],
            updated_at=float(data.get('updated_at', 0.0)),
        )


# ============================================================================
# FILE STORE
# ============================================================================

def state_key(epoch_number: int) -> str:
    return f"state_epoch-{epoch_number}.json"


def unsigned_funding_key(epoch_number: int) -> str:
    return f"unsignedTx_epoch-{epoch_number}.json"


class EpochStateStore:
    """
    Atomic file store rooted at the operator's rfox directory.

    Example:
        store = EpochStateStore(Path("~/rfox").expanduser())
        state = store.load_state(7)
        store.save_state(state)
    """

    def __init__(self, root: Path):
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path(self, key: str) -> Path:
        if "/" in key or key.startswith("."):
            raise ValueError(f"invalid key {key!r}")
        return self.root / key

    def read(self, key: str) -> Optional[bytes]:
        path = self.path(key)
        if not path.exists():
            return None
        return path.read_bytes()

    def write(self, key: str, data: bytes) -> None:
        """Replace `key` with `data` atomically."""
        path = self.path(key)
        fd, tmp = tempfile.mkstemp(prefix=f".{key}.", dir=self.root)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        dir_fd = os.open(self.root, os.O_RDONLY)
        try:
            os.fsync(dir_fd)
        finally:
            os.close(dir_fd)

    def exists(self, key: str) -> bool:
        return self.path(key).exists()

    # ========================================================================
    # WORKFLOW STATE
    # ========================================================================

    def has_state(self, epoch_number: int) -> bool:
        return self.exists(state_key(epoch_number))

    def load_state(self, epoch_number: int) -> Optional[PayoutWorkflowState]:
        """
        Persisted state for an epoch, or None if no run has started.

        Unreadable or mismatched state raises ResumeError; the file is
        left untouched for the operator to inspect.
        """
        raw = self.read(state_key(epoch_number))
        if raw is None:
            return None
        try:
            state = PayoutWorkflowState.from_dict(json.loads(raw))
        except ResumeError:
            raise
        except (ValueError, KeyError, TypeError) as e:
            raise ResumeError(f"payout state for epoch {epoch_number} is corrupt: {e}") from e
        if state.epoch_number != epoch_number:
            raise ResumeError(
                f"{state_key(epoch_number)} belongs to epoch {state.epoch_number}, not {epoch_number}"
            )
        return state

    def save_state(self, state: PayoutWorkflowState) -> None:
        state.updated_at = time.time()
        self.write(state_key(state.epoch_number), json.dumps(state.to_dict(), indent=2).encode())

    def save_unsigned_funding_tx(self, epoch_number: int, unsigned_tx: Dict[str, Any]) -> Path:
        key = unsigned_funding_key(epoch_number)
        self.write(key, json.dumps(unsigned_tx, indent=2).encode())
        return self.path(key)
