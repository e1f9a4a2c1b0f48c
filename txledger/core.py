"""
Core types and pure functions for the transaction ledger.

This module provides the foundational pieces every other module builds on:
1. Status enumeration and the lifecycle state machine
2. Type aliases for transaction records (TxMeta) and their parameter block
3. Exceptions: LedgerError and the domain-specific error types
4. LedgerConfig: validated, immutable ledger configuration
5. Small helpers: id generation and wall-clock timestamps

Nothing in this module holds state except the process-wide id counter.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
import itertools
import random
import time
from typing import Any, Dict, FrozenSet, List, Optional, Tuple, Union


# ============================================================================
# CONSTANTS
# ============================================================================

# Default number of unique nonce groups retained per network.
DEFAULT_TX_HISTORY_LIMIT = 40

# Topic of the generic status event emitted on every status transition.
STATUS_UPDATE_EVENT = "tx:status-update"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Caller-assigned transaction identifier.
TxId = Union[str, int]

# The parameter block of a transaction (from, to, nonce, gas, ...).
TxParams = Dict[str, Any]

# A full transaction record, including its history.
TxMeta = Dict[str, Any]

# One structural diff operation: {"op", "path", "value", "timestamp", ["note"]}.
DiffOp = Dict[str, Any]

# A history entry after the first: an ordered batch of diff operations.
HistoryEntry = List[DiffOp]


# ============================================================================
# STATUS STATE MACHINE
# ============================================================================

class TransactionStatus(str, Enum):
    """
    Lifecycle stage of a transaction record.

    The main line runs UNAPPROVED -> APPROVED -> SIGNED -> SUBMITTED -> CONFIRMED.
    REJECTED, FAILED and DROPPED are side branches reachable from any
    non-terminal state. The str mixin keeps records comparable with their
    wire values ("signed" == TransactionStatus.SIGNED).
    """
    UNAPPROVED = "unapproved"
    APPROVED = "approved"
    SIGNED = "signed"
    SUBMITTED = "submitted"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    FAILED = "failed"
    DROPPED = "dropped"

    def __str__(self) -> str:
        return self.value


# Ordered main line; position is the lifecycle rank.
MAIN_LINE: Tuple[TransactionStatus, ...] = (
    TransactionStatus.UNAPPROVED,
    TransactionStatus.APPROVED,
    TransactionStatus.SIGNED,
    TransactionStatus.SUBMITTED,
    TransactionStatus.CONFIRMED,
)

SIDE_BRANCHES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.REJECTED,
    TransactionStatus.FAILED,
    TransactionStatus.DROPPED,
})

# Terminal states. Records in these states are candidates for retention eviction.
FINAL_STATES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.CONFIRMED,
    TransactionStatus.REJECTED,
    TransactionStatus.FAILED,
    TransactionStatus.DROPPED,
})

# States after which a record must name its sender.
SENDER_REQUIRED_STATES: FrozenSet[TransactionStatus] = frozenset({
    TransactionStatus.SIGNED,
    TransactionStatus.SUBMITTED,
    TransactionStatus.CONFIRMED,
})


def to_status(value: Any) -> Optional[TransactionStatus]:
    """Return the TransactionStatus for value, or None if value is not a known status."""
    if isinstance(value, TransactionStatus):
        return value
    try:
        return TransactionStatus(value)
    except ValueError:
        return None


def is_final_state(status: Any) -> bool:
    """Return True if status is terminal. Unknown values are never terminal."""
    return to_status(status) in FINAL_STATES


def is_valid_transition(current: Any, target: Any) -> bool:
    """
    Return True if a record may move from current to target.

    Rules:
    - repeating the current status is always allowed
    - nothing leaves a terminal state
    - side branches are reachable from any non-terminal state
    - the main line only moves forward (skipping steps is allowed)
    """
    current_status = to_status(current)
    target_status = to_status(target)
    if current_status is None or target_status is None:
        return False
    if current_status == target_status:
        return True
    if current_status in FINAL_STATES:
        return False
    if target_status in SIDE_BRANCHES:
        return True
    return MAIN_LINE.index(target_status) > MAIN_LINE.index(current_status)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ValidationError(LedgerError, ValueError):
    """Raised when a record or one of its tx_params fields is malformed."""

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None):
        super().__init__(message)
        self.field = field
        self.value = value


class NotFoundError(LedgerError, KeyError):
    """Raised when an operation references a transaction id that is not in the ledger."""

    def __init__(self, tx_id: TxId):
        super().__init__(f"Transaction {tx_id!r} not found")
        self.tx_id = tx_id

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return str(self.args[0])


class InvalidArgumentError(LedgerError, ValueError):
    """Raised when query options are malformed or contradict each other."""
    pass


class InvalidTransitionError(LedgerError):
    """Raised when a status change is not allowed by the lifecycle state machine."""

    def __init__(self, tx_id: TxId, current: Any, target: Any):
        super().__init__(f"Transaction {tx_id!r}: cannot move from {current} to {target}")
        self.tx_id = tx_id
        self.current = current
        self.target = target


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """
    Immutable ledger configuration.

    Attributes:
        tx_history_limit: Number of unique nonce groups retained per network
                          before terminal records are evicted.
    """
    tx_history_limit: int = DEFAULT_TX_HISTORY_LIMIT

    def __post_init__(self):
        if isinstance(self.tx_history_limit, bool) or not isinstance(self.tx_history_limit, int):
            raise ValueError(f"tx_history_limit must be an int, got {type(self.tx_history_limit)}")
        if self.tx_history_limit < 1:
            raise ValueError("tx_history_limit must be >= 1")


# ============================================================================
# HELPERS
# ============================================================================

# Random start so ids from separate sessions are unlikely to collide.
_id_counter = itertools.count(random.randrange(2 ** 31))


def create_id() -> int:
    """Return a new process-unique transaction id."""
    return next(_id_counter)


def current_timestamp() -> int:
    """Wall-clock time in milliseconds since the epoch."""
    return int(time.time() * 1000)
