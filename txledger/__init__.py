"""
txledger - Wallet Transaction Ledger

An in-memory state manager for blockchain transaction records: validated
writes, per-record audit history, network-scoped queries, bounded retention
and deferred lifecycle events.

Usage:
    from txledger import TransactionLedger, TransactionStatus

    ledger = TransactionLedger(
        get_network=lambda: "42",
        get_current_chain_id=lambda: "0x2a",
        tx_history_limit=40,
    )

    # Create and store an unapproved record
    tx = ledger.add_transaction(ledger.generate_tx_meta(
        tx_params={"from": "0x00...01", "to": "0x00...02", "nonce": "0x0"},
    ))

    # Listen for lifecycle events, then drive the status machine
    ledger.on(f"{tx['id']}:submitted", lambda tx_id: print("sent", tx_id))
    ledger.set_tx_status_approved(tx["id"])
    ledger.set_tx_status_signed(tx["id"])
    ledger.set_tx_status_submitted(tx["id"])
    ledger.events.flush()

    ledger.get_transactions(search_criteria={"status": TransactionStatus.SUBMITTED})
"""

# Core types
from .core import (
    TxId,
    TxParams,
    TxMeta,
    DiffOp,
    HistoryEntry,
    TransactionStatus,
    LedgerConfig,
    LedgerError,
    ValidationError,
    NotFoundError,
    InvalidArgumentError,
    InvalidTransitionError,
    MAIN_LINE,
    SIDE_BRANCHES,
    FINAL_STATES,
    SENDER_REQUIRED_STATES,
    DEFAULT_TX_HISTORY_LIMIT,
    STATUS_UPDATE_EVENT,
    to_status,
    is_final_state,
    is_valid_transition,
    create_id,
    current_timestamp,
)

# Validation
from .validation import (
    validate_tx_params,
    validate_tx_meta,
    coerce_status,
    TX_PARAMS_FIELDS,
)

# History
from .history import (
    compare,
    apply_diff,
    generate_history_entry,
    replay_history,
    snapshot_from_tx_meta,
    migrate_from_snapshots_to_diffs,
)

# Queries
from .query import (
    is_on_network,
    build_predicates,
    tx_matches_criteria,
    limit_by_unique_nonce,
    select_for_truncation,
)

# Events and stores
from .events import EventBus, Subscription
from .store import ObservableStore, ComposableObservableStore

# Ledger
from .ledger import TransactionLedger


__all__ = [
    # Types
    'TxId', 'TxParams', 'TxMeta', 'DiffOp', 'HistoryEntry',
    'TransactionStatus', 'LedgerConfig',
    # Exceptions
    'LedgerError', 'ValidationError', 'NotFoundError',
    'InvalidArgumentError', 'InvalidTransitionError',
    # State machine
    'MAIN_LINE', 'SIDE_BRANCHES', 'FINAL_STATES', 'SENDER_REQUIRED_STATES',
    'to_status', 'is_final_state', 'is_valid_transition',
    # Constants and helpers
    'DEFAULT_TX_HISTORY_LIMIT', 'STATUS_UPDATE_EVENT',
    'create_id', 'current_timestamp',
    # Validation
    'validate_tx_params', 'validate_tx_meta', 'coerce_status', 'TX_PARAMS_FIELDS',
    # History
    'compare', 'apply_diff', 'generate_history_entry', 'replay_history',
    'snapshot_from_tx_meta', 'migrate_from_snapshots_to_diffs',
    # Queries
    'is_on_network', 'build_predicates', 'tx_matches_criteria',
    'limit_by_unique_nonce', 'select_for_truncation',
    # Events and stores
    'EventBus', 'Subscription', 'ObservableStore', 'ComposableObservableStore',
    # Ledger
    'TransactionLedger',
]

__version__ = '1.0.0'
