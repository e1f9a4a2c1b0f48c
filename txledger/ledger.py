"""
ledger.py - Authoritative in-memory transaction ledger

TransactionLedger is the state manager for a wallet's transactions. It is the
only module that mutates the transaction mapping, so every change is
validated, diffed into the record's history and announced.

Key responsibilities:
    - Adds, updates and deletes records through the store (write-through)
    - Validates every candidate record before it touches the mapping
    - Appends a history entry for every update that changes something
    - Drives the status state machine and emits lifecycle events
    - Scopes reads and bulk deletions to the host's current network
    - Bounds retention to tx_history_limit nonce groups per network
"""

from __future__ import annotations
import copy
import logging
import threading
import traceback
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from .core import (
    # Types
    TxId, TxMeta, TransactionStatus,
    LedgerConfig,
    # Constants
    STATUS_UPDATE_EVENT,
    # Exceptions
    ValidationError, NotFoundError, InvalidArgumentError, InvalidTransitionError,
    # Helpers
    create_id, current_timestamp, is_final_state, is_valid_transition,
)
from .events import EventBus, Listener, Subscription
from .history import generate_history_entry, snapshot_from_tx_meta
from .query import (
    build_predicates, is_on_network, limit_by_unique_nonce,
    select_for_truncation, tx_matches_criteria, validate_limit,
)
from .store import ObservableStore
from .validation import coerce_status, validate_tx_meta

logger = logging.getLogger(__name__)


# Fields fixed at creation; updates may not change them.
IMMUTABLE_FIELDS = ("network_id", "chain_id", "time")


class TransactionLedger:
    """
    In-memory ledger of a wallet's transactions, partitioned by network.

    Records live in the store under state["transactions"], keyed by id, in
    insertion order. Reads return deep copies; callers change a record by
    passing a modified copy back to update_transaction() or by calling one of
    the set_tx_status_* helpers.

    Thread Safety:
        Every mutation holds a re-entrant lock for its whole
        read-validate-diff-write sequence. Event listeners never run inside
        a mutation: they are queued on the event bus.

    Event Delivery:
        Inside a running asyncio loop queued events are flushed on the next
        turn of the loop. Without a running loop nothing is delivered until
        the owner calls ledger.events.flush(); until then every status change
        adds two events to the queue (see EventBus.pending_count()).

    Example:
        ledger = TransactionLedger(
            get_network=lambda: "42",
            get_current_chain_id=lambda: "0x2a",
            tx_history_limit=40,
        )
        tx = ledger.add_transaction(ledger.generate_tx_meta(tx_params={
            "from": "0x00000000000000000000000000000000000000aa",
            "to": "0x00000000000000000000000000000000000000bb",
            "nonce": "0x0",
        }))
        ledger.on(f"{tx['id']}:signed", lambda tx_id: print("signed", tx_id))
        ledger.set_tx_status_approved(tx["id"])
        ledger.set_tx_status_signed(tx["id"])
        ledger.events.flush()
    """

    def __init__(
        self,
        get_network: Callable[[], Any],
        get_current_chain_id: Callable[[], Any],
        init_state: Optional[Mapping[str, Any]] = None,
        tx_history_limit: Optional[int] = None,
        config: Optional[LedgerConfig] = None,
        store: Optional[ObservableStore] = None,
        event_bus: Optional[EventBus] = None,
    ):
        """
        Create a ledger.

        Args:
            get_network: Returns the host's current network id
            get_current_chain_id: Returns the host's current chain id
            init_state: Initial state, e.g. {"transactions": {id: record}}
            tx_history_limit: Overrides config.tx_history_limit
            config: Ledger configuration (default: LedgerConfig())
            store: Store to write through (default: a new ObservableStore)
            event_bus: Event channel (default: a new EventBus)

        Raises:
            InvalidArgumentError: If an environment accessor is not callable
            ValidationError: If an initial record carries an unknown status
        """
        if not callable(get_network) or not callable(get_current_chain_id):
            raise InvalidArgumentError("get_network and get_current_chain_id must be callables")

        config = config or LedgerConfig()
        if tx_history_limit is not None:
            config = LedgerConfig(tx_history_limit=tx_history_limit)
        self.config = config

        self._get_network = get_network
        self._get_current_chain_id = get_current_chain_id
        self._lock = threading.RLock()
        self._events = event_bus or EventBus()
        # id -> the ledger's own (signed, rejected) watchers for that record
        self._outcome_watchers: Dict[TxId, Tuple[Subscription, Subscription]] = {}

        state = copy.deepcopy(dict(init_state or {}))
        transactions = state.get("transactions") or {}
        for tx_meta in transactions.values():
            if isinstance(tx_meta, dict) and tx_meta.get("status") is not None:
                tx_meta["status"] = coerce_status(tx_meta["status"])
        state["transactions"] = dict(transactions)

        if store is None:
            store = ObservableStore(state)
        else:
            store.update_state(state)
        self._store = store

    # ========================================================================
    # ENVIRONMENT
    # ========================================================================

    @property
    def tx_history_limit(self) -> int:
        return self.config.tx_history_limit

    @property
    def store(self) -> ObservableStore:
        """
        The underlying store.

        Its state is the ledger's live mapping, not a copy: store subscribers
        and get_state() callers must treat it as read-only. Writing to it
        directly bypasses validation and history; use get_transactions() for
        copies that are safe to modify.
        """
        return self._store

    @property
    def events(self) -> EventBus:
        return self._events

    def current_network_id(self) -> Any:
        return self._get_network()

    def current_chain_id(self) -> Any:
        return self._get_current_chain_id()

    def _on_current_network(self, tx_meta: TxMeta) -> bool:
        return is_on_network(tx_meta, self._get_network(), self._get_current_chain_id())

    # ========================================================================
    # EVENTS
    # ========================================================================

    def on(self, topic: str, listener: Listener) -> Subscription:
        """Subscribe to a lifecycle topic, e.g. "42:signed" or "tx:status-update"."""
        return self._events.on(topic, listener)

    def once(self, topic: str, listener: Listener) -> Subscription:
        return self._events.once(topic, listener)

    def off(self, topic: str, listener: Listener) -> bool:
        return self._events.off(topic, listener)

    # ========================================================================
    # STORE ACCESS
    # ========================================================================

    def _transactions(self) -> Dict[TxId, TxMeta]:
        return (self._store.get_state() or {}).get("transactions") or {}

    def _put_transactions(self, transactions: Dict[TxId, TxMeta]) -> None:
        self._store.update_state({"transactions": transactions})

    # ========================================================================
    # READS
    # ========================================================================

    def generate_tx_meta(self, **opts: Any) -> TxMeta:
        """
        Build a new unapproved record stamped with a fresh id, the current
        time and the current network. Keyword arguments override any field.

        The record is not added; pass it to add_transaction().
        """
        tx_meta: TxMeta = {
            "id": create_id(),
            "time": current_timestamp(),
            "status": TransactionStatus.UNAPPROVED,
            "network_id": self._get_network(),
            "chain_id": self._get_current_chain_id(),
        }
        tx_meta.update(opts)
        return tx_meta

    def get_transaction(self, tx_id: TxId) -> Optional[TxMeta]:
        """Return a copy of the record with tx_id, or None. Not network-scoped."""
        tx_meta = self._transactions().get(tx_id)
        return copy.deepcopy(tx_meta) if tx_meta is not None else None

    def get_transactions(
        self,
        search_criteria: Optional[Mapping[str, Any]] = None,
        initial_list: Optional[Sequence[TxMeta]] = None,
        filter_to_current_network: bool = True,
        limit: Optional[int] = None,
    ) -> List[TxMeta]:
        """
        Return copies of the records matching every option, in insertion order.

        Args:
            search_criteria: Field path -> literal value or predicate. Bare
                tx_params names ("from", "nonce") look inside tx_params;
                dotted names ("err.message") are explicit paths.
            initial_list: Filter these records instead of the ledger's
                mapping. Network scoping does not apply to it.
            filter_to_current_network: Restrict to the current network
                (ignored when initial_list is given)
            limit: Keep only the newest `limit` unique (from, nonce) groups,
                with every record of each group

        Raises:
            InvalidArgumentError: On malformed or conflicting options
        """
        predicates = build_predicates(search_criteria)
        validate_limit(limit)

        if initial_list is not None:
            if isinstance(initial_list, (str, bytes, Mapping)) or not isinstance(initial_list, Sequence):
                raise InvalidArgumentError("initial_list must be a sequence of transactions")
            transactions = list(initial_list)
        else:
            transactions = list(self._transactions().values())
            if filter_to_current_network:
                transactions = [tx for tx in transactions if self._on_current_network(tx)]

        if predicates:
            transactions = [tx for tx in transactions if tx_matches_criteria(tx, predicates)]
        if limit is not None:
            transactions = limit_by_unique_nonce(transactions, limit)
        return [copy.deepcopy(tx) for tx in transactions]

    def get_unapproved_tx_list(self) -> Dict[TxId, TxMeta]:
        """Unapproved records on the current network, keyed by id."""
        return {
            tx["id"]: tx
            for tx in self.get_transactions(search_criteria={"status": TransactionStatus.UNAPPROVED})
        }

    def _get_by_status(self, status: TransactionStatus, address: Optional[str]) -> List[TxMeta]:
        criteria: Dict[str, Any] = {"status": status}
        if address is not None:
            criteria["from"] = address
        return self.get_transactions(search_criteria=criteria)

    def get_approved_transactions(self, address: Optional[str] = None) -> List[TxMeta]:
        """Approved records on the current network, optionally sent from address."""
        return self._get_by_status(TransactionStatus.APPROVED, address)

    def get_pending_transactions(self, address: Optional[str] = None) -> List[TxMeta]:
        """Submitted (in-flight) records on the current network, optionally sent from address."""
        return self._get_by_status(TransactionStatus.SUBMITTED, address)

    def get_confirmed_transactions(self, address: Optional[str] = None) -> List[TxMeta]:
        return self._get_by_status(TransactionStatus.CONFIRMED, address)

    # ========================================================================
    # WRITES
    # ========================================================================

    def add_transaction(self, tx_meta: TxMeta) -> TxMeta:
        """
        Validate and store a new record, then apply retention.

        The record gets a fresh history whose first entry is a snapshot of
        the record as added. A missing status defaults to UNAPPROVED. An
        existing record with the same id is replaced whole.

        Returns:
            A copy of the stored record

        Raises:
            ValidationError: If the record or its tx_params are malformed;
                             the mapping is left untouched
        """
        if not isinstance(tx_meta, Mapping):
            raise ValidationError(
                f"Transaction must be a mapping, got {type(tx_meta).__name__}", value=tx_meta,
            )

        candidate = snapshot_from_tx_meta(tx_meta)
        if candidate.get("status") is None:
            candidate["status"] = TransactionStatus.UNAPPROVED
        validate_tx_meta(candidate)
        candidate["status"] = coerce_status(candidate["status"])
        candidate["history"] = [snapshot_from_tx_meta(candidate)]
        tx_id = candidate["id"]

        with self._lock:
            transactions = dict(self._transactions())
            replaced = transactions.pop(tx_id, None) is not None
            transactions[tx_id] = candidate

            scoped = [tx for tx in transactions.values() if self._on_current_network(tx)]
            evicted = select_for_truncation(scoped, self.tx_history_limit, pinned_id=tx_id)
            for evicted_id in evicted:
                del transactions[evicted_id]

            self._put_transactions(transactions)

            for evicted_id in evicted:
                self._release_outcome_watchers(evicted_id)
            self._release_outcome_watchers(tx_id)
            if not is_final_state(candidate["status"]):
                self._watch_outcome(tx_id)

        logger.debug("Added transaction %r (%s)%s", tx_id, candidate["status"], " replacing existing" if replaced else "")
        if evicted:
            logger.info("Retention limit %d reached: evicted %r", self.tx_history_limit, evicted)
        return copy.deepcopy(candidate)

    def update_transaction(self, tx_meta: TxMeta, note: Optional[str] = None) -> TxMeta:
        """
        Replace a stored record with a modified copy and record the change.

        The diff between the stored version and tx_meta is appended to the
        record's history (nothing is appended if they are equal). Any
        history passed in is ignored; the stored history is authoritative.

        Args:
            tx_meta: Modified copy of a stored record
            note: Reason recorded with the history entry

        Returns:
            A copy of the stored record

        Raises:
            NotFoundError: If no record has tx_meta["id"]
            ValidationError: If the new version is malformed or changes a
                             field fixed at creation
            InvalidTransitionError: If the status change is not allowed
        """
        if not isinstance(tx_meta, Mapping):
            raise ValidationError(
                f"Transaction must be a mapping, got {type(tx_meta).__name__}", value=tx_meta,
            )
        candidate = snapshot_from_tx_meta(tx_meta)
        validate_tx_meta(candidate)
        candidate["status"] = coerce_status(candidate["status"])
        tx_id = candidate["id"]

        with self._lock:
            transactions = self._transactions()
            if tx_id not in transactions:
                raise NotFoundError(tx_id)
            previous = transactions[tx_id]

            for field in IMMUTABLE_FIELDS:
                if (field in previous) != (field in candidate) or previous.get(field) != candidate.get(field):
                    raise ValidationError(
                        f"Transaction {tx_id!r}: {field} cannot change after creation",
                        field=field, value=candidate.get(field),
                    )
            if not is_valid_transition(previous.get("status"), candidate["status"]):
                raise InvalidTransitionError(tx_id, previous.get("status"), candidate["status"])

            previous_state = snapshot_from_tx_meta(previous)
            history = copy.deepcopy(previous.get("history") or [previous_state])
            entry = generate_history_entry(previous_state, candidate, note)
            if entry:
                history.append(entry)
            candidate["history"] = history

            updated = dict(transactions)
            updated[tx_id] = candidate
            self._put_transactions(updated)

        logger.debug("Updated transaction %r: %d change(s)%s", tx_id, len(entry), f" ({note})" if note else "")
        return copy.deepcopy(candidate)

    # ========================================================================
    # STATUS TRANSITIONS
    # ========================================================================

    def _set_tx_status(self, tx_id: TxId, status: TransactionStatus, **fields: Any) -> None:
        """
        Move a record to status, persist it, and queue its lifecycle events.

        Extra fields are written in the same update. Events are emitted only
        after the write succeeded: "<id>:<status>" with the id, and
        STATUS_UPDATE_EVENT with (id, status).
        """
        with self._lock:
            tx_meta = self.get_transaction(tx_id)
            if tx_meta is None:
                raise NotFoundError(tx_id)
            tx_meta.update(fields)
            tx_meta["status"] = status
            self.update_transaction(tx_meta, note=f"txStateManager: setting status to {status.value}")

        self._events.emit(f"{tx_meta['id']}:{status.value}", tx_id)
        self._events.emit(STATUS_UPDATE_EVENT, tx_id, status)

    def set_tx_status_unapproved(self, tx_id: TxId) -> None:
        self._set_tx_status(tx_id, TransactionStatus.UNAPPROVED)

    def set_tx_status_approved(self, tx_id: TxId) -> None:
        self._set_tx_status(tx_id, TransactionStatus.APPROVED)

    def set_tx_status_signed(self, tx_id: TxId) -> None:
        self._set_tx_status(tx_id, TransactionStatus.SIGNED)

    def set_tx_status_submitted(self, tx_id: TxId) -> None:
        """Mark the record submitted and stamp submitted_time."""
        self._set_tx_status(tx_id, TransactionStatus.SUBMITTED, submitted_time=current_timestamp())

    def set_tx_status_confirmed(self, tx_id: TxId) -> None:
        self._set_tx_status(tx_id, TransactionStatus.CONFIRMED)

    def set_tx_status_dropped(self, tx_id: TxId) -> None:
        self._set_tx_status(tx_id, TransactionStatus.DROPPED)

    def set_tx_status_rejected(self, tx_id: TxId) -> None:
        """
        Mark the record rejected, then delete it.

        The rejected events are still delivered after the record is gone.
        """
        with self._lock:
            self._set_tx_status(tx_id, TransactionStatus.REJECTED)
            self._delete_transaction(tx_id)
            self._events.remove_all_listeners(f"{tx_id}:signed")

    def set_tx_status_failed(self, tx_id: TxId, error: Any = None) -> None:
        """
        Mark the record failed and record the error under "err".

        Args:
            tx_id: Record to fail
            error: Exception or message describing the failure
        """
        if error is None:
            error = "Internal ledger failure"
        err: Dict[str, Any] = {"message": str(error), "rpc": getattr(error, "rpc", None), "stack": None}
        if isinstance(error, BaseException):
            err["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        self._set_tx_status(tx_id, TransactionStatus.FAILED, err=err)

    # ========================================================================
    # DELETION
    # ========================================================================

    def _delete_transaction(self, tx_id: TxId) -> None:
        """
        Remove one record and its history from the raw mapping (any network).

        Raises:
            NotFoundError: If no record has tx_id
        """
        with self._lock:
            transactions = dict(self._transactions())
            if tx_id not in transactions:
                raise NotFoundError(tx_id)
            del transactions[tx_id]
            self._put_transactions(transactions)
            self._release_outcome_watchers(tx_id)
        logger.debug("Deleted transaction %r", tx_id)

    def _delete_where(self, predicate: Callable[[TxMeta], bool]) -> List[TxId]:
        with self._lock:
            transactions = self._transactions()
            doomed = [tx_id for tx_id, tx in transactions.items() if predicate(tx)]
            doomed_ids = set(doomed)
            if doomed:
                self._put_transactions(
                    {tx_id: tx for tx_id, tx in transactions.items() if tx_id not in doomed_ids}
                )
            for tx_id in doomed:
                self._release_outcome_watchers(tx_id)
        return doomed

    def _watch_outcome(self, tx_id: TxId) -> None:
        """
        Make signing and rejecting mutually exclusive for tx_id.

        Whichever of "<id>:signed" and "<id>:rejected" is delivered first
        removes every listener on the other topic. The ledger keeps the two
        watcher subscriptions so they can be released when the record is
        evicted, replaced or deleted; caller listeners are not touched.
        """
        def settle(other_topic: str) -> Listener:
            def listener(*_: Any) -> None:
                with self._lock:
                    self._outcome_watchers.pop(tx_id, None)
                self._events.remove_all_listeners(other_topic)
            return listener

        self._outcome_watchers[tx_id] = (
            self._events.once(f"{tx_id}:signed", settle(f"{tx_id}:rejected")),
            self._events.once(f"{tx_id}:rejected", settle(f"{tx_id}:signed")),
        )

    def _release_outcome_watchers(self, tx_id: TxId) -> None:
        for subscription in self._outcome_watchers.pop(tx_id, ()):
            subscription.unsubscribe()

    def wipe_transactions(self, address: str) -> List[TxId]:
        """
        Delete every current-network record sent from address.

        Records from the same address on other networks are kept.

        Returns:
            Ids of the deleted records
        """
        removed = self._delete_where(
            lambda tx: self._on_current_network(tx) and (tx.get("tx_params") or {}).get("from") == address
        )
        logger.info("Wiped %d transaction(s) from %s", len(removed), address)
        return removed

    def clear_unapproved_txs(self) -> List[TxId]:
        """
        Delete every unapproved record on every network.

        Returns:
            Ids of the deleted records
        """
        removed = self._delete_where(lambda tx: tx.get("status") == TransactionStatus.UNAPPROVED)
        logger.info("Cleared %d unapproved transaction(s)", len(removed))
        return removed
