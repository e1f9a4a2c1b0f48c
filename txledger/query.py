"""
query.py - Filtering, ordering and retention over transaction records

Pure functions used by TransactionLedger to build its read views:
- network scoping (is_on_network)
- search criteria (build_predicates, tx_matches_criteria)
- unique-nonce limiting (limit_by_unique_nonce)
- retention selection (select_for_truncation)

Inputs are lists of records in insertion order; outputs preserve that order.
"""

from __future__ import annotations
from typing import Any, Callable, Dict, Hashable, List, Mapping, Optional, Sequence, Set, Tuple

from .core import TxId, TxMeta, InvalidArgumentError, is_final_state
from .validation import TX_PARAMS_FIELDS


# Resolved path into a record, e.g. ("tx_params", "from").
FieldPath = Tuple[str, ...]

Predicate = Callable[[Any], bool]

_MISSING = object()


# ============================================================================
# NETWORK SCOPING
# ============================================================================

def is_on_network(tx_meta: TxMeta, network_id: Any, chain_id: Any) -> bool:
    """
    Return True if the record belongs to the given network.

    A record carrying a chain_id is matched on chain_id alone; records without
    one fall back to network_id.
    """
    record_chain_id = tx_meta.get("chain_id")
    if record_chain_id is not None:
        return record_chain_id == chain_id
    return tx_meta.get("network_id") == network_id


# ============================================================================
# SEARCH CRITERIA
# ============================================================================

def resolve_field_path(key: str) -> FieldPath:
    """
    Resolve a search criteria key into a path inside a record.

    Bare tx_params field names ("from", "gasPrice") resolve inside tx_params;
    other bare names resolve at the top level; dotted names are explicit paths.
    """
    if not isinstance(key, str) or not key:
        raise InvalidArgumentError(f"Search criteria keys must be non-empty strings, got {key!r}")
    if "." in key:
        path = tuple(key.split("."))
        if not all(path):
            raise InvalidArgumentError(f"Malformed search criteria path {key!r}")
        return path
    if key in TX_PARAMS_FIELDS:
        return ("tx_params", key)
    return (key,)


def get_field(tx_meta: TxMeta, path: FieldPath) -> Any:
    """Return the value at path, or None if any step is missing."""
    value: Any = tx_meta
    for token in path:
        if not isinstance(value, Mapping):
            return None
        value = value.get(token, _MISSING)
        if value is _MISSING:
            return None
    return value


def _equals(expected: Any) -> Predicate:
    return lambda value: value == expected


def build_predicates(search_criteria: Optional[Mapping[str, Any]]) -> List[Tuple[FieldPath, Predicate]]:
    """
    Turn search criteria into (path, predicate) pairs.

    Callable values are used as predicates; any other value is shorthand for
    an equality test.

    Raises:
        InvalidArgumentError: If criteria is not a mapping, a key is malformed,
                              or two keys resolve to the same field.
    """
    if search_criteria is None:
        return []
    if not isinstance(search_criteria, Mapping):
        raise InvalidArgumentError(
            f"search_criteria must be a mapping, got {type(search_criteria).__name__}"
        )

    predicates: List[Tuple[FieldPath, Predicate]] = []
    seen: Dict[FieldPath, str] = {}
    for key, expected in search_criteria.items():
        path = resolve_field_path(key)
        if path in seen:
            raise InvalidArgumentError(
                f"Conflicting search criteria: {seen[path]!r} and {key!r} both select {'.'.join(path)}"
            )
        seen[path] = key
        predicates.append((path, expected if callable(expected) else _equals(expected)))
    return predicates


def tx_matches_criteria(tx_meta: TxMeta, predicates: Sequence[Tuple[FieldPath, Predicate]]) -> bool:
    """Return True if the record satisfies every predicate."""
    return all(predicate(get_field(tx_meta, path)) for path, predicate in predicates)


# ============================================================================
# NONCE GROUPS
# ============================================================================

def nonce_group_key(tx_meta: TxMeta) -> Hashable:
    """
    Key identifying the nonce group a record belongs to.

    Records sharing (from, nonce) compete for the same slot and share a
    group. A record without a nonce is a group of its own.
    """
    tx_params = tx_meta.get("tx_params") or {}
    nonce = tx_params.get("nonce")
    if nonce is None:
        return ("id", tx_meta.get("id"))
    return ("nonce", tx_params.get("from"), nonce)


def validate_limit(limit: Any) -> None:
    """Raise InvalidArgumentError unless limit is None or a positive int."""
    if limit is None:
        return
    if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
        raise InvalidArgumentError(f"limit must be a positive int, got {limit!r}")


def limit_by_unique_nonce(transactions: Sequence[TxMeta], limit: int) -> List[TxMeta]:
    """
    Keep the records of the newest `limit` nonce groups.

    Walks from newest to oldest so the most recent groups win; every member
    of a selected group is returned, so the result may hold more than `limit`
    records. Original order is preserved.
    """
    selected: Set[Hashable] = set()
    kept: List[TxMeta] = []
    for tx_meta in reversed(transactions):
        key = nonce_group_key(tx_meta)
        if key not in selected:
            if len(selected) >= limit:
                continue
            selected.add(key)
        kept.append(tx_meta)
    kept.reverse()
    return kept


# ============================================================================
# RETENTION
# ============================================================================

def select_for_truncation(
    transactions: Sequence[TxMeta],
    limit: int,
    pinned_id: Optional[TxId] = None,
) -> List[TxId]:
    """
    Choose which records to evict so at most `limit` nonce groups remain.

    Retention rules:
    1. Groups holding any non-terminal record are never evicted; they count
       toward the limit.
    2. The group of pinned_id (the record just added) is kept as well.
    3. Remaining slots go to the newest terminal groups.
    4. Everything else is evicted, whole groups at a time.

    Args:
        transactions: Records of one network, in insertion order
        limit: Maximum number of nonce groups to retain
        pinned_id: Id of a record whose group must survive

    Returns:
        Ids to delete, oldest first.
    """
    groups: Dict[Hashable, List[TxMeta]] = {}
    # A group's age is that of its newest member
    newest_position: Dict[Hashable, int] = {}
    for position, tx_meta in enumerate(transactions):
        key = nonce_group_key(tx_meta)
        groups.setdefault(key, []).append(tx_meta)
        newest_position[key] = position

    if len(groups) <= limit:
        return []

    retained: Set[Hashable] = set()
    for key, members in groups.items():
        if any(not is_final_state(tx.get("status")) for tx in members):
            retained.add(key)
        elif pinned_id is not None and any(tx.get("id") == pinned_id for tx in members):
            retained.add(key)

    for key in sorted(groups, key=newest_position.__getitem__, reverse=True):
        if len(retained) >= limit:
            break
        retained.add(key)

    return [tx["id"] for tx in transactions if nonce_group_key(tx) not in retained]
