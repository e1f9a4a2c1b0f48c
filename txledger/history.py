"""
history.py - Audit history for transaction records

A record's history is append-only:
    history[0]   full snapshot of the record when it was added
    history[n]   ordered batch of diff operations turning version n-1 into n

Diff operations follow JSON-patch shape ({"op", "path", "value"}) with paths
written as JSON pointers ("/tx_params/gasPrice"). Every operation in a batch
carries the same capture timestamp; the first one may also carry a note.

All functions are pure: inputs are never mutated and outputs never share
structure with inputs.
"""

from __future__ import annotations
import copy
from typing import Any, List, Mapping, Optional, Sequence

from .core import DiffOp, HistoryEntry, TxMeta, current_timestamp


OP_ADD = "add"
OP_REMOVE = "remove"
OP_REPLACE = "replace"


def snapshot_from_tx_meta(tx_meta: TxMeta) -> TxMeta:
    """Return a deep copy of the record without its history."""
    return copy.deepcopy({key: value for key, value in tx_meta.items() if key != "history"})


# ============================================================================
# STRUCTURAL DIFF
# ============================================================================

def _escape(token: Any) -> str:
    return str(token).replace("~", "~0").replace("/", "~1")


def _unescape(token: str) -> str:
    return token.replace("~1", "/").replace("~0", "~")


def _same_value(old: Any, new: Any) -> bool:
    # True == 1 in Python; a bool turning into an int is still a change
    if isinstance(old, bool) or isinstance(new, bool):
        return type(old) is type(new) and old == new
    return old == new


def _diff(old: Any, new: Any, path: str, ops: List[DiffOp]) -> None:
    if isinstance(old, Mapping) and isinstance(new, Mapping):
        for key in old:
            if key not in new:
                ops.append({"op": OP_REMOVE, "path": f"{path}/{_escape(key)}"})
        for key, value in new.items():
            child = f"{path}/{_escape(key)}"
            if key not in old:
                ops.append({"op": OP_ADD, "path": child, "value": copy.deepcopy(value)})
            else:
                _diff(old[key], value, child, ops)
        return

    if (isinstance(old, (list, tuple)) and isinstance(new, (list, tuple))
            and len(old) == len(new)):
        for index, (old_item, new_item) in enumerate(zip(old, new)):
            _diff(old_item, new_item, f"{path}/{index}", ops)
        return

    if not _same_value(old, new):
        ops.append({"op": OP_REPLACE, "path": path, "value": copy.deepcopy(new)})


def compare(old: Any, new: Any) -> List[DiffOp]:
    """
    Compute the ordered diff operations turning old into new.

    Mappings are compared key by key: removals first (in old's key order),
    then additions and nested changes (in new's key order). Sequences of equal
    length are compared item by item; a sequence whose length changes is
    replaced whole. Identical inputs produce an empty list.
    """
    ops: List[DiffOp] = []
    _diff(old, new, "", ops)
    return ops


def generate_history_entry(previous: Any, new: Any, note: Optional[str] = None) -> HistoryEntry:
    """
    Build one history entry describing the change from previous to new.

    Args:
        previous: Prior version of the record (without history)
        new: Candidate version of the record (without history)
        note: Optional human-readable reason, stored on the first operation

    Returns:
        Ordered list of diff operations, each stamped with the same capture
        timestamp (ms since epoch). Empty if nothing changed.
    """
    entry = compare(previous, new)
    if entry:
        timestamp = current_timestamp()
        for op in entry:
            op["timestamp"] = timestamp
        if note:
            entry[0]["note"] = note
    return entry


# ============================================================================
# REPLAY
# ============================================================================

def _parse_path(path: str) -> List[str]:
    if path == "":
        return []
    if not path.startswith("/"):
        raise ValueError(f"Invalid diff path {path!r}")
    return [_unescape(token) for token in path[1:].split("/")]


def _resolve_key(container: Any, token: str) -> Any:
    if isinstance(container, list):
        return int(token)
    if token not in container:
        # Integer ids survive a round trip through a path only as text
        for key in container:
            if str(key) == token:
                return key
    return token


def apply_diff(state: Any, ops: Sequence[DiffOp]) -> Any:
    """
    Apply a batch of diff operations to a deep copy of state and return it.

    Raises:
        ValueError: If an operation has an unknown kind or an invalid path.
    """
    result = copy.deepcopy(state)
    for op in ops:
        kind = op["op"]
        tokens = _parse_path(op["path"])
        if not tokens:
            if kind == OP_REMOVE:
                result = None
            else:
                result = copy.deepcopy(op["value"])
            continue

        parent = result
        for token in tokens[:-1]:
            parent = parent[_resolve_key(parent, token)]
        key = _resolve_key(parent, tokens[-1])

        if kind == OP_REMOVE:
            del parent[key]
        elif kind in (OP_ADD, OP_REPLACE):
            parent[key] = copy.deepcopy(op["value"])
        else:
            raise ValueError(f"Unknown diff operation {kind!r}")
    return result


def replay_history(history: Sequence[Any]) -> TxMeta:
    """
    Rebuild the latest version of a record from its history.

    The first entry is the base snapshot; each following entry is applied in
    order. The result equals the record minus its history key.
    """
    if not history:
        raise ValueError("Cannot replay an empty history")
    state = copy.deepcopy(history[0])
    for entry in history[1:]:
        state = apply_diff(state, entry)
    return state


def migrate_from_snapshots_to_diffs(long_history: Sequence[TxMeta]) -> List[Any]:
    """
    Convert a history made of full snapshots into snapshot + diff form.

    The first snapshot is kept as is; each later snapshot becomes the diff
    from its predecessor. Snapshots identical to their predecessor produce no
    entry.
    """
    if not long_history:
        return []
    migrated: List[Any] = [copy.deepcopy(long_history[0])]
    for previous, current in zip(long_history, long_history[1:]):
        entry = generate_history_entry(previous, current)
        if entry:
            migrated.append(entry)
    return migrated
