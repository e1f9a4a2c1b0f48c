"""
validation.py - Pure validation functions for transaction records

Every function here either returns normally or raises ValidationError naming
the offending field and value. None of them mutate their input, so the ledger
can validate a candidate record before touching its mapping.
"""

from __future__ import annotations
import re
from typing import Any, Mapping

from .core import (
    TxMeta, TxParams, TransactionStatus,
    SENDER_REQUIRED_STATES,
    ValidationError,
    to_status,
)


# Address fields: 0x-prefixed hex with at least one digit.
ADDRESS_FIELDS = ("from", "to")

# Quantity fields: 0x-prefixed hex numbers with at least one digit.
QUANTITY_FIELDS = ("nonce", "gas", "gasPrice", "value")

# Byte fields: 0x-prefixed hex, "0x" alone meaning empty.
DATA_FIELDS = ("data",)

# All known tx_params fields other than chainId.
TX_PARAMS_FIELDS = ADDRESS_FIELDS + QUANTITY_FIELDS + DATA_FIELDS

_HEX_QUANTITY = re.compile(r"^0x[0-9a-fA-F]+$")
_HEX_DATA = re.compile(r"^0x[0-9a-fA-F]*$")


def _fail(field: str, value: Any, reason: str) -> None:
    raise ValidationError(f"Invalid tx_params.{field} {value!r}: {reason}", field=field, value=value)


def validate_tx_params(tx_params: TxParams) -> None:
    """
    Check that every present tx_params field has the expected format.

    Absent fields and None values are permitted. chainId may be a hex string
    or an int; unknown keys must hold 0x-prefixed hex strings.

    Raises:
        ValidationError: On the first malformed field.
    """
    if not isinstance(tx_params, Mapping):
        raise ValidationError(
            f"tx_params must be a mapping, got {type(tx_params).__name__}",
            field="tx_params", value=tx_params,
        )

    for field, value in tx_params.items():
        if value is None:
            continue
        if field == "chainId":
            if isinstance(value, bool) or not isinstance(value, (str, int)):
                _fail(field, value, "must be a string or an int")
            if isinstance(value, str) and not _HEX_QUANTITY.match(value):
                _fail(field, value, "must be a 0x-prefixed hex quantity")
            continue
        if not isinstance(value, str):
            _fail(field, value, "must be a string")
        if field in ADDRESS_FIELDS:
            if not _HEX_QUANTITY.match(value):
                _fail(field, value, "address must be 0x-prefixed hex")
        elif field in QUANTITY_FIELDS:
            if not _HEX_QUANTITY.match(value):
                _fail(field, value, "must be a 0x-prefixed hex quantity")
        # data and unknown keys
        elif not _HEX_DATA.match(value):
            _fail(field, value, "must be 0x-prefixed hex data")


def coerce_status(value: Any) -> TransactionStatus:
    """Return value as a TransactionStatus, raising ValidationError for unknown statuses."""
    status = to_status(value)
    if status is None:
        raise ValidationError(f"Unknown transaction status {value!r}", field="status", value=value)
    return status


def validate_tx_meta(tx_meta: TxMeta) -> None:
    """
    Validate the shell of a transaction record and its tx_params.

    Checks performed:
    1. id is present and is a str or int
    2. status is a known TransactionStatus
    3. tx_params (if present) passes validate_tx_params
    4. records at or past SIGNED name their sender (tx_params.from)

    Raises:
        ValidationError: On the first violation.
    """
    if not isinstance(tx_meta, Mapping):
        raise ValidationError(
            f"Transaction must be a mapping, got {type(tx_meta).__name__}",
            field=None, value=tx_meta,
        )

    tx_id = tx_meta.get("id")
    if isinstance(tx_id, bool) or not isinstance(tx_id, (str, int)):
        raise ValidationError(f"Transaction id must be a str or int, got {tx_id!r}", field="id", value=tx_id)

    status = coerce_status(tx_meta.get("status"))

    tx_params = tx_meta.get("tx_params")
    if tx_params is not None:
        validate_tx_params(tx_params)

    if status in SENDER_REQUIRED_STATES:
        sender = tx_params.get("from") if isinstance(tx_params, Mapping) else None
        if sender is None:
            raise ValidationError(
                f"Transaction {tx_id!r} is {status} but has no tx_params.from",
                field="from", value=None,
            )
