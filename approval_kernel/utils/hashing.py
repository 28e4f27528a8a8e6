"""
Canonical JSON and the audit hash chain.

``SqlAlchemyAuditSink`` stores each event payload in its canonical JSON
form and links every row to its predecessor:

    payload_hash = sha256(canonical_json(payload))
    hash         = sha256(expense_id | seq | event_type | payload_hash | prev_hash)

The first event of an expense hashes against the literal ``GENESIS``.
"""

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

GENESIS = "GENESIS"


def _json_default(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # 100.0 and 100 must hash alike
        return str(obj.normalize())
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, Decimal/datetime/Enum/set normalized."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_json_default)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    expense_id: str,
    sequence: int,
    event_type: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain hash of one audit row; ``prev_hash`` is None for the first row."""
    return _sha256("|".join((
        expense_id,
        str(sequence),
        event_type,
        payload_hash,
        prev_hash or GENESIS,
    )))
