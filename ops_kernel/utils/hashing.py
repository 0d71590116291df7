"""
Canonical JSON and the audit-event hash chain.

A payload is canonicalized before it is stored or hashed: sorted keys, no
whitespace, Decimals normalized, UUIDs/dates/enums as strings.  The stored
payload is therefore exactly what was hashed, and ``validate_chain`` can
recompute every hash from the table alone.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Context, Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"

# Wider than any NUMERIC(38, 9) value, so normalize() never rounds
_NORMALIZE_CONTEXT = Context(prec=80)


def _canonical_value(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        # normalize() so 10.50 and 10.5 hash alike; "f" keeps 100 from becoming 1E+2
        return format(obj.normalize(_NORMALIZE_CONTEXT), "f")
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    raise TypeError(f"{type(obj).__name__} has no canonical JSON form")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_canonical_value)


def to_json_safe(data: dict[str, Any]) -> dict[str, Any]:
    """The payload as it will read back from a JSON column."""
    return json.loads(canonicalize_json(data))


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: dict) -> str:
    return _sha256(canonicalize_json(payload))


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Hash of one audit event, chained to the one before it.

    Editing any earlier event changes its hash, so every later prev_hash
    stops matching.
    """
    return _sha256(
        "|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS))
    )
