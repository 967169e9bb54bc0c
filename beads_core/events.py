"""Event records for the Beads append log.

Every mutation is one JSON line::

    {"event_id": "...", "op": "update", "issue_id": "bd-a3f8",
     "origin": "<event_id of the issue's create>", "ts": "...Z",
     "seq": 17, "actor": "alice", "data": {"priority": 0}}

``event_id`` is a content hash assigned once, when the event is written.
Reconciliation may later rewrite ``issue_id`` (recording ``renamed_from``)
but never the ``event_id``, so the same event is recognised in every replica.
"""

import hashlib
from typing import Any, Dict, Optional, Tuple

from beads_core.constants import VALID_OPS
from beads_core.utils import canonical_json, get_iso_timestamp, normalize_timestamp

__all__ = [
    "make_event",
    "compute_event_id",
    "event_origin",
    "event_sort_key",
    "validate_event",
    "rename_event",
    "stamp_event",
]

_REQUIRED_KEYS = ("event_id", "op", "issue_id", "ts", "seq", "actor")


def compute_event_id(event: Dict[str, Any]) -> str:
    """Content hash over everything but the identity fields themselves."""
    body = {k: v for k, v in event.items() if k not in ("event_id", "renamed_from")}
    return hashlib.sha256(canonical_json(body).encode("utf-8")).hexdigest()[:20]


def make_event(
    op: str,
    issue_id: str,
    actor: str,
    data: Optional[Dict[str, Any]] = None,
    origin: Optional[str] = None,
    ts: Optional[str] = None,
    seq: int = 0,
) -> Dict[str, Any]:
    """Build an event dict. ``event_id`` is filled in by stamp_event()
    once the log assigns ``seq``."""
    if op not in VALID_OPS:
        raise ValueError(f"Invalid op: {op}. Must be one of {sorted(VALID_OPS)}")

    event: Dict[str, Any] = {
        "op": op,
        "issue_id": issue_id,
        "ts": ts or get_iso_timestamp(),
        "seq": seq,
        "actor": actor,
        "data": data or {},
    }
    if origin is not None:
        event["origin"] = origin
    return event


def stamp_event(event: Dict[str, Any], seq: int) -> Dict[str, Any]:
    """Copy of ``event`` with its sequence number and event_id assigned."""
    stamped = dict(event)
    stamped["seq"] = seq
    stamped["event_id"] = compute_event_id(stamped)
    return stamped


def event_origin(event: Dict[str, Any]) -> Optional[str]:
    """Identity of the issue an event belongs to.

    A create event *is* the identity, so its origin is its own event_id.
    """
    if event["op"] == "create":
        return event["event_id"]
    return event.get("origin")


def event_sort_key(event: Dict[str, Any]) -> Tuple[str, str, int, str]:
    """Replay order: timestamp, then actor, then local sequence, then id.

    Concurrent edits to the same field therefore resolve last-writer-wins by
    timestamp with a lexical actor tie-break, identically on every replica.
    """
    return (normalize_timestamp(event["ts"]), event["actor"], int(event["seq"]), event["event_id"])


def validate_event(event: Any) -> Dict[str, Any]:
    """Check the shape of a decoded log line.

    Raises:
        ValueError: Describing the first problem found
    """
    if not isinstance(event, dict):
        raise ValueError("record is not a JSON object")
    for key in _REQUIRED_KEYS:
        if key not in event:
            raise ValueError(f"missing '{key}'")
    if event["op"] not in VALID_OPS:
        raise ValueError(f"unknown op '{event['op']}'")
    if not isinstance(event["seq"], int):
        raise ValueError("'seq' is not an integer")
    if not isinstance(event["ts"], str):
        raise ValueError("'ts' is not a string")
    try:
        normalize_timestamp(event["ts"])
    except ValueError:
        raise ValueError(f"'ts' is not a timestamp: {event['ts']!r}") from None
    if not isinstance(event.get("data", {}), dict):
        raise ValueError("'data' is not an object")
    event.setdefault("data", {})
    return event


def rename_event(event: Dict[str, Any], **changes: Any) -> Dict[str, Any]:
    """Copy of ``event`` with top-level or ``data`` fields rewritten.

    Keys prefixed ``data__`` go into ``data``. The first rewrite of
    ``issue_id`` records the original id in ``renamed_from``.
    """
    renamed = dict(event)
    renamed["data"] = dict(event.get("data", {}))
    for key, value in changes.items():
        if key.startswith("data__"):
            renamed["data"][key[len("data__"):]] = value
        else:
            if key == "issue_id" and value != event["issue_id"]:
                renamed.setdefault("renamed_from", event["issue_id"])
            renamed[key] = value
    return renamed
