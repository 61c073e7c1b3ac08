"""Normalization of Planyo's loosely-typed responses.

Planyo places the interesting part of a payload under ``data``, under
``result`` or at the top level depending on account and method, so every
lookup here goes through :func:`first_match` over :func:`alias_paths`.
"""
from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, Optional

from .models import BusyInterval

Accessor = Callable[[Any], Any]

_DIGITS = re.compile(r"[0-9]+")

# Unix seconds, exclusive bounds (roughly 2001 to year 5138)
UNIX_MIN = 1_000_000_000
UNIX_MAX = 99_999_999_999

# Ordered containers for the fallback busy-interval scan.
FALLBACK_CONTAINERS = ("periods", "bookings", "reservations", "busy_periods", "items")

# (from, to) field pairs tried on each fallback item, in order.
_INTERVAL_FIELDS = (
    ("from", "to"),
    ("start", "end"),
    ("start_time", "end_time"),
    ("start_date", "end_date"),
)

PREVIEW_LIST_ITEMS = 5
PREVIEW_OBJECT_KEYS = 35


def dig(obj: Any, *keys: str) -> Any:
    """Walk nested dicts, returning None as soon as a step is missing."""
    for key in keys:
        if not isinstance(obj, dict):
            return None
        obj = obj.get(key)
    return obj


def alias_paths(*keys: str) -> list[Accessor]:
    return [
        lambda p: dig(p, "data", *keys),
        lambda p: dig(p, "result", *keys),
        lambda p: dig(p, *keys),
    ]


def first_match(obj: Any, accessors: Iterable[Accessor]) -> Any:
    """Return the first non-None value produced by ``accessors``."""
    for accessor in accessors:
        value = accessor(obj)
        if value is not None:
            return value
    return None


def _entries(container: Any) -> list:
    """Items of a list, or values of a dict keyed by index/id."""
    if isinstance(container, dict):
        return list(container.values())
    if isinstance(container, list):
        return container
    return []


def canonical_id(value: Any) -> Optional[str]:
    """Planyo ids arrive as ints or digit strings; compare them as strings."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, str) and _DIGITS.fullmatch(value):
        return value
    return None


def _dedupe(ids: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(ids))


# resource_search ---------------------------------------------------------

def extract_available_ids(payload: Any) -> list[str]:
    results = first_match(payload, alias_paths("results"))
    ids = []
    for item in _entries(results):
        if not isinstance(item, dict):
            continue
        rid = canonical_id(item.get("id") or item.get("resource_id"))
        if rid is not None:
            ids.append(rid)
    return _dedupe(ids)


def extract_reasons(payload: Any) -> dict[str, str]:
    """``reason_not_listed`` map: resource id -> human readable reason."""
    reasons = first_match(payload, alias_paths("reason_not_listed"))
    if not isinstance(reasons, dict):
        return {}
    return {str(rid): "" if why is None else str(why) for rid, why in reasons.items()}


def deep_scan_resource_ids(payload: Any) -> list[str]:
    """Best effort: walk the whole payload collecting anything id-shaped.

    Last resort for accounts whose responses match none of the documented
    shapes. Numeric dict keys count as ids, so expect false positives; the
    output is diagnostic only.
    """
    found: list[str] = []
    stack = [payload]
    seen: set[int] = set()
    while stack:
        cur = stack.pop()
        if not isinstance(cur, (dict, list)) or id(cur) in seen:
            continue
        seen.add(id(cur))
        if isinstance(cur, list):
            stack.extend(reversed(cur))
            continue
        for field in ("resource_id", "id"):
            rid = canonical_id(cur.get(field))
            if rid is not None:
                found.append(rid)
        children = []
        for key, value in cur.items():
            if isinstance(key, str) and _DIGITS.fullmatch(key):
                found.append(key)
            if isinstance(value, (dict, list)):
                children.append(value)
        stack.extend(reversed(children))
    return _dedupe(found)


# get_resource_usage ----------------------------------------------------------

def _unix(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str) and _DIGITS.fullmatch(value):
        value = int(value)
    if isinstance(value, (int, float)) and UNIX_MIN < value < UNIX_MAX:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def _iso(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.strip())
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _to_instant(value: Any) -> Optional[datetime]:
    return _unix(value) or _iso(value)


def _interval(start: Optional[datetime], end: Optional[datetime]) -> Optional[BusyInterval]:
    if start is None or end is None:
        return None
    return BusyInterval(start=start, end=end)


def usage_intervals(payload: Any, resource_id: str) -> list[BusyInterval]:
    """Primary path: ``usage[<resource id>]`` entries with Unix-second from/to."""
    usage = first_match(payload, alias_paths("usage"))
    if not isinstance(usage, dict):
        return []
    intervals = []
    for entry in _entries(usage.get(str(resource_id))):
        if not isinstance(entry, dict):
            continue
        found = _interval(_unix(entry.get("from")), _unix(entry.get("to")))
        if found is not None:
            intervals.append(found)
    return intervals


def fallback_busy_intervals(payload: Any) -> list[BusyInterval]:
    """Secondary path: first list found under :data:`FALLBACK_CONTAINERS`.

    Items may use any pair from ``_INTERVAL_FIELDS`` holding either ISO dates
    or Unix seconds.
    """
    items = []
    for name in FALLBACK_CONTAINERS:
        items = _entries(first_match(payload, alias_paths(name)))
        if items:
            break
    intervals = []
    for item in items:
        if not isinstance(item, dict):
            continue
        for start_key, end_key in _INTERVAL_FIELDS:
            found = _interval(_to_instant(item.get(start_key)), _to_instant(item.get(end_key)))
            if found is not None:
                intervals.append(found)
                break
    return intervals


def extract_busy_intervals(payload: Any, resource_id: str) -> list[BusyInterval]:
    """Busy blocks for ``resource_id``; empty means fully available."""
    return usage_intervals(payload, resource_id) or fallback_busy_intervals(payload)


# diagnostics -----------------------------------------------------------------

def safe_keys(obj: Any) -> list[str]:
    if isinstance(obj, dict):
        return [str(k) for k in obj.keys()]
    return []


def make_raw_preview(obj: Any) -> Any:
    """Truncated view of the meaningful part of a payload for ``debug=1``."""
    if not obj:
        return obj
    preview = first_match(obj, [lambda p: dig(p, "data"), lambda p: dig(p, "result"), lambda p: p])
    if isinstance(preview, list):
        return preview[:PREVIEW_LIST_ITEMS]
    if isinstance(preview, dict):
        return {k: preview[k] for k in list(preview)[:PREVIEW_OBJECT_KEYS]}
    return preview
