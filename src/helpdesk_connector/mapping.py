"""
Field mapping helpers shared by every connector.

All functions here are total: they accept whatever a source sends (None,
numbers, unexpected strings, malformed hrefs) and return a usable value.
Unknown status/priority tokens fall back to open/normal and are counted in
a per-source DriftCounter so vocabulary changes show up in export results
instead of as crashes.
"""

from collections import Counter
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

import structlog

from helpdesk_connector.models import TicketPriority, TicketStatus

logger = structlog.get_logger(__name__)


def canonical_id(prefix: str, external_id: Any, kind: str | None = None) -> str:
    """
    Deterministic canonical id.

    canonical_id("zd", 42) -> "zd-42"
    canonical_id("zd", 42, "msg") -> "zd-msg-42"
    """
    if kind:
        return f"{prefix}-{kind}-{external_id}"
    return f"{prefix}-{external_id}"


# ---------------------------------------------------------------------------
# Vocabularies
# ---------------------------------------------------------------------------

ZENDESK_STATUSES = {
    "new": TicketStatus.OPEN,
    "open": TicketStatus.OPEN,
    "pending": TicketStatus.PENDING,
    "hold": TicketStatus.ON_HOLD,
    "solved": TicketStatus.SOLVED,
    "closed": TicketStatus.CLOSED,
}

HELPSCOUT_STATUSES = {
    "active": TicketStatus.OPEN,
    "pending": TicketStatus.PENDING,
    "closed": TicketStatus.CLOSED,
    "spam": TicketStatus.CLOSED,
}

GROOVE_STATUSES = {
    "unread": TicketStatus.OPEN,
    "opened": TicketStatus.OPEN,
    "pending": TicketStatus.PENDING,
    "closed": TicketStatus.CLOSED,
    "spam": TicketStatus.CLOSED,
}

INTERCOM_STATUSES = {
    "open": TicketStatus.OPEN,
    "closed": TicketStatus.CLOSED,
    "snoozed": TicketStatus.ON_HOLD,
}

STANDARD_PRIORITIES = {
    "low": TicketPriority.LOW,
    "normal": TicketPriority.NORMAL,
    "high": TicketPriority.HIGH,
    "urgent": TicketPriority.URGENT,
}

INTERCOM_PRIORITIES = {
    "priority": TicketPriority.HIGH,
    "not_priority": TicketPriority.NORMAL,
}

# Keyword rules, first match wins. Used by sources whose labels are free text.
KEYWORD_STATUSES: tuple[tuple[tuple[str, ...], TicketStatus], ...] = (
    (("new", "open"), TicketStatus.OPEN),
    (("pending",), TicketStatus.PENDING),
    (("hold", "wait"), TicketStatus.ON_HOLD),
    (("solved", "resolved", "completed"), TicketStatus.SOLVED),
    (("closed",), TicketStatus.CLOSED),
)

KEYWORD_PRIORITIES: tuple[tuple[tuple[str, ...], TicketPriority], ...] = (
    (("low",), TicketPriority.LOW),
    (("high",), TicketPriority.HIGH),
    (("urgent", "critical"), TicketPriority.URGENT),
    (("normal", "medium"), TicketPriority.NORMAL),
)


class DriftCounter:
    """Counts raw vocabulary tokens that had no mapping, per field."""

    def __init__(self, source: str):
        self.source = source
        self._counts: Counter[tuple[str, str]] = Counter()

    def record(self, field: str, raw: str) -> None:
        key = (field, raw)
        if key not in self._counts:
            logger.debug("Unmapped vocabulary value", source=self.source, field=field, raw=raw)
        self._counts[key] += 1

    def summary(self) -> dict[str, dict[str, int]]:
        """{"status": {"escalated": 3}, ...}"""
        result: dict[str, dict[str, int]] = {}
        for (field, raw), count in sorted(self._counts.items()):
            result.setdefault(field, {})[raw] = count
        return result

    def __bool__(self) -> bool:
        return bool(self._counts)


def _token(raw: Any) -> str:
    if raw is None:
        return ""
    if isinstance(raw, Mapping):
        raw = raw.get("label") or raw.get("name") or ""
    return str(raw).strip().lower()


def _lookup(raw: Any, table: Mapping[str, Any], default: Any, field: str, drift: DriftCounter | None) -> Any:
    token = _token(raw)
    if token in table:
        return table[token]
    if token and drift is not None:
        drift.record(field, token)
    return default


def map_status(
    raw: Any,
    table: Mapping[str, TicketStatus],
    drift: DriftCounter | None = None,
) -> TicketStatus:
    """Map a raw status through `table`; anything unknown is open."""
    return _lookup(raw, table, TicketStatus.OPEN, "status", drift)


def map_priority(
    raw: Any,
    table: Mapping[str, TicketPriority] = STANDARD_PRIORITIES,
    drift: DriftCounter | None = None,
) -> TicketPriority:
    """Map a raw priority through `table`; anything unknown is normal."""
    return _lookup(raw, table, TicketPriority.NORMAL, "priority", drift)


def _match_keywords(raw: Any, rules: Iterable[tuple[tuple[str, ...], Any]], default: Any, field: str, drift: DriftCounter | None) -> Any:
    token = _token(raw)
    for keywords, value in rules:
        if any(word in token for word in keywords):
            return value
    if token and drift is not None:
        drift.record(field, token)
    return default


def match_status(raw: Any, drift: DriftCounter | None = None) -> TicketStatus:
    """Map a free-text status label by keyword ("Waiting on customer" -> on_hold)."""
    return _match_keywords(raw, KEYWORD_STATUSES, TicketStatus.OPEN, "status", drift)


def match_priority(raw: Any, drift: DriftCounter | None = None) -> TicketPriority:
    """Map a free-text priority label by keyword ("Critical" -> urgent)."""
    return _match_keywords(raw, KEYWORD_PRIORITIES, TicketPriority.NORMAL, "priority", drift)


# ---------------------------------------------------------------------------
# Record-building helpers
# ---------------------------------------------------------------------------

def display_name(
    first: Any = None,
    last: Any = None,
    email: Any = None,
    fallback: str = "",
) -> str:
    """First + last name, else email, else `fallback`."""
    parts = [str(p).strip() for p in (first, last) if p]
    name = " ".join(p for p in parts if p)
    if name:
        return name
    if email:
        return str(email)
    return fallback


def id_from_href(href: Any) -> str | None:
    """
    Trailing path segment of a resource URL.

    id_from_href("https://api.groovehq.com/v1/customers/jo@x.com") -> "jo@x.com"

    Returns None for a missing href, and the raw string when it has no
    usable segment.
    """
    if href is None:
        return None
    raw = str(href).strip()
    if not raw:
        return None
    path = raw.split("?", 1)[0].split("#", 1)[0].rstrip("/")
    segment = path.rsplit("/", 1)[-1]
    return segment or raw


def epoch_to_iso(value: Any, default: str = "") -> str:
    """
    Unix seconds to ISO-8601 UTC with millisecond precision ("...T10:30:00.000Z").

    Strings that are not numbers are returned unchanged (already ISO).
    """
    if value is None or value == "" or isinstance(value, bool):
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return str(value) if isinstance(value, str) else default
    try:
        moment = datetime.fromtimestamp(seconds, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return default
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def first_of(items: Any, key: str | None = None, default: Any = None) -> Any:
    """
    First element of a list (or its `key`), tolerating None and empty lists.

    first_of(customer["emails"], "value") -> "jo@example.com"
    """
    if not isinstance(items, list) or not items:
        return default
    head = items[0]
    if key is None:
        return head
    if isinstance(head, Mapping):
        value = head.get(key)
        return default if value is None else value
    return default


def as_str(value: Any, default: str = "") -> str:
    return default if value is None else str(value)
