"""Zoned-time normalization and the half-day session window."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timedelta, timezone, tzinfo
import logging
from typing import List, Mapping, Optional
from zoneinfo import ZoneInfo

from .ingestion.readings import parse_raw_records
from .models import SessionHalf, TimedRecord

LOGGER = logging.getLogger(__name__)

NOON = time(12, 0)


@dataclass(frozen=True)
class SessionWindow:
    start: Optional[datetime]
    end: Optional[datetime]
    half: SessionHalf

    def contains(self, moment: datetime) -> bool:
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment >= self.end:
            return False
        return True


def resolve_zone(name: str) -> ZoneInfo:
    return ZoneInfo(name)


def parse_timestamp(value: object, zone: tzinfo) -> Optional[datetime]:
    """Parse an ISO-8601 string and convert it to ``zone``.

    Naive timestamps are read as wall-clock time in ``zone``. Returns None when
    the value is missing, unparsable or out of range once converted.
    """
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    # Instants near datetime.min or datetime.max may not exist in UTC or in zone.
    try:
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=zone)
            parsed.astimezone(timezone.utc)
            return parsed
        return parsed.astimezone(zone)
    except (OverflowError, ValueError):
        return None


def local_noon(now: datetime, zone: tzinfo) -> datetime:
    local_now = now.astimezone(zone)
    return datetime.combine(local_now.date(), NOON, tzinfo=zone)


def session_window(
    now: datetime,
    zone: tzinfo,
    *,
    restrict_to_current_day: bool = True,
) -> SessionWindow:
    """Return the half-day window containing ``now`` in ``zone``.

    Before local noon only earlier records qualify, otherwise only records at or
    after noon. With ``restrict_to_current_day`` the window is also bounded by the
    surrounding midnights.
    """
    noon = local_noon(now, zone)
    midnight = datetime.combine(noon.date(), time(0, 0), tzinfo=zone)
    next_midnight = datetime.combine(
        noon.date() + timedelta(days=1), time(0, 0), tzinfo=zone
    )
    if now.astimezone(zone) < noon:
        start = midnight if restrict_to_current_day else None
        return SessionWindow(start=start, end=noon, half="AM")
    end = next_midnight if restrict_to_current_day else None
    return SessionWindow(start=noon, end=end, half="PM")


def normalize_snapshot(
    snapshot: Optional[Mapping[str, object]],
    zone: tzinfo,
    now: datetime,
    *,
    restrict_to_current_day: bool = True,
) -> List[TimedRecord]:
    """Time-annotate, window-filter and sort a raw store snapshot."""
    raw_records = parse_raw_records(snapshot)
    if not raw_records:
        return []

    window = session_window(now, zone, restrict_to_current_day=restrict_to_current_day)
    timed: List[TimedRecord] = []
    unparsable = 0
    for raw in raw_records:
        zoned_time = parse_timestamp(raw.timestamp, zone)
        if zoned_time is None:
            unparsable += 1
            continue
        if window.contains(zoned_time):
            timed.append(TimedRecord(raw=raw, zoned_time=zoned_time))

    if unparsable:
        LOGGER.debug("Skipped %d readings with unparsable timestamps", unparsable)
    timed.sort(key=lambda item: (item.zoned_time, item.record_id))
    return timed
