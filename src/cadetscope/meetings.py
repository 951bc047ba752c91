from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, tzinfo
import logging
import re
from typing import List, Mapping, Optional, Protocol, Tuple

from .ingestion.store import StoreError
from .models import SessionContext
from .timezones import parse_timestamp

LOGGER = logging.getLogger(__name__)

MEETING_END_EVENT = "MEETINGEND"

_KEY_PATTERN = re.compile(
    r"^(?P<date>.+T)(?P<hh>\d{2})_(?P<mm>\d{2})_(?P<ss>\d{2})_(?P<ms>\d{3})"
    r"(?:(?P<sign>[+-])(?P<oh>\d{2})_(?P<om>\d{2})|(?P<utc>Z))?$"
)


@dataclass(frozen=True)
class MeetingLogError(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


def unescape_meeting_log_key(key: str) -> str:
    """Turn a storage key such as ``2025-07-10T07_57_45_000-07_00`` into ISO-8601.

    Storage keys cannot contain ``:`` or ``.``, so both are written as ``_``.
    Keys that do not follow the full pattern fall back to replacing the third
    underscore with ``.`` and every other one with ``:``.
    """
    match = _KEY_PATTERN.match(key)
    if match:
        text = (
            f"{match['date']}{match['hh']}:{match['mm']}:{match['ss']}.{match['ms']}"
        )
        if match["sign"]:
            text += f"{match['sign']}{match['oh']}:{match['om']}"
        elif match["utc"]:
            text += "+00:00"
        return text

    parts = key.split("_")
    text = parts[0]
    for idx, part in enumerate(parts[1:], start=1):
        text += ("." if idx == 3 else ":") + part
    return text


def encode_meeting_log_key(moment: datetime) -> str:
    """Inverse of :func:`unescape_meeting_log_key` for aware datetimes."""
    if moment.tzinfo is None:
        raise ValueError("Meeting log keys require a timezone-aware datetime.")
    text = moment.isoformat(timespec="milliseconds")
    return text.replace(":", "_").replace(".", "_")


def parse_meeting_log_key(key: str, zone: tzinfo) -> Optional[datetime]:
    return parse_timestamp(unescape_meeting_log_key(key), zone)


def parse_meeting_log(
    raw_log: Optional[Mapping[str, object]],
    zone: tzinfo,
) -> Tuple[datetime, ...]:
    """Extract ascending meeting-end times from a session's event log.

    The entry key is authoritative; the entry's own ``timestamp`` is used only
    when the key cannot be parsed. Unparsable entries are discarded.
    """
    if not raw_log:
        return ()

    ends: List[datetime] = []
    for key, entry in raw_log.items():
        if not isinstance(entry, Mapping) or entry.get("event") != MEETING_END_EVENT:
            continue
        moment = parse_meeting_log_key(str(key), zone)
        if moment is None:
            moment = parse_timestamp(entry.get("timestamp"), zone)
        if moment is None:
            LOGGER.debug("Discarding meeting log entry with unparsable time: %s", key)
            continue
        ends.append(moment)
    ends.sort()
    return tuple(ends)


class MeetingLogSource(Protocol):
    def fetch_session_id(self) -> Optional[str]: ...

    def fetch_meeting_log(self, session_id: str) -> Optional[Mapping[str, object]]: ...


@dataclass
class MeetingCorrelator:
    """Track the active session and the meeting ends recorded for it."""

    zone: tzinfo
    context: SessionContext = field(default_factory=SessionContext)

    def meetings_held(self, at: datetime) -> int:
        return self.context.meetings_held(at)

    def refresh(self, source: MeetingLogSource) -> SessionContext:
        """Poll the session id and replace the meeting log in full.

        A failed session poll propagates and leaves the current context alone. A
        failed log fetch leaves an empty context for the session and raises
        MeetingLogError.
        """
        session_id = source.fetch_session_id()
        if not session_id:
            if self.context.session_id is not None:
                LOGGER.info("Active session %s cleared", self.context.session_id)
            self.context = SessionContext()
            return self.context

        if session_id != self.context.session_id:
            LOGGER.info("Active session changed to %s", session_id)

        try:
            raw_log = source.fetch_meeting_log(session_id)
        except StoreError as exc:
            self.context = SessionContext(session_id=session_id)
            raise MeetingLogError(
                f"Meeting log fetch failed for session {session_id}: {exc}"
            ) from exc

        self.context = SessionContext(
            session_id=session_id,
            meeting_ends=parse_meeting_log(raw_log, self.zone),
        )
        LOGGER.debug(
            "Loaded %d meeting ends for session %s",
            len(self.context.meeting_ends),
            session_id,
        )
        return self.context
