from __future__ import annotations

from bisect import bisect_right
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import FrozenSet, Literal, Mapping, Optional, Tuple

SessionHalf = Literal["AM", "PM"]

ROLE_FIELDS: Tuple[str, ...] = (
    "infected_cadets",
    "infected_sectors",
    "healthy_cadets",
    "healthy_sectors",
)


@dataclass(frozen=True)
class RawRecord:
    record_id: str
    device_id: str
    timestamp: Optional[str]
    infection_status: object = None
    proximity_mask: object = None
    extra: Mapping[str, object] = field(default_factory=dict)


@dataclass(frozen=True)
class TimedRecord:
    raw: RawRecord
    zoned_time: datetime

    @property
    def record_id(self) -> str:
        return self.raw.record_id

    @property
    def device_id(self) -> str:
        return self.raw.device_id


@dataclass(frozen=True)
class NormalizedRecord:
    record_id: str
    device_id: str
    timestamp: Optional[str]
    infection_status: object
    proximity_mask: object
    zoned_time: datetime
    hour: int
    session_half: SessionHalf
    proximity_count: int
    meetings_held: int
    infected_cadets: Optional[str] = None
    infected_sectors: Optional[str] = None
    healthy_cadets: Optional[str] = None
    healthy_sectors: Optional[str] = None
    extra: Mapping[str, object] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def attribute(self, name: str, default: object = None) -> object:
        """Read an open-ended attribute carried over from the raw reading."""
        return self.extra.get(name, default)

    def role_field(self) -> Optional[str]:
        """Return the name of the populated role field, if any."""
        for name in ROLE_FIELDS:
            if getattr(self, name) is not None:
                return name
        return None


def validate_normalized_record(record: NormalizedRecord) -> None:
    populated = [name for name in ROLE_FIELDS if getattr(record, name) is not None]
    if len(populated) > 1:
        raise ValueError(
            f"Record {record.record_id} has more than one role field set: {populated}."
        )
    for name in populated:
        if getattr(record, name) != record.device_id:
            raise ValueError(
                f"Record {record.record_id} role field {name} must equal its device_id."
            )
    if record.session_half != ("AM" if record.hour < 12 else "PM"):
        raise ValueError(f"Record {record.record_id} session_half does not match hour.")
    if record.proximity_count < 0 or record.meetings_held < 0:
        raise ValueError(f"Record {record.record_id} has a negative derived count.")


@dataclass(frozen=True)
class DeviceRoleSets:
    cadet_ids: FrozenSet[str] = frozenset()
    sector_ids: FrozenSet[str] = frozenset()
    ignored_ids: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class SessionContext:
    """Active session id and its meeting-end times, ascending."""

    session_id: Optional[str] = None
    meeting_ends: Tuple[datetime, ...] = ()

    def meetings_held(self, at: datetime) -> int:
        return bisect_right(self.meeting_ends, at)
