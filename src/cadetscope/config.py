from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Optional, Sequence

DEFAULT_CADET_IDS: Sequence[str] = tuple(f"S{idx}" for idx in range(1, 13))
DEFAULT_SECTOR_IDS: Sequence[str] = tuple(f"T{idx}" for idx in range(1, 7))
DEFAULT_IGNORED_IDS: Sequence[str] = ("QR", "CR")
DEFAULT_TIMEZONE = "America/Los_Angeles"


@dataclass(frozen=True)
class DeviceCatalog:
    """Canonical device identifiers for each role plus housekeeping ids to skip."""

    cadet_ids: Sequence[str] = DEFAULT_CADET_IDS
    sector_ids: Sequence[str] = DEFAULT_SECTOR_IDS
    ignored_ids: Sequence[str] = DEFAULT_IGNORED_IDS

    def is_cadet(self, device_id: str) -> bool:
        return device_id in self.cadet_ids and not self.is_ignored(device_id)

    def is_sector(self, device_id: str) -> bool:
        return device_id in self.sector_ids and not self.is_ignored(device_id)

    def is_ignored(self, device_id: str) -> bool:
        return device_id in self.ignored_ids

    def selectable_cadets(self) -> FrozenSet[str]:
        return frozenset(item for item in self.cadet_ids if not self.is_ignored(item))

    def selectable_sectors(self) -> FrozenSet[str]:
        return frozenset(item for item in self.sector_ids if not self.is_ignored(item))


@dataclass(frozen=True)
class StoreConfig:
    """Location of the realtime database holding readings and session state.

    ``meeting_logs_path`` is formatted with ``session_id``.
    """

    database_url: str
    auth_token: Optional[str] = None
    readings_path: str = "readings"
    session_path: str = "activeSessionId"
    meeting_logs_path: str = "sessions/{session_id}/MeetingLogs"
    timeout_seconds: Optional[float] = None
    subscription: str = "poll"
    subscription_interval_seconds: float = 2.0


@dataclass(frozen=True)
class ThinningConfig:
    """Optional reduction of accepted records before enrichment.

    Thinning is opt-in; both steps are disabled by default.
    """

    collapse_repeats: bool = False
    max_records_per_device: Optional[int] = None

    def is_enabled(self) -> bool:
        return self.collapse_repeats or bool(self.max_records_per_device)


@dataclass(frozen=True)
class MonitorConfig:
    catalog: DeviceCatalog = field(default_factory=DeviceCatalog)
    timezone: str = DEFAULT_TIMEZONE
    session_poll_interval_seconds: float = 30.0
    restrict_to_current_day: bool = True
    thinning: ThinningConfig = field(default_factory=ThinningConfig)
