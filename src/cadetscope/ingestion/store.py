from __future__ import annotations

from dataclasses import dataclass
import copy
import logging
from typing import Callable, Dict, List, Mapping, Optional, Protocol, Tuple

LOGGER = logging.getLogger(__name__)

SnapshotCallback = Callable[[Optional[Mapping[str, object]]], None]
ErrorCallback = Callable[[Exception], None]
Unsubscribe = Callable[[], None]


@dataclass(frozen=True)
class StoreError(RuntimeError):
    message: str

    def __str__(self) -> str:
        return self.message


class RecordStore(Protocol):
    """Push-based record store holding readings, the session id and meeting logs."""

    def fetch_readings(self) -> Optional[Mapping[str, object]]: ...

    def subscribe_readings(
        self,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe: ...

    def fetch_session_id(self) -> Optional[str]: ...

    def fetch_meeting_log(self, session_id: str) -> Optional[Mapping[str, object]]: ...


class InMemoryRecordStore:
    """Dict-backed store that pushes the full readings mapping on every change."""

    def __init__(
        self,
        readings: Optional[Mapping[str, object]] = None,
        *,
        session_id: Optional[str] = None,
        meeting_logs: Optional[Mapping[str, Mapping[str, object]]] = None,
    ) -> None:
        self._readings: Dict[str, object] = dict(readings or {})
        self._session_id = session_id
        self._meeting_logs: Dict[str, Dict[str, object]] = {
            key: dict(value) for key, value in (meeting_logs or {}).items()
        }
        self._subscribers: List[Tuple[SnapshotCallback, Optional[ErrorCallback]]] = []

    def fetch_readings(self) -> Optional[Mapping[str, object]]:
        return self._snapshot()

    def subscribe_readings(
        self,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        entry = (on_snapshot, on_error)
        self._subscribers.append(entry)
        on_snapshot(self._snapshot())

        def unsubscribe() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return unsubscribe

    def fetch_session_id(self) -> Optional[str]:
        return self._session_id

    def fetch_meeting_log(self, session_id: str) -> Optional[Mapping[str, object]]:
        log = self._meeting_logs.get(session_id)
        return copy.deepcopy(log) if log else None

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def put_reading(self, key: str, value: Mapping[str, object]) -> None:
        self._readings[key] = dict(value)
        self._publish()

    def replace_readings(self, readings: Optional[Mapping[str, object]]) -> None:
        self._readings = dict(readings or {})
        self._publish()

    def remove_reading(self, key: str) -> None:
        self._readings.pop(key, None)
        self._publish()

    def set_session_id(self, session_id: Optional[str]) -> None:
        self._session_id = session_id

    def append_meeting_event(self, session_id: str, key: str, entry: Mapping[str, object]) -> None:
        self._meeting_logs.setdefault(session_id, {})[key] = dict(entry)

    def fail(self, exc: Exception) -> None:
        """Report a transport failure to every subscriber."""
        for _, on_error in list(self._subscribers):
            if on_error is not None:
                on_error(exc)

    def _snapshot(self) -> Optional[Mapping[str, object]]:
        if not self._readings:
            return None
        return copy.deepcopy(self._readings)

    def _publish(self) -> None:
        snapshot = self._snapshot()
        for on_snapshot, _ in list(self._subscribers):
            on_snapshot(snapshot)
