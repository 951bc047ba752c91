from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import logging
import queue
from typing import Callable, List, Mapping, Optional, Tuple

from .classifier import classify_devices, drop_ignored
from .config import MonitorConfig
from .enrichment import enrich_records, thin_records
from .ingestion.store import RecordStore, StoreError, Unsubscribe
from .meetings import MeetingCorrelator, MeetingLogError
from .models import DeviceRoleSets, NormalizedRecord, SessionContext
from .plots import PlotRequest, PlotResult, build_plot
from .timezones import normalize_snapshot, resolve_zone
from .watermark import WatermarkGate

LOGGER = logging.getLogger(__name__)

RecordsListener = Callable[[Tuple[NormalizedRecord, ...]], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class MonitorState:
    """Everything the monitor derives.

    Records, roles and errors are reassigned on each update. The gate's
    watermark and the correlator's session context change in place.
    """

    gate: WatermarkGate
    correlator: MeetingCorrelator
    roles: DeviceRoleSets = field(default_factory=DeviceRoleSets)
    records: Tuple[NormalizedRecord, ...] = ()
    store_error: Optional[str] = None
    session_error: Optional[str] = None
    alive: bool = True

    @property
    def watermark(self) -> Optional[datetime]:
        return self.gate.watermark

    @property
    def session(self) -> SessionContext:
        return self.correlator.context


@dataclass
class TelemetryMonitor:
    """Keep the normalized record set current from store pushes and session polls.

    Snapshots pushed by the store are queued and applied on the thread that calls
    ``tick``/``process_pending``; all state writes happen there.
    """

    store: RecordStore
    config: MonitorConfig = field(default_factory=MonitorConfig)
    clock: Callable[[], datetime] = _utcnow
    state: MonitorState = field(init=False)
    _pending: "queue.Queue[Tuple[str, object]]" = field(
        default_factory=queue.Queue, init=False, repr=False
    )
    _listeners: List[RecordsListener] = field(default_factory=list, init=False, repr=False)
    _unsubscribe: Optional[Unsubscribe] = field(default=None, init=False, repr=False)
    _next_session_poll: Optional[datetime] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        zone = resolve_zone(self.config.timezone)
        self.state = MonitorState(
            gate=WatermarkGate(),
            correlator=MeetingCorrelator(zone=zone),
        )

    @property
    def records(self) -> Tuple[NormalizedRecord, ...]:
        return self.state.records

    @property
    def last_error(self) -> Optional[str]:
        return self.state.store_error or self.state.session_error

    def meetings_held(self, at: datetime) -> int:
        return self.state.correlator.meetings_held(at)

    def add_listener(self, listener: RecordsListener) -> None:
        self._listeners.append(listener)

    def start(self) -> None:
        if not self.state.alive:
            raise RuntimeError("TelemetryMonitor cannot be restarted after stop().")
        if self._unsubscribe is not None:
            return
        self.refresh_session()
        try:
            self._unsubscribe = self.store.subscribe_readings(
                self._enqueue_snapshot, self._enqueue_error
            )
        except StoreError as exc:
            self._record_store_error(exc)
            return
        self.process_pending()

    def stop(self) -> None:
        self.state.alive = False
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._next_session_poll = None
        self._listeners.clear()
        while not self._pending.empty():
            self._pending.get_nowait()

    def tick(self) -> bool:
        """Run one scheduling step; return True when a snapshot was accepted."""
        accepted = self.process_pending()
        if self.state.alive and self._session_poll_due():
            self.refresh_session()
        return accepted

    def process_pending(self) -> bool:
        latest: object = None
        have_snapshot = False
        while True:
            try:
                kind, payload = self._pending.get_nowait()
            except queue.Empty:
                break
            if kind == "error":
                self._record_store_error(payload)
            else:
                self.state.store_error = None
                latest = payload
                have_snapshot = True
        if not have_snapshot:
            return False
        return self.apply_snapshot(latest)

    def apply_snapshot(self, snapshot: Optional[Mapping[str, object]]) -> bool:
        """Normalize, gate, classify and enrich a full snapshot of readings."""
        if not self.state.alive:
            return False
        correlator = self.state.correlator
        timed = normalize_snapshot(
            snapshot,
            correlator.zone,
            self.clock(),
            restrict_to_current_day=self.config.restrict_to_current_day,
        )
        if not self.state.gate.offer(timed):
            return False

        catalog = self.config.catalog
        kept = drop_ignored(timed, catalog)
        roles = classify_devices(kept, catalog)
        kept = thin_records(kept, self.config.thinning)
        records = tuple(enrich_records(kept, roles, correlator.context))

        self.state.roles = roles
        self.state.records = records
        LOGGER.info(
            "Accepted snapshot",
            extra={
                "records": len(records),
                "watermark": self.state.watermark.isoformat() if self.state.watermark else None,
                "session_id": correlator.context.session_id,
            },
        )
        self._notify(records)
        return True

    def refresh_session(self) -> SessionContext:
        if not self.state.alive:
            return self.state.session
        self._next_session_poll = self.clock() + timedelta(
            seconds=max(self.config.session_poll_interval_seconds, 0.0)
        )
        try:
            context = self.state.correlator.refresh(self.store)
        except MeetingLogError as exc:
            LOGGER.warning("%s", exc)
            self.state.session_error = str(exc)
        except StoreError as exc:
            LOGGER.warning("Session poll failed: %s", exc)
            self.state.session_error = f"Session poll failed: {exc}"
        else:
            self.state.session_error = None
            return context
        return self.state.session

    def plot(self, request: PlotRequest) -> PlotResult:
        return build_plot(
            self.state.records, request, session=self.state.session, now=self.clock()
        )

    def _session_poll_due(self) -> bool:
        return self._next_session_poll is None or self.clock() >= self._next_session_poll

    def _enqueue_snapshot(self, snapshot: Optional[Mapping[str, object]]) -> None:
        if self.state.alive:
            self._pending.put(("snapshot", snapshot))

    def _enqueue_error(self, exc: Exception) -> None:
        if self.state.alive:
            self._pending.put(("error", exc))

    def _record_store_error(self, exc: object) -> None:
        LOGGER.warning("Record store failure: %s", exc)
        self.state.store_error = str(exc)

    def _notify(self, records: Tuple[NormalizedRecord, ...]) -> None:
        for listener in list(self._listeners):
            try:
                listener(records)
            except Exception as exc:  # pragma: no cover - listener failures
                LOGGER.exception("Records listener failed: %s", exc)
