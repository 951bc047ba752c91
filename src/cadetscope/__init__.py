"""Live cadet and sector telemetry normalization for classroom infection games."""

from .classifier import classify_devices, drop_ignored
from .config import DeviceCatalog, MonitorConfig, StoreConfig, ThinningConfig
from .enrichment import enrich_record, enrich_records, is_infected, proximity_count, thin_records
from .ingestion import FirebaseRestStore, InMemoryRecordStore, RecordStore, StoreError
from .meetings import (
    MeetingCorrelator,
    MeetingLogError,
    encode_meeting_log_key,
    parse_meeting_log,
    unescape_meeting_log_key,
)
from .models import (
    DeviceRoleSets,
    NormalizedRecord,
    RawRecord,
    SessionContext,
    TimedRecord,
    validate_normalized_record,
)
from .monitor import MonitorState, TelemetryMonitor
from .plots import (
    AxisBounds,
    HistogramBucket,
    PieSlice,
    PlotContractError,
    PlotRequest,
    PlotResult,
    VariableOption,
    build_plot,
    get_contract,
)
from .timezones import normalize_snapshot, parse_timestamp, session_window
from .watermark import WatermarkGate

__all__ = [
    "DeviceCatalog",
    "MonitorConfig",
    "StoreConfig",
    "ThinningConfig",
    "RawRecord",
    "TimedRecord",
    "NormalizedRecord",
    "DeviceRoleSets",
    "SessionContext",
    "validate_normalized_record",
    "RecordStore",
    "InMemoryRecordStore",
    "FirebaseRestStore",
    "StoreError",
    "normalize_snapshot",
    "parse_timestamp",
    "session_window",
    "WatermarkGate",
    "classify_devices",
    "drop_ignored",
    "MeetingCorrelator",
    "MeetingLogError",
    "encode_meeting_log_key",
    "parse_meeting_log",
    "unescape_meeting_log_key",
    "enrich_record",
    "enrich_records",
    "is_infected",
    "proximity_count",
    "thin_records",
    "MonitorState",
    "TelemetryMonitor",
    "AxisBounds",
    "HistogramBucket",
    "PieSlice",
    "PlotContractError",
    "PlotRequest",
    "PlotResult",
    "VariableOption",
    "build_plot",
    "get_contract",
]
