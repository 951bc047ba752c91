"""Record store adapters and raw reading parsing."""

from .firebase import FirebaseRestStore, StreamEvent, apply_stream_event, iter_stream_events
from .readings import parse_raw_records
from .store import InMemoryRecordStore, RecordStore, StoreError

__all__ = [
    "FirebaseRestStore",
    "InMemoryRecordStore",
    "RecordStore",
    "StoreError",
    "StreamEvent",
    "apply_stream_event",
    "iter_stream_events",
    "parse_raw_records",
]
