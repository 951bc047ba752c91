from __future__ import annotations

import logging
from typing import List, Mapping, Optional

from ..models import RawRecord

LOGGER = logging.getLogger(__name__)

_CORE_FIELDS = frozenset(
    {"id", "device_id", "timestamp", "infection_status", "proximity_mask"}
)


def parse_raw_records(snapshot: Optional[Mapping[str, object]]) -> List[RawRecord]:
    """Convert a keyed store snapshot into RawRecord objects.

    Entries that are not mappings or carry no usable device id are dropped; the
    rest of the batch is kept.
    """
    if not snapshot:
        return []

    records: List[RawRecord] = []
    dropped = 0
    for key, value in snapshot.items():
        if not isinstance(value, Mapping):
            dropped += 1
            continue
        device_id = _device_id(value.get("device_id"))
        if device_id is None:
            dropped += 1
            continue
        timestamp = value.get("timestamp")
        records.append(
            RawRecord(
                record_id=str(key),
                device_id=device_id,
                timestamp=timestamp if isinstance(timestamp, str) else None,
                infection_status=value.get("infection_status"),
                proximity_mask=value.get("proximity_mask"),
                extra={
                    name: item for name, item in value.items() if name not in _CORE_FIELDS
                },
            )
        )

    if dropped:
        LOGGER.debug("Dropped %d malformed readings from snapshot", dropped)
    return records


def _device_id(value: object) -> Optional[str]:
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return None
