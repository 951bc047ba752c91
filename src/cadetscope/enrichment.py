from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional, Sequence

from .config import ThinningConfig
from .models import DeviceRoleSets, NormalizedRecord, SessionContext, TimedRecord


def proximity_count(mask: object) -> int:
    """Number of set bits in a proximity bitmask.

    Negative, boolean and non-numeric masks contribute zero.
    """
    value = _coerce_mask(mask)
    if value is None or value < 0:
        return 0
    return bin(value).count("1")


def is_infected(status: object) -> bool:
    """True only when ``status`` coerces to exactly the integer 1."""
    if isinstance(status, bool) or status is None:
        return False
    if isinstance(status, (int, float)):
        return status == 1
    if isinstance(status, str):
        try:
            return float(status.strip()) == 1
        except ValueError:
            return False
    return False


def enrich_record(
    record: TimedRecord,
    roles: DeviceRoleSets,
    session: SessionContext,
) -> NormalizedRecord:
    raw = record.raw
    device_id = raw.device_id
    is_cadet = device_id in roles.cadet_ids
    is_sector = device_id in roles.sector_ids and not is_cadet
    infected = is_infected(raw.infection_status)
    hour = record.zoned_time.hour
    return NormalizedRecord(
        record_id=raw.record_id,
        device_id=device_id,
        timestamp=raw.timestamp,
        infection_status=raw.infection_status,
        proximity_mask=raw.proximity_mask,
        zoned_time=record.zoned_time,
        hour=hour,
        session_half="AM" if hour < 12 else "PM",
        proximity_count=proximity_count(raw.proximity_mask),
        meetings_held=session.meetings_held(record.zoned_time),
        infected_cadets=device_id if is_cadet and infected else None,
        infected_sectors=device_id if is_sector and infected else None,
        healthy_cadets=device_id if is_cadet and not infected else None,
        healthy_sectors=device_id if is_sector and not infected else None,
        extra=raw.extra,
    )


def enrich_records(
    records: Iterable[TimedRecord],
    roles: DeviceRoleSets,
    session: SessionContext,
) -> List[NormalizedRecord]:
    return [enrich_record(record, roles, session) for record in records]


def thin_records(records: Sequence[TimedRecord], config: ThinningConfig) -> List[TimedRecord]:
    """Collapse per-device repeats and cap per-device volume, keeping time order."""
    if not config.is_enabled():
        return list(records)

    kept = list(records)
    if config.collapse_repeats:
        kept = _collapse_repeats(kept)
    if config.max_records_per_device:
        kept = _downsample(kept, config.max_records_per_device)
    kept.sort(key=lambda item: (item.zoned_time, item.record_id))
    return kept


def _collapse_repeats(records: Sequence[TimedRecord]) -> List[TimedRecord]:
    last_by_device: Dict[str, tuple] = {}
    kept: List[TimedRecord] = []
    for record in records:
        raw = record.raw
        content = (raw.infection_status, raw.proximity_mask, dict(raw.extra))
        if last_by_device.get(raw.device_id) != content:
            kept.append(record)
            last_by_device[raw.device_id] = content
    return kept


def _downsample(records: Sequence[TimedRecord], limit: int) -> List[TimedRecord]:
    grouped: Dict[str, List[TimedRecord]] = {}
    for record in records:
        grouped.setdefault(record.device_id, []).append(record)
    kept: List[TimedRecord] = []
    for device_records in grouped.values():
        if len(device_records) > limit:
            step = math.ceil(len(device_records) / limit)
            kept.extend(device_records[::step])
        else:
            kept.extend(device_records)
    return kept


def _coerce_mask(mask: object) -> Optional[int]:
    if isinstance(mask, bool) or mask is None:
        return None
    if isinstance(mask, int):
        return mask
    if isinstance(mask, float):
        return int(mask) if mask.is_integer() else None
    if isinstance(mask, str):
        text = mask.strip()
        for base in (0, 10):
            try:
                return int(text, base)
            except ValueError:
                continue
        try:
            value = float(text)
        except ValueError:
            return None
        return int(value) if value.is_integer() else None
    return None
