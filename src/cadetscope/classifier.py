from __future__ import annotations

from typing import Iterable, List

from .config import DeviceCatalog
from .models import DeviceRoleSets, TimedRecord


def drop_ignored(records: Iterable[TimedRecord], catalog: DeviceCatalog) -> List[TimedRecord]:
    return [record for record in records if not catalog.is_ignored(record.device_id)]


def classify_devices(records: Iterable[TimedRecord], catalog: DeviceCatalog) -> DeviceRoleSets:
    """Partition the device ids observed in ``records`` into roles.

    Roles describe the current batch only: a catalog device that sent nothing in
    this batch is absent from the result.
    """
    present = {record.device_id for record in records}
    cadet_ids = frozenset(item for item in present if catalog.is_cadet(item))
    # An id listed in both catalogs is treated as a cadet.
    return DeviceRoleSets(
        cadet_ids=cadet_ids,
        sector_ids=frozenset(
            item for item in present if catalog.is_sector(item) and item not in cadet_ids
        ),
        ignored_ids=frozenset(item for item in present if catalog.is_ignored(item)),
    )
