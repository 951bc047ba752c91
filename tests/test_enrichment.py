from dataclasses import replace
from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from cadetscope.classifier import classify_devices, drop_ignored
from cadetscope.config import DeviceCatalog, ThinningConfig
from cadetscope.enrichment import enrich_record, is_infected, proximity_count, thin_records
from cadetscope.models import (
    DeviceRoleSets,
    RawRecord,
    SessionContext,
    TimedRecord,
    validate_normalized_record,
)
from cadetscope.watermark import WatermarkGate

LA = ZoneInfo("America/Los_Angeles")
BASE = datetime(2025, 7, 10, 13, 0, tzinfo=LA)


def _timed(
    record_id: str,
    device_id: str,
    minute: int = 0,
    infection_status: object = 0,
    proximity_mask: object = 0,
) -> TimedRecord:
    zoned_time = BASE + timedelta(minutes=minute)
    return TimedRecord(
        raw=RawRecord(
            record_id=record_id,
            device_id=device_id,
            timestamp=zoned_time.isoformat(),
            infection_status=infection_status,
            proximity_mask=proximity_mask,
        ),
        zoned_time=zoned_time,
    )


@pytest.mark.parametrize(
    "mask, expected",
    [(5, 2), (0b101, 2), ("0b101", 2), ("5", 2), (5.0, 2), (0, 0), (255, 8)],
)
def test_proximity_count_is_popcount(mask: object, expected: int) -> None:
    assert proximity_count(mask) == expected


@pytest.mark.parametrize("mask", [-1, True, None, "abc", 2.5, [1]])
def test_proximity_count_treats_invalid_masks_as_zero(mask: object) -> None:
    assert proximity_count(mask) == 0


def test_is_infected_requires_exactly_one() -> None:
    assert is_infected(1)
    assert is_infected("1")
    assert is_infected(1.0)
    assert not is_infected(0)
    assert not is_infected("0")
    assert not is_infected(2)
    assert not is_infected(True)
    assert not is_infected(None)
    assert not is_infected("yes")


def test_enrich_record_sets_single_role_field() -> None:
    roles = DeviceRoleSets(cadet_ids=frozenset({"S1"}), sector_ids=frozenset({"T1"}))
    session = SessionContext(
        session_id="s-1", meeting_ends=(BASE + timedelta(minutes=5),)
    )

    cadet = enrich_record(_timed("r1", "S1", minute=10, infection_status="1"), roles, session)
    sector = enrich_record(_timed("r2", "T1", proximity_mask=6), roles, session)
    stranger = enrich_record(_timed("r3", "X9", infection_status=1), roles, session)

    assert cadet.infected_cadets == "S1"
    assert cadet.role_field() == "infected_cadets"
    assert cadet.meetings_held == 1
    assert cadet.hour == 13
    assert cadet.session_half == "PM"
    assert sector.healthy_sectors == "T1"
    assert sector.proximity_count == 2
    assert sector.meetings_held == 0
    assert stranger.role_field() is None
    for record in (cadet, sector, stranger):
        validate_normalized_record(record)


def test_enrich_record_only_uses_present_roles() -> None:
    roles = DeviceRoleSets(cadet_ids=frozenset(), sector_ids=frozenset())

    record = enrich_record(_timed("r1", "S1", infection_status=1), roles, SessionContext())

    assert record.role_field() is None


def test_validate_normalized_record_rejects_two_roles() -> None:
    roles = DeviceRoleSets(cadet_ids=frozenset({"S1"}))
    record = enrich_record(_timed("r1", "S1", infection_status=1), roles, SessionContext())
    broken = replace(record, healthy_sectors="S1")

    with pytest.raises(ValueError, match="more than one role"):
        validate_normalized_record(broken)


def test_classify_devices_uses_present_ids_only() -> None:
    catalog = DeviceCatalog()
    records = [
        _timed("r1", "S1"),
        _timed("r2", "S1"),
        _timed("r3", "T2"),
        _timed("r4", "QR"),
        _timed("r5", "X9"),
    ]

    roles = classify_devices(records, catalog)

    assert roles.cadet_ids == frozenset({"S1"})
    assert roles.sector_ids == frozenset({"T2"})
    assert roles.ignored_ids == frozenset({"QR"})
    assert [record.device_id for record in drop_ignored(records, catalog)] == [
        "S1",
        "S1",
        "T2",
        "X9",
    ]


def test_classify_devices_prefers_cadet_for_shared_ids() -> None:
    catalog = DeviceCatalog(cadet_ids=("S1", "Z1"), sector_ids=("T1", "Z1"))

    roles = classify_devices([_timed("r1", "Z1")], catalog)

    assert roles.cadet_ids == frozenset({"Z1"})
    assert roles.sector_ids == frozenset()


def test_watermark_gate_rejects_stale_and_equal_batches() -> None:
    gate = WatermarkGate()

    assert gate.offer([_timed("r1", "S1", minute=0), _timed("r2", "S1", minute=5)])
    assert gate.watermark == BASE + timedelta(minutes=5)
    assert not gate.offer([_timed("r1", "S1", minute=0), _timed("r2", "S1", minute=5)])
    assert not gate.offer([_timed("r1", "S1", minute=1)])
    assert not gate.offer([])
    assert gate.offer([_timed("r3", "S1", minute=6)])

    gate.reset()

    assert gate.watermark is None


def test_thin_records_is_disabled_by_default() -> None:
    records = [_timed(f"r{idx}", "S1", minute=idx) for idx in range(3)]

    assert thin_records(records, ThinningConfig()) == records


def test_thin_records_collapses_repeats_per_device() -> None:
    records = [
        _timed("r0", "S1", minute=0),
        _timed("r1", "T1", minute=1),
        _timed("r2", "S1", minute=2),
        _timed("r3", "S1", minute=3, infection_status=1),
        _timed("r4", "S1", minute=4, infection_status=1),
    ]

    kept = thin_records(records, ThinningConfig(collapse_repeats=True))

    assert [record.record_id for record in kept] == ["r0", "r1", "r3"]


def test_thin_records_caps_records_per_device() -> None:
    records = [_timed(f"r{idx:02d}", "S1", minute=idx) for idx in range(10)]

    kept = thin_records(records, ThinningConfig(max_records_per_device=4))

    assert [record.record_id for record in kept] == ["r00", "r03", "r06", "r09"]


def test_enriched_record_extra_is_read_only_copy() -> None:
    extra = {"tasks_completed": 3}
    timed = TimedRecord(
        raw=RawRecord(
            record_id="r0",
            device_id="S1",
            timestamp=BASE.isoformat(),
            infection_status=1,
            extra=extra,
        ),
        zoned_time=BASE,
    )
    roles = DeviceRoleSets(cadet_ids=frozenset({"S1"}))

    record = enrich_record(timed, roles, SessionContext())
    extra["tasks_completed"] = 99

    assert record.attribute("tasks_completed") == 3
    with pytest.raises(TypeError):
        record.extra["tasks_completed"] = 4  # type: ignore[index]
