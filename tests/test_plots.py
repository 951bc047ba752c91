import json
from datetime import datetime, timedelta
from typing import List
from zoneinfo import ZoneInfo

import pytest

from cadetscope.enrichment import enrich_record
from cadetscope.models import DeviceRoleSets, NormalizedRecord, RawRecord, SessionContext, TimedRecord
from cadetscope.plots import (
    AxisBounds,
    HistogramBucket,
    PieSlice,
    PlotContractError,
    PlotPoint,
    PlotRequest,
    build_plot,
    get_contract,
    variable_options,
)

LA = ZoneInfo("America/Los_Angeles")
BASE = datetime(2025, 7, 10, 13, 0, tzinfo=LA)
ROLES = DeviceRoleSets(cadet_ids=frozenset({"S1", "S2"}), sector_ids=frozenset({"T1"}))


def _record(
    record_id: str,
    device_id: str,
    minute: int,
    infected: bool,
    proximity_mask: int = 0,
    **extra: object,
) -> NormalizedRecord:
    zoned_time = BASE + timedelta(minutes=minute)
    timed = TimedRecord(
        raw=RawRecord(
            record_id=record_id,
            device_id=device_id,
            timestamp=zoned_time.isoformat(),
            infection_status=1 if infected else 0,
            proximity_mask=proximity_mask,
            extra=extra,
        ),
        zoned_time=zoned_time,
    )
    return enrich_record(timed, ROLES, SessionContext())


def _scenario() -> List[NormalizedRecord]:
    return [
        _record("r0", "S1", 0, True, proximity_mask=0b1),
        _record("r1", "T1", 2, False, proximity_mask=0b11),
        _record("r2", "S1", 5, True, proximity_mask=0b111),
        _record("r3", "T1", 7, False),
        _record("r4", "S1", 10, True, proximity_mask=0b1),
    ]


def test_histogram_counts_infected_cadets() -> None:
    result = build_plot(
        _scenario(), PlotRequest(plot_type="histogram", x_variable="Infected Cadets")
    )

    assert result.buckets == (HistogramBucket(range="S1", frequency=3),)
    assert result.y_variable == "Frequency"
    assert result.y_bounds == AxisBounds(0, 3)


def test_histogram_counts_healthy_sectors() -> None:
    result = build_plot(
        _scenario(), PlotRequest(plot_type="histogram", x_variable="Healthy Sectors")
    )

    assert result.buckets == (HistogramBucket(range="T1", frequency=2),)


def test_histogram_bins_wide_numeric_ranges() -> None:
    records = [
        _record(f"r{idx:02d}", "S1", idx, False, proximity_mask=(1 << idx) - 1)
        for idx in range(20)
    ]

    result = build_plot(
        records, PlotRequest(plot_type="histogram", x_variable="Proximity Count")
    )

    assert len(result.buckets) == 15
    assert sum(bucket.frequency for bucket in result.buckets) == 20
    assert result.buckets[0].range.startswith("0-")


def test_line_plot_counts_distinct_cadets_per_time_bin() -> None:
    result = build_plot(
        _scenario(),
        PlotRequest(plot_type="line", x_variable="Time", y_variable="Infected Cadets"),
    )

    (series,) = result.series
    assert [point.y for point in series.points] == [1, 0, 1, 0, 1]
    assert series.points[0].x == BASE
    assert result.y_bounds == AxisBounds(0, 1)
    assert result.x_bounds == AxisBounds(BASE, BASE + timedelta(minutes=8))


def test_line_plot_rejects_self_pair() -> None:
    with pytest.raises(PlotContractError, match="does not allow"):
        build_plot(
            _scenario(), PlotRequest(plot_type="line", x_variable="Time", y_variable="Time")
        )


def test_line_plot_rejects_role_variable_on_x() -> None:
    with pytest.raises(PlotContractError, match="does not allow"):
        build_plot(
            _scenario(),
            PlotRequest(plot_type="line", x_variable="Infected Cadets", y_variable="Time"),
        )


def test_unknown_plot_type_and_variable_are_rejected() -> None:
    with pytest.raises(PlotContractError, match="Unknown plot type"):
        build_plot(_scenario(), PlotRequest(plot_type="radar", x_variable="Time"))
    with pytest.raises(PlotContractError, match="not available"):
        build_plot(
            _scenario(),
            PlotRequest(plot_type="histogram", x_variable="Button A Presses"),
        )


def test_partial_selection_is_empty() -> None:
    result = build_plot(_scenario(), PlotRequest(plot_type="line", x_variable="Time"))

    assert result.is_empty
    assert result.series == ()


def test_variable_options_disable_variables_without_partner() -> None:
    contract = get_contract("line")

    x_options = {option.name: option.enabled for option in contract.variable_options("x")}
    y_options = {
        option.name: option.enabled for option in contract.variable_options("y", "Time")
    }

    assert x_options["Time"] is True
    assert x_options["Meetings Held"] is True
    assert x_options["Infected Cadets"] is False
    assert y_options["Time"] is False
    assert y_options["Infected Cadets"] is True


def test_pairing_helpers_allow_unselected_partner() -> None:
    contract = get_contract("scatter")

    assert contract.is_x_allowed("Infected Cadets")
    assert contract.is_y_allowed("Healthy Sectors", None)
    assert contract.is_pair_allowed("Infected Cadets", "Infected Sectors")
    assert not contract.is_pair_allowed("Infected Cadets", "Healthy Cadets")
    assert contract.has_legal_partner("Infected Cadets", "x")
    assert not get_contract("line").has_legal_partner("Infected Cadets", "x")


def test_single_variable_plots_have_no_y_options() -> None:
    contract = get_contract("pie")

    assert contract.variable_options("y") == []
    assert all(option.enabled for option in contract.variable_options("x"))


def test_cadet_filter_restricts_contributing_records() -> None:
    records = _scenario() + [_record("r5", "S2", 11, True)]

    everyone = build_plot(
        records, PlotRequest(plot_type="histogram", x_variable="Infected Cadets")
    )
    only_s2 = build_plot(
        records,
        PlotRequest(
            plot_type="histogram",
            x_variable="Infected Cadets",
            cadet_ids=frozenset({"S2"}),
        ),
    )
    nobody = build_plot(
        records,
        PlotRequest(
            plot_type="histogram", x_variable="Infected Cadets", cadet_ids=frozenset()
        ),
    )

    assert [bucket.range for bucket in everyone.buckets] == ["S1", "S2"]
    assert only_s2.buckets == (HistogramBucket(range="S2", frequency=1),)
    assert nobody.is_empty


def test_sector_filter_is_ignored_for_cadet_charts() -> None:
    result = build_plot(
        _scenario(),
        PlotRequest(
            plot_type="histogram",
            x_variable="Infected Cadets",
            sector_ids=frozenset(),
        ),
    )

    assert result.buckets == (HistogramBucket(range="S1", frequency=3),)


def test_bar_plot_counts_distinct_ids_per_group() -> None:
    result = build_plot(
        _scenario(),
        PlotRequest(plot_type="bar", x_variable="Session Half", y_variable="Infected Cadets"),
    )

    (series,) = result.series
    assert series.points == (PlotPoint(x="PM", y=1),)
    assert result.y_bounds == AxisBounds(0, 1)


def test_bar_plot_sums_numeric_values_per_group() -> None:
    result = build_plot(
        _scenario(),
        PlotRequest(
            plot_type="bar", x_variable="Infected Cadets", y_variable="Proximity Count"
        ),
    )

    (series,) = result.series
    assert series.points == (PlotPoint(x="S1", y=5),)


def test_scatter_plot_uses_raw_points_for_plain_variables() -> None:
    records = [
        _record("r0", "S1", 0, True, tasks_completed="2"),
        _record("r1", "S1", 5, True, tasks_completed=4),
        _record("r2", "S1", 9, True, tasks_completed="n/a"),
    ]

    result = build_plot(
        records,
        PlotRequest(plot_type="scatter", x_variable="Time", y_variable="Tasks Completed"),
    )

    (series,) = result.series
    assert [point.y for point in series.points] == [2, 4]
    assert result.y_bounds.minimum == pytest.approx(1.8)
    assert result.y_bounds.maximum == pytest.approx(4.2)
    assert result.x_bounds == AxisBounds(BASE, BASE + timedelta(minutes=5))


def test_scatter_plot_pairs_cadet_and_sector_counts() -> None:
    result = build_plot(
        _scenario(),
        PlotRequest(
            plot_type="scatter", x_variable="Infected Cadets", y_variable="Healthy Sectors"
        ),
    )

    (series,) = result.series
    assert [(point.x, point.y) for point in series.points] == [
        (1, 0),
        (0, 1),
        (1, 0),
        (0, 1),
        (1, 0),
    ]
    assert result.x_bounds == AxisBounds(0, 1)
    assert result.y_bounds == AxisBounds(0, 1)


def test_pie_plot_counts_values() -> None:
    result = build_plot(_scenario(), PlotRequest(plot_type="pie", x_variable="Session Half"))

    assert result.slices == (PieSlice(id="PM", label="PM", value=5),)


def test_empty_record_set_yields_empty_result() -> None:
    result = build_plot(
        [], PlotRequest(plot_type="line", x_variable="Time", y_variable="Meetings Held")
    )

    assert result.is_empty
    assert result.x_bounds is None


def test_plot_result_serializes_to_json() -> None:
    result = build_plot(
        _scenario(),
        PlotRequest(plot_type="line", x_variable="Time", y_variable="Infected Cadets"),
    )

    payload = json.loads(json.dumps(result.to_dict()))

    assert payload["plot_type"] == "line"
    assert payload["empty"] is False
    assert payload["series"][0]["data"][0] == {"x": BASE.isoformat(), "y": 1}
    assert payload["y_bounds"] == {"min": 0, "max": 1}


def test_variable_options_by_plot_type() -> None:
    options = variable_options("bar", "x", "Infected Cadets")
    enabled = {option.name for option in options if option.enabled}

    assert {"Time", "Meetings Held", "Hour", "Session Half"} <= enabled
    assert "Infected Cadets" not in enabled
    assert "Healthy Cadets" not in enabled


def _record_at(record_id: str, device_id: str, zoned_time: datetime) -> NormalizedRecord:
    timed = TimedRecord(
        raw=RawRecord(
            record_id=record_id,
            device_id=device_id,
            timestamp=zoned_time.isoformat(),
            infection_status=1,
        ),
        zoned_time=zoned_time,
    )
    return enrich_record(timed, ROLES, SessionContext())


def test_line_plot_collapses_sub_microsecond_bins() -> None:
    tick = timedelta(microseconds=1)
    records = [
        _record_at("r0", "S1", BASE),
        _record_at("r1", "S2", BASE + tick),
        _record_at("r2", "S1", BASE + tick),
    ]

    result = build_plot(
        records,
        PlotRequest(plot_type="line", x_variable="Time", y_variable="Infected Cadets"),
    )

    (series,) = result.series
    assert series.points == (PlotPoint(x=BASE, y=2),)


def test_meetings_over_time_is_a_step_series() -> None:
    session = SessionContext(
        session_id="s-1",
        meeting_ends=(BASE + timedelta(minutes=3), BASE + timedelta(minutes=8)),
    )

    result = build_plot(
        _scenario(),
        PlotRequest(plot_type="line", x_variable="Meetings Held", y_variable="Time"),
        session=session,
        now=BASE + timedelta(minutes=10),
    )

    (series,) = result.series
    assert series.series_id == "Meetings Held"
    # Ten minutes still gets the minimum of three bins.
    assert [point.x for point in series.points] == [
        BASE,
        BASE + timedelta(seconds=200),
        BASE + timedelta(seconds=400),
        BASE + timedelta(minutes=10),
    ]
    assert [point.y for point in series.points] == [0, 1, 1, 2]
    assert result.y_bounds == AxisBounds(0, 2)
    assert result.x_bounds == AxisBounds(BASE, BASE + timedelta(minutes=10))


def test_meetings_over_time_starts_at_first_meeting_without_records() -> None:
    first_end = BASE + timedelta(minutes=1)
    session = SessionContext(session_id="s-1", meeting_ends=(first_end,))

    result = build_plot(
        [],
        PlotRequest(plot_type="line", x_variable="Meetings Held", y_variable="Time"),
        session=session,
        now=first_end + timedelta(minutes=60),
    )

    (series,) = result.series
    assert len(series.points) == 13
    assert series.points[0] == PlotPoint(x=first_end, y=1)
    assert series.points[-1].y == 1


def test_meetings_over_time_needs_a_starting_point() -> None:
    result = build_plot(
        [],
        PlotRequest(plot_type="line", x_variable="Meetings Held", y_variable="Time"),
        session=SessionContext(),
        now=BASE,
    )

    assert result.is_empty
