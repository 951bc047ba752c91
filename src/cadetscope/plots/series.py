from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import math
import re
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple

from ..models import NormalizedRecord, SessionContext
from .contract import (
    CADET_VARIABLES,
    MEETINGS_HELD,
    ROLE_VARIABLES,
    SECTOR_VARIABLES,
    TIME,
    Accessor,
    PlotTypeContract,
    get_contract,
)

DEFAULT_TIME_BINS = 20
DEFAULT_HISTOGRAM_BINS = 15
BOUNDS_PADDING = 0.1
MIN_MEETING_BINS = 3
MAX_MEETING_BINS = 30


@dataclass(frozen=True)
class PlotRequest:
    """A chart selection plus the cadet and sector filters.

    ``None`` filters select every id; an empty set selects none.
    """

    plot_type: str
    x_variable: Optional[str] = None
    y_variable: Optional[str] = None
    cadet_ids: Optional[FrozenSet[str]] = None
    sector_ids: Optional[FrozenSet[str]] = None


@dataclass(frozen=True)
class PlotPoint:
    x: object
    y: object


@dataclass(frozen=True)
class PlotSeries:
    series_id: str
    points: Tuple[PlotPoint, ...]


@dataclass(frozen=True)
class HistogramBucket:
    range: str
    frequency: int


@dataclass(frozen=True)
class PieSlice:
    id: str
    label: str
    value: int


@dataclass(frozen=True)
class AxisBounds:
    minimum: object
    maximum: object


@dataclass(frozen=True)
class PlotResult:
    plot_type: str
    x_variable: Optional[str]
    y_variable: Optional[str]
    series: Tuple[PlotSeries, ...] = ()
    buckets: Tuple[HistogramBucket, ...] = ()
    slices: Tuple[PieSlice, ...] = ()
    x_bounds: Optional[AxisBounds] = None
    y_bounds: Optional[AxisBounds] = None

    @property
    def is_empty(self) -> bool:
        return not self.buckets and not self.slices and not any(
            item.points for item in self.series
        )

    def to_dict(self) -> Dict[str, object]:
        return {
            "plot_type": self.plot_type,
            "x_variable": self.x_variable,
            "y_variable": self.y_variable,
            "empty": self.is_empty,
            "series": [
                {
                    "id": item.series_id,
                    "data": [
                        {"x": _jsonable(point.x), "y": _jsonable(point.y)}
                        for point in item.points
                    ],
                }
                for item in self.series
            ],
            "buckets": [
                {"range": bucket.range, "frequency": bucket.frequency}
                for bucket in self.buckets
            ],
            "slices": [
                {"id": item.id, "label": item.label, "value": item.value}
                for item in self.slices
            ],
            "x_bounds": _bounds_dict(self.x_bounds),
            "y_bounds": _bounds_dict(self.y_bounds),
        }


def build_plot(
    records: Sequence[NormalizedRecord],
    request: PlotRequest,
    *,
    time_bins: int = DEFAULT_TIME_BINS,
    histogram_bins: int = DEFAULT_HISTOGRAM_BINS,
    session: Optional[SessionContext] = None,
    now: Optional[datetime] = None,
) -> PlotResult:
    """Turn normalized records into chart-ready data for one selection.

    Raises ``PlotContractError`` for unknown plot types, unknown variables and
    axis pairs the plot type does not allow. A partial selection yields an
    empty result.

    With a ``session``, a line plot of ``Meetings Held`` against ``Time`` is a
    step series of meeting ends counted up to each bin between the first
    record and ``now``.
    """
    contract = get_contract(request.plot_type)
    x, y = request.x_variable, request.y_variable
    contract.validate_selection(x, y)
    empty = PlotResult(plot_type=contract.plot_type, x_variable=x, y_variable=y)

    if contract.single_variable:
        if x is None:
            return empty
        filtered = apply_filters(records, (x,), request.cadet_ids, request.sector_ids)
        return _single_variable_plot(contract, x, filtered, histogram_bins)

    if x is None or y is None:
        return empty
    if contract.plot_type == "line" and (x, y) == (MEETINGS_HELD, TIME) and session is not None:
        return _meetings_step_plot(contract, records, session, now)
    filtered = apply_filters(records, (x, y), request.cadet_ids, request.sector_ids)
    if contract.plot_type == "bar":
        return _bar_plot(contract, x, y, filtered, time_bins)
    return _point_plot(contract, x, y, filtered, time_bins)


def apply_filters(
    records: Iterable[NormalizedRecord],
    variables: Iterable[Optional[str]],
    cadet_ids: Optional[FrozenSet[str]] = None,
    sector_ids: Optional[FrozenSet[str]] = None,
) -> List[NormalizedRecord]:
    """Drop role members outside the selection, for the families the chart uses."""
    selected = {name for name in variables if name}
    filter_cadets = bool(selected & CADET_VARIABLES) and cadet_ids is not None
    filter_sectors = bool(selected & SECTOR_VARIABLES) and sector_ids is not None
    if not filter_cadets and not filter_sectors:
        return list(records)

    kept: List[NormalizedRecord] = []
    for record in records:
        if filter_cadets and _is_cadet_record(record) and record.device_id not in cadet_ids:
            continue
        if filter_sectors and _is_sector_record(record) and record.device_id not in sector_ids:
            continue
        kept.append(record)
    return kept


def _single_variable_plot(
    contract: PlotTypeContract,
    variable: str,
    records: Sequence[NormalizedRecord],
    histogram_bins: int,
) -> PlotResult:
    accessor = contract.accessor(variable)
    values = [value for value in (accessor(record) for record in records) if value is not None]
    if contract.plot_type == "histogram":
        buckets = tuple(_histogram_buckets(values, histogram_bins))
        return PlotResult(
            plot_type=contract.plot_type,
            x_variable=variable,
            y_variable=contract.y_variable,
            buckets=buckets,
            y_bounds=AxisBounds(0, max((bucket.frequency for bucket in buckets), default=0)),
        )
    counts = _value_counts(values)
    return PlotResult(
        plot_type=contract.plot_type,
        x_variable=variable,
        y_variable=None,
        slices=tuple(
            PieSlice(id=str(value), label=str(value), value=count)
            for value, count in counts
        ),
    )


def _point_plot(
    contract: PlotTypeContract,
    x: str,
    y: str,
    records: Sequence[NormalizedRecord],
    time_bins: int,
) -> PlotResult:
    x_get, y_get = contract.accessor(x), contract.accessor(y)
    x_counts, y_counts = x in ROLE_VARIABLES, y in ROLE_VARIABLES
    points: List[PlotPoint] = []

    if x_counts and y_counts:
        for _, members in _time_bins(records, time_bins):
            if members:
                points.append(PlotPoint(_distinct(members, x_get), _distinct(members, y_get)))
    elif y_counts:
        for key, members in _groups(records, x, x_get, time_bins):
            points.append(PlotPoint(key, _distinct(members, y_get)))
    elif x_counts:
        for key, members in _groups(records, y, y_get, time_bins):
            points.append(PlotPoint(_distinct(members, x_get), key))
    else:
        for record in records:
            x_value, y_value = x_get(record), y_get(record)
            if x_value is not None and y_value is not None:
                points.append(PlotPoint(x_value, y_value))

    if not points:
        return PlotResult(plot_type=contract.plot_type, x_variable=x, y_variable=y)
    return PlotResult(
        plot_type=contract.plot_type,
        x_variable=x,
        y_variable=y,
        series=(PlotSeries(series_id=f"{y} vs {x}", points=tuple(points)),),
        x_bounds=_axis_bounds(x, [point.x for point in points], records, counts=x_counts),
        y_bounds=_axis_bounds(y, [point.y for point in points], records, counts=y_counts),
    )


def _bar_plot(
    contract: PlotTypeContract,
    x: str,
    y: str,
    records: Sequence[NormalizedRecord],
    time_bins: int,
) -> PlotResult:
    x_get, y_get = contract.accessor(x), contract.accessor(y)
    y_counts = y in ROLE_VARIABLES
    points: List[PlotPoint] = []
    for key, members in _groups(records, x, x_get, time_bins):
        if y_counts:
            value: object = _distinct(members, y_get)
        else:
            value = _sum(members, y_get)
        # Bars with nothing to show are omitted.
        if value > 0:
            points.append(PlotPoint(key, value))

    if not points:
        return PlotResult(plot_type=contract.plot_type, x_variable=x, y_variable=y)
    x_bounds = None
    if x == TIME:
        x_bounds = _axis_bounds(x, [point.x for point in points], records, counts=False)
    return PlotResult(
        plot_type=contract.plot_type,
        x_variable=x,
        y_variable=y,
        series=(PlotSeries(series_id=f"{y} by {x}", points=tuple(points)),),
        x_bounds=x_bounds,
        y_bounds=_axis_bounds(y, [point.y for point in points], records, counts=y_counts),
    )


def _groups(
    records: Sequence[NormalizedRecord],
    variable: str,
    accessor: Accessor,
    time_bins: int,
) -> List[Tuple[object, List[NormalizedRecord]]]:
    if variable == TIME:
        return _time_bins(records, time_bins)
    grouped: Dict[object, List[NormalizedRecord]] = {}
    for record in records:
        value = accessor(record)
        if value is not None:
            grouped.setdefault(value, []).append(record)
    return [(key, grouped[key]) for key in sorted(grouped, key=_sort_key)]


def _meetings_step_plot(
    contract: PlotTypeContract,
    records: Sequence[NormalizedRecord],
    session: SessionContext,
    now: Optional[datetime],
) -> PlotResult:
    ends = session.meeting_ends
    if records:
        first = min(record.zoned_time for record in records)
    elif ends:
        first = ends[0]
    else:
        return PlotResult(
            plot_type=contract.plot_type, x_variable=MEETINGS_HELD, y_variable=TIME
        )
    last = (now or datetime.now(first.tzinfo)).astimezone(first.tzinfo)
    total_minutes = math.ceil((last - first) / timedelta(minutes=1))
    bins = min(MAX_MEETING_BINS, max(MIN_MEETING_BINS, math.ceil(total_minutes / 5)))
    width = (last - first) / bins
    points = tuple(
        PlotPoint(at, session.meetings_held(at))
        for at in (first + width * index for index in range(bins + 1))
    )
    return PlotResult(
        plot_type=contract.plot_type,
        x_variable=MEETINGS_HELD,
        y_variable=TIME,
        series=(PlotSeries(series_id=MEETINGS_HELD, points=points),),
        x_bounds=AxisBounds(first, last),
        y_bounds=AxisBounds(0, len(ends)),
    )


def _time_bins(
    records: Sequence[NormalizedRecord],
    count: int,
) -> List[Tuple[object, List[NormalizedRecord]]]:
    """Split records into equal-width time bins keyed by each bin's start."""
    if not records:
        return []
    times = [record.zoned_time for record in records]
    first, last = min(times), max(times)
    span = last - first
    bins = max(1, min(count, len(records)))
    width = span / bins
    # Spans shorter than one microsecond per bin collapse into a single bin.
    if not width:
        return [(first, list(records))]
    grouped: List[List[NormalizedRecord]] = [[] for _ in range(bins)]
    for record in records:
        index = min(int((record.zoned_time - first) / width), bins - 1)
        grouped[index].append(record)
    return [(first + width * index, members) for index, members in enumerate(grouped)]


def _axis_bounds(
    variable: str,
    values: Sequence[object],
    records: Sequence[NormalizedRecord],
    *,
    counts: bool,
) -> Optional[AxisBounds]:
    if counts:
        return AxisBounds(0, len(_relevant_ids(variable, records)))
    present = [value for value in values if value is not None]
    if not present:
        return None
    if all(isinstance(value, datetime) for value in present):
        return AxisBounds(min(present), max(present))
    if not all(_is_number(value) for value in present):
        return None
    low, high = min(present), max(present)
    padding = (high - low) * BOUNDS_PADDING
    return AxisBounds(max(0, low - padding), high + padding)


def _relevant_ids(variable: str, records: Sequence[NormalizedRecord]) -> FrozenSet[str]:
    if variable in CADET_VARIABLES:
        return frozenset(record.device_id for record in records if _is_cadet_record(record))
    if variable in SECTOR_VARIABLES:
        return frozenset(record.device_id for record in records if _is_sector_record(record))
    return frozenset()


def _histogram_buckets(values: Sequence[object], max_bins: int) -> List[HistogramBucket]:
    numeric = bool(values) and all(_is_number(value) for value in values)
    if not numeric or len(set(values)) <= max_bins:
        return [
            HistogramBucket(range=str(value), frequency=count)
            for value, count in _value_counts(values)
        ]

    low, high = min(values), max(values)
    width = (high - low) / max_bins
    frequencies = [0] * max_bins
    for value in values:
        frequencies[min(int((value - low) / width), max_bins - 1)] += 1
    return [
        HistogramBucket(
            range=f"{low + width * index:g}-{low + width * (index + 1):g}",
            frequency=frequency,
        )
        for index, frequency in enumerate(frequencies)
    ]


def _value_counts(values: Iterable[object]) -> List[Tuple[object, int]]:
    counts: Dict[object, int] = {}
    for value in values:
        counts[value] = counts.get(value, 0) + 1
    return [(value, counts[value]) for value in sorted(counts, key=_sort_key)]


def _distinct(records: Iterable[NormalizedRecord], accessor: Accessor) -> int:
    return len({value for value in (accessor(record) for record in records) if value is not None})


def _sum(records: Iterable[NormalizedRecord], accessor: Accessor) -> float:
    total = 0
    for record in records:
        value = accessor(record)
        if _is_number(value):
            total += value
    return total


def _is_cadet_record(record: NormalizedRecord) -> bool:
    return record.infected_cadets is not None or record.healthy_cadets is not None


def _is_sector_record(record: NormalizedRecord) -> bool:
    return record.infected_sectors is not None or record.healthy_sectors is not None


def _is_number(value: object) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


_DIGITS = re.compile(r"(\d+)")


def _sort_key(value: object) -> Tuple[Tuple[int, object], ...]:
    # Natural order so S2 sorts before S10.
    if isinstance(value, str):
        return tuple(
            (0, int(part)) if part.isdigit() else (1, part)
            for part in _DIGITS.split(value)
            if part
        )
    return ((0, value),)


def _jsonable(value: object) -> object:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


def _bounds_dict(bounds: Optional[AxisBounds]) -> Optional[Dict[str, object]]:
    if bounds is None:
        return None
    return {"min": _jsonable(bounds.minimum), "max": _jsonable(bounds.maximum)}
