from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from ..models import NormalizedRecord

TIME = "Time"
MEETINGS_HELD = "Meetings Held"
INFECTED_SECTORS = "Infected Sectors"
INFECTED_CADETS = "Infected Cadets"
HEALTHY_SECTORS = "Healthy Sectors"
HEALTHY_CADETS = "Healthy Cadets"
TASKS_COMPLETED = "Tasks Completed"
PROXIMITY_COUNT = "Proximity Count"
HOUR = "Hour"
SESSION_HALF = "Session Half"
FREQUENCY = "Frequency"

CADET_VARIABLES: FrozenSet[str] = frozenset({INFECTED_CADETS, HEALTHY_CADETS})
SECTOR_VARIABLES: FrozenSet[str] = frozenset({INFECTED_SECTORS, HEALTHY_SECTORS})
ROLE_VARIABLES: FrozenSet[str] = CADET_VARIABLES | SECTOR_VARIABLES

Accessor = Callable[[NormalizedRecord], object]


@dataclass(frozen=True)
class PlotContractError(ValueError):
    message: str

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class VariableOption:
    name: str
    enabled: bool


def _numeric_attribute(name: str) -> Accessor:
    def accessor(record: NormalizedRecord) -> object:
        value = record.attribute(name)
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, (int, float)):
            return value
        if isinstance(value, str):
            try:
                number = float(value.strip())
            except ValueError:
                return None
            return int(number) if number.is_integer() else number
        return None

    return accessor


ACCESSORS: Mapping[str, Accessor] = {
    TIME: lambda record: record.zoned_time,
    MEETINGS_HELD: lambda record: record.meetings_held,
    INFECTED_SECTORS: lambda record: record.infected_sectors,
    INFECTED_CADETS: lambda record: record.infected_cadets,
    HEALTHY_SECTORS: lambda record: record.healthy_sectors,
    HEALTHY_CADETS: lambda record: record.healthy_cadets,
    TASKS_COMPLETED: _numeric_attribute("tasks_completed"),
    PROXIMITY_COUNT: lambda record: record.proximity_count,
    HOUR: lambda record: record.hour,
    SESSION_HALF: lambda record: record.session_half,
}


def _matrix(
    variables: Iterable[str],
    allowed: Mapping[str, Iterable[str]],
) -> Dict[str, Dict[str, bool]]:
    names = list(variables)
    return {
        x: {y: y != x and y in set(allowed.get(x, ())) for y in names} for x in names
    }


_ROLES = (INFECTED_SECTORS, INFECTED_CADETS, HEALTHY_SECTORS, HEALTHY_CADETS)
_EXTRAS = (TASKS_COMPLETED, PROXIMITY_COUNT)
_BASE_VARIABLES = (TIME, MEETINGS_HELD) + _ROLES + _EXTRAS


@dataclass(frozen=True)
class PlotTypeContract:
    """Selectable variables and legal axis pairings for one plot type.

    Types without ``allowed_matrix`` take a single variable.
    """

    plot_type: str
    label: str
    variables: Tuple[str, ...]
    allowed_matrix: Optional[Mapping[str, Mapping[str, bool]]] = None
    y_variable: Optional[str] = None

    @property
    def single_variable(self) -> bool:
        return self.allowed_matrix is None

    def accessor(self, name: str) -> Accessor:
        if name not in self.variables:
            raise PlotContractError(
                f"Variable {name!r} is not available for {self.plot_type} plots."
            )
        return ACCESSORS[name]

    def is_pair_allowed(self, x: str, y: str) -> bool:
        if self.allowed_matrix is None:
            return False
        return bool(self.allowed_matrix.get(x, {}).get(y, False))

    def is_x_allowed(self, x: str, y: Optional[str] = None) -> bool:
        if x not in self.variables:
            return False
        if self.single_variable or not y:
            return True
        return self.is_pair_allowed(x, y)

    def is_y_allowed(self, y: str, x: Optional[str] = None) -> bool:
        if self.single_variable or y not in self.variables:
            return False
        if not x:
            return True
        return self.is_pair_allowed(x, y)

    def has_legal_partner(self, name: str, axis: str) -> bool:
        if self.single_variable:
            return name in self.variables
        if axis == "x":
            return any(self.is_pair_allowed(name, other) for other in self.variables)
        return any(self.is_pair_allowed(other, name) for other in self.variables)

    def variable_options(self, axis: str, other: Optional[str] = None) -> List[VariableOption]:
        """List variables for one axis; those that cannot form a legal chart are disabled."""
        if axis not in {"x", "y"}:
            raise PlotContractError(f"Unknown axis {axis!r}; expected 'x' or 'y'.")
        if self.single_variable and axis == "y":
            return []
        options: List[VariableOption] = []
        for name in self.variables:
            if self.single_variable:
                enabled = True
            elif axis == "x":
                enabled = self.has_legal_partner(name, "x") and self.is_x_allowed(name, other)
            else:
                enabled = self.has_legal_partner(name, "y") and self.is_y_allowed(name, other)
            options.append(VariableOption(name=name, enabled=enabled))
        return options

    def validate_selection(self, x: Optional[str], y: Optional[str]) -> None:
        for name in (x, y):
            if name is not None and name not in self.variables:
                raise PlotContractError(
                    f"Variable {name!r} is not available for {self.plot_type} plots."
                )
        if self.single_variable:
            if y is not None and y != self.y_variable:
                raise PlotContractError(
                    f"{self.label} takes a single variable; got Y variable {y!r}."
                )
            return
        if x is not None and y is not None and not self.is_pair_allowed(x, y):
            raise PlotContractError(
                f"{self.label} does not allow X={x!r} with Y={y!r}."
            )


PLOT_CONTRACTS: Mapping[str, PlotTypeContract] = {
    "line": PlotTypeContract(
        plot_type="line",
        label="Line Plot",
        variables=_BASE_VARIABLES,
        allowed_matrix=_matrix(
            _BASE_VARIABLES,
            {
                TIME: (MEETINGS_HELD,) + _ROLES + _EXTRAS,
                MEETINGS_HELD: (TIME,) + _ROLES + _EXTRAS,
                TASKS_COMPLETED: (TIME, MEETINGS_HELD) + _ROLES,
                PROXIMITY_COUNT: (TIME, MEETINGS_HELD),
            },
        ),
    ),
    "scatter": PlotTypeContract(
        plot_type="scatter",
        label="Scatter Plot",
        variables=_BASE_VARIABLES,
        allowed_matrix=_matrix(
            _BASE_VARIABLES,
            {
                TIME: (MEETINGS_HELD,) + _ROLES + _EXTRAS,
                MEETINGS_HELD: (TIME,) + _ROLES + _EXTRAS,
                INFECTED_SECTORS: (TIME, MEETINGS_HELD, INFECTED_CADETS, HEALTHY_CADETS) + _EXTRAS,
                INFECTED_CADETS: (TIME, MEETINGS_HELD, INFECTED_SECTORS, HEALTHY_SECTORS) + _EXTRAS,
                HEALTHY_SECTORS: (TIME, MEETINGS_HELD, INFECTED_CADETS, HEALTHY_CADETS) + _EXTRAS,
                HEALTHY_CADETS: (TIME, MEETINGS_HELD, INFECTED_SECTORS, HEALTHY_SECTORS) + _EXTRAS,
                TASKS_COMPLETED: (TIME, MEETINGS_HELD, PROXIMITY_COUNT) + _ROLES,
                PROXIMITY_COUNT: (TIME, MEETINGS_HELD, TASKS_COMPLETED) + _ROLES,
            },
        ),
    ),
    "bar": PlotTypeContract(
        plot_type="bar",
        label="Bar Plot",
        variables=_BASE_VARIABLES + (HOUR, SESSION_HALF),
        allowed_matrix=_matrix(
            _BASE_VARIABLES + (HOUR, SESSION_HALF),
            {
                TIME: (MEETINGS_HELD,) + _ROLES + _EXTRAS,
                MEETINGS_HELD: _ROLES + _EXTRAS,
                INFECTED_SECTORS: (MEETINGS_HELD, INFECTED_CADETS, HEALTHY_CADETS) + _EXTRAS,
                INFECTED_CADETS: (MEETINGS_HELD, INFECTED_SECTORS, HEALTHY_SECTORS) + _EXTRAS,
                HEALTHY_SECTORS: (MEETINGS_HELD, INFECTED_CADETS, HEALTHY_CADETS) + _EXTRAS,
                HEALTHY_CADETS: (MEETINGS_HELD, INFECTED_SECTORS, HEALTHY_SECTORS) + _EXTRAS,
                TASKS_COMPLETED: _ROLES,
                PROXIMITY_COUNT: _ROLES,
                HOUR: (MEETINGS_HELD,) + _ROLES + _EXTRAS,
                SESSION_HALF: (MEETINGS_HELD,) + _ROLES + _EXTRAS,
            },
        ),
    ),
    "histogram": PlotTypeContract(
        plot_type="histogram",
        label="Histogram Plot",
        variables=_ROLES + (PROXIMITY_COUNT,),
        y_variable=FREQUENCY,
    ),
    "pie": PlotTypeContract(
        plot_type="pie",
        label="Pie Plot",
        variables=_ROLES + (MEETINGS_HELD, SESSION_HALF),
    ),
}


def get_contract(plot_type: str) -> PlotTypeContract:
    try:
        return PLOT_CONTRACTS[plot_type]
    except KeyError:
        raise PlotContractError(
            f"Unknown plot type {plot_type!r}; expected one of {sorted(PLOT_CONTRACTS)}."
        ) from None


def variable_options(
    plot_type: str, axis: str, other: Optional[str] = None
) -> List[VariableOption]:
    return get_contract(plot_type).variable_options(axis, other)
