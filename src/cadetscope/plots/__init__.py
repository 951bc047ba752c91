"""Plot contracts and chart-ready series construction."""

from .contract import (
    CADET_VARIABLES,
    PLOT_CONTRACTS,
    ROLE_VARIABLES,
    SECTOR_VARIABLES,
    PlotContractError,
    PlotTypeContract,
    VariableOption,
    get_contract,
    variable_options,
)
from .series import (
    AxisBounds,
    HistogramBucket,
    PieSlice,
    PlotPoint,
    PlotRequest,
    PlotResult,
    PlotSeries,
    apply_filters,
    build_plot,
)

__all__ = [
    "AxisBounds",
    "CADET_VARIABLES",
    "HistogramBucket",
    "PLOT_CONTRACTS",
    "PieSlice",
    "PlotContractError",
    "PlotPoint",
    "PlotRequest",
    "PlotResult",
    "PlotSeries",
    "PlotTypeContract",
    "ROLE_VARIABLES",
    "SECTOR_VARIABLES",
    "VariableOption",
    "apply_filters",
    "build_plot",
    "get_contract",
    "variable_options",
]
