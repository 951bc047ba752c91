from __future__ import annotations

import argparse
import json
import logging
import time
from pathlib import Path
from typing import FrozenSet, Mapping, Optional, Sequence, Tuple

from .config import (
    DEFAULT_CADET_IDS,
    DEFAULT_IGNORED_IDS,
    DEFAULT_SECTOR_IDS,
    DEFAULT_TIMEZONE,
    DeviceCatalog,
    MonitorConfig,
    StoreConfig,
    ThinningConfig,
)
from .ingestion.firebase import FirebaseRestStore
from .models import NormalizedRecord
from .monitor import TelemetryMonitor
from .plots import PLOT_CONTRACTS, PlotContractError, PlotRequest, build_plot, get_contract

LOGGER = logging.getLogger(__name__)


def _load_config(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _require_mapping(value: object, label: str) -> Mapping[str, object]:
    if not isinstance(value, Mapping):
        raise ValueError(f"{label} must be an object.")
    return value


def _require_sequence(value: object, label: str) -> Sequence[object]:
    if not isinstance(value, Sequence) or isinstance(value, (str, bytes)):
        raise ValueError(f"{label} must be a list.")
    return value


def _require_float(value: object, label: str) -> float:
    if isinstance(value, bool):
        raise ValueError(f"{label} must be numeric.")
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"{label} must be numeric.")


def _optional_float(value: object, label: str) -> Optional[float]:
    if value is None:
        return None
    return _require_float(value, label)


def _optional_str(value: object) -> Optional[str]:
    if isinstance(value, str) and value:
        return value
    return None


def _require_non_empty(value: object, label: str) -> str:
    if value is None:
        raise ValueError(f"{label} is required.")
    if isinstance(value, str):
        if not value.strip():
            raise ValueError(f"{label} is required.")
        return value
    return str(value)


def _require_bool(value: object, label: str) -> bool:
    if not isinstance(value, bool):
        raise ValueError(f"{label} must be true or false.")
    return value


def _parse_id_list(value: object, label: str, default: Sequence[str]) -> Tuple[str, ...]:
    if value is None:
        return tuple(default)
    items = _require_sequence(value, label)
    return tuple(
        _require_non_empty(item, f"{label}[{index}]") for index, item in enumerate(items)
    )


def _parse_store_config(payload: Mapping[str, object]) -> StoreConfig:
    subscription = str(payload.get("subscription", "poll"))
    if subscription not in {"poll", "stream"}:
        raise ValueError("store.subscription must be 'poll' or 'stream'.")
    defaults = StoreConfig(database_url="")
    return StoreConfig(
        database_url=_require_non_empty(payload.get("database_url"), "store.database_url"),
        auth_token=_optional_str(payload.get("auth_token")),
        readings_path=_optional_str(payload.get("readings_path")) or defaults.readings_path,
        session_path=_optional_str(payload.get("session_path")) or defaults.session_path,
        meeting_logs_path=(
            _optional_str(payload.get("meeting_logs_path")) or defaults.meeting_logs_path
        ),
        timeout_seconds=_optional_float(
            payload.get("timeout_seconds"), "store.timeout_seconds"
        ),
        subscription=subscription,
        subscription_interval_seconds=_require_float(
            payload.get("subscription_interval_seconds", defaults.subscription_interval_seconds),
            "store.subscription_interval_seconds",
        ),
    )


def _parse_catalog(payload: Mapping[str, object]) -> DeviceCatalog:
    return DeviceCatalog(
        cadet_ids=_parse_id_list(payload.get("cadet_ids"), "catalog.cadet_ids", DEFAULT_CADET_IDS),
        sector_ids=_parse_id_list(
            payload.get("sector_ids"), "catalog.sector_ids", DEFAULT_SECTOR_IDS
        ),
        ignored_ids=_parse_id_list(
            payload.get("ignored_ids"), "catalog.ignored_ids", DEFAULT_IGNORED_IDS
        ),
    )


def _parse_thinning_config(payload: Mapping[str, object]) -> ThinningConfig:
    limit = payload.get("max_records_per_device")
    if limit is not None:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit <= 0:
            raise ValueError("thinning.max_records_per_device must be a positive integer.")
    return ThinningConfig(
        collapse_repeats=_require_bool(
            payload.get("collapse_repeats", False), "thinning.collapse_repeats"
        ),
        max_records_per_device=limit,
    )


def _parse_monitor_config(payload: Mapping[str, object]) -> MonitorConfig:
    return MonitorConfig(
        catalog=_parse_catalog(_require_mapping(payload.get("catalog", {}), "catalog")),
        timezone=_optional_str(payload.get("timezone")) or DEFAULT_TIMEZONE,
        session_poll_interval_seconds=_require_float(
            payload.get("session_poll_interval_seconds", 30.0),
            "session_poll_interval_seconds",
        ),
        restrict_to_current_day=_require_bool(
            payload.get("restrict_to_current_day", True), "restrict_to_current_day"
        ),
        thinning=_parse_thinning_config(
            _require_mapping(payload.get("thinning", {}), "thinning")
        ),
    )


def _build_monitor(config: Mapping[str, object]) -> TelemetryMonitor:
    store_payload = _require_mapping(config.get("store"), "store")
    store = FirebaseRestStore(_parse_store_config(store_payload))
    return TelemetryMonitor(store=store, config=_parse_monitor_config(config))


def _parse_id_filter(value: Optional[str]) -> Optional[FrozenSet[str]]:
    if value is None:
        return None
    return frozenset(item.strip() for item in value.split(",") if item.strip())


def _build_plot_request(args: argparse.Namespace) -> Optional[PlotRequest]:
    if args.plot is None:
        return None
    request = PlotRequest(
        plot_type=args.plot,
        x_variable=args.x,
        y_variable=args.y,
        cadet_ids=_parse_id_filter(args.cadets),
        sector_ids=_parse_id_filter(args.sectors),
    )
    build_plot((), request)
    return request


class _UpdateEmitter:
    """Print one NDJSON line per accepted record set and per change of error."""

    def __init__(self, monitor: TelemetryMonitor, plot_request: Optional[PlotRequest]) -> None:
        self.monitor = monitor
        self.plot_request = plot_request
        self._reported_error: Optional[str] = None

    def on_records(self, records: Sequence[NormalizedRecord]) -> None:
        self._emit(len(records))

    def check_error(self) -> None:
        if self.monitor.last_error != self._reported_error:
            self._emit(len(self.monitor.records))

    def _emit(self, record_count: int) -> None:
        state = self.monitor.state
        error = self.monitor.last_error
        payload: dict[str, object] = {
            "records": record_count,
            "watermark": state.watermark.isoformat() if state.watermark else None,
            "session_id": state.session.session_id,
            "meetings": len(state.session.meeting_ends),
            "error": error,
        }
        if self.plot_request is not None:
            payload["plot"] = self.monitor.plot(self.plot_request).to_dict()
        self._reported_error = error
        print(json.dumps(payload), flush=True)

def _emit_variable_options(plot_type: str, x: Optional[str], y: Optional[str]) -> None:
    contract = get_contract(plot_type)
    payload = {
        "plot_type": contract.plot_type,
        "label": contract.label,
        "x": [
            {"name": option.name, "enabled": option.enabled}
            for option in contract.variable_options("x", y)
        ],
        "y": [
            {"name": option.name, "enabled": option.enabled}
            for option in contract.variable_options("y", x)
        ],
    }
    if contract.y_variable:
        payload["y_variable"] = contract.y_variable
    print(json.dumps(payload), flush=True)


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Follow live cadet and sector telemetry and emit chart-ready updates."
    )
    parser.add_argument(
        "--config",
        help="Path to a JSON configuration file.",
    )
    parser.add_argument(
        "--plot",
        choices=sorted(PLOT_CONTRACTS),
        help="Plot type to build on every accepted update.",
    )
    parser.add_argument("--x", help="X variable (or the single variable for histogram/pie).")
    parser.add_argument("--y", help="Y variable.")
    parser.add_argument(
        "--cadets",
        help="Comma-separated cadet ids to include (default: all).",
    )
    parser.add_argument(
        "--sectors",
        help="Comma-separated sector ids to include (default: all).",
    )
    parser.add_argument(
        "--list-variables",
        choices=sorted(PLOT_CONTRACTS),
        help="Print the selectable variables for a plot type and exit.",
    )
    parser.add_argument(
        "--poll-interval",
        type=float,
        default=0.5,
        help="Seconds to wait between monitor ticks (default: 0.5).",
    )
    parser.add_argument(
        "--max-iterations",
        type=int,
        default=0,
        help="Stop after N iterations (0 = run forever).",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (default: INFO).",
    )
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)

    if args.list_variables:
        _emit_variable_options(args.list_variables, args.x, args.y)
        return 0
    if not args.config:
        parser.error("--config is required unless --list-variables is given.")

    try:
        plot_request = _build_plot_request(args)
    except PlotContractError as exc:
        parser.error(str(exc))

    config_path = Path(args.config)
    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")
    config = _require_mapping(_load_config(config_path), "config")
    monitor = _build_monitor(config)
    emitter = _UpdateEmitter(monitor, plot_request)
    monitor.add_listener(emitter.on_records)

    poll_interval = max(args.poll_interval, 0.0)
    max_iterations = max(args.max_iterations, 0)
    iterations = 0

    try:
        monitor.start()
        emitter.check_error()
        while True:
            monitor.tick()
            emitter.check_error()
            iterations += 1
            if max_iterations and iterations >= max_iterations:
                break
            time.sleep(poll_interval)
    except KeyboardInterrupt:
        return 0
    finally:
        monitor.stop()
        LOGGER.info("Monitor stopped after %d iterations", iterations)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
