from __future__ import annotations

import copy
from dataclasses import dataclass
import json
import logging
import threading
from typing import Dict, Iterable, Iterator, List, Mapping, Optional
from urllib import parse, request

from ..config import StoreConfig
from .store import ErrorCallback, SnapshotCallback, StoreError, Unsubscribe

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class StreamEvent:
    event: str
    data: str


class FirebaseRestStore:
    """Read readings, the active session and meeting logs over the database REST API."""

    def __init__(self, config: StoreConfig) -> None:
        if config.subscription not in {"poll", "stream"}:
            raise ValueError("StoreConfig.subscription must be 'poll' or 'stream'.")
        self._config = config

    def fetch_readings(self) -> Optional[Mapping[str, object]]:
        payload = self._get_json(self._config.readings_path)
        if payload is not None and not isinstance(payload, Mapping):
            raise StoreError(
                f"Readings at '{self._config.readings_path}' must be an object."
            )
        return payload

    def fetch_session_id(self) -> Optional[str]:
        payload = self._get_json(self._config.session_path)
        if payload is None:
            return None
        if isinstance(payload, bool) or not isinstance(payload, (str, int)):
            raise StoreError(
                f"Session id at '{self._config.session_path}' must be a string."
            )
        return str(payload) or None

    def fetch_meeting_log(self, session_id: str) -> Optional[Mapping[str, object]]:
        path = self._config.meeting_logs_path.format(session_id=session_id)
        payload = self._get_json(path)
        if payload is not None and not isinstance(payload, Mapping):
            raise StoreError(f"Meeting log at '{path}' must be an object.")
        return payload

    def subscribe_readings(
        self,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Unsubscribe:
        if self._config.subscription == "stream":
            target = self._run_stream
        else:
            target = self._run_poll
        stop_event = threading.Event()
        thread = threading.Thread(
            target=target,
            args=(stop_event, on_snapshot, on_error),
            name="cadetscope-readings",
            daemon=True,
        )
        thread.start()

        def unsubscribe() -> None:
            stop_event.set()
            thread.join(timeout=max(self._config.subscription_interval_seconds, 0.1))

        return unsubscribe

    def url_for(self, path: str) -> str:
        base = self._config.database_url.rstrip("/")
        url = f"{base}/{path.strip('/')}.json"
        if self._config.auth_token:
            url += "?" + parse.urlencode({"auth": self._config.auth_token})
        return url

    def _get_json(self, path: str) -> object:
        url = self.url_for(path)
        try:
            with request.urlopen(url, **self._timeout_kwargs()) as response:
                body = response.read().decode("utf-8")
        except Exception as exc:
            raise StoreError(f"Store request for '{path}' failed: {exc}") from exc
        try:
            return json.loads(body) if body else None
        except json.JSONDecodeError as exc:
            raise StoreError(f"Store returned invalid JSON for '{path}': {exc}") from exc

    def _timeout_kwargs(self) -> Dict[str, float]:
        if self._config.timeout_seconds is None:
            return {}
        return {"timeout": self._config.timeout_seconds}

    def _run_poll(
        self,
        stop_event: threading.Event,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        interval = max(self._config.subscription_interval_seconds, 0.1)
        last: object = _UNSET
        while not stop_event.is_set():
            try:
                snapshot = self.fetch_readings()
            except StoreError as exc:
                _report(on_error, exc)
            else:
                if snapshot != last:
                    last = snapshot
                    on_snapshot(snapshot)
            stop_event.wait(interval)

    def _run_stream(
        self,
        stop_event: threading.Event,
        on_snapshot: SnapshotCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        interval = max(self._config.subscription_interval_seconds, 0.1)
        url = self.url_for(self._config.readings_path)
        while not stop_event.is_set():
            req = request.Request(url, headers={"Accept": "text/event-stream"})
            try:
                with request.urlopen(req, **self._timeout_kwargs()) as response:
                    self._consume_stream(response, stop_event, on_snapshot)
            except StoreError as exc:
                _report(on_error, exc)
            except Exception as exc:
                _report(on_error, StoreError(f"Readings stream failed: {exc}"))
            stop_event.wait(interval)

    def _consume_stream(
        self,
        response: Iterable[bytes],
        stop_event: threading.Event,
        on_snapshot: SnapshotCallback,
    ) -> None:
        tree: Optional[Dict[str, object]] = None
        lines = (line.decode("utf-8", errors="replace") for line in response)
        for item in iter_stream_events(lines):
            if stop_event.is_set():
                return
            if item.event == "keep-alive":
                continue
            if item.event in {"cancel", "auth_revoked"}:
                raise StoreError(f"Readings stream closed by server: {item.event}.")
            if item.event not in {"put", "patch"}:
                continue
            try:
                payload = json.loads(item.data)
            except json.JSONDecodeError as exc:
                raise StoreError(f"Readings stream sent invalid JSON: {exc}") from exc
            if not isinstance(payload, Mapping):
                continue
            tree = apply_stream_event(
                tree,
                str(payload.get("path", "/")),
                payload.get("data"),
                patch=item.event == "patch",
            )
            on_snapshot(copy.deepcopy(tree))


class _Unset:
    pass


_UNSET = _Unset()


def _report(on_error: Optional[ErrorCallback], exc: StoreError) -> None:
    LOGGER.warning("%s", exc)
    if on_error is not None:
        on_error(exc)


def iter_stream_events(lines: Iterable[str]) -> Iterator[StreamEvent]:
    """Group server-sent-event lines into events; a blank line ends an event."""
    event = "message"
    data: List[str] = []
    for raw_line in lines:
        line = raw_line.rstrip("\r\n")
        if not line:
            if data:
                yield StreamEvent(event=event, data="\n".join(data))
            event = "message"
            data = []
            continue
        if line.startswith(":"):
            continue
        name, _, value = line.partition(":")
        value = value[1:] if value.startswith(" ") else value
        if name == "event":
            event = value
        elif name == "data":
            data.append(value)
    if data:
        yield StreamEvent(event=event, data="\n".join(data))


def apply_stream_event(
    tree: Optional[Mapping[str, object]],
    path: str,
    data: object,
    *,
    patch: bool = False,
) -> Optional[Dict[str, object]]:
    """Apply a ``put`` or ``patch`` at ``path`` and return the updated tree.

    ``put`` replaces the value at ``path`` (``None`` deletes it); ``patch``
    merges the children of ``data`` into the node at ``path``.
    """
    segments = [segment for segment in path.split("/") if segment]
    if patch:
        updated = dict(tree) if isinstance(tree, Mapping) else None
        if not isinstance(data, Mapping):
            return updated
        for key, value in data.items():
            updated = apply_stream_event(updated, "/".join(segments + [str(key)]), value)
        return updated

    if not segments:
        return copy.deepcopy(dict(data)) if isinstance(data, Mapping) else None
    root: Dict[str, object] = dict(tree) if isinstance(tree, Mapping) else {}
    node = root
    for segment in segments[:-1]:
        child = node.get(segment)
        child = dict(child) if isinstance(child, Mapping) else {}
        node[segment] = child
        node = child
    if data is None:
        node.pop(segments[-1], None)
    else:
        node[segments[-1]] = copy.deepcopy(data)
    return root or None
