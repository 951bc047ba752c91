#!/usr/bin/env python3
"""Serve demo cadet/sector readings over the database REST layout for the CLI."""

from __future__ import annotations

import argparse
from datetime import datetime, timedelta
import itertools
import json
import random
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse
from zoneinfo import ZoneInfo

SESSION_ID = "demo-session"
DEVICES = ("S1", "S2", "S3", "S4", "T1", "T2", "QR")


class DemoState:
    def __init__(self, zone: ZoneInfo) -> None:
        self._zone = zone
        self._lock = threading.Lock()
        self._counter = itertools.count()
        self._readings: dict[str, dict[str, object]] = {}
        self._meeting_logs: dict[str, dict[str, object]] = {}

    def advance(self) -> None:
        now = datetime.now(self._zone)
        with self._lock:
            for device_id in DEVICES:
                record_id = f"r{next(self._counter):06d}"
                self._readings[record_id] = {
                    "device_id": device_id,
                    "timestamp": now.isoformat(timespec="milliseconds"),
                    "infection_status": 1 if random.random() < 0.3 else 0,
                    "proximity_mask": random.randint(0, 0b111111),
                    "tasks_completed": random.randint(0, 5),
                }
            if random.random() < 0.1:
                key = (now - timedelta(seconds=1)).isoformat(timespec="milliseconds")
                key = key.replace(":", "_").replace(".", "_")
                self._meeting_logs[key] = {"event": "MEETINGEND"}

    def resolve(self, path: str) -> object:
        with self._lock:
            if path == "/readings.json":
                return dict(self._readings)
            if path == "/activeSessionId.json":
                return SESSION_ID
            if path == f"/sessions/{SESSION_ID}/MeetingLogs.json":
                return dict(self._meeting_logs)
        raise KeyError(path)


class DemoReadingsHandler(BaseHTTPRequestHandler):
    state: DemoState

    def do_GET(self) -> None:  # noqa: N802 - required by BaseHTTPRequestHandler
        try:
            payload = self.state.resolve(urlparse(self.path).path)
        except KeyError:
            self.send_error(404, "Not Found")
            return

        body = json.dumps(payload).encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, fmt: str, *args: object) -> None:  # noqa: D401
        return


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve demo cadet telemetry JSON.")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8090)
    parser.add_argument("--interval", type=float, default=2.0)
    parser.add_argument("--timezone", default="America/Los_Angeles")
    args = parser.parse_args()

    state = DemoState(ZoneInfo(args.timezone))
    DemoReadingsHandler.state = state
    stop_event = threading.Event()

    def produce() -> None:
        while not stop_event.is_set():
            state.advance()
            stop_event.wait(args.interval)

    producer = threading.Thread(target=produce, name="demo-readings", daemon=True)
    producer.start()

    server = ThreadingHTTPServer((args.host, args.port), DemoReadingsHandler)
    print(f"Demo readings server listening on http://{args.host}:{args.port}/readings.json")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        stop_event.set()
        server.server_close()


if __name__ == "__main__":
    main()
