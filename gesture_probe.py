"""Print raw activation-key timing and gesture decisions from the global hook.

Use it to tune the gesture window on a given machine: every key-down is
printed with its monotonic timestamp and the gap to the previous press of
the same key, and completed gestures are marked. Nothing is translated.

Usage example::

    python gesture_probe.py --log gesture_events.log --duration 60
"""

from __future__ import annotations

import argparse
import datetime as _dt
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

from app_config import AppConfig, ConfigInvalid, GestureConfig, find_config_file, load_config
from gesture_detector import GestureDetector
from keyboard_adapter import HookInstallFailed, create_event_source


def format_event(key: str, timestamp: float, gap_ms: Optional[float], fired: bool) -> str:
    wall = _dt.datetime.now().isoformat(timespec="milliseconds")
    gap = f"{gap_ms:7.1f}ms" if gap_ms is not None else "      -  "
    marker = "  <== GESTURE" if fired else ""
    return f"{wall} t={timestamp:12.3f} key={key!r:<12} gap={gap}{marker}"


class GestureProbe:
    """Feeds key events to a detector whose trigger only records the firing."""

    def __init__(self, config: GestureConfig) -> None:
        self.fired: List[float] = []
        self._last_seen: Dict[str, float] = {}
        self.detector = GestureDetector(config, self.fired.append, spawn=lambda callback, ts: callback(ts))

    def observe(self, key: str, timestamp: float) -> str:
        previous = self._last_seen.get(key)
        self._last_seen[key] = timestamp
        gap_ms = (timestamp - previous) * 1000.0 if previous is not None else None
        fired = self.detector.on_key_event(key, timestamp)
        return format_event(key, timestamp, gap_ms, fired)


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Record key timing and show which taps complete the gesture.")
    parser.add_argument("--config", type=Path, default=None, help="Config file with the gesture settings.")
    parser.add_argument("--log", type=Path, help="Optional file path to append the captured events.")
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Optional maximum duration in seconds before the script exits.",
    )
    return parser.parse_args(argv)


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    try:
        path = args.config or find_config_file()
        config = load_config(path) if path is not None else AppConfig()
    except ConfigInvalid as exc:
        print(f"Invalid configuration: {exc}", file=sys.stderr)
        return 1

    log_file = None
    if args.log is not None:
        try:
            log_file = args.log.open("a", encoding="utf-8")
        except OSError as exc:  # pragma: no cover - depends on filesystem
            print(f"Failed to open log file {args.log}: {exc}", file=sys.stderr)
            return 1

    probe = GestureProbe(config.gesture)

    def _handler(key: str, timestamp: float) -> None:
        line = probe.observe(key, timestamp)
        print(line, flush=True)
        if log_file is not None:
            log_file.write(line + "\n")
            log_file.flush()

    try:
        source = create_event_source()
        handle = source.subscribe(_handler)
    except HookInstallFailed as exc:
        print(f"Cannot install keyboard hook: {exc}", file=sys.stderr)
        if log_file is not None:
            log_file.close()
        return 1

    print("Recording key events. Press Ctrl+C to stop.")
    try:
        deadline = time.monotonic() + max(args.duration, 0) if args.duration is not None else None
        while deadline is None or time.monotonic() < deadline:
            time.sleep(0.1)
    except KeyboardInterrupt:
        pass
    finally:
        source.unsubscribe(handle)
        source.close()
        if log_file is not None:
            log_file.close()

    print(f"{len(probe.fired)} gesture(s) detected.")
    return 0


if __name__ == "__main__":  # pragma: no cover - manual utility script
    raise SystemExit(main())
