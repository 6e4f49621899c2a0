"""Recognise the timed activation-key gesture from the raw key-down stream."""

from __future__ import annotations

import collections
import logging
import threading
import time
from typing import Callable, Deque, Optional

from app_config import GestureConfig


TriggerCallback = Callable[[float], None]
Spawner = Callable[[TriggerCallback, float], None]

logger = logging.getLogger(__name__)


def spawn_thread(callback: TriggerCallback, timestamp: float) -> None:
    """Run ``callback`` on a fresh daemon thread."""

    worker = threading.Thread(
        target=callback, args=(timestamp,), name="TranslationPipeline", daemon=True
    )
    worker.start()


class GestureDetector:
    """Tracks activation-key taps and fires when the timing gesture completes.

    :meth:`on_key_event` runs on the keyboard hook thread, so it only does
    arithmetic over the last ``required_tap_count - 1`` timestamps and hands
    accepted triggers to ``spawn``; the callback never runs inline.
    """

    def __init__(
        self,
        config: GestureConfig,
        on_trigger: TriggerCallback,
        *,
        spawn: Optional[Spawner] = None,
        time_provider: Callable[[], float] = time.monotonic,
    ) -> None:
        self._config = config
        self._on_trigger = on_trigger
        self._spawn = spawn or spawn_thread
        self._time_provider = time_provider
        self._history: Deque[float] = collections.deque(maxlen=config.required_tap_count - 1)
        self._last_trigger: Optional[float] = None
        self._enabled = True
        self._lock = threading.Lock()

    @property
    def config(self) -> GestureConfig:
        return self._config

    @property
    def enabled(self) -> bool:
        return self._enabled

    @enabled.setter
    def enabled(self, value: bool) -> None:
        self._enabled = bool(value)

    @property
    def last_trigger_time(self) -> Optional[float]:
        return self._last_trigger

    def history(self) -> tuple:
        return tuple(self._history)

    def reconfigure(self, config: GestureConfig) -> None:
        """Swap in a new config; the next key event is evaluated against it."""

        self._config = config
        logger.info(
            "Gesture configured: key=%s, min=%dms, max=%dms, cooldown=%dms, requiredCount=%d",
            config.activation_key,
            config.min_interval_ms,
            config.max_interval_ms,
            config.cooldown_ms,
            config.required_tap_count,
        )

    def reset(self) -> None:
        with self._lock:
            self._history.clear()
            self._last_trigger = None

    def on_key_event(self, key: str, timestamp: Optional[float] = None) -> bool:
        """Feed one key-down event. Returns ``True`` if a trigger was dispatched."""

        if not self._enabled:
            return False
        config = self._config
        if key.lower() != config.activation_key.lower():
            return False

        now = self._time_provider() if timestamp is None else timestamp
        with self._lock:
            history = self._history_for(config)
            fired = self._matches(config, history, now)
            accepted = False
            if fired:
                if self._last_trigger is not None and (now - self._last_trigger) * 1000.0 < config.cooldown_ms:
                    logger.debug(
                        "Gesture skipped: in cooldown, remaining %.0fms",
                        config.cooldown_ms - (now - self._last_trigger) * 1000.0,
                    )
                else:
                    self._last_trigger = now
                    accepted = True
            history.append(now)

        if accepted:
            logger.info("Gesture detected (%d taps), triggering translation", config.required_tap_count)
            try:
                self._spawn(self._on_trigger, now)
            except Exception:
                logger.exception("Failed to dispatch translation pipeline")
                return False
        return accepted

    def _history_for(self, config: GestureConfig) -> Deque[float]:
        size = config.required_tap_count - 1
        if self._history.maxlen != size:
            self._history = collections.deque(self._history, maxlen=size)
        return self._history

    @staticmethod
    def _matches(config: GestureConfig, history: Deque[float], now: float) -> bool:
        if len(history) < config.required_tap_count - 1:
            return False
        stamps = list(history) + [now]
        for earlier, later in zip(stamps, stamps[1:]):
            gap_ms = (later - earlier) * 1000.0
            if not config.min_interval_ms < gap_ms < config.max_interval_ms:
                return False
        return True
