"""Status notifications sent from the translation core to the presentation layer."""

from __future__ import annotations

import datetime as _dt
import logging
import sys
from typing import IO, Callable, Iterable, List, Optional


logger = logging.getLogger(__name__)


class Notifier:
    """Observer interface. Implementations must return quickly and not raise."""

    def on_success(self, message: str) -> None:
        pass

    def on_error(self, message: str) -> None:
        pass

    def on_warning(self, message: str) -> None:
        pass

    def on_engine_error(self, message: str) -> None:
        pass

    def on_hook_error(self, message: str) -> None:
        pass


class LoggingNotifier(Notifier):
    def __init__(self, target: Optional[logging.Logger] = None) -> None:
        self._logger = target or logger

    def on_success(self, message: str) -> None:
        self._logger.info("Translation success: %s", message)

    def on_error(self, message: str) -> None:
        self._logger.error("Translation error: %s", message)

    def on_warning(self, message: str) -> None:
        self._logger.warning("Translation warning: %s", message)

    def on_engine_error(self, message: str) -> None:
        self._logger.error("Engine error: %s", message)

    def on_hook_error(self, message: str) -> None:
        self._logger.error("Hotkey error: %s", message)


_GREEN = "\033[32m"
_RED = "\033[31m"
_YELLOW = "\033[33m"
_MAGENTA = "\033[35m"
_DARK_RED = "\033[2;31m"
_RESET = "\033[0m"


class ConsoleNotifier(Notifier):
    """Print one coloured, timestamped line per notification."""

    def __init__(
        self,
        stream: Optional[IO[str]] = None,
        *,
        color: Optional[bool] = None,
        clock: Callable[[], _dt.datetime] = _dt.datetime.now,
    ) -> None:
        self._stream = stream if stream is not None else sys.stdout
        if color is None:
            color = bool(getattr(self._stream, "isatty", lambda: False)())
        self._color = color
        self._clock = clock

    def _write(self, color: str, label: str, message: str) -> None:
        line = f"[{self._clock():%H:%M:%S}] {label}{message}"
        if self._color:
            line = f"{color}{line}{_RESET}"
        print(line, file=self._stream, flush=True)

    def on_success(self, message: str) -> None:
        self._write(_GREEN, "✅ ", message)

    def on_error(self, message: str) -> None:
        self._write(_RED, "❌ Error: ", message)

    def on_warning(self, message: str) -> None:
        self._write(_YELLOW, "⚠️ Warning: ", message)

    def on_engine_error(self, message: str) -> None:
        self._write(_MAGENTA, "🔧 Engine Error: ", message)

    def on_hook_error(self, message: str) -> None:
        self._write(_DARK_RED, "⌨️ Hotkey Error: ", message)


class CompositeNotifier(Notifier):
    """Fan a notification out to several observers.

    A failing observer is logged and skipped so the others still run.
    """

    def __init__(self, notifiers: Iterable[Notifier] = ()) -> None:
        self._notifiers: List[Notifier] = list(notifiers)

    def add(self, notifier: Notifier) -> None:
        self._notifiers.append(notifier)

    def remove(self, notifier: Notifier) -> None:
        if notifier in self._notifiers:
            self._notifiers.remove(notifier)

    def _dispatch(self, method: str, message: str) -> None:
        for notifier in list(self._notifiers):
            try:
                getattr(notifier, method)(message)
            except Exception:
                logger.exception("Notifier %r failed in %s", notifier, method)

    def on_success(self, message: str) -> None:
        self._dispatch("on_success", message)

    def on_error(self, message: str) -> None:
        self._dispatch("on_error", message)

    def on_warning(self, message: str) -> None:
        self._dispatch("on_warning", message)

    def on_engine_error(self, message: str) -> None:
        self._dispatch("on_engine_error", message)

    def on_hook_error(self, message: str) -> None:
        self._dispatch("on_hook_error", message)
