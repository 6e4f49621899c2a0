"""Global key-down event sources backed by pyWinhook or the keyboard package."""

from __future__ import annotations

import itertools
import logging
import sys
import threading
import time
from typing import Callable, Dict, Optional

try:
    import win32api  # type: ignore
    import win32con  # type: ignore
except Exception:  # pragma: no cover - optional dependency on non-Windows platforms
    win32api = None  # type: ignore
    win32con = None  # type: ignore

try:
    import pyWinhook  # type: ignore
except Exception:  # pragma: no cover - optional dependency on non-Windows platforms
    pyWinhook = None  # type: ignore

try:
    import pythoncom  # type: ignore
except Exception:  # pragma: no cover - optional dependency on non-Windows platforms
    pythoncom = None  # type: ignore

try:
    import keyboard  # type: ignore
except Exception:  # pragma: no cover - keyboard refuses to load on some platforms
    keyboard = None  # type: ignore


KeyCallback = Callable[[str, float], None]

logger = logging.getLogger(__name__)


class HookInstallFailed(RuntimeError):
    """Raised when the global keyboard hook cannot be installed."""


def normalize_key_name(name: Optional[str]) -> Optional[str]:
    """Map backend specific key names onto lower-case keyboard-style names."""

    if not name:
        return None
    token = name.lower()
    if token in {"lcontrol", "rcontrol", "control", "ctrl", "left ctrl", "right ctrl"}:
        return "ctrl"
    if token in {"lshift", "rshift", "shift", "left shift", "right shift"}:
        return "shift"
    if token in {"lmenu", "rmenu", "menu", "alt", "left alt", "right alt", "alt gr"}:
        return "alt"
    if token in {"return"}:
        return "enter"
    return token


class KeyboardEventSource:
    """Fan out global key-down events to subscribed callbacks.

    Callbacks run on the hook thread and receive ``(key_name, timestamp)``
    where ``timestamp`` comes from a monotonic clock. They must return fast.
    """

    def __init__(self, time_provider: Callable[[], float] = time.monotonic) -> None:
        self._time_provider = time_provider
        self._callbacks: Dict[int, KeyCallback] = {}
        self._handles = itertools.count(1)
        self._lock = threading.Lock()

    def subscribe(self, callback: KeyCallback) -> int:
        with self._lock:
            first = not self._callbacks
            handle = next(self._handles)
            self._callbacks[handle] = callback
        if first:
            try:
                self._install()
            except Exception:
                with self._lock:
                    self._callbacks.pop(handle, None)
                raise
        return handle

    def unsubscribe(self, handle: int) -> None:
        with self._lock:
            removed = self._callbacks.pop(handle, None)
            empty = not self._callbacks
        if removed is not None and empty:
            self._uninstall()

    def close(self) -> None:
        with self._lock:
            had_callbacks = bool(self._callbacks)
            self._callbacks.clear()
        if had_callbacks:
            self._uninstall()

    def _deliver(self, key_name: Optional[str]) -> None:
        key = normalize_key_name(key_name)
        if key is None:
            return
        timestamp = self._time_provider()
        with self._lock:
            callbacks = list(self._callbacks.values())
        for callback in callbacks:
            try:
                callback(key, timestamp)
            except Exception:  # pragma: no cover - callbacks are expected to be safe
                logger.exception("Key event callback failed")

    def _install(self) -> None:  # pragma: no cover - interface definition
        raise NotImplementedError

    def _uninstall(self) -> None:  # pragma: no cover - interface definition
        raise NotImplementedError


class KeyboardHookEventSource(KeyboardEventSource):
    """Event source built on ``keyboard.hook``."""

    def __init__(self, keyboard_module=keyboard, time_provider: Callable[[], float] = time.monotonic) -> None:
        super().__init__(time_provider)
        if keyboard_module is None:
            raise HookInstallFailed("The 'keyboard' package is not available")
        self._keyboard = keyboard_module
        self._hook = None

    def _install(self) -> None:
        try:
            self._hook = self._keyboard.hook(self._on_event)
        except Exception as exc:
            raise HookInstallFailed(f"Failed to install keyboard hook: {exc}") from exc
        logger.info("Global keyboard hook installed")

    def _uninstall(self) -> None:
        if self._hook is None:
            return
        try:
            self._keyboard.unhook(self._hook)
        except (KeyError, ValueError) as exc:
            logger.debug("Keyboard hook already removed: %s", exc)
        self._hook = None
        logger.info("Global keyboard hook uninstalled")

    def _on_event(self, event) -> None:
        if getattr(event, "event_type", None) != self._keyboard.KEY_DOWN:
            return
        self._deliver(getattr(event, "name", None))


class PyWinhookEventSource(KeyboardEventSource):
    """Windows low-level hook running its own message pump thread."""

    def __init__(self, time_provider: Callable[[], float] = time.monotonic) -> None:
        if pyWinhook is None or pythoncom is None:  # pragma: no cover - guarded by factory
            raise HookInstallFailed("pyWinhook is not available")
        super().__init__(time_provider)
        self._stop_event = threading.Event()
        self._ready_event = threading.Event()
        self._thread_id: Optional[int] = None
        self._hook_manager: Optional["pyWinhook.HookManager"] = None
        self._pump_thread: Optional[threading.Thread] = None
        self._install_error: Optional[BaseException] = None

    def _install(self) -> None:  # pragma: no cover - Windows specific functionality
        self._stop_event.clear()
        self._ready_event.clear()
        self._install_error = None
        self._pump_thread = threading.Thread(
            target=self._run_message_loop, name="PyWinhookKeyboard", daemon=True
        )
        self._pump_thread.start()

        if not self._ready_event.wait(timeout=2.0):
            raise HookInstallFailed("pyWinhook keyboard hook failed to initialise")
        if self._install_error is not None or self._hook_manager is None:
            raise HookInstallFailed(f"pyWinhook keyboard hook failed: {self._install_error}")
        logger.info("Global keyboard hook installed (pyWinhook)")

    def _uninstall(self) -> None:  # pragma: no cover - Windows specific functionality
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        self._wake_message_loop()
        if self._pump_thread is not None and self._pump_thread.is_alive():
            self._pump_thread.join(timeout=1.0)
        self._pump_thread = None
        logger.info("Global keyboard hook uninstalled (pyWinhook)")

    def _run_message_loop(self) -> None:  # pragma: no cover - Windows specific functionality
        try:
            pythoncom.CoInitialize()
        except Exception as exc:
            self._install_error = exc
            self._ready_event.set()
            return

        try:
            hook_manager = pyWinhook.HookManager()
            hook_manager.KeyDown = self._on_key_down
            hook_manager.HookKeyboard()

            self._hook_manager = hook_manager
            if win32api is not None:
                try:
                    self._thread_id = win32api.GetCurrentThreadId()  # type: ignore[attr-defined]
                except Exception:
                    self._thread_id = None
            self._ready_event.set()

            while not self._stop_event.is_set():
                try:
                    pythoncom.PumpWaitingMessages()
                except pythoncom.com_error:
                    break
                time.sleep(0.01)
        except Exception as exc:
            self._install_error = exc
            logger.exception("pyWinhook message loop failed")
        finally:
            try:
                if self._hook_manager is not None:
                    self._hook_manager.UnhookKeyboard()
            except Exception as exc:
                logger.debug("UnhookKeyboard failed: %s", exc)
            self._hook_manager = None
            self._thread_id = None
            self._ready_event.set()
            try:
                pythoncom.CoUninitialize()
            except Exception as exc:
                logger.debug("CoUninitialize failed: %s", exc)

    def _wake_message_loop(self) -> None:  # pragma: no cover - Windows specific functionality
        thread_id = self._thread_id
        if thread_id is None or win32api is None or win32con is None:
            return
        try:
            win32api.PostThreadMessage(thread_id, win32con.WM_NULL, 0, 0)
        except Exception as exc:
            logger.debug("Failed to wake pyWinhook message loop: %s", exc)

    def _on_key_down(self, event: "pyWinhook.KeyboardEvent") -> bool:  # pragma: no cover - Windows only
        self._deliver(getattr(event, "Key", None))
        return True


def create_event_source(time_provider: Callable[[], float] = time.monotonic) -> KeyboardEventSource:
    """Pick the best available global keyboard hook for this platform."""

    if sys.platform == "win32" and pyWinhook is not None and pythoncom is not None:  # pragma: no cover
        return PyWinhookEventSource(time_provider)
    if keyboard is not None:
        return KeyboardHookEventSource(keyboard, time_provider)
    raise HookInstallFailed("No global keyboard hook backend is available on this platform")
