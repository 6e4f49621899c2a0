"""SpaceTrans: translate the focused input in place after a triple space tap."""

from __future__ import annotations

import argparse
import contextlib
import dataclasses
import logging
import os
import subprocess
import sys
import tempfile
import threading
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import IO, Callable, Dict, List, Optional, Sequence, Set, Tuple

try:  # pragma: no cover - optional dependency for system tray support
    import pystray  # type: ignore
    from pystray import MenuItem  # type: ignore
except Exception:  # pragma: no cover - pystray raises backend errors on headless systems
    pystray = None  # type: ignore
    MenuItem = None  # type: ignore

try:  # pragma: no cover - optional dependency for system tray support
    from PIL import Image, ImageDraw  # type: ignore
except ImportError:  # pragma: no cover - handled when starting the tray icon
    Image = None  # type: ignore
    ImageDraw = None  # type: ignore

from app_config import AppConfig, ConfigInvalid, load_config, load_or_create_config
from gesture_detector import GestureDetector
from keyboard_adapter import HookInstallFailed, KeyboardEventSource, create_event_source
from notifications import CompositeNotifier, ConsoleNotifier, LoggingNotifier, Notifier
from pipeline import PipelineResult, TranslationPipeline
from platform_service import ClipboardService, ClipboardUnavailable, PyperclipKeyboardService
from translation_service import EngineRegistry, build_engine_registry


APP_NAME = "SpaceTrans"

LOG_FILE_NAME = "spacetrans.log"
LOG_MAX_BYTES = 2_097_152
LOG_BACKUP_COUNT = 3
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DEFAULT_LOG_DIR = Path.home() / ".spacetrans"

SHUTDOWN_TIMEOUT = 5.0

logger = logging.getLogger(__name__)


def configure_logging(
    level: str = "INFO",
    log_dir: Optional[Path] = DEFAULT_LOG_DIR,
    *,
    console: bool = True,
) -> logging.Logger:
    """Attach the rotating file handler (and optionally stderr) to the root logger.

    Calling it again only updates the level.
    """

    root = logging.getLogger()
    root.setLevel(level.upper())
    if any(getattr(handler, "_spacetrans", False) for handler in root.handlers):
        return root

    formatter = logging.Formatter(LOG_FORMAT)
    if log_dir is not None:
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / LOG_FILE_NAME,
                maxBytes=LOG_MAX_BYTES,
                backupCount=LOG_BACKUP_COUNT,
                encoding="utf-8",
            )
        except OSError as exc:
            print(f"Could not open log file in {log_dir}: {exc}", file=sys.stderr)
        else:
            file_handler.setFormatter(formatter)
            file_handler._spacetrans = True  # type: ignore[attr-defined]
            root.addHandler(file_handler)
    if console:
        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(formatter)
        stream_handler._spacetrans = True  # type: ignore[attr-defined]
        root.addHandler(stream_handler)
    return root


class SingleInstanceError(RuntimeError):
    """Raised when another instance of the application is already running."""


def _lock_exclusive(handle: IO[str]) -> None:
    if sys.platform == "win32":  # pragma: no cover - platform specific
        import msvcrt  # type: ignore

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_NBLCK, 1)
    else:
        import fcntl  # type: ignore

        fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)


def _unlock(handle: IO[str]) -> None:
    if sys.platform == "win32":  # pragma: no cover - platform specific
        import msvcrt  # type: ignore

        handle.seek(0)
        msvcrt.locking(handle.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        import fcntl  # type: ignore

        fcntl.flock(handle.fileno(), fcntl.LOCK_UN)


class SingleInstanceGuard:
    """``<name>.lock`` in the temp directory, locked while SpaceTrans runs.

    The lock belongs to the open handle, so a crashed process never leaves a
    stale lock behind. The holder's PID is written into the file.
    """

    def __init__(self, name: str, directory: Optional[Path] = None) -> None:
        self.path = Path(directory or tempfile.gettempdir()) / f"{name}.lock"
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        if self.held:
            return
        handle = self.path.open("a+", encoding="utf-8")
        try:
            _lock_exclusive(handle)
        except OSError as exc:
            handle.close()
            raise SingleInstanceError(f"Another {APP_NAME} instance is already running ({self.path})") from exc
        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        logger.debug("Instance lock taken: %s", self.path)

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        with contextlib.suppress(OSError):
            _unlock(handle)
        handle.close()
        with contextlib.suppress(OSError):
            self.path.unlink()

    def __enter__(self) -> "SingleInstanceGuard":
        self.acquire()
        return self

    def __exit__(self, *_exc_info: object) -> None:
        self.release()


class SpaceTransApp:
    """Wires the keyboard hook, gesture detector and translation pipelines."""

    def __init__(
        self,
        config: AppConfig,
        *,
        config_path: Optional[Path] = None,
        notifier: Optional[Notifier] = None,
        event_source_factory: Callable[[], KeyboardEventSource] = create_event_source,
        platform_service: Optional[ClipboardService] = None,
        registry_builder: Callable[[AppConfig], Tuple[EngineRegistry, List[str]]] = build_engine_registry,
        time_provider: Callable[[], float] = time.monotonic,
        spawn: Optional[Callable[[Callable[[float], None], float], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._config = config
        self._config_path = config_path
        self._notifier = CompositeNotifier([LoggingNotifier()])
        if notifier is not None:
            self._notifier.add(notifier)
        self._event_source_factory = event_source_factory
        self._platform_service = platform_service
        self._registry_builder = registry_builder
        self._registry = EngineRegistry()
        self._sleep = sleep
        self._detector = GestureDetector(
            config.gesture,
            self._run_pipeline,
            spawn=spawn or self._spawn_worker,
            time_provider=time_provider,
        )
        self._detector.enabled = False
        self._hotkey_enabled = config.hotkey_enabled
        self._event_source: Optional[KeyboardEventSource] = None
        self._subscription: Optional[int] = None
        self._stop_event = threading.Event()
        self._cancel_event = threading.Event()
        self._workers: Set[threading.Thread] = set()
        self._workers_lock = threading.Lock()

    # Properties -------------------------------------------------------

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def registry(self) -> EngineRegistry:
        return self._registry

    @property
    def detector(self) -> GestureDetector:
        return self._detector

    @property
    def notifier(self) -> CompositeNotifier:
        return self._notifier

    @property
    def hook_installed(self) -> bool:
        return self._subscription is not None

    @property
    def hotkey_enabled(self) -> bool:
        return self._hotkey_enabled and self.hook_installed

    @property
    def in_flight(self) -> int:
        with self._workers_lock:
            return sum(1 for worker in self._workers if worker.is_alive())

    def add_notifier(self, notifier: Notifier) -> None:
        self._notifier.add(notifier)

    # Lifecycle --------------------------------------------------------

    def load_engines(self) -> None:
        """Build a fresh engine registry from the current config and swap it in."""

        registry, warnings = self._registry_builder(self._config)
        self._registry = registry
        for warning in warnings:
            self._notifier.on_engine_error(warning)
        if not len(registry):
            self._notifier.on_engine_error("No translation engine is configured")

    def start(self) -> None:
        logger.info("%s starting...", APP_NAME)
        self._stop_event.clear()
        self._cancel_event.clear()
        self.load_engines()
        if self._platform_service is None:
            try:
                self._platform_service = PyperclipKeyboardService()
            except ClipboardUnavailable as exc:
                logger.error("Clipboard unavailable: %s", exc)
                self._notifier.on_error(str(exc))
                self._hotkey_enabled = False
                return
        if self._hotkey_enabled:
            self._install_hook()

    def run(self, *, tray_controller: Optional["SystemTrayController"] = None) -> None:
        """Start, then block until :meth:`stop` is called."""

        self.start()
        if tray_controller is not None:
            tray_controller.start()
        taps = self._config.gesture.required_tap_count
        print(f"{APP_NAME} is running. Tap {self._config.gesture.activation_key} {taps} times to translate the current input.")
        try:
            while not self._stop_event.wait(0.5):
                pass
        except KeyboardInterrupt:  # pragma: no cover - manual console interruption
            logger.info("Ctrl+C pressed, initiating graceful shutdown...")
            self.stop()
        finally:
            if tray_controller is not None:
                tray_controller.stop()
            self.shutdown()

    def stop(self) -> None:
        """Signal the application to shut down."""

        self._detector.enabled = False
        self._stop_event.set()

    def shutdown(self, timeout: float = SHUTDOWN_TIMEOUT) -> None:
        """Remove the hook, cancel in-flight pipelines and wait for them."""

        self._detector.enabled = False
        self._uninstall_hook()
        if self._event_source is not None:
            self._event_source.close()
            self._event_source = None
        self._cancel_event.set()

        deadline = time.monotonic() + timeout
        with self._workers_lock:
            workers = list(self._workers)
        for worker in workers:
            worker.join(max(0.0, deadline - time.monotonic()))
        if self.in_flight:
            logger.warning("%d translation pipeline(s) still running at shutdown", self.in_flight)
        self._detector.reset()
        logger.info("%s stopped", APP_NAME)

    # Hotkey -----------------------------------------------------------

    def set_hotkey_enabled(self, enabled: bool) -> None:
        self._hotkey_enabled = bool(enabled)
        if enabled and not self.hook_installed:
            self._install_hook()
        self._detector.enabled = self.hotkey_enabled
        logger.info("Hotkey %s", "enabled" if self.hotkey_enabled else "disabled")

    def toggle_hotkey(self) -> bool:
        self.set_hotkey_enabled(not self.hotkey_enabled)
        return self.hotkey_enabled

    def _install_hook(self) -> None:
        try:
            if self._event_source is None:
                self._event_source = self._event_source_factory()
            self._subscription = self._event_source.subscribe(self._detector.on_key_event)
        except HookInstallFailed as exc:
            logger.error("Failed to install global hotkey: %s", exc)
            self._subscription = None
            self._hotkey_enabled = False
            self._detector.enabled = False
            self._notifier.on_hook_error(f"Failed to install global hotkey: {exc}")
            return
        self._detector.enabled = self._hotkey_enabled
        logger.info("Global hotkey installed successfully")

    def _uninstall_hook(self) -> None:
        if self._event_source is not None and self._subscription is not None:
            self._event_source.unsubscribe(self._subscription)
        self._subscription = None

    # Configuration ----------------------------------------------------

    def reload_config(self, config: AppConfig) -> None:
        """Replace the whole configuration; in-flight pipelines keep their snapshot."""

        self._config = config
        self.load_engines()
        self._detector.reconfigure(config.gesture)
        self.set_hotkey_enabled(config.hotkey_enabled)

    def reload(self) -> bool:
        """Re-read the config file this app was started with."""

        if self._config_path is None:
            self._notifier.on_warning("No configuration file to reload")
            return False
        try:
            config = load_config(self._config_path)
        except ConfigInvalid as exc:
            logger.error("Config reload failed: %s", exc)
            self._notifier.on_error(f"Config reload failed: {exc}")
            return False
        self.reload_config(config)
        logger.info("Configuration reloaded from %s", self._config_path)
        return True

    def check_engines(self) -> Dict[str, bool]:
        return {engine.name: engine.is_available() for engine in self._registry.engines}

    # Pipelines --------------------------------------------------------

    def _spawn_worker(self, callback: Callable[[float], None], timestamp: float) -> None:
        def _target() -> None:
            try:
                callback(timestamp)
            finally:
                with self._workers_lock:
                    self._workers.discard(threading.current_thread())

        worker = threading.Thread(target=_target, name="TranslationPipeline", daemon=True)
        with self._workers_lock:
            self._workers.add(worker)
        worker.start()

    def _run_pipeline(self, timestamp: float) -> Optional[PipelineResult]:
        platform = self._platform_service
        if platform is None:
            self._notifier.on_error("Clipboard service is not available")
            return None
        config = self._config
        pipeline = TranslationPipeline(
            platform,
            self._registry,
            self._notifier,
            config.target_language,
            timing=config.pipeline,
            sleep=self._sleep,
            cancel_event=self._cancel_event,
        )
        result = pipeline.run()
        logger.debug("Pipeline triggered at %.3f finished: %s %s", timestamp, result.status.value, result.detail)
        return result


_STATUS_COLORS = {
    "idle": (28, 114, 206, 255),
    "success": (46, 160, 67, 255),
    "warning": (219, 154, 4, 255),
    "error": (207, 34, 46, 255),
    "disabled": (140, 140, 140, 255),
}

# Seconds a transient status colour stays on the icon before it reverts.
_STATUS_HOLD = {"success": 2.0, "error": 3.0}


class SystemTrayController(Notifier):
    """System tray icon with hotkey toggle, config reload and exit commands.

    Also receives notifications: the icon is recoloured per outcome and a
    balloon message is shown where the backend supports it.
    """

    def __init__(
        self,
        app: SpaceTransApp,
        *,
        log_dir: Path = DEFAULT_LOG_DIR,
        timer_factory: Callable[[float, Callable[[], None]], threading.Timer] = threading.Timer,
    ) -> None:
        self._app = app
        self._log_dir = log_dir
        self._icon: Optional["pystray.Icon"] = None
        self._timer_factory = timer_factory
        self._revert_timer: Optional[threading.Timer] = None
        self._timer_lock = threading.Lock()

    @staticmethod
    def is_supported() -> bool:
        return pystray is not None and MenuItem is not None and Image is not None and ImageDraw is not None

    def start(self) -> None:
        if not self.is_supported():
            print("System tray icon is unavailable because required dependencies are missing.")
            return

        assert pystray is not None  # noqa: S101 - guarded by is_supported
        menu = pystray.Menu(
            MenuItem("Enable Hotkey", self._on_toggle_hotkey, checked=lambda item: self._app.hotkey_enabled),
            MenuItem("Reload Config", self._on_reload),
            MenuItem("Open Log Folder", self._on_open_log_folder),
            pystray.Menu.SEPARATOR,
            MenuItem("Exit", self._on_exit),
        )
        status = "idle" if self._app.hotkey_enabled else "disabled"
        self._icon = pystray.Icon("spacetrans", self.create_icon_image(status), APP_NAME, menu=menu)
        self._icon.run_detached()

    def stop(self) -> None:
        self._cancel_revert()
        if self._icon is not None:
            self._icon.stop()
            self._icon = None

    # Notifier ---------------------------------------------------------

    def on_success(self, message: str) -> None:
        self._show("success", message)

    def on_error(self, message: str) -> None:
        self._show("error", f"Error: {message}")

    def on_warning(self, message: str) -> None:
        self._show("warning", f"Warning: {message}")

    def on_engine_error(self, message: str) -> None:
        self._show("error", f"Engine Error: {message}")

    def on_hook_error(self, message: str) -> None:
        self._show("disabled", f"Hotkey Error: {message}")

    def _show(self, status: str, message: str) -> None:
        icon = self._icon
        if icon is None:
            return
        try:
            icon.icon = self.create_icon_image(status)
            if getattr(icon, "HAS_NOTIFICATION", False):
                icon.notify(message, APP_NAME)
        except Exception as exc:
            logger.debug("Tray notification failed: %s", exc)
        self._schedule_revert(status)

    def _schedule_revert(self, status: str) -> None:
        self._cancel_revert()
        hold = _STATUS_HOLD.get(status)
        if hold is None:
            return
        timer = self._timer_factory(hold, self._revert_icon)
        timer.daemon = True
        with self._timer_lock:
            self._revert_timer = timer
        timer.start()

    def _cancel_revert(self) -> None:
        with self._timer_lock:
            timer, self._revert_timer = self._revert_timer, None
        if timer is not None:
            timer.cancel()

    def _revert_icon(self) -> None:
        icon = self._icon
        if icon is None:
            return
        try:
            icon.icon = self.create_icon_image("idle" if self._app.hotkey_enabled else "disabled")
        except Exception as exc:
            logger.debug("Tray icon reset failed: %s", exc)

    # Menu handlers ----------------------------------------------------

    def _on_toggle_hotkey(self, icon: "pystray.Icon", _: object) -> None:
        enabled = self._app.toggle_hotkey()
        icon.icon = self.create_icon_image("idle" if enabled else "disabled")

    def _on_reload(self, icon: "pystray.Icon", _: object) -> None:
        if self._app.reload():
            self._show("idle", "Configuration reloaded")

    def _on_open_log_folder(self, icon: "pystray.Icon", _: object) -> None:
        try:
            self._log_dir.mkdir(parents=True, exist_ok=True)
            if sys.platform == "win32":  # pragma: no cover - platform specific
                os.startfile(self._log_dir)  # type: ignore[attr-defined]
            elif sys.platform == "darwin":  # pragma: no cover - platform specific
                subprocess.Popen(["open", str(self._log_dir)])
            else:
                subprocess.Popen(["xdg-open", str(self._log_dir)])
        except OSError as exc:
            logger.error("Failed to open log folder: %s", exc)

    def _on_exit(self, icon: "pystray.Icon", _: object) -> None:
        self._app.stop()
        icon.stop()

    @staticmethod
    def create_icon_image(status: str = "idle") -> "Image.Image":
        assert Image is not None and ImageDraw is not None  # noqa: S101 - guarded by is_supported
        size = 64
        image = Image.new("RGBA", (size, size), (0, 0, 0, 0))
        draw = ImageDraw.Draw(image)
        draw.ellipse((8, 8, size - 8, size - 8), fill=_STATUS_COLORS.get(status, _STATUS_COLORS["idle"]))
        draw.rectangle((20, 18, size - 20, 26), fill=(255, 255, 255, 255))
        draw.rectangle((size // 2 - 4, 18, size // 2 + 4, size - 16), fill=(255, 255, 255, 255))
        return image


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Translate the focused input in place after tapping space three times."
    )
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json (default: discovered).")
    parser.add_argument("--console", action="store_true", help="Report status on the console instead of a tray icon.")
    parser.add_argument("--engine", default=None, help="Translation engine to use (Youdao, Gemini, Google).")
    parser.add_argument("--target", default=None, help="Target language code, e.g. en or zh-CN.")
    parser.add_argument("--log-level", default=None, help="Logging level (default: from config).")
    parser.add_argument(
        "--check-engines",
        action="store_true",
        help="Probe every configured engine with a test translation and exit.",
    )
    return parser.parse_args(argv)


def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    changes = {}
    if args.engine:
        changes["current_engine"] = args.engine
    if args.target:
        changes["target_language"] = args.target
    if args.log_level:
        changes["log_level"] = args.log_level
    return dataclasses.replace(config, **changes) if changes else config


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    # Console mode reports outcomes through ConsoleNotifier only.
    use_tray = not (args.console or args.check_engines) and SystemTrayController.is_supported()
    configure_logging("INFO", console=use_tray)

    try:
        config, config_path = load_or_create_config(args.config)
    except ConfigInvalid as exc:
        logger.error("Invalid configuration, using defaults: %s", exc)
        print(f"Invalid configuration, using defaults: {exc}", file=sys.stderr)
        config, config_path = AppConfig(), args.config
    try:
        config = apply_overrides(config, args)
    except ConfigInvalid as exc:
        print(f"Invalid option: {exc}", file=sys.stderr)
        return 2
    configure_logging(config.log_level, console=use_tray)

    if args.check_engines:
        app = SpaceTransApp(config, notifier=ConsoleNotifier())
        app.load_engines()
        for name, available in app.check_engines().items():
            marker = "*" if name == app.registry.current_name else " "
            print(f"{marker} {name}: {'available' if available else 'unavailable'}")
        return 0

    try:
        with SingleInstanceGuard("spacetrans"):
            app = SpaceTransApp(
                config,
                config_path=config_path,
                notifier=None if use_tray else ConsoleNotifier(),
            )
            tray_controller = None
            if use_tray:
                tray_controller = SystemTrayController(app)
                app.add_notifier(tray_controller)
            app.run(tray_controller=tray_controller)
    except SingleInstanceError as exc:
        print(str(exc), file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
