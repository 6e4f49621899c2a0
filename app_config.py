"""Configuration snapshots and the JSON file they are loaded from."""

from __future__ import annotations

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple


CONFIG_FILE_NAME = "config.json"

DEFAULT_ENGINE = "Youdao"
DEFAULT_TARGET_LANGUAGE = "en"
DEFAULT_REQUEST_TIMEOUT = 10.0

DEFAULT_ENGINE_CREDENTIALS: Dict[str, Dict[str, str]] = {
    "Youdao": {"app_key": "", "app_secret": ""},
    "Gemini": {"api_key": ""},
    "Google": {},
}

logger = logging.getLogger(__name__)


class ConfigInvalid(ValueError):
    """Raised when a configuration file or value cannot be used."""


@dataclass(frozen=True)
class GestureConfig:
    """Timing window for the activation gesture. Intervals are milliseconds."""

    activation_key: str = "space"
    min_interval_ms: int = 100
    max_interval_ms: int = 800
    required_tap_count: int = 3
    cooldown_ms: int = 2000

    def __post_init__(self) -> None:
        if not isinstance(self.activation_key, str) or not self.activation_key.strip():
            raise ConfigInvalid("activation_key must be a non-empty key name")
        if not 0 < self.min_interval_ms < self.max_interval_ms:
            raise ConfigInvalid(
                f"Expected 0 < min_interval_ms < max_interval_ms, got "
                f"{self.min_interval_ms} and {self.max_interval_ms}"
            )
        if self.required_tap_count < 2:
            raise ConfigInvalid(f"required_tap_count must be >= 2, got {self.required_tap_count}")
        if self.cooldown_ms < 0:
            raise ConfigInvalid(f"cooldown_ms must be >= 0, got {self.cooldown_ms}")


@dataclass(frozen=True)
class PipelineTiming:
    """Delays and retry settings used by a translation pipeline run."""

    settle_delay_ms: int = 30
    clipboard_delay_ms: int = 50
    retry_attempts: int = 3
    retry_backoff_ms: int = 50

    def __post_init__(self) -> None:
        if self.retry_attempts < 1:
            raise ConfigInvalid(f"retry_attempts must be >= 1, got {self.retry_attempts}")
        for name in ("settle_delay_ms", "clipboard_delay_ms", "retry_backoff_ms"):
            if getattr(self, name) < 0:
                raise ConfigInvalid(f"{name} must be >= 0")

    @property
    def settle_delay(self) -> float:
        return self.settle_delay_ms / 1000.0

    @property
    def clipboard_delay(self) -> float:
        return self.clipboard_delay_ms / 1000.0


@dataclass(frozen=True)
class AppConfig:
    """Complete application configuration. Replaced as a whole on reload."""

    current_engine: str = DEFAULT_ENGINE
    target_language: str = DEFAULT_TARGET_LANGUAGE
    engines: Mapping[str, Mapping[str, str]] = field(
        default_factory=lambda: _freeze_engines(DEFAULT_ENGINE_CREDENTIALS)
    )
    gesture: GestureConfig = field(default_factory=GestureConfig)
    pipeline: PipelineTiming = field(default_factory=PipelineTiming)
    hotkey_enabled: bool = True
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if not self.target_language:
            raise ConfigInvalid("target_language must not be empty")
        if self.request_timeout <= 0:
            raise ConfigInvalid(f"request_timeout must be positive, got {self.request_timeout}")
        if logging.getLevelName(self.log_level.upper()) == f"Level {self.log_level.upper()}":
            raise ConfigInvalid(f"Unknown log level: {self.log_level!r}")
        object.__setattr__(self, "engines", _freeze_engines(self.engines))

    def credentials(self, engine_name: str) -> Optional[Mapping[str, str]]:
        return self.engines.get(engine_name)


def _freeze_engines(engines: Mapping[str, Mapping[str, str]]) -> Mapping[str, Mapping[str, str]]:
    return MappingProxyType(
        {str(name): MappingProxyType(dict(values)) for name, values in engines.items()}
    )


def _require(section: Mapping[str, Any], key: str, expected: type, default: Any) -> Any:
    value = section.get(key, default)
    if expected is float and isinstance(value, int) and not isinstance(value, bool):
        value = float(value)
    if expected is int and isinstance(value, bool):
        raise ConfigInvalid(f"{key} must be an integer")
    if not isinstance(value, expected):
        raise ConfigInvalid(f"{key} must be of type {expected.__name__}, got {type(value).__name__}")
    return value


def _section(data: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigInvalid(f"{key} must be an object")
    return value


def config_from_dict(data: Mapping[str, Any]) -> AppConfig:
    """Build an :class:`AppConfig` from parsed JSON, filling in defaults."""

    if not isinstance(data, dict):
        raise ConfigInvalid("Configuration root must be an object")

    defaults = AppConfig()
    gesture_data = _section(data, "gesture")
    pipeline_data = _section(data, "pipeline")
    gesture = GestureConfig(
        activation_key=_require(gesture_data, "activation_key", str, defaults.gesture.activation_key),
        min_interval_ms=_require(gesture_data, "min_interval_ms", int, defaults.gesture.min_interval_ms),
        max_interval_ms=_require(gesture_data, "max_interval_ms", int, defaults.gesture.max_interval_ms),
        required_tap_count=_require(
            gesture_data, "required_tap_count", int, defaults.gesture.required_tap_count
        ),
        cooldown_ms=_require(gesture_data, "cooldown_ms", int, defaults.gesture.cooldown_ms),
    )
    timing = PipelineTiming(
        settle_delay_ms=_require(pipeline_data, "settle_delay_ms", int, defaults.pipeline.settle_delay_ms),
        clipboard_delay_ms=_require(
            pipeline_data, "clipboard_delay_ms", int, defaults.pipeline.clipboard_delay_ms
        ),
        retry_attempts=_require(pipeline_data, "retry_attempts", int, defaults.pipeline.retry_attempts),
        retry_backoff_ms=_require(
            pipeline_data, "retry_backoff_ms", int, defaults.pipeline.retry_backoff_ms
        ),
    )

    engines_data = data.get("engines", DEFAULT_ENGINE_CREDENTIALS)
    if not isinstance(engines_data, dict):
        raise ConfigInvalid("engines must be an object")
    engines: Dict[str, Dict[str, str]] = {}
    for name, credentials in engines_data.items():
        if not isinstance(credentials, dict):
            raise ConfigInvalid(f"Credentials for engine {name!r} must be an object")
        if not all(isinstance(value, str) for value in credentials.values()):
            raise ConfigInvalid(f"Credentials for engine {name!r} must be strings")
        engines[name] = dict(credentials)

    return AppConfig(
        current_engine=_require(data, "current_engine", str, defaults.current_engine),
        target_language=_require(data, "target_language", str, defaults.target_language),
        engines=engines,
        gesture=gesture,
        pipeline=timing,
        hotkey_enabled=_require(data, "hotkey_enabled", bool, defaults.hotkey_enabled),
        request_timeout=_require(data, "request_timeout", float, defaults.request_timeout),
        log_level=_require(data, "log_level", str, defaults.log_level),
    )


def config_to_dict(config: AppConfig) -> Dict[str, Any]:
    gesture = config.gesture
    timing = config.pipeline
    return {
        "current_engine": config.current_engine,
        "target_language": config.target_language,
        "hotkey_enabled": config.hotkey_enabled,
        "request_timeout": config.request_timeout,
        "log_level": config.log_level,
        "engines": {name: dict(values) for name, values in config.engines.items()},
        "gesture": {
            "activation_key": gesture.activation_key,
            "min_interval_ms": gesture.min_interval_ms,
            "max_interval_ms": gesture.max_interval_ms,
            "required_tap_count": gesture.required_tap_count,
            "cooldown_ms": gesture.cooldown_ms,
        },
        "pipeline": {
            "settle_delay_ms": timing.settle_delay_ms,
            "clipboard_delay_ms": timing.clipboard_delay_ms,
            "retry_attempts": timing.retry_attempts,
            "retry_backoff_ms": timing.retry_backoff_ms,
        },
    }


def application_dir() -> Path:
    """Return the directory holding the running script or frozen executable."""

    if getattr(sys, "frozen", False):  # pragma: no cover - PyInstaller builds only
        return Path(sys.executable).resolve().parent
    return Path(__file__).resolve().parent


def config_search_paths(start: Optional[Path] = None) -> List[Path]:
    """Working directory first, then the application directory and its parents."""

    paths: List[Path] = [Path.cwd().resolve()]
    app_dir = (start or application_dir()).resolve()
    for candidate in (app_dir, *app_dir.parents):
        if candidate not in paths:
            paths.append(candidate)
    return paths


def find_config_file(start: Optional[Path] = None) -> Optional[Path]:
    for directory in config_search_paths(start):
        candidate = directory / CONFIG_FILE_NAME
        if candidate.is_file():
            return candidate
    return None


def load_config(path: Path) -> AppConfig:
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigInvalid(f"Failed to read configuration from {path}: {exc}") from exc
    return config_from_dict(data)


def save_config(config: AppConfig, path: Path) -> None:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config_to_dict(config), indent=2, ensure_ascii=False), encoding="utf-8")


def load_or_create_config(path: Optional[Path] = None) -> Tuple[AppConfig, Path]:
    """Load ``path`` or the discovered config file, writing defaults if none exists.

    Raises :class:`ConfigInvalid` when an existing file cannot be parsed.
    """

    if path is None:
        path = find_config_file()
    if path is not None and Path(path).exists():
        config = load_config(Path(path))
        logger.info("Loaded config from: %s", path)
        return config, Path(path)

    target = Path(path) if path is not None else application_dir() / CONFIG_FILE_NAME
    config = AppConfig()
    logger.info("No existing config file found, writing defaults to %s", target)
    try:
        save_config(config, target)
    except OSError as exc:
        logger.warning("Could not write default config to %s: %s", target, exc)
    return config, target
