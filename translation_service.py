"""Translation engines and the registry that dispatches to the active one."""

from __future__ import annotations

import hashlib
import http.client
import json
import logging
import time
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app_config import AppConfig, DEFAULT_REQUEST_TIMEOUT


logger = logging.getLogger(__name__)


class TranslationFailed(RuntimeError):
    """Raised when a backend cannot complete a translation request."""


class EngineNotFound(LookupError):
    """Raised when selecting an engine name that is not registered."""


class NoEngineAvailable(RuntimeError):
    """Raised when translating while no engine is selected."""


LANGUAGE_NAMES = {
    "zh": "Chinese",
    "zh-CN": "Chinese",
    "en": "English",
    "ja": "Japanese",
    "ko": "Korean",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "it": "Italian",
    "pt": "Portuguese",
    "ru": "Russian",
}


def language_name(code: str) -> str:
    return LANGUAGE_NAMES.get(code, code)


class TranslationEngine:
    """Base class for translation backends.

    Subclasses implement :meth:`_request`, which raises
    :class:`TranslationFailed` on any transport or response problem.
    :meth:`translate` never raises for those: it logs and hands the original
    text back so a caller only sees an unchanged result.
    """

    name = "engine"
    description = ""

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> None:
        self.timeout = timeout

    def translate(self, text: str, src: str, dest: str) -> str:
        try:
            return self._request(text, src, dest)
        except TranslationFailed as exc:
            logger.error("%s translation error: %s", self.name, exc)
            return text

    def is_available(self) -> bool:
        """Probe the backend with a trivial translation."""

        try:
            result = self._request("test", "auto", "en")
        except Exception as exc:
            logger.info("%s is not available: %s", self.name, exc)
            return False
        return bool(result)

    def _request(self, text: str, src: str, dest: str) -> str:  # pragma: no cover - interface definition
        raise NotImplementedError

    def _open(self, request: urllib.request.Request) -> Any:
        """Send ``request`` and decode its JSON body."""

        try:
            with urllib.request.urlopen(request, timeout=self.timeout) as response:
                payload = response.read()
        except OSError as exc:
            reason = exc.reason if isinstance(exc, urllib.error.URLError) else exc
            if isinstance(reason, TimeoutError):
                raise TranslationFailed(f"Request to {self.name} timed out") from exc
            raise TranslationFailed(f"Network error while contacting {self.name}: {exc}") from exc
        except (http.client.HTTPException, ValueError) as exc:
            raise TranslationFailed(f"Bad response from {self.name}: {exc!r}") from exc

        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise TranslationFailed(f"Invalid response from {self.name}") from exc


def truncate_for_signature(text: str) -> str:
    """Input form used by the Youdao v3 signature."""

    if len(text) <= 20:
        return text
    return f"{text[:10]}{len(text)}{text[-10:]}"


class YoudaoEngine(TranslationEngine):
    """Youdao open API, signed with SHA-256 (signType v3)."""

    name = "Youdao"
    description = "Youdao Translation API"
    endpoint = "https://openapi.youdao.com/api"

    def __init__(
        self,
        app_key: str,
        app_secret: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        *,
        clock=time.time,
    ) -> None:
        super().__init__(timeout)
        self._app_key = app_key
        self._app_secret = app_secret
        self._clock = clock

    def sign(self, text: str, salt: str, curtime: str) -> str:
        raw = f"{self._app_key}{truncate_for_signature(text)}{salt}{curtime}{self._app_secret}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()

    def build_form(self, text: str, src: str, dest: str) -> Dict[str, str]:
        salt = str(int(self._clock()))
        curtime = salt
        return {
            "q": text,
            "from": src,
            "to": dest,
            "appKey": self._app_key,
            "salt": salt,
            "sign": self.sign(text, salt, curtime),
            "signType": "v3",
            "curtime": curtime,
        }

    def _request(self, text: str, src: str, dest: str) -> str:
        body = urllib.parse.urlencode(self.build_form(text, src, dest)).encode("utf-8")
        request = urllib.request.Request(
            self.endpoint,
            data=body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            method="POST",
        )
        data = self._open(request)
        translation = data.get("translation") if isinstance(data, dict) else None
        if isinstance(translation, list) and translation and isinstance(translation[0], str):
            return translation[0]
        if isinstance(data, dict) and data.get("errorCode") not in (None, "0"):
            logger.warning("Youdao returned errorCode=%s", data.get("errorCode"))
        return text


class GeminiEngine(TranslationEngine):
    """Google Gemini generateContent endpoint driven by a translation prompt."""

    name = "Gemini"
    description = "Google Gemini AI Translation"
    endpoint = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

    def __init__(
        self,
        api_key: str,
        timeout: float = DEFAULT_REQUEST_TIMEOUT,
        *,
        model: str = "gemini-2.0-flash-lite",
    ) -> None:
        super().__init__(timeout)
        self._api_key = api_key
        self.model = model

    @staticmethod
    def build_prompt(text: str, src: str, dest: str) -> str:
        source = "auto-detect" if src == "auto" else language_name(src)
        return (
            f"Translate the following text from {source} to {language_name(dest)}. "
            f"Return only the translation, no explanations or additional text:\n\n{text}"
        )

    @staticmethod
    def extract_text(data: Any) -> Optional[str]:
        try:
            value = data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError):
            return None
        return value.strip() if isinstance(value, str) else None

    def _request(self, text: str, src: str, dest: str) -> str:
        body = {"contents": [{"parts": [{"text": self.build_prompt(text, src, dest)}]}]}
        url = f"{self.endpoint.format(model=self.model)}?{urllib.parse.urlencode({'key': self._api_key})}"
        request = urllib.request.Request(
            url,
            data=json.dumps(body).encode("utf-8"),
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        data = self._open(request)
        logger.debug("Gemini response: %s", data)
        translated = self.extract_text(data)
        return translated if translated is not None else text


class GoogleTranslateEngine(TranslationEngine):
    """Minimal client for the unofficial Google Translate web API."""

    name = "Google"
    description = "Google Translate (keyless web endpoint)"
    endpoint = "https://translate.googleapis.com/translate_a/single"

    def _request(self, text: str, src: str, dest: str) -> str:
        if not text:
            raise TranslationFailed("Cannot translate empty text")

        params = {
            "client": "gtx",
            "dt": "t",
            "sl": (src or "auto"),
            "tl": dest,
            "q": text,
        }
        url = f"{self.endpoint}?{urllib.parse.urlencode(params)}"
        request = urllib.request.Request(url, headers={"User-Agent": "Mozilla/5.0"})
        data = self._open(request)

        try:
            segments = data[0]
            translated = "".join(part[0] for part in segments if part and part[0])
        except (IndexError, KeyError, TypeError) as exc:
            raise TranslationFailed("Unexpected translation response structure") from exc
        return translated or text


class EngineRegistry:
    """Registered engines plus the name of the one used for translation."""

    def __init__(self) -> None:
        self._engines: Dict[str, TranslationEngine] = {}
        self._current: Optional[str] = None

    def register_engine(self, engine: TranslationEngine) -> None:
        self._engines[engine.name] = engine
        if self._current is None:
            self._current = engine.name

    def set_current(self, name: str) -> None:
        if name not in self._engines:
            raise EngineNotFound(f"Engine '{name}' not found")
        self._current = name

    @property
    def current_name(self) -> Optional[str]:
        return self._current

    @property
    def current_engine(self) -> TranslationEngine:
        if self._current is None:
            raise NoEngineAvailable("No translation engine available")
        return self._engines[self._current]

    @property
    def engines(self) -> List[TranslationEngine]:
        return list(self._engines.values())

    def names(self) -> List[str]:
        return list(self._engines)

    def __len__(self) -> int:
        return len(self._engines)

    def translate(self, text: str, src: str, dest: str) -> str:
        return self.current_engine.translate(text, src, dest)


def _has(credentials: Mapping[str, str], *keys: str) -> bool:
    return all(credentials.get(key) for key in keys)


def build_engine_registry(config: AppConfig) -> Tuple[EngineRegistry, List[str]]:
    """Create a fresh registry from ``config``.

    Returns the registry and warnings to surface to the user. The registry is
    never mutated after it is handed out; reloads build a new one.
    """

    registry = EngineRegistry()
    warnings: List[str] = []
    timeout = config.request_timeout

    youdao = config.credentials("Youdao")
    if youdao is not None and _has(youdao, "app_key", "app_secret"):
        registry.register_engine(YoudaoEngine(youdao["app_key"], youdao["app_secret"], timeout))
        logger.info("Engine Youdao registered")

    gemini = config.credentials("Gemini")
    if gemini is not None and _has(gemini, "api_key"):
        registry.register_engine(
            GeminiEngine(gemini["api_key"], timeout, model=gemini.get("model") or "gemini-2.0-flash-lite")
        )
        logger.info("Engine Gemini registered")

    if config.credentials("Google") is not None:
        registry.register_engine(GoogleTranslateEngine(timeout))
        logger.info("Engine Google registered")

    try:
        registry.set_current(config.current_engine)
        logger.info("Engine %s set as current", config.current_engine)
    except EngineNotFound:
        fallback = registry.current_name
        if fallback is None:
            warnings.append(f"Engine '{config.current_engine}' not available and no other engine is configured.")
        else:
            warnings.append(f"Engine '{config.current_engine}' not available, using {fallback}.")
        logger.warning(warnings[-1])

    return registry, warnings
