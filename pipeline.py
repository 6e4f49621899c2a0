"""Capture the focused text, translate it and paste the result back."""

from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional

from app_config import PipelineTiming
from notifications import Notifier
from platform_service import ClipboardService, KeyChord
from retry import RetryPolicy, call_with_retry
from translation_service import EngineNotFound, EngineRegistry, NoEngineAvailable


logger = logging.getLogger(__name__)


class PipelineStatus(enum.Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    status: PipelineStatus
    detail: str = ""


@dataclass(frozen=True)
class TranslationRequest:
    source_text: str
    target_lang: str
    source_lang: str = "auto"


def _is_cjk(char: str) -> bool:
    return "\u4e00" <= char <= "\u9fff"


def is_valid_text_for_translation(text: Optional[str]) -> bool:
    """Reject whitespace, punctuation and single characters."""

    if not text:
        return False
    trimmed = text.strip()
    if len(trimmed) < 2:
        return False
    return any(char.isalpha() or char.isdigit() or _is_cjk(char) for char in trimmed)


def _preview(text: str, limit: int = 50) -> str:
    return text if len(text) <= limit else f"{text[:limit]}..."


class _Stop(Exception):
    def __init__(self, result: PipelineResult) -> None:
        super().__init__(result.detail)
        self.result = result


class TranslationPipeline:
    """One select→copy→read→translate→write→paste run.

    Instances are not shared between triggers and nothing serialises two
    runs, so overlapping pipelines can interleave their clipboard writes.
    """

    def __init__(
        self,
        platform: ClipboardService,
        registry: EngineRegistry,
        notifier: Notifier,
        target_language: str,
        *,
        timing: PipelineTiming = PipelineTiming(),
        sleep: Callable[[float], None] = time.sleep,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self._platform = platform
        self._registry = registry
        self._notifier = notifier
        self._target_language = target_language
        self._timing = timing
        self._policy = RetryPolicy.from_timing(timing)
        self._sleep = sleep
        self._cancel_event = cancel_event

    def run(self) -> PipelineResult:
        try:
            result = self._run_steps()
        except _Stop as stop:
            result = stop.result
        except Exception as exc:
            logger.exception("Translation pipeline crashed")
            result = PipelineResult(PipelineStatus.FAILED, f"Translation failed: {exc}")
            try:
                self._notifier.on_error(result.detail)
            except Exception:
                logger.exception("Notifier failed while reporting a pipeline crash")
        return result

    def _run_steps(self) -> PipelineResult:
        self._check_cancelled()
        self._send_chord(KeyChord.SELECT_ALL)
        self._sleep(self._timing.settle_delay)
        self._send_chord(KeyChord.COPY)
        self._sleep(self._timing.settle_delay)
        self._sleep(self._timing.clipboard_delay)

        self._check_cancelled()
        text = self._read_clipboard()
        if not is_valid_text_for_translation(text):
            logger.debug("Content not suitable for translation: %r", _preview(text))
            self._skip("Selected text is not suitable for translation")

        request = TranslationRequest(source_text=text.strip(), target_lang=self._target_language)
        self._check_cancelled()
        translated = self._translate(request)

        self._check_cancelled()
        outcome = call_with_retry(
            lambda: self._platform.write_text(translated),
            self._policy,
            sleep=self._sleep,
            description="Clipboard write",
        )
        if not outcome.succeeded:
            self._fail("Clipboard unavailable, could not write translation")
        self._send_chord(KeyChord.PASTE)

        message = f"Translated to {request.target_lang}"
        logger.info("Translation success: %r -> %r", _preview(request.source_text), _preview(translated))
        self._notifier.on_success(message)
        return PipelineResult(PipelineStatus.SUCCESS, message)

    def _send_chord(self, chord: KeyChord) -> None:
        outcome = call_with_retry(
            lambda: self._platform.send_key_chord(chord),
            self._policy,
            sleep=self._sleep,
            description=f"Key chord {chord.value}",
        )
        if not outcome.succeeded:
            self._fail(f"Key injection failed ({chord.value})")

    def _read_clipboard(self) -> str:
        outcome = call_with_retry(
            self._platform.read_text,
            self._policy,
            accept=lambda value: bool(value and value[1] and value[0]),
            sleep=self._sleep,
            description="Clipboard read",
        )
        if not outcome.succeeded or outcome.value is None:
            self._skip("No content selected for translation")
        return outcome.value[0]

    def _translate(self, request: TranslationRequest) -> str:
        try:
            engine = self._registry.current_engine
            logger.info("Translating %r with %s", _preview(request.source_text), engine.name)
            translated = self._registry.translate(request.source_text, request.source_lang, request.target_lang)
        except (NoEngineAvailable, EngineNotFound) as exc:
            logger.error("Engine error: %s", exc)
            self._notifier.on_engine_error(str(exc))
            raise _Stop(PipelineResult(PipelineStatus.FAILED, str(exc)))
        except Exception as exc:
            logger.exception("Engine raised during translation")
            self._fail(f"Translation failed: {exc}")
        if not translated:
            self._fail("Translation failed: engine returned an empty result")
        return translated

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            self._skip("Translation cancelled")

    def _skip(self, detail: str) -> None:
        logger.debug(detail)
        self._notifier.on_warning(detail)
        raise _Stop(PipelineResult(PipelineStatus.SKIPPED, detail))

    def _fail(self, detail: str) -> None:
        logger.error(detail)
        self._notifier.on_error(detail)
        raise _Stop(PipelineResult(PipelineStatus.FAILED, detail))
