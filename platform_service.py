"""Clipboard access and synthetic key chords for the focused application."""

from __future__ import annotations

import enum
import logging
import sys
from typing import Dict, Tuple

try:  # pragma: no cover - executed during module import
    import pyperclip  # type: ignore
except ImportError:  # pragma: no cover - handled in PyperclipKeyboardService
    pyperclip = None  # type: ignore

try:
    import keyboard  # type: ignore
except Exception:  # pragma: no cover - keyboard refuses to load on some platforms
    keyboard = None  # type: ignore


logger = logging.getLogger(__name__)


class ClipboardUnavailable(RuntimeError):
    """Raised when no clipboard backend can be used."""


class KeyChord(enum.Enum):
    SELECT_ALL = "select-all"
    COPY = "copy"
    PASTE = "paste"


_CHORD_KEYS = {KeyChord.SELECT_ALL: "a", KeyChord.COPY: "c", KeyChord.PASTE: "v"}


def chord_hotkey(chord: KeyChord, platform: str = sys.platform) -> str:
    """Return the ``keyboard``-style combination for ``chord`` on ``platform``."""

    modifier = "command" if platform == "darwin" else "ctrl"
    return f"{modifier}+{_CHORD_KEYS[chord]}"


class ClipboardService:
    """Protocol-like base class for clipboard and key injection backends."""

    def read_text(self) -> Tuple[str, bool]:  # pragma: no cover - interface definition
        raise NotImplementedError

    def write_text(self, text: str) -> bool:  # pragma: no cover - interface definition
        raise NotImplementedError

    def send_key_chord(self, chord: KeyChord) -> bool:  # pragma: no cover - interface definition
        raise NotImplementedError


class PyperclipKeyboardService(ClipboardService):
    """Clipboard through pyperclip, key chords through the keyboard package."""

    def __init__(self, clipboard_module=pyperclip, keyboard_module=keyboard, *, platform: str = sys.platform) -> None:
        if clipboard_module is None:
            raise ClipboardUnavailable(
                "The 'pyperclip' package is required. Install it with 'pip install pyperclip'."
            )
        self._clipboard = clipboard_module
        self._keyboard = keyboard_module
        self._hotkeys: Dict[KeyChord, str] = {chord: chord_hotkey(chord, platform) for chord in KeyChord}

    def read_text(self) -> Tuple[str, bool]:
        try:
            text = self._clipboard.paste()
        except Exception as exc:
            logger.debug("Failed to read clipboard: %s", exc)
            return "", False
        return (text or ""), True

    def write_text(self, text: str) -> bool:
        try:
            self._clipboard.copy(text)
        except Exception as exc:
            logger.debug("Failed to write clipboard: %s", exc)
            return False
        return True

    def send_key_chord(self, chord: KeyChord) -> bool:
        if self._keyboard is None:
            logger.error("Cannot send %s: the 'keyboard' package is not available", chord.value)
            return False
        combo = self._hotkeys[chord]
        try:
            self._keyboard.send(combo)
        except Exception as exc:
            logger.debug("Failed to send %s (%s): %s", chord.value, combo, exc)
            return False
        return True
