"""Raw and filtered transcript buffers."""

from __future__ import annotations

import re
import threading
from typing import Callable, Optional

from models import TranscriptionResult, TranscriptSnapshot

ChangeCallback = Callable[[TranscriptSnapshot], None]

_TAG_VOCABULARY = re.compile(r"\[(?:music|sound|noise)\]", re.IGNORECASE)
_STAGE_DIRECTIONS = re.compile(r"\(\s*clicking\s*\)|\(\s*music playing\s*\)", re.IGNORECASE)
_ANY_BRACKETED = re.compile(r"\[.*?\]|\(.*?\)")
_WHITESPACE = re.compile(r"\s+")


def filter_non_speech(text: str) -> str:
    """Strip non-speech annotations such as ``[MUSIC]`` or ``(clicking)``."""
    cleaned = _TAG_VOCABULARY.sub("", text)
    cleaned = _STAGE_DIRECTIONS.sub("", cleaned)
    cleaned = _ANY_BRACKETED.sub("", cleaned)
    return _WHITESPACE.sub(" ", cleaned).strip()


class TranscriptState:
    def __init__(self, filter_mode: bool = True, on_change: Optional[ChangeCallback] = None) -> None:
        self._lock = threading.Lock()
        self._raw: list[str] = []
        self._filtered: list[str] = []
        self._filter_mode = filter_mode
        self._on_change = on_change

    @property
    def raw_text(self) -> str:
        with self._lock:
            return "".join(self._raw)

    @property
    def filtered_text(self) -> str:
        with self._lock:
            return "".join(self._filtered)

    @property
    def filter_mode(self) -> bool:
        return self._filter_mode

    def snapshot(self) -> TranscriptSnapshot:
        with self._lock:
            return self._snapshot_locked()

    def merge(self, result: Optional[TranscriptionResult]) -> bool:
        """Append one recognition result to both buffers.

        Returns False (and leaves state untouched) when there is nothing to add.
        """
        if result is None or not result.text:
            return False
        text = result.text.strip()
        if not text:
            return False
        filtered = filter_non_speech(text)
        with self._lock:
            self._raw.append(text + " ")
            if filtered:
                self._filtered.append(filtered + " ")
            snapshot = self._snapshot_locked()
        self._notify(snapshot)
        return True

    def clear(self) -> None:
        with self._lock:
            self._raw = []
            self._filtered = []
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def set_filter_mode(self, enabled: bool) -> None:
        with self._lock:
            self._filter_mode = bool(enabled)
            snapshot = self._snapshot_locked()
        self._notify(snapshot)

    def _snapshot_locked(self) -> TranscriptSnapshot:
        return TranscriptSnapshot(
            raw_text="".join(self._raw),
            filtered_text="".join(self._filtered),
            filter_mode=self._filter_mode,
        )

    def _notify(self, snapshot: TranscriptSnapshot) -> None:
        if self._on_change:
            self._on_change(snapshot)
