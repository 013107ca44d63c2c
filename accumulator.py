"""Interval-based chunking of the live frame stream."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

import numpy as np

from models import AudioChunk, AudioFrame

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class ChunkAccumulator:
    """Collects frames and flushes them as one chunk every ``interval_s``.

    A flush also happens early once ``max_chunk_s`` worth of samples (at the
    frames' own rate) has piled up, so a stalled consumer cannot make the
    buffer grow without bound. Frames are copied on arrival because capture
    callbacks reuse their buffers.
    """

    def __init__(
        self,
        interval_s: float = 3.0,
        max_chunk_s: float = 10.0,
        clock: Clock = time.monotonic,
    ) -> None:
        if interval_s <= 0:
            raise ValueError("interval_s must be positive")
        self.interval_s = interval_s
        self.max_chunk_s = max_chunk_s
        self._clock = clock
        self._lock = threading.Lock()
        self._frames: list[np.ndarray] = []
        self._sample_count = 0
        self._sample_rate = 0
        self._last_flush = clock()
        self._generation = 0
        self._sequence = 0

    @property
    def buffered_samples(self) -> int:
        return self._sample_count

    def reset(self, generation: Optional[int] = None) -> None:
        """Drop buffered audio and restart the flush timer."""
        with self._lock:
            self._frames = []
            self._sample_count = 0
            self._last_flush = self._clock()
            if generation is not None:
                self._generation = generation

    def push(self, frame: AudioFrame) -> Optional[AudioChunk]:
        with self._lock:
            if len(frame) == 0:
                return None
            if self._frames and frame.sample_rate != self._sample_rate:
                # Rate changed mid-buffer; close out what we have first.
                logger.debug("sample rate changed %s -> %s", self._sample_rate, frame.sample_rate)
                pending = self._flush_locked()
                self._append_locked(frame)
                return pending
            self._append_locked(frame)

            elapsed = self._clock() - self._last_flush
            cap = int(self.max_chunk_s * self._sample_rate)
            if elapsed >= self.interval_s:
                return self._flush_locked()
            if cap > 0 and self._sample_count >= cap:
                logger.debug("sample cap reached (%d), forcing early flush", self._sample_count)
                return self._flush_locked()
            return None

    def flush(self) -> Optional[AudioChunk]:
        with self._lock:
            return self._flush_locked()

    def _append_locked(self, frame: AudioFrame) -> None:
        self._frames.append(np.array(frame.samples, dtype=np.float32, copy=True).reshape(-1))
        self._sample_count += len(frame)
        self._sample_rate = frame.sample_rate

    def _flush_locked(self) -> Optional[AudioChunk]:
        self._last_flush = self._clock()
        if not self._frames:
            return None
        samples = np.concatenate(self._frames)
        self._frames = []
        self._sample_count = 0
        self._sequence += 1
        chunk = AudioChunk(
            samples=samples,
            sample_rate=self._sample_rate,
            generation=self._generation,
            sequence=self._sequence,
        )
        logger.debug("flushed chunk #%d: %.2fs @ %d Hz", chunk.sequence, chunk.duration_s, chunk.sample_rate)
        return chunk
