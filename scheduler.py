"""Single-flight transcription scheduling with a bounded FIFO backlog."""

from __future__ import annotations

import logging
import threading
from collections import deque
from queue import Queue
from typing import Callable, Optional

from audio_dsp import SILENCE_RMS_THRESHOLD, is_silent, resample
from errors import TranscriberError, TranscriptionError, classify_backend_failure
from interfaces import RecognizerHandle
from models import AudioChunk, OverflowPolicy, RecognitionOptions, SubmitOutcome, TranscriptionResult

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AudioChunk, TranscriptionResult], None]
ChunkErrorCallback = Callable[[AudioChunk, TranscriberError], None]
StatusCallback = Callable[[str], None]

# ~10 s at 48 kHz
MAX_CHUNK_SAMPLES = 480000


class TranscriptionScheduler:
    """Feeds chunks to the recognizer one at a time.

    ``submit`` never blocks on recognition: it either hands the chunk to the
    worker thread, parks it in the backlog, or drops it according to the
    overflow policy. When a recognition finishes (successfully or not) the
    worker pulls the next backlog entry, so results come back in submission
    order.
    """

    def __init__(
        self,
        on_result: ResultCallback,
        on_error: Optional[ChunkErrorCallback] = None,
        on_status: Optional[StatusCallback] = None,
        queue_capacity: int = 5,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_NEWEST,
        options: Optional[RecognitionOptions] = None,
        silence_threshold: float = SILENCE_RMS_THRESHOLD,
        max_chunk_samples: int = MAX_CHUNK_SAMPLES,
    ) -> None:
        if queue_capacity < 0:
            raise ValueError("queue_capacity must be >= 0")
        self._on_result = on_result
        self._on_error = on_error
        self._on_status = on_status
        self.queue_capacity = queue_capacity
        self.overflow_policy = OverflowPolicy(overflow_policy)
        self.options = options or RecognitionOptions()
        self.silence_threshold = silence_threshold
        self.max_chunk_samples = max_chunk_samples

        self._lock = threading.Lock()
        self._pending: deque[AudioChunk] = deque()
        self._in_flight = False
        self._running = False
        self._handoff: Queue[AudioChunk | None] = Queue()
        self._thread: Optional[threading.Thread] = None
        self._recognizer: Optional[RecognizerHandle] = None

        self.dropped_chunks = 0
        self.skipped_silent = 0
        self.failed_chunks = 0

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    @property
    def pending_count(self) -> int:
        with self._lock:
            return len(self._pending)

    def set_recognizer(self, handle: Optional[RecognizerHandle]) -> None:
        """Swap the handle used for chunks dispatched from now on."""
        with self._lock:
            self._recognizer = handle

    def start(self) -> None:
        with self._lock:
            if self._running:
                return
            self._running = True
            self._handoff = Queue()
            self._thread = threading.Thread(
                target=self._worker,
                args=(self._handoff,),
                name="transcription-worker",
                daemon=True,
            )
            self._thread.start()

    def stop(self, timeout: float = 0.5) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._pending.clear()
            handoff = self._handoff
            thread = self._thread
            self._thread = None
        handoff.put(None)
        if thread is not None and thread.is_alive():
            thread.join(timeout=timeout)

    def clear_pending(self) -> int:
        with self._lock:
            count = len(self._pending)
            self._pending.clear()
        if count:
            logger.info("cleared %d queued chunk(s)", count)
        return count

    def submit(self, chunk: AudioChunk) -> SubmitOutcome:
        with self._lock:
            if not self._running:
                raise RuntimeError("scheduler is not running")
            if not self._in_flight:
                self._in_flight = True
                self._handoff.put(chunk)
                return SubmitOutcome.STARTED
            if len(self._pending) < self.queue_capacity:
                self._pending.append(chunk)
                return SubmitOutcome.QUEUED
            self.dropped_chunks += 1
            if self.overflow_policy == OverflowPolicy.DROP_OLDEST and self._pending:
                evicted = self._pending.popleft()
                self._pending.append(chunk)
                logger.warning("queue full, evicted oldest chunk #%d", evicted.sequence)
                return SubmitOutcome.QUEUED
            logger.warning("queue full (%d), dropped chunk #%d", self.queue_capacity, chunk.sequence)
            return SubmitOutcome.DROPPED

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    def _worker(self, handoff: Queue[AudioChunk | None]) -> None:
        while True:
            chunk = handoff.get()
            if chunk is None:
                return
            try:
                self._process(chunk)
            finally:
                self._advance()

    def _advance(self) -> None:
        # _in_flight stays set until the worker holding the chunk gets here,
        # including one left behind by stop() across a restart.
        with self._lock:
            if self._running and self._pending:
                self._handoff.put(self._pending.popleft())
            else:
                self._in_flight = False

    def _process(self, chunk: AudioChunk) -> None:
        samples = chunk.samples
        if self.max_chunk_samples and len(samples) > self.max_chunk_samples:
            logger.info("trimming chunk #%d from %d to %d samples", chunk.sequence, len(samples), self.max_chunk_samples)
            samples = samples[: self.max_chunk_samples]

        if is_silent(samples, self.silence_threshold):
            self.skipped_silent += 1
            logger.debug("skipping silent chunk #%d", chunk.sequence)
            return

        with self._lock:
            recognizer = self._recognizer
        if recognizer is None:
            self._fail(chunk, TranscriptionError("Speech model is not initialized yet."))
            return

        self._emit_status("Processing audio...")
        try:
            audio = resample(samples, chunk.sample_rate, self.options.sampling_rate)
            result = recognizer.recognize(audio, self.options)
        except TranscriberError as exc:
            self._fail(chunk, exc)
            return
        except Exception as exc:
            self._fail(chunk, classify_backend_failure(exc, loading=False))
            return

        self._emit_status("Ready to transcribe.")
        try:
            self._on_result(chunk, result)
        except Exception:
            logger.exception("result handler failed for chunk #%d", chunk.sequence)

    def _fail(self, chunk: AudioChunk, exc: TranscriberError) -> None:
        self.failed_chunks += 1
        logger.warning("transcription failed for chunk #%d: %s", chunk.sequence, exc.message)
        self._emit_status(f"Transcription error: {exc.message}")
        if self._on_error:
            try:
                self._on_error(chunk, exc)
            except Exception:
                logger.exception("error handler failed for chunk #%d", chunk.sequence)

    def _emit_status(self, message: str) -> None:
        if self._on_status:
            self._on_status(message)
