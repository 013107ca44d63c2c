"""State-machine based session orchestration."""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional

from accumulator import Clock, ChunkAccumulator
from errors import CaptureError, ModelLoadError, TranscriberError
from interfaces import AudioSource, RecognizerBackend, RecognizerHandle
from models import (
    AudioChunk,
    AudioFrame,
    CaptureMode,
    OverflowPolicy,
    RecognitionOptions,
    SessionState,
    TranscriptionResult,
    TranscriptSnapshot,
)
from recognizer import DEFAULT_WHISPER_MODEL, load_with_timeout
from scheduler import TranscriptionScheduler
from transcript import TranscriptState

logger = logging.getLogger(__name__)

StateCallback = Callable[[SessionState, SessionState], None]
TranscriptCallback = Callable[[TranscriptSnapshot], None]
StatusCallback = Callable[[str], None]
ErrorCallback = Callable[[str, str], None]


class SessionController:
    """Owns one recording session: capture, chunking, recognition, transcript.

    Every chunk is stamped with the controller's generation when it is cut.
    Clearing the transcript, restarting, changing model while idle and the
    emergency stop all bump the generation, so a recognition that was already
    running finishes into the void instead of landing in the new transcript.
    """

    def __init__(
        self,
        recorder: AudioSource,
        backend: RecognizerBackend,
        model_id: str = DEFAULT_WHISPER_MODEL,
        options: Optional[RecognitionOptions] = None,
        chunk_interval_s: float = 3.0,
        max_chunk_s: float = 10.0,
        queue_capacity: int = 5,
        overflow_policy: OverflowPolicy = OverflowPolicy.DROP_NEWEST,
        filter_mode: bool = True,
        load_timeout_s: float = 60.0,
        load_retries: int = 2,
        clock: Clock = time.monotonic,
        on_state_change: Optional[StateCallback] = None,
        on_transcript: Optional[TranscriptCallback] = None,
        on_status: Optional[StatusCallback] = None,
        on_error: Optional[ErrorCallback] = None,
    ) -> None:
        self._recorder = recorder
        self._backend = backend
        self._model_id = model_id
        self._load_timeout_s = load_timeout_s
        self._load_retries = load_retries
        self._on_state_change = on_state_change
        self._on_transcript = on_transcript
        self._on_status = on_status
        self._on_error = on_error

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._generation = 0
        self._load_token = 0
        self._handle: Optional[RecognizerHandle] = None

        self._transcript = TranscriptState(filter_mode=filter_mode, on_change=self._emit_transcript)
        self._accumulator = ChunkAccumulator(interval_s=chunk_interval_s, max_chunk_s=max_chunk_s, clock=clock)
        self._scheduler = TranscriptionScheduler(
            on_result=self._handle_result,
            on_error=self._handle_chunk_error,
            on_status=self._emit_status,
            queue_capacity=queue_capacity,
            overflow_policy=overflow_policy,
            options=options,
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def model_id(self) -> str:
        return self._model_id

    @property
    def scheduler(self) -> TranscriptionScheduler:
        return self._scheduler

    def snapshot(self) -> TranscriptSnapshot:
        return self._transcript.snapshot()

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    def start_session(self, mode: CaptureMode = CaptureMode.MICROPHONE) -> None:
        with self._lock:
            if self._state != SessionState.IDLE:
                return
            self._transition(SessionState.LOADING)
            self._load_token += 1
            token = self._load_token
            model_id = self._model_id
            handle = self._handle

        if handle is None or handle.model_id != model_id:
            try:
                handle = load_with_timeout(
                    self._backend,
                    model_id,
                    timeout_s=self._load_timeout_s,
                    retries=self._load_retries,
                    on_status=self._emit_status,
                )
            except ModelLoadError as exc:
                with self._lock:
                    if token == self._load_token and self._state == SessionState.LOADING:
                        self._fail(exc.code, exc.message)
                return

        with self._lock:
            if token != self._load_token or self._state != SessionState.LOADING:
                # Stopped while loading; a later start owns the session now.
                logger.info("dropping handle for %s loaded by a cancelled start", handle.model_id)
                return
            self._handle = handle
            self._scheduler.set_recognizer(handle)
            self._scheduler.start()
            self._generation += 1
            self._accumulator.reset(self._generation)
            try:
                self._recorder.start(CaptureMode(mode), self._handle_frame)
            except CaptureError as exc:
                self._fail(exc.code, exc.message)
                return
            self._transition(SessionState.RECORDING)
            self._emit_status(f"Ready to transcribe with {handle.model_id} model.")

    def stop_session(self) -> None:
        """Stop capturing; a recognition already running may still land."""
        with self._lock:
            if self._state != SessionState.RECORDING:
                return
            self._safe_stop_recorder()
            self._accumulator.reset()
            self._scheduler.clear_pending()
            self._transition(SessionState.IDLE)
            self._emit_status("Recording stopped.")

    def emergency_stop(self) -> None:
        with self._lock:
            self._load_token += 1
            self._safe_stop_recorder()
            self._scheduler.clear_pending()
            self._generation += 1
            self._accumulator.reset(self._generation)
            self._transition(SessionState.IDLE)
            self._emit_status("Emergency stop performed.")

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._accumulator.reset(self._generation)
            self._scheduler.clear_pending()
            self._transcript.clear()
            self._emit_status("Transcription cleared.")

    def set_filter_mode(self, enabled: bool) -> None:
        self._transcript.set_filter_mode(enabled)

    def change_model(self, model_id: str) -> None:
        with self._lock:
            if not model_id or model_id == self._model_id:
                return
            self._model_id = model_id
            if self._state in (SessionState.RECORDING, SessionState.LOADING):
                self._emit_status(f"Model will change to {model_id} when you next start recording.")
                return
            self._handle = None
            self._scheduler.set_recognizer(None)
            self._generation += 1
            self._accumulator.reset(self._generation)
            self._emit_status(f"Model changed to {model_id}.")

    def shutdown(self) -> None:
        with self._lock:
            self._load_token += 1
            self._safe_stop_recorder()
            self._generation += 1
            self._transition(SessionState.IDLE)
        self._scheduler.stop()

    # ------------------------------------------------------------------
    # Pipeline callbacks
    # ------------------------------------------------------------------

    def _handle_frame(self, frame: AudioFrame) -> None:
        # Runs on the capture thread; must not wait on recognition.
        if self._state != SessionState.RECORDING:
            return
        chunk = self._accumulator.push(frame)
        if chunk is not None:
            self._scheduler.submit(chunk)

    def _handle_result(self, chunk: AudioChunk, result: TranscriptionResult) -> None:
        with self._lock:
            if chunk.generation != self._generation:
                logger.info("discarding stale result for chunk #%d (generation %d != %d)",
                            chunk.sequence, chunk.generation, self._generation)
                return
            self._transcript.merge(result)

    def _handle_chunk_error(self, chunk: AudioChunk, exc: TranscriberError) -> None:
        with self._lock:
            if chunk.generation != self._generation:
                return
            self._emit_error(exc.code, exc.message)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _fail(self, code: str, message: str) -> None:
        self._transition(SessionState.ERROR)
        self._emit_error(code, message)
        self._safe_stop_recorder()
        self._scheduler.clear_pending()
        self._transition(SessionState.IDLE)

    def _emit_transcript(self, snapshot: TranscriptSnapshot) -> None:
        if self._on_transcript:
            self._on_transcript(snapshot)

    def _emit_status(self, message: str) -> None:
        if self._on_status:
            self._on_status(message)

    def _emit_error(self, code: str, message: str) -> None:
        logger.warning("%s: %s", code, message)
        if self._on_error:
            self._on_error(code, message)

    def _safe_stop_recorder(self) -> None:
        try:
            self._recorder.stop()
        except Exception:  # pragma: no cover
            logger.exception("recorder stop failed")

    def _transition(self, to_state: SessionState) -> None:
        from_state = self._state
        if from_state == to_state:
            return
        self._state = to_state
        logger.info("session %s -> %s", from_state.value, to_state.value)
        if self._on_state_change:
            self._on_state_change(from_state, to_state)
