from __future__ import annotations

import threading
import time

import numpy as np

from errors import LOAD_TIMEOUT, NOT_FOUND, PERMISSION_DENIED, CapturePermissionError, ModelLoadError
from models import (
    AudioFrame,
    CaptureMode,
    RecognitionOptions,
    SessionState,
    TranscriptionResult,
    TranscriptSnapshot,
)
from session_controller import SessionController


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class FakeRecorder:
    def __init__(self, error: Exception | None = None) -> None:
        self.started = False
        self.stopped = False
        self.mode: CaptureMode | None = None
        self.on_frame = None
        self.error = error

    def start(self, mode, on_frame) -> None:  # noqa: ANN001
        if self.error is not None:
            raise self.error
        self.started = True
        self.stopped = False
        self.mode = mode
        self.on_frame = on_frame

    def stop(self) -> None:
        self.stopped = True

    def emit(self, frame: AudioFrame) -> None:
        assert self.on_frame is not None
        self.on_frame(frame)


class FakeHandle:
    def __init__(self, model_id: str, text: str = "hello there", gated: bool = False) -> None:
        self.model_id = model_id
        self.text = text
        self.gated = gated
        self.gate = threading.Event()
        self.started = threading.Event()
        self.calls: list[np.ndarray] = []
        self.options: list[RecognitionOptions] = []

    def recognize(self, samples: np.ndarray, options: RecognitionOptions) -> TranscriptionResult:
        self.calls.append(samples)
        self.options.append(options)
        self.started.set()
        if self.gated:
            self.gate.wait(timeout=5.0)
        return TranscriptionResult(text=self.text)


class FakeBackend:
    def __init__(self, text: str = "hello there", gated: bool = False, error: Exception | None = None) -> None:
        self.text = text
        self.gated = gated
        self.error = error
        self.loaded: list[str] = []
        self.handles: list[FakeHandle] = []

    def initialize(self, model_id: str) -> FakeHandle:
        self.loaded.append(model_id)
        if self.error is not None:
            raise self.error
        handle = FakeHandle(model_id, text=self.text, gated=self.gated)
        self.handles.append(handle)
        return handle


def _frame(size: int = 4096, rate: int = 44100, amplitude: float = 0.5) -> AudioFrame:
    t = np.arange(size) / rate
    samples = (amplitude * np.sin(2 * np.pi * 220.0 * t)).astype(np.float32)
    return AudioFrame(samples=samples, sample_rate=rate)


def _wait_until(predicate, timeout: float = 3.0) -> bool:  # noqa: ANN001
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def _make(recorder=None, backend=None, **kwargs):  # noqa: ANN001, ANN202
    clock = FakeClock()
    recorder = recorder or FakeRecorder()
    backend = backend or FakeBackend()
    controller = SessionController(
        recorder=recorder,
        backend=backend,
        clock=clock,
        load_retries=0,
        **kwargs,
    )
    return controller, recorder, backend, clock


def _emit_one_chunk(recorder: FakeRecorder, clock: FakeClock, frames: int = 50, start: float = 0.0) -> None:
    """Emit ``frames`` frames spread over three seconds; the last one triggers the flush."""
    for i in range(frames):
        clock.now = start + (3.0 if i == frames - 1 else i * 0.05)
        recorder.emit(_frame())


# ---------------------------------------------------------------
# End to end
# ---------------------------------------------------------------

def test_end_to_end_single_chunk() -> None:
    snapshots: list[TranscriptSnapshot] = []
    controller, recorder, backend, clock = _make(on_transcript=snapshots.append)

    controller.start_session()
    assert controller.state == SessionState.RECORDING
    _emit_one_chunk(recorder, clock)

    assert _wait_until(lambda: controller.snapshot().raw_text != "")
    snap = controller.snapshot()
    assert snap.raw_text == "hello there "
    assert snap.filtered_text == "hello there "

    handle = backend.handles[0]
    assert len(handle.calls) == 1
    expected = round(50 * 4096 * 16000 / 44100)
    assert abs(len(handle.calls[0]) - expected) <= 1
    assert handle.options[0].language == "en"
    assert snapshots[-1].raw_text == "hello there "
    controller.shutdown()


def test_happy_path_transitions() -> None:
    transitions: list[tuple[SessionState, SessionState]] = []
    statuses: list[str] = []
    controller, recorder, backend, _ = _make(
        on_state_change=lambda f, t: transitions.append((f, t)),
        on_status=statuses.append,
    )

    controller.start_session(CaptureMode.SYSTEM)
    controller.stop_session()

    assert recorder.mode == CaptureMode.SYSTEM
    assert recorder.stopped is True
    assert backend.loaded == ["tiny.en"]
    assert transitions == [
        (SessionState.IDLE, SessionState.LOADING),
        (SessionState.LOADING, SessionState.RECORDING),
        (SessionState.RECORDING, SessionState.IDLE),
    ]
    assert "Recording stopped." in statuses
    controller.shutdown()


def test_start_stop_idempotent_and_model_reused() -> None:
    controller, recorder, backend, _ = _make()

    controller.start_session()
    controller.start_session()  # should be no-op
    controller.stop_session()
    controller.stop_session()  # should be no-op
    controller.start_session()
    controller.stop_session()

    assert controller.state == SessionState.IDLE
    assert backend.loaded == ["tiny.en"]
    controller.shutdown()


def test_silent_audio_never_reaches_recognizer() -> None:
    controller, recorder, backend, clock = _make()
    controller.start_session()

    for i in range(50):
        clock.now = 3.0 if i == 49 else i * 0.05
        recorder.emit(_frame(amplitude=0.0))

    assert _wait_until(lambda: controller.scheduler.skipped_silent == 1)
    assert backend.handles[0].calls == []
    assert controller.snapshot().raw_text == ""
    controller.shutdown()


# ---------------------------------------------------------------
# Failures
# ---------------------------------------------------------------

def test_load_failure_returns_to_idle() -> None:
    errors: list[tuple[str, str]] = []
    backend = FakeBackend(error=ModelLoadError("no such model", code=NOT_FOUND))
    controller, recorder, _, _ = _make(backend=backend, on_error=lambda c, m: errors.append((c, m)))

    controller.start_session()

    assert controller.state == SessionState.IDLE
    assert recorder.started is False
    assert errors == [(NOT_FOUND, "no such model")]
    controller.shutdown()


def test_load_timeout_is_reported() -> None:
    release = threading.Event()

    class HangingBackend:
        def initialize(self, model_id):  # noqa: ANN001, ANN201
            release.wait(timeout=5.0)
            return FakeHandle(model_id)

    errors: list[tuple[str, str]] = []
    controller, _, _, _ = _make(
        backend=HangingBackend(),
        load_timeout_s=0.05,
        on_error=lambda c, m: errors.append((c, m)),
    )
    try:
        controller.start_session()
    finally:
        release.set()

    assert controller.state == SessionState.IDLE
    assert errors[0][0] == LOAD_TIMEOUT
    controller.shutdown()


def test_capture_permission_error_cleans_up() -> None:
    errors: list[tuple[str, str]] = []
    recorder = FakeRecorder(error=CapturePermissionError("denied by user"))
    controller, _, _, _ = _make(recorder=recorder, on_error=lambda c, m: errors.append((c, m)))

    controller.start_session()

    assert controller.state == SessionState.IDLE
    assert errors == [(PERMISSION_DENIED, "denied by user")]
    controller.shutdown()


# ---------------------------------------------------------------
# Generations
# ---------------------------------------------------------------

def test_clear_discards_in_flight_result() -> None:
    backend = FakeBackend(gated=True)
    controller, recorder, _, clock = _make(backend=backend)
    controller.start_session()
    _emit_one_chunk(recorder, clock)

    handle = backend.handles[0]
    assert handle.started.wait(timeout=2)
    controller.clear()
    handle.gate.set()

    assert _wait_until(lambda: not controller.scheduler.in_flight)
    assert controller.snapshot().raw_text == ""
    controller.shutdown()


def test_emergency_stop_discards_in_flight_result() -> None:
    statuses: list[str] = []
    backend = FakeBackend(gated=True)
    controller, recorder, _, clock = _make(backend=backend, on_status=statuses.append)
    controller.start_session()
    _emit_one_chunk(recorder, clock)

    handle = backend.handles[0]
    assert handle.started.wait(timeout=2)
    controller.emergency_stop()
    handle.gate.set()

    assert _wait_until(lambda: not controller.scheduler.in_flight)
    assert controller.state == SessionState.IDLE
    assert recorder.stopped is True
    assert controller.snapshot().raw_text == ""
    assert "Emergency stop performed." in statuses
    controller.shutdown()


def test_stop_lets_in_flight_result_land() -> None:
    backend = FakeBackend(gated=True)
    controller, recorder, _, clock = _make(backend=backend)
    controller.start_session()
    _emit_one_chunk(recorder, clock)

    handle = backend.handles[0]
    assert handle.started.wait(timeout=2)
    controller.stop_session()
    handle.gate.set()

    assert _wait_until(lambda: controller.snapshot().raw_text == "hello there ")
    controller.shutdown()


def test_frames_after_stop_are_ignored() -> None:
    controller, recorder, backend, clock = _make()
    controller.start_session()
    on_frame = recorder.on_frame
    controller.stop_session()

    for i in range(5):
        clock.now = i * 1.0
        on_frame(_frame())

    time.sleep(0.05)
    assert backend.handles[0].calls == []
    controller.shutdown()


# ---------------------------------------------------------------
# Model changes and display intents
# ---------------------------------------------------------------

def test_change_model_while_idle_reloads_on_next_start() -> None:
    statuses: list[str] = []
    controller, _, backend, _ = _make(on_status=statuses.append)

    controller.start_session()
    controller.stop_session()
    controller.change_model("base.en")
    controller.start_session()

    assert backend.loaded == ["tiny.en", "base.en"]
    assert controller.model_id == "base.en"
    assert "Model changed to base.en." in statuses
    controller.shutdown()


def test_change_model_while_recording_is_deferred() -> None:
    statuses: list[str] = []
    controller, _, backend, _ = _make(on_status=statuses.append)

    controller.start_session()
    controller.change_model("small.en")

    assert backend.loaded == ["tiny.en"]
    assert "Model will change to small.en when you next start recording." in statuses

    controller.stop_session()
    controller.start_session()
    assert backend.loaded == ["tiny.en", "small.en"]
    controller.shutdown()


class BlockingBackend(FakeBackend):
    """Backend whose loads park until the test releases that model."""

    def __init__(self, model_ids: tuple[str, ...]) -> None:
        super().__init__()
        self.entered = {m: threading.Event() for m in model_ids}
        self.release = {m: threading.Event() for m in model_ids}

    def initialize(self, model_id: str) -> FakeHandle:
        self.entered[model_id].set()
        self.release[model_id].wait(timeout=5.0)
        return super().initialize(model_id)


def test_load_cancelled_by_emergency_stop_is_not_installed_later() -> None:
    statuses: list[str] = []
    backend = BlockingBackend(("A", "B"))
    controller, recorder, _, clock = _make(backend=backend, model_id="A", on_status=statuses.append)

    first = threading.Thread(target=controller.start_session)
    first.start()
    assert backend.entered["A"].wait(timeout=2)
    controller.emergency_stop()
    controller.change_model("B")

    second = threading.Thread(target=controller.start_session)
    second.start()
    assert backend.entered["B"].wait(timeout=2)

    backend.release["A"].set()
    first.join(timeout=2)
    assert not first.is_alive()
    assert controller.state == SessionState.LOADING
    assert recorder.started is False

    backend.release["B"].set()
    second.join(timeout=2)
    assert controller.state == SessionState.RECORDING
    assert "Ready to transcribe with B model." in statuses
    assert "Ready to transcribe with A model." not in statuses

    _emit_one_chunk(recorder, clock)
    by_model = {h.model_id: h for h in backend.handles}
    assert _wait_until(lambda: len(by_model["B"].calls) == 1)
    assert by_model["A"].calls == []
    controller.shutdown()


def test_load_finishing_after_emergency_stop_leaves_session_idle() -> None:
    backend = BlockingBackend(("A",))
    controller, recorder, _, _ = _make(backend=backend, model_id="A")

    loader = threading.Thread(target=controller.start_session)
    loader.start()
    assert backend.entered["A"].wait(timeout=2)
    controller.emergency_stop()
    backend.release["A"].set()
    loader.join(timeout=2)

    assert controller.state == SessionState.IDLE
    assert recorder.started is False
    controller.shutdown()


def test_filter_mode_and_clear_notify_display() -> None:
    snapshots: list[TranscriptSnapshot] = []
    controller, _, _, _ = _make(on_transcript=snapshots.append)

    controller.set_filter_mode(False)
    controller.clear()

    assert snapshots[0].filter_mode is False
    assert snapshots[-1] == TranscriptSnapshot(raw_text="", filtered_text="", filter_mode=False)
    controller.shutdown()
