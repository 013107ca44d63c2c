"""Protocol interfaces used by SessionController."""

from __future__ import annotations

from typing import Callable, Protocol

import numpy as np

from models import AudioFrame, CaptureMode, RecognitionOptions, TranscriptionResult

FrameCallback = Callable[[AudioFrame], None]


class AudioSource(Protocol):
    def start(self, mode: CaptureMode, on_frame: FrameCallback) -> None: ...

    def stop(self) -> None: ...


class RecognizerHandle(Protocol):
    model_id: str

    def recognize(self, samples: np.ndarray, options: RecognitionOptions) -> TranscriptionResult: ...


class RecognizerBackend(Protocol):
    def initialize(self, model_id: str) -> RecognizerHandle: ...

