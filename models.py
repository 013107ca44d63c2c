"""Core data models for the app."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

import numpy as np


class SessionState(str, Enum):
    IDLE = "IDLE"
    LOADING = "LOADING"
    RECORDING = "RECORDING"
    ERROR = "ERROR"


class CaptureMode(str, Enum):
    MICROPHONE = "microphone"
    SYSTEM = "system"


class OverflowPolicy(str, Enum):
    DROP_NEWEST = "drop_newest"
    DROP_OLDEST = "drop_oldest"


class SubmitOutcome(str, Enum):
    STARTED = "started"
    QUEUED = "queued"
    DROPPED = "dropped"


@dataclass(frozen=True)
class AudioFrame:
    samples: np.ndarray
    sample_rate: int
    timestamp_ms: int = 0

    def __len__(self) -> int:
        return int(self.samples.shape[0])


@dataclass(frozen=True)
class AudioChunk:
    samples: np.ndarray
    sample_rate: int
    generation: int = 0
    sequence: int = 0

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_s(self) -> float:
        if self.sample_rate <= 0:
            return 0.0
        return len(self) / self.sample_rate


@dataclass(frozen=True)
class TranscriptSegment:
    start: float
    end: float
    text: str


@dataclass
class TranscriptionResult:
    text: str
    segments: list[TranscriptSegment] = field(default_factory=list)


@dataclass(frozen=True)
class RecognitionOptions:
    """Pass-through decoding options for the recognizer backend."""

    sampling_rate: int = 16000
    language: Optional[str] = "en"
    task: str = "transcribe"
    temperature: float = 0.0
    no_speech_threshold: float = 0.6
    logprob_threshold: float = -1.0
    compression_ratio_threshold: float = 2.4
    condition_on_previous_text: bool = True
    return_timestamps: bool = False


@dataclass(frozen=True)
class TranscriptSnapshot:
    raw_text: str
    filtered_text: str
    filter_mode: bool

    @property
    def display_text(self) -> str:
        return self.filtered_text if self.filter_mode else self.raw_text
