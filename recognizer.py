"""Speech recognizer backends.

Two backends share the same two-step shape: ``initialize(model_id)`` returns a
handle bound to one model, and ``handle.recognize(samples, options)`` turns a
16 kHz float32 buffer into a ``TranscriptionResult``.

- ``FasterWhisperBackend`` runs a local CTranslate2 Whisper model.
- ``DashscopeBackend`` sends the chunk to DashScope's qwen3-asr-flash as a
  base64 WAV and collects the streamed text.

``load_with_timeout`` wraps ``initialize`` with a deadline and retries, since
model downloads can hang on a bad connection.
"""

from __future__ import annotations

import base64
import io
import logging
import os
import threading
import time
import wave
from typing import Any, Callable, Optional

import numpy as np

from audio_dsp import float_to_pcm16
from errors import (
    AUTH_FAILED,
    LOAD_TIMEOUT,
    ModelLoadError,
    TranscriberError,
    TranscriptionError,
    classify_backend_failure,
)
from interfaces import RecognizerBackend, RecognizerHandle
from models import RecognitionOptions, TranscriptionResult, TranscriptSegment

try:
    from faster_whisper import WhisperModel
except Exception:  # pragma: no cover
    WhisperModel = None  # type: ignore

try:
    import dashscope
except Exception:  # pragma: no cover
    dashscope = None  # type: ignore

logger = logging.getLogger(__name__)

DEFAULT_WHISPER_MODEL = "tiny.en"
DEFAULT_DASHSCOPE_MODEL = "qwen3-asr-flash"


def _pcm_to_wav_base64(
    pcm: bytes,
    sample_rate: int = 16000,
    channels: int = 1,
    sample_width: int = 2,
) -> str:
    """Convert raw PCM bytes to a base64-encoded WAV string."""
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(sample_rate)
        wf.writeframes(pcm)
    wav_bytes = buf.getvalue()
    return base64.b64encode(wav_bytes).decode("ascii")


# ----------------------------------------------------------------------
# faster-whisper
# ----------------------------------------------------------------------


class FasterWhisperHandle:
    def __init__(self, model_id: str, model: Any, beam_size: int = 1) -> None:
        self.model_id = model_id
        self._model = model
        self._beam_size = beam_size

    def recognize(self, samples: np.ndarray, options: RecognitionOptions) -> TranscriptionResult:
        segments, _info = self._model.transcribe(
            samples.astype(np.float32, copy=False),
            language=options.language,
            task=options.task,
            beam_size=self._beam_size,
            temperature=options.temperature,
            no_speech_threshold=options.no_speech_threshold,
            log_prob_threshold=options.logprob_threshold,
            compression_ratio_threshold=options.compression_ratio_threshold,
            condition_on_previous_text=options.condition_on_previous_text,
        )
        parts: list[str] = []
        timed: list[TranscriptSegment] = []
        # segments is a lazy generator; decoding happens while iterating.
        for seg in segments:
            text = seg.text.strip()
            if not text:
                continue
            parts.append(text)
            if options.return_timestamps:
                timed.append(TranscriptSegment(start=float(seg.start), end=float(seg.end), text=text))
        return TranscriptionResult(text=" ".join(parts), segments=timed)


class FasterWhisperBackend:
    def __init__(self, device: str = "cpu", compute_type: str = "int8", beam_size: int = 1) -> None:
        self.device = device
        self.compute_type = compute_type
        self.beam_size = beam_size

    def initialize(self, model_id: str) -> FasterWhisperHandle:
        if WhisperModel is None:
            raise ModelLoadError("faster-whisper is not installed")
        try:
            model = WhisperModel(model_id, device=self.device, compute_type=self.compute_type)
        except Exception as exc:
            raise classify_backend_failure(exc, loading=True) from exc
        return FasterWhisperHandle(model_id, model, beam_size=self.beam_size)


# ----------------------------------------------------------------------
# DashScope
# ----------------------------------------------------------------------


class DashscopeHandle:
    def __init__(self, model_id: str, api_key: str, request_timeout_s: float = 10.0) -> None:
        self.model_id = model_id
        self._api_key = api_key
        self._request_timeout_s = request_timeout_s

    def recognize(self, samples: np.ndarray, options: RecognitionOptions) -> TranscriptionResult:
        if dashscope is None:
            raise TranscriptionError("dashscope is not installed")
        wav_b64 = _pcm_to_wav_base64(float_to_pcm16(samples), options.sampling_rate)
        asr_options: dict[str, Any] = {"enable_itn": False}
        if options.language:
            asr_options["language"] = options.language

        try:
            response = dashscope.MultiModalConversation.call(
                api_key=self._api_key,
                model=self.model_id,
                messages=[
                    {"role": "system", "content": [{"text": ""}]},
                    {"role": "user", "content": [{"audio": wav_b64}]},
                ],
                result_format="message",
                asr_options=asr_options,
                stream=True,
                timeout=self._request_timeout_s,
            )
            latest_text = ""
            for chunk in response:
                text = self._extract_text(chunk)
                if text:
                    latest_text = text
        except Exception as exc:
            raise classify_backend_failure(exc, loading=False) from exc
        return TranscriptionResult(text=latest_text)

    def _extract_text(self, chunk: object) -> str:
        """Pull text from a dashscope streaming chunk dict."""
        if isinstance(chunk, dict):
            output = chunk.get("output", {})
            choices = output.get("choices", [])
            if not choices:
                return ""
            message = choices[0].get("message", {})
            content = message.get("content", [])
            if not content:
                return ""
            value = content[0]
            if isinstance(value, dict):
                return str(value.get("text", ""))
        return ""


class DashscopeBackend:
    def __init__(self, api_key: str = "", request_timeout_s: float = 10.0) -> None:
        self._api_key = api_key
        self._request_timeout_s = request_timeout_s

    def initialize(self, model_id: str) -> DashscopeHandle:
        if dashscope is None:
            raise ModelLoadError("dashscope is not installed")
        api_key = self._api_key or os.getenv("DASHSCOPE_API_KEY", "")
        if not api_key:
            raise ModelLoadError("No API key configured", code=AUTH_FAILED)
        return DashscopeHandle(model_id or DEFAULT_DASHSCOPE_MODEL, api_key, self._request_timeout_s)


# ----------------------------------------------------------------------
# Loading
# ----------------------------------------------------------------------


def load_with_timeout(
    backend: RecognizerBackend,
    model_id: str,
    timeout_s: float = 60.0,
    retries: int = 2,
    retry_delay_s: float = 1.0,
    on_status: Optional[Callable[[str], None]] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RecognizerHandle:
    """Initialize ``model_id`` on a helper thread, bounded by ``timeout_s``.

    Retryable failures are retried up to ``retries`` more times with a linear
    backoff. A hung initialization is abandoned (the helper thread is a
    daemon) and reported as ``LOAD_TIMEOUT``.
    """
    attempts = max(retries, 0) + 1
    attempt = 1
    while True:
        if on_status:
            suffix = f" (attempt {attempt})" if attempt > 1 else ""
            on_status(f"Loading model {model_id}...{suffix}")
        logger.info("loading model %s, attempt %d/%d", model_id, attempt, attempts)
        try:
            return _initialize_once(backend, model_id, timeout_s)
        except ModelLoadError as exc:
            logger.error("model %s failed to load: %s", model_id, exc.message)
            if not exc.retryable or attempt >= attempts:
                raise
            sleep(retry_delay_s * attempt)
        attempt += 1


def _initialize_once(backend: RecognizerBackend, model_id: str, timeout_s: float) -> RecognizerHandle:
    done = threading.Event()
    box: dict[str, Any] = {}

    def _run() -> None:
        try:
            box["handle"] = backend.initialize(model_id)
        except Exception as exc:
            box["error"] = exc
        finally:
            done.set()

    threading.Thread(target=_run, name=f"load-{model_id}", daemon=True).start()
    if not done.wait(timeout=timeout_s):
        raise ModelLoadError(
            f"Loading {model_id} timed out after {timeout_s:.0f}s",
            code=LOAD_TIMEOUT,
            retryable=True,
        )
    error = box.get("error")
    if isinstance(error, ModelLoadError):
        raise error
    if isinstance(error, TranscriberError):
        raise ModelLoadError(error.message, code=error.code, retryable=error.retryable)
    if error is not None:
        raise classify_backend_failure(error, loading=True)
    return box["handle"]
