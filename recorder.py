"""Microphone / system-audio capture adapter."""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, Optional

import numpy as np

from errors import CaptureDeviceError, CapturePermissionError, CaptureUnsupportedError
from interfaces import FrameCallback
from models import AudioFrame, CaptureMode

try:
    import sounddevice as sd
except Exception:  # pragma: no cover
    sd = None  # type: ignore

logger = logging.getLogger(__name__)

LOOPBACK_HINTS = ("monitor", "loopback", "stereo mix", "blackhole", "what u hear")


def find_loopback_device() -> Optional[int]:
    """Index of the first input device that mirrors system output, if any."""
    if sd is None:
        return None
    for index, device in enumerate(sd.query_devices()):
        name = str(device.get("name", "")).lower()
        if device.get("max_input_channels", 0) > 0 and any(hint in name for hint in LOOPBACK_HINTS):
            return index
    return None


def _capture_error(exc: Exception) -> Exception:
    message = str(exc)
    low = message.lower()
    if "permission" in low or "not permitted" in low or "access denied" in low:
        return CapturePermissionError(message)
    return CaptureDeviceError(message)


class SoundDeviceRecorder:
    def __init__(
        self,
        sample_rate: Optional[int] = None,
        blocksize: int = 4096,
        device: Optional[int | str] = None,
    ) -> None:
        self.sample_rate = sample_rate
        self.blocksize = blocksize
        self.device = device
        self._stream: Any = None
        self._running = False
        self._lock = threading.Lock()
        self._on_frame: Optional[FrameCallback] = None
        self._native_rate = 0
        self.callback_errors = 0

    @property
    def native_rate(self) -> int:
        return self._native_rate

    def start(self, mode: CaptureMode, on_frame: FrameCallback) -> None:
        with self._lock:
            if self._running:
                return
            if sd is None:
                raise CaptureUnsupportedError("sounddevice is not installed")

            device = self.device
            if CaptureMode(mode) == CaptureMode.SYSTEM and device is None:
                device = find_loopback_device()
                if device is None:
                    raise CaptureUnsupportedError(
                        "No system audio (loopback/monitor) input device was found."
                    )

            try:
                rate = self.sample_rate or int(sd.query_devices(device, "input")["default_samplerate"])
                self._stream = sd.InputStream(
                    samplerate=rate,
                    channels=1,
                    dtype="float32",
                    blocksize=self.blocksize,
                    device=device,
                    callback=self._on_audio,
                )
                self._on_frame = on_frame
                self._native_rate = rate
                self._running = True
                self._stream.start()
            except Exception as exc:
                self._running = False
                self._stream = None
                raise _capture_error(exc) from exc
            logger.info("capture started (%s, device=%s, %d Hz)", CaptureMode(mode).value, device, rate)

    def stop(self) -> None:
        with self._lock:
            if not self._running:
                return
            self._running = False
            self._on_frame = None
            if self._stream is not None:
                self._stream.stop()
                self._stream.close()
                self._stream = None
            logger.info("capture stopped")

    def _on_audio(self, indata: Any, frames: int, time_info: Any, status: Any) -> None:
        callback = self._on_frame
        if not self._running or callback is None:
            return
        if status:
            logger.debug("capture status: %s", status)
        data = np.asarray(indata, dtype=np.float32)
        if data.ndim > 1:
            data = data[:, 0]
        frame = AudioFrame(
            samples=data.copy(),
            sample_rate=self._native_rate,
            timestamp_ms=int(time.time() * 1000),
        )
        try:
            callback(frame)
        except Exception:
            self.callback_errors += 1
            logger.exception("frame handler failed")
