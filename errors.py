"""Shared error codes, user-facing messages and exception types."""

from __future__ import annotations

PERMISSION_DENIED = "PERMISSION_DENIED"
UNSUPPORTED = "UNSUPPORTED"
DEVICE_ERROR = "DEVICE_ERROR"
NOT_FOUND = "NOT_FOUND"
NETWORK_ERROR = "NETWORK_ERROR"
AUTH_FAILED = "AUTH_FAILED"
LOAD_FAILED = "LOAD_FAILED"
LOAD_TIMEOUT = "LOAD_TIMEOUT"
TRANSCRIPTION_FAILED = "TRANSCRIPTION_FAILED"
TRANSCRIPTION_TIMEOUT = "TRANSCRIPTION_TIMEOUT"

ERROR_MESSAGES = {
    PERMISSION_DENIED: "Audio capture permission was denied. Allow access and try again.",
    UNSUPPORTED: "Audio capture is not supported in this environment.",
    DEVICE_ERROR: "The audio device failed. Check the selected input.",
    NOT_FOUND: "The speech model could not be found.",
    NETWORK_ERROR: "Network failed, please retry.",
    AUTH_FAILED: "API key is invalid.",
    LOAD_FAILED: "Failed to load the speech model.",
    LOAD_TIMEOUT: "Model loading took too long. Check your network and try again.",
    TRANSCRIPTION_FAILED: "Transcription of an audio chunk failed.",
    TRANSCRIPTION_TIMEOUT: "Transcription of an audio chunk timed out.",
}


class TranscriberError(Exception):
    """Base error carrying a code from this module."""

    default_code = LOAD_FAILED

    def __init__(self, message: str = "", code: str | None = None, retryable: bool = False) -> None:
        self.code = code or self.default_code
        self.message = message or ERROR_MESSAGES.get(self.code, self.code)
        self.retryable = retryable
        super().__init__(self.message)


class CaptureError(TranscriberError):
    default_code = DEVICE_ERROR


class CapturePermissionError(CaptureError):
    default_code = PERMISSION_DENIED


class CaptureUnsupportedError(CaptureError):
    default_code = UNSUPPORTED


class CaptureDeviceError(CaptureError):
    default_code = DEVICE_ERROR


class ModelLoadError(TranscriberError):
    default_code = LOAD_FAILED


class TranscriptionError(TranscriberError):
    default_code = TRANSCRIPTION_FAILED


def classify_backend_failure(exc: BaseException, *, loading: bool) -> TranscriberError:
    """Map an SDK/network exception to a load or transcription error."""
    message = str(exc) or exc.__class__.__name__
    low = message.lower()
    if isinstance(exc, TimeoutError) or "timeout" in low or "timed out" in low:
        code = LOAD_TIMEOUT if loading else TRANSCRIPTION_TIMEOUT
        retryable = True
    elif "401" in low or "auth" in low or "api key" in low:
        code = AUTH_FAILED
        retryable = False
    elif isinstance(exc, ConnectionError) or "network" in low or "connection" in low:
        code = NETWORK_ERROR
        retryable = True
    elif loading and ("not found" in low or "404" in low or isinstance(exc, FileNotFoundError)):
        code = NOT_FOUND
        retryable = False
    else:
        code = LOAD_FAILED if loading else TRANSCRIPTION_FAILED
        retryable = loading
    if loading:
        return ModelLoadError(message, code=code, retryable=retryable)
    return TranscriptionError(message, code=code, retryable=retryable)
