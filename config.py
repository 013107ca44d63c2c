"""Simple JSON-based config store."""

from __future__ import annotations

import json
from pathlib import Path

from models import CaptureMode, OverflowPolicy, RecognitionOptions

DEFAULTS = {
    "backend": "whisper",
    "model_id": "tiny.en",
    "api_key": "",
    "language": "en",
    "task": "transcribe",
    "filter_mode": True,
    "chunk_interval_ms": 3000,
    "queue_capacity": 5,
    "overflow_policy": OverflowPolicy.DROP_NEWEST.value,
    "capture_mode": CaptureMode.MICROPHONE.value,
    "hotkey": "Key.f9",
}


class JsonConfigStore:
    def __init__(self, path: Path | None = None) -> None:
        self._path = path or Path.home() / ".config" / "live_transcriber" / "config.json"
        self._path.parent.mkdir(parents=True, exist_ok=True)

    def get_backend(self) -> str:
        return str(self._get("backend"))

    def get_model_id(self) -> str:
        return str(self._get("model_id"))

    def set_model_id(self, model_id: str) -> None:
        self._set("model_id", model_id)

    def get_api_key(self) -> str:
        return str(self._get("api_key"))

    def set_api_key(self, key: str) -> None:
        self._set("api_key", key)

    def get_filter_mode(self) -> bool:
        return bool(self._get("filter_mode"))

    def set_filter_mode(self, enabled: bool) -> None:
        self._set("filter_mode", bool(enabled))

    def get_chunk_interval_s(self) -> float:
        try:
            value = int(self._get("chunk_interval_ms"))
        except (TypeError, ValueError):
            value = DEFAULTS["chunk_interval_ms"]
        return max(value, 100) / 1000.0

    def get_queue_capacity(self) -> int:
        try:
            return max(int(self._get("queue_capacity")), 0)
        except (TypeError, ValueError):
            return int(DEFAULTS["queue_capacity"])

    def get_overflow_policy(self) -> OverflowPolicy:
        try:
            return OverflowPolicy(self._get("overflow_policy"))
        except ValueError:
            return OverflowPolicy.DROP_NEWEST

    def get_capture_mode(self) -> CaptureMode:
        try:
            return CaptureMode(self._get("capture_mode"))
        except ValueError:
            return CaptureMode.MICROPHONE

    def get_hotkey(self) -> str:
        return str(self._get("hotkey"))

    def set_hotkey(self, hotkey: str) -> None:
        self._set("hotkey", hotkey)

    def get_recognition_options(self) -> RecognitionOptions:
        language = str(self._get("language")) or None
        return RecognitionOptions(language=language, task=str(self._get("task")))

    def _get(self, key: str) -> object:
        return self._read_all().get(key, DEFAULTS[key])

    def _set(self, key: str, value: object) -> None:
        data = self._read_all()
        data[key] = value
        self._write_all(data)

    def _read_all(self) -> dict:
        if not self._path.exists():
            return {}
        try:
            data = json.loads(self._path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            return {}
        return data if isinstance(data, dict) else {}

    def _write_all(self, data: dict) -> None:
        self._path.write_text(json.dumps(data, ensure_ascii=False, indent=2), encoding="utf-8")
