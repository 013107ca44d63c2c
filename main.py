"""Application entrypoint."""

from __future__ import annotations

import logging
import os
import sys
import threading

from config import JsonConfigStore
from hotkey import GlobalHotkeyAdapter
from interfaces import RecognizerBackend
from models import CaptureMode, SessionState, TranscriptSnapshot
from recognizer import DashscopeBackend, FasterWhisperBackend
from recorder import SoundDeviceRecorder
from session_controller import SessionController
from transcript_window import TranscriptWindow

try:
    from PySide6.QtCore import QObject, Signal, QSize
    from PySide6.QtGui import QAction, QIcon, QPixmap, QPainter, QColor, QBrush
    from PySide6.QtWidgets import QApplication, QMenu, QSystemTrayIcon
except Exception as exc:  # pragma: no cover
    raise SystemExit(f"PySide6 is required to run the desktop app: {exc}")

logger = logging.getLogger(__name__)


def _create_icon(color: str = "#888888", size: int = 22) -> QIcon:
    """Generate a simple circular tray icon with the given color."""
    pixmap = QPixmap(QSize(size, size))
    pixmap.fill(QColor(0, 0, 0, 0))  # transparent background
    painter = QPainter(pixmap)
    painter.setRenderHint(QPainter.Antialiasing, True)
    painter.setBrush(QBrush(QColor(color)))
    painter.setPen(QColor(color))
    painter.drawEllipse(2, 2, size - 4, size - 4)
    painter.end()
    return QIcon(pixmap)


ICON_IDLE = "#888888"      # grey
ICON_LOADING = "#3399FF"   # blue
ICON_RECORDING = "#FF4444"  # red
ICON_ERROR = "#FF8800"     # orange


def build_backend(config: JsonConfigStore) -> RecognizerBackend:
    if config.get_backend() == "dashscope":
        return DashscopeBackend(api_key=config.get_api_key())
    return FasterWhisperBackend()


class UIBridge(QObject):
    transcript_signal = Signal(object)
    status_signal = Signal(str)
    error_signal = Signal(str)
    state_signal = Signal(str, str)  # from_state, to_state


class App:
    def __init__(self) -> None:
        self.app = QApplication(sys.argv)
        self.app.setQuitOnLastWindowClosed(False)
        self.config_store = JsonConfigStore()
        self.ui = UIBridge()
        self.ui.transcript_signal.connect(self._on_transcript_ui)
        self.ui.status_signal.connect(self._on_status_ui)
        self.ui.error_signal.connect(self._on_error_ui)
        self.ui.state_signal.connect(self._on_state_change_ui)

        filter_mode = self.config_store.get_filter_mode()
        self.controller = SessionController(
            recorder=SoundDeviceRecorder(),
            backend=build_backend(self.config_store),
            model_id=self.config_store.get_model_id(),
            options=self.config_store.get_recognition_options(),
            chunk_interval_s=self.config_store.get_chunk_interval_s(),
            queue_capacity=self.config_store.get_queue_capacity(),
            overflow_policy=self.config_store.get_overflow_policy(),
            filter_mode=filter_mode,
            on_state_change=self._on_state_change,
            on_transcript=self._on_transcript,
            on_status=self._on_status,
            on_error=self._on_error,
        )
        self.hotkey = GlobalHotkeyAdapter(hotkey_name=self.config_store.get_hotkey())

        self.window = TranscriptWindow(model_id=self.controller.model_id, filter_mode=filter_mode)
        self.window.mic_button.clicked.connect(lambda: self._start(CaptureMode.MICROPHONE))
        self.window.system_button.clicked.connect(lambda: self._start(CaptureMode.SYSTEM))
        self.window.stop_button.clicked.connect(self.controller.stop_session)
        self.window.clear_button.clicked.connect(self._clear)
        self.window.emergency_button.clicked.connect(self.controller.emergency_stop)
        self.window.filter_checkbox.toggled.connect(self._set_filter_mode)
        self.window.model_select.textActivated.connect(self._change_model)
        self.window.show()

        self.tray = QSystemTrayIcon()
        self.tray.setIcon(_create_icon(ICON_IDLE))
        self.tray.setToolTip("Live Transcriber — Ready")
        self._setup_menu()
        self.tray.show()

    def _setup_menu(self) -> None:
        menu = QMenu()

        show_action = QAction("Show Transcript", menu)
        show_action.triggered.connect(self.window.show)
        menu.addAction(show_action)

        clear_action = QAction("Clear Transcript", menu)
        clear_action.triggered.connect(self._clear)
        menu.addAction(clear_action)

        menu.addSeparator()
        quit_action = QAction("Quit", menu)
        quit_action.triggered.connect(self.quit)
        menu.addAction(quit_action)

        self.tray.setContextMenu(menu)

    # ------------------------------------------------------------------
    # User intents
    # ------------------------------------------------------------------

    def _start(self, mode: CaptureMode) -> None:
        # Model loading can take a while; keep the Qt main thread free.
        threading.Thread(
            target=self.controller.start_session,
            args=(mode,),
            daemon=True,
        ).start()

    def _toggle(self) -> None:
        if self.controller.state == SessionState.RECORDING:
            self.controller.stop_session()
        elif self.controller.state == SessionState.IDLE:
            self._start(self.config_store.get_capture_mode())

    def _clear(self) -> None:
        self.controller.clear()
        self.window.clear_error()

    def _set_filter_mode(self, enabled: bool) -> None:
        self.config_store.set_filter_mode(enabled)
        self.controller.set_filter_mode(enabled)

    def _change_model(self, model_id: str) -> None:
        model_id = model_id.strip()
        if not model_id:
            return
        self.config_store.set_model_id(model_id)
        self.controller.change_model(model_id)

    # ------------------------------------------------------------------
    # Callbacks (called from worker threads → emit signals for UI thread)
    # ------------------------------------------------------------------

    def _on_state_change(self, from_state: SessionState, to_state: SessionState) -> None:
        self.ui.state_signal.emit(from_state.value, to_state.value)

    def _on_transcript(self, snapshot: TranscriptSnapshot) -> None:
        self.ui.transcript_signal.emit(snapshot)

    def _on_status(self, message: str) -> None:
        self.ui.status_signal.emit(message)

    def _on_error(self, code: str, message: str) -> None:
        self.ui.error_signal.emit(f"{code}: {message}")

    # ------------------------------------------------------------------
    # UI thread handlers (safe for Qt)
    # ------------------------------------------------------------------

    def _on_transcript_ui(self, snapshot: TranscriptSnapshot) -> None:
        self.window.set_snapshot(snapshot)

    def _on_status_ui(self, message: str) -> None:
        self.window.set_status(message)

    def _on_error_ui(self, msg: str) -> None:
        self.window.show_error(msg)

    def _on_state_change_ui(self, from_state: str, to_state: str) -> None:
        self.window.set_recording(to_state in (SessionState.RECORDING.value, SessionState.LOADING.value))
        if to_state == SessionState.RECORDING.value:
            self.tray.setIcon(_create_icon(ICON_RECORDING))
            self.tray.setToolTip("Live Transcriber — Recording...")
        elif to_state == SessionState.LOADING.value:
            self.tray.setIcon(_create_icon(ICON_LOADING))
            self.tray.setToolTip("Live Transcriber — Loading model...")
        elif to_state == SessionState.IDLE.value:
            self.tray.setIcon(_create_icon(ICON_IDLE))
            self.tray.setToolTip("Live Transcriber — Ready")
        elif to_state == SessionState.ERROR.value:
            self.tray.setIcon(_create_icon(ICON_ERROR))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def run(self) -> int:
        try:
            self.hotkey.start(on_toggle=self._toggle)
        except Exception as exc:
            self.window.show_error(f"Hotkey disabled: {exc}")
        self.window.set_status("Ready. Press Start to begin transcribing.")
        return self.app.exec()

    def quit(self) -> None:
        self.hotkey.stop()
        self.controller.shutdown()
        self.app.quit()


def configure_logging() -> None:
    level = os.getenv("LIVE_TRANSCRIBER_LOG", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )


def main() -> int:
    configure_logging()
    app = App()
    return app.run()


if __name__ == "__main__":
    raise SystemExit(main())
