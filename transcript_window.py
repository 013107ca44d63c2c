"""Main window showing the live transcript."""

from __future__ import annotations

from models import TranscriptSnapshot

try:
    from PySide6.QtCore import Qt, QTimer
    from PySide6.QtWidgets import (
        QCheckBox,
        QComboBox,
        QHBoxLayout,
        QLabel,
        QPlainTextEdit,
        QPushButton,
        QVBoxLayout,
        QWidget,
    )
except Exception:  # pragma: no cover
    Qt = None  # type: ignore
    QTimer = None  # type: ignore
    QCheckBox = object  # type: ignore
    QComboBox = object  # type: ignore
    QHBoxLayout = object  # type: ignore
    QLabel = object  # type: ignore
    QPlainTextEdit = object  # type: ignore
    QPushButton = object  # type: ignore
    QVBoxLayout = object  # type: ignore
    QWidget = object  # type: ignore

MODEL_CHOICES = ("tiny.en", "base.en", "small.en", "tiny", "base", "small")

MODE_FILTERED = "Showing: Filtered Transcription"
MODE_RAW = "Showing: Raw Transcription"


class TranscriptWindow(QWidget):
    def __init__(self, model_id: str = "tiny.en", filter_mode: bool = True) -> None:
        if Qt is None:
            raise RuntimeError("PySide6 is not installed")
        super().__init__()
        self.setWindowTitle("Live Transcriber")
        self.resize(720, 480)

        self.status_label = QLabel("Loading transcription engine...")
        self.error_label = QLabel("")
        self.error_label.setStyleSheet("color: #FF6B6B;")
        self.error_label.setWordWrap(True)

        self.model_select = QComboBox()
        self.model_select.setEditable(True)
        self.model_select.addItems(list(MODEL_CHOICES))
        self.model_select.setCurrentText(model_id)

        self.mic_button = QPushButton("Start Microphone")
        self.system_button = QPushButton("Start System Audio")
        self.stop_button = QPushButton("Stop")
        self.clear_button = QPushButton("Clear")
        self.emergency_button = QPushButton("Emergency Stop")
        self.stop_button.setEnabled(False)

        self.filter_checkbox = QCheckBox("Filter non-speech")
        self.filter_checkbox.setChecked(filter_mode)
        self.mode_label = QLabel(MODE_FILTERED if filter_mode else MODE_RAW)

        self.text_area = QPlainTextEdit()
        self.text_area.setReadOnly(True)

        controls = QHBoxLayout()
        for widget in (
            self.model_select,
            self.mic_button,
            self.system_button,
            self.stop_button,
            self.clear_button,
            self.emergency_button,
        ):
            controls.addWidget(widget)

        mode_row = QHBoxLayout()
        mode_row.addWidget(self.filter_checkbox)
        mode_row.addStretch(1)
        mode_row.addWidget(self.mode_label)

        layout = QVBoxLayout()
        layout.addLayout(controls)
        layout.addLayout(mode_row)
        layout.addWidget(self.text_area, 1)
        layout.addWidget(self.status_label)
        layout.addWidget(self.error_label)
        self.setLayout(layout)

        self._error_timer: QTimer | None = None

    def set_snapshot(self, snapshot: TranscriptSnapshot) -> None:
        self.text_area.setPlainText(snapshot.display_text)
        self.mode_label.setText(MODE_FILTERED if snapshot.filter_mode else MODE_RAW)
        bar = self.text_area.verticalScrollBar()
        bar.setValue(bar.maximum())

    def set_status(self, text: str) -> None:
        self.status_label.setText(text)

    def set_recording(self, recording: bool) -> None:
        self.mic_button.setEnabled(not recording)
        self.system_button.setEnabled(not recording)
        self.stop_button.setEnabled(recording)

    def show_error(self, text: str, hide_after_ms: int = 8000) -> None:
        self._cancel_error_timer()
        self.error_label.setText(text)
        if QTimer is not None:
            self._error_timer = QTimer()
            self._error_timer.setSingleShot(True)
            self._error_timer.timeout.connect(self.clear_error)
            self._error_timer.start(hide_after_ms)

    def clear_error(self) -> None:
        self._cancel_error_timer()
        self.error_label.setText("")

    def _cancel_error_timer(self) -> None:
        if self._error_timer is not None:
            self._error_timer.stop()
            self._error_timer = None
