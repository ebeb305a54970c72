"""Timer abstraction that keeps all injector work on the main sequencing thread."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

from PyQt6.QtCore import QObject, Qt, QTimer, pyqtSignal

from css_injector.logging_utils import LOGGER_NAME

Task = Callable[[], None]

_LOGGER = logging.getLogger(LOGGER_NAME)


class TaskScheduler(Protocol):
    def call_later(self, delay_ms: int, callback: Task) -> None: ...

    def call_soon(self, callback: Task) -> None: ...


def run_task(callback: Task) -> None:
    """Run a scheduled task, logging instead of raising into the event loop."""

    try:
        callback()
    except Exception as exc:
        _LOGGER.error("Scheduled injector task failed: %s", exc, exc_info=exc)


class QtTaskScheduler(QObject):
    """``TaskScheduler`` backed by the Qt event loop of the GUI thread.

    ``call_soon`` and ``call_later`` may be called from any thread; callbacks
    always run on the thread that owns this object.
    """

    _posted = pyqtSignal(object, int)

    def __init__(self, parent: QObject | None = None) -> None:
        super().__init__(parent)
        self._owner_thread = threading.current_thread()
        self._posted.connect(self._schedule, Qt.ConnectionType.QueuedConnection)

    def call_soon(self, callback: Task) -> None:
        self._posted.emit(callback, 0)

    def call_later(self, delay_ms: int, callback: Task) -> None:
        delay = max(0, int(delay_ms))
        if threading.current_thread() is self._owner_thread:
            self._schedule(callback, delay)
            return
        self._posted.emit(callback, delay)

    def _schedule(self, callback: Task, delay_ms: int) -> None:
        QTimer.singleShot(delay_ms, lambda: run_task(callback))
