"""Observable analysis state for display consumers."""

import threading
from typing import Optional, Tuple

from PyQt6.QtCore import QObject, pyqtSignal

from plyscope.models.analysis_model import AnalysisLine, AnalysisResult


class AnalysisStateModel(QObject):
    """Model representing the analysis client's observable state.

    This model holds readiness, busy state, the latest live line snapshot and
    the latest result, and emits signals when they change. Updates arrive
    from the engine reader thread; Qt delivers the signals to receivers in
    their own threads.
    """

    # Signals emitted when analysis state changes
    ready_changed = pyqtSignal(bool)  # engine ready
    busy_changed = pyqtSignal(bool)  # a request is active
    lines_updated = pyqtSignal(int, object)  # request_id, tuple of AnalysisLine sorted by rank
    result_ready = pyqtSignal(object)  # AnalysisResult
    error_occurred = pyqtSignal(int, str)  # request_id (0 if none), error message

    def __init__(self) -> None:
        """Initialize the analysis state model."""
        super().__init__()
        self._lock = threading.Lock()
        self._is_ready = False
        self._is_busy = False
        self._error: Optional[str] = None
        self._latest_request_id: Optional[int] = None
        self._latest_lines: Tuple[AnalysisLine, ...] = ()
        self._latest_result: Optional[AnalysisResult] = None

    @property
    def is_ready(self) -> bool:
        """Whether the engine session completed its handshake."""
        return self._is_ready

    @is_ready.setter
    def is_ready(self, value: bool) -> None:
        with self._lock:
            changed = self._is_ready != value
            self._is_ready = value
        if changed:
            self.ready_changed.emit(value)

    @property
    def is_busy(self) -> bool:
        """Whether a request is currently active."""
        return self._is_busy

    @is_busy.setter
    def is_busy(self, value: bool) -> None:
        with self._lock:
            changed = self._is_busy != value
            self._is_busy = value
        if changed:
            self.busy_changed.emit(value)

    @property
    def error(self) -> Optional[str]:
        """Message of the most recent failure, cleared by the next request."""
        return self._error

    @property
    def latest_request_id(self) -> Optional[int]:
        """Id of the request the latest snapshot belongs to."""
        return self._latest_request_id

    @property
    def latest_lines(self) -> Tuple[AnalysisLine, ...]:
        """Latest live snapshot of analysis lines."""
        return self._latest_lines

    @property
    def latest_result(self) -> Optional[AnalysisResult]:
        """Result of the most recently completed request."""
        return self._latest_result

    def begin_request(self, request_id: int) -> None:
        """Reset per-request state for a newly submitted request.

        Args:
            request_id: Id of the new request.
        """
        with self._lock:
            self._latest_request_id = request_id
            self._latest_lines = ()
            self._error = None
        self.is_busy = True

    def update_lines(self, request_id: int, lines: Tuple[AnalysisLine, ...]) -> None:
        """Store a live snapshot.

        Args:
            request_id: Request the snapshot belongs to.
            lines: Lines sorted by rank.
        """
        with self._lock:
            if self._latest_request_id is not None and request_id < self._latest_request_id:
                return
            self._latest_request_id = request_id
            self._latest_lines = lines
        self.lines_updated.emit(request_id, lines)

    def set_result(self, result: AnalysisResult) -> None:
        """Store a completed result.

        Args:
            result: Terminal result.
        """
        with self._lock:
            self._latest_result = result
            self._latest_lines = result.lines
        self.result_ready.emit(result)

    def set_error(self, request_id: int, message: str) -> None:
        """Record a failure for display.

        Args:
            request_id: Request that failed (0 for session-level failures).
            message: Error message.
        """
        with self._lock:
            self._error = message
        self.error_occurred.emit(request_id, message)

    def reset(self) -> None:
        """Reset to the initial state (engine readiness is kept)."""
        with self._lock:
            self._error = None
            self._latest_request_id = None
            self._latest_lines = ()
            self._latest_result = None
        self.is_busy = False
