"""Game analysis controller for analyzing every position of a game."""

import threading
from dataclasses import dataclass
from typing import Callable, List, Optional

from PyQt6.QtCore import QObject, pyqtSignal

from plyscope.controllers.analysis_client_controller import AnalysisClientController
from plyscope.models.analysis_model import AnalysisResult
from plyscope.models.position_model import Position
from plyscope.services.analysis_errors import AnalysisCancelledError
from plyscope.services.logging_service import LoggingService
from plyscope.services.position_deriver_service import PositionDeriverService


ProgressCallback = Callable[[int, int, Position], None]


@dataclass(frozen=True)
class GameEvaluation:
    """Analysis of one position of a game."""
    position: Position
    result: AnalysisResult


class GameAnalysisController(QObject):
    """Controller for move-by-move analysis of a game record.

    Positions are analyzed one at a time, in ply order, through the analysis
    client. The run stops at the first failure.
    """

    # Signals
    analysis_started = pyqtSignal(int)  # total positions
    analysis_progress = pyqtSignal(int, int)  # completed, total
    analysis_completed = pyqtSignal()
    analysis_cancelled = pyqtSignal()

    def __init__(self, client: AnalysisClientController) -> None:
        """Initialize the game analysis controller.

        Args:
            client: Started AnalysisClientController used for every position.
        """
        super().__init__()
        self.client = client
        self._lock = threading.Lock()
        self._running = False
        self._cancelled = False

    @property
    def is_analyzing(self) -> bool:
        """Whether a game analysis run is in progress."""
        return self._running

    def analyze_game(self, game_record: str,
                     depth_limit: Optional[int] = None,
                     line_count: Optional[int] = None,
                     progress_callback: Optional[ProgressCallback] = None,
                     timeout_ms: Optional[int] = None) -> List[GameEvaluation]:
        """Analyze every position of a game record, starting position included.

        Blocks until the run completes.

        Args:
            game_record: PGN text of a single game.
            depth_limit: Search depth per position (default from config).
            line_count: Lines per position (default from config).
            progress_callback: Called with (completed, total, position) after each position.
            timeout_ms: Deadline per position in milliseconds (default from config).

        Returns:
            One GameEvaluation per position, in ply order.

        Raises:
            ParseError: If the game record is invalid.
            RuntimeError: If another run is already in progress.
            AnalysisCancelledError: If cancel() was called.
            AnalysisTimeoutError: If a position's deadline elapsed.
            EngineError: If the engine failed.
        """
        positions = PositionDeriverService.derive_positions(game_record)

        with self._lock:
            if self._running:
                raise RuntimeError("Game analysis is already running")
            self._running = True
            self._cancelled = False

        logging_service = LoggingService.get_instance()
        total = len(positions)
        logging_service.info(f"Game analysis started: {total} positions")
        self.analysis_started.emit(total)

        evaluations: List[GameEvaluation] = []
        try:
            for position in positions:
                if self._cancelled:
                    raise AnalysisCancelledError(0, "Game analysis cancelled")
                result = self.client.analyze(position, depth_limit, line_count, timeout_ms)
                evaluations.append(GameEvaluation(position, result))
                self.analysis_progress.emit(len(evaluations), total)
                if progress_callback is not None:
                    progress_callback(len(evaluations), total, position)
        except AnalysisCancelledError:
            logging_service.info(f"Game analysis cancelled after {len(evaluations)}/{total} positions")
            self.analysis_cancelled.emit()
            raise
        finally:
            with self._lock:
                self._running = False

        logging_service.info(f"Game analysis completed: {total} positions")
        self.analysis_completed.emit()
        return evaluations

    def cancel(self) -> None:
        """Cancel the running game analysis, including the position in progress."""
        with self._lock:
            if not self._running:
                return
            self._cancelled = True
        self.client.stop()
