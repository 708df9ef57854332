"""Analysis client controller: the caller-facing analysis facade."""

from concurrent.futures import Future
from typing import Any, Callable, Dict, List, Optional, Tuple

import chess

from plyscope.models.analysis_model import AnalysisLine, AnalysisResult, AnalysisState
from plyscope.models.analysis_state_model import AnalysisStateModel
from plyscope.models.position_model import Position
from plyscope.services.analysis_coordinator_service import DEFAULT_TIMEOUT_MS, AnalysisCoordinator
from plyscope.services.analysis_errors import AnalysisCancelledError, ParseError
from plyscope.services.engine_session_service import EngineSession
from plyscope.services.logging_service import LoggingService
from plyscope.services.position_deriver_service import PositionDeriverService
from plyscope.services.uci_communication_service import EngineChannel, SubprocessEngineChannel


UpdateListener = Callable[[int, Tuple[AnalysisLine, ...]], None]


class AnalysisClientController:
    """Controller exposing position analysis to callers.

    This controller owns one engine session and its analysis coordinator,
    applies the configured defaults to requests, and mirrors coordinator
    events into an AnalysisStateModel for Qt consumers. Callers without an
    event loop can register plain update listeners instead.
    """

    def __init__(self, config: Dict[str, Any], channel: Optional[EngineChannel] = None) -> None:
        """Initialize the analysis client controller.

        Args:
            config: Configuration dictionary.
            channel: Engine channel to use. Defaults to a subprocess channel
                running the configured engine executable.
        """
        self.config = config
        engine_config = config.get("engine", {})
        analysis_config = config.get("analysis", {})

        self.default_depth = analysis_config.get("default_depth", 15)
        self.default_lines = analysis_config.get("default_lines", 1)
        self.max_lines = analysis_config.get("max_lines", 5)
        self.timeout_ms = analysis_config.get("timeout_ms", DEFAULT_TIMEOUT_MS)

        identifier = engine_config.get("identifier")
        if channel is None:
            channel = SubprocessEngineChannel(
                engine_config["path"],
                identifier=identifier,
                shutdown_timeout=engine_config.get("shutdown_timeout_s", 2.0),
            )

        self.session = EngineSession(
            channel,
            identifier=identifier,
            handshake_timeout=engine_config.get("handshake_timeout_s", 5.0),
            read_poll_interval=engine_config.get("read_poll_s", 0.05),
            engine_options=engine_config.get("options", {}),
            trace_io=engine_config.get("trace_io", False),
        )
        self.coordinator = AnalysisCoordinator(self.session, default_timeout_ms=self.timeout_ms)

        # Initialize analysis model
        self.analysis_model = AnalysisStateModel()

        self._update_listeners: List[UpdateListener] = []
        self.coordinator.add_lines_listener(self._on_lines)
        self.coordinator.add_state_listener(self._on_state)
        self.session.add_diagnostic_listener(self._on_diagnostic)

    def get_analysis_model(self) -> AnalysisStateModel:
        """Get the analysis model.

        Returns:
            The AnalysisStateModel instance for observing analysis state.
        """
        return self.analysis_model

    @property
    def is_ready(self) -> bool:
        """Whether the engine session is ready for requests."""
        return self.session.is_ready

    def add_update_listener(self, listener: UpdateListener) -> None:
        """Register a receiver of live line snapshots.

        Args:
            listener: Called with (request_id, lines sorted by rank) from the engine reader thread.
        """
        self._update_listeners.append(listener)

    def latest_lines(self) -> Tuple[AnalysisLine, ...]:
        """Get the latest live snapshot of the active or last request."""
        return self.analysis_model.latest_lines

    def start(self) -> None:
        """Start the engine and complete the handshake.

        Raises:
            EngineUnavailableError: If the engine cannot be started.
        """
        self.session.initialize()
        self.analysis_model.is_ready = True

    def analyze_async(self, position: Position,
                      depth_limit: Optional[int] = None,
                      line_count: Optional[int] = None,
                      timeout_ms: Optional[int] = None) -> Future:
        """Submit a position for analysis without waiting for the result.

        Any active request is superseded.

        Args:
            position: Position to analyze.
            depth_limit: Search depth (default from config).
            line_count: Number of lines (default from config, clamped to max_lines).
            timeout_ms: Deadline in milliseconds (default from config).

        Returns:
            Future resolving to an AnalysisResult.

        Raises:
            ValueError: If depth_limit, line_count or timeout_ms is not positive.
        """
        depth_limit = self.default_depth if depth_limit is None else depth_limit
        line_count = self.default_lines if line_count is None else line_count
        if line_count > self.max_lines:
            LoggingService.get_instance().debug(
                f"Requested {line_count} lines, clamping to {self.max_lines}")
            line_count = self.max_lines

        request, future = self.coordinator.submit(
            position.board_state, depth_limit, line_count, timeout_ms)
        future.add_done_callback(lambda done: self._on_done(request.request_id, done))
        return future

    def analyze(self, position: Position,
                depth_limit: Optional[int] = None,
                line_count: Optional[int] = None,
                timeout_ms: Optional[int] = None) -> AnalysisResult:
        """Analyze a position and wait for the result.

        Args:
            position: Position to analyze.
            depth_limit: Search depth (default from config).
            line_count: Number of lines (default from config, clamped to max_lines).
            timeout_ms: Deadline in milliseconds (default from config).

        Returns:
            Final AnalysisResult.

        Raises:
            AnalysisCancelledError: If the request is superseded or stopped.
            AnalysisTimeoutError: If the deadline elapses first.
            EngineError: If the engine channel fails.
        """
        return self.analyze_async(position, depth_limit, line_count, timeout_ms).result()

    def analyze_fen(self, fen: str,
                    depth_limit: Optional[int] = None,
                    line_count: Optional[int] = None,
                    timeout_ms: Optional[int] = None) -> AnalysisResult:
        """Analyze a position given as FEN.

        Raises:
            ParseError: If the FEN is not a valid position.
        """
        fen = (fen or "").strip()
        try:
            chess.Board(fen)
        except ValueError as e:
            raise ParseError(f"Invalid FEN '{fen}': {e}", token=fen) from e
        return self.analyze(Position(0, fen), depth_limit, line_count, timeout_ms)

    def analyze_game_record(self, game_record: str,
                            depth_limit: Optional[int] = None,
                            line_count: Optional[int] = None,
                            timeout_ms: Optional[int] = None) -> AnalysisResult:
        """Analyze the final position of a game record.

        Raises:
            ParseError: If the game record contains an illegal move.
        """
        position = PositionDeriverService.derive_final_position(game_record)
        return self.analyze(position, depth_limit, line_count, timeout_ms)

    def stop(self) -> bool:
        """Cancel the active request, if any.

        Returns:
            True if a request was cancelled.
        """
        return self.coordinator.stop()

    def shutdown(self) -> None:
        """Cancel any active request and shut the engine down."""
        self.coordinator.stop()
        self.session.shutdown()
        self.analysis_model.reset()
        self.analysis_model.is_ready = False

    def _on_lines(self, request_id: int, lines: Tuple[AnalysisLine, ...]) -> None:
        self.analysis_model.update_lines(request_id, lines)
        for listener in list(self._update_listeners):
            listener(request_id, lines)

    def _on_state(self, request_id: int, state: AnalysisState) -> None:
        if state == AnalysisState.REQUESTED:
            self.analysis_model.begin_request(request_id)
        elif state.is_terminal:
            # A superseded request finishes after its successor became active
            self.analysis_model.is_busy = self.coordinator.active_request_id is not None
            if state == AnalysisState.FAILED:
                self.analysis_model.is_ready = self.session.is_ready

    def _on_done(self, request_id: int, future: Future) -> None:
        error = future.exception()
        if error is None:
            self.analysis_model.set_result(future.result())
        elif not isinstance(error, AnalysisCancelledError):
            self.analysis_model.set_error(request_id, str(error))

    def _on_diagnostic(self, line: str) -> None:
        LoggingService.get_instance().debug(f"[UCI DIAG] {line}")
