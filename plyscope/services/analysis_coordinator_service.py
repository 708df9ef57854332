"""Analysis coordinator: turns analysis requests into engine searches.

State machine per request:

    IDLE -> REQUESTED -> STREAMING -> COMPLETED | CANCELLED | TIMED_OUT | FAILED

Only one request is active at a time. A new request supersedes the active
one, which is rejected with AnalysisCancelledError. Engine output carries no
request identifier, so output is attributed to whatever request is active
when it arrives. Every 'stop' is followed by 'isready': output printed
before the matching 'readyok' belongs to a search that was stopped and is
discarded, whether or not that search ever answers with 'bestmove'.
"""

import itertools
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from plyscope.models.analysis_model import (
    AnalysisLine,
    AnalysisRequest,
    AnalysisResult,
    AnalysisState,
)
from plyscope.services.analysis_errors import (
    AnalysisCancelledError,
    AnalysisTimeoutError,
    EngineError,
)
from plyscope.services.engine_session_service import EngineSession, format_setoption
from plyscope.services.logging_service import LoggingService
from plyscope.services.uci_protocol_parser import (
    BestMoveEvent,
    HandshakeEvent,
    InfoEvent,
    ProtocolEvent,
)


DEFAULT_TIMEOUT_MS = 60000

LinesListener = Callable[[int, Tuple[AnalysisLine, ...]], None]
StateListener = Callable[[int, AnalysisState], None]
TimerFactory = Callable[[float, Callable[[], None]], threading.Timer]


@dataclass
class _ActiveAnalysis:
    """Bookkeeping for the request currently owned by the coordinator."""
    request: AnalysisRequest
    future: Future
    state: AnalysisState = AnalysisState.REQUESTED
    lines: Dict[int, AnalysisLine] = field(default_factory=dict)
    timer: Optional[threading.Timer] = None


def build_search_commands(request: AnalysisRequest) -> List[str]:
    """Build the command batch that starts a search for a request.

    Args:
        request: Request to search.

    Returns:
        Commands in the order they must be sent.
    """
    if request.line_count > 1:
        go_command = f"go multipv {request.line_count} depth {request.depth_limit}"
    else:
        go_command = f"go depth {request.depth_limit}"
    return [
        "stop",
        "isready",
        format_setoption("MultiPV", request.line_count),
        f"position fen {request.board_state}",
        go_command,
    ]


class AnalysisCoordinator:
    """Coordinates analysis requests against one engine session.

    submit() returns a Future that resolves with an AnalysisResult or fails
    with AnalysisCancelledError, AnalysisTimeoutError or EngineError. Live
    updates are delivered to lines listeners while the request streams.
    """

    def __init__(self, session: EngineSession,
                 default_timeout_ms: int = DEFAULT_TIMEOUT_MS,
                 timer_factory: TimerFactory = threading.Timer) -> None:
        """Initialize the coordinator and attach it to the session.

        Args:
            session: Engine session. The coordinator becomes its event listener.
            default_timeout_ms: Deadline applied when submit() gets no timeout.
            timer_factory: Factory creating deadline timers (threading.Timer signature).
        """
        self.session = session
        self.default_timeout_ms = default_timeout_ms
        self._timer_factory = timer_factory

        # Lock order: _command_lock -> session send lock -> _state_lock
        self._command_lock = threading.RLock()
        self._state_lock = threading.RLock()
        self._request_ids = itertools.count(1)
        self._active: Optional[_ActiveAnalysis] = None
        self._last_outcome: Optional[AnalysisState] = None
        # isready commands sent after a stop whose readyok has not arrived yet
        self._pending_syncs = 0

        self._lines_listeners: List[LinesListener] = []
        self._state_listeners: List[StateListener] = []

        session.set_event_listener(self.handle_event)
        session.set_channel_error_listener(self.handle_channel_error)

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------

    def add_lines_listener(self, listener: LinesListener) -> None:
        """Register a receiver of live line snapshots (request_id, lines sorted by rank)."""
        self._lines_listeners.append(listener)

    def add_state_listener(self, listener: StateListener) -> None:
        """Register a receiver of state transitions (request_id, new state)."""
        self._state_listeners.append(listener)

    @property
    def state(self) -> AnalysisState:
        """Current state: REQUESTED/STREAMING while a request is active, IDLE otherwise."""
        with self._state_lock:
            if self._active is None:
                return AnalysisState.IDLE
            return self._active.state

    @property
    def last_outcome(self) -> Optional[AnalysisState]:
        """Terminal state of the most recently finished request."""
        return self._last_outcome

    @property
    def active_request_id(self) -> Optional[int]:
        """Id of the active request, or None when idle."""
        with self._state_lock:
            return self._active.request.request_id if self._active else None

    def current_lines(self) -> Tuple[AnalysisLine, ...]:
        """Snapshot of the active request's lines sorted by rank."""
        with self._state_lock:
            if self._active is None:
                return ()
            return _sorted_lines(self._active.lines)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def submit(self, board_state: str, depth_limit: int, line_count: int = 1,
               timeout_ms: Optional[int] = None) -> Tuple[AnalysisRequest, Future]:
        """Start analysing a position, superseding any active request.

        Args:
            board_state: FEN of the position.
            depth_limit: Search depth (positive).
            line_count: Number of principal variations (positive).
            timeout_ms: Deadline in milliseconds (default: default_timeout_ms).

        Returns:
            Tuple of (request, future resolving to AnalysisResult).

        Raises:
            ValueError: If depth_limit, line_count or timeout_ms is not positive.
        """
        if depth_limit < 1:
            raise ValueError(f"depth_limit must be positive, got {depth_limit}")
        if line_count < 1:
            raise ValueError(f"line_count must be positive, got {line_count}")
        timeout_ms = self.default_timeout_ms if timeout_ms is None else timeout_ms
        if timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")

        logging_service = LoggingService.get_instance()
        with self._command_lock:
            with self._state_lock:
                superseded = self._detach(AnalysisState.CANCELLED)
                request = AnalysisRequest(
                    board_state=board_state,
                    depth_limit=depth_limit,
                    line_count=line_count,
                    request_id=next(self._request_ids),
                    deadline=time.monotonic() + timeout_ms / 1000.0,
                    timeout_ms=timeout_ms,
                )
                record = _ActiveAnalysis(request=request, future=Future())
                record.future.set_running_or_notify_cancel()
                # Counted before the batch is written: a fast engine may answer before send() returns
                self._pending_syncs += 1
                self._active = record
                record.timer = self._timer_factory(timeout_ms / 1000.0, lambda: self._on_deadline(record))
                record.timer.daemon = True
                record.timer.start()

            if superseded is not None:
                self._finish(superseded, AnalysisState.CANCELLED, error=AnalysisCancelledError(
                    superseded.request.request_id, f"Superseded by request {request.request_id}"))
            self._notify_state(request.request_id, AnalysisState.REQUESTED)
            logging_service.debug(
                f"Analysis request {request.request_id} submitted: depth={depth_limit}, "
                f"lines={line_count}, fen={board_state}")

            try:
                flushed = self.session.send(build_search_commands(request))
            except EngineError as e:
                with self._state_lock:
                    self._pending_syncs = 0
                self._fail_if_active(record, e)
                return request, record.future

            promoted = False
            if flushed:
                with self._state_lock:
                    if self._active is record and record.state == AnalysisState.REQUESTED:
                        record.state = AnalysisState.STREAMING
                        promoted = True
            if promoted:
                self._notify_state(request.request_id, AnalysisState.STREAMING)

        return request, record.future

    def stop(self) -> bool:
        """Cancel the active request, if any.

        Returns:
            True if a request was cancelled, False if the coordinator was idle.
        """
        with self._command_lock:
            with self._state_lock:
                record = self._detach(AnalysisState.CANCELLED)
            if record is None:
                return False
            self._send_stop()
            self._finish(record, AnalysisState.CANCELLED, error=AnalysisCancelledError(
                record.request.request_id, "Analysis stopped"))
        return True

    # ------------------------------------------------------------------
    # Engine events (called from the session reader thread, in arrival order)
    # ------------------------------------------------------------------

    def handle_event(self, event: ProtocolEvent) -> None:
        """Process one parsed engine event."""
        if isinstance(event, InfoEvent):
            self._on_info(event)
        elif isinstance(event, BestMoveEvent):
            self._on_bestmove(event)
        elif isinstance(event, HandshakeEvent) and event.tag == "readyok":
            with self._state_lock:
                self._pending_syncs = max(0, self._pending_syncs - 1)

    def handle_channel_error(self, error: Exception) -> None:
        """Fail the active request because the engine channel broke."""
        with self._state_lock:
            self._pending_syncs = 0
            record = self._detach(AnalysisState.FAILED)
        if record is None:
            return
        if not isinstance(error, EngineError):
            wrapped = EngineError(str(error))
            wrapped.__cause__ = error
            error = wrapped
        self._finish(record, AnalysisState.FAILED, error=error)

    def _on_info(self, event: InfoEvent) -> None:
        with self._state_lock:
            record = self._active
            if self._pending_syncs > 0 or record is None:
                return
            info = event.info
            # Last one wins for a rank, regardless of depth
            record.lines[info.line_rank] = AnalysisLine.from_info(info)
            promoted = record.state == AnalysisState.REQUESTED
            record.state = AnalysisState.STREAMING
            snapshot = _sorted_lines(record.lines)
            request_id = record.request.request_id

        # Listeners may call submit() or stop(), so they run without the state lock
        if promoted:
            self._notify_state(request_id, AnalysisState.STREAMING)
        if self._active is not record:
            return
        for listener in list(self._lines_listeners):
            try:
                listener(request_id, snapshot)
            except Exception as e:
                LoggingService.get_instance().error(f"Analysis lines listener failed: {e}", exc_info=e)

    def _on_bestmove(self, event: BestMoveEvent) -> None:
        with self._state_lock:
            if self._pending_syncs > 0:
                LoggingService.get_instance().debug(f"Discarding bestmove {event.move} of a stopped search")
                return
            if self._active is None:
                LoggingService.get_instance().debug(f"Discarding bestmove {event.move} with no active request")
                return
            record = self._detach(AnalysisState.COMPLETED)
            lines = _sorted_lines(record.lines)
            best_move = event.move
            rank_one = record.lines.get(1)
            if rank_one is not None and rank_one.top_move is not None:
                best_move = rank_one.top_move
            result = AnalysisResult(
                best_move=best_move,
                lines=lines,
                depth=max((line.depth_reached for line in lines), default=0),
                request_id=record.request.request_id,
                board_state=record.request.board_state,
                ponder_move=event.ponder,
            )
        self._finish(record, AnalysisState.COMPLETED, result=result)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _on_deadline(self, record: _ActiveAnalysis) -> None:
        with self._command_lock:
            with self._state_lock:
                if self._active is not record:
                    return
                self._detach(AnalysisState.TIMED_OUT)
            LoggingService.get_instance().warning(
                f"Analysis request {record.request.request_id} timed out after {record.request.timeout_ms} ms")
            self._send_stop()
            self._finish(record, AnalysisState.TIMED_OUT, error=AnalysisTimeoutError(
                record.request.request_id, record.request.timeout_ms))

    def _detach(self, state: AnalysisState) -> Optional[_ActiveAnalysis]:
        """Make the active request terminal and stop attributing output to it.

        Must be called with _state_lock held.
        """
        record = self._active
        if record is None:
            return None
        self._active = None
        record.state = state
        if record.timer is not None:
            record.timer.cancel()
        self._last_outcome = state
        return record

    def _finish(self, record: _ActiveAnalysis, state: AnalysisState,
                result: Optional[AnalysisResult] = None,
                error: Optional[Exception] = None) -> None:
        request_id = record.request.request_id
        logging_service = LoggingService.get_instance()
        if error is not None:
            if state == AnalysisState.FAILED:
                logging_service.error(f"Analysis request {request_id} failed: {error}")
            else:
                logging_service.debug(f"Analysis request {request_id} {state.value}: {error}")
            record.future.set_exception(error)
        else:
            logging_service.debug(
                f"Analysis request {request_id} completed: bestmove={result.best_move}, depth={result.depth}")
            record.future.set_result(result)
        self._notify_state(request_id, state)

    def _fail_if_active(self, record: _ActiveAnalysis, error: EngineError) -> None:
        with self._state_lock:
            if self._active is not record:
                return
            self._detach(AnalysisState.FAILED)
        self._finish(record, AnalysisState.FAILED, error=error)

    def _send_stop(self) -> None:
        """Stop the engine's search. Must be called with _command_lock held."""
        with self._state_lock:
            self._pending_syncs += 1
        try:
            self.session.send(["stop", "isready"])
        except EngineError as e:
            with self._state_lock:
                self._pending_syncs = 0
            LoggingService.get_instance().debug(f"Could not send stop to engine: {e}")

    def _notify_state(self, request_id: int, state: AnalysisState) -> None:
        for listener in list(self._state_listeners):
            try:
                listener(request_id, state)
            except Exception as e:
                LoggingService.get_instance().error(f"Analysis state listener failed: {e}", exc_info=e)


def _sorted_lines(lines: Dict[int, AnalysisLine]) -> Tuple[AnalysisLine, ...]:
    return tuple(lines[rank] for rank in sorted(lines))
