"""Engine session owning the lifecycle of one UCI engine channel."""

import threading
from typing import Any, Callable, Dict, List, Optional, Sequence

from plyscope.services.analysis_errors import EngineError, EngineUnavailableError
from plyscope.services.logging_service import LoggingService
from plyscope.services.uci_communication_service import EngineChannel
from plyscope.services.uci_protocol_parser import (
    HandshakeEvent,
    ProtocolEvent,
    UnrecognizedEvent,
    parse_line,
)


EventListener = Callable[[ProtocolEvent], None]
ChannelErrorListener = Callable[[Exception], None]
DiagnosticListener = Callable[[str], None]


class EngineSession:
    """Session with a single UCI engine.

    The session performs the two-phase handshake (uci/uciok, isready/readyok),
    tracks readiness, serializes command batches and forwards every line the
    engine prints, parsed, to its event listener. It holds no analysis state.

    Lifecycle: created uninitialized -> initialize() -> ready until shutdown().
    Commands sent before the session is ready are queued and flushed in order
    once readiness is reached. A channel failure is fatal for the running
    engine: send() raises EngineError until initialize() starts a new one.
    """

    def __init__(self, channel: EngineChannel,
                 identifier: Optional[str] = None,
                 handshake_timeout: float = 5.0,
                 read_poll_interval: float = 0.05,
                 engine_options: Optional[Dict[str, Any]] = None,
                 trace_io: bool = False) -> None:
        """Initialize the session.

        Args:
            channel: Unopened engine channel. The session takes ownership of it.
            identifier: Optional identifier used in log messages.
            handshake_timeout: Seconds to wait for each handshake acknowledgement.
            read_poll_interval: Seconds the reader thread blocks per read attempt.
            engine_options: UCI options sent between 'uciok' and 'isready' (e.g. {"Hash": 64}).
            trace_io: If True, log every command sent and line received at DEBUG level.
        """
        self._channel = channel
        self.identifier = identifier
        self.handshake_timeout = handshake_timeout
        self.read_poll_interval = read_poll_interval
        self.engine_options = dict(engine_options or {})
        self.trace_io = trace_io

        self._ready = False
        self._pending_commands: List[str] = []
        self._send_lock = threading.RLock()
        self._uciok_event = threading.Event()
        self._readyok_event = threading.Event()
        self._stop_event = threading.Event()
        self._reader_thread: Optional[threading.Thread] = None
        self._opened = False
        self._shut_down = False
        self._failure: Optional[EngineError] = None

        self._event_listener: Optional[EventListener] = None
        self._channel_error_listener: Optional[ChannelErrorListener] = None
        self._diagnostic_listeners: List[DiagnosticListener] = []

    @property
    def is_ready(self) -> bool:
        """True once both handshake acknowledgements have been received."""
        return self._ready

    @property
    def pending_commands(self) -> List[str]:
        """Copy of the commands queued until readiness."""
        with self._send_lock:
            return list(self._pending_commands)

    def set_event_listener(self, listener: Optional[EventListener]) -> None:
        """Set the receiver of parsed engine events (the analysis coordinator)."""
        self._event_listener = listener

    def set_channel_error_listener(self, listener: Optional[ChannelErrorListener]) -> None:
        """Set the receiver of channel failures detected by the reader thread."""
        self._channel_error_listener = listener

    def add_diagnostic_listener(self, listener: DiagnosticListener) -> None:
        """Register a receiver for raw lines that carry no analysis information."""
        self._diagnostic_listeners.append(listener)

    def initialize(self) -> None:
        """Open the channel and perform the handshake.

        Blocks until both 'uciok' and 'readyok' are observed.

        Raises:
            EngineUnavailableError: If the channel cannot be opened or the engine
                does not acknowledge the handshake in time.
        """
        if self._ready:
            return
        logging_service = LoggingService.get_instance()
        if self._failure is not None:
            # Release the broken channel before starting a new engine
            self.shutdown()

        self._uciok_event.clear()
        self._readyok_event.clear()
        self._stop_event.clear()
        self._shut_down = False
        self._failure = None

        self._channel.open()
        self._opened = True
        self._reader_thread = threading.Thread(
            target=self._read_loop,
            name=f"engine-session-{self.identifier or id(self)}",
            daemon=True,
        )
        self._reader_thread.start()

        try:
            self._write("uci")
            if not self._uciok_event.wait(self.handshake_timeout):
                raise EngineUnavailableError(
                    f"Engine did not respond with uciok within {self.handshake_timeout}s")

            for option_name, option_value in self.engine_options.items():
                self._write(format_setoption(option_name, option_value))

            self._write("isready")
            if not self._readyok_event.wait(self.handshake_timeout):
                raise EngineUnavailableError(
                    f"Engine did not respond with readyok within {self.handshake_timeout}s")
        except (EngineError, EngineUnavailableError) as e:
            logging_service.error(f"Engine handshake failed{self._label()}: {e}")
            self.shutdown()
            if isinstance(e, EngineUnavailableError):
                raise
            raise EngineUnavailableError(str(e)) from e

        logging_service.info(f"UCI initialized{self._label()}")
        self._mark_ready()

    def send(self, commands: Sequence[str]) -> bool:
        """Send a batch of commands in order.

        The whole batch is written under one lock, so batches issued from
        different threads are never interleaved.

        Args:
            commands: Commands without trailing newlines.

        Returns:
            True if the batch was written, False if it was queued because the
            session is not ready yet.

        Raises:
            EngineError: If the session was shut down, its channel failed or
                writing fails.
        """
        with self._send_lock:
            if self._shut_down:
                raise EngineError("Engine session has been shut down")
            if self._failure is not None:
                raise EngineError(f"Engine session failed: {self._failure}")
            if not self._ready:
                self._pending_commands.extend(commands)
                return False
            for command in commands:
                self._write(command)
            return True

    def shutdown(self) -> None:
        """Send 'quit' and release the channel. Idempotent."""
        with self._send_lock:
            if self._shut_down:
                return
            self._shut_down = True
            was_opened = self._opened
            self._ready = False
            self._opened = False
            self._pending_commands.clear()
            self._stop_event.set()

            if was_opened:
                try:
                    self._write("quit")
                except EngineError:
                    # Already gone; closing below still releases it
                    pass

        if was_opened:
            self._channel.close()
        reader = self._reader_thread
        if reader is not None and reader is not threading.current_thread():
            reader.join(timeout=max(1.0, self.read_poll_interval * 4))
        self._reader_thread = None
        if was_opened:
            LoggingService.get_instance().info(f"Engine session shut down{self._label()}")

    def _label(self) -> str:
        return f" [{self.identifier}]" if self.identifier else ""

    def _write(self, command: str) -> None:
        if self.trace_io:
            LoggingService.get_instance().debug(f"[UCI SEND]{self._label()} {command}")
        self._channel.write_line(command)

    def _mark_ready(self) -> None:
        with self._send_lock:
            if self._ready or self._shut_down:
                return
            self._ready = True
            pending = self._pending_commands
            self._pending_commands = []
            try:
                for command in pending:
                    self._write(command)
            except EngineError as e:
                self._report_channel_error(e)

    def _read_loop(self) -> None:
        """Reader thread: parse every line and forward it in arrival order."""
        logging_service = LoggingService.get_instance()
        while not self._stop_event.is_set():
            try:
                line = self._channel.read_line(timeout=self.read_poll_interval)
            except Exception as e:
                if not self._stop_event.is_set():
                    self._report_channel_error(EngineError(f"Error reading from engine: {e}"))
                return

            if line is None:
                if self._stop_event.is_set():
                    return
                if not self._channel.is_alive():
                    self._report_channel_error(EngineError("Engine process terminated unexpectedly"))
                    return
                continue

            if self.trace_io:
                logging_service.debug(f"[UCI RECV]{self._label()} {line}")
            self._dispatch(parse_line(line))

    def _dispatch(self, event: ProtocolEvent) -> None:
        if isinstance(event, HandshakeEvent):
            if event.tag == "uciok":
                self._uciok_event.set()
            elif event.tag == "readyok":
                self._readyok_event.set()
        elif isinstance(event, UnrecognizedEvent):
            for listener in list(self._diagnostic_listeners):
                listener(event.raw)

        listener = self._event_listener
        if listener is not None:
            try:
                listener(event)
            except Exception as e:
                LoggingService.get_instance().error(
                    f"Engine event listener failed{self._label()}: {e}", exc_info=e)

    def _report_channel_error(self, error: EngineError) -> None:
        LoggingService.get_instance().error(f"Engine channel failure{self._label()}: {error}")
        with self._send_lock:
            self._ready = False
            self._failure = error
            self._pending_commands.clear()
        listener = self._channel_error_listener
        if listener is not None:
            listener(error)


def format_setoption(name: str, value: Any) -> str:
    """Build a 'setoption' command.

    Args:
        name: Option name (e.g., "Threads", "MultiPV").
        value: Option value. Booleans are sent as 'true'/'false'.

    Returns:
        Command string.
    """
    if isinstance(value, bool):
        value = "true" if value else "false"
    return f"setoption name {name} value {value}"
