"""Line channel to a UCI engine process.

This module provides the transport the engine session talks through: an
abstract bidirectional line channel and its implementation on top of a
spawned engine executable. Protocol knowledge (handshake, search commands,
parsing) lives in the session and the parser, not here.
"""

import queue
import subprocess
import sys
import threading
from pathlib import Path
from typing import Optional, Sequence, Union

from plyscope.services.analysis_errors import EngineError, EngineUnavailableError
from plyscope.services.logging_service import LoggingService


class EngineChannel:
    """Bidirectional line-oriented channel to an engine.

    Implementations must allow read_line() to be called from one thread while
    write_line() is called from another.
    """

    def open(self) -> None:
        """Open the channel.

        Raises:
            EngineUnavailableError: If the channel cannot be opened.
        """
        raise NotImplementedError

    def write_line(self, line: str) -> None:
        """Write one line (without newline) to the engine.

        Raises:
            EngineError: If the channel is closed or the write fails.
        """
        raise NotImplementedError

    def read_line(self, timeout: float) -> Optional[str]:
        """Read one line from the engine.

        Args:
            timeout: Maximum time to wait in seconds.

        Returns:
            Stripped line, or None if no line arrived within the timeout or the channel is closed.
        """
        raise NotImplementedError

    def is_alive(self) -> bool:
        """Check whether the channel can still deliver output."""
        raise NotImplementedError

    def close(self) -> None:
        """Release the channel. Safe to call multiple times."""
        raise NotImplementedError


class SubprocessEngineChannel(EngineChannel):
    """Engine channel backed by a spawned UCI engine executable.

    A daemon pump thread reads stdout in binary mode and hands complete lines
    to a queue, so read_line() honours its timeout on every platform.
    """

    def __init__(self, engine_command: Union[str, Path, Sequence[str]],
                 identifier: Optional[str] = None,
                 shutdown_timeout: float = 2.0) -> None:
        """Initialize the channel.

        Args:
            engine_command: Path to the engine executable, or an argument list.
            identifier: Optional identifier used in log messages.
            shutdown_timeout: Seconds to wait for the process to exit before killing it.
        """
        if isinstance(engine_command, (str, Path)):
            self.command = [str(engine_command)]
        else:
            self.command = [str(part) for part in engine_command]
        self.identifier = identifier
        self.shutdown_timeout = shutdown_timeout
        self.process: Optional[subprocess.Popen] = None
        self._lines: "queue.Queue[Optional[str]]" = queue.Queue()
        self._eof = False
        self._write_lock = threading.Lock()
        self._pump_thread: Optional[threading.Thread] = None

    def _label(self) -> str:
        identifier_str = f" [{self.identifier}]" if self.identifier else ""
        pid_str = f", PID={self.process.pid}" if self.process else ""
        return f"{identifier_str}: command={' '.join(self.command)}{pid_str}"

    def open(self) -> None:
        """Spawn the engine process.

        Raises:
            EngineUnavailableError: If the process cannot be spawned.
        """
        if self.process is not None:
            return
        popen_kwargs = {
            'stdin': subprocess.PIPE,
            'stdout': subprocess.PIPE,
            'stderr': subprocess.DEVNULL,
            'bufsize': 0,
        }
        if sys.platform == 'win32':
            popen_kwargs['creationflags'] = subprocess.CREATE_NO_WINDOW
        try:
            self.process = subprocess.Popen(self.command, **popen_kwargs)
        except OSError as e:
            raise EngineUnavailableError(f"Failed to spawn engine process {self.command[0]}: {e}") from e

        self._eof = False
        self._lines = queue.Queue()
        self._pump_thread = threading.Thread(
            target=self._pump_stdout,
            args=(self.process, self._lines),
            name=f"engine-stdout-{self.process.pid}",
            daemon=True,
        )
        self._pump_thread.start()
        LoggingService.get_instance().info(f"Engine process spawned{self._label()}")

    @staticmethod
    def _pump_stdout(process: subprocess.Popen, lines: "queue.Queue[Optional[str]]") -> None:
        try:
            for raw in iter(process.stdout.readline, b''):
                line = raw.decode('utf-8', errors='replace').rstrip('\r\n').strip()
                if line:
                    lines.put(line)
        except (OSError, ValueError):
            # stdout closed underneath us during cleanup
            pass
        finally:
            lines.put(None)

    def write_line(self, line: str) -> None:
        """Write one command line to the engine's stdin.

        Raises:
            EngineError: If the process is not running or the pipe is broken.
        """
        with self._write_lock:
            if not self.process or self.process.poll() is not None:
                raise EngineError(f"Cannot send '{line}': engine process not running")
            try:
                self.process.stdin.write(f"{line}\n".encode('utf-8'))
                self.process.stdin.flush()
            except (OSError, ValueError) as e:
                raise EngineError(f"Error sending '{line}' to engine: {e}") from e

    def read_line(self, timeout: float) -> Optional[str]:
        """Read one line of engine output.

        Args:
            timeout: Maximum time to wait in seconds.

        Returns:
            Line string or None on timeout or end of output.
        """
        if self._eof:
            return None
        try:
            line = self._lines.get(timeout=timeout)
        except queue.Empty:
            return None
        if line is None:
            self._eof = True
        return line

    def is_alive(self) -> bool:
        """Check if the engine process is running and its output is open."""
        if self.process is None or self._eof:
            return False
        return self.process.poll() is None

    def close(self) -> None:
        """Terminate the engine process and close its pipes.

        Safe to call multiple times - will only clean up once. Callers that
        want a graceful exit send 'quit' before closing.
        """
        if self.process is None:
            return
        process = self.process
        label = self._label()

        try:
            process.wait(timeout=self.shutdown_timeout)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()
            LoggingService.get_instance().warning(f"Engine process killed after timeout{label}")

        for pipe in (process.stdin, process.stdout):
            try:
                if pipe:
                    pipe.close()
            except OSError:
                pass

        self.process = None
        self._eof = True
        LoggingService.get_instance().info(f"Engine process cleaned up{label}")
