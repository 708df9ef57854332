"""Logging service for centralized application logging."""

import sys
import threading
import logging
import logging.handlers
from pathlib import Path
from typing import Dict, Any, Optional


_LOGGER_NAME = 'PlyScope'
_FORMAT = '%(asctime)s [%(levelname)s] [Thread-%(thread)d] %(message)s'


class LoggingService:
    """Service for centralized application logging.

    This service provides:
    - Console and/or file output (configurable)
    - Multiple log levels (DEBUG, INFO, WARNING, ERROR)
    - Rolling log files (size-based rotation)
    - Thread-safe operation (engine reader threads log through the same instance)

    This is a singleton service - use get_instance() to get the shared instance.
    """

    _instance: Optional['LoggingService'] = None
    _lock = threading.Lock()

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Initialize the logging service.

        Args:
            config: Configuration dictionary.
        """
        self.config = config or {}
        self._logger: Optional[logging.Logger] = None
        self._initialized = False
        self._log_path: Optional[Path] = None
        self._instance_lock = threading.RLock()

        self._load_config()

    @classmethod
    def get_instance(cls, config: Optional[Dict[str, Any]] = None) -> 'LoggingService':
        """Get the singleton instance of LoggingService.

        Args:
            config: Configuration dictionary. If provided and instance exists, updates the instance's config.

        Returns:
            The singleton LoggingService instance.
        """
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls(config)
                    return cls._instance
        if config is not None:
            with cls._instance._instance_lock:
                cls._instance.config = config
                cls._instance._load_config()
                if cls._instance._initialized:
                    cls._instance.initialize()
        return cls._instance

    def _load_config(self) -> None:
        """Load logging configuration from config dictionary."""
        logging_config = self.config.get('logging', {})

        console_config = logging_config.get('console', {})
        self._console_enabled = console_config.get('enabled', True)
        self._console_level = console_config.get('level', 'WARNING')

        file_config = logging_config.get('file', {})
        self._file_enabled = bool(file_config.get('enabled', False))
        self._file_level = file_config.get('level', 'DEBUG')
        self._log_filename = file_config.get('filename', 'plyscope.log')
        self._max_size_mb = file_config.get('max_size_mb', 10)
        self._backup_count = file_config.get('backup_count', 5)

    def initialize(self) -> None:
        """Initialize the logging service.

        Sets up the logger and its handlers. Calling it again replaces the
        handlers so that configuration changes take effect.
        """
        with self._instance_lock:
            if self._logger is None:
                self._logger = logging.getLogger(_LOGGER_NAME)
                self._logger.setLevel(logging.DEBUG)
                self._logger.propagate = False

            for handler in self._logger.handlers[:]:
                handler.close()
                self._logger.removeHandler(handler)

            if self._console_enabled:
                console_handler = logging.StreamHandler(sys.stderr)
                console_handler.setLevel(self._get_log_level(self._console_level))
                console_handler.setFormatter(logging.Formatter(_FORMAT, datefmt='%H:%M:%S'))
                self._logger.addHandler(console_handler)

            if self._file_enabled:
                try:
                    log_path = Path(self._log_filename).expanduser()
                    log_path.parent.mkdir(parents=True, exist_ok=True)
                    file_handler = logging.handlers.RotatingFileHandler(
                        str(log_path),
                        maxBytes=self._max_size_mb * 1024 * 1024,
                        backupCount=self._backup_count,
                        encoding='utf-8'
                    )
                    file_handler.setLevel(self._get_log_level(self._file_level))
                    file_handler.setFormatter(logging.Formatter(_FORMAT, datefmt='%Y-%m-%d %H:%M:%S'))
                    self._logger.addHandler(file_handler)
                    self._log_path = log_path
                except OSError as e:
                    print(f"Warning: Failed to initialize file logging: {e}", file=sys.stderr)

            self._initialized = True

        if self._file_enabled and self._log_path:
            self.debug(f"Log file path resolved: path={self._log_path}")

    def _get_log_level(self, level_str: str) -> int:
        """Convert log level string to logging constant.

        Args:
            level_str: Log level string (DEBUG, INFO, WARNING, ERROR).

        Returns:
            Logging level constant.
        """
        level_map = {
            'DEBUG': logging.DEBUG,
            'INFO': logging.INFO,
            'WARNING': logging.WARNING,
            'ERROR': logging.ERROR,
        }
        return level_map.get(str(level_str).upper(), logging.INFO)

    def _log(self, level: int, message: str, exc_info: Optional[BaseException] = None) -> None:
        """Internal logging method.

        Args:
            level: Logging level constant.
            message: Log message.
            exc_info: Optional exception info for error logging.
        """
        if not self._initialized:
            self.initialize()

        if not self._logger or not self._logger.handlers:
            return

        exc_info_param = None
        if exc_info is not None:
            if exc_info.__traceback__ is not None:
                exc_info_param = (type(exc_info), exc_info, exc_info.__traceback__)
            else:
                message = f"{message}\nException: {type(exc_info).__name__}: {exc_info}"

        self._logger.log(level, message, exc_info=exc_info_param)

    def debug(self, message: str) -> None:
        """Log a DEBUG level message.

        Args:
            message: Debug message.
        """
        self._log(logging.DEBUG, message)

    def info(self, message: str) -> None:
        """Log an INFO level message.

        Args:
            message: Info message.
        """
        self._log(logging.INFO, message)

    def warning(self, message: str) -> None:
        """Log a WARNING level message.

        Args:
            message: Warning message.
        """
        self._log(logging.WARNING, message)

    def error(self, message: str, exc_info: Optional[BaseException] = None) -> None:
        """Log an ERROR level message.

        Args:
            message: Error message.
            exc_info: Optional exception to include traceback.
        """
        self._log(logging.ERROR, message, exc_info=exc_info)

    def shutdown(self) -> None:
        """Flush and close all handlers."""
        with self._instance_lock:
            if not self._initialized:
                return
            if self._logger:
                for handler in self._logger.handlers[:]:
                    handler.flush()
                    handler.close()
                    self._logger.removeHandler(handler)
            self._initialized = False
