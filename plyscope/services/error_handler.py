"""Error handling service for fatal errors."""

import sys
import traceback
from typing import Optional

from plyscope.services.analysis_errors import AnalysisBridgeError
from plyscope.services.logging_service import LoggingService


# Exit codes
EXIT_FAILURE = 1
EXIT_ANALYSIS_ERROR = 2
EXIT_INTERRUPTED = 130


class ErrorHandler:
    """Handles fatal errors by reporting them and terminating the process."""

    @staticmethod
    def handle_fatal_error(error: BaseException, context: Optional[str] = None) -> None:
        """Handle a fatal error by printing to stderr and terminating.

        Analysis errors (bad game record, engine unavailable, timeouts) are
        expected failures and are reported without a traceback.

        Args:
            error: The exception that occurred.
            context: Optional context message describing where the error occurred.
        """
        if isinstance(error, AnalysisBridgeError):
            LoggingService.get_instance().debug(f"Analysis failed ({type(error).__name__}): {error}")
            print(f"Error: {error}", file=sys.stderr)
            sys.exit(EXIT_ANALYSIS_ERROR)

        print("=" * 80, file=sys.stderr)
        print("FATAL ERROR", file=sys.stderr)
        print("=" * 80, file=sys.stderr)

        if context:
            print(f"Context: {context}", file=sys.stderr)
            print("", file=sys.stderr)

        print(f"Error Type: {type(error).__name__}", file=sys.stderr)
        print(f"Error Message: {str(error)}", file=sys.stderr)
        print("", file=sys.stderr)

        print("Traceback:", file=sys.stderr)
        traceback.print_exception(type(error), error, error.__traceback__, file=sys.stderr)

        print("=" * 80, file=sys.stderr)
        sys.exit(EXIT_FAILURE)

    @staticmethod
    def setup_exception_handler() -> None:
        """Install a global exception handler for uncaught exceptions."""
        def exception_handler(exc_type, exc_value, exc_traceback):
            """Handle uncaught exceptions."""
            if issubclass(exc_type, KeyboardInterrupt):
                print("\nAnalysis interrupted by user.", file=sys.stderr)
                sys.exit(EXIT_INTERRUPTED)

            error = exc_value if exc_value else exc_type()
            ErrorHandler.handle_fatal_error(error, "Uncaught exception")

        sys.excepthook = exception_handler
