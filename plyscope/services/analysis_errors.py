"""Exception types raised by the analysis bridge.

Parser-level anomalies in engine output are never raised; they are turned
into unrecognized protocol events and logged. Everything in this module is
surfaced to the caller that owns the failing operation.
"""

from typing import Optional


class AnalysisBridgeError(Exception):
    """Base class for all analysis bridge errors."""


class ParseError(AnalysisBridgeError):
    """Raised when a game record or position string cannot be parsed."""
    
    def __init__(self, message: str, token: Optional[str] = None, index: Optional[int] = None) -> None:
        """Initialize parse error.
        
        Args:
            message: Human readable description.
            token: First offending token, if known.
            index: Ply index at which the offending token would have been played, if known.
        """
        super().__init__(message)
        self.token = token
        self.index = index


class EngineUnavailableError(AnalysisBridgeError):
    """Raised when the engine channel cannot be opened or the handshake fails."""


class EngineError(AnalysisBridgeError):
    """Raised when the engine channel fails while in use."""


class AnalysisCancelledError(AnalysisBridgeError):
    """Raised for a request that was superseded or explicitly stopped."""
    
    def __init__(self, request_id: int, reason: str = "Analysis cancelled") -> None:
        super().__init__(f"{reason} (request {request_id})")
        self.request_id = request_id
        self.reason = reason


class AnalysisTimeoutError(AnalysisBridgeError):
    """Raised for a request whose deadline elapsed before the engine answered."""
    
    def __init__(self, request_id: int, timeout_ms: int) -> None:
        super().__init__(f"Analysis timed out after {timeout_ms} ms (request {request_id})")
        self.request_id = request_id
        self.timeout_ms = timeout_ms
