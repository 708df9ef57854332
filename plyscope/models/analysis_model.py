"""Value types exchanged between the protocol parser, the coordinator and callers."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple


class ScoreKind(Enum):
    """Kind of engine score."""
    CENTIPAWNS = "cp"
    MATE = "mate"


class AnalysisState(Enum):
    """States of the analysis coordinator."""
    IDLE = "idle"
    REQUESTED = "requested"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    TIMED_OUT = "timed_out"
    FAILED = "failed"
    
    @property
    def is_terminal(self) -> bool:
        """Check if this state ends a request.
        
        Returns:
            True for completed, cancelled, timed out and failed.
        """
        return self in (AnalysisState.COMPLETED, AnalysisState.CANCELLED,
                        AnalysisState.TIMED_OUT, AnalysisState.FAILED)


@dataclass(frozen=True)
class AnalysisRequest:
    """A request accepted by the coordinator."""
    
    board_state: str
    depth_limit: int
    line_count: int
    request_id: int
    deadline: float  # time.monotonic() instant
    timeout_ms: int = 0


@dataclass(frozen=True)
class EngineInfoLine:
    """Parsed 'info' line carrying an evaluation."""
    
    depth: int
    score_kind: ScoreKind
    score_value: int  # centipawns, or signed moves to mate (positive = side to move mates)
    principal_variation: Tuple[str, ...]
    line_rank: int = 1  # multipv, 1-based
    node_count: Optional[int] = None


@dataclass(frozen=True)
class AnalysisLine:
    """Latest evaluation for one multipv rank of the active request."""
    
    line_rank: int
    score_kind: ScoreKind
    score_value: int
    principal_variation: Tuple[str, ...]
    depth_reached: int
    node_count: Optional[int] = None
    
    @classmethod
    def from_info(cls, info: EngineInfoLine) -> 'AnalysisLine':
        """Build an analysis line from a parsed info line.
        
        Args:
            info: Parsed info line.
            
        Returns:
            AnalysisLine for the info line's rank.
        """
        return cls(
            line_rank=info.line_rank,
            score_kind=info.score_kind,
            score_value=info.score_value,
            principal_variation=info.principal_variation,
            depth_reached=info.depth,
            node_count=info.node_count,
        )
    
    @property
    def top_move(self) -> Optional[str]:
        """Get the first move of the principal variation.
        
        Returns:
            Move token or None if the variation is empty.
        """
        return self.principal_variation[0] if self.principal_variation else None


@dataclass(frozen=True)
class AnalysisResult:
    """Terminal value of a completed request."""
    
    best_move: Optional[str]
    lines: Tuple[AnalysisLine, ...] = field(default_factory=tuple)
    depth: int = 0
    request_id: int = 0
    board_state: str = ""
    ponder_move: Optional[str] = None
    
    @property
    def best_line(self) -> Optional[AnalysisLine]:
        """Get the line with the lowest rank.
        
        Returns:
            First line or None if no lines were reported.
        """
        return self.lines[0] if self.lines else None
