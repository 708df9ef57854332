"""Position model for derived game positions."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Position:
    """A single position reached in a game record."""
    
    ply_index: int  # 0 = starting position
    board_state: str  # FEN
    move_notation: Optional[str] = None  # SAN of the move that led here (None for ply 0)
    
    @property
    def move_number(self) -> int:
        """Get the full-move number of the move that led to this position.
        
        Returns:
            Full-move number (1-based), or 0 for the starting position.
        """
        if self.ply_index == 0:
            return 0
        return (self.ply_index + 1) // 2
