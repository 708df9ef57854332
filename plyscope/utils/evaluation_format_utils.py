"""Utilities for turning engine scores into display values.

Engine scores are relative to the side to move and stored unconverted
(integer centipawns, signed moves-to-mate). Everything here is a display
concern: pawn units, mate labels, evaluation bar share, and ordering.
"""

from typing import Optional, Sequence, Tuple

import chess

from plyscope.models.analysis_model import AnalysisLine, ScoreKind


# Evaluation bar saturates at +/- 5 pawns
EVAL_BAR_MAX_CP = 500

# Mate scores sort above every centipawn score
_MATE_SORT_BASE = 1_000_000


def score_to_pawns(centipawns: int) -> float:
    """Convert centipawns to pawns.

    Args:
        centipawns: Score in centipawns.

    Returns:
        Score in pawns.
    """
    return centipawns / 100.0


def format_score(kind: ScoreKind, value: int) -> str:
    """Format a score for display.

    Args:
        kind: Score kind.
        value: Centipawns or signed moves to mate.

    Returns:
        String such as "+0.20", "-1.35", "M3" or "-M2".
    """
    if kind == ScoreKind.MATE:
        return f"M{value}" if value > 0 else f"-M{abs(value)}"
    return f"{score_to_pawns(value):+.2f}"


def is_white_to_move(board_state: str) -> bool:
    """Check the side to move of a FEN.

    Args:
        board_state: FEN string.

    Returns:
        True if White is to move. Unparseable FENs count as White to move.
    """
    parts = board_state.split()
    return len(parts) < 2 or parts[1] != 'b'


def to_white_perspective(kind: ScoreKind, value: int, board_state: str) -> Tuple[ScoreKind, int]:
    """Convert a side-to-move relative score to White's point of view.

    Args:
        kind: Score kind.
        value: Score value relative to the side to move.
        board_state: FEN of the analysed position.

    Returns:
        Tuple of (kind, value) where positive favours White.
    """
    if is_white_to_move(board_state):
        return kind, value
    return kind, -value


def score_sort_key(kind: ScoreKind, value: int) -> int:
    """Build a key ordering scores from worst to best for the scored side.

    A forced mate outranks any centipawn score; quicker mates outrank slower
    ones, and being mated slowly is better than being mated quickly.

    Args:
        kind: Score kind.
        value: Score value.

    Returns:
        Integer key; larger is better.
    """
    if kind == ScoreKind.MATE:
        if value > 0:
            return _MATE_SORT_BASE - value
        # 'mate 0' and negative mates: the scored side is the one getting mated
        return -_MATE_SORT_BASE - value
    return value


def winning_side(line: AnalysisLine, board_state: str, threshold_cp: int = 0) -> Optional[chess.Color]:
    """Determine which side the line says is winning.

    Args:
        line: Analysis line (scores relative to the side to move).
        board_state: FEN of the analysed position.
        threshold_cp: Centipawn margin below which the position counts as level.

    Returns:
        chess.WHITE, chess.BLACK, or None when level.
    """
    # Flip after building the key: 'mate 0' has no sign to flip
    key = score_sort_key(line.score_kind, line.score_value)
    if not is_white_to_move(board_state):
        key = -key
    if line.score_kind == ScoreKind.MATE:
        return chess.WHITE if key > 0 else chess.BLACK
    if abs(key) <= threshold_cp:
        return None
    return chess.WHITE if key > 0 else chess.BLACK


def evaluation_bar_percentage(kind: ScoreKind, value: int) -> float:
    """Compute White's share of an evaluation bar.

    Args:
        kind: Score kind, from White's point of view.
        value: Score value, from White's point of view.

    Returns:
        Percentage in [0, 100]; 50 is level.
    """
    if kind == ScoreKind.MATE:
        return 100.0 if value > 0 else 0.0
    clamped = max(-EVAL_BAR_MAX_CP, min(EVAL_BAR_MAX_CP, value))
    return (clamped + EVAL_BAR_MAX_CP) / (2 * EVAL_BAR_MAX_CP) * 100.0


def best_line(lines: Sequence[AnalysisLine]) -> Optional[AnalysisLine]:
    """Pick the line with the best score for the side to move.

    Args:
        lines: Analysis lines of one position.

    Returns:
        Best line, or None for an empty sequence.
    """
    if not lines:
        return None
    return max(lines, key=lambda line: (score_sort_key(line.score_kind, line.score_value), -line.line_rank))


def format_principal_variation(board_state: str, moves: Sequence[str], max_moves: int = 0) -> str:
    """Render a UCI principal variation as SAN.

    Args:
        board_state: FEN the variation starts from.
        moves: UCI move tokens.
        max_moves: Maximum number of moves to render (0 = all).

    Returns:
        Space-separated SAN moves. Moves that cannot be played are rendered
        unchanged, together with everything after them.
    """
    if max_moves > 0:
        moves = list(moves)[:max_moves]
    try:
        board = chess.Board(board_state)
    except ValueError:
        return " ".join(moves)

    rendered = []
    for index, token in enumerate(moves):
        try:
            move = chess.Move.from_uci(token)
            if move not in board.legal_moves:
                raise ValueError(f"illegal move {token}")
            rendered.append(board.san(move))
            board.push(move)
        except ValueError:
            rendered.extend(moves[index:])
            break
    return " ".join(rendered)
