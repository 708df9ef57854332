"""Position derivation service: game record -> ordered list of positions."""

import io
import re
from typing import List, Optional, Tuple

import chess
import chess.pgn

from plyscope.models.position_model import Position
from plyscope.services.analysis_errors import ParseError
from plyscope.services.logging_service import LoggingService


# Text that carries no main line moves: tags and comments
_COMMENT_PATTERNS = [
    re.compile(r'\[[^\]]*\]'),
    re.compile(r'\{[^}]*\}'),
    re.compile(r';[^\n]*'),
]

# Annotations around moves: NAGs, move numbers, results, glyphs, check marks
_ANNOTATION_PATTERNS = [
    re.compile(r'\$\d+'),
    re.compile(r'\b\d+\.(?:\.\.)?'),
    re.compile(r'1-0|0-1|1/2-1/2|\*'),
    re.compile(r'[!?+#]+'),
]


class _RecordingGameBuilder(chess.pgn.GameBuilder):
    """Game builder that remembers the first illegal main line move."""

    def __init__(self) -> None:
        super().__init__()
        self.variation_depth = 0
        self.mainline_moves = 0
        self.bad_token: Optional[str] = None
        self.bad_index: Optional[int] = None

    def begin_variation(self):
        self.variation_depth += 1
        return super().begin_variation()

    def end_variation(self) -> None:
        self.variation_depth -= 1
        super().end_variation()

    def visit_move(self, board: chess.Board, move: chess.Move) -> None:
        if self.variation_depth == 0:
            self.mainline_moves += 1
        super().visit_move(board, move)

    def parse_san(self, board: chess.Board, san: str) -> chess.Move:
        try:
            return super().parse_san(board, san)
        except ValueError:
            if self.variation_depth == 0 and self.bad_token is None:
                self.bad_token = san
                self.bad_index = self.mainline_moves + 1
            raise

    def handle_error(self, error: Exception) -> None:
        # GameBuilder logs a full traceback for every error by default
        self.game.errors.append(error)


class PositionDeriverService:
    """Service for turning a game record (PGN movetext) into positions.

    python-chess validates the moves; the positions are then replayed one
    move at a time on a fresh board from the record's starting position, so
    the derived FENs do not depend on how the parser tracked history.
    """

    @staticmethod
    def derive_positions(game_record: str) -> List[Position]:
        """Derive the ordered positions of a game record's main line.

        Args:
            game_record: PGN text (headers optional) of a single game.

        Returns:
            Positions for ply 0..N, where N is the number of main line moves.

        Raises:
            ParseError: If the record contains an illegal or unparseable move.
        """
        # Zero-width characters survive copy/paste from web pages
        text = re.sub(r'[\u200B-\u200D\uFEFF]', '', game_record or '').strip()
        if not text:
            return [Position(0, chess.Board().fen(), None)]

        builders: List[_RecordingGameBuilder] = []

        def make_builder() -> _RecordingGameBuilder:
            builder = _RecordingGameBuilder()
            builders.append(builder)
            return builder

        game = chess.pgn.read_game(io.StringIO(text), Visitor=make_builder)
        builder = builders[0] if builders else None

        # python-chess skips tokens that do not look like moves without reporting them
        unreadable = PositionDeriverService._first_unreadable_token(text)
        if unreadable is not None:
            token, index = unreadable
            if builder is None or builder.bad_token is None or index <= builder.bad_index:
                raise ParseError(f"Unreadable move '{token}' at ply {index}", token=token, index=index)

        if builder is not None and builder.bad_token is not None:
            raise ParseError(f"Illegal or unparseable move '{builder.bad_token}' at ply {builder.bad_index}",
                             token=builder.bad_token, index=builder.bad_index)

        if game is None:
            return [Position(0, chess.Board().fen(), None)]

        moves = list(game.mainline_moves())
        if game.errors and not moves:
            raise ParseError(f"Invalid game record: {game.errors[0]}")
        for error in game.errors:
            LoggingService.get_instance().debug(f"Ignoring error in side variation: {error}")

        return PositionDeriverService._replay(game.board(), moves)

    @staticmethod
    def derive_final_position(game_record: str) -> Position:
        """Derive the last position reached by a game record.

        Args:
            game_record: PGN text of a single game.

        Returns:
            Position after the last main line move (ply 0 for an empty record).
        """
        return PositionDeriverService.derive_positions(game_record)[-1]

    @staticmethod
    def _replay(start: chess.Board, moves: List[chess.Move]) -> List[Position]:
        board = chess.Board(start.fen(), chess960=start.chess960)
        positions = [Position(0, board.fen(), None)]
        for ply, move in enumerate(moves, start=1):
            san = board.san(move)
            board.push(move)
            positions.append(Position(ply, board.fen(), san))
        return positions

    @staticmethod
    def _mainline_tokens(text: str) -> List[str]:
        """Split movetext into main line move tokens, dropping side variations."""
        remainder = text
        for pattern in _COMMENT_PATTERNS:
            remainder = pattern.sub(' ', remainder)

        depth = 0
        mainline = []
        for char in remainder:
            if char == '(':
                depth += 1
                mainline.append(' ')
            elif char == ')':
                depth = max(0, depth - 1)
                mainline.append(' ')
            elif depth == 0:
                mainline.append(char)
        remainder = ''.join(mainline)

        for pattern in _ANNOTATION_PATTERNS:
            remainder = pattern.sub(' ', remainder)
        return remainder.split()

    @staticmethod
    def _first_unreadable_token(text: str) -> Optional[Tuple[str, int]]:
        """Find the first main line token the PGN tokenizer would not read as a move.

        Returns:
            Tuple of (token, ply index it would have been played at), or None.
        """
        for ply, token in enumerate(PositionDeriverService._mainline_tokens(text), start=1):
            match = chess.pgn.MOVETEXT_REGEX.fullmatch(token)
            if match is None or match.group(1) is None:
                return token, ply
        return None
