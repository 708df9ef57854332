"""Entry point for PlyScope: analyze a game record with a UCI engine."""

import argparse
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from plyscope.config.config_loader import ConfigLoader
from plyscope.controllers.analysis_client_controller import AnalysisClientController
from plyscope.controllers.game_analysis_controller import GameAnalysisController, GameEvaluation
from plyscope.models.analysis_model import AnalysisResult
from plyscope.models.position_model import Position
from plyscope.services.error_handler import ErrorHandler
from plyscope.services.logging_service import LoggingService
from plyscope.services.position_deriver_service import PositionDeriverService
from plyscope.utils.evaluation_format_utils import (
    format_principal_variation,
    format_score,
    to_white_perspective,
)


PV_DISPLAY_MOVES = 8


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        description="Analyze every position of a PGN game with a UCI engine.")
    parser.add_argument("pgn_file", type=Path, help="PGN file containing one game")
    parser.add_argument("--engine", help="Engine executable (overrides engine.path)")
    parser.add_argument("--depth", type=int, help="Search depth per position")
    parser.add_argument("--lines", type=int, help="Number of lines per position")
    parser.add_argument("--timeout-ms", type=int, help="Deadline per position in milliseconds")
    parser.add_argument("--last-only", action="store_true", help="Only analyze the final position")
    parser.add_argument("--config", type=Path, help="Path to an alternative config.json")
    parser.add_argument("--verbose", action="store_true", help="Log engine traffic to the console")
    return parser


def build_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Turn command line flags into configuration overrides."""
    overrides: Dict[str, Any] = {}
    if args.engine:
        overrides["engine"] = {"path": args.engine}
    if args.verbose:
        overrides.setdefault("engine", {})["trace_io"] = True
        overrides["logging"] = {"console": {"enabled": True, "level": "DEBUG"}}
    return overrides


def format_evaluation(position: Position, result: AnalysisResult) -> str:
    """Format one analyzed position as an output row.

    Args:
        position: Analyzed position.
        result: Analysis result for the position.

    Returns:
        Row with ply, move, score (White's point of view), best move and PV.
    """
    move = position.move_notation or "-"
    line = result.best_line
    if line is None:
        score = "n/a"
        pv = ""
    else:
        kind, value = to_white_perspective(line.score_kind, line.score_value, position.board_state)
        score = format_score(kind, value)
        pv = format_principal_variation(position.board_state, line.principal_variation, PV_DISPLAY_MOVES)
    best = result.best_move or "(none)"
    return f"{position.ply_index:>4}  {move:<8} {score:>7}  {best:<6} {pv}"


def print_progress(completed: int, total: int, position: Position) -> None:
    """Report progress on stderr."""
    print(f"\rAnalyzed {completed}/{total} positions", end="", file=sys.stderr, flush=True)
    if completed == total:
        print("", file=sys.stderr)


def main(argv: Optional[List[str]] = None) -> int:
    """Run PlyScope game analysis.

    Returns:
        0 on success. Failures exit through ErrorHandler.handle_fatal_error.
    """
    # Setup global exception handler for uncaught exceptions
    ErrorHandler.setup_exception_handler()

    args = build_parser().parse_args(argv)

    try:
        # Load configuration with strict validation
        loader = ConfigLoader(args.config)
        config = loader.load(build_overrides(args))
        LoggingService.get_instance(config)

        game_record = args.pgn_file.read_text(encoding="utf-8")

        client = AnalysisClientController(config)
        client.start()
        try:
            if args.last_only:
                position = PositionDeriverService.derive_final_position(game_record)
                result = client.analyze(position, args.depth, args.lines, args.timeout_ms)
                evaluations = [GameEvaluation(position, result)]
            else:
                controller = GameAnalysisController(client)
                evaluations = controller.analyze_game(
                    game_record, args.depth, args.lines, print_progress, args.timeout_ms)
        finally:
            client.shutdown()

        for evaluation in evaluations:
            print(format_evaluation(evaluation.position, evaluation.result))
        return 0
    except Exception as e:
        # Catch any exceptions during startup or execution
        ErrorHandler.handle_fatal_error(e, "Game analysis")


if __name__ == "__main__":
    sys.exit(main())
