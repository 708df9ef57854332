"""Tests for UCI output line parsing."""

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from plyscope.models.analysis_model import ScoreKind
from plyscope.services.uci_protocol_parser import (
    BestMoveEvent,
    HandshakeEvent,
    InfoEvent,
    UnrecognizedEvent,
    parse_line,
)


def test_centipawn_info_line():
    event = parse_line("info depth 12 score cp -35 pv e2e4 e7e5")

    assert isinstance(event, InfoEvent)
    assert event.info.depth == 12
    assert event.info.score_kind == ScoreKind.CENTIPAWNS
    assert event.info.score_value == -35
    assert event.info.principal_variation == ("e2e4", "e7e5")
    assert event.info.line_rank == 1


def test_mate_info_line_with_multipv():
    event = parse_line("info depth 8 multipv 2 score mate 3 pv g1f3")

    assert isinstance(event, InfoEvent)
    assert event.info.line_rank == 2
    assert event.info.score_kind == ScoreKind.MATE
    assert event.info.score_value == 3
    assert event.info.principal_variation == ("g1f3",)


def test_full_stockfish_line():
    line = ("info depth 20 seldepth 28 multipv 1 score cp 31 nodes 1234567 nps 987654 "
            "hashfull 312 tbhits 0 time 1250 pv e2e4 e7e5 g1f3 b8c6")
    event = parse_line(line)

    assert isinstance(event, InfoEvent)
    assert event.info.depth == 20
    assert event.info.score_value == 31
    assert event.info.node_count == 1234567
    assert event.info.principal_variation == ("e2e4", "e7e5", "g1f3", "b8c6")


def test_bound_marker_after_score_is_tolerated():
    event = parse_line("info depth 15 score cp 45 lowerbound nodes 100 pv d2d4")
    assert isinstance(event, InfoEvent)
    assert event.info.score_value == 45


def test_negative_mate():
    event = parse_line("info depth 30 score mate -2 pv h7h6 d8h4")
    assert event.info.score_kind == ScoreKind.MATE
    assert event.info.score_value == -2


def test_missing_depth_defaults_to_zero():
    event = parse_line("info score cp 10 pv e2e4")
    assert isinstance(event, InfoEvent)
    assert event.info.depth == 0


@pytest.mark.parametrize("line", [
    "info depth 10 seldepth 12 nodes 5000 nps 100000",
    "info depth 10 currmove e2e4 currmovenumber 1",
    "info depth 10 score cp 25",
    "info depth 10 pv e2e4",
    "info depth 10 score cp abc pv e2e4",
    "info depth 10 score wdl 500 pv e2e4",
    "info depth 10 score cp 25 pv",
    "info depth 10 score",
    "info string NNUE evaluation using nn-abc.nnue enabled",
    "info string score cp 10 pv e2e4",
])
def test_info_lines_without_evaluation_are_unrecognized(line):
    event = parse_line(line)
    assert isinstance(event, UnrecognizedEvent)
    assert event.raw == line


def test_handshake_tags():
    assert parse_line("uciok") == HandshakeEvent("uciok")
    assert parse_line("readyok\n") == HandshakeEvent("readyok")


def test_bestmove_with_ponder():
    assert parse_line("bestmove e2e4 ponder e7e5") == BestMoveEvent("e2e4", "e7e5")


def test_bestmove_without_ponder():
    assert parse_line("bestmove g8f6") == BestMoveEvent("g8f6", None)


@pytest.mark.parametrize("line", ["bestmove (none)", "bestmove 0000"])
def test_bestmove_none(line):
    assert parse_line(line) == BestMoveEvent(None, None)


def test_bare_bestmove_is_unrecognized():
    assert isinstance(parse_line("bestmove"), UnrecognizedEvent)


@pytest.mark.parametrize("line", ["", "   ", "id name Stockfish 16", "option name Hash type spin", "uciok extra"])
def test_other_lines_are_unrecognized(line):
    assert isinstance(parse_line(line), UnrecognizedEvent)
