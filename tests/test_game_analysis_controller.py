"""Tests for move-by-move game analysis."""

import sys
import os
import threading
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from plyscope.controllers.analysis_client_controller import AnalysisClientController
from plyscope.controllers.game_analysis_controller import GameAnalysisController
from plyscope.services.analysis_errors import AnalysisCancelledError, AnalysisTimeoutError, ParseError
from plyscope.services.position_deriver_service import PositionDeriverService
from tests.fake_engine import FakeEngineChannel


GAME = "1. e4 e5 2. Nf3"
REPLIES = {
    0: ["info depth 4 score cp 30 pv e2e4 e7e5", "bestmove e2e4"],
    1: ["info depth 4 score cp -25 pv e7e5 g1f3", "bestmove e7e5"],
    2: ["info depth 4 score cp 35 pv g1f3 b8c6", "bestmove g1f3"],
    3: ["info depth 4 score mate -5 pv b8c6", "bestmove b8c6"],
}


@pytest.fixture
def positions():
    return PositionDeriverService.derive_positions(GAME)


@pytest.fixture
def channel(positions):
    return FakeEngineChannel(scripts={p.board_state: REPLIES[p.ply_index] for p in positions})


@pytest.fixture
def client(config, channel):
    client = AnalysisClientController(config, channel=channel)
    client.start()
    yield client
    client.shutdown()


def test_every_position_is_analyzed_in_order(client, channel, positions):
    controller = GameAnalysisController(client)
    progress = []

    evaluations = controller.analyze_game(
        GAME, depth_limit=4, progress_callback=lambda done, total, position: progress.append((done, total, position.ply_index)))

    assert [e.position.ply_index for e in evaluations] == [0, 1, 2, 3]
    assert [e.result.best_move for e in evaluations] == ["e2e4", "e7e5", "g1f3", "b8c6"]
    assert [e.result.board_state for e in evaluations] == [p.board_state for p in positions]
    assert progress == [(1, 4, 0), (2, 4, 1), (3, 4, 2), (4, 4, 3)]
    assert channel.commands_matching("go") == ["go depth 4"] * 4
    assert not controller.is_analyzing


def test_signals_are_emitted(client):
    controller = GameAnalysisController(client)
    started, progress, completed = [], [], []
    controller.analysis_started.connect(started.append)
    controller.analysis_progress.connect(lambda done, total: progress.append(done))
    controller.analysis_completed.connect(lambda: completed.append(True))

    controller.analyze_game(GAME, depth_limit=4)

    assert started == [4]
    assert progress == [1, 2, 3, 4]
    assert completed == [True]


def test_cancel_between_positions(client, channel):
    controller = GameAnalysisController(client)
    cancelled = []
    controller.analysis_cancelled.connect(lambda: cancelled.append(True))

    def on_progress(done, total, position):
        if done == 2:
            controller.cancel()

    with pytest.raises(AnalysisCancelledError):
        controller.analyze_game(GAME, depth_limit=4, progress_callback=on_progress)

    assert channel.go_count() == 2
    assert cancelled == [True]
    assert not controller.is_analyzing


def test_cancel_during_position(config, positions):
    # The position after 1. e4 never answers on its own
    scripts = {positions[0].board_state: REPLIES[0]}
    channel = FakeEngineChannel(scripts=scripts)
    client = AnalysisClientController(config, channel=channel)
    client.start()
    controller = GameAnalysisController(client)
    outcome = {}

    def run():
        try:
            controller.analyze_game(GAME, depth_limit=4)
        except AnalysisCancelledError as e:
            outcome["error"] = e

    worker = threading.Thread(target=run)
    try:
        worker.start()
        assert channel.wait_for_go(2)
        controller.cancel()
        worker.join(timeout=2)
        assert isinstance(outcome.get("error"), AnalysisCancelledError)
    finally:
        client.shutdown()


def test_failure_stops_the_run(config, positions):
    scripts = {positions[0].board_state: REPLIES[0]}
    channel = FakeEngineChannel(scripts=scripts)
    client = AnalysisClientController(config, channel=channel)
    client.start()
    controller = GameAnalysisController(client)
    try:
        with pytest.raises(AnalysisTimeoutError):
            controller.analyze_game(GAME, depth_limit=4, timeout_ms=100)
        assert channel.go_count() == 2
        assert not controller.is_analyzing
    finally:
        client.shutdown()


def test_invalid_record_is_rejected_before_analysis(client, channel):
    controller = GameAnalysisController(client)
    with pytest.raises(ParseError):
        controller.analyze_game("1. e4 e4")
    assert channel.go_count() == 0


def test_cancel_when_idle_does_nothing(client, channel):
    controller = GameAnalysisController(client)
    controller.cancel()
    assert channel.commands_matching("stop") == []
