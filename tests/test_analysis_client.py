"""End-to-end tests for the analysis client against a scripted engine."""

import sys
import os
import time
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest

from plyscope.controllers.analysis_client_controller import AnalysisClientController
from plyscope.models.analysis_model import ScoreKind
from plyscope.models.position_model import Position
from plyscope.services.analysis_errors import (
    AnalysisCancelledError,
    AnalysisTimeoutError,
    EngineError,
    EngineUnavailableError,
    ParseError,
)
from plyscope.services.position_deriver_service import PositionDeriverService
from tests.fake_engine import STARTING_FEN, FakeEngineChannel


GAME = "1. e4 e5 2. Nf3"
HANGING_FEN = "4k3/8/8/8/8/8/8/4K2R w K - 0 1"


def _final_fen(record):
    return PositionDeriverService.derive_final_position(record).board_state


def _position(fen):
    return Position(0, fen)


def _process_until(app, predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        app.processEvents()
        if predicate():
            return True
        time.sleep(0.005)
    app.processEvents()
    return predicate()


@pytest.fixture
def channel():
    return FakeEngineChannel(scripts={
        _final_fen(GAME): ["info depth 10 score cp 20 pv g8f6", "bestmove g8f6"],
        STARTING_FEN: [
            "info depth 3 multipv 1 score cp 25 pv e2e4 e7e5",
            "info depth 3 multipv 2 score cp 18 pv d2d4 d7d5",
            "bestmove e2e4 ponder e7e5",
        ],
    })


@pytest.fixture
def client(config, channel):
    client = AnalysisClientController(config, channel=channel)
    client.start()
    yield client
    client.shutdown()


def test_game_record_scenario(client, channel):
    """Derive positions, then analyze the last one with a stub engine reply."""
    positions = PositionDeriverService.derive_positions(GAME)
    assert len(positions) == 4

    result = client.analyze(positions[3], depth_limit=10, line_count=1)

    assert result.best_move == "g8f6"
    assert len(result.lines) == 1
    line = result.lines[0]
    assert line.line_rank == 1
    assert line.score_kind == ScoreKind.CENTIPAWNS
    assert line.score_value == 20
    assert line.principal_variation == ("g8f6",)
    assert "go depth 10" in channel.commands
    assert f"position fen {positions[3].board_state}" in channel.commands


def test_analyze_game_record_uses_final_position(client):
    result = client.analyze_game_record(GAME, depth_limit=10)
    assert result.best_move == "g8f6"
    assert result.board_state == _final_fen(GAME)


def test_defaults_come_from_config(client, channel, config):
    client.analyze_fen(STARTING_FEN)
    assert channel.commands_matching("go")[-1] == f"go depth {config['analysis']['default_depth']}"


def test_line_count_is_clamped(client, channel, config):
    result = client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=50)

    max_lines = config["analysis"]["max_lines"]
    assert channel.commands_matching("go")[-1] == f"go multipv {max_lines} depth 3"
    assert f"setoption name MultiPV value {max_lines}" in channel.commands
    assert [line.line_rank for line in result.lines] == [1, 2]
    assert result.ponder_move == "e7e5"


def test_invalid_fen_raises_parse_error(client, channel):
    with pytest.raises(ParseError):
        client.analyze_fen("not a fen")
    assert channel.go_count() == 0


def test_invalid_depth_raises_value_error(client):
    with pytest.raises(ValueError):
        client.analyze_fen(STARTING_FEN, depth_limit=0)


def test_timeout_leaves_engine_usable(client, channel):
    with pytest.raises(AnalysisTimeoutError):
        client.analyze_fen(HANGING_FEN, depth_limit=30, timeout_ms=100)

    assert client.is_ready
    result = client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=2)
    assert result.best_move == "e2e4"


def test_engine_silent_after_stop_leaves_engine_usable(client, channel):
    channel.answer_stop = False
    with pytest.raises(AnalysisTimeoutError):
        client.analyze_fen(HANGING_FEN, depth_limit=30, timeout_ms=100)

    updates = []
    client.add_update_listener(lambda request_id, lines: updates.append(request_id))
    for _ in range(2):
        result = client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=2)
        assert result.best_move == "e2e4"
        assert [line.line_rank for line in result.lines] == [1, 2]
    assert len(updates) == 4


def test_new_request_supersedes_running_one(client, channel):
    future_a = client.analyze_async(_position(HANGING_FEN), depth_limit=30)
    assert channel.wait_for_go(1)

    future_b = client.analyze_async(_position(STARTING_FEN), depth_limit=3, line_count=2)

    with pytest.raises(AnalysisCancelledError):
        future_a.result(timeout=2)
    result = future_b.result(timeout=2)
    # The superseded search's bestmove (e2e4 from the stop) is not B's answer source
    assert [line.principal_variation[0] for line in result.lines] == ["e2e4", "d2d4"]


def test_stop_cancels_running_request(client, channel):
    future = client.analyze_async(_position(HANGING_FEN), depth_limit=30)
    assert channel.wait_for_go(1)

    assert client.stop() is True
    with pytest.raises(AnalysisCancelledError):
        future.result(timeout=2)
    assert client.stop() is False


def test_update_listener_receives_live_lines(client):
    updates = []
    client.add_update_listener(lambda request_id, lines: updates.append((request_id, lines)))

    result = client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=2)

    assert [len(lines) for _, lines in updates] == [1, 2]
    assert all(request_id == result.request_id for request_id, _ in updates)
    assert client.latest_lines() == result.lines


def test_engine_crash_fails_request(client, channel):
    future = client.analyze_async(_position(HANGING_FEN), depth_limit=30)
    assert channel.wait_for_go(1)

    channel.crash()

    with pytest.raises(EngineError):
        future.result(timeout=2)
    assert not client.is_ready


def test_requests_after_engine_crash_fail_until_restart(client, channel):
    future = client.analyze_async(_position(HANGING_FEN), depth_limit=30)
    assert channel.wait_for_go(1)
    channel.crash()
    with pytest.raises(EngineError):
        future.result(timeout=2)

    started = time.monotonic()
    with pytest.raises(EngineError):
        client.analyze_fen(STARTING_FEN, depth_limit=3, timeout_ms=5000)
    assert time.monotonic() - started < 1.0
    assert client.session.pending_commands == []

    client.start()
    result = client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=2)
    assert result.best_move == "e2e4"


def test_unavailable_engine_raises_on_start(config):
    client = AnalysisClientController(config, channel=FakeEngineChannel(respond_to_uci=False))
    with pytest.raises(EngineUnavailableError):
        client.start()
    assert not client.get_analysis_model().is_ready


def test_model_signals(qt_app, client):
    model = client.get_analysis_model()
    busy_changes = []
    line_updates = []
    results = []
    model.busy_changed.connect(busy_changes.append)
    model.lines_updated.connect(lambda request_id, lines: line_updates.append(request_id))
    model.result_ready.connect(results.append)

    result = client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=2)

    assert _process_until(qt_app, lambda: results and busy_changes[-1:] == [False])
    assert results[0] == result
    assert busy_changes == [True, False]
    assert line_updates == [result.request_id, result.request_id]
    assert model.latest_result == result
    assert model.is_ready
    assert not model.is_busy


def test_model_reports_errors(qt_app, client):
    model = client.get_analysis_model()
    errors = []
    model.error_occurred.connect(lambda request_id, message: errors.append((request_id, message)))

    with pytest.raises(AnalysisTimeoutError) as exc_info:
        client.analyze_fen(HANGING_FEN, depth_limit=30, timeout_ms=50)

    assert _process_until(qt_app, lambda: errors)
    assert errors[0][0] == exc_info.value.request_id
    assert "timed out" in errors[0][1]
    assert model.error == errors[0][1]


def test_cancellation_is_not_reported_as_error(qt_app, client, channel):
    model = client.get_analysis_model()
    errors = []
    model.error_occurred.connect(lambda request_id, message: errors.append(message))

    future = client.analyze_async(_position(HANGING_FEN), depth_limit=30)
    assert channel.wait_for_go(1)
    client.stop()
    with pytest.raises(AnalysisCancelledError):
        future.result(timeout=2)

    _process_until(qt_app, lambda: False, timeout=0.1)
    assert errors == []
    assert model.error is None


def test_shutdown_closes_engine(config, channel):
    client = AnalysisClientController(config, channel=channel)
    client.start()
    model = client.get_analysis_model()
    assert model.is_ready
    client.analyze_fen(STARTING_FEN, depth_limit=3, line_count=2)

    client.shutdown()

    assert model.latest_result is None
    assert model.latest_lines == ()
    assert channel.closed
    assert channel.commands[-1] == "quit"
    assert not model.is_ready
    assert not client.is_ready
