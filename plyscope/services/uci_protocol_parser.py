"""Parser for lines emitted by a UCI engine.

Every raw line is turned into exactly one protocol event. Markers are
located by name, so extra tokens (seldepth, nps, hashfull, time, ...) and
reordered tokens are tolerated. Info lines that carry no score or no
principal variation are reported as unrecognized: they say nothing about
the evaluation and must not update analysis state.
"""

from dataclasses import dataclass
from typing import List, Optional, Union

from plyscope.models.analysis_model import EngineInfoLine, ScoreKind
from plyscope.services.logging_service import LoggingService


HANDSHAKE_TAGS = ("uciok", "readyok")

# Tokens that may follow "info" and take exactly one value. Used to find where
# a value list ends when a marker is not the last one on the line.
_INFO_KEYWORDS = {
    "depth", "seldepth", "time", "nodes", "pv", "multipv", "score", "currmove",
    "currmovenumber", "hashfull", "nps", "tbhits", "sbhits", "cpuload", "string",
    "refutation", "currline", "wdl", "lowerbound", "upperbound",
}


@dataclass(frozen=True)
class HandshakeEvent:
    """Handshake acknowledgement ('uciok' or 'readyok')."""
    tag: str


@dataclass(frozen=True)
class InfoEvent:
    """Info line carrying an evaluation."""
    info: EngineInfoLine


@dataclass(frozen=True)
class BestMoveEvent:
    """Final 'bestmove' line of a search."""
    move: Optional[str]  # None for 'bestmove (none)'
    ponder: Optional[str] = None


@dataclass(frozen=True)
class UnrecognizedEvent:
    """Any line that carries no information for the coordinator."""
    raw: str


ProtocolEvent = Union[HandshakeEvent, InfoEvent, BestMoveEvent, UnrecognizedEvent]


def parse_line(raw: str) -> ProtocolEvent:
    """Parse one raw engine output line.

    Args:
        raw: Line as read from the engine (trailing newline allowed).

    Returns:
        HandshakeEvent, InfoEvent, BestMoveEvent or UnrecognizedEvent.
    """
    parts = raw.split()
    if not parts:
        return UnrecognizedEvent(raw)

    head = parts[0]
    if head in HANDSHAKE_TAGS and len(parts) == 1:
        return HandshakeEvent(head)
    if head == "bestmove":
        return _parse_bestmove(raw, parts)
    if head == "info":
        info = _parse_info(parts)
        if info is None:
            return UnrecognizedEvent(raw)
        return InfoEvent(info)
    return UnrecognizedEvent(raw)


def _parse_bestmove(raw: str, parts: List[str]) -> ProtocolEvent:
    if len(parts) < 2:
        _log_anomaly("bestmove without move", raw)
        return UnrecognizedEvent(raw)
    move: Optional[str] = parts[1]
    if move in ("(none)", "0000"):
        move = None
    ponder = _value_after(parts, "ponder")
    return BestMoveEvent(move, ponder)


def _parse_info(parts: List[str]) -> Optional[EngineInfoLine]:
    # 'info string ...' is free text; never look for markers inside it
    if "string" in parts:
        parts = parts[:parts.index("string")]

    if "score" not in parts or "pv" not in parts:
        return None

    score = _parse_score(parts)
    if score is None:
        _log_anomaly("unparseable score", " ".join(parts))
        return None

    pv_index = parts.index("pv")
    principal_variation = tuple(parts[pv_index + 1:])
    if not principal_variation:
        _log_anomaly("empty principal variation", " ".join(parts))
        return None

    depth = _int_after(parts[:pv_index], "depth")
    line_rank = _int_after(parts[:pv_index], "multipv")
    nodes = _int_after(parts[:pv_index], "nodes")
    score_kind, score_value = score

    return EngineInfoLine(
        depth=depth if depth is not None else 0,
        score_kind=score_kind,
        score_value=score_value,
        principal_variation=principal_variation,
        line_rank=line_rank if line_rank is not None else 1,
        node_count=nodes,
    )


def _parse_score(parts: List[str]) -> Optional[tuple]:
    """Parse 'score cp <v>' or 'score mate <v>'.

    Args:
        parts: Tokens of the info line.

    Returns:
        Tuple of (ScoreKind, int) or None if the score is malformed.
    """
    idx = parts.index("score")
    if idx + 2 >= len(parts):
        return None
    kind_token = parts[idx + 1]
    if kind_token == "cp":
        kind = ScoreKind.CENTIPAWNS
    elif kind_token == "mate":
        kind = ScoreKind.MATE
    else:
        return None
    try:
        value = int(parts[idx + 2])
    except ValueError:
        return None
    return kind, value


def _value_after(parts: List[str], marker: str) -> Optional[str]:
    if marker not in parts:
        return None
    idx = parts.index(marker)
    if idx + 1 >= len(parts) or parts[idx + 1] in _INFO_KEYWORDS:
        return None
    return parts[idx + 1]


def _int_after(parts: List[str], marker: str) -> Optional[int]:
    value = _value_after(parts, marker)
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        _log_anomaly(f"non-integer {marker}", " ".join(parts))
        return None


def _log_anomaly(reason: str, line: str) -> None:
    LoggingService.get_instance().debug(f"[UCI PARSE] Ignoring info line ({reason}): {line}")
