import io

from Trace_Replay.engine.models import ExecStateEvent, LandingEvent
from Trace_Replay.engine.scanner import (
    LineKind,
    LogScanner,
    classify_line,
    leading_cycle,
    parse_dimensions,
    parse_exec_state,
    parse_landing,
)


def test_parse_landing_fields():
    ev = parse_landing("@5 P1.0 (x) landing C3 from link W, rest")
    assert ev == LandingEvent(cycle=5, x=1, y=0, color=3, link="W")
    assert ev.source == (0, 0)


def test_parse_landing_rejects_unknown_link():
    assert parse_landing("@5 P1.0 (x) landing C3 from link Q, rest") is None


def test_exec_state_opcode_and_idle():
    busy = parse_exec_state("@5 P0.0:[EX OP] T0 FADDS r1")
    assert busy == ExecStateEvent(5, 0, 0, True, "FADDS")
    dotted = parse_exec_state("@6 P2.3: pipe [EX OP] T12.lo LDW x")
    assert dotted.opcode == "LDW"
    assert (dotted.x, dotted.y) == (2, 3)
    idle = parse_exec_state("@7 P0.0:[EX OP] IDLE T0 FADDS")
    assert idle.busy is False
    assert idle.opcode is None


def test_exec_state_opcode_taken_after_first_marker():
    ev = parse_exec_state("@1 P0.0: T9 BOGUS [EX OP] T0 MUL [EX OP] T1 ADD")
    assert ev.opcode == "MUL"


def test_busy_without_opcode_token():
    ev = parse_exec_state("@1 P0.0:[EX OP] stalled")
    assert ev.busy is True
    assert ev.opcode is None


def test_nop_is_busy_but_inactive():
    ev = parse_exec_state("@1 P0.0:[EX OP] T0 NOP")
    assert ev.busy is True
    assert ev.active is False


def test_classify_line_kinds():
    assert classify_line("@3 router tick") == (LineKind.IRRELEVANT, None)
    assert classify_line("@3 P0.0 (x) landing Cx from link W,")[0] is LineKind.IRRELEVANT
    kind, ev = classify_line("@2 P1.1 (y) landing C1 from link R, local")
    assert kind is LineKind.LANDING
    assert ev.source is None


def test_leading_cycle_and_dimensions():
    assert leading_cycle("@42 anything") == 42
    assert leading_cycle("continuation") is None
    assert leading_cycle("@x nope") is None
    assert parse_dimensions("@0 dimX=4, dimY=3") == (4, 3)
    assert parse_dimensions("@0 dimX=4 dimY=3") is None


def test_scanner_offsets_and_stats(sample_bytes):
    scanner = LogScanner()
    lines = list(scanner.scan(io.BytesIO(sample_bytes)))
    assert scanner.dims == (2, 2)
    assert scanner.end_offset == len(sample_bytes)
    assert lines[0].kind is LineKind.DIMENSIONS
    for line in lines:
        raw = sample_bytes[line.start : line.end]
        assert raw.endswith(b"\n")
        if line.cycle is not None:
            assert raw.startswith(f"@{line.cycle} ".encode())
    assert scanner.stats.landings == 3
    assert scanner.stats.exec_states == 6
    assert scanner.stats.events == 9
    assert scanner.stats.skipped == 0


def test_scanner_tolerates_crlf_and_counts_malformed():
    data = (
        b"@0 dimX=3, dimY=1\r\n"
        b"@0 dimX=9, dimY=9\r\n"
        b"@1 P0.0:[EX OP] T0 ADD\r\n"
        b"@1 Pq.0:[EX OP] T0 ADD\r\n"
        b"@2 P0.0 (x) landing C1 from link Z,\r\n"
    )
    scanner = LogScanner()
    lines = list(scanner.scan(io.BytesIO(data)))
    assert scanner.dims == (3, 1)
    assert lines[2].event.opcode == "ADD"
    assert scanner.stats.exec_states == 1
    assert scanner.stats.skipped == 2


def test_scanner_replaces_invalid_utf8():
    data = b"@1 P0.0:[EX OP] T0 \xff\xfe\n"
    scanner = LogScanner()
    (line,) = scanner.scan(io.BytesIO(data))
    assert line.kind is LineKind.EXEC_STATE
    assert line.event.opcode == "\ufffd\ufffd"
