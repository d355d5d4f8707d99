"""Tests for command dispatch in stub mode and with a hart attached."""

import pytest

from conftest import FaultingHart
from cosim_rsp_mcp.models.hart import MemoryHart
from cosim_rsp_mcp.protocol.commands import INTERRUPT, parse_command
from cosim_rsp_mcp.protocol.dispatcher import (
    SessionDispatcher,
    decode_register,
    encode_register,
    error_reply,
)


@pytest.fixture
def stub(session):
    return SessionDispatcher(session)


@pytest.fixture
def hart():
    return MemoryHart()


@pytest.fixture
def attached(session, hart):
    return SessionDispatcher(session, hart)


def _dispatch(dispatcher, body):
    return dispatcher.dispatch(parse_command(body))


# --- helpers ---


def test_encode_register_little_endian():
    assert encode_register(0x12345678, 32) == b"78563412"
    assert encode_register(1, 64) == b"0100000000000000"


def test_decode_register_little_endian():
    assert decode_register(b"78563412") == 0x12345678


def test_error_reply_format():
    assert error_reply(0x0E) == b"E0e"


# --- stub mode ---


def test_stub_stop_reason(stub):
    assert _dispatch(stub, b"?") == b"T05"


def test_stub_read_all_registers(stub):
    """33 zeroed 32-bit fields: x0-x31 and pc."""
    assert _dispatch(stub, b"g") == b"0" * 264


def test_stub_query_supported(stub):
    assert _dispatch(stub, b"qSupported:multiprocess+;swbreak+") == b"PacketSize=4000"


def test_stub_query_trace_status(stub):
    assert _dispatch(stub, b"qTStatus") == b"T0"


def test_stub_unknown_query(stub):
    assert _dispatch(stub, b"qAttached") == b""


def test_stub_unsupported_commands(stub):
    for body in (b"vMustReplyEmpty", b"Z0,80000000,4", b"", b"m80000000,4", b"s", b"c", b"D"):
        assert _dispatch(stub, body) == b""


def test_stub_continue_does_not_run(stub, session):
    _dispatch(stub, b"c")
    assert not session.running


def test_stub_detach_keeps_session(stub, session):
    _dispatch(stub, b"D")
    assert not session.closed


def test_interrupt_while_halted_has_no_reply(stub):
    assert stub.dispatch(INTERRUPT) is None


# --- attached: registers ---


def test_read_all_registers_from_hart(attached, hart):
    hart.write_register(1, 0x12345678)
    reply = _dispatch(attached, b"g")
    assert len(reply) == 33 * 8
    assert reply[8:16] == b"78563412"
    assert reply[-8:] == b"00000080"


def test_read_all_registers_rv64(session):
    hart = MemoryHart(xlen=64)
    reply = _dispatch(SessionDispatcher(session, hart), b"g")
    assert len(reply) == 33 * 16
    assert reply[-16:] == b"0000008000000000"


def test_write_all_registers(attached, hart):
    values = [0] + [i * 0x11 for i in range(1, 32)] + [0x80000100]
    body = b"G" + b"".join(encode_register(v, 32) for v in values)
    assert _dispatch(attached, body) == b"OK"
    assert hart.read_register(5) == 0x55
    assert hart.read_pc() == 0x80000100


def test_write_all_registers_bad_length(attached):
    assert _dispatch(attached, b"G123") == b"E01"


def test_write_all_registers_too_many(attached):
    body = b"G" + b"00000000" * 34
    assert _dispatch(attached, body) == b"E01"


def test_read_register(attached, hart):
    hart.write_register(1, 0xDEADBEEF)
    assert _dispatch(attached, b"p1") == b"efbeadde"


def test_read_pc_register(attached):
    assert _dispatch(attached, b"p20") == b"00000080"


def test_read_fp_register(attached, hart):
    hart.write_fp_register(0, 0x3FF0000000000000)
    assert _dispatch(attached, b"p21") == b"000000000000f03f"


def test_read_register_out_of_range(attached):
    assert _dispatch(attached, b"p41") == b"E00"


def test_read_register_malformed(attached):
    assert _dispatch(attached, b"pzz") == b"E01"


def test_write_register(attached, hart):
    assert _dispatch(attached, b"P1=efbeadde") == b"OK"
    assert hart.read_register(1) == 0xDEADBEEF


def test_write_x0_is_ignored(attached, hart):
    assert _dispatch(attached, b"P0=01000000") == b"OK"
    assert hart.read_register(0) == 0


def test_write_pc_register(attached, hart):
    assert _dispatch(attached, b"P20=00010080") == b"OK"
    assert hart.read_pc() == 0x80000100


def test_write_fp_register(attached, hart):
    assert _dispatch(attached, b"P22=0100000000000000") == b"OK"
    assert hart.read_fp_register(1) == 1


# --- attached: memory ---


def test_read_memory(attached, hart):
    hart.write_memory(0x80000000, b"\x13\x00\x00\x00")
    assert _dispatch(attached, b"m80000000,4") == b"13000000"


def test_read_memory_outside_hart(attached):
    assert _dispatch(attached, b"m0,4") == b"E0e"


def test_read_memory_too_long(attached):
    assert _dispatch(attached, b"m80000000,2001") == b"E01"


def test_read_memory_malformed(attached):
    assert _dispatch(attached, b"m80000000") == b"E01"


def test_write_memory(attached, hart):
    assert _dispatch(attached, b"M80000010,2:abcd") == b"OK"
    assert hart.read_memory(0x80000010, 2) == b"\xab\xcd"


def test_write_memory_length_mismatch(attached):
    assert _dispatch(attached, b"M80000010,3:abcd") == b"E01"


def test_write_memory_outside_hart(attached):
    assert _dispatch(attached, b"M10,1:ff") == b"E0e"


# --- attached: execution ---


def test_step(attached, hart):
    assert _dispatch(attached, b"s") == b"T05"
    assert hart.read_pc() == 0x80000004


def test_step_until_exit(session):
    hart = MemoryHart(max_steps=1)
    dispatcher = SessionDispatcher(session, hart)
    assert _dispatch(dispatcher, b"s") == b"W00"


def test_continue_then_interrupt(attached, hart, session):
    assert _dispatch(attached, b"c") is None
    assert session.running
    assert attached.step_running() is None
    assert attached.step_running() is None
    assert hart.steps == 2
    assert attached.dispatch(INTERRUPT) == b"T02"
    assert not session.running


def test_continue_until_exit(session):
    hart = MemoryHart(max_steps=2)
    dispatcher = SessionDispatcher(session, hart)
    _dispatch(dispatcher, b"c")
    assert dispatcher.step_running() is None
    assert dispatcher.step_running() == b"W00"
    assert not session.running


def test_step_running_when_halted(attached, hart):
    assert attached.step_running() is None
    assert hart.steps == 0


def test_detach(attached, session):
    assert _dispatch(attached, b"D") == b"OK"
    assert session.closed
    assert session.close_reason == "debugger detached"


def test_register_reply_codes_are_fixed(attached):
    assert _dispatch(attached, b"p-1") == b"E00"
    assert _dispatch(attached, b"P41=00000000") == b"E00"
    assert _dispatch(attached, b"P1=zz") == b"E01"


def test_hart_fault_while_running_stops_hart(session):
    """A hart that faults under 'c' stops with SIGSEGV instead of raising."""
    dispatcher = SessionDispatcher(session, FaultingHart())
    _dispatch(dispatcher, b"c")
    assert dispatcher.step_running() == b"T0b"
    assert not session.running


def test_hart_fault_on_step(session):
    dispatcher = SessionDispatcher(session, FaultingHart())
    assert _dispatch(dispatcher, b"s") == b"E0e"


def test_register_wider_than_xlen(session):
    dispatcher = SessionDispatcher(session, FaultingHart())
    assert _dispatch(dispatcher, b"p1") == b"E0e"
    assert _dispatch(dispatcher, b"g") == b"E0e"
