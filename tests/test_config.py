"""Tests for configuration defaults and validation."""

import pytest

from cosim_rsp_mcp.config import (
    DEFAULT_PORT,
    MAX_PACKET_SIZE,
    PORT_ENV_VAR,
    WIRE_BUFFER_SIZE,
    RetryPolicy,
    StubConfig,
    default_port,
)


def test_packet_sizes():
    assert MAX_PACKET_SIZE == 16384
    assert WIRE_BUFFER_SIZE == 2 * MAX_PACKET_SIZE + 4


def test_retry_policy_deadline():
    policy = RetryPolicy(poll_interval=0.01, max_attempts=200)
    assert policy.deadline == pytest.approx(2.0)


def test_retry_policy_validation():
    with pytest.raises(ValueError):
        RetryPolicy(poll_interval=-1)
    with pytest.raises(ValueError):
        RetryPolicy(max_attempts=0)
    with pytest.raises(ValueError):
        RetryPolicy(max_resends=-1)


def test_default_port_without_env(monkeypatch):
    monkeypatch.delenv(PORT_ENV_VAR, raising=False)
    assert default_port() == DEFAULT_PORT


def test_default_port_from_env(monkeypatch):
    monkeypatch.setenv(PORT_ENV_VAR, "4242")
    assert default_port() == 4242
    assert StubConfig().port == 4242


def test_default_port_invalid_env(monkeypatch):
    monkeypatch.setenv(PORT_ENV_VAR, "gdb")
    with pytest.raises(ValueError):
        default_port()
    monkeypatch.setenv(PORT_ENV_VAR, "70000")
    with pytest.raises(ValueError):
        default_port()
