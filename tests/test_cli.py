"""Tests for the cosim-rsp command line."""

import socket

import pytest

from cosim_rsp_mcp.cli import build_parser, config_from_args, main
from cosim_rsp_mcp.config import PORT_ENV_VAR, RetryPolicy


def test_gdbinit_sets_port():
    args = build_parser().parse_args(["--gdbinit", "1234"])
    assert args.port == 1234


def test_port_alias():
    args = build_parser().parse_args(["--port", "5678"])
    assert config_from_args(args).port == 5678


def test_defaults(monkeypatch):
    monkeypatch.delenv(PORT_ENV_VAR, raising=False)
    args = build_parser().parse_args([])
    config = config_from_args(args)
    assert config.port == 10001
    assert config.host == "127.0.0.1"
    assert config.retry == RetryPolicy()
    assert args.hart == "none"


def test_env_port_used_when_flag_absent(monkeypatch):
    monkeypatch.setenv(PORT_ENV_VAR, "2331")
    assert config_from_args(build_parser().parse_args([])).port == 2331


def test_retry_flags():
    args = build_parser().parse_args(
        ["--poll-interval", "0.01", "--max-attempts", "50", "--max-resends", "2"]
    )
    assert config_from_args(args).retry == RetryPolicy(0.01, 50, 2)


def test_non_integer_port_rejected():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["--gdbinit", "abc"])


def test_invalid_retry_policy_exit_code():
    assert main(["--port", "0", "--max-attempts", "0"]) == 2


def test_port_in_use_exit_code():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as busy:
        busy.bind(("127.0.0.1", 0))
        busy.listen(1)
        port = busy.getsockname()[1]
        assert main(["--port", str(port), "--once"]) == 1
