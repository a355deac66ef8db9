"""Unit tests for client configuration and mode detection."""

from __future__ import annotations

import pytest

from dreamquill_sdk.config import (
    DEFAULT_BASE_PATH,
    DEFAULT_BASE_URL,
    DEFAULT_IDLE_INTERVAL,
    ClientConfig,
    RuntimeMode,
    detect_mode,
)


class TestClientConfig:
    """Defaults and validation."""

    def test_defaults(self) -> None:
        config = ClientConfig()
        assert config.mode == RuntimeMode.AUTO
        assert config.base_url == DEFAULT_BASE_URL
        assert config.base_path == DEFAULT_BASE_PATH
        assert config.idle_interval == DEFAULT_IDLE_INTERVAL == 0.02
        assert config.ipc_command == ["dreamquill-desktop", "--ipc"]

    def test_default_command_is_not_shared(self) -> None:
        first = ClientConfig()
        first.ipc_command.append("--extra")
        assert ClientConfig().ipc_command == ["dreamquill-desktop", "--ipc"]

    def test_mode_string_is_coerced(self) -> None:
        assert ClientConfig(mode="ipc").mode == RuntimeMode.IPC  # type: ignore[arg-type]

    def test_unknown_mode_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            ClientConfig(mode="tauri")  # type: ignore[arg-type]

    @pytest.mark.parametrize("field", ["timeout", "idle_interval"])
    def test_non_positive_intervals_are_rejected(self, field: str) -> None:
        with pytest.raises(ValueError, match=field):
            ClientConfig(**{field: 0})


class TestFromEnv:
    """Loading from DREAMQUILL_* variables."""

    def test_empty_environment_gives_defaults(self) -> None:
        assert ClientConfig.from_env({}) == ClientConfig()

    def test_reads_every_variable(self) -> None:
        config = ClientConfig.from_env(
            {
                "DREAMQUILL_MODE": "HTTP",
                "DREAMQUILL_BASE_URL": "http://backend:8080",
                "DREAMQUILL_BASE_PATH": "/v2",
                "DREAMQUILL_TIMEOUT": "12.5",
                "DREAMQUILL_IPC_COMMAND": "/opt/dq/desktop --ipc --profile 'my profile'",
            }
        )
        assert config.mode == RuntimeMode.HTTP
        assert config.base_url == "http://backend:8080"
        assert config.base_path == "/v2"
        assert config.timeout == 12.5
        assert config.ipc_command == ["/opt/dq/desktop", "--ipc", "--profile", "my profile"]

    def test_invalid_timeout_is_ignored(self) -> None:
        config = ClientConfig.from_env({"DREAMQUILL_TIMEOUT": "soon"})
        assert config.timeout == ClientConfig().timeout

    @pytest.mark.parametrize("timeout", ["0", "-5", "nan"])
    def test_non_positive_timeout_is_ignored(self, timeout: str) -> None:
        config = ClientConfig.from_env({"DREAMQUILL_TIMEOUT": timeout})
        assert config.timeout == ClientConfig().timeout


class TestDetectMode:
    """The single environment probe for backend selection."""

    def test_defaults_to_http(self) -> None:
        assert detect_mode({}) == RuntimeMode.HTTP

    def test_advertised_ipc_backend_selects_ipc(self) -> None:
        assert detect_mode({"DREAMQUILL_IPC_COMMAND": "dq --ipc"}) == RuntimeMode.IPC

    def test_explicit_mode_wins(self) -> None:
        env = {"DREAMQUILL_MODE": "http", "DREAMQUILL_IPC_COMMAND": "dq --ipc"}
        assert detect_mode(env) == RuntimeMode.HTTP

    def test_explicit_auto_falls_through_to_probe(self) -> None:
        env = {"DREAMQUILL_MODE": "auto", "DREAMQUILL_IPC_COMMAND": "dq --ipc"}
        assert detect_mode(env) == RuntimeMode.IPC

    def test_resolved_mode_keeps_concrete_mode(self) -> None:
        config = ClientConfig(mode=RuntimeMode.HTTP)
        assert config.resolved_mode({"DREAMQUILL_IPC_COMMAND": "dq"}) == RuntimeMode.HTTP

    def test_resolved_mode_probes_for_auto(self) -> None:
        config = ClientConfig()
        assert config.resolved_mode({"DREAMQUILL_IPC_COMMAND": "dq"}) == RuntimeMode.IPC
