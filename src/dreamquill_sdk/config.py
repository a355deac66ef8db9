"""Client configuration.

Values come from explicit arguments or from ``DREAMQUILL_*`` environment
variables. ``detect_mode`` is the only place that inspects the environment
to choose between the networked and the embedded IPC backend.
"""

from __future__ import annotations

import logging
import os
import shlex
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)

ENV_MODE = "DREAMQUILL_MODE"
ENV_BASE_URL = "DREAMQUILL_BASE_URL"
ENV_BASE_PATH = "DREAMQUILL_BASE_PATH"
ENV_TIMEOUT = "DREAMQUILL_TIMEOUT"
ENV_IPC_COMMAND = "DREAMQUILL_IPC_COMMAND"

DEFAULT_BASE_URL = "http://127.0.0.1:5173"
DEFAULT_BASE_PATH = "/api"
DEFAULT_TIMEOUT = 30.0
DEFAULT_IDLE_INTERVAL = 0.02
DEFAULT_IPC_COMMAND = ["dreamquill-desktop", "--ipc"]


class RuntimeMode(str, Enum):
    """Which backend the client talks to."""

    AUTO = "auto"
    HTTP = "http"
    IPC = "ipc"


@dataclass
class ClientConfig:
    """Configuration shared by both transports."""

    mode: RuntimeMode = RuntimeMode.AUTO

    # Networked backend
    base_url: str = DEFAULT_BASE_URL
    base_path: str = DEFAULT_BASE_PATH
    timeout: float = DEFAULT_TIMEOUT

    # Poll interval of the push-to-pull loop when the queue is empty
    idle_interval: float = DEFAULT_IDLE_INTERVAL

    # Embedded backend (subprocess speaking newline-delimited JSON)
    ipc_command: list[str] = field(default_factory=lambda: list(DEFAULT_IPC_COMMAND))
    ipc_working_directory: str | None = None
    ipc_env: dict[str, str] | None = None

    def __post_init__(self) -> None:
        self.mode = RuntimeMode(self.mode)
        if self.timeout <= 0:
            raise ValueError(f"timeout must be positive, got {self.timeout}")
        if self.idle_interval <= 0:
            raise ValueError(f"idle_interval must be positive, got {self.idle_interval}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> ClientConfig:
        """Build a config from ``DREAMQUILL_*`` environment variables."""
        env = os.environ if env is None else env
        config = cls()

        if mode := env.get(ENV_MODE):
            config.mode = RuntimeMode(mode.strip().lower())
        if base_url := env.get(ENV_BASE_URL):
            config.base_url = base_url
        if base_path := env.get(ENV_BASE_PATH):
            config.base_path = base_path
        if timeout := env.get(ENV_TIMEOUT):
            try:
                value = float(timeout)
            except ValueError:
                value = 0.0
            if value > 0:
                config.timeout = value
            else:
                logger.warning(f"Ignoring invalid {ENV_TIMEOUT}={timeout!r}")
        if ipc_command := env.get(ENV_IPC_COMMAND):
            config.ipc_command = shlex.split(ipc_command)

        return config

    def resolved_mode(self, env: Mapping[str, str] | None = None) -> RuntimeMode:
        """Return the concrete mode, probing the environment for ``auto``."""
        if self.mode != RuntimeMode.AUTO:
            return self.mode
        return detect_mode(env)


def detect_mode(env: Mapping[str, str] | None = None) -> RuntimeMode:
    """Probe the host environment for an embedded IPC backend.

    An explicit ``DREAMQUILL_MODE`` wins. Otherwise a desktop host that
    advertises its backend through ``DREAMQUILL_IPC_COMMAND`` selects IPC,
    and everything else falls back to HTTP.
    """
    env = os.environ if env is None else env

    explicit = env.get(ENV_MODE, "").strip().lower()
    if explicit and explicit != RuntimeMode.AUTO.value:
        return RuntimeMode(explicit)

    if env.get(ENV_IPC_COMMAND):
        return RuntimeMode.IPC
    return RuntimeMode.HTTP
