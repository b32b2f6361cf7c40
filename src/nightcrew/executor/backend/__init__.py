"""Agent backend implementations."""

from nightcrew.executor.backend.base import (
    AgentBackend,
    AgentRunRequest,
    AgentRunResult,
)
from nightcrew.executor.backend.cli_backend import BackendRunError, CliAgentBackend

__all__ = [
    "AgentBackend",
    "AgentRunRequest",
    "AgentRunResult",
    "BackendRunError",
    "CliAgentBackend",
]
