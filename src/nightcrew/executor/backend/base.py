"""Agent adapter port for task execution."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol


@dataclass(slots=True)
class AgentRunRequest:
    """Inputs required to execute one task attempt."""

    prompt: str
    project_path: Path
    model: str
    max_budget_usd: float
    timeout_seconds: int


@dataclass(slots=True)
class AgentRunResult:
    """Execution outcome with captured output and usage.

    Exit code 124 marks a timeout and 127 a command that could not start.
    """

    exit_code: int
    stdout: str
    stderr: str
    duration_ms: int
    cost_usd_cents: int = 0
    total_tokens: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


class AgentBackend(Protocol):
    """Protocol implemented by agent runners."""

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        """Run a task attempt and return execution metadata."""
