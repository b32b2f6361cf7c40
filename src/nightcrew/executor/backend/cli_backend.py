"""Subprocess-based backend runner for CLI coding agents."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
import tempfile
import time
from typing import IO

from nightcrew.executor.backend.base import AgentRunRequest, AgentRunResult
from nightcrew.executor.failure_classifier import SPAWN_FAILURE_EXIT_CODE, TIMEOUT_EXIT_CODE
from nightcrew.executor.usage import extract_usage

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TEMPLATE = (
    "claude -p {prompt} --model {model} --output-format json "
    "--max-turns 25 --add-dir {project_path}"
)
TIMED_OUT_MARKER = "\n[TIMED OUT]"
_POLL_INTERVAL_SECONDS = 0.1


class BackendRunError(RuntimeError):
    """Backend execution error with retryability hint."""

    def __init__(self, message: str, *, transient: bool) -> None:
        super().__init__(message)
        self.transient = transient


class CliAgentBackend:
    """Execute a task prompt through a templated agent command line.

    The command runs with the project as its working directory and a hard
    wall-clock timeout; on timeout the process is terminated and the attempt
    reports exit code 124. A command that cannot be started reports 127.
    """

    def __init__(
        self,
        command_template: str = DEFAULT_COMMAND_TEMPLATE,
        *,
        extra_env: dict[str, str] | None = None,
    ) -> None:
        self.command_template = command_template
        self.extra_env = extra_env or {}

    def run(self, request: AgentRunRequest) -> AgentRunResult:
        argv = build_run_args(command_template=self.command_template, request=request)

        env = os.environ.copy()
        env["CI"] = "true"
        env["NIGHTCREW_MODEL"] = request.model
        env["NIGHTCREW_MAX_BUDGET_USD"] = f"{request.max_budget_usd:.2f}"
        env.update(self.extra_env)

        with (
            tempfile.TemporaryFile("w+b") as stdout_handle,
            tempfile.TemporaryFile("w+b") as stderr_handle,
        ):
            start_monotonic = time.monotonic()
            try:
                process = subprocess.Popen(  # noqa: S603
                    argv,
                    cwd=request.project_path,
                    env=env,
                    stdout=stdout_handle,
                    stderr=stderr_handle,
                )
            except OSError as error:
                logger.warning("Agent command failed to start: %s (%s)", argv[0], error)
                return AgentRunResult(
                    exit_code=SPAWN_FAILURE_EXIT_CODE,
                    stdout="",
                    stderr=str(error),
                    duration_ms=_elapsed_ms(start_monotonic),
                )

            exit_code, timed_out = _wait_with_timeout(process, request.timeout_seconds)
            duration_ms = _elapsed_ms(start_monotonic)
            stdout = _read_back(stdout_handle)
            stderr = _read_back(stderr_handle)

        if timed_out:
            logger.warning(
                "Agent timed out after %ss in %s",
                request.timeout_seconds,
                request.project_path,
            )
            stdout += TIMED_OUT_MARKER

        usage = extract_usage(stdout=stdout, stderr=stderr)
        return AgentRunResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            duration_ms=duration_ms,
            cost_usd_cents=usage.cost_usd_cents,
            total_tokens=usage.total_tokens,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
        )


def build_run_args(*, command_template: str, request: AgentRunRequest) -> list[str]:
    """Render the command template into an argv list."""

    stripped = command_template.strip()
    if not stripped:
        raise BackendRunError("Agent command template is empty.", transient=False)
    if "{prompt}" not in stripped:
        raise BackendRunError("Agent command template must include {prompt}.", transient=False)

    try:
        rendered = stripped.format(
            prompt=shlex.quote(request.prompt),
            model=shlex.quote(request.model),
            project_path=shlex.quote(str(request.project_path)),
            max_budget_usd=shlex.quote(f"{request.max_budget_usd:.2f}"),
        )
    except (KeyError, IndexError) as error:
        raise BackendRunError(
            f"Unsupported command template placeholder: {error}",
            transient=False,
        ) from error

    argv = shlex.split(rendered)
    if not argv:
        raise BackendRunError("Agent command template rendered empty command.", transient=False)
    return argv


def _wait_with_timeout(process: subprocess.Popen[bytes], timeout_seconds: int) -> tuple[int, bool]:
    start_monotonic = time.monotonic()
    while True:
        returncode = process.poll()
        if returncode is not None:
            return returncode, False
        if time.monotonic() - start_monotonic >= timeout_seconds:
            _terminate_process(process)
            return TIMEOUT_EXIT_CODE, True
        time.sleep(_POLL_INTERVAL_SECONDS)


def _terminate_process(process: subprocess.Popen[bytes]) -> None:
    try:
        process.terminate()
    except OSError:
        return
    try:
        process.wait(timeout=2)
    except subprocess.TimeoutExpired:
        try:
            process.kill()
        except OSError:
            return
        process.wait(timeout=2)


def _read_back(handle: IO[bytes]) -> str:
    """Decode captured output; agents are free to print bytes that are not UTF-8."""

    handle.seek(0)
    return handle.read().decode("utf-8", errors="replace")


def _elapsed_ms(start_monotonic: float) -> int:
    return int((time.monotonic() - start_monotonic) * 1000)
