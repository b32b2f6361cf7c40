"""Runtime configuration for night scheduling and execution."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from nightcrew.core.models import GovernorConfig, NightPlannerConfig
from nightcrew.executor.backend.cli_backend import DEFAULT_COMMAND_TEMPLATE


@dataclass(slots=True)
class NightSettings:
    """Night window and path exclusions."""

    enabled: bool = True
    start_hour: int = 23
    end_hour: int = 6
    exclude_paths: tuple[str, ...] = ()


@dataclass(slots=True)
class BudgetSettings:
    """Spending policy and the fallback balance estimate."""

    credit_cap_percent: int = 75
    max_budget_per_task_usd_cents: int = 50
    hard_stop_minutes: int = 30
    window_reset_hour: int = 0
    estimated_balance_usd_cents: int = 5_000


@dataclass(slots=True)
class AgentSettings:
    """External agent invocation."""

    command_template: str = DEFAULT_COMMAND_TEMPLATE
    model: str = "sonnet"
    timeout_seconds: int = 300


@dataclass(slots=True)
class LedgerSettings:
    record_tokens: bool = True


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".nightcrew.db")
    home_dir: Path = Path("~/.nightcrew")
    night: NightSettings = field(default_factory=NightSettings)
    budget: BudgetSettings = field(default_factory=BudgetSettings)
    agent: AgentSettings = field(default_factory=AgentSettings)
    ledger: LedgerSettings = field(default_factory=LedgerSettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("NIGHTCREW_DB_PATH", ".nightcrew.db")),
            home_dir=Path(os.getenv("NIGHTCREW_HOME", "~/.nightcrew")).expanduser(),
            night=NightSettings(
                enabled=_env_bool("NIGHTCREW_NIGHT_ENABLED", default=True),
                start_hour=_env_int("NIGHTCREW_NIGHT_START_HOUR", 23),
                end_hour=_env_int("NIGHTCREW_NIGHT_END_HOUR", 6),
                exclude_paths=_collect_exclude_paths(),
            ),
            budget=BudgetSettings(
                credit_cap_percent=_env_int("NIGHTCREW_CREDIT_CAP_PERCENT", 75),
                max_budget_per_task_usd_cents=_env_int(
                    "NIGHTCREW_MAX_BUDGET_PER_TASK_USD_CENTS",
                    50,
                ),
                hard_stop_minutes=_env_int("NIGHTCREW_HARD_STOP_MINUTES", 30),
                window_reset_hour=_env_int("NIGHTCREW_WINDOW_RESET_HOUR", 0),
                estimated_balance_usd_cents=_env_int(
                    "NIGHTCREW_ESTIMATED_BALANCE_USD_CENTS",
                    5_000,
                ),
            ),
            agent=AgentSettings(
                command_template=os.getenv(
                    "NIGHTCREW_AGENT_COMMAND_TEMPLATE",
                    DEFAULT_COMMAND_TEMPLATE,
                ),
                model=os.getenv("NIGHTCREW_AGENT_MODEL", "sonnet"),
                timeout_seconds=_env_int("NIGHTCREW_AGENT_TIMEOUT_SECONDS", 300),
            ),
            ledger=LedgerSettings(
                record_tokens=_env_bool("NIGHTCREW_LEDGER_RECORD_TOKENS", default=True),
            ),
        )

    @property
    def log_dir(self) -> Path:
        return self.home_dir / "logs"

    @property
    def report_dir(self) -> Path:
        return self.home_dir / "reports"

    def governor_config(self) -> GovernorConfig:
        return GovernorConfig(
            credit_cap_percent=self.budget.credit_cap_percent,
            max_budget_per_task_usd_cents=self.budget.max_budget_per_task_usd_cents,
            hard_stop_minutes_before_reset=self.budget.hard_stop_minutes,
            window_reset_hour=self.budget.window_reset_hour,
        )

    def planner_config(self) -> NightPlannerConfig:
        return NightPlannerConfig(
            start_hour=self.night.start_hour,
            end_hour=self.night.end_hour,
            governor=self.governor_config(),
        )

    def validate(self) -> None:
        """Raise configuration error naming the offending variable."""

        for name, hour in (
            ("NIGHTCREW_NIGHT_START_HOUR", self.night.start_hour),
            ("NIGHTCREW_NIGHT_END_HOUR", self.night.end_hour),
            ("NIGHTCREW_WINDOW_RESET_HOUR", self.budget.window_reset_hour),
        ):
            if not 0 <= hour <= 23:  # noqa: PLR2004
                raise ValueError(f"{name} must be between 0 and 23, got {hour}.")
        if not 1 <= self.budget.credit_cap_percent <= 100:  # noqa: PLR2004
            raise ValueError("NIGHTCREW_CREDIT_CAP_PERCENT must be between 1 and 100.")
        if self.budget.max_budget_per_task_usd_cents <= 0:
            raise ValueError("NIGHTCREW_MAX_BUDGET_PER_TASK_USD_CENTS must be > 0.")
        if self.budget.hard_stop_minutes < 0:
            raise ValueError("NIGHTCREW_HARD_STOP_MINUTES must be >= 0.")
        if self.budget.estimated_balance_usd_cents < 0:
            raise ValueError("NIGHTCREW_ESTIMATED_BALANCE_USD_CENTS must be >= 0.")
        if self.agent.timeout_seconds <= 0:
            raise ValueError("NIGHTCREW_AGENT_TIMEOUT_SECONDS must be > 0.")
        template = self.agent.command_template.strip()
        if not template:
            raise ValueError("NIGHTCREW_AGENT_COMMAND_TEMPLATE must not be empty.")
        if "{prompt}" not in template:
            raise ValueError("NIGHTCREW_AGENT_COMMAND_TEMPLATE must include {prompt}.")


def _collect_exclude_paths() -> tuple[str, ...]:
    raw = os.getenv("NIGHTCREW_NIGHT_EXCLUDE_PATHS", "").strip()
    if not raw:
        return ()
    values: list[str] = []
    for part in raw.split(","):
        normalized = part.strip()
        if normalized and normalized not in values:
            values.append(normalized)
    return tuple(values)


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {value!r}") from error


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"Invalid boolean value for {name}: {value!r}")
