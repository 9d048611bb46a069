"""Project-level configuration, path helpers and cruise tunables."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "03_data"
LOGS_DIR = PROJECT_ROOT / "04_logs"
DEFAULT_DB_PATH = DATA_DIR / "agent_engine.db"
DEFAULT_LOG_PATH = LOGS_DIR / "app.log"

DATA_DIR.mkdir(parents=True, exist_ok=True)
LOGS_DIR.mkdir(parents=True, exist_ok=True)


PathLike = Union[str, Path]


def resolve_db_path(env_value: PathLike | None = None) -> PathLike:
    """Resolve DATABASE_URL to an absolute path."""
    if not env_value:
        return DEFAULT_DB_PATH

    if str(env_value) == ":memory:":
        return ":memory:"

    candidate = Path(env_value)
    return candidate if candidate.is_absolute() else PROJECT_ROOT / candidate


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"{name} must not be negative, got {raw!r}")
    return value


def _env_int(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
    if value < minimum:
        raise ValueError(f"{name} must be at least {minimum}, got {raw!r}")
    return value


@dataclass(frozen=True)
class StateMachineSettings:
    """Risk-duration, timeout and recovery thresholds for one agent."""

    medium_risk_duration_s: float = 600.0
    high_risk_duration_s: float = 300.0
    state_timeout_s: float = 1800.0
    max_recovery_attempts: int = 3
    recovery_confirmation_s: float = 120.0
    history_capacity: int = 100


@dataclass(frozen=True)
class CruiseSettings:
    """Tunables for the scheduler, optimizer and state machines."""

    tick_interval_s: float = 300.0
    max_concurrent_cycles: int = 8
    call_timeout_s: float = 10.0
    shutdown_grace_s: float = 30.0
    min_improvement: float = 0.01
    price_cache_ttl_s: float = 1800.0
    scoring_service_url: str = "http://localhost:3002"
    transaction_service_url: str = "http://localhost:3003"
    state_machine: StateMachineSettings = field(default_factory=StateMachineSettings)

    @classmethod
    def from_env(cls) -> "CruiseSettings":
        """Build settings from environment variables, falling back to defaults."""
        defaults = cls()
        sm_defaults = StateMachineSettings()
        state_machine = StateMachineSettings(
            medium_risk_duration_s=_env_float(
                "AGENT_MEDIUM_RISK_DURATION_SECONDS", sm_defaults.medium_risk_duration_s
            ),
            high_risk_duration_s=_env_float(
                "AGENT_HIGH_RISK_DURATION_SECONDS", sm_defaults.high_risk_duration_s
            ),
            state_timeout_s=_env_float(
                "AGENT_STATE_TIMEOUT_SECONDS", sm_defaults.state_timeout_s
            ),
            max_recovery_attempts=_env_int(
                "AGENT_MAX_RECOVERY_ATTEMPTS", sm_defaults.max_recovery_attempts
            ),
            recovery_confirmation_s=_env_float(
                "AGENT_RECOVERY_CONFIRMATION_SECONDS",
                sm_defaults.recovery_confirmation_s,
            ),
            history_capacity=_env_int(
                "AGENT_HISTORY_CAPACITY", sm_defaults.history_capacity, minimum=1
            ),
        )
        return cls(
            tick_interval_s=_env_float(
                "CRUISE_TICK_INTERVAL_SECONDS", defaults.tick_interval_s
            ),
            max_concurrent_cycles=_env_int(
                "CRUISE_MAX_CONCURRENT_CYCLES", defaults.max_concurrent_cycles, minimum=1
            ),
            call_timeout_s=_env_float(
                "CRUISE_CALL_TIMEOUT_SECONDS", defaults.call_timeout_s
            ),
            shutdown_grace_s=_env_float(
                "CRUISE_SHUTDOWN_GRACE_SECONDS", defaults.shutdown_grace_s
            ),
            min_improvement=_env_float(
                "OPTIMIZER_MIN_IMPROVEMENT", defaults.min_improvement
            ),
            price_cache_ttl_s=_env_float(
                "OPTIMIZER_PRICE_CACHE_TTL_SECONDS", defaults.price_cache_ttl_s
            ),
            scoring_service_url=os.getenv(
                "SCORING_SERVICE_URL", defaults.scoring_service_url
            ),
            transaction_service_url=os.getenv(
                "TRANSACTION_SERVICE_URL", defaults.transaction_service_url
            ),
            state_machine=state_machine,
        )
