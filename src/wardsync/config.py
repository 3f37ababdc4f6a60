"""Configuration for the wardsync server and client."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from wardsync._constants import (
    CRITICAL_FIELD_PATHS,
    DEFAULT_FREQUENCY_WINDOW,
    DEFAULT_HISTORY_LIMIT,
    DEFAULT_HOST,
    DEFAULT_MAX_RECONNECT_ATTEMPTS,
    DEFAULT_PATH,
    DEFAULT_PORT,
    DEFAULT_RECONNECT_DELAY,
    DEFAULT_TICK_INTERVAL,
    DEFAULT_URL,
)
from wardsync.exceptions import SyncConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


@dataclasses.dataclass(frozen=True)
class MutationProfile:
    """Knobs of the shared mutation pass.

    ``selection_min``/``selection_max`` bound the fraction of a collection
    whose numeric fields are touched on every pass. The status pass runs on
    every ``status_interval``-th pass.
    """

    selection_min: float = 0.3
    selection_max: float = 0.5
    status_interval: int = 1

    def __post_init__(self) -> None:
        if not 0.0 <= self.selection_min <= self.selection_max <= 1.0:
            raise SyncConfigError(
                f"selection fractions must satisfy 0 <= min <= max <= 1, "
                f"got {self.selection_min}..{self.selection_max}"
            )
        if self.status_interval < 1:
            raise SyncConfigError(f"status_interval must be >= 1, got {self.status_interval}")


@dataclasses.dataclass(frozen=True)
class SyncConfig:
    """Server and client configuration.

    Parameters
    ----------
    url : str
        WebSocket endpoint the client connects to.
    host : str
        Interface the server binds.
    port : int
        Port the server binds.
    path : str
        HTTP path of the WebSocket endpoint.
    tick_interval : float
        Seconds between mutation passes (and therefore scheduler ticks).
    ward : str
        Ward label included in every snapshot.
    patient_count : int
        Number of patients (and attached equipment) generated.
    seed : int or None
        Seed for the generator/mutation RNG. ``None`` for nondeterministic.
    critical_paths : tuple of str
        Field paths still shipped on a hybrid critical-only tick.
    max_reconnect_attempts : int
        Consecutive failed reconnects before the client gives up.
    reconnect_delay : float
        Base reconnect delay in seconds; doubled per attempt.
    history_limit : int
        Maximum number of messages kept in the client history.
    frequency_window : int
        Number of recent data messages used for update-frequency estimates.
    auto_resume : bool
        Resume immediately after connecting instead of starting paused.
    heartbeat : float or None
        Client WebSocket ping interval in seconds.
    mutation : MutationProfile
        Mutation pass knobs.
    """

    url: str = DEFAULT_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    path: str = DEFAULT_PATH
    tick_interval: float = DEFAULT_TICK_INTERVAL
    ward: str = "ICU-A"
    patient_count: int = 30
    seed: int | None = None
    critical_paths: tuple[str, ...] = CRITICAL_FIELD_PATHS
    max_reconnect_attempts: int = DEFAULT_MAX_RECONNECT_ATTEMPTS
    reconnect_delay: float = DEFAULT_RECONNECT_DELAY
    history_limit: int = DEFAULT_HISTORY_LIMIT
    frequency_window: int = DEFAULT_FREQUENCY_WINDOW
    auto_resume: bool = False
    heartbeat: float | None = None
    mutation: MutationProfile = dataclasses.field(default_factory=MutationProfile)

    def __post_init__(self) -> None:
        if self.tick_interval <= 0:
            raise SyncConfigError(f"tick_interval must be positive, got {self.tick_interval}")
        if self.patient_count < 0:
            raise SyncConfigError(f"patient_count must be >= 0, got {self.patient_count}")
        if self.max_reconnect_attempts < 0:
            raise SyncConfigError(f"max_reconnect_attempts must be >= 0, got {self.max_reconnect_attempts}")
        if self.reconnect_delay < 0:
            raise SyncConfigError(f"reconnect_delay must be >= 0, got {self.reconnect_delay}")
        if self.frequency_window < 2:
            raise SyncConfigError(f"frequency_window must be >= 2, got {self.frequency_window}")
        if not self.path.startswith("/"):
            raise SyncConfigError(f"path must start with '/', got {self.path!r}")

    @classmethod
    def from_env(cls, **overrides: Any) -> SyncConfig:
        """Create configuration from ``WARDSYNC_*`` environment variables.

        Explicit keyword arguments override environment values.

        Raises
        ------
        SyncConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        mutation_kwargs: dict[str, Any] = {}
        _ENV_MUTATION_MAP = {
            "WARDSYNC_SELECTION_MIN": ("selection_min", float),
            "WARDSYNC_SELECTION_MAX": ("selection_max", float),
            "WARDSYNC_STATUS_INTERVAL": ("status_interval", int),
        }
        for env_key, (field_name, cast) in _ENV_MUTATION_MAP.items():
            val = env.get(env_key)
            if val is not None:
                mutation_kwargs[field_name] = _parse(env_key, val, cast)

        # Allow overriding mutation fields via a nested dict
        mutation_overrides = overrides.pop("mutation", None)
        if isinstance(mutation_overrides, dict):
            mutation_kwargs.update(mutation_overrides)
        elif isinstance(mutation_overrides, MutationProfile):
            mutation_kwargs = dataclasses.asdict(mutation_overrides)

        config_kwargs: dict[str, Any] = {"mutation": MutationProfile(**mutation_kwargs)}

        _ENV_CONFIG_MAP = {
            "WARDSYNC_URL": ("url", str),
            "WARDSYNC_HOST": ("host", str),
            "WARDSYNC_PORT": ("port", int),
            "WARDSYNC_PATH": ("path", str),
            "WARDSYNC_TICK_INTERVAL": ("tick_interval", float),
            "WARDSYNC_WARD": ("ward", str),
            "WARDSYNC_PATIENT_COUNT": ("patient_count", int),
            "WARDSYNC_SEED": ("seed", int),
            "WARDSYNC_MAX_RECONNECT_ATTEMPTS": ("max_reconnect_attempts", int),
            "WARDSYNC_RECONNECT_DELAY": ("reconnect_delay", float),
            "WARDSYNC_HISTORY_LIMIT": ("history_limit", int),
            "WARDSYNC_FREQUENCY_WINDOW": ("frequency_window", int),
            "WARDSYNC_HEARTBEAT": ("heartbeat", float),
        }
        for env_key, (field_name, cast) in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _parse(env_key, val, cast)

        critical_env = env.get("WARDSYNC_CRITICAL_PATHS")
        if critical_env is not None and "critical_paths" not in overrides:
            config_kwargs["critical_paths"] = tuple(p.strip() for p in critical_env.split(",") if p.strip())

        if "auto_resume" not in overrides:
            config_kwargs["auto_resume"] = _env_bool(env.get("WARDSYNC_AUTO_RESUME"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)


def _parse(env_key: str, value: str, cast: type) -> Any:
    try:
        return cast(value.strip())
    except ValueError as exc:
        raise SyncConfigError(f"{env_key} has an invalid value: {value!r}") from exc
