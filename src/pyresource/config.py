"""Manager configuration for pyresource."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from pyresource.exceptions import ResourceConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError as exc:
        raise ResourceConfigError(f"{name} must be an integer, got {value!r}") from exc


@dataclasses.dataclass(frozen=True)
class ManagerConfig:
    """Resource manager configuration.

    Parameters
    ----------
    key_prefix : str
        Prefix of every persisted cache key. A resource ``"user"`` is
        stored under ``"resource-user"`` with the default prefix.
    storage_path : str or None
        Directory used by the default :class:`~pyresource.storage.JsonFileStorage`.
        When ``None`` the manager falls back to an in-process
        :class:`~pyresource.storage.MemoryStorage`. Ignored when a storage
        instance is passed to the manager explicitly.
    log_max_string : int
        Maximum length of string values rendered in DEBUG payload logs.
    log_payloads : bool
        Include (summarized) resource data in DEBUG transition logs.
    """

    key_prefix: str = "resource-"
    storage_path: str | None = None
    log_max_string: int = 120
    log_payloads: bool = False

    def __post_init__(self) -> None:
        if self.log_max_string <= 0:
            raise ResourceConfigError("log_max_string must be positive")

    @classmethod
    def from_env(cls, **overrides: Any) -> ManagerConfig:
        """Create configuration from environment variables.

        Reads the optional ``PYRESOURCE_*`` variables. Explicit keyword
        arguments override environment values.

        Parameters
        ----------
        **overrides
            Explicit field values that take precedence over env vars.

        Returns
        -------
        ManagerConfig
            Populated configuration.
        """
        env = os.environ
        config_kwargs: dict[str, Any] = {}

        _ENV_CONFIG_MAP = {
            "PYRESOURCE_KEY_PREFIX": "key_prefix",
            "PYRESOURCE_STORAGE_PATH": "storage_path",
        }
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        max_string_env = env.get("PYRESOURCE_LOG_MAX_STRING")
        if max_string_env is not None and "log_max_string" not in overrides:
            config_kwargs["log_max_string"] = _env_int("PYRESOURCE_LOG_MAX_STRING", max_string_env)

        if "log_payloads" not in overrides:
            config_kwargs["log_payloads"] = _env_bool(env.get("PYRESOURCE_LOG_PAYLOADS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
