"""
Engine configuration.

Sources, later overriding earlier: built-in defaults, a YAML/JSON file
(``EngineConfig.from_file``), then ``AETHER_*`` environment variables
(``EngineConfig.from_env``).
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from aether.aether_cache import DEFAULT_CACHE_CAPACITY
from aether.aether_http import DEFAULT_RETRIES, DEFAULT_TIMEOUT
from aether.aether_limits import Limits
from aether.aether_optimizer import OptimizationFlags
from aether.aether_trace import DEFAULT_TRACE_CAPACITY


ENV_LIMITS = {
    "AETHER_MAX_STEPS": "max_steps",
    "AETHER_MAX_RECURSION_DEPTH": "max_recursion_depth",
    "AETHER_MAX_DURATION_MS": "max_duration_ms",
}
ENV_TRACE_CAPACITY = "AETHER_TRACE_CAPACITY"
ENV_CACHE_CAPACITY = "AETHER_CACHE_CAPACITY"


class ConfigError(ValueError):
    pass


def _int_or_none(name: str, raw: Any) -> Optional[int]:
    if raw is None:
        return None
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from None
    return None if value < 0 else value


@dataclass
class HttpConfig:
    timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRIES

    def as_request_config(self) -> Dict[str, Any]:
        return {"timeout": self.timeout, "retries": self.retries}


@dataclass
class EngineConfig:
    limits: Limits = field(default_factory=Limits)
    optimization: OptimizationFlags = field(default_factory=OptimizationFlags)
    trace_capacity: int = DEFAULT_TRACE_CAPACITY
    cache_capacity: Optional[int] = DEFAULT_CACHE_CAPACITY
    base_dir: Optional[str] = None
    http: HttpConfig = field(default_factory=HttpConfig)

    def __post_init__(self):
        if self.trace_capacity < 1:
            raise ConfigError("trace_capacity must be at least 1")
        if self.cache_capacity is not None and self.cache_capacity < 0:
            self.cache_capacity = None
        if self.cache_capacity == 0:
            raise ConfigError("cache_capacity must be positive or null")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown config key(s): {', '.join(sorted(unknown))}")
        try:
            return cls(
                limits=Limits.from_dict(dict(data.get("limits") or {})),
                optimization=OptimizationFlags(**(data.get("optimization") or {})),
                trace_capacity=int(data.get("trace_capacity", DEFAULT_TRACE_CAPACITY)),
                cache_capacity=_int_or_none("cache_capacity", data.get("cache_capacity", DEFAULT_CACHE_CAPACITY)),
                base_dir=data.get("base_dir"),
                http=HttpConfig(**(data.get("http") or {})),
            )
        except (TypeError, ValueError) as e:
            raise ConfigError(str(e)) from e

    @classmethod
    def from_file(cls, path) -> "EngineConfig":
        """Load a YAML (or JSON) config file. A relative base_dir is resolved against the file."""
        path = Path(path)
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError(f"{path}: top level must be a mapping")
        config = cls.from_dict(data)
        if config.base_dir is not None and not os.path.isabs(config.base_dir):
            config.base_dir = str((path.parent / config.base_dir).resolve())
        return config

    @classmethod
    def from_env(cls, base: Optional["EngineConfig"] = None,
                 environ: Optional[Mapping[str, str]] = None) -> "EngineConfig":
        """Apply AETHER_* environment overrides on top of ``base`` (or the defaults)."""
        config = base or cls()
        env = os.environ if environ is None else environ
        limit_changes = {}
        for var, name in ENV_LIMITS.items():
            if var in env:
                limit_changes[name] = _int_or_none(var, env[var])
        changes: Dict[str, Any] = {}
        try:
            if limit_changes:
                changes["limits"] = config.limits.replace(**limit_changes)
        except ValueError as e:
            raise ConfigError(str(e)) from e
        if ENV_TRACE_CAPACITY in env:
            capacity = _int_or_none(ENV_TRACE_CAPACITY, env[ENV_TRACE_CAPACITY])
            if capacity is None:
                raise ConfigError(f"{ENV_TRACE_CAPACITY} must be positive")
            changes["trace_capacity"] = capacity
        if ENV_CACHE_CAPACITY in env:
            changes["cache_capacity"] = _int_or_none(ENV_CACHE_CAPACITY, env[ENV_CACHE_CAPACITY])
        return replace(config, **changes) if changes else config

    @classmethod
    def load(cls, path=None) -> "EngineConfig":
        """Defaults, then the optional file, then the environment."""
        base = cls.from_file(path) if path is not None else cls()
        return cls.from_env(base)
