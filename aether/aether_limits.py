"""
Execution limits and the per-evaluation resource governor.
"""

import time
from dataclasses import dataclass, fields
from typing import Any, Dict, Optional

from aether.aether_datatypes import SourcePosition
from aether.aether_errors import LimitKind, ResourceExceededError


DEFAULT_MAX_RECURSION_DEPTH = 100

# The wall clock is sampled every CLOCK_INTERVAL steps (and at every call)
CLOCK_INTERVAL = 64


def _normalize(name: str, value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{name} must be an integer or None, got {value!r}")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValueError(f"{name} must be an integer, got {value!r}")
        value = int(value)
    if value < 0:
        return None
    if value == 0:
        raise ValueError(f"{name} must be positive (use None or -1 for unbounded)")
    return value


@dataclass
class Limits:
    """Ceilings for a single evaluation. ``None`` means unbounded."""
    max_steps: Optional[int] = None
    max_recursion_depth: Optional[int] = DEFAULT_MAX_RECURSION_DEPTH
    max_duration_ms: Optional[int] = None

    def __post_init__(self):
        for f in fields(self):
            setattr(self, f.name, _normalize(f.name, getattr(self, f.name)))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Limits':
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"unknown limit(s): {', '.join(sorted(unknown))}")
        return cls(**data)

    def to_dict(self) -> Dict[str, int]:
        """Serialized form, with -1 standing for unbounded."""
        return {f.name: (-1 if getattr(self, f.name) is None else getattr(self, f.name)) for f in fields(self)}

    def replace(self, **changes) -> 'Limits':
        current = {f.name: getattr(self, f.name) for f in fields(self)}
        current.update(changes)
        return Limits(**current)


class Governor:
    """Counts steps and call depth for one evaluation and enforces Limits."""

    def __init__(self, limits: Limits, clock=time.monotonic):
        self.limits = limits
        self.clock = clock
        self.steps = 0
        self.depth = 0
        self.started = clock()
        self.deadline = None
        if limits.max_duration_ms is not None:
            self.deadline = self.started + limits.max_duration_ms / 1000.0

    def step(self, pos: Optional[SourcePosition] = None) -> None:
        self.steps += 1
        max_steps = self.limits.max_steps
        if max_steps is not None and self.steps > max_steps:
            raise ResourceExceededError(LimitKind.STEP_LIMIT, f"step limit of {max_steps} exceeded", pos)
        if self.deadline is not None and self.steps % CLOCK_INTERVAL == 0:
            self.check_clock(pos)

    def charge(self, count: int, pos: Optional[SourcePosition] = None) -> None:
        """Account for `count` units of work done inside a single built-in call."""
        max_steps = self.limits.max_steps
        self.steps += count
        if max_steps is not None and self.steps > max_steps:
            raise ResourceExceededError(LimitKind.STEP_LIMIT, f"step limit of {max_steps} exceeded", pos)
        self.check_clock(pos)

    def check_clock(self, pos: Optional[SourcePosition] = None) -> None:
        if self.deadline is not None and self.clock() > self.deadline:
            raise ResourceExceededError(
                LimitKind.TIME_LIMIT,
                f"time limit of {self.limits.max_duration_ms} ms exceeded",
                pos,
            )

    def enter_call(self, pos: Optional[SourcePosition] = None) -> None:
        """Account for a new call frame; pair with exit_call only when this returns."""
        max_depth = self.limits.max_recursion_depth
        if max_depth is not None and self.depth >= max_depth:
            raise ResourceExceededError(
                LimitKind.RECURSION_LIMIT,
                f"recursion depth limit of {max_depth} exceeded",
                pos,
            )
        self.check_clock(pos)
        self.depth += 1

    def exit_call(self) -> None:
        self.depth -= 1

    @property
    def elapsed_ms(self) -> float:
        return (self.clock() - self.started) * 1000.0
