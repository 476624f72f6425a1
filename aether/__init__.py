"""
Aether: an embeddable DSL engine.

    from aether import Engine

    with Engine() as engine:
        engine.eval("Set X 10\nSet Y 20\n(X + Y)")   # -> 30.0
"""

import logging
import os
import sys

from aether.aether_config import EngineConfig
from aether.aether_errors import (
    AetherError, AetherSyntaxError, AetherRuntimeError, AetherTypeError, UndefinedReferenceError,
    PermissionDeniedError, ResourceExceededError, DivisionByZeroError, IndexOutOfRangeError,
    IOFailureError, InvalidValueError, NotFoundError, EngineClosedError, InternalFaultError,
    ErrorKind, LimitKind,
)
from aether.aether_limits import Limits
from aether.aether_optimizer import OptimizationFlags
from aether.aether_runtime import Engine, ExecutionResult, __version__, version
from aether.aether_trace import TraceLevel, TraceRecord, TraceStats
from aether.aether_cache import CacheStats


logging.getLogger(__name__).addHandler(logging.NullHandler())

if os.environ.get("AETHER_DEBUG"):
    _handler = logging.StreamHandler(sys.stderr)
    _handler.setFormatter(logging.Formatter("[aether] %(name)s: %(message)s"))
    logging.getLogger(__name__).addHandler(_handler)
    logging.getLogger(__name__).setLevel(logging.DEBUG)


__all__ = [
    "Engine", "EngineConfig", "ExecutionResult", "Limits", "OptimizationFlags",
    "TraceLevel", "TraceRecord", "TraceStats", "CacheStats",
    "AetherError", "AetherSyntaxError", "AetherRuntimeError", "AetherTypeError",
    "UndefinedReferenceError", "PermissionDeniedError", "ResourceExceededError",
    "DivisionByZeroError", "IndexOutOfRangeError", "IOFailureError", "InvalidValueError",
    "NotFoundError", "EngineClosedError", "InternalFaultError", "ErrorKind", "LimitKind",
    "version", "__version__",
]
