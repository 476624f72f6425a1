# aether_runtime.py

import inspect
import json
import logging
import math
import time
from dataclasses import dataclass, field
from collections.abc import Mapping
from typing import Any, Dict, List, Literal, Optional

import httpx

from aether.aether_cache import CacheStats, CompilationCache, fingerprint
from aether.aether_config import EngineConfig
from aether.aether_datatypes import Program, SourcePosition
from aether.aether_environment import Environment
from aether.aether_errors import (
    AetherError, AetherSyntaxError, AetherTypeError, EngineClosedError, InternalFaultError,
    InvalidValueError, IOFailureError, PermissionDeniedError, ResourceExceededError,
)
from aether.aether_file import file_delete, file_exists, file_get, file_put, list_dir
from aether.aether_http import HttpStatusError, http_get, http_post
from aether.aether_interpreter import Builtin, Evaluator, ensure_stack_headroom, is_number, type_name
from aether.aether_limits import Limits
from aether.aether_lock import ReadWriteLock
from aether.aether_optimizer import OptimizationFlags, count_nodes, optimize
from aether.aether_parser import parse
from aether.aether_printer import Printer
from aether.aether_serialize import from_host, from_json, to_host, to_json
from aether.aether_trace import TraceBuffer, TraceLevel, TraceStats


__version__ = "0.1.0"

logger = logging.getLogger(__name__)


def version() -> str:
    return __version__


# ===================================================================
# 1. The Standard Library
# ===================================================================

class StdLib:
    """
    Python implementations of the DSL built-ins.

    Every method named `_name` is exposed to scripts as `NAME`
    (e.g. `_trace_debug` -> `TRACE_DEBUG`). Arity is taken from the method
    signature.
    """

    def __init__(self, evaluator: Evaluator, trace: TraceBuffer, *, permissive: bool = False,
                 base_dir: Optional[str] = None, http_config: Optional[Dict[str, Any]] = None):
        self.evaluator = evaluator
        self.trace = trace
        self.permissive = permissive
        self.base_dir = base_dir
        self.http_config = dict(http_config or {})
        self.printer = Printer()

    def builtins(self) -> Dict[str, Builtin]:
        table = {}
        for name, member in inspect.getmembers(self):
            if name.startswith('_') and not name.startswith('__') and callable(member):
                dsl_name = name[1:].upper()
                table[dsl_name] = Builtin(dsl_name, member, *self.arity_of(member))
        return table

    @staticmethod
    def arity_of(fn):
        min_args, max_args = 0, 0
        for p in inspect.signature(fn).parameters.values():
            if p.kind is p.VAR_POSITIONAL:
                max_args = None
            elif p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD):
                if p.default is p.empty:
                    min_args += 1
                if max_args is not None:
                    max_args += 1
        return min_args, max_args

    # --- Helpers (not exposed) ---

    def render(self, value) -> str:
        return self.printer.display(value)

    def record_trace(self, level: TraceLevel, category, values) -> None:
        if not isinstance(category, str):
            raise AetherTypeError(f"trace category must be a String, got {type_name(category)}")
        rendered = [self.render(v) for v in values]
        self.trace.append(level, category, rendered, label=self.evaluator.current_function)

    def check_io(self, name: str) -> None:
        if not self.permissive:
            raise PermissionDeniedError(f"{name} requires an engine created with IO permission")

    def require(self, name: str, value, *kinds: str):
        actual = type_name(value)
        if actual not in kinds:
            raise AetherTypeError(f"{name} expects {' or '.join(kinds)}, got {actual}")
        return value

    def io_result(self, name: str, value):
        try:
            return from_host(value)
        except InvalidValueError as e:
            raise IOFailureError(f"{name}: {e.message}") from e

    # --- Tracing ---

    def _trace(self, category, *values):
        self.record_trace(TraceLevel.INFO, category, values)

    def _trace_debug(self, category, *values):
        self.record_trace(TraceLevel.DEBUG, category, values)

    def _trace_info(self, category, *values):
        self.record_trace(TraceLevel.INFO, category, values)

    def _trace_warn(self, category, *values):
        self.record_trace(TraceLevel.WARN, category, values)

    def _trace_error(self, category, *values):
        self.record_trace(TraceLevel.ERROR, category, values)

    # --- Collections ---

    def _length(self, x):
        self.require("LENGTH", x, "Array", "Object", "String")
        return float(len(x))

    def _type_of(self, x):
        return type_name(x)

    def _keys(self, obj):
        self.require("KEYS", obj, "Object")
        return list(obj.keys())

    def _values(self, obj):
        self.require("VALUES", obj, "Object")
        return list(obj.values())

    def _has_key(self, obj, key):
        self.require("HAS_KEY", obj, "Object")
        self.require("HAS_KEY", key, "String")
        return key in obj

    def _push(self, arr, item):
        self.require("PUSH", arr, "Array")
        return arr + [item]

    def _range(self, start, stop=None):
        self.require("RANGE", start, "Number")
        if stop is None:
            start, stop = 0.0, start
        self.require("RANGE", stop, "Number")
        count = max(0, math.ceil(stop - start))
        # Each produced element counts as a step
        self.evaluator.governor.charge(count)
        return [float(start + i) for i in range(count)]

    # --- Conversion ---

    def _to_string(self, x):
        return self.render(x)

    def _to_number(self, x):
        if is_number(x):
            return float(x)
        if isinstance(x, str):
            try:
                value = float(x.strip())
            except ValueError:
                raise AetherTypeError(f"TO_NUMBER cannot parse {x!r}") from None
            if math.isfinite(value):
                return value
            raise AetherTypeError(f"TO_NUMBER cannot parse {x!r}")
        raise AetherTypeError(f"TO_NUMBER expects Number or String, got {type_name(x)}")

    # --- Math ---

    def _abs(self, x):
        return abs(float(self.require("ABS", x, "Number")))

    def _floor(self, x):
        return float(math.floor(self.require("FLOOR", x, "Number")))

    def _min(self, first, *rest):
        return min(self.numbers_of("MIN", first, rest))

    def _max(self, first, *rest):
        return max(self.numbers_of("MAX", first, rest))

    def numbers_of(self, name, first, rest):
        items = first if isinstance(first, list) and not rest else [first, *rest]
        if not items:
            raise AetherTypeError(f"{name} of an empty Array")
        for item in items:
            self.require(name, item, "Number")
        return [float(i) for i in items]

    # --- Strings ---

    def _join(self, arr, separator=""):
        self.require("JOIN", arr, "Array")
        self.require("JOIN", separator, "String")
        return separator.join(self.render(item) for item in arr)

    def _split(self, string, separator):
        self.require("SPLIT", string, "String")
        self.require("SPLIT", separator, "String")
        if separator == "":
            return list(string)
        return string.split(separator)

    def _upper(self, string):
        return self.require("UPPER", string, "String").upper()

    def _lower(self, string):
        return self.require("LOWER", string, "String").lower()

    # --- IO (permission gated) ---

    def _read_file(self, path):
        self.check_io("READ_FILE")
        self.require("READ_FILE", path, "String")
        try:
            return self.io_result("READ_FILE", file_get(path, base_dir=self.base_dir))
        except OSError as e:
            raise IOFailureError(f"READ_FILE failed: {e}") from e

    def _write_file(self, path, content):
        self.check_io("WRITE_FILE")
        self.require("WRITE_FILE", path, "String")
        try:
            file_put(path, content, base_dir=self.base_dir)
        except (OSError, ValueError) as e:
            raise IOFailureError(f"WRITE_FILE failed: {e}") from e
        return True

    def _file_exists(self, path):
        self.check_io("FILE_EXISTS")
        self.require("FILE_EXISTS", path, "String")
        return file_exists(path, base_dir=self.base_dir)

    def _delete_file(self, path):
        self.check_io("DELETE_FILE")
        self.require("DELETE_FILE", path, "String")
        try:
            return file_delete(path, base_dir=self.base_dir)
        except OSError as e:
            raise IOFailureError(f"DELETE_FILE failed: {e}") from e

    def _list_dir(self, path="."):
        self.check_io("LIST_DIR")
        self.require("LIST_DIR", path, "String")
        try:
            return list_dir(path, base_dir=self.base_dir)
        except OSError as e:
            raise IOFailureError(f"LIST_DIR failed: {e}") from e

    def _http_get(self, url):
        self.check_io("HTTP_GET")
        self.require("HTTP_GET", url, "String")
        try:
            return self.io_result("HTTP_GET", http_get(url, config=self.http_config))
        except (httpx.HTTPError, HttpStatusError) as e:
            raise IOFailureError(f"HTTP_GET failed: {e}") from e

    def _http_post(self, url, body):
        self.check_io("HTTP_POST")
        self.require("HTTP_POST", url, "String")
        try:
            return self.io_result("HTTP_POST", http_post(url, body, config=self.http_config))
        except (httpx.HTTPError, HttpStatusError) as e:
            raise IOFailureError(f"HTTP_POST failed: {e}") from e


# ===================================================================
# 2. Execution results
# ===================================================================

def source_context(source: str, line: int, col: Optional[int], radius: int = 2) -> str:
    lines = source.splitlines()
    if not line or line < 1 or line > len(lines):
        return ""
    start = max(1, line - radius)
    end = min(len(lines), line + radius)
    width = len(str(end))
    out = []
    for i in range(start, end + 1):
        prefix = ">" if i == line else " "
        out.append(f"{prefix} {str(i).rjust(width)} | {lines[i - 1]}")
        if i == line and col is not None:
            out.append(f"  {' ' * width} | {' ' * max(col - 1, 0)}^")
    return "\n".join(out)


@dataclass
class ExecutionResult:
    """The structured result of a script execution."""
    status: Literal['success', 'error']
    value: Any = None
    error: Optional[AetherError] = None
    context: str = ""
    trace: List[str] = field(default_factory=list)

    @property
    def error_kind(self) -> Optional[str]:
        return self.error.kind.value if self.error else None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error else None

    @property
    def error_position(self) -> Optional[SourcePosition]:
        return self.error.position if self.error else None

    def format_error(self) -> str:
        """Formats an error message with line and column if available."""
        if self.status != 'error':
            return ""
        msg = str(self.error) if isinstance(self.error, ResourceExceededError) \
            else f"{self.error.kind.value}: {self.error.message}"
        pos = self.error.position
        if pos is not None:
            msg = f"Error on line {pos.line}, col {pos.column}: {msg}"
        if self.context:
            msg = f"{msg}\n{self.context}"
        return msg


# ===================================================================
# 3. The Engine
# ===================================================================

class Engine:
    """
    An isolated DSL engine: environment, compilation cache, trace buffer,
    limits and optimizer flags, guarded by one reader/writer lock.
    """

    def __init__(self, permissive: bool = False, config: Optional[EngineConfig] = None):
        self.config = config or EngineConfig()
        self.permissive = permissive
        self._lock = ReadWriteLock()
        self._closed = False
        self._limits = self.config.limits.replace()
        self._optimization = self.config.optimization
        self.env = Environment()
        self.cache = CompilationCache(self.config.cache_capacity)
        self.trace = TraceBuffer(self.config.trace_capacity)
        self.evaluator = Evaluator()
        self.stdlib = StdLib(
            self.evaluator,
            self.trace,
            permissive=permissive,
            base_dir=self.config.base_dir,
            http_config=self.config.http.as_request_config(),
        )
        self.evaluator.builtins = self.stdlib.builtins()
        logger.debug("engine created (permissive=%s)", permissive)

    @classmethod
    def with_permissions(cls, config: Optional[EngineConfig] = None) -> 'Engine':
        """An engine whose scripts may use the file and HTTP built-ins."""
        return cls(permissive=True, config=config)

    def __enter__(self) -> 'Engine':
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def _check_open(self):
        if self._closed:
            raise EngineClosedError()

    # --- Compilation and evaluation ---

    def _compile(self, source: str) -> Program:
        flags = self._optimization
        key = fingerprint(source, flags.as_tuple())
        entry = self.cache.lookup(key)
        if entry is not None:
            return entry.program
        started = time.perf_counter()
        program = parse(source)
        try:
            program = optimize(program, flags)
            nodes = count_nodes(program)
        except RecursionError:
            raise AetherSyntaxError("expression nested too deeply", SourcePosition(1, 1, 0)) from None
        elapsed_ms = (time.perf_counter() - started) * 1000.0
        self.cache.insert(key, program, node_count=nodes, flags=flags.as_tuple(), compile_ms=elapsed_ms)
        logger.debug("compiled %d nodes in %.2f ms", nodes, elapsed_ms)
        return program

    def _run(self, source: str) -> Any:
        if not isinstance(source, str):
            raise InvalidValueError(f"source must be a str, not {type(source).__name__}")
        ensure_stack_headroom(self._limits)
        try:
            program = self._compile(source)
            return self.evaluator.run(program, self.env.globals, self._limits)
        except ResourceExceededError as e:
            logger.debug("limit exceeded: %s", e)
            raise
        except AetherError:
            raise
        except Exception as e:
            logger.exception("internal fault during evaluation")
            raise InternalFaultError(f"{type(e).__name__}: {e}") from e

    def eval(self, source: str) -> Any:
        """Run `source` and return the program result as plain Python data."""
        with self._lock.write():
            self._check_open()
            return to_host(self._run(source))

    def eval_to_string(self, source: str) -> str:
        """Run `source` and return the rendered result (e.g. "30")."""
        return Printer().display(self.eval(source))

    def handle_script(self, source: str) -> ExecutionResult:
        """Like eval, but failures come back as an error ExecutionResult instead of raising."""
        with self._lock.write():
            before = self.trace.appended
            try:
                self._check_open()
                value = to_host(self._run(source))
            except AetherError as e:
                context = ""
                if e.position is not None and isinstance(source, str):
                    context = source_context(source, e.position.line, e.position.column)
                return ExecutionResult(status='error', error=e, context=context,
                                       trace=self._trace_since(before))
            return ExecutionResult(status='success', value=value, trace=self._trace_since(before))

    def _trace_since(self, before: int) -> List[str]:
        count = min(self.trace.appended - before, len(self.trace))
        return self.trace.render()[len(self.trace) - count:] if count > 0 else []

    # --- Globals ---

    def set_global(self, name: str, value: Any) -> None:
        with self._lock.write():
            self._check_open()
            self.env.set_global(name, value)

    def get_global(self, name: str) -> Any:
        with self._lock.read():
            self._check_open()
            return self.env.get_global(name)

    def set_global_json(self, name: str, text: str) -> None:
        self.set_global(name, from_json(text))

    def get_global_json(self, name: str) -> str:
        return to_json(self.get_global(name))

    def reset_env(self) -> None:
        with self._lock.write():
            self._check_open()
            self.env.reset()

    # --- Trace ---

    def take_trace(self) -> List[str]:
        with self._lock.read():
            self._check_open()
            return self.trace.render()

    def trace_records(self) -> List[Dict[str, Any]]:
        with self._lock.read():
            self._check_open()
            return [r.to_dict() for r in self.trace.records()]

    def trace_records_json(self) -> str:
        return json.dumps(self.trace_records(), ensure_ascii=False)

    def trace_stats(self) -> TraceStats:
        with self._lock.read():
            self._check_open()
            return self.trace.stats()

    def clear_trace(self) -> None:
        with self._lock.write():
            self._check_open()
            self.trace.clear()

    # --- Limits ---

    def set_limits(self, limits=None, **changes) -> Limits:
        """
        Replace the limits for subsequent evaluations.

        Accepts a Limits, a mapping of limit names, or keyword overrides of
        the current values, e.g. `set_limits(max_steps=1000)`.
        """
        with self._lock.write():
            self._check_open()
            match limits:
                case Limits():
                    new = limits.replace(**changes)
                case Mapping():
                    new = Limits.from_dict(dict(limits)).replace(**changes)
                case None:
                    new = self._limits.replace(**changes)
                case _:
                    raise TypeError(f"limits must be a Limits or mapping, not {type(limits).__name__}")
            self._limits = new
            logger.debug("limits set to %s", new.to_dict())
            return new.replace()

    def get_limits(self) -> Limits:
        with self._lock.read():
            self._check_open()
            return self._limits.replace()

    # --- Cache ---

    def clear_cache(self) -> None:
        with self._lock.write():
            self._check_open()
            self.cache.clear()

    def cache_stats(self) -> CacheStats:
        with self._lock.read():
            self._check_open()
            return self.cache.stats()

    # --- Optimizer ---

    def set_optimization(self, constant_folding: Optional[bool] = None,
                         dead_code_elimination: Optional[bool] = None,
                         tail_call_optimization: Optional[bool] = None) -> OptimizationFlags:
        """Toggle optimizer passes; arguments left as None keep their current setting."""
        with self._lock.write():
            self._check_open()
            current = self._optimization
            self._optimization = OptimizationFlags(
                current.constant_folding if constant_folding is None else bool(constant_folding),
                current.dead_code_elimination if dead_code_elimination is None else bool(dead_code_elimination),
                current.tail_call_optimization if tail_call_optimization is None else bool(tail_call_optimization),
            )
            return self._optimization

    def get_optimization(self) -> OptimizationFlags:
        with self._lock.read():
            self._check_open()
            return self._optimization

    # --- Lifecycle ---

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Release the environment, cache and trace buffer. Safe to call more than once."""
        with self._lock.write():
            if self._closed:
                return
            self._closed = True
            self.env.reset()
            self.cache.clear()
            self.trace.clear()
            logger.debug("engine closed")
