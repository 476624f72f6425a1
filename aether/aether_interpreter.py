"""
Tree-walking evaluator for Aether programs.

The operator helpers at module level (``apply_binary``, ``apply_unary``,
``truthy``, ``values_equal``, ``index_value``) define the value semantics of
the language. The optimizer folds constants with these same functions.
"""

import logging
import math
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from aether.aether_datatypes import (
    SourcePosition, Function,
    Expr, Literal, Identifier, BinaryOp, LogicalOp, UnaryOp, Index, Call, ArrayLit, ObjectLit,
    Stmt, SetStmt, FuncDef, ReturnStmt, IfStmt, WhileStmt, ForStmt, ExprStmt, Program,
)
from aether.aether_environment import Scope
from aether.aether_errors import (
    AetherError, AetherTypeError, DivisionByZeroError, IndexOutOfRangeError,
    LimitKind, ResourceExceededError, UndefinedReferenceError,
)
from aether.aether_limits import Governor, Limits


logger = logging.getLogger(__name__)

# Python frames reserved per DSL call frame when raising the interpreter's recursion limit
FRAMES_PER_CALL = 40
UNBOUNDED_RECURSION_LIMIT = 20000


# ===================================================================
# Value semantics
# ===================================================================

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def type_name(value: Any) -> str:
    match value:
        case None:
            return "Null"
        case bool():
            return "Bool"
        case int() | float():
            return "Number"
        case str():
            return "String"
        case list():
            return "Array"
        case dict():
            return "Object"
        case Function():
            return "Function"
    return type(value).__name__


def truthy(value: Any) -> bool:
    """Null, False, 0, "", [] and {} are false; everything else is true."""
    match value:
        case None | False:
            return False
        case True:
            return True
        case int() | float():
            return value != 0
        case str() | list() | dict():
            return len(value) > 0
    return True


def values_equal(a: Any, b: Any) -> bool:
    """Structural equality; Bool and Number never compare equal to each other."""
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    if is_number(a) and is_number(b):
        return a == b
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, dict) and isinstance(b, dict):
        return a.keys() == b.keys() and all(values_equal(a[k], b[k]) for k in a)
    return type(a) is type(b) and a == b


def _operand_error(op: str, a: Any, b: Any, pos: Optional[SourcePosition]) -> AetherTypeError:
    return AetherTypeError(f"cannot apply '{op}' to {type_name(a)} and {type_name(b)}", pos)


def _arith(op: str, a: Any, b: Any, pos: Optional[SourcePosition]) -> float:
    if not (is_number(a) and is_number(b)):
        raise _operand_error(op, a, b, pos)
    match op:
        case "-":
            return float(a - b)
        case "*":
            return float(a * b)
        case "/":
            if b == 0:
                raise DivisionByZeroError("division by zero", pos)
            return float(a / b)
        case "%":
            if b == 0:
                raise DivisionByZeroError("modulo by zero", pos)
            return math.fmod(a, b)
    raise AetherTypeError(f"unknown operator '{op}'", pos)


def _add(a: Any, b: Any, pos: Optional[SourcePosition]) -> Any:
    if is_number(a) and is_number(b):
        return float(a + b)
    if isinstance(a, str) and isinstance(b, str):
        return a + b
    if isinstance(a, list) and isinstance(b, list):
        return a + b
    if isinstance(a, dict) and isinstance(b, dict):
        return {**a, **b}
    raise _operand_error("+", a, b, pos)


def _compare(op: str, a: Any, b: Any, pos: Optional[SourcePosition]) -> bool:
    if not ((is_number(a) and is_number(b)) or (isinstance(a, str) and isinstance(b, str))):
        raise _operand_error(op, a, b, pos)
    match op:
        case "<":
            return a < b
        case ">":
            return a > b
        case "<=":
            return a <= b
        case ">=":
            return a >= b
    raise AetherTypeError(f"unknown operator '{op}'", pos)


def apply_binary(op: str, a: Any, b: Any, pos: Optional[SourcePosition] = None) -> Any:
    match op:
        case "+":
            return _add(a, b, pos)
        case "-" | "*" | "/" | "%":
            return _arith(op, a, b, pos)
        case "==":
            return values_equal(a, b)
        case "!=":
            return not values_equal(a, b)
        case "<" | ">" | "<=" | ">=":
            return _compare(op, a, b, pos)
        case "&&":
            return truthy(a) and truthy(b)
        case "||":
            return truthy(a) or truthy(b)
    raise AetherTypeError(f"unknown operator '{op}'", pos)


def apply_unary(op: str, value: Any, pos: Optional[SourcePosition] = None) -> Any:
    match op:
        case "-":
            if not is_number(value):
                raise AetherTypeError(f"cannot negate {type_name(value)}", pos)
            return float(-value)
        case "!":
            return not truthy(value)
    raise AetherTypeError(f"unknown operator '{op}'", pos)


def index_value(target: Any, index: Any, pos: Optional[SourcePosition] = None) -> Any:
    match target:
        case list() | str():
            if not is_number(index) or not float(index).is_integer():
                raise AetherTypeError(f"{type_name(target)} index must be an integral Number, got {type_name(index)}", pos)
            i = int(index)
            n = len(target)
            if i < 0:
                i += n
            if not 0 <= i < n:
                raise IndexOutOfRangeError(f"index {int(index)} out of range for length {n}", pos)
            return target[i]
        case dict():
            if not isinstance(index, str):
                raise AetherTypeError(f"Object key must be a String, got {type_name(index)}", pos)
            return target.get(index)
    raise AetherTypeError(f"cannot index {type_name(target)}", pos)


def iteration_items(value: Any, pos: Optional[SourcePosition] = None) -> List[Any]:
    """Array elements, Object keys in order, or String characters."""
    match value:
        case list():
            return list(value)
        case dict():
            return list(value.keys())
        case str():
            return list(value)
    raise AetherTypeError(f"cannot iterate over {type_name(value)}", pos)


# ===================================================================
# Control-flow signals
# ===================================================================

class ReturnSignal(Exception):
    """Unwinds to the nearest call frame (or the program) with a value."""
    def __init__(self, value: Any):
        super().__init__()
        self.value = value


class TailCall(Exception):
    """Unwinds to the current call frame, which re-enters itself with new arguments."""
    def __init__(self, args: List[Any]):
        super().__init__()
        self.args_list = args


# ===================================================================
# Built-in registry entry
# ===================================================================

@dataclass
class Builtin:
    name: str
    fn: Callable[..., Any]
    min_args: int
    max_args: Optional[int]  # None = variadic

    def check_arity(self, count: int, pos: Optional[SourcePosition]) -> None:
        if count < self.min_args or (self.max_args is not None and count > self.max_args):
            if self.max_args is None:
                expected = f"at least {self.min_args}"
            elif self.min_args == self.max_args:
                expected = str(self.min_args)
            else:
                expected = f"{self.min_args} to {self.max_args}"
            raise AetherTypeError(f"{self.name} expects {expected} argument(s), got {count}", pos)


def ensure_stack_headroom(limits: Limits) -> None:
    """
    Raise Python's recursion limit so the configured DSL depth fits.

    The limit is process-wide and is only ever raised, never lowered again,
    so every thread and every engine in the process shares the largest value
    any engine asked for (capped at UNBOUNDED_RECURSION_LIMIT).
    """
    depth = limits.max_recursion_depth
    needed = UNBOUNDED_RECURSION_LIMIT if depth is None else 1000 + FRAMES_PER_CALL * depth
    needed = min(needed, UNBOUNDED_RECURSION_LIMIT)
    if sys.getrecursionlimit() < needed:
        logger.debug("raising recursion limit to %d", needed)
        sys.setrecursionlimit(needed)


# ===================================================================
# Evaluator
# ===================================================================

class Evaluator:
    """Executes a Program against a Scope under a Governor."""

    def __init__(self, builtins: Optional[Dict[str, Builtin]] = None):
        self.builtins: Dict[str, Builtin] = builtins if builtins is not None else {}
        self.frames: List[Function] = []
        self.governor: Optional[Governor] = None

    @property
    def current_function(self) -> Optional[str]:
        return self.frames[-1].name if self.frames else None

    def run(self, program: Program, scope: Scope, limits: Limits) -> Any:
        """Evaluate every top-level statement; the last one's value is the result."""
        self.governor = Governor(limits)
        self.frames = []
        ensure_stack_headroom(limits)
        result = None
        try:
            for stmt in program.body:
                result = self._exec(stmt, scope)
        except ReturnSignal as ret:
            result = ret.value
        except RecursionError:
            raise ResourceExceededError(
                LimitKind.RECURSION_LIMIT, "host stack exhausted before the recursion limit was reached"
            ) from None
        finally:
            logger.debug("evaluation finished: %d steps", self.governor.steps)
            self.frames = []
        return result

    # --- Statements ---

    def _exec_block(self, body: List[Stmt], scope: Scope) -> None:
        for stmt in body:
            self._exec(stmt, scope)

    def _exec(self, stmt: Stmt, scope: Scope) -> Any:
        self.governor.step(stmt.pos)
        match stmt:
            case SetStmt(name=name, value=expr):
                value = self._eval(expr, scope)
                scope.assign(name, value)
                return value
            case ExprStmt(expr=expr):
                return self._eval(expr, scope)
            case FuncDef(name=name, params=params, body=body):
                scope[name] = Function(name, params, body, scope)
                return None
            case ReturnStmt(value=None):
                raise ReturnSignal(None)
            case ReturnStmt(value=Call() as call, tail_call=True) if self._is_self_call(call, scope):
                self.governor.step(call.pos)
                raise TailCall([self._eval(arg, scope) for arg in call.args])
            case ReturnStmt(value=expr):
                raise ReturnSignal(self._eval(expr, scope))
            case IfStmt(condition=cond, then_body=then_body, else_body=else_body):
                if truthy(self._eval(cond, scope)):
                    self._exec_block(then_body, scope)
                elif else_body is not None:
                    self._exec_block(else_body, scope)
                return None
            case WhileStmt(condition=cond, body=body):
                while truthy(self._eval(cond, scope)):
                    self._exec_block(body, scope)
                return None
            case ForStmt(var=var, iterable=iterable, body=body):
                for item in iteration_items(self._eval(iterable, scope), iterable.pos):
                    scope.assign(var, item)
                    self._exec_block(body, scope)
                return None
        raise AetherTypeError(f"unknown statement {type(stmt).__name__}", stmt.pos)

    def _is_self_call(self, call: Call, scope: Scope) -> bool:
        return bool(self.frames) and scope.get(call.name) is self.frames[-1]

    # --- Expressions ---

    def _eval(self, expr: Expr, scope: Scope) -> Any:
        self.governor.step(expr.pos)
        match expr:
            case Literal(value=value):
                return value
            case Identifier(name=name):
                return self._lookup(name, scope, expr.pos)
            case BinaryOp(op=op, left=left, right=right):
                a = self._eval(left, scope)
                b = self._eval(right, scope)
                return apply_binary(op, a, b, expr.pos)
            case LogicalOp(op="&&", left=left, right=right):
                if not truthy(self._eval(left, scope)):
                    return False
                return truthy(self._eval(right, scope))
            case LogicalOp(op="||", left=left, right=right):
                if truthy(self._eval(left, scope)):
                    return True
                return truthy(self._eval(right, scope))
            case UnaryOp(op=op, operand=operand):
                return apply_unary(op, self._eval(operand, scope), expr.pos)
            case Index(target=target, index=index):
                container = self._eval(target, scope)
                key = self._eval(index, scope)
                return index_value(container, key, expr.pos)
            case Call():
                return self._call(expr, scope)
            case ArrayLit(items=items):
                return [self._eval(item, scope) for item in items]
            case ObjectLit(entries=entries):
                return {key: self._eval(value, scope) for key, value in entries}
        raise AetherTypeError(f"unknown expression {type(expr).__name__}", expr.pos)

    def _lookup(self, name: str, scope: Scope, pos: Optional[SourcePosition]) -> Any:
        owner = scope.find_owner(name)
        if owner is None:
            if name in self.builtins:
                raise AetherTypeError(f"built-in '{name}' cannot be used as a value", pos)
            raise UndefinedReferenceError(name, pos)
        value = owner.bindings[name]
        if isinstance(value, Function):
            raise AetherTypeError(f"function '{name}' cannot be used as a value", pos)
        return value

    def _call(self, call: Call, scope: Scope) -> Any:
        target = scope.get(call.name)
        if isinstance(target, Function):
            args = [self._eval(arg, scope) for arg in call.args]
            return self.call_function(target, args, call.pos)
        builtin = self.builtins.get(call.name)
        if builtin is not None:
            args = [self._eval(arg, scope) for arg in call.args]
            return self._call_builtin(builtin, args, call.pos)
        if call.name in scope:
            raise AetherTypeError(f"'{call.name}' is a {type_name(target)}, not a function", call.pos)
        raise UndefinedReferenceError(call.name, call.pos)

    def _call_builtin(self, builtin: Builtin, args: List[Any], pos: Optional[SourcePosition]) -> Any:
        builtin.check_arity(len(args), pos)
        self.governor.check_clock(pos)
        try:
            return builtin.fn(*args)
        except AetherError as e:
            if e.position is None:
                e.position = pos
            raise

    def call_function(self, fn: Function, args: List[Any], pos: Optional[SourcePosition] = None) -> Any:
        self.governor.enter_call(pos)
        self.frames.append(fn)
        try:
            while True:
                if len(args) != fn.arity:
                    raise AetherTypeError(f"{fn.name} expects {fn.arity} argument(s), got {len(args)}", pos)
                local = Scope(fn.closure)
                for param, arg in zip(fn.params, args):
                    local[param] = arg
                try:
                    self._exec_block(fn.body, local)
                    return None
                except ReturnSignal as ret:
                    return ret.value
                except TailCall as tail:
                    args = tail.args_list
                    self.governor.check_clock(pos)
        finally:
            self.frames.pop()
            self.governor.exit_call()
