"""
Error taxonomy for the Aether engine.

Every failure surfaced to a host is an ``AetherError`` carrying a stable
``ErrorKind`` so callers can branch on ``err.kind`` without matching on
message text. Runtime errors are further split by subclass; resource
ceilings also carry a ``LimitKind``.
"""

from enum import Enum
from typing import Any, Dict, Optional

from aether.aether_datatypes import SourcePosition


class ErrorKind(Enum):
    SYNTAX = "SyntaxError"
    TYPE_MISMATCH = "TypeMismatch"
    UNDEFINED_REFERENCE = "UndefinedReference"
    PERMISSION_DENIED = "PermissionDenied"
    RESOURCE_EXCEEDED = "ResourceExceeded"
    DIVISION_BY_ZERO = "DivisionByZero"
    INDEX_OUT_OF_RANGE = "IndexOutOfRange"
    IO_FAILURE = "IOFailure"
    INVALID_VALUE = "InvalidValue"
    NOT_FOUND = "NotFound"
    ENGINE_CLOSED = "EngineClosed"
    INTERNAL_FAULT = "InternalFault"


class LimitKind(Enum):
    STEP_LIMIT = "StepLimit"
    RECURSION_LIMIT = "RecursionLimit"
    TIME_LIMIT = "TimeLimit"


RUNTIME_KINDS = frozenset({
    ErrorKind.TYPE_MISMATCH,
    ErrorKind.UNDEFINED_REFERENCE,
    ErrorKind.PERMISSION_DENIED,
    ErrorKind.RESOURCE_EXCEEDED,
    ErrorKind.DIVISION_BY_ZERO,
    ErrorKind.INDEX_OUT_OF_RANGE,
    ErrorKind.IO_FAILURE,
})


class AetherError(Exception):
    """Base class for every error the engine reports."""
    kind: ErrorKind = ErrorKind.INTERNAL_FAULT

    def __init__(self, message: str, position: Optional[SourcePosition] = None):
        super().__init__(message)
        self.message = message
        self.position = position

    @property
    def category(self) -> str:
        """Boundary-level grouping: 'SyntaxError', 'RuntimeError' or the kind itself."""
        if self.kind is ErrorKind.SYNTAX:
            return "SyntaxError"
        if self.kind in RUNTIME_KINDS:
            return "RuntimeError"
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "category": self.category,
            "kind": self.kind.value,
            "message": self.message,
        }
        if self.position is not None:
            out["line"] = self.position.line
            out["column"] = self.position.column
        return out

    def __str__(self) -> str:
        if self.position is not None:
            return f"{self.kind.value}: {self.message} ({self.position})"
        return f"{self.kind.value}: {self.message}"


class AetherSyntaxError(AetherError):
    """Raised while parsing; never reaches the evaluator."""
    kind = ErrorKind.SYNTAX

    def __init__(self, message: str, position: SourcePosition, source_line: Optional[str] = None):
        super().__init__(message, position)
        self.source_line = source_line

    @property
    def line(self) -> int:
        return self.position.line

    @property
    def column(self) -> int:
        return self.position.column

    def format(self, show_source: bool = True) -> str:
        """Format the error with a caret under the offending column."""
        parts = [f"{self.position.line}:{self.position.column}: syntax error: {self.message}"]
        if show_source and self.source_line is not None:
            line_num = str(self.position.line)
            parts.append(f"{line_num:>3} | {self.source_line}")
            parts.append(f"    | {' ' * (self.position.column - 1)}^")
        return "\n".join(parts)


class AetherRuntimeError(AetherError):
    """Base class for failures raised while evaluating a program."""
    kind = ErrorKind.INTERNAL_FAULT


class AetherTypeError(AetherRuntimeError):
    kind = ErrorKind.TYPE_MISMATCH


class UndefinedReferenceError(AetherRuntimeError):
    kind = ErrorKind.UNDEFINED_REFERENCE

    def __init__(self, name: str, position: Optional[SourcePosition] = None):
        super().__init__(f"undefined reference '{name}'", position)
        self.name = name


class PermissionDeniedError(AetherRuntimeError):
    kind = ErrorKind.PERMISSION_DENIED


class ResourceExceededError(AetherRuntimeError):
    kind = ErrorKind.RESOURCE_EXCEEDED

    def __init__(self, limit: LimitKind, message: str, position: Optional[SourcePosition] = None):
        super().__init__(message, position)
        self.limit = limit

    def to_dict(self) -> Dict[str, Any]:
        out = super().to_dict()
        out["limit"] = self.limit.value
        return out

    def __str__(self) -> str:
        return f"{self.kind.value}({self.limit.value}): {self.message}"


class DivisionByZeroError(AetherRuntimeError):
    kind = ErrorKind.DIVISION_BY_ZERO


class IndexOutOfRangeError(AetherRuntimeError):
    kind = ErrorKind.INDEX_OUT_OF_RANGE


class IOFailureError(AetherRuntimeError):
    kind = ErrorKind.IO_FAILURE


class InvalidValueError(AetherError):
    """A host object that cannot be represented as an Aether value."""
    kind = ErrorKind.INVALID_VALUE


class NotFoundError(AetherError):
    kind = ErrorKind.NOT_FOUND

    def __init__(self, name: str):
        super().__init__(f"variable not found: {name}")
        self.name = name


class EngineClosedError(AetherError):
    kind = ErrorKind.ENGINE_CLOSED

    def __init__(self):
        super().__init__("engine is closed")


class InternalFaultError(AetherError):
    """An invariant violation inside the engine; always a bug."""
    kind = ErrorKind.INTERNAL_FAULT
