"""
Defines the core data types for the Aether engine.

This module holds the AST node set built by the transformer (and rewritten
by the optimizer) and the runtime ``Function`` value created by ``Func``
definitions.

Runtime values themselves are plain Python objects drawn from a closed set:
``None``, ``bool``, ``float``, ``str``, ``list`` and ``dict``.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional


# =================================================================
# Source positions and language constants
# =================================================================

@dataclass(frozen=True)
class SourcePosition:
    """A position in source text (line and column are 1-indexed)."""
    line: int
    column: int
    offset: int = 0

    def __str__(self) -> str:
        return f"line {self.line}, col {self.column}"


KEYWORDS = frozenset({
    "Set", "Func", "Return", "If", "Else", "While", "For", "In", "True", "False", "Null",
})

# Operator spellings stored on BinaryOp/LogicalOp nodes
BINARY_OPERATORS = frozenset({"+", "-", "*", "/", "%", "==", "!=", "<", ">", "<=", ">=", "&&", "||"})

LOGICAL_OPERATORS = frozenset({"&&", "||"})


# =================================================================
# AST nodes
# =================================================================
# Positions are excluded from equality so that structurally identical
# trees compare equal regardless of where they were parsed from.

@dataclass
class Node:
    pos: Optional[SourcePosition] = field(default=None, compare=False, repr=False, kw_only=True)


# --- Expressions ---

@dataclass
class Expr(Node):
    pass


@dataclass
class Literal(Expr):
    value: Any


@dataclass
class Identifier(Expr):
    name: str


@dataclass
class BinaryOp(Expr):
    op: str
    left: Expr
    right: Expr


@dataclass
class LogicalOp(Expr):
    """Short-circuiting ``&&`` / ``||``."""
    op: str
    left: Expr
    right: Expr


@dataclass
class UnaryOp(Expr):
    op: str
    operand: Expr


@dataclass
class Index(Expr):
    target: Expr
    index: Expr


@dataclass
class Call(Expr):
    name: str
    args: List[Expr] = field(default_factory=list)


@dataclass
class ArrayLit(Expr):
    items: List[Expr] = field(default_factory=list)


@dataclass
class ObjectLit(Expr):
    entries: List[tuple] = field(default_factory=list)  # [(key: str, Expr)]


# --- Statements ---

@dataclass
class Stmt(Node):
    pass


@dataclass
class SetStmt(Stmt):
    name: str
    value: Expr


@dataclass
class FuncDef(Stmt):
    name: str
    params: List[str]
    body: List[Stmt]


@dataclass
class ReturnStmt(Stmt):
    value: Optional[Expr] = None
    # Set by the optimizer when `value` is a direct self-call of the enclosing function.
    tail_call: bool = False


@dataclass
class IfStmt(Stmt):
    condition: Expr
    then_body: List[Stmt]
    else_body: Optional[List[Stmt]] = None


@dataclass
class WhileStmt(Stmt):
    condition: Expr
    body: List[Stmt]


@dataclass
class ForStmt(Stmt):
    var: str
    iterable: Expr
    body: List[Stmt]


@dataclass
class ExprStmt(Stmt):
    expr: Expr


@dataclass
class Program(Node):
    body: List[Stmt] = field(default_factory=list)


# =================================================================
# Runtime callables
# =================================================================

class Function:
    """A user-defined DSL function bound in an environment scope."""

    def __init__(self, name: str, params: List[str], body: List[Stmt], closure: Any):
        self.name = name
        self.params = list(params)
        self.body = body
        self.closure = closure

    @property
    def arity(self) -> int:
        return len(self.params)

    def __repr__(self) -> str:
        return f"<Function {self.name}({', '.join(self.params)})>"
