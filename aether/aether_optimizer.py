"""
AST-to-AST optimization passes.

Passes run in a fixed order: constant folding, dead-code elimination, then
tail-call marking. Each is independently switchable through
``OptimizationFlags``; the flags are part of the compilation cache key.
"""

import logging
from dataclasses import dataclass, fields
from typing import Any, List, Optional, Tuple

from aether.aether_datatypes import (
    Node, Expr, Literal, Identifier, BinaryOp, LogicalOp, UnaryOp, Index, Call, ArrayLit, ObjectLit,
    Stmt, SetStmt, FuncDef, ReturnStmt, IfStmt, WhileStmt, ForStmt, ExprStmt, Program,
)
from aether.aether_errors import AetherError
from aether.aether_interpreter import apply_binary, apply_unary, truthy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OptimizationFlags:
    constant_folding: bool = False
    dead_code_elimination: bool = False
    tail_call_optimization: bool = False

    def as_tuple(self) -> Tuple[bool, ...]:
        return tuple(getattr(self, f.name) for f in fields(self))

    def to_dict(self):
        return {f.name: getattr(self, f.name) for f in fields(self)}

    @property
    def any_enabled(self) -> bool:
        return any(self.as_tuple())

    @classmethod
    def all(cls) -> 'OptimizationFlags':
        return cls(True, True, True)


# ===================================================================
# Constant folding
# ===================================================================

class ConstantFolder:
    """Replaces operations over literal operands with their literal result."""

    def fold_program(self, program: Program) -> Program:
        program.body = [self.fold_stmt(s) for s in program.body]
        return program

    def fold_block(self, body: List[Stmt]) -> List[Stmt]:
        return [self.fold_stmt(s) for s in body]

    def fold_stmt(self, stmt: Stmt) -> Stmt:
        match stmt:
            case SetStmt():
                stmt.value = self.fold_expr(stmt.value)
            case ExprStmt():
                stmt.expr = self.fold_expr(stmt.expr)
            case ReturnStmt() if stmt.value is not None:
                stmt.value = self.fold_expr(stmt.value)
            case FuncDef():
                stmt.body = self.fold_block(stmt.body)
            case IfStmt():
                stmt.condition = self.fold_expr(stmt.condition)
                stmt.then_body = self.fold_block(stmt.then_body)
                if stmt.else_body is not None:
                    stmt.else_body = self.fold_block(stmt.else_body)
            case WhileStmt():
                stmt.condition = self.fold_expr(stmt.condition)
                stmt.body = self.fold_block(stmt.body)
            case ForStmt():
                stmt.iterable = self.fold_expr(stmt.iterable)
                stmt.body = self.fold_block(stmt.body)
        return stmt

    def fold_expr(self, expr: Expr) -> Expr:
        match expr:
            case BinaryOp(op=op):
                expr.left = self.fold_expr(expr.left)
                expr.right = self.fold_expr(expr.right)
                if isinstance(expr.left, Literal) and isinstance(expr.right, Literal):
                    return self._try_literal(expr, lambda: apply_binary(op, expr.left.value, expr.right.value))
            case LogicalOp(op=op):
                expr.left = self.fold_expr(expr.left)
                expr.right = self.fold_expr(expr.right)
                if isinstance(expr.left, Literal):
                    left = truthy(expr.left.value)
                    # The result is decided by the left operand alone
                    if (op == "&&" and not left) or (op == "||" and left):
                        return Literal(left, pos=expr.pos)
                    if isinstance(expr.right, Literal):
                        return Literal(truthy(expr.right.value), pos=expr.pos)
            case UnaryOp(op=op):
                expr.operand = self.fold_expr(expr.operand)
                if isinstance(expr.operand, Literal):
                    return self._try_literal(expr, lambda: apply_unary(op, expr.operand.value))
            case Index():
                expr.target = self.fold_expr(expr.target)
                expr.index = self.fold_expr(expr.index)
            case Call():
                expr.args = [self.fold_expr(a) for a in expr.args]
            case ArrayLit():
                expr.items = [self.fold_expr(i) for i in expr.items]
            case ObjectLit():
                expr.entries = [(k, self.fold_expr(v)) for k, v in expr.entries]
        return expr

    @staticmethod
    def _try_literal(expr: Expr, compute) -> Expr:
        # Operations that would fail stay in place so the error surfaces at run time
        try:
            value = compute()
        except AetherError:
            return expr
        if isinstance(value, (list, dict)):
            return expr
        return Literal(value, pos=expr.pos)


# ===================================================================
# Dead-code elimination
# ===================================================================

def _is_inert(expr: Expr) -> bool:
    """True for expressions that can neither fail nor have side effects."""
    match expr:
        case Literal():
            return True
        case ArrayLit(items=items):
            return all(_is_inert(i) for i in items)
        case ObjectLit(entries=entries):
            return all(_is_inert(v) for _, v in entries)
    return False


def _is_literal_false(expr: Expr) -> bool:
    return isinstance(expr, Literal) and not truthy(expr.value)


class DeadCodeEliminator:

    def eliminate_program(self, program: Program) -> Program:
        program.body = self.eliminate_block(program.body, top_level=True)
        return program

    def eliminate_block(self, body: List[Stmt], top_level: bool = False) -> List[Stmt]:
        out: List[Stmt] = []
        last = len(body) - 1
        for i, stmt in enumerate(body):
            keep_final = top_level and i == last
            out.extend(self._eliminate_stmt(stmt, keep_final))
            if isinstance(stmt, ReturnStmt):
                # Nothing after an unconditional Return can run
                break
        return out

    def _eliminate_stmt(self, stmt: Stmt, keep_final: bool) -> List[Stmt]:
        match stmt:
            case ExprStmt(expr=expr) if _is_inert(expr) and not keep_final:
                return []
            case IfStmt(condition=cond) if _is_literal_false(cond) and not keep_final:
                if stmt.else_body is None:
                    return []
                return self.eliminate_block(stmt.else_body)
            case IfStmt():
                stmt.then_body = self.eliminate_block(stmt.then_body)
                if stmt.else_body is not None:
                    stmt.else_body = self.eliminate_block(stmt.else_body)
            case WhileStmt(condition=cond) if _is_literal_false(cond) and not keep_final:
                return []
            case WhileStmt() | ForStmt() | FuncDef():
                stmt.body = self.eliminate_block(stmt.body)
        return [stmt]


# ===================================================================
# Tail-call marking
# ===================================================================

class TailCallMarker:
    """Marks `Return F(...)` inside `Func F` for trampolined execution."""

    def mark_program(self, program: Program) -> Program:
        self._mark_block(program.body, None)
        return program

    def _mark_block(self, body: List[Stmt], func_name: Optional[str]) -> None:
        for stmt in body:
            match stmt:
                case FuncDef():
                    self._mark_block(stmt.body, stmt.name)
                case ReturnStmt(value=Call(name=name)) if func_name is not None and name == func_name:
                    stmt.tail_call = True
                case IfStmt():
                    self._mark_block(stmt.then_body, func_name)
                    if stmt.else_body is not None:
                        self._mark_block(stmt.else_body, func_name)
                case WhileStmt() | ForStmt():
                    self._mark_block(stmt.body, func_name)


# ===================================================================
# Pipeline
# ===================================================================

def optimize(program: Program, flags: OptimizationFlags) -> Program:
    if flags.constant_folding:
        program = ConstantFolder().fold_program(program)
    if flags.dead_code_elimination:
        program = DeadCodeEliminator().eliminate_program(program)
    if flags.tail_call_optimization:
        program = TailCallMarker().mark_program(program)
    return program


def count_nodes(node: Any) -> int:
    """Number of AST nodes reachable from ``node``."""
    if isinstance(node, Node):
        return 1 + sum(count_nodes(getattr(node, f.name)) for f in fields(node) if f.name != "pos")
    if isinstance(node, (list, tuple)):
        return sum(count_nodes(item) for item in node)
    return 0
