"""
Transforms the raw koine parse tree into the Aether AST (aether_datatypes).

Checks the grammar cannot express on its own happen here: the chained
operator rule, duplicate parameters, string escapes and the friendlier
messages for the error-catching rules (`stray_else`, `stray_assign`, ...).
"""

from typing import Any, Dict, List

from aether.aether_datatypes import (
    BINARY_OPERATORS, LOGICAL_OPERATORS, SourcePosition,
    Expr, Literal, Identifier, BinaryOp, LogicalOp, UnaryOp, Index, Call,
    ArrayLit, ObjectLit,
    Stmt, SetStmt, FuncDef, ReturnStmt, IfStmt, WhileStmt, ForStmt, ExprStmt,
    Program,
)
from aether.aether_errors import AetherSyntaxError


ESCAPES = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '\\': '\\',
    '"': '"',
    "'": "'",
    '0': '\0',
}

KEYWORD_LITERALS = {'True': True, 'False': False, 'Null': None}

# Tags the transformer understands; anything else is a grouping node and is
# looked through.
KNOWN_TAGS = frozenset({
    'program', 'set_stmt', 'func_def', 'return_stmt', 'if_stmt', 'else_clause',
    'while_stmt', 'for_stmt', 'block', 'stray_else', 'stray_assign', 'expr_stmt',
    'unary', 'unary_op', 'postfix', 'call_args', 'index_suffix', 'paren', 'binop',
    'array', 'object', 'entry', 'number', 'bad_number', 'string',
    'unterminated_string', 'keyword_literal', 'identifier',
})


class AetherTransformer:
    """
    Usage:
        program = AetherTransformer(source).transform(parse_out['ast'])
    """

    def __init__(self, source: str = ""):
        self.source = source
        self._lines = source.splitlines()
        self._line_starts = [0]
        for i, ch in enumerate(source):
            if ch == '\n':
                self._line_starts.append(i + 1)

    # --- Helpers ---

    def _pos(self, node: Dict[str, Any], shift: int = 0) -> SourcePosition:
        line = node.get('line') or 1
        col = (node.get('col') or 1) + shift
        start = self._line_starts[line - 1] if line <= len(self._line_starts) else len(self.source)
        return SourcePosition(line, col, start + col - 1)

    def position(self, line: int, col: int) -> SourcePosition:
        return self._pos({'line': line, 'col': col})

    def source_line(self, line: int):
        if 1 <= line <= len(self._lines):
            return self._lines[line - 1]
        return None

    def _error(self, message: str, node: Dict[str, Any], shift: int = 0) -> AetherSyntaxError:
        position = self._pos(node, shift)
        return AetherSyntaxError(message, position, self.source_line(position.line))

    def _children(self, node: Any) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        self._flatten(node.get('children', []) if isinstance(node, dict) else node, out)
        return out

    def _flatten(self, item: Any, out: List[Dict[str, Any]]) -> None:
        if item is None:
            return
        if isinstance(item, list):
            for sub in item:
                self._flatten(sub, out)
        elif isinstance(item, dict):
            if item.get('tag') in KNOWN_TAGS:
                out.append(item)
            else:
                self._flatten(item.get('children', []), out)

    @staticmethod
    def _tagged(children: List[Dict[str, Any]], tag: str) -> List[Dict[str, Any]]:
        return [c for c in children if c.get('tag') == tag]

    # --- Dispatch ---

    def transform(self, node: Any) -> Any:
        if isinstance(node, list):
            return [self.transform(n) for n in self._children(node)]

        tag = node.get('tag')
        if tag not in KNOWN_TAGS:
            # Wrapper around the start rule
            inner = self._children(node)
            if len(inner) == 1 and inner[0].get('tag') == 'program':
                return self.transform(inner[0])
            return Program(self._statements(inner), pos=SourcePosition(1, 1, 0))

        children = self._children(node)

        match tag:
            # Statements
            case 'program':
                return Program(self._statements(children), pos=self._pos(node))
            case 'block':
                return self._statements(children)
            case 'set_stmt':
                name = children[0]['text']
                if len(children) < 2:
                    raise self._error(f"missing value in 'Set {name}'", node)
                return SetStmt(name, self.transform(children[1]), pos=self._pos(node))
            case 'func_def':
                return self._func_def(node, children)
            case 'return_stmt':
                value = self.transform(children[0]) if children else None
                return ReturnStmt(value, pos=self._pos(node))
            case 'if_stmt':
                else_body = None
                clauses = self._tagged(children, 'else_clause')
                if clauses:
                    branch = self._children(clauses[0])[0]
                    else_body = self.transform(branch)
                    if branch.get('tag') == 'if_stmt':
                        else_body = [else_body]
                blocks = self._tagged(children, 'block')
                then_body = self.transform(blocks[0]) if blocks else []
                return IfStmt(self.transform(children[0]), then_body, else_body, pos=self._pos(node))
            case 'while_stmt':
                blocks = self._tagged(children, 'block')
                body = self.transform(blocks[0]) if blocks else []
                return WhileStmt(self.transform(children[0]), body, pos=self._pos(node))
            case 'for_stmt':
                blocks = self._tagged(children, 'block')
                body = self.transform(blocks[0]) if blocks else []
                return ForStmt(children[0]['text'], self.transform(children[1]), body, pos=self._pos(node))
            case 'expr_stmt':
                return ExprStmt(self.transform(children[0]), pos=self._pos(node))
            case 'stray_else':
                raise self._error("'Else' without a matching 'If'", node)
            case 'stray_assign':
                raise self._error(
                    "unexpected '='; use 'Set NAME value' to assign or '==' to compare",
                    node, node['text'].index('='),
                )

            # Expressions
            case 'unary':
                return self._unary(node, children)
            case 'postfix':
                return self._postfix(children)
            case 'paren':
                return self._paren(node, children)
            case 'array':
                return ArrayLit([self.transform(c) for c in children], pos=self._pos(node))
            case 'object':
                entries = []
                for entry in children:
                    key, value = self._children(entry)
                    key_text = self._string(key) if key['tag'] == 'string' else key['text']
                    entries.append((key_text, self.transform(value)))
                return ObjectLit(entries, pos=self._pos(node))

            # Atoms
            case 'number':
                return Literal(float(node['text']), pos=self._pos(node))
            case 'bad_number':
                raise self._error(f"invalid number literal '{node['text']}'", node)
            case 'string':
                return Literal(self._string(node), pos=self._pos(node))
            case 'unterminated_string':
                raise self._error("unterminated string literal", node)
            case 'keyword_literal':
                return Literal(KEYWORD_LITERALS[node['text']], pos=self._pos(node))
            case 'identifier':
                return Identifier(node['text'], pos=self._pos(node))

        raise self._error(f"unexpected '{node.get('text', tag)}'", node)

    # --- Statements ---

    def _statements(self, children: List[Dict[str, Any]]) -> List[Stmt]:
        body = []
        for child in children:
            stmt = self.transform(child)
            if isinstance(stmt, Expr):
                stmt = ExprStmt(stmt, pos=stmt.pos)
            body.append(stmt)
        return body

    def _func_def(self, node: Dict[str, Any], children: List[Dict[str, Any]]) -> FuncDef:
        name = children[0]['text']
        params: List[str] = []
        for param in self._tagged(children[1:], 'identifier'):
            if param['text'] in params:
                raise self._error(f"duplicate parameter '{param['text']}'", param)
            params.append(param['text'])
        blocks = self._tagged(children, 'block')
        body = self.transform(blocks[0]) if blocks else []
        return FuncDef(name, params, body, pos=self._pos(node))

    # --- Expressions ---

    def _unary(self, node: Dict[str, Any], children: List[Dict[str, Any]]) -> Expr:
        op = children[0]['text']
        operand = children[1]
        if operand.get('tag') == 'postfix':
            inner = self._children(operand)
            if len(inner) == 1:
                operand = inner[0]
        if op == '-' and operand.get('tag') == 'number':
            return Literal(-float(operand['text']), pos=self._pos(node))
        return UnaryOp(op, self.transform(operand), pos=self._pos(node))

    def _postfix(self, children: List[Dict[str, Any]]) -> Expr:
        expr = self.transform(children[0])
        for suffix in children[1:]:
            if suffix['tag'] == 'call_args':
                if not isinstance(expr, Identifier):
                    raise self._error("only named functions can be called", suffix)
                args = [self.transform(a) for a in self._children(suffix)]
                expr = Call(expr.name, args, pos=expr.pos)
            else:
                index = self.transform(self._children(suffix)[0])
                expr = Index(expr, index, pos=self._pos(suffix))
        return expr

    def _paren(self, node: Dict[str, Any], children: List[Dict[str, Any]]) -> Expr:
        operators = self._tagged(children, 'binop')
        for op_node in operators:
            if op_node['text'] == '=':
                raise self._error(
                    "unexpected '='; use 'Set NAME value' to assign or '==' to compare", op_node,
                )
        if not operators:
            return self.transform(children[0])
        if len(operators) > 1:
            first, second = operators[0]['text'], operators[1]['text']
            raise self._error(
                f"chained operator '{second}' needs its own parentheses, "
                f"e.g. ((A {first} B) {second} C)",
                operators[1],
            )
        op = operators[0]['text']
        operands = [c for c in children if c.get('tag') != 'binop']
        left, right = self.transform(operands[0]), self.transform(operands[1])
        if op in LOGICAL_OPERATORS:
            return LogicalOp(op, left, right, pos=self._pos(node))
        if op not in BINARY_OPERATORS:
            raise self._error(f"unknown operator '{op}'", operators[0])
        return BinaryOp(op, left, right, pos=self._pos(node))

    # --- Strings ---

    def _string(self, node: Dict[str, Any]) -> str:
        text = node['text']
        chars = []
        i = 1
        end = len(text) - 1
        while i < end:
            ch = text[i]
            if ch != '\\':
                chars.append(ch)
                i += 1
                continue
            esc = text[i + 1]
            if esc in ESCAPES:
                chars.append(ESCAPES[esc])
                i += 2
            elif esc in ('x', 'u'):
                width = 2 if esc == 'x' else 4
                digits = text[i + 2:i + 2 + width]
                if i + 2 + width > end or any(d not in '0123456789abcdefABCDEF' for d in digits):
                    raise self._error(f"invalid escape sequence '\\{esc}{digits}'", node, i)
                chars.append(chr(int(digits, 16)))
                i += 2 + width
            else:
                raise self._error(f"invalid escape sequence '\\{esc}'", node, i)
        return ''.join(chars)
