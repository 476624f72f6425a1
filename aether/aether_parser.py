"""
Parser front end for the Aether DSL.

The grammar lives in ``aether_grammar.yaml`` and is run by koine; the raw
parse tree is then handed to ``AetherTransformer`` to build the AST. There is
no operator precedence table: every binary operation must be wrapped in its
own pair of parentheses, e.g. ``((A + B) * C)``.
"""

import logging
import threading
from pathlib import Path
from typing import Optional

from koine import Parser

from aether.aether_datatypes import Program, SourcePosition
from aether.aether_errors import AetherSyntaxError
from aether.aether_transformer import AetherTransformer


logger = logging.getLogger(__name__)

GRAMMAR_PATH = Path(__file__).parent / "aether_grammar.yaml"

_parser: Optional[Parser] = None
_parser_lock = threading.Lock()


def get_parser() -> Parser:
    """The koine parser for the Aether grammar, built once per process."""
    global _parser
    if _parser is None:
        with _parser_lock:
            if _parser is None:
                _parser = Parser.from_file(str(GRAMMAR_PATH))
    return _parser


def _too_deep(transformer: AetherTransformer) -> AetherSyntaxError:
    return AetherSyntaxError("expression nested too deeply", SourcePosition(1, 1, 0),
                             transformer.source_line(1))


def _format_parse_error(parse_out: dict, transformer: AetherTransformer) -> AetherSyntaxError:
    node = parse_out.get('error_node') or {}
    message = parse_out.get('error_message') or str(parse_out)
    line, col = node.get('line'), node.get('col')
    if line is None or col is None:
        position = SourcePosition(1, 1, 0)
    else:
        position = transformer.position(line, col)
    return AetherSyntaxError(message, position, transformer.source_line(position.line))


def parse(source: str) -> Program:
    """Parse ``source`` into a ``Program``; raises ``AetherSyntaxError`` on failure."""
    transformer = AetherTransformer(source)
    try:
        parse_out = get_parser().parse(source)
    except RecursionError:
        raise _too_deep(transformer) from None
    except Exception as e:
        logger.debug("koine parse raised %r", e)
        raise AetherSyntaxError("parse failed", SourcePosition(1, 1, 0)) from e

    if isinstance(parse_out, dict) and 'status' in parse_out:
        if parse_out.get('status') != 'success':
            raise _format_parse_error(parse_out, transformer)
        ast_node = parse_out.get('ast')
    else:
        ast_node = parse_out

    if ast_node is None:
        return Program([], pos=SourcePosition(1, 1, 0))
    try:
        return transformer.transform(ast_node)
    except RecursionError:
        raise _too_deep(transformer) from None
