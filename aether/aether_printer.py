"""
A pretty-printer for Aether values.
"""
import json

from aether.aether_datatypes import Function
from aether.aether_errors import InvalidValueError


# Integral numbers below this magnitude print without a fractional part
_MAX_EXACT_INT = 2 ** 53


class Printer:
    """Formats Aether values in DSL notation."""

    def __init__(self):
        self._handlers = self._create_handlers()

    def pformat(self, obj, level=0):
        """Public entry point: source notation, strings quoted."""
        try:
            return self._format(obj, level)
        except RecursionError:
            raise InvalidValueError("value nested too deeply to display") from None

    def display(self, obj):
        """Like pformat, but a top-level string is shown bare."""
        if isinstance(obj, str):
            return obj
        return self.pformat(obj)

    def _format(self, obj, level):
        handler = self._get_handler(obj)
        return handler(obj, level)

    def _get_handler(self, obj):
        obj_type = type(obj)
        if obj_type in self._handlers:
            return self._handlers[obj_type]
        if isinstance(obj, dict):
            return self._pformat_dict
        if isinstance(obj, (list, tuple)):
            return self._pformat_list
        return lambda o, l: repr(o)

    def _create_handlers(self):
        return {
            str: self._pformat_str,
            int: self._pformat_number,
            float: self._pformat_number,
            bool: self._pformat_bool,
            type(None): self._pformat_none,
            list: self._pformat_list,
            dict: self._pformat_dict,
            Function: self._pformat_function,
        }

    def _pformat_none(self, obj, level):
        return "Null"

    def _pformat_bool(self, obj, level):
        return "True" if obj else "False"

    def _pformat_number(self, obj, level):
        if isinstance(obj, float) and obj.is_integer() and abs(obj) < _MAX_EXACT_INT:
            return str(int(obj))
        return repr(obj)

    def _pformat_str(self, obj, level):
        return json.dumps(obj, ensure_ascii=False)

    def _pformat_list(self, obj, level):
        return "[" + ", ".join(self._format(item, level + 1) for item in obj) + "]"

    def _pformat_dict(self, obj, level):
        if not obj:
            return "{}"
        items = [f"{self._pformat_str(k, level)}: {self._format(v, level + 1)}" for k, v in obj.items()]
        return "{" + ", ".join(items) + "}"

    def _pformat_function(self, obj, level):
        return f"Func {obj.name}({', '.join(obj.params)})"
