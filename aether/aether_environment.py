"""
Variable scopes for the Aether evaluator.

A ``Scope`` is a flat mapping of names to values with a link to its
enclosing scope. The global scope has no parent; each function call gets a
fresh scope whose parent is the scope the function was defined in.
"""

import re
from typing import Any, Dict, Optional

from aether.aether_datatypes import KEYWORDS, Function
from aether.aether_errors import AetherTypeError, InvalidValueError, NotFoundError
from aether.aether_serialize import from_host, to_host


IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*\Z")


class Scope:
    """A single frame in the lexical scope chain."""

    def __init__(self, parent: Optional['Scope'] = None):
        self.bindings: Dict[str, Any] = {}
        self.parent = parent

    def __getitem__(self, key: str) -> Any:
        owner = self.find_owner(key)
        if owner is not None:
            return owner.bindings[key]
        raise KeyError(key)

    def __setitem__(self, key: str, value: Any):
        self.bindings[key] = value

    def __contains__(self, key: str) -> bool:
        return self.find_owner(key) is not None

    def find_owner(self, key: str) -> Optional['Scope']:
        """Finds the Scope in the chain (self → parent → ...) that binds key."""
        scope = self
        while scope is not None:
            if key in scope.bindings:
                return scope
            scope = scope.parent
        return None

    def get(self, key: str, default: Any = None) -> Any:
        owner = self.find_owner(key)
        if owner is not None:
            return owner.bindings[key]
        return default

    def assign(self, key: str, value: Any) -> None:
        """`Set` semantics: rebind the nearest owner, else create the name here."""
        owner = self.find_owner(key) or self
        owner.bindings[key] = value

    def __repr__(self) -> str:
        return f"<Scope {sorted(self.bindings)}>"


def is_valid_name(name: Any) -> bool:
    return isinstance(name, str) and IDENTIFIER_RE.match(name) is not None and name not in KEYWORDS


class Environment:
    """The global scope of one engine plus the host-facing accessors."""

    def __init__(self):
        self.globals = Scope()

    def set_global(self, name: str, value: Any) -> None:
        if not is_valid_name(name):
            raise InvalidValueError(f"invalid variable name {name!r}")
        self.globals[name] = from_host(value)

    def get_global(self, name: str) -> Any:
        if name not in self.globals.bindings:
            raise NotFoundError(name)
        value = self.globals.bindings[name]
        if isinstance(value, Function):
            raise AetherTypeError(f"'{name}' is a function and has no host representation")
        return to_host(value)

    def has_global(self, name: str) -> bool:
        return name in self.globals.bindings

    def reset(self) -> None:
        self.globals = Scope()

    def __len__(self) -> int:
        return len(self.globals.bindings)
