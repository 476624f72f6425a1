from __future__ import annotations
import logging
import os
from typing import Any, List, Optional

from aether.aether_printer import Printer
from aether.aether_serialize import deserialize, serialize


logger = logging.getLogger(__name__)

STRUCTURED_EXTENSIONS = {".json": "json", ".yaml": "yaml", ".yml": "yaml"}


def resolve_path(locator: str, base_dir: Optional[str]) -> str:
    """Resolve a path or `file://` locator against base_dir (default: CWD)."""
    rest = locator[7:] if locator.startswith("file://") else locator
    if rest.startswith("~"):
        return os.path.expanduser(rest)
    if os.path.isabs(rest):
        return os.path.normpath(rest)
    base = base_dir or os.getcwd()
    return os.path.normpath(os.path.join(base, rest))


def _format_for(path: str) -> Optional[str]:
    return STRUCTURED_EXTENSIONS.get(os.path.splitext(path)[1].lower())


def file_get(locator: str, *, base_dir: Optional[str] = None) -> Any:
    path = resolve_path(locator, base_dir)
    if not os.path.isfile(path):
        raise FileNotFoundError(path)
    logger.debug("read %s", path)
    fmt = _format_for(path)
    if fmt is not None:
        with open(path, "rb") as f:
            data = f.read()
        return deserialize(data, fmt=fmt)
    with open(path, "r", encoding="utf-8") as f:
        return f.read()


def file_put(locator: str, data: Any, *, base_dir: Optional[str] = None) -> str:
    path = resolve_path(locator, base_dir)
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fmt = _format_for(path)
    if fmt is not None and not isinstance(data, str):
        text = serialize(data, fmt=fmt, pretty=True)
    elif isinstance(data, str):
        text = data
    else:
        text = Printer().pformat(data)
    logger.debug("write %s (%d chars)", path, len(text))
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)
    return path


def file_exists(locator: str, *, base_dir: Optional[str] = None) -> bool:
    return os.path.exists(resolve_path(locator, base_dir))


def file_delete(locator: str, *, base_dir: Optional[str] = None) -> bool:
    """Delete a file; returns False when nothing was there."""
    path = resolve_path(locator, base_dir)
    if os.path.isdir(path):
        # Directories are never deleted
        raise IsADirectoryError(path)
    if not os.path.isfile(path):
        return False
    logger.debug("delete %s", path)
    os.remove(path)
    return True


def list_dir(locator: str, *, base_dir: Optional[str] = None) -> List[str]:
    path = resolve_path(locator, base_dir)
    return sorted(os.listdir(path))
