"""Key-value storage for schema documents, keyed by format id."""

from __future__ import annotations

import logging
import os
import re
import threading
from pathlib import Path
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

_SAFE_ID_RE = re.compile(r"^[a-z][a-z0-9_]*$")
SCHEMA_SUFFIX = ".ksy"


@runtime_checkable
class SchemaStore(Protocol):
    """Where registered schema texts persist between sessions."""

    def get(self, format_id: str) -> str | None: ...

    def put(self, format_id: str, text: str) -> None: ...

    def delete(self, format_id: str) -> bool: ...

    def list(self) -> list[str]: ...


def get_user_schemas_dir() -> Path:
    """Get platform-appropriate user schemas directory."""
    override = os.environ.get("BYTELENS_SCHEMA_DIR")
    if override:
        return Path(override)
    if os.name == "nt":  # Windows
        base = os.environ.get("APPDATA", os.path.expanduser("~"))
        return Path(base) / "bytelens" / "formats"
    else:  # macOS, Linux
        return Path.home() / ".config" / "bytelens" / "formats"


def get_builtin_formats_dir() -> Path:
    """Get the bundled formats directory."""
    # Relative to this module
    return Path(__file__).parent.parent / "formats" / "builtin"


class MemorySchemaStore:
    """Process-local store, mostly for tests and embedding."""

    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._items: dict[str, str] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, format_id: str) -> str | None:
        with self._lock:
            return self._items.get(format_id)

    def put(self, format_id: str, text: str) -> None:
        with self._lock:
            self._items[format_id] = text

    def delete(self, format_id: str) -> bool:
        with self._lock:
            return self._items.pop(format_id, None) is not None

    def list(self) -> list[str]:
        with self._lock:
            return sorted(self._items)


class DirectorySchemaStore:
    """One `<id>.ksy` file per schema inside a directory.

    The directory is created on first write, so pointing a store at a path
    that does not exist yet is fine.
    """

    def __init__(self, directory: str | os.PathLike[str] | None = None) -> None:
        self.directory = Path(directory) if directory is not None else get_user_schemas_dir()

    def _path(self, format_id: str) -> Path:
        if not _SAFE_ID_RE.match(format_id):
            raise ValueError(f"Invalid format id '{format_id}'")
        return self.directory / f"{format_id}{SCHEMA_SUFFIX}"

    def get(self, format_id: str) -> str | None:
        path = self._path(format_id)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def put(self, format_id: str, text: str) -> None:
        path = self._path(format_id)
        self.directory.mkdir(parents=True, exist_ok=True)
        # written beside the target, then renamed into place
        tmp = path.with_suffix(SCHEMA_SUFFIX + ".tmp")
        tmp.write_text(text, encoding="utf-8")
        tmp.replace(path)
        logger.debug("stored schema %s at %s", format_id, path)

    def delete(self, format_id: str) -> bool:
        path = self._path(format_id)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        return True

    def list(self) -> list[str]:
        if not self.directory.is_dir():
            return []
        return sorted(
            p.stem for p in self.directory.glob(f"*{SCHEMA_SUFFIX}") if _SAFE_ID_RE.match(p.stem)
        )
