"""Format registry: indexes schemas by id, signature and file extension."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path

from bytelens.core.io import Buffer
from bytelens.core.schema import (
    CompileError,
    Meta,
    SchemaDocument,
    Signature,
    compile_schema,
    peek_meta,
)
from bytelens.core.storage import SCHEMA_SUFFIX, SchemaStore, get_builtin_formats_dir

logger = logging.getLogger(__name__)

DETECT_PREFIX_DEFAULT = 64 * 1024

CATEGORY_SYSTEM = "system"
CATEGORY_USER = "user"

# (leading bytes, keywords matched against format id/name words)
HEURISTICS: tuple[tuple[bytes, tuple[bytes, ...], frozenset[str]], ...] = (
    (b"MZ", (b"",), frozenset({"pe", "dos", "mz", "exe"})),
    (b"PK", (b"\x03", b"\x05", b"\x07"), frozenset({"zip"})),
    (b"\x89PNG", (b"",), frozenset({"png"})),
)


@dataclass
class FormatEntry:
    id: str
    name: str
    category: str
    meta: Meta
    text: str | None = None
    schema: SchemaDocument | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def compiled(self) -> bool:
        return self.schema is not None

    @property
    def signature(self) -> Signature | None:
        return self.meta.signature

    @property
    def extensions(self) -> tuple[str, ...]:
        return self.meta.file_extensions

    def words(self) -> set[str]:
        parts = set(self.id.lower().split("_"))
        parts.update(self.name.lower().replace("/", " ").split())
        return parts


@dataclass(frozen=True)
class RegistryStats:
    format_count: int
    signature_count: int
    extension_count: int
    categories: dict[str, int] = field(default_factory=dict)


class FormatRegistry:
    """Owns the compiled schemas of one runtime.

    Registries are plain objects; create as many as needed (one per runtime,
    one per test). All index mutation happens under a single lock.
    """

    def __init__(
        self,
        store: SchemaStore | None = None,
        *,
        detect_prefix: int = DETECT_PREFIX_DEFAULT,
    ) -> None:
        self.store = store
        self.detect_prefix = detect_prefix
        self._lock = threading.RLock()
        self._formats: dict[str, FormatEntry] = {}
        # first signature byte -> [(format id, signature)]; None holds the wildcard bucket
        self._signatures: dict[int | None, list[tuple[str, Signature]]] = {}
        self._extensions: dict[str, list[str]] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        source: str | SchemaDocument,
        *,
        category: str = CATEGORY_USER,
        lazy: bool = False,
        persist: bool = False,
    ) -> str:
        """Register schema text (or an already compiled schema).

        With `lazy=True` only the meta block is read now; the body compiles
        on the first `get`.

        Returns:
            The format id.

        Raises:
            CompileError: The schema (or, when lazy, its meta block) is invalid.
        """
        if isinstance(source, SchemaDocument):
            schema: SchemaDocument | None = source
            text = None
            meta = source.meta
        elif lazy:
            schema = None
            text = source
            meta = peek_meta(source)
        else:
            schema = compile_schema(source)
            text = source
            meta = schema.meta

        entry = FormatEntry(
            id=meta.id,
            name=meta.title or meta.id,
            category=category,
            meta=meta,
            text=text if schema is None else None,
            schema=schema,
        )
        with self._lock:
            if entry.id in self._formats:
                self._unindex(entry.id)
            self._formats[entry.id] = entry
            self._index(entry)
        if persist and self.store is not None and text is not None:
            self.store.put(entry.id, text)
        logger.debug(
            "registered %s (%s, %s)", entry.id, category, "compiled" if schema else "deferred"
        )
        return entry.id

    def _index(self, entry: FormatEntry) -> None:
        sig = entry.signature
        if sig is not None:
            wildcard = sig.offset != 0 or (sig.mask is not None and sig.mask[0] != 0xFF)
            key = None if wildcard else sig.pattern[0]
            bucket = self._signatures.setdefault(key, [])
            bucket.append((entry.id, sig))
            # most specific signature wins
            bucket.sort(key=lambda item: len(item[1].pattern), reverse=True)
        for ext in entry.extensions:
            ids = self._extensions.setdefault(ext, [])
            if entry.id not in ids:
                ids.append(entry.id)

    def _unindex(self, format_id: str) -> None:
        for key in list(self._signatures):
            kept = [item for item in self._signatures[key] if item[0] != format_id]
            if kept:
                self._signatures[key] = kept
            else:
                del self._signatures[key]
        for ext in list(self._extensions):
            ids = [i for i in self._extensions[ext] if i != format_id]
            if ids:
                self._extensions[ext] = ids
            else:
                del self._extensions[ext]

    def remove(self, format_id: str) -> bool:
        """Drop a format from every index (and from the backing store)."""
        with self._lock:
            entry = self._formats.pop(format_id, None)
            if entry is None:
                return False
            self._unindex(format_id)
            if self.store is not None and entry.category == CATEGORY_USER:
                self.store.delete(format_id)
        return True

    def clear(self) -> None:
        with self._lock:
            self._formats.clear()
            self._signatures.clear()
            self._extensions.clear()

    def load_builtin_formats(self, directory: str | Path | None = None) -> int:
        """Register the bundled `.ksy` schemas. Returns how many loaded."""
        root = Path(directory) if directory is not None else get_builtin_formats_dir()
        count = 0
        for path in sorted(root.glob(f"*{SCHEMA_SUFFIX}")):
            try:
                self.register(path.read_text(encoding="utf-8"), category=CATEGORY_SYSTEM)
            except CompileError as e:
                logger.warning("builtin format %s failed to compile: %s", path.name, e)
                continue
            count += 1
        logger.debug("loaded %d builtin formats from %s", count, root)
        return count

    def initialize(self) -> int:
        """Load every stored user schema, then the builtins."""
        loaded = 0
        if self.store is not None:
            for format_id in self.store.list():
                text = self.store.get(format_id)
                if text is None:
                    continue
                try:
                    self.register(text, category=CATEGORY_USER, lazy=True)
                except CompileError as e:
                    logger.warning("stored format %s failed to register: %s", format_id, e)
                    continue
                loaded += 1
        return loaded + self.load_builtin_formats()

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def __contains__(self, format_id: str) -> bool:
        with self._lock:
            return format_id in self._formats

    def entry(self, format_id: str) -> FormatEntry | None:
        with self._lock:
            return self._formats.get(format_id)

    def get(self, format_id: str) -> SchemaDocument | None:
        """Compiled schema for `format_id`, compiling a deferred one now.

        Raises:
            CompileError: The deferred schema fails to compile.
        """
        with self._lock:
            entry = self._formats.get(format_id)
            if entry is None:
                return None
            if entry.schema is None:
                if entry.errors:
                    raise CompileError(entry.errors)
                assert entry.text is not None
                try:
                    entry.schema = compile_schema(entry.text)
                except CompileError as e:
                    entry.errors = e.errors
                    logger.warning("format %s failed to compile: %s", format_id, e)
                    raise
                entry.text = None
                logger.debug("compiled deferred format %s", format_id)
            return entry.schema

    def list_formats(
        self, category: str | None = None, name: str | None = None
    ) -> list[FormatEntry]:
        with self._lock:
            entries = list(self._formats.values())
        if category is not None:
            entries = [e for e in entries if e.category == category]
        if name:
            needle = name.lower()
            entries = [e for e in entries if needle in e.name.lower() or needle in e.id]
        return sorted(entries, key=lambda e: e.id)

    def stats(self) -> RegistryStats:
        with self._lock:
            categories: dict[str, int] = {}
            for entry in self._formats.values():
                categories[entry.category] = categories.get(entry.category, 0) + 1
            return RegistryStats(
                format_count=len(self._formats),
                signature_count=sum(len(v) for v in self._signatures.values()),
                extension_count=len(self._extensions),
                categories=categories,
            )

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self, data: Buffer, filename: str | None = None) -> str | None:
        """Format id for `data`: signature first, then extension, then heuristics."""
        if not data:
            return None
        head = bytes(data[: self.detect_prefix])
        found = self.detect_by_signature(head)
        if found is not None:
            logger.debug("detected %s by signature", found)
            return found
        if filename:
            found = self.detect_by_extension(filename)
            if found is not None:
                logger.debug("detected %s by extension", found)
                return found
        found = self.detect_by_heuristics(head)
        if found is not None:
            logger.debug("detected %s by heuristics", found)
        return found

    def detect_by_signature(self, data: bytes) -> str | None:
        if not data:
            return None
        with self._lock:
            candidates = list(self._signatures.get(data[0], ()))
            candidates += self._signatures.get(None, ())
        for format_id, sig in candidates:
            if sig.matches(data):
                return format_id
        return None

    def detect_by_extension(self, filename: str) -> str | None:
        if "." not in filename:
            return None
        ext = filename.rsplit(".", 1)[-1].lower()
        with self._lock:
            ids = self._extensions.get(ext)
            return ids[0] if ids else None

    def detect_by_heuristics(self, data: bytes) -> str | None:
        for prefix, next_bytes, keywords in HEURISTICS:
            if not data.startswith(prefix):
                continue
            tail = data[len(prefix) : len(prefix) + 1]
            if not any(tail.startswith(b) for b in next_bytes):
                continue
            with self._lock:
                entries = sorted(self._formats.values(), key=lambda e: e.id)
            for entry in entries:
                if entry.words() & keywords:
                    return entry.id
        return None
