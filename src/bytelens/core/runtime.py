"""Runtime: detection, cached full parses and viewport parsing."""

from __future__ import annotations

import logging
import threading

from bytelens.core.cache import CacheStats, ResultCache, content_fingerprint, make_key
from bytelens.core.engine import ParsedNode, parse_schema
from bytelens.core.findings import PARSE_ERROR, Finding
from bytelens.core.io import Buffer, ByteSource, as_source
from bytelens.core.profiles import DEFAULT_PROFILE, RuntimeProfile
from bytelens.core.registry import FormatRegistry, RegistryStats
from bytelens.core.schema import CompileError, SchemaDocument
from bytelens.core.spans import overlapping

logger = logging.getLogger(__name__)


def error_node(message: str) -> ParsedNode:
    """Top-level node reported when no schema could be used."""
    return ParsedNode(
        name="parse_error",
        path="parse_error",
        offset=0,
        length=0,
        type="error",
        value=message,
        findings=(Finding(PARSE_ERROR, message, "parse_error", 0),),
    )


class Runtime:
    """Entry point tying a registry, an engine configuration and a cache together."""

    def __init__(
        self,
        registry: FormatRegistry | None = None,
        *,
        profile: RuntimeProfile = DEFAULT_PROFILE,
        cache: ResultCache | None = None,
        load_builtins: bool = True,
    ) -> None:
        self.profile = profile
        if registry is None:
            registry = FormatRegistry(detect_prefix=profile.detect_prefix)
            if load_builtins:
                registry.load_builtin_formats()
        self.registry = registry
        self.cache = cache if cache is not None else ResultCache(profile.cache_capacity)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def detect_format(self, data: Buffer | ByteSource, filename: str | None = None) -> str | None:
        source = as_source(data)
        head = source.slice(0, min(source.size, self.profile.detect_prefix))
        return self.registry.detect(head, filename)

    def parse(
        self,
        data: Buffer | ByteSource,
        format_id: str | None = None,
        filename: str | None = None,
        cancel: threading.Event | None = None,
    ) -> ParsedNode:
        """Parse the whole buffer. Always returns a node.

        Raises:
            ParseCancelled: `cancel` was set mid-parse.
        """
        source = as_source(data)
        resolved = self._resolve_schema(source, format_id, filename)
        if isinstance(resolved, ParsedNode):
            return resolved
        fid, schema = resolved
        return self._parse_window(source, fid, schema, 0, source.size, cancel)

    def parse_range(
        self,
        data: Buffer | ByteSource,
        start: int,
        end: int,
        format_id: str | None = None,
        filename: str | None = None,
        cancel: threading.Event | None = None,
    ) -> list[ParsedNode]:
        """Top-level nodes overlapping [start, end).

        The range is clamped to `max_viewport` bytes. Buffers larger than
        `large_file_threshold` are parsed only around the range, with offsets
        kept absolute.
        """
        source = as_source(data)
        size = source.size
        start = max(0, start)
        if end - start > self.profile.max_viewport:
            logger.debug("viewport of %d bytes clamped to %d", end - start, self.profile.max_viewport)
            end = start + self.profile.max_viewport
        end = min(end, size)
        if end <= start:
            return []

        resolved = self._resolve_schema(source, format_id, filename)
        if isinstance(resolved, ParsedNode):
            return [resolved]
        fid, schema = resolved

        if size > self.profile.large_file_threshold:
            context = self.profile.viewport_context
            window_start = max(0, start - context)
            window_end = min(size, end + context)
            logger.debug(
                "large buffer: parsing window [%d:%d] of %d bytes", window_start, window_end, size
            )
        else:
            window_start, window_end = 0, size

        root = self._parse_window(source, fid, schema, window_start, window_end, cancel)
        return overlapping(root.children or (), start, end)

    def clear_cache(self) -> None:
        self.cache.clear()

    def registry_stats(self) -> RegistryStats:
        return self.registry.stats()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _resolve_schema(
        self, source: ByteSource, format_id: str | None, filename: str | None
    ) -> tuple[str, SchemaDocument] | ParsedNode:
        fid = format_id or self.detect_format(source, filename)
        if fid is None:
            return error_node("No format detected")
        try:
            schema = self.registry.get(fid)
        except CompileError as e:
            return error_node(f"Schema '{fid}' failed to compile: {e}")
        if schema is None:
            return error_node(f"Unknown format '{fid}'")
        return fid, schema

    def _parse_window(
        self,
        source: ByteSource,
        fid: str,
        schema: SchemaDocument,
        start: int,
        end: int,
        cancel: threading.Event | None,
    ) -> ParsedNode:
        buf = source.slice(start, end)
        key = make_key(fid, start, end, schema.source_hash, content_fingerprint(buf))
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        node = parse_schema(schema, buf, start, self.profile.limits, cancel)
        self.cache.put(key, node)
        return node
