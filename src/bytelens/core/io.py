from __future__ import annotations

import logging
import mmap
import os
from collections import OrderedDict
from dataclasses import dataclass
from typing import Protocol, Union, runtime_checkable

Buffer = Union[bytes, bytearray, memoryview]

logger = logging.getLogger(__name__)


class InvalidOffset(ValueError):
    """Raised when an invalid (e.g., negative) offset is provided."""


@runtime_checkable
class ByteSource(Protocol):
    """Random-access byte sequence the engine parses from.

    Only slice semantics are required; a source may be in-memory or backed
    by a paged loader.
    """

    @property
    def size(self) -> int: ...

    def slice(self, start: int, end: int) -> Buffer: ...


def _check_range(start: int, end: int) -> None:
    if start < 0:
        raise InvalidOffset("start must be >= 0")
    if end < start:
        raise InvalidOffset("end must be >= start")


class BytesSource:
    """In-memory byte source. The buffer is treated as immutable."""

    def __init__(self, data: Buffer) -> None:
        self._data = memoryview(data).cast("B") if not isinstance(data, bytes) else data

    @property
    def size(self) -> int:
        return len(self._data)

    def slice(self, start: int, end: int) -> Buffer:
        _check_range(start, end)
        return self._data[start : min(end, len(self._data))]


@dataclass(frozen=True)
class _Page:
    index: int
    data: bytes


class PagedReader:
    """Bounds-checked `ByteSource` over a file on disk.

    Maps the file read-only when the platform allows it, so slices are
    zero-copy views. Otherwise pages of `page_size` bytes are read on demand
    and the most recent `cache_pages` of them are kept.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        *,
        page_size: int = 64 * 1024,
        cache_pages: int = 16,
        use_mmap: bool = True,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        if cache_pages <= 0:
            raise ValueError("cache_pages must be positive")

        self._path = os.fspath(path)
        if not os.path.isfile(self._path):
            raise FileNotFoundError(f"File not found: {self._path}")
        self._size = os.path.getsize(self._path)
        self._fh = open(self._path, "rb", buffering=0)  # noqa: SIM115
        self._page_size = page_size
        self._max_pages = cache_pages
        self._pages: OrderedDict[int, _Page] = OrderedDict()
        self._mmap = self._try_map() if use_mmap else None

    def _try_map(self):
        if self._size == 0:
            return None
        try:
            return mmap.mmap(self._fh.fileno(), length=0, access=mmap.ACCESS_READ)
        except (OSError, ValueError):
            return None  # paged reads still work

    @property
    def size(self) -> int:
        return self._size

    @property
    def path(self) -> str:
        return self._path

    def close(self) -> None:
        if self._mmap is not None:
            try:
                self._mmap.close()
            except BufferError:
                # a view handed out by slice() is still alive; the map goes with it
                logger.debug("mmap of %s still has exported views; left open", self._path)
            self._mmap = None
        self._fh.close()

    def __enter__(self) -> PagedReader:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _page(self, index: int) -> _Page:
        page = self._pages.get(index)
        if page is not None:
            self._pages.move_to_end(index)
            return page
        start = index * self._page_size
        self._fh.seek(start)
        page = _Page(index=index, data=self._fh.read(min(self._page_size, self._size - start)))
        self._pages[index] = page
        if len(self._pages) > self._max_pages:
            self._pages.popitem(last=False)
        return page

    def _read_paged(self, start: int, end: int) -> bytes:
        out = bytearray()
        first = start // self._page_size
        last = (end - 1) // self._page_size
        for index in range(first, last + 1):
            base = index * self._page_size
            data = self._page(index).data
            out += data[max(start - base, 0) : min(end - base, len(data))]
        return bytes(out)

    def slice(self, start: int, end: int) -> Buffer:
        """Bytes in [start, end), truncated at EOF."""
        _check_range(start, end)
        end = min(end, self._size)
        if start >= end:
            return b""
        if self._mmap is not None:
            return memoryview(self._mmap)[start:end]
        return self._read_paged(start, end)

    def read(self, offset: int, length: int) -> bytes:
        """Copy of up to `length` bytes at `offset`; short at EOF, empty past it."""
        if offset < 0:
            raise InvalidOffset("offset must be >= 0")
        if length < 0:
            raise InvalidOffset("length must be >= 0")
        return bytes(self.slice(offset, offset + length))


def as_source(data: Buffer | ByteSource) -> ByteSource:
    """Wrap raw buffers in a `BytesSource`; pass sources through."""
    if isinstance(data, (bytes, bytearray, memoryview)):
        return BytesSource(data)
    return data
