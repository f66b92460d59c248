"""Positioned cursor over an immutable byte buffer."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from contextlib import contextmanager

from bytelens.core.endian import Endian
from bytelens.core.io import Buffer


class OutOfBounds(EOFError):
    """A read or seek went past the readable region. The cursor is unchanged."""

    def __init__(self, pos: int, wanted: int, end: int) -> None:
        super().__init__(f"requested {wanted} bytes at {pos:#x}, readable end is {end:#x}")
        self.pos = pos
        self.wanted = wanted
        self.end = end


_STRUCTS: dict[tuple[str, int, Endian], struct.Struct] = {}
for _kind, _codes in (("u", "BHIQ"), ("s", "bhiq")):
    for _width, _code in zip((1, 2, 4, 8), _codes):
        _STRUCTS[(_kind, _width, "le")] = struct.Struct("<" + _code)
        _STRUCTS[(_kind, _width, "be")] = struct.Struct(">" + _code)
for _width, _code in ((4, "f"), (8, "d")):
    _STRUCTS[("f", _width, "le")] = struct.Struct("<" + _code)
    _STRUCTS[("f", _width, "be")] = struct.Struct(">" + _code)


class KaitaiStream:
    """Read cursor with absolute positions.

    `base_offset` is the absolute position of `buffer[0]`; when a window of a
    larger file is parsed, positions still come out in file coordinates.

    Every read is atomic: it either returns and advances `pos`, or raises
    `OutOfBounds` leaving `pos` where it was. Byte-aligned reads drop any
    partially consumed bit state first.
    """

    def __init__(self, buffer: Buffer, base_offset: int = 0) -> None:
        if base_offset < 0:
            raise ValueError("base_offset must be >= 0")
        self._buf = buffer
        self._base = base_offset
        self._pos = base_offset
        self._end = base_offset + len(buffer)
        self._origin = 0
        self._bits = 0
        self._bits_left = 0

    # ------------------------------------------------------------------
    # Position
    # ------------------------------------------------------------------

    @property
    def pos(self) -> int:
        """Absolute read position."""
        return self._pos

    @property
    def size(self) -> int:
        """Absolute end of the readable region."""
        return self._end

    @property
    def base_offset(self) -> int:
        return self._base

    @property
    def remaining(self) -> int:
        return self._end - self._pos

    @property
    def eof(self) -> bool:
        return self._pos >= self._end and self._bits_left == 0

    @property
    def io_pos(self) -> int:
        """Position relative to the current region (what `_io.pos` reports)."""
        return self._pos - self._origin

    @property
    def io_size(self) -> int:
        """Size of the current region (what `_io.size` reports)."""
        return self._end - self._origin

    def to_absolute(self, io_pos: int) -> int:
        return self._origin + io_pos

    def seek(self, pos: int) -> None:
        """Move to an absolute position inside the buffer."""
        if pos < self._base or pos > self._base + len(self._buf):
            raise OutOfBounds(pos, 0, self._end)
        self.align_to_byte()
        self._pos = pos

    def align_to_byte(self) -> None:
        self._bits = 0
        self._bits_left = 0

    @property
    def region(self) -> tuple[int, int]:
        """`(origin, end)` of the current region, absolute."""
        return self._origin, self._end

    @contextmanager
    def within(self, region: tuple[int, int]) -> Iterator[KaitaiStream]:
        """Re-enter a region captured earlier from `region`."""
        saved = self._origin, self._end
        self._origin, self._end = region
        try:
            yield self
        finally:
            self._origin, self._end = saved

    @contextmanager
    def limit(self, size: int) -> Iterator[KaitaiStream]:
        """Bound reads to the next `size` bytes for the duration of the block.

        Inside the block `_io.pos`/`_io.size` are relative to the region start.
        The cursor itself is shared; callers decide where to continue afterwards.
        """
        if size < 0 or self._pos + size > self._end:
            raise OutOfBounds(self._pos, size, self._end)
        saved_end, saved_origin = self._end, self._origin
        self.align_to_byte()
        self._origin = self._pos
        self._end = self._pos + size
        try:
            yield self
        finally:
            self._end, self._origin = saved_end, saved_origin

    # ------------------------------------------------------------------
    # Raw bytes
    # ------------------------------------------------------------------

    def _index(self, n: int) -> int:
        if n < 0 or self._pos + n > self._end:
            raise OutOfBounds(self._pos, n, self._end)
        return self._pos - self._base

    def read_bytes(self, n: int) -> bytes:
        self.align_to_byte()
        i = self._index(n)
        data = bytes(self._buf[i : i + n])
        self._pos += n
        return data

    def read_bytes_full(self) -> bytes:
        return self.read_bytes(self._end - self._pos)

    def read_bytes_term(
        self,
        term: int,
        include: bool = False,
        consume: bool = True,
        eos_error: bool = True,
    ) -> bytes:
        """Read up to a terminator byte.

        Without a terminator before the region end, raises `OutOfBounds` when
        `eos_error` is set, otherwise returns everything up to the end.
        """
        self.align_to_byte()
        start = self._pos - self._base
        stop = self._end - self._base
        found = self._find(term, start, stop)
        if found == -1:
            if eos_error:
                raise OutOfBounds(self._pos, stop - start + 1, self._end)
            data = bytes(self._buf[start:stop])
            self._pos = self._end
            return data
        data = bytes(self._buf[start : start + found + (1 if include else 0)])
        self._pos += found + (1 if consume else 0)
        return data

    def _find(self, term: int, start: int, stop: int) -> int:
        """Offset of `term` relative to `start`, or -1. Scans in growing chunks."""
        needle = bytes([term])
        chunk = 4096
        i = start
        while i < stop:
            j = min(stop, i + chunk)
            k = bytes(self._buf[i:j]).find(needle)
            if k != -1:
                return i - start + k
            i = j
            chunk = min(chunk * 2, 1 << 20)
        return -1

    def skip(self, n: int) -> None:
        """Advance `n` bytes without reading them."""
        self.align_to_byte()
        self._index(n)
        self._pos += n

    # ------------------------------------------------------------------
    # Numbers
    # ------------------------------------------------------------------

    def read_number(self, kind: str, width: int, endian: Endian = "le") -> int | float:
        """Read an integer (`u`/`s`) or IEEE float (`f`) of the given width."""
        fmt = _STRUCTS[(kind, width, endian)]
        self.align_to_byte()
        i = self._index(width)
        (value,) = fmt.unpack_from(self._buf, i)
        self._pos += width
        return value

    def read_u1(self) -> int:
        return self.read_number("u", 1)  # type: ignore[return-value]

    def read_s1(self) -> int:
        return self.read_number("s", 1)  # type: ignore[return-value]

    def read_u2(self, endian: Endian = "le") -> int:
        return self.read_number("u", 2, endian)  # type: ignore[return-value]

    def read_u4(self, endian: Endian = "le") -> int:
        return self.read_number("u", 4, endian)  # type: ignore[return-value]

    def read_u8(self, endian: Endian = "le") -> int:
        return self.read_number("u", 8, endian)  # type: ignore[return-value]

    def read_s2(self, endian: Endian = "le") -> int:
        return self.read_number("s", 2, endian)  # type: ignore[return-value]

    def read_s4(self, endian: Endian = "le") -> int:
        return self.read_number("s", 4, endian)  # type: ignore[return-value]

    def read_s8(self, endian: Endian = "le") -> int:
        return self.read_number("s", 8, endian)  # type: ignore[return-value]

    def read_f4(self, endian: Endian = "le") -> float:
        return self.read_number("f", 4, endian)  # type: ignore[return-value]

    def read_f8(self, endian: Endian = "le") -> float:
        return self.read_number("f", 8, endian)  # type: ignore[return-value]

    # ------------------------------------------------------------------
    # Bits
    # ------------------------------------------------------------------

    def read_bits_int_be(self, n: int) -> int:
        """Read `n` bits, most significant bit first.

        Whole bytes are consumed from the buffer; leftover bits of the last
        byte stay pending for the next bit read.
        """
        if n < 0:
            raise ValueError("bit count must be >= 0")
        bits_needed = n - self._bits_left
        if bits_needed > 0:
            bytes_needed = (bits_needed - 1) // 8 + 1
            i = self._index(bytes_needed)
            new_bits = int.from_bytes(self._buf[i : i + bytes_needed], "big")
            self._pos += bytes_needed
            left = -bits_needed % 8
            res = (new_bits >> left) | (self._bits << bits_needed)
            self._bits = new_bits & ((1 << left) - 1)
            self._bits_left = left
            return res
        left = -bits_needed
        res = self._bits >> left
        self._bits &= (1 << left) - 1
        self._bits_left = left
        return res

    # ------------------------------------------------------------------
    # Strings
    # ------------------------------------------------------------------

    def read_str(self, n: int, encoding: str = "utf-8") -> str:
        return decode_str(self.read_bytes(n), encoding)

    def read_strz(
        self,
        encoding: str = "utf-8",
        term: int = 0,
        include: bool = False,
        consume: bool = True,
        eos_error: bool = False,
    ) -> str:
        return decode_str(self.read_bytes_term(term, include, consume, eos_error), encoding)


def decode_str(data: bytes, encoding: str | None) -> str:
    enc = (encoding or "utf-8").lower()
    try:
        return data.decode(enc, errors="replace")
    except LookupError:
        return data.decode("latin-1")


def process_xor(data: bytes, key: int | bytes) -> bytes:
    """XOR every byte with a single key byte or a repeating key."""
    if isinstance(key, int):
        return bytes(b ^ key for b in data)
    if not key:
        return data
    kl = len(key)
    return bytes(b ^ key[i % kl] for i, b in enumerate(data))


def process_rotate_left(data: bytes, amount: int) -> bytes:
    """Rotate every byte left by `amount` bits (negative rotates right)."""
    amount %= 8
    if amount == 0:
        return data
    return bytes(((b << amount) | (b >> (8 - amount))) & 0xFF for b in data)
