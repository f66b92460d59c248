"""Minimal, well-formed sample files for the bundled formats."""

from __future__ import annotations

import struct

PNG = (
    b"\x89PNG\r\n\x1a\n"
    + struct.pack(">I", 13)
    + b"IHDR"
    + struct.pack(">IIBBBBB", 16, 8, 8, 6, 0, 0, 0)
    + b"\x00\x00\x00\x00"
    + struct.pack(">I", 0)
    + b"IEND"
    + b"\xae\x42\x60\x82"
)

ZIP = (
    b"PK"
    + struct.pack("<H", 0x0403)
    + struct.pack("<HHHHHIIIHH", 20, 0, 0, 0, 0, 0, 5, 5, 5, 0)
    + b"a.txt"
    + b"hello"
    + b"PK"
    + struct.pack("<H", 0x0605)
    + struct.pack("<HHHHIIH", 0, 0, 1, 1, 0, 0, 0)
)

ELF64 = (
    b"\x7fELF"
    + bytes([2, 1, 1, 0, 0])
    + bytes(7)
    + struct.pack("<HHIQQQIHHHHHH", 2, 62, 1, 0x401000, 64, 0, 0, 64, 56, 1, 64, 0, 0)
)

ELF32_BE = (
    b"\x7fELF"
    + bytes([1, 2, 1, 0, 0])
    + bytes(7)
    + struct.pack(">HHIIIIIHHHHHH", 2, 40, 1, 0x8000, 52, 0, 0, 52, 32, 1, 40, 0, 0)
)

_MZ_HEADER = b"MZ" + struct.pack("<13H", 0x90, 3, 1, 4, 0, 0xFFFF, 0, 0xB8, 0, 0, 0, 0x40, 0)
MZ = _MZ_HEADER + bytes(0x3C - len(_MZ_HEADER)) + struct.pack("<I", 0x80) + struct.pack("<HH", 0x10, 0x20)

GIF = (
    b"GIF89a"
    + struct.pack("<HHBBB", 1, 1, 0x80, 0, 0)
    + b"\x00\x00\x00\xff\xff\xff"
    + b"\x2c"
    + struct.pack("<HHHHB", 0, 0, 1, 1, 0)
    + b"\x02"
    + b"\x02\x4c\x01"
    + b"\x00"
    + b"\x3b"
)

BMP = (
    b"BM"
    + struct.pack("<IHHI", 58, 0, 0, 54)
    + struct.pack("<I", 40)
    + struct.pack("<iiHHIIiiII", 1, 1, 1, 24, 0, 4, 0, 0, 0, 0)
    + b"\x00\x00\xff\x00"
)
