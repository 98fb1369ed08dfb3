"""Low-level reading of DWARF section data."""

from __future__ import annotations

import enum
from typing import Mapping, Optional, Tuple

_MASK64 = (1 << 64) - 1


class DwarfError(Exception):
    """Raised when DWARF data is malformed or cannot be interpreted.

    ``errnum`` is 0 for ordinary format errors and -1 when the data is
    of a kind or version that is not supported.
    """

    def __init__(self, message: str, errnum: int = 0) -> None:
        super().__init__(message)
        self.errnum = errnum


class DwarfSection(enum.Enum):
    """The DWARF sections used for address lookups; values are section names."""

    DEBUG_INFO = ".debug_info"
    DEBUG_LINE = ".debug_line"
    DEBUG_ABBREV = ".debug_abbrev"
    DEBUG_RANGES = ".debug_ranges"
    DEBUG_STR = ".debug_str"
    DEBUG_ADDR = ".debug_addr"
    DEBUG_STR_OFFSETS = ".debug_str_offsets"
    DEBUG_LINE_STR = ".debug_line_str"
    DEBUG_RNGLISTS = ".debug_rnglists"


class DwarfSections:
    """The raw contents of the DWARF sections of one module."""

    def __init__(self, sections: Optional[Mapping[DwarfSection, bytes]] = None) -> None:
        self._data = {
            DwarfSection(section): bytes(content)
            for section, content in (sections or {}).items()
        }

    def get(self, section: DwarfSection) -> bytes:
        """Return the contents of ``section``, empty if it is absent."""
        return self._data.get(section, b"")

    def size(self, section: DwarfSection) -> int:
        """Return the size in bytes of ``section``."""
        return len(self.get(section))

    def __repr__(self) -> str:
        sizes = ", ".join(f"{s.value}={len(d)}" for s, d in self._data.items())
        return f"DwarfSections({sizes})"


class DwarfBuffer:
    """A cursor over a window ``[pos, end)`` of a section's bytes."""

    __slots__ = ("data", "name", "pos", "end", "is_bigendian")

    def __init__(
        self,
        data: bytes,
        name: str = "",
        pos: int = 0,
        end: Optional[int] = None,
        is_bigendian: bool = False,
    ) -> None:
        if not isinstance(data, bytes):
            data = bytes(data)
        if end is None:
            end = len(data)
        if not 0 <= pos <= end <= len(data):
            raise ValueError("buffer window out of range")
        self.data = data
        self.name = name
        self.pos = pos
        self.end = end
        self.is_bigendian = is_bigendian

    @property
    def left(self) -> int:
        """Number of bytes remaining in the window."""
        return self.end - self.pos

    def _error(self, message: str, errnum: int = 0) -> DwarfError:
        return DwarfError(f"{message} in {self.name} at {self.pos}", errnum)

    def _require(self, count: int) -> None:
        if count < 0 or count > self.left:
            raise self._error("DWARF underflow")

    def advance(self, count: int) -> None:
        """Skip ``count`` bytes."""
        self._require(count)
        self.pos += count

    def split(self, length: int) -> "DwarfBuffer":
        """Return a buffer over the next ``length`` bytes and skip past them."""
        self._require(length)
        sub = DwarfBuffer(
            self.data, self.name, self.pos, self.pos + length, self.is_bigendian
        )
        self.pos += length
        return sub

    def _read_uint(self, size: int) -> int:
        self._require(size)
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return int.from_bytes(chunk, "big" if self.is_bigendian else "little")

    def read_byte(self) -> int:
        return self._read_uint(1)

    def read_sbyte(self) -> int:
        return (self._read_uint(1) ^ 0x80) - 0x80

    def read_uint16(self) -> int:
        return self._read_uint(2)

    def read_uint24(self) -> int:
        return self._read_uint(3)

    def read_uint32(self) -> int:
        return self._read_uint(4)

    def read_uint64(self) -> int:
        return self._read_uint(8)

    def read_offset(self, is_dwarf64: bool) -> int:
        """Read a section offset, 8 bytes in DWARF64 and 4 otherwise."""
        return self.read_uint64() if is_dwarf64 else self.read_uint32()

    def read_address(self, addrsize: int) -> int:
        """Read an address of ``addrsize`` bytes (1, 2, 4 or 8)."""
        if addrsize not in (1, 2, 4, 8):
            raise self._error("unrecognized address size")
        return self._read_uint(addrsize)

    def read_uleb128(self) -> int:
        result = 0
        shift = 0
        while True:
            b = self.read_byte()
            if shift >= 64:
                raise self._error("LEB128 overflows uint64_t")
            result |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                break
        return result & _MASK64

    def read_sleb128(self) -> int:
        value = 0
        shift = 0
        while True:
            b = self.read_byte()
            if shift >= 64:
                raise self._error("signed LEB128 overflows uint64_t")
            value |= (b & 0x7F) << shift
            shift += 7
            if not b & 0x80:
                break
        if b & 0x40 and shift < 64:
            value |= _MASK64 << shift
        value &= _MASK64
        return value - (1 << 64) if value >> 63 else value

    def read_string(self) -> str:
        """Read a NUL-terminated string and skip past the terminator."""
        nul = self.data.find(b"\0", self.pos, self.end)
        if nul < 0:
            self._require(self.left + 1)
        text = self.data[self.pos:nul]
        self.pos = nul + 1
        return text.decode("utf-8", "surrogateescape")

    def read_initial_length(self) -> Tuple[int, bool]:
        """Read a unit length; return ``(length, is_dwarf64)``."""
        length = self.read_uint32()
        if length == 0xFFFFFFFF:
            return self.read_uint64(), True
        return length, False

    def __repr__(self) -> str:
        return f"DwarfBuffer({self.name!r}, pos={self.pos}, end={self.end})"


def is_highest_address(address: int, addrsize: int) -> bool:
    """Whether ``address`` is the largest value representable in ``addrsize`` bytes."""
    if addrsize not in (1, 2, 4, 8):
        return False
    return address == (1 << (8 * addrsize)) - 1


def is_absolute_path(path: str) -> bool:
    """Whether ``path`` is an absolute file name."""
    return path.startswith("/")