"""DWARF abbreviations and attribute values."""

from __future__ import annotations

import bisect
import enum
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional, Tuple, Union

from .reader import DwarfBuffer, DwarfError, DwarfSection, DwarfSections


class Tag(enum.IntEnum):
    """The DWARF tags that matter for address lookups."""

    ENTRY_POINT = 0x03
    COMPILE_UNIT = 0x11
    INLINED_SUBROUTINE = 0x1D
    SUBPROGRAM = 0x2E


class Form(enum.IntEnum):
    """DWARF attribute forms."""

    ADDR = 0x01
    BLOCK2 = 0x03
    BLOCK4 = 0x04
    DATA2 = 0x05
    DATA4 = 0x06
    DATA8 = 0x07
    STRING = 0x08
    BLOCK = 0x09
    BLOCK1 = 0x0A
    DATA1 = 0x0B
    FLAG = 0x0C
    SDATA = 0x0D
    STRP = 0x0E
    UDATA = 0x0F
    REF_ADDR = 0x10
    REF1 = 0x11
    REF2 = 0x12
    REF4 = 0x13
    REF8 = 0x14
    REF_UDATA = 0x15
    INDIRECT = 0x16
    SEC_OFFSET = 0x17
    EXPRLOC = 0x18
    FLAG_PRESENT = 0x19
    STRX = 0x1A
    ADDRX = 0x1B
    REF_SUP4 = 0x1C
    STRP_SUP = 0x1D
    DATA16 = 0x1E
    LINE_STRP = 0x1F
    REF_SIG8 = 0x20
    IMPLICIT_CONST = 0x21
    LOCLISTX = 0x22
    RNGLISTX = 0x23
    REF_SUP8 = 0x24
    STRX1 = 0x25
    STRX2 = 0x26
    STRX3 = 0x27
    STRX4 = 0x28
    ADDRX1 = 0x29
    ADDRX2 = 0x2A
    ADDRX3 = 0x2B
    ADDRX4 = 0x2C
    GNU_ADDR_INDEX = 0x1F01
    GNU_STR_INDEX = 0x1F02
    GNU_REF_ALT = 0x1F20
    GNU_STRP_ALT = 0x1F21


class Attribute(enum.IntEnum):
    """DWARF attribute names."""

    SIBLING = 0x01
    LOCATION = 0x02
    NAME = 0x03
    ORDERING = 0x09
    SUBSCR_DATA = 0x0A
    BYTE_SIZE = 0x0B
    BIT_OFFSET = 0x0C
    BIT_SIZE = 0x0D
    ELEMENT_LIST = 0x0F
    STMT_LIST = 0x10
    LOW_PC = 0x11
    HIGH_PC = 0x12
    LANGUAGE = 0x13
    MEMBER = 0x14
    DISCR = 0x15
    DISCR_VALUE = 0x16
    VISIBILITY = 0x17
    IMPORT = 0x18
    STRING_LENGTH = 0x19
    COMMON_REFERENCE = 0x1A
    COMP_DIR = 0x1B
    CONST_VALUE = 0x1C
    CONTAINING_TYPE = 0x1D
    DEFAULT_VALUE = 0x1E
    INLINE = 0x20
    IS_OPTIONAL = 0x21
    LOWER_BOUND = 0x22
    PRODUCER = 0x25
    PROTOTYPED = 0x27
    RETURN_ADDR = 0x2A
    START_SCOPE = 0x2C
    BIT_STRIDE = 0x2E
    UPPER_BOUND = 0x2F
    ABSTRACT_ORIGIN = 0x31
    ACCESSIBILITY = 0x32
    ADDRESS_CLASS = 0x33
    ARTIFICIAL = 0x34
    BASE_TYPES = 0x35
    CALLING_CONVENTION = 0x36
    COUNT = 0x37
    DATA_MEMBER_LOCATION = 0x38
    DECL_COLUMN = 0x39
    DECL_FILE = 0x3A
    DECL_LINE = 0x3B
    DECLARATION = 0x3C
    DISCR_LIST = 0x3D
    ENCODING = 0x3E
    EXTERNAL = 0x3F
    FRAME_BASE = 0x40
    FRIEND = 0x41
    IDENTIFIER_CASE = 0x42
    MACRO_INFO = 0x43
    NAMELIST_ITEMS = 0x44
    PRIORITY = 0x45
    SEGMENT = 0x46
    SPECIFICATION = 0x47
    STATIC_LINK = 0x48
    TYPE = 0x49
    USE_LOCATION = 0x4A
    VARIABLE_PARAMETER = 0x4B
    VIRTUALITY = 0x4C
    VTABLE_ELEM_LOCATION = 0x4D
    ALLOCATED = 0x4E
    ASSOCIATED = 0x4F
    DATA_LOCATION = 0x50
    BYTE_STRIDE = 0x51
    ENTRY_PC = 0x52
    USE_UTF8 = 0x53
    EXTENSION = 0x54
    RANGES = 0x55
    TRAMPOLINE = 0x56
    CALL_COLUMN = 0x57
    CALL_FILE = 0x58
    CALL_LINE = 0x59
    DESCRIPTION = 0x5A
    BINARY_SCALE = 0x5B
    DECIMAL_SCALE = 0x5C
    SMALL = 0x5D
    DECIMAL_SIGN = 0x5E
    DIGIT_COUNT = 0x5F
    PICTURE_STRING = 0x60
    MUTABLE = 0x61
    THREADS_SCALED = 0x62
    EXPLICIT = 0x63
    OBJECT_POINTER = 0x64
    ENDIANITY = 0x65
    ELEMENTAL = 0x66
    PURE = 0x67
    RECURSIVE = 0x68
    SIGNATURE = 0x69
    MAIN_SUBPROGRAM = 0x6A
    DATA_BIT_OFFSET = 0x6B
    CONST_EXPR = 0x6C
    ENUM_CLASS = 0x6D
    LINKAGE_NAME = 0x6E
    STRING_LENGTH_BIT_SIZE = 0x6F
    STRING_LENGTH_BYTE_SIZE = 0x70
    RANK = 0x71
    STR_OFFSETS_BASE = 0x72
    ADDR_BASE = 0x73
    RNGLISTS_BASE = 0x74
    DWO_NAME = 0x76
    REFERENCE = 0x77
    RVALUE_REFERENCE = 0x78
    MACROS = 0x79
    CALL_ALL_CALLS = 0x7A
    CALL_ALL_SOURCE_CALLS = 0x7B
    CALL_ALL_TAIL_CALLS = 0x7C
    CALL_RETURN_PC = 0x7D
    CALL_VALUE = 0x7E
    CALL_ORIGIN = 0x7F
    CALL_PARAMETER = 0x80
    CALL_PC = 0x81
    CALL_TAIL_CALL = 0x82
    CALL_TARGET = 0x83
    CALL_TARGET_CLOBBERED = 0x84
    CALL_DATA_LOCATION = 0x85
    CALL_DATA_VALUE = 0x86
    NORETURN = 0x87
    ALIGNMENT = 0x88
    EXPORT_SYMBOLS = 0x89
    DELETED = 0x8A
    DEFAULTED = 0x8B
    LOCLISTS_BASE = 0x8C
    LO_USER = 0x2000
    MIPS_LINKAGE_NAME = 0x2007
    GNU_RANGES_BASE = 0x2132
    GNU_ADDR_BASE = 0x2133
    HI_USER = 0x3FFF


class Encoding(enum.Enum):
    """How an attribute value is represented."""

    NONE = enum.auto()
    ADDRESS = enum.auto()
    ADDRESS_INDEX = enum.auto()
    UINT = enum.auto()
    SINT = enum.auto()
    STRING = enum.auto()
    STRING_INDEX = enum.auto()
    REF_UNIT = enum.auto()
    REF_INFO = enum.auto()
    REF_ALT_INFO = enum.auto()
    REF_SECTION = enum.auto()
    REF_TYPE = enum.auto()
    RNGLISTS_INDEX = enum.auto()
    BLOCK = enum.auto()
    EXPR = enum.auto()


@dataclass(frozen=True)
class AttrValue:
    """A decoded attribute value; blocks and expressions carry no value."""

    encoding: Encoding
    value: Union[int, str, None] = None


@dataclass(frozen=True)
class AttrSpec:
    """One attribute of an abbreviation: its name, form and implicit value."""

    name: int
    form: int
    val: int = 0


@dataclass(frozen=True)
class Abbrev:
    """One DWARF abbreviation."""

    code: int
    tag: int
    has_children: bool
    attrs: Tuple[AttrSpec, ...] = ()


class Abbrevs:
    """The abbreviations of a compilation unit, sorted by code."""

    def __init__(self, abbrevs: Iterable[Abbrev] = ()) -> None:
        self._abbrevs: List[Abbrev] = sorted(abbrevs, key=lambda a: a.code)
        self._codes = [a.code for a in self._abbrevs]

    def lookup(self, code: int) -> Abbrev:
        """Return the abbreviation with ``code``."""
        # Producers usually number abbreviations 1, 2, 3, ... in order.
        if 0 <= code - 1 < len(self._abbrevs) and self._abbrevs[code - 1].code == code:
            return self._abbrevs[code - 1]
        i = bisect.bisect_left(self._codes, code)
        if i < len(self._codes) and self._codes[i] == code:
            return self._abbrevs[i]
        raise DwarfError("invalid abbreviation code")

    def __len__(self) -> int:
        return len(self._abbrevs)

    def __iter__(self) -> Iterator[Abbrev]:
        return iter(self._abbrevs)

    def __repr__(self) -> str:
        return f"Abbrevs({self._abbrevs!r})"


_BLOCK = AttrValue(Encoding.BLOCK)
_EXPR = AttrValue(Encoding.EXPR)

_INDEX_READERS: Dict[int, Callable[[DwarfBuffer], int]] = {
    Form.STRX: DwarfBuffer.read_uleb128,
    Form.STRX1: DwarfBuffer.read_byte,
    Form.STRX2: DwarfBuffer.read_uint16,
    Form.STRX3: DwarfBuffer.read_uint24,
    Form.STRX4: DwarfBuffer.read_uint32,
    Form.ADDRX: DwarfBuffer.read_uleb128,
    Form.ADDRX1: DwarfBuffer.read_byte,
    Form.ADDRX2: DwarfBuffer.read_uint16,
    Form.ADDRX3: DwarfBuffer.read_uint24,
    Form.ADDRX4: DwarfBuffer.read_uint32,
}

_STRING_INDEX_FORMS = frozenset(
    {Form.STRX, Form.STRX1, Form.STRX2, Form.STRX3, Form.STRX4}
)


def _buf_error(buf: DwarfBuffer, message: str, errnum: int = 0) -> DwarfError:
    return DwarfError(f"{message} in {buf.name} at {buf.pos}", errnum)


def _section_string(data: bytes, offset: int) -> str:
    end = data.find(b"\0", offset)
    if end < 0:
        end = len(data)
    return data[offset:end].decode("utf-8", "surrogateescape")


def _string_at(
    buf: DwarfBuffer,
    sections: DwarfSections,
    section: DwarfSection,
    offset: int,
    form_name: str,
) -> AttrValue:
    if offset >= sections.size(section):
        raise _buf_error(buf, f"{form_name} out of range")
    return AttrValue(Encoding.STRING, _section_string(sections.get(section), offset))


def read_attribute(
    form: int,
    implicit_val: int,
    buf: DwarfBuffer,
    is_dwarf64: bool,
    version: int,
    addrsize: int,
    sections: DwarfSections,
    altlink: Optional[Any] = None,
) -> AttrValue:
    """Read one attribute value of ``form`` from ``buf``.

    ``altlink``, if given, is the data of a supplementary object file and
    must have a ``sections`` attribute holding its :class:`DwarfSections`.
    """
    if form in _INDEX_READERS:
        index = _INDEX_READERS[form](buf)
        encoding = (
            Encoding.STRING_INDEX if form in _STRING_INDEX_FORMS else Encoding.ADDRESS_INDEX
        )
        return AttrValue(encoding, index)

    match form:
        case Form.ADDR:
            return AttrValue(Encoding.ADDRESS, buf.read_address(addrsize))
        case Form.BLOCK2:
            buf.advance(buf.read_uint16())
            return _BLOCK
        case Form.BLOCK4:
            buf.advance(buf.read_uint32())
            return _BLOCK
        case Form.DATA2:
            return AttrValue(Encoding.UINT, buf.read_uint16())
        case Form.DATA4:
            return AttrValue(Encoding.UINT, buf.read_uint32())
        case Form.DATA8:
            return AttrValue(Encoding.UINT, buf.read_uint64())
        case Form.DATA16:
            buf.advance(16)
            return _BLOCK
        case Form.STRING:
            return AttrValue(Encoding.STRING, buf.read_string())
        case Form.BLOCK:
            buf.advance(buf.read_uleb128())
            return _BLOCK
        case Form.BLOCK1:
            buf.advance(buf.read_byte())
            return _BLOCK
        case Form.DATA1 | Form.FLAG:
            return AttrValue(Encoding.UINT, buf.read_byte())
        case Form.SDATA:
            return AttrValue(Encoding.SINT, buf.read_sleb128())
        case Form.STRP:
            offset = buf.read_offset(is_dwarf64)
            return _string_at(buf, sections, DwarfSection.DEBUG_STR, offset, "DW_FORM_strp")
        case Form.LINE_STRP:
            offset = buf.read_offset(is_dwarf64)
            return _string_at(
                buf, sections, DwarfSection.DEBUG_LINE_STR, offset, "DW_FORM_line_strp"
            )
        case Form.UDATA:
            return AttrValue(Encoding.UINT, buf.read_uleb128())
        case Form.REF_ADDR:
            if version == 2:
                value = buf.read_address(addrsize)
            else:
                value = buf.read_offset(is_dwarf64)
            return AttrValue(Encoding.REF_INFO, value)
        case Form.REF1:
            return AttrValue(Encoding.REF_UNIT, buf.read_byte())
        case Form.REF2:
            return AttrValue(Encoding.REF_UNIT, buf.read_uint16())
        case Form.REF4:
            return AttrValue(Encoding.REF_UNIT, buf.read_uint32())
        case Form.REF8:
            return AttrValue(Encoding.REF_UNIT, buf.read_uint64())
        case Form.REF_UDATA:
            return AttrValue(Encoding.REF_UNIT, buf.read_uleb128())
        case Form.INDIRECT:
            inner = buf.read_uleb128()
            if inner == Form.IMPLICIT_CONST:
                raise _buf_error(buf, "DW_FORM_indirect to DW_FORM_implicit_const")
            return read_attribute(
                inner, 0, buf, is_dwarf64, version, addrsize, sections, altlink
            )
        case Form.SEC_OFFSET:
            return AttrValue(Encoding.REF_SECTION, buf.read_offset(is_dwarf64))
        case Form.EXPRLOC:
            buf.advance(buf.read_uleb128())
            return _EXPR
        case Form.FLAG_PRESENT:
            return AttrValue(Encoding.UINT, 1)
        case Form.REF_SIG8:
            return AttrValue(Encoding.REF_TYPE, buf.read_uint64())
        case Form.REF_SUP4:
            return AttrValue(Encoding.REF_SECTION, buf.read_uint32())
        case Form.REF_SUP8:
            return AttrValue(Encoding.REF_SECTION, buf.read_uint64())
        case Form.IMPLICIT_CONST:
            return AttrValue(Encoding.UINT, implicit_val)
        case Form.LOCLISTX:
            return AttrValue(Encoding.REF_SECTION, buf.read_uleb128())
        case Form.RNGLISTX:
            return AttrValue(Encoding.RNGLISTS_INDEX, buf.read_uleb128())
        case Form.GNU_ADDR_INDEX | Form.GNU_STR_INDEX:
            return AttrValue(Encoding.REF_SECTION, buf.read_uleb128())
        case Form.GNU_REF_ALT:
            value = buf.read_offset(is_dwarf64)
            if altlink is None:
                return AttrValue(Encoding.NONE, value)
            return AttrValue(Encoding.REF_ALT_INFO, value)
        case Form.STRP_SUP | Form.GNU_STRP_ALT:
            offset = buf.read_offset(is_dwarf64)
            if altlink is None:
                return AttrValue(Encoding.NONE)
            return _string_at(
                buf, altlink.sections, DwarfSection.DEBUG_STR, offset, "DW_FORM_strp_sup"
            )
        case _:
            raise _buf_error(buf, "unrecognized DWARF form", -1)


def resolve_string(
    sections: DwarfSections,
    is_dwarf64: bool,
    is_bigendian: bool,
    str_offsets_base: int,
    val: AttrValue,
) -> Optional[str]:
    """Return the string an attribute value denotes, or None if it is not a string."""
    if val.encoding is Encoding.STRING:
        return val.value  # type: ignore[return-value]
    if val.encoding is not Encoding.STRING_INDEX:
        return None

    width = 8 if is_dwarf64 else 4
    offset = val.value * width + str_offsets_base  # type: ignore[operator]
    if offset + width > sections.size(DwarfSection.DEBUG_STR_OFFSETS):
        raise DwarfError("DW_FORM_strx value out of range")

    offsets = DwarfBuffer(
        sections.get(DwarfSection.DEBUG_STR_OFFSETS),
        DwarfSection.DEBUG_STR_OFFSETS.value,
        pos=offset,
        is_bigendian=is_bigendian,
    )
    str_offset = offsets.read_offset(is_dwarf64)
    if str_offset >= sections.size(DwarfSection.DEBUG_STR):
        raise _buf_error(offsets, "DW_FORM_strx offset out of range")
    return _section_string(sections.get(DwarfSection.DEBUG_STR), str_offset)


def resolve_addr_index(
    sections: DwarfSections,
    addr_base: int,
    addrsize: int,
    is_bigendian: bool,
    index: int,
) -> int:
    """Return the address at ``index`` in the unit's part of ``.debug_addr``."""
    offset = index * addrsize + addr_base
    if offset + addrsize > sections.size(DwarfSection.DEBUG_ADDR):
        raise DwarfError("DW_FORM_addrx value out of range")
    addrs = DwarfBuffer(
        sections.get(DwarfSection.DEBUG_ADDR),
        DwarfSection.DEBUG_ADDR.value,
        pos=offset,
        is_bigendian=is_bigendian,
    )
    return addrs.read_address(addrsize)


def read_abbrevs(offset: int, sections: DwarfSections, is_bigendian: bool) -> Abbrevs:
    """Read the abbreviation table starting at ``offset`` in ``.debug_abbrev``."""
    if offset >= sections.size(DwarfSection.DEBUG_ABBREV):
        raise DwarfError("abbrev offset out of range")

    buf = DwarfBuffer(
        sections.get(DwarfSection.DEBUG_ABBREV),
        DwarfSection.DEBUG_ABBREV.value,
        pos=offset,
        is_bigendian=is_bigendian,
    )

    abbrevs: List[Abbrev] = []
    while True:
        code = buf.read_uleb128()
        if code == 0:
            break
        tag = buf.read_uleb128()
        has_children = bool(buf.read_byte())
        attrs: List[AttrSpec] = []
        while True:
            name = buf.read_uleb128()
            form = buf.read_uleb128()
            if name == 0:
                break
            implicit = buf.read_sleb128() if form == Form.IMPLICIT_CONST else 0
            attrs.append(AttrSpec(name, form, implicit))
        abbrevs.append(Abbrev(code, tag, has_children, tuple(attrs)))

    return Abbrevs(abbrevs)