"""Compilation units and the map from address ranges to units."""

from __future__ import annotations

import bisect
import enum
from dataclasses import dataclass
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .attributes import (
    Abbrevs,
    Attribute,
    AttrValue,
    Encoding,
    Tag,
    read_abbrevs,
    read_attribute,
    resolve_addr_index,
    resolve_string,
)
from .reader import (
    DwarfBuffer,
    DwarfError,
    DwarfSection,
    DwarfSections,
    is_highest_address,
)

_MASK64 = (1 << 64) - 1


class RangeListEntry(enum.IntEnum):
    """Entry kinds of a DWARF 5 range list."""

    END_OF_LIST = 0x00
    BASE_ADDRESSX = 0x01
    STARTX_ENDX = 0x02
    STARTX_LENGTH = 0x03
    OFFSET_PAIR = 0x04
    BASE_ADDRESS = 0x05
    START_END = 0x06
    START_LENGTH = 0x07


class UnitType(enum.IntEnum):
    """DWARF 5 unit header types."""

    COMPILE = 0x01
    TYPE = 0x02
    PARTIAL = 0x03
    SKELETON = 0x04
    SPLIT_COMPILE = 0x05
    SPLIT_TYPE = 0x06
    LO_USER = 0x80
    HI_USER = 0xFF


def _buf_error(buf: DwarfBuffer, message: str, errnum: int = 0) -> DwarfError:
    return DwarfError(f"{message} in {buf.name} at {buf.pos}", errnum)


@dataclass
class PcRange:
    """Address range information gathered from the attributes of one entry."""

    lowpc: int = 0
    have_lowpc: bool = False
    lowpc_is_addr_index: bool = False
    highpc: int = 0
    have_highpc: bool = False
    highpc_is_relative: bool = False
    highpc_is_addr_index: bool = False
    ranges: int = 0
    have_ranges: bool = False
    ranges_is_index: bool = False

    def update(self, name: int, val: AttrValue) -> None:
        """Record the value of attribute ``name`` if it describes an address range."""
        enc = val.encoding
        if name == Attribute.LOW_PC:
            if enc is Encoding.ADDRESS:
                self.lowpc = val.value  # type: ignore[assignment]
                self.have_lowpc = True
            elif enc is Encoding.ADDRESS_INDEX:
                self.lowpc = val.value  # type: ignore[assignment]
                self.have_lowpc = True
                self.lowpc_is_addr_index = True
        elif name == Attribute.HIGH_PC:
            if enc is Encoding.ADDRESS:
                self.highpc = val.value  # type: ignore[assignment]
                self.have_highpc = True
            elif enc is Encoding.UINT:
                self.highpc = val.value  # type: ignore[assignment]
                self.have_highpc = True
                self.highpc_is_relative = True
            elif enc is Encoding.ADDRESS_INDEX:
                self.highpc = val.value  # type: ignore[assignment]
                self.have_highpc = True
                self.highpc_is_addr_index = True
        elif name == Attribute.RANGES:
            if enc in (Encoding.UINT, Encoding.REF_SECTION):
                self.ranges = val.value  # type: ignore[assignment]
                self.have_ranges = True
            elif enc is Encoding.RNGLISTS_INDEX:
                self.ranges = val.value  # type: ignore[assignment]
                self.have_ranges = True
                self.ranges_is_index = True


@dataclass(eq=False)
class Unit:
    """A compilation unit: what is needed to map a PC to a file and line.

    ``unit_data`` is the position in ``.debug_info`` of the unit's first
    entry, and ``unit_data_offset`` its distance from the unit header.
    ``lines`` and ``function_addrs`` are filled in lazily by lookups.
    """

    unit_data: int
    unit_data_len: int
    unit_data_offset: int
    low_offset: int
    high_offset: int
    version: int
    is_dwarf64: bool
    addrsize: int
    abbrevs: Abbrevs
    lineoff: int = 0
    str_offsets_base: int = 0
    addr_base: int = 0
    rnglists_base: int = 0
    filename: Optional[str] = None
    comp_dir: Optional[str] = None
    abs_filename: Optional[str] = None
    lines: Optional[Any] = None
    function_addrs: Optional[Any] = None


@dataclass
class UnitAddrs:
    """An address range ``low <= pc < high`` belonging to ``unit``."""

    low: int
    high: int
    unit: Unit


def _low_high_range(
    sections: DwarfSections,
    base_address: int,
    is_bigendian: bool,
    unit: Unit,
    pcrange: PcRange,
) -> Tuple[int, int]:
    lowpc = pcrange.lowpc
    if pcrange.lowpc_is_addr_index:
        lowpc = resolve_addr_index(
            sections, unit.addr_base, unit.addrsize, is_bigendian, lowpc
        )
    highpc = pcrange.highpc
    if pcrange.highpc_is_addr_index:
        highpc = resolve_addr_index(
            sections, unit.addr_base, unit.addrsize, is_bigendian, highpc
        )
    if pcrange.highpc_is_relative:
        highpc += lowpc
    return (lowpc + base_address) & _MASK64, (highpc + base_address) & _MASK64


def _ranges_from_ranges(
    sections: DwarfSections,
    base_address: int,
    is_bigendian: bool,
    unit: Unit,
    base: int,
    pcrange: PcRange,
) -> Iterator[Tuple[int, int]]:
    if pcrange.ranges >= sections.size(DwarfSection.DEBUG_RANGES):
        raise DwarfError("ranges offset out of range")
    buf = DwarfBuffer(
        sections.get(DwarfSection.DEBUG_RANGES),
        DwarfSection.DEBUG_RANGES.value,
        pos=pcrange.ranges,
        is_bigendian=is_bigendian,
    )
    while True:
        low = buf.read_address(unit.addrsize)
        high = buf.read_address(unit.addrsize)
        if low == 0 and high == 0:
            return
        if is_highest_address(low, unit.addrsize):
            base = high
        else:
            yield (
                (low + base + base_address) & _MASK64,
                (high + base + base_address) & _MASK64,
            )


def _ranges_from_rnglists(
    sections: DwarfSections,
    base_address: int,
    is_bigendian: bool,
    unit: Unit,
    base: int,
    pcrange: PcRange,
) -> Iterator[Tuple[int, int]]:
    size = sections.size(DwarfSection.DEBUG_RNGLISTS)
    data = sections.get(DwarfSection.DEBUG_RNGLISTS)
    name = DwarfSection.DEBUG_RNGLISTS.value

    if pcrange.ranges_is_index:
        offset = unit.rnglists_base + pcrange.ranges * (8 if unit.is_dwarf64 else 4)
    else:
        offset = pcrange.ranges
    if offset >= size:
        raise DwarfError("rnglists offset out of range")
    buf = DwarfBuffer(data, name, pos=offset, is_bigendian=is_bigendian)

    if pcrange.ranges_is_index:
        offset = buf.read_offset(unit.is_dwarf64) + unit.rnglists_base
        if offset >= size:
            raise DwarfError("rnglists index offset out of range")
        buf = DwarfBuffer(data, name, pos=offset, is_bigendian=is_bigendian)

    def addr(index: int) -> int:
        return resolve_addr_index(
            sections, unit.addr_base, unit.addrsize, is_bigendian, index
        )

    while True:
        rle = buf.read_byte()
        if rle == RangeListEntry.END_OF_LIST:
            return
        if rle == RangeListEntry.BASE_ADDRESSX:
            base = addr(buf.read_uleb128())
        elif rle == RangeListEntry.STARTX_ENDX:
            low = addr(buf.read_uleb128())
            high = addr(buf.read_uleb128())
            yield (low + base_address) & _MASK64, (high + base_address) & _MASK64
        elif rle == RangeListEntry.STARTX_LENGTH:
            low = (addr(buf.read_uleb128()) + base_address) & _MASK64
            length = buf.read_uleb128()
            yield low, (low + length) & _MASK64
        elif rle == RangeListEntry.OFFSET_PAIR:
            low = buf.read_uleb128()
            high = buf.read_uleb128()
            yield (
                (low + base + base_address) & _MASK64,
                (high + base + base_address) & _MASK64,
            )
        elif rle == RangeListEntry.BASE_ADDRESS:
            base = buf.read_address(unit.addrsize)
        elif rle == RangeListEntry.START_END:
            low = buf.read_address(unit.addrsize)
            high = buf.read_address(unit.addrsize)
            yield (low + base_address) & _MASK64, (high + base_address) & _MASK64
        elif rle == RangeListEntry.START_LENGTH:
            low = (buf.read_address(unit.addrsize) + base_address) & _MASK64
            length = buf.read_uleb128()
            yield low, (low + length) & _MASK64
        else:
            raise _buf_error(buf, "unrecognized DW_RLE value", -1)


def iter_ranges(
    sections: DwarfSections,
    base_address: int,
    is_bigendian: bool,
    unit: Unit,
    base: int,
    pcrange: PcRange,
) -> Iterator[Tuple[int, int]]:
    """Yield each ``(low, high)`` address range described by ``pcrange``.

    ``base`` is the base address for range list entries and
    ``base_address`` the load address of the module, added to every range.
    """
    if pcrange.have_lowpc and pcrange.have_highpc:
        yield _low_high_range(sections, base_address, is_bigendian, unit, pcrange)
        return
    if not pcrange.have_ranges:
        return
    if unit.version < 5:
        yield from _ranges_from_ranges(
            sections, base_address, is_bigendian, unit, base, pcrange
        )
    else:
        yield from _ranges_from_rnglists(
            sections, base_address, is_bigendian, unit, base, pcrange
        )


def find_unit(units: Sequence[Unit], offset: int) -> Optional[Unit]:
    """Return the unit whose ``.debug_info`` span contains ``offset``, if any."""
    i = bisect.bisect_right(units, offset, key=lambda u: u.low_offset) - 1
    if i >= 0 and units[i].low_offset <= offset < units[i].high_offset:
        return units[i]
    return None


def _add_unit_addr(addrs: List[UnitAddrs], unit: Unit, low: int, high: int) -> None:
    if addrs:
        last = addrs[-1]
        if (low == last.high or low == last.high + 1) and last.unit is unit:
            if high > last.high:
                last.high = high
            return
    addrs.append(UnitAddrs(low, high, unit))


def _find_address_ranges(
    buf: DwarfBuffer,
    unit: Unit,
    addrs: List[UnitAddrs],
    base_address: int,
    sections: DwarfSections,
    is_bigendian: bool,
    altlink: Optional[Any],
) -> None:
    while buf.left > 0:
        code = buf.read_uleb128()
        if code == 0:
            return
        abbrev = unit.abbrevs.lookup(code)
        is_cu = abbrev.tag == Tag.COMPILE_UNIT

        pcrange = PcRange()
        name_val: Optional[AttrValue] = None
        comp_dir_val: Optional[AttrValue] = None
        for spec in abbrev.attrs:
            val = read_attribute(
                spec.form,
                spec.val,
                buf,
                unit.is_dwarf64,
                unit.version,
                unit.addrsize,
                sections,
                altlink,
            )
            name = spec.name
            if name in (Attribute.LOW_PC, Attribute.HIGH_PC, Attribute.RANGES):
                pcrange.update(name, val)
            elif not is_cu:
                continue
            elif name == Attribute.STMT_LIST:
                if val.encoding in (Encoding.UINT, Encoding.REF_SECTION):
                    unit.lineoff = val.value  # type: ignore[assignment]
            elif name == Attribute.NAME:
                name_val = val
            elif name == Attribute.COMP_DIR:
                comp_dir_val = val
            elif val.encoding is Encoding.REF_SECTION:
                if name == Attribute.STR_OFFSETS_BASE:
                    unit.str_offsets_base = val.value  # type: ignore[assignment]
                elif name == Attribute.ADDR_BASE:
                    unit.addr_base = val.value  # type: ignore[assignment]
                elif name == Attribute.RNGLISTS_BASE:
                    unit.rnglists_base = val.value  # type: ignore[assignment]

        # Strings are resolved once DW_AT_str_offsets_base has been seen.
        if name_val is not None:
            resolved = resolve_string(
                sections, unit.is_dwarf64, is_bigendian, unit.str_offsets_base, name_val
            )
            if resolved is not None:
                unit.filename = resolved
        if comp_dir_val is not None:
            resolved = resolve_string(
                sections,
                unit.is_dwarf64,
                is_bigendian,
                unit.str_offsets_base,
                comp_dir_val,
            )
            if resolved is not None:
                unit.comp_dir = resolved

        if is_cu or abbrev.tag == Tag.SUBPROGRAM:
            for low, high in iter_ranges(
                sections, base_address, is_bigendian, unit, pcrange.lowpc, pcrange
            ):
                _add_unit_addr(addrs, unit, low, high)
            if is_cu and (
                pcrange.have_ranges or (pcrange.have_lowpc and pcrange.have_highpc)
            ):
                return

        if abbrev.has_children:
            _find_address_ranges(
                buf, unit, addrs, base_address, sections, is_bigendian, altlink
            )


def build_address_map(
    base_address: int,
    sections: DwarfSections,
    is_bigendian: bool,
    altlink: Optional[Any] = None,
) -> Tuple[List[UnitAddrs], List[Unit]]:
    """Read every unit in ``.debug_info`` and map address ranges to units.

    Returns the address ranges sorted by low address (nested ranges with
    the smallest last) and the units in section order.
    """
    info = DwarfBuffer(
        sections.get(DwarfSection.DEBUG_INFO),
        DwarfSection.DEBUG_INFO.value,
        is_bigendian=is_bigendian,
    )
    addrs: List[UnitAddrs] = []
    units: List[Unit] = []

    while info.left > 0:
        start = info.pos
        length, is_dwarf64 = info.read_initial_length()
        unit_buf = info.split(length)

        version = unit_buf.read_uint16()
        if version < 2 or version > 5:
            raise _buf_error(unit_buf, "unrecognized DWARF version", -1)

        unit_type = 0
        if version >= 5:
            unit_type = unit_buf.read_byte()
            if unit_type in (UnitType.TYPE, UnitType.SPLIT_TYPE):
                continue

        addrsize = unit_buf.read_byte() if version >= 5 else 0
        abbrev_offset = unit_buf.read_offset(is_dwarf64)
        abbrevs = read_abbrevs(abbrev_offset, sections, is_bigendian)
        if version < 5:
            addrsize = unit_buf.read_byte()
        if unit_type in (UnitType.SKELETON, UnitType.SPLIT_COMPILE):
            unit_buf.read_uint64()  # dwo_id

        unit = Unit(
            unit_data=unit_buf.pos,
            unit_data_len=unit_buf.left,
            unit_data_offset=unit_buf.pos - start,
            low_offset=start,
            high_offset=info.pos,
            version=version,
            is_dwarf64=is_dwarf64,
            addrsize=addrsize,
            abbrevs=abbrevs,
        )
        units.append(unit)

        _find_address_ranges(
            unit_buf, unit, addrs, base_address, sections, is_bigendian, altlink
        )

    addrs.sort(key=lambda a: (a.low, -a.high, a.unit.lineoff))
    return addrs, units