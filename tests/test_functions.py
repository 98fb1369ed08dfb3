from types import SimpleNamespace

import pytest

from dwarfpc.functions import FunctionAddrs, read_function_info, read_referenced_name
from dwarfpc.lines import LineHeader
from dwarfpc.reader import DwarfError, DwarfSection, DwarfSections
from dwarfpc.units import build_address_map


def uleb(n):
    out = bytearray()
    while True:
        b = n & 0x7F
        n >>= 7
        if n:
            out.append(b | 0x80)
        else:
            out.append(b)
            return bytes(out)


def u16(n):
    return n.to_bytes(2, "little")


def u32(n):
    return n.to_bytes(4, "little")


def addr8(n):
    return n.to_bytes(8, "little")


def cstr(s):
    return s.encode() + b"\0"


ABBREV = (
    # 1: compile unit with children: name, low_pc, high_pc(data4)
    uleb(1) + uleb(0x11) + b"\x01" + b"\x03\x08\x11\x01\x12\x06\0\0"
    # 2: subprogram with children: name, low_pc, high_pc
    + uleb(2) + uleb(0x2E) + b"\x01" + b"\x03\x08\x11\x01\x12\x06\0\0"
    # 3: inlined subroutine: abstract_origin(ref4), low_pc, high_pc, call_file, call_line
    + uleb(3) + uleb(0x1D) + b"\x00" + b"\x31\x13\x11\x01\x12\x06\x58\x0b\x59\x0b\0\0"
    # 4: abstract subprogram: name only
    + uleb(4) + uleb(0x2E) + b"\x00" + b"\x03\x08\0\0"
    # 5: subprogram: linkage_name, name, low_pc, high_pc
    + uleb(5) + uleb(0x2E) + b"\x00" + b"\x6e\x08\x03\x08\x11\x01\x12\x06\0\0"
    # 6: subprogram: specification(ref_addr), low_pc, high_pc
    + uleb(6) + uleb(0x2E) + b"\x00" + b"\x47\x10\x11\x01\x12\x06\0\0"
    + b"\0"
)

HEADER_SIZE = 11
MAIN_LOW = 0x1000
MAIN_SIZE = 0x40
INL_LOW = 0x1010
INL_SIZE = 0x10
FOO_LOW = 0x1040
FOO_SIZE = 0x20
BAR_LOW = 0x1060
BAR_SIZE = 0x10
CALL_LINE = 7


def build(base_address=0, call_file=2):
    cu = uleb(1) + cstr("t.c") + addr8(0x1000) + u32(0x100)
    helper_off = HEADER_SIZE + len(cu)
    helper = uleb(4) + cstr("helper")
    main = uleb(2) + cstr("main") + addr8(MAIN_LOW) + u32(MAIN_SIZE)
    inl_off = helper_off + len(helper) + len(main)
    inl = (
        uleb(3)
        + u32(helper_off)
        + addr8(INL_LOW)
        + u32(INL_SIZE)
        + bytes([call_file])
        + bytes([CALL_LINE])
    )
    end_children_off = inl_off + len(inl)
    foo_off = end_children_off + 1
    foo = uleb(5) + cstr("_Z3foov") + cstr("foo") + addr8(FOO_LOW) + u32(FOO_SIZE)
    bar = uleb(6) + u32(helper_off) + addr8(BAR_LOW) + u32(BAR_SIZE)
    body = cu + helper + main + inl + b"\0" + foo + bar + b"\0"
    unit_bytes = u16(4) + u32(0) + bytes([8]) + body
    info = u32(len(unit_bytes)) + unit_bytes

    sections = DwarfSections(
        {DwarfSection.DEBUG_INFO: info, DwarfSection.DEBUG_ABBREV: ABBREV}
    )
    _, units = build_address_map(base_address, sections, False)
    ddata = SimpleNamespace(
        sections=sections,
        is_bigendian=False,
        altlink=None,
        base_address=base_address,
        units=units,
    )
    offsets = {
        "helper": helper_off,
        "foo": foo_off,
        "end_children": end_children_off,
        "total": len(info),
    }
    return ddata, units[0], offsets


def header(filenames=("t.c", "a.c", "b.h")):
    return LineHeader(version=4, addrsize=8, filenames=list(filenames))


def test_function_names_in_address_order():
    ddata, unit, _ = build()
    addrs = read_function_info(ddata, header(), unit)
    assert [a.function.name for a in addrs] == ["main", "_Z3foov", "helper"]
    lows = [a.low for a in addrs]
    assert lows == sorted(lows)


def test_relative_high_pc_gives_range():
    ddata, unit, _ = build()
    addrs = read_function_info(ddata, header(), unit)
    main = addrs[0]
    assert (main.low, main.high) == (MAIN_LOW, MAIN_LOW + MAIN_SIZE)
    assert all(a.low < a.high for a in addrs)


def test_inlined_function_attached_to_caller():
    ddata, unit, _ = build()
    addrs = read_function_info(ddata, header(), unit)
    main = addrs[0].function
    assert len(main.function_addrs) == 1
    inlined = main.function_addrs[0]
    assert (inlined.low, inlined.high) == (INL_LOW, INL_LOW + INL_SIZE)
    assert inlined.function.name == "helper"
    assert inlined.function.caller_filename == "b.h"
    assert inlined.function.caller_lineno == CALL_LINE


def test_inlined_ranges_not_in_top_level_list():
    ddata, unit, _ = build()
    addrs = read_function_info(ddata, header(), unit)
    assert len(addrs) == 3
    assert all(a.low != INL_LOW for a in addrs)


def test_base_address_is_added():
    ddata, unit, _ = build()
    plain = read_function_info(ddata, header(), unit)
    shift = 0x10000
    ddata2, unit2, _ = build(base_address=shift)
    moved = read_function_info(ddata2, header(), unit2)
    assert [a.low for a in moved] == [a.low + shift for a in plain]
    assert [a.high for a in moved] == [a.high + shift for a in plain]
    inner = moved[0].function.function_addrs[0]
    assert inner.low == INL_LOW + shift


def test_read_referenced_name_plain_and_linkage():
    ddata, unit, offsets = build()
    assert read_referenced_name(ddata, unit, offsets["helper"]) == "helper"
    assert read_referenced_name(ddata, unit, offsets["foo"]) == "_Z3foov"


@pytest.mark.parametrize("which", ["before", "after"])
def test_read_referenced_name_out_of_range(which):
    ddata, unit, offsets = build()
    offset = 0 if which == "before" else offsets["total"]
    with pytest.raises(DwarfError, match="out of range"):
        read_referenced_name(ddata, unit, offset)


def test_read_referenced_name_at_null_entry():
    ddata, unit, offsets = build()
    with pytest.raises(DwarfError, match="invalid abstract origin"):
        read_referenced_name(ddata, unit, offsets["end_children"])


def test_invalid_call_file_raises():
    ddata, unit, _ = build()
    with pytest.raises(DwarfError, match="invalid file number"):
        read_function_info(ddata, header(filenames=("t.c",)), unit)


def test_result_items_are_function_addrs():
    ddata, unit, _ = build()
    addrs = read_function_info(ddata, header(), unit)
    assert all(isinstance(a, FunctionAddrs) for a in addrs)
    assert addrs[2].low == BAR_LOW
    assert addrs[2].high == BAR_LOW + BAR_SIZE