from types import SimpleNamespace

import pytest

from dwarfpc.attributes import (
    Abbrev,
    Abbrevs,
    AttrSpec,
    AttrValue,
    Attribute,
    Encoding,
    Form,
    Tag,
    read_abbrevs,
    read_attribute,
    resolve_addr_index,
    resolve_string,
)
from dwarfpc.reader import DwarfBuffer, DwarfError, DwarfSection, DwarfSections


def _read(form, data, *, implicit=0, dwarf64=False, version=4, addrsize=8,
          sections=None, altlink=None, bigendian=False):
    buf = DwarfBuffer(data, ".debug_info", is_bigendian=bigendian)
    val = read_attribute(form, implicit, buf, dwarf64, version, addrsize,
                         sections or DwarfSections(), altlink)
    return val, buf


def test_data_forms_little_endian():
    val, buf = _read(Form.DATA2, b"\x34\x12")
    assert val == AttrValue(Encoding.UINT, 0x1234)
    assert buf.left == 0


def test_data4_big_endian():
    val, _ = _read(Form.DATA4, b"\x12\x34\x56\x78", bigendian=True)
    assert val == AttrValue(Encoding.UINT, 0x12345678)


def test_addr_uses_address_size():
    val, buf = _read(Form.ADDR, b"\x01\x02\x03\x04rest", addrsize=4)
    assert val == AttrValue(Encoding.ADDRESS, 0x04030201)
    assert buf.pos == 4


def test_inline_string():
    val, buf = _read(Form.STRING, b"main\0x")
    assert val == AttrValue(Encoding.STRING, "main")
    assert buf.pos == 5


def test_strp_reads_debug_str():
    sections = DwarfSections({DwarfSection.DEBUG_STR: b"foo\0bar\0"})
    val, _ = _read(Form.STRP, b"\x04\x00\x00\x00", sections=sections)
    assert val == AttrValue(Encoding.STRING, "bar")


def test_strp_out_of_range():
    sections = DwarfSections({DwarfSection.DEBUG_STR: b"foo\0"})
    with pytest.raises(DwarfError, match="DW_FORM_strp out of range"):
        _read(Form.STRP, b"\x04\x00\x00\x00", sections=sections)


def test_line_strp_reads_debug_line_str():
    sections = DwarfSections({DwarfSection.DEBUG_LINE_STR: b"a.c\0"})
    val, _ = _read(Form.LINE_STRP, b"\x00\x00\x00\x00", sections=sections)
    assert val == AttrValue(Encoding.STRING, "a.c")


def test_block1_skips_contents():
    val, buf = _read(Form.BLOCK1, b"\x03abcZ")
    assert val.encoding is Encoding.BLOCK
    assert buf.pos == 4


def test_exprloc_skips_contents():
    val, buf = _read(Form.EXPRLOC, b"\x02\x91\x00Z")
    assert val.encoding is Encoding.EXPR
    assert buf.pos == 3


def test_flag_present_consumes_nothing():
    val, buf = _read(Form.FLAG_PRESENT, b"\xff")
    assert val == AttrValue(Encoding.UINT, 1)
    assert buf.pos == 0


def test_implicit_const_returns_given_value():
    val, buf = _read(Form.IMPLICIT_CONST, b"", implicit=42)
    assert val == AttrValue(Encoding.UINT, 42)
    assert buf.pos == 0


def test_sdata_negative():
    val, _ = _read(Form.SDATA, b"\x7f")
    assert val == AttrValue(Encoding.SINT, -1)


def test_ref_addr_depends_on_version():
    data = b"\x01\x00\x00\x00\x00\x00\x00\x00"
    v2, buf2 = _read(Form.REF_ADDR, data, version=2, addrsize=8)
    v4, buf4 = _read(Form.REF_ADDR, data, version=4, addrsize=8)
    assert v2 == v4 == AttrValue(Encoding.REF_INFO, 1)
    assert buf2.pos == 8
    assert buf4.pos == 4


def test_indirect_form():
    val, buf = _read(Form.INDIRECT, bytes([Form.DATA1, 7]))
    assert val == AttrValue(Encoding.UINT, 7)
    assert buf.left == 0


def test_indirect_to_implicit_const_rejected():
    with pytest.raises(DwarfError, match="implicit_const"):
        _read(Form.INDIRECT, bytes([Form.IMPLICIT_CONST]))


def test_unknown_form_rejected():
    with pytest.raises(DwarfError) as info:
        _read(0x7F, b"\x00")
    assert info.value.errnum == -1


def test_underflow_raises():
    with pytest.raises(DwarfError, match="underflow"):
        _read(Form.DATA4, b"\x01\x02")


def test_string_index_forms():
    val, _ = _read(Form.STRX1, b"\x02")
    assert val == AttrValue(Encoding.STRING_INDEX, 2)
    val, _ = _read(Form.ADDRX2, b"\x05\x00")
    assert val == AttrValue(Encoding.ADDRESS_INDEX, 5)


def test_rnglistx():
    val, _ = _read(Form.RNGLISTX, b"\x03")
    assert val == AttrValue(Encoding.RNGLISTS_INDEX, 3)


def test_ref_alt_without_altlink():
    val, buf = _read(Form.GNU_REF_ALT, b"\x09\x00\x00\x00")
    assert val.encoding is Encoding.NONE
    assert buf.pos == 4


def test_ref_alt_with_altlink():
    alt = SimpleNamespace(sections=DwarfSections())
    val, _ = _read(Form.GNU_REF_ALT, b"\x09\x00\x00\x00", altlink=alt)
    assert val == AttrValue(Encoding.REF_ALT_INFO, 9)


def test_strp_sup_reads_altlink_strings():
    alt = SimpleNamespace(
        sections=DwarfSections({DwarfSection.DEBUG_STR: b"xx\0alt\0"})
    )
    val, _ = _read(Form.GNU_STRP_ALT, b"\x03\x00\x00\x00", altlink=alt)
    assert val == AttrValue(Encoding.STRING, "alt")


def test_strp_sup_without_altlink():
    val, buf = _read(Form.STRP_SUP, b"\x03\x00\x00\x00")
    assert val.encoding is Encoding.NONE
    assert buf.pos == 4


def test_resolve_string_direct():
    val = AttrValue(Encoding.STRING, "name")
    assert resolve_string(DwarfSections(), False, False, 0, val) == "name"


def test_resolve_string_non_string_is_none():
    val = AttrValue(Encoding.UINT, 3)
    assert resolve_string(DwarfSections(), False, False, 0, val) is None


def test_resolve_string_index():
    sections = DwarfSections({
        DwarfSection.DEBUG_STR: b"zero\0one\0",
        DwarfSection.DEBUG_STR_OFFSETS: b"\xff" * 8 + b"\x00\x00\x00\x00\x05\x00\x00\x00",
    })
    val = AttrValue(Encoding.STRING_INDEX, 1)
    assert resolve_string(sections, False, False, 8, val) == "one"
    val0 = AttrValue(Encoding.STRING_INDEX, 0)
    assert resolve_string(sections, False, False, 8, val0) == "zero"


def test_resolve_string_index_out_of_range():
    sections = DwarfSections({DwarfSection.DEBUG_STR_OFFSETS: b"\x00" * 4})
    val = AttrValue(Encoding.STRING_INDEX, 1)
    with pytest.raises(DwarfError, match="DW_FORM_strx value out of range"):
        resolve_string(sections, False, False, 0, val)


def test_resolve_string_offset_out_of_range():
    sections = DwarfSections({
        DwarfSection.DEBUG_STR: b"a\0",
        DwarfSection.DEBUG_STR_OFFSETS: b"\x10\x00\x00\x00",
    })
    val = AttrValue(Encoding.STRING_INDEX, 0)
    with pytest.raises(DwarfError, match="DW_FORM_strx offset out of range"):
        resolve_string(sections, False, False, 0, val)


def test_resolve_addr_index():
    addrs = (0x1000).to_bytes(8, "little") + (0x2000).to_bytes(8, "little")
    sections = DwarfSections({DwarfSection.DEBUG_ADDR: addrs})
    assert resolve_addr_index(sections, 0, 8, False, 1) == 0x2000
    assert resolve_addr_index(sections, 8, 8, False, 0) == 0x2000


def test_resolve_addr_index_out_of_range():
    sections = DwarfSections({DwarfSection.DEBUG_ADDR: b"\x00" * 8})
    with pytest.raises(DwarfError, match="DW_FORM_addrx value out of range"):
        resolve_addr_index(sections, 0, 8, False, 1)


_TABLE = bytes([
    0x01, Tag.COMPILE_UNIT, 0x01,
    Attribute.NAME, Form.STRING,
    Attribute.STMT_LIST, Form.SEC_OFFSET,
    0x00, 0x00,
    0x02, Tag.SUBPROGRAM, 0x00,
    Attribute.DECL_LINE, Form.IMPLICIT_CONST, 0x7F,
    0x00, 0x00,
    0x00,
])


def _abbrev_sections(table):
    return DwarfSections({DwarfSection.DEBUG_ABBREV: table})


def test_read_abbrevs():
    abbrevs = read_abbrevs(0, _abbrev_sections(_TABLE), False)
    assert len(abbrevs) == 2
    cu = abbrevs.lookup(1)
    assert cu.tag == Tag.COMPILE_UNIT
    assert cu.has_children is True
    assert cu.attrs == (
        AttrSpec(Attribute.NAME, Form.STRING, 0),
        AttrSpec(Attribute.STMT_LIST, Form.SEC_OFFSET, 0),
    )
    sub = abbrevs.lookup(2)
    assert sub.tag == Tag.SUBPROGRAM
    assert sub.has_children is False
    assert sub.attrs == (AttrSpec(Attribute.DECL_LINE, Form.IMPLICIT_CONST, -1),)


def test_read_abbrevs_at_offset():
    abbrevs = read_abbrevs(3, _abbrev_sections(b"\xaa\xbb\xcc" + _TABLE), False)
    assert [a.code for a in abbrevs] == [1, 2]


def test_read_abbrevs_sorts_codes_and_looks_up_by_search():
    table = bytes([
        0x09, Tag.SUBPROGRAM, 0x00, 0x00, 0x00,
        0x05, Tag.COMPILE_UNIT, 0x01, 0x00, 0x00,
        0x00,
    ])
    abbrevs = read_abbrevs(0, _abbrev_sections(table), False)
    assert [a.code for a in abbrevs] == [5, 9]
    assert abbrevs.lookup(9).tag == Tag.SUBPROGRAM
    assert abbrevs.lookup(5).attrs == ()


def test_read_abbrevs_empty_table():
    abbrevs = read_abbrevs(0, _abbrev_sections(b"\x00"), False)
    assert len(abbrevs) == 0


def test_read_abbrevs_offset_out_of_range():
    with pytest.raises(DwarfError, match="abbrev offset out of range"):
        read_abbrevs(len(_TABLE), _abbrev_sections(_TABLE), False)


def test_read_abbrevs_truncated():
    with pytest.raises(DwarfError, match="underflow"):
        read_abbrevs(0, _abbrev_sections(_TABLE[:6]), False)


def test_lookup_invalid_code():
    abbrevs = Abbrevs([Abbrev(1, Tag.COMPILE_UNIT, False)])
    with pytest.raises(DwarfError, match="invalid abbreviation code"):
        abbrevs.lookup(3)
    with pytest.raises(DwarfError):
        abbrevs.lookup(0)


def test_read_attributes_of_abbrev_in_sequence():
    abbrevs = read_abbrevs(0, _abbrev_sections(_TABLE), False)
    cu = abbrevs.lookup(1)
    buf = DwarfBuffer(b"x.c\0\x10\x00\x00\x00", ".debug_info")
    values = [
        read_attribute(spec.form, spec.val, buf, False, 4, 8, DwarfSections())
        for spec in cu.attrs
    ]
    assert values == [
        AttrValue(Encoding.STRING, "x.c"),
        AttrValue(Encoding.REF_SECTION, 0x10),
    ]
    assert buf.left == 0