"""Function entries of compilation units: names and address ranges."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List, Optional

from .attributes import (
    AttrSpec,
    AttrValue,
    Attribute,
    Encoding,
    Form,
    Tag,
    read_attribute,
    resolve_addr_index,
    resolve_string,
)
from .lines import LineHeader
from .reader import DwarfBuffer, DwarfError, DwarfSection
from .units import PcRange, Unit, find_unit, iter_ranges

_log = logging.getLogger(__name__)

_FUNCTION_TAGS = frozenset({Tag.SUBPROGRAM, Tag.ENTRY_POINT, Tag.INLINED_SUBROUTINE})
_LINKAGE_NAMES = frozenset({Attribute.LINKAGE_NAME, Attribute.MIPS_LINKAGE_NAME})
_REFERENCES = frozenset({Attribute.ABSTRACT_ORIGIN, Attribute.SPECIFICATION})
_PC_ATTRIBUTES = frozenset({Attribute.LOW_PC, Attribute.HIGH_PC, Attribute.RANGES})


@dataclass(eq=False)
class Function:
    """A function described in the debug info.

    For an inlined function ``caller_filename`` and ``caller_lineno`` give
    the call site.  ``function_addrs`` maps PC ranges to functions inlined
    into this one, sorted like the unit's own function ranges.
    """

    name: Optional[str] = None
    caller_filename: Optional[str] = None
    caller_lineno: int = 0
    function_addrs: List["FunctionAddrs"] = field(default_factory=list)


@dataclass(eq=False)
class FunctionAddrs:
    """An address range ``low <= pc < high`` belonging to ``function``."""

    low: int
    high: int
    function: Function


def _buf_error(buf: DwarfBuffer, message: str, errnum: int = 0) -> DwarfError:
    return DwarfError(f"{message} in {buf.name} at {buf.pos}", errnum)


def _sort_key(addrs: FunctionAddrs):
    # Nested ranges: the smallest one sorts last.
    return (addrs.low, -addrs.high, addrs.function.name or "")


def _unit_buffer(ddata: Any, unit: Unit, pos: int) -> DwarfBuffer:
    return DwarfBuffer(
        ddata.sections.get(DwarfSection.DEBUG_INFO),
        DwarfSection.DEBUG_INFO.value,
        pos=pos,
        end=unit.unit_data + unit.unit_data_len,
        is_bigendian=ddata.is_bigendian,
    )


def _read_value(ddata: Any, unit: Unit, spec: AttrSpec, buf: DwarfBuffer) -> AttrValue:
    return read_attribute(
        spec.form,
        spec.val,
        buf,
        unit.is_dwarf64,
        unit.version,
        unit.addrsize,
        ddata.sections,
        ddata.altlink,
    )


def _resolve(ddata: Any, unit: Unit, val: AttrValue) -> Optional[str]:
    return resolve_string(
        ddata.sections,
        unit.is_dwarf64,
        ddata.is_bigendian,
        unit.str_offsets_base,
        val,
    )


def _name_from_reference(
    ddata: Any, unit: Unit, spec: AttrSpec, val: AttrValue
) -> Optional[str]:
    """Follow an abstract origin or specification to the name it refers to."""
    if spec.name not in _REFERENCES or spec.form == Form.REF_SIG8:
        return None
    try:
        if val.encoding is Encoding.REF_INFO:
            target = find_unit(ddata.units, val.value)
            if target is None:
                return None
            return read_referenced_name(
                ddata, target, val.value - target.low_offset
            )
        if val.encoding in (Encoding.UINT, Encoding.REF_UNIT):
            return read_referenced_name(ddata, unit, val.value)
        if val.encoding is Encoding.REF_ALT_INFO:
            alt = ddata.altlink
            target = find_unit(alt.units, val.value)
            if target is None:
                return None
            return read_referenced_name(alt, target, val.value - target.low_offset)
    except DwarfError as err:
        # A broken reference costs only the name, not the whole unit.
        _log.warning("%s", err)
    return None


def read_referenced_name(ddata: Any, unit: Unit, offset: int) -> Optional[str]:
    """Return the name of the entry at ``offset`` from the start of ``unit``.

    A linkage name is preferred, then a name reached through a
    specification, then the plain name.  Returns None if the entry has no
    name.  ``ddata`` supplies ``sections``, ``is_bigendian``, ``altlink``
    and ``units``.
    """
    if (
        offset < unit.unit_data_offset
        or offset - unit.unit_data_offset >= unit.unit_data_len
    ):
        raise DwarfError("abstract origin or specification out of range")

    buf = _unit_buffer(ddata, unit, unit.unit_data + offset - unit.unit_data_offset)
    code = buf.read_uleb128()
    if code == 0:
        raise _buf_error(buf, "invalid abstract origin or specification")
    abbrev = unit.abbrevs.lookup(code)

    result: Optional[str] = None
    for spec in abbrev.attrs:
        val = _read_value(ddata, unit, spec, buf)
        if spec.name == Attribute.NAME:
            if result is None:
                result = _resolve(ddata, unit, val)
        elif spec.name in _LINKAGE_NAMES:
            linkage = _resolve(ddata, unit, val)
            if linkage is not None:
                return linkage
        elif spec.name == Attribute.SPECIFICATION:
            name = _name_from_reference(ddata, unit, spec, val)
            if name is not None:
                result = name
    return result


def _add_function_range(
    vec: List[FunctionAddrs], function: Function, low: int, high: int
) -> None:
    if vec:
        last = vec[-1]
        if (low == last.high or low == last.high + 1) and last.function is function:
            if high > last.high:
                last.high = high
            return
    vec.append(FunctionAddrs(low, high, function))


def _read_function_entry(
    ddata: Any,
    unit: Unit,
    base: int,
    buf: DwarfBuffer,
    header: LineHeader,
    vec_function: List[FunctionAddrs],
    vec_inlined: List[FunctionAddrs],
) -> None:
    """Read entries and their children, collecting function address ranges."""
    while buf.left > 0:
        code = buf.read_uleb128()
        if code == 0:
            return
        abbrev = unit.abbrevs.lookup(code)

        function: Optional[Function] = (
            Function() if abbrev.tag in _FUNCTION_TAGS else None
        )
        vec = vec_inlined if abbrev.tag == Tag.INLINED_SUBROUTINE else vec_function

        pcrange = PcRange()
        have_linkage_name = False
        for spec in abbrev.attrs:
            val = _read_value(ddata, unit, spec, buf)

            # The compile unit sets the base address for ranges below it.
            if abbrev.tag == Tag.COMPILE_UNIT and spec.name == Attribute.LOW_PC:
                if val.encoding is Encoding.ADDRESS:
                    base = val.value  # type: ignore[assignment]
                elif val.encoding is Encoding.ADDRESS_INDEX:
                    base = resolve_addr_index(
                        ddata.sections,
                        unit.addr_base,
                        unit.addrsize,
                        ddata.is_bigendian,
                        val.value,  # type: ignore[arg-type]
                    )

            if function is None:
                continue
            name = spec.name
            if name == Attribute.CALL_FILE:
                if val.encoding is Encoding.UINT:
                    if val.value >= len(header.filenames):  # type: ignore[operator]
                        raise _buf_error(
                            buf, "invalid file number in DW_AT_call_file attribute"
                        )
                    function.caller_filename = header.filenames[val.value]  # type: ignore[index]
            elif name == Attribute.CALL_LINE:
                if val.encoding is Encoding.UINT:
                    function.caller_lineno = val.value  # type: ignore[assignment]
            elif name in _REFERENCES:
                if not have_linkage_name:
                    referenced = _name_from_reference(ddata, unit, spec, val)
                    if referenced is not None:
                        function.name = referenced
            elif name == Attribute.NAME:
                if function.name is None:
                    function.name = _resolve(ddata, unit, val)
            elif name in _LINKAGE_NAMES:
                linkage = _resolve(ddata, unit, val)
                if linkage is not None:
                    function.name = linkage
                    have_linkage_name = True
            elif name in _PC_ATTRIBUTES:
                pcrange.update(name, val)

        # A function without a name or without addresses is of no use.
        if function is not None and function.name is None:
            function = None
        if function is not None:
            if pcrange.have_ranges or (pcrange.have_lowpc and pcrange.have_highpc):
                for low, high in iter_ranges(
                    ddata.sections,
                    ddata.base_address,
                    ddata.is_bigendian,
                    unit,
                    base,
                    pcrange,
                ):
                    _add_function_range(vec, function, low, high)
            else:
                function = None

        if not abbrev.has_children:
            continue
        if function is None:
            _read_function_entry(
                ddata, unit, base, buf, header, vec_function, vec_inlined
            )
        else:
            inlined: List[FunctionAddrs] = []
            _read_function_entry(ddata, unit, base, buf, header, vec_function, inlined)
            if inlined:
                inlined.sort(key=_sort_key)
                function.function_addrs = inlined


def read_function_info(
    ddata: Any, header: LineHeader, unit: Unit
) -> List[FunctionAddrs]:
    """Read every function entry of ``unit`` and return their address ranges.

    The ranges are sorted by low address, nested ranges with the smallest
    last.  ``header`` is the unit's line program header, used to resolve
    call-site file numbers.  Raises :class:`DwarfError` on malformed data.
    """
    buf = _unit_buffer(ddata, unit, unit.unit_data)
    addrs: List[FunctionAddrs] = []
    while buf.left > 0:
        _read_function_entry(ddata, unit, 0, buf, header, addrs, addrs)
    addrs.sort(key=_sort_key)
    return addrs