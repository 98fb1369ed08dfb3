"""Line number programs: mapping addresses to source file and line."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from .attributes import Encoding, read_attribute, resolve_string
from .reader import DwarfBuffer, DwarfError, DwarfSection, is_absolute_path
from .units import Unit

_MASK64 = (1 << 64) - 1


class LineOp(enum.IntEnum):
    """Standard line number program opcodes."""

    EXTENDED_OP = 0x0
    COPY = 0x1
    ADVANCE_PC = 0x2
    ADVANCE_LINE = 0x3
    SET_FILE = 0x4
    SET_COLUMN = 0x5
    NEGATE_STMT = 0x6
    SET_BASIC_BLOCK = 0x7
    CONST_ADD_PC = 0x8
    FIXED_ADVANCE_PC = 0x9
    SET_PROLOGUE_END = 0xA
    SET_EPILOGUE_BEGIN = 0xB
    SET_ISA = 0xC


class ExtendedLineOp(enum.IntEnum):
    """Extended line number program opcodes."""

    END_SEQUENCE = 0x1
    SET_ADDRESS = 0x2
    DEFINE_FILE = 0x3
    SET_DISCRIMINATOR = 0x4


class LineContentType(enum.IntEnum):
    """Content type codes of DWARF 5 directory and file entries."""

    PATH = 0x1
    DIRECTORY_INDEX = 0x2
    TIMESTAMP = 0x3
    SIZE = 0x4
    MD5 = 0x5
    LO_USER = 0x2000
    HI_USER = 0x3FFF


@dataclass
class LineHeader:
    """The header of a line number program.

    ``opcode_lengths[op - 1]`` is the operand count of standard opcode
    ``op``.  Before DWARF 5, entry 0 of ``dirs`` is the unit's compilation
    directory and entry 0 of ``filenames`` the unit's file name.
    """

    version: int
    addrsize: int
    min_insn_len: int = 1
    max_ops_per_insn: int = 1
    line_base: int = 0
    line_range: int = 0
    opcode_base: int = 0
    opcode_lengths: bytes = b""
    dirs: List[Optional[str]] = field(default_factory=list)
    filenames: List[Optional[str]] = field(default_factory=list)


@dataclass(frozen=True)
class Line:
    """One row of the line table: ``pc`` maps to ``filename:lineno``.

    ``idx`` is the row's position in the program, before sorting by PC.
    """

    pc: int
    filename: Optional[str]
    lineno: int
    idx: int


def _buf_error(buf: DwarfBuffer, message: str, errnum: int = 0) -> DwarfError:
    return DwarfError(f"{message} in {buf.name} at {buf.pos}", errnum)


def _peek(buf: DwarfBuffer) -> int:
    if buf.left <= 0:
        buf.advance(1)  # raises the underflow error
    return buf.data[buf.pos]


def _join(directory: str, name: str) -> str:
    return f"{directory}/{name}"


def _read_v2_paths(unit: Unit, buf: DwarfBuffer, header: LineHeader) -> None:
    # Index 0 refers to the compilation directory and the unit's own name.
    dirs: List[Optional[str]] = [unit.comp_dir]
    while _peek(buf) != 0:
        dirs.append(buf.read_string())
    buf.advance(1)
    header.dirs = dirs

    filenames: List[Optional[str]] = [unit.filename]
    while _peek(buf) != 0:
        name = buf.read_string()
        dir_index = buf.read_uleb128()
        if is_absolute_path(name) or (
            dir_index < len(dirs) and dirs[dir_index] is None
        ):
            filenames.append(name)
        elif dir_index >= len(dirs):
            raise _buf_error(
                buf, "invalid directory index in line number program header"
            )
        else:
            filenames.append(_join(dirs[dir_index], name))  # type: ignore[arg-type]
        # Modification time and size are ignored.
        buf.read_uleb128()
        buf.read_uleb128()
    header.filenames = filenames


def _read_lnct(
    ddata: Any,
    unit: Unit,
    buf: DwarfBuffer,
    header: LineHeader,
    formats: Sequence[Tuple[int, int]],
) -> str:
    directory: Optional[str] = None
    path: Optional[str] = None
    for lnct, form in formats:
        val = read_attribute(
            form,
            0,
            buf,
            unit.is_dwarf64,
            unit.version,
            header.addrsize,
            ddata.sections,
            ddata.altlink,
        )
        if lnct == LineContentType.PATH:
            resolved = resolve_string(
                ddata.sections,
                unit.is_dwarf64,
                ddata.is_bigendian,
                unit.str_offsets_base,
                val,
            )
            if resolved is not None:
                path = resolved
        elif lnct == LineContentType.DIRECTORY_INDEX:
            if val.encoding is Encoding.UINT:
                if val.value >= len(header.dirs):  # type: ignore[operator]
                    raise _buf_error(
                        buf, "invalid directory index in line number program header"
                    )
                directory = header.dirs[val.value]  # type: ignore[index]

    if path is None:
        raise _buf_error(buf, "missing file name in line number program header")
    if directory is None:
        return path
    return _join(directory, path)


def _read_format_entries(
    ddata: Any, unit: Unit, buf: DwarfBuffer, header: LineHeader
) -> List[Optional[str]]:
    count = buf.read_byte()
    formats = []
    for _ in range(count):
        lnct = buf.read_uleb128()
        form = buf.read_uleb128()
        formats.append((lnct, form))
    paths_count = buf.read_uleb128()
    return [_read_lnct(ddata, unit, buf, header, formats) for _ in range(paths_count)]


def read_line_header(
    ddata: Any, unit: Unit, is_dwarf64: bool, buf: DwarfBuffer
) -> LineHeader:
    """Read a line program header from ``buf``, leaving it at the program.

    ``ddata`` supplies ``sections``, ``is_bigendian`` and ``altlink``.
    """
    version = buf.read_uint16()
    if version < 2 or version > 5:
        raise _buf_error(buf, "unsupported line number version", -1)

    if version < 5:
        addrsize = unit.addrsize
    else:
        addrsize = buf.read_byte()
        if buf.read_byte() != 0:
            raise _buf_error(
                buf, "non-zero segment_selector_size not supported", -1
            )

    hdrlen = buf.read_offset(is_dwarf64)
    hdr_buf = buf.split(hdrlen)

    header = LineHeader(version=version, addrsize=addrsize)
    header.min_insn_len = hdr_buf.read_byte()
    header.max_ops_per_insn = 1 if version < 4 else hdr_buf.read_byte()
    hdr_buf.read_byte()  # default_is_stmt
    header.line_base = hdr_buf.read_sbyte()
    header.line_range = hdr_buf.read_byte()
    header.opcode_base = hdr_buf.read_byte()
    start = hdr_buf.pos
    hdr_buf.advance(header.opcode_base - 1)
    header.opcode_lengths = hdr_buf.data[start:hdr_buf.pos]

    if version < 5:
        _read_v2_paths(unit, hdr_buf, header)
    else:
        header.dirs = _read_format_entries(ddata, unit, hdr_buf, header)
        header.filenames = _read_format_entries(ddata, unit, hdr_buf, header)
    return header


def read_line_program(ddata: Any, header: LineHeader, buf: DwarfBuffer) -> List[Line]:
    """Run the line number program in ``buf`` and return its rows in order.

    ``ddata.base_address`` is added to every address.
    """
    base_address = ddata.base_address
    lines: List[Line] = []

    reset_filename: Optional[str] = (
        header.filenames[1] if len(header.filenames) > 1 else ""
    )
    address = 0
    op_index = 0
    filename = reset_filename
    lineno = 1

    def add_line() -> None:
        pc = (address + base_address) & _MASK64
        if lines:
            last = lines[-1]
            # Identical rows appear when discriminators are used.
            if last.pc == pc and last.filename == filename and last.lineno == lineno:
                return
        lines.append(Line(pc, filename, lineno, len(lines)))

    def step(adv: int) -> None:
        nonlocal address, op_index
        if header.max_ops_per_insn == 0:
            raise _buf_error(buf, "zero maximum operations per instruction")
        address = (
            address
            + header.min_insn_len * (op_index + adv) // header.max_ops_per_insn
        ) & _MASK64
        op_index = (op_index + adv) % header.max_ops_per_insn

    def special_advance(op: int) -> int:
        if header.line_range == 0:
            raise _buf_error(buf, "zero line range in line number program header")
        return op // header.line_range

    while buf.left > 0:
        op = buf.read_byte()
        if op >= header.opcode_base:
            op -= header.opcode_base
            step(special_advance(op))
            lineno += header.line_base + op % header.line_range
            add_line()
        elif op == LineOp.EXTENDED_OP:
            length = buf.read_uleb128()
            ext = buf.read_byte()
            if ext == ExtendedLineOp.END_SEQUENCE:
                address = 0
                op_index = 0
                filename = reset_filename
                lineno = 1
            elif ext == ExtendedLineOp.SET_ADDRESS:
                address = buf.read_address(header.addrsize)
            elif ext == ExtendedLineOp.DEFINE_FILE:
                name = buf.read_string()
                dir_index = buf.read_uleb128()
                buf.read_uleb128()
                buf.read_uleb128()
                if is_absolute_path(name):
                    filename = name
                elif dir_index < len(header.dirs):
                    directory = header.dirs[dir_index]
                    filename = name if directory is None else _join(directory, name)
                else:
                    raise _buf_error(
                        buf, "invalid directory index in line number program"
                    )
            elif ext == ExtendedLineOp.SET_DISCRIMINATOR:
                buf.read_uleb128()
            else:
                buf.advance(length - 1)
        elif op == LineOp.COPY:
            add_line()
        elif op == LineOp.ADVANCE_PC:
            step(buf.read_uleb128())
        elif op == LineOp.ADVANCE_LINE:
            lineno += buf.read_sleb128()
        elif op == LineOp.SET_FILE:
            fileno = buf.read_uleb128()
            if fileno >= len(header.filenames):
                raise _buf_error(buf, "invalid file number in line number program")
            filename = header.filenames[fileno]
        elif op in (LineOp.SET_COLUMN, LineOp.SET_ISA):
            buf.read_uleb128()
        elif op in (
            LineOp.NEGATE_STMT,
            LineOp.SET_BASIC_BLOCK,
            LineOp.SET_PROLOGUE_END,
            LineOp.SET_EPILOGUE_BEGIN,
        ):
            pass
        elif op == LineOp.CONST_ADD_PC:
            step(special_advance(255 - header.opcode_base))
        elif op == LineOp.FIXED_ADVANCE_PC:
            address = (address + buf.read_uint16()) & _MASK64
            op_index = 0
        else:
            for _ in range(header.opcode_lengths[op - 1]):
                buf.read_uleb128()

    return lines


def read_line_info(ddata: Any, unit: Unit) -> Tuple[LineHeader, List[Line]]:
    """Read the line table of ``unit``.

    Returns the program header and the rows sorted by PC (rows with the
    same PC keep their program order).  An empty list means the unit has
    no usable line information.
    """
    sections = ddata.sections
    size = sections.size(DwarfSection.DEBUG_LINE)
    if unit.lineoff < 0 or unit.lineoff >= size:
        raise DwarfError("unit line offset out of range")

    buf = DwarfBuffer(
        sections.get(DwarfSection.DEBUG_LINE),
        DwarfSection.DEBUG_LINE.value,
        pos=unit.lineoff,
        is_bigendian=ddata.is_bigendian,
    )
    length, is_dwarf64 = buf.read_initial_length()
    line_buf = buf.split(length)

    header = read_line_header(ddata, unit, is_dwarf64, line_buf)
    lines = read_line_program(ddata, header, line_buf)
    lines.sort(key=lambda ln: ln.pc)
    return header, lines