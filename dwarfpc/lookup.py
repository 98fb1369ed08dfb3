"""Mapping program counters to source locations and function names."""

from __future__ import annotations

import bisect
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Sequence, Tuple

from .functions import Function, FunctionAddrs, read_function_info
from .lines import Line, read_line_info
from .reader import DwarfError, DwarfSections, is_absolute_path
from .units import Unit, UnitAddrs, build_address_map

_log = logging.getLogger(__name__)

_MASK64 = (1 << 64) - 1


@dataclass(frozen=True)
class Frame:
    """One reported location: ``pc`` is in ``function`` at ``filename:lineno``.

    Fields that could not be determined are None (or 0 for the line).
    """

    pc: int
    filename: Optional[str] = None
    lineno: int = 0
    function: Optional[str] = None


def _lines_failed(unit: Unit) -> bool:
    # None means "not read yet"; an empty list means "no usable lines".
    return unit.lines is not None and len(unit.lines) == 0


def _find_range(ranges: Sequence[Any], pc: int) -> Optional[int]:
    """Index of the innermost range containing ``pc`` among ranges sorted by low."""
    i = bisect.bisect_right(ranges, pc, key=lambda r: r.low) - 1
    if i < 0:
        return None
    while True:
        if pc < ranges[i].high:
            return i
        if i == 0 or ranges[i - 1].low < ranges[i].low:
            return None
        i -= 1


def _report_inlined(
    pc: int,
    function: Function,
    frames: List[Frame],
    filename: Optional[str],
    lineno: int,
) -> Tuple[Optional[str], int]:
    """Append frames for calls inlined into ``function`` at ``pc``.

    Returns the file and line the caller of the outermost inlined call
    should report.
    """
    if not function.function_addrs or pc == _MASK64:
        return filename, lineno
    i = _find_range(function.function_addrs, pc)
    if i is None:
        return filename, lineno
    inlined = function.function_addrs[i].function
    filename, lineno = _report_inlined(pc, inlined, frames, filename, lineno)
    frames.append(Frame(pc, filename, lineno, inlined.name))
    return inlined.caller_filename, inlined.caller_lineno


class DwarfData:
    """The address map and lazily read line tables of one module."""

    def __init__(
        self,
        base_address: int,
        sections: DwarfSections,
        is_bigendian: bool = False,
        altlink: Optional["DwarfData"] = None,
    ) -> None:
        self.base_address = base_address
        self.sections = sections
        self.is_bigendian = is_bigendian
        self.altlink = altlink
        addrs, units = build_address_map(base_address, sections, is_bigendian, altlink)
        self.addrs: List[UnitAddrs] = addrs
        self.units: List[Unit] = units

    def _load(self, unit: Unit) -> None:
        try:
            header, lines = read_line_info(self, unit)
        except DwarfError as err:
            _log.warning("%s", err)
            unit.lines = []
            unit.function_addrs = []
            return
        function_addrs: List[FunctionAddrs] = []
        if lines:
            try:
                function_addrs = read_function_info(self, header, unit)
            except DwarfError as err:
                _log.warning("%s", err)
                function_addrs = []
        unit.function_addrs = function_addrs
        unit.lines = lines

    def lookup_pc(self, pc: int) -> Optional[List[Frame]]:
        """Return the frames for ``pc``, innermost inlined call first.

        Returns None if no unit of this module covers ``pc``.
        """
        if not self.addrs or pc == _MASK64:
            return None
        i = _find_range(self.addrs, pc)
        if i is None:
            return None

        # Skip units already known to have no useful line information.
        while (
            i > 0
            and self.addrs[i - 1].low <= pc < self.addrs[i - 1].high
            and _lines_failed(self.addrs[i].unit)
        ):
            i -= 1
        unit = self.addrs[i].unit

        if unit.lines is None:
            self._load(unit)
        if _lines_failed(unit):
            return [Frame(pc)]

        lines: List[Line] = unit.lines  # type: ignore[assignment]
        j = bisect.bisect_right(lines, pc, key=lambda ln: ln.pc) - 1
        if j < 0:
            # The unit covers pc but its line table starts later.
            if unit.abs_filename is None:
                filename = unit.filename
                if (
                    filename is not None
                    and not is_absolute_path(filename)
                    and unit.comp_dir is not None
                ):
                    filename = f"{unit.comp_dir}/{filename}"
                unit.abs_filename = filename
            return [Frame(pc, unit.abs_filename)]
        line = lines[j]

        function_addrs: List[FunctionAddrs] = unit.function_addrs or []
        k = _find_range(function_addrs, pc) if function_addrs else None
        if k is None:
            return [Frame(pc, line.filename, line.lineno)]

        function = function_addrs[k].function
        frames: List[Frame] = []
        filename, lineno = _report_inlined(
            pc, function, frames, line.filename, line.lineno
        )
        frames.append(Frame(pc, filename, lineno, function.name))
        return frames

    def __repr__(self) -> str:
        return (
            f"DwarfData(base_address={self.base_address:#x}, "
            f"units={len(self.units)}, ranges={len(self.addrs)})"
        )


class DwarfState:
    """The modules whose debug information is searched for a PC."""

    def __init__(self) -> None:
        self.modules: List[DwarfData] = []

    def add(
        self,
        base_address: int,
        sections: DwarfSections,
        is_bigendian: bool = False,
        altlink: Optional[DwarfData] = None,
    ) -> DwarfData:
        """Read a module's DWARF sections and add it to the search list."""
        data = DwarfData(base_address, sections, is_bigendian, altlink)
        self.modules.append(data)
        return data

    def pcinfo(self, pc: int) -> List[Frame]:
        """Return the frames for ``pc``; a bare frame if no module knows it."""
        for module in self.modules:
            frames = module.lookup_pc(pc)
            if frames is not None:
                return frames
        return [Frame(pc)]