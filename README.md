# dwarfpc

`dwarfpc` reads the DWARF debug sections of a program (versions 2 to 5) and
answers one question: for a given program counter, which source file, line
number and function does it belong to? Functions that the compiler inlined are
reported too, each as its own frame, innermost first.

It has no dependencies outside the standard library.

## Installing

```
pip install dwarfpc
```

To run the test suite:

```
pip install "dwarfpc[test]"
pytest
```

## Looking up a program counter

1. Collect the raw section bytes in a `dwarfpc.reader.DwarfSections`, a
   mapping from `dwarfpc.reader.DwarfSection` members to `bytes`. The sections
   used are `.debug_info`, `.debug_line`, `.debug_abbrev`, `.debug_ranges`,
   `.debug_str`, `.debug_addr`, `.debug_str_offsets`, `.debug_line_str` and
   `.debug_rnglists`; any that are missing count as empty.
2. Create a `dwarfpc.lookup.DwarfState` and register each module with
   `add(base_address, sections, is_bigendian=False, altlink=None)`:
   - `base_address` is added to every address read from the module.
   - `altlink` is the `DwarfData` of a supplementary debug file, or `None`.
   `add` reads every compilation unit's address ranges straight away and
   returns the module's `dwarfpc.lookup.DwarfData`.
3. Call `DwarfState.pcinfo(pc)`. It returns a list of
   `dwarfpc.lookup.Frame` objects (`pc`, `filename`, `lineno`, `function`),
   innermost inlined call first. Parts that are unknown are `None` (or `0`
   for the line); if no module covers the address, the list holds a single
   bare `Frame(pc)`.

A module's line table and function ranges are read the first time one of its
addresses is looked up, and kept. `DwarfData.lookup_pc(pc)` does the lookup
for a single module and returns `None` when the module does not cover `pc`.

### Errors

Malformed data met while `add` builds the address map raises
`dwarfpc.reader.DwarfError`; its message names the section and offset, and its
`errnum` is `-1` for unsupported versions or forms and `0` otherwise. Errors in
a unit's line table or function entries found during a lookup are logged as
warnings instead, and the lookup reports whatever it still knows.

## Lower-level pieces

- `dwarfpc.reader`: `DwarfBuffer`, a bounds-checked cursor over section
  bytes. It reads fixed-size integers in either byte order, LEB128 numbers,
  NUL-terminated strings and DWARF initial lengths; also
  `is_highest_address` and `is_absolute_path`.
- `dwarfpc.attributes`: the `Tag`, `Form`, `Attribute` and `Encoding`
  enumerations, abbreviation tables (`read_abbrevs`, `Abbrevs.lookup`) and
  attribute decoding (`read_attribute`, `resolve_string`,
  `resolve_addr_index`).
- `dwarfpc.units`: compilation units and the map from address ranges to
  units (`build_address_map`, `iter_ranges`, `find_unit`, `PcRange`).
- `dwarfpc.lines`: line-number program headers and the state machine that
  runs them (`read_line_header`, `read_line_program`, `read_line_info`).
- `dwarfpc.functions`: function and inlined-call address ranges
  (`read_function_info`, `read_referenced_name`).

## What it does not do

`dwarfpc` does not open executables or object files: it does not parse ELF,
Mach-O or PE containers, find debug sections, or decompress them. Nor does it
capture a call stack or unwind frames of a running process. You supply the
section bytes and the addresses; it only resolves them.

## Example command

The package also installs a small demonstration command:

```
dwarfpc-hello Alice 42
```

It prints the name given, with its length in bytes, and the number (read like
C's `atoi`; `-1` if absent). Run `dwarfpc-hello -h` to print its usage line.
The `dwarfpc.person.Person` dataclass it uses holds a `name` and a `number`.