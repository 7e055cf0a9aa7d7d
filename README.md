# bulbcore

Two small, dependency-free libraries:

- `bulbcore.ini`: an INI file reader and writer that keeps section and key
  order, treats sections and keys case-insensitively (ASCII), ignores
  surrounding whitespace, and can update an existing file in place while
  keeping its comments and layout.
- `bulbcore.hde32` and `bulbcore.hde64`: instruction length decoders for
  32-bit x86 and x86-64 machine code. They report how long an instruction is
  and which prefixes, opcode bytes, ModR/M, SIB, displacement and immediate
  fields it has.

## Installation

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## INI files

```python
from bulbcore.ini import INIFile

ini = INIFile("settings.ini").read()

# Indexing creates missing sections and keys.
value = ini["section"]["key"]

# get() returns a copy, or an empty value, and never changes the structure.
value = ini.get("section").get("key")

ini["section"]["key"] = "value"
ini["section2"].update([("key1", "value1"), ("key2", "value2")])

# Write only the changes, keeping comments and layout.
INIFile("settings.ini").write(ini)

# Or overwrite the file from scratch.
INIFile("settings.ini").generate(ini, pretty=True)
```

`INIStructure` maps section names to `INIMap` objects of string values.
`INIMap` supports indexing, `in`, `len`, iteration over keys, and the methods
`get`, `has`, `set`, `update`, `remove` (returns whether the key was present),
`clear`, `items` and `copy`.

Comments are lines starting with `;`; a trailing comment is allowed on a
section line. Key/value lines before the first section are ignored. An `=`
inside a key is written as `\=`. With `pretty=True`, pairs are written as
`key = value` and sections are separated by a blank line. Line endings are
`\r\n` on Windows and `\n` elsewhere. A file that begins with a UTF-8 byte
order mark keeps it when it is updated with `write`; `write` on a file that
does not exist yet behaves like `generate`.

`parse_line(line)` classifies a single line and returns a tuple of its kind,
a `PDataType` (`NONE`, `COMMENT`, `SECTION`, `KEYVALUE` or `UNKNOWN`), the
section name or key, and the value.

The lower-level `INIReader` (`read(data)`, `lines()`), `INIGenerator`
(`generate(data)`) and `INIWriter` (`write(data)`) classes are available for
finer control. A file that cannot be opened, read or written, or an empty
filename given to `INIFile`, raises `INIError`.

## Instruction decoding

```python
from bulbcore import hde64

insn = hde64.disasm(bytes([0x48, 0x8B, 0x05, 0x10, 0x00, 0x00, 0x00]))
print(insn.length)                     # 7
print(insn.rex_w)                      # 1
print(hex(insn.disp))                  # 0x10
print(insn.has_error())                # False
print(hde64.Flag.DISP32 in insn.flags) # True
```

`bulbcore.hde32` has the same interface for 32-bit code, without the REX
fields and `Flag.IMM64`, and with `Flag.IMM16_2` for a second 16-bit
immediate. `disasm(code)` decodes the instruction at the start of `code` and
returns an `Instruction` dataclass whose `flags` (a `Flag`) say which fields
are present and which encoding errors were found (`ERROR`, `ERROR_OPCODE`,
`ERROR_LOCK`, `ERROR_OPERAND`, `ERROR_LENGTH`). `imm` and `disp` hold the raw
little-endian field values. Reported lengths never exceed 15 bytes; longer
encodings are marked with `ERROR_LENGTH`.

`disasm` raises `ValueError` if `code` is empty or ends before the
instruction does.

## What it does not do

The decoders only measure and split instructions into their fields; they do
not produce mnemonics or operand text. The package has no command-line
tool.