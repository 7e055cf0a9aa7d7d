"""Reading, generating and lazily updating INI files.

Sections and keys are case insensitive (ASCII) and surrounding whitespace is
ignored. Comments are lines starting with ``;``; trailing comments are allowed
on section lines. Lazy writing preserves comments and formatting of an
existing file and only changes what differs.
"""

from __future__ import annotations

import enum
import os
import string
import sys
from collections.abc import Callable, Iterable, Iterator, Mapping
from typing import Any

_WHITESPACE = " \t\n\r\f\v"
_LOWER = str.maketrans(string.ascii_uppercase, string.ascii_lowercase)
_ENDL = "\r\n" if sys.platform == "win32" else "\n"
_BOM = b"\xef\xbb\xbf"
_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class INIError(Exception):
    """Raised when an INI file cannot be read or written."""


class PDataType(enum.Enum):
    """Kind of a parsed INI line."""

    NONE = enum.auto()
    COMMENT = enum.auto()
    SECTION = enum.auto()
    KEYVALUE = enum.auto()
    UNKNOWN = enum.auto()


def _trim(text: str) -> str:
    return text.strip(_WHITESPACE)


def _normalize(key: str) -> str:
    return _trim(key).translate(_LOWER)


def _first_not_whitespace(text: str, start: int) -> int | None:
    for pos in range(start, len(text)):
        if text[pos] not in _WHITESPACE:
            return pos
    return None


def _format_pair(key: str, value: str, pretty: bool) -> str:
    separator = " = " if pretty else "="
    return key.replace("=", "\\=") + separator + _trim(value)


class INIMap:
    """Ordered mapping with trimmed, case-insensitive keys."""

    def __init__(self, factory: Callable[[], Any] = str) -> None:
        self._factory = factory
        self._data: dict[str, Any] = {}

    @staticmethod
    def _own(value: Any) -> Any:
        return value.copy() if isinstance(value, INIMap) else value

    def __getitem__(self, key: str) -> Any:
        norm = _normalize(key)
        if norm not in self._data:
            self._data[norm] = self._factory()
        return self._data[norm]

    def __setitem__(self, key: str, value: Any) -> None:
        self._data[_normalize(key)] = self._own(value)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and _normalize(key) in self._data

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def get(self, key: str) -> Any:
        """Return a copy of the value, or an empty value; never inserts."""
        norm = _normalize(key)
        if norm not in self._data:
            return self._factory()
        return self._own(self._data[norm])

    def has(self, key: str) -> bool:
        return key in self

    def set(self, key: str, value: Any) -> None:
        self[key] = value

    def update(self, items: Mapping[str, Any] | Iterable[tuple[str, Any]]) -> None:
        """Set several values, in order."""
        pairs = items.items() if isinstance(items, Mapping) else items
        for key, value in pairs:
            self[key] = value

    def remove(self, key: str) -> bool:
        """Remove a key; return whether it was present."""
        return self._data.pop(_normalize(key), _MISSING) is not _MISSING

    def clear(self) -> None:
        self._data.clear()

    def items(self) -> Iterator[tuple[str, Any]]:
        return iter(self._data.items())

    def copy(self) -> INIMap:
        clone = type(self).__new__(type(self))
        INIMap.__init__(clone, self._factory)
        clone._data = {key: self._own(value) for key, value in self._data.items()}
        return clone


_MISSING = object()


class INIStructure(INIMap):
    """Sections of an INI file, each an :class:`INIMap` of strings."""

    def __init__(self) -> None:
        super().__init__(lambda: INIMap(str))


def parse_line(line: str) -> tuple[PDataType, str, str]:
    """Classify one line and return its kind with its name/key and value."""
    line = _trim(line)
    if not line:
        return PDataType.NONE, "", ""
    if line[0] == ";":
        return PDataType.COMMENT, "", ""
    if line[0] == "[":
        comment_at = line.find(";")
        if comment_at != -1:
            line = line[:comment_at]
        closing = line.rfind("]")
        if closing != -1:
            return PDataType.SECTION, _trim(line[1:closing]), ""
    equals_at = line.replace("\\=", "  ").find("=")
    if equals_at != -1:
        key = _trim(line[:equals_at]).replace("\\=", "=")
        value = _trim(line[equals_at + 1:])
        return PDataType.KEYVALUE, key, value
    return PDataType.UNKNOWN, "", ""


class INIReader:
    """Reads an INI file into an :class:`INIStructure`."""

    def __init__(self, filename: str | os.PathLike[str], keep_line_data: bool = False) -> None:
        self.filename = filename
        self.is_bom = False
        self._line_data: list[str] | None = [] if keep_line_data else None

    def _read_lines(self) -> list[str]:
        try:
            with open(self.filename, "rb") as handle:
                raw = handle.read()
        except OSError as exc:
            raise INIError(f"cannot read {self.filename!s}: {exc}") from exc
        self.is_bom = len(raw) >= 3 and raw[:3] == _BOM
        if not raw:
            return []
        if self.is_bom:
            raw = raw[3:]
        text = raw.decode(_ENCODING, _ERRORS)
        text = text.replace("\0", "").replace("\r", "")
        return text.split("\n")

    def read(self, data: INIStructure) -> INIStructure:
        """Add the file's sections and keys to ``data`` and return it."""
        section = ""
        in_section = False
        for line in self._read_lines():
            kind, first, second = parse_line(line)
            if kind is PDataType.SECTION:
                in_section = True
                section = first
                data[section]
            elif in_section and kind is PDataType.KEYVALUE:
                data[section][first] = second
            if self._line_data is not None and kind is not PDataType.UNKNOWN:
                if kind is PDataType.KEYVALUE and not in_section:
                    continue
                self._line_data.append(line)
        return data

    def lines(self) -> list[str] | None:
        """Recognised lines kept while reading, or None if not kept."""
        return None if self._line_data is None else list(self._line_data)


class INIGenerator:
    """Writes an :class:`INIStructure` to a file from scratch."""

    def __init__(self, filename: str | os.PathLike[str], pretty_print: bool = False) -> None:
        self.filename = filename
        self.pretty_print = pretty_print

    def generate(self, data: INIStructure) -> None:
        parts: list[str] = []
        section_separator = _ENDL * 2 if self.pretty_print else _ENDL
        for index, (section, collection) in enumerate(data.items()):
            if index:
                parts.append(section_separator)
            parts.append(f"[{section}]")
            if len(collection):
                parts.append(_ENDL)
                parts.append(_ENDL.join(
                    _format_pair(key, value, self.pretty_print)
                    for key, value in collection.items()
                ))
        try:
            with open(self.filename, "wb") as handle:
                handle.write("".join(parts).encode(_ENCODING, _ERRORS))
        except OSError as exc:
            raise INIError(f"cannot write {self.filename!s}: {exc}") from exc


class INIWriter:
    """Updates an existing INI file, keeping its comments and layout."""

    def __init__(self, filename: str | os.PathLike[str], pretty_print: bool = False) -> None:
        self.filename = filename
        self.pretty_print = pretty_print

    def _lazy_output(
        self, lines: list[str], data: INIStructure, original: INIStructure
    ) -> list[str]:
        pretty = self.pretty_print
        output: list[str] = []
        section_current = ""
        parsing_section = False
        continue_to_next_section = False
        discard_next_empty = False
        write_new_keys = False
        last_key_line = 0
        i = 0
        while i < len(lines):
            line = lines[i]
            if not write_new_keys:
                kind, first, second = parse_line(line)
                if kind is PDataType.SECTION:
                    if parsing_section:
                        write_new_keys = True
                        parsing_section = False
                        continue
                    section_current = first
                    if data.has(section_current):
                        parsing_section = True
                        continue_to_next_section = False
                        discard_next_empty = False
                        output.append(line)
                        last_key_line = len(output)
                    else:
                        continue_to_next_section = True
                        discard_next_empty = True
                        i += 1
                        continue
                elif kind is PDataType.KEYVALUE:
                    if continue_to_next_section:
                        i += 1
                        continue
                    if data.has(section_current):
                        collection = data[section_current]
                        if collection.has(first):
                            output_value = collection[first]
                            if second == output_value:
                                output.append(line)
                            else:
                                line_norm = line.replace("\\=", "  ")
                                equals_at = line_norm.find("=")
                                value_at = _first_not_whitespace(line_norm, equals_at + 1)
                                output_line = line if value_at is None else line[:value_at]
                                if pretty and value_at is not None and equals_at + 1 == value_at:
                                    output_line += " "
                                output.append(output_line + _trim(output_value))
                            last_key_line = len(output)
                else:
                    if discard_next_empty and not line:
                        discard_next_empty = False
                    elif kind is not PDataType.UNKNOWN:
                        output.append(line)
            if write_new_keys or i + 1 == len(lines):
                if data.has(section_current) and original.has(section_current):
                    known = original[section_current]
                    to_add = [
                        _format_pair(key, value, pretty)
                        for key, value in data[section_current].items()
                        if not known.has(key)
                    ]
                    output[last_key_line:last_key_line] = to_add
                if write_new_keys:
                    write_new_keys = False
                    continue
            i += 1
        for section, collection in data.items():
            if original.has(section):
                continue
            if pretty and output and output[-1]:
                output.append("")
            output.append(f"[{section}]")
            output.extend(
                _format_pair(key, value, pretty) for key, value in collection.items()
            )
        return output

    def write(self, data: INIStructure) -> None:
        if not os.path.exists(self.filename):
            INIGenerator(self.filename, self.pretty_print).generate(data)
            return
        reader = INIReader(self.filename, keep_line_data=True)
        original = reader.read(INIStructure())
        output = self._lazy_output(reader.lines() or [], data, original)
        payload = _ENDL.join(output).encode(_ENCODING, _ERRORS)
        try:
            with open(self.filename, "wb") as handle:
                if reader.is_bom:
                    handle.write(_BOM)
                handle.write(payload)
        except OSError as exc:
            raise INIError(f"cannot write {self.filename!s}: {exc}") from exc


class INIFile:
    """Convenience access to one INI file."""

    def __init__(self, filename: str | os.PathLike[str]) -> None:
        self.filename = filename

    def _check(self) -> None:
        if not os.fspath(self.filename):
            raise INIError("no filename given")

    def read(self) -> INIStructure:
        self._check()
        return INIReader(self.filename).read(INIStructure())

    def generate(self, data: INIStructure, pretty: bool = False) -> None:
        self._check()
        INIGenerator(self.filename, pretty).generate(data)

    def write(self, data: INIStructure, pretty: bool = False) -> None:
        self._check()
        INIWriter(self.filename, pretty).write(data)