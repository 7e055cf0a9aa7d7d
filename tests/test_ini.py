import pytest

from bulbcore.ini import (
    INIError,
    INIFile,
    INIGenerator,
    INIMap,
    INIReader,
    INIStructure,
    INIWriter,
    PDataType,
    parse_line,
)


def as_dict(ini):
    return {section: dict(values.items()) for section, values in ini.items()}


def read_text(path):
    with open(path, encoding="utf-8", newline=None) as handle:
        return handle.read()


def test_keys_are_trimmed_and_case_insensitive():
    m = INIMap(str)
    m["  Key\t"] = "v"
    assert m.get("KEY") == "v"
    assert "key" in m
    assert m.has(" kEy ")
    assert list(m) == ["key"]


def test_getitem_creates_empty_value():
    m = INIMap(str)
    assert m["missing"] == ""
    assert len(m) == 1


def test_get_does_not_insert():
    m = INIMap(str)
    assert m.get("missing") == ""
    assert len(m) == 0
    assert not m.has("missing")


def test_remove_keeps_order():
    m = INIMap(str)
    m.update([("a", "1"), ("b", "2"), ("c", "3")])
    assert m.remove("B") is True
    assert m.remove("b") is False
    assert list(m.items()) == [("a", "1"), ("c", "3")]
    m["d"] = "4"
    assert list(m) == ["a", "c", "d"]


def test_set_overwrites_in_place():
    m = INIMap(str)
    m.update({"a": "1", "b": "2"})
    m.set("A", "9")
    assert list(m.items()) == [("a", "9"), ("b", "2")]


def test_clear():
    m = INIMap(str)
    m.update([("a", "1")])
    m.clear()
    assert len(m) == 0


def test_structure_get_returns_copy():
    ini = INIStructure()
    ini["Sec"]["k"] = "v"
    copy = ini.get("sec")
    copy["k"] = "changed"
    assert ini["sec"]["k"] == "v"
    assert ini.get("nothing").get("k") == ""
    assert len(ini) == 1


def test_structure_copy_is_deep():
    ini = INIStructure()
    ini["s"]["k"] = "v"
    clone = ini.copy()
    clone["s"]["k"] = "other"
    clone["t"]["x"] = "y"
    assert as_dict(ini) == {"s": {"k": "v"}}
    assert isinstance(clone, INIStructure)


@pytest.mark.parametrize(
    "line, expected",
    [
        ("", (PDataType.NONE, "", "")),
        ("   \t", (PDataType.NONE, "", "")),
        ("; comment", (PDataType.COMMENT, "", "")),
        ("[ Sec ] ; trailing", (PDataType.SECTION, "Sec", "")),
        ("  key =  value  ", (PDataType.KEYVALUE, "key", "value")),
        ("a\\=b = c", (PDataType.KEYVALUE, "a=b", "c")),
        ("key=", (PDataType.KEYVALUE, "key", "")),
        ("junk", (PDataType.UNKNOWN, "", "")),
        ("[broken", (PDataType.UNKNOWN, "", "")),
    ],
)
def test_parse_line(line, expected):
    assert parse_line(line) == expected


def test_read_file(tmp_path):
    path = tmp_path / "in.ini"
    path.write_bytes(
        b"\xef\xbb\xbforphan=1\r\n[Main]\r\nName = Value\r\nbad line\r\n; c\r\n[Other]\r\n"
    )
    reader = INIReader(path, keep_line_data=True)
    ini = reader.read(INIStructure())
    assert reader.is_bom is True
    assert as_dict(ini) == {"main": {"name": "Value"}, "other": {}}
    assert reader.lines() == ["[Main]", "Name = Value", "; c", "[Other]", ""]


def test_reader_without_line_data(tmp_path):
    path = tmp_path / "in.ini"
    path.write_bytes(b"[a]\nk=v")
    reader = INIReader(path)
    assert as_dict(reader.read(INIStructure())) == {"a": {"k": "v"}}
    assert reader.lines() is None
    assert reader.is_bom is False


def test_read_empty_file(tmp_path):
    path = tmp_path / "empty.ini"
    path.write_bytes(b"")
    assert len(INIFile(path).read()) == 0


def test_read_missing_file_raises(tmp_path):
    with pytest.raises(INIError):
        INIFile(tmp_path / "nope.ini").read()


def test_empty_filename_raises():
    with pytest.raises(INIError):
        INIFile("").read()
    with pytest.raises(INIError):
        INIFile("").generate(INIStructure())
    with pytest.raises(INIError):
        INIFile("").write(INIStructure())


def test_generate_plain(tmp_path):
    path = tmp_path / "out.ini"
    ini = INIStructure()
    ini["a"]["k"] = " v "
    ini["b"]
    INIGenerator(path).generate(ini)
    assert read_text(path) == "[a]\nk=v\n[b]"


def test_generate_pretty(tmp_path):
    path = tmp_path / "out.ini"
    ini = INIStructure()
    ini["a"]["k"] = "v"
    ini["b"]["x"] = "y"
    INIFile(path).generate(ini, pretty=True)
    assert read_text(path) == "[a]\nk = v\n\n[b]\nx = y"


def test_generate_round_trip_with_escaped_key(tmp_path):
    path = tmp_path / "out.ini"
    ini = INIStructure()
    ini["s"]["a=b"] = "c"
    ini["s"]["plain"] = "value with spaces"
    ini["t"]["n"] = "1"
    file = INIFile(path)
    file.generate(ini)
    assert "a\\=b=c" in read_text(path)
    assert as_dict(file.read()) == as_dict(ini)


def test_write_creates_missing_file(tmp_path):
    path = tmp_path / "new.ini"
    ini = INIStructure()
    ini["s"]["k"] = "v"
    INIWriter(path).write(ini)
    assert as_dict(INIFile(path).read()) == {"s": {"k": "v"}}


def test_lazy_write_preserves_comments(tmp_path):
    path = tmp_path / "cfg.ini"
    path.write_text(
        "; header\n[main]\n; comment\nname = old\nkeep=1\n\n[gone]\nx=1\n",
        encoding="utf-8",
    )
    file = INIFile(path)
    ini = file.read()
    ini["main"]["name"] = "new"
    ini["main"]["added"] = "yes"
    ini.remove("gone")
    ini["extra"]["z"] = "9"
    file.write(ini)
    assert read_text(path) == (
        "; header\n[main]\n; comment\nname = new\nkeep=1\nadded=yes\n\n[extra]\nz=9"
    )
    assert as_dict(file.read()) == as_dict(ini)


def test_lazy_write_pretty_replacement(tmp_path):
    path = tmp_path / "cfg.ini"
    path.write_text("[s]\nk=old", encoding="utf-8")
    file = INIFile(path)
    ini = file.read()
    ini["s"]["k"] = "new"
    file.write(ini, pretty=True)
    assert read_text(path) == "[s]\nk= new"


def test_lazy_write_removes_key(tmp_path):
    path = tmp_path / "cfg.ini"
    path.write_text("[s]\na=1\nb=2\n[t]\nc=3", encoding="utf-8")
    file = INIFile(path)
    ini = file.read()
    ini["s"].remove("a")
    file.write(ini)
    assert as_dict(file.read()) == {"s": {"b": "2"}, "t": {"c": "3"}}


def test_lazy_write_keeps_bom(tmp_path):
    path = tmp_path / "cfg.ini"
    path.write_bytes(b"\xef\xbb\xbf[s]\nk=v")
    file = INIFile(path)
    ini = file.read()
    ini["s"]["k"] = "w"
    file.write(ini)
    data = path.read_bytes()
    assert data.startswith(b"\xef\xbb\xbf")
    assert as_dict(file.read()) == {"s": {"k": "w"}}


def test_unchanged_write_is_idempotent(tmp_path):
    path = tmp_path / "cfg.ini"
    original = "; note\n[s]\nk = v\n\n[t]\nx=1"
    path.write_text(original, encoding="utf-8")
    file = INIFile(path)
    file.write(file.read())
    assert read_text(path) == original