import pytest

from scanout.fieldset import (
    MAX_FIELDS,
    Field,
    FieldDef,
    FieldDefSet,
    FieldSet,
    FieldsetError,
    FieldType,
    Translation,
    full_translation,
    make_translation,
    sanitize_utf8,
)


def _defs():
    return FieldDefSet(
        [
            FieldDef("saddr", "string", "source address"),
            FieldDef("sport", "int", "source port"),
            FieldDef("success", "bool", "is response"),
        ]
    )


def test_recursive_fieldsets():
    outer = FieldSet()
    inner = FieldSet()
    repeated = FieldSet.new_repeated(FieldType.STRING)
    assert repeated.type is FieldType.REPEATED
    assert len(repeated) == 0
    assert repeated.inner_type is FieldType.STRING
    for _ in range(10):
        repeated.add_string(None, "hello world!")
    outer.add_repeated("repeatedstuff", repeated)
    outer.add_string("name", "value")
    inner.add_string("name2", "value2")
    outer.add_fieldset("inner", inner)

    assert [f.name for f in outer] == ["repeatedstuff", "name", "inner"]
    assert outer[0].type is FieldType.REPEATED
    assert [f.value for f in outer[0].value] == ["hello world!"] * 10
    assert outer[2].type is FieldType.FIELDSET
    assert outer[2].value[0] == Field("name2", FieldType.STRING, "value2")


def test_repeated_type_mismatch():
    repeated = FieldSet.new_repeated(FieldType.UINT64)
    repeated.add_uint64(None, 5)
    with pytest.raises(FieldsetError):
        repeated.add_string(None, "nope")
    assert len(repeated) == 1


def test_new_fieldset_defaults():
    fs = FieldSet()
    assert fs.type is FieldType.FIELDSET
    assert fs.inner_type is None
    assert list(fs) == []


def test_capacity_limit():
    fs = FieldSet()
    for i in range(MAX_FIELDS - 1):
        fs.add_uint64(f"f{i}", i)
    assert len(fs) == MAX_FIELDS - 1
    with pytest.raises(FieldsetError):
        fs.add_null("overflow")


def test_add_various_types():
    fs = FieldSet()
    fs.add_null("n")
    fs.add_uint64("u", 2**64 - 1)
    fs.add_bool("b", 1)
    fs.add_binary("bin", bytearray(b"\x00\x01"))
    assert [f.type for f in fs] == [
        FieldType.NULL,
        FieldType.UINT64,
        FieldType.BOOL,
        FieldType.BINARY,
    ]
    assert fs.get_uint64(1) == 2**64 - 1
    assert fs[2].value is True
    assert fs[3].value == b"\x00\x01"


@pytest.mark.parametrize("bad", [-1, 2**64])
def test_uint64_out_of_range(bad):
    fs = FieldSet()
    with pytest.raises(ValueError):
        fs.add_uint64("x", bad)


def test_chkadd_string():
    fs = FieldSet()
    fs.chkadd_string("a", None)
    fs.chkadd_string("b", "text")
    assert fs[0].type is FieldType.NULL
    assert fs.get_string(1) == "text"


def test_chkadd_unsafe_string():
    fs = FieldSet()
    fs.chkadd_unsafe_string("a", None)
    fs.chkadd_unsafe_string("b", b"ok\xff")
    assert fs[0].type is FieldType.NULL
    assert fs.get_string(1) == "ok\ufffd"


def test_add_unsafe_string_valid_passthrough():
    fs = FieldSet()
    fs.add_unsafe_string("s", b"caf\xc3\xa9")
    fs.add_unsafe_string("t", "plain")
    assert fs.get_string(0) == "café"
    assert fs.get_string(1) == "plain"


@pytest.mark.parametrize(
    "data, expected",
    [
        (b"abc", "abc"),
        (b"a\xffb", "a\ufffdb"),
        (b"\xff\xfe", "\ufffd\ufffd"),
        (b"\xe2\x82A", "\ufffd\ufffdA"),
        (b"\xc3\xa9", "é"),
        (b"", ""),
    ],
)
def test_sanitize_utf8(data, expected):
    assert sanitize_utf8(data) == expected


@pytest.mark.parametrize("data, errors", [(b"a\xffb", 1), (b"\xe2\x82A", 2), (b"x\x80\x80\x80", 3)])
def test_sanitize_length_invariant(data, errors):
    result = sanitize_utf8(data).encode("utf-8")
    assert len(result) == len(data) + 2 * errors


def test_modify_replaces_existing():
    fs = FieldSet()
    fs.add_string("a", "first")
    fs.add_uint64("b", 1)
    fs.modify_uint64("a", 7)
    assert fs[0] == Field("a", FieldType.UINT64, 7)
    assert len(fs) == 2


def test_modify_adds_missing():
    fs = FieldSet()
    fs.modify_string("x", "v")
    fs.modify_bool("y", 0)
    fs.modify_binary("z", b"\xab")
    fs.modify_null("w")
    assert [(f.name, f.type, f.value) for f in fs] == [
        ("x", FieldType.STRING, "v"),
        ("y", FieldType.BOOL, False),
        ("z", FieldType.BINARY, b"\xab"),
        ("w", FieldType.NULL, None),
    ]


def test_fielddefset_extend_and_index():
    defs = FieldDefSet()
    defs.extend(_defs())
    assert len(defs) == 3
    assert defs.index_of("sport") == 1
    with pytest.raises(KeyError):
        defs.index_of("missing")


def test_fielddefset_extend_overflow():
    defs = FieldDefSet()
    defs.extend(FieldDef(f"f{i}", "int") for i in range(MAX_FIELDS))
    with pytest.raises(FieldsetError):
        defs.extend([FieldDef("extra", "int")])
    assert len(defs) == MAX_FIELDS


def test_make_translation_and_translate():
    avail = _defs()
    t = make_translation(avail, ["success", "saddr"])
    assert t.indices == (2, 0)
    fs = FieldSet()
    fs.add_string("saddr", "192.0.2.1")
    fs.add_uint64("sport", 80)
    fs.add_bool("success", True)
    out = fs.translate(t)
    assert [f.name for f in out] == ["success", "saddr"]
    assert out.type is FieldType.FIELDSET


def test_make_translation_unknown_field():
    with pytest.raises(FieldsetError, match="bogus"):
        make_translation(_defs(), ["saddr", "bogus"])


def test_full_translation():
    t = full_translation(_defs())
    assert t == Translation((0, 1, 2))
    assert len(t) == 3


def test_translation_too_long():
    with pytest.raises(FieldsetError):
        Translation(tuple(range(MAX_FIELDS + 1)))