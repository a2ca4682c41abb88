from __future__ import annotations

import json

import pytest

from bdbinspect.bdb.constants import CLASSNAME_HASH
from bdbinspect.fields.dictionary import FieldDictionary, FieldType, classify, inner_type


@pytest.mark.parametrize(
    "type_name, kind",
    [
        ("unsigned int", FieldType.UINT),
        ("uint64", FieldType.INT64),
        ("ManagedWeakReference<CreatureObject* >", FieldType.REFERENCE),
        ("SortedVector<unsigned long long>", FieldType.VECTOR),
        ("DeltaVector<int>", FieldType.VECTOR),
        ("VectorMap<String, int>", FieldType.MAP),
        ("Coordinate", FieldType.COORDINATE),
        ("CustomStruct", FieldType.UNKNOWN),
    ],
)
def test_classify(type_name, kind):
    assert classify(type_name) is kind


def test_inner_type():
    assert inner_type("Vector<ManagedReference<SceneObject* > >") == "ManagedReference<SceneObject* >"
    assert inner_type("int") == "?"


def test_class_name_entry_always_present():
    d = FieldDictionary()
    info = d.resolve(CLASSNAME_HASH)
    assert info.name == "_className"
    assert info.kind is FieldType.STRING
    assert CLASSNAME_HASH in d


def test_vector_entries_carry_element_type(dictionary):
    info = dictionary.get(0x33333333)
    assert info.kind is FieldType.VECTOR
    assert info.element_type == "int"


def test_load_json(tmp_path):
    path = tmp_path / "fields.json"
    path.write_text(json.dumps({
        "0x0000ABCD": {"name": "CreatureObject.bankCredits", "type": "int"},
        "43981": ["Dup.name", "String"],
        "0x00000001": ["SceneObject.direction", "Quaternion"],
    }))
    d = FieldDictionary.load(path)
    assert d.get(0xABCD).name == "Dup.name"
    assert d.get(1).kind is FieldType.QUATERNION
    assert len(d) == 3


def test_load_tsv(tmp_path):
    path = tmp_path / "fields.tsv"
    path.write_text(
        "# hash\tname\ttype\n"
        "0x00000010\tSceneObject.zoneCRC\tunsigned int\n"
        "\n"
        "0x00000011\tSceneObject.slots\tVector<int>  # trailing comment\n"
    )
    d = FieldDictionary.load(path)
    assert d.get(0x10).kind is FieldType.UINT
    assert d.get(0x11).element_type == "int"


def test_load_tsv_rejects_short_lines(tmp_path):
    path = tmp_path / "fields.tsv"
    path.write_text("0x10\tonly-two\n")
    with pytest.raises(ValueError):
        FieldDictionary.load(path)


def test_unknown_hash_resolves_to_placeholder():
    info = FieldDictionary().resolve(0xDEADBEEF)
    assert info.name == "[0xDEADBEEF]"
    assert info.type == "?"
