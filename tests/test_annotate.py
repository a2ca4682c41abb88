from __future__ import annotations

import struct

import pytest
from conftest import H_PARENT, H_ZONE, pack_payload

from bdbinspect.bdb.constants import CLASSNAME_HASH
from bdbinspect.bdb.records import DecodedField
from bdbinspect.fields.parser import parse_detail
from bdbinspect.reference.annotate import (
    ReferenceData,
    annotate_field,
    annotate_record,
    load_reference_data,
)
from bdbinspect.reference.crc import parse_crc_table, swg_crc, zone_crc_map

TEMPLATE = "object/building/player/shared_player_house_tatooine_small_style_01.iff"


def _chunk(tag: bytes, payload: bytes) -> bytes:
    return tag + struct.pack(">I", len(payload)) + payload


def _form(name: bytes, body: bytes) -> bytes:
    return _chunk(b"FORM", name + body)


def build_cstb(paths: list[str]) -> bytes:
    entries = sorted((swg_crc(p), p) for p in paths)
    strings = b""
    offsets = []
    for _, path in entries:
        offsets.append(len(strings))
        strings += path.encode() + b"\x00"
    body = (
        _chunk(b"DATA", struct.pack("<I", len(entries)))
        + _chunk(b"CRCT", struct.pack(f"<{len(entries)}I", *(c for c, _ in entries)))
        + _chunk(b"STRT", struct.pack(f"<{len(offsets)}I", *offsets))
        + _chunk(b"STNG", strings)
    )
    return _form(b"CSTB", _form(b"0000", body))


@pytest.fixture
def ref() -> ReferenceData:
    return ReferenceData(
        crc_table={swg_crc(TEMPLATE): TEMPLATE},
        zone_names=zone_crc_map(["tatooine", "naboo"]),
    )


def _field(name: str, type_name: str, decoded: str) -> DecodedField:
    return DecodedField(hash=0, size=0, data=b"", name=name, type=type_name, decoded=decoded)


def test_crc_check_value():
    assert swg_crc("123456789") == 0xFC891918


def test_crc_ignores_case():
    assert swg_crc("Object/Tangible/Foo.IFF") == swg_crc("object/tangible/foo.iff")


def test_parse_crc_table():
    table = parse_crc_table(build_cstb([TEMPLATE, "object/creature/player/shared_human_male.iff"]))
    assert table[swg_crc(TEMPLATE)] == TEMPLATE
    assert len(table) == 2


def test_parse_crc_table_rejects_other_forms():
    with pytest.raises(ValueError):
        parse_crc_table(_form(b"STFX", b""))


def test_reference_data_found_above_database(tmp_path):
    misc = tmp_path / "tre" / "working" / "misc"
    misc.mkdir(parents=True)
    (misc / "object_template_crc_string_table.iff").write_bytes(build_cstb([TEMPLATE]))
    db_dir = tmp_path / "server" / "databases"
    db_dir.mkdir(parents=True)

    ref = load_reference_data(db_dir / "sceneobjects.db")
    assert ref.crc_table == {swg_crc(TEMPLATE): TEMPLATE}
    assert ref.zone_names[swg_crc("tatooine")] == "tatooine"


def test_reference_data_without_table(tmp_path):
    ref = load_reference_data(tmp_path / "sceneobjects.db")
    assert ref.crc_table == {}
    assert ref.oid_table_names[1] == "sceneobjects"


def test_zone_crc_field(ref):
    decoded = f"0x{swg_crc('tatooine'):X}"
    assert annotate_field(_field("SceneObject.zoneCRC", "unsigned int", decoded), ref) == "tatooine"


def test_template_crc_field(ref):
    decoded = f"0x{swg_crc(TEMPLATE):X}"
    assert annotate_field(_field("SceneObject.serverObjectCRC", "unsigned int", decoded), ref) == TEMPLATE


def test_unknown_crc_has_no_annotation(ref):
    assert annotate_field(_field("SceneObject.serverObjectCRC", "unsigned int", "0x12345678"), ref) is None
    assert annotate_field(_field("SceneObject.serverObjectCRC", "unsigned int", "0"), ref) is None


def test_reference_annotation(ref):
    f = _field("SceneObject.parent", "ManagedWeakReference<SceneObject* >", "0x0001000000000064")
    assert annotate_field(f, ref) == "[sceneobjects #100]"
    unknown_table = _field("SceneObject.parent", "ManagedReference<SceneObject* >", "0x00FF000000000001")
    assert annotate_field(unknown_table, ref) == "[table255 #1]"
    null = _field("SceneObject.parent", "ManagedReference<SceneObject* >", "null")
    assert annotate_field(null, ref) is None


def test_id_fields_annotated_as_oids(ref):
    f = _field("PlayerObject.deedObjectID", "unsigned long long", "0x0002000000000005")
    assert annotate_field(f, ref) == "[playerstructures #5]"
    plain = _field("PlayerObject.experience", "unsigned long long", "0x0002000000000005")
    assert annotate_field(plain, ref) is None


def test_game_object_type(ref):
    assert annotate_field(_field("SceneObject.gameObjectType", "unsigned int", "1024"), ref) == "weapon"
    assert annotate_field(_field("SceneObject.gameObjectType", "unsigned int", "7"), ref) is None


def test_annotate_decoded_record(dictionary, ref):
    value = pack_payload([
        (CLASSNAME_HASH, b"\x04\x00Cell"),
        (H_PARENT, struct.pack("<Q", (1 << 48) | 42)),
        (H_ZONE, struct.pack("<I", swg_crc("naboo"))),
    ])
    record = annotate_record(parse_detail(value, dictionary), ref)
    assert [f.annotation for f in record.fields] == [None, "[sceneobjects #42]", "naboo"]
    assert record.to_dict()["fields"][2]["annotation"] == "naboo"
