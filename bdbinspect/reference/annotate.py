"""Human-readable annotations for decoded field values.

Three kinds of value are annotated:
  CRC fields     unsigned ints whose name mentions "crc", looked up as zone
                 names and object template paths
  OID fields     ManagedReference values and 64-bit id fields, shown as
                 ``[table #counter]``
  gameObjectType the SceneObject type constant
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from bdbinspect.bdb.constants import GAME_OBJECT_TYPES, OID_TABLE_NAMES, ZONE_NAMES
from bdbinspect.bdb.oid import counter, table_id
from bdbinspect.bdb.records import DecodedField, RecordDetail
from bdbinspect.config import derive_crc_table_paths
from bdbinspect.fields.dictionary import FieldType, classify
from bdbinspect.log import get_logger
from bdbinspect.reference.crc import load_crc_table, zone_crc_map

log = get_logger(__name__)

GAME_OBJECT_TYPE_FIELD = "SceneObject.gameObjectType"
_OID_INT_TYPES = {"unsigned long long", "uint64"}


@dataclass
class ReferenceData:
    crc_table: dict[int, str] = field(default_factory=dict)     # CRC -> template path
    zone_names: dict[int, str] = field(default_factory=dict)    # CRC -> zone name
    oid_table_names: dict[int, str] = field(default_factory=lambda: dict(OID_TABLE_NAMES))


def load_reference_data(db_path: Path, extra_crc_tables: Iterable[Path] = ()) -> ReferenceData:
    """Collect lookup tables for ``db_path``. Missing files just mean fewer annotations."""
    paths = [*extra_crc_tables, *derive_crc_table_paths(db_path)]
    ref = ReferenceData(
        crc_table=load_crc_table(paths),
        zone_names=zone_crc_map(ZONE_NAMES),
    )
    log.debug("reference data: %d template CRCs, %d zones", len(ref.crc_table), len(ref.zone_names))
    return ref


def _parse_number(text: str) -> Optional[int]:
    try:
        if text[:2].lower() == "0x":
            return int(text[2:], 16)
        return int(text, 10)
    except ValueError:
        return None


def annotate_crc(decoded: str, field_name: str, ref: ReferenceData) -> Optional[str]:
    value = _parse_number(decoded)
    if not value:
        return None
    value &= 0xFFFFFFFF
    if "zone" in field_name.lower() and value in ref.zone_names:
        return ref.zone_names[value]
    return ref.crc_table.get(value) or ref.zone_names.get(value)


def annotate_oid(decoded: str, ref: ReferenceData) -> Optional[str]:
    if not decoded.startswith("0x"):
        return None
    value = _parse_number(decoded)
    if not value:
        return None
    tid = table_id(value)
    name = ref.oid_table_names.get(tid, f"table{tid}")
    return f"[{name} #{counter(value)}]"


def annotate_game_object_type(decoded: str) -> Optional[str]:
    value = _parse_number(decoded)
    if value is None:
        return None
    return GAME_OBJECT_TYPES.get(value)


def annotate_field(f: DecodedField, ref: ReferenceData) -> Optional[str]:
    """Annotation for one decoded field, or None if nothing applies."""
    kind = classify(f.type)
    lowered = f.name.lower()

    if kind is FieldType.UINT:
        if "crc" in lowered:
            return annotate_crc(f.decoded, f.name, ref)
        if f.name == GAME_OBJECT_TYPE_FIELD:
            return annotate_game_object_type(f.decoded)
        return None

    if kind is FieldType.REFERENCE:
        return annotate_oid(f.decoded, ref)

    if f.type in _OID_INT_TYPES and len(f.decoded) > 4 and ("id" in lowered or "oid" in lowered):
        return annotate_oid(f.decoded, ref)
    return None


def annotate_record(record: RecordDetail, ref: ReferenceData) -> RecordDetail:
    for f in record.fields:
        f.annotation = annotate_field(f, ref)
    return record


def annotate_records(records: Iterable[RecordDetail], ref: ReferenceData) -> None:
    for record in records:
        annotate_record(record, ref)
