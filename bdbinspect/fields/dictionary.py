"""Static field dictionary: 32-bit field hash -> (name, declared type).

Declared types are the C++ type strings of the serialized members. They are
classified once, when the dictionary is loaded, into the closed ``FieldType``
enumeration that the decoder dispatches on; the raw string is kept for
display and diagnostics only.

Supported file formats:
  .json  {"0x76457CCA": {"name": "_className", "type": "String"}, ...}
         (values may also be ``[name, type]`` pairs)
  other  tab-separated lines ``hash<TAB>name<TAB>type``; '#' starts a comment
"""
from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Iterator, Mapping, Optional

from bdbinspect.bdb.constants import CLASSNAME_FIELD, CLASSNAME_HASH


class FieldType(enum.Enum):
    BOOL = "bool"
    BYTE = "byte"
    SHORT = "short"
    INT = "int"
    UINT = "unsigned int"
    FLOAT = "float"
    INT64 = "long long"
    STRING = "String"
    UNICODE_STRING = "UnicodeString"
    REFERENCE = "ManagedReference"
    QUATERNION = "Quaternion"
    STRING_ID = "StringId"
    TIME = "Time"
    ATOMIC_INT = "AtomicInteger"
    VECTOR = "Vector"
    MAP = "VectorMap"
    COORDINATE = "Coordinate"
    UNKNOWN = "?"


_EXACT_TYPES: dict[str, FieldType] = {
    "bool": FieldType.BOOL,
    "byte": FieldType.BYTE,
    "unsigned char": FieldType.BYTE,
    "short": FieldType.SHORT,
    "int": FieldType.INT,
    "unsigned int": FieldType.UINT,
    "uint32": FieldType.UINT,
    "float": FieldType.FLOAT,
    "long long": FieldType.INT64,
    "unsigned long long": FieldType.INT64,
    "uint64": FieldType.INT64,
    "String": FieldType.STRING,
    "UnicodeString": FieldType.UNICODE_STRING,
    "Quaternion": FieldType.QUATERNION,
    "StringId": FieldType.STRING_ID,
    "Time": FieldType.TIME,
    "AtomicInteger": FieldType.ATOMIC_INT,
    "Coordinate": FieldType.COORDINATE,
}

_PREFIX_TYPES: tuple[tuple[str, FieldType], ...] = (
    ("ManagedReference<", FieldType.REFERENCE),
    ("ManagedWeakReference<", FieldType.REFERENCE),
    ("Vector<", FieldType.VECTOR),
    ("SortedVector<", FieldType.VECTOR),
    ("DeltaVector<", FieldType.VECTOR),
    ("AutoDeltaSet<", FieldType.VECTOR),
    ("VectorMap<", FieldType.MAP),
    ("SynchronizedVectorMap<", FieldType.MAP),
)


def classify(type_name: str) -> FieldType:
    """Map a declared C++ type string onto a FieldType."""
    type_name = type_name.strip()
    kind = _EXACT_TYPES.get(type_name)
    if kind is not None:
        return kind
    for prefix, kind in _PREFIX_TYPES:
        if type_name.startswith(prefix):
            return kind
    return FieldType.UNKNOWN


def inner_type(type_name: str) -> str:
    """Extract T from Vector<T>, DeltaVector<T>, ... ('?' if not templated)."""
    start = type_name.find("<")
    end = type_name.rfind(">")
    if start < 0 or end <= start:
        return "?"
    return type_name[start + 1:end].strip() or "?"


def unknown_field_name(field_hash: int) -> str:
    return f"[0x{field_hash:08X}]"


@dataclass(frozen=True, slots=True)
class FieldInfo:
    """Dictionary entry for one field hash."""
    name: str
    type: str
    kind: FieldType
    element_type: Optional[str] = None   # Inner type string for collections

    @classmethod
    def from_type(cls, name: str, type_name: str) -> "FieldInfo":
        kind = classify(type_name)
        element = inner_type(type_name) if kind is FieldType.VECTOR else None
        return cls(name=name, type=type_name, kind=kind, element_type=element)


UNKNOWN_TYPE = "?"


class FieldDictionary:
    """Read-only hash -> FieldInfo lookup, loaded once and never mutated."""

    def __init__(self, entries: Optional[Mapping[int, FieldInfo]] = None):
        table = dict(entries or {})
        table.setdefault(CLASSNAME_HASH, FieldInfo.from_type(CLASSNAME_FIELD, "String"))
        self._entries: Mapping[int, FieldInfo] = MappingProxyType(table)

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[int, str, str]]) -> "FieldDictionary":
        """Build from (hash, name, type) triples."""
        return cls({h & 0xFFFFFFFF: FieldInfo.from_type(name, type_name) for h, name, type_name in pairs})

    @classmethod
    def load(cls, path: Path) -> "FieldDictionary":
        """Load a dictionary file (JSON or tab-separated)."""
        text = path.read_text(encoding="utf-8")
        if path.suffix.lower() == ".json":
            return cls.from_pairs(_parse_json(text))
        return cls.from_pairs(_parse_tsv(text))

    def get(self, field_hash: int) -> Optional[FieldInfo]:
        return self._entries.get(field_hash)

    def resolve(self, field_hash: int) -> FieldInfo:
        """Return the entry, or a synthesized '[0xHHHHHHHH]' entry of type '?'."""
        info = self._entries.get(field_hash)
        if info is None:
            return FieldInfo(name=unknown_field_name(field_hash), type=UNKNOWN_TYPE, kind=FieldType.UNKNOWN)
        return info

    def __contains__(self, field_hash: object) -> bool:
        return field_hash in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[int]:
        return iter(self._entries)


def _parse_hash(text) -> int:
    if isinstance(text, int):
        return text
    text = str(text).strip()
    return int(text, 16) if text.lower().startswith("0x") else int(text, 10)


def _parse_json(text: str) -> Iterator[tuple[int, str, str]]:
    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError("Field dictionary JSON must be an object keyed by hash")
    for key, value in data.items():
        if isinstance(value, dict):
            name, type_name = value["name"], value.get("type", UNKNOWN_TYPE)
        else:
            name, type_name = value[0], value[1]
        yield _parse_hash(key), str(name), str(type_name)


def _parse_tsv(text: str) -> Iterator[tuple[int, str, str]]:
    for lineno, line in enumerate(text.splitlines(), 1):
        line = line.split("#", 1)[0].rstrip()
        if not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 3:
            raise ValueError(f"Line {lineno}: expected 'hash<TAB>name<TAB>type'")
        yield _parse_hash(parts[0]), parts[1].strip(), parts[2].strip()
