"""Dump protocol sentinels, payload constants, and magic labels."""

# db_dump text protocol
HEADER_END = "HEADER=END"
DATA_END = "DATA=END"

# Per-record compression: zlib streams start with CMF byte 0x78
ZLIB_SIGNATURE = 0x78

# Hash of the "_className" member every serialized object carries first
CLASSNAME_HASH = 0x76457CCA
CLASSNAME_FIELD = "_className"

# Class name placeholders
UNKNOWN_CLASS = "?"
ERROR_CLASS = "[error]"

# Field decoding limits
HEX_DUMP_MAX_BYTES = 64
VECTOR_MAX_COUNT = 10000
VECTOR_PREVIEW_ELEMENTS = 20
COORDINATE_MAX_SUBFIELDS = 10
COORDINATE_RAW_FLOATS = 6

# db_stat -d output suffixes
STAT_RECORD_COUNT = "Number of keys in the database"
STAT_PAGE_SIZE = "Underlying database page size"
STAT_BYTE_ORDER = "Byte order"
STAT_HASH_MAGIC = "Hash magic number"
STAT_BTREE_MAGIC = "Btree magic number"

DEFAULT_DB_PAGE_SIZE = 16384
DEFAULT_BYTE_ORDER = "Little-endian"

# OID table IDs, assigned in the order the server opens its databases
OID_TABLE_NAMES: dict[int, str] = {
    0: "clientobjects",
    1: "sceneobjects",
    2: "playerstructures",
    3: "buffs",
    4: "missionobjectives",
    5: "missionobservers",
    6: "cityregions",
    7: "guilds",
    8: "spawnareas",
    9: "spawnobservers",
    10: "aiobservers",
    11: "events",
    12: "questdata",
    13: "surveys",
    14: "accounts",
    15: "pendingmail",
    16: "credits",
    17: "navareas",
    18: "frsdata",
    19: "frsmanager",
    20: "resourcespawns",
    21: "playerbounties",
    22: "mail",
    23: "chatrooms",
}

# Ground, space and dungeon zones
ZONE_NAMES = (
    "corellia", "dantooine", "dathomir", "endor", "lok",
    "naboo", "rori", "talus", "tatooine", "yavin4",
    "tutorial",
    "space_corellia", "space_dantooine", "space_dathomir",
    "space_endor", "space_lok", "space_naboo",
    "space_tatooine", "space_yavin4",
    "space_heavy", "space_light",
    "space_nova_orion",
    "dungeon1", "dungeon2",
    "hoth",
)

# SceneObject.gameObjectType values
GAME_OBJECT_TYPES: dict[int, str] = {
    0x2: "tangible",
    0x4: "creature",
    0x8: "vehicle",
    0x100: "building",
    0x200: "installation",
    0x400: "weapon",
    0x800: "armor",
    0x2000000: "ship",
}
