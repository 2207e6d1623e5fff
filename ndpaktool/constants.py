from enum import Enum, IntEnum


CATALOG_MAGIC = b"PKCT"
# Name of the catalog file at the top of every generation tree.
CATALOG_FILENAME = "primary.pki"
CLIENT_DIR = "client"
VERSIONS_DIR = "versions"
# Optional file in the versions directory declaring the generation order.
GENERATIONS_FILENAME = "generations.txt"

CLIENT_GENERATION = "client"
CLIENT_RANK = 0

# Magic at the start of segmented zlib streams.
SD0_MAGIC = b"sd0\x01\xff"

# Size of the blocks read from containers when streaming a record.
READ_CHUNK_SIZE = 0x10000


class CatalogFormat(IntEnum):
    V1 = 1
    V2 = 2


class Compression(IntEnum):
    STORED = 0
    ZLIB = 1
    SD0 = 2
    ZSTD = 3
    LZ4 = 4


class ChecksumKind(str, Enum):
    CRC32 = "crc32"
    MD5 = "md5"


checksum_map = {
    CatalogFormat.V1: ChecksumKind.CRC32,
    CatalogFormat.V2: ChecksumKind.MD5,
}
