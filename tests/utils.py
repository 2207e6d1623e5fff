import hashlib
import os
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

import lz4.block
import zstandard as zstd

from ndpaktool.constants import CATALOG_FILENAME, CATALOG_MAGIC, SD0_MAGIC, Compression

DEFAULT_CONTAINERS = ("res/pack/front_0.pk",)


def get_files(fpath: os.PathLike) -> list[str]:
    """Get every file under the directory as a sorted list of forward-slash relative paths."""
    file_list = []
    for root, _, files in os.walk(fpath):
        for file in files:
            file_list.append(Path(root, file).relative_to(fpath).as_posix())
    return sorted(file_list)


def compress(data: bytes, compression: Compression) -> bytes:
    if compression == Compression.ZLIB:
        return zlib.compress(data)
    elif compression == Compression.SD0:
        out = SD0_MAGIC
        for i in range(0, len(data), 0x400):
            block = zlib.compress(data[i : i + 0x400])
            out += struct.pack("<I", len(block)) + block
        return out
    elif compression == Compression.ZSTD:
        return zstd.ZstdCompressor().compress(data)
    elif compression == Compression.LZ4:
        return lz4.block.compress(data, store_size=False)
    return data


def pack_catalog(
    containers: Sequence[str],
    records: Sequence[tuple],
    version: int = 1,
    record_count: Optional[int] = None,
    magic: bytes = CATALOG_MAGIC,
) -> bytes:
    """Build the bytes of a catalog.

    Each record is a tuple of (container index, offset, compressed size, uncompressed size, checksum,
    compression, path bytes). The checksum is an int for version 1 and 16 bytes for version 2.
    """
    if record_count is None:
        record_count = len(records)
    out = struct.pack("<4sHxxII", magic, version, len(containers), record_count)
    for name in containers:
        raw = name.encode()
        out += struct.pack("<H", len(raw)) + raw
    for idx, offset, csize, usize, checksum, compression, path in records:
        if version == 1:
            out += struct.pack("<5IBxH", idx, offset, csize, usize, checksum, compression, len(path))
        else:
            out += struct.pack("<I3Q16sBxH", idx, offset, csize, usize, checksum, compression, len(path))
        out += path
    return out


@dataclass
class Entry:
    path: str
    data: bytes
    compression: Compression = Compression.STORED
    container: int = 0
    bad_checksum: bool = False
    # Override the declared uncompressed size.
    uncompressed_size: Optional[int] = None


def entry_checksum(entry: Entry, version: int):
    if version == 1:
        crc = zlib.crc32(entry.data)
        return crc ^ 0xFFFFFFFF if entry.bad_checksum else crc
    digest = hashlib.md5(entry.data).digest()
    return bytes(x ^ 0xFF for x in digest) if entry.bad_checksum else digest


def write_tree(
    tree: Path,
    entries: Sequence[Entry],
    version: int = 1,
    containers: Sequence[str] = DEFAULT_CONTAINERS,
) -> Path:
    """Write the containers and catalog for a single generation tree. Returns the catalog path."""
    blobs = [bytearray() for _ in containers]
    records = []
    for entry in entries:
        payload = compress(entry.data, entry.compression)
        blob = blobs[entry.container]
        offset = len(blob)
        blob += payload
        usize = len(entry.data) if entry.uncompressed_size is None else entry.uncompressed_size
        records.append(
            (
                entry.container,
                offset,
                len(payload),
                usize,
                entry_checksum(entry, version),
                int(entry.compression),
                entry.path.encode(),
            )
        )
    tree.mkdir(parents=True, exist_ok=True)
    for name, blob in zip(containers, blobs):
        fpath = tree / name
        fpath.parent.mkdir(parents=True, exist_ok=True)
        fpath.write_bytes(bytes(blob))
    catalog = tree / CATALOG_FILENAME
    catalog.write_bytes(pack_catalog(containers, records, version))
    return catalog


def make_install(
    root: Path,
    client: Optional[Sequence[Entry]] = None,
    versions: Optional[dict[str, Sequence[Entry]]] = None,
    version: int = 1,
) -> Path:
    """Create an install with an optional client tree and any number of version generations."""
    root.mkdir(parents=True, exist_ok=True)
    if client is not None:
        write_tree(root / "client", client, version)
    for name, entries in (versions or {}).items():
        write_tree(root / "versions" / name, entries, version)
    return root
