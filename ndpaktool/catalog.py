import os
import struct
from dataclasses import dataclass, field
from logging import NullHandler, getLogger
from pathlib import Path
from typing import Optional, Union

from ndpaktool.constants import (
    CATALOG_MAGIC,
    CatalogFormat,
    ChecksumKind,
    Compression,
    checksum_map,
)
from ndpaktool.exceptions import FormatError, FormatErrorKind
from ndpaktool.utils import normalise_path

HEADER_FMT = "<4sHxxII"
HEADER_SIZE = struct.calcsize(HEADER_FMT)
# Fixed part of a record, before the path bytes.
RECORD_FMTS = {
    CatalogFormat.V1: "<5IBxH",
    CatalogFormat.V2: "<I3Q16sBxH",
}


logger = getLogger(__name__)
logger.addHandler(NullHandler())


@dataclass(frozen=True)
class FileRecord:
    logical_path: str
    container_ref: str
    offset: int
    compressed_size: int
    uncompressed_size: int
    checksum: bytes
    checksum_kind: ChecksumKind
    compression: Compression

    @property
    def is_compressed(self) -> bool:
        return self.compression != Compression.STORED

    def __str__(self):
        return (
            f"File: {self.logical_path}: Container: {self.container_ref}, Offset: 0x{self.offset:X}, "
            f"Size: 0x{self.compressed_size:X} -> 0x{self.uncompressed_size:X}, "
            f"{self.compression.name} {self.checksum_kind.value}={self.checksum.hex().upper()}"
        )


@dataclass
class Catalog:
    generation: str
    rank: int
    format: CatalogFormat
    records: list[FileRecord] = field(default_factory=list)
    # The directory the container names are relative to. None for catalogs decoded from memory.
    root: Optional[Path] = None
    # Errors for the records which were dropped while decoding.
    skipped: list[FormatError] = field(default_factory=list)

    def __len__(self):
        return len(self.records)

    def __str__(self):
        return (
            f"Catalog {self.generation!r} (rank {self.rank}, format {self.format.name}): "
            f"{len(self.records)} records, {len(self.skipped)} skipped"
        )


class _Cursor:
    """Bounds-checked reader over the raw catalog bytes."""

    def __init__(self, data: bytes, generation: str):
        self.data = memoryview(data)
        self.pos = 0
        self.generation = generation

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int, what: str) -> bytes:
        if size > self.remaining:
            raise FormatError(
                FormatErrorKind.TRUNCATED,
                f"catalog ends inside {what} at offset 0x{self.pos:X}",
                self.generation,
            )
        chunk = self.data[self.pos : self.pos + size].tobytes()
        self.pos += size
        return chunk

    def unpack(self, fmt: str, what: str) -> tuple:
        return struct.unpack(fmt, self.take(struct.calcsize(fmt), what))


def _read_header(cursor: _Cursor) -> tuple[CatalogFormat, int, int]:
    if cursor.remaining < HEADER_SIZE or cursor.data[:4].tobytes() != CATALOG_MAGIC:
        raise FormatError(FormatErrorKind.BAD_MAGIC, "not a pack catalog", cursor.generation)
    _, version, container_count, record_count = cursor.unpack(HEADER_FMT, "header")
    try:
        fmt = CatalogFormat(version)
    except ValueError:
        raise FormatError(
            FormatErrorKind.BAD_MAGIC, f"unsupported catalog version {version}", cursor.generation
        ) from None
    return fmt, container_count, record_count


def _read_containers(cursor: _Cursor, count: int) -> list[str]:
    names = []
    for i in range(count):
        (name_len,) = cursor.unpack("<H", "container table")
        raw = cursor.take(name_len, "container table")
        try:
            name = raw.decode("utf-8")
        except UnicodeDecodeError:
            raise FormatError(
                FormatErrorKind.BAD_PATH, f"container name {i} is not valid UTF-8", cursor.generation
            ) from None
        if (norm := normalise_path(name)) is None:
            raise FormatError(FormatErrorKind.BAD_PATH, f"invalid container name {name!r}", cursor.generation)
        names.append(norm)
    return names


def _make_record(
    fmt: CatalogFormat,
    fields: tuple,
    raw_path: bytes,
    containers: list[str],
    generation: str,
) -> FileRecord:
    if fmt == CatalogFormat.V1:
        container_idx, offset, csize, usize, crc, compression, _ = fields
        digest = struct.pack("<I", crc)
    else:
        container_idx, offset, csize, usize, digest, compression, _ = fields

    try:
        path = raw_path.decode("utf-8")
    except UnicodeDecodeError:
        raise FormatError(FormatErrorKind.BAD_PATH, f"path is not valid UTF-8: {raw_path!r}", generation) from None
    if (logical_path := normalise_path(path)) is None:
        raise FormatError(FormatErrorKind.BAD_PATH, f"invalid path {path!r}", generation)

    if container_idx >= len(containers):
        raise FormatError(
            FormatErrorKind.BAD_RECORD,
            f"container index {container_idx} out of range (0-{len(containers) - 1})",
            logical_path,
        )
    try:
        kind = Compression(compression)
    except ValueError:
        raise FormatError(
            FormatErrorKind.BAD_RECORD, f"unknown compression kind {compression}", logical_path
        ) from None
    if kind == Compression.STORED and csize != usize:
        raise FormatError(
            FormatErrorKind.BAD_RECORD,
            f"stored record has mismatched sizes (0x{csize:X} != 0x{usize:X})",
            logical_path,
        )

    return FileRecord(
        logical_path=logical_path,
        container_ref=containers[container_idx],
        offset=offset,
        compressed_size=csize,
        uncompressed_size=usize,
        checksum=digest,
        checksum_kind=checksum_map[fmt],
        compression=kind,
    )


def decode_catalog(
    data: bytes,
    generation: str,
    rank: int,
    root: Optional[Path] = None,
) -> Catalog:
    """Decode the raw bytes of a catalog file.

    Parameters
    ----------
    data:
        The entire contents of the catalog file.
    generation:
        The name of the generation the catalog belongs to. Used for provenance and error messages.
    rank:
        The recency rank of the generation. Higher is newer.
    root:
        The directory the container names in the catalog are relative to.

    Returns
    -------
    The decoded catalog. Records with an invalid path or invalid fields are dropped and listed in
    ``Catalog.skipped``; any other problem with the data raises a ``FormatError``.
    """
    cursor = _Cursor(data, generation)
    fmt, container_count, record_count = _read_header(cursor)
    containers = _read_containers(cursor, container_count)

    record_fmt = RECORD_FMTS[fmt]
    record_size = struct.calcsize(record_fmt)
    if record_count * record_size > cursor.remaining:
        raise FormatError(
            FormatErrorKind.TRUNCATED,
            f"{record_count} records declared but only 0x{cursor.remaining:X} bytes remain",
            generation,
        )

    catalog = Catalog(generation, rank, fmt, root=root)
    for i in range(record_count):
        fields = cursor.unpack(record_fmt, f"record {i}")
        raw_path = cursor.take(fields[-1], f"path of record {i}")
        try:
            catalog.records.append(_make_record(fmt, fields, raw_path, containers, generation))
        except FormatError as e:
            logger.warning(f"Skipping record {i} of {generation!r}: {e}")
            catalog.skipped.append(e)
    logger.debug(str(catalog))
    return catalog


def load_catalog(fpath: Union[str, os.PathLike[str]], generation: str, rank: int) -> Catalog:
    """Read and decode the catalog at the given path.
    Container names will be resolved relative to the directory containing the catalog."""
    fpath = Path(fpath)
    with open(fpath, "rb") as f:
        data = f.read()
    return decode_catalog(data, generation, rank, root=fpath.parent)
