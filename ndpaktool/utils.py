import hashlib
import os
import re
import struct
import zlib
from typing import Optional, Union

from ndpaktool.constants import ChecksumKind

_NATURAL_RE = re.compile(r"(\d+)")


class Crc32Hash:
    """Minimal hashlib-style wrapper around zlib.crc32 so CRC and MD5 checksums can be fed the same way."""

    name = "crc32"
    digest_size = 4

    def __init__(self, data: bytes = b""):
        self._value = zlib.crc32(data)

    def update(self, data: bytes):
        self._value = zlib.crc32(data, self._value)

    def digest(self) -> bytes:
        return struct.pack("<I", self._value)


def new_hash(kind: ChecksumKind):
    """Get a fresh hash object for the checksum kind used by a catalog."""
    if kind == ChecksumKind.CRC32:
        return Crc32Hash()
    return hashlib.new(kind.value)


def normalise_path(path: str) -> Optional[str]:
    """Normalise a path stored in a catalog to a forward-slash relative path.

    Case is preserved. Returns None if the path is empty, absolute or tries to escape the output tree.
    """
    path = path.replace("\\", "/")
    if path.startswith("/") or re.match(r"^[A-Za-z]:", path):
        return None
    parts = []
    for part in path.split("/"):
        if part in ("", "."):
            continue
        if part == "..":
            return None
        parts.append(part)
    if not parts:
        return None
    return "/".join(parts)


def natural_key(name: str) -> list[Union[int, str]]:
    """Sort key which orders embedded numbers by value, so that "2" comes before "10"."""
    return [int(x) if x.isdigit() else x for x in _NATURAL_RE.split(name)]


def parse_list_file(fpath: Union[str, os.PathLike[str]]) -> list[str]:
    """Parse a file with one entry per line.
    Blank lines and lines starting with # are ignored."""
    entries = []
    with open(fpath, "r", encoding="utf-8") as f:
        for line in f:
            sline = line.strip()
            if not sline or sline.startswith("#"):
                continue
            entries.append(sline)
    return entries
