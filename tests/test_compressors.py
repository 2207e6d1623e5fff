import os
import zlib

import pytest
from utils import compress

from ndpaktool.compressors import Decompressor
from ndpaktool.constants import SD0_MAGIC, Compression
from ndpaktool.exceptions import IntegrityError, IntegrityErrorKind

DATA = b"".join(f"line {i}: the quick brown fox\n".encode() for i in range(500)) + os.urandom(64)


def chunked(data: bytes, size: int = 7) -> list[bytes]:
    return [data[i : i + size] for i in range(0, len(data), size)]


@pytest.mark.parametrize("compression", list(Compression))
def test_decompress(compression: Compression):
    compressed = compress(DATA, compression)
    decompressor = Decompressor(compression)
    assert b"".join(decompressor.decompress(chunked(compressed), len(DATA))) == DATA


def test_decompress_from_int():
    assert Decompressor(1).compression == Compression.ZLIB


@pytest.mark.parametrize(
    "compression,data",
    (
        (Compression.ZLIB, b"this is not zlib data"),
        (Compression.ZLIB, zlib.compress(DATA)[:-10]),
        (Compression.ZLIB, zlib.compress(DATA) + b"trailing"),
        (Compression.SD0, b"nope" + zlib.compress(DATA)),
        (Compression.SD0, b"sd0"),
        (Compression.SD0, compress(DATA, Compression.SD0)[:-3]),
        (Compression.SD0, SD0_MAGIC + b"\x04\x00\x00\x00junk"),
        (Compression.ZSTD, b"this is not zstd data at all"),
    ),
)
def test_decompress_failure(compression: Compression, data: bytes):
    decompressor = Decompressor(compression)
    with pytest.raises(IntegrityError) as e:
        b"".join(decompressor.decompress(chunked(data), len(DATA)))
    assert e.value.kind == IntegrityErrorKind.DECOMPRESSION_FAILED
