import struct
import zlib
from typing import Callable, Iterable, Iterator, Union

import lz4.block
import zstandard as zstd

from ndpaktool.constants import SD0_MAGIC, Compression
from ndpaktool.exceptions import IntegrityError, IntegrityErrorKind


def _failed(msg: str) -> IntegrityError:
    return IntegrityError(IntegrityErrorKind.DECOMPRESSION_FAILED, msg)


class Decompressor:
    """Streaming decompressor for one of the compression kinds a record may use.

    ``decompress`` takes an iterable of compressed chunks (as read from the container) and yields the
    decompressed data. Except for LZ4, which only works on whole blocks, at most one input chunk plus its
    decompressed output is held in memory at once.
    """

    def __init__(self, compression: Union[Compression, int] = Compression.STORED):
        self.compression = Compression(compression)
        funcs: dict[Compression, Callable[[Iterable[bytes], int], Iterator[bytes]]] = {
            Compression.STORED: self._decompress_stored,
            Compression.ZLIB: self._decompress_zlib,
            Compression.SD0: self._decompress_sd0,
            Compression.ZSTD: self._decompress_zstd,
            Compression.LZ4: self._decompress_lz4,
        }
        self._decompress_func = funcs[self.compression]

    def _decompress_stored(self, chunks: Iterable[bytes], uncompressed_size: int) -> Iterator[bytes]:
        yield from chunks

    def _decompress_zlib(self, chunks: Iterable[bytes], uncompressed_size: int) -> Iterator[bytes]:
        dobj = zlib.decompressobj()
        try:
            for chunk in chunks:
                if dobj.eof:
                    raise _failed("trailing data after the end of the zlib stream")
                if data := dobj.decompress(chunk):
                    yield data
            if data := dobj.flush():
                yield data
        except zlib.error as e:
            raise _failed(f"zlib: {e}") from e
        if not dobj.eof:
            raise _failed("zlib stream ended early")
        if dobj.unused_data:
            raise _failed("trailing data after the end of the zlib stream")

    def _decompress_sd0(self, chunks: Iterable[bytes], uncompressed_size: int) -> Iterator[bytes]:
        # Segmented zlib: a magic followed by blocks of (u32 compressed length, zlib stream).
        buffer = bytearray()
        seen_magic = False
        for chunk in chunks:
            buffer += chunk
            if not seen_magic:
                if len(buffer) < len(SD0_MAGIC):
                    continue
                if buffer[: len(SD0_MAGIC)] != SD0_MAGIC:
                    raise _failed("missing sd0 magic")
                del buffer[: len(SD0_MAGIC)]
                seen_magic = True
            while len(buffer) >= 4:
                (block_size,) = struct.unpack_from("<I", buffer)
                if len(buffer) < 4 + block_size:
                    break
                block = bytes(buffer[4 : 4 + block_size])
                del buffer[: 4 + block_size]
                try:
                    yield zlib.decompress(block)
                except zlib.error as e:
                    raise _failed(f"sd0 block: {e}") from e
        if not seen_magic:
            raise _failed("missing sd0 magic")
        if buffer:
            raise _failed(f"sd0 stream ended inside a block ({len(buffer)} bytes left over)")

    def _decompress_zstd(self, chunks: Iterable[bytes], uncompressed_size: int) -> Iterator[bytes]:
        dobj = zstd.ZstdDecompressor().decompressobj()
        try:
            for chunk in chunks:
                if data := dobj.decompress(chunk):
                    yield data
        except zstd.ZstdError as e:
            raise _failed(f"zstd: {e}") from e

    def _decompress_lz4(self, chunks: Iterable[bytes], uncompressed_size: int) -> Iterator[bytes]:
        data = b"".join(chunks)
        try:
            yield lz4.block.decompress(data, uncompressed_size=uncompressed_size)
        except (lz4.block.LZ4BlockError, ValueError, OverflowError, MemoryError) as e:
            raise _failed(f"lz4: {e}") from e

    def decompress(self, chunks: Iterable[bytes], uncompressed_size: int) -> Iterator[bytes]:
        """Decompress the provided stream of chunks.

        Parameters
        ----------
        chunks:
            The compressed data, in order.
        uncompressed_size:
            The size the data is declared to decompress to. Only required for LZ4 which doesn't store it.
        """
        return self._decompress_func(chunks, uncompressed_size)
