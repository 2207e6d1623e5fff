import os
import threading
from io import SEEK_SET, BufferedReader
from logging import NullHandler, getLogger
from pathlib import Path
from typing import Iterator, Union

from ndpaktool.constants import READ_CHUNK_SIZE
from ndpaktool.exceptions import IOErrorKind, PackIOError

logger = getLogger(__name__)
logger.addHandler(NullHandler())


class ContainerHandle:
    """An open container file.
    Reads are byte-range fetches; the seek and read for each block happen under a lock so that a handle can
    be shared between threads."""

    __slots__ = ("path", "fobj", "size", "_lock")

    def __init__(self, path: Path, fobj: BufferedReader):
        self.path = path
        self.fobj = fobj
        self.size = os.fstat(fobj.fileno()).st_size
        self._lock = threading.Lock()

    def check_range(self, offset: int, size: int):
        if offset + size > self.size:
            raise PackIOError(
                IOErrorKind.RANGE_OUT_OF_BOUNDS,
                f"range 0x{offset:X}+0x{size:X} exceeds container length 0x{self.size:X}",
                str(self.path),
            )

    def iter_range(self, offset: int, size: int, chunk_size: int = READ_CHUNK_SIZE) -> Iterator[bytes]:
        self.check_range(offset, size)
        pos = offset
        end = offset + size
        while pos < end:
            want = min(chunk_size, end - pos)
            try:
                with self._lock:
                    self.fobj.seek(pos, SEEK_SET)
                    data = self.fobj.read(want)
            except OSError as e:
                raise PackIOError(IOErrorKind.READ_FAILED, str(e), str(self.path)) from e
            if len(data) != want:
                raise PackIOError(
                    IOErrorKind.READ_FAILED,
                    f"short read at 0x{pos:X}: wanted 0x{want:X} bytes, got 0x{len(data):X}",
                    str(self.path),
                )
            pos += want
            yield data

    def close(self):
        with self._lock:
            self.fobj.close()


class ContainerReader:
    """Lazily opens and caches container files for the duration of an extraction run.

    Every container is opened at most once, no matter how many threads ask for it at the same time. All
    handles are closed when the reader is closed or its context exits.
    """

    def __init__(self):
        self._handles: dict[Path, ContainerHandle] = {}
        self._lock = threading.Lock()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def __len__(self):
        return len(self._handles)

    def get(self, path: Union[str, os.PathLike[str]]) -> ContainerHandle:
        """Get the handle for the container at the given path, opening it if required."""
        path = Path(path)
        with self._lock:
            handle = self._handles.get(path)
            if handle is None:
                try:
                    fobj = open(path, "rb")
                except FileNotFoundError as e:
                    raise PackIOError(IOErrorKind.MISSING_CONTAINER, "container does not exist", str(path)) from e
                except OSError as e:
                    raise PackIOError(IOErrorKind.OPEN_FAILED, str(e), str(path)) from e
                logger.debug(f"Opened container {path}")
                handle = ContainerHandle(path, fobj)
                self._handles[path] = handle
        return handle

    def check_range(self, path: Union[str, os.PathLike[str]], offset: int, size: int):
        """Ensure the byte range exists in the container without reading it."""
        self.get(path).check_range(offset, size)

    def iter_range(
        self,
        path: Union[str, os.PathLike[str]],
        offset: int,
        size: int,
        chunk_size: int = READ_CHUNK_SIZE,
    ) -> Iterator[bytes]:
        """Get an iterator over the requested byte range, read in blocks of at most chunk_size bytes.
        The container is opened and the range is validated before this returns."""
        handle = self.get(path)
        handle.check_range(offset, size)
        return handle.iter_range(offset, size, chunk_size)

    def read(self, path: Union[str, os.PathLike[str]], offset: int, size: int) -> bytes:
        return b"".join(self.iter_range(path, offset, size))

    def close(self):
        with self._lock:
            for handle in self._handles.values():
                handle.close()
            self._handles.clear()
