import os
import os.path as op
import tempfile
from io import BufferedWriter
from typing import Optional

from ndpaktool.catalog import FileRecord
from ndpaktool.exceptions import IntegrityError, IntegrityErrorKind
from ndpaktool.utils import new_hash

# Files are created with the same permissions open() would give them.
UMASK = os.umask(0)
os.umask(UMASK)


class VerifiedWriter:
    """Write the decompressed bytes of a record to a temporary file beside the destination.

    The data is hashed as it is written. ``commit`` checks the length and checksum against the record and
    only then moves the file into place, so a failed record never leaves anything at the destination.
    """

    def __init__(self, dest: str, record: FileRecord):
        self.dest = dest
        self.record = record
        self.bytes_written = 0
        self._hash = new_hash(record.checksum_kind)
        dir_ = op.dirname(dest)
        if dir_:
            os.makedirs(dir_, exist_ok=True)
        fd, self._tmp_path = tempfile.mkstemp(prefix=f".{op.basename(dest)}.", suffix=".part", dir=dir_ or None)
        self._fobj: Optional[BufferedWriter] = os.fdopen(fd, "wb")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        # Anything not committed is thrown away.
        self.discard()

    def write(self, data: bytes):
        """Add the provided bytes to the file.
        Fails as soon as more data has arrived than the record says it contains."""
        self.bytes_written += len(data)
        if self.bytes_written > self.record.uncompressed_size:
            raise IntegrityError(
                IntegrityErrorKind.LENGTH_MISMATCH,
                f"data exceeds declared size of 0x{self.record.uncompressed_size:X} bytes",
                self.record.logical_path,
            )
        self._hash.update(data)
        self._fobj.write(data)

    def verify(self):
        if self.bytes_written != self.record.uncompressed_size:
            raise IntegrityError(
                IntegrityErrorKind.LENGTH_MISMATCH,
                f"got 0x{self.bytes_written:X} bytes, expected 0x{self.record.uncompressed_size:X}",
                self.record.logical_path,
            )
        digest = self._hash.digest()
        if digest != self.record.checksum:
            raise IntegrityError(
                IntegrityErrorKind.CHECKSUM_MISMATCH,
                f"{self.record.checksum_kind.value} is {digest.hex().upper()}, "
                f"expected {self.record.checksum.hex().upper()}",
                self.record.logical_path,
            )

    def commit(self) -> int:
        """Verify the written data and move it to the destination, replacing any existing file.
        Returns the number of bytes written."""
        self.verify()
        self._fobj.close()
        self._fobj = None
        os.chmod(self._tmp_path, 0o666 & ~UMASK)
        os.replace(self._tmp_path, self.dest)
        self._tmp_path = None
        return self.bytes_written

    def discard(self):
        if self._fobj is not None:
            self._fobj.close()
            self._fobj = None
        if self._tmp_path is not None:
            try:
                os.unlink(self._tmp_path)
            except FileNotFoundError:
                pass
            self._tmp_path = None
