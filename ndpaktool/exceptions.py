from enum import Enum
from typing import Optional


class PackError(Exception):
    """Base class for all errors raised while resolving or extracting packs.

    Every subclass carries a ``kind`` drawn from its own enum so callers can branch on the precise failure
    without parsing messages.
    """

    def __init__(self, kind: Enum, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.kind = kind
        self.path = path

    def __str__(self):
        msg = super().__str__()
        if self.path:
            return f"{self.kind.name}: {self.path}: {msg}"
        return f"{self.kind.name}: {msg}"


class FormatErrorKind(Enum):
    BAD_MAGIC = "bad_magic"
    TRUNCATED = "truncated"
    BAD_PATH = "bad_path"
    BAD_RECORD = "bad_record"


class ResolutionErrorKind(Enum):
    MISSING_CATALOG = "missing_catalog"
    NO_CATALOGS = "no_catalogs"


class IOErrorKind(Enum):
    MISSING_CONTAINER = "missing_container"
    OPEN_FAILED = "open_failed"
    READ_FAILED = "read_failed"
    RANGE_OUT_OF_BOUNDS = "range_out_of_bounds"
    WRITE_FAILED = "write_failed"


class IntegrityErrorKind(Enum):
    CHECKSUM_MISMATCH = "checksum_mismatch"
    LENGTH_MISMATCH = "length_mismatch"
    DECOMPRESSION_FAILED = "decompression_failed"


class FormatError(PackError):
    kind: FormatErrorKind


class ResolutionError(PackError):
    kind: ResolutionErrorKind


class PackIOError(PackError):
    kind: IOErrorKind


class IntegrityError(PackError):
    kind: IntegrityErrorKind
