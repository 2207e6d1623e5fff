import os
import os.path as op
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from logging import NullHandler, getLogger
from pathlib import Path
from typing import Iterator, Optional, Union

from ndpaktool.buffers import VerifiedWriter
from ndpaktool.compressors import Decompressor
from ndpaktool.constants import READ_CHUNK_SIZE
from ndpaktool.containers import ContainerReader
from ndpaktool.exceptions import IOErrorKind, PackError, PackIOError
from ndpaktool.resolver import Resolution, ResolvedFile, load_resolution
from ndpaktool.selection import PathPredicate, select

logger = getLogger(__name__)
logger.addHandler(NullHandler())


def _default_workers() -> int:
    return min(8, os.cpu_count() or 1)


@dataclass(frozen=True)
class ExtractConfig:
    """Everything an extraction run needs.

    Parameters
    ----------
    root:
        The install directory containing the ``client`` and ``versions`` trees.
    output:
        The directory to write files to. Defaults to ``root``.
    dry_run:
        If True, report what would be written without decompressing or writing anything.
    predicate:
        Only files whose logical path this accepts are processed. None accepts everything.
    workers:
        Maximum number of files processed at once.
    check_containers:
        In dry-run mode, check that each record's byte range exists in its container.
    chunk_size:
        Size of the blocks read from containers.
    """

    root: Path
    output: Optional[Path] = None
    dry_run: bool = False
    predicate: Optional[PathPredicate] = None
    workers: int = field(default_factory=_default_workers)
    check_containers: bool = True
    chunk_size: int = READ_CHUNK_SIZE

    @property
    def output_root(self) -> Path:
        return Path(self.output if self.output is not None else self.root)


class OutcomeStatus(str, Enum):
    WRITTEN = "written"
    LISTED = "listed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class ExtractionOutcome:
    logical_path: str
    status: OutcomeStatus
    # Bytes written, or the bytes which would be written in a dry run.
    size: int = 0
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.status in (OutcomeStatus.WRITTEN, OutcomeStatus.LISTED)

    def __str__(self):
        if self.error is not None:
            return f"{self.logical_path}: {self.status.value} ({self.error})"
        return f"{self.logical_path}: {self.status.value} (0x{self.size:X} bytes)"


@dataclass
class ExtractionSummary:
    outcomes: list[ExtractionOutcome] = field(default_factory=list)

    def _count(self, status: OutcomeStatus) -> int:
        return sum(1 for x in self.outcomes if x.status == status)

    @property
    def written(self) -> int:
        return self._count(OutcomeStatus.WRITTEN)

    @property
    def listed(self) -> int:
        return self._count(OutcomeStatus.LISTED)

    @property
    def failed(self) -> int:
        return self._count(OutcomeStatus.FAILED)

    @property
    def cancelled(self) -> int:
        return self._count(OutcomeStatus.CANCELLED)

    @property
    def exit_code(self) -> int:
        return 1 if self.failed or self.cancelled else 0

    def __len__(self):
        return len(self.outcomes)

    def __str__(self):
        return (
            f"{self.written} written, {self.listed} listed, {self.failed} failed, "
            f"{self.cancelled} cancelled"
        )


class PackExtractor:
    """Resolve every generation of an install and extract the winning copy of each selected file.

    Use as a context manager so that the container handles are closed once the run is over::

        with PackExtractor(ExtractConfig(root)) as extractor:
            summary = extractor.run()
    """

    def __init__(self, config: ExtractConfig):
        self.config = config
        self.reader = ContainerReader()
        self.resolution: Optional[Resolution] = None
        self._cancel = threading.Event()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.reader.close()

    def resolve(self) -> Resolution:
        """Load and merge the catalogs. This only happens once per extractor."""
        if self.resolution is None:
            self.resolution = load_resolution(self.config.root)
        return self.resolution

    def select(self) -> list[ResolvedFile]:
        return select(self.resolve().files, self.config.predicate)

    def cancel(self):
        """Stop starting new files. Files already being processed are allowed to finish."""
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def destination(self, resolved: ResolvedFile) -> str:
        return op.join(self.config.output_root, *resolved.logical_path.split("/"))

    def _list_file(self, resolved: ResolvedFile) -> ExtractionOutcome:
        record = resolved.record
        if self.config.check_containers:
            self.reader.check_range(resolved.container_path, record.offset, record.compressed_size)
        return ExtractionOutcome(resolved.logical_path, OutcomeStatus.LISTED, record.uncompressed_size)

    def _extract_file(self, resolved: ResolvedFile) -> ExtractionOutcome:
        record = resolved.record
        chunks = self.reader.iter_range(
            resolved.container_path, record.offset, record.compressed_size, self.config.chunk_size
        )
        decompressor = Decompressor(record.compression)
        dest = self.destination(resolved)
        try:
            with VerifiedWriter(dest, record) as writer:
                for data in decompressor.decompress(chunks, record.uncompressed_size):
                    writer.write(data)
                size = writer.commit()
        except OSError as e:
            raise PackIOError(IOErrorKind.WRITE_FAILED, str(e), dest) from e
        return ExtractionOutcome(resolved.logical_path, OutcomeStatus.WRITTEN, size)

    def process(self, resolved: ResolvedFile) -> ExtractionOutcome:
        """Extract or list a single file. Errors are returned in the outcome rather than raised."""
        if self._cancel.is_set():
            return ExtractionOutcome(resolved.logical_path, OutcomeStatus.CANCELLED)
        try:
            if self.config.dry_run:
                outcome = self._list_file(resolved)
            else:
                outcome = self._extract_file(resolved)
        except PackError as e:
            logger.error(f"Unable to extract {resolved.logical_path}: {e}")
            return ExtractionOutcome(resolved.logical_path, OutcomeStatus.FAILED, error=e)
        except Exception as e:
            logger.exception(f"Unexpected error extracting {resolved.logical_path}:")
            return ExtractionOutcome(resolved.logical_path, OutcomeStatus.FAILED, error=e)
        logger.debug(str(outcome))
        return outcome

    def extract(self, files: Optional[list[ResolvedFile]] = None) -> Iterator[ExtractionOutcome]:
        """Process the selected files on a pool of worker threads.

        Parameters
        ----------
        files:
            The files to process. If not provided, the files selected by the configured predicate are used.

        Returns
        -------
        An iterator over the outcome of each file, in the same order as the files.
        """
        if files is None:
            files = self.select()
        if not files:
            return
        with ThreadPoolExecutor(max_workers=max(1, self.config.workers)) as executor:
            futures = [executor.submit(self.process, resolved) for resolved in files]
            finished = False
            try:
                for future in futures:
                    yield future.result()
                finished = True
            finally:
                # If the caller stopped consuming early, don't start anything else.
                if not finished:
                    self._cancel.set()

    def run(self) -> ExtractionSummary:
        t1 = time.perf_counter()
        files = self.select()
        summary = ExtractionSummary()
        for outcome in self.extract(files):
            summary.outcomes.append(outcome)
        verb = "Listed" if self.config.dry_run else "Extracted"
        logger.info(f"{verb} {len(files)} files in {time.perf_counter() - t1:.3f}s: {summary}")
        return summary


def extract(
    root: Union[str, os.PathLike[str]],
    output: Union[str, os.PathLike[str], None] = None,
    dry_run: bool = False,
    predicate: Optional[PathPredicate] = None,
    **kwargs,
) -> ExtractionSummary:
    """Resolve and extract the install at root in one go.
    Any extra keyword arguments are passed through to ``ExtractConfig``."""
    config = ExtractConfig(
        Path(root),
        Path(output) if output is not None else None,
        dry_run,
        predicate,
        **kwargs,
    )
    with PackExtractor(config) as extractor:
        return extractor.run()
