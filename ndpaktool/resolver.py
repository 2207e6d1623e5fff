import os
from dataclasses import dataclass, field
from logging import NullHandler, getLogger
from pathlib import Path
from typing import Iterable, Union

from ndpaktool.catalog import Catalog, FileRecord, load_catalog
from ndpaktool.constants import (
    CATALOG_FILENAME,
    CLIENT_DIR,
    CLIENT_GENERATION,
    CLIENT_RANK,
    GENERATIONS_FILENAME,
    VERSIONS_DIR,
)
from ndpaktool.exceptions import ResolutionError, ResolutionErrorKind
from ndpaktool.utils import natural_key, normalise_path, parse_list_file

logger = getLogger(__name__)
logger.addHandler(NullHandler())


@dataclass(frozen=True)
class Generation:
    """One layer of the install: the base client tree or a single patch under versions/."""

    name: str
    rank: int
    root: Path

    @property
    def catalog_path(self) -> Path:
        return self.root / CATALOG_FILENAME


@dataclass(frozen=True)
class ResolvedFile:
    logical_path: str
    record: FileRecord
    rank: int
    generation: str
    root: Path

    @property
    def container_path(self) -> Path:
        return self.root / self.record.container_ref

    def __str__(self):
        return f"{self.logical_path} <- {self.generation} (rank {self.rank}): {self.container_path}"


@dataclass
class Resolution:
    """The result of merging every generation found under a root directory."""

    files: dict[str, ResolvedFile] = field(default_factory=dict)
    generations: list[Generation] = field(default_factory=list)
    catalogs: list[Catalog] = field(default_factory=list)
    # Recoverable problems found while resolving.
    errors: list[ResolutionError] = field(default_factory=list)

    def __len__(self):
        return len(self.files)


def discover_generations(root: Union[str, os.PathLike[str]]) -> list[Generation]:
    """Enumerate the generations under the root directory, oldest first.

    The client tree is always rank 0 (whether or not it exists, so that a missing base install gets
    reported). Patch generations under versions/ follow in the order declared by versions/generations.txt,
    or in natural directory-name order if that file doesn't exist.
    """
    root = Path(root)
    generations = [Generation(CLIENT_GENERATION, CLIENT_RANK, root / CLIENT_DIR)]

    versions_dir = root / VERSIONS_DIR
    if not versions_dir.is_dir():
        logger.debug(f"No {VERSIONS_DIR} directory in {root}")
        return generations

    order_file = versions_dir / GENERATIONS_FILENAME
    if order_file.is_file():
        names = []
        for name in parse_list_file(order_file):
            if (clean := normalise_path(name)) is None or "/" in clean:
                logger.warning(f"Ignoring invalid generation name {name!r} in {order_file}")
                continue
            names.append(clean)
        declared = set(names)
        for child in versions_dir.iterdir():
            if child.is_dir() and child.name not in declared:
                logger.debug(f"Ignoring undeclared generation {child.name!r}")
    else:
        names = sorted((x.name for x in versions_dir.iterdir() if x.is_dir()), key=natural_key)

    for rank, name in enumerate(names, start=CLIENT_RANK + 1):
        generations.append(Generation(name, rank, versions_dir / name))
    return generations


def resolve(catalogs: Iterable[Catalog]) -> dict[str, ResolvedFile]:
    """Merge the catalogs into a single mapping of logical path to the winning record.

    Catalogs are applied from lowest to highest rank and records in catalog order, each one replacing any
    earlier entry for the same path. The newest generation therefore always wins, the last entry within a
    catalog wins, and for catalogs sharing a rank the one which appears last in ``catalogs`` wins.
    """
    files: dict[str, ResolvedFile] = {}
    # sorted is stable so equal ranks keep their given order.
    for catalog in sorted(catalogs, key=lambda c: c.rank):
        root = catalog.root if catalog.root is not None else Path()
        for record in catalog.records:
            files[record.logical_path] = ResolvedFile(
                record.logical_path, record, catalog.rank, catalog.generation, root
            )
    return files


def load_resolution(root: Union[str, os.PathLike[str]]) -> Resolution:
    """Discover, load and resolve every generation under the root directory.

    Generations whose catalog is missing are skipped and reported in ``Resolution.errors``. A catalog which
    exists but can't be decoded raises a ``FormatError``, and if no catalog could be loaded at all a
    ``ResolutionError`` is raised.
    """
    resolution = Resolution()
    for generation in discover_generations(root):
        catalog_path = generation.catalog_path
        if not catalog_path.is_file():
            err = ResolutionError(
                ResolutionErrorKind.MISSING_CATALOG,
                f"generation {generation.name!r} has no {CATALOG_FILENAME}",
                str(catalog_path),
            )
            logger.warning(str(err))
            resolution.errors.append(err)
            continue
        logger.debug(f"Reading catalog for {generation.name!r} (rank {generation.rank})")
        resolution.catalogs.append(load_catalog(catalog_path, generation.name, generation.rank))
        resolution.generations.append(generation)

    if not resolution.catalogs:
        raise ResolutionError(
            ResolutionErrorKind.NO_CATALOGS,
            f"no readable catalogs found under {CLIENT_DIR}/ or {VERSIONS_DIR}/",
            str(root),
        )

    resolution.files = resolve(resolution.catalogs)
    logger.info(
        f"Resolved {len(resolution.files)} files from {len(resolution.catalogs)} generation(s)"
    )
    return resolution
