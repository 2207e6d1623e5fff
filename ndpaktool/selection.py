import fnmatch
import os
from typing import Iterable, Mapping, Optional, Protocol, Union

from ndpaktool.resolver import ResolvedFile
from ndpaktool.utils import parse_list_file


class PathPredicate(Protocol):
    def matches(self, path: str) -> bool: ...


class AcceptAll:
    """Predicate used when no filter has been configured."""

    def matches(self, path: str) -> bool:
        return True


class GlobPredicate:
    """Match paths against a list of glob patterns. A path matches if any pattern matches it.

    Matching is case-sensitive and ``*`` also matches ``/``, so ``**`` or ``*`` accepts everything.
    """

    def __init__(self, patterns: Iterable[str]):
        self.patterns = [x for x in patterns if x]

    @classmethod
    def from_file(cls, fpath: Union[str, os.PathLike[str]]) -> "GlobPredicate":
        """Load the patterns from a file with one pattern per line.
        Blank lines and lines starting with # are ignored."""
        return cls(parse_list_file(fpath))

    def matches(self, path: str) -> bool:
        return any(fnmatch.fnmatchcase(path, pattern) for pattern in self.patterns)

    def __repr__(self):
        return f"GlobPredicate({self.patterns!r})"


def select(
    files: Union[Mapping[str, ResolvedFile], Iterable[ResolvedFile]],
    predicate: Optional[PathPredicate] = None,
) -> list[ResolvedFile]:
    """Filter the resolved files down to those accepted by the predicate.
    The result is always sorted by logical path so that listings are the same between runs."""
    if isinstance(files, Mapping):
        files = files.values()
    if predicate is None:
        predicate = AcceptAll()
    return sorted((x for x in files if predicate.matches(x.logical_path)), key=lambda x: x.logical_path)
