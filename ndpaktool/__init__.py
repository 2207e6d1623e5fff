from importlib.metadata import PackageNotFoundError, version

from .api import ExtractConfig, PackExtractor, extract  # noqa

try:
    __version__ = version("ndpaktool")
except PackageNotFoundError:
    __version__ = None
