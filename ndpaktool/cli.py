import argparse
import logging
import os
import pathlib
import sys
from typing import Optional

from ndpaktool import __version__
from ndpaktool.api import ExtractConfig, OutcomeStatus, PackExtractor
from ndpaktool.exceptions import FormatError, ResolutionError
from ndpaktool.selection import GlobPredicate

logger = logging.getLogger("ndpaktool")
logger.addHandler(logging.StreamHandler())
logger.setLevel(logging.WARNING)

EXIT_FATAL = 2
EXIT_INTERRUPTED = 130


class SmartFormatter(argparse.HelpFormatter):
    # "Smaerter" help formatter c/o https://stackoverflow.com/a/22157136
    def _split_lines(self, text, width):
        if text.startswith("R|"):
            return text[2:].splitlines()
        # this is the RawTextHelpFormatter._split_lines
        return argparse.HelpFormatter._split_lines(self, text, width)


class NDPAKNamespace(argparse.Namespace):
    input: Optional[pathlib.Path]
    output: Optional[pathlib.Path]
    dryrun: bool
    glob: Optional[pathlib.Path]
    filter: Optional[list[str]]
    jobs: int
    no_check: bool
    verbose: int


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=f"ndpaktool ({__version__})",
        description="Unpack the files of a versioned pack-archive client install",
        formatter_class=SmartFormatter,
    )
    parser.add_argument(
        "input",
        nargs="?",
        type=pathlib.Path,
        help="The install directory containing the 'client' and 'versions' folders. Default: the current directory.",
    )
    parser.add_argument(
        "-O",
        "--output",
        type=pathlib.Path,
        help="The directory to place extracted files in. If not provided, falls back to the input directory.",
    )
    parser.add_argument(
        "-d",
        "--dryrun",
        "--dry-run",
        action="store_true",
        default=False,
        help="List the files which would be written without decompressing or writing anything.",
    )
    parser.add_argument(
        "-g",
        "--glob",
        type=pathlib.Path,
        help=(
            "R|A file of glob patterns, one per line, which selects the files to extract.\n"
            "Blank lines and lines starting with # are ignored."
        ),
    )
    parser.add_argument(
        "-f",
        "--filter",
        action="append",
        help=(
            "R|A glob pattern which can be used to filter the files which are to be extracted.\n"
            "This argument can be provided multiple times and is combined with any --glob file "
            "(ie. patterns are OR'd, not AND'd)."
        ),
    )
    parser.add_argument(
        "-j",
        "--jobs",
        type=int,
        default=min(8, os.cpu_count() or 1),
        help="The number of files to process at once. Default: %(default)s.",
    )
    parser.add_argument(
        "--no-check",
        dest="no_check",
        action="store_true",
        default=False,
        help="In a dry run, don't check that each file's data exists in its container.",
    )
    parser.add_argument("-v", "--verbose", action="count", default=0, help="Increase logging verbosity")
    return parser


def config_from_args(args: NDPAKNamespace) -> ExtractConfig:
    root = args.input or pathlib.Path.cwd()
    patterns = []
    if args.glob is not None:
        patterns.extend(GlobPredicate.from_file(args.glob).patterns)
    if args.filter:
        patterns.extend(args.filter)
    return ExtractConfig(
        root=root,
        output=args.output,
        dry_run=args.dryrun,
        predicate=GlobPredicate(patterns) if (args.glob is not None or args.filter) else None,
        workers=args.jobs,
        check_containers=not args.no_check,
    )


def run(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv, namespace=NDPAKNamespace())

    if args.verbose == 1:
        logger.setLevel(logging.INFO)
    elif args.verbose >= 2:
        logger.setLevel(logging.DEBUG)

    try:
        config = config_from_args(args)
    except OSError as e:
        logger.error(f"Unable to read glob file: {e}")
        return EXIT_FATAL

    with PackExtractor(config) as extractor:
        try:
            files = extractor.select()
        except (FormatError, ResolutionError, OSError) as e:
            logger.error(f"Unable to resolve {config.root}: {e}")
            return EXIT_FATAL
        try:
            summary = extractor.run()
        except KeyboardInterrupt:
            extractor.cancel()
            logger.error("Interrupted. Waiting for files in progress to finish.")
            return EXIT_INTERRUPTED

    if config.dry_run:
        for outcome in summary.outcomes:
            if outcome.status == OutcomeStatus.LISTED:
                print(extractor.destination(extractor.resolution.files[outcome.logical_path]))
    if summary.failed:
        logger.warning(f"{summary.failed} of {len(files)} files could not be extracted")
    return summary.exit_code


def main():
    sys.exit(run())


if __name__ == "__main__":
    main()
