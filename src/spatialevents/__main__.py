"""
Command-line interface.

Reads an event file, logs a short summary and optionally converts it to
another format.

Usage:
    $ python -m spatialevents events.bin
    $ python -m spatialevents events.txt -o events.h5 --format hdf5 -v
"""
import argparse
import logging
import sys
from typing import Optional, Sequence

from spatialevents.config import PRODUCER_VERSION, EventSourceConfig
from spatialevents.controller.file_source import FileEventSource
from spatialevents.logging_config import setup_logging
from spatialevents.model.io import EventFileFormat

logger = logging.getLogger("spatialevents.cli")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="spatialevents",
        description="Inspect and convert spatial event files.",
    )
    parser.add_argument("input", help="Event file to read (binary, text or HDF5).")
    parser.add_argument(
        "-o", "--output", default=None,
        help="Write the events to this file after reading.",
    )
    parser.add_argument(
        "--format", dest="file_format", default=EventFileFormat.BINARY.value,
        choices=[f.value for f in EventFileFormat],
        help="Format of the output file (default: binary)",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log debug messages.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {PRODUCER_VERSION}")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(level=logging.DEBUG if args.verbose else logging.INFO)

    # conversion never needs queries
    source = FileEventSource(args.input, config=EventSourceConfig(spatial_index=False))
    if source.load() < 0:
        return 1

    box = source.bounding_box
    logger.info(f"{source.num_events} events")
    if not box.is_empty:
        logger.info(f"Bounding box: min {tuple(box.minimum)}, max {tuple(box.maximum)}")

    if args.output is not None and not source.write(args.output, args.file_format):
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
