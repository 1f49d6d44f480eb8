"""Entry point for Mirror Watcher.

Usage:
    python -m mirror_sync SOURCE DESTINATION [options]

Watches SOURCE, mirrors every file into DESTINATION, verifies each copy
and then removes it from SOURCE.  Press Ctrl-C to stop; the transfers
still in flight are listed before exit.
"""

import argparse
import os
import sys
from pathlib import Path

from mirror_sync import __app_name__, __version__
from mirror_sync.config import VERIFY_HASH, VERIFY_SIZE, Config


def _overlaps(a: Path, b: Path) -> bool:
    """Return True if *a* and *b* are the same folder or one contains the other."""
    a_norm = Path(os.path.normcase(str(a)))
    b_norm = Path(os.path.normcase(str(b)))
    return a_norm == b_norm or a_norm in b_norm.parents or b_norm in a_norm.parents


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mirror-watcher",
        description=(
            "Move files from SOURCE to DESTINATION: copy, verify, "
            "then delete the original and prune emptied folders."
        ),
    )
    parser.add_argument("source", help="folder to watch and drain")
    parser.add_argument("destination", help="folder that receives the mirrored files")
    parser.add_argument("--config", type=Path, help="JSON config file (default: platform config dir)")
    parser.add_argument(
        "--verify", choices=(VERIFY_HASH, VERIFY_SIZE),
        help="verification policy for this run",
    )
    parser.add_argument("--settle", type=float, metavar="SECONDS", help="post-copy settle window")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--no-log-file", action="store_true", help="log to stderr only")
    parser.add_argument("--version", action="version", version=f"{__app_name__} {__version__}")
    return parser


def main(argv: list[str] | None = None) -> None:
    """Parse arguments, apply overrides and run the daemon."""
    parser = build_parser()
    args = parser.parse_args(argv)

    source = Path(os.path.abspath(args.source))
    destination = Path(os.path.abspath(args.destination))
    if not source.is_dir():
        parser.error(f"source folder does not exist: {source}")
    if _overlaps(source, destination):
        parser.error("source and destination must not contain one another")

    cfg = Config(args.config)
    if args.verify:
        cfg.verify_policy = args.verify
    if args.settle is not None:
        cfg.settle_delay = args.settle
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_log_file:
        cfg.log_to_file = False

    from mirror_sync.app import MirrorApp

    app = MirrorApp(source, destination, cfg)
    try:
        app.run()
    except FileNotFoundError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
