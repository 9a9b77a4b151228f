"""
Tiny helper script to create the clipboard database before running the app.
Usage: python init_db.py [path] [--strict] [--mkdir] [-v]
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import Optional, Sequence

from database import DB_PATH, SchemaError, init_db


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Create the clipboard entries table")
    parser.add_argument("path", nargs="?", default=str(DB_PATH), help=f"Database file (default: {DB_PATH})")
    parser.add_argument("--strict", action="store_true",
                        help="Fail when the entries table already exists")
    parser.add_argument("--mkdir", action="store_true",
                        help="Create the parent directory if it is missing")
    parser.add_argument("--verbose", "-v", action="store_true")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    try:
        init_db(args.path, if_not_exists=not args.strict, create_parent=args.mkdir)
    except SchemaError as exc:
        print(exc, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
