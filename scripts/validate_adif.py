#!/usr/bin/env python3
"""
Check an ADIF file offline without touching the database.

Prints the header, per-record errors and warnings, and a summary line.
Exits with status 1 if any record would be rejected on import.

Usage:
    python -m scripts.validate_adif mylog.adi
    python -m scripts.validate_adif mylog.adi --strict
"""

import logging
import sys
import os

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from adif_import import ImportAborted, validate_adif
from adif_tokenizer import parse_header

logging.basicConfig(
    level=logging.WARNING,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


def main(argv):
    """Validate the file named in argv and return the exit status."""
    if len(argv) < 2:
        print("Usage: validate_adif.py FILE [--strict]")
        return 2

    path = argv[1]
    strict = "--strict" in argv[2:]

    with open(path, "rb") as f:
        content = f.read()

    header = parse_header(content)
    if header:
        print(f"Header: {header.text or '-'}")
        for name, value in sorted(header.fields.items()):
            print(f"  {name:<18} {value}")

    try:
        result = validate_adif(content, strict=strict)
    except ImportAborted as e:
        result = e.result
        print(f"Aborted: {e}")

    for error in result.errors:
        print(f"ERROR   {error}")
    for warning in result.warnings:
        print(f"WARNING {warning}")

    print(f"{result.total_records} records, {result.imported_records} valid, "
          f"{result.failed_records} invalid")
    return 0 if result.is_valid else 1


if __name__ == "__main__":
    sys.exit(main(sys.argv))
