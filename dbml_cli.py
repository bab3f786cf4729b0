"""CLI tool to parse DBML files and convert them to JSON."""

import argparse
import json
import logging
import os
import sys
from typing import List, Optional

from dbml_conversion import document_to_json_dict, document_to_simple_json_dict
from dbml_parser import ParseError, ParseOptions, parse_dbml


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Parse DBML and convert to JSON formats.")
    parser.add_argument("path", help="Path to a .dbml schema file")
    parser.add_argument(
        "--json",
        dest="emit_json",
        action="store_true",
        help="Emit full JSON (<name>.json)",
    )
    parser.add_argument(
        "--simple",
        dest="emit_simple",
        action="store_true",
        help="Emit simplified JSON (<name>_simple.json)",
    )
    parser.add_argument(
        "--stdout",
        action="store_true",
        help="Print the selected form to stdout instead of writing files (full JSON unless --simple).",
    )
    parser.add_argument(
        "--partial-settings",
        choices=["table", "partial"],
        default="table",
        help="Which side wins when a table partial and its table define the same setting (default: table).",
    )
    parser.add_argument(
        "--diagnostics",
        action="store_true",
        help="Record skipped constructs and unresolved references in the output.",
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Fail on the first malformed construct instead of skipping it.",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log parser details to stderr.")
    return parser


def _write_json(data: dict, path: str) -> None:
    with open(path, "w", encoding="utf-8") as fw:
        json.dump(data, fw, indent=4)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    path = args.path
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise SystemExit(f"Error reading DBML file: {e}")

    options = ParseOptions(
        partial_settings=args.partial_settings,
        collect_diagnostics=args.diagnostics,
        strict=args.strict,
    )
    try:
        document = parse_dbml(content, options=options)
    except ParseError as e:
        raise SystemExit(f"Error parsing DBML file: {e}")

    if args.stdout:
        if args.emit_simple:
            as_dict = document_to_simple_json_dict(document)
        else:
            as_dict = document_to_json_dict(document)
        json.dump(as_dict, sys.stdout, indent=4)
        sys.stdout.write("\n")
        return 0

    # if no output flags are provided, emit json + simplified json by default
    any_flag = args.emit_json or args.emit_simple
    emit_json = args.emit_json or not any_flag
    emit_simple = args.emit_simple or not any_flag

    base, _ = os.path.splitext(path)
    if emit_json:
        _write_json(document_to_json_dict(document), base + ".json")
    if emit_simple:
        _write_json(document_to_simple_json_dict(document), base + "_simple.json")
    return 0


if __name__ == "__main__":
    sys.exit(main())
