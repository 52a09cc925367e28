#!/usr/bin/env python3
"""CLI for batch ISBN lookups.

Resolves title / author / publisher / year for a list of ISBNs through the
National Library seoji API and writes one report row per input line.

Usage:
    isbn-lookup isbns.txt -o report.json
    isbn-lookup a.txt b.txt --format csv --display-keys -o report.csv
    cat isbns.txt | isbn-lookup - --format jsonl --concurrency 4
    isbn-lookup isbns.txt --config lookup.yaml --verbose

Environment:
    NLD_CERT_KEY              API credential (required)
    ISBN_LOOKUP_CONCURRENCY   default worker budget (1-15)
    ISBN_LOOKUP_CACHE         cache file path
"""

from __future__ import annotations

import argparse
import csv
import json
import logging
import sys
from dataclasses import replace
from typing import IO, Any

from isbn_lookup.batch import BatchResult, resolve_batch_sync
from isbn_lookup.config import ConfigurationError, Settings, load_config_file
from isbn_lookup.resolver import DISPLAY_KEYS, Status


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="isbn-lookup",
        description="Look up book metadata for a list of ISBNs (one per line).",
    )
    p.add_argument("inputs", nargs="+", help="Input files with one ISBN per line ('-' for stdin)")
    p.add_argument("-o", "--output", help="Write the report to FILE instead of stdout")
    p.add_argument(
        "--format",
        choices=["json", "jsonl", "csv"],
        default="json",
        help="Report format: JSON envelope (default), one JSON row per line, or CSV",
    )
    p.add_argument("--display-keys", action="store_true", help="Use the spreadsheet's Korean column labels")
    p.add_argument("--concurrency", type=int, help="Concurrent upstream lookups (1-15, default 8)")
    p.add_argument("--config", dest="config_file", help="YAML config file")
    p.add_argument("--cert-key", help="API credential (overrides NLD_CERT_KEY)")

    cache = p.add_argument_group("cache", "Persistent lookup cache")
    cache.add_argument("--cache", dest="cache_path", help="Cache file (default: .cache.isbn_lookup.json)")
    cache.add_argument("--no-cache", action="store_true", help="Keep the cache in memory for this run only")
    cache.add_argument("--cache-ttl", type=int, dest="cache_ttl_days", help="Days to keep cached results (default 30)")

    http = p.add_argument_group("upstream", "Upstream request policy")
    http.add_argument("--timeout", type=float, help="Per-attempt timeout in seconds (default 3.5)")
    http.add_argument("--retries", type=int, help="Retries after the first attempt (default 2)")

    p.add_argument("--verbose", action="store_true", help="Verbose logging")
    return p


def init_logging(verbose: bool) -> logging.Logger:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s: %(message)s")
    # Keep per-request httpx chatter out of normal runs
    logging.getLogger("httpx").setLevel(logging.DEBUG if verbose else logging.WARNING)
    return logging.getLogger("isbn_lookup")


def read_identifiers(paths: list[str], stdin: IO[str] | None = None) -> list[str]:
    """Read identifiers from files, skipping blank lines and '#' comments."""
    identifiers: list[str] = []
    for path in paths:
        if path == "-":
            lines = (stdin or sys.stdin).read().splitlines()
        else:
            with open(path, encoding="utf-8-sig") as f:
                lines = f.read().splitlines()
        for line in lines:
            line = line.strip()
            if line and not line.startswith("#"):
                identifiers.append(line)
    return identifiers


def build_settings(args: argparse.Namespace) -> Settings:
    """Defaults < environment < YAML config file < command line flags."""
    file_config: dict[str, Any] = load_config_file(args.config_file) if args.config_file else {}
    settings = Settings.from_env().merged(
        file_config,
        cert_key=args.cert_key,
        default_concurrency=args.concurrency,
        cache_path=args.cache_path,
        cache_ttl_days=args.cache_ttl_days,
        timeout=args.timeout,
        retries=args.retries,
    )
    if args.no_cache:
        settings = replace(settings, cache_path=None)
    return settings


def write_report(result: BatchResult, fmt: str, fh: IO[str], display_keys: bool = False) -> None:
    rows = [row.to_display_dict() if display_keys else row.to_dict() for row in result.rows]
    if fmt == "json":
        envelope = result.to_envelope(display_keys=display_keys)
        json.dump(envelope, fh, ensure_ascii=False, indent=2)
        fh.write("\n")
    elif fmt == "jsonl":
        for row in rows:
            fh.write(json.dumps(row, ensure_ascii=False) + "\n")
    else:
        fieldnames = list(DISPLAY_KEYS.values()) if display_keys else list(DISPLAY_KEYS.keys())
        writer = csv.DictWriter(fh, fieldnames=fieldnames)
        writer.writeheader()
        writer.writerows(rows)


def summarize(result: BatchResult, logger: logging.Logger) -> None:
    s = result.summary
    logger.info(
        "Summary: total=%d, success=%d, not_found=%d, failed=%d, invalid=%d",
        s.total,
        s.success,
        s.not_found,
        s.failed,
        s.invalid,
    )
    for row in result.rows:
        if row.status is Status.FAILED:
            logger.debug("  %s: %s", row.isbn, row.note)


def main(argv: list[str] | None = None) -> int:
    """Entry point for the isbn-lookup command.

    Returns:
        Exit code: 0=success, 1=configuration or input error, 2=some lookups failed.
    """
    args = build_arg_parser().parse_args(argv)
    logger = init_logging(args.verbose)

    try:
        settings = build_settings(args)
        settings.require_cert_key()
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    try:
        identifiers = read_identifiers(args.inputs)
    except OSError as e:
        logger.error("Failed to read inputs: %s", e)
        return 1
    if len(identifiers) > settings.max_batch_size:
        logger.warning("Only the first %d of %d identifiers will be looked up", settings.max_batch_size, len(identifiers))

    try:
        result = resolve_batch_sync(identifiers, settings.default_concurrency, settings=settings)
    except ConfigurationError as e:
        logger.error("%s", e)
        return 1

    if args.output:
        newline = "" if args.format == "csv" else None
        with open(args.output, "w", encoding="utf-8", newline=newline) as fh:
            write_report(result, args.format, fh, display_keys=args.display_keys)
        logger.info("Wrote %d rows to %s", len(result.rows), args.output)
    else:
        write_report(result, args.format, sys.stdout, display_keys=args.display_keys)

    summarize(result, logger)
    return 2 if result.has_failures else 0


if __name__ == "__main__":
    sys.exit(main())
