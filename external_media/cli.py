"""Command-line entry point for validating remote image URLs."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
import time
from pathlib import Path
from typing import List, Sequence

from .batch import process_batch
from .config import (
    DEFAULT_ALLOWED_MIME_TYPES,
    DEFAULT_BLOCKED_HOSTS,
    DEFAULT_MAX_BYTES,
    DEFAULT_MAX_CONCURRENCY,
    DEFAULT_PROBE_BYTES,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_USER_AGENT,
    AdmissionPolicy,
    ProbePolicy,
)
from .utils import split_urls

logger = logging.getLogger("external_media.cli")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Check that remote URLs point to well-formed, size-bounded images and "
            "print their dimensions and MIME type as JSON."
        ),
    )
    parser.add_argument("urls", nargs="*", help="One or more image URLs to validate")
    parser.add_argument(
        "--input",
        type=Path,
        default=None,
        help="Read newline-separated URLs from this file ('-' for STDIN)",
    )
    parser.add_argument(
        "--allowed-type",
        action="append",
        dest="allowed_types",
        default=None,
        help="MIME type to accept (repeatable; default: jpeg, png, gif, webp)",
    )
    parser.add_argument(
        "--max-bytes",
        type=int,
        default=DEFAULT_MAX_BYTES,
        help="Reject images whose declared size exceeds this many bytes",
    )
    parser.add_argument(
        "--probe-bytes",
        type=int,
        default=DEFAULT_PROBE_BYTES,
        help="Read at most this many body bytes when identifying an image",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=DEFAULT_TIMEOUT_SECONDS,
        help="Per-URL network timeout in seconds",
    )
    parser.add_argument(
        "--block-host",
        action="append",
        dest="blocked_hosts",
        default=[],
        help="Additional host to refuse (repeatable)",
    )
    parser.add_argument(
        "--allow-private",
        action="store_true",
        help="Do not block private, loopback, or link-local IP literals",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=DEFAULT_MAX_CONCURRENCY,
        help="Maximum number of URLs probed concurrently",
    )
    parser.add_argument(
        "--user-agent",
        default=DEFAULT_USER_AGENT,
        help="User-Agent header sent with each probe",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    args = parser.parse_args(argv)
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    if args.max_bytes < 1 or args.probe_bytes < 1 or args.timeout <= 0:
        parser.error("--max-bytes, --probe-bytes and --timeout must be positive")
    return args


def collect_urls(args: argparse.Namespace) -> List[str]:
    """Merge positional URLs with the optional input file, trimmed and deduplicated."""
    lines = list(args.urls)
    if args.input is not None:
        if str(args.input) == "-":
            lines.extend(sys.stdin.read().splitlines())
        else:
            lines.extend(args.input.read_text(encoding="utf-8").splitlines())
    return split_urls("\n".join(lines))


def build_policies(args: argparse.Namespace) -> tuple[AdmissionPolicy, ProbePolicy]:
    admission = AdmissionPolicy(
        blocked_hosts=DEFAULT_BLOCKED_HOSTS | frozenset(args.blocked_hosts),
        block_private_addresses=not args.allow_private,
    )
    probe = ProbePolicy(
        allowed_mime_types=frozenset(args.allowed_types or DEFAULT_ALLOWED_MIME_TYPES),
        max_bytes=args.max_bytes,
        timeout_seconds=args.timeout,
        user_agent=args.user_agent,
        probe_bytes=args.probe_bytes,
    )
    return admission, probe


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )

    urls = collect_urls(args)
    if not urls:
        logger.error("No valid URLs provided.")
        sys.exit(2)

    admission, probe = build_policies(args)
    overall_start = time.perf_counter()
    result = asyncio.run(
        process_batch(urls, admission, probe, max_concurrency=args.workers)
    )
    logger.debug(
        "Validated %d URLs in %.2fs (%d accepted, %d rejected)",
        len(urls),
        time.perf_counter() - overall_start,
        len(result.successful),
        len(result.failed),
    )

    sys.stdout.write(json.dumps(result.to_dict(), indent=2) + "\n")
    sys.stdout.flush()
    if result.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
