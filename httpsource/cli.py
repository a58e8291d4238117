"""Command-line interface for httpsource."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import BinaryIO, Iterable, Optional

from . import __version__
from .config import HttpSourceSettings, load_environment
from .connection import RedirectPolicy
from .dataspec import FLAG_ALLOW_GZIP, HTTP_METHODS, LENGTH_UNSET, DataSpec
from .datasource import END_OF_INPUT, HttpDataSourceFactory
from .errors import HttpDataSourceError, InvalidResponseCodeError
from .logging_utils import configure_logging
from .properties import RequestProperties

READ_BUFFER_SIZE = 64 * 1024
BODY_SNIPPET_BYTES = 200


def _header(value: str) -> tuple[str, str]:
    name, sep, header_value = value.partition(":")
    if not sep or not name.strip():
        raise argparse.ArgumentTypeError("Headers must look like NAME:VALUE")
    return name.strip(), header_value.strip()


def _non_negative(value: str) -> int:
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("Value must not be negative")
    return number


def _positive(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError("Value must be positive")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="httpsource",
        description="Fetch a resource or byte range over HTTP with layered request headers.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("url", help="Resource to fetch")
    parser.add_argument(
        "--header",
        action="append",
        type=_header,
        default=[],
        metavar="NAME:VALUE",
        help="Per-request header (highest precedence); repeatable",
    )
    parser.add_argument(
        "--default-header",
        action="append",
        type=_header,
        default=[],
        metavar="NAME:VALUE",
        help="Default header (lowest precedence); repeatable",
    )
    parser.add_argument("--method", choices=sorted(HTTP_METHODS), default="GET", help="HTTP method")
    parser.add_argument("--data", help="Request body; prefix with @ to read it from a file")
    parser.add_argument("--position", type=_non_negative, default=0, help="First byte to fetch")
    parser.add_argument("--length", type=_positive, help="Number of bytes to fetch")
    parser.add_argument("--allow-gzip", action="store_true", help="Accept gzip-encoded responses")
    parser.add_argument(
        "--allow-cross-protocol-redirects",
        action="store_true",
        default=None,
        help="Follow redirects between http and https",
    )
    parser.add_argument("--user-agent", help="User-Agent sent when no layer supplies one")
    parser.add_argument("--output", type=Path, help="Write the payload here instead of stdout")
    parser.add_argument("--log-json", action="store_true", help="Emit structured JSON logs to the log file")
    parser.add_argument("--log-file", type=Path, help="Write logs to the specified path")

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", action="store_true", help="Enable debug logging")
    verbosity.add_argument("--quiet", action="store_true", help="Reduce logging output")
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    return build_parser().parse_args(argv)


def configure_cli_logging(args: argparse.Namespace) -> None:
    level = logging.INFO
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    configure_logging(level=level, json_logs=args.log_json, logfile=args.log_file)


def _request_body(data: Optional[str]) -> Optional[bytes]:
    if data is None:
        return None
    if data.startswith("@"):
        return Path(data[1:]).read_bytes()
    return data.encode("utf-8")


def build_factory(args: argparse.Namespace, settings: HttpSourceSettings) -> HttpDataSourceFactory:
    factory = HttpDataSourceFactory.from_settings(
        settings,
        default_request_properties=RequestProperties(dict(args.default_header)),
    )
    if args.user_agent:
        factory.user_agent = args.user_agent
    if args.allow_cross_protocol_redirects is not None:
        factory.redirect_policy = RedirectPolicy(
            allow_cross_protocol_redirects=args.allow_cross_protocol_redirects,
            max_redirects=factory.redirect_policy.max_redirects,
        )
    return factory


def build_data_spec(args: argparse.Namespace) -> DataSpec:
    return DataSpec(
        uri=args.url,
        http_method=args.method,
        http_body=_request_body(args.data),
        position=args.position,
        length=args.length if args.length is not None else LENGTH_UNSET,
        flags=FLAG_ALLOW_GZIP if args.allow_gzip else 0,
        http_request_headers=dict(args.header),
    )


def _copy_payload(factory: HttpDataSourceFactory, data_spec: DataSpec, sink: BinaryIO) -> int:
    buffer = bytearray(READ_BUFFER_SIZE)
    total = 0
    with factory.create_data_source() as source:
        source.open(data_spec)
        while True:
            count = source.read(buffer)
            if count == END_OF_INPUT:
                break
            sink.write(buffer[:count])
            total += count
    return total


def main(argv: Optional[Iterable[str]] = None) -> int:
    load_environment()
    args = parse_args(argv)

    configure_cli_logging(args)
    logger = logging.getLogger("httpsource.cli")

    try:
        settings = HttpSourceSettings.from_env()
        factory = build_factory(args, settings)
        data_spec = build_data_spec(args)
    except (ValueError, OSError) as exc:
        logger.error("Invalid configuration: %s", exc)
        return 1

    try:
        if args.output:
            args.output.parent.mkdir(parents=True, exist_ok=True)
            with args.output.open("wb") as sink:
                total = _copy_payload(factory, data_spec, sink)
        else:
            total = _copy_payload(factory, data_spec, sys.stdout.buffer)
            sys.stdout.buffer.flush()
    except InvalidResponseCodeError as exc:
        snippet = exc.response_body[:BODY_SNIPPET_BYTES].decode("utf-8", errors="replace")
        logger.error(
            "Server responded %s %s: %s",
            exc.response_code,
            exc.response_message,
            snippet or "<empty body>",
        )
        return 1
    except HttpDataSourceError as exc:
        logger.error("Failed to fetch %s: %s", args.url, exc)
        return 1

    logger.info("Fetched %s bytes from %s", total, args.url)
    return 0


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    sys.exit(main())
