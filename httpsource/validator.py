"""Classification of executed connections into success or structured failure."""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, BinaryIO, Optional

from requests.structures import CaseInsensitiveDict

from .connection import TRANSPORT_ERRORS, Connection
from .dataspec import LENGTH_UNSET
from .errors import InvalidResponseCodeError

if TYPE_CHECKING:
    from .dataspec import DataSpec

LOGGER = logging.getLogger(__name__)

DEFAULT_MAX_ERROR_BODY_BYTES: int = 64 * 1024
READ_CHUNK_SIZE: int = 4096

CONTENT_RANGE_PATTERN = re.compile(r"^bytes (\d+)-(\d+)/(?:\d+|\*)$")


@dataclass(frozen=True)
class ResponseMetadata:
    """Status and headers of a successful (2xx) response."""

    response_code: int
    response_message: str
    headers: Mapping[str, str]
    content_length: int = LENGTH_UNSET


def is_success(response_code: int) -> bool:
    return 200 <= response_code <= 299


def read_bounded(stream: Optional[BinaryIO], limit: int) -> bytes:
    """Read ``stream`` until end of stream or ``limit`` bytes, whichever comes first.

    Nothing past ``limit`` is read, so memory use is bounded even for
    endless streams.
    """

    if stream is None or limit <= 0:
        return b""
    captured = bytearray()
    while len(captured) < limit:
        chunk = stream.read(min(READ_CHUNK_SIZE, limit - len(captured)))
        if not chunk:
            break
        captured.extend(chunk)
    return bytes(captured)


def capture_error_body(connection: Connection, limit: int = DEFAULT_MAX_ERROR_BODY_BYTES) -> bytes:
    """Return up to ``limit`` bytes of the connection's error stream."""

    try:
        return read_bounded(connection.error_stream(), limit)
    except TRANSPORT_ERRORS as exc:
        # The status code is the primary signal; a broken error body is not.
        LOGGER.warning("Unable to read error body from %s: %s", connection.url, exc)
        return b""


def get_content_length(headers: Mapping[str, str]) -> int:
    """Derive the payload length from ``Content-Length`` and ``Content-Range``.

    Returns ``LENGTH_UNSET`` when neither header gives a usable value. If the
    two disagree the larger one wins.
    """

    lookup = CaseInsensitiveDict(headers)
    content_length = LENGTH_UNSET
    length_header = lookup.get("Content-Length")
    if length_header:
        try:
            content_length = int(length_header)
        except ValueError:
            LOGGER.error("Unexpected Content-Length [%s]", length_header)
    range_header = lookup.get("Content-Range")
    if range_header:
        match = CONTENT_RANGE_PATTERN.match(range_header.strip())
        if match is None:
            LOGGER.error("Unexpected Content-Range [%s]", range_header)
        else:
            range_length = int(match.group(2)) - int(match.group(1)) + 1
            if content_length < 0:
                content_length = range_length
            elif content_length != range_length:
                LOGGER.warning(
                    "Inconsistent headers [%s] [%s]", length_header, range_header
                )
                content_length = max(content_length, range_length)
    return content_length


def validate_response(
    connection: Connection,
    data_spec: Optional["DataSpec"] = None,
    max_error_body_bytes: int = DEFAULT_MAX_ERROR_BODY_BYTES,
) -> ResponseMetadata:
    """Classify an executed connection.

    A 2xx status yields :class:`ResponseMetadata` and leaves the input stream
    untouched for the caller. Anything else raises
    :class:`InvalidResponseCodeError` with a bounded copy of the error body.
    The connection is never closed here.
    """

    response_code = connection.response_code()
    response_message = connection.response_message()
    headers = CaseInsensitiveDict(connection.response_headers())
    if is_success(response_code):
        return ResponseMetadata(
            response_code=response_code,
            response_message=response_message,
            headers=headers,
            content_length=get_content_length(headers),
        )

    body = capture_error_body(connection, max_error_body_bytes)
    LOGGER.warning(
        "Invalid response code %s (%s) from %s",
        response_code,
        response_message,
        connection.url,
        extra={
            "event": "http.invalid_response",
            "status": response_code,
            "body_bytes": len(body),
            "headers": dict(headers),
        },
    )
    raise InvalidResponseCodeError(response_code, response_message, headers, body, data_spec)


__all__ = [
    "DEFAULT_MAX_ERROR_BODY_BYTES",
    "ResponseMetadata",
    "capture_error_body",
    "get_content_length",
    "is_success",
    "read_bounded",
    "validate_response",
]
