"""HTTP data source: layered request headers, one connection per open.

Headers come from three layers, highest precedence last:

1. factory defaults (``HttpDataSourceFactory.default_request_properties``),
2. per-instance overrides (``HttpDataSource.set_request_property``),
3. per-request headers carried by the :class:`~httpsource.dataspec.DataSpec`.

Layers 1 and 2 are read when :meth:`HttpDataSource.open` runs, so changes
made between opens apply to the next fetch. A data source instance is meant
to be driven by one thread at a time; its property store is internally
locked so a concurrent mutation can never corrupt it, but a mutation racing
an open may or may not be seen by that open.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import BinaryIO, Optional, Type

from .config import DEFAULT_USER_AGENT, HttpSourceSettings
from .connection import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_READ_TIMEOUT,
    TRANSPORT_ERRORS,
    Connection,
    ConnectionFactory,
    RedirectPolicy,
    RequestsConnectionFactory,
    open_connection,
)
from .dataspec import FLAG_ALLOW_GZIP, LENGTH_UNSET, DataSpec
from .errors import (
    KIND_CLOSE,
    KIND_OPEN,
    KIND_READ,
    HttpDataSourceError,
    InvalidContentTypeError,
    InvalidResponseCodeError,
)
from .metrics import record_open_completed, record_open_failed, record_open_started
from .properties import RequestProperties, resolve_request_headers
from .validator import DEFAULT_MAX_ERROR_BODY_BYTES, validate_response

LOGGER = logging.getLogger(__name__)

END_OF_INPUT: int = -1
SKIP_BUFFER_SIZE: int = 4096

ContentTypePredicate = Callable[[Optional[str]], bool]


def _failure_reason(exc: HttpDataSourceError) -> str:
    if isinstance(exc, InvalidResponseCodeError):
        return "invalid_response"
    if isinstance(exc, InvalidContentTypeError):
        return "invalid_content_type"
    return "transport"


def build_range_header(position: int, length: int) -> Optional[str]:
    """Return the ``Range`` header value for a byte range, or ``None`` for the whole resource."""

    if position == 0 and length == LENGTH_UNSET:
        return None
    value = f"bytes={position}-"
    if length != LENGTH_UNSET:
        value += str(position + length - 1)
    return value


class HttpDataSource:
    """Reads one resource at a time over HTTP.

    ``open`` resolves headers, opens and validates the connection; ``read``
    streams the payload; ``close`` releases the connection and may be called
    any number of times. Use as a context manager to guarantee release.
    """

    def __init__(
        self,
        *,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        connection_factory: Optional[ConnectionFactory] = None,
        default_request_properties: Optional[RequestProperties] = None,
        redirect_policy: Optional[RedirectPolicy] = None,
        content_type_predicate: Optional[ContentTypePredicate] = None,
        max_error_body_bytes: int = DEFAULT_MAX_ERROR_BODY_BYTES,
    ) -> None:
        self.user_agent = user_agent
        self._connection_factory = connection_factory or RequestsConnectionFactory()
        self._default_request_properties = default_request_properties
        self._request_properties = RequestProperties()
        self._redirect_policy = redirect_policy or RedirectPolicy()
        self._content_type_predicate = content_type_predicate
        self._max_error_body_bytes = max_error_body_bytes

        self._data_spec: Optional[DataSpec] = None
        self._connection: Optional[Connection] = None
        self._input_stream: Optional[BinaryIO] = None
        self._response_code: int = -1
        self._response_headers: Mapping[str, str] = {}
        self._bytes_to_skip = 0
        self._bytes_to_read = LENGTH_UNSET
        self._bytes_skipped = 0
        self._bytes_read = 0

    # -- request properties (layer 2) ------------------------------------

    def set_request_property(self, name: str, value: str) -> None:
        self._request_properties.set(name, value)

    def clear_request_property(self, name: str) -> None:
        self._request_properties.remove(name)

    def clear_all_request_properties(self) -> None:
        self._request_properties.clear()

    @property
    def request_properties(self) -> RequestProperties:
        return self._request_properties

    # -- response metadata -----------------------------------------------

    @property
    def uri(self) -> Optional[str]:
        """URI of the open connection, after any redirects."""

        if self._connection is None:
            return None
        return self._connection.url

    @property
    def response_code(self) -> int:
        """Status code of the last successful open, or -1."""

        return self._response_code

    @property
    def response_headers(self) -> Mapping[str, str]:
        return self._response_headers

    # -- lifecycle -------------------------------------------------------

    def _request_headers(self, data_spec: DataSpec) -> Mapping[str, str]:
        headers = dict(
            resolve_request_headers(
                self._default_request_properties,
                self._request_properties,
                data_spec.http_request_headers,
            )
        )
        range_header = build_range_header(data_spec.position, data_spec.length)
        if range_header is not None:
            headers["Range"] = range_header
        if self.user_agent and not any(name.lower() == "user-agent" for name in headers):
            headers["User-Agent"] = self.user_agent
        if not data_spec.is_flag_set(FLAG_ALLOW_GZIP):
            headers["Accept-Encoding"] = "identity"
        return headers

    def open(self, data_spec: DataSpec) -> int:
        """Open ``data_spec`` and return the number of bytes that can be read.

        Returns ``LENGTH_UNSET`` when the length is unknown. Raises
        :class:`HttpDataSourceError` (or a subclass) on failure, in which case
        no connection is left open.
        """

        if self._connection is not None:
            raise RuntimeError("HttpDataSource is already open; close it first")
        self._data_spec = data_spec
        self._bytes_read = 0
        self._bytes_skipped = 0
        self._response_code = -1
        self._response_headers = {}
        record_open_started(data_spec.uri)
        started = time.perf_counter()

        headers = self._request_headers(data_spec)
        LOGGER.debug(
            "Opening %s %s",
            data_spec.http_method,
            data_spec.uri,
            extra={"event": "http.open", "uri": data_spec.uri, "headers": headers},
        )
        try:
            self._connection = open_connection(
                self._connection_factory,
                data_spec.uri,
                data_spec.http_method,
                headers,
                data_spec.http_body,
                self._redirect_policy,
            )
        except HttpDataSourceError as exc:
            exc.data_spec = data_spec
            record_open_failed(data_spec.uri, "policy")
            raise
        except TRANSPORT_ERRORS as exc:
            record_open_failed(data_spec.uri, "transport")
            raise HttpDataSourceError(
                f"Unable to connect to {data_spec.uri}", data_spec, KIND_OPEN
            ) from exc
        except BaseException:
            record_open_failed(data_spec.uri, "error")
            raise

        try:
            bytes_to_read = self._validate_and_prepare(data_spec)
        except HttpDataSourceError as exc:
            self._close_connection()
            record_open_failed(data_spec.uri, _failure_reason(exc))
            raise
        except TRANSPORT_ERRORS as exc:
            self._close_connection()
            record_open_failed(data_spec.uri, "transport")
            raise HttpDataSourceError(
                f"Unable to connect to {data_spec.uri}", data_spec, KIND_OPEN
            ) from exc
        except BaseException:
            self._close_connection()
            record_open_failed(data_spec.uri, "error")
            raise

        record_open_completed(
            data_spec.uri, time.perf_counter() - started, self._response_code
        )
        return bytes_to_read

    def _validate_and_prepare(self, data_spec: DataSpec) -> int:
        assert self._connection is not None
        metadata = validate_response(
            self._connection, data_spec, self._max_error_body_bytes
        )
        self._response_code = metadata.response_code
        self._response_headers = metadata.headers

        if self._content_type_predicate is not None:
            content_type = metadata.headers.get("Content-Type")
            if not self._content_type_predicate(content_type):
                raise InvalidContentTypeError(content_type, data_spec)

        # A 200 to a ranged request means the server ignored the range.
        self._bytes_to_skip = (
            data_spec.position if metadata.response_code == 200 and data_spec.position != 0 else 0
        )

        gzipped = metadata.headers.get("Content-Encoding", "").lower() == "gzip"
        if gzipped or data_spec.length != LENGTH_UNSET:
            self._bytes_to_read = data_spec.length
        elif metadata.content_length != LENGTH_UNSET:
            self._bytes_to_read = metadata.content_length - self._bytes_to_skip
        else:
            self._bytes_to_read = LENGTH_UNSET

        self._input_stream = self._connection.input_stream()
        if self._bytes_to_skip:
            self._skip_internal()
        return self._bytes_to_read

    def _skip_internal(self) -> None:
        assert self._input_stream is not None
        while self._bytes_skipped < self._bytes_to_skip:
            chunk = self._input_stream.read(
                min(SKIP_BUFFER_SIZE, self._bytes_to_skip - self._bytes_skipped)
            )
            if not chunk:
                raise HttpDataSourceError(
                    "Stream ended while skipping to the requested position",
                    self._data_spec,
                    KIND_OPEN,
                )
            self._bytes_skipped += len(chunk)

    def read(self, buffer: bytearray | memoryview, offset: int = 0, length: Optional[int] = None) -> int:
        """Copy up to ``length`` payload bytes into ``buffer`` at ``offset``.

        Returns the number of bytes copied, or ``END_OF_INPUT`` once the
        payload is exhausted.
        """

        if self._input_stream is None:
            raise RuntimeError("HttpDataSource is not open")
        if offset < 0 or offset > len(buffer):
            raise ValueError(f"offset {offset} is outside a buffer of {len(buffer)} bytes")
        if length is None:
            length = len(buffer) - offset
        elif length < 0 or offset + length > len(buffer):
            raise ValueError(
                f"length {length} at offset {offset} exceeds a buffer of {len(buffer)} bytes"
            )
        if length == 0:
            return 0
        if self._bytes_to_read != LENGTH_UNSET:
            remaining = self._bytes_to_read - self._bytes_read
            if remaining == 0:
                return END_OF_INPUT
            length = min(length, remaining)

        try:
            chunk = self._input_stream.read(length)
        except TRANSPORT_ERRORS as exc:
            raise HttpDataSourceError(
                f"Error reading from {self._data_spec.uri if self._data_spec else 'connection'}",
                self._data_spec,
                KIND_READ,
            ) from exc

        if not chunk:
            if self._bytes_to_read != LENGTH_UNSET:
                raise HttpDataSourceError(
                    f"Stream ended after {self._bytes_read} of {self._bytes_to_read} bytes",
                    self._data_spec,
                    KIND_READ,
                )
            return END_OF_INPUT

        buffer[offset : offset + len(chunk)] = chunk
        self._bytes_read += len(chunk)
        return len(chunk)

    @property
    def bytes_read(self) -> int:
        return self._bytes_read

    @property
    def bytes_remaining(self) -> int:
        if self._bytes_to_read == LENGTH_UNSET:
            return LENGTH_UNSET
        return self._bytes_to_read - self._bytes_read

    def _close_connection(self) -> None:
        connection = self._connection
        self._connection = None
        self._input_stream = None
        if connection is not None:
            connection.close()

    def close(self) -> None:
        """Release the connection. Safe to call repeatedly or after a failed open."""

        stream = self._input_stream
        try:
            if stream is not None:
                try:
                    stream.close()
                except TRANSPORT_ERRORS as exc:
                    raise HttpDataSourceError(
                        "Error closing the payload stream", self._data_spec, KIND_CLOSE
                    ) from exc
        finally:
            self._close_connection()
            self._data_spec = None

    def __enter__(self) -> "HttpDataSource":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        traceback: Optional[TracebackType],
    ) -> None:
        self.close()


class HttpDataSourceFactory:
    """Build :class:`HttpDataSource` instances sharing defaults and a transport.

    ``default_request_properties`` is the bottom header layer for every data
    source this factory creates; mutating it affects all of them from their
    next open onwards.
    """

    def __init__(
        self,
        *,
        user_agent: Optional[str] = DEFAULT_USER_AGENT,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        allow_cross_protocol_redirects: bool = False,
        max_redirects: Optional[int] = None,
        default_request_properties: Optional[RequestProperties] = None,
        connection_factory: Optional[ConnectionFactory] = None,
        content_type_predicate: Optional[ContentTypePredicate] = None,
        max_error_body_bytes: int = DEFAULT_MAX_ERROR_BODY_BYTES,
    ) -> None:
        self.user_agent = user_agent
        self.default_request_properties = default_request_properties or RequestProperties()
        self.connection_factory = connection_factory or RequestsConnectionFactory(
            connect_timeout=connect_timeout, read_timeout=read_timeout
        )
        if max_redirects is None:
            self.redirect_policy = RedirectPolicy(allow_cross_protocol_redirects)
        else:
            self.redirect_policy = RedirectPolicy(allow_cross_protocol_redirects, max_redirects)
        self.content_type_predicate = content_type_predicate
        self.max_error_body_bytes = max_error_body_bytes

    @classmethod
    def from_settings(
        cls,
        settings: HttpSourceSettings,
        *,
        default_request_properties: Optional[RequestProperties] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> "HttpDataSourceFactory":
        return cls(
            user_agent=settings.user_agent,
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            allow_cross_protocol_redirects=settings.allow_cross_protocol_redirects,
            max_redirects=settings.max_redirects,
            default_request_properties=default_request_properties,
            connection_factory=connection_factory,
            max_error_body_bytes=settings.max_error_body_bytes,
        )

    def configure_defaults(self, properties: Mapping[str, str]) -> None:
        """Replace the shared default header layer."""

        self.default_request_properties.clear_and_set(properties)

    def create_data_source(self) -> HttpDataSource:
        return HttpDataSource(
            user_agent=self.user_agent,
            connection_factory=self.connection_factory,
            default_request_properties=self.default_request_properties,
            redirect_policy=self.redirect_policy,
            content_type_predicate=self.content_type_predicate,
            max_error_body_bytes=self.max_error_body_bytes,
        )


__all__ = [
    "END_OF_INPUT",
    "HttpDataSource",
    "HttpDataSourceFactory",
    "build_range_header",
]
