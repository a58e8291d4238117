"""Connection capability and the opener that drives it.

The opener only relies on the :class:`Connection` protocol, so tests and
alternative transports can supply any object with the same methods. The
default transport is :class:`RequestsConnection`, backed by ``requests``.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import BinaryIO, Optional, Protocol, runtime_checkable
from urllib.parse import urljoin, urlparse

import requests
import urllib3
from requests.structures import CaseInsensitiveDict

from .dataspec import HTTP_METHOD_GET, HTTP_METHOD_POST
from .errors import CrossProtocolRedirectError, TooManyRedirectsError, UnsupportedRedirectError

LOGGER = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT: float = 8.0
DEFAULT_READ_TIMEOUT: float = 8.0
DEFAULT_MAX_REDIRECTS: int = 20

REDIRECT_CODES: frozenset[int] = frozenset({300, 301, 302, 303, 307, 308})
# Redirects that turn a POST into a bodiless GET.
METHOD_CHANGING_REDIRECT_CODES: frozenset[int] = frozenset({300, 301, 302, 303})
SUPPORTED_SCHEMES: frozenset[str] = frozenset({"http", "https"})

# Failures raised by the transport while executing or streaming.
TRANSPORT_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    requests.exceptions.RequestException,
    urllib3.exceptions.HTTPError,
)


@runtime_checkable
class Connection(Protocol):
    """One HTTP exchange.

    Headers and the request body may only be supplied before ``execute``.
    Reading the status or any stream executes the exchange implicitly.
    ``close`` must be idempotent.
    """

    url: str

    def set_header(self, name: str, value: str) -> None: ...

    def output_stream(self) -> BinaryIO: ...

    def execute(self) -> None: ...

    def response_code(self) -> int: ...

    def response_message(self) -> str: ...

    def response_headers(self) -> Mapping[str, str]: ...

    def input_stream(self) -> BinaryIO: ...

    def error_stream(self) -> Optional[BinaryIO]: ...

    def using_proxy(self) -> bool: ...

    def close(self) -> None: ...


ConnectionFactory = Callable[[str, str], Connection]


def create_http_session() -> requests.Session:
    """Construct a ``requests`` session that sends no headers of its own."""

    session = requests.Session()
    # Every header on the wire must come from the resolved layers.
    session.headers.clear()
    return session


class RequestsConnection:
    """:class:`Connection` implementation on top of a ``requests`` session."""

    def __init__(
        self,
        session: requests.Session,
        url: str,
        method: str,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ) -> None:
        self.url = url
        self.method = method
        self._session = session
        self._timeout = (connect_timeout, read_timeout)
        self._headers: dict[str, str] = {}
        self._body: Optional[io.BytesIO] = None
        self._response: Optional[requests.Response] = None
        self._closed = False

    def _ensure_configurable(self) -> None:
        if self._closed:
            raise RuntimeError("Connection is closed")
        if self._response is not None:
            raise RuntimeError("Connection already executed")

    def set_header(self, name: str, value: str) -> None:
        self._ensure_configurable()
        self._headers[name] = value

    def output_stream(self) -> BinaryIO:
        self._ensure_configurable()
        if self._body is None:
            self._body = io.BytesIO()
        return self._body

    def execute(self) -> None:
        if self._response is not None:
            return
        if self._closed:
            raise RuntimeError("Connection is closed")
        data = self._body.getvalue() if self._body is not None else None
        LOGGER.debug(
            "Executing %s %s",
            self.method,
            self.url,
            extra={"event": "http.execute", "headers": dict(self._headers)},
        )
        self._response = self._session.request(
            self.method,
            self.url,
            headers=self._headers,
            data=data,
            stream=True,
            allow_redirects=False,
            timeout=self._timeout,
        )

    def _executed(self) -> requests.Response:
        self.execute()
        assert self._response is not None
        return self._response

    def response_code(self) -> int:
        return self._executed().status_code

    def response_message(self) -> str:
        return self._executed().reason or ""

    def response_headers(self) -> Mapping[str, str]:
        return self._executed().headers

    def input_stream(self) -> BinaryIO:
        raw = self._executed().raw
        # Content-Encoding (gzip when allowed) is undone transparently.
        raw.decode_content = True
        return raw

    def error_stream(self) -> Optional[BinaryIO]:
        response = self._executed()
        if 200 <= response.status_code <= 299:
            return None
        return response.raw

    def using_proxy(self) -> bool:
        if self._session.proxies:
            return True
        return bool(requests.utils.get_environ_proxies(self.url))

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._response is not None:
            self._response.close()


class RequestsConnectionFactory:
    """Create :class:`RequestsConnection` objects sharing one session."""

    def __init__(
        self,
        session: Optional[requests.Session] = None,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ) -> None:
        self.session = session or create_http_session()
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout

    def __call__(self, url: str, method: str) -> RequestsConnection:
        return RequestsConnection(
            self.session,
            url,
            method,
            connect_timeout=self.connect_timeout,
            read_timeout=self.read_timeout,
        )


@dataclass(frozen=True)
class RedirectPolicy:
    """Rules applied to every redirect hop."""

    allow_cross_protocol_redirects: bool = False
    max_redirects: int = DEFAULT_MAX_REDIRECTS

    def __post_init__(self) -> None:
        if self.max_redirects < 0:
            raise ValueError("max_redirects must be non-negative")

    def redirect_target(self, current_url: str, location: str) -> str:
        """Return the absolute URL for ``location`` or raise if the hop is disallowed."""

        target = urljoin(current_url, location)
        target_scheme = urlparse(target).scheme.lower()
        if target_scheme not in SUPPORTED_SCHEMES:
            raise UnsupportedRedirectError(target)
        current_scheme = urlparse(current_url).scheme.lower()
        if not self.allow_cross_protocol_redirects and target_scheme != current_scheme:
            raise CrossProtocolRedirectError(current_url, target)
        return target


def _configure_and_execute(
    factory: ConnectionFactory,
    url: str,
    method: str,
    headers: Mapping[str, str],
    body: Optional[bytes],
) -> Connection:
    connection = factory(url, method)
    try:
        for name, value in headers.items():
            connection.set_header(name, value)
        if body is not None:
            connection.set_header("Content-Length", str(len(body)))
            connection.output_stream().write(body)
        connection.execute()
    except BaseException:
        connection.close()
        raise
    return connection


def _redirect(connection: Connection) -> tuple[int, Optional[str]]:
    """Return the status code and, for redirect statuses, the ``Location`` header."""

    try:
        code = connection.response_code()
        if code not in REDIRECT_CODES:
            return code, None
        location = CaseInsensitiveDict(connection.response_headers()).get("Location")
    except BaseException:
        connection.close()
        raise
    return code, location or None


def open_connection(
    factory: ConnectionFactory,
    url: str,
    method: str,
    headers: Mapping[str, str],
    body: Optional[bytes] = None,
    policy: Optional[RedirectPolicy] = None,
) -> Connection:
    """Open a connection for ``url`` with ``headers`` applied and ``body`` sent.

    Redirects are followed hop by hop and each hop is checked against
    ``policy``. The returned connection has been executed but its status has
    not been validated.
    """

    policy = policy or RedirectPolicy()
    redirect_count = 0
    while True:
        connection = _configure_and_execute(factory, url, method, headers, body)
        code, location = _redirect(connection)
        if location is None:
            # Not a redirect, or nothing to follow; the validator reports the status.
            return connection
        connection.close()
        redirect_count += 1
        if redirect_count > policy.max_redirects:
            raise TooManyRedirectsError(policy.max_redirects)
        target = policy.redirect_target(url, location)
        LOGGER.debug(
            "Following %s redirect",
            code,
            extra={"event": "http.redirect", "source": url, "target": target},
        )
        if method == HTTP_METHOD_POST and code in METHOD_CHANGING_REDIRECT_CODES:
            method = HTTP_METHOD_GET
            body = None
        url = target


__all__ = [
    "Connection",
    "ConnectionFactory",
    "DEFAULT_CONNECT_TIMEOUT",
    "DEFAULT_MAX_REDIRECTS",
    "DEFAULT_READ_TIMEOUT",
    "RedirectPolicy",
    "RequestsConnection",
    "RequestsConnectionFactory",
    "TRANSPORT_ERRORS",
    "create_http_session",
    "open_connection",
]
