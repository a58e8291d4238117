"""Error taxonomy for HTTP data source failures."""

from __future__ import annotations

from collections.abc import Mapping
from typing import TYPE_CHECKING, Optional

from requests.structures import CaseInsensitiveDict

if TYPE_CHECKING:
    from .dataspec import DataSpec

KIND_OPEN = "open"
KIND_READ = "read"
KIND_CLOSE = "close"


class HttpDataSourceError(OSError):
    """Raised when an HTTP fetch cannot be opened, read or closed."""

    def __init__(
        self,
        message: str,
        data_spec: Optional["DataSpec"] = None,
        kind: str = KIND_OPEN,
    ) -> None:
        super().__init__(message)
        self.data_spec = data_spec
        self.kind = kind


class CrossProtocolRedirectError(HttpDataSourceError):
    """Raised when a redirect switches scheme and the policy forbids it."""

    def __init__(self, source_url: str, target_url: str) -> None:
        super().__init__(f"Cross-protocol redirect from {source_url} to {target_url} is not allowed")
        self.source_url = source_url
        self.target_url = target_url


class UnsupportedRedirectError(HttpDataSourceError):
    """Raised when a redirect points at a non-HTTP scheme."""

    def __init__(self, target_url: str) -> None:
        super().__init__(f"Unsupported protocol redirect: {target_url}")
        self.target_url = target_url


class TooManyRedirectsError(HttpDataSourceError):
    def __init__(self, max_redirects: int) -> None:
        super().__init__(f"Too many redirects: {max_redirects + 1}")
        self.max_redirects = max_redirects


class InvalidResponseCodeError(HttpDataSourceError):
    """Raised for any non-2xx response.

    ``response_body`` is always set, so callers can tell an empty error body
    from one that was never captured.
    """

    def __init__(
        self,
        response_code: int,
        response_message: str,
        headers: Mapping[str, str],
        response_body: bytes,
        data_spec: Optional["DataSpec"] = None,
    ) -> None:
        super().__init__(f"Response code: {response_code}", data_spec, KIND_OPEN)
        self.response_code = response_code
        self.response_message = response_message
        self.headers = CaseInsensitiveDict(headers)
        self.response_body = bytes(response_body)


class InvalidContentTypeError(HttpDataSourceError):
    """Raised when the response content type is rejected by the configured predicate."""

    def __init__(self, content_type: Optional[str], data_spec: Optional["DataSpec"] = None) -> None:
        super().__init__(f"Invalid content type: {content_type}", data_spec, KIND_OPEN)
        self.content_type = content_type


__all__ = [
    "CrossProtocolRedirectError",
    "HttpDataSourceError",
    "InvalidContentTypeError",
    "InvalidResponseCodeError",
    "KIND_CLOSE",
    "KIND_OPEN",
    "KIND_READ",
    "TooManyRedirectsError",
    "UnsupportedRedirectError",
]
