"""httpsource: layered-header HTTP data source for byte-range fetches."""

from __future__ import annotations

from .dataspec import FLAG_ALLOW_GZIP, LENGTH_UNSET, DataSpec
from .datasource import END_OF_INPUT, HttpDataSource, HttpDataSourceFactory
from .errors import (
    CrossProtocolRedirectError,
    HttpDataSourceError,
    InvalidContentTypeError,
    InvalidResponseCodeError,
)
from .properties import RequestProperties, resolve_request_headers

__all__ = [
    "CrossProtocolRedirectError",
    "DataSpec",
    "END_OF_INPUT",
    "FLAG_ALLOW_GZIP",
    "HttpDataSource",
    "HttpDataSourceError",
    "HttpDataSourceFactory",
    "InvalidContentTypeError",
    "InvalidResponseCodeError",
    "LENGTH_UNSET",
    "RequestProperties",
    "__version__",
    "resolve_request_headers",
]

# Semantic version for package consumers.
__version__ = "0.1.0"
