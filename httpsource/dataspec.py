"""Immutable description of a single HTTP fetch."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Optional

LENGTH_UNSET: int = -1

HTTP_METHOD_GET = "GET"
HTTP_METHOD_POST = "POST"
HTTP_METHOD_HEAD = "HEAD"
HTTP_METHODS: frozenset[str] = frozenset({HTTP_METHOD_GET, HTTP_METHOD_POST, HTTP_METHOD_HEAD})

# Bit flags read by the data source.
FLAG_ALLOW_GZIP = 1


@dataclass(frozen=True)
class DataSpec:
    """Request descriptor: where to fetch from and which bytes to fetch."""

    uri: str
    http_method: str = HTTP_METHOD_GET
    http_body: Optional[bytes] = None
    position: int = 0
    length: int = LENGTH_UNSET
    key: Optional[str] = None
    flags: int = 0
    http_request_headers: Mapping[str, str] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        if not self.uri:
            raise ValueError("DataSpec requires a URI")
        if self.http_method not in HTTP_METHODS:
            raise ValueError(f"Unsupported HTTP method: {self.http_method!r}")
        if self.position < 0:
            raise ValueError("position must be non-negative")
        if self.length <= 0 and self.length != LENGTH_UNSET:
            raise ValueError("length must be positive or LENGTH_UNSET")
        if self.http_body is not None:
            object.__setattr__(self, "http_body", bytes(self.http_body))
        object.__setattr__(
            self, "http_request_headers", MappingProxyType(dict(self.http_request_headers))
        )

    def is_flag_set(self, flag: int) -> bool:
        return (self.flags & flag) == flag


__all__ = [
    "DataSpec",
    "FLAG_ALLOW_GZIP",
    "HTTP_METHODS",
    "HTTP_METHOD_GET",
    "HTTP_METHOD_HEAD",
    "HTTP_METHOD_POST",
    "LENGTH_UNSET",
]
