from __future__ import annotations

import dataclasses

import pytest

from httpsource.dataspec import (
    FLAG_ALLOW_GZIP,
    HTTP_METHOD_POST,
    LENGTH_UNSET,
    DataSpec,
)


def test_defaults() -> None:
    spec = DataSpec("http://example.com/media")

    assert spec.http_method == "GET"
    assert spec.http_body is None
    assert spec.position == 0
    assert spec.length == LENGTH_UNSET
    assert spec.key is None
    assert dict(spec.http_request_headers) == {}


@pytest.mark.parametrize(
    "kwargs",
    [
        {"uri": ""},
        {"uri": "http://example.com", "http_method": "PUT"},
        {"uri": "http://example.com", "position": -1},
        {"uri": "http://example.com", "length": 0},
        {"uri": "http://example.com", "length": -5},
    ],
)
def test_rejects_invalid_values(kwargs) -> None:
    with pytest.raises(ValueError):
        DataSpec(**kwargs)


def test_is_immutable_including_headers() -> None:
    headers = {"X-Token": "abc"}
    spec = DataSpec("http://example.com", http_request_headers=headers)

    with pytest.raises(dataclasses.FrozenInstanceError):
        spec.uri = "http://other"  # type: ignore[misc]
    with pytest.raises(TypeError):
        spec.http_request_headers["X-Token"] = "def"  # type: ignore[index]

    headers["X-Token"] = "changed"
    assert spec.http_request_headers["X-Token"] == "abc"


def test_flags() -> None:
    spec = DataSpec("http://example.com", flags=FLAG_ALLOW_GZIP)

    assert spec.is_flag_set(FLAG_ALLOW_GZIP)
    assert not DataSpec("http://example.com").is_flag_set(FLAG_ALLOW_GZIP)


def test_body_is_copied_to_bytes() -> None:
    body = bytearray(b"\x00\x00")
    spec = DataSpec("http://example.com", http_method=HTTP_METHOD_POST, http_body=body)
    body[0] = 1

    assert spec.http_body == b"\x00\x00"
