"""Tests for the connection opener and redirect policy."""

from __future__ import annotations

import pytest

from httpsource.connection import RedirectPolicy, open_connection
from httpsource.errors import (
    CrossProtocolRedirectError,
    TooManyRedirectsError,
    UnsupportedRedirectError,
)


def test_applies_every_header_before_execution(fake_factory) -> None:
    factory = fake_factory({})
    headers = {"A": "1", "b": "2", "Range": "bytes=0-9"}

    connection = open_connection(factory, "http://example.com", "GET", headers)

    assert connection.sent_headers == headers
    assert connection.executed
    assert connection.output is None
    assert len(factory.connections) == 1


def test_body_sets_content_length_and_is_written(fake_factory) -> None:
    factory = fake_factory({})

    connection = open_connection(factory, "http://example.com", "POST", {}, b"\x00\x01\x02\x03")

    assert connection.sent_headers["Content-Length"] == "4"
    assert connection.output is not None
    assert connection.output.getvalue() == b"\x00\x01\x02\x03"


def test_empty_body_is_still_sent(fake_factory) -> None:
    connection = open_connection(fake_factory({}), "http://example.com", "POST", {}, b"")

    assert connection.sent_headers["Content-Length"] == "0"
    assert connection.output is not None


def test_failure_while_configuring_closes_connection(fake_factory) -> None:
    factory = fake_factory({"header_error": RuntimeError("boom")})

    with pytest.raises(RuntimeError):
        open_connection(factory, "http://example.com", "GET", {"A": "1"})

    assert factory.last.closed


def test_transport_failure_closes_connection(fake_factory) -> None:
    factory = fake_factory({"execute_error": ConnectionRefusedError("refused")})

    with pytest.raises(ConnectionRefusedError):
        open_connection(factory, "http://example.com", "GET", {})

    assert factory.last.closed


def test_follows_same_protocol_redirect(fake_factory) -> None:
    factory = fake_factory(
        {"status": 302, "headers": {"Location": "/moved"}},
        {"status": 200},
    )

    connection = open_connection(factory, "http://example.com/start", "GET", {"A": "1"})

    first, second = factory.connections
    assert first.closed
    assert connection is second
    assert second.url == "http://example.com/moved"
    assert second.sent_headers == {"A": "1"}
    assert not second.closed


def test_cross_protocol_redirect_is_rejected_by_default(fake_factory) -> None:
    factory = fake_factory({"status": 301, "headers": {"location": "http://example.com/plain"}})

    with pytest.raises(CrossProtocolRedirectError) as excinfo:
        open_connection(factory, "https://example.com/secure", "GET", {})

    assert excinfo.value.target_url == "http://example.com/plain"
    assert len(factory.connections) == 1
    assert factory.last.closed


def test_cross_protocol_redirect_followed_when_allowed(fake_factory) -> None:
    factory = fake_factory(
        {"status": 307, "headers": {"Location": "http://example.com/plain"}},
        {"status": 200},
    )
    policy = RedirectPolicy(allow_cross_protocol_redirects=True)

    connection = open_connection(factory, "https://example.com/secure", "GET", {}, policy=policy)

    assert connection.url == "http://example.com/plain"


def test_post_becomes_get_on_302(fake_factory) -> None:
    factory = fake_factory(
        {"status": 302, "headers": {"Location": "/next"}},
        {"status": 200},
    )

    connection = open_connection(factory, "http://example.com", "POST", {}, b"payload")

    assert connection.method == "GET"
    assert connection.output is None
    assert "Content-Length" not in connection.sent_headers


def test_post_keeps_body_on_307(fake_factory) -> None:
    factory = fake_factory(
        {"status": 307, "headers": {"Location": "/next"}},
        {"status": 200},
    )

    connection = open_connection(factory, "http://example.com", "POST", {}, b"payload")

    assert connection.method == "POST"
    assert connection.output.getvalue() == b"payload"


def test_redirect_without_location_is_returned_for_validation(fake_factory) -> None:
    factory = fake_factory({"status": 302})

    connection = open_connection(factory, "http://example.com", "GET", {})

    assert connection.status == 302
    assert not connection.closed


def test_too_many_redirects(fake_factory) -> None:
    factory = fake_factory({"status": 302, "headers": {"Location": "/loop"}})

    with pytest.raises(TooManyRedirectsError):
        open_connection(
            factory, "http://example.com", "GET", {}, policy=RedirectPolicy(max_redirects=3)
        )

    assert len(factory.connections) == 4
    assert all(connection.closed for connection in factory.connections)


def test_redirect_to_unsupported_scheme(fake_factory) -> None:
    factory = fake_factory({"status": 302, "headers": {"Location": "ftp://example.com/file"}})
    policy = RedirectPolicy(allow_cross_protocol_redirects=True)

    with pytest.raises(UnsupportedRedirectError):
        open_connection(factory, "http://example.com", "GET", {}, policy=policy)


def test_redirect_policy_validation() -> None:
    with pytest.raises(ValueError):
        RedirectPolicy(max_redirects=-1)
    policy = RedirectPolicy()
    assert policy.redirect_target("https://a.test/x/y", "z") == "https://a.test/x/z"
    assert policy.redirect_target("HTTPS://a.test/", "https://b.test/") == "https://b.test/"
