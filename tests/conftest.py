from __future__ import annotations

import io
import sys
from pathlib import Path
from typing import Optional

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeConnection:
    """In-memory connection that records what the opener does to it."""

    def __init__(
        self,
        url: str,
        method: str,
        *,
        status: int = 200,
        message: str = "OK",
        headers: Optional[dict[str, str]] = None,
        body: bytes = b"",
        error_body: Optional[bytes] = None,
        error_stream: Optional[io.RawIOBase] = None,
        execute_error: Optional[BaseException] = None,
        header_error: Optional[BaseException] = None,
    ) -> None:
        self.url = url
        self.method = method
        self.status = status
        self.message = message
        self.headers = dict(headers or {})
        self.sent_headers: dict[str, str] = {}
        self.output: Optional[io.BytesIO] = None
        self.executed = False
        self.close_calls = 0
        self._execute_error = execute_error
        self._header_error = header_error
        self._input = io.BytesIO(body)
        if error_stream is not None:
            self._error = error_stream
        elif error_body is not None:
            self._error = io.BytesIO(error_body)
        else:
            self._error = None

    @property
    def closed(self) -> bool:
        return self.close_calls > 0

    def set_header(self, name: str, value: str) -> None:
        if self._header_error is not None:
            raise self._header_error
        if self.executed:
            raise RuntimeError("Connection already executed")
        self.sent_headers[name] = value

    def output_stream(self) -> io.BytesIO:
        if self.executed:
            raise RuntimeError("Connection already executed")
        if self.output is None:
            self.output = io.BytesIO()
        return self.output

    def execute(self) -> None:
        if self._execute_error is not None:
            raise self._execute_error
        self.executed = True

    def response_code(self) -> int:
        self.execute()
        return self.status

    def response_message(self) -> str:
        self.execute()
        return self.message

    def response_headers(self) -> dict[str, str]:
        self.execute()
        return self.headers

    def input_stream(self) -> io.BytesIO:
        self.execute()
        return self._input

    def error_stream(self):
        self.execute()
        return self._error

    def using_proxy(self) -> bool:
        return False

    def close(self) -> None:
        self.close_calls += 1


class FakeConnectionFactory:
    """Hands out one :class:`FakeConnection` per call, following a script.

    Each positional argument configures one connection; the last one is
    reused once the script runs out.
    """

    def __init__(self, *responses: dict) -> None:
        self._responses = list(responses) or [{}]
        self.connections: list[FakeConnection] = []

    def __call__(self, url: str, method: str) -> FakeConnection:
        index = min(len(self.connections), len(self._responses) - 1)
        connection = FakeConnection(url, method, **self._responses[index])
        self.connections.append(connection)
        return connection

    @property
    def last(self) -> FakeConnection:
        return self.connections[-1]


class EndlessStream:
    """Error stream that never ends; counts how much was pulled from it."""

    def __init__(self) -> None:
        self.bytes_served = 0

    def read(self, size: int = -1) -> bytes:
        if size is None or size < 0:
            raise AssertionError("unbounded read on an endless stream")
        self.bytes_served += size
        return b"x" * size


@pytest.fixture
def fake_factory():
    return FakeConnectionFactory


@pytest.fixture
def fake_connection():
    return FakeConnection


@pytest.fixture
def endless_stream() -> EndlessStream:
    return EndlessStream()


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch):
    for name in (
        "HTTPSOURCE_USER_AGENT",
        "HTTPSOURCE_CONNECT_TIMEOUT",
        "HTTPSOURCE_READ_TIMEOUT",
        "HTTPSOURCE_ALLOW_CROSS_PROTOCOL_REDIRECTS",
        "HTTPSOURCE_MAX_REDIRECTS",
        "HTTPSOURCE_MAX_ERROR_BODY_BYTES",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
