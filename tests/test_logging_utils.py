from __future__ import annotations

import json
import logging

from httpsource.logging_utils import JsonFormatter, SensitiveDataFilter, redact_headers


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("httpsource.test", logging.INFO, __file__, 1, "Opening %s", ("uri",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_redact_headers_hides_credentials_case_insensitively() -> None:
    redacted = redact_headers({"authorization": "Bearer x", "Cookie": "a=b", "Range": "bytes=0-1"})

    assert redacted == {"authorization": "[redacted]", "Cookie": "[redacted]", "Range": "bytes=0-1"}


def test_filter_redacts_header_extras() -> None:
    record = _record(headers={"Authorization": "Bearer x", "X-Trace": "1"})

    assert SensitiveDataFilter().filter(record) is True
    assert record.headers == {"Authorization": "[redacted]", "X-Trace": "1"}


def test_json_formatter_includes_structured_fields() -> None:
    record = _record(event="http.open", status=404, headers={"X-Trace": "1"})

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "Opening uri"
    assert payload["event"] == "http.open"
    assert payload["status"] == 404
    assert payload["headers"] == {"X-Trace": "1"}
    assert payload["level"] == "INFO"
