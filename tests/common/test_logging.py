from __future__ import annotations

import logging
import re

from casedocs_api.common.logging import (
    ConsoleLogFormatter,
    bind_request_context,
    clear_request_context,
    log_context,
)


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="casedocs_api.features.documents.pipeline",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_renders_event_and_extras() -> None:
    record = _record(
        "document.upload.success",
        **log_context(client_id="C-1001", document_id=42, byte_size=5120, note="two words"),
    )

    bind_request_context("cid-1")
    try:
        line = ConsoleLogFormatter().format(record)
    finally:
        clear_request_context()

    assert re.match(r"\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z INFO ", line)
    assert "[cid=cid-1] document.upload.success" in line
    assert "client_id=C-1001" in line
    assert "document_id=42" in line
    assert "byte_size=5120" in line
    assert "note='two words'" in line


def test_formatter_without_request_context() -> None:
    line = ConsoleLogFormatter().format(_record("storage.ready"))

    assert "[cid=-] storage.ready" in line


def test_log_context_skips_missing_identifiers() -> None:
    assert log_context(storage_key="k", user_id=None, limit=5) == {"storage_key": "k", "limit": 5}
