"""
Tests for structured logging and error types.
"""

import json
import logging
import sys

import pytest

from cloud_bridge.utils.errors import DownstreamPushError, ProviderError
from cloud_bridge.utils.structured_logging import (
    CorrelationIdFilter, LogContext, StructuredFormatter, correlation_id, get_logger, with_correlation_id
)


def _record(message="hello", **extra):
    record = logging.LogRecord("cloud_bridge.test", logging.INFO, __file__, 10, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    CorrelationIdFilter().filter(record)
    return record


def test_structured_formatter():
    token = correlation_id.set("abc123")
    try:
        record = _record(provider_id="p1", result_count=3)
    finally:
        correlation_id.reset(token)

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["message"] == "hello"
    assert entry["level"] == "INFO"
    assert entry["correlation_id"] == "abc123"
    assert entry["extra"] == {"provider_id": "p1", "result_count": 3}


def test_structured_formatter_exception():
    try:
        raise ValueError("bad value")
    except ValueError:
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
    CorrelationIdFilter().filter(record)

    entry = json.loads(StructuredFormatter().format(record))

    assert entry["correlation_id"] == "-"
    assert entry["exception"]["type"] == "ValueError"


def test_contextual_logger_fields(caplog):
    logger = get_logger("cloud_bridge.test", LogContext(operation="discovery"))

    with caplog.at_level(logging.INFO, logger="cloud_bridge.test"):
        logger.info("Discovered", provider_id="p1", result_count=2)

    record = caplog.records[-1]
    assert record.operation == "discovery"
    assert record.provider_id == "p1"
    assert record.result_count == 2


def test_with_context():
    logger = get_logger("x", LogContext(operation="collection", additional_fields={"a": 1}))

    child = logger.with_context(resource_id="i-1", additional_fields={"b": 2})

    assert child.context.operation == "collection"
    assert child.context.resource_id == "i-1"
    assert child.context.additional_fields == {"a": 1, "b": 2}
    assert logger.context.resource_id is None


@pytest.mark.asyncio
async def test_with_correlation_id_async():
    seen = []

    @with_correlation_id
    async def run():
        seen.append(correlation_id.get())

    await run()
    await run()

    assert seen[0] and seen[1] and seen[0] != seen[1]
    assert correlation_id.get() is None


def test_with_correlation_id_sync():
    @with_correlation_id
    def run():
        return correlation_id.get()

    assert run() is not None
    assert correlation_id.get() is None


def test_error_to_dict():
    error = ProviderError("p1", "denied", error_code="AuthFailure", resource_id="i-1")

    assert error.to_dict() == {
        "type": "ProviderError",
        "message": "denied",
        "error_code": "AuthFailure",
        "provider_id": "p1",
        "resource_id": "i-1",
    }
    assert DownstreamPushError("submit_metrics", "boom", status_code=503).error_code == "HTTP_503"
