import json
import logging

from fitai.core.logging import (
    JsonFormatter,
    PrettyFormatter,
    RequestIdFilter,
    latency_bucket_ms,
    log_event,
    request_id_ctx_var,
)


def _record(msg="hello", **extra):
    record = logging.LogRecord("fitai", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_filter_injects_context_request_id():
    token = request_id_ctx_var.set("rid-ctx")
    try:
        record = _record()
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)
    assert record.request_id == "rid-ctx"


def test_filter_keeps_explicit_request_id():
    record = _record(request_id="rid-explicit")
    token = request_id_ctx_var.set("rid-ctx")
    try:
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx_var.reset(token)
    assert record.request_id == "rid-explicit"


def test_json_formatter_emits_structured_fields():
    record = _record("webhook.transition_failed", request_id="rid-1", event_type="invoice.payment_failed", error_code="persistence_failure")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["message"] == "webhook.transition_failed"
    assert payload["request_id"] == "rid-1"
    assert payload["event_type"] == "invoice.payment_failed"
    assert payload["error_code"] == "persistence_failure"
    assert payload["level"] == "INFO"
    assert payload["timestamp"].endswith("Z")


def test_pretty_formatter_includes_request_id():
    line = PrettyFormatter().format(_record("profile.created", request_id="rid-2"))
    assert "[fitai] [rid=rid-2] profile.created" in line


def test_log_event_truncates_extra_and_binds_user(caplog):
    with caplog.at_level(logging.INFO, logger="fitai"):
        log_event("info", "mealplan.completion", user_id="u1", extra={"content": "x" * 600})

    record = caplog.records[-1]
    assert record.user_id == "u1"
    assert record.content.endswith("...<truncated>")
    assert len(record.content) < 600


def test_latency_buckets():
    assert latency_bucket_ms(None) == "unknown"
    assert latency_bucket_ms(5) == "<10ms"
    assert latency_bucket_ms(250) == "100-500ms"
    assert latency_bucket_ms(2500) == ">=1000ms"


def test_log_event_redacts_credentials(caplog):
    with caplog.at_level(logging.INFO, logger="fitai"):
        log_event("error", "billing.checkout_failed", extra={"error": "Invalid API Key provided: sk_test_abc123"})

    assert caplog.records[-1].error == "Invalid API Key provided: [redacted]"


def test_json_formatter_includes_extra_fields():
    record = _record("mealplan.completion_rejected", request_id="rid-3", attempt=1, reason="EmptyCompletionError")

    payload = json.loads(JsonFormatter().format(record))

    assert payload["attempt"] == 1
    assert payload["reason"] == "EmptyCompletionError"
