"""
Tests for the monitoring module.

Tests cover:
- Metrics collection (counters, gauges, histograms)
- Prometheus export
- Structured logging and redaction
- Request middleware
"""

import json
import logging

import pytest

from trackarena.monitoring.logging import (
    ConsoleFormatter,
    JSONFormatter,
    LoggingContext,
    clear_log_context,
    get_log_context,
    redact_sensitive_data,
    redact_string,
    set_log_context,
)
from trackarena.monitoring.metrics import Histogram, MetricsCollector
from trackarena.monitoring.middleware import _normalize_path


def make_record(msg, level=logging.INFO, **extra):
    record = logging.LogRecord("trackarena.test", level, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def reset_context():
    clear_log_context()
    yield
    clear_log_context()


# ============================================================
# Metrics Tests
# ============================================================


class TestMetricsCollector:
    """Tests for MetricsCollector."""

    def test_counters(self):
        m = MetricsCollector()
        m.increment("payments_received")
        m.increment("payments_received", 2)

        assert m.get_counter("payments_received") == 3
        assert m.get_counter("never") == 0

    def test_labelled_series_are_separate(self):
        m = MetricsCollector()
        m.increment("venue_failures", labels={"venue": "pumpswap"})
        m.increment("venue_failures", labels={"venue": "jupiter"})
        m.increment("venue_failures", labels={"venue": "jupiter"})

        assert m.get_counter("venue_failures", labels={"venue": "pumpswap"}) == 1
        assert m.get_counter("venue_failures", labels={"venue": "jupiter"}) == 2

    def test_gauges(self):
        m = MetricsCollector()
        m.set_gauge("round_pool", 2_600)
        m.increment_gauge("active", 2)
        m.decrement_gauge("active")

        assert m.get_gauge("round_pool") == 2_600
        assert m.get_gauge("active") == 1

    def test_timer(self):
        m = MetricsCollector()

        with m.timer("purchase_duration_ms", labels={"venue": "jupiter"}):
            pass

        assert m.get_histogram("purchase_duration_ms", labels={"venue": "jupiter"}).count == 1

    def test_get_all(self):
        m = MetricsCollector()
        m.increment("payments_settled")
        m.increment("venue_failures", labels={"venue": "jupiter"})
        m.timing("purchase_duration_ms", 120)

        data = m.get_all()

        assert data["counters"]["payments_settled"] == 1
        assert data["counters"]["venue_failures"] == {'venue="jupiter"': 1}
        assert data["histograms"]["purchase_duration_ms"]["_total"]["count"] == 1

    def test_prometheus_export(self):
        m = MetricsCollector(prefix="trackarena")
        m.increment("payments_settled")
        m.increment("venue_failures", labels={"venue": "jupiter"})
        m.set_gauge("perpetual_reserve", 1_400)
        m.timing("purchase_duration_ms", 40, labels={"venue": "jupiter"})

        text = m.to_prometheus()

        assert "# TYPE trackarena_payments_settled counter" in text
        assert "trackarena_payments_settled 1" in text
        assert 'trackarena_venue_failures{venue="jupiter"} 1' in text
        assert "trackarena_perpetual_reserve 1400" in text
        assert 'trackarena_purchase_duration_ms_bucket{venue="jupiter",le="50"} 1' in text
        assert 'trackarena_purchase_duration_ms_bucket{venue="jupiter",le="10"} 0' in text
        assert 'trackarena_purchase_duration_ms_count{venue="jupiter"} 1' in text

    def test_reset(self):
        m = MetricsCollector()
        m.increment("x")

        m.reset()

        assert m.get_counter("x") == 0


class TestHistogram:
    def test_cumulative_buckets(self):
        h = Histogram(bounds=(10, 100))
        for value in (5, 50, 500):
            h.observe(value)

        assert h.buckets() == [("10", 1), ("100", 2), ("+Inf", 3)]
        assert h.sum == 555


# ============================================================
# Redaction Tests
# ============================================================


class TestRedaction:
    """Secrets must never reach the logs."""

    def test_bot_token_in_url(self):
        text = "POST https://api.telegram.org/bot123456789:AAH-abcdefghijklmnopqrstuvwxyz012/sendMessage"

        redacted = redact_string(text)

        assert "AAH-abcdefghijklmnopqrstuvwxyz012" not in redacted
        assert "/bot[REDACTED]/sendMessage" in redacted

    def test_key_value_secret(self):
        assert "hunter2" not in redact_string("api_key=hunter2 other=1")
        assert "other=1" in redact_string("api_key=hunter2 other=1")

    def test_bearer_token(self):
        assert redact_string("Authorization: Bearer abc.def").endswith("Bearer [REDACTED]")

    def test_json_byte_array_private_key(self):
        key = json.dumps(list(range(64)))

        assert redact_string(f"loaded {key}") == "loaded [REDACTED_PRIVATE_KEY]"

    def test_base58_private_key(self):
        secret = "5" + "K" * 86

        assert redact_string(f"key {secret}") == "key [REDACTED_PRIVATE_KEY]"

    def test_public_address_kept(self):
        address = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

        assert redact_string(f"sent to {address}") == f"sent to {address}"

    def test_sensitive_fields(self):
        data = {"bot_token": "x", "nested": {"X-API-Key": "y", "amount": 0.1}, "items": ["Bearer z"]}

        redacted = redact_sensitive_data(data)

        assert redacted["bot_token"] == "[REDACTED]"
        assert redacted["nested"]["X-API-Key"] == "[REDACTED]"
        assert redacted["nested"]["amount"] == 0.1
        assert redacted["items"] == ["Bearer [REDACTED]"]


# ============================================================
# Logging Tests
# ============================================================


class TestLogContext:
    def test_set_and_clear(self):
        set_log_context(reference="ref-1")

        assert get_log_context() == {"reference": "ref-1"}
        clear_log_context()
        assert get_log_context() == {}

    def test_logging_context_restores_previous(self):
        set_log_context(request_id="r1")

        with LoggingContext(reference="ref-1", payer_id="1001"):
            assert get_log_context() == {"request_id": "r1", "reference": "ref-1", "payer_id": "1001"}

        assert get_log_context() == {"request_id": "r1"}


class TestFormatters:
    def test_json_formatter(self):
        set_log_context(reference="ref-1")
        record = make_record("Settled with token=abc123", round_pool=2_600)

        entry = json.loads(JSONFormatter().format(record))

        assert entry["level"] == "INFO"
        assert entry["logger"] == "trackarena.test"
        assert "abc123" not in entry["message"]
        assert entry["context"] == {"reference": "ref-1"}
        assert entry["round_pool"] == 2_600
        assert "location" not in entry

    def test_json_formatter_location_for_warnings(self):
        entry = json.loads(JSONFormatter().format(make_record("careful", level=logging.WARNING)))

        assert entry["location"]["line"] == 10

    def test_console_formatter(self):
        set_log_context(payer_id="1001")
        record = make_record("Bought tokens", venue="jupiter")

        line = ConsoleFormatter().format(record)

        assert "Bought tokens" in line
        assert "payer_id=1001" in line
        assert "venue=jupiter" in line


# ============================================================
# Middleware Tests
# ============================================================


class TestMiddleware:
    @pytest.mark.parametrize("path,expected", [
        ("/entries/2001/media", "/entries/:payer_id/media"),
        ("/entries", "/entries"),
        ("/payment-confirmed", "/payment-confirmed"),
        ("/", "/"),
    ])
    def test_normalize_path(self, path, expected):
        assert _normalize_path(path) == expected

    def test_request_metrics_recorded(self, flask_client):
        from trackarena.monitoring import metrics

        before = metrics.get_counter(
            "http_requests_total", labels={"method": "GET", "path": "/status", "status": "200"}
        )

        flask_client.get("/status")

        after = metrics.get_counter(
            "http_requests_total", labels={"method": "GET", "path": "/status", "status": "200"}
        )
        assert after == before + 1
