import json

import pytest
import structlog

from trufflepay.logging_config import (
    bind_request_id,
    clear_request_context,
    configure_logging,
    redact_secrets,
)


@pytest.fixture
def json_logs():
    configure_logging("debug")
    yield
    clear_request_context()
    structlog.reset_defaults()


class TestStructuredLogging:
    def test_secrets_are_redacted(self):
        event = redact_secrets(None, "info", {"event": "x", "seller_private_key": "0xabc"})
        assert event["seller_private_key"] == "***"

    def test_request_id_is_attached(self, json_logs, capsys):
        bind_request_id("req-7")
        structlog.get_logger().info("invoice_created", invoice_id="abc-123")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["request_id"] == "req-7"
        assert record["invoice_id"] == "abc-123"
        assert record["level"] == "info"
