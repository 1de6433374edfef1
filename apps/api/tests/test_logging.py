import io
import json

from loguru import logger

from loyaltymart_api.core.logging import JsonLogSink
from loyaltymart_api.observability.tracing import parse_otlp_headers


def test_json_sink_carries_service_identity_and_order_context():
    stream = io.StringIO()
    sink_id = logger.add(
        JsonLogSink(service_name="loyaltymart-api", environment="development", version="0.1.0", stream=stream),
        level="INFO",
    )
    try:
        with logger.contextualize(pool="mart-orders", order_number="79927398713"):
            logger.info("Order finalized", status="PROCESSED")
    finally:
        logger.remove(sink_id)

    payload = json.loads(stream.getvalue().splitlines()[-1])
    assert payload["message"] == "Order finalized"
    assert payload["level"] == "info"
    assert payload["service"] == "loyaltymart-api"
    assert payload["pool"] == "mart-orders"
    assert payload["order_number"] == "79927398713"
    assert payload["status"] == "PROCESSED"
    assert "trace_id" not in payload


def test_parse_otlp_headers_skips_malformed_pairs():
    assert parse_otlp_headers("api-key=secret, tenant = acme,broken") == {"api-key": "secret", "tenant": "acme"}
    assert parse_otlp_headers(None) == {}
