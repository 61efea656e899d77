"""
Shared fixtures for unit tests.
"""

from __future__ import annotations

import os
import uuid
from unittest.mock import MagicMock

import pytest

# Powertools reads these when app.py is imported, which happens at collection
# time, before any fixture runs.
os.environ.setdefault("POWERTOOLS_SERVICE_NAME", "loadout-publisher-test")
os.environ.setdefault("POWERTOOLS_TRACE_DISABLED", "true")
os.environ.setdefault("POWERTOOLS_METRICS_NAMESPACE", "LoadoutPublisher")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

from loadout_publisher.config import AppConfig  # noqa: E402
from loadout_publisher.schemas import SignedUrlEntry  # noqa: E402


@pytest.fixture
def app_config() -> AppConfig:
    """A valid configuration with the production packet limits."""
    return AppConfig(
        bucket_name="loadout-samples",
        iot_endpoint="abc123-ats.iot.us-east-1.amazonaws.com",
        device_api_url_base="https://devices.example.com/links",
        region="us-east-1",
        presigned_url_expiry_seconds=900,
        device_max_packet_size=2048,
        safety_margin_percent=10,
        root_prefix="public/public",
        device_api_timeout_seconds=5.0,
        environment="test",
        log_level="INFO",
    )


@pytest.fixture
def api_gateway_event() -> dict:
    """A minimal API Gateway proxy event for a valid request."""
    return {
        "resource": "/presigned-urls",
        "path": "/presigned-urls",
        "httpMethod": "GET",
        "headers": {"Accept": "application/json"},
        "queryStringParameters": {"userSub": "user-1", "loadoutId": "loadout-1"},
        "requestContext": {"requestId": str(uuid.uuid4()), "stage": "test"},
        "body": None,
        "isBase64Encoded": False,
    }


@pytest.fixture
def lambda_context():
    """A stand-in for the LambdaContext object."""
    context = MagicMock()
    context.function_name = "generate-presigned-urls"
    context.memory_limit_in_mb = 128
    context.invoked_function_arn = (
        "arn:aws:lambda:us-east-1:000000000000:function:generate-presigned-urls"
    )
    context.aws_request_id = "req-" + uuid.uuid4().hex
    context.get_remaining_time_in_millis.return_value = 30000
    return context


@pytest.fixture
def make_entry():
    """Factory for entries; `make_entry("k1")` serializes to exactly 40 bytes."""

    def _make(key: str, url: str = "https://x/") -> SignedUrlEntry:
        return SignedUrlEntry(key=key, url=url)

    return _make
