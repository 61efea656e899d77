# tests/unit/test_config.py

import pytest

# Import the components to be tested
from loadout_publisher.config import get_config
from loadout_publisher.exceptions import ConfigurationError

_OPTIONAL_VARS = (
    "AWS_REGION",
    "PRESIGNED_URL_EXPIRY_SECONDS",
    "DEVICE_MAX_PACKET_SIZE",
    "SAFETY_MARGIN_PERCENT",
    "S3_ROOT_PREFIX",
    "DEVICE_API_TIMEOUT_SECONDS",
    "ENVIRONMENT",
    "LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clear_config_cache():
    """
    Fixture to automatically clear the lru_cache for get_config before each test.
    This ensures that each test gets a fresh configuration object based on its
    own monkeypatched environment, providing perfect test isolation.
    """
    get_config.cache_clear()
    yield
    get_config.cache_clear()


@pytest.fixture
def mock_required_env(monkeypatch):
    """Sets only the required variables and clears every optional one."""
    monkeypatch.setenv("S3_BUCKET_NAME", "loadout-samples")
    monkeypatch.setenv("AWS_IOT_ENDPOINT", "abc123-ats.iot.eu-west-1.amazonaws.com")
    monkeypatch.setenv("DEVICE_API_URL_BASE", "https://devices.example.com/links")
    for name in _OPTIONAL_VARS:
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def mock_valid_env(monkeypatch, mock_required_env):
    """Sets a complete, valid environment for a single test."""
    monkeypatch.setenv("AWS_REGION", "eu-west-1")
    monkeypatch.setenv("PRESIGNED_URL_EXPIRY_SECONDS", "900")
    monkeypatch.setenv("DEVICE_MAX_PACKET_SIZE", "4096")
    monkeypatch.setenv("SAFETY_MARGIN_PERCENT", "25")
    monkeypatch.setenv("S3_ROOT_PREFIX", "private/samples")
    monkeypatch.setenv("DEVICE_API_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("ENVIRONMENT", "prod")
    monkeypatch.setenv("LOG_LEVEL", "debug")


def test_get_config_happy_path(mock_valid_env):
    """Tests that configuration loads correctly when all env vars are set."""
    # ACT: Call the factory function
    config = get_config()

    # ASSERT
    assert config.bucket_name == "loadout-samples"
    assert config.iot_endpoint == "abc123-ats.iot.eu-west-1.amazonaws.com"
    assert config.device_api_url_base == "https://devices.example.com/links"
    assert config.region == "eu-west-1"
    assert config.presigned_url_expiry_seconds == 900
    assert config.device_max_packet_size == 4096
    assert config.safety_margin_percent == 25
    assert config.root_prefix == "private/samples"
    assert config.device_api_timeout_seconds == 2.5
    assert config.environment == "prod"
    assert config.log_level == "DEBUG"
    # Test derived properties
    assert config.payload_budget_bytes == 3072
    assert config.iot_endpoint_url == "https://abc123-ats.iot.eu-west-1.amazonaws.com"
    assert config.storage_prefix_for("u1", "l1") == "private/samples/u1/l1/"
    assert config.mqtt_topic_for("dev-9") == "/presignedurls/dev-9"


def test_get_config_uses_defaults(mock_required_env):
    """Tests that optional variables fall back to their default values."""
    # ACT
    config = get_config()

    # ASSERT: Check that defaults are used
    assert config.region == "us-east-1"
    assert config.presigned_url_expiry_seconds == 3600
    assert config.device_max_packet_size == 2048
    assert config.safety_margin_percent == 10
    assert config.root_prefix == "public/public"
    assert config.device_api_timeout_seconds == 10.0
    assert config.environment == "dev"
    assert config.log_level == "INFO"
    # floor(2048 * 0.9)
    assert config.payload_budget_bytes == 1843
    assert 0 < config.payload_budget_bytes < config.device_max_packet_size


@pytest.mark.parametrize(
    "missing", ["S3_BUCKET_NAME", "AWS_IOT_ENDPOINT", "DEVICE_API_URL_BASE"]
)
def test_get_config_missing_required_env_var(monkeypatch, mock_required_env, missing):
    """Tests that ConfigurationError is raised when required env vars are missing."""
    monkeypatch.delenv(missing)

    with pytest.raises(ConfigurationError) as exc_info:
        get_config()

    assert missing in str(exc_info.value)


@pytest.mark.parametrize(
    "name, value",
    [
        ("AWS_IOT_ENDPOINT", "YOUR_ACTUAL_IOT_ENDPOINT-ats.iot.us-east-1.amazonaws.com"),
        ("AWS_IOT_ENDPOINT", "your-iot-endpoint.amazonaws.com"),
        ("AWS_IOT_ENDPOINT", ""),
        ("S3_BUCKET_NAME", ""),
        ("DEVICE_API_URL_BASE", "devices.example.com/links"),
        ("PRESIGNED_URL_EXPIRY_SECONDS", "not-a-number"),
        ("PRESIGNED_URL_EXPIRY_SECONDS", "0"),
        ("PRESIGNED_URL_EXPIRY_SECONDS", "604801"),
        ("DEVICE_MAX_PACKET_SIZE", "-1"),
        ("SAFETY_MARGIN_PERCENT", "0"),
        ("SAFETY_MARGIN_PERCENT", "100"),
        ("S3_ROOT_PREFIX", "public/public/"),
        ("S3_ROOT_PREFIX", "/public"),
        ("DEVICE_API_TIMEOUT_SECONDS", "0"),
        ("LOG_LEVEL", "VERBOSE"),
    ],
)
def test_get_config_invalid_values(monkeypatch, mock_required_env, name, value):
    """Tests that ConfigurationError is raised for invalid values."""
    monkeypatch.setenv(name, value)

    with pytest.raises(ConfigurationError):
        get_config()


def test_get_config_rejects_budget_that_rounds_to_zero(monkeypatch, mock_required_env):
    # floor(1 * 0.5) == 0
    monkeypatch.setenv("DEVICE_MAX_PACKET_SIZE", "1")
    monkeypatch.setenv("SAFETY_MARGIN_PERCENT", "50")

    with pytest.raises(ConfigurationError, match="payload budget"):
        get_config()


def test_iot_endpoint_url_keeps_explicit_scheme(monkeypatch, mock_required_env):
    monkeypatch.setenv("AWS_IOT_ENDPOINT", "http://localhost:4566")

    assert get_config().iot_endpoint_url == "http://localhost:4566"


def test_get_config_caching(mock_valid_env):
    """Tests that get_config returns the same instance when called multiple times."""
    # ACT
    config1 = get_config()
    config2 = get_config()

    # ASSERT
    assert config1 is config2  # Same object instance due to lru_cache
