import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from urllib.parse import urlparse

from .exceptions import ConfigurationError
from .packer import compute_payload_budget

logger = logging.getLogger(__name__)

_IOT_ENDPOINT_PLACEHOLDERS = ("YOUR_ACTUAL_IOT_ENDPOINT", "your-iot-endpoint")

# SigV4 presigned URLs cannot outlive seven days.
MAX_PRESIGNED_URL_EXPIRY_SECONDS = 604_800


@dataclass(frozen=True, slots=True)
class AppConfig:
    """Application configuration loaded from environment variables."""

    # --- Required Variables ---
    bucket_name: str
    iot_endpoint: str
    device_api_url_base: str

    # --- Optional Variables with Defaults ---
    region: str
    presigned_url_expiry_seconds: int
    device_max_packet_size: int
    safety_margin_percent: int
    root_prefix: str
    device_api_timeout_seconds: float
    environment: str
    log_level: str

    # --- Derived Properties ---
    @property
    def payload_budget_bytes(self) -> int:
        """Largest serialized message the device is sent, margin included."""
        return compute_payload_budget(
            self.device_max_packet_size, self.safety_margin_percent
        )

    @property
    def iot_endpoint_url(self) -> str:
        if self.iot_endpoint.startswith(("http://", "https://")):
            return self.iot_endpoint
        return f"https://{self.iot_endpoint}"

    def storage_prefix_for(self, user_id: str, loadout_id: str) -> str:
        return f"{self.root_prefix}/{user_id}/{loadout_id}/"

    @staticmethod
    def mqtt_topic_for(device_id: str) -> str:
        return f"/presignedurls/{device_id}"

    @classmethod
    def load_from_env(cls) -> "AppConfig":
        """
        Loads configuration from environment variables, performing validation and type casting.
        Fails fast with a ConfigurationError if anything is invalid.
        """
        try:
            # --- Handle required string variables ---
            bucket_name = os.environ["S3_BUCKET_NAME"]
            iot_endpoint = os.environ["AWS_IOT_ENDPOINT"]
            device_api_url_base = os.environ["DEVICE_API_URL_BASE"]

            if not bucket_name:
                raise ValueError("S3_BUCKET_NAME must not be empty.")
            if not iot_endpoint or any(
                marker in iot_endpoint for marker in _IOT_ENDPOINT_PLACEHOLDERS
            ):
                raise ValueError(
                    "AWS_IOT_ENDPOINT is not configured correctly. Please replace placeholder."
                )
            parsed_api_url = urlparse(device_api_url_base)
            if parsed_api_url.scheme not in ("http", "https") or not parsed_api_url.netloc:
                raise ValueError("DEVICE_API_URL_BASE must be an http(s) URL.")

            # --- Handle optional and numeric variables with validation ---
            region = os.getenv("AWS_REGION", "us-east-1")

            presigned_url_expiry_seconds = int(
                os.getenv("PRESIGNED_URL_EXPIRY_SECONDS", "3600")
            )
            if not 0 < presigned_url_expiry_seconds <= MAX_PRESIGNED_URL_EXPIRY_SECONDS:
                raise ValueError(
                    "PRESIGNED_URL_EXPIRY_SECONDS must be between 1 and "
                    f"{MAX_PRESIGNED_URL_EXPIRY_SECONDS}."
                )

            device_max_packet_size = int(os.getenv("DEVICE_MAX_PACKET_SIZE", "2048"))
            if device_max_packet_size <= 0:
                raise ValueError("DEVICE_MAX_PACKET_SIZE must be a positive integer.")

            safety_margin_percent = int(os.getenv("SAFETY_MARGIN_PERCENT", "10"))
            if not 0 < safety_margin_percent < 100:
                raise ValueError("SAFETY_MARGIN_PERCENT must be between 1 and 99.")

            root_prefix = os.getenv("S3_ROOT_PREFIX", "public/public")
            if not root_prefix or root_prefix.startswith("/") or root_prefix.endswith("/"):
                raise ValueError(
                    "S3_ROOT_PREFIX must be non-empty without leading or trailing '/'."
                )

            device_api_timeout_seconds = float(
                os.getenv("DEVICE_API_TIMEOUT_SECONDS", "10")
            )
            if device_api_timeout_seconds <= 0:
                raise ValueError("DEVICE_API_TIMEOUT_SECONDS must be positive.")

            environment = os.getenv("ENVIRONMENT", "dev")

            # --- Handle special-case variables like log level ---
            log_level = os.getenv("LOG_LEVEL", "INFO").upper()
            allowed_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
            if log_level not in allowed_log_levels:
                raise ValueError(
                    f"LOG_LEVEL must be one of {allowed_log_levels}, not '{log_level}'"
                )

        except KeyError as e:
            raise ConfigurationError(
                f"Missing required environment variable: {e.args[0]}"
            ) from e
        except (ValueError, TypeError) as e:
            raise ConfigurationError(
                f"Invalid value for an environment variable: {e}"
            ) from e

        config = cls(
            bucket_name=bucket_name,
            iot_endpoint=iot_endpoint,
            device_api_url_base=device_api_url_base,
            region=region,
            presigned_url_expiry_seconds=presigned_url_expiry_seconds,
            device_max_packet_size=device_max_packet_size,
            safety_margin_percent=safety_margin_percent,
            root_prefix=root_prefix,
            device_api_timeout_seconds=device_api_timeout_seconds,
            environment=environment,
            log_level=log_level,
        )

        # Tiny packets combined with a large margin can round down to nothing.
        if config.payload_budget_bytes <= 0:
            raise ConfigurationError(
                "Derived payload budget must be positive; increase "
                "DEVICE_MAX_PACKET_SIZE or lower SAFETY_MARGIN_PERCENT."
            )
        return config


# --- Singleton Factory Function (Lazy-loaded and Cached) ---
@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """
    Loads the application configuration from environment variables.
    The result is cached using lru_cache, so the environment is only read once
    on the first call. This avoids import-time side effects.
    """
    logger.info("Loading application configuration from environment...")
    return AppConfig.load_from_env()
