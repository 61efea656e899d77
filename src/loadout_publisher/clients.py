# src/loadout_publisher/clients.py

"""
Client wrappers for the collaborators of the publishing pipeline.

- `S3Client`: lists URL candidates under a prefix and presigns them.
- `IotPublisher`: delivers one packed batch to a device topic.
- `DeviceResolver`: maps a user to the device linked to it over HTTP.

These classes provide a clean, abstracted interface over raw boto3 and httpx
clients and translate transport failures into the service's exception types,
so the orchestrator only ever handles `LoadoutPublisherError` subclasses.
The underlying clients are injected, which keeps them process-wide in the
Lambda runtime and replaceable in tests.
"""

import json
import logging
from typing import TYPE_CHECKING, Any, Sequence

import httpx
import pydantic
from botocore.exceptions import BotoCoreError, ClientError

from .exceptions import (
    DeviceLookupRejectedError,
    DeviceLookupUnavailableError,
    MalformedDeviceResponseError,
    PublishError,
    SigningError,
    StorageListError,
)
from .packer import serialize_batch
from .schemas import DeviceLookupPayload, SignedUrlEntry

if TYPE_CHECKING:
    from mypy_boto3_iot_data.client import IoTDataPlaneClient as IoTDataClientType
    from mypy_boto3_s3.client import S3Client as S3ClientType

logger = logging.getLogger(__name__)

# MQTT "at least once"
QOS_AT_LEAST_ONCE = 1


def _aws_error_context(e: Exception) -> dict[str, Any]:
    if isinstance(e, ClientError):
        return {
            "aws_error_code": e.response["Error"].get("Code", "Unknown"),
            "aws_error_message": e.response["Error"].get("Message", ""),
        }
    return {"botocore_error": type(e).__name__}


def is_directory_placeholder(key: str, size: int) -> bool:
    """Zero-byte keys ending in '/' are console-created folders, not files."""
    return key.endswith("/") and size == 0


class S3Client:
    """
    A wrapper for the S3 operations the pipeline needs: enumeration and signing.
    """

    def __init__(self, s3_client: "S3ClientType", url_expiry_seconds: int):
        """
        Initializes the S3Client.

        Args:
            s3_client: A typed boto3 S3 client. It should be configured for
                SigV4 so that presigned URLs honour the expiry.
            url_expiry_seconds: Lifetime of every presigned URL.
        """
        self._client = s3_client
        self._url_expiry_seconds = url_expiry_seconds

    def list_object_keys(self, bucket: str, prefix: str) -> tuple[list[str], int]:
        """
        Lists every object key under `prefix`, following continuation tokens
        until the listing is exhausted.

        Returns the URL-candidate keys in listing order and the number of
        directory placeholders that were skipped.
        """
        keys: list[str] = []
        placeholders = 0
        pages = 0
        try:
            paginator = self._client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=bucket, Prefix=prefix):
                pages += 1
                for obj in page.get("Contents", []):
                    if is_directory_placeholder(obj["Key"], obj.get("Size", 0)):
                        placeholders += 1
                        continue
                    keys.append(obj["Key"])
        except (ClientError, BotoCoreError) as e:
            raise StorageListError(
                bucket=bucket,
                prefix=prefix,
                reason=str(e),
                context={"pages_read": pages, **_aws_error_context(e)},
            ) from e

        logger.debug(
            "Listed objects under prefix",
            extra={
                "bucket": bucket,
                "prefix": prefix,
                "pages": pages,
                "keys": len(keys),
                "placeholders_skipped": placeholders,
            },
        )
        return keys, placeholders

    def presign(self, bucket: str, key: str) -> SignedUrlEntry:
        """Generates a time-limited GET URL for one object."""
        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": bucket, "Key": key},
                ExpiresIn=self._url_expiry_seconds,
            )
        except (ClientError, BotoCoreError) as e:
            raise SigningError(
                bucket=bucket, key=key, reason=str(e), context=_aws_error_context(e)
            ) from e
        return SignedUrlEntry(key=key, url=url)


class IotPublisher:
    """Publishes serialized batches through the AWS IoT data plane."""

    def __init__(self, iot_data_client: "IoTDataClientType", qos: int = QOS_AT_LEAST_ONCE):
        self._client = iot_data_client
        self._qos = qos

    def publish_batch(
        self, topic: str, batch: Sequence[SignedUrlEntry], batch_index: int
    ) -> int:
        """
        Sends `batch` as one message and returns once the broker acknowledged it.

        Returns the payload size in bytes.
        """
        payload = serialize_batch(batch)
        logger.info(
            "Publishing batch",
            extra={
                "topic": topic,
                "batch_index": batch_index,
                "items": len(batch),
                "payload_bytes": len(payload),
            },
        )
        try:
            self._client.publish(topic=topic, qos=self._qos, payload=payload)
        except (ClientError, BotoCoreError) as e:
            raise PublishError(
                topic=topic,
                reason=str(e),
                batch_index=batch_index,
                context={"items": len(batch), **_aws_error_context(e)},
            ) from e
        return len(payload)


class DeviceResolver:
    """
    Resolves the device linked to a user through the device-link API.

    The API may wrap its answer in a proxy-style envelope whose `body` is
    itself a JSON-encoded string, so the response is decoded in up to two
    layers before `deviceId` is read.
    """

    def __init__(self, http_client: httpx.Client, base_url: str):
        self._http = http_client
        self._base_url = base_url

    def resolve(self, user_id: str) -> str:
        logger.info("Querying Device API", extra={"url": self._base_url})
        try:
            response = self._http.get(self._base_url, params={"userId": user_id})
        except httpx.HTTPError as e:
            raise DeviceLookupUnavailableError(url=self._base_url, reason=str(e)) from e

        logger.debug(
            "Device API responded",
            extra={"status_code": response.status_code, "body": response.text[:512]},
        )
        if response.status_code != 200:
            raise DeviceLookupRejectedError(
                status_code=response.status_code, body=response.text
            )

        try:
            parsed = json.loads(response.text)
        except json.JSONDecodeError as e:
            raise MalformedDeviceResponseError(
                f"Failed to parse JSON: {e}", raw=response.text
            ) from e

        if isinstance(parsed, dict) and isinstance(parsed.get("body"), str):
            try:
                parsed = json.loads(parsed["body"])
            except json.JSONDecodeError as e:
                raise MalformedDeviceResponseError(
                    f"Failed to parse stringified body: {e}", raw=parsed["body"]
                ) from e

        try:
            payload = DeviceLookupPayload.model_validate(parsed)
        except pydantic.ValidationError as e:
            raise MalformedDeviceResponseError(
                "'deviceId' missing or invalid in Device API response",
                raw=response.text,
            ) from e
        return payload.device_id
