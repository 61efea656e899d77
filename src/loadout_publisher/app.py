"""
The Lambda Adapter for the Loadout Publisher service.

This module is the main entry point for the AWS Lambda function behind an
API Gateway proxy integration. It is responsible for:
1.  Initializing AWS Lambda Powertools (Logger, Tracer, Metrics).
2.  Building the process-wide collaborator clients once per execution
    environment and injecting them into the pipeline.
3.  Parsing and validating the `userSub`/`userId` and `loadoutId` query
    parameters.
4.  Running the publishing pipeline (`PublishPipeline.run`).
5.  Mapping each failure class to its HTTP status and always answering with
    permissive CORS headers.
"""

import json
from functools import lru_cache
from typing import Any

import boto3
import httpx
from aws_lambda_powertools import Logger, Metrics, Tracer
from aws_lambda_powertools.metrics import MetricUnit
from aws_lambda_powertools.utilities.typing import LambdaContext
from botocore.config import Config as BotoConfig

from .clients import DeviceResolver, IotPublisher, S3Client
from .config import AppConfig, get_config
from .core import PublishPipeline
from .exceptions import (
    ConfigurationError,
    LoadoutPublisherError,
    PublishError,
    ResolutionError,
    StorageError,
    ValidationError,
    get_error_context,
)
from .schemas import PublishOutcome, PublishRequest

# --- Global & Reusable Components ---
# Service name and log level come from POWERTOOLS_SERVICE_NAME and
# POWERTOOLS_LOG_LEVEL; LOG_LEVEL from AppConfig is applied per invocation.
logger = Logger()
tracer = Tracer()
metrics = Metrics(namespace="LoadoutPublisher")

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET,OPTIONS,POST,PUT,DELETE,PATCH",
    "Access-Control-Allow-Headers": (
        "Content-Type,X-Amz-Date,Authorization,X-Api-Key,"
        "X-Amz-Security-Token,X-Amz-User-Agent"
    ),
    "Content-Type": "application/json",
}


def build_pipeline(config: AppConfig) -> PublishPipeline:
    """Wires real AWS and HTTP clients into a pipeline."""
    s3_boto_client = boto3.client(
        "s3",
        region_name=config.region,
        config=BotoConfig(signature_version="s3v4"),
    )
    iot_boto_client = boto3.client(
        "iot-data",
        region_name=config.region,
        endpoint_url=config.iot_endpoint_url,
    )
    http_client = httpx.Client(timeout=config.device_api_timeout_seconds)

    return PublishPipeline(
        resolver=DeviceResolver(http_client, config.device_api_url_base),
        s3_client=S3Client(
            s3_client=s3_boto_client,
            url_expiry_seconds=config.presigned_url_expiry_seconds,
        ),
        publisher=IotPublisher(iot_boto_client),
        config=config,
    )


@lru_cache(maxsize=1)
def get_pipeline() -> PublishPipeline:
    """Builds the pipeline on first use and reuses it for warm invocations."""
    config = get_config()
    logger.info(
        "Initializing pipeline clients",
        extra={
            "bucket": config.bucket_name,
            "region": config.region,
            "payload_budget_bytes": config.payload_budget_bytes,
        },
    )
    return build_pipeline(config)


def build_response(status_code: int, body: dict[str, Any]) -> dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": dict(CORS_HEADERS),
        "body": json.dumps(body),
    }


def _counts(outcome: PublishOutcome) -> dict[str, Any]:
    return {
        "totalItemsProcessed": outcome.total_signed,
        "totalItemsPublished": outcome.total_published,
        "batchesPublished": outcome.batches_published,
        "itemsDropped": outcome.total_dropped,
        "topic": outcome.topic,
        "s3PrefixQueried": outcome.prefix,
    }


def _summary_message(outcome: PublishOutcome) -> str:
    if outcome.total_enumerated == 0 and outcome.placeholders_skipped == 0:
        return "No objects found to process for the given userSub and loadoutId."
    if outcome.total_enumerated == 0:
        return "No files found for presigned URLs."
    return "Successfully generated and published presigned URLs."


def _record_outcome_metrics(outcome: PublishOutcome) -> None:
    metrics.add_metric(name="UrlsSigned", unit=MetricUnit.Count, value=outcome.total_signed)
    metrics.add_metric(
        name="ItemsPublished", unit=MetricUnit.Count, value=outcome.total_published
    )
    metrics.add_metric(
        name="BatchesPublished", unit=MetricUnit.Count, value=outcome.batches_published
    )
    if outcome.total_dropped:
        metrics.add_metric(
            name="OversizedItemsDropped", unit=MetricUnit.Count, value=outcome.total_dropped
        )


def _error_log(error: LoadoutPublisherError, context: LambdaContext) -> dict[str, Any]:
    """Tags the error with the invocation's request id for log correlation."""
    error.correlation_id = context.aws_request_id
    return get_error_context(error)


@logger.inject_lambda_context()
@tracer.capture_lambda_handler
@metrics.log_metrics(capture_cold_start_metric=True)
def handler(event: dict, context: LambdaContext) -> dict[str, Any]:
    """Main Lambda handler for API Gateway proxy requests."""
    try:
        pipeline = get_pipeline()
    except ConfigurationError as e:
        logger.error(f"FATAL: {e}", extra={"error": _error_log(e, context)})
        return build_response(500, {"message": e.message})
    except Exception:
        logger.exception("FATAL: failed to initialize pipeline clients.")
        return build_response(500, {"message": "Failed to process request."})

    config = pipeline.config
    logger.setLevel(config.log_level)
    metrics.add_dimension("environment", config.environment)

    # --- 1. Validate the request before any side effect ---
    try:
        request = PublishRequest.from_query_parameters(
            event.get("queryStringParameters")
        )
    except ValidationError as e:
        metrics.add_metric(name="ValidationFailures", unit=MetricUnit.Count, value=1)
        logger.warning("Rejected request.", extra={"error": _error_log(e, context)})
        return build_response(400, {"message": e.message})

    logger.info(
        "Starting presigned URL publication",
        extra={
            "user_id": request.user_id,
            "loadout_id": request.loadout_id,
            "payload_budget_bytes": config.payload_budget_bytes,
        },
    )

    # --- 2. Run the pipeline and map failures to statuses ---
    try:
        outcome = pipeline.run(request)

    except ResolutionError as e:
        metrics.add_metric(
            name="DeviceResolutionFailures", unit=MetricUnit.Count, value=1
        )
        logger.error(
            "Failed to retrieve deviceId from API.",
            extra={"error": _error_log(e, context)},
        )
        return build_response(
            502,
            {"message": "Failed to retrieve device information.", "error": e.message},
        )

    except StorageError as e:
        metrics.add_metric(name="StorageFailures", unit=MetricUnit.Count, value=1)
        logger.error(
            "Error during S3 operations.", extra={"error": _error_log(e, context)}
        )
        return build_response(
            500, {"message": "Failed to process request.", "error": e.message}
        )

    except PublishError as e:
        metrics.add_metric(name="PublishFailures", unit=MetricUnit.Count, value=1)
        logger.error(
            "Error during MQTT publish.", extra={"error": _error_log(e, context)}
        )
        body: dict[str, Any] = {
            "message": "Failed to publish all presigned URLs.",
            "error": e.message,
        }
        if e.outcome is not None:
            _record_outcome_metrics(e.outcome)
            body.update(_counts(e.outcome))
        return build_response(500, body)

    except Exception:
        metrics.add_metric(name="UnexpectedErrors", unit=MetricUnit.Count, value=1)
        logger.exception("A non-recoverable error occurred while publishing.")
        return build_response(500, {"message": "Failed to process request."})

    # --- 3. Summarize ---
    _record_outcome_metrics(outcome)
    return build_response(200, {"message": _summary_message(outcome), **_counts(outcome)})
