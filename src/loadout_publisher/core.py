# src/loadout_publisher/core.py

"""
Core orchestration of the presigned-URL publishing pipeline.

One run takes a user and a loadout and walks these stages in order:

    RESOLVE -> ENUMERATE -> SIGN_AND_PACK -> PUBLISH_SEQUENCE -> SUMMARIZE

1.  RESOLVE: look up the device linked to the user. Nothing touches storage
    until this succeeds.
2.  ENUMERATE: list every object under `{root}/{user}/{loadout}/`.
3.  SIGN_AND_PACK: presign each key, one at a time, then pack the entries
    into batches that fit the device's payload budget.
4.  PUBLISH_SEQUENCE: publish batches strictly in order, each acknowledged
    before the next is sent. The first failure stops the sequence so the
    device never sees a gap it cannot detect.
5.  SUMMARIZE: return the counters.

A failing stage raises its own exception type with the stage name added to
the error context; later stages are never attempted. Nothing is retried and
batches already delivered are not rolled back.
"""

import logging
from enum import Enum

from .clients import DeviceResolver, IotPublisher, S3Client
from .config import AppConfig
from .exceptions import LoadoutPublisherError, PublishError
from .packer import pack_entries
from .schemas import PublishOutcome, PublishRequest, SignedUrlEntry

logger = logging.getLogger(__name__)


class PipelineStage(str, Enum):
    RESOLVE = "RESOLVE"
    ENUMERATE = "ENUMERATE"
    SIGN_AND_PACK = "SIGN_AND_PACK"
    PUBLISH_SEQUENCE = "PUBLISH_SEQUENCE"
    SUMMARIZE = "SUMMARIZE"


class PublishPipeline:
    """
    Runs the pipeline against injected collaborators.

    The collaborators are long-lived, stateless handles; a pipeline instance
    keeps no state between runs, so one instance can serve every invocation.
    """

    def __init__(
        self,
        resolver: DeviceResolver,
        s3_client: S3Client,
        publisher: IotPublisher,
        config: AppConfig,
    ):
        self._resolver = resolver
        self._s3 = s3_client
        self._publisher = publisher
        self._config = config

    @property
    def config(self) -> AppConfig:
        return self._config

    def run(self, request: PublishRequest) -> PublishOutcome:
        stage = PipelineStage.RESOLVE
        try:
            device_id = self._resolver.resolve(request.user_id)
            outcome = PublishOutcome(
                topic=self._config.mqtt_topic_for(device_id),
                prefix=self._config.storage_prefix_for(
                    request.user_id, request.loadout_id
                ),
            )
            logger.info(
                "Resolved device",
                extra={"device_id": device_id, "topic": outcome.topic},
            )

            stage = PipelineStage.ENUMERATE
            keys, outcome.placeholders_skipped = self._s3.list_object_keys(
                self._config.bucket_name, outcome.prefix
            )
            outcome.total_enumerated = len(keys)
            if not keys:
                logger.info(
                    "No files found under prefix",
                    extra={
                        "prefix": outcome.prefix,
                        "placeholders_skipped": outcome.placeholders_skipped,
                    },
                )
                return outcome

            stage = PipelineStage.SIGN_AND_PACK
            entries = self._sign_all(keys)
            outcome.total_signed = len(entries)
            packed = pack_entries(entries, self._config.payload_budget_bytes)
            outcome.total_dropped = len(packed.dropped)
            logger.info(
                "Packed signed URLs into batches",
                extra={
                    "entries": len(entries),
                    "batches": len(packed.batches),
                    "dropped": len(packed.dropped),
                    "budget_bytes": self._config.payload_budget_bytes,
                },
            )

            stage = PipelineStage.PUBLISH_SEQUENCE
            for index, batch in enumerate(packed.batches):
                try:
                    self._publisher.publish_batch(outcome.topic, batch, batch_index=index)
                except PublishError as e:
                    e.outcome = outcome.model_copy()
                    raise
                outcome.total_published += len(batch)
                outcome.batches_published += 1

            stage = PipelineStage.SUMMARIZE
            logger.info(
                "Successfully processed and published presigned URLs in batches",
                extra=outcome.model_dump(),
            )
            return outcome

        except LoadoutPublisherError as e:
            e.context.setdefault("stage", stage.value)
            raise

    def _sign_all(self, keys: list[str]) -> list[SignedUrlEntry]:
        # The first signing failure aborts the run.
        return [self._s3.presign(self._config.bucket_name, key) for key in keys]
