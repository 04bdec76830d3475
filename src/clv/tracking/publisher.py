"""Dual-sink publisher -- replicate a customer value record to both sinks.

Sinks:
- document_store: unconditional merge-upsert into ``customerValues`` keyed
  by record id. Always configured.
- customer_api: read-then-write with last-write-wins on ``lastUpdated``.
  Optional; when absent the outcome is ``skipped`` (``not_configured``).

The two sinks fail independently. Errors are reported per sink in the
PublishResult and never raised. The remote read and write are not atomic:
a concurrent writer can land between them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from datetime import datetime, timezone
from typing import Any

import structlog

from src.clv.core.monitoring import sink_publish_total
from src.clv.tracking.schemas import (
    CustomerValueRecord,
    PublishResult,
    SinkOutcome,
    SinkStatus,
)
from src.clv.tracking.sinks.base import CustomerApi, DocumentStore

logger = structlog.get_logger(__name__)

DOCUMENT_STORE = "document_store"
CUSTOMER_API = "customer_api"
ALL_SINKS = (DOCUMENT_STORE, CUSTOMER_API)

CUSTOMER_VALUES_COLLECTION = "customerValues"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC.

    Returns None for missing or unparseable values.
    """
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class DualSinkPublisher:
    """Writes records to the document store and the customer API.

    Args:
        document_store: Always-on document sink.
        customer_api: Optional HTTP sink; None disables it.
        collection: Document collection for customer value records.
    """

    def __init__(
        self,
        document_store: DocumentStore,
        customer_api: CustomerApi | None = None,
        collection: str = CUSTOMER_VALUES_COLLECTION,
    ) -> None:
        self._document_store = document_store
        self._customer_api = customer_api
        self._collection = collection

    def has_customer_api(self) -> bool:
        """Return True if the customer API sink is configured."""
        return self._customer_api is not None

    async def publish(
        self,
        record: CustomerValueRecord,
        sinks: Iterable[str] | None = None,
    ) -> PublishResult:
        """Publish one record.

        Args:
            record: The record to replicate.
            sinks: Restrict the attempt to these sink names (used to
                re-deliver to a sink that failed earlier). Defaults to all.

        Returns:
            PublishResult with one outcome per attempted sink.
        """
        targets = [name for name in ALL_SINKS if sinks is None or name in set(sinks)]
        wire = record.to_wire()

        attempts = []
        for name in targets:
            if name == DOCUMENT_STORE:
                attempts.append(self._publish_document(record, wire))
            else:
                attempts.append(self._publish_customer_api(record, wire))
        outcomes = await asyncio.gather(*attempts)

        result = PublishResult(record_id=record.id, outcomes=dict(zip(targets, outcomes)))
        for name, outcome in result.outcomes.items():
            sink_publish_total.labels(sink=name, status=outcome.status.value).inc()

        logger.info(
            "publisher.published",
            record_id=record.id,
            outcomes={name: o.status.value for name, o in result.outcomes.items()},
        )
        return result

    async def _publish_document(
        self, record: CustomerValueRecord, wire: dict[str, Any]
    ) -> SinkOutcome:
        try:
            await self._document_store.upsert(self._collection, record.id, wire)
        except Exception as exc:
            logger.warning(
                "publisher.sink_failed",
                sink=DOCUMENT_STORE,
                record_id=record.id,
                error=str(exc),
            )
            return SinkOutcome(status=SinkStatus.FAILED, reason=str(exc))
        return SinkOutcome(status=SinkStatus.WRITTEN)

    async def _publish_customer_api(
        self, record: CustomerValueRecord, wire: dict[str, Any]
    ) -> SinkOutcome:
        if self._customer_api is None:
            return SinkOutcome(status=SinkStatus.SKIPPED, reason="not_configured")

        try:
            existing = await self._customer_api.get_customer(record.id)
            if existing is None:
                await self._customer_api.add_customer(wire)
                return SinkOutcome(status=SinkStatus.WRITTEN, reason="added")

            remote_updated = parse_timestamp(existing.get("lastUpdated"))
            local_updated = parse_timestamp(record.last_updated)
            if remote_updated is not None and remote_updated >= local_updated:
                logger.debug(
                    "publisher.remote_not_older",
                    record_id=record.id,
                    remote_updated=remote_updated.isoformat(),
                )
                return SinkOutcome(status=SinkStatus.SKIPPED, reason="remote_not_older")

            await self._customer_api.update_customer(wire)
            return SinkOutcome(status=SinkStatus.WRITTEN, reason="updated")
        except Exception as exc:
            logger.warning(
                "publisher.sink_failed",
                sink=CUSTOMER_API,
                record_id=record.id,
                error=str(exc),
            )
            return SinkOutcome(status=SinkStatus.FAILED, reason=str(exc))
