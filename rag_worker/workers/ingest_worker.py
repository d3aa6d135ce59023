# File: rag_worker/workers/ingest_worker.py
import json
from typing import Any, Optional

import structlog
import structlog.contextvars
from pydantic import ValidationError

from rag_worker.application.use_cases.ingest_document_use_case import IngestDocumentUseCase
from rag_worker.core.errors import validation_error_message
from rag_worker.core.metrics import MESSAGES_CONSUMED_TOTAL
from rag_worker.domain.models import IngestEvent, IngestOutcome
from rag_worker.infrastructure.messaging.kafka_clients import KafkaConsumerClient

log = structlog.get_logger(__name__)


class IngestWorker:
    """
    Consumes doc_ingest events and runs them through the ingestion pipeline.

    Offsets are committed after every message, including malformed ones and
    ones whose processing failed; the document status records the failure.
    """

    def __init__(self, consumer: KafkaConsumerClient, use_case: IngestDocumentUseCase):
        self.consumer = consumer
        self.use_case = use_case
        self._running = False
        self.log = log.bind(component="IngestWorker")

    def stop(self):
        self._running = False

    def run(self, once: bool = False):
        """Polls until stopped. With ``once`` the loop ends after the first message."""
        self._running = True
        self.log.info("Starting ingest consumer loop...", once=once)
        try:
            while self._running:
                msg = self.consumer.poll()
                if msg is None:
                    continue
                self.process_message(msg)
                self.consumer.commit(msg)
                if once:
                    break
        finally:
            self.log.info("Closing ingest consumer...")
            self.consumer.close()

    def process_message(self, msg: Any) -> Optional[IngestOutcome]:
        msg_log = self.log.bind(
            kafka_topic=msg.topic(),
            kafka_partition=msg.partition(),
            kafka_offset=msg.offset(),
        )

        try:
            payload = json.loads((msg.value() or b"").decode("utf-8"))
            event = IngestEvent.model_validate(payload)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            msg_log.error("Failed to decode ingest event", error=str(e))
            MESSAGES_CONSUMED_TOTAL.labels(topic=msg.topic(), status="invalid_json").inc()
            return None
        except ValidationError as e:
            msg_log.error("Ingest event is missing required fields", error=validation_error_message(e))
            MESSAGES_CONSUMED_TOTAL.labels(topic=msg.topic(), status="invalid_event").inc()
            return None

        MESSAGES_CONSUMED_TOTAL.labels(topic=msg.topic(), status="success").inc()
        structlog.contextvars.bind_contextvars(trace_id=event.trace_id)
        try:
            return self.use_case.execute(event)
        except Exception as e:
            # Store failure before the claim (status untouched), or while recording
            # a failure after it (document left PROCESSING, logged by the use case).
            msg_log.error("Unhandled error processing ingest event", document_id=event.doc_id, error=str(e), exc_info=True)
            return None
        finally:
            structlog.contextvars.unbind_contextvars("trace_id")
