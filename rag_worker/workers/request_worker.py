# File: rag_worker/workers/request_worker.py
import json
import time
from typing import Any, Callable, Dict, Mapping, Optional, Type, Union

import structlog
import structlog.contextvars
from pydantic import ValidationError

from rag_worker.application.use_cases.answer_use_case import AnswerUseCase
from rag_worker.application.use_cases.search_use_case import SearchUseCase
from rag_worker.core.config import Settings
from rag_worker.core.errors import ErrorCode, classify_error, is_transient, validation_error_message
from rag_worker.core.metrics import MESSAGES_CONSUMED_TOTAL, TASK_DURATION_SECONDS, TASK_RESULTS_TOTAL
from rag_worker.core.retry import RetryPolicy, linear_backoff
from rag_worker.domain.exceptions import EventPublishError, InvalidJSONError, RequestValidationError
from rag_worker.domain.models import AnswerTaskRequest, SearchTaskRequest, TaskType
from rag_worker.infrastructure.messaging.kafka_clients import KafkaConsumerClient, KafkaProducerClient

log = structlog.get_logger(__name__)

TaskRequest = Union[SearchTaskRequest, AnswerTaskRequest]

REQUEST_MODELS: Dict[TaskType, Type[TaskRequest]] = {
    TaskType.SEARCH: SearchTaskRequest,
    TaskType.ANSWER: AnswerTaskRequest,
}


def topic_task_types(settings: Settings) -> Dict[str, TaskType]:
    return {
        settings.KAFKA_SEARCH_REQUEST_TOPIC: TaskType.SEARCH,
        settings.KAFKA_ANSWER_REQUEST_TOPIC: TaskType.ANSWER,
    }


def result_topics(settings: Settings) -> Dict[TaskType, str]:
    return {
        TaskType.SEARCH: settings.KAFKA_SEARCH_RESULT_TOPIC,
        TaskType.ANSWER: settings.KAFKA_ANSWER_RESULT_TOPIC,
    }


def build_worker_retry_policy(settings: Settings, sleep: Callable[[float], None] = time.sleep) -> RetryPolicy:
    return RetryPolicy(
        name="request_worker",
        max_attempts=settings.WORKER_MAX_ATTEMPTS,
        wait=linear_backoff(settings.WORKER_BACKOFF_UNIT_SECONDS),
        is_retryable=is_transient,
        sleep=sleep,
    )


def decode_payload(raw: Optional[bytes]) -> Dict[str, Any]:
    try:
        payload = json.loads((raw or b"").decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise InvalidJSONError(f"invalid JSON: {e}") from e
    if not isinstance(payload, dict):
        raise InvalidJSONError("invalid JSON: payload must be an object")
    return payload


def parse_task_request(task_type: TaskType, payload: Dict[str, Any]) -> TaskRequest:
    try:
        return REQUEST_MODELS[task_type].model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(validation_error_message(e)) from e


def _search_handler(use_case: SearchUseCase) -> Callable[[SearchTaskRequest], Dict[str, Any]]:
    def handle(request: SearchTaskRequest) -> Dict[str, Any]:
        response = use_case.execute(request.tenant_id, request.kb_id, request.query, request.topk)
        return {"results": [hit.model_dump() for hit in response.results]}
    return handle


def _answer_handler(use_case: AnswerUseCase) -> Callable[[AnswerTaskRequest], Dict[str, Any]]:
    def handle(request: AnswerTaskRequest) -> Dict[str, Any]:
        response = use_case.execute(request.tenant_id, request.kb_id, request.question, request.topk)
        return {"answer": response.answer, "sources": [source.model_dump() for source in response.sources]}
    return handle


class RequestWorker:
    """
    Consumes search/answer requests and publishes exactly one result or
    failure event per request.

    The offset is committed only once that event is confirmed by the broker.
    If publishing fails the partition is rewound to the message, so the
    request is handled again; consumers de-duplicate results on request_id.
    """

    def __init__(
        self,
        settings: Settings,
        consumer: KafkaConsumerClient,
        producer: KafkaProducerClient,
        search_use_case: SearchUseCase,
        answer_use_case: AnswerUseCase,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.consumer = consumer
        self.producer = producer
        self.retry_policy = retry_policy or build_worker_retry_policy(settings)
        self.topic_task_types: Mapping[str, TaskType] = topic_task_types(settings)
        self.result_topics: Mapping[TaskType, str] = result_topics(settings)
        self.failure_topic = settings.KAFKA_FAILURE_TOPIC
        self.handlers: Mapping[TaskType, Callable[[Any], Dict[str, Any]]] = {
            TaskType.SEARCH: _search_handler(search_use_case),
            TaskType.ANSWER: _answer_handler(answer_use_case),
        }
        self._running = False
        self.log = log.bind(component="RequestWorker")

    def stop(self):
        self._running = False

    def run(self):
        self._running = True
        self.log.info("Starting request consumer loop...", topics=sorted(self.topic_task_types))
        try:
            while self._running:
                msg = self.consumer.poll()
                if msg is None:
                    continue
                self.process_message(msg)
        finally:
            self.log.info("Closing request worker resources...")
            self.consumer.close()
            self.producer.flush()

    def process_message(self, msg: Any) -> bool:
        """Handles one message. Returns True when its offset was committed."""
        topic = msg.topic()
        msg_log = self.log.bind(kafka_topic=topic, kafka_partition=msg.partition(), kafka_offset=msg.offset())

        task_type = self.topic_task_types.get(topic)
        if task_type is None:
            msg_log.error("Received message from unexpected topic")
            MESSAGES_CONSUMED_TOTAL.labels(topic=topic, status="unknown_topic").inc()
            self.consumer.commit(msg)
            return True

        try:
            return self._handle(msg, task_type, msg_log)
        finally:
            structlog.contextvars.unbind_contextvars("request_id", "trace_id")

    def _handle(self, msg: Any, task_type: TaskType, msg_log) -> bool:
        topic = msg.topic()
        start_time = time.perf_counter()
        ids = {"request_id": "", "trace_id": ""}
        try:
            payload = decode_payload(msg.value())
            ids.update({key: payload[key] for key in ids if isinstance(payload.get(key), str)})
            structlog.contextvars.bind_contextvars(**ids)
            request = parse_task_request(task_type, payload)
            MESSAGES_CONSUMED_TOTAL.labels(topic=topic, status="success").inc()
            body = self.retry_policy.call(self.handlers[task_type], request)
            out_topic = self.result_topics[task_type]
            event = {"request_id": request.request_id, "trace_id": request.trace_id, "status": "OK", **body}
            code = "OK"
        except Exception as e:
            error_code = classify_error(e)
            if error_code in (ErrorCode.INVALID_JSON, ErrorCode.INVALID_REQUEST):
                MESSAGES_CONSUMED_TOTAL.labels(topic=topic, status="invalid").inc()
            msg_log.error("Request failed", code=error_code.value, error=str(e), error_type=type(e).__name__)
            out_topic = self.failure_topic
            event = {
                **ids,
                "type": task_type.value,
                "status": "ERROR",
                "error": {"code": error_code.value, "message": str(e)},
            }
            code = error_code.value

        duration = time.perf_counter() - start_time
        TASK_DURATION_SECONDS.labels(task_type=task_type.value).observe(duration)
        TASK_RESULTS_TOTAL.labels(task_type=task_type.value, code=code).inc()

        try:
            self.producer.produce_and_wait(out_topic, key=ids["request_id"], value=event)
        except EventPublishError as e:
            msg_log.error("Result event not confirmed; rewinding for redelivery", out_topic=out_topic, error=str(e))
            self.consumer.seek(msg)
            return False

        self.consumer.commit(msg)
        msg_log.info(
            "Request completed",
            task_type=task_type.value,
            status="OK" if code == "OK" else "ERROR",
            code=code,
            latency_ms=round(duration * 1000, 2),
        )
        return True
