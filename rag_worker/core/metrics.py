# File: rag_worker/core/metrics.py
from prometheus_client import Counter, Histogram

MESSAGES_CONSUMED_TOTAL = Counter(
    "rag_worker_messages_consumed_total",
    "Total number of Kafka messages consumed.",
    ["topic", "status"]
)

TASK_DURATION_SECONDS = Histogram(
    "rag_worker_task_duration_seconds",
    "Time taken to handle a single search/answer request, including retries.",
    ["task_type"],
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60]
)

TASK_RESULTS_TOTAL = Counter(
    "rag_worker_task_results_total",
    "Terminal outcome of search/answer requests by code.",
    ["task_type", "code"]
)

TASK_RETRIES_TOTAL = Counter(
    "rag_worker_task_retries_total",
    "Retries scheduled by a retry policy.",
    ["policy"]
)

INGEST_OUTCOMES_TOTAL = Counter(
    "rag_worker_ingest_outcomes_total",
    "Outcome of ingest events.",
    ["outcome"]
)

INGEST_DURATION_SECONDS = Histogram(
    "rag_worker_ingest_duration_seconds",
    "Time taken to process a single ingest event.",
    buckets=[0.1, 0.5, 1, 2, 5, 10, 30, 60]
)

CHUNKS_PERSISTED_TOTAL = Counter(
    "rag_worker_chunks_persisted_total",
    "Total number of chunks written to the document store.",
    ["tenant_id"]
)

UPSTREAM_ERRORS_TOTAL = Counter(
    "rag_worker_upstream_errors_total",
    "Errors returned by Azure OpenAI endpoints.",
    ["service", "error_type"]
)

UPSTREAM_DURATION_SECONDS = Histogram(
    "rag_worker_upstream_duration_seconds",
    "Duration of calls to Azure OpenAI endpoints.",
    ["service"]
)

KAFKA_MESSAGES_PRODUCED_TOTAL = Counter(
    "rag_worker_kafka_messages_produced_total",
    "Total number of messages produced to Kafka.",
    ["topic", "status"]
)

REQUEST_PROCESSING_DURATION_SECONDS = Histogram(
    "rag_worker_http_request_duration_seconds",
    "Time taken to process an HTTP request.",
    ["method", "path"]
)
