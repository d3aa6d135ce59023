# File: rag_worker/main.py
import argparse
import json
import signal
import sys
from datetime import datetime, timezone
from typing import List, Optional

import structlog
import uvicorn
from dotenv import load_dotenv
from prometheus_client import start_http_server

from rag_worker.api.app import create_app
from rag_worker.core.config import Settings, load_settings
from rag_worker.core.logging_config import setup_logging
from rag_worker.dependencies import (
    get_answer_use_case,
    get_document_store,
    get_index_document_use_case,
    get_ingest_worker,
    get_request_worker,
    get_search_use_case,
)
from rag_worker.domain.models import DEFAULT_TOPK
from rag_worker.infrastructure.messaging.kafka_clients import KafkaProducerClient

log = structlog.get_logger(__name__)

DEMO_INGEST_EVENT = {
    "tenant_id": "tenant-001",
    "kb_id": "kb-001",
    "doc_id": "doc-demo",
    "object_key": "tenants/tenant-001/kb-001/doc-demo.txt",
    "content_type": "text/plain",
    "trace_id": "demo-trace-001",
}


def _install_signal_handlers(worker) -> None:
    def _handle(signum, _frame):
        log.info("Shutdown signal received.", signal=signal.Signals(signum).name)
        worker.stop()

    signal.signal(signal.SIGINT, _handle)
    signal.signal(signal.SIGTERM, _handle)


def _start_metrics_server(settings: Settings) -> None:
    start_http_server(settings.METRICS_PORT)
    log.info(f"Prometheus metrics server started on port {settings.METRICS_PORT}.")


def run_serve(settings: Settings, args: argparse.Namespace) -> int:
    uvicorn.run(create_app(settings), host=settings.HTTP_HOST, port=settings.HTTP_PORT, log_config=None)
    return 0


def run_request_worker(settings: Settings, args: argparse.Namespace) -> int:
    try:
        _start_metrics_server(settings)
        worker = get_request_worker(settings)
    except Exception as e:
        log.critical("Failed to initialize worker dependencies", error=str(e), exc_info=True)
        return 1

    _install_signal_handlers(worker)
    log.info("Request worker initialized successfully. Starting message consumption loop...")
    worker.run()
    log.info("Request worker shut down gracefully.")
    return 0


def run_ingest_worker(settings: Settings, args: argparse.Namespace) -> int:
    try:
        if not args.once:
            _start_metrics_server(settings)
        worker = get_ingest_worker(settings)
    except Exception as e:
        log.critical("Failed to initialize worker dependencies", error=str(e), exc_info=True)
        return 1

    _install_signal_handlers(worker)
    log.info("Ingest worker initialized successfully. Starting message consumption loop...", once=args.once)
    worker.run(once=args.once)
    log.info("Ingest worker shut down gracefully.")
    return 0


def run_index_document(settings: Settings, args: argparse.Namespace) -> int:
    try:
        indexed = get_index_document_use_case(settings).execute(args.doc_id)
    except Exception as e:
        log.error("Embedding failed", document_id=args.doc_id, error=str(e))
        return 1
    log.info("Document indexed", document_id=args.doc_id, num_chunks=indexed)
    return 0


def run_search(settings: Settings, args: argparse.Namespace) -> int:
    try:
        response = get_search_use_case(settings).execute(args.tenant, args.kb, args.query, args.topk)
    except Exception as e:
        log.error("Search failed", error=str(e))
        return 1
    print(response.model_dump_json(indent=2))
    return 0


def run_answer(settings: Settings, args: argparse.Namespace) -> int:
    try:
        response = get_answer_use_case(settings).execute(args.tenant, args.kb, args.question, args.topk)
    except Exception as e:
        log.error("Answer failed", error=str(e))
        return 1
    print(response.model_dump_json(indent=2))
    return 0


def run_produce_demo(settings: Settings, args: argparse.Namespace) -> int:
    event = dict(DEMO_INGEST_EVENT, requested_at=datetime.now(timezone.utc).isoformat())
    try:
        KafkaProducerClient(settings).produce_and_wait(settings.KAFKA_INGEST_TOPIC, key=event["doc_id"], value=event)
    except Exception as e:
        log.error("Failed to send demo event", error=str(e))
        return 1
    log.info("Demo event sent", topic=settings.KAFKA_INGEST_TOPIC, payload=json.dumps(event))
    return 0


def run_init_db(settings: Settings, args: argparse.Namespace) -> int:
    try:
        get_document_store(settings).create_schema()
    except Exception as e:
        log.error("Schema initialization failed", error=str(e))
        return 1
    return 0


def _positive_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("--topk requires an integer value")
    if parsed <= 0:
        raise argparse.ArgumentTypeError("--topk must be positive")
    return parsed


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="rag-worker", description="RAG ingestion and query worker.")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the HTTP search/answer API.")
    serve.set_defaults(handler=run_serve)

    request_worker = subparsers.add_parser("request-worker", help="Consume search/answer requests from Kafka.")
    request_worker.set_defaults(handler=run_request_worker)

    ingest_worker = subparsers.add_parser("ingest-worker", help="Consume doc_ingest events from Kafka.")
    ingest_worker.add_argument("--once", action="store_true", help="Exit after the first message.")
    ingest_worker.set_defaults(handler=run_ingest_worker)

    index_document = subparsers.add_parser("index-document", help="Embed a READY document into Qdrant.")
    index_document.add_argument("doc_id")
    index_document.set_defaults(handler=run_index_document)

    for name, field, handler in (("search", "query", run_search), ("answer", "question", run_answer)):
        sub = subparsers.add_parser(name, help=f"Run a single {name} request and print the result.")
        sub.add_argument(field)
        sub.add_argument("--tenant", required=True)
        sub.add_argument("--kb", required=True)
        sub.add_argument("--topk", type=_positive_int, default=DEFAULT_TOPK)
        sub.set_defaults(handler=handler)

    produce_demo = subparsers.add_parser("produce-demo", help="Send a demo ingest event to Kafka.")
    produce_demo.set_defaults(handler=run_produce_demo)

    init_db = subparsers.add_parser("init-db", help="Create the document tables if missing.")
    init_db.set_defaults(handler=run_init_db)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    settings = load_settings()
    setup_logging(settings)
    log.info("Starting rag-worker", command=args.command)
    return args.handler(settings, args)


if __name__ == "__main__":
    sys.exit(main())
