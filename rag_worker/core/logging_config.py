import logging
import sys
from typing import List

import structlog
from structlog.types import EventDict, Processor

import rag_worker
from rag_worker.core.config import Settings

SERVICE_NAME = "rag-worker"
_HANDLER_NAME = "rag_worker.stdout"

# Client libraries that log every request at INFO.
_NOISY_LOGGERS = (
    "uvicorn",
    "uvicorn.access",
    "httpx",
    "httpcore",
    "botocore",
    "boto3",
    "urllib3",
    "openai",
    "qdrant_client",
    "sqlalchemy.engine",
)


def _add_service(_logger, _method_name: str, event_dict: EventDict) -> EventDict:
    event_dict.setdefault("service", SERVICE_NAME)
    event_dict.setdefault("version", rag_worker.__version__)
    return event_dict


def _shared_processors(settings: Settings) -> List[Processor]:
    processors: List[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        _add_service,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
    ]
    if settings.LOG_LEVEL == "DEBUG":
        processors.append(structlog.processors.CallsiteParameterAdder(
            {
                structlog.processors.CallsiteParameter.MODULE,
                structlog.processors.CallsiteParameter.LINENO,
            }
        ))
    return processors


def setup_logging(settings: Settings) -> None:
    """
    Routes structlog and stdlib records through one stdout handler.

    Records render as JSON lines, or as colourless console lines when
    ``LOG_FORMAT`` is ``console``. Calling it again replaces the handler
    it installed before, so workers and tests can reconfigure freely.
    """
    shared_processors = _shared_processors(settings)

    structlog.configure(
        processors=shared_processors + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    if settings.LOG_FORMAT == "console":
        render_chain: List[Processor] = [structlog.dev.ConsoleRenderer(colors=False)]
    else:
        render_chain = [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *render_chain,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    for existing in list(root_logger.handlers):
        if existing.get_name() == _HANDLER_NAME:
            root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(settings.LOG_LEVEL)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.get_logger(__name__).info(
        "Logging configured", log_level=settings.LOG_LEVEL, log_format=settings.LOG_FORMAT
    )
