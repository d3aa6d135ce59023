# File: rag_worker/core/config.py
import sys
import logging
from typing import List, Optional
from pydantic import Field, SecretStr, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file='.env',
        env_prefix='RAG_WORKER_',
        case_sensitive=False,
        env_file_encoding='utf-8',
        extra='ignore',
        frozen=True,
    )

    PROJECT_NAME: str = "RAG Worker"
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = Field(default="json", description="json or console.")

    # --- HTTP server ---
    HTTP_HOST: str = "0.0.0.0"
    HTTP_PORT: int = 8080
    METRICS_PORT: int = Field(default=8001, description="Port for the Prometheus exporter of the Kafka workers.")

    # --- PostgreSQL ---
    POSTGRES_SERVER: str = "postgres"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "rag_db"
    POSTGRES_USER: str = "rag_user"
    POSTGRES_PASSWORD: SecretStr = SecretStr("rag_pass")
    DATABASE_URL: Optional[str] = Field(default=None, description="Full SQLAlchemy URL. Overrides the POSTGRES_* fields.")

    # --- Kafka ---
    KAFKA_BOOTSTRAP_SERVERS: str = Field(default="redpanda:9092", description="Comma-separated list of Kafka bootstrap servers.")
    KAFKA_AUTO_OFFSET_RESET: str = "earliest"
    KAFKA_POLL_TIMEOUT_SECONDS: float = 1.0
    KAFKA_PRODUCER_ACKS: str = "all"
    KAFKA_PUBLISH_TIMEOUT_SECONDS: float = 10.0
    KAFKA_INGEST_CONSUMER_GROUP_ID: str = "rag-worker-ingest"
    KAFKA_WORKER_CONSUMER_GROUP_ID: str = "rag-core-worker"
    KAFKA_INGEST_TOPIC: str = "doc_ingest"
    KAFKA_SEARCH_REQUEST_TOPIC: str = "rag_search_request"
    KAFKA_ANSWER_REQUEST_TOPIC: str = "rag_answer_request"
    KAFKA_SEARCH_RESULT_TOPIC: str = "rag_search_result"
    KAFKA_ANSWER_RESULT_TOPIC: str = "rag_answer_result"
    KAFKA_FAILURE_TOPIC: str = "rag_failed"

    # --- S3 / MinIO ---
    S3_BUCKET_NAME: str = "rag-docs"
    S3_ENDPOINT_URL: Optional[str] = Field(default="http://minio:9000", description="Set to empty for AWS S3.")
    S3_ACCESS_KEY_ID: Optional[SecretStr] = None
    S3_SECRET_ACCESS_KEY: Optional[SecretStr] = None
    AWS_REGION: str = "us-east-1"

    # --- Azure OpenAI ---
    AZURE_OPENAI_ENDPOINT: str = ""
    AZURE_OPENAI_API_KEY: SecretStr = SecretStr("")
    AZURE_OPENAI_API_VERSION: str = "2024-06-01"
    AZURE_OPENAI_EMBEDDING_DEPLOYMENT: str = ""
    AZURE_OPENAI_CHAT_DEPLOYMENT: str = ""
    AZURE_EMBEDDING_TIMEOUT_SECONDS: float = 30.0
    AZURE_CHAT_TIMEOUT_SECONDS: float = 45.0
    CHAT_MAX_OUTPUT_TOKENS: int = 512
    EMBEDDING_DIMENSION: int = 3072
    UPSTREAM_MAX_ATTEMPTS: int = 3
    UPSTREAM_BACKOFF_BASE_SECONDS: float = 1.0

    # --- Qdrant ---
    QDRANT_URL: str = "http://qdrant:6333"
    QDRANT_TIMEOUT_SECONDS: int = 20

    # --- Ingestion ---
    CHUNK_SIZE: int = 800
    CHUNK_OVERLAP: int = 150
    SUPPORTED_CONTENT_TYPES: List[str] = ["text/plain"]

    # --- Request worker ---
    WORKER_MAX_ATTEMPTS: int = 3
    WORKER_BACKOFF_UNIT_SECONDS: float = 0.5

    @field_validator('LOG_LEVEL')
    @classmethod
    def check_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid LOG_LEVEL '{v}'. Must be one of {valid_levels}")
        return v.upper()

    @field_validator('LOG_FORMAT')
    @classmethod
    def check_log_format(cls, v: str) -> str:
        if v.lower() not in ("json", "console"):
            raise ValueError(f"Invalid LOG_FORMAT '{v}'. Must be 'json' or 'console'")
        return v.lower()

    @field_validator('WORKER_MAX_ATTEMPTS', 'UPSTREAM_MAX_ATTEMPTS')
    @classmethod
    def check_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @model_validator(mode='after')
    def check_chunking(self) -> 'Settings':
        if self.CHUNK_SIZE <= 0:
            raise ValueError(f"CHUNK_SIZE must be positive. Received: {self.CHUNK_SIZE}")
        if self.CHUNK_OVERLAP < 0:
            raise ValueError(f"CHUNK_OVERLAP must be non-negative. Received: {self.CHUNK_OVERLAP}")
        if self.CHUNK_OVERLAP >= self.CHUNK_SIZE:
            raise ValueError(
                f"CHUNK_OVERLAP ({self.CHUNK_OVERLAP}) must be less than CHUNK_SIZE ({self.CHUNK_SIZE})."
            )
        return self

    @property
    def sqlalchemy_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+psycopg2://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD.get_secret_value()}"
            f"@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )


def load_settings() -> Settings:
    """Builds the process settings once at startup. Exits the process on invalid configuration."""
    temp_log = logging.getLogger("rag_worker.config.loader")
    if not temp_log.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter('%(levelname)-8s [%(name)s] %(message)s'))
        temp_log.addHandler(handler)
        temp_log.setLevel(logging.INFO)

    try:
        temp_log.info("Loading RAG Worker settings...")
        settings = Settings()
    except ValidationError as e:
        temp_log.critical(f"FATAL: RAG Worker configuration validation failed:\n{e}")
        sys.exit(1)

    temp_log.info("--- RAG Worker Settings Loaded ---")
    temp_log.info(f"  PROJECT_NAME: {settings.PROJECT_NAME}")
    temp_log.info(f"  LOG_LEVEL: {settings.LOG_LEVEL}")
    temp_log.info(f"  KAFKA_BOOTSTRAP_SERVERS: {settings.KAFKA_BOOTSTRAP_SERVERS}")
    temp_log.info(f"  S3_BUCKET_NAME: {settings.S3_BUCKET_NAME}")
    temp_log.info(f"  QDRANT_URL: {settings.QDRANT_URL}")
    temp_log.info(f"  CHUNK_SIZE/OVERLAP: {settings.CHUNK_SIZE}/{settings.CHUNK_OVERLAP}")
    temp_log.info("----------------------------------")
    return settings
