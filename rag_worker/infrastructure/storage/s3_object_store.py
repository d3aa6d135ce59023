# File: rag_worker/infrastructure/storage/s3_object_store.py
from typing import Optional

import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from rag_worker.application.ports.object_store_port import ObjectStorePort
from rag_worker.core.config import Settings
from rag_worker.domain.exceptions import ObjectStoreError

log = structlog.get_logger(__name__)


class S3ObjectStore(ObjectStorePort):
    """Synchronous reader of raw document bytes from S3 or MinIO."""

    def __init__(self, s3_client, bucket_name: str):
        self.s3_client = s3_client
        self.bucket_name = bucket_name
        self.log = log.bind(s3_bucket=bucket_name)

    @classmethod
    def from_settings(cls, settings: Settings, bucket_name: Optional[str] = None) -> "S3ObjectStore":
        client_kwargs = {
            "region_name": settings.AWS_REGION,
            # MinIO only supports path-style addressing.
            "config": Config(s3={"addressing_style": "path"}),
        }
        if settings.S3_ENDPOINT_URL:
            client_kwargs["endpoint_url"] = settings.S3_ENDPOINT_URL
        if settings.S3_ACCESS_KEY_ID and settings.S3_SECRET_ACCESS_KEY:
            client_kwargs["aws_access_key_id"] = settings.S3_ACCESS_KEY_ID.get_secret_value()
            client_kwargs["aws_secret_access_key"] = settings.S3_SECRET_ACCESS_KEY.get_secret_value()
        return cls(boto3.client("s3", **client_kwargs), bucket_name or settings.S3_BUCKET_NAME)

    def fetch_bytes(self, object_key: str) -> bytes:
        self.log.info("Downloading object from S3...", object_key=object_key)
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=object_key)
            body = response["Body"].read()
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code in ("404", "NoSuchKey"):
                self.log.error("Object not found in S3", object_key=object_key)
                raise ObjectStoreError(f"Object not found in S3: {object_key}") from e
            if code == "AccessDenied":
                self.log.error("Access Denied when trying to download from S3", object_key=object_key)
                raise ObjectStoreError(f"Access Denied for S3 object: {object_key}") from e
            self.log.error("S3 download failed", error_code=code, error=str(e))
            raise ObjectStoreError(f"S3 error downloading {object_key}: {code}") from e
        except BotoCoreError as e:
            self.log.error("S3 download failed", error=str(e))
            raise ObjectStoreError(f"S3 error downloading {object_key}: {e}") from e
        self.log.info("Object downloaded successfully from S3.", object_key=object_key, size_bytes=len(body))
        return body
