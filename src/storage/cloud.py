from typing import Optional

import boto3
from botocore.exceptions import ClientError

from src.ingestion.errors import StorageError
from src.logger import log_with_timer

from .base import BaseStorage


class CloudStorage(BaseStorage):
    """Byte store on an S3-compatible bucket (DigitalOcean Spaces, MinIO, S3)."""

    def __init__(
        self,
        bucket_name: Optional[str],
        endpoint: Optional[str],
        key_id: Optional[str],
        access_key: Optional[str],
        region: str = "ams3",
        client=None,
    ):
        if not bucket_name:
            raise StorageError("BUCKET_NAME is required for cloud storage")
        self.bucket_name = bucket_name
        self.endpoint = endpoint

        if client is not None:
            self.client = client
            return

        if not endpoint or not key_id or not access_key:
            raise StorageError(
                "Missing required settings for cloud storage client."
                " Please ensure BUCKET_ENDPOINT, BUCKET_KEY_ID, and BUCKET_ACCESS_KEY are set."
            )
        session = boto3.session.Session()
        self.client = session.client(
            "s3",
            region_name=region,
            endpoint_url=endpoint,
            aws_access_key_id=key_id,
            aws_secret_access_key=access_key,
        )

    def absolute_path(self, key: str) -> str:
        """Constructs the absolute URL of a key in the bucket."""
        if not self.endpoint:
            return f"s3://{self.bucket_name}/{key}"
        protocol, _, host = self.endpoint.partition("://")
        return f"{protocol}://{self.bucket_name}.{host}/{key}"

    def put_bytes(self, key: str, data: bytes) -> str:
        try:
            self.client.put_object(Bucket=self.bucket_name, Key=key, Body=data)
        except ClientError as e:
            raise StorageError(f"Error saving file to cloud storage: {e}")
        return self.absolute_path(key)

    def get_bytes(self, key: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket_name, Key=key)
            return response["Body"].read()
        except ClientError as e:
            raise StorageError(f"Error reading file from cloud storage: {e}")

    def exists(self, key: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") in ("404", "NoSuchKey", "NotFound"):
                return False
            raise StorageError(f"Error checking file in cloud storage: {e}")
        return True

    @log_with_timer("storage")
    def move(self, source_key: str, destination_key: str) -> None:
        try:
            self.client.copy_object(
                Bucket=self.bucket_name,
                Key=destination_key,
                CopySource={"Bucket": self.bucket_name, "Key": source_key},
            )
            self.client.delete_object(Bucket=self.bucket_name, Key=source_key)
        except ClientError as e:
            raise StorageError(f"Error moving {source_key} to {destination_key}: {e}")

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise StorageError(f"Error deleting {key} from cloud storage: {e}")

    def delete_prefix(self, prefix: str) -> None:
        prefix = prefix.rstrip("/") + "/"
        try:
            paginator = self.client.get_paginator("list_objects_v2")
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get("Contents", []):
                    self.client.delete_object(Bucket=self.bucket_name, Key=obj["Key"])
        except ClientError as e:
            raise StorageError(f"Error deleting prefix {prefix} from cloud storage: {e}")

    def size(self, key: str) -> int:
        try:
            response = self.client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError:
            return 0
        return int(response.get("ContentLength", 0))
