"""Time-limited direct download URLs for the private object store."""

from __future__ import annotations

import logging
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from starlette.concurrency import run_in_threadpool

from pack_vault.services.errors import UpstreamFailure

logger = logging.getLogger(__name__)


class ObjectStorePresigner:
    """Generate pre-signed GET URLs against an S3-compatible endpoint."""

    def __init__(
        self,
        bucket: str,
        *,
        endpoint_url: str | None = None,
        region: str = "auto",
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        client: Any | None = None,
    ) -> None:
        self.bucket = bucket
        self._client = client or boto3.client(
            "s3",
            endpoint_url=endpoint_url,
            region_name=region,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4"),
        )

    def _presign_sync(self, key: str, ttl_seconds: int) -> str:
        return self._client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": key},
            ExpiresIn=ttl_seconds,
        )

    async def presign_get(self, key: str, ttl_seconds: int) -> str:
        """Return a URL granting GET on ``key`` for ``ttl_seconds``."""
        try:
            return await run_in_threadpool(self._presign_sync, key, ttl_seconds)
        except (BotoCoreError, ClientError) as err:
            logger.warning("Failed to presign object in bucket %s: %s", self.bucket, err)
            raise UpstreamFailure("storage_unavailable") from err
