"""Publishes merged audio to Cloudflare R2 through its S3-compatible API."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Iterable, List, Optional
from urllib.parse import quote

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import PublishError, PurgeError
from ..settings import Settings

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".ogg": "audio/ogg",
    ".wav": "audio/wav",
    ".flac": "audio/flac",
}

# delete_objects accepts at most this many keys per call
DELETE_BATCH = 1000


def make_r2_client(settings: Settings):
    return boto3.client(
        "s3",
        endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
        aws_access_key_id=settings.r2_access_key_id,
        aws_secret_access_key=settings.r2_secret_access_key,
        config=Config(signature_version="s3v4", s3={"addressing_style": "path"}),
        region_name="auto",
    )


def content_type_for(path: Path) -> str:
    suffix = path.suffix.lower()
    return CONTENT_TYPES.get(suffix) or mimetypes.guess_type(path.name)[0] or "application/octet-stream"


class R2Publisher:
    def __init__(self, settings: Settings, client=None):
        self.settings = settings
        self.bucket = settings.r2_bucket
        self.folder = settings.publish_folder
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = make_r2_client(self.settings)
        return self._client

    def key_for(self, local_path: Path, identifier: str) -> str:
        name = f"{identifier}{Path(local_path).suffix.lower()}"
        return f"{self.folder}/{name}" if self.folder else name

    def public_url(self, key: str) -> str:
        encoded = quote(key, safe="/")
        if self.settings.r2_public_base_url:
            return f"{self.settings.r2_public_base_url}/{encoded}"
        return f"https://{self.bucket}.{self.settings.r2_account_id}.r2.cloudflarestorage.com/{encoded}"

    def publish(self, local_path: Path, identifier: str) -> str:
        local_path = Path(local_path)
        key = self.key_for(local_path, identifier)
        try:
            self.client.upload_file(
                str(local_path),
                self.bucket,
                key,
                ExtraArgs={"ContentType": content_type_for(local_path)},
            )
        except (BotoCoreError, ClientError, OSError) as e:
            raise PublishError(key, e)
        logger.info("uploaded %s to bucket %s", key, self.bucket)
        return self.public_url(key)

    def purge_by_prefix(self, prefix: str, keep: Iterable[str] = ()) -> int:
        """Delete every object under ``prefix`` except ``keep``; returns the count."""
        keep = set(keep)
        try:
            keys = [k for k in self._list_keys(prefix) if k not in keep]
            for i in range(0, len(keys), DELETE_BATCH):
                batch = keys[i : i + DELETE_BATCH]
                resp = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in batch], "Quiet": True},
                )
                errors = resp.get("Errors") or []
                if errors:
                    raise PurgeError(prefix, f"{len(errors)} objects not deleted, first: {errors[0].get('Key')}")
        except (BotoCoreError, ClientError) as e:
            raise PurgeError(prefix, e)
        if keys:
            logger.info("purged %d objects under %s", len(keys), prefix)
        return len(keys)

    def _list_keys(self, prefix: str) -> List[str]:
        keys: List[str] = []
        token: Optional[str] = None
        while True:
            kwargs = {"Bucket": self.bucket, "Prefix": prefix}
            if token:
                kwargs["ContinuationToken"] = token
            resp = self.client.list_objects_v2(**kwargs)
            keys.extend(obj["Key"] for obj in resp.get("Contents", []))
            if not resp.get("IsTruncated"):
                return keys
            token = resp.get("NextContinuationToken")
