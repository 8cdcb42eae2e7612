from __future__ import annotations

import re
import uuid
from typing import Any

import boto3

from ...domain.tenders.collaborators import DocumentStorage, StoredFile


def make_document_key(*, file_name: str = "") -> str:
    ext = ""
    m = re.search(r"\.([a-zA-Z0-9]{1,10})$", (file_name or "").strip())
    if m:
        ext = f".{m.group(1).lower()}"
    return f"tenders/documents/{uuid.uuid4()}{ext}"


class S3DocumentStorage(DocumentStorage):
    """Checklist file uploads kept in a single S3 bucket."""

    def __init__(
        self,
        *,
        bucket_name: str,
        region: str,
        public_base_url: str | None = None,
        client: Any | None = None,
    ):
        bucket = str(bucket_name or "").strip()
        if not bucket:
            raise RuntimeError("DOCUMENTS_BUCKET_NAME is not set")
        self._bucket = bucket
        self._region = region
        self._public_base = str(public_base_url or "").strip().rstrip("/") or None
        self._client = client or boto3.client("s3", region_name=region)

    def public_url(self, key: str) -> str:
        if self._public_base:
            return f"{self._public_base}/{key}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com/{key}"

    def upload(self, *, content: bytes, file_name: str, content_type: str | None = None) -> StoredFile:
        key = make_document_key(file_name=file_name)
        kwargs: dict[str, Any] = {"Bucket": self._bucket, "Key": key, "Body": content or b""}
        if content_type:
            kwargs["ContentType"] = str(content_type)
        self._client.put_object(**kwargs)
        return StoredFile(url=self.public_url(key), key=key)
