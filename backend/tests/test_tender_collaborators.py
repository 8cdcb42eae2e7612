from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from tenderdesk.domain.tenders.models import SiteDraft
from tenderdesk.infrastructure.sites_client import HttpSiteCreator, InMemorySiteDirectory
from tenderdesk.infrastructure.storage.s3_documents import S3DocumentStorage, make_document_key


def _draft() -> SiteDraft:
    return SiteDraft(
        name="Ring Road Flyover Package 3",
        location="Pune, Maharashtra",
        budget=Decimal("45000000"),
        client="Public Works Department",
        organizationId="org_a",
        description="Elevated corridor",
        sourceTenderId="tnd_1",
    )


def test_http_site_creator_posts_site_and_reads_id():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(201, json={"site": {"id": "site_900"}})

    creator = HttpSiteCreator(
        base_url="https://sites.example.com/",
        token="secret",
        transport=httpx.MockTransport(handler),
    )
    created = creator.create_site(_draft())

    assert created.site_id == "site_900"
    req = seen[0]
    assert str(req.url) == "https://sites.example.com/api/sites"
    assert req.headers["Authorization"] == "Bearer secret"
    assert req.headers["Idempotency-Key"] == "tender-conversion-tnd_1"
    body = json.loads(req.content)
    assert body["budget"] == 45000000
    assert body["organization_id"] == "org_a"
    assert body["source_tender_id"] == "tnd_1"


def test_http_site_creator_raises_on_error_status():
    creator = HttpSiteCreator(
        base_url="https://sites.example.com",
        transport=httpx.MockTransport(lambda r: httpx.Response(503, json={"error": "down"})),
    )
    with pytest.raises(httpx.HTTPStatusError):
        creator.create_site(_draft())


def test_http_site_creator_requires_site_id():
    creator = HttpSiteCreator(
        base_url="https://sites.example.com",
        transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"ok": True})),
    )
    with pytest.raises(RuntimeError):
        creator.create_site(_draft())


def test_in_memory_directory_issues_unique_ids():
    d = InMemorySiteDirectory()
    a = d.create_site(_draft())
    b = d.create_site(_draft())
    assert a.site_id != b.site_id
    assert set(d.sites) == {a.site_id, b.site_id}


class FakeS3:
    def __init__(self):
        self.calls: list[dict] = []

    def put_object(self, **kwargs):
        self.calls.append(kwargs)
        return {"ETag": '"abc"'}


def test_s3_storage_uploads_under_documents_prefix():
    s3 = FakeS3()
    storage = S3DocumentStorage(bucket_name="tender-docs", region="ap-south-1", client=s3)
    stored = storage.upload(content=b"bid", file_name="Technical Bid.PDF", content_type="application/pdf")

    call = s3.calls[0]
    assert call["Bucket"] == "tender-docs"
    assert call["Key"].startswith("tenders/documents/")
    assert call["Key"].endswith(".pdf")
    assert call["ContentType"] == "application/pdf"
    assert stored.key == call["Key"]
    assert stored.url == f"https://tender-docs.s3.ap-south-1.amazonaws.com/{call['Key']}"


def test_s3_storage_prefers_public_base_url():
    storage = S3DocumentStorage(
        bucket_name="tender-docs",
        region="ap-south-1",
        public_base_url="https://cdn.example.com/",
        client=FakeS3(),
    )
    stored = storage.upload(content=b"x", file_name="receipt")
    assert stored.url.startswith("https://cdn.example.com/tenders/documents/")
    assert make_document_key(file_name="noext").count(".") == 0
