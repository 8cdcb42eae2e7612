from __future__ import annotations

import threading
from typing import Any

import httpx

from ..domain.tenders.collaborators import CreatedSite, SiteCreator
from ..domain.tenders.models import SiteDraft, new_id
from ..observability.logging import get_logger

log = get_logger("sites_client")


def _site_id_from(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    for key in ("id", "siteId", "site_id"):
        v = payload.get(key)
        if v:
            return str(v).strip()
    nested = payload.get("site") or payload.get("data")
    return _site_id_from(nested) if isinstance(nested, dict) else ""


def site_body(draft: SiteDraft) -> dict[str, Any]:
    """Wire shape expected by the sites API."""
    body: dict[str, Any] = {
        "name": draft.name,
        "location": draft.location,
        "budget": draft.model_dump(mode="json")["budget"],
        "client": draft.client,
        "description": draft.description,
        "source_tender_id": draft.sourceTenderId,
    }
    if draft.organizationId:
        body["organization_id"] = draft.organizationId
    return body


class HttpSiteCreator(SiteCreator):
    """Creates sites through the sites service REST API."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        timeout_seconds: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ):
        base = str(base_url or "").strip().rstrip("/")
        if not base:
            raise RuntimeError("SITES_API_BASE_URL is not configured")
        self._base_url = base
        self._token = str(token or "").strip() or None
        self._timeout = float(timeout_seconds or 10.0)
        self._transport = transport

    def _headers(self, draft: SiteDraft) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            # The sites service de-dupes on this key if a request is replayed.
            "Idempotency-Key": f"tender-conversion-{draft.sourceTenderId}",
        }
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    def create_site(self, draft: SiteDraft) -> CreatedSite:
        url = f"{self._base_url}/api/sites"
        with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
            resp = client.post(url, json=site_body(draft), headers=self._headers(draft))
            resp.raise_for_status()
            payload = resp.json()

        site_id = _site_id_from(payload)
        if not site_id:
            raise RuntimeError("Sites API response did not include a site id")
        log.info("site_created", site_id=site_id, tender_id=draft.sourceTenderId)
        return CreatedSite(site_id=site_id)


class InMemorySiteDirectory(SiteCreator):
    """In-process site registry for local development and tests."""

    def __init__(self):
        self._lock = threading.Lock()
        self.sites: dict[str, SiteDraft] = {}

    def create_site(self, draft: SiteDraft) -> CreatedSite:
        site_id = new_id("site")
        with self._lock:
            self.sites[site_id] = draft
        return CreatedSite(site_id=site_id)
