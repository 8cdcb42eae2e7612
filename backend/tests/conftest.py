from __future__ import annotations

import sys
from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable

import pytest

# Ensure `backend/` is on sys.path so `import tenderdesk.*` works in tests.
BACKEND_DIR = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(BACKEND_DIR))

from tenderdesk.domain.tenders.models import DEFAULT_DOCUMENT_NAMES, Tender, TenderDocument  # noqa: E402
from tenderdesk.domain.tenders.service import TenderService  # noqa: E402
from tenderdesk.domain.tenders.store import InMemoryTenderStore  # noqa: E402
from tenderdesk.infrastructure.sites_client import InMemorySiteDirectory  # noqa: E402

FIXED_NOW = datetime(2024, 3, 1, 9, 30, tzinfo=timezone.utc)


def fixed_clock() -> datetime:
    return FIXED_NOW


def draft_payload(**overrides: Any) -> dict[str, Any]:
    body: dict[str, Any] = {
        "name": "Ring Road Flyover Package 3",
        "client": "Public Works Department",
        "location": "Pune, Maharashtra",
        "tenderAmount": 45_000_000,
        "emdAmount": 900_000,
    }
    body.update(overrides)
    return body


def tender_in(status: str, **overrides: Any) -> Tender:
    """A stored-shape tender in any status, bypassing the creation rules."""
    fields: dict[str, Any] = {
        "id": f"tnd_{status}",
        "tenderNumber": f"TND-2024-{status.upper()}",
        "name": "Water Treatment Plant Upgrade",
        "client": "Municipal Corporation",
        "location": "Nashik",
        "tenderAmount": Decimal("10000000"),
        "emdAmount": Decimal("200000"),
        "status": status,
        "submissionDate": None if status == "draft" else date(2024, 1, 20),
        "openingDate": date(2024, 2, 5),
        "notes": "Site visit done",
        "documentChecklist": [
            TenderDocument(id=f"doc_{i}", name=name) for i, name in enumerate(DEFAULT_DOCUMENT_NAMES)
        ],
        "createdAt": FIXED_NOW,
        "updatedAt": FIXED_NOW,
        "version": 1,
    }
    fields.update(overrides)
    return Tender(**fields)


@pytest.fixture()
def make_payload() -> Callable[..., dict[str, Any]]:
    return draft_payload


@pytest.fixture()
def store() -> InMemoryTenderStore:
    return InMemoryTenderStore()


@pytest.fixture()
def sites() -> InMemorySiteDirectory:
    return InMemorySiteDirectory()


@pytest.fixture()
def service(store, sites) -> TenderService:
    return TenderService(store=store, site_creator=sites, clock=fixed_clock)


@pytest.fixture()
def make_tender() -> Callable[..., Tender]:
    return tender_in


@pytest.fixture()
def clock() -> Callable[[], datetime]:
    return fixed_clock
