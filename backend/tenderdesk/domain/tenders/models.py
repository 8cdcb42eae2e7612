from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer


TenderStatus = Literal["draft", "submitted", "under-evaluation", "won", "lost", "closed"]

TENDER_STATUSES: tuple[str, ...] = ("draft", "submitted", "under-evaluation", "won", "lost", "closed")
INITIAL_STATUSES: tuple[str, ...] = ("draft", "submitted")

DEFAULT_DOCUMENT_NAMES: tuple[str, ...] = (
    "Technical Bid",
    "Financial Bid",
    "Company Registration Certificate",
    "GST Certificate",
    "PAN Card",
    "EMD Payment Receipt",
)

_EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _amount_for_json(v: Decimal) -> int | float:
    # Whole rupee amounts stay integers on the wire.
    return int(v) if v == v.to_integral_value() else float(v)


Amount = Annotated[
    Decimal,
    Field(gt=0, max_digits=18, decimal_places=2),
    PlainSerializer(_amount_for_json, return_type=int | float, when_used="json"),
]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4()}"


class TenderDocument(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    name: str
    collected: bool = False
    collectedDate: datetime | None = None
    fileUrl: str | None = None
    uploadedBy: str | None = None


class Tender(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    tenderNumber: str
    organizationId: str | None = None
    name: str
    client: str
    location: str
    projectType: str | None = None
    contactPerson: str | None = None
    contactEmail: str | None = None
    contactPhone: str | None = None

    tenderAmount: Amount
    emdAmount: Amount

    emdPaid: bool = False
    emdPaidDate: date | None = None
    emdPaidReference: str | None = None
    emdReturned: bool = False
    emdReturnDate: date | None = None
    emdReturnReference: str | None = None

    submissionDate: date | None = None
    openingDate: date | None = None
    status: TenderStatus = "draft"

    documentChecklist: list[TenderDocument] = Field(default_factory=list)

    convertedToSiteId: str | None = None
    conversionDate: datetime | None = None

    notes: str = ""
    description: str = ""
    evaluationCriteria: str = ""

    createdAt: datetime
    updatedAt: datetime
    version: int = 1

    def find_document(self, doc_id: str) -> TenderDocument | None:
        for doc in self.documentChecklist:
            if doc.id == doc_id:
                return doc
        return None

    @property
    def collected_count(self) -> int:
        return sum(1 for d in self.documentChecklist if d.collected)


class TenderDraft(BaseModel):
    """Creation payload. Field limits mirror the tender entry form."""

    model_config = ConfigDict(extra="ignore")

    tenderNumber: str | None = Field(default=None, min_length=3, max_length=50)
    organizationId: str | None = None
    name: str = Field(..., min_length=3, max_length=200)
    client: str = Field(..., min_length=3, max_length=100)
    location: str = Field(..., min_length=3, max_length=300)
    projectType: str | None = Field(default=None, max_length=100)
    contactPerson: str | None = Field(default=None, min_length=2, max_length=100)
    contactEmail: str | None = Field(default=None, pattern=_EMAIL_PATTERN, max_length=254)
    contactPhone: str | None = Field(default=None, min_length=10, max_length=15)

    tenderAmount: Amount
    emdAmount: Amount

    emdPaid: bool = False
    emdPaidDate: date | None = None
    emdPaidReference: str | None = Field(default=None, max_length=100)

    submissionDate: date | None = None
    openingDate: date | None = None
    status: Literal["draft", "submitted"] = "draft"

    description: str = Field(default="", max_length=1000)
    evaluationCriteria: str = Field(default="", max_length=500)
    notes: str = Field(default="", max_length=500)

    # Checklist document names; None means the standard checklist.
    documents: list[str] | None = None


class TenderUpdate(BaseModel):
    """Partial edit payload; only fields explicitly set are applied."""

    model_config = ConfigDict(extra="forbid")

    name: str | None = Field(default=None, min_length=3, max_length=200)
    client: str | None = Field(default=None, min_length=3, max_length=100)
    location: str | None = Field(default=None, min_length=3, max_length=300)
    projectType: str | None = Field(default=None, max_length=100)
    contactPerson: str | None = Field(default=None, min_length=2, max_length=100)
    contactEmail: str | None = Field(default=None, pattern=_EMAIL_PATTERN, max_length=254)
    contactPhone: str | None = Field(default=None, min_length=10, max_length=15)

    tenderAmount: Amount | None = None
    emdAmount: Amount | None = None

    submissionDate: date | None = None
    openingDate: date | None = None

    description: str | None = Field(default=None, max_length=1000)
    evaluationCriteria: str | None = Field(default=None, max_length=500)
    notes: str | None = None

    def changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class SiteDraft(BaseModel):
    """What a won tender hands to the site-creation collaborator."""

    name: str
    location: str
    budget: Amount
    client: str
    organizationId: str | None = None
    description: str = ""
    sourceTenderId: str


class TenderFilter(BaseModel):
    status: TenderStatus | None = None
    q: str | None = None
    organizationId: str | None = None

    def matches(self, tender: Tender) -> bool:
        if self.status and tender.status != self.status:
            return False
        if self.organizationId and tender.organizationId != self.organizationId:
            return False
        needle = str(self.q or "").strip().lower()
        if needle:
            hay = (tender.tenderNumber, tender.name, tender.client)
            if not any(needle in str(h or "").lower() for h in hay):
                return False
        return True
