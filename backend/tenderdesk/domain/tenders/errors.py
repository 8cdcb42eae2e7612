from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(slots=True)
class TenderError(Exception):
    """Base error for tender operations.

    Raised before anything is written: a failing operation leaves the stored
    tender exactly as it was. The FastAPI handler renders these as
    problem+json using `code` as the stable machine-readable discriminator.
    """

    message: str
    tender_id: str | None = None

    code = "tender_error"

    def __str__(self) -> str:
        return self.message

    def extensions(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "tenderId": self.tender_id}
        return {k: v for k, v in out.items() if v is not None}


@dataclass(slots=True)
class ValidationError(TenderError):
    field: str | None = None
    reason: str | None = None
    # Per-field details when several checks failed at once (creation payloads).
    errors: list[dict[str, Any]] | None = None

    code = "validation_error"

    def extensions(self) -> dict[str, Any]:
        out = TenderError.extensions(self)
        if self.field:
            out["field"] = self.field
        if self.reason:
            out["reason"] = self.reason
        return out


@dataclass(slots=True)
class InvalidTransitionError(TenderError):
    from_status: str | None = None
    requested_op: str | None = None

    code = "invalid_transition"

    def extensions(self) -> dict[str, Any]:
        out = TenderError.extensions(self)
        out["fromStatus"] = self.from_status
        out["requestedOp"] = self.requested_op
        return out


@dataclass(slots=True)
class ImmutableFieldError(TenderError):
    field: str | None = None

    code = "immutable_field"

    def extensions(self) -> dict[str, Any]:
        out = TenderError.extensions(self)
        out["field"] = self.field
        return out


@dataclass(slots=True)
class NotFoundError(TenderError):
    # Id of the missing record (tender or checklist document).
    missing_id: str | None = None

    code = "not_found"

    def extensions(self) -> dict[str, Any]:
        out = TenderError.extensions(self)
        out["id"] = self.missing_id
        return out


@dataclass(slots=True)
class ConflictError(TenderError):
    expected_version: int | None = None
    actual_version: int | None = None

    code = "conflict"

    def extensions(self) -> dict[str, Any]:
        out = TenderError.extensions(self)
        out["expectedVersion"] = self.expected_version
        out["actualVersion"] = self.actual_version
        out["retryable"] = True
        return {k: v for k, v in out.items() if v is not None}


@dataclass(slots=True)
class ConversionInProgressError(ConflictError):
    """Another caller held the conversion lock for the whole wait."""

    code = "conversion_in_progress"


# --- EMD misuse ---


@dataclass(slots=True)
class AlreadyPaidError(TenderError):
    code = "emd_already_paid"


@dataclass(slots=True)
class NotPaidError(TenderError):
    code = "emd_not_paid"


@dataclass(slots=True)
class AlreadyReturnedError(TenderError):
    code = "emd_already_returned"


@dataclass(slots=True)
class NotReturnedError(TenderError):
    code = "emd_not_returned"


@dataclass(slots=True)
class MissingDateError(TenderError):
    field: str | None = None

    code = "missing_date"


# --- conversion misuse ---


@dataclass(slots=True)
class NotWonError(TenderError):
    status: str | None = None

    code = "not_won"


@dataclass(slots=True)
class AlreadyConvertedError(TenderError):
    site_id: str | None = None

    code = "already_converted"

    def extensions(self) -> dict[str, Any]:
        out = TenderError.extensions(self)
        out["siteId"] = self.site_id
        return out


# --- collaborator failures ---


@dataclass(slots=True)
class SiteCreationError(TenderError):
    cause: Exception | None = None

    code = "site_creation_failed"


@dataclass(slots=True)
class FileUploadError(TenderError):
    document_id: str | None = None
    cause: Exception | None = None

    code = "file_upload_failed"
