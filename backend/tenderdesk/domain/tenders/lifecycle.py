from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Mapping, TypeVar

import pydantic

from .checklist import DocumentChecklist
from .emd import EMDTracker
from .errors import InvalidTransitionError, ValidationError
from .models import Tender, TenderDraft, TenderUpdate, new_id, utc_now


# requested op -> (allowed source statuses, target status)
TRANSITIONS: dict[str, tuple[tuple[str, ...], str]] = {
    "submit": (("draft",), "submitted"),
    "mark_won": (("submitted", "under-evaluation"), "won"),
    "mark_lost": (("submitted", "under-evaluation"), "lost"),
}

LOST_REASON_PREFIX = "Lost Reason: "

M = TypeVar("M", bound=pydantic.BaseModel)


def allowed_operations(status: str) -> list[str]:
    return [op for op, (sources, _) in TRANSITIONS.items() if status in sources]


def _pydantic_errors(e: pydantic.ValidationError) -> list[dict[str, Any]]:
    out: list[dict[str, Any]] = []
    for it in e.errors(include_url=False):
        out.append(
            {
                "loc": [str(x) for x in (it.get("loc") or [])],
                "msg": str(it.get("msg") or "Invalid value"),
                "type": str(it.get("type") or ""),
            }
        )
    return out


def _parse(model: type[M], payload: M | Mapping[str, Any], *, tender_id: str | None = None) -> M:
    if isinstance(payload, model):
        return payload
    try:
        return model.model_validate(dict(payload or {}))
    except pydantic.ValidationError as e:
        errs = _pydantic_errors(e)
        first = errs[0] if errs else {}
        field = ".".join(first.get("loc") or []) or None
        raise ValidationError(
            message=f"Invalid tender: {field or 'payload'}: {first.get('msg') or 'invalid'}",
            tender_id=tender_id,
            field=field,
            reason=first.get("msg"),
            errors=errs,
        ) from e


def parse_draft(payload: TenderDraft | Mapping[str, Any]) -> TenderDraft:
    return _parse(TenderDraft, payload)


def parse_update(payload: TenderUpdate | Mapping[str, Any], *, tender_id: str | None = None) -> TenderUpdate:
    return _parse(TenderUpdate, payload, tender_id=tender_id)


def check_dates(
    submission_date: date | None,
    opening_date: date | None,
    *,
    tender_id: str | None = None,
) -> None:
    if opening_date is not None and submission_date is not None and not opening_date > submission_date:
        raise ValidationError(
            message="Opening date must be after the submission date",
            tender_id=tender_id,
            field="openingDate",
            reason="must be after submissionDate",
        )


class TenderLifecycle:
    """
    Status state machine for tenders.

    draft -> submitted -> {won, lost}; under-evaluation is as eligible as
    submitted for the award decision. won/lost/closed accept no further
    transition (a won tender may still be converted, see ConversionService).
    """

    def __init__(
        self,
        *,
        emd: EMDTracker | None = None,
        checklist: DocumentChecklist | None = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] | None = None,
    ):
        self.emd = emd or EMDTracker()
        self.checklist = checklist or DocumentChecklist(clock=clock)
        self._clock = clock
        self._new_id = id_factory or (lambda: new_id("tnd"))

    # --- creation ---

    def validate_draft(self, draft: TenderDraft) -> None:
        self.emd.check_amounts(draft.tenderAmount, draft.emdAmount)
        check_dates(draft.submissionDate, draft.openingDate)
        if draft.emdPaid and draft.emdPaidDate is None:
            raise ValidationError(
                message="EMD payment date is required when EMD is marked as paid",
                field="emdPaidDate",
                reason="required when emdPaid",
            )
        if draft.status == "submitted" and draft.submissionDate is None:
            raise ValidationError(
                message="Submission date is required for a submitted tender",
                field="submissionDate",
                reason="required when status is submitted",
            )

    def create(self, payload: TenderDraft | Mapping[str, Any], *, tender_number: str) -> Tender:
        draft = parse_draft(payload)
        self.validate_draft(draft)
        number = str(tender_number or "").strip()
        if not number:
            raise ValidationError(message="Tender number is required", field="tenderNumber", reason="required")

        now = self._clock()
        paid = bool(draft.emdPaid)
        tender = Tender(
            id=self._new_id(),
            tenderNumber=number,
            organizationId=draft.organizationId,
            name=draft.name.strip(),
            client=draft.client.strip(),
            location=draft.location.strip(),
            projectType=draft.projectType,
            contactPerson=draft.contactPerson,
            contactEmail=draft.contactEmail,
            contactPhone=draft.contactPhone,
            tenderAmount=draft.tenderAmount,
            emdAmount=draft.emdAmount,
            emdPaid=paid,
            emdPaidDate=draft.emdPaidDate if paid else None,
            emdPaidReference=(str(draft.emdPaidReference or "").strip() or None) if paid else None,
            submissionDate=draft.submissionDate,
            openingDate=draft.openingDate,
            status=draft.status,
            documentChecklist=self.checklist.build(draft.documents),
            notes=draft.notes or "",
            description=draft.description or "",
            evaluationCriteria=draft.evaluationCriteria or "",
            createdAt=now,
            updatedAt=now,
            version=1,
        )
        self.check_invariants(tender)
        return tender

    # --- transitions ---

    def check_transition(self, tender: Tender, op: str) -> str:
        sources, target = TRANSITIONS.get(op, ((), ""))
        if tender.status not in sources:
            raise InvalidTransitionError(
                message=f"Cannot {op} a tender in status '{tender.status}'",
                tender_id=tender.id,
                from_status=tender.status,
                requested_op=op,
            )
        return target

    def submit(self, tender: Tender, submission_date: date | None = None) -> Tender:
        target = self.check_transition(tender, "submit")
        when = submission_date or tender.submissionDate
        if when is None:
            raise ValidationError(
                message="Submission date is required to submit a tender",
                tender_id=tender.id,
                field="submissionDate",
                reason="required",
            )
        self.emd.check_amounts(tender.tenderAmount, tender.emdAmount, tender_id=tender.id)
        check_dates(when, tender.openingDate, tender_id=tender.id)
        return tender.model_copy(update={"status": target, "submissionDate": when})

    def mark_won(self, tender: Tender) -> Tender:
        target = self.check_transition(tender, "mark_won")
        return tender.model_copy(update={"status": target})

    def mark_lost(self, tender: Tender, reason: str) -> Tender:
        target = self.check_transition(tender, "mark_lost")
        why = str(reason or "").strip()
        if not why:
            raise ValidationError(
                message="A reason is required to mark a tender as lost",
                tender_id=tender.id,
                field="reason",
                reason="required",
            )
        line = f"{LOST_REASON_PREFIX}{why}"
        prior = tender.notes or ""
        notes = f"{prior}\n\n{line}" if prior.strip() else line
        return tender.model_copy(update={"status": target, "notes": notes})

    # --- edits ---

    def update(self, tender: Tender, changes: Mapping[str, Any]) -> Tender:
        """Apply a partial edit; amounts are delegated to the EMD tracker."""
        patch = dict(changes or {})
        out = self.emd.apply_amounts(
            tender,
            tender_amount=patch.pop("tenderAmount", None),
            emd_amount=patch.pop("emdAmount", None),
        )

        for required in ("name", "client", "location"):
            if required in patch and patch[required] is None:
                raise ValidationError(
                    message=f"{required} cannot be cleared",
                    tender_id=tender.id,
                    field=required,
                    reason="required",
                )
        if "submissionDate" in patch and patch["submissionDate"] is None and tender.status != "draft":
            raise ValidationError(
                message="Submission date cannot be cleared after submission",
                tender_id=tender.id,
                field="submissionDate",
                reason="required once submitted",
            )
        for text_field in ("notes", "description", "evaluationCriteria"):
            if text_field in patch and patch[text_field] is None:
                patch[text_field] = ""

        out = out.model_copy(update=patch)
        self.emd.check_amounts(out.tenderAmount, out.emdAmount, tender_id=out.id)
        check_dates(out.submissionDate, out.openingDate, tender_id=out.id)
        return out

    # --- invariants ---

    def check_invariants(self, tender: Tender) -> None:
        """Every successful mutation must leave these true."""
        self.emd.check_invariants(tender)
        check_dates(tender.submissionDate, tender.openingDate, tender_id=tender.id)
        if tender.status != "draft" and tender.submissionDate is None:
            raise ValidationError(
                message="A non-draft tender must have a submission date",
                tender_id=tender.id,
                field="submissionDate",
                reason="required once submitted",
            )
        if tender.convertedToSiteId is not None and tender.status != "won":
            raise ValidationError(
                message="Only won tenders can be converted",
                tender_id=tender.id,
                field="convertedToSiteId",
                reason="requires status won",
            )
        if (tender.convertedToSiteId is None) != (tender.conversionDate is None):
            raise ValidationError(
                message="Conversion site and date disagree",
                tender_id=tender.id,
                field="conversionDate",
                reason="set together with convertedToSiteId",
            )
        self.checklist.check_invariants(tender)
