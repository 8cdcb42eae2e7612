from __future__ import annotations

from datetime import date
from decimal import Decimal

from .errors import (
    AlreadyPaidError,
    AlreadyReturnedError,
    ImmutableFieldError,
    MissingDateError,
    NotPaidError,
    NotReturnedError,
    ValidationError,
)
from .models import Tender


def _ref(reference: str | None) -> str | None:
    r = str(reference or "").strip()
    return r or None


class EMDTracker:
    """Earnest money deposit payment/return sub-state and amount rules."""

    def record_payment(self, tender: Tender, paid_on: date | None, reference: str | None = None) -> Tender:
        if tender.emdPaid:
            raise AlreadyPaidError(message="EMD is already recorded as paid", tender_id=tender.id)
        if paid_on is None:
            raise MissingDateError(message="EMD payment date is required", tender_id=tender.id, field="emdPaidDate")
        return tender.model_copy(
            update={
                "emdPaid": True,
                "emdPaidDate": paid_on,
                "emdPaidReference": _ref(reference),
            }
        )

    def mark_returned(self, tender: Tender, returned_on: date | None, reference: str | None = None) -> Tender:
        if not tender.emdPaid:
            raise NotPaidError(message="EMD has not been paid", tender_id=tender.id)
        if tender.emdReturned:
            raise AlreadyReturnedError(message="EMD is already marked as returned", tender_id=tender.id)
        if returned_on is None:
            raise MissingDateError(message="EMD return date is required", tender_id=tender.id, field="emdReturnDate")
        return tender.model_copy(
            update={
                "emdReturned": True,
                "emdReturnDate": returned_on,
                "emdReturnReference": _ref(reference),
            }
        )

    def unmark_returned(self, tender: Tender) -> Tender:
        if not tender.emdReturned:
            raise NotReturnedError(message="EMD is not marked as returned", tender_id=tender.id)
        return tender.model_copy(
            update={
                "emdReturned": False,
                "emdReturnDate": None,
                "emdReturnReference": None,
            }
        )

    def apply_amounts(
        self,
        tender: Tender,
        *,
        tender_amount: Decimal | None = None,
        emd_amount: Decimal | None = None,
    ) -> Tender:
        """Edit amounts; only a draft tender's amounts may change."""
        update: dict[str, Decimal] = {}
        if tender_amount is not None and tender_amount != tender.tenderAmount:
            update["tenderAmount"] = tender_amount
        if emd_amount is not None and emd_amount != tender.emdAmount:
            update["emdAmount"] = emd_amount
        if not update:
            return tender
        if tender.status != "draft":
            field = "tenderAmount" if "tenderAmount" in update else "emdAmount"
            raise ImmutableFieldError(
                message=f"{field} can only be changed while the tender is a draft",
                tender_id=tender.id,
                field=field,
            )
        return tender.model_copy(update=update)

    @staticmethod
    def check_amounts(tender_amount: Decimal, emd_amount: Decimal, *, tender_id: str | None = None) -> None:
        if tender_amount <= 0:
            raise ValidationError(
                message="Tender amount must be greater than zero",
                tender_id=tender_id,
                field="tenderAmount",
                reason="must be positive",
            )
        if emd_amount <= 0:
            raise ValidationError(
                message="EMD amount must be greater than zero",
                tender_id=tender_id,
                field="emdAmount",
                reason="must be positive",
            )
        if emd_amount >= tender_amount:
            raise ValidationError(
                message="EMD amount must be less than tender amount",
                tender_id=tender_id,
                field="emdAmount",
                reason="must be less than tenderAmount",
            )

    @staticmethod
    def check_invariants(tender: Tender) -> None:
        EMDTracker.check_amounts(tender.tenderAmount, tender.emdAmount, tender_id=tender.id)
        if tender.emdPaid != (tender.emdPaidDate is not None):
            raise ValidationError(
                message="EMD paid flag and payment date disagree",
                tender_id=tender.id,
                field="emdPaidDate",
                reason="emdPaidDate must be set iff emdPaid",
            )
        if not tender.emdPaid and tender.emdPaidReference is not None:
            raise ValidationError(
                message="Unpaid EMD cannot carry a payment reference",
                tender_id=tender.id,
                field="emdPaidReference",
                reason="must be empty while unpaid",
            )
        if tender.emdReturned and not tender.emdPaid:
            raise ValidationError(
                message="EMD cannot be returned before it is paid",
                tender_id=tender.id,
                field="emdReturned",
                reason="requires emdPaid",
            )
        if tender.emdReturned != (tender.emdReturnDate is not None):
            raise ValidationError(
                message="EMD returned flag and return date disagree",
                tender_id=tender.id,
                field="emdReturnDate",
                reason="emdReturnDate must be set iff emdReturned",
            )
