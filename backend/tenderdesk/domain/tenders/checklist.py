from __future__ import annotations

from datetime import datetime
from typing import Callable, Iterable

from .errors import NotFoundError, ValidationError
from .models import DEFAULT_DOCUMENT_NAMES, Tender, TenderDocument, new_id, utc_now


class DocumentChecklist:
    """
    Ordered compliance documents of a tender and their collection status.

    Operations take the current tender and return an updated copy; nothing is
    persisted here. Document names are not required to be unique.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] | None = None,
    ):
        self._clock = clock
        self._new_id = id_factory or (lambda: new_id("doc"))

    def new_document(self, name: str) -> TenderDocument:
        nm = str(name or "").strip()
        if not nm:
            raise ValidationError(message="Document name is required", field="name", reason="required")
        if len(nm) > 200:
            raise ValidationError(message="Document name is too long", field="name", reason="max 200 characters")
        return TenderDocument(id=self._new_id(), name=nm)

    def build(self, names: Iterable[str] | None = None) -> list[TenderDocument]:
        src = DEFAULT_DOCUMENT_NAMES if names is None else names
        return [self.new_document(n) for n in src]

    def require_document(self, tender: Tender, doc_id: str) -> TenderDocument:
        doc = tender.find_document(str(doc_id or "").strip())
        if doc is None:
            raise NotFoundError(
                message="Document not found in checklist",
                tender_id=tender.id,
                missing_id=str(doc_id or "") or None,
            )
        return doc

    def add_document(self, tender: Tender, name: str) -> Tender:
        doc = self.new_document(name)
        return tender.model_copy(
            update={"documentChecklist": [*tender.documentChecklist, doc]},
            deep=True,
        )

    def toggle_collected(self, tender: Tender, doc_id: str) -> Tender:
        target = self.require_document(tender, doc_id)
        now = self._clock()

        def _flip(doc: TenderDocument) -> TenderDocument:
            if doc.id != target.id:
                return doc
            collected = not doc.collected
            return doc.model_copy(update={"collected": collected, "collectedDate": now if collected else None})

        return tender.model_copy(
            update={"documentChecklist": [_flip(d) for d in tender.documentChecklist]},
            deep=True,
        )

    def attach_file(self, tender: Tender, doc_id: str, *, file_url: str, uploaded_by: str | None) -> Tender:
        target = self.require_document(tender, doc_id)
        url = str(file_url or "").strip()
        if not url:
            raise ValidationError(message="fileUrl is required", tender_id=tender.id, field="fileUrl", reason="required")
        by = str(uploaded_by or "").strip() or None

        docs = [
            d.model_copy(update={"fileUrl": url, "uploadedBy": by}) if d.id == target.id else d
            for d in tender.documentChecklist
        ]
        return tender.model_copy(update={"documentChecklist": docs}, deep=True)

    @staticmethod
    def check_invariants(tender: Tender) -> None:
        for doc in tender.documentChecklist:
            if doc.collected != (doc.collectedDate is not None):
                raise ValidationError(
                    message=f"Document {doc.id} collected flag and date disagree",
                    tender_id=tender.id,
                    field="documentChecklist",
                    reason="collectedDate must be set iff collected",
                )
