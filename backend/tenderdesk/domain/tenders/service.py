from __future__ import annotations

from datetime import date, datetime
from typing import Any, Callable, Mapping

from structlog.contextvars import bound_contextvars

from ...observability.logging import get_logger
from .checklist import DocumentChecklist
from .collaborators import DocumentStorage, SiteCreator
from .conversion import ConversionResult, ConversionService
from .emd import EMDTracker
from .errors import ConflictError, FileUploadError, TenderError, ValidationError
from .lifecycle import TenderLifecycle, parse_draft, parse_update
from .models import Tender, TenderDraft, TenderFilter, TenderUpdate, utc_now
from .numbering import TenderNumberGenerator
from .store import TenderStore

log = get_logger("tenders")

_MAX_NUMBER_ATTEMPTS = 20


class TenderService:
    """
    Single entrypoint for every tender operation.

    Each mutation reads the current tender, validates the whole request,
    applies it to a copy and writes it back with the version it read. A
    concurrent write in between surfaces as ConflictError for the caller to
    retry; nothing is ever partially written.
    """

    def __init__(
        self,
        *,
        store: TenderStore,
        site_creator: SiteCreator,
        document_storage: DocumentStorage | None = None,
        clock: Callable[[], datetime] = utc_now,
        tender_number_prefix: str = "TND",
        conversion_lock_wait_seconds: float | None = None,
        conversion_save_attempts: int = 5,
    ):
        self._store = store
        self._clock = clock
        self._documents = document_storage
        self.emd = EMDTracker()
        self.checklist = DocumentChecklist(clock=clock)
        self.lifecycle = TenderLifecycle(emd=self.emd, checklist=self.checklist, clock=clock)
        self.numbers = TenderNumberGenerator(store, prefix=tender_number_prefix, clock=clock)
        self.conversion = ConversionService(
            store=store,
            site_creator=site_creator,
            lifecycle=self.lifecycle,
            clock=clock,
            lock_wait_seconds=conversion_lock_wait_seconds,
            save_attempts=conversion_save_attempts,
        )

    # --- reads ---

    def get_tender(self, tender_id: str) -> Tender:
        return self._store.get(str(tender_id or "").strip())

    def list_tenders(self, filters: TenderFilter | Mapping[str, Any] | None = None) -> list[Tender]:
        f = filters if isinstance(filters, TenderFilter) else TenderFilter.model_validate(dict(filters or {}))
        return self._store.list(f)

    def generate_tender_number(self, year: int | None = None) -> str:
        return self.numbers.generate(year)

    # --- creation ---

    def create_tender(self, payload: TenderDraft | Mapping[str, Any]) -> Tender:
        draft = parse_draft(payload)
        self.lifecycle.validate_draft(draft)

        if draft.tenderNumber:
            number = draft.tenderNumber.strip()
            if self._store.find_by_number(organization_id=draft.organizationId, tender_number=number):
                raise ValidationError(
                    message=f"Tender number {number} already exists",
                    field="tenderNumber",
                    reason="already exists",
                )
        else:
            number = self._unused_number(draft.organizationId)

        tender = self.lifecycle.create(draft, tender_number=number)
        saved = self._store.add(tender)
        log.info(
            "tender_created",
            tender_id=saved.id,
            tender_number=saved.tenderNumber,
            status=saved.status,
            organization_id=saved.organizationId,
        )
        return saved

    def _unused_number(self, organization_id: str | None) -> str:
        for _ in range(_MAX_NUMBER_ATTEMPTS):
            candidate = self.numbers.generate()
            if not self._store.find_by_number(organization_id=organization_id, tender_number=candidate):
                return candidate
        raise ValidationError(
            message="Could not allocate a free tender number",
            field="tenderNumber",
            reason="numbering exhausted",
        )

    # --- shared mutation path ---

    def _mutate(
        self,
        tender_id: str,
        event: str,
        apply: Callable[[Tender], Tender],
        *,
        expected_version: int | None = None,
        **log_fields: Any,
    ) -> Tender:
        tid = str(tender_id or "").strip()
        # Everything logged below (store adapters included) carries the tender.
        with bound_contextvars(tender_id=tid, tender_event=event):
            current = self._store.get(tid)
            if expected_version is not None and current.version != int(expected_version):
                raise ConflictError(
                    message="Tender was modified by another request; reload and retry",
                    tender_id=current.id,
                    expected_version=int(expected_version),
                    actual_version=current.version,
                )

            updated = apply(current).model_copy(update={"updatedAt": self._clock()})
            self.lifecycle.check_invariants(updated)

            try:
                saved = self._store.save(updated, expected_version=current.version)
            except ConflictError:
                log.info("tender_save_conflict", version=current.version)
                raise
            log.info(event, status=saved.status, version=saved.version, **log_fields)
            return saved

    # --- edits & transitions ---

    def update_tender(
        self,
        tender_id: str,
        changes: TenderUpdate | Mapping[str, Any],
        *,
        expected_version: int | None = None,
    ) -> Tender:
        patch = parse_update(changes, tender_id=tender_id).changes()
        return self._mutate(
            tender_id,
            "tender_updated",
            lambda t: self.lifecycle.update(t, patch),
            expected_version=expected_version,
            fields=sorted(patch.keys()),
        )

    def submit_tender(
        self,
        tender_id: str,
        submission_date: date | None = None,
        *,
        expected_version: int | None = None,
    ) -> Tender:
        return self._mutate(
            tender_id,
            "tender_submitted",
            lambda t: self.lifecycle.submit(t, submission_date),
            expected_version=expected_version,
        )

    def mark_won(self, tender_id: str, *, expected_version: int | None = None) -> Tender:
        return self._mutate(tender_id, "tender_marked_won", self.lifecycle.mark_won, expected_version=expected_version)

    def mark_lost(self, tender_id: str, reason: str, *, expected_version: int | None = None) -> Tender:
        return self._mutate(
            tender_id,
            "tender_marked_lost",
            lambda t: self.lifecycle.mark_lost(t, reason),
            expected_version=expected_version,
        )

    # --- EMD ---

    def record_emd_payment(
        self,
        tender_id: str,
        paid_on: date | None,
        reference: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> Tender:
        return self._mutate(
            tender_id,
            "tender_emd_paid",
            lambda t: self.emd.record_payment(t, paid_on, reference),
            expected_version=expected_version,
        )

    def mark_emd_returned(
        self,
        tender_id: str,
        returned_on: date | None,
        reference: str | None = None,
        *,
        expected_version: int | None = None,
    ) -> Tender:
        return self._mutate(
            tender_id,
            "tender_emd_returned",
            lambda t: self.emd.mark_returned(t, returned_on, reference),
            expected_version=expected_version,
        )

    def unmark_emd_returned(self, tender_id: str, *, expected_version: int | None = None) -> Tender:
        return self._mutate(
            tender_id,
            "tender_emd_return_cleared",
            self.emd.unmark_returned,
            expected_version=expected_version,
        )

    # --- documents ---

    def add_document(self, tender_id: str, name: str, *, expected_version: int | None = None) -> Tender:
        return self._mutate(
            tender_id,
            "tender_document_added",
            lambda t: self.checklist.add_document(t, name),
            expected_version=expected_version,
        )

    def toggle_document(self, tender_id: str, doc_id: str, *, expected_version: int | None = None) -> Tender:
        return self._mutate(
            tender_id,
            "tender_document_toggled",
            lambda t: self.checklist.toggle_collected(t, doc_id),
            expected_version=expected_version,
            document_id=doc_id,
        )

    def attach_document_file(
        self,
        tender_id: str,
        doc_id: str,
        file_url: str,
        uploaded_by: str | None,
        *,
        expected_version: int | None = None,
    ) -> Tender:
        return self._mutate(
            tender_id,
            "tender_document_file_attached",
            lambda t: self.checklist.attach_file(t, doc_id, file_url=file_url, uploaded_by=uploaded_by),
            expected_version=expected_version,
            document_id=doc_id,
        )

    def upload_document_file(
        self,
        tender_id: str,
        doc_id: str,
        *,
        content: bytes,
        file_name: str,
        content_type: str | None = None,
        uploaded_by: str | None = None,
        expected_version: int | None = None,
    ) -> Tender:
        """
        Upload a file for a checklist entry, then record its URL.

        The upload runs before (and outside) the versioned write; a failed
        upload leaves the document untouched and surfaces FileUploadError.
        """
        if self._documents is None:
            raise FileUploadError(
                message="Document storage is not configured",
                tender_id=tender_id,
                document_id=doc_id,
            )
        current = self._store.get(str(tender_id or "").strip())
        self.checklist.require_document(current, doc_id)
        if not content:
            raise ValidationError(message="Uploaded file is empty", tender_id=current.id, field="file", reason="empty")

        try:
            stored = self._documents.upload(content=content, file_name=file_name, content_type=content_type)
        except TenderError:
            raise
        except Exception as e:
            log.warning("tender_document_upload_failed", tender_id=current.id, document_id=doc_id, error=str(e))
            raise FileUploadError(
                message="File upload failed",
                tender_id=current.id,
                document_id=doc_id,
                cause=e,
            ) from e

        return self.attach_document_file(
            current.id,
            doc_id,
            stored.url,
            uploaded_by,
            expected_version=expected_version,
        )

    # --- conversion ---

    def convert_to_site(self, tender_id: str, *, expected_version: int | None = None) -> ConversionResult:
        return self.conversion.convert_to_site(tender_id, expected_version=expected_version)
