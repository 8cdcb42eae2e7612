from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from structlog.contextvars import bound_contextvars

from ...observability.logging import get_logger
from .collaborators import SiteCreator
from .errors import (
    AlreadyConvertedError,
    ConflictError,
    ConversionInProgressError,
    NotWonError,
    SiteCreationError,
    TenderError,
)
from .lifecycle import TenderLifecycle
from .models import SiteDraft, Tender, utc_now
from .store import TenderStore

log = get_logger("tenders.conversion")


@dataclass(slots=True)
class ConversionResult:
    tender: Tender
    site_id: str


class ConversionService:
    """
    One-time conversion of a won tender into a site.

    The whole check / create-site / record sequence runs under the store's
    per-tender conversion lock, so concurrent callers create exactly one site.
    A loser sees AlreadyConvertedError carrying the winner's site id, whether
    it got the lock after the winner or gave up waiting for it.
    """

    def __init__(
        self,
        *,
        store: TenderStore,
        site_creator: SiteCreator,
        lifecycle: TenderLifecycle | None = None,
        clock: Callable[[], datetime] = utc_now,
        lock_wait_seconds: float | None = None,
        save_attempts: int = 5,
    ):
        self._store = store
        self._sites = site_creator
        self._lifecycle = lifecycle or TenderLifecycle(clock=clock)
        self._clock = clock
        self._lock_wait = lock_wait_seconds
        self._save_attempts = max(1, int(save_attempts or 1))

    @staticmethod
    def build_site_draft(tender: Tender) -> SiteDraft:
        return SiteDraft(
            name=tender.name,
            location=tender.location,
            budget=tender.tenderAmount,
            client=tender.client,
            organizationId=tender.organizationId,
            description=tender.description or "",
            sourceTenderId=tender.id,
        )

    @staticmethod
    def check_convertible(tender: Tender) -> None:
        if tender.status != "won":
            raise NotWonError(
                message=f"Only won tenders can be converted (status is '{tender.status}')",
                tender_id=tender.id,
                status=tender.status,
            )
        if tender.convertedToSiteId is not None:
            raise AlreadyConvertedError(
                message="Tender has already been converted to a site",
                tender_id=tender.id,
                site_id=tender.convertedToSiteId,
            )

    def convert_to_site(self, tender_id: str, *, expected_version: int | None = None) -> ConversionResult:
        tid = str(tender_id or "").strip()
        with bound_contextvars(tender_id=tid):
            try:
                with self._store.conversion_lock(tid, wait_seconds=self._lock_wait):
                    return self._convert_locked(tid, expected_version)
            except ConversionInProgressError as e:
                # The holder may have finished between our timeout and now.
                current = self._store.get(tid)
                if current.convertedToSiteId is not None:
                    raise AlreadyConvertedError(
                        message="Tender has already been converted to a site",
                        tender_id=tid,
                        site_id=current.convertedToSiteId,
                    ) from e
                log.info("tender_conversion_lock_timeout")
                raise

    def _convert_locked(self, tid: str, expected_version: int | None) -> ConversionResult:
        tender = self._store.get(tid)
        self.check_convertible(tender)
        if expected_version is not None and tender.version != int(expected_version):
            raise ConflictError(
                message="Tender was modified by another request; reload and retry",
                tender_id=tid,
                expected_version=int(expected_version),
                actual_version=tender.version,
            )

        draft = self.build_site_draft(tender)
        try:
            created = self._sites.create_site(draft)
        except TenderError:
            raise
        except Exception as e:
            log.warning("site_creation_failed", error=str(e))
            raise SiteCreationError(message="Site creation failed", tender_id=tid, cause=e) from e

        site_id = str(getattr(created, "site_id", "") or "").strip()
        if not site_id:
            raise SiteCreationError(message="Site creation returned no site id", tender_id=tid)

        saved = self._record(tender, site_id)
        log.info("tender_converted", site_id=site_id, version=saved.version)
        return ConversionResult(tender=saved, site_id=site_id)

    def _record(self, tender: Tender, site_id: str) -> Tender:
        # The site already exists at this point. Only conversion fields are
        # written here, and only under the conversion lock, so re-stamping a
        # fresher copy after a version conflict is safe.
        current = tender
        for attempt in range(1, self._save_attempts + 1):
            now = self._clock()
            stamped = current.model_copy(
                update={"convertedToSiteId": site_id, "conversionDate": now, "updatedAt": now}
            )
            self._lifecycle.check_invariants(stamped)
            try:
                return self._store.save(stamped, expected_version=current.version)
            except ConflictError:
                if attempt >= self._save_attempts:
                    log.error(
                        "tender_conversion_unrecorded",
                        site_id=site_id,
                        attempts=attempt,
                    )
                    raise
                log.warning("tender_conversion_save_conflict", attempt=attempt)
                current = self._store.get(tender.id)
        raise ConflictError(message="Conversion could not be recorded", tender_id=tender.id)
