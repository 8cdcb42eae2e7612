from __future__ import annotations

import threading
import time

import pytest

from tenderdesk.domain.tenders.collaborators import CreatedSite, SiteCreator
from tenderdesk.domain.tenders.errors import (
    AlreadyConvertedError,
    ConflictError,
    ConversionInProgressError,
    NotFoundError,
    SiteCreationError,
)
from tenderdesk.domain.tenders.models import SiteDraft
from tenderdesk.domain.tenders.service import TenderService
from tenderdesk.domain.tenders.store import InMemoryTenderStore
from tenderdesk.infrastructure.sites_client import InMemorySiteDirectory


class SlowSiteCreator(SiteCreator):
    def __init__(self, delay: float = 0.2):
        self.delay = delay
        self.calls: list[SiteDraft] = []
        self._lock = threading.Lock()

    def create_site(self, draft: SiteDraft) -> CreatedSite:
        time.sleep(self.delay)
        with self._lock:
            self.calls.append(draft)
            return CreatedSite(site_id=f"site_{len(self.calls)}")


class FailingSiteCreator(SiteCreator):
    def create_site(self, draft: SiteDraft) -> CreatedSite:
        raise RuntimeError("sites service unavailable")


def test_stale_version_is_rejected(service, make_tender, store):
    store.add(make_tender("submitted"))
    service.add_document("tnd_submitted", "Bank Guarantee", expected_version=1)

    with pytest.raises(ConflictError) as ei:
        service.add_document("tnd_submitted", "Solvency Certificate", expected_version=1)
    assert ei.value.expected_version == 1
    assert ei.value.actual_version == 2
    assert len(store.get("tnd_submitted").documentChecklist) == 7


def test_store_save_is_compare_and_set(make_tender):
    store = InMemoryTenderStore([make_tender("draft")])
    a = store.get("tnd_draft")
    b = store.get("tnd_draft")

    saved = store.save(a.model_copy(update={"notes": "first"}), expected_version=a.version)
    assert saved.version == 2

    with pytest.raises(ConflictError):
        store.save(b.model_copy(update={"notes": "second"}), expected_version=b.version)
    assert store.get("tnd_draft").notes == "first"


def test_missing_tender_is_not_found(service):
    with pytest.raises(NotFoundError):
        service.mark_won("tnd_nope")
    with pytest.raises(NotFoundError):
        service.convert_to_site("tnd_nope")


def test_store_returns_copies(make_tender):
    store = InMemoryTenderStore([make_tender("draft")])
    got = store.get("tnd_draft")
    got.documentChecklist[0].collected = True
    assert store.get("tnd_draft").documentChecklist[0].collected is False


def test_concurrent_conversion_creates_exactly_one_site(make_tender, clock):
    store = InMemoryTenderStore([make_tender("won")])
    creator = SlowSiteCreator()
    svc = TenderService(store=store, site_creator=creator, clock=clock)

    results: list[object] = []
    barrier = threading.Barrier(2)

    def worker():
        barrier.wait()
        try:
            results.append(svc.convert_to_site("tnd_won"))
        except AlreadyConvertedError as e:
            results.append(e)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(creator.calls) == 1
    assert len(results) == 2
    winners = [r for r in results if not isinstance(r, AlreadyConvertedError)]
    losers = [r for r in results if isinstance(r, AlreadyConvertedError)]
    assert len(winners) == 1 and len(losers) == 1
    assert losers[0].site_id == winners[0].site_id == "site_1"
    assert store.get("tnd_won").convertedToSiteId == "site_1"
    assert store._conversion_locks == {}


def test_conversion_failure_leaves_tender_untouched(make_tender, clock):
    original = make_tender("won")
    store = InMemoryTenderStore([original])
    svc = TenderService(store=store, site_creator=FailingSiteCreator(), clock=clock)

    with pytest.raises(SiteCreationError) as ei:
        svc.convert_to_site("tnd_won")
    assert isinstance(ei.value.cause, RuntimeError)
    assert store.get("tnd_won") == original


def test_conversion_is_recorded_over_a_concurrent_edit(make_tender, clock):
    store = InMemoryTenderStore([make_tender("won")])
    svc: TenderService

    class EditingSiteCreator(SiteCreator):
        def create_site(self, draft: SiteDraft) -> CreatedSite:
            # Someone edits the tender while the site is being created.
            svc.add_document(draft.sourceTenderId, "Work Order")
            return CreatedSite(site_id="site_42")

    svc = TenderService(store=store, site_creator=EditingSiteCreator(), clock=clock)
    result = svc.convert_to_site("tnd_won")

    assert result.site_id == "site_42"
    assert result.tender.convertedToSiteId == "site_42"
    assert result.tender.conversionDate == clock()
    assert result.tender.documentChecklist[-1].name == "Work Order"
    assert result.tender.version == 3


def test_conversion_honours_expected_version(make_tender, clock, sites):
    store = InMemoryTenderStore([make_tender("won", version=4)])
    svc = TenderService(store=store, site_creator=sites, clock=clock)

    with pytest.raises(ConflictError):
        svc.convert_to_site("tnd_won", expected_version=3)
    assert sites.sites == {}

    out = svc.convert_to_site("tnd_won", expected_version=4)
    assert out.tender.version == 5
    draft = sites.sites[out.site_id]
    assert draft.sourceTenderId == "tnd_won"
    assert draft.budget == 10000000


def test_lock_timeout_after_holder_recorded_reports_its_site(make_tender, clock):
    store = InMemoryTenderStore([make_tender("won")])
    sites = InMemorySiteDirectory()
    svc = TenderService(store=store, site_creator=sites, clock=clock, conversion_lock_wait_seconds=0.05)

    with store.conversion_lock("tnd_won"):
        # The holder has saved its site but not released the lock yet.
        cur = store.get("tnd_won")
        store.save(
            cur.model_copy(update={"convertedToSiteId": "site_7", "conversionDate": clock()}),
            expected_version=cur.version,
        )
        with pytest.raises(AlreadyConvertedError) as ei:
            svc.convert_to_site("tnd_won")

    assert ei.value.site_id == "site_7"
    assert sites.sites == {}
    assert store._conversion_locks == {}


def test_lock_timeout_while_site_is_being_created(make_tender, clock):
    store = InMemoryTenderStore([make_tender("won")])
    creator = SlowSiteCreator(delay=0.5)
    svc = TenderService(store=store, site_creator=creator, clock=clock, conversion_lock_wait_seconds=0.05)

    started = threading.Event()
    results: list[object] = []

    class SignallingCreator(SiteCreator):
        def create_site(self, draft: SiteDraft) -> CreatedSite:
            started.set()
            return creator.create_site(draft)

    holder = TenderService(store=store, site_creator=SignallingCreator(), clock=clock)
    t = threading.Thread(target=lambda: results.append(holder.convert_to_site("tnd_won")))
    t.start()
    assert started.wait(timeout=5)

    with pytest.raises(ConversionInProgressError) as ei:
        svc.convert_to_site("tnd_won")
    assert ei.value.extensions()["retryable"] is True

    t.join(timeout=10)
    assert len(creator.calls) == 1
    with pytest.raises(AlreadyConvertedError) as ei2:
        svc.convert_to_site("tnd_won")
    assert ei2.value.site_id == "site_1"
    assert store._conversion_locks == {}
