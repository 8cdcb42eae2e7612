from __future__ import annotations

from datetime import date

import pytest

from tenderdesk.domain.tenders.errors import (
    ImmutableFieldError,
    InvalidTransitionError,
    NotWonError,
    ValidationError,
)
from tenderdesk.domain.tenders.lifecycle import allowed_operations
from tenderdesk.domain.tenders.models import TENDER_STATUSES
from tenderdesk.domain.tenders.service import TenderService
from tenderdesk.domain.tenders.store import InMemoryTenderStore
from tenderdesk.infrastructure.sites_client import InMemorySiteDirectory


ALLOWED = {
    "submit": {"draft"},
    "mark_won": {"submitted", "under-evaluation"},
    "mark_lost": {"submitted", "under-evaluation"},
    "convert": {"won"},
}

TARGET = {"submit": "submitted", "mark_won": "won", "mark_lost": "lost", "convert": "won"}


def _run(svc: TenderService, op: str, tender_id: str):
    if op == "submit":
        return svc.submit_tender(tender_id, date(2024, 1, 20))
    if op == "mark_won":
        return svc.mark_won(tender_id)
    if op == "mark_lost":
        return svc.mark_lost(tender_id, "Higher competing bid")
    return svc.convert_to_site(tender_id).tender


@pytest.mark.parametrize("status", TENDER_STATUSES)
@pytest.mark.parametrize("op", sorted(ALLOWED))
def test_transition_table(status, op, make_tender, clock):
    original = make_tender(status)
    store = InMemoryTenderStore([original])
    svc = TenderService(store=store, site_creator=InMemorySiteDirectory(), clock=clock)

    if status in ALLOWED[op]:
        out = _run(svc, op, original.id)
        assert out.status == TARGET[op]
        assert out.version == 2
        return

    expected = NotWonError if op == "convert" else InvalidTransitionError
    with pytest.raises(expected):
        _run(svc, op, original.id)
    # A rejected operation writes nothing.
    assert store.get(original.id) == original


def test_invalid_transition_carries_status_and_op(service, make_tender, store):
    store.add(make_tender("lost"))
    with pytest.raises(InvalidTransitionError) as ei:
        service.mark_won("tnd_lost")
    assert ei.value.from_status == "lost"
    assert ei.value.requested_op == "mark_won"
    assert ei.value.extensions()["code"] == "invalid_transition"


def test_allowed_operations_per_status():
    assert allowed_operations("draft") == ["submit"]
    assert allowed_operations("under-evaluation") == ["mark_won", "mark_lost"]
    assert allowed_operations("closed") == []


def test_submit_requires_a_submission_date(service, make_tender, store):
    store.add(make_tender("draft"))
    with pytest.raises(ValidationError) as ei:
        service.submit_tender("tnd_draft")
    assert ei.value.field == "submissionDate"
    assert store.get("tnd_draft").status == "draft"


def test_submit_rejects_opening_before_submission(service, make_tender, store):
    store.add(make_tender("draft", openingDate=date(2024, 1, 10)))
    with pytest.raises(ValidationError) as ei:
        service.submit_tender("tnd_draft", date(2024, 1, 20))
    assert ei.value.field == "openingDate"


def test_mark_lost_requires_reason_and_checks_state_first(service, make_tender, store):
    store.add(make_tender("submitted"))
    store.add(make_tender("won"))

    with pytest.raises(ValidationError) as ei:
        service.mark_lost("tnd_submitted", "   ")
    assert ei.value.field == "reason"

    # Wrong state wins over a missing reason.
    with pytest.raises(InvalidTransitionError):
        service.mark_lost("tnd_won", "")


def test_mark_lost_on_blank_notes_writes_only_the_reason(service, make_tender, store):
    store.add(make_tender("under-evaluation", notes=""))
    out = service.mark_lost("tnd_under-evaluation", "Technical disqualification")
    assert out.notes == "Lost Reason: Technical disqualification"


def test_amounts_are_frozen_after_submission(service, make_tender, store):
    store.add(make_tender("submitted"))
    with pytest.raises(ImmutableFieldError) as ei:
        service.update_tender("tnd_submitted", {"emdAmount": 150000})
    assert ei.value.field == "emdAmount"

    # Re-sending the same value is not a change.
    out = service.update_tender("tnd_submitted", {"tenderAmount": 10000000, "notes": "Clarification sent"})
    assert out.notes == "Clarification sent"


def test_update_validates_amount_relation_on_draft(service, make_tender, store):
    store.add(make_tender("draft"))
    with pytest.raises(ValidationError) as ei:
        service.update_tender("tnd_draft", {"emdAmount": 10000000})
    assert ei.value.field == "emdAmount"

    out = service.update_tender("tnd_draft", {"tenderAmount": 12000000, "emdAmount": 240000})
    assert out.tenderAmount == 12000000
    assert out.emdAmount == 240000


def test_update_rejects_unknown_fields_and_cleared_required(service, make_tender, store):
    store.add(make_tender("draft"))
    with pytest.raises(ValidationError):
        service.update_tender("tnd_draft", {"status": "won"})
    with pytest.raises(ValidationError) as ei:
        service.update_tender("tnd_draft", {"client": None})
    assert ei.value.field == "client"
