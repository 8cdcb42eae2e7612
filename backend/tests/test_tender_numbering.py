from __future__ import annotations

from datetime import datetime, timezone

from tenderdesk.domain.tenders.numbering import TenderNumberGenerator
from tenderdesk.domain.tenders.store import InMemoryTenderStore


def test_numbers_are_sequential_per_year():
    gen = TenderNumberGenerator(
        InMemoryTenderStore(),
        clock=lambda: datetime(2025, 6, 1, tzinfo=timezone.utc),
    )
    assert gen.generate() == "TND-2025-001"
    assert gen.generate() == "TND-2025-002"
    assert gen.generate(2024) == "TND-2024-001"
    assert gen.generate() == "TND-2025-003"


def test_prefix_is_normalized():
    gen = TenderNumberGenerator(InMemoryTenderStore(), prefix=" bid ")
    assert gen.generate(2024) == "BID-2024-001"


def test_sequence_widens_past_three_digits():
    store = InMemoryTenderStore()
    gen = TenderNumberGenerator(store)
    for _ in range(999):
        store.next_sequence("TND#2024")
    assert gen.generate(2024) == "TND-2024-1000"


def test_auto_numbering_skips_taken_numbers(service, make_payload):
    taken = service.create_tender(make_payload(tenderNumber="TND-2024-001"))
    auto = service.create_tender(make_payload())
    assert taken.tenderNumber == "TND-2024-001"
    assert auto.tenderNumber == "TND-2024-002"


def test_suggestions_consume_the_sequence(service, make_payload):
    assert service.generate_tender_number() == "TND-2024-001"
    t = service.create_tender(make_payload())
    assert t.tenderNumber == "TND-2024-002"
