from __future__ import annotations

from datetime import date

import pytest

from tenderdesk.domain.tenders.errors import AlreadyReturnedError, ValidationError


def test_create_submit_win_convert(service, make_payload, sites):
    t = service.create_tender(make_payload(tenderAmount=45_000_000, emdAmount=900_000))
    assert t.status == "draft"
    assert t.tenderNumber == "TND-2024-001"
    assert t.version == 1

    t = service.submit_tender(t.id, date(2024, 1, 20))
    assert t.status == "submitted"
    assert t.submissionDate == date(2024, 1, 20)

    t = service.mark_won(t.id)
    result = service.convert_to_site(t.id)

    final = service.get_tender(t.id)
    assert final.status == "won"
    assert final.convertedToSiteId is not None
    assert final.convertedToSiteId == result.site_id
    assert final.conversionDate is not None
    assert sites.sites[result.site_id].name == "Ring Road Flyover Package 3"


def test_emd_paid_then_returned_once(service, make_payload):
    t = service.create_tender(make_payload())
    service.record_emd_payment(t.id, date(2024, 1, 10), "EMD/2024/001")
    t = service.mark_emd_returned(t.id, date(2024, 3, 15), "REMD/2024/001")
    assert t.emdPaid is True
    assert t.emdReturned is True

    with pytest.raises(AlreadyReturnedError):
        service.mark_emd_returned(t.id, date(2024, 3, 15), "REMD/2024/001")


def test_emd_equal_to_tender_amount_is_rejected(service, make_payload, store):
    with pytest.raises(ValidationError) as ei:
        service.create_tender(make_payload(tenderAmount=50_000_000, emdAmount=50_000_000))
    assert ei.value.field == "emdAmount"
    assert store.list() == []


def test_mark_lost_appends_reason_to_notes(service, make_payload):
    t = service.create_tender(
        make_payload(
            status="submitted",
            submissionDate="2024-01-20",
            openingDate="2024-02-02",
            notes="Pre-bid meeting attended",
        )
    )
    assert t.status == "submitted"

    lost = service.mark_lost(t.id, "Higher competing bid")
    assert lost.status == "lost"
    assert lost.notes == "Pre-bid meeting attended\n\nLost Reason: Higher competing bid"
    assert lost.notes.endswith("Lost Reason: Higher competing bid")
    assert lost.openingDate == date(2024, 2, 2)


def test_create_validation_errors_report_the_field(service, make_payload):
    with pytest.raises(ValidationError) as ei:
        service.create_tender(make_payload(name="ab"))
    assert ei.value.field == "name"
    assert ei.value.errors

    with pytest.raises(ValidationError) as ei:
        service.create_tender(make_payload(status="submitted"))
    assert ei.value.field == "submissionDate"

    with pytest.raises(ValidationError) as ei:
        service.create_tender(make_payload(emdPaid=True))
    assert ei.value.field == "emdPaidDate"


def test_unpaid_emd_drops_payment_details(service, make_payload):
    t = service.create_tender(make_payload(emdPaid=False, emdPaidDate="2024-01-01", emdPaidReference="EMD/1"))
    assert t.emdPaidDate is None
    assert t.emdPaidReference is None


def test_explicit_numbers_are_unique_per_organization(service, make_payload):
    service.create_tender(make_payload(tenderNumber="PWD-2024-17", organizationId="org_a"))
    with pytest.raises(ValidationError) as ei:
        service.create_tender(make_payload(tenderNumber="pwd-2024-17", organizationId="org_a"))
    assert ei.value.field == "tenderNumber"

    other = service.create_tender(make_payload(tenderNumber="PWD-2024-17", organizationId="org_b"))
    assert other.organizationId == "org_b"


def test_list_filters(service, make_payload):
    a = service.create_tender(make_payload(name="Metro Depot Civil Works", organizationId="org_a"))
    service.create_tender(make_payload(client="Irrigation Board", organizationId="org_b"))
    service.submit_tender(a.id, date(2024, 1, 20))

    assert [t.id for t in service.list_tenders({"status": "submitted"})] == [a.id]
    assert [t.id for t in service.list_tenders({"q": "metro"})] == [a.id]
    assert len(service.list_tenders({"q": "irrigation"})) == 1
    assert len(service.list_tenders({"organizationId": "org_a"})) == 1
    assert len(service.list_tenders()) == 2
