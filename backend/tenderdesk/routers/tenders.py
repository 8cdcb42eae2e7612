from __future__ import annotations

from datetime import date
from typing import Any

from fastapi import APIRouter, Body, File, Form, Query, Request, UploadFile
from fastapi.responses import ORJSONResponse
from pydantic import BaseModel, ConfigDict

from ..domain.tenders.errors import ValidationError
from ..domain.tenders.lifecycle import allowed_operations
from ..domain.tenders.models import Tender, TenderFilter, TenderStatus
from ..domain.tenders.service import TenderService

router = APIRouter(tags=["tenders"])


class SubmitRequest(BaseModel):
    submissionDate: date | None = None


class MarkLostRequest(BaseModel):
    reason: str = ""


class EmdPaymentRequest(BaseModel):
    paidDate: date | None = None
    reference: str | None = None


class EmdReturnRequest(BaseModel):
    returnDate: date | None = None
    reference: str | None = None


class AddDocumentRequest(BaseModel):
    name: str


class AttachFileRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    fileUrl: str
    uploadedBy: str | None = None


def _service(request: Request) -> TenderService:
    return request.app.state.tender_service


def _if_match(request: Request) -> int | None:
    raw = str(request.headers.get("if-match") or "").strip()
    if not raw or raw == "*":
        return None
    v = raw[2:] if raw.startswith("W/") else raw
    v = v.strip().strip('"')
    if not v.isdigit():
        raise ValidationError(
            message="If-Match must carry the tender version",
            field="If-Match",
            reason="expected an integer version",
        )
    return int(v)


def tender_payload(tender: Tender) -> dict[str, Any]:
    out = tender.model_dump(mode="json")
    out["allowedOperations"] = allowed_operations(tender.status)
    out["documentsCollected"] = tender.collected_count
    return out


def _respond(tender: Tender, *, status_code: int = 200, **extra: Any) -> ORJSONResponse:
    return ORJSONResponse(
        status_code=status_code,
        content={"tender": tender_payload(tender), **extra},
        headers={"ETag": f'"{tender.version}"'},
    )


@router.get("/tenders")
def list_tenders(
    request: Request,
    status: TenderStatus | None = Query(default=None),
    q: str | None = Query(default=None, max_length=200),
    organizationId: str | None = Query(default=None),
):
    f = TenderFilter(status=status, q=q, organizationId=organizationId)
    items = _service(request).list_tenders(f)
    return {"data": [tender_payload(t) for t in items], "count": len(items)}


@router.post("/tenders", status_code=201)
def create_tender(request: Request, body: dict[str, Any] = Body(...)):
    tender = _service(request).create_tender(body)
    return _respond(tender, status_code=201)


@router.get("/tenders/next-number")
def next_tender_number(request: Request, year: int | None = Query(default=None, ge=2000, le=9999)):
    return {"tenderNumber": _service(request).generate_tender_number(year)}


@router.get("/tenders/{id}")
def get_tender(id: str, request: Request):
    return _respond(_service(request).get_tender(id))


@router.patch("/tenders/{id}")
def update_tender(id: str, request: Request, body: dict[str, Any] = Body(...)):
    tender = _service(request).update_tender(id, body, expected_version=_if_match(request))
    return _respond(tender)


@router.post("/tenders/{id}/submit")
def submit_tender(id: str, request: Request, body: SubmitRequest | None = None):
    when = body.submissionDate if body else None
    tender = _service(request).submit_tender(id, when, expected_version=_if_match(request))
    return _respond(tender)


@router.post("/tenders/{id}/won")
def mark_won(id: str, request: Request):
    return _respond(_service(request).mark_won(id, expected_version=_if_match(request)))


@router.post("/tenders/{id}/lost")
def mark_lost(id: str, body: MarkLostRequest, request: Request):
    tender = _service(request).mark_lost(id, body.reason, expected_version=_if_match(request))
    return _respond(tender)


@router.post("/tenders/{id}/emd/payment")
def record_emd_payment(id: str, body: EmdPaymentRequest, request: Request):
    tender = _service(request).record_emd_payment(
        id,
        body.paidDate,
        body.reference,
        expected_version=_if_match(request),
    )
    return _respond(tender)


@router.post("/tenders/{id}/emd/return")
def mark_emd_returned(id: str, body: EmdReturnRequest, request: Request):
    tender = _service(request).mark_emd_returned(
        id,
        body.returnDate,
        body.reference,
        expected_version=_if_match(request),
    )
    return _respond(tender)


@router.delete("/tenders/{id}/emd/return")
def unmark_emd_returned(id: str, request: Request):
    return _respond(_service(request).unmark_emd_returned(id, expected_version=_if_match(request)))


@router.post("/tenders/{id}/documents", status_code=201)
def add_document(id: str, body: AddDocumentRequest, request: Request):
    tender = _service(request).add_document(id, body.name, expected_version=_if_match(request))
    return _respond(tender, status_code=201)


@router.post("/tenders/{id}/documents/{doc_id}/toggle")
def toggle_document(id: str, doc_id: str, request: Request):
    tender = _service(request).toggle_document(id, doc_id, expected_version=_if_match(request))
    return _respond(tender)


@router.put("/tenders/{id}/documents/{doc_id}/file")
def attach_document_file(id: str, doc_id: str, body: AttachFileRequest, request: Request):
    tender = _service(request).attach_document_file(
        id,
        doc_id,
        body.fileUrl,
        body.uploadedBy,
        expected_version=_if_match(request),
    )
    return _respond(tender)


@router.post("/tenders/{id}/documents/{doc_id}/upload")
def upload_document_file(
    id: str,
    doc_id: str,
    request: Request,
    file: UploadFile = File(...),
    uploadedBy: str | None = Form(default=None),
):
    content = file.file.read()
    tender = _service(request).upload_document_file(
        id,
        doc_id,
        content=content,
        file_name=file.filename or "",
        content_type=file.content_type,
        uploaded_by=uploadedBy,
        expected_version=_if_match(request),
    )
    return _respond(tender)


@router.post("/tenders/{id}/convert")
def convert_to_site(id: str, request: Request):
    result = _service(request).convert_to_site(id, expected_version=_if_match(request))
    return _respond(result.tender, siteId=result.site_id)
