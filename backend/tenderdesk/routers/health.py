from __future__ import annotations

from fastapi import APIRouter

from ..settings import get_settings

router = APIRouter()


@router.get("/", tags=["health"])
def health():
    settings = get_settings()
    return {
        "message": "Tender Management API",
        "version": "1.0.0",
        "status": "running",
        "port": settings.port,
        "environment": settings.normalized_environment,
        "store": settings.normalized_store_backend,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
        "endpoints": [
            "GET /api/tenders",
            "POST /api/tenders",
            "GET /api/tenders/next-number",
            "GET /api/tenders/{id}",
            "PATCH /api/tenders/{id}",
            "POST /api/tenders/{id}/submit",
            "POST /api/tenders/{id}/won",
            "POST /api/tenders/{id}/lost",
            "POST /api/tenders/{id}/emd/payment",
            "POST /api/tenders/{id}/emd/return",
            "POST /api/tenders/{id}/documents",
            "POST /api/tenders/{id}/convert",
        ],
    }
