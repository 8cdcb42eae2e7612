from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import Response

from .db.dynamodb.errors import (
    DdbConflict,
    DdbError,
    DdbThrottled,
    DdbUnavailable,
    DdbValidation,
)
from .domain.tenders.collaborators import DocumentStorage, SiteCreator
from .domain.tenders.errors import (
    FileUploadError,
    MissingDateError,
    NotFoundError,
    SiteCreationError,
    TenderError,
    ValidationError,
)
from .domain.tenders.service import TenderService
from .domain.tenders.store import InMemoryTenderStore, TenderStore
from .infrastructure.sites_client import HttpSiteCreator, InMemorySiteDirectory
from .infrastructure.storage.s3_documents import S3DocumentStorage
from .middleware.access_log import AccessLogMiddleware
from .middleware.request_context import RequestContextMiddleware
from .observability.logging import configure_logging, get_logger
from .problem_details import problem_response
from .repositories.tenders_repo import DynamoTenderStore
from .routers.health import router as health_router
from .routers.tenders import router as tenders_router
from .settings import Settings, get_settings

# First match wins; anything else a tender operation raises is a state conflict.
_TENDER_ERROR_STATUS: tuple[tuple[type[TenderError], int], ...] = (
    (ValidationError, 400),
    (MissingDateError, 400),
    (NotFoundError, 404),
    (SiteCreationError, 502),
    (FileUploadError, 502),
)


def tender_error_status(exc: TenderError) -> int:
    for cls, status_code in _TENDER_ERROR_STATUS:
        if isinstance(exc, cls):
            return status_code
    return 409


def _build_store(settings: Settings) -> TenderStore:
    if settings.normalized_store_backend == "dynamodb":
        return DynamoTenderStore(
            lock_ttl_seconds=settings.conversion_lock_ttl_seconds,
            lock_wait_seconds=settings.conversion_lock_wait_seconds,
        )
    return InMemoryTenderStore()


def _build_site_creator(settings: Settings) -> SiteCreator:
    if settings.sites_api_base_url:
        return HttpSiteCreator(
            base_url=settings.sites_api_base_url,
            token=settings.sites_api_token,
            timeout_seconds=settings.sites_api_timeout_seconds,
        )
    return InMemorySiteDirectory()


def _build_document_storage(settings: Settings) -> DocumentStorage | None:
    if not settings.documents_bucket_name:
        return None
    return S3DocumentStorage(
        bucket_name=settings.documents_bucket_name,
        region=settings.aws_region,
        public_base_url=settings.documents_public_base_url,
    )


def create_app(
    *,
    settings: Settings | None = None,
    store: TenderStore | None = None,
    site_creator: SiteCreator | None = None,
    document_storage: DocumentStorage | None = None,
) -> FastAPI:
    settings = settings or get_settings()

    # Logging must be configured before the app starts handling requests.
    configure_logging(level=settings.log_level, environment=settings.normalized_environment)
    log = get_logger("startup")

    app = FastAPI(
        title="Tender Management Backend",
        version="1.0.0",
        default_response_class=ORJSONResponse,
        redirect_slashes=False,
    )

    log.info("app_starting", settings=settings.to_log_safe_dict())

    app.state.tender_service = TenderService(
        store=store or _build_store(settings),
        site_creator=site_creator or _build_site_creator(settings),
        document_storage=document_storage or _build_document_storage(settings),
        tender_number_prefix=settings.tender_number_prefix,
        conversion_lock_wait_seconds=settings.conversion_lock_wait_seconds,
        conversion_save_attempts=settings.conversion_save_attempts,
    )

    # Middlewares (last added is outermost)
    app.add_middleware(AccessLogMiddleware, exclude_paths={"/"})
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins(),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization", "If-Match", "X-Request-Id"],
        expose_headers=["ETag", "X-Request-Id"],
        max_age=3000,
    )
    app.add_middleware(RequestContextMiddleware)

    app.add_exception_handler(TenderError, _tender_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(RequestValidationError, _validation_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(DdbError, _ddb_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, _unhandled_exception_handler)

    app.include_router(health_router)
    app.include_router(tenders_router, prefix="/api")

    return app


def _tender_error_handler(request: Request, exc: TenderError) -> Response:
    status_code = tender_error_status(exc)
    log = get_logger("tenders")
    if status_code >= 500:
        cause = getattr(exc, "cause", None)
        log.warning(
            "tender_collaborator_failed",
            code=exc.code,
            tender_id=exc.tender_id,
            error=str(cause) if cause else str(exc),
        )
    else:
        log.info("tender_request_rejected", code=exc.code, tender_id=exc.tender_id, status_code=status_code)

    errors = getattr(exc, "errors", None) if isinstance(exc, ValidationError) else None
    return problem_response(
        request=request,
        status_code=status_code,
        detail=exc.message,
        errors=errors,
        extensions=exc.extensions(),
    )


def _ddb_error_handler(request: Request, exc: DdbError) -> Response:
    status_code, title = 500, "Storage Error"
    if isinstance(exc, DdbValidation):
        status_code, title = 400, "Bad Request"
    elif isinstance(exc, DdbConflict):
        status_code, title = 409, "Conflict"
    elif isinstance(exc, (DdbThrottled, DdbUnavailable)):
        status_code, title = 503, "Service Unavailable"

    extensions = {
        "operation": exc.operation,
        "table": exc.table_name,
        "awsRequestId": exc.aws_request_id,
        "retryable": bool(exc.retryable),
    }
    return problem_response(
        request=request,
        status_code=status_code,
        title=title,
        detail=exc.message,
        extensions={k: v for k, v in extensions.items() if v is not None},
    )


def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    status_code = int(getattr(exc, "status_code", 500) or 500)
    detail = getattr(exc, "detail", None)
    safe_detail = str(detail) if detail is not None else None
    if status_code == 404:
        safe_detail = safe_detail or "Route not found"
    return problem_response(request=request, status_code=status_code, detail=safe_detail)


def _validation_error_handler(request: Request, exc: RequestValidationError) -> Response:
    errors: list[dict[str, object]] = []
    for e in exc.errors():
        loc = e.get("loc") or ()
        errors.append(
            {
                "location": [str(x) for x in loc],
                "path": ".".join(str(x) for x in loc if x != "body"),
                "message": e.get("msg", "Invalid value"),
                "type": e.get("type"),
            }
        )
    return problem_response(
        request=request,
        status_code=422,
        title="Validation Failed",
        detail="Request validation failed",
        errors=errors,
    )


def _unhandled_exception_handler(request: Request, exc: Exception) -> Response:
    # Full traceback goes to the logs; the response body stays generic in production.
    rid = getattr(getattr(request, "state", None), "request_id", None)
    get_logger("unhandled").error(
        "unhandled_exception",
        exc_info=exc,
        request_id=str(rid) if rid else None,
        http_method=str(getattr(request, "method", "") or "").upper() or None,
        path=str(getattr(getattr(request, "url", None), "path", "") or ""),
    )
    return problem_response(
        request=request,
        status_code=500,
        title="Internal Server Error",
        detail=str(exc) if exc else None,
    )


app = create_app()
