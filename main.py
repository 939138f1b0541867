"""
Ham Radio Cloud - Main FastAPI Application

ADIF import, validation (dry run) and export endpoints.
"""

import codecs
import logging
import os
from contextlib import asynccontextmanager
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request, Depends, UploadFile, File, Query
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ValidationError, field_validator
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from adif_generator import export_filename, iter_adif
from adif_import import ImportAborted, ImportResult, import_adif, validate_adif
from audit import get_audit_logs, log_action
from config import config
from database import QSOFilter, create_qso, ensure_user, get_user, init_db, list_qsos, set_qso_limit

# Configure logging
logging.basicConfig(
    level=getattr(logging, config.LOG_LEVEL, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Rate limiter - disabled in test mode
limiter = Limiter(key_func=get_remote_address, enabled=not config.TESTING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    init_db()
    ensure_user(config.DEFAULT_USER_ID, config.DEFAULT_USER_CALLSIGN, config.DEFAULT_QSO_LIMIT)
    # Pick up a changed quota for an existing user
    set_qso_limit(config.DEFAULT_USER_ID, config.DEFAULT_QSO_LIMIT)
    yield


# Initialize app
app = FastAPI(
    title="Ham Radio Cloud",
    description="""
Amateur radio logbook service.

## Features
- **ADIF import**: upload a log as request body or file, lenient or strict
- **ADIF validation**: dry run that reports what an import would reject
- **ADIF export**: download your QSOs, filtered by call, band, mode and date
    """,
    version=config.PROGRAM_VERSION,
    lifespan=lifespan,
    openapi_tags=[
        {"name": "public", "description": "Public endpoints"},
        {"name": "adif", "description": "ADIF import and export"},
    ],
    docs_url="/docs",
    redoc_url="/redoc",
)

# Add rate limiter to app
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Render HTTP errors (unknown routes, wrong methods) in the API error shape."""
    code = "NOT_FOUND" if exc.status_code == 404 else "HTTP_ERROR"
    return error_response(exc.status_code, code, str(exc.detail))


@app.exception_handler(500)
async def server_error_handler(request: Request, exc: Exception):
    """Handle 500 errors."""
    logger.error(f"Internal server error: {exc}", exc_info=True)
    return error_response(500, "INTERNAL_ERROR", "Internal server error")


class ExportQuery(BaseModel):
    callsign: Optional[str] = None
    band: Optional[str] = None
    mode: Optional[str] = None
    date_from: Optional[str] = None
    date_to: Optional[str] = None
    limit: Optional[int] = None

    @field_validator('date_from', 'date_to')
    @classmethod
    def validate_date_format(cls, v):
        if not v:
            return None
        try:
            date.fromisoformat(v)
        except ValueError:
            raise ValueError('Invalid date format. Use YYYY-MM-DD')
        return v

    def to_filter(self) -> QSOFilter:
        return QSOFilter(
            callsign=self.callsign,
            band=self.band,
            mode=self.mode,
            date_from=date.fromisoformat(self.date_from) if self.date_from else None,
            date_to=date.fromisoformat(self.date_to) if self.date_to else None,
            limit=self.limit,
        )


def get_current_user_id() -> int:
    """Owning user for logbook operations. Authentication is handled upstream."""
    return config.DEFAULT_USER_ID


def error_response(status_code: int, code: str, message: str, data: Optional[dict] = None) -> JSONResponse:
    """Build the JSON error body used by all API endpoints."""
    content = {"error": {"code": code, "message": message}}
    if data is not None:
        content["data"] = data
    return JSONResponse(status_code=status_code, content=content)


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


def _check_content(content: bytes, encoding: str) -> Optional[JSONResponse]:
    """Return an error response for unusable upload content, else None."""
    if not content or not content.strip():
        return error_response(400, "EMPTY_CONTENT", "Request body is empty")
    if len(content) > config.MAX_UPLOAD_SIZE:
        return error_response(
            413, "CONTENT_TOO_LARGE",
            f"ADIF content exceeds {config.MAX_UPLOAD_SIZE} bytes"
        )
    try:
        codecs.lookup(encoding)
    except LookupError:
        return error_response(400, "INVALID_ENCODING", f"Unknown encoding: {encoding}")
    return None


def _import_response(result: ImportResult, user_id: int) -> JSONResponse:
    user = get_user(user_id) or {}
    status_code = 200
    if result.failed_records > 0 or result.skipped_records > 0:
        status_code = 206
    return JSONResponse(
        status_code=status_code,
        content={
            "data": result.to_dict(max_errors=config.MAX_IMPORT_ERRORS),
            "meta": {
                "message": f"Imported {result.imported_records} of {result.total_records} records",
                "qso_count": user.get("qso_count"),
                "qso_limit": user.get("qso_limit"),
            },
        },
    )


def _run_import(request: Request, content: bytes, strict: bool, encoding: str, user_id: int) -> JSONResponse:
    """Shared body of the raw and file upload import endpoints."""
    error = _check_content(content, encoding)
    if error:
        return error

    try:
        result = import_adif(
            content,
            strict=strict,
            persist=lambda contact: create_qso(user_id, contact),
            encoding=encoding,
        )
    except ImportAborted as e:
        logger.info(f"Strict ADIF import aborted for user {user_id}: {e}")
        log_action(user_id, "adif_import_aborted", details=str(e), ip_address=_client_ip(request))
        return error_response(
            400, "IMPORT_FAILED", str(e),
            data=e.result.to_dict(max_errors=config.MAX_IMPORT_ERRORS)
        )

    log_action(
        user_id, "adif_import",
        details=(f"{result.imported_records}/{result.total_records} imported, "
                 f"{result.failed_records} failed, {result.skipped_records} skipped"),
        ip_address=_client_ip(request),
    )
    return _import_response(result, user_id)


@app.get("/health", tags=["public"])
async def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@app.post("/api/v1/qsos/import", tags=["adif"])
@limiter.limit(config.RATE_LIMIT_IMPORT)
async def import_qsos(
    request: Request,
    strict: bool = False,
    encoding: str = "utf-8",
    user_id: int = Depends(get_current_user_id),
):
    """
    Import QSOs from ADIF content sent as the request body.

    Returns 200 when every record was imported, 206 when some failed or were
    skipped, 400 when strict mode aborted.
    """
    content = await request.body()
    return _run_import(request, content, strict, encoding, user_id)


@app.post("/api/v1/qsos/import/file", tags=["adif"])
@limiter.limit(config.RATE_LIMIT_IMPORT)
async def import_qsos_file(
    request: Request,
    file: UploadFile = File(...),
    strict: bool = False,
    encoding: str = "utf-8",
    user_id: int = Depends(get_current_user_id),
):
    """Import QSOs from an uploaded .adi/.adif file."""
    ext = os.path.splitext(file.filename or "")[1].lower()
    if ext not in config.ALLOWED_UPLOAD_EXTENSIONS:
        return error_response(
            400, "INVALID_FILE_TYPE",
            f"File type not allowed. Allowed: {', '.join(sorted(config.ALLOWED_UPLOAD_EXTENSIONS))}"
        )
    content = await file.read()
    return _run_import(request, content, strict, encoding, user_id)


@app.post("/api/v1/qsos/validate", tags=["adif"])
async def validate_qsos(
    request: Request,
    strict: bool = False,
    encoding: str = "utf-8",
    user_id: int = Depends(get_current_user_id),
):
    """Validate ADIF content without importing anything."""
    content = await request.body()
    error = _check_content(content, encoding)
    if error:
        return error

    try:
        result = validate_adif(content, strict=strict, encoding=encoding)
    except ImportAborted as e:
        result = e.result

    log_action(
        user_id, "adif_validate",
        details=f"{result.total_records} records, {result.failed_records} failed",
        ip_address=_client_ip(request),
    )

    if result.is_valid:
        message = f"Valid ADIF with {result.total_records} records"
    else:
        message = f"Invalid ADIF: {result.failed_records} errors found"
    return JSONResponse(
        status_code=200 if result.is_valid else 400,
        content={
            "data": result.to_dict(max_errors=config.MAX_IMPORT_ERRORS),
            "meta": {"valid": result.is_valid, "message": message},
        },
    )


@app.get("/api/v1/qsos/export", tags=["adif"])
async def export_qsos(
    request: Request,
    callsign: Optional[str] = None,
    band: Optional[str] = None,
    mode: Optional[str] = None,
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
    limit: Optional[int] = Query(None, ge=1),
    user_id: int = Depends(get_current_user_id),
):
    """Export the user's QSOs as an ADIF file download."""
    try:
        query = ExportQuery(
            callsign=callsign, band=band, mode=mode,
            date_from=date_from, date_to=date_to, limit=limit,
        )
    except ValidationError as e:
        field = e.errors()[0]["loc"][0]
        return error_response(400, "INVALID_DATE", f"{field} must be YYYY-MM-DD")

    contacts = list_qsos(user_id, query.to_filter())
    now = datetime.now(timezone.utc)
    filename = export_filename(now)

    log_action(user_id, "adif_export", details=f"{len(contacts)} QSOs", ip_address=_client_ip(request))

    return StreamingResponse(
        iter_adif(contacts, now=now),
        media_type="text/plain; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )


@app.get("/api/v1/audit-log", tags=["adif"])
async def audit_log(
    action: Optional[str] = None,
    page: int = Query(1, ge=1),
    user_id: int = Depends(get_current_user_id),
):
    """List the user's import, validation and export history, newest first."""
    per_page = 50
    offset = (page - 1) * per_page
    logs = get_audit_logs(limit=per_page, offset=offset, action=action, user_id=user_id)
    return {"data": logs, "meta": {"page": page, "per_page": per_page}}


# Run with uvicorn
if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
