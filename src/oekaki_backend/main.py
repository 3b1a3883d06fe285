from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Dict, Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from .blob_store import build_blob_store
from .catalog import ArtifactCatalog
from .configuration import make_runtime_config
from .database import ArtifactDatabase
from .errors import SubmissionError, ValidationError
from .middleware import CORSHeadersMiddleware
from .models import ErrorResponse, HistoryListResponse, ImageDetailResponse, ImageListResponse, SubmissionResponse
from .preview_host import build_preview_host
from .submission import SubmissionCoordinator
from .validation import validate_submission

config = make_runtime_config()
logging.basicConfig(level=config.log_level)
logger = logging.getLogger(__name__)

API_PREFIX = config.api_prefix
MISSING_PARAMS_REASON = "required params are not set"
# page * page_size must stay inside SQLite's 64-bit integer range
MAX_PAGE = 1_000_000

database = ArtifactDatabase(Path(config.database.path))
blob_store = build_blob_store(config)
preview_host = build_preview_host(config)
submission_coordinator = SubmissionCoordinator(database, blob_store, preview_host, max_revisions=config.max_revisions)
artifact_catalog = ArtifactCatalog(database, blob_store, page_size=config.page_size)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    preview_host.close()


app = FastAPI(title="Oekaki API", version="0.1.0", lifespan=lifespan)
app.add_middleware(CORSHeadersMiddleware)


def get_coordinator() -> SubmissionCoordinator:
    return submission_coordinator


def get_catalog() -> ArtifactCatalog:
    return artifact_catalog


def _error_response(status_code: int, reason: str, headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(reason=reason).model_dump(), headers=headers)


@app.exception_handler(SubmissionError)
async def submission_error_handler(request: Request, exc: SubmissionError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return _error_response(exc.status_code, exc.reason)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    return _error_response(400, ValidationError.reason)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        return _error_response(403, "access denied")
    if exc.status_code == 405:
        return _error_response(405, "method not allowed", headers=exc.headers)
    return _error_response(exc.status_code, str(exc.detail), headers=exc.headers)


def _client_address(request: Request) -> Optional[str]:
    forwarded = request.headers.get(config.client_ip_header)
    if forwarded:
        return forwarded
    return request.client.host if request.client else None


@app.get("/healthz")
def healthcheck() -> Dict[str, str]:
    return {"status": "ok"}


@app.get(f"{API_PREFIX}/images", response_model=ImageListResponse)
def list_images(
    page: int = Query(0, ge=0, le=MAX_PAGE),
    catalog: ArtifactCatalog = Depends(get_catalog),
) -> ImageListResponse:
    return ImageListResponse(images=catalog.list_recent(page))


@app.get(f"{API_PREFIX}/histories", response_model=HistoryListResponse)
def list_histories(
    image_id: Optional[str] = None,
    catalog: ArtifactCatalog = Depends(get_catalog),
) -> HistoryListResponse:
    if not image_id:
        raise ValidationError(reason=MISSING_PARAMS_REASON)
    return HistoryListResponse(result=catalog.list_history(image_id))


@app.get(f"{API_PREFIX}/image", response_model=ImageDetailResponse)
def get_image(
    image_id: Optional[str] = None,
    catalog: ArtifactCatalog = Depends(get_catalog),
) -> ImageDetailResponse:
    if not image_id:
        raise ValidationError(reason=MISSING_PARAMS_REASON)
    return ImageDetailResponse(result=catalog.get_artifact(image_id))


@app.post(f"{API_PREFIX}/post", response_model=SubmissionResponse)
async def post_image(
    request: Request,
    coordinator: SubmissionCoordinator = Depends(get_coordinator),
) -> SubmissionResponse:
    try:
        body = await request.json()
    except ValueError as exc:  # noqa: BLE001
        raise ValidationError("Invalid JSON payload") from exc

    submission = validate_submission(body, max_length=config.field_max_length)
    artifact_id = await run_in_threadpool(
        coordinator.submit,
        submission,
        submission.artifact_id,
        _client_address(request),
    )
    return SubmissionResponse(result=artifact_id)
