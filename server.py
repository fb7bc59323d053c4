from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from json import JSONDecodeError
from typing import Optional, Union
from urllib.parse import quote

from fastapi import Depends, FastAPI, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response, StreamingResponse
from pydantic import BaseModel, StrictInt, StrictStr, ValidationError

from docfetch_backend.config import DeliveryConfig, PathStrategy, configure_logging, load_config
from docfetch_backend.errors import (
    ArchiveStreamError,
    BatchTooLargeError,
    DeliveryError,
    EmptyBatchError,
    InvalidRequestError,
)
from docfetch_backend.planner import (
    ArchiveDelivery,
    DeliveryPlan,
    FileDelivery,
    PageDelivery,
    RequestedItem,
    plan_delivery,
)
from docfetch_backend.security import PathResolver
from docfetch_backend.zip_utils import stream_archive


logger = logging.getLogger("docfetch_backend.server")

# Read once at startup; handlers get it through get_config().
SETTINGS = load_config()


class PathEntry(BaseModel):
    path: str
    # Booleans are not pages; numeric strings are parsed by _parse_page.
    page: Optional[Union[StrictInt, StrictStr]] = None


def get_config() -> DeliveryConfig:
    return SETTINGS


def get_resolver(config: DeliveryConfig = Depends(get_config)) -> PathResolver:
    return PathResolver(config)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(SETTINGS.log_level)
    if SETTINGS.strategy is PathStrategy.SHARE_PREFIX:
        logger.warning(
            "Legacy share-prefix path mapping is active: paths are NOT confined to a documents root"
        )
    elif SETTINGS.documents_root is None:
        logger.error("DOCFETCH_DOCUMENTS_ROOT is not set; every download will fail")
    else:
        logger.info("Serving documents confined to the configured root")
    yield


app = FastAPI(title="docfetch", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=list(SETTINGS.cors_origins),
    allow_credentials=False,
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
    # Browsers hide Content-Disposition from scripts unless exposed.
    expose_headers=["Content-Disposition"],
)


@app.exception_handler(DeliveryError)
async def _delivery_error(request: Request, exc: DeliveryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse({"detail": exc.message}, status_code=exc.status_code)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Headers are already sent for a failed archive, so this body is dropped
    # and the connection is aborted.
    if isinstance(exc, ArchiveStreamError):
        logger.error("%s %s: %s", request.method, request.url.path, exc.message, exc_info=exc.__cause__)
    else:
        logger.exception("Unexpected error in %s %s", request.method, request.url.path)
    return JSONResponse({"detail": "Unexpected error while preparing the download."}, status_code=500)


def _parse_page(value: object) -> Optional[int]:
    """Validate an optional page number. Pages are 1-based."""
    if value is None or value == "":
        return None
    try:
        page = int(value)
    except (TypeError, ValueError):
        raise InvalidRequestError("'page' must be a positive integer.")
    if page < 1:
        raise InvalidRequestError("'page' must be a positive integer.")
    return page


def _parse_batch_entries(payload: object, max_items: int) -> list[RequestedItem]:
    if not isinstance(payload, dict):
        raise InvalidRequestError("Request body must be a JSON object.")
    entries = payload.get("paths")
    if not isinstance(entries, list) or not entries:
        raise EmptyBatchError()
    if len(entries) > max_items:
        raise BatchTooLargeError(f"Too many paths in one request (maximum {max_items}).")

    items: list[RequestedItem] = []
    for entry in entries:
        if isinstance(entry, str):
            if entry.strip():
                items.append(RequestedItem(raw_path=entry))
                continue
        elif isinstance(entry, dict) and isinstance(entry.get("path"), str) and entry["path"].strip():
            try:
                parsed = PathEntry.model_validate(entry)
            except ValidationError:
                raise InvalidRequestError(f"Entry for '{entry['path']}' has an invalid 'page'.")
            items.append(RequestedItem(raw_path=parsed.path, page=_parse_page(parsed.page)))
            continue
        logger.warning("Skipping invalid batch entry of type %s", type(entry).__name__)

    if not items:
        raise EmptyBatchError("No valid entries to download.")
    return items


def _content_disposition(filename: str) -> str:
    return f'attachment; filename="{quote(filename, safe="!*()")}"'


def _render(plan: DeliveryPlan, config: DeliveryConfig) -> Response:
    headers = {
        "Content-Disposition": _content_disposition(plan.filename),
        "Cache-Control": "no-store",
        "X-Content-Type-Options": "nosniff",
    }
    if isinstance(plan, FileDelivery):
        # FileResponse sets Content-Length from the file itself.
        return FileResponse(plan.path, media_type=plan.media_type, headers=headers)
    if isinstance(plan, PageDelivery):
        return Response(content=plan.content, media_type=plan.media_type, headers=headers)
    if isinstance(plan, ArchiveDelivery):
        body = stream_archive(
            plan.entries,
            compresslevel=config.zip_compress_level,
            chunk_size=config.stream_chunk_bytes,
            queue_depth=config.stream_queue_depth,
        )
        return StreamingResponse(body, media_type=plan.media_type, headers=headers)
    raise TypeError(f"Unknown delivery plan: {plan!r}")


async def _deliver(items: list[RequestedItem], resolver: PathResolver, config: DeliveryConfig) -> Response:
    plan = await run_in_threadpool(plan_delivery, items, resolver, archive_filename=config.archive_filename)
    logger.info("Delivering %s as %s", plan.filename, type(plan).__name__)
    return _render(plan, config)


@app.get("/api/download")
async def download(
    path: Optional[str] = None,
    page: Optional[str] = None,
    config: DeliveryConfig = Depends(get_config),
    resolver: PathResolver = Depends(get_resolver),
) -> Response:
    """Download one document, or one page of a PDF when ``page`` is given."""
    if path is None or not path.strip():
        raise InvalidRequestError("Query parameter 'path' is required.")
    item = RequestedItem(raw_path=path, page=_parse_page(page))
    logger.info("GET download path=%r page=%s", path, item.page)
    return await _deliver([item], resolver, config)


@app.post("/api/download")
async def download_batch(
    request: Request,
    config: DeliveryConfig = Depends(get_config),
    resolver: PathResolver = Depends(get_resolver),
) -> Response:
    """Download several documents as a ZIP (or as one file if only one is named).

    Body: ``{"paths": ["a.pdf", {"path": "b.pdf", "page": 2}]}``
    """
    try:
        payload = await request.json()
    except (JSONDecodeError, UnicodeDecodeError):
        raise InvalidRequestError("Request body must be valid JSON.")

    items = _parse_batch_entries(payload, config.max_batch_items)
    logger.info("POST download with %d item(s)", len(items))
    return await _deliver(items, resolver, config)


if __name__ == "__main__":
    # Convenience: python server.py
    import uvicorn

    port = int(os.environ.get("PORT", "8010"))
    host = os.environ.get("HOST", "127.0.0.1")
    uvicorn.run("server:app", host=host, port=port, reload=False, log_level=SETTINGS.log_level.lower())
