"""
REST API for the Folder Server

Design Decision: API Framework
==============================

Options Considered:
1. FastAPI - Modern, fast, auto-docs, async support
2. Flask - Simple, widely used, but sync-focused
3. aiohttp - Async, but less features
4. Starlette - Lightweight, FastAPI is built on it

Decision: FastAPI
- Streaming responses let a download leave the server as it is packed
- Dependencies give a single place for the token check
- Automatic OpenAPI documentation
- Pydantic models for the small JSON payloads

API Design:
- GET  /healthz   liveness, no auth
- GET  /readyz    storage reachable, no auth
- POST /upload    multipart field "folder" (zip) replaces storage
- GET  /download  storage streamed back as folder.zip
- Errors are JSON objects with a single "error" key
- No /docs, /redoc or /openapi.json: only the probes are public
"""

import asyncio
import logging
import os
import tempfile
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Optional

import aiofiles
import aiofiles.os
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse, StreamingResponse
from pydantic import BaseModel
from starlette.concurrency import iterate_in_threadpool
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from .. import __version__
from ..archive import CHUNK_SIZE, ArchiveError, extract, iter_archive
from ..config import ServerConfig
from ..storage import StorageGuard, clear_directory
from ..tokens import TokenStore
from .limits import read_upload

logger = logging.getLogger(__name__)

ARCHIVE_FIELD = 'folder'

DOWNLOAD_HEADERS = {
    'Content-Disposition': 'attachment; filename="folder.zip"',
    'Cache-Control': 'no-store',
}


# === Pydantic Models ===

class StatusResponse(BaseModel):
    """Successful operation."""
    status: str


class ErrorResponse(BaseModel):
    """Any failed request."""
    error: str


class ReadyResponse(BaseModel):
    """Readiness probe result."""
    status: str
    error: Optional[str] = None


# === Dependencies ===

async def require_token(request: Request,
                        authorization: Optional[str] = Header(None)):
    """Reject the request unless its Authorization header is a known token."""
    tokens: TokenStore = request.app.state.tokens
    if not tokens.is_valid(authorization):
        logger.info(f"Rejected {request.method} {request.url.path}: invalid token")
        raise HTTPException(status_code=401, detail="invalid token")


# === Helpers ===

def _upload_temp_path(storage: Path) -> Path:
    """Temp file inside storage, so extraction stays on one filesystem."""
    fd, name = tempfile.mkstemp(prefix='upload-', suffix='.zip', dir=storage)
    os.close(fd)
    return Path(name)


async def _save_upload(upload: UploadFile, dest: Path) -> int:
    """Copy an uploaded file to dest without holding it in memory."""
    written = 0
    async with aiofiles.open(dest, 'wb') as out:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            await out.write(chunk)
            written += len(chunk)
    return written


async def _stream_storage(guard: StorageGuard) -> AsyncIterator[bytes]:
    """Pack storage into the response while holding the shared lock."""
    async with guard.shared() as root:
        sent = 0
        try:
            async for chunk in iterate_in_threadpool(iter_archive(root)):
                sent += len(chunk)
                yield chunk
        except OSError as e:
            # Headers are already sent; aborting the stream is all we can do
            logger.error(f"Download error after {sent:,} bytes: {e}")
            raise
        logger.info(f"Download complete: {sent:,} bytes")


# === API Creation ===

def create_app(config: ServerConfig,
               tokens: Optional[TokenStore] = None,
               guard: Optional[StorageGuard] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        config: Server configuration
        tokens: Token store (created from config if not provided)
        guard: Storage lock (created from config if not provided)

    Returns:
        FastAPI application
    """
    if tokens is None:
        tokens = TokenStore(config.tokens_path, config.tokens_refresh_seconds)
    if guard is None:
        guard = StorageGuard(config.storage_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown."""
        guard.root.mkdir(parents=True, exist_ok=True)
        tokens.load()
        tokens.start()
        logger.info(f"Serving storage={guard.root}, tokens={tokens.path}")
        try:
            yield
        finally:
            await tokens.stop()
            logger.info("Folder server stopped")

    app = FastAPI(
        title="foldersync",
        description="Replace a remote folder wholesale with a token-protected zip transfer",
        version=__version__,
        lifespan=lifespan,
        # Every route but the probes needs a token; there are no public docs
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.state.config = config
    app.state.tokens = tokens
    app.state.guard = guard

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            {'error': exc.detail},
            status_code=exc.status_code,
            headers=getattr(exc, 'headers', None),
        )

    # === Health ===

    @app.get("/healthz", response_class=PlainTextResponse, tags=["Health"])
    async def healthz():
        """Liveness probe."""
        return "ok"

    @app.get("/readyz", response_model=ReadyResponse, response_model_exclude_none=True,
             tags=["Health"],
             responses={503: {"model": ReadyResponse}})
    async def readyz(request: Request):
        """Readiness probe: storage must be reachable."""
        try:
            await aiofiles.os.stat(request.app.state.guard.root)
        except OSError as e:
            return JSONResponse(
                {'status': 'storage not ready', 'error': str(e)},
                status_code=503,
            )
        return {'status': 'ready'}

    # === Transfer ===

    @app.post("/upload", response_model=StatusResponse, tags=["Transfer"],
              dependencies=[Depends(require_token)],
              responses={400: {"model": ErrorResponse}, 401: {"model": ErrorResponse},
                         413: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
    async def upload(request: Request):
        """Replace the stored folder with the uploaded archive."""
        config: ServerConfig = request.app.state.config
        # Parsed before the lock: an oversized or malformed body never clears storage
        form, folder = await read_upload(
            request, ARCHIVE_FIELD,
            spool_max_size=config.max_multipart_bytes,
            max_bytes=config.max_upload_bytes,
        )

        guard: StorageGuard = request.app.state.guard
        try:
            async with guard.exclusive() as root:
                tmp_path: Optional[Path] = None
                try:
                    await asyncio.to_thread(clear_directory, root)
                    tmp_path = await asyncio.to_thread(_upload_temp_path, root)
                    size = await _save_upload(folder, tmp_path)
                    count = await asyncio.to_thread(extract, tmp_path, root)
                finally:
                    if tmp_path is not None:
                        tmp_path.unlink(missing_ok=True)
        except (ArchiveError, OSError) as e:
            logger.error(f"Upload failed: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        finally:
            await form.close()

        logger.info(f"Folder replaced: {count} entries from {size:,} bytes")
        return StatusResponse(status="folder replaced")

    @app.get("/download", tags=["Transfer"],
             dependencies=[Depends(require_token)],
             response_class=StreamingResponse,
             responses={200: {"content": {"application/zip": {}}},
                        401: {"model": ErrorResponse}, 500: {"model": ErrorResponse}})
    async def download(request: Request):
        """Stream the stored folder as a zip archive."""
        guard: StorageGuard = request.app.state.guard
        if not guard.root.is_dir():
            raise HTTPException(status_code=500, detail=f"storage not available: {guard.root}")

        return StreamingResponse(
            _stream_storage(guard),
            media_type='application/zip',
            headers=DOWNLOAD_HEADERS,
        )

    return app
