"""
Upload body handling: size ceiling and multipart parsing.

The ceiling is checked twice: once against the declared Content-Length,
and again while the body streams in, for chunked uploads that declare
no length. Both checks run inside the upload route, after the token
check, so an unauthenticated caller always gets 401.
"""

import logging
from typing import AsyncIterator, Tuple

from fastapi import HTTPException, Request
from starlette.datastructures import FormData, UploadFile
from starlette.formparsers import MultiPartException, MultiPartParser

logger = logging.getLogger(__name__)


class RequestTooLarge(HTTPException):
    """Request body exceeded the configured ceiling."""

    def __init__(self, max_bytes: int):
        self.max_bytes = max_bytes
        super().__init__(
            status_code=413,
            detail=f"request body exceeds {max_bytes} bytes",
        )


class NoFileUploaded(HTTPException):
    """The request carries no usable archive part."""

    def __init__(self, detail: str = "no file uploaded"):
        super().__init__(status_code=400, detail=detail)


def check_declared_length(request: Request, max_bytes: int):
    """Reject early when Content-Length already exceeds max_bytes (0 disables)."""
    if max_bytes <= 0:
        return
    declared = request.headers.get('content-length')
    if declared is not None and declared.isdigit() and int(declared) > max_bytes:
        logger.warning(f"Rejected {request.url.path}: Content-Length {declared} > {max_bytes}")
        raise RequestTooLarge(max_bytes)


async def limit_stream(stream: AsyncIterator[bytes], max_bytes: int) -> AsyncIterator[bytes]:
    """Pass body chunks through, failing once more than max_bytes arrived."""
    received = 0
    async for chunk in stream:
        received += len(chunk)
        if 0 < max_bytes < received:
            logger.warning(f"Rejected upload: body exceeded {max_bytes} bytes")
            raise RequestTooLarge(max_bytes)
        yield chunk


def upload_parser(request: Request, spool_max_size: int, max_bytes: int = 0) -> MultiPartParser:
    """
    Multipart parser for one request.

    spool_max_size is set on the instance: file parts larger than it go
    to a temporary file on disk. Other apps in the same process keep
    their own setting.
    """
    parser = MultiPartParser(request.headers, limit_stream(request.stream(), max_bytes))
    parser.spool_max_size = spool_max_size
    return parser


async def read_upload(request: Request, field: str,
                      spool_max_size: int, max_bytes: int = 0) -> Tuple[FormData, UploadFile]:
    """
    Parse a multipart body and return the form and its file part `field`.

    Raises:
        RequestTooLarge: body above max_bytes
        NoFileUploaded: not multipart, malformed, or `field` is not a file
    """
    check_declared_length(request, max_bytes)

    content_type = request.headers.get('content-type', '')
    if not content_type.lower().startswith('multipart/form-data'):
        raise NoFileUploaded()

    try:
        form = await upload_parser(request, spool_max_size, max_bytes).parse()
    except MultiPartException as e:
        raise NoFileUploaded(f"no file uploaded: {e.message}") from e
    except KeyError as e:
        # multipart content type without a boundary
        raise NoFileUploaded() from e

    upload = form.get(field)
    if not isinstance(upload, UploadFile):
        await form.close()
        raise NoFileUploaded()
    return form, upload
