"""
Folder Transfer Client

Design Decision: Transfer Strategy
===================================

Options Considered:
1. Per-file requests
   - Resumable, but needs a manifest and many round trips

2. One archive per transfer over HTTP
   - A single request replaces the whole folder
   - Easy to put behind any reverse proxy

Decision: One zip archive per transfer
- Upload: pack to a temp file, POST it as multipart field "folder"
- Download: stream the response into a temp file, check it, and only
  then clear the local folder and extract. A failed download or a bad
  archive leaves the local folder untouched.

There is no retry logic: a failed transfer is reported and must be
started again.
"""

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional, Union

import httpx

from ..archive import extract, pack_to_file, verify
from ..storage import clear_directory

logger = logging.getLogger(__name__)

ARCHIVE_FIELD = 'folder'
ARCHIVE_FILENAME = 'folder.zip'

DEFAULT_TIMEOUT = httpx.Timeout(None, connect=10.0)


class TransferError(Exception):
    """The server refused or failed a transfer."""

    def __init__(self, status_code: int, detail: str):
        self.status_code = status_code
        self.detail = detail
        super().__init__(f"server error ({status_code}): {detail}")


def _error_detail(response: httpx.Response) -> str:
    """Prefer the 'error' field of a JSON body, fall back to the raw text."""
    try:
        body = response.json()
    except ValueError:
        return response.text
    if isinstance(body, dict) and body.get('error'):
        return str(body['error'])
    return response.text


def _temp_archive(prefix: str) -> Path:
    fd, name = tempfile.mkstemp(prefix=prefix, suffix='.zip')
    os.close(fd)
    return Path(name)


class TransferClient:
    """
    Uploads and downloads a whole folder.

    Args:
        server_url: Base URL, e.g. http://host:1244
        token: Raw token sent in the Authorization header
        http: Optional preconfigured httpx.Client (tests pass a TestClient)
    """

    def __init__(self, server_url: str, token: str,
                 http: Optional[httpx.Client] = None):
        self.server_url = server_url.rstrip('/')
        self.token = token
        self._http = http
        self._owns_http = http is None

    @property
    def http(self) -> httpx.Client:
        if self._http is None:
            self._http = httpx.Client(timeout=DEFAULT_TIMEOUT)
        return self._http

    def close(self):
        if self._owns_http and self._http is not None:
            self._http.close()
            self._http = None

    def __enter__(self) -> 'TransferClient':
        return self

    def __exit__(self, *exc):
        self.close()

    def _url(self, path: str) -> str:
        return f"{self.server_url}/{path.lstrip('/')}"

    @property
    def _headers(self) -> dict:
        return {'Authorization': self.token}

    # === Operations ===

    def upload_folder(self, folder: Union[str, os.PathLike]) -> dict:
        """
        Replace the server's folder with the local one.

        Returns:
            The server's JSON status payload

        Raises:
            TransferError: on a non-2xx response
            OSError: if the folder cannot be read
            httpx.HTTPError: on connection problems
        """
        folder = Path(folder)
        tmp_path = _temp_archive('foldersync-upload-')

        try:
            size = pack_to_file(folder, tmp_path)
            logger.info(f"Uploading {folder} ({size:,} bytes packed)")

            with open(tmp_path, 'rb') as archive:
                response = self.http.post(
                    self._url('/upload'),
                    headers=self._headers,
                    files={ARCHIVE_FIELD: (ARCHIVE_FILENAME, archive, 'application/zip')},
                )

            if not response.is_success:
                raise TransferError(response.status_code, _error_detail(response))

            try:
                return response.json()
            except ValueError:
                return {'status': response.text}
        finally:
            tmp_path.unlink(missing_ok=True)

    def download_folder(self, folder: Union[str, os.PathLike]) -> int:
        """
        Replace the local folder with the server's copy.

        Returns:
            Number of entries extracted

        Raises:
            TransferError: on a non-2xx response
            ArchiveError: if the archive is corrupt or unsafe
            OSError: on local filesystem errors
            httpx.HTTPError: on connection problems
        """
        folder = Path(folder)
        tmp_path = _temp_archive('foldersync-download-')

        try:
            with self.http.stream('GET', self._url('/download'), headers=self._headers) as response:
                if not response.is_success:
                    response.read()
                    raise TransferError(response.status_code, _error_detail(response))

                received = 0
                with open(tmp_path, 'wb') as out:
                    for chunk in response.iter_bytes():
                        out.write(chunk)
                        received += len(chunk)

            logger.info(f"Downloaded {received:,} bytes, replacing {folder}")

            verify(tmp_path, folder)
            clear_directory(folder)
            return extract(tmp_path, folder)
        finally:
            tmp_path.unlink(missing_ok=True)
