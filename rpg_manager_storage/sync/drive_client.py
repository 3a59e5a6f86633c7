"""
Google Drive sync client.

The whole database lives in one JSON file (``rpg_manager_db.json`` by
default) in the user's Drive. The client can:

- locate that file (ignoring trashed copies)
- stream it down with progress reporting
- upload a new version as a multipart request, creating the file the
  first time and updating it in place afterwards

Every request can be aborted through a CancelToken. A 401 from Drive means
the credential was revoked or expired: the cached credential is cleared
and SessionExpiredError is raised.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import aiohttp

from ..config import StorageSettings
from ..events import EventBus, NoBackupFound
from ..exceptions import (
    AuthenticationRequiredError,
    FormatError,
    SessionExpiredError,
    TransportError,
)
from ..identity.session import AuthSession
from ..snapshot.serializer import parse_snapshot
from .cancellation import CancelToken

logger = logging.getLogger(__name__)

T = TypeVar("T")

JSON_MIME_TYPE = "application/json"
INDETERMINATE_PROGRESS = -1.0

# Upload progress is not observable, so it is simulated up to this ceiling
SYNTHETIC_PROGRESS_CEILING = 95.0

ProgressCallback = Callable[[float], None]


def _no_progress(percent: float) -> None:
    pass


class DriveSyncClient:
    """Client for the single-file Drive backup.

    Example:
        >>> client = DriveSyncClient(session, settings)
        >>> token = CancelToken()
        >>> await client.upload_snapshot(document, token, print)
        >>> document = await client.download_snapshot(token, print)
        >>> await client.close()
    """

    def __init__(
        self,
        session: AuthSession,
        settings: StorageSettings | None = None,
        events: EventBus | None = None,
        http: aiohttp.ClientSession | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            session: Authentication session providing the access token
            settings: Endpoint, file name and transfer settings
            events: Optional bus for NoBackupFound events
            http: Optional shared aiohttp session (the client will not close it)
        """
        self.session = session
        self.settings = settings or StorageSettings.from_env()
        self.events = events
        self._http = http
        self._owns_http = http is None

    @property
    def files_url(self) -> str:
        return f"{self.settings.api_base_url}/drive/v3/files"

    @property
    def upload_url(self) -> str:
        return f"{self.settings.api_base_url}/upload/drive/v3/files"

    def _get_http(self) -> aiohttp.ClientSession:
        if self._http is None or self._http.closed:
            timeout = (
                aiohttp.ClientTimeout(total=self.settings.request_timeout)
                if self.settings.request_timeout is not None
                else aiohttp.ClientTimeout(total=None, sock_connect=30)
            )
            self._http = aiohttp.ClientSession(timeout=timeout)
            self._owns_http = True
        return self._http

    def _auth_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.session.access_token}"}

    async def close(self) -> None:
        """Close the HTTP session if this client created it."""
        if self._http is not None and self._owns_http and not self._http.closed:
            await self._http.close()
        self._http = None

    async def __aenter__(self) -> DriveSyncClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def _check_response(self, response: aiohttp.ClientResponse, operation: str) -> None:
        """Raise the right error for a non-2xx response."""
        if response.status == 401:
            await self.session.invalidate()
            raise SessionExpiredError(str(response.url), response.status)
        if response.status >= 400:
            body = await response.text()
            logger.error(f"Drive {operation} failed: HTTP {response.status} {body[:200]}")
            raise TransportError(operation, status=response.status)

    async def _guarded(
        self,
        awaitable: Awaitable[T],
        operation: str,
        cancel_token: CancelToken | None,
    ) -> T:
        """Await a request, mapping transport errors and honouring cancellation."""
        try:
            if cancel_token is not None:
                return await cancel_token.run(awaitable)
            return await awaitable
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise TransportError(operation, cause=e) from e

    # =========================================================================
    # Locate
    # =========================================================================

    def _name_query(self) -> str:
        name = self.settings.remote_file_name.replace("\\", "\\\\").replace("'", "\\'")
        return f"name = '{name}' and trashed = false"

    async def _list_files(self) -> dict[str, Any]:
        params = {"q": self._name_query(), "fields": "files(id, name)", "spaces": "drive"}
        async with self._get_http().get(
            self.files_url, params=params, headers=self._auth_headers()
        ) as response:
            await self._check_response(response, "locate")
            return await response.json(content_type=None)

    async def locate_remote_file(self, cancel_token: CancelToken | None = None) -> str | None:
        """Find the backup file ID.

        Returns:
            The file ID, or None if there is no backup or no credential

        Raises:
            SessionExpiredError: If Drive rejects the credential
            TransportError: On any other failure
            SyncCanceledError: If the token fires
        """
        if not self.session.is_authenticated:
            logger.warning("Cannot look up the remote backup without a credential")
            return None

        data = await self._guarded(self._list_files(), "locate", cancel_token)
        files = data.get("files") or [] if isinstance(data, dict) else []
        if not files:
            return None
        return files[0]["id"]

    # =========================================================================
    # Download
    # =========================================================================

    async def _stream_file(
        self,
        file_id: str,
        cancel_token: CancelToken,
        report: ProgressCallback,
    ) -> bytes:
        async with self._get_http().get(
            f"{self.files_url}/{file_id}",
            params={"alt": "media"},
            headers=self._auth_headers(),
        ) as response:
            await self._check_response(response, "download")

            total = response.content_length or 0
            loaded = 0
            chunks: list[bytes] = []
            async for chunk in response.content.iter_chunked(self.settings.download_chunk_size):
                chunks.append(chunk)
                loaded += len(chunk)
                if total:
                    report(min(10 + (loaded / total) * 85, 95))
                else:
                    report(INDETERMINATE_PROGRESS)
                # A progress callback may have fired the token
                cancel_token.raise_if_cancelled()

            return b"".join(chunks)

    async def download_snapshot(
        self,
        cancel_token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> dict[str, Any] | None:
        """Download and parse the backup file.

        Progress: 0 at start, 10 once the file is found, 10-95 while bytes
        arrive (INDETERMINATE_PROGRESS without a Content-Length), 95 while
        parsing, 100 done.

        Returns:
            The snapshot document, or None if no backup exists

        Raises:
            AuthenticationRequiredError: If not authenticated
            SessionExpiredError: If Drive rejects the credential
            SyncCanceledError: If the token fires mid-transfer
            TransportError: On network or parse failures
        """
        token = cancel_token or CancelToken()
        report = on_progress or _no_progress
        if not self.session.is_authenticated:
            raise AuthenticationRequiredError("Connect to Google Drive first")

        report(0)
        file_id = await self.locate_remote_file(token)
        if file_id is None:
            logger.info("No backup found in Drive")
            if self.events is not None:
                self.events.publish(NoBackupFound(file_name=self.settings.remote_file_name))
            return None

        report(10)
        raw = await self._guarded(self._stream_file(file_id, token, report), "download", token)

        report(95)
        try:
            document = parse_snapshot(raw)
        except FormatError as e:
            raise TransportError("parse", cause=e) from e

        report(100)
        logger.info(f"Downloaded backup {file_id} ({len(raw)} bytes)")
        return document

    # =========================================================================
    # Upload
    # =========================================================================

    async def _synthetic_progress(self, report: ProgressCallback, start: float) -> None:
        """Creep towards the ceiling until cancelled; never reaches it."""
        percent = start
        while True:
            await asyncio.sleep(self.settings.upload_progress_interval)
            percent += (SYNTHETIC_PROGRESS_CEILING - percent) * 0.1
            report(percent)

    async def _send_upload(
        self,
        method: str,
        url: str,
        metadata: dict[str, str],
        content: str,
    ) -> dict[str, Any]:
        with aiohttp.MultipartWriter("related") as writer:
            writer.append_json(metadata)
            writer.append(content, {"Content-Type": JSON_MIME_TYPE})

        async with self._get_http().request(
            method,
            url,
            params={"uploadType": "multipart"},
            data=writer,
            headers=self._auth_headers(),
        ) as response:
            await self._check_response(response, "upload")
            result = await response.json(content_type=None)
            return result if isinstance(result, dict) else {}

    async def upload_snapshot(
        self,
        document: dict[str, Any],
        cancel_token: CancelToken | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> str:
        """Upload a snapshot, replacing the remote backup.

        Creates the file (POST) when none exists, otherwise updates it in
        place (PATCH). Progress: 5 start, 10 serialized, 20 file located,
        30 upload started, then synthetic progress below 95 until Drive
        answers, then 100.

        Returns:
            The remote file ID

        Raises:
            AuthenticationRequiredError: If not authenticated
            SessionExpiredError: If Drive rejects the credential
            SyncCanceledError: If the token fires mid-transfer
            TransportError: On network failures
            FormatError: If the document is not JSON-serializable
        """
        token = cancel_token or CancelToken()
        report = on_progress or _no_progress
        if not self.session.is_authenticated:
            raise AuthenticationRequiredError("Connect to Google Drive first")

        report(5)
        try:
            content = json.dumps(document, ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise FormatError(f"Snapshot is not JSON-serializable: {e}") from e
        report(10)

        file_id = await self.locate_remote_file(token)
        if not self.session.is_authenticated:
            raise AuthenticationRequiredError("Connect to Google Drive first")
        report(20)

        metadata = {"name": self.settings.remote_file_name, "mimeType": JSON_MIME_TYPE}
        if file_id:
            method, url = "PATCH", f"{self.upload_url}/{file_id}"
        else:
            method, url = "POST", self.upload_url
        logger.info(f"Uploading backup ({len(content)} bytes, {'update' if file_id else 'create'})")

        report(30)
        ticker = asyncio.create_task(self._synthetic_progress(report, 30.0))
        try:
            result = await self._guarded(
                self._send_upload(method, url, metadata, content), "upload", token
            )
        finally:
            ticker.cancel()
            await asyncio.gather(ticker, return_exceptions=True)

        report(100)
        remote_id = result.get("id") or file_id or ""
        logger.info(f"Upload complete: {remote_id}")
        return remote_id
