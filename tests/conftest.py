"""
Shared test configuration and fixtures.

Provides an in-memory local store, a fake token provider that never leaves
the process, an authenticated session backed by a temp credential file and
a fake Drive API served by aiohttp on localhost.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from aiohttp import web
from aiohttp.test_utils import TestServer

from rpg_manager_storage.config import StorageSettings
from rpg_manager_storage.events import EventBus, StorageEvent
from rpg_manager_storage.exceptions import AuthenticationRequiredError
from rpg_manager_storage.identity import (
    AccessTokenProvider,
    AuthSession,
    Credential,
    CredentialCache,
)
from rpg_manager_storage.local import LocalStore
from rpg_manager_storage.sync import DriveSyncClient

# Smallest valid PNG header plus a few bytes; content is never decoded as an image
PNG_BYTES = b"\x89PNG\r\n\x1a\n\x00\x00\x00\rIHDR" + bytes(range(16))
JPEG_BYTES = b"\xff\xd8\xff\xe0" + bytes(range(200, 256))


class FakeTokenProvider(AccessTokenProvider):
    """Token provider handing out numbered tokens."""

    def __init__(self, expires_in: int = 3600, available: bool = True):
        self.expires_in = expires_in
        self.available = available
        self.issued = 0
        self.revoked: list[str] = []

    @property
    def name(self) -> str:
        return "fake"

    async def request_access_token(self) -> Credential:
        if not self.available:
            raise AuthenticationRequiredError("no token available")
        self.issued += 1
        return Credential(
            access_token=f"token-{self.issued}",
            expiry=datetime.now(UTC) + timedelta(seconds=self.expires_in),
        )

    async def revoke(self, access_token: str) -> None:
        self.revoked.append(access_token)


class RecordingBus(EventBus):
    """Event bus that also keeps every published event."""

    def __init__(self) -> None:
        super().__init__()
        self.published: list[StorageEvent] = []

    def publish(self, event: StorageEvent) -> None:
        self.published.append(event)
        super().publish(event)

    def of_type(self, event_type: type) -> list[StorageEvent]:
        return [e for e in self.published if isinstance(e, event_type)]


@pytest.fixture
def bus() -> RecordingBus:
    return RecordingBus()


@pytest.fixture
async def store(bus):
    """Open in-memory store wired to the recording bus."""
    local = LocalStore(":memory:", events=bus)
    await local.open()
    yield local
    await local.close()


@pytest.fixture
def token_provider() -> FakeTokenProvider:
    return FakeTokenProvider()


@pytest.fixture
def credential_path(tmp_path: Path) -> Path:
    return tmp_path / "auth" / ".drive-token"


@pytest.fixture
async def session(token_provider, credential_path, bus) -> AuthSession:
    """Logged-in session."""
    auth = AuthSession(token_provider, CredentialCache(credential_path), bus)
    await auth.login()
    return auth


@pytest.fixture
def sample_item() -> dict:
    return {
        "id": "1700000000001",
        "name": "Sword",
        "description": "A plain sword",
        "image": PNG_BYTES,
        "imageMimeType": "image/png",
    }


@pytest.fixture
def sample_grimoire() -> dict:
    return {
        "id": "1700000000100",
        "title": "Book of Embers",
        "vol": "1",
        "entries": [
            {"subtitle": "Fire Bolt", "image": PNG_BYTES, "imageMimeType": "image/png"},
            {"subtitle": "No picture", "text": "...", "image": None, "imageMimeType": None},
            {"subtitle": "Ash Cloud", "image": JPEG_BYTES, "imageMimeType": "image/jpeg"},
        ],
    }


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES


@pytest.fixture
def jpeg_bytes() -> bytes:
    return JPEG_BYTES


class FakeDrive:
    """In-process stand-in for the Drive v3 files and upload endpoints."""

    def __init__(self) -> None:
        self.files: dict[str, dict] = {}
        self.requests: list[tuple[str, str, dict]] = []
        self.fail_status: int | None = None
        self.fail_upload_status: int | None = None
        self.chunks: int = 1
        self.chunk_delay: float = 0.0
        self.upload_delay: float = 0.0
        self.stall = asyncio.Event()
        self.stall_after_first_chunk = False
        self._next_id = 0
        self.base_url = ""

    def add_file(self, name: str, content: bytes, trashed: bool = False) -> str:
        self._next_id += 1
        file_id = f"file-{self._next_id}"
        self.files[file_id] = {"name": name, "content": content, "trashed": trashed}
        return file_id

    def app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/drive/v3/files", self.list_files)
        app.router.add_get("/drive/v3/files/{file_id}", self.get_media)
        app.router.add_post("/upload/drive/v3/files", self.create)
        app.router.add_patch("/upload/drive/v3/files/{file_id}", self.update)
        return app

    def _record(self, request: web.Request) -> web.Response | None:
        self.requests.append((request.method, request.path, dict(request.query)))
        if self.fail_status is not None:
            return web.json_response({"error": "fail"}, status=self.fail_status)
        if not request.headers.get("Authorization", "").startswith("Bearer "):
            return web.json_response({"error": "unauthenticated"}, status=401)
        return None

    async def list_files(self, request: web.Request) -> web.Response:
        if (failure := self._record(request)) is not None:
            return failure
        query = request.query.get("q", "")
        matches = [
            {"id": file_id, "name": meta["name"]}
            for file_id, meta in self.files.items()
            if f"name = '{meta['name']}'" in query
            and not (meta["trashed"] and "trashed = false" in query)
        ]
        return web.json_response({"files": matches})

    async def get_media(self, request: web.Request) -> web.StreamResponse:
        if (failure := self._record(request)) is not None:
            return failure
        meta = self.files.get(request.match_info["file_id"])
        if meta is None or request.query.get("alt") != "media":
            return web.json_response({"error": "not found"}, status=404)

        content = meta["content"]
        size = -(-len(content) // self.chunks)
        response = web.StreamResponse()
        response.content_length = len(content)
        await response.prepare(request)
        try:
            for index in range(0, len(content), size):
                await response.write(content[index : index + size])
                if self.stall_after_first_chunk:
                    await self.stall.wait()
                if self.chunk_delay:
                    await asyncio.sleep(self.chunk_delay)
            await response.write_eof()
        except (ConnectionResetError, RuntimeError):
            pass
        return response

    async def _read_upload(self, request: web.Request) -> tuple[dict, bytes]:
        reader = await request.multipart()
        metadata_part = await reader.next()
        metadata = await metadata_part.json()
        content_part = await reader.next()
        content = await content_part.read()
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        return metadata, bytes(content)

    def _rejected_upload(self) -> web.Response | None:
        if self.fail_upload_status is None:
            return None
        return web.json_response({"error": "upload rejected"}, status=self.fail_upload_status)

    async def create(self, request: web.Request) -> web.Response:
        if (failure := self._record(request)) is not None:
            return failure
        metadata, content = await self._read_upload(request)
        if (rejected := self._rejected_upload()) is not None:
            return rejected
        file_id = self.add_file(metadata["name"], content)
        return web.json_response({"id": file_id, "name": metadata["name"]})

    async def update(self, request: web.Request) -> web.Response:
        if (failure := self._record(request)) is not None:
            return failure
        file_id = request.match_info["file_id"]
        if file_id not in self.files:
            return web.json_response({"error": "not found"}, status=404)
        metadata, content = await self._read_upload(request)
        if (rejected := self._rejected_upload()) is not None:
            return rejected
        self.files[file_id].update(name=metadata["name"], content=content)
        return web.json_response({"id": file_id, "name": metadata["name"]})

    def methods(self) -> list[tuple[str, str]]:
        return [(method, path) for method, path, _ in self.requests]


@pytest.fixture
async def drive():
    """Running fake Drive server."""
    fake = FakeDrive()
    server = TestServer(fake.app())
    await server.start_server()
    fake.base_url = str(server.make_url("/"))
    yield fake
    fake.stall.set()
    await server.close()


@pytest.fixture
def drive_settings(drive, credential_path) -> StorageSettings:
    return StorageSettings(
        db_path=":memory:",
        credential_path=credential_path,
        api_base_url=drive.base_url,
        download_chunk_size=16,
        upload_progress_interval=0.01,
    )


@pytest.fixture
async def drive_client(session, drive_settings, bus):
    client = DriveSyncClient(session, drive_settings, bus)
    yield client
    await client.close()
