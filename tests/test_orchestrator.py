"""Tests for the save/load orchestrator."""

import asyncio
import logging

import pytest

from rpg_manager_storage.events import ReloadRequired
from rpg_manager_storage.exceptions import (
    AuthenticationRequiredError,
    SessionExpiredError,
    TransportError,
)
from rpg_manager_storage.local import LocalStore
from rpg_manager_storage.sync import (
    CancelReason,
    ConnectivityMonitor,
    Severity,
    SyncOrchestrator,
    SyncPhase,
    SyncStatus,
)
from rpg_manager_storage.sync.orchestrator import (
    CONNECTION_LOST_MESSAGE,
    SESSION_EXPIRED_MESSAGE,
)

REMOTE_DOCUMENT = {"rpgItems": [{"id": "remote", "name": "Remote Sword"}], "rpgSpells": []}


class FakeUI:
    def __init__(self, answer: bool = True):
        self.answer = answer
        self.confirmations: list[str] = []
        self.alerts: list[str] = []
        self.notices: list[tuple[str, Severity]] = []

    async def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        return self.answer

    def alert(self, message: str) -> None:
        self.alerts.append(message)

    def notify(self, message: str, severity: Severity = Severity.INFO) -> None:
        self.notices.append((message, severity))


class RecordingProgress:
    def __init__(self):
        self.calls: list[tuple] = []

    def show(self, title):
        self.calls.append(("show", title))

    def update(self, message=None, percent=None):
        self.calls.append(("update", message, percent))

    def hide(self):
        self.calls.append(("hide",))

    @property
    def percents(self) -> list[float]:
        return [c[2] for c in self.calls if c[0] == "update" and c[2] is not None and c[2] >= 0]


class FakeClient:
    """Scripted stand-in for DriveSyncClient."""

    def __init__(self, remote: dict | None = None):
        self.remote = remote
        self.uploaded: list[dict] = []
        self.error: Exception | None = None
        self.gate: asyncio.Event | None = None
        self.started = asyncio.Event()
        self.cancel_before_return = False

    async def _wait_gate(self, token) -> None:
        self.started.set()
        if self.gate is not None:
            await token.run(self.gate.wait())

    async def upload_snapshot(self, document, cancel_token=None, on_progress=None):
        for percent in (5, 10, 20, 30):
            on_progress(percent)
        await self._wait_gate(cancel_token)
        if self.error is not None:
            raise self.error
        self.uploaded.append(document)
        on_progress(100)
        return "file-1"

    async def download_snapshot(self, cancel_token=None, on_progress=None):
        on_progress(0)
        await self._wait_gate(cancel_token)
        if self.error is not None:
            raise self.error
        if self.remote is None:
            return None
        for percent in (10, 50, 95, 100):
            on_progress(percent)
        if self.cancel_before_return:
            cancel_token.cancel()
        return self.remote


@pytest.fixture
def ui() -> FakeUI:
    return FakeUI()


@pytest.fixture
def progress() -> RecordingProgress:
    return RecordingProgress()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(host="127.0.0.1")


@pytest.fixture
def client() -> FakeClient:
    return FakeClient(remote=REMOTE_DOCUMENT)


@pytest.fixture
def orchestrator(store, client, connectivity, ui, progress, bus) -> SyncOrchestrator:
    return SyncOrchestrator(store, client, connectivity, ui, progress, bus)


async def local_ids(store, collection="rpgItems") -> list[str]:
    return sorted(e["id"] for e in await store.get(collection))


class TestSave:
    async def test_uploads_store_snapshot(self, orchestrator, store, client, ui, progress):
        await store.put("rpgItems", {"id": "1", "name": "Sword"})

        outcome = await orchestrator.perform_save()

        assert outcome.status == SyncStatus.COMPLETED
        assert outcome.succeeded and not outcome.reload_required
        assert client.uploaded[0]["rpgItems"] == [{"id": "1", "name": "Sword"}]
        assert len(ui.confirmations) == 1
        assert ui.notices[-1][1] == Severity.SUCCESS
        assert orchestrator.phase == SyncPhase.IDLE
        assert orchestrator.last_phase == SyncPhase.COMPLETED

    async def test_progress_is_monotonic_and_hidden(self, orchestrator, progress):
        await orchestrator.perform_save()

        assert progress.calls[0][0] == "show"
        assert progress.calls[-1] == ("hide",)
        percents = progress.percents
        assert percents == sorted(percents)
        assert percents[0] == 0
        assert 5 in percents and 20 in percents
        assert percents[-1] == 100
        assert all(20 <= p <= 95 for p in percents[3:-1])

    async def test_declined(self, orchestrator, ui, client, progress):
        ui.answer = False
        outcome = await orchestrator.perform_save()
        assert outcome.status == SyncStatus.DECLINED
        assert client.uploaded == []
        assert progress.calls == []

    async def test_offline_refused_without_prompt(self, orchestrator, connectivity, ui, client):
        connectivity.set_online(False)
        outcome = await orchestrator.perform_save()
        assert outcome.status == SyncStatus.OFFLINE
        assert ui.confirmations == []
        assert ui.alerts
        assert client.uploaded == []


class TestLoad:
    async def test_replaces_local_data(self, orchestrator, store, bus, progress):
        await store.put("rpgItems", {"id": "local", "name": "Local"})
        await store.put("rpgAttacks", {"id": "a1", "name": "Slash"})

        outcome = await orchestrator.perform_load()

        assert outcome.status == SyncStatus.COMPLETED
        assert outcome.reload_required
        assert await local_ids(store) == ["remote"]
        # Collections absent from the snapshot keep their data
        assert await local_ids(store, "rpgAttacks") == ["a1"]
        assert bus.of_type(ReloadRequired)
        assert 98 in progress.percents
        assert progress.percents[-1] == 100

    async def test_no_backup(self, orchestrator, store, client, ui):
        client.remote = None
        await store.put("rpgItems", {"id": "local"})

        outcome = await orchestrator.perform_load()

        assert outcome.status == SyncStatus.NO_BACKUP
        assert not outcome.reload_required
        assert await local_ids(store) == ["local"]

    async def test_cancel_before_import_keeps_local_data(self, orchestrator, store, client, bus):
        client.cancel_before_return = True
        await store.put("rpgItems", {"id": "local"})

        outcome = await orchestrator.perform_load()

        assert outcome.status == SyncStatus.CANCELED
        assert await local_ids(store) == ["local"]
        assert not bus.of_type(ReloadRequired)


class TestCancellation:
    async def test_cancel_when_idle(self, orchestrator):
        assert orchestrator.cancel() is False

    async def test_user_cancel_during_download(self, orchestrator, store, client, progress):
        await store.put("rpgItems", {"id": "local"})
        client.gate = asyncio.Event()

        task = asyncio.create_task(orchestrator.perform_load())
        await client.started.wait()
        assert orchestrator.phase == SyncPhase.IN_PROGRESS
        assert orchestrator.cancel() is True

        outcome = await task
        assert outcome.status == SyncStatus.CANCELED
        assert await local_ids(store) == ["local"]
        assert progress.calls[-1] == ("hide",)
        assert orchestrator.last_phase == SyncPhase.CANCELED

    async def test_connection_lost_during_upload(self, orchestrator, connectivity, client, ui):
        client.gate = asyncio.Event()

        task = asyncio.create_task(orchestrator.perform_save())
        await client.started.wait()
        connectivity.set_online(False)

        outcome = await task
        assert outcome.status == SyncStatus.CONNECTION_LOST
        assert outcome.message == CONNECTION_LOST_MESSAGE
        assert client.uploaded == []
        assert ui.notices[-1] == (CONNECTION_LOST_MESSAGE, Severity.WARNING)

    async def test_run_records_share_sync_id_and_final_status(self, orchestrator, caplog):
        with caplog.at_level(logging.INFO, logger="rpg_manager_storage.sync.orchestrator"):
            await orchestrator.perform_save()

        records = [r for r in caplog.records if getattr(r, "operation", None) == "save"]
        assert len(records) >= 2
        assert len({r.sync_id for r in records}) == 1
        assert records[-1].status == "completed"

    async def test_listener_released_after_run(self, orchestrator, connectivity):
        await orchestrator.perform_save()
        assert connectivity._listeners == []

    async def test_cancel_reason_passthrough(self, orchestrator, client):
        client.gate = asyncio.Event()
        task = asyncio.create_task(orchestrator.perform_save())
        await client.started.wait()
        orchestrator.cancel(CancelReason.CONNECTION_LOST)
        assert (await task).status == SyncStatus.CONNECTION_LOST


class TestConcurrency:
    async def test_second_operation_rejected_while_busy(self, orchestrator, client, ui):
        client.gate = asyncio.Event()

        running = asyncio.create_task(orchestrator.perform_save())
        await client.started.wait()
        assert orchestrator.is_busy

        rejected = await orchestrator.perform_load()
        assert rejected.status == SyncStatus.BUSY
        assert ui.notices[-1][1] == Severity.WARNING

        client.gate.set()
        assert (await running).status == SyncStatus.COMPLETED
        assert not orchestrator.is_busy


class TestErrorClassification:
    @pytest.mark.parametrize(
        "error, status, phase",
        [
            (SessionExpiredError("files", 401), SyncStatus.SESSION_EXPIRED, SyncPhase.FAILED),
            (AuthenticationRequiredError(), SyncStatus.AUTH_REQUIRED, SyncPhase.FAILED),
            (TransportError("upload", status=503), SyncStatus.FAILED, SyncPhase.FAILED),
        ],
    )
    async def test_save_errors(self, orchestrator, client, ui, progress, error, status, phase):
        client.error = error
        outcome = await orchestrator.perform_save()

        assert outcome.status == status
        assert outcome.error is error
        assert orchestrator.last_phase == phase
        assert progress.calls[-1] == ("hide",)
        assert ui.notices

    async def test_session_expired_asks_to_reconnect(self, orchestrator, client, ui):
        client.error = SessionExpiredError()
        await orchestrator.perform_load()
        assert ui.notices[-1] == (SESSION_EXPIRED_MESSAGE, Severity.WARNING)

    async def test_invalid_remote_snapshot_fails_without_writes(self, orchestrator, store, client):
        client.remote = {"rpgItems": [{"name": "missing id"}]}
        await store.put("rpgItems", {"id": "local"})

        outcome = await orchestrator.perform_load()

        assert outcome.status == SyncStatus.FAILED
        assert await local_ids(store) == ["local"]


class TestAgainstFakeDrive:
    async def test_save_then_load_into_another_store(
        self, store, drive_client, connectivity, png_bytes
    ):
        item = {"id": "1", "name": "Sword", "image": png_bytes, "imageMimeType": "image/png"}
        await store.put("rpgItems", item)
        saver = SyncOrchestrator(store, drive_client, connectivity, FakeUI())
        assert (await saver.perform_save()).succeeded

        async with LocalStore(":memory:") as other:
            loader = SyncOrchestrator(other, drive_client, connectivity, FakeUI())
            outcome = await loader.perform_load()
            assert outcome.reload_required
            assert await other.get("rpgItems", "1") == item

    async def test_cancel_mid_download_leaves_store_untouched(
        self, store, drive, drive_client, connectivity
    ):
        drive.add_file("rpg_manager_db.json", b'{"rpgItems": [{"id": "remote"}]}')
        drive.chunks = 3
        drive.stall_after_first_chunk = True
        await store.put("rpgItems", {"id": "local"})

        progress = RecordingProgress()
        orchestrator = SyncOrchestrator(store, drive_client, connectivity, FakeUI(), progress)
        task = asyncio.create_task(orchestrator.perform_load())

        async def first_chunk_arrived() -> None:
            while not any(p > 10 for p in progress.percents):
                await asyncio.sleep(0.01)

        await asyncio.wait_for(first_chunk_arrived(), timeout=2)
        orchestrator.cancel()

        outcome = await asyncio.wait_for(task, timeout=2)
        assert outcome.status == SyncStatus.CANCELED
        assert await local_ids(store) == ["local"]
