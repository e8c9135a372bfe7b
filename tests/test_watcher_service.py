"""
Tests for services/watcher/WatcherService.py
Debounced change handling, bounded ingestion and full resync.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from watchfiles import Change

from shared.models.document import Document, IngestResult

DEBOUNCE_MS = 50


def _result(path: str, duplicate: bool = False) -> IngestResult:
    return IngestResult(
        document=Document(
            id=str(uuid.uuid4()),
            owner_id="local-user",
            filename=path.rsplit("/", 1)[-1],
            file_type=".txt",
            file_size=1,
            content_hash="h",
            storage_key="k",
            chunk_count=1,
            created_at=datetime.now(timezone.utc),
        ),
        duplicate=duplicate,
    )


@pytest.fixture
def mock_ingestion():
    ingestion = MagicMock()
    ingestion.is_allowed.side_effect = lambda path: path.endswith((".txt", ".md"))
    ingestion.do_ingest_local_file = AsyncMock(side_effect=lambda owner_id, path: _result(path))
    return ingestion


@pytest.fixture
def kb_path(tmp_path):
    path = tmp_path / "knowledgebase"
    path.mkdir()
    return path


def _watcher(helper_config, ingestion, kb_path, monkeypatch, **env):
    from services.watcher.WatcherService import WatcherService

    monkeypatch.setenv("WATCHER_DEBOUNCE_MS", str(DEBOUNCE_MS))
    for key, value in env.items():
        monkeypatch.setenv(key, str(value))
    return WatcherService(helper_config=helper_config, ingestion_service=ingestion, path=str(kb_path))


async def _settle():
    await asyncio.sleep(DEBOUNCE_MS / 1000 * 4)


class TestConfiguration:
    def test_defaults(self, helper_config, mock_ingestion, tmp_path):
        from services.watcher.WatcherService import WatcherService

        watcher = WatcherService(helper_config=helper_config, ingestion_service=mock_ingestion)
        assert watcher.owner_id == "local-user"
        assert watcher.debounce_seconds == 0.5
        assert watcher.concurrency == 4
        assert watcher.path == str(tmp_path / "knowledgebase")

    def test_invalid_concurrency(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        with pytest.raises(ValueError):
            _watcher(helper_config, mock_ingestion, kb_path, monkeypatch, WATCHER_CONCURRENCY=0)


@pytest.mark.asyncio
class TestChangeHandling:
    """Test debounce and filtering of filesystem events."""

    async def test_burst_of_events_ingests_once(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch)
        path = kb_path / "notes.txt"
        path.write_text("hello")

        for change in (Change.added, Change.modified, Change.modified):
            watcher.handle_change(change, str(path))
        assert watcher.get_pending_paths() == {str(path)}
        await _settle()

        mock_ingestion.do_ingest_local_file.assert_awaited_once_with("local-user", str(path))
        assert watcher.get_pending_paths() == set()

    async def test_each_path_is_debounced_separately(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch)
        for name in ("a.txt", "b.md"):
            (kb_path / name).write_text(name)
            watcher.handle_change(Change.added, str(kb_path / name))
        await _settle()

        assert mock_ingestion.do_ingest_local_file.await_count == 2

    async def test_unsupported_files_are_ignored(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch)
        path = kb_path / "setup.exe"
        path.write_bytes(b"MZ")

        watcher.handle_change(Change.added, str(path))
        await _settle()

        mock_ingestion.do_ingest_local_file.assert_not_awaited()

    async def test_delete_during_debounce_cancels(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch)
        path = kb_path / "notes.txt"
        path.write_text("hello")

        watcher.handle_change(Change.added, str(path))
        path.unlink()
        watcher.handle_change(Change.deleted, str(path))
        await _settle()

        mock_ingestion.do_ingest_local_file.assert_not_awaited()

    async def test_new_directory_is_tracked_and_scanned(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch)
        subdir = kb_path / "projects"
        subdir.mkdir()
        (subdir / "plan.md").write_text("plan")

        watcher.handle_change(Change.added, str(subdir))
        assert str(subdir) in watcher.get_tracked_directories()
        await _settle()
        mock_ingestion.do_ingest_local_file.assert_awaited_once_with("local-user", str(subdir / "plan.md"))

        watcher.handle_change(Change.deleted, str(subdir))
        assert str(subdir) not in watcher.get_tracked_directories()

    async def test_ingestion_errors_are_logged(self, helper_config, mock_ingestion, kb_path, monkeypatch, logger):
        mock_ingestion.do_ingest_local_file.side_effect = RuntimeError("boom")
        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch)
        path = kb_path / "notes.txt"
        path.write_text("hello")

        watcher.handle_change(Change.added, str(path))
        await _settle()

        logger.error.assert_called()


@pytest.mark.asyncio
class TestSync:
    """Test full resync."""

    async def test_sync_report(self, helper_config, ingestion_service, kb_path, monkeypatch):
        (kb_path / "a.txt").write_text("Alpha document content.")
        (kb_path / "b.md").write_text("# Beta\n\nSecond document.")
        (kb_path / "nested").mkdir()
        (kb_path / "nested" / "c.csv").write_text("name,value\nx,1\n")
        (kb_path / "empty.txt").write_text("")
        (kb_path / "tool.exe").write_bytes(b"MZ")

        watcher = _watcher(helper_config, ingestion_service, kb_path, monkeypatch)
        first = await watcher.do_sync()
        second = await watcher.do_sync()

        assert (first.indexed, first.skipped, first.failed) == (3, 0, 1)
        assert (second.indexed, second.skipped, second.failed) == (0, 3, 1)
        assert len(await ingestion_service.do_list("local-user")) == 3

    async def test_sync_is_bounded(self, helper_config, mock_ingestion, kb_path, monkeypatch):
        active = {"now": 0, "max": 0}

        async def slow_ingest(owner_id, path):
            active["now"] += 1
            active["max"] = max(active["max"], active["now"])
            await asyncio.sleep(0.01)
            active["now"] -= 1
            return _result(path)

        mock_ingestion.do_ingest_local_file.side_effect = slow_ingest
        for i in range(8):
            (kb_path / f"doc{i}.txt").write_text(str(i))

        watcher = _watcher(helper_config, mock_ingestion, kb_path, monkeypatch, WATCHER_CONCURRENCY=2)
        report = await watcher.do_sync()

        assert report.indexed == 8
        assert active["max"] == 2


@pytest.mark.asyncio
class TestLifecycle:
    async def test_start_creates_directory_and_stop_cancels(self, helper_config, mock_ingestion, tmp_path, monkeypatch):
        missing = tmp_path / "new-kb"
        watcher = _watcher(helper_config, mock_ingestion, missing, monkeypatch)

        await watcher.do_start()
        assert missing.is_dir()
        assert watcher.is_running()

        (missing / "notes.txt").write_text("hello")
        watcher.handle_change(Change.added, str(missing / "notes.txt"))
        await watcher.do_stop()

        assert not watcher.is_running()
        assert watcher.get_pending_paths() == set()
