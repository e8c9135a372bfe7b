"""Knowledge-base watcher.

Keeps a local directory in sync with an owner's document collection: files
that appear or change under the directory are ingested after a short quiet
period, and do_sync() re-scans the whole tree on demand.
"""

import asyncio
import os

from watchfiles import Change, awatch

from services.ingestion.IngestionService import IngestionService
from shared.helper.HelperConfig import HelperConfig
from shared.models.document import SyncReport

DEFAULT_KNOWLEDGE_BASE_PATH = "./knowledgebase"
DEFAULT_OWNER_ID = "local-user"
DEFAULT_DEBOUNCE_MS = 500    # quiet period before a changed file is ingested
DEFAULT_CONCURRENCY = 4      # max concurrent ingestions

_INDEXED = "indexed"
_SKIPPED = "skipped"
_FAILED = "failed"


class WatcherService:
    """Watches a directory tree and feeds changed files to the ingestion service."""

    def __init__(
        self,
        helper_config: HelperConfig,
        ingestion_service: IngestionService,
        path: str | None = None,
        owner_id: str | None = None,
    ) -> None:
        self.logging = helper_config.get_logger()
        self._ingestion = ingestion_service
        self.path = os.path.abspath(path) if path else helper_config.get_path_val(
            "KNOWLEDGE_BASE_PATH", default=DEFAULT_KNOWLEDGE_BASE_PATH
        )
        self.owner_id = owner_id or helper_config.get_string_val("KNOWLEDGE_BASE_OWNER_ID", default=DEFAULT_OWNER_ID)
        self.debounce_seconds = helper_config.get_number_val("WATCHER_DEBOUNCE_MS", default=DEFAULT_DEBOUNCE_MS) / 1000
        self.concurrency = int(helper_config.get_number_val("WATCHER_CONCURRENCY", default=DEFAULT_CONCURRENCY))
        if self.concurrency < 1:
            raise ValueError("WATCHER_CONCURRENCY must be at least 1.")

        self._semaphore = asyncio.Semaphore(self.concurrency)
        # path -> task still waiting out its debounce period
        self._pending: dict[str, asyncio.Task] = {}
        # tasks past their debounce period, ingesting
        self._running: set[asyncio.Task] = set()
        self._directories: set[str] = set()
        self._stop_event: asyncio.Event | None = None
        self._watch_task: asyncio.Task | None = None

    ##########################################
    ################ GETTER ##################
    ##########################################

    def get_tracked_directories(self) -> set[str]:
        return set(self._directories)

    def get_pending_paths(self) -> set[str]:
        return set(self._pending)

    def is_running(self) -> bool:
        return self._watch_task is not None and not self._watch_task.done()

    ##########################################
    ############### LIFECYCLE ################
    ##########################################

    async def do_start(self) -> None:
        """Create the directory if missing and start watching it in the background."""
        if self.is_running():
            return
        os.makedirs(self.path, exist_ok=True)
        for root, _dirs, _files in os.walk(self.path):
            self._directories.add(os.path.abspath(root))
        self._stop_event = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch_loop(), name="kb-watcher")
        self.logging.info(
            "Watching '%s' for owner '%s' (%d directories).",
            self.path, self.owner_id, len(self._directories), color="blue",
        )

    async def do_stop(self) -> None:
        """Stop watching. Pending debounce timers are cancelled; running ingestions are awaited."""
        if self._stop_event is not None:
            self._stop_event.set()
        if self._watch_task is not None:
            self._watch_task.cancel()
            await asyncio.gather(self._watch_task, return_exceptions=True)
            self._watch_task = None

        pending = list(self._pending.values())
        self._pending.clear()
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, *self._running, return_exceptions=True)
        self.logging.info("Watcher on '%s' stopped.", self.path)

    async def _watch_loop(self) -> None:
        try:
            async for changes in awatch(self.path, stop_event=self._stop_event, recursive=True):
                for change, path in changes:
                    self.handle_change(change, path)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self.logging.error("Watcher on '%s' terminated: %s", self.path, exc)
            raise

    ##########################################
    ################ EVENTS ##################
    ##########################################

    def handle_change(self, change: Change, path: str) -> None:
        """React to one filesystem change. Must be called from the event loop."""
        path = os.path.abspath(path)

        if change == Change.deleted:
            task = self._pending.pop(path, None)
            if task is not None:
                task.cancel()
            if path in self._directories:
                self._directories.discard(path)
                self.logging.info("Stopped tracking removed directory '%s'.", path)
            return

        if os.path.isdir(path):
            if path not in self._directories:
                self._directories.add(path)
                self.logging.info("Tracking new directory '%s'.", path)
                # a directory moved in whole reports no events for its files
                for root, _dirs, files in os.walk(path):
                    self._directories.add(os.path.abspath(root))
                    for name in files:
                        self.handle_change(Change.added, os.path.join(root, name))
            return

        if not self._ingestion.is_allowed(path):
            self.logging.debug("Ignoring unsupported file '%s'.", path)
            return
        self._schedule(path)

    def _schedule(self, path: str) -> None:
        """(Re)start the debounce timer of a path."""
        previous = self._pending.get(path)
        if previous is not None and not previous.done():
            previous.cancel()
        self._pending[path] = asyncio.create_task(self._debounced_ingest(path))

    async def _debounced_ingest(self, path: str) -> None:
        await asyncio.sleep(self.debounce_seconds)
        task = asyncio.current_task()
        if self._pending.get(path) is task:
            del self._pending[path]
        # from here on the task is no longer cancelled by new events for the path
        self._running.add(task)
        try:
            await self._ingest_path(path)
        finally:
            self._running.discard(task)

    ##########################################
    ############### INGESTION ################
    ##########################################

    async def _ingest_path(self, path: str) -> str:
        """Ingest one file through the bounded pool. Errors are logged, not raised."""
        async with self._semaphore:
            if not os.path.isfile(path):
                self.logging.debug("File '%s' vanished before ingestion.", path)
                return _SKIPPED
            try:
                result = await self._ingestion.do_ingest_local_file(self.owner_id, path)
            except Exception as exc:
                self.logging.error("Failed to index '%s': %s", path, exc)
                return _FAILED
        if result.duplicate:
            self.logging.debug("'%s' is already indexed as document %s.", path, result.document.id)
            return _SKIPPED
        self.logging.info("Indexed '%s' as document %s.", path, result.document.id, color="green")
        return _INDEXED

    async def do_sync(self) -> SyncReport:
        """Walk the whole tree and ingest every supported file.

        Unchanged files are deduplicated by content hash and counted as skipped.

        Returns:
            SyncReport: Counters of indexed, skipped and failed files.
        """
        os.makedirs(self.path, exist_ok=True)
        self.logging.info("Starting knowledge-base sync of '%s'.", self.path)

        paths: list[str] = []
        for root, _dirs, files in os.walk(self.path):
            for name in sorted(files):
                path = os.path.join(root, name)
                if self._ingestion.is_allowed(path):
                    paths.append(path)
                else:
                    self.logging.debug("Sync skipped unsupported file '%s'.", path)

        outcomes = await asyncio.gather(*[self._ingest_path(path) for path in paths])
        report = SyncReport(
            indexed=outcomes.count(_INDEXED),
            skipped=outcomes.count(_SKIPPED),
            failed=outcomes.count(_FAILED),
        )
        self.logging.info(
            "Knowledge-base sync finished: %d indexed, %d skipped, %d failed.",
            report.indexed, report.skipped, report.failed,
            color="red" if report.failed else "green",
        )
        return report
