"""
Tests for the folder watcher.

Most polls are driven by hand through FolderWatcher.poll(), with a
background interval long enough never to fire during the test.
"""

import asyncio

import pytest

from visaflow.engine.models import FolderItem
from visaflow.engine.watcher import FolderWatcher, WatcherConfig
from visaflow.integrations import InMemoryFileService
from visaflow.storage import InMemoryWorkflowStore

from tests.factories import EngineHarness, review_workflow


IDLE = 3600.0


class FlakyFileService(InMemoryFileService):
    """Folder listing that can be switched to failing."""

    def __init__(self):
        super().__init__()
        self.failing = False

    async def list_folder_items(self, folder_id):
        if self.failing:
            raise ConnectionError("host unreachable")
        return await super().list_folder_items(folder_id)


class OutageWorkflowStore(InMemoryWorkflowStore):
    """Definition lookups that can be switched to failing."""

    def __init__(self):
        super().__init__()
        self.failing = False

    async def get_definition(self, definition_id):
        if self.failing:
            raise ConnectionError("db down")
        return await super().get_definition(definition_id)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        assert loop.time() < deadline, "condition not reached in time"
        await asyncio.sleep(0.01)


def pdf(file_id: str, name: str = None, **fields) -> FolderItem:
    return FolderItem(id=file_id, name=name or f"{file_id}.pdf", **fields)


async def start_watching(h: EngineHarness, files=None, extensions=None, **kwargs):
    definition = await h.add_definition(review_workflow())
    files = files if files is not None else h.files
    watcher = FolderWatcher(h.engine, files, call_timeout=5, **kwargs)
    watcher_id = await watcher.start(WatcherConfig(
        folder_id="inbox",
        workflow_definition_id=definition.id,
        poll_interval=IDLE,
        file_extensions=extensions,
    ))
    return watcher, watcher_id


# ============================================================
# Detection Tests
# ============================================================

class TestDetection:
    """Tests for new-file detection."""

    @pytest.mark.asyncio
    async def test_existing_files_ignored(self):
        """Test files present at start never start a workflow."""
        h = EngineHarness()
        h.files.add_file("inbox", pdf("old"))
        watcher, watcher_id = await start_watching(h)

        assert await watcher.poll(watcher_id) == 0
        assert len(h.store) == 0
        assert len(h.documents) == 0
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_new_file_starts_workflow_once(self):
        """Test a new file is registered and started exactly once."""
        h = EngineHarness()
        subscription = h.events.subscribe(["new_file", "workflow_started"])
        watcher, watcher_id = await start_watching(h)

        h.files.add_file("inbox", pdf("new", uploaded_by="user-7"))
        assert await watcher.poll(watcher_id) == 1
        assert await watcher.poll(watcher_id) == 0

        [instance] = await h.store.list_instances()
        assert instance.current_node_id == "review"
        [document] = await h.documents.list_documents()
        assert document.file_id == "new"
        assert document.file_extension == "pdf"
        assert document.workflow_instance_id == instance.id
        assert document.comments[0].is_system_message is True
        assert document.version_history[0].version_number == 1

        events = subscription.drain()
        assert [e.type for e in events] == ["new_file", "workflow_started"]
        assert events[1].data["instance_id"] == instance.id
        assert "New document" in h.notifier.titles()
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_extension_filter(self):
        """Test extensions match case-insensitively with or without dot."""
        h = EngineHarness()
        watcher, watcher_id = await start_watching(h, extensions=[".pdf", "DWG"])

        h.files.add_file("inbox", pdf("a", "A.PDF"))
        h.files.add_file("inbox", FolderItem(id="b", name="b.dwg", extension="dwg"))
        h.files.add_file("inbox", FolderItem(id="c", name="notes.txt"))

        assert await watcher.poll(watcher_id) == 2
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_folders_ignored(self):
        """Test only FILE entries are considered."""
        h = EngineHarness()
        watcher, watcher_id = await start_watching(h)

        h.files.add_file("inbox", FolderItem(id="sub", name="Archive", type="FOLDER"))

        assert await watcher.poll(watcher_id) == 0
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_unknown_definition(self):
        """Test a missing workflow leaves the document registered but pending."""
        h = EngineHarness()
        watcher = FolderWatcher(h.engine, h.files, call_timeout=5)
        watcher_id = await watcher.start(WatcherConfig(
            folder_id="inbox", workflow_definition_id="gone", poll_interval=IDLE,
        ))

        h.files.add_file("inbox", pdf("new"))
        await watcher.poll(watcher_id)

        assert len(h.documents) == 1
        assert len(h.store) == 0
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_overlapping_poll_skipped(self):
        """Test a poll is skipped while the previous one runs."""
        h = EngineHarness()
        watcher, watcher_id = await start_watching(h)
        state = watcher._watchers[watcher_id]

        async with state.poll_lock:
            assert await watcher.poll(watcher_id) is None
        await watcher.stop_all()


# ============================================================
# Lifecycle Tests
# ============================================================

class TestLifecycle:
    """Tests for start, stop and error handling."""

    @pytest.mark.asyncio
    async def test_stops_after_consecutive_errors(self):
        """Test ten failed polls stop the watcher for good."""
        h = EngineHarness()
        files = FlakyFileService()
        subscription = h.events.subscribe(["poll", "error", "stopped"])
        watcher, watcher_id = await start_watching(h, files=files)
        files.failing = True

        for _ in range(10):
            await watcher.poll(watcher_id)

        assert watcher.is_running(watcher_id) is False
        types = [e.type for e in subscription.drain()]
        assert types == ["error"] * 10 + ["stopped"]

        assert await watcher.poll(watcher_id) is None
        assert subscription.drain() == []

    @pytest.mark.asyncio
    async def test_success_resets_error_count(self):
        """Test a good poll clears the error streak."""
        h = EngineHarness()
        files = FlakyFileService()
        watcher, watcher_id = await start_watching(h, files=files, max_consecutive_errors=3)

        files.failing = True
        await watcher.poll(watcher_id)
        await watcher.poll(watcher_id)
        files.failing = False
        await watcher.poll(watcher_id)
        files.failing = True
        await watcher.poll(watcher_id)

        [info] = watcher.get_active_watchers()
        assert info["error_count"] == 1
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_initial_scan_failure(self):
        """Test a failed initial scan still starts the watcher."""
        h = EngineHarness()
        files = FlakyFileService()
        files.failing = True

        watcher, watcher_id = await start_watching(h, files=files)

        assert watcher.is_running(watcher_id)
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_stop(self):
        """Test stopping a watcher removes it."""
        h = EngineHarness()
        watcher, watcher_id = await start_watching(h)

        assert await watcher.stop(watcher_id) is True
        assert await watcher.stop(watcher_id) is False
        assert len(watcher) == 0

    @pytest.mark.asyncio
    async def test_start_for_active_workflows(self):
        """Test a watcher per active auto-start definition."""
        h = EngineHarness()
        await h.add_definition(review_workflow(source_folder_id="inbox", auto_start_on_upload=True))
        await h.add_definition(review_workflow(source_folder_id="drafts"))
        inactive = review_workflow(source_folder_id="old", auto_start_on_upload=True)
        inactive.is_active = False
        await h.add_definition(inactive)
        watcher = FolderWatcher(h.engine, h.files, call_timeout=5)

        watcher_ids = await watcher.start_for_active_workflows(poll_interval=IDLE)

        assert len(watcher_ids) == 1
        [info] = watcher.get_active_watchers()
        assert info["folder_id"] == "inbox"
        assert info["poll_interval"] == IDLE
        await watcher.stop_all()


# ============================================================
# Recovery Tests
# ============================================================

class TestRecovery:
    """Tests for failures while handling a new file."""

    @pytest.mark.asyncio
    async def test_definition_lookup_failure_is_retried(self):
        """Test a failed lookup counts as an error and the file is retried."""
        store = OutageWorkflowStore()
        h = EngineHarness(store=store)
        subscription = h.events.subscribe(["new_file", "error", "workflow_started"])
        watcher, watcher_id = await start_watching(h)

        store.failing = True
        h.files.add_file("inbox", pdf("new"))
        assert await watcher.poll(watcher_id) == 0

        [info] = watcher.get_active_watchers()
        assert info["error_count"] == 1
        assert len(h.store) == 0

        store.failing = False
        assert await watcher.poll(watcher_id) == 1

        [instance] = await h.store.list_instances()
        [document] = await h.documents.list_documents()
        assert document.workflow_instance_id == instance.id
        assert watcher.get_active_watchers()[0]["error_count"] == 0
        assert [e.type for e in subscription.drain()] == [
            "new_file", "error", "workflow_started",
        ]
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_persistent_lookup_failure_stops_watcher(self):
        """Test repeated failures on a new file reach the error limit."""
        store = OutageWorkflowStore()
        h = EngineHarness(store=store)
        watcher, watcher_id = await start_watching(h, max_consecutive_errors=3)

        store.failing = True
        h.files.add_file("inbox", pdf("new"))
        for _ in range(3):
            await watcher.poll(watcher_id)

        assert watcher.is_running(watcher_id) is False
        assert len(h.documents) == 1

    @pytest.mark.asyncio
    async def test_loop_survives_failed_file(self):
        """Test the polling task keeps running and recovers on its own."""
        store = OutageWorkflowStore()
        h = EngineHarness(store=store)
        definition = await h.add_definition(review_workflow())
        watcher = FolderWatcher(h.engine, h.files, call_timeout=5, max_consecutive_errors=1000)
        watcher_id = await watcher.start(WatcherConfig(
            folder_id="inbox", workflow_definition_id=definition.id, poll_interval=0.02,
        ))
        state = watcher._watchers[watcher_id]

        store.failing = True
        h.files.add_file("inbox", pdf("first"))
        await wait_until(lambda: state.error_count >= 1)
        assert not state.task.done()

        store.failing = False
        h.files.add_file("inbox", pdf("second"))
        await wait_until(lambda: len(h.store) == 2)

        assert watcher.is_running(watcher_id)
        assert len(h.documents) == 2
        await watcher.stop_all()

    @pytest.mark.asyncio
    async def test_loop_counts_unexpected_errors(self):
        """Test an error escaping a poll cycle is counted, not fatal."""
        h = EngineHarness()
        definition = await h.add_definition(review_workflow())
        watcher = FolderWatcher(h.engine, h.files, call_timeout=5, max_consecutive_errors=3)

        async def broken_poll(state):
            raise RuntimeError("boom")

        watcher._poll = broken_poll
        watcher_id = await watcher.start(WatcherConfig(
            folder_id="inbox", workflow_definition_id=definition.id, poll_interval=0.02,
        ))
        state = watcher._watchers[watcher_id]

        await wait_until(lambda: not watcher.is_running(watcher_id))

        assert state.error_count == 3
        await wait_until(state.task.done)
        assert state.task.exception() is None
