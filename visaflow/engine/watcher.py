"""
Folder Watcher.

Polls host folders for newly uploaded files and starts a workflow for
each one. Every watcher runs its own asyncio task; watchers never wait
on each other and a cycle never overlaps the next cycle of the same
watcher.
"""

from typing import Any, Dict, List, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime
import asyncio
import logging

from visaflow.config import settings
from visaflow.engine.engine import WorkflowEngine
from visaflow.engine.errors import CollaboratorUnavailable, WorkflowError
from visaflow.engine.events import Event
from visaflow.engine.models import (
    DocumentComment,
    DocumentStatus,
    DocumentVersion,
    FolderItem,
    ValidationDocument,
    new_id,
    utc_now,
)
from visaflow.integrations.files import FileService
from visaflow.integrations.notifications import Notification, notify_safely


logger = logging.getLogger(__name__)


@dataclass
class WatcherConfig:
    """What to watch and which workflow to start."""
    folder_id: str
    workflow_definition_id: str
    poll_interval: float = field(default_factory=lambda: settings.WATCHER_POLL_INTERVAL)
    file_extensions: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "folder_id": self.folder_id,
            "workflow_definition_id": self.workflow_definition_id,
            "poll_interval": self.poll_interval,
            "file_extensions": self.file_extensions,
        }


@dataclass
class WatcherState:
    """Internal state of one watcher."""
    id: str
    config: WatcherConfig
    known_file_ids: Set[str] = field(default_factory=set)
    pending_documents: Dict[str, ValidationDocument] = field(default_factory=dict)
    is_running: bool = True
    task: Optional[asyncio.Task] = None
    last_poll_at: Optional[datetime] = None
    error_count: int = 0
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    poll_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            **self.config.to_dict(),
            "last_poll_at": self.last_poll_at.isoformat() if self.last_poll_at else None,
            "error_count": self.error_count,
            "known_files": len(self.known_file_ids),
        }


def _normalize_extension(extension: Optional[str]) -> str:
    return (extension or "").lower().lstrip(".")


def _file_extension(item: FolderItem) -> str:
    if item.extension:
        return _normalize_extension(item.extension)
    if "." in item.name:
        return _normalize_extension(item.name.rsplit(".", 1)[1])
    return ""


class FolderWatcher:
    """
    Registry of folder polling loops, keyed by watcher id.

    Usage:
        watcher = FolderWatcher(engine, files)
        watcher_id = await watcher.start(WatcherConfig(
            folder_id="inbox", workflow_definition_id=definition.id,
        ))
        ...
        await watcher.stop_all()
    """

    def __init__(
        self,
        engine: WorkflowEngine,
        files: FileService,
        max_consecutive_errors: Optional[int] = None,
        project_id: Optional[str] = None,
        call_timeout: Optional[float] = None,
    ):
        self.engine = engine
        self.files = files
        self.store = engine.store
        self.documents = engine.documents
        self.notifier = engine.notifier
        self.events = engine.events
        self.max_consecutive_errors = (
            max_consecutive_errors or settings.WATCHER_MAX_CONSECUTIVE_ERRORS
        )
        self.project_id = project_id or settings.PROJECT_ID
        self.call_timeout = call_timeout or settings.COLLABORATOR_TIMEOUT
        self._watchers: Dict[str, WatcherState] = {}

    # ============================================================
    # Lifecycle
    # ============================================================

    async def start(self, config: WatcherConfig) -> str:
        """
        Start watching a folder.

        Files already in the folder are recorded as known and never start
        a workflow. Polling then runs every config.poll_interval seconds.

        Returns:
            The watcher id
        """
        watcher_id = new_id()
        state = WatcherState(id=watcher_id, config=config)
        self._watchers[watcher_id] = state

        await self._initial_scan(state)
        state.task = asyncio.create_task(self._run_loop(state))

        logger.info(f"Started watcher {watcher_id} on folder {config.folder_id}")
        return watcher_id

    async def stop(self, watcher_id: str) -> bool:
        """
        Stop a watcher and discard its state.

        Waits for an in-flight poll cycle to finish rather than cancelling
        it halfway through a workflow start.
        """
        state = self._watchers.pop(watcher_id, None)
        if state is None:
            return False

        state.is_running = False
        state.stop_event.set()
        task = state.task
        if task is not None and task is not asyncio.current_task() and not task.done():
            await task

        self._publish("stopped", {
            "watcher_id": watcher_id,
            "folder_id": state.config.folder_id,
            "error_count": state.error_count,
        })
        logger.info(f"Stopped watcher {watcher_id}")
        return True

    async def stop_all(self) -> None:
        """Stop every watcher (process shutdown)."""
        for watcher_id in list(self._watchers):
            await self.stop(watcher_id)

    def get_active_watchers(self) -> List[Dict[str, Any]]:
        return [state.to_dict() for state in self._watchers.values()]

    def is_running(self, watcher_id: str) -> bool:
        return watcher_id in self._watchers

    async def start_for_active_workflows(
        self, poll_interval: Optional[float] = None
    ) -> List[str]:
        """Start a watcher for every active definition set to auto-start."""
        definitions = await self.store.list_definitions()
        active = [
            d for d in definitions
            if d.is_active and d.settings.auto_start_on_upload and d.settings.source_folder_id
        ]

        watcher_ids = []
        for definition in active:
            watcher_ids.append(await self.start(WatcherConfig(
                folder_id=definition.settings.source_folder_id,
                workflow_definition_id=definition.id,
                poll_interval=poll_interval or settings.WATCHER_POLL_INTERVAL,
            )))

        if active:
            logger.info(f"Started {len(active)} watcher(s) for active workflows")
        return watcher_ids

    # ============================================================
    # Polling
    # ============================================================

    async def poll(self, watcher_id: str) -> Optional[int]:
        """
        Run one poll cycle now.

        Returns:
            Number of new files, or None if the watcher is unknown or a
            cycle is already in flight
        """
        state = self._watchers.get(watcher_id)
        if state is None:
            return None
        return await self._poll_guarded(state)

    async def _run_loop(self, state: WatcherState) -> None:
        while state.is_running:
            try:
                await asyncio.wait_for(
                    state.stop_event.wait(), timeout=state.config.poll_interval
                )
            except asyncio.TimeoutError:
                pass
            if not state.is_running:
                break
            try:
                await self._poll_guarded(state)
            except Exception as e:
                logger.exception(f"Watcher {state.id}: unexpected error in poll loop")
                await self._record_error(state, e)

    async def _poll_guarded(self, state: WatcherState) -> Optional[int]:
        if state.poll_lock.locked():
            logger.debug(f"Watcher {state.id}: previous poll still running, skipping")
            return None
        async with state.poll_lock:
            return await self._poll(state)

    async def _list_files(self, state: WatcherState) -> List[FolderItem]:
        items = await asyncio.wait_for(
            self.files.list_folder_items(state.config.folder_id),
            timeout=self.call_timeout,
        )
        return [item for item in items if item.is_file]

    async def _initial_scan(self, state: WatcherState) -> None:
        """Record files already present, without starting workflows."""
        try:
            files = await self._list_files(state)
        except Exception as e:
            logger.error(f"Watcher {state.id}: initial scan failed: {e}")
            return

        state.known_file_ids.update(f.id for f in files)
        logger.info(f"Watcher {state.id}: initial scan found {len(files)} file(s)")

    async def _poll(self, state: WatcherState) -> int:
        """
        One poll cycle: list the folder and handle every new file.

        Any failure, from the listing or from a new file, counts as one
        consecutive error. Files that were not fully handled are retried
        on the next cycle.
        """
        if not state.is_running:
            return 0

        try:
            files = await self._list_files(state)

            extensions = state.config.file_extensions
            if extensions:
                wanted = {_normalize_extension(ext) for ext in extensions}
                files = [f for f in files if _file_extension(f) in wanted]

            new_files = [f for f in files if f.id not in state.known_file_ids]
            state.last_poll_at = utc_now()

            self._publish("poll", {
                "watcher_id": state.id,
                "total_files": len(files),
                "new_files": len(new_files),
            })

            for file in new_files:
                state.known_file_ids.add(file.id)
                await self._handle_new_file(file, state)
        except Exception as e:
            await self._record_error(state, e)
            return 0

        state.error_count = 0
        return len(new_files)

    async def _record_error(self, state: WatcherState, error: Exception) -> None:
        state.error_count += 1
        self._publish("error", {
            "watcher_id": state.id,
            "error": str(error),
            "error_count": state.error_count,
        })
        logger.warning(
            f"Watcher {state.id}: poll failed ({state.error_count} in a row): {error}"
        )
        if state.error_count >= self.max_consecutive_errors:
            logger.error(f"Watcher {state.id}: too many errors, stopping")
            await self.stop(state.id)

    # ============================================================
    # New files
    # ============================================================

    def _build_document(self, file: FolderItem) -> ValidationDocument:
        now = utc_now()
        uploaded_at = file.uploaded_at or now
        return ValidationDocument(
            file_id=file.id,
            file_name=file.name,
            file_extension=_file_extension(file),
            file_size=file.size or 0,
            file_path=file.path or "",
            uploaded_by=file.uploaded_by or "",
            uploaded_by_name=file.uploaded_by or "User",
            uploaded_at=uploaded_at,
            last_modified=file.last_modified or uploaded_at,
            version_number=1,
            project_id=self.project_id,
            current_status=DocumentStatus(
                id="pending",
                name="Pending",
                color="#6a6e79",
                changed_at=now,
                changed_by=settings.SYSTEM_USER_NAME,
            ),
            version_history=[DocumentVersion(
                version_number=1,
                version_id=file.id,
                file_name=file.name,
                file_size=file.size or 0,
                uploaded_by=file.uploaded_by or settings.SYSTEM_USER_ID,
                uploaded_by_name=file.uploaded_by or settings.SYSTEM_USER_NAME,
                uploaded_at=uploaded_at,
            )],
            comments=[DocumentComment(
                author_id=settings.SYSTEM_USER_ID,
                author_name=settings.SYSTEM_USER_NAME,
                content=(
                    "Document detected in the source folder and added to the "
                    "validation workflow."
                ),
                is_system_message=True,
            )],
        )

    async def _register_document(
        self, file: FolderItem, state: WatcherState
    ) -> ValidationDocument:
        """Create the document record, or reuse the one from a failed cycle."""
        document = state.pending_documents.get(file.id)
        if document is not None:
            return document

        self._publish("new_file", {
            "watcher_id": state.id,
            "file_name": file.name,
            "file_id": file.id,
        })
        document = await asyncio.wait_for(
            self.documents.create_document(self._build_document(file)),
            timeout=self.call_timeout,
        )
        state.pending_documents[file.id] = document

        await notify_safely(self.notifier, Notification(
            title="New document",
            message=f'"{file.name}" was detected and added to validation.',
            document_id=document.id,
        ))
        return document

    async def _handle_new_file(self, file: FolderItem, state: WatcherState) -> None:
        """
        Register the document and start its workflow.

        Collaborator failures propagate to the poll cycle after the file is
        forgotten, so the next cycle picks it up again. A missing workflow
        or a definition the engine refuses leaves the document pending.
        """
        try:
            document = await self._register_document(file, state)

            definition = await asyncio.wait_for(
                self.store.get_definition(state.config.workflow_definition_id),
                timeout=self.call_timeout,
            )
            if definition is None:
                logger.warning(
                    f"Watcher {state.id}: workflow '{state.config.workflow_definition_id}' "
                    f"not found, '{file.name}' left pending"
                )
                state.pending_documents.pop(file.id, None)
                return

            try:
                instance = await self.engine.start_workflow(definition, document)
            except CollaboratorUnavailable:
                raise
            except WorkflowError as e:
                logger.error(
                    f"Watcher {state.id}: failed to start workflow for '{file.name}': {e}"
                )
                state.pending_documents.pop(file.id, None)
                return
        except Exception:
            state.known_file_ids.discard(file.id)
            raise

        state.pending_documents.pop(file.id, None)
        self._publish("workflow_started", {
            "watcher_id": state.id,
            "file_name": file.name,
            "workflow_name": definition.name,
            "document_id": document.id,
            "instance_id": instance.id,
        })

    def _publish(self, event_type: str, data: Dict[str, Any]) -> None:
        self.events.publish(Event(type=event_type, source="watcher", data=data))

    def __len__(self) -> int:
        return len(self._watchers)
