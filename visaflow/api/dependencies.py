"""
Service container shared by the API routes.

Built once in the application lifespan and stored on app.state.
"""

from typing import Optional
from dataclasses import dataclass
from fastapi import Request
import logging

from visaflow.config import settings
from visaflow.engine.engine import WorkflowEngine
from visaflow.engine.events import EventBus
from visaflow.engine.watcher import FolderWatcher
from visaflow.integrations import (
    FileService,
    HostFileService,
    InMemoryFileService,
    LoggingNotifier,
    Notifier,
)
from visaflow.storage import InMemoryDocumentStore, InMemoryWorkflowStore
from visaflow.storage.base import DocumentStore, WorkflowStore


logger = logging.getLogger(__name__)


@dataclass
class Services:
    store: WorkflowStore
    documents: DocumentStore
    files: FileService
    notifier: Notifier
    events: EventBus
    engine: WorkflowEngine
    watcher: FolderWatcher

    @classmethod
    def create(
        cls,
        store: Optional[WorkflowStore] = None,
        documents: Optional[DocumentStore] = None,
        files: Optional[FileService] = None,
        notifier: Optional[Notifier] = None,
    ) -> "Services":
        """Wire the engine and watcher from settings, with optional overrides."""
        if store is None:
            store = InMemoryWorkflowStore()
        if documents is None:
            documents = InMemoryDocumentStore()
        if files is None:
            if settings.HOST_API_URL:
                files = HostFileService()
                logger.info(f"Using host file service at {settings.HOST_API_URL}")
            else:
                files = InMemoryFileService()
                logger.info("No HOST_API_URL set, using in-memory file service")
        notifier = notifier or LoggingNotifier()
        events = EventBus()

        engine = WorkflowEngine(
            store, documents, files=files, notifier=notifier, events=events
        )
        watcher = FolderWatcher(engine, files)

        return cls(
            store=store,
            documents=documents,
            files=files,
            notifier=notifier,
            events=events,
            engine=engine,
            watcher=watcher,
        )

    async def close(self) -> None:
        await self.watcher.stop_all()
        await self.events.close()
        if isinstance(self.files, HostFileService):
            await self.files.close()


def get_services(request: Request) -> Services:
    return request.app.state.services
