"""
In-Memory Storage for the Workflow Engine.

Provides asyncio-locked stores for definitions, instances and documents.
Objects are copied on the way in and out so callers never share state
with the store. Can be replaced with a database implementation.
"""

from typing import Any, Dict, List, Optional
import asyncio

from visaflow.engine.models import (
    DocumentStatus,
    ValidationDocument,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowReview,
    utc_now,
)
from visaflow.storage.base import DocumentStore, WorkflowStore


class InMemoryWorkflowStore(WorkflowStore):
    """
    In-memory storage for workflow definitions and instances.
    """

    def __init__(self):
        self._definitions: Dict[str, WorkflowDefinition] = {}
        self._instances: Dict[str, WorkflowInstance] = {}
        self._lock = asyncio.Lock()

    async def get_definition(self, definition_id: str) -> Optional[WorkflowDefinition]:
        async with self._lock:
            definition = self._definitions.get(definition_id)
            return definition.model_copy(deep=True) if definition else None

    async def list_definitions(self) -> List[WorkflowDefinition]:
        async with self._lock:
            return [d.model_copy(deep=True) for d in self._definitions.values()]

    async def save_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        async with self._lock:
            self._definitions[definition.id] = definition.model_copy(deep=True)
            return definition

    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        async with self._lock:
            instance = self._instances.get(instance_id)
            return instance.model_copy(deep=True) if instance else None

    async def list_instances(
        self, definition_id: Optional[str] = None
    ) -> List[WorkflowInstance]:
        async with self._lock:
            return [
                i.model_copy(deep=True)
                for i in self._instances.values()
                if definition_id is None or i.workflow_definition_id == definition_id
            ]

    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        async with self._lock:
            self._instances[instance.id] = instance.model_copy(deep=True)
            return instance.model_copy(deep=True)

    async def update_instance(
        self, instance_id: str, fields: Dict[str, Any]
    ) -> Optional[WorkflowInstance]:
        async with self._lock:
            stored = self._instances.get(instance_id)
            if stored is None:
                return None
            if fields:
                stored = stored.model_copy(update=fields, deep=True)
                self._instances[instance_id] = stored
            return stored.model_copy(deep=True)

    async def submit_review_record(
        self, instance_id: str, review: WorkflowReview
    ) -> Optional[WorkflowInstance]:
        async with self._lock:
            stored = self._instances.get(instance_id)
            if stored is None:
                return None
            if all(r.id != review.id for r in stored.reviews):
                stored = stored.model_copy(
                    update={
                        "reviews": stored.reviews + [review.model_copy(deep=True)],
                        "updated_at": utc_now(),
                    },
                    deep=True,
                )
                self._instances[instance_id] = stored
            return stored.model_copy(deep=True)

    async def discard_instance(self, instance_id: str) -> bool:
        async with self._lock:
            return self._instances.pop(instance_id, None) is not None

    @property
    def definition_count(self) -> int:
        return len(self._definitions)

    def __len__(self) -> int:
        return len(self._instances)


class InMemoryDocumentStore(DocumentStore):
    """
    In-memory storage for documents under validation.
    """

    def __init__(self):
        self._documents: Dict[str, ValidationDocument] = {}
        self._lock = asyncio.Lock()

    async def get_document(self, document_id: str) -> Optional[ValidationDocument]:
        async with self._lock:
            document = self._documents.get(document_id)
            return document.model_copy(deep=True) if document else None

    async def list_documents(self) -> List[ValidationDocument]:
        async with self._lock:
            return [d.model_copy(deep=True) for d in self._documents.values()]

    async def create_document(self, document: ValidationDocument) -> ValidationDocument:
        async with self._lock:
            self._documents[document.id] = document.model_copy(deep=True)
            return document.model_copy(deep=True)

    async def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        workflow_instance_id: Optional[str] = None,
    ) -> Optional[ValidationDocument]:
        async with self._lock:
            stored = self._documents.get(document_id)
            if stored is None:
                return None
            update: Dict[str, Any] = {"current_status": status.model_copy()}
            if workflow_instance_id is not None:
                update["workflow_instance_id"] = workflow_instance_id
            stored = stored.model_copy(update=update, deep=True)
            self._documents[document_id] = stored
            return stored.model_copy(deep=True)

    async def unlink_instance(self, document_id: str) -> Optional[ValidationDocument]:
        async with self._lock:
            stored = self._documents.get(document_id)
            if stored is None:
                return None
            stored = stored.model_copy(update={"workflow_instance_id": None}, deep=True)
            self._documents[document_id] = stored
            return stored.model_copy(deep=True)

    def __len__(self) -> int:
        return len(self._documents)
