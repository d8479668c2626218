"""
Storage contracts consumed by the workflow engine.

The relational persistence layer lives outside this package; anything
implementing these methods can back the engine. Implementations must be
safe to retry on transient failure and return the stored object
unchanged when there is nothing to update.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from visaflow.engine.models import (
    DocumentStatus,
    ValidationDocument,
    WorkflowDefinition,
    WorkflowInstance,
    WorkflowReview,
)


class WorkflowStore(ABC):
    """Definitions, instances and their reviews."""

    @abstractmethod
    async def get_definition(self, definition_id: str) -> Optional[WorkflowDefinition]:
        ...

    @abstractmethod
    async def list_definitions(self) -> List[WorkflowDefinition]:
        ...

    @abstractmethod
    async def save_definition(self, definition: WorkflowDefinition) -> WorkflowDefinition:
        ...

    @abstractmethod
    async def get_instance(self, instance_id: str) -> Optional[WorkflowInstance]:
        ...

    @abstractmethod
    async def list_instances(
        self, definition_id: Optional[str] = None
    ) -> List[WorkflowInstance]:
        ...

    @abstractmethod
    async def create_instance(self, instance: WorkflowInstance) -> WorkflowInstance:
        ...

    @abstractmethod
    async def update_instance(
        self, instance_id: str, fields: Dict[str, Any]
    ) -> Optional[WorkflowInstance]:
        """Apply a partial update. Keys are WorkflowInstance field names."""

    @abstractmethod
    async def submit_review_record(
        self, instance_id: str, review: WorkflowReview
    ) -> Optional[WorkflowInstance]:
        """Append a review. Resubmitting the same review id is a no-op."""

    @abstractmethod
    async def discard_instance(self, instance_id: str) -> bool:
        """Drop an instance whose creating transaction was rolled back."""


class DocumentStore(ABC):
    """Documents under validation."""

    @abstractmethod
    async def get_document(self, document_id: str) -> Optional[ValidationDocument]:
        ...

    @abstractmethod
    async def create_document(self, document: ValidationDocument) -> ValidationDocument:
        ...

    @abstractmethod
    async def update_document_status(
        self,
        document_id: str,
        status: DocumentStatus,
        workflow_instance_id: Optional[str] = None,
    ) -> Optional[ValidationDocument]:
        ...

    @abstractmethod
    async def unlink_instance(self, document_id: str) -> Optional[ValidationDocument]:
        """Clear the workflow link of a document whose start was rolled back."""
