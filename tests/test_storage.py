"""
Tests for the in-memory stores.
"""

import pytest

from visaflow.engine.models import (
    DocumentStatus,
    ReviewDecision,
    WorkflowInstance,
    WorkflowReview,
)
from visaflow.storage import InMemoryDocumentStore, InMemoryWorkflowStore

from tests.factories import make_document


def make_instance():
    return WorkflowInstance(
        workflow_definition_id="definition-1",
        document_id="document-1",
        current_node_id="start",
        current_status_id="pending",
    )


class TestWorkflowStore:
    """Tests for InMemoryWorkflowStore."""

    @pytest.mark.asyncio
    async def test_returned_objects_are_copies(self):
        """Test mutating a returned instance does not touch the store."""
        store = InMemoryWorkflowStore()
        instance = await store.create_instance(make_instance())

        instance.current_node_id = "elsewhere"

        assert (await store.get_instance(instance.id)).current_node_id == "start"

    @pytest.mark.asyncio
    async def test_update_instance(self):
        """Test partial updates and unknown ids."""
        store = InMemoryWorkflowStore()
        instance = await store.create_instance(make_instance())

        updated = await store.update_instance(instance.id, {"current_node_id": "review"})
        unchanged = await store.update_instance(instance.id, {})

        assert updated.current_node_id == "review"
        assert unchanged == updated
        assert await store.update_instance("missing", {"current_node_id": "x"}) is None

    @pytest.mark.asyncio
    async def test_review_record_is_idempotent(self):
        """Test resubmitting the same review id adds it once."""
        store = InMemoryWorkflowStore()
        instance = await store.create_instance(make_instance())
        record = WorkflowReview(
            instance_id=instance.id, reviewer_id="r1",
            decision=ReviewDecision.VSO, is_completed=True,
        )

        await store.submit_review_record(instance.id, record)
        saved = await store.submit_review_record(instance.id, record)

        assert len(saved.reviews) == 1
        assert await store.submit_review_record("missing", record) is None

    @pytest.mark.asyncio
    async def test_list_and_discard(self):
        """Test listing by definition and discarding."""
        store = InMemoryWorkflowStore()
        instance = await store.create_instance(make_instance())

        assert len(await store.list_instances("definition-1")) == 1
        assert await store.list_instances("other") == []
        assert await store.discard_instance(instance.id) is True
        assert await store.discard_instance(instance.id) is False
        assert len(store) == 0


class TestDocumentStore:
    """Tests for InMemoryDocumentStore."""

    @pytest.mark.asyncio
    async def test_update_status_and_link(self):
        """Test status updates, linking and unlinking an instance."""
        documents = InMemoryDocumentStore()
        document = await documents.create_document(make_document())

        linked = await documents.update_document_status(
            document.id, DocumentStatus(id="approved", name="Approved"), "instance-1"
        )
        kept = await documents.update_document_status(
            document.id, DocumentStatus(id="vso", name="VSO")
        )
        unlinked = await documents.unlink_instance(document.id)

        assert linked.workflow_instance_id == "instance-1"
        assert kept.workflow_instance_id == "instance-1"
        assert kept.current_status.id == "vso"
        assert unlinked.workflow_instance_id is None
        assert await documents.update_document_status(
            "missing", DocumentStatus(id="x", name="X")
        ) is None
