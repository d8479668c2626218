"""
Storage package - Store contracts and in-memory implementations.
"""

from visaflow.storage.base import DocumentStore, WorkflowStore
from visaflow.storage.memory import InMemoryDocumentStore, InMemoryWorkflowStore

__all__ = [
    "DocumentStore",
    "WorkflowStore",
    "InMemoryDocumentStore",
    "InMemoryWorkflowStore",
]
