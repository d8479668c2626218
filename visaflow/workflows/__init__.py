"""
Workflows package - Built-in workflow templates.
"""

from visaflow.workflows.document_validation import (
    DOCUMENT_VALIDATION_STATUSES,
    TEMPLATE_ID,
    create_document_validation_workflow,
    register_document_validation_workflow,
)

__all__ = [
    "DOCUMENT_VALIDATION_STATUSES",
    "TEMPLATE_ID",
    "create_document_validation_workflow",
    "register_document_validation_workflow",
]
