"""
Pydantic Schemas for API Request/Response Models.

Domain objects (definitions, instances, documents, reviews) travel in
their camelCase wire format; the envelopes around them are defined here.
"""

from typing import List, Optional
from pydantic import BaseModel, Field

from visaflow.engine.models import ValidationDocument, WorkflowInstance


# ============================================================
# Common
# ============================================================

class ErrorResponse(BaseModel):
    """Error body returned for engine errors."""
    error: str
    detail: str


# ============================================================
# Workflow Schemas
# ============================================================

class WorkflowCreateResponse(BaseModel):
    """Response after saving a workflow definition."""
    id: str = Field(..., description="Identifier of the saved definition")
    name: str
    message: str = Field(default="Workflow saved successfully")
    node_count: int
    validation_errors: List[str] = Field(
        default_factory=list,
        description="Structural problems found in the graph (saved anyway)",
    )


class WorkflowSummary(BaseModel):
    id: str
    name: str
    description: str
    version: int
    is_active: bool
    node_count: int
    status_count: int
    auto_start_on_upload: bool
    source_folder_id: Optional[str] = None


class WorkflowListResponse(BaseModel):
    """Response listing all workflow definitions."""
    workflows: List[WorkflowSummary]
    total: int


class ValidationReport(BaseModel):
    """Structural report on a workflow graph."""
    workflow_id: str
    valid: bool
    errors: List[str]
    mermaid_diagram: str = Field(..., description="Mermaid diagram of the graph")


# ============================================================
# Instance Schemas
# ============================================================

class InstanceStartRequest(BaseModel):
    """Request to start a workflow for a document."""
    workflow_definition_id: str = Field(..., description="Definition to run")
    document: ValidationDocument = Field(..., description="Document to validate")

    class Config:
        json_schema_extra = {
            "example": {
                "workflow_definition_id": "document-validation-default",
                "document": {
                    "fileId": "file-123",
                    "fileName": "plan-RDC.pdf",
                    "uploadedBy": "user-1",
                    "uploadedByName": "Alice Martin",
                },
            }
        }


class InstanceStateResponse(BaseModel):
    """An instance and where it stands."""
    instance: WorkflowInstance
    phase: Optional[str] = Field(
        None, description="advancing, blocked, completed or stalled"
    )


class InstanceListResponse(BaseModel):
    instances: List[WorkflowInstance]
    total: int


# ============================================================
# Watcher Schemas
# ============================================================

class WatcherCreateRequest(BaseModel):
    """Request to start watching a folder."""
    folder_id: str = Field(..., description="Host folder to poll")
    workflow_definition_id: str = Field(..., description="Workflow started for new files")
    poll_interval: Optional[float] = Field(None, gt=0, description="Seconds between polls")
    file_extensions: Optional[List[str]] = Field(
        None, description="Only these extensions (case-insensitive, dot optional)"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "folder_id": "folder-inbox",
                "workflow_definition_id": "document-validation-default",
                "poll_interval": 30,
                "file_extensions": ["pdf", "dwg"],
            }
        }


class WatcherResponse(BaseModel):
    id: str
    folder_id: str
    workflow_definition_id: str
    poll_interval: float
    file_extensions: Optional[List[str]] = None
    last_poll_at: Optional[str] = None
    error_count: int = 0
    known_files: int = 0


class WatcherListResponse(BaseModel):
    watchers: List[WatcherResponse]
    total: int
