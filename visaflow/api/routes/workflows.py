"""
Workflow Definition API Routes.

Endpoints for saving, listing and validating workflow definitions.
"""

from fastapi import APIRouter, Depends, status
import logging

from visaflow.api.dependencies import Services, get_services
from visaflow.api.schemas import (
    ErrorResponse,
    ValidationReport,
    WorkflowCreateResponse,
    WorkflowListResponse,
    WorkflowSummary,
)
from visaflow.engine.errors import DefinitionNotFound
from visaflow.engine.graph import WorkflowGraph
from visaflow.engine.models import WorkflowDefinition
from visaflow.storage.base import WorkflowStore


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflows", tags=["Workflows"])


async def _get_definition(store: WorkflowStore, workflow_id: str) -> WorkflowDefinition:
    definition = await store.get_definition(workflow_id)
    if definition is None:
        raise DefinitionNotFound(f'Workflow definition "{workflow_id}" not found')
    return definition


@router.post(
    "",
    response_model=WorkflowCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def save_workflow(
    definition: WorkflowDefinition,
    services: Services = Depends(get_services),
) -> WorkflowCreateResponse:
    """
    Save a workflow definition (create or replace by id).

    The graph is validated but saved even when it has problems, so an
    editor can store drafts; the problems are returned in the response.
    Running instances keep the definition id they were started with.
    """
    errors = WorkflowGraph(definition).validate()
    await services.store.save_definition(definition)

    logger.info(f"Saved workflow: {definition.id} ({definition.name})")
    if errors:
        logger.warning(f"Workflow {definition.id} has validation errors: {errors}")

    return WorkflowCreateResponse(
        id=definition.id,
        name=definition.name,
        node_count=len(definition.nodes),
        validation_errors=errors,
    )


@router.get("", response_model=WorkflowListResponse)
async def list_workflows(services: Services = Depends(get_services)) -> WorkflowListResponse:
    """List all saved workflow definitions."""
    definitions = await services.store.list_definitions()
    workflows = [
        WorkflowSummary(
            id=d.id,
            name=d.name,
            description=d.description,
            version=d.version,
            is_active=d.is_active,
            node_count=len(d.nodes),
            status_count=len(d.statuses),
            auto_start_on_upload=d.settings.auto_start_on_upload,
            source_folder_id=d.settings.source_folder_id,
        )
        for d in definitions
    ]
    return WorkflowListResponse(workflows=workflows, total=len(workflows))


@router.get(
    "/{workflow_id}",
    response_model=WorkflowDefinition,
    responses={404: {"model": ErrorResponse, "description": "Workflow not found"}},
)
async def get_workflow(
    workflow_id: str,
    services: Services = Depends(get_services),
) -> WorkflowDefinition:
    """Get a workflow definition by id."""
    return await _get_definition(services.store, workflow_id)


@router.get(
    "/{workflow_id}/validate",
    response_model=ValidationReport,
    responses={404: {"model": ErrorResponse, "description": "Workflow not found"}},
)
async def validate_workflow(
    workflow_id: str,
    services: Services = Depends(get_services),
) -> ValidationReport:
    """Report structural problems of a saved workflow, with a Mermaid diagram."""
    graph = WorkflowGraph(await _get_definition(services.store, workflow_id))
    errors = graph.validate()
    return ValidationReport(
        workflow_id=workflow_id,
        valid=not errors,
        errors=errors,
        mermaid_diagram=graph.to_mermaid(),
    )
