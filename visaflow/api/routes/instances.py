"""
Workflow Instance API Routes.

Endpoints for starting workflows on documents and submitting reviews.
"""

from typing import Optional
from fastapi import APIRouter, Depends, status
import logging

from visaflow.api.dependencies import Services, get_services
from visaflow.api.schemas import (
    ErrorResponse,
    InstanceListResponse,
    InstanceStartRequest,
    InstanceStateResponse,
)
from visaflow.engine.errors import DefinitionNotFound, InstanceNotFound
from visaflow.engine.models import ReviewSubmission, WorkflowInstance


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/instances", tags=["Instances"])


async def _state(services: Services, instance: WorkflowInstance) -> InstanceStateResponse:
    definition = await services.store.get_definition(instance.workflow_definition_id)
    phase = services.engine.get_phase(instance, definition) if definition else None
    return InstanceStateResponse(instance=instance, phase=phase)


@router.post(
    "",
    response_model=InstanceStateResponse,
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"model": ErrorResponse, "description": "Workflow not found"},
        422: {"model": ErrorResponse, "description": "Workflow cannot be executed"},
        503: {"model": ErrorResponse, "description": "A collaborator failed"},
    },
)
async def start_instance(
    request: InstanceStartRequest,
    services: Services = Depends(get_services),
) -> InstanceStateResponse:
    """
    Register a document and start a workflow on it.

    The instance auto-advances until it waits for reviews or completes.
    """
    definition = await services.store.get_definition(request.workflow_definition_id)
    if definition is None:
        raise DefinitionNotFound(
            f'Workflow definition "{request.workflow_definition_id}" not found'
        )

    document = await services.documents.get_document(request.document.id)
    if document is None:
        document = await services.documents.create_document(request.document)

    instance = await services.engine.start_workflow(definition, document)
    logger.info(f"Started instance {instance.id} for document {document.id}")

    return await _state(services, instance)


@router.get("", response_model=InstanceListResponse)
async def list_instances(
    workflow_definition_id: Optional[str] = None,
    services: Services = Depends(get_services),
) -> InstanceListResponse:
    """List workflow instances, optionally for one definition."""
    instances = await services.store.list_instances(workflow_definition_id)
    return InstanceListResponse(instances=instances, total=len(instances))


@router.get(
    "/{instance_id}",
    response_model=InstanceStateResponse,
    responses={404: {"model": ErrorResponse, "description": "Instance not found"}},
)
async def get_instance(
    instance_id: str,
    services: Services = Depends(get_services),
) -> InstanceStateResponse:
    """Get an instance with its history, reviews and phase."""
    instance = await services.store.get_instance(instance_id)
    if instance is None:
        raise InstanceNotFound(f'Workflow instance "{instance_id}" not found')
    return await _state(services, instance)


@router.post(
    "/{instance_id}/reviews",
    response_model=InstanceStateResponse,
    responses={
        404: {"model": ErrorResponse, "description": "Instance or workflow not found"},
        503: {"model": ErrorResponse, "description": "A collaborator failed"},
    },
)
async def submit_review(
    instance_id: str,
    submission: ReviewSubmission,
    services: Services = Depends(get_services),
) -> InstanceStateResponse:
    """Submit a review (visa). The workflow resumes once enough reviews are in."""
    instance = await services.engine.submit_review(instance_id, submission)
    return await _state(services, instance)
