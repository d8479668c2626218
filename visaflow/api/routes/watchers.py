"""
Folder Watcher API Routes.
"""

from fastapi import APIRouter, Depends, HTTPException, status
import logging

from visaflow.api.dependencies import Services, get_services
from visaflow.api.schemas import (
    ErrorResponse,
    WatcherCreateRequest,
    WatcherListResponse,
    WatcherResponse,
)
from visaflow.config import settings
from visaflow.engine.errors import DefinitionNotFound
from visaflow.engine.watcher import WatcherConfig


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/watchers", tags=["Watchers"])


@router.post(
    "",
    response_model=WatcherResponse,
    status_code=status.HTTP_201_CREATED,
    responses={404: {"model": ErrorResponse, "description": "Workflow not found"}},
)
async def start_watcher(
    request: WatcherCreateRequest,
    services: Services = Depends(get_services),
) -> WatcherResponse:
    """
    Start polling a folder.

    Files already in the folder are ignored; each file that appears
    afterwards starts the given workflow once.
    """
    definition = await services.store.get_definition(request.workflow_definition_id)
    if definition is None:
        raise DefinitionNotFound(
            f'Workflow definition "{request.workflow_definition_id}" not found'
        )

    watcher_id = await services.watcher.start(WatcherConfig(
        folder_id=request.folder_id,
        workflow_definition_id=request.workflow_definition_id,
        poll_interval=request.poll_interval or settings.WATCHER_POLL_INTERVAL,
        file_extensions=request.file_extensions,
    ))

    active = {w["id"]: w for w in services.watcher.get_active_watchers()}
    return WatcherResponse(**active[watcher_id])


@router.get("", response_model=WatcherListResponse)
async def list_watchers(services: Services = Depends(get_services)) -> WatcherListResponse:
    """List running watchers."""
    watchers = [WatcherResponse(**w) for w in services.watcher.get_active_watchers()]
    return WatcherListResponse(watchers=watchers, total=len(watchers))


@router.delete("/{watcher_id}")
async def stop_watcher(watcher_id: str, services: Services = Depends(get_services)):
    """Stop a watcher."""
    stopped = await services.watcher.stop(watcher_id)
    if not stopped:
        raise HTTPException(status_code=404, detail=f"Watcher '{watcher_id}' not found")
    return {"message": f"Watcher '{watcher_id}' stopped", "watcher_id": watcher_id}
