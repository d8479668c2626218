"""
File and folder collaborator.

The engine lists folders, moves and copies files and raises tasks on the
collaboration host through this interface. HostFileService talks to the
host's REST proxy; InMemoryFileService backs tests and local runs.
"""

from typing import Any, Dict, List, Optional
from abc import ABC, abstractmethod
import logging

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from visaflow.config import settings
from visaflow.engine.errors import CollaboratorUnavailable
from visaflow.engine.models import FolderItem, new_id


logger = logging.getLogger(__name__)

# HTTP status codes that warrant a retry
RETRYABLE_STATUS_CODES = frozenset({500, 502, 503, 504})


class FileService(ABC):
    @abstractmethod
    async def list_folder_items(self, folder_id: str) -> List[FolderItem]:
        ...

    @abstractmethod
    async def move_file(
        self, file_id: str, target_folder_id: str, source_folder_id: Optional[str] = None
    ) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def copy_file(self, file_id: str, target_folder_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def create_task(
        self, label: str, description: str, project_id: str
    ) -> Dict[str, Any]:
        ...


class InMemoryFileService(FileService):
    """
    Folder tree held in memory.

    Usage:
        files = InMemoryFileService()
        files.add_file("inbox", FolderItem(id="f1", name="plan.pdf", extension="pdf"))
        await files.move_file("f1", "validated")
    """

    def __init__(self):
        self.folders: Dict[str, List[FolderItem]] = {}
        self.tasks: List[Dict[str, Any]] = []

    def add_file(self, folder_id: str, item: FolderItem) -> FolderItem:
        self.folders.setdefault(folder_id, []).append(item)
        return item

    def find_folder(self, file_id: str) -> Optional[str]:
        for folder_id, items in self.folders.items():
            if any(item.id == file_id for item in items):
                return folder_id
        return None

    async def list_folder_items(self, folder_id: str) -> List[FolderItem]:
        return [item.model_copy() for item in self.folders.get(folder_id, [])]

    def _get_file(self, file_id: str) -> FolderItem:
        for items in self.folders.values():
            for item in items:
                if item.id == file_id:
                    return item
        raise FileNotFoundError(f"File '{file_id}' not found")

    async def move_file(
        self, file_id: str, target_folder_id: str, source_folder_id: Optional[str] = None
    ) -> Dict[str, Any]:
        item = self._get_file(file_id)
        source = source_folder_id or self.find_folder(file_id)
        if source in self.folders:
            self.folders[source] = [i for i in self.folders[source] if i.id != file_id]
        self.add_file(target_folder_id, item)
        return {"id": file_id, "parentId": target_folder_id}

    async def copy_file(self, file_id: str, target_folder_id: str) -> Dict[str, Any]:
        item = self._get_file(file_id)
        copy = item.model_copy(update={"id": new_id()})
        self.add_file(target_folder_id, copy)
        return {"id": copy.id, "parentId": target_folder_id}

    async def create_task(
        self, label: str, description: str, project_id: str
    ) -> Dict[str, Any]:
        task = {
            "id": new_id(),
            "label": label,
            "description": description,
            "projectId": project_id,
        }
        self.tasks.append(task)
        return task


class _RetryableHostError(Exception):
    """Transient host failure (5xx or transport error)."""


class HostFileService(FileService):
    """
    Client for the collaboration host's REST proxy.

    Transient failures (transport errors, 5xx) are retried with
    exponential backoff; anything that still fails surfaces as
    CollaboratorUnavailable.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.HOST_API_URL or "").rstrip("/")
        self._token = token or settings.HOST_API_TOKEN
        self._timeout = timeout or settings.COLLABORATOR_TIMEOUT
        self._client = client

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url, timeout=self._timeout, headers=self._headers()
            )
        return self._client

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        try:
            return await self._request_with_backoff(method, path, **kwargs)
        except _RetryableHostError as e:
            raise CollaboratorUnavailable(f"Host {method} {path} failed: {e}") from e
        except httpx.HTTPStatusError as e:
            raise CollaboratorUnavailable(
                f"Host {method} {path} returned {e.response.status_code}"
            ) from e

    @retry(
        retry=retry_if_exception_type(_RetryableHostError),
        stop=stop_after_attempt(3),
        wait=wait_exponential_jitter(multiplier=0.5, max=10.0),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request_with_backoff(self, method: str, path: str, **kwargs) -> Any:
        client = await self._ensure_client()
        try:
            response = await client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise _RetryableHostError(str(e)) from e

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise _RetryableHostError(f"HTTP {response.status_code}")
        response.raise_for_status()
        return response.json() if response.content else {}

    async def list_folder_items(self, folder_id: str) -> List[FolderItem]:
        raw = await self._request("GET", f"/api/folders/{folder_id}/items")
        items = raw if isinstance(raw, list) else raw.get("items", [])
        return [FolderItem.model_validate(item) for item in items]

    async def move_file(
        self, file_id: str, target_folder_id: str, source_folder_id: Optional[str] = None
    ) -> Dict[str, Any]:
        body = {"fileId": file_id, "targetFolderId": target_folder_id}
        if source_folder_id:
            body["sourceFolderId"] = source_folder_id
        return await self._request("POST", "/api/files/move", json=body)

    async def copy_file(self, file_id: str, target_folder_id: str) -> Dict[str, Any]:
        body = {"fileId": file_id, "targetFolderId": target_folder_id}
        return await self._request("POST", "/api/files/copy", json=body)

    async def create_task(
        self, label: str, description: str, project_id: str
    ) -> Dict[str, Any]:
        body = {"label": label, "description": description, "projectId": project_id}
        return await self._request("POST", "/api/todos", json=body)
