"""Azure DevOps work item tracking backend."""

from typing import Any, Dict, List, Optional, Protocol, Type, TypeVar
from urllib.parse import quote

import httpx
from loguru import logger
from pydantic import BaseModel, ValidationError

from alert_workitem_receiver.models import Document, TrackedItem, WorkItemReference

API_VERSION = "7.1"
JSON_PATCH_CONTENT_TYPE = "application/json-patch+json"
SUCCESS_STATUS_CODES = (200, 201)

ModelT = TypeVar("ModelT", bound=BaseModel)


class BackendError(Exception):
    """A work item tracking call failed."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ItemNotFoundError(BackendError):
    """The requested work item does not exist (or is no longer visible)."""


class WorkItemBackend(Protocol):
    """Capabilities the receiver needs from a work item tracking service."""

    async def create(self, project: str, item_type: str, document: Document) -> TrackedItem: ...

    async def update(self, item_id: int, document: Document) -> TrackedItem: ...

    async def fetch(self, item_id: int) -> TrackedItem: ...

    async def query(self, wiql: str) -> List[WorkItemReference]: ...


class AzureDevOpsClient:
    """Work item tracking REST client for one Azure DevOps organization.

    The underlying ``httpx.AsyncClient`` is safe to share between concurrent
    notifications. Use as an async context manager, or call :meth:`aclose`.
    """

    def __init__(
        self,
        organization_url: str,
        auth: Optional[httpx.Auth] = None,
        timeout: float = 30,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.organization_url = organization_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.organization_url,
            auth=auth,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )

    async def __aenter__(self) -> "AzureDevOpsClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        params = {"api-version": API_VERSION, **kwargs.pop("params", {})}
        try:
            response = await self._client.request(method, url, params=params, **kwargs)
        except httpx.HTTPError as e:
            raise BackendError(f"{method} {url} failed: {e}") from e

        if response.status_code == 404:
            raise ItemNotFoundError(f"{method} {url}: not found", status_code=404)
        # Azure DevOps answers a rejected token with 203 and an HTML sign-in page.
        if response.status_code not in SUCCESS_STATUS_CODES:
            raise BackendError(
                f"{method} {url} returned {response.status_code}: {response.text}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise BackendError(
                f"{method} {url} returned a non-JSON body: {e}",
                status_code=response.status_code,
            ) from e
        if not isinstance(data, dict):
            raise BackendError(
                f"{method} {url} returned unexpected JSON: {data!r}",
                status_code=response.status_code,
            )
        return data

    @staticmethod
    def _patch_body(document: Document) -> List[Dict[str, Any]]:
        return [op.model_dump() for op in document]

    @staticmethod
    def _parse(model: Type[ModelT], data: Any) -> ModelT:
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise BackendError(f"unexpected {model.__name__} in response: {e}") from e

    async def create(self, project: str, item_type: str, document: Document) -> TrackedItem:
        url = f"/{quote(project)}/_apis/wit/workitems/${quote(item_type)}"
        logger.debug(f"Creating {item_type} in {project} with {len(document)} operations")
        data = await self._request(
            "POST",
            url,
            json=self._patch_body(document),
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        )
        return self._parse(TrackedItem, data)

    async def update(self, item_id: int, document: Document) -> TrackedItem:
        logger.debug(f"Updating work item {item_id} with {len(document)} operations")
        data = await self._request(
            "PATCH",
            f"/_apis/wit/workitems/{item_id}",
            json=self._patch_body(document),
            headers={"Content-Type": JSON_PATCH_CONTENT_TYPE},
        )
        return self._parse(TrackedItem, data)

    async def fetch(self, item_id: int) -> TrackedItem:
        data = await self._request("GET", f"/_apis/wit/workitems/{item_id}")
        return self._parse(TrackedItem, data)

    async def query(self, wiql: str) -> List[WorkItemReference]:
        data = await self._request("POST", "/_apis/wit/wiql", json={"query": wiql})
        refs = data.get("workItems") or []
        if not isinstance(refs, list):
            raise BackendError(f"unexpected workItems in query response: {refs!r}")
        return [self._parse(WorkItemReference, ref) for ref in refs]
