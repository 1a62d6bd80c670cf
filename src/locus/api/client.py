"""Async client for the workspace task API."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from locus.api.models import Sprint, Task

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_MAX_RETRIES = 3
ERROR_BODY_MAX_CHARS = 500


class ApiError(RuntimeError):
    """Non-success response or transport failure talking to the task API."""

    def __init__(self, message: str, *, status_code: int | None = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def not_found(self) -> bool:
        return self.status_code == 404


class LocusClient:
    """Bearer-authenticated wrapper around ``httpx.AsyncClient``."""

    def __init__(  # noqa: PLR0913
        self,
        base_url: str,
        api_key: str,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_MAX_RETRIES,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Accept": "application/json",
            },
            transport=transport or httpx.AsyncHTTPTransport(retries=max_retries),
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> LocusClient:
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # -- sprints ----------------------------------------------------------

    async def get_active_sprint(self, workspace_id: str) -> Sprint | None:
        try:
            payload = await self._request("GET", f"/workspaces/{workspace_id}/sprints/active")
        except ApiError as error:
            if error.not_found:
                return None
            raise
        if not isinstance(payload, dict) or not payload.get("id"):
            return None
        return Sprint.from_api(payload)

    async def get_sprint(self, sprint_id: str, workspace_id: str) -> Sprint:
        payload = await self._request("GET", f"/workspaces/{workspace_id}/sprints/{sprint_id}")
        return Sprint.from_api(payload)

    # -- tasks ------------------------------------------------------------

    async def get_available_tasks(
        self,
        workspace_id: str,
        sprint_id: str | None = None,
    ) -> list[Task]:
        """Return unclaimed tasks; without a sprint every workspace task is considered."""

        params = {"sprintId": sprint_id} if sprint_id else None
        payload = await self._request("GET", f"/workspaces/{workspace_id}/tasks", params=params)
        items = payload.get("tasks", []) if isinstance(payload, dict) else payload
        return [Task.from_api(item) for item in items or [] if isinstance(item, dict)]

    async def get_task(self, task_id: str, workspace_id: str) -> Task:
        payload = await self._request("GET", f"/workspaces/{workspace_id}/tasks/{task_id}")
        return Task.from_api(_unwrap(payload, "task"))

    async def update_task(
        self,
        task_id: str,
        workspace_id: str,
        changes: dict[str, Any],
    ) -> Task | None:
        payload = await self._request(
            "PATCH",
            f"/workspaces/{workspace_id}/tasks/{task_id}",
            json=changes,
        )
        body = _unwrap(payload, "task")
        return Task.from_api(body) if isinstance(body, dict) and body.get("id") else None

    async def add_comment(
        self, task_id: str, workspace_id: str, *, author: str, text: str
    ) -> None:
        await self._request(
            "POST",
            f"/workspaces/{workspace_id}/tasks/{task_id}/comment",
            json={"author": author, "text": text},
        )

    # -- agents -----------------------------------------------------------

    async def dispatch(
        self,
        workspace_id: str,
        worker_id: str,
        sprint_id: str | None = None,
    ) -> Task | None:
        """Claim the next task server-side; ``None`` when the backlog is empty."""

        body: dict[str, Any] = {"workerId": worker_id}
        if sprint_id:
            body["sprintId"] = sprint_id
        try:
            payload = await self._request(
                "POST", f"/workspaces/{workspace_id}/dispatch", json=body
            )
        except ApiError as error:
            if error.not_found:
                return None
            raise
        task = _unwrap(payload, "task")
        return Task.from_api(task) if isinstance(task, dict) and task.get("id") else None

    async def heartbeat(
        self,
        workspace_id: str,
        agent_id: str,
        current_task_id: str | None,
        status: str,
    ) -> None:
        await self._request(
            "POST",
            f"/workspaces/{workspace_id}/agents/heartbeat",
            json={"agentId": agent_id, "currentTaskId": current_task_id, "status": status},
        )

    # -- jobs -------------------------------------------------------------

    async def create_job_run(self, workspace_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        result = await self._request("POST", f"/workspaces/{workspace_id}/jobs", json=payload)
        return _unwrap(result, "jobRun")

    async def update_job_run(
        self,
        workspace_id: str,
        run_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        result = await self._request(
            "PATCH",
            f"/workspaces/{workspace_id}/jobs/{run_id}",
            json=payload,
        )
        return _unwrap(result, "jobRun")

    async def create_suggestion(
        self,
        workspace_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        result = await self._request(
            "POST",
            f"/workspaces/{workspace_id}/suggestions",
            json=payload,
        )
        return _unwrap(result, "suggestion")

    # -- transport --------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, json=json, params=params)
        except httpx.TimeoutException as error:
            logger.warning("Timeout calling %s %s", method, path)
            raise ApiError(f"{method} {path} timed out") from error
        except httpx.HTTPError as error:
            logger.warning("HTTP error calling %s %s: %s", method, path, error)
            raise ApiError(f"{method} {path} failed: {error}") from error

        if not response.is_success:
            body = response.text[:ERROR_BODY_MAX_CHARS]
            if response.status_code != 404:
                logger.warning("%s %s returned HTTP %s", method, path, response.status_code)
            raise ApiError(
                f"{method} {path} returned HTTP {response.status_code}",
                status_code=response.status_code,
                body=body,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as error:
            logger.warning("%s %s returned a non-JSON body", method, path)
            raise ApiError(
                f"{method} {path} returned invalid JSON: {error}",
                status_code=response.status_code,
                body=response.text[:ERROR_BODY_MAX_CHARS],
            ) from error


def _unwrap(payload: Any, key: str) -> Any:
    if isinstance(payload, dict) and isinstance(payload.get(key), dict):
        return payload[key]
    return payload if payload is not None else {}
