"""GitLab REST API client helpers."""

from __future__ import annotations

from typing import Any, Dict, List

import httpx

from mr_reviewer.errors import TransportError
from mr_reviewer.models.review import DiffReference


class GitLabAPIError(TransportError):
    """Raised when a GitLab API request fails."""


class GitLabClient:
    """Project-scoped operations on merge requests, authenticated with a private token."""

    def __init__(
        self,
        *,
        base_url: str,
        token: str,
        timeout: float = 30.0,
        user_agent: str = "MR-Reviewer/1.0",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client or httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            headers={
                "User-Agent": user_agent,
                "PRIVATE-TOKEN": token,
                "Accept": "application/json",
            },
        )
        self._owns_client = client is None

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Dict[str, Any] | None = None,
        json: Any | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(method, url, params=params, json=json)
        except httpx.HTTPError as exc:
            raise GitLabAPIError(f"GitLab API request to {url} failed: {exc}", 0, None) from exc
        if response.status_code >= 400:
            detail: Any | None
            if response.content:
                try:
                    detail = response.json()
                except ValueError:
                    detail = response.text
            else:
                detail = None
            raise GitLabAPIError(
                f"GitLab API request to {url} failed with status {response.status_code}.",
                response.status_code,
                detail,
            )
        return response

    @staticmethod
    def _merge_request_path(project_id: int, merge_request_iid: int) -> str:
        return f"/projects/{project_id}/merge_requests/{merge_request_iid}"

    async def get_merge_request(self, *, project_id: int, merge_request_iid: int) -> Dict[str, Any]:
        response = await self._request("GET", self._merge_request_path(project_id, merge_request_iid))
        return response.json()

    async def get_merge_request_changes(
        self, *, project_id: int, merge_request_iid: int
    ) -> List[Dict[str, Any]]:
        response = await self._request(
            "GET", f"{self._merge_request_path(project_id, merge_request_iid)}/changes"
        )
        data = response.json()
        changes = data.get("changes") if isinstance(data, dict) else None
        if changes is None:
            return []
        if not isinstance(changes, list):
            raise GitLabAPIError(
                "Unexpected response while listing merge request changes.",
                response.status_code,
                data,
            )
        return changes

    async def get_diff_reference(self, *, project_id: int, merge_request_iid: int) -> DiffReference:
        merge_request = await self.get_merge_request(
            project_id=project_id, merge_request_iid=merge_request_iid
        )
        refs = merge_request.get("diff_refs") or {}
        missing = [key for key in ("base_sha", "start_sha", "head_sha") if not refs.get(key)]
        if missing:
            raise GitLabAPIError(
                f"Merge request diff_refs missing {', '.join(missing)}.",
                200,
                refs,
            )
        return DiffReference(
            base_sha=refs["base_sha"],
            start_sha=refs["start_sha"],
            head_sha=refs["head_sha"],
        )

    async def create_note(
        self, *, project_id: int, merge_request_iid: int, body: str
    ) -> Dict[str, Any]:
        response = await self._request(
            "POST",
            f"{self._merge_request_path(project_id, merge_request_iid)}/notes",
            json={"body": body},
        )
        return response.json()

    async def create_discussion(
        self,
        *,
        project_id: int,
        merge_request_iid: int,
        body: str,
        position: Dict[str, Any] | None = None,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"body": body}
        if position is not None:
            payload["position"] = position
        response = await self._request(
            "POST",
            f"{self._merge_request_path(project_id, merge_request_iid)}/discussions",
            json=payload,
        )
        return response.json()

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
