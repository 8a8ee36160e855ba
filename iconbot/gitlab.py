from __future__ import annotations

import logging

import httpx

from .errors import MergeRequestError


class GitLabClient:
    """Minimal client for the one GitLab endpoint the bot needs."""

    def __init__(
        self,
        api_url: str,
        token: str | None,
        timeout_sec: float = 20,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.token = token
        self.timeout_sec = timeout_sec
        self._transport = transport

    async def create_merge_request(
        self,
        project_id: int,
        source_branch: str,
        target_branch: str,
        title: str,
        description: str,
        remove_source_branch: bool = True,
    ) -> str | None:
        """Open a merge request and return its web URL when GitLab reports one."""
        if not self.token:
            raise MergeRequestError("GITLAB_TOKEN is not set")

        body = {
            "id": project_id,
            "source_branch": source_branch,
            "target_branch": target_branch,
            "remove_source_branch": remove_source_branch,
            "title": title,
            "description": description,
        }
        url = f"{self.api_url}/projects/{project_id}/merge_requests"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_sec, transport=self._transport
            ) as client:
                resp = await client.post(url, json=body, headers={"PRIVATE-TOKEN": self.token})
        except httpx.TimeoutException as e:
            raise MergeRequestError(f"request timed out: {e!r}") from e
        except httpx.HTTPError as e:
            raise MergeRequestError(f"request failed: {e!r}") from e
        except httpx.InvalidURL as e:
            raise MergeRequestError(f"invalid GitLab API URL {url!r}: {e}") from e

        if resp.status_code >= 400:
            raise MergeRequestError(
                f"GitLab answered {resp.status_code}: {resp.text[:300]}",
                status_code=resp.status_code,
            )

        try:
            web_url = resp.json().get("web_url")
        except (ValueError, AttributeError):
            web_url = None
        logging.info("Merge request created for %s -> %s: %s", source_branch, target_branch, web_url)
        return web_url
