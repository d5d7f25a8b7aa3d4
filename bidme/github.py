"""GitHub REST/GraphQL client for issues, comments, reactions and the README."""

from __future__ import annotations

import base64
import logging
import os
from dataclasses import dataclass
from typing import Any

import httpx

from bidme.errors import GitHubAPIError, log_error
from bidme.utils.retry import is_rate_limited, with_retry

logger = logging.getLogger(__name__)

API_URL = "https://api.github.com"
README_PATH = "README.md"


@dataclass(slots=True)
class Issue:
    number: int
    html_url: str
    title: str = ""
    body: str = ""
    state: str = "open"
    node_id: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Issue:
        return cls(
            number=int(data["number"]),
            html_url=data.get("html_url", ""),
            title=data.get("title") or "",
            body=data.get("body") or "",
            state=data.get("state", "open"),
            node_id=data.get("node_id"),
        )


@dataclass(slots=True)
class Comment:
    id: int
    body: str
    author: str
    created_at: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> Comment:
        return cls(
            id=int(data["id"]),
            body=data.get("body") or "",
            author=(data.get("user") or {}).get("login", ""),
            created_at=data.get("created_at", ""),
        )


@dataclass(slots=True)
class Reaction:
    content: str
    user: str


class GitHubClient:
    def __init__(
        self,
        owner: str,
        repo: str,
        token: str,
        *,
        session: httpx.AsyncClient | None = None,
        retry_attempts: int = 3,
        retry_delay: float = 1.0,
    ) -> None:
        self.owner = owner
        self.repo = repo
        self.token = token
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay
        self.session = session or httpx.AsyncClient(timeout=30.0)

    @classmethod
    def from_env(cls, *, session: httpx.AsyncClient | None = None) -> GitHubClient | None:
        """Build a client from the Actions environment, or ``None`` for local runs."""
        token = os.environ.get("GITHUB_TOKEN")
        repository = os.environ.get("GITHUB_REPOSITORY", "")
        owner = os.environ.get("GITHUB_REPOSITORY_OWNER") or repository.partition("/")[0]
        repo = repository.partition("/")[2]
        if not (token and owner and repo):
            return None
        return cls(owner, repo, token, session=session)

    @property
    def repo_url(self) -> str:
        return f"{API_URL}/repos/{self.owner}/{self.repo}"

    async def close(self) -> None:
        await self.session.aclose()

    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> Issue:
        payload: dict[str, Any] = {"title": title, "body": body}
        if labels:
            payload["labels"] = labels
        return Issue.from_api(await self._request("POST", "/issues", json=payload))

    async def get_issue(self, number: int) -> Issue:
        return Issue.from_api(await self._read(f"/issues/{number}"))

    async def update_issue_body(self, number: int, body: str) -> Issue:
        return Issue.from_api(await self._request("PATCH", f"/issues/{number}", json={"body": body}))

    async def close_issue(self, number: int) -> Issue:
        return Issue.from_api(await self._request("PATCH", f"/issues/{number}", json={"state": "closed"}))

    async def add_comment(self, issue_number: int, body: str) -> Comment:
        data = await self._request("POST", f"/issues/{issue_number}/comments", json={"body": body})
        return Comment.from_api(data)

    async def get_comment(self, comment_id: int) -> Comment:
        return Comment.from_api(await self._read(f"/issues/comments/{comment_id}"))

    async def update_comment(self, comment_id: int, body: str) -> Comment:
        data = await self._request("PATCH", f"/issues/comments/{comment_id}", json={"body": body})
        return Comment.from_api(data)

    async def get_reactions(self, comment_id: int) -> list[Reaction]:
        data = await self._read(f"/issues/comments/{comment_id}/reactions")
        return [
            Reaction(content=item.get("content", ""), user=(item.get("user") or {}).get("login", ""))
            for item in data
        ]

    async def pin_issue(self, node_id: str) -> None:
        await self._graphql("mutation($id: ID!) { pinIssue(input: {issueId: $id}) { issue { id } } }", {"id": node_id})

    async def unpin_issue(self, node_id: str) -> None:
        await self._graphql("mutation($id: ID!) { unpinIssue(input: {issueId: $id}) { issue { id } } }", {"id": node_id})

    async def get_readme(self) -> tuple[str, str | None]:
        """Return README text and its blob sha; empty text when there is none."""
        try:
            data = await self._read(f"/contents/{README_PATH}")
        except GitHubAPIError as exc:
            if exc.status == 404:
                return "", None
            raise
        content = base64.b64decode(data.get("content", "")).decode("utf-8")
        return content, data.get("sha")

    async def update_readme(self, content: str, message: str, *, sha: str | None = None) -> None:
        if sha is None:
            _, sha = await self.get_readme()
        payload: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
        }
        if sha:
            payload["sha"] = sha
        await self._request("PUT", f"/contents/{README_PATH}", json=payload)
        logger.info("README updated: %s", message)

    async def _read(self, path: str) -> Any:
        def on_retry(attempt: int, error: BaseException) -> None:
            if is_rate_limited(error):
                logger.warning("GitHub rate limited on %s (attempt %s)", path, attempt)
            log_error(error, f"github:GET {path}")

        return await with_retry(
            lambda: self._request("GET", path),
            self.retry_attempts,
            delay=self.retry_delay,
            on_retry=on_retry,
            should_retry=lambda error: bool(getattr(error, "retryable", False)),
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        return await self._send(method, f"{self.repo_url}{path}", **kwargs)

    async def _graphql(self, query: str, variables: dict[str, Any]) -> Any:
        data = await self._send("POST", f"{API_URL}/graphql", json={"query": query, "variables": variables})
        if data.get("errors"):
            message = data["errors"][0].get("message", "GraphQL error")
            raise GitHubAPIError(message, 422, context={"query": query.split("(")[0]})
        return data.get("data")

    async def _send(self, method: str, url: str, **kwargs: Any) -> Any:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/vnd.github+json",
        }
        try:
            response = await self.session.request(method, url, headers=headers, **kwargs)
        except httpx.TransportError as exc:
            raise GitHubAPIError(f"GitHub request failed: {exc}", 503, context={"url": url}) from exc
        if response.is_error:
            try:
                message = response.json().get("message") or response.reason_phrase
            except ValueError:
                message = response.reason_phrase
            raise GitHubAPIError(message, response.status_code, context={"method": method, "url": url})
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()
