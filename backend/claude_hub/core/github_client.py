"""
GitHub Client
=============

Repository-host collaborator: comments, reviews, labels and CI state.
Owner and repository names are validated before any request is built.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Protocol

import httpx
import structlog

from claude_hub.core.config import settings as default_settings
from claude_hub.core.models import CheckSuiteObservation, CheckSuiteStatus, PullRequestRef
from claude_hub.core.sanitize import sanitize_labels, validate_ref, validate_repository

logger = structlog.get_logger()


class RepositoryHost(Protocol):
    """What the service needs from the repository host."""

    async def post_comment(self, owner: str, repo: str, issue_number: int, body: str) -> Dict[str, Any]: ...

    async def list_reviews(self, owner: str, repo: str, pr_number: int) -> List[Dict[str, Any]]: ...

    async def list_check_suites_for_ref(self, owner: str, repo: str, ref: str) -> List[CheckSuiteObservation]: ...

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> Dict[str, Any]: ...

    async def add_labels(self, owner: str, repo: str, issue_number: int, labels: Iterable[str]) -> None: ...

    async def remove_label(self, owner: str, repo: str, issue_number: int, label: str) -> None: ...


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def parse_check_suite(data: Dict[str, Any]) -> CheckSuiteObservation:
    """Check-suite JSON (REST or webhook) to an observation."""
    app = data.get("app") or {}
    pull_requests = [
        PullRequestRef(
            number=pr["number"],
            head_sha=(pr.get("head") or {}).get("sha"),
            head_ref=(pr.get("head") or {}).get("ref"),
        )
        for pr in data.get("pull_requests") or []
    ]
    return CheckSuiteObservation(
        id=data["id"],
        app_identity=app.get("name") or app.get("slug") or "unknown",
        status=CheckSuiteStatus(data.get("status") or "queued"),
        conclusion=data.get("conclusion"),
        head_sha=data.get("head_sha", ""),
        pull_requests=pull_requests,
        check_runs_count=data.get("latest_check_runs_count"),
        created_at=_parse_time(data.get("created_at")),
        updated_at=_parse_time(data.get("updated_at")),
        app_slug=app.get("slug"),
    )


class GitHubClient:
    """
    REST client for the GitHub API.

    Usage:
        client = GitHubClient(token=vault.get("GITHUB_TOKEN"))
        await client.post_comment("octo", "repo", 7, "Done")
    """

    def __init__(
        self,
        token: Optional[str],
        api_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "claude-hub",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=api_url or default_settings.GITHUB_API_URL,
            headers=headers,
            timeout=timeout or default_settings.GITHUB_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _repo_path(owner: str, repo: str) -> str:
        validate_repository(f"{owner}/{repo}")
        return f"/repos/{owner}/{repo}"

    # ======================================================================
    # Issues / comments
    # ======================================================================

    async def post_comment(self, owner: str, repo: str, issue_number: int, body: str) -> Dict[str, Any]:
        response = await self._client.post(
            f"{self._repo_path(owner, repo)}/issues/{int(issue_number)}/comments",
            json={"body": body},
        )
        response.raise_for_status()
        data = response.json()
        logger.info("github_comment_posted", repo=f"{owner}/{repo}", issue=issue_number, comment_id=data.get("id"))
        return data

    async def add_labels(self, owner: str, repo: str, issue_number: int, labels: Iterable[str]) -> None:
        cleaned = sanitize_labels(labels)
        if not cleaned:
            return
        response = await self._client.post(
            f"{self._repo_path(owner, repo)}/issues/{int(issue_number)}/labels",
            json={"labels": cleaned},
        )
        response.raise_for_status()
        logger.info("github_labels_added", repo=f"{owner}/{repo}", issue=issue_number, labels=cleaned)

    async def remove_label(self, owner: str, repo: str, issue_number: int, label: str) -> None:
        cleaned = sanitize_labels([label])
        if not cleaned:
            return
        response = await self._client.delete(
            f"{self._repo_path(owner, repo)}/issues/{int(issue_number)}/labels/{cleaned[0]}",
        )
        # Label not present is fine
        if response.status_code == 404:
            return
        response.raise_for_status()

    # ======================================================================
    # Pull requests / CI
    # ======================================================================

    async def list_reviews(self, owner: str, repo: str, pr_number: int) -> List[Dict[str, Any]]:
        """Every review on the pull request, following Link pagination."""
        reviews: List[Dict[str, Any]] = []
        response = await self._client.get(
            f"{self._repo_path(owner, repo)}/pulls/{int(pr_number)}/reviews",
            params={"per_page": 100},
        )
        while True:
            response.raise_for_status()
            reviews.extend(response.json())
            next_url = response.links.get("next", {}).get("url")
            if not next_url:
                return reviews
            response = await self._client.get(next_url)

    async def list_check_suites_for_ref(self, owner: str, repo: str, ref: str) -> List[CheckSuiteObservation]:
        validate_ref(ref)
        response = await self._client.get(
            f"{self._repo_path(owner, repo)}/commits/{ref}/check-suites",
            params={"per_page": 100},
        )
        response.raise_for_status()
        return [parse_check_suite(item) for item in response.json().get("check_suites", [])]

    async def get_combined_status(self, owner: str, repo: str, ref: str) -> Dict[str, Any]:
        validate_ref(ref)
        response = await self._client.get(f"{self._repo_path(owner, repo)}/commits/{ref}/status")
        response.raise_for_status()
        return response.json()
