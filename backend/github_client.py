# github_client.py — GitHub REST client (repos, webhooks, branches, CI status)
import os
import re
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from errors import TransientUpstreamError

logger = logging.getLogger("taskforge.github")

GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_TIMEOUT_SECONDS = float(os.getenv("GITHUB_TIMEOUT_SECONDS", "10"))
USER_AGENT = "TaskForge/1.0"
WEBHOOK_EVENTS = ["push", "pull_request", "status", "create"]

_NAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
_SHA_RE = re.compile(r"^[0-9a-fA-F]{40}$")


def is_valid_repo_part(value: Any) -> bool:
    """Owner / repository names follow GitHub's own character rules."""
    return isinstance(value, str) and bool(_NAME_RE.fullmatch(value)) and value not in (".", "..")


def is_valid_sha(value: Any) -> bool:
    return isinstance(value, str) and bool(_SHA_RE.fullmatch(value))


@dataclass(frozen=True)
class GitHubRepo:
    owner: str
    name: str
    full_name: str
    default_branch: str
    html_url: str

    def to_dict(self) -> dict:
        return {
            "owner": self.owner,
            "name": self.name,
            "full_name": self.full_name,
            "default_branch": self.default_branch,
            "html_url": self.html_url,
        }


@dataclass(frozen=True)
class CIStatus:
    state: str
    context: str
    description: str
    target_url: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "state": self.state,
            "context": self.context,
            "description": self.description,
            "target_url": self.target_url,
        }


class WebhookRegistrationError(TransientUpstreamError):
    code = "webhook_creation_failed"


def _webhook_error_message(status: int, body: Dict[str, Any]) -> str:
    if status in (401, 403):
        return "Insufficient permissions: the token needs admin:repo_hook"
    if status == 404:
        return "Repository not found or not accessible"
    if status == 422:
        return body.get("message") or "Invalid webhook URL or duplicate webhook"
    if body.get("message"):
        return body["message"]
    errors = body.get("errors")
    if isinstance(errors, list) and errors:
        return ", ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
    return "Could not create the webhook"


def _repo_from_json(data: Dict[str, Any]) -> GitHubRepo:
    return GitHubRepo(
        owner=(data.get("owner") or {}).get("login", ""),
        name=data.get("name", ""),
        full_name=data.get("full_name", ""),
        default_branch=data.get("default_branch", ""),
        html_url=data.get("html_url", ""),
    )


class GitHubClient:
    """Async GitHub API client with a bounded per-request timeout.

    One instance is created per process by the application and shared by
    every request; pass ``transport`` to route requests elsewhere (tests).
    """

    def __init__(
        self,
        base_url: str = GITHUB_API_URL,
        timeout: float = GITHUB_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/vnd.github.v3+json", "User-Agent": USER_AGENT},
        )

    async def close(self):
        await self._client.aclose()

    async def _request(self, method: str, path: str, token: str, **kwargs) -> httpx.Response:
        headers = {"Authorization": f"token {token}"} if token else {}
        try:
            return await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning(f"GitHub {method} {path} timed out")
            raise TransientUpstreamError("GitHub request timed out", code="upstream_timeout") from e
        except httpx.HTTPError as e:
            logger.warning(f"GitHub {method} {path} failed: {e}")
            raise TransientUpstreamError(f"GitHub request failed: {str(e)[:200]}") from e

    async def get_user(self, token: str) -> Optional[Dict[str, str]]:
        resp = await self._request("GET", "/user", token)
        if resp.status_code != 200:
            return None
        data = resp.json()
        return {"login": data.get("login", ""), "avatar_url": data.get("avatar_url", "")}

    async def list_user_repos(self, token: str, repo_type: str = "all") -> List[GitHubRepo]:
        repos: List[GitHubRepo] = []
        page, per_page = 1, 100
        while True:
            resp = await self._request(
                "GET", "/user/repos", token,
                params={"type": repo_type, "per_page": per_page, "page": page,
                        "sort": "updated", "direction": "desc"},
            )
            if resp.status_code != 200:
                break
            data = resp.json()
            if not data:
                break
            repos.extend(_repo_from_json(r) for r in data)
            if len(data) < per_page:
                break
            page += 1
        return sorted(repos, key=lambda r: r.full_name.lower())

    async def get_repo(self, owner: str, repo: str, token: str) -> Optional[GitHubRepo]:
        if not is_valid_repo_part(owner) or not is_valid_repo_part(repo):
            logger.warning(f"Invalid GitHub owner or repo: {owner!r}/{repo!r}")
            return None
        resp = await self._request("GET", f"/repos/{owner}/{repo}", token)
        if resp.status_code != 200:
            logger.info(f"GitHub repo lookup {owner}/{repo} → {resp.status_code}")
            return None
        return _repo_from_json(resp.json())

    async def create_webhook(self, owner: str, repo: str, webhook_url: str, secret: str, token: str) -> Dict[str, Any]:
        """Register a JSON webhook for push, pull_request, status and create events."""
        if not is_valid_repo_part(owner) or not is_valid_repo_part(repo):
            raise WebhookRegistrationError(f"Invalid owner or repo name: {owner}/{repo}")
        resp = await self._request(
            "POST", f"/repos/{owner}/{repo}/hooks", token,
            json={
                "name": "web",
                "active": True,
                "events": WEBHOOK_EVENTS,
                "config": {
                    "url": webhook_url,
                    "content_type": "json",
                    "secret": secret,
                    "insecure_ssl": "0",
                },
            },
        )
        if resp.status_code not in (200, 201):
            try:
                body = resp.json()
            except ValueError:
                body = {}
            message = _webhook_error_message(resp.status_code, body if isinstance(body, dict) else {})
            logger.error(f"Webhook creation failed for {owner}/{repo}: {resp.status_code} {message}")
            raise WebhookRegistrationError(message)
        data = resp.json()
        return {"id": data.get("id"), "url": data.get("url")}

    async def delete_webhook(self, owner: str, repo: str, webhook_id: str, token: str) -> bool:
        if not is_valid_repo_part(owner) or not is_valid_repo_part(repo):
            return False
        resp = await self._request("DELETE", f"/repos/{owner}/{repo}/hooks/{webhook_id}", token)
        return resp.status_code in (204, 404)

    async def list_branches(self, owner: str, repo: str, token: str) -> List[str]:
        if not is_valid_repo_part(owner) or not is_valid_repo_part(repo):
            return []
        resp = await self._request("GET", f"/repos/{owner}/{repo}/branches", token, params={"per_page": 100})
        if resp.status_code != 200:
            return []
        return sorted(b.get("name", "") for b in resp.json())

    async def get_ci_status(self, owner: str, repo: str, sha: str, token: str) -> List[CIStatus]:
        """Combined commit status; raises TransientUpstreamError on network failure."""
        if not is_valid_sha(sha):
            logger.warning(f"Invalid SHA for CI status lookup: {sha!r}")
            return []
        if not is_valid_repo_part(owner) or not is_valid_repo_part(repo):
            return []
        resp = await self._request("GET", f"/repos/{owner}/{repo}/commits/{sha}/status", token)
        if resp.status_code != 200:
            return []
        try:
            body = resp.json()
        except ValueError:
            logger.warning(f"Non-JSON CI status body for {owner}/{repo}@{sha[:7]}")
            return []
        statuses = body.get("statuses") if isinstance(body, dict) else None
        if not isinstance(statuses, list):
            return []
        return [
            CIStatus(
                state=s.get("state", "pending"),
                context=s.get("context", ""),
                description=s.get("description") or "",
                target_url=s.get("target_url"),
            )
            for s in statuses
            if isinstance(s, dict)
        ]
