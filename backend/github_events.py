# github_events.py — Normalizes GitHub webhook payloads into internal event variants
# Provider field names stop here: the reconciler only ever sees the
# dataclasses below.
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple, Union

from errors import ValidationError

BRANCH_REF_PREFIX = "refs/heads/"

PR_STATES = ("open", "closed", "merged")
CI_STATES = ("pending", "success", "failure", "error", "cancelled")


@dataclass(frozen=True)
class PushEvent:
    sha: str
    message: str
    author: str
    html_url: str
    branch: Optional[str] = None
    kind: str = "push"

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    @property
    def headline(self) -> str:
        return self.message.split("\n", 1)[0]


@dataclass(frozen=True)
class PullRequestEvent:
    number: int
    title: str
    body: str
    state: str
    head_ref: str
    head_sha: str
    base_ref: str
    html_url: str
    author: str = ""
    kind: str = "pull_request"


@dataclass(frozen=True)
class StatusEvent:
    sha: str
    state: str
    context: str
    description: str
    target_url: Optional[str] = None
    kind: str = "status"

    @property
    def short_sha(self) -> str:
        return self.sha[:7]

    def ci_status(self) -> dict:
        return {
            "state": self.state,
            "context": self.context,
            "description": self.description,
            "target_url": self.target_url,
        }


@dataclass(frozen=True)
class BranchCreateEvent:
    branch: str
    kind: str = "create"


@dataclass(frozen=True)
class UnknownEvent:
    event_type: str
    kind: str = "unknown"


NormalizedEvent = Union[PushEvent, PullRequestEvent, StatusEvent, BranchCreateEvent, UnknownEvent]


def _dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _str(value: Any, default: str = "") -> str:
    return value if isinstance(value, str) else default


def branch_from_ref(ref: Any) -> Optional[str]:
    """Strip ``refs/heads/``; tags and anything else are not branches."""
    if not isinstance(ref, str) or not ref.startswith(BRANCH_REF_PREFIX):
        return None
    return ref[len(BRANCH_REF_PREFIX):] or None


def extract_repository(payload: Any) -> Tuple[str, str]:
    """Return ``(owner, name)`` of the repository a delivery belongs to."""
    repository = _dict(_dict(payload).get("repository"))
    if not repository:
        raise ValidationError("Payload has no repository", code="missing_repository", field="repository")

    owner = _str(_dict(repository.get("owner")).get("login"))
    if not owner:
        full_name = _str(repository.get("full_name"))
        owner = full_name.split("/", 1)[0] if "/" in full_name else ""
    name = _str(repository.get("name"))
    if not owner or not name:
        raise ValidationError(
            "Repository owner and name are required",
            code="invalid_repository_fields",
            field="repository.owner" if not owner else "repository.name",
        )
    return owner, name


def _normalize_push(payload: Dict[str, Any]) -> NormalizedEvent:
    if payload.get("deleted"):
        # Branch deletion: nothing was committed
        return UnknownEvent(event_type="push")

    commit = _dict(payload.get("head_commit"))
    if not commit:
        commits = payload.get("commits")
        if isinstance(commits, list) and commits:
            commit = _dict(commits[0])

    sha = _str(commit.get("id")) or _str(payload.get("after"))
    if not sha:
        raise ValidationError("Push has no commit sha", field="head_commit.id")

    url = _str(commit.get("url"))
    return PushEvent(
        sha=sha,
        message=_str(commit.get("message")),
        author=_str(_dict(commit.get("author")).get("name")),
        html_url=url.replace("/api.github.com", "/github.com"),
        branch=branch_from_ref(payload.get("ref")),
    )


def _normalize_pull_request(payload: Dict[str, Any]) -> PullRequestEvent:
    pr = _dict(payload.get("pull_request"))
    number = pr.get("number", payload.get("number"))
    if isinstance(number, bool) or not isinstance(number, int):
        raise ValidationError("Pull request has no number", field="pull_request.number")

    if payload.get("action") == "closed" and pr.get("merged"):
        state = "merged"
    else:
        state = _str(pr.get("state"), "open")
        if state not in PR_STATES:
            state = "open"

    head = _dict(pr.get("head"))
    return PullRequestEvent(
        number=number,
        title=_str(pr.get("title")),
        body=_str(pr.get("body")),
        state=state,
        head_ref=_str(head.get("ref")),
        head_sha=_str(head.get("sha")),
        base_ref=_str(_dict(pr.get("base")).get("ref")),
        html_url=_str(pr.get("html_url")),
        author=_str(_dict(pr.get("user")).get("login")),
    )


def _normalize_status(payload: Dict[str, Any]) -> StatusEvent:
    sha = _str(payload.get("sha"))
    if not sha:
        raise ValidationError("Status has no commit sha", field="sha")
    state = _str(payload.get("state"))
    if state not in CI_STATES:
        raise ValidationError(f"Unsupported CI state '{state}'", field="state")
    target_url = payload.get("target_url")
    return StatusEvent(
        sha=sha,
        state=state,
        context=_str(payload.get("context"), "default"),
        description=_str(payload.get("description")),
        target_url=target_url if isinstance(target_url, str) else None,
    )


def _normalize_create(payload: Dict[str, Any]) -> NormalizedEvent:
    if payload.get("ref_type") != "branch":
        return UnknownEvent(event_type="create")
    ref = _str(payload.get("ref"))
    branch = branch_from_ref(ref) or ref
    if not branch:
        return UnknownEvent(event_type="create")
    return BranchCreateEvent(branch=branch)


_NORMALIZERS = {
    "push": _normalize_push,
    "pull_request": _normalize_pull_request,
    "status": _normalize_status,
    "create": _normalize_create,
}


def normalize(event_type: str, payload: Any) -> NormalizedEvent:
    """Map a GitHub ``X-GitHub-Event`` + JSON payload to a NormalizedEvent.

    Unrecognised event types become ``UnknownEvent``. Missing optional
    fields fall back to empty values; a missing required field raises
    ``ValidationError`` naming it.
    """
    normalizer = _NORMALIZERS.get(event_type)
    if normalizer is None:
        return UnknownEvent(event_type=event_type or "")
    if not isinstance(payload, dict):
        raise ValidationError("Payload must be a JSON object", field="body")
    return normalizer(payload)
