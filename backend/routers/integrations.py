# routers/integrations.py — Repository integrations for boards
# Features:
# - GitHub token verification and repository listing
# - Link a repository to a board (server-generated webhook secret + remote webhook)
# - Branch -> column mapping, auto-create / auto-close switches
# - Unlink with best-effort remote webhook removal
import os
import secrets
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user, require_board_access, CurrentUser
from board_store import BoardStore
from database import get_db_session
from dependencies import get_github_client
from errors import ConflictError, NotFoundError, TransientUpstreamError, ValidationError
from github_client import GitHubClient, is_valid_repo_part
from integration_registry import IntegrationRecord, IntegrationRegistry
from models import IntegrationProvider

router = APIRouter(prefix="/api", tags=["Integrations"])
logger = logging.getLogger("taskforge.integrations")

BACKEND_URL = os.getenv("BACKEND_URL", "")


# --- Schemas ---

class TokenRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    access_token: str = Field(..., min_length=1, alias="accessToken")


class GitHubIntegrationCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    full_name: str = Field(..., min_length=3, max_length=201, alias="fullName")
    access_token: str = Field(..., min_length=1, alias="accessToken")


class BranchMappingUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Validated by the registry so the error shape matches the rest of the API
    branch_mapping: Any = Field(..., alias="branchMapping")


class IntegrationConfigUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    auto_create_cards: Any = Field(default=None, alias="autoCreateCards")
    auto_close_cards: Any = Field(default=None, alias="autoCloseCards")


# --- Helpers ---

def _split_full_name(full_name: str) -> List[str]:
    parts = full_name.strip().split("/")
    if len(parts) != 2 or not all(is_valid_repo_part(p) for p in parts):
        raise ValidationError(
            "Repository must be given as owner/repo", code="bad_request", field="fullName"
        )
    return parts


def _webhook_url(request: Request) -> str:
    base = BACKEND_URL or str(request.base_url)
    return f"{base.rstrip('/')}/webhooks/{IntegrationProvider.GITHUB.value}"


async def _integration_with_access(
    integration_id: str, db: AsyncSession, user: CurrentUser
) -> IntegrationRecord:
    integration = await IntegrationRegistry(db).require(integration_id)
    if not await BoardStore(db).has_access(integration.board_id, user.id):
        raise HTTPException(403, "No access to this board")
    return integration


# ============================================================
# GITHUB ACCOUNT
# ============================================================

@router.post("/integrations/github/verify-token")
async def verify_github_token(
    data: TokenRequest,
    user: CurrentUser = Depends(get_current_user),
    github: GitHubClient = Depends(get_github_client),
):
    gh_user = await github.get_user(data.access_token)
    return {"valid": gh_user is not None, "user": gh_user}


@router.post("/integrations/github/repos")
async def list_github_repos(
    data: TokenRequest,
    user: CurrentUser = Depends(get_current_user),
    github: GitHubClient = Depends(get_github_client),
):
    repos = await github.list_user_repos(data.access_token)
    return {"repos": [r.to_dict() for r in repos], "total": len(repos)}


# ============================================================
# BOARD INTEGRATIONS
# ============================================================

@router.get("/boards/{board_id}/integrations")
async def list_board_integrations(
    board_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_board_access),
):
    integrations = await IntegrationRegistry(db).list_for_board(board_id)
    return {"integrations": [i.to_public_dict() for i in integrations]}


@router.post("/boards/{board_id}/integrations/github", status_code=201)
async def create_github_integration(
    board_id: str,
    data: GitHubIntegrationCreate,
    request: Request,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(require_board_access),
    github: GitHubClient = Depends(get_github_client),
):
    owner, name = _split_full_name(data.full_name)
    registry = IntegrationRegistry(db)
    provider = IntegrationProvider.GITHUB.value

    if await registry.find_by_repo(provider, owner, name):
        raise ConflictError(f"{owner}/{name} is already linked to a board", code="integration_exists")

    repo = await github.get_repo(owner, name, data.access_token)
    if repo is None:
        raise NotFoundError(
            f"Repository {owner}/{name} not found or not accessible", code="repository_not_found"
        )

    webhook_secret = secrets.token_hex(32)
    webhook_url = _webhook_url(request)
    hook = await github.create_webhook(owner, name, webhook_url, webhook_secret, data.access_token)

    try:
        integration = await registry.create(
            board_id=board_id,
            provider=provider,
            repo_owner=owner,
            repo_name=name,
            webhook_secret=webhook_secret,
            access_token=data.access_token,
            webhook_url=webhook_url,
            webhook_id=str(hook["id"]) if hook.get("id") is not None else None,
        )
    except ConflictError:
        # Lost a race with another link of the same repository
        if hook.get("id") is not None:
            await _remove_remote_webhook(owner, name, str(hook["id"]), data.access_token, github)
        raise

    logger.info(f"GitHub integration {owner}/{name} linked to board={board_id[:8]} by user={user.id[:8]}")
    return {"integration": integration.to_public_dict()}


# ============================================================
# INTEGRATION SETTINGS
# ============================================================

@router.get("/integrations/{integration_id}/branches")
async def list_integration_branches(
    integration_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
    github: GitHubClient = Depends(get_github_client),
):
    integration = await _integration_with_access(integration_id, db, user)
    branches = await github.list_branches(
        integration.repo_owner, integration.repo_name, integration.access_token or ""
    )
    return {"branches": branches}


@router.put("/integrations/{integration_id}/branch-mapping")
async def update_branch_mapping(
    integration_id: str,
    data: BranchMappingUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    await _integration_with_access(integration_id, db, user)
    integration = await IntegrationRegistry(db).update_branch_mapping(integration_id, data.branch_mapping)
    return {"integration": integration.to_public_dict()}


@router.put("/integrations/{integration_id}/config")
async def update_integration_config(
    integration_id: str,
    data: IntegrationConfigUpdate,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
):
    await _integration_with_access(integration_id, db, user)
    integration = await IntegrationRegistry(db).update_config(
        integration_id,
        auto_create_cards=data.auto_create_cards,
        auto_close_cards=data.auto_close_cards,
    )
    return {"integration": integration.to_public_dict()}


async def _remove_remote_webhook(
    owner: str, name: str, webhook_id: str, token: str, github: GitHubClient
) -> bool:
    try:
        return await github.delete_webhook(owner, name, webhook_id, token)
    except TransientUpstreamError as e:
        logger.warning(f"Could not remove webhook {webhook_id} from {owner}/{name}: {e.message}")
        return False


@router.delete("/integrations/{integration_id}")
async def delete_integration(
    integration_id: str,
    db: AsyncSession = Depends(get_db_session),
    user: CurrentUser = Depends(get_current_user),
    github: GitHubClient = Depends(get_github_client),
):
    integration = await _integration_with_access(integration_id, db, user)
    webhook_removed: Optional[bool] = None
    if integration.webhook_id and integration.access_token:
        webhook_removed = await _remove_remote_webhook(
            integration.repo_owner, integration.repo_name,
            integration.webhook_id, integration.access_token, github,
        )
    await IntegrationRegistry(db).delete(integration_id)
    logger.info(f"Integration {integration.full_name} removed from board={integration.board_id[:8]}")
    result: Dict[str, Any] = {"status": "deleted", "id": integration_id}
    if webhook_removed is not None:
        result["webhookRemoved"] = webhook_removed
    return result
