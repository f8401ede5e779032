# integration_registry.py — Integration Registry: repository -> board link lookups and updates
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from models import Integration, IntegrationProvider, BOARD_LISTS, new_uuid, utcnow

logger = logging.getLogger("taskforge.integrations")


@dataclass(frozen=True)
class BranchRule:
    branch: str
    column: str


@dataclass(frozen=True)
class IntegrationRecord:
    """Read-only copy of an Integration, valid for the current request only"""
    integration_id: str
    board_id: str
    provider: str
    repo_owner: str
    repo_name: str
    webhook_secret: Optional[str] = None
    access_token: Optional[str] = None
    webhook_url: Optional[str] = None
    webhook_id: Optional[str] = None
    branch_mapping: List[BranchRule] = field(default_factory=list)
    auto_create_cards: bool = True
    auto_close_cards: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def full_name(self) -> str:
        return f"{self.repo_owner}/{self.repo_name}"

    def column_for_branch(self, branch: Optional[str], default: str = "todo") -> str:
        """First matching rule wins; unmapped branches land in ``default``."""
        if branch:
            for rule in self.branch_mapping:
                if rule.branch == branch:
                    return rule.column
        return default

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "integrationId": self.integration_id,
            "boardId": self.board_id,
            "provider": self.provider,
            "repoOwner": self.repo_owner,
            "repoName": self.repo_name,
            "webhookUrl": self.webhook_url,
            "branchMapping": [{"branch": r.branch, "column": r.column} for r in self.branch_mapping],
            "autoCreateCards": self.auto_create_cards,
            "autoCloseCards": self.auto_close_cards,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


def _provider_value(provider) -> str:
    return provider.value if hasattr(provider, "value") else str(provider)


def to_record(row: Integration) -> IntegrationRecord:
    return IntegrationRecord(
        integration_id=row.id,
        board_id=row.board_id,
        provider=_provider_value(row.provider),
        repo_owner=row.repo_owner,
        repo_name=row.repo_name,
        webhook_secret=row.webhook_secret,
        access_token=row.access_token,
        webhook_url=row.webhook_url,
        webhook_id=row.webhook_id,
        branch_mapping=[
            BranchRule(branch=m["branch"], column=m["column"])
            for m in (row.branch_mapping or [])
            if isinstance(m, dict) and m.get("branch") and m.get("column") in BOARD_LISTS
        ],
        auto_create_cards=bool(row.auto_create_cards),
        auto_close_cards=bool(row.auto_close_cards),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def validate_branch_mapping(mapping: Any) -> List[Dict[str, str]]:
    if not isinstance(mapping, list):
        raise ValidationError("branchMapping must be a list", code="bad_request", field="branchMapping")
    cleaned = []
    for entry in mapping:
        if not isinstance(entry, dict):
            raise ValidationError("Each mapping must be an object", code="bad_request", field="branchMapping")
        branch = entry.get("branch")
        column = entry.get("column")
        if not isinstance(branch, str) or not branch.strip():
            raise ValidationError("Each mapping needs a branch name", code="bad_request", field="branch")
        if column not in BOARD_LISTS:
            raise ValidationError(f"Invalid column: {column}", code="bad_request", field="column")
        cleaned.append({"branch": branch.strip(), "column": column})
    return cleaned


def parse_provider(provider: str) -> IntegrationProvider:
    try:
        return IntegrationProvider(provider)
    except ValueError:
        raise NotFoundError(f"Unknown provider '{provider}'", code="unsupported_provider")


class IntegrationRegistry:
    """Read-through lookups (no caching) plus the config mutations"""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _get(self, integration_id: str) -> Optional[Integration]:
        result = await self.session.execute(
            select(Integration).where(Integration.id == integration_id)
        )
        return result.scalar_one_or_none()

    async def find_by_repo(self, provider: str, owner: str, name: str) -> Optional[IntegrationRecord]:
        result = await self.session.execute(
            select(Integration)
            .where(
                Integration.provider == parse_provider(provider),
                Integration.repo_owner == owner,
                Integration.repo_name == name,
            )
            .order_by(Integration.created_at)
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return to_record(row) if row else None

    async def find_by_id(self, integration_id: str) -> Optional[IntegrationRecord]:
        row = await self._get(integration_id)
        return to_record(row) if row else None

    async def require(self, integration_id: str) -> IntegrationRecord:
        record = await self.find_by_id(integration_id)
        if record is None:
            raise NotFoundError("Integration not found", code="integration_not_found")
        return record

    async def list_for_board(self, board_id: str) -> List[IntegrationRecord]:
        result = await self.session.execute(
            select(Integration)
            .where(Integration.board_id == board_id)
            .order_by(Integration.created_at.desc())
        )
        return [to_record(row) for row in result.scalars().all()]

    async def create(
        self,
        board_id: str,
        provider: str,
        repo_owner: str,
        repo_name: str,
        webhook_secret: str,
        access_token: Optional[str] = None,
        webhook_url: Optional[str] = None,
        webhook_id: Optional[str] = None,
    ) -> IntegrationRecord:
        """Store a new integration; a repository can only be linked once."""
        if await self.find_by_repo(provider, repo_owner, repo_name):
            raise ConflictError(
                f"{repo_owner}/{repo_name} is already linked to a board",
                code="integration_exists",
            )
        row = Integration(
            id=new_uuid(),
            board_id=board_id,
            provider=parse_provider(provider),
            repo_owner=repo_owner,
            repo_name=repo_name,
            webhook_secret=webhook_secret,
            access_token=access_token,
            webhook_url=webhook_url,
            webhook_id=webhook_id,
            branch_mapping=[],
            auto_create_cards=True,
            auto_close_cards=True,
        )
        self.session.add(row)
        try:
            await self.session.commit()
        except IntegrityError as e:
            await self.session.rollback()
            raise ConflictError(
                f"{repo_owner}/{repo_name} is already linked to a board",
                code="integration_exists",
            ) from e
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("Could not store integration") from e
        await self.session.refresh(row)
        logger.info(f"Integration created: {repo_owner}/{repo_name} -> board={board_id[:8]}")
        return to_record(row)

    async def _save(self, row: Integration) -> IntegrationRecord:
        row.updated_at = utcnow()
        try:
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("Could not update integration") from e
        await self.session.refresh(row)
        return to_record(row)

    async def update_branch_mapping(self, integration_id: str, mapping: Any) -> IntegrationRecord:
        cleaned = validate_branch_mapping(mapping)
        row = await self._get(integration_id)
        if row is None:
            raise NotFoundError("Integration not found", code="integration_not_found")
        row.branch_mapping = cleaned
        return await self._save(row)

    async def update_config(
        self,
        integration_id: str,
        auto_create_cards: Any = None,
        auto_close_cards: Any = None,
    ) -> IntegrationRecord:
        row = await self._get(integration_id)
        if row is None:
            raise NotFoundError("Integration not found", code="integration_not_found")
        # Only real booleans are applied
        if isinstance(auto_create_cards, bool):
            row.auto_create_cards = auto_create_cards
        if isinstance(auto_close_cards, bool):
            row.auto_close_cards = auto_close_cards
        return await self._save(row)

    async def delete(self, integration_id: str) -> None:
        try:
            await self.session.execute(delete(Integration).where(Integration.id == integration_id))
            await self.session.commit()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise PersistenceError("Could not delete integration") from e
