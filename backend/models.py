# models.py — Database models for the TaskForge board sync backend
# - Boards with three positional card lists (todo / doing / done)
# - One row per card; list membership is the list_name column
# - Provenance references (commit / PR mentions) as their own rows
# - Git provider integrations, unique per repository

import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum
from sqlalchemy import (
    Column, String, DateTime, JSON, Boolean, Integer,
    Enum as SQLEnum, ForeignKey, Text, Index, UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def new_uuid():
    return str(uuid.uuid4())


# ============================================================
# ENUMS
# ============================================================

class IntegrationProvider(str, PyEnum):
    GITHUB = "github"
    GITLAB = "gitlab"
    BITBUCKET = "bitbucket"


class BoardList(str, PyEnum):
    TODO = "todo"
    DOING = "doing"
    DONE = "done"


BOARD_LISTS = [lst.value for lst in BoardList]


class CardType(str, PyEnum):
    COMMIT = "commit"
    PULL_REQUEST = "pull_request"
    BRANCH = "branch"


# ============================================================
# BOARDS
# ============================================================

class Board(Base):
    """Kanban board shared by its owner and members"""
    __tablename__ = "boards"

    id = Column(String, primary_key=True, default=new_uuid)
    name = Column(String, nullable=True)
    owner_id = Column(String, nullable=False, index=True)
    members = Column(JSON, nullable=False, default=list)  # user ids besides the owner
    wip_limits = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    cards = relationship("BoardCard", back_populates="board", cascade="all, delete-orphan")
    integrations = relationship("Integration", back_populates="board", cascade="all, delete-orphan")


class BoardCard(Base):
    """A card sitting in one of the board's three lists"""
    __tablename__ = "board_cards"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    card_id = Column(String, nullable=False)  # id exposed to clients, e.g. "pr-12"
    list_name = Column(String, nullable=False, default=BoardList.TODO.value)
    position = Column(Integer, nullable=False, default=0)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)

    # Git metadata written by the sync engine
    card_type = Column(String, nullable=True)
    sha = Column(String, nullable=True)
    branch = Column(String, nullable=True)
    pr_number = Column(Integer, nullable=True)
    pr_state = Column(String, nullable=True)
    url = Column(String, nullable=True)
    ci_status = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow)

    board = relationship("Board", back_populates="cards")

    __table_args__ = (
        UniqueConstraint("board_id", "card_id", name="uq_board_card"),
        Index("idx_card_board_list_pos", "board_id", "list_name", "position"),
        Index("idx_card_board_sha", "board_id", "sha"),
    )


class CardReference(Base):
    """A commit or pull request that mentioned a card"""
    __tablename__ = "card_references"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False)
    card_id = Column(String, nullable=False)
    source_type = Column(String, nullable=False)  # "commit" | "pull_request"
    source_key = Column(String, nullable=False)  # commit sha or PR number
    url = Column(String, nullable=True)
    message = Column(String, nullable=True)
    title = Column(String, nullable=True)
    context = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    __table_args__ = (
        UniqueConstraint("board_id", "card_id", "source_type", "source_key", name="uq_card_reference"),
        Index("idx_reference_board_card", "board_id", "card_id"),
    )


# ============================================================
# GIT PROVIDER INTEGRATIONS
# ============================================================

class Integration(Base):
    """Link between a board and one external repository"""
    __tablename__ = "integrations"

    id = Column(String, primary_key=True, default=new_uuid)
    board_id = Column(String, ForeignKey("boards.id", ondelete="CASCADE"), nullable=False, index=True)
    provider = Column(
        SQLEnum(IntegrationProvider, values_callable=lambda e: [m.value for m in e]),
        nullable=False, default=IntegrationProvider.GITHUB,
    )
    repo_owner = Column(String, nullable=False)
    repo_name = Column(String, nullable=False)
    access_token = Column(String, nullable=True)
    webhook_secret = Column(String, nullable=True)
    webhook_url = Column(String, nullable=True)
    webhook_id = Column(String, nullable=True)  # registration id on the provider side
    branch_mapping = Column(JSON, nullable=False, default=list)  # [{"branch": ..., "column": ...}]
    auto_create_cards = Column(Boolean, nullable=False, default=True)
    auto_close_cards = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    board = relationship("Board", back_populates="integrations")

    __table_args__ = (
        UniqueConstraint("provider", "repo_owner", "repo_name", name="uq_integration_repo"),
    )
