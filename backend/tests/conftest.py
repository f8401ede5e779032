# tests/conftest.py — Shared test fixtures
import os
import json
import uuid
from typing import Any, Callable, List, Optional, Tuple

import httpx
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

# Use SQLite for tests
TEST_DB_URL = "sqlite+aiosqlite:///./test_taskforge.db"
os.environ["DATABASE_URL"] = TEST_DB_URL
os.environ["JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only-min-32-chars"
os.environ["ENVIRONMENT"] = "test"
os.environ["BACKEND_URL"] = "https://sync.example.test"

from models import Base
from auth import AuthService
from board_store import BoardStore, CardDraft, PushCard
from database import get_db_session
from dependencies import get_broadcaster, get_github_client
from github_client import GitHubClient
from integration_registry import IntegrationRegistry
from signatures import compute_signature
from main import app

WEBHOOK_SECRET = "s3cr3t-webhook-key"
REPO_OWNER = "octo-org"
REPO_NAME = "widgets"
HEAD_SHA = "a" * 40


class RecordingSink:
    """Broadcast sink that keeps every emitted event"""

    def __init__(self):
        self.events: List[Tuple[str, str, Any]] = []

    async def emit(self, board_id: str, event: str, payload: Any) -> None:
        self.events.append((board_id, event, payload))

    def of_type(self, event: str) -> List[Tuple[str, str, Any]]:
        return [e for e in self.events if e[1] == event]


def github_transport(handler: Optional[Callable[[httpx.Request], httpx.Response]] = None):
    """MockTransport answering 404 unless ``handler`` says otherwise"""
    def _default(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"message": "Not Found"})
    return httpx.MockTransport(handler or _default)


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def sink():
    return RecordingSink()


@pytest_asyncio.fixture
async def github():
    client = GitHubClient(base_url="https://api.github.test", transport=github_transport())
    yield client
    await client.close()


@pytest_asyncio.fixture(scope="function")
async def client(session_factory, sink, github):
    """HTTP test client with overridden DB, broadcaster and GitHub dependencies"""

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = override_get_db
    app.dependency_overrides[get_broadcaster] = lambda: sink
    app.dependency_overrides[get_github_client] = lambda: github
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest.fixture
def owner_id():
    return str(uuid.uuid4())


@pytest_asyncio.fixture
async def board(session_factory, owner_id):
    """An empty board owned by ``owner_id``"""
    async with session_factory() as session:
        return await BoardStore(session).create_board(owner_id=owner_id, name="Sync Board")


@pytest_asyncio.fixture
async def integration(session_factory, board):
    """octo-org/widgets linked to ``board`` with auto-create and auto-close on"""
    async with session_factory() as session:
        return await IntegrationRegistry(session).create(
            board_id=board,
            provider="github",
            repo_owner=REPO_OWNER,
            repo_name=REPO_NAME,
            webhook_secret=WEBHOOK_SECRET,
            webhook_id="4242",
        )


async def seed_card(session_factory, board_id: str, list_name: str, card_id: str, **values) -> None:
    async with session_factory() as session:
        draft = CardDraft(card_id=card_id, title=values.pop("title", f"Card {card_id}"), **values)
        await BoardStore(session).update_one(board_id, [PushCard(list_name, draft)])


async def read_board(session_factory, board_id: str):
    async with session_factory() as session:
        return await BoardStore(session).find_one(board_id)


def get_auth_headers(user_id: str, email: str = "dev@taskforge.test") -> dict:
    """Generate auth headers for a user"""
    token = AuthService.create_access_token({"sub": user_id, "email": email})
    return {"Authorization": f"Bearer {token}"}


# --- webhook payloads ---

def repository(owner: str = REPO_OWNER, name: str = REPO_NAME) -> dict:
    return {"name": name, "full_name": f"{owner}/{name}", "owner": {"login": owner}}


def push_payload(message: str, sha: str = HEAD_SHA, branch: str = "feature/login") -> dict:
    return {
        "ref": f"refs/heads/{branch}",
        "after": sha,
        "repository": repository(),
        "head_commit": {
            "id": sha,
            "message": message,
            "url": f"https://github.com/{REPO_OWNER}/{REPO_NAME}/commit/{sha}",
            "author": {"name": "Dev"},
        },
    }


def pull_request_payload(
    number: int,
    title: str = "Add login",
    body: str = "",
    action: str = "opened",
    state: str = "open",
    merged: bool = False,
) -> dict:
    return {
        "action": action,
        "number": number,
        "repository": repository(),
        "pull_request": {
            "number": number,
            "title": title,
            "body": body,
            "state": state,
            "merged": merged,
            "html_url": f"https://github.com/{REPO_OWNER}/{REPO_NAME}/pull/{number}",
            "head": {"ref": "feature/login", "sha": HEAD_SHA},
            "base": {"ref": "main"},
            "user": {"login": "dev"},
        },
    }


def status_payload(state: str, sha: str = HEAD_SHA, context: str = "ci/build") -> dict:
    return {
        "sha": sha,
        "state": state,
        "context": context,
        "description": f"Build {state}",
        "target_url": "https://ci.example.test/build/1",
        "repository": repository(),
    }


def webhook_headers(event: str, body: bytes, secret: Optional[str] = WEBHOOK_SECRET) -> dict:
    headers = {
        "Content-Type": "application/json",
        "X-GitHub-Event": event,
        "X-GitHub-Delivery": str(uuid.uuid4()),
    }
    if secret is not None:
        headers["X-Hub-Signature-256"] = compute_signature(body, secret)
    return headers


async def post_webhook(client: AsyncClient, event: str, payload: dict, secret: Optional[str] = WEBHOOK_SECRET):
    body = json.dumps(payload).encode("utf-8")
    return await client.post("/webhooks/github", content=body, headers=webhook_headers(event, body, secret))
