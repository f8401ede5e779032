# tests/test_github_client.py — GitHub REST client tests (httpx MockTransport)
import httpx
import pytest

from errors import TransientUpstreamError
from github_client import (
    GitHubClient, WebhookRegistrationError, is_valid_repo_part, is_valid_sha,
)
from tests.conftest import github_transport

SHA = "0123456789abcdef0123456789abcdef01234567"


def _client(handler) -> GitHubClient:
    return GitHubClient(base_url="https://api.github.test", transport=github_transport(handler))


def test_repo_part_validation():
    assert is_valid_repo_part("octo-org")
    assert is_valid_repo_part("my.repo_1")
    assert not is_valid_repo_part("../etc")
    assert not is_valid_repo_part("a b")
    assert not is_valid_repo_part("")
    assert not is_valid_repo_part(None)


def test_sha_validation():
    assert is_valid_sha(SHA)
    assert not is_valid_sha(SHA[:7])
    assert not is_valid_sha("z" * 40)


@pytest.mark.asyncio
async def test_token_and_user_agent_sent():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers.get("Authorization")
        seen["agent"] = request.headers.get("User-Agent")
        return httpx.Response(200, json={"login": "octocat", "avatar_url": ""})

    gh = _client(handler)
    try:
        assert (await gh.get_user("t0k"))["login"] == "octocat"
    finally:
        await gh.close()
    assert seen["auth"] == "token t0k"
    assert seen["agent"] == "TaskForge/1.0"


@pytest.mark.asyncio
async def test_list_user_repos_paginates():
    def handler(request: httpx.Request) -> httpx.Response:
        page = int(request.url.params["page"])
        if page == 1:
            return httpx.Response(200, json=[
                {"name": f"r{i:03d}", "full_name": f"o/r{i:03d}", "owner": {"login": "o"}} for i in range(100)
            ])
        return httpx.Response(200, json=[{"name": "aaa", "full_name": "o/aaa", "owner": {"login": "o"}}])

    gh = _client(handler)
    try:
        repos = await gh.list_user_repos("t")
    finally:
        await gh.close()
    assert len(repos) == 101
    assert repos[0].full_name == "o/aaa"


@pytest.mark.asyncio
async def test_get_repo_rejects_invalid_names_without_request():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    gh = _client(handler)
    try:
        assert await gh.get_repo("..", "x", "t") is None
    finally:
        await gh.close()
    assert calls == []


@pytest.mark.asyncio
async def test_create_webhook_error_messages():
    gh = _client(lambda request: httpx.Response(422, json={"message": "Hook already exists on this repository"}))
    try:
        with pytest.raises(WebhookRegistrationError) as exc:
            await gh.create_webhook("o", "r", "https://x/webhooks/github", "s", "t")
    finally:
        await gh.close()
    assert exc.value.message == "Hook already exists on this repository"
    assert exc.value.status_code == 502


@pytest.mark.asyncio
async def test_delete_webhook_treats_missing_hook_as_removed():
    gh = _client(lambda request: httpx.Response(404))
    try:
        assert await gh.delete_webhook("o", "r", "9", "t") is True
    finally:
        await gh.close()


@pytest.mark.asyncio
async def test_get_ci_status():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == f"/repos/o/r/commits/{SHA}/status"
        return httpx.Response(200, json={"statuses": [
            {"state": "success", "context": "ci/test", "description": None, "target_url": "https://ci/1"},
        ]})

    gh = _client(handler)
    try:
        statuses = await gh.get_ci_status("o", "r", SHA, "t")
    finally:
        await gh.close()
    assert statuses[0].to_dict() == {
        "state": "success", "context": "ci/test", "description": "", "target_url": "https://ci/1",
    }


@pytest.mark.asyncio
@pytest.mark.parametrize("response", [
    httpx.Response(200, content=b"<html>upstream proxy error</html>"),
    httpx.Response(200, json=[{"state": "success"}]),
    httpx.Response(200, json={"statuses": "broken"}),
])
async def test_get_ci_status_malformed_body_gives_no_statuses(response):
    gh = _client(lambda request: response)
    try:
        assert await gh.get_ci_status("o", "r", SHA, "t") == []
    finally:
        await gh.close()


@pytest.mark.asyncio
async def test_get_ci_status_skips_non_object_entries():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"statuses": ["junk", None, {"state": "failure", "context": "ci/lint"}]})

    gh = _client(handler)
    try:
        statuses = await gh.get_ci_status("o", "r", SHA, "t")
    finally:
        await gh.close()
    assert [s.context for s in statuses] == ["ci/lint"]


@pytest.mark.asyncio
async def test_get_ci_status_invalid_sha_skips_request():
    gh = _client(lambda request: httpx.Response(500))
    try:
        assert await gh.get_ci_status("o", "r", "not-a-sha", "t") == []
    finally:
        await gh.close()


@pytest.mark.asyncio
async def test_timeout_becomes_transient_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("slow", request=request)

    gh = _client(handler)
    try:
        with pytest.raises(TransientUpstreamError) as exc:
            await gh.get_ci_status("o", "r", SHA, "t")
    finally:
        await gh.close()
    assert exc.value.code == "upstream_timeout"


@pytest.mark.asyncio
async def test_connection_error_becomes_transient_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    gh = _client(handler)
    try:
        with pytest.raises(TransientUpstreamError) as exc:
            await gh.list_branches("o", "r", "t")
    finally:
        await gh.close()
    assert exc.value.code == "upstream_unavailable"
