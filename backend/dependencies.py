# dependencies.py — process-scoped collaborators exposed as FastAPI dependencies
# main.py stores them on app.state during lifespan; tests override these
# functions through app.dependency_overrides.
from starlette.requests import HTTPConnection

from github_client import GitHubClient
from realtime import ConnectionManager


def get_broadcaster(conn: HTTPConnection) -> ConnectionManager:
    return conn.app.state.broadcaster


def get_github_client(conn: HTTPConnection) -> GitHubClient:
    return conn.app.state.github
