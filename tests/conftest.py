"""Shared pytest fixtures for the datacake client."""

from __future__ import annotations

import os
from collections.abc import Generator
from pathlib import Path
from typing import Callable

import pytest

from datacake_client.auth import AuthSession
from datacake_client.base_url import BaseUrlResolver
from datacake_client.session import ApiSession
from datacake_client.token_store import TokenStore

from tests.helpers.http import BASE_URL


@pytest.fixture(autouse=True)
def _restore_environ() -> Generator[None, None, None]:
    """Undo environment changes made by ``.env`` loading inside a test."""

    saved = dict(os.environ)
    yield
    os.environ.clear()
    os.environ.update(saved)


@pytest.fixture()
def token_dir(tmp_path: Path) -> str:
    """Directory holding the durable token files for one test."""

    return str(tmp_path / "tokens")


@pytest.fixture()
def memory_auth_session() -> AuthSession:
    """Auth session backed by an in-memory token store only."""

    return AuthSession(TokenStore(None), lambda _token: None)


@pytest.fixture()
def make_session(token_dir: str) -> Generator[Callable[..., ApiSession], None, None]:
    """Factory building :class:`ApiSession` objects pointed at ``BASE_URL``."""

    created: list[ApiSession] = []

    def _factory(base_url: str = BASE_URL) -> ApiSession:
        session = ApiSession(
            resolver=BaseUrlResolver(override=base_url),
            token_store=TokenStore(token_dir),
            timeout_seconds=5,
        )
        created.append(session)
        return session

    yield _factory

    for session in created:
        session.close()
