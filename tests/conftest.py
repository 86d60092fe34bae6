"""
tests/conftest.py -- Shared test fixtures for TeamGate unit and integration tests.

This module provides:
  - notifier: a fresh RecordingNotifier (tests/helpers.py)
  - make_account: factory fixture that inserts an account with a known password
  - store / team_store: isolated AccountStore / TeamStore per test
  - app_env: TestClient on the real app with a patched lifespan, one per module
  - client: the module's TestClient with cookies and recorded mail cleared

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: DEBUG so
get_settings() auto-generates SECRET_KEY instead of raising ValueError, and
BCRYPT_ROUNDS so password hashing stays fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any auth/core import so the cached Settings see them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import Account, Role
from auth.store import AccountStore
from teams.store import TeamStore
from tests.helpers import TRUSTED_WEB, RecordingNotifier, insert_account

# Rate limits are exercised by slowapi's own tests; here they would make
# login-heavy modules flaky.
limiter.enabled = False

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    s = AccountStore(_memory_url("test_accounts"))
    yield s
    s.close()


@pytest.fixture
def team_store() -> Generator[TeamStore, None, None]:
    s = TeamStore(_memory_url("test_teams"))
    yield s
    s.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_account(store: AccountStore) -> Callable[..., Account]:
    """Factory: make_account("a@example.com", role=Role.manager, devices=[TRUSTED_WEB])."""

    def _make(email: str, **kwargs) -> Account:
        return insert_account(store, email, **kwargs)

    return _make


# ---------------------------------------------------------------------------
# App fixtures
# ---------------------------------------------------------------------------


@dataclass
class AppEnv:
    client: TestClient
    accounts: AccountStore
    teams: TeamStore
    notifier: RecordingNotifier
    superadmin: Account
    manager: Account
    user: Account


def _patch_lifespan(accounts: AccountStore, teams: TeamStore, notifier: RecordingNotifier):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores and the recording notifier into app.state so
    TestClient routes see isolated DBs and never attempt SMTP.

    The purge_task is a long-sleeping coroutine (a real asyncio.Task is
    required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.account_store = accounts
        app.state.team_store = teams
        app.state.notifier = notifier
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def app_env() -> Generator[AppEnv, None, None]:
    """One TestClient per test module, backed by fresh in-memory stores.

    Three accounts are created up front, one per role, each already trusting
    the TestClient's web fingerprint so password logins go straight through.
    """
    accounts = AccountStore(_memory_url("api_accounts"))
    teams = TeamStore(_memory_url("api_teams"))
    notifier = RecordingNotifier()

    superadmin = insert_account(
        accounts, "root@example.com", role=Role.superadmin, display_name="Root", devices=[TRUSTED_WEB]
    )
    manager = insert_account(accounts, "lead@example.com", role=Role.manager, devices=[TRUSTED_WEB])
    user = insert_account(accounts, "member@example.com", role=Role.user, devices=[TRUSTED_WEB])

    app.router.lifespan_context = _patch_lifespan(accounts, teams, notifier)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield AppEnv(
            client=client,
            accounts=accounts,
            teams=teams,
            notifier=notifier,
            superadmin=superadmin,
            manager=manager,
            user=user,
        )

    accounts.close()
    teams.close()


@pytest.fixture
def client(app_env: AppEnv) -> TestClient:
    """The module's TestClient, without cookies left over from an earlier login."""
    app_env.client.cookies.clear()
    app_env.notifier.reset()
    return app_env.client
