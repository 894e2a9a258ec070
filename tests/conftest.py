"""
Pytest configuration and shared fixtures for the SuperFarm test suite.

This file provides:
- In-memory document store isolation
- Fake host environments and client storage
- A controllable clock for crop growth
- API test client fixture
"""

import json
import os
import time
from typing import Dict, List, Optional
from urllib.parse import urlencode

import pytest


# =============================================================================
# EARLY CONFIGURATION (runs at module import time)
# =============================================================================
# Settings are read once at import, so the environment must be in place
# before anything from superfarm is imported.

TEST_BOT_TOKEN = "123456:TEST-BOT-TOKEN"

os.environ["DATABASE_URL"] = "memory://"
os.environ["ENVIRONMENT"] = "testing"
os.environ["TELEGRAM_BOT_TOKEN"] = TEST_BOT_TOKEN

from superfarm.auth.host import ClientStorage, HostEnvironment
from superfarm.auth.telegram import sign_init_data
from superfarm.db.database import get_document_store
from superfarm.models.schemas import Balances, HostUser, IdentitySource, PlayerRecord
from superfarm.services.crop_engine import CropLifecycleEngine
from superfarm.services.session_manager import session_manager

START_MS = 1_700_000_000_000


# =============================================================================
# FAKES
# =============================================================================

class FakeClock:
    """Epoch-millisecond clock that only moves when told to."""

    def __init__(self, now: int = START_MS):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int):
        self.now += ms


class MemoryClientStorage(ClientStorage):
    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values = dict(values or {})
        self.writes: List[tuple] = []

    def get(self, key: str) -> Optional[str]:
        return self.values.get(key)

    def set(self, key: str, value: str, max_age: int) -> None:
        self.values[key] = value
        self.writes.append((key, value, max_age))


class FakeHost(HostEnvironment):
    """
    Host that answers lookups from a script: each entry is a HostUser, None
    (user not available yet) or an exception instance to raise.
    """

    def __init__(self, script: Optional[list] = None, embedded: bool = True):
        self.embedded = embedded
        self.script = list(script or [])
        self.lookups = 0

    async def lookup(self):
        self.lookups += 1
        result = self.script.pop(0) if self.script else None
        if isinstance(result, Exception):
            raise result
        return result


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def store():
    """Fresh in-memory document store shared with the API layer."""
    document_store = get_document_store()
    document_store.clear()
    yield document_store
    document_store.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client_storage():
    return MemoryClientStorage()


@pytest.fixture
def player_record():
    """Anonymous player with the starting balance of 10."""
    return PlayerRecord(
        player_id="anon-test-player",
        identity_source=IdentitySource.ANONYMOUS,
        balances=Balances(primary=10, secondary=0),
    )


@pytest.fixture
def engine(player_record, store, clock):
    farm = CropLifecycleEngine(player_record, store, clock=clock)
    store.create_if_absent(player_record.player_id, player_record.to_document())
    return farm


# =============================================================================
# HOST (TELEGRAM) HELPERS
# =============================================================================

def make_init_data(user: Optional[dict] = None, auth_date: Optional[int] = None,
                   bot_token: str = TEST_BOT_TOKEN) -> str:
    """Signed initData query string, as the Telegram client would send it."""
    fields = {
        "auth_date": str(auth_date if auth_date is not None else int(time.time())),
        "query_id": "AAHdF6IQAAAAAN0XohDhrOrc",
    }
    if user is not None:
        fields["user"] = json.dumps(user, separators=(",", ":"))
    fields["hash"] = sign_init_data(fields, bot_token)
    return urlencode(fields)


@pytest.fixture
def telegram_user():
    return {
        "id": 279058397,
        "first_name": "Vlad",
        "last_name": "Sokolov",
        "username": "vlad_s",
        "language_code": "ru",
        "is_premium": True,
    }


@pytest.fixture
def host_user():
    return HostUser(id="279058397", display_name="Vlad Sokolov", locale="ru")


@pytest.fixture
def init_data_factory():
    return make_init_data


# =============================================================================
# API TEST CLIENT
# =============================================================================

@pytest.fixture
def test_client(store, monkeypatch, clock):
    """
    FastAPI test client running startup/shutdown events.

    Sessions opened through the API use the fake clock.
    """
    from fastapi.testclient import TestClient
    from main import app

    monkeypatch.setattr(session_manager, "_clock", clock)
    with TestClient(app) as client:
        yield client
