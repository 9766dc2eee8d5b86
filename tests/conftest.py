import asyncio
import copy
from datetime import datetime, timezone

import httpx
import pytest

from api import create_app
from auth import create_access_token
from config import HomeGuardConfig, DatabaseConfig
from database import DatabaseManager
from exceptions import DispatchError, StoreUnavailableError
from main import HomeGuardSystem
from metrics import MetricsCollector
from rules_engine.models import ActionType, Event, EventSource
from rules_engine.store import RuleStore, SqliteRulePersistence


class RecordingHandler:
    """Synchronous handler that remembers every call."""

    def __init__(self):
        self.calls = []

    def handle(self, action, context):
        self.calls.append((action, context))
        return {"recorded": True}

    @property
    def action_types(self):
        return [action.type for action, _ in self.calls]


class FailingHandler:
    def __init__(self, message="device offline"):
        self.message = message
        self.calls = 0

    def handle(self, action, context):
        self.calls += 1
        raise DispatchError(self.message, action_type=action.type)


class SlowHandler:
    def __init__(self, delay=1.0):
        self.delay = delay

    async def handle(self, action, context):
        await asyncio.sleep(self.delay)
        return {"slow": True}


class FakePersistence:
    """In-memory persistence that can be switched off."""

    def __init__(self, records=None):
        self.records = {r["id"]: dict(r) for r in (records or [])}
        self.available = True
        self.writes = 0

    def _check(self):
        if not self.available:
            raise StoreUnavailableError("rule store offline", component="FakePersistence")

    def load_all(self):
        self._check()
        return [dict(r) for r in self.records.values()]

    def insert(self, record):
        self._check()
        self.writes += 1
        self.records[record["id"]] = dict(record)

    def update(self, record):
        self._check()
        self.writes += 1
        self.records[record["id"]] = dict(record)

    def delete(self, rule_id):
        self._check()
        self.writes += 1
        self.records.pop(rule_id, None)


def make_event(kind="Foe", source=EventSource.FACE, confidence=90.0, **kwargs) -> Event:
    return Event(source=source, kind=kind, confidence=confidence, **kwargs)


def at(hour, minute=0, second=0) -> datetime:
    return datetime(2024, 1, 15, hour, minute, second, tzinfo=timezone.utc)


VEXOR_RULE = {
    "id": "vexor-warning",
    "name": "VEXOR Warning",
    "condition": {"type": "face", "value": "Foe", "operator": "equals"},
    "sensitivity": "high",
    "actions": [
        {"type": "speaker", "value": "Leave the property now."},
        {"type": "light", "value": "red_flash"},
        {"type": "notification", "value": "Intruder detected"},
    ],
    "is_active": True,
}


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def reset_metrics():
    MetricsCollector().reset()
    yield
    MetricsCollector().reset()


@pytest.fixture
def vexor_rule():
    return copy.deepcopy(VEXOR_RULE)


@pytest.fixture
def db(tmp_path):
    manager = DatabaseManager(DatabaseConfig(path=str(tmp_path / "test.db")))
    yield manager
    manager.close()


@pytest.fixture
def store(db):
    return RuleStore(SqliteRulePersistence(db))


@pytest.fixture
def config(tmp_path):
    config = HomeGuardConfig()
    config.database.path = str(tmp_path / "homeguard.db")
    config.store.rules_path = str(tmp_path / "rules")
    config.store.seed_from_files = False
    config.api.jwt_secret_key = "test-secret"
    return config


@pytest.fixture
def recorder():
    return RecordingHandler()


@pytest.fixture
def system(config, recorder):
    """System with every action type routed to one recording handler."""
    homeguard = HomeGuardSystem(config, handlers={t: recorder for t in ActionType})
    yield homeguard
    homeguard.shutdown()


@pytest.fixture
async def client(system):
    """Async API client with explicit lifespan management."""
    app = create_app(system)
    async with app.router.lifespan_context(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
            yield client


@pytest.fixture
def auth_headers(config):
    """Headers carrying an admin token."""
    token = create_access_token({"sub": "admin", "adm": True}, config)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def viewer_headers(config):
    token = create_access_token({"sub": "viewer"}, config)
    return {"Authorization": f"Bearer {token}"}
