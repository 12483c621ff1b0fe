"""Pytest configuration and fixtures."""

from typing import Generator, List

import mongomock
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from config import Settings
from database import USERS, DocumentStore
from main import create_app
from notifications import PushDispatcher
from outbox import Outbox, PushMessage, RealtimeEvent
from schemas import User
from users import hash_password

TEST_PASSWORD = "secret123"
# Hashed once per session
TEST_PASSWORD_HASH = hash_password(TEST_PASSWORD)

MORNING = "morning (9:00-12:00)"


class RecordingOutbox(Outbox):
    """Outbox that keeps published items for inspection instead of delivering them."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.items: List = []

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    def publish(self, item) -> bool:
        self.items.append(item)
        return True

    def events(self, name: str) -> List[RealtimeEvent]:
        return [i for i in self.items if isinstance(i, RealtimeEvent) and i.event == name]

    def pushes(self) -> List[PushMessage]:
        return [i for i in self.items if isinstance(i, PushMessage)]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=None,
        database_name=None,
        firebase_service_account=None,
        firebase_credentials_path=None,
        api_prefix="/api",
        cors_origins=["*"],
        log_level="WARNING",
        seed_on_startup=False,
    )


@pytest.fixture
def database():
    """In-memory MongoDB stand-in."""
    return mongomock.MongoClient()["cafe_test"]


@pytest.fixture
def app(settings: Settings, database) -> FastAPI:
    return create_app(settings, database=database, push=PushDispatcher())


@pytest.fixture
def store(app: FastAPI) -> DocumentStore:
    return app.state.store


@pytest.fixture
def outbox(app: FastAPI) -> RecordingOutbox:
    state = app.state
    recording = RecordingOutbox(state.hub, state.push, state.tokens)
    state.outbox = recording
    return recording


@pytest.fixture
def client(app: FastAPI, outbox: RecordingOutbox) -> Generator[TestClient, None, None]:
    """Test client whose notifications are recorded, not delivered."""
    # Don't raise server exceptions so we can test error status codes
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def live_client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Test client with the real outbox feeding the realtime hub."""
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


def make_user(store: DocumentStore, user_id: int, username: str, role: str, name: str, **extra) -> dict:
    user = User(id=user_id, username=username, password=TEST_PASSWORD_HASH, name=name, role=role, **extra)
    return store.create_document(USERS, user)


def claims(user: dict) -> dict:
    return {"userId": user["id"], "userRole": user["role"]}


@pytest.fixture
def customer(store: DocumentStore) -> dict:
    return make_user(store, 101, "alice", "user", "A")


@pytest.fixture
def kitchen_user(store: DocumentStore) -> dict:
    return make_user(store, 102, "kitchen", "kitchen", "Kitchen Manager")


@pytest.fixture
def admin(store: DocumentStore) -> dict:
    return make_user(store, 103, "admin", "admin", "Super Admin")


@pytest.fixture
def order_payload(customer: dict) -> dict:
    return {
        **claims(customer),
        "userName": customer["name"],
        "slot": MORNING,
        "items": [
            {"item": "coffee", "type": "Black", "sugarLevel": 1, "quantity": 2, "location": "Seat_1"},
        ],
    }
