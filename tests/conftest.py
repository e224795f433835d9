import os

os.environ.setdefault("DIGITALOCEAN_TOKEN", "test-token")

from datetime import datetime
from typing import Dict, List, Optional

import mongomock
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from models.mysql_models import Base
from provider.client import APIResponse, APIResult
from services.resource_store import ResourceStore


class FakeProvider:
    """Records provider calls; delete results and metric totals are configurable."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.delete_results: Dict[str, APIResponse] = {}
        self.metrics: Dict[str, dict] = {}

    def delete_droplet(self, droplet_id: str) -> APIResponse:
        self.calls.append(("delete_droplet", droplet_id))
        return self.delete_results.get(
            droplet_id,
            APIResponse(result=APIResult.SUCCESS, status_code=204)
        )

    def fetch_metrics(self, droplet_id: str, start: datetime, end: datetime) -> APIResponse:
        self.calls.append(("fetch_metrics", droplet_id, start, end))
        if droplet_id not in self.metrics:
            return APIResponse(result=APIResult.ERROR, status_code=500, error="no metrics")
        return APIResponse(result=APIResult.SUCCESS, status_code=200, data=self.metrics[droplet_id])

    def health_check(self) -> bool:
        return True

    def deleted(self) -> List[str]:
        return [call[1] for call in self.calls if call[0] == "delete_droplet"]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def mongo_db():
    return mongomock.MongoClient()["hostpanel_test"]


@pytest.fixture
def store(session, mongo_db) -> ResourceStore:
    store = ResourceStore(session, mongo_db)
    store.ensure_indexes()
    return store


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def make_user(store):
    def _make_user(username: str = "alice", balance: int = 0):
        return store.create_user(username, initial_balance=balance)
    return _make_user


@pytest.fixture
def make_server(store):
    def _make_server(
        user_id: int,
        name: str = "web-1",
        size: str = "s-1vcpu-1gb",
        droplet_id: Optional[str] = "1001",
        created_at: Optional[datetime] = None,
        status: str = "active"
    ):
        return store.create_server(
            user_id=user_id,
            name=name,
            size=size,
            provider_instance_id=droplet_id,
            created_at=created_at or datetime(2024, 1, 15, 10, 0),
            status=status
        )
    return _make_server
