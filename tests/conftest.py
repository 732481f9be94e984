import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

from telequeue.core.config import Settings
from telequeue.db.models import Doctor, Patient
from telequeue.services.connection_registry import ConnectionRegistry
from telequeue.services.notifier import Notifier
from telequeue.services.queue_coordinator import QueueCoordinator


class FakeWebSocket:
    """Stands in for a Starlette websocket and records what was pushed."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    def events(self, event_type=None):
        return [m for m in self.sent if event_type is None or m["type"] == event_type]

    def last(self, event_type):
        matching = self.events(event_type)
        return matching[-1]["data"] if matching else None


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'telequeue.db'}", poolclass=NullPool)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


async def _add(session_factory, *objects):
    async with session_factory() as session:
        for obj in objects:
            session.add(obj)
        await session.commit()
    return objects


@pytest_asyncio.fixture
async def doctor(session_factory):
    doctor = Doctor(name="Dr. Meera Nair", specialty="General Medicine", is_online=True)
    await _add(session_factory, doctor)
    return doctor


@pytest_asyncio.fixture
async def other_doctor(session_factory):
    doctor = Doctor(name="Dr. Tomas Lind", specialty="Dermatology", is_online=True)
    await _add(session_factory, doctor)
    return doctor


@pytest_asyncio.fixture
async def patients(session_factory):
    patients = [
        Patient(name="Asha Rao", phone="9000000001"),
        Patient(name="Ben Okafor", phone="9000000002"),
        Patient(name="Chen Wei", phone="9000000003"),
        Patient(name="Dana Kim", phone="9000000004"),
        Patient(name="Emil Novak", phone="9000000005"),
    ]
    await _add(session_factory, *patients)
    return patients


@pytest.fixture
def test_settings():
    return Settings(AVG_CONSULTATION_MINUTES=15, CONSULTATION_SLOT_MINUTES=15, DISCONNECT_GRACE_SECONDS=0)


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def notifier(registry):
    return Notifier(registry)


@pytest_asyncio.fixture
async def coordinator(session_factory, registry, notifier, test_settings):
    coordinator = QueueCoordinator(session_factory, registry, notifier, test_settings)
    yield coordinator
    await coordinator.close()


@pytest.fixture
def go_online(coordinator):
    """Connect a party with a fake socket and return the socket."""

    async def _go_online(role, user_id, connection_id=None):
        websocket = FakeWebSocket()
        await coordinator.connect(role, user_id, connection_id or f"{role}-{user_id}", websocket)
        return websocket

    return _go_online


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        if await predicate():
            return True
        if asyncio.get_running_loop().time() > deadline:
            return False
        await asyncio.sleep(0.02)


@pytest.fixture
def eventually():
    return wait_until
