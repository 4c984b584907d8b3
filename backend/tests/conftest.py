"""
Connected Mate - 测试配置和fixtures
"""
import os

# 在导入应用前设置测试环境
os.environ['DATABASE_URL'] = 'sqlite://'
os.environ['LOG_LEVEL'] = 'WARNING'

import asyncio
from typing import List, Tuple

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from connected_mate.core.database import Base, create_db_engine, get_db, import_models
from connected_mate.schemas.participant_schemas import ParticipantJoin
from connected_mate.schemas.session_schemas import SessionCreate
from connected_mate.services.participant_service import ParticipantService
from connected_mate.services.session_service import SessionService
from connected_mate.services.websocket_service import WebSocketManager
from main import app

HOST_ID = "host-alice"
OTHER_HOST_ID = "host-bob"


class RecordingBroadcaster(WebSocketManager):
    """记录发布的事件，代替真实的WebSocket推送"""

    def __init__(self):
        super().__init__()
        self.events: List[Tuple[str, int, dict]] = []

    async def publish(self, event_type, session_id, **payload):
        self.events.append((event_type, session_id, payload))

    def types(self) -> List[str]:
        return [event[0] for event in self.events]


@pytest.fixture
def engine(tmp_path):
    """每个测试使用独立的SQLite文件，支持多线程并发访问"""
    import_models()
    test_engine = create_db_engine(f"sqlite:///{tmp_path / 'test.db'}")
    Base.metadata.create_all(bind=test_engine)
    yield test_engine
    test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def create_session(db):
    """创建会话的工厂"""
    async def _create(host_id: str = HOST_ID, start: bool = False, **overrides):
        overrides.setdefault("title", "Atelier collaboratif")
        service = SessionService(db)
        session = await service.create(host_id, SessionCreate(**overrides))
        if start:
            session = await service.start(session.id, host_id)
        return session
    return _create


@pytest.fixture
def join(db):
    """加入会话的工厂"""
    async def _join(session_id: int, **attributes):
        return await ParticipantService(db).join(session_id, ParticipantJoin(**attributes))
    return _join


@pytest.fixture
def run_in_threads(session_factory):
    """在多个线程中并发执行服务调用，每个线程使用自己的数据库会话"""
    from concurrent.futures import ThreadPoolExecutor

    def _run(operation, count: int):
        def worker(index):
            thread_db = session_factory()
            try:
                return asyncio.run(operation(thread_db, index))
            except Exception as e:
                return e
            finally:
                thread_db.close()

        with ThreadPoolExecutor(max_workers=count) as pool:
            return list(pool.map(worker, range(count)))
    return _run


@pytest.fixture
def client(session_factory):
    """使用测试数据库的HTTP客户端"""
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
