"""
WebSocket管理器测试
"""
import json

from connected_mate.services.websocket_service import SessionEvent, WebSocketManager


class FakeWebSocket:
    """记录发送内容的假连接"""

    def __init__(self, broken: bool = False):
        self.broken = broken
        self.accepted = False
        self.sent = []

    async def accept(self):
        self.accepted = True

    async def send_text(self, text: str):
        if self.broken:
            raise RuntimeError("connection closed")
        self.sent.append(json.loads(text))


class TestWebSocketManager:

    async def test_publish_reaches_session_observers_only(self):
        manager = WebSocketManager()
        watcher, other = FakeWebSocket(), FakeWebSocket()
        await manager.connect(watcher, 1)
        await manager.connect(other, 2)

        await manager.publish(SessionEvent.SESSION_STARTED, 1, started_at="2026-01-01T00:00:00Z")

        assert watcher.accepted
        assert len(watcher.sent) == 1
        message = watcher.sent[0]
        assert message["type"] == "session_started"
        assert message["session_id"] == 1
        assert message["timestamp"].endswith("Z")
        assert other.sent == []

    async def test_dead_connection_is_dropped(self):
        manager = WebSocketManager()
        alive, dead = FakeWebSocket(), FakeWebSocket(broken=True)
        await manager.connect(alive, 1)
        await manager.connect(dead, 1)

        await manager.publish(SessionEvent.VOTE_CAST, 1, target_id=3)

        assert manager.connection_count(1) == 1
        assert alive.sent[0]["target_id"] == 3

    async def test_publish_without_observers_is_noop(self):
        manager = WebSocketManager()
        await manager.publish(SessionEvent.SESSION_ENDED, 99)
        assert manager.connection_count(99) == 0

    async def test_duplicate_connect_registered_once(self):
        manager = WebSocketManager()
        socket = FakeWebSocket()
        await manager.connect(socket, 1)
        await manager.connect(socket, 1)
        assert manager.connection_count(1) == 1
        manager.disconnect(socket, 1)
        assert manager.connection_count(1) == 0
