"""
WebSocket连接管理服务

会话事件只是界面刷新提示，不是数据来源；推送失败不影响业务操作。
"""

from fastapi import WebSocket
from typing import Any, Dict, List
import json
from connected_mate.core.logging_config import get_logger
from connected_mate.core.utils import format_timestamp_with_timezone, utcnow

logger = get_logger(__name__)

class SessionEvent:
    """会话事件类型"""
    SESSION_STARTED = "session_started"
    SESSION_ENDED = "session_ended"
    SESSION_UPDATED = "session_updated"
    PARTICIPANT_JOINED = "participant_joined"
    PARTICIPANT_REMOVED = "participant_removed"
    VOTE_CAST = "vote_cast"
    VOTE_RETRACTED = "vote_retracted"
    CONTRIBUTION_SUBMITTED = "contribution_submitted"

class WebSocketManager:
    """WebSocket连接管理器"""

    def __init__(self):
        # 每个会话的观察者连接（主持人面板、参与者页面）
        self.session_connections: Dict[int, List[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, session_id: int):
        """连接观察者WebSocket"""
        await websocket.accept()
        connections = self.session_connections.setdefault(session_id, [])

        # 检查是否已存在，避免重复连接
        if websocket not in connections:
            connections.append(websocket)
            logger.info(f"新连接加入会话 {session_id}，当前连接数: {len(connections)}")

    def disconnect(self, websocket: WebSocket, session_id: int):
        """断开观察者连接"""
        connections = self.session_connections.get(session_id)
        if connections and websocket in connections:
            connections.remove(websocket)
            logger.info(f"连接断开会话 {session_id}，当前连接数: {len(connections)}")
            if not connections:
                del self.session_connections[session_id]

    def connection_count(self, session_id: int) -> int:
        return len(self.session_connections.get(session_id, []))

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        """发送个人消息"""
        try:
            await websocket.send_text(json.dumps(message, ensure_ascii=False))
        except Exception as e:
            logger.warning(f"发送个人消息失败: {e}")

    async def broadcast_to_session(self, message: dict, session_id: int):
        """向会话中的所有观察者广播消息"""
        connections = list(self.session_connections.get(session_id, []))
        if not connections:
            logger.debug(f"会话 {session_id} 没有活跃连接，跳过广播")
            return

        message_text = json.dumps(message, ensure_ascii=False, default=str)
        failed_connections = []

        for connection in connections:
            try:
                await connection.send_text(message_text)
            except Exception as e:
                logger.warning(f"广播消息失败: {e}")
                failed_connections.append(connection)

        # 移除失败的连接
        for failed_connection in failed_connections:
            self.disconnect(failed_connection, session_id)

        logger.debug(
            f"📡 会话 {session_id} 广播 {message.get('type', 'unknown')}: "
            f"{len(connections) - len(failed_connections)} 成功, {len(failed_connections)} 失败"
        )

    async def publish(self, event_type: str, session_id: int, **payload: Any):
        """发布会话事件"""
        await self.broadcast_to_session({
            "type": event_type,
            "session_id": session_id,
            "timestamp": format_timestamp_with_timezone(utcnow()),
            **payload,
        }, session_id)


# 使用全局WebSocket连接管理器
_manager = None

def get_websocket_manager() -> WebSocketManager:
    """获取全局WebSocket管理器实例"""
    global _manager
    if _manager is None:
        _manager = WebSocketManager()
    return _manager
