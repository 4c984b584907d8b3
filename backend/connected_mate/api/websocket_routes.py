"""
WebSocket API路由
"""

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Depends
from sqlalchemy.orm import Session
from connected_mate.core.database import get_db
from connected_mate.core.exceptions import SessionNotFoundError
from connected_mate.core.logging_config import get_logger
from connected_mate.services.session_service import SessionService
from connected_mate.services.websocket_service import get_websocket_manager
import json

logger = get_logger(__name__)

router = APIRouter()

@router.websocket("/sessions/{session_id}")
async def websocket_session_endpoint(
    websocket: WebSocket,
    session_id: int,
    db: Session = Depends(get_db)
):
    """会话事件WebSocket连接端点"""
    manager = get_websocket_manager()
    session_service = SessionService(db)

    try:
        session = await session_service.get(session_id)
    except SessionNotFoundError:
        await websocket.close(code=4404)
        return

    await manager.connect(websocket, session_id)

    try:
        # 发送欢迎消息和当前状态，客户端以此为准刷新界面
        await manager.send_personal_message({
            "type": "connected",
            "session_id": session_id,
            "status": session.status.value,
            "participant_count": session.participant_count,
        }, websocket)

        # 监听消息
        while True:
            data = await websocket.receive_text()
            try:
                message_data = json.loads(data)
            except json.JSONDecodeError:
                logger.debug(f"收到无效JSON消息: {data[:100]}")
                continue

            message_type = message_data.get("type") if isinstance(message_data, dict) else None
            if message_type == "ping":
                await manager.send_personal_message({
                    "type": "pong",
                    "timestamp": message_data.get("timestamp")
                }, websocket)

            elif message_type == "get_session_status":
                # 每次都从数据库读取最新状态
                current = await session_service.get(session_id)
                await manager.send_personal_message({
                    "type": "session_status",
                    "session": current.model_dump(mode="json"),
                }, websocket)

    except WebSocketDisconnect:
        manager.disconnect(websocket, session_id)
    except Exception as e:
        logger.error(f"WebSocket错误: {e}")
        manager.disconnect(websocket, session_id)
