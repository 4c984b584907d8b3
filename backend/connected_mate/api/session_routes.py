"""
会话管理API路由
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from connected_mate.api.dependencies import get_broadcaster, get_host_id
from connected_mate.core.database import get_db, with_db_retry
from connected_mate.core.logging_config import set_session_context
from connected_mate.schemas.session_schemas import SessionCreate, SessionList, SessionResponse, SessionUpdate
from connected_mate.services.session_service import SessionService
from connected_mate.services.websocket_service import WebSocketManager

router = APIRouter()

@router.post("", response_model=SessionResponse, status_code=201)
async def create_session(
    session_data: SessionCreate,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db)
):
    """创建新会话"""
    session_service = SessionService(db)
    return await with_db_retry(db, lambda: session_service.create(host_id, session_data))

@router.get("", response_model=SessionList)
async def list_sessions(
    skip: int = 0,
    limit: int = 20,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db)
):
    """获取主持人的会话列表"""
    session_service = SessionService(db)
    return await session_service.list_for_host(host_id, skip=skip, limit=limit)

@router.get("/{session_id}", response_model=SessionResponse)
async def get_session(
    session_id: int,
    db: Session = Depends(get_db)
):
    """获取会话信息"""
    set_session_context(session_id)
    session_service = SessionService(db)
    return await session_service.get(session_id)

@router.get("/{session_id}/settings")
async def get_session_settings(
    session_id: int,
    legacy: bool = False,
    db: Session = Depends(get_db)
):
    """获取会话设置，legacy=true时返回旧版嵌套结构"""
    set_session_context(session_id)
    session_service = SessionService(db)
    session = await session_service.get(session_id)
    if legacy:
        return session.settings.to_legacy()
    return session.settings

@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session(
    session_id: int,
    update_data: SessionUpdate,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """修改会话设置"""
    set_session_context(session_id)
    session_service = SessionService(db, broadcaster)
    return await with_db_retry(db, lambda: session_service.edit(session_id, host_id, update_data))

@router.post("/{session_id}/start", response_model=SessionResponse)
async def start_session(
    session_id: int,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """开始会话"""
    set_session_context(session_id)
    session_service = SessionService(db, broadcaster)
    return await with_db_retry(db, lambda: session_service.start(session_id, host_id))

@router.post("/{session_id}/end", response_model=SessionResponse)
async def end_session(
    session_id: int,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """结束会话"""
    set_session_context(session_id)
    session_service = SessionService(db, broadcaster)
    return await with_db_retry(db, lambda: session_service.end(session_id, host_id))

@router.post("/{session_id}/code", response_model=SessionResponse)
async def regenerate_access_code(
    session_id: int,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db)
):
    """重新生成加入码"""
    set_session_context(session_id)
    session_service = SessionService(db)
    return await with_db_retry(db, lambda: session_service.regenerate_code(session_id, host_id))
