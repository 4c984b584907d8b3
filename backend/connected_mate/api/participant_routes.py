"""
参与者API路由
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from connected_mate.api.dependencies import get_broadcaster, get_current_participant, get_host_id
from connected_mate.core.database import get_db, with_db_retry
from connected_mate.core.logging_config import set_session_context
from connected_mate.models.participant import Participant
from connected_mate.schemas.participant_schemas import JoinResponse, ParticipantInfo, ParticipantJoin
from connected_mate.schemas.session_schemas import SessionResponse
from connected_mate.services.participant_service import ParticipantService
from connected_mate.services.session_service import SessionService
from connected_mate.services.websocket_service import WebSocketManager

router = APIRouter()

@router.post("/sessions/{session_id}/participants", response_model=JoinResponse, status_code=201)
async def join_session(
    session_id: int,
    join_data: ParticipantJoin,
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """加入会话"""
    set_session_context(session_id)
    participant_service = ParticipantService(db, broadcaster)
    return await with_db_retry(db, lambda: participant_service.join(session_id, join_data))

@router.get("/join/{code}", response_model=SessionResponse)
async def find_session_by_code(
    code: str,
    db: Session = Depends(get_db)
):
    """通过加入码查找会话（扫码后的预览）"""
    session_service = SessionService(db)
    return await session_service.get_by_code(code)

@router.post("/join/{code}", response_model=JoinResponse, status_code=201)
async def join_session_by_code(
    code: str,
    join_data: ParticipantJoin,
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """通过加入码加入会话"""
    participant_service = ParticipantService(db, broadcaster)
    return await with_db_retry(db, lambda: participant_service.join_by_code(code, join_data))

@router.get("/sessions/{session_id}/participants", response_model=List[ParticipantInfo])
async def list_participants(
    session_id: int,
    db: Session = Depends(get_db)
):
    """获取会话参与者列表"""
    set_session_context(session_id)
    participant_service = ParticipantService(db)
    return await participant_service.list_participants(session_id)

@router.get("/participants/me", response_model=ParticipantInfo)
async def get_me(
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """获取参与者本人信息"""
    participant_service = ParticipantService(db)
    return await participant_service.get_info(participant)

@router.post("/participants/me/heartbeat", response_model=ParticipantInfo)
async def heartbeat(
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """参与者心跳，更新最后活跃时间"""
    participant_service = ParticipantService(db)
    return await participant_service.touch(participant)

@router.delete("/sessions/{session_id}/participants/{participant_id}")
async def remove_participant(
    session_id: int,
    participant_id: int,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """主持人移除参与者"""
    set_session_context(session_id)
    participant_service = ParticipantService(db, broadcaster)
    await with_db_retry(db, lambda: participant_service.remove(session_id, host_id, participant_id))
    return {"message": "参与者已移除", "participant_id": participant_id}
