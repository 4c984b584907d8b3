"""
投票和贡献内容API路由
"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import List
from connected_mate.api.dependencies import get_broadcaster, get_current_participant, get_host_id
from connected_mate.core.database import get_db, with_db_retry
from connected_mate.core.exceptions import InvalidTokenError
from connected_mate.core.logging_config import set_session_context
from connected_mate.models.participant import Participant
from connected_mate.models.vote import VoteTargetType
from connected_mate.schemas.vote_schemas import (
    ContributionCreate,
    ContributionInfo,
    RankingEntry,
    VoteCast,
    VoteInfo,
    VoterVotes,
    VoteTarget,
)
from connected_mate.services.contribution_service import ContributionService
from connected_mate.services.vote_service import VoteService
from connected_mate.services.websocket_service import WebSocketManager

router = APIRouter()

def _require_member(participant: Participant, session_id: int) -> None:
    """参与者凭证只在其所属会话内有效"""
    if participant.session_id != session_id:
        raise InvalidTokenError()

@router.post("/sessions/{session_id}/votes", response_model=VoteInfo, status_code=201)
async def cast_vote(
    session_id: int,
    vote_data: VoteCast,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """投票"""
    set_session_context(session_id)
    _require_member(participant, session_id)
    vote_service = VoteService(db, broadcaster)
    return await with_db_retry(db, lambda: vote_service.cast(session_id, participant, vote_data))

@router.delete("/sessions/{session_id}/votes")
async def retract_vote(
    session_id: int,
    target_id: int,
    target_type: VoteTargetType = VoteTargetType.CONTRIBUTION,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """撤回投票"""
    set_session_context(session_id)
    _require_member(participant, session_id)
    vote_service = VoteService(db, broadcaster)
    target = VoteTarget(target_type=target_type, target_id=target_id)
    await with_db_retry(db, lambda: vote_service.retract(session_id, participant, target))
    return {"message": "投票已撤回", "target_type": target_type.value, "target_id": target_id}

@router.get("/sessions/{session_id}/votes/mine", response_model=VoterVotes)
async def get_my_votes(
    session_id: int,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db)
):
    """获取本人的投票和剩余配额"""
    set_session_context(session_id)
    _require_member(participant, session_id)
    vote_service = VoteService(db)
    return await vote_service.votes_by_voter(session_id, participant)

@router.get("/sessions/{session_id}/votes", response_model=List[VoteInfo])
async def get_all_votes(
    session_id: int,
    host_id: str = Depends(get_host_id),
    db: Session = Depends(get_db)
):
    """主持人查看全部投票"""
    set_session_context(session_id)
    vote_service = VoteService(db)
    return await vote_service.all_votes(session_id, host_id)

@router.get("/sessions/{session_id}/ranking", response_model=List[RankingEntry])
async def get_ranking(
    session_id: int,
    db: Session = Depends(get_db)
):
    """获取投票排名"""
    set_session_context(session_id)
    vote_service = VoteService(db)
    return await vote_service.rank(session_id)

@router.post("/sessions/{session_id}/contributions", response_model=ContributionInfo, status_code=201)
async def submit_contribution(
    session_id: int,
    contribution_data: ContributionCreate,
    participant: Participant = Depends(get_current_participant),
    db: Session = Depends(get_db),
    broadcaster: WebSocketManager = Depends(get_broadcaster)
):
    """提交内容"""
    set_session_context(session_id)
    _require_member(participant, session_id)
    contribution_service = ContributionService(db, broadcaster)
    return await with_db_retry(db, lambda: contribution_service.submit(session_id, participant, contribution_data))

@router.get("/sessions/{session_id}/contributions", response_model=List[ContributionInfo])
async def list_contributions(
    session_id: int,
    db: Session = Depends(get_db)
):
    """获取会话内容列表"""
    set_session_context(session_id)
    contribution_service = ContributionService(db)
    return await contribution_service.list_contributions(session_id)
