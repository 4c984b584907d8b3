"""
贡献内容服务
"""

from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from connected_mate.core.config import settings
from connected_mate.core.exceptions import SessionNotActiveError, ValidationError
from connected_mate.core.logging_config import get_logger
from connected_mate.core.utils import utcnow
from connected_mate.models.contribution import Contribution
from connected_mate.models.participant import Participant
from connected_mate.models.session import SessionStatus
from connected_mate.models.vote import Vote, VoteTargetType
from connected_mate.schemas.vote_schemas import ContributionCreate, ContributionInfo
from connected_mate.services.session_service import load_session
from connected_mate.services.websocket_service import SessionEvent, WebSocketManager

logger = get_logger(__name__)

class ContributionService:
    """参与者提交的内容"""

    def __init__(self, db: Session, broadcaster: Optional[WebSocketManager] = None):
        self.db = db
        self.broadcaster = broadcaster

    async def submit(self, session_id: int, participant: Participant, data: ContributionCreate) -> ContributionInfo:
        """提交内容，仅在会话进行中允许"""
        session = load_session(self.db, session_id)
        if session.status != SessionStatus.ACTIVE.value:
            raise SessionNotActiveError(
                f"会话处于{session.status}状态，无法提交内容",
                details={"status": session.status}
            )

        content = data.content.strip()
        if not content:
            raise ValidationError("内容不能为空")
        if len(content) > settings.MAX_CONTRIBUTION_LENGTH:
            raise ValidationError(
                f"内容长度不能超过{settings.MAX_CONTRIBUTION_LENGTH}",
                details={"max_length": settings.MAX_CONTRIBUTION_LENGTH}
            )

        contribution = Contribution(
            session_id=session_id,
            participant_id=participant.id,
            content=content,
            created_at=utcnow(),
        )
        self.db.add(contribution)
        self.db.commit()
        self.db.refresh(contribution)

        logger.info(f"💡 参与者 {participant.id} 在会话 {session_id} 提交内容 {contribution.id}")
        if self.broadcaster is not None:
            await self.broadcaster.publish(
                SessionEvent.CONTRIBUTION_SUBMITTED,
                session_id,
                contribution_id=contribution.id,
            )
        return self._to_info(contribution, 0)

    async def list_contributions(self, session_id: int) -> List[ContributionInfo]:
        """按提交顺序列出内容及票数"""
        load_session(self.db, session_id)
        contributions = self.db.query(Contribution).filter(
            Contribution.session_id == session_id
        ).order_by(Contribution.created_at, Contribution.id).all()

        counts = dict(
            self.db.query(Vote.target_id, func.count(Vote.id)).filter(
                Vote.session_id == session_id,
                Vote.target_type == VoteTargetType.CONTRIBUTION.value
            ).group_by(Vote.target_id).all()
        )
        return [self._to_info(c, counts.get(c.id, 0)) for c in contributions]

    def _to_info(self, contribution: Contribution, vote_count: int) -> ContributionInfo:
        return ContributionInfo(
            id=contribution.id,
            session_id=contribution.session_id,
            participant_id=contribution.participant_id,
            content=contribution.content,
            vote_count=vote_count,
            created_at=contribution.created_at,
        )
