"""
投票服务

配额检查和插入在同一条语句中完成；同一投票者对同一对象的重复投票由
数据库唯一约束拒绝。撤回投票只检查会话状态，从不因配额被拒绝。
"""

from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy import DateTime, Integer, String, Text, delete, func, insert, literal, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from connected_mate.core.exceptions import (
    DuplicateVoteError,
    InvalidVoteTargetError,
    QuotaExceededError,
    ReasonRequiredError,
    SessionNotVotingError,
    VoteNotFoundError,
)
from connected_mate.core.logging_config import get_logger
from connected_mate.core.utils import utcnow
from connected_mate.models.contribution import Contribution
from connected_mate.models.participant import Participant
from connected_mate.models.session import LiveSession, SessionStatus
from connected_mate.models.vote import Vote, VoteTargetType
from connected_mate.schemas.vote_schemas import RankingEntry, VoteCast, VoteInfo, VoterVotes, VoteTarget
from connected_mate.services.participant_service import safe_identity
from connected_mate.services.session_service import SessionService, load_session
from connected_mate.services.websocket_service import SessionEvent, WebSocketManager

logger = get_logger(__name__)

_CAST_COLUMNS = ["session_id", "voter_id", "target_type", "target_id", "reason", "created_at"]

# 排名摘要中内容的最大长度
LABEL_EXCERPT_LENGTH = 80


class VoteService:
    """投票计数"""

    def __init__(self, db: Session, broadcaster: Optional[WebSocketManager] = None):
        self.db = db
        self.broadcaster = broadcaster

    async def cast(self, session_id: int, voter: Participant, data: VoteCast) -> VoteInfo:
        """投票"""
        session = load_session(self.db, session_id)
        if session.status != SessionStatus.ACTIVE.value:
            raise SessionNotVotingError(
                f"会话处于{session.status}状态，不接受投票",
                details={"status": session.status}
            )

        reason = data.reason.strip() if data.reason else None
        if session.require_vote_reason and not reason:
            raise ReasonRequiredError()

        target_type = VoteTargetType(data.target_type).value
        self._check_target(session_id, target_type, data.target_id)

        if self._find_vote(session_id, voter.id, target_type, data.target_id) is not None:
            raise DuplicateVoteError(details={"target_type": target_type, "target_id": data.target_id})

        try:
            # 锁定投票者行，使同一投票者的并发投票串行执行
            self.db.query(Participant.id).filter(Participant.id == voter.id).with_for_update().first()
            inserted = self._guarded_insert(session_id, voter.id, target_type, data.target_id, reason)
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            if self._find_vote(session_id, voter.id, target_type, data.target_id) is not None:
                raise DuplicateVoteError(details={"target_type": target_type, "target_id": data.target_id})
            raise
        except Exception:
            self.db.rollback()
            raise

        if inserted != 1:
            current = load_session(self.db, session_id)
            if current.status != SessionStatus.ACTIVE.value:
                raise SessionNotVotingError(details={"status": current.status})
            logger.info(f"参与者 {voter.id} 在会话 {session_id} 的投票配额已用完")
            raise QuotaExceededError(current.max_votes_per_participant)

        vote = self._find_vote(session_id, voter.id, target_type, data.target_id)
        logger.info(f"🗳️ 参与者 {voter.id} 投票给 {target_type} {data.target_id}（会话 {session_id}）")
        await self._publish(
            SessionEvent.VOTE_CAST,
            session_id,
            target_type=target_type,
            target_id=data.target_id,
        )
        return VoteInfo.model_validate(vote)

    def _guarded_insert(self, session_id: int, voter_id: int, target_type: str,
                        target_id: int, reason: Optional[str]) -> int:
        """会话进行中且投票者配额未用完时才插入，返回插入行数"""
        used = (
            select(func.count(Vote.id))
            .where(Vote.session_id == session_id, Vote.voter_id == voter_id)
            .correlate(None)
            .scalar_subquery()
        )
        quota = (
            select(LiveSession.max_votes_per_participant)
            .where(LiveSession.id == session_id)
            .correlate(None)
            .scalar_subquery()
        )
        voting = (
            select(LiveSession.id)
            .where(LiveSession.id == session_id, LiveSession.status == SessionStatus.ACTIVE.value)
            .exists()
        )
        source = select(
            literal(session_id, Integer),
            literal(voter_id, Integer),
            literal(target_type, String),
            literal(target_id, Integer),
            literal(reason, Text),
            literal(utcnow(), DateTime),
        ).where(voting, used < quota)

        result = self.db.execute(insert(Vote).from_select(_CAST_COLUMNS, source))
        return result.rowcount

    async def retract(self, session_id: int, voter: Participant, target: VoteTarget) -> None:
        """撤回投票"""
        target_type = VoteTargetType(target.target_type).value
        voting = (
            select(LiveSession.id)
            .where(LiveSession.id == session_id, LiveSession.status == SessionStatus.ACTIVE.value)
            .exists()
        )
        try:
            result = self.db.execute(
                delete(Vote)
                .where(
                    Vote.session_id == session_id,
                    Vote.voter_id == voter.id,
                    Vote.target_type == target_type,
                    Vote.target_id == target.target_id,
                    voting,
                )
                .execution_options(synchronize_session=False)
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if result.rowcount != 1:
            session = load_session(self.db, session_id)
            if session.status != SessionStatus.ACTIVE.value:
                raise SessionNotVotingError(
                    f"会话处于{session.status}状态，无法撤回投票",
                    details={"status": session.status}
                )
            raise VoteNotFoundError(details={"target_type": target_type, "target_id": target.target_id})

        logger.info(f"↩️ 参与者 {voter.id} 撤回对 {target_type} {target.target_id} 的投票（会话 {session_id}）")
        await self._publish(
            SessionEvent.VOTE_RETRACTED,
            session_id,
            target_type=target_type,
            target_id=target.target_id,
        )

    async def rank(self, session_id: int) -> List[RankingEntry]:
        """计算排名：票数降序，同票时先创建的对象在前"""
        session = load_session(self.db, session_id)
        rows = self.db.query(
            Vote.target_type, Vote.target_id, func.count(Vote.id)
        ).filter(
            Vote.session_id == session_id
        ).group_by(Vote.target_type, Vote.target_id).all()

        created, labels = self._describe_targets(session, rows)

        def sort_key(row):
            target_type, target_id, vote_count = row
            key = (target_type, target_id)
            return (-vote_count, created.get(key) or datetime.max, target_type, target_id)

        ranking = []
        for position, (target_type, target_id, vote_count) in enumerate(sorted(rows, key=sort_key), start=1):
            ranking.append(RankingEntry(
                rank=position,
                target_type=target_type,
                target_id=target_id,
                vote_count=vote_count,
                is_top_voted=position <= session.top_voted_count,
                label=labels.get((target_type, target_id)),
            ))
        return ranking

    def _describe_targets(self, session: LiveSession, rows) -> Tuple[Dict, Dict]:
        """查询投票对象的创建时间和显示名称"""
        participant_ids = [r[1] for r in rows if r[0] == VoteTargetType.PARTICIPANT.value]
        contribution_ids = [r[1] for r in rows if r[0] == VoteTargetType.CONTRIBUTION.value]
        created: Dict[Tuple[str, int], datetime] = {}
        labels: Dict[Tuple[str, int], Optional[str]] = {}

        if participant_ids:
            for participant in self.db.query(Participant).filter(Participant.id.in_(participant_ids)):
                key = (VoteTargetType.PARTICIPANT.value, participant.id)
                created[key] = participant.joined_at
                identity = safe_identity(session, participant)
                labels[key] = identity.label if identity else None

        if contribution_ids:
            for contribution in self.db.query(Contribution).filter(Contribution.id.in_(contribution_ids)):
                key = (VoteTargetType.CONTRIBUTION.value, contribution.id)
                created[key] = contribution.created_at
                labels[key] = contribution.content[:LABEL_EXCERPT_LENGTH]

        return created, labels

    async def votes_by_voter(self, session_id: int, voter: Participant) -> VoterVotes:
        """参与者自己的投票和剩余配额"""
        session = load_session(self.db, session_id)
        votes = self.db.query(Vote).filter(
            Vote.session_id == session_id,
            Vote.voter_id == voter.id
        ).order_by(Vote.created_at, Vote.id).all()
        return VoterVotes(
            votes=[VoteInfo.model_validate(v) for v in votes],
            max_votes=session.max_votes_per_participant,
            remaining=max(session.max_votes_per_participant - len(votes), 0),
        )

    async def all_votes(self, session_id: int, host_id: str) -> List[VoteInfo]:
        """主持人查看会话的全部投票"""
        SessionService(self.db).get_owned_session(session_id, host_id)
        votes = self.db.query(Vote).filter(
            Vote.session_id == session_id
        ).order_by(Vote.created_at, Vote.id).all()
        return [VoteInfo.model_validate(v) for v in votes]

    def _check_target(self, session_id: int, target_type: str, target_id: int) -> None:
        if target_type == VoteTargetType.PARTICIPANT.value:
            model = Participant
        else:
            model = Contribution
        found = self.db.query(model.id).filter(model.id == target_id, model.session_id == session_id).first()
        if found is None:
            raise InvalidVoteTargetError(details={"target_type": target_type, "target_id": target_id})

    def _find_vote(self, session_id: int, voter_id: int, target_type: str, target_id: int) -> Optional[Vote]:
        return self.db.query(Vote).filter(
            Vote.session_id == session_id,
            Vote.voter_id == voter_id,
            Vote.target_type == target_type,
            Vote.target_id == target_id
        ).first()

    async def _publish(self, event_type: str, session_id: int, **payload):
        if self.broadcaster is not None:
            await self.broadcaster.publish(event_type, session_id, **payload)
