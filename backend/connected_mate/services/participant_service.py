"""
参与者管理服务

加入会话时的人数检查和插入在同一条 INSERT ... SELECT ... WHERE 语句中完成，
并先锁定会话行（数据库支持 FOR UPDATE 时），并发加入不会超过人数上限。
"""

from types import SimpleNamespace
from typing import List, Optional
from sqlalchemy import DateTime, Integer, String, func, insert, literal, or_, select
from sqlalchemy.orm import Session

from connected_mate.core.config import settings
from connected_mate.core.exceptions import (
    CapacityExceededError,
    InvalidTokenError,
    MissingIdentityError,
    MissingNicknameError,
    ParticipantNotFoundError,
    SessionFullError,
    SessionNotJoinableError,
)
from connected_mate.core.logging_config import get_logger
from connected_mate.core.security import generate_participant_token, hash_token, verify_token
from connected_mate.core.utils import utcnow
from connected_mate.models.contribution import Contribution
from connected_mate.models.participant import Participant
from connected_mate.models.session import JOINABLE_STATUSES, AnonymityLevel, LiveSession
from connected_mate.models.vote import Vote, VoteTargetType
from connected_mate.schemas.participant_schemas import IdentityInfo, JoinResponse, ParticipantInfo, ParticipantJoin
from connected_mate.services.identity_service import generate_anonymous_identifier, resolve_for_session
from connected_mate.services.session_service import SessionService, count_participants, load_session
from connected_mate.services.websocket_service import SessionEvent, WebSocketManager

logger = get_logger(__name__)

# INSERT ... SELECT 写入的列，顺序与 _join 中的 select 一致
_JOIN_COLUMNS = [
    "session_id", "real_name", "nickname", "emoji", "color",
    "anonymous_identifier", "token_digest", "joined_at",
]

# 加入时匿名级别被并发修改后重新解析身份的次数
JOIN_ATTEMPTS = 3


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


def safe_identity(session: LiveSession, participant) -> Optional[IdentityInfo]:
    """解析显示身份；当前匿名级别下无法安全显示时返回None"""
    try:
        identity = resolve_for_session(session, participant)
    except (MissingNicknameError, MissingIdentityError):
        return None
    return IdentityInfo(**identity.to_dict())


class ParticipantService:
    """参与者注册表"""

    def __init__(self, db: Session, broadcaster: Optional[WebSocketManager] = None):
        self.db = db
        self.broadcaster = broadcaster

    async def join(self, session_id: int, data: ParticipantJoin) -> JoinResponse:
        """加入会话"""
        session = load_session(self.db, session_id)
        return await self._join(session, data)

    async def join_by_code(self, code: str, data: ParticipantJoin) -> JoinResponse:
        """通过加入码加入会话"""
        session = SessionService(self.db).find_by_code(code)
        return await self._join(session, data)

    async def _join(self, session: LiveSession, data: ParticipantJoin) -> JoinResponse:
        token = generate_participant_token()
        digest = hash_token(token)

        for _ in range(JOIN_ATTEMPTS):
            if session.status not in JOINABLE_STATUSES:
                raise SessionNotJoinableError(
                    f"会话处于{session.status}状态，无法加入",
                    details={"status": session.status}
                )

            # 身份按本次读取到的匿名级别解析，插入时再确认级别未变
            level = session.anonymity_level
            fields = self._identity_fields(level, data)
            identity = resolve_for_session(session, SimpleNamespace(**fields))

            try:
                locked = load_session(self.db, session.id, for_update=True)
                inserted = self._guarded_insert(locked.id, level, fields, digest, utcnow())
                self.db.commit()
            except Exception:
                self.db.rollback()
                raise

            if inserted == 1:
                break

            current = load_session(self.db, session.id)
            if current.status in JOINABLE_STATUSES and current.anonymity_level != level:
                logger.info(f"会话 {session.id} 匿名级别已从 {level} 变为 {current.anonymity_level}，重新解析身份")
                session = current
                continue
            self._raise_join_rejection(session.id)
        else:
            raise SessionNotJoinableError(
                "会话设置正在变更，请稍后重试",
                details={"anonymity_level": session.anonymity_level}
            )

        participant = self.db.query(Participant).filter(Participant.token_digest == digest).one()
        participant_count = count_participants(self.db, session.id)
        logger.info(
            f"👋 参与者 {participant.id} 加入会话 {session.id}，"
            f"当前人数 {participant_count}/{session.max_participants}"
        )

        await self._publish(
            SessionEvent.PARTICIPANT_JOINED,
            session.id,
            participant_id=participant.id,
            identity=identity.to_dict(),
            participant_count=participant_count,
        )
        return JoinResponse(
            participant_id=participant.id,
            session_id=session.id,
            token=token,
            identity=IdentityInfo(**identity.to_dict()),
            joined_at=participant.joined_at,
        )

    @staticmethod
    def _identity_fields(level: str, data: ParticipantJoin) -> dict:
        fields = {
            "real_name": _clean(data.real_name),
            "nickname": _clean(data.nickname),
            "emoji": _clean(data.emoji),
            "color": _clean(data.color),
            "anonymous_identifier": None,
        }
        if level == AnonymityLevel.ANONYMOUS.value:
            fields["anonymous_identifier"] = generate_anonymous_identifier(
                (fields["nickname"], fields["real_name"])
            )
        return fields

    def _guarded_insert(self, session_id: int, level: str, fields: dict, digest: str, now) -> int:
        """只有会话可加入、匿名级别未变且人数未满时才插入，返回插入行数"""
        current_count = (
            select(func.count(Participant.id))
            .where(Participant.session_id == session_id)
            .correlate(None)
            .scalar_subquery()
        )
        capacity = (
            select(LiveSession.max_participants)
            .where(LiveSession.id == session_id)
            .correlate(None)
            .scalar_subquery()
        )
        joinable = (
            select(LiveSession.id)
            .where(
                LiveSession.id == session_id,
                LiveSession.status.in_(JOINABLE_STATUSES),
                LiveSession.anonymity_level == level,
            )
            .exists()
        )
        conditions = [joinable, current_count < capacity]
        if settings.PARTICIPANT_HARD_LIMIT >= 0:
            conditions.append(current_count < settings.PARTICIPANT_HARD_LIMIT)

        source = select(
            literal(session_id, Integer),
            literal(fields["real_name"], String),
            literal(fields["nickname"], String),
            literal(fields["emoji"], String),
            literal(fields["color"], String),
            literal(fields["anonymous_identifier"], String),
            literal(digest, String),
            literal(now, DateTime),
        ).where(*conditions)

        result = self.db.execute(insert(Participant).from_select(_JOIN_COLUMNS, source))
        return result.rowcount

    def _raise_join_rejection(self, session_id: int):
        """插入被条件拒绝后，重新读取会话判断具体原因"""
        session = load_session(self.db, session_id)
        if session.status not in JOINABLE_STATUSES:
            raise SessionNotJoinableError(
                f"会话处于{session.status}状态，无法加入",
                details={"status": session.status}
            )

        joined = count_participants(self.db, session_id)
        hard_limit = settings.PARTICIPANT_HARD_LIMIT
        details = {"participant_count": joined, "max_participants": session.max_participants}
        if 0 <= hard_limit <= session.max_participants and joined >= hard_limit:
            logger.warning(f"会话 {session_id} 达到套餐人数上限 {hard_limit}")
            raise SessionFullError(details={**details, "hard_limit": hard_limit})

        logger.info(f"会话 {session_id} 人数已满（{joined}/{session.max_participants}）")
        raise CapacityExceededError(details=details)

    async def lookup(self, participant_id: int, token: str) -> Participant:
        """校验token后返回参与者记录

        参与者不存在和token错误返回同样的错误，避免枚举参与者ID。
        """
        participant = None
        if participant_id is not None:
            participant = self.db.query(Participant).filter(Participant.id == participant_id).first()
        stored = participant.token_digest if participant is not None else None
        if not verify_token(token, stored):
            logger.info("参与者凭证校验失败")
            raise InvalidTokenError()
        return participant

    async def authenticate(self, session_id: int, participant_id: int, token: str) -> Participant:
        """校验凭证，并确认参与者属于该会话"""
        participant = await self.lookup(participant_id, token)
        if participant.session_id != session_id:
            raise InvalidTokenError()
        return participant

    async def get_info(self, participant: Participant) -> ParticipantInfo:
        """参与者本人的信息"""
        session = load_session(self.db, participant.session_id)
        return self._to_info(session, participant)

    async def list_participants(self, session_id: int) -> List[ParticipantInfo]:
        """按加入顺序列出会话参与者"""
        session = load_session(self.db, session_id)
        participants = self.db.query(Participant).filter(
            Participant.session_id == session_id
        ).order_by(Participant.joined_at, Participant.id).all()
        return [self._to_info(session, p) for p in participants]

    async def touch(self, participant: Participant) -> ParticipantInfo:
        """更新参与者最后活跃时间"""
        participant.last_active_at = utcnow()
        self.db.commit()
        self.db.refresh(participant)
        return await self.get_info(participant)

    async def remove(self, session_id: int, host_id: str, participant_id: int) -> None:
        """主持人移除参与者，同时删除其投票、内容以及针对其的投票"""
        SessionService(self.db).get_owned_session(session_id, host_id)
        participant = self.db.query(Participant).filter(
            Participant.id == participant_id,
            Participant.session_id == session_id
        ).first()
        if participant is None:
            raise ParticipantNotFoundError(details={"participant_id": participant_id})

        contribution_ids = [
            row.id for row in self.db.query(Contribution.id).filter(Contribution.participant_id == participant_id)
        ]
        target_filters = [
            (Vote.target_type == VoteTargetType.PARTICIPANT.value) & (Vote.target_id == participant_id),
        ]
        if contribution_ids:
            target_filters.append(
                (Vote.target_type == VoteTargetType.CONTRIBUTION.value) & (Vote.target_id.in_(contribution_ids))
            )

        try:
            removed_votes = self.db.query(Vote).filter(
                Vote.session_id == session_id,
                or_(Vote.voter_id == participant_id, *target_filters)
            ).delete(synchronize_session=False)
            self.db.query(Contribution).filter(
                Contribution.participant_id == participant_id
            ).delete(synchronize_session=False)
            self.db.delete(participant)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info(
            f"🚫 主持人移除会话 {session_id} 的参与者 {participant_id}，"
            f"删除 {removed_votes} 张相关投票, {len(contribution_ids)} 条内容"
        )
        await self._publish(SessionEvent.PARTICIPANT_REMOVED, session_id, participant_id=participant_id)

    def _to_info(self, session: LiveSession, participant: Participant) -> ParticipantInfo:
        return ParticipantInfo(
            id=participant.id,
            session_id=participant.session_id,
            identity=safe_identity(session, participant),
            joined_at=participant.joined_at,
            last_active_at=participant.last_active_at,
        )

    async def _publish(self, event_type: str, session_id: int, **payload):
        if self.broadcaster is not None:
            await self.broadcaster.publish(event_type, session_id, **payload)
