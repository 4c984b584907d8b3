"""
会话管理服务

会话状态只能按 draft -> active -> ended 前进。所有状态变更都是带条件的单条
UPDATE（WHERE status = 期望状态），并发调用中只有一个能成功，其余看到
InvalidTransitionError，时间戳不会被覆盖。
"""

from typing import Optional
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from connected_mate.core.config import settings
from connected_mate.core.exceptions import (
    InvalidTransitionError,
    NotSessionHostError,
    SessionLockedError,
    SessionNotFoundError,
    SessionNotJoinableError,
    ValidationError,
)
from connected_mate.core.logging_config import get_logger
from connected_mate.core.utils import (
    format_timestamp_with_timezone,
    generate_access_code,
    normalize_access_code,
    utcnow,
)
from connected_mate.models.participant import Participant
from connected_mate.models.session import AnonymityLevel, LiveSession, SessionStatus
from connected_mate.schemas.session_schemas import SessionCreate, SessionList, SessionResponse, SessionUpdate
from connected_mate.services.identity_service import generate_anonymous_identifier
from connected_mate.services.websocket_service import SessionEvent, WebSocketManager

logger = get_logger(__name__)

# 允许为空的可编辑字段
NULLABLE_FIELDS = frozenset({"description", "default_color", "default_emoji"})

# 生成唯一加入码的最大尝试次数
ACCESS_CODE_ATTEMPTS = 10


def load_session(db: Session, session_id: int, for_update: bool = False) -> LiveSession:
    """从数据库重新读取会话，不使用缓存中的旧状态"""
    query = db.query(LiveSession).populate_existing().filter(LiveSession.id == session_id)
    if for_update:
        query = query.with_for_update()
    session = query.first()
    if session is None:
        raise SessionNotFoundError(details={"session_id": session_id})
    return session


def count_participants(db: Session, session_id: int) -> int:
    return db.query(func.count(Participant.id)).filter(Participant.session_id == session_id).scalar() or 0


class SessionService:
    """会话状态机"""

    def __init__(self, db: Session, broadcaster: Optional[WebSocketManager] = None):
        self.db = db
        self.broadcaster = broadcaster

    async def create(self, host_id: str, data: SessionCreate) -> SessionResponse:
        """创建草稿状态的会话"""
        if not host_id:
            raise NotSessionHostError("缺少主持人身份")

        for _ in range(ACCESS_CODE_ATTEMPTS):
            session = LiveSession(
                title=data.title,
                description=data.description,
                host_id=host_id,
                status=SessionStatus.DRAFT.value,
                access_code=generate_access_code(settings.ACCESS_CODE_LENGTH),
                anonymity_level=data.anonymity_level.value,
                max_participants=data.max_participants or settings.DEFAULT_MAX_PARTICIPANTS,
                max_votes_per_participant=data.max_votes_per_participant or settings.DEFAULT_MAX_VOTES_PER_PARTICIPANT,
                require_vote_reason=data.require_vote_reason,
                top_voted_count=data.top_voted_count or settings.DEFAULT_TOP_VOTED_COUNT,
                voting_duration=settings.DEFAULT_VOTING_DURATION if data.voting_duration is None else data.voting_duration,
                default_color=data.default_color,
                default_emoji=data.default_emoji,
                created_at=utcnow(),
            )
            self.db.add(session)
            try:
                self.db.commit()
            except IntegrityError:
                # 加入码已被占用，换一个重试
                self.db.rollback()
                continue
            self.db.refresh(session)
            logger.info(f"✅ 主持人 {host_id} 创建会话 {session.id}（加入码 {session.access_code}）")
            return SessionResponse.from_model(session)

        raise RuntimeError("无法生成唯一的会话加入码")

    async def get(self, session_id: int) -> SessionResponse:
        """获取会话信息"""
        session = load_session(self.db, session_id)
        return SessionResponse.from_model(session, count_participants(self.db, session_id))

    async def get_by_code(self, code: str) -> SessionResponse:
        """根据加入码查找会话，格式不合法或不存在时视为不可加入"""
        session = self.find_by_code(code)
        return SessionResponse.from_model(session, count_participants(self.db, session.id))

    def find_by_code(self, code: str) -> LiveSession:
        normalized = normalize_access_code(code, settings.ACCESS_CODE_LENGTH)
        if normalized is None:
            raise SessionNotJoinableError("加入码格式不正确", details={"code": code})
        session = self.db.query(LiveSession).populate_existing().filter(
            LiveSession.access_code == normalized
        ).first()
        if session is None:
            raise SessionNotJoinableError("加入码不存在", details={"code": normalized})
        return session

    async def list_for_host(self, host_id: str, skip: int = 0, limit: int = 20) -> SessionList:
        """获取主持人的会话列表，最新的在前"""
        query = self.db.query(LiveSession).filter(LiveSession.host_id == host_id)
        total = query.count()
        sessions = query.order_by(LiveSession.created_at.desc(), LiveSession.id.desc()).offset(skip).limit(limit).all()
        return SessionList(
            sessions=[SessionResponse.from_model(s, count_participants(self.db, s.id)) for s in sessions],
            total=total,
        )

    def get_owned_session(self, session_id: int, host_id: str) -> LiveSession:
        """读取会话并确认调用者是主持人"""
        session = load_session(self.db, session_id)
        if not host_id or session.host_id != host_id:
            raise NotSessionHostError(details={"session_id": session_id})
        return session

    async def start(self, session_id: int, host_id: str) -> SessionResponse:
        """开始会话：draft -> active"""
        self.get_owned_session(session_id, host_id)
        now = utcnow()
        result = self.db.execute(
            update(LiveSession)
            .where(
                LiveSession.id == session_id,
                LiveSession.status == SessionStatus.DRAFT.value,
                LiveSession.started_at.is_(None),
            )
            .values(status=SessionStatus.ACTIVE.value, started_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        session = load_session(self.db, session_id)
        if result.rowcount != 1:
            logger.info(f"会话 {session_id} 开始失败，当前状态 {session.status}")
            raise InvalidTransitionError(session.status, "start")

        logger.info(f"▶️ 会话 {session_id} 已开始")
        await self._publish(SessionEvent.SESSION_STARTED, session_id, started_at=format_timestamp_with_timezone(session.started_at))
        return SessionResponse.from_model(session, count_participants(self.db, session_id))

    async def end(self, session_id: int, host_id: str) -> SessionResponse:
        """结束会话：active -> ended"""
        self.get_owned_session(session_id, host_id)
        now = utcnow()
        result = self.db.execute(
            update(LiveSession)
            .where(
                LiveSession.id == session_id,
                LiveSession.status == SessionStatus.ACTIVE.value,
                LiveSession.ended_at.is_(None),
            )
            .values(status=SessionStatus.ENDED.value, ended_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()

        session = load_session(self.db, session_id)
        if result.rowcount != 1:
            logger.info(f"会话 {session_id} 结束失败，当前状态 {session.status}")
            raise InvalidTransitionError(session.status, "end")

        logger.info(f"⏹️ 会话 {session_id} 已结束")
        await self._publish(SessionEvent.SESSION_ENDED, session_id, ended_at=format_timestamp_with_timezone(session.ended_at))
        return SessionResponse.from_model(session, count_participants(self.db, session_id))

    async def edit(self, session_id: int, host_id: str, data: SessionUpdate) -> SessionResponse:
        """修改会话设置

        匿名级别和人数上限只能在draft状态修改；其他字段在draft和active状态
        可以修改；会话结束后不能修改任何内容。
        """
        session = self.get_owned_session(session_id, host_id)
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            return SessionResponse.from_model(session, count_participants(self.db, session_id))

        for field, value in changes.items():
            if value is None and field not in NULLABLE_FIELDS:
                raise ValidationError(f"{field} 不能为空", details={"field": field})
        if "anonymity_level" in changes:
            changes["anonymity_level"] = AnonymityLevel(changes["anonymity_level"]).value

        core_edit = data.touches_core_settings()
        allowed = [SessionStatus.DRAFT.value]
        if not core_edit:
            allowed.append(SessionStatus.ACTIVE.value)

        if "max_participants" in changes:
            joined = count_participants(self.db, session_id)
            if changes["max_participants"] < joined:
                raise ValidationError(
                    f"人数上限不能小于已加入人数（{joined}）",
                    details={"participant_count": joined}
                )

        conditions = [LiveSession.id == session_id, LiveSession.status.in_(allowed)]
        if "max_participants" in changes:
            # 与加入语句使用同样的计数子查询，并发加入后不会低于实际人数
            current_count = (
                select(func.count(Participant.id))
                .where(Participant.session_id == session_id)
                .correlate(None)
                .scalar_subquery()
            )
            conditions.append(current_count <= changes["max_participants"])

        load_session(self.db, session_id, for_update=True)
        result = self.db.execute(
            update(LiveSession)
            .where(*conditions)
            .values(**changes, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            session = load_session(self.db, session_id)
            if "max_participants" in changes and session.status in allowed:
                joined = count_participants(self.db, session_id)
                logger.info(f"会话 {session_id} 已有 {joined} 人加入，拒绝将人数上限改为 {changes['max_participants']}")
                raise ValidationError(
                    f"人数上限不能小于已加入人数（{joined}）",
                    details={"participant_count": joined}
                )
            logger.info(f"会话 {session_id} 处于 {session.status} 状态，拒绝修改 {sorted(changes)}")
            raise SessionLockedError(
                f"会话处于{session.status}状态，无法修改这些设置",
                details={"status": session.status, "fields": sorted(changes)}
            )

        if changes.get("anonymity_level") == AnonymityLevel.ANONYMOUS.value:
            self._backfill_anonymous_identifiers(session_id)
        self.db.commit()

        session = load_session(self.db, session_id)
        logger.info(f"📝 会话 {session_id} 设置已更新: {sorted(changes)}")
        await self._publish(SessionEvent.SESSION_UPDATED, session_id, fields=sorted(changes))
        return SessionResponse.from_model(session, count_participants(self.db, session_id))

    async def regenerate_code(self, session_id: int, host_id: str) -> SessionResponse:
        """为未结束的会话重新生成加入码"""
        self.get_owned_session(session_id, host_id)

        for _ in range(ACCESS_CODE_ATTEMPTS):
            try:
                result = self.db.execute(
                    update(LiveSession)
                    .where(LiveSession.id == session_id, LiveSession.status != SessionStatus.ENDED.value)
                    .values(access_code=generate_access_code(settings.ACCESS_CODE_LENGTH), updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                continue

            session = load_session(self.db, session_id)
            if result.rowcount != 1:
                raise SessionLockedError("会话已结束，无法更换加入码", details={"status": session.status})
            logger.info(f"🔑 会话 {session_id} 加入码已更新")
            return SessionResponse.from_model(session, count_participants(self.db, session_id))

        raise RuntimeError("无法生成唯一的会话加入码")

    def _backfill_anonymous_identifiers(self, session_id: int) -> None:
        """切换为匿名模式时，为预览阶段加入的参与者补充匿名标识"""
        participants = self.db.query(Participant).filter(
            Participant.session_id == session_id,
            Participant.anonymous_identifier.is_(None)
        ).all()
        for participant in participants:
            participant.anonymous_identifier = generate_anonymous_identifier(
                (participant.nickname, participant.real_name)
            )
        if participants:
            logger.info(f"会话 {session_id} 为 {len(participants)} 个参与者补充匿名标识")

    async def _publish(self, event_type: str, session_id: int, **payload):
        if self.broadcaster is not None:
            await self.broadcaster.publish(event_type, session_id, **payload)
