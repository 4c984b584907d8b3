"""
会话数据模型
"""

import enum
from sqlalchemy import Column, Integer, String, DateTime, Text, Boolean
from sqlalchemy.orm import relationship
from connected_mate.core.database import Base
from connected_mate.core.utils import utcnow

class SessionStatus(str, enum.Enum):
    """会话生命周期状态：draft -> active -> ended"""
    DRAFT = "draft"
    ACTIVE = "active"
    ENDED = "ended"

class AnonymityLevel(str, enum.Enum):
    """参与者身份的公开程度"""
    ANONYMOUS = "anonymous"
    SEMI_ANONYMOUS = "semi-anonymous"
    NON_ANONYMOUS = "non-anonymous"

# 可以加入会话的状态（draft为预览加入）
JOINABLE_STATUSES = (SessionStatus.DRAFT.value, SessionStatus.ACTIVE.value)

class LiveSession(Base):
    """互动会话表

    会话设置以具名字段保存，是唯一的规范表示。
    """
    __tablename__ = "sessions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    host_id = Column(String(128), nullable=False, index=True)       # 身份服务提供的主持人ID
    status = Column(String(20), nullable=False, default=SessionStatus.DRAFT.value)
    access_code = Column(String(16), nullable=False, unique=True, index=True)

    # 连接设置（开始后锁定）
    anonymity_level = Column(String(20), nullable=False, default=AnonymityLevel.ANONYMOUS.value)
    max_participants = Column(Integer, nullable=False)
    default_color = Column(String(20), nullable=True)
    default_emoji = Column(String(16), nullable=True)

    # 投票设置
    max_votes_per_participant = Column(Integer, nullable=False)
    require_vote_reason = Column(Boolean, nullable=False, default=False)
    top_voted_count = Column(Integer, nullable=False)
    voting_duration = Column(Integer, nullable=False)              # 秒

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)    # 只在draft->active时写入一次
    ended_at = Column(DateTime(timezone=True), nullable=True)      # 只在active->ended时写入一次
    updated_at = Column(DateTime(timezone=True), nullable=True, onupdate=utcnow)

    # 关系
    participants = relationship(
        "Participant",
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
