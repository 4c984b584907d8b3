"""
投票数据模型
"""

import enum
from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text, UniqueConstraint, Index
from sqlalchemy.orm import relationship
from connected_mate.core.database import Base
from connected_mate.core.utils import utcnow

class VoteTargetType(str, enum.Enum):
    """投票对象类型"""
    PARTICIPANT = "participant"
    CONTRIBUTION = "contribution"

class Vote(Base):
    """投票表

    (session_id, voter_id, target_type, target_id) 唯一，重复投票由约束拒绝。
    """
    __tablename__ = "votes"
    __table_args__ = (
        UniqueConstraint("session_id", "voter_id", "target_type", "target_id", name="uq_vote_voter_target"),
        Index("ix_votes_session_voter", "session_id", "voter_id"),
        {"sqlite_autoincrement": True},
    )

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False)
    voter_id = Column(Integer, ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)  # 投票者
    target_type = Column(String(20), nullable=False)                                           # participant, contribution
    target_id = Column(Integer, nullable=False)                                                # 被投票对象
    reason = Column(Text, nullable=True)                                                       # 投票理由
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # 关系
    voter = relationship("Participant", foreign_keys=[voter_id])
