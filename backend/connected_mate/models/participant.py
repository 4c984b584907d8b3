"""
参与者数据模型
"""

from sqlalchemy import Column, Integer, String, ForeignKey, DateTime
from sqlalchemy.orm import relationship
from connected_mate.core.database import Base
from connected_mate.core.utils import utcnow

class Participant(Base):
    """会话参与者表

    显示名称由会话的匿名级别在读取时决定，不看哪些字段恰好有值。
    """
    __tablename__ = "participants"
    # 删除后的ID不再复用
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    real_name = Column(String(100), nullable=True)           # 实名（非匿名会话）
    nickname = Column(String(50), nullable=True)             # 昵称（半匿名会话）
    emoji = Column(String(16), nullable=True)
    color = Column(String(20), nullable=True)
    anonymous_identifier = Column(String(64), nullable=True) # 匿名会话中的显示标识
    token_digest = Column(String(64), nullable=False, unique=True, index=True)
    joined_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_active_at = Column(DateTime(timezone=True), nullable=True)

    # 关系
    session = relationship("LiveSession", back_populates="participants")
