"""
会话相关的数据模式
"""

from pydantic import BaseModel, Field, field_serializer, field_validator
from typing import Optional, List
from datetime import datetime
from connected_mate.core.utils import format_timestamp_with_timezone
from connected_mate.models.session import AnonymityLevel, SessionStatus

# 会话开始后不能再修改的核心设置
CORE_SETTING_FIELDS = frozenset({"anonymity_level", "max_participants"})

def _strip_title(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("会话标题不能为空")
    return value

class SessionSettings(BaseModel):
    """会话设置的规范表示"""
    anonymity_level: AnonymityLevel
    max_participants: int
    max_votes_per_participant: int
    require_vote_reason: bool
    top_voted_count: int
    voting_duration: int
    default_color: Optional[str] = None
    default_emoji: Optional[str] = None

    class Config:
        from_attributes = True

    def to_legacy(self) -> dict:
        """生成旧版前端使用的嵌套结构，仅在接口边界派生"""
        return {
            "maxParticipants": self.max_participants,
            "connection": {
                "anonymityLevel": self.anonymity_level.value,
                "color": self.default_color,
                "emoji": self.default_emoji,
            },
            "vote": {
                "max_votes_per_participant": self.max_votes_per_participant,
                "require_reason": self.require_vote_reason,
                "top_voted_count": self.top_voted_count,
                "voting_duration": self.voting_duration,
            },
        }

class SessionCreate(BaseModel):
    """创建会话的请求模式"""
    title: str = Field(..., max_length=200, description="会话标题")
    description: Optional[str] = Field(default=None, description="会话描述")
    anonymity_level: AnonymityLevel = Field(default=AnonymityLevel.ANONYMOUS, description="匿名级别")
    max_participants: Optional[int] = Field(default=None, ge=1, description="最大参与人数")
    max_votes_per_participant: Optional[int] = Field(default=None, ge=1, description="每人最多投票数")
    require_vote_reason: bool = Field(default=False, description="投票是否需要填写理由")
    top_voted_count: Optional[int] = Field(default=None, ge=1, description="高票展示数量")
    voting_duration: Optional[int] = Field(default=None, ge=0, description="投票时长（秒）")
    default_color: Optional[str] = Field(default=None, max_length=20)
    default_emoji: Optional[str] = Field(default=None, max_length=16)

    @field_validator("title")
    @classmethod
    def check_title(cls, value: Optional[str]) -> Optional[str]:
        return _strip_title(value)

class SessionUpdate(BaseModel):
    """修改会话的请求模式，只有显式提供的字段会被更新"""
    title: Optional[str] = Field(default=None, max_length=200)
    description: Optional[str] = None
    anonymity_level: Optional[AnonymityLevel] = None
    max_participants: Optional[int] = Field(default=None, ge=1)
    max_votes_per_participant: Optional[int] = Field(default=None, ge=1)
    require_vote_reason: Optional[bool] = None
    top_voted_count: Optional[int] = Field(default=None, ge=1)
    voting_duration: Optional[int] = Field(default=None, ge=0)
    default_color: Optional[str] = Field(default=None, max_length=20)
    default_emoji: Optional[str] = Field(default=None, max_length=16)

    @field_validator("title")
    @classmethod
    def check_title(cls, value: Optional[str]) -> Optional[str]:
        return _strip_title(value)

    def touches_core_settings(self) -> bool:
        return bool(CORE_SETTING_FIELDS & self.model_fields_set)

class SessionResponse(BaseModel):
    """会话响应模式"""
    id: int
    title: str
    description: Optional[str] = None
    host_id: str
    status: SessionStatus
    access_code: str
    participant_count: int = 0
    settings: SessionSettings
    created_at: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None

    @field_serializer('created_at', 'started_at', 'ended_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

    @classmethod
    def from_model(cls, session, participant_count: int = 0) -> "SessionResponse":
        return cls(
            id=session.id,
            title=session.title,
            description=session.description,
            host_id=session.host_id,
            status=session.status,
            access_code=session.access_code,
            participant_count=participant_count,
            settings=SessionSettings.model_validate(session),
            created_at=session.created_at,
            started_at=session.started_at,
            ended_at=session.ended_at,
        )

class SessionList(BaseModel):
    """主持人的会话列表"""
    sessions: List[SessionResponse]
    total: int
