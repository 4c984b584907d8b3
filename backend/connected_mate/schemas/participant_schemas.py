"""
参与者相关的数据模式
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional
from datetime import datetime
from connected_mate.core.utils import format_timestamp_with_timezone

class ParticipantJoin(BaseModel):
    """加入会话的请求模式，需要哪些字段取决于会话的匿名级别"""
    real_name: Optional[str] = Field(default=None, max_length=100, description="实名")
    nickname: Optional[str] = Field(default=None, max_length=50, description="昵称")
    emoji: Optional[str] = Field(default=None, max_length=16)
    color: Optional[str] = Field(default=None, max_length=20)

class IdentityInfo(BaseModel):
    """显示身份"""
    label: str
    color: Optional[str] = None
    emoji: Optional[str] = None

class JoinResponse(BaseModel):
    """加入成功的响应，token只在这里返回一次"""
    participant_id: int
    session_id: int
    token: str
    identity: IdentityInfo
    joined_at: datetime

    @field_serializer('joined_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

class ParticipantInfo(BaseModel):
    """参与者信息

    identity为None表示当前匿名级别下无法生成安全的显示名称。
    """
    id: int
    session_id: int
    identity: Optional[IdentityInfo] = None
    joined_at: datetime
    last_active_at: Optional[datetime] = None

    @field_serializer('joined_at', 'last_active_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)
