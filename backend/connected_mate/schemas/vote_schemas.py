"""
投票和贡献内容相关的数据模式
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional, List
from datetime import datetime
from connected_mate.core.utils import format_timestamp_with_timezone
from connected_mate.models.vote import VoteTargetType

class VoteTarget(BaseModel):
    """投票对象"""
    target_type: VoteTargetType = Field(default=VoteTargetType.CONTRIBUTION, description="对象类型")
    target_id: int = Field(..., description="对象ID")

class VoteCast(VoteTarget):
    """投票请求模式"""
    reason: Optional[str] = Field(default=None, max_length=1000, description="投票理由")

class VoteInfo(BaseModel):
    """投票记录"""
    id: int
    session_id: int
    voter_id: int
    target_type: VoteTargetType
    target_id: int
    reason: Optional[str] = None
    created_at: datetime

    @field_serializer('created_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)

    class Config:
        from_attributes = True

class VoterVotes(BaseModel):
    """某个参与者的投票和剩余配额"""
    votes: List[VoteInfo]
    max_votes: int
    remaining: int

class RankingEntry(BaseModel):
    """排名中的一项"""
    rank: int
    target_type: VoteTargetType
    target_id: int
    vote_count: int
    is_top_voted: bool
    label: Optional[str] = None

class ContributionCreate(BaseModel):
    """提交内容的请求模式"""
    content: str = Field(..., min_length=1, description="内容")

class ContributionInfo(BaseModel):
    """贡献内容信息"""
    id: int
    session_id: int
    participant_id: int
    content: str
    vote_count: int = 0
    created_at: datetime

    @field_serializer('created_at')
    def serialize_dt(self, dt: Optional[datetime]) -> Optional[str]:
        return format_timestamp_with_timezone(dt)
