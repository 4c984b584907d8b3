"""
业务异常定义

所有可预期的拒绝（状态不对、人数已满、配额用尽等）都用这里的异常表示，
每种情况有独立的错误码，API层据此返回不同的提示。
数据库不可达等基础设施错误不在此列，直接向上传播。
"""

from typing import Any, Dict, Optional


class MateError(Exception):
    """所有业务异常的基类"""

    code = "INTERNAL_ERROR"
    status_code = 400
    default_message = "请求无法处理"

    def __init__(
        self,
        message: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message or self.default_message
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class ValidationError(MateError):
    """请求参数不合法"""
    code = "VALIDATION_ERROR"
    status_code = 422
    default_message = "参数不合法"


# ============================================
# 会话生命周期
# ============================================

class SessionNotFoundError(MateError):
    code = "SESSION_NOT_FOUND"
    status_code = 404
    default_message = "会话不存在"


class HostIdentityRequiredError(MateError):
    """请求缺少主持人身份"""
    code = "UNAUTHENTICATED_HOST"
    status_code = 401
    default_message = "缺少主持人身份"


class NotSessionHostError(MateError):
    code = "NOT_SESSION_HOST"
    status_code = 403
    default_message = "只有会话主持人可以执行此操作"


class InvalidTransitionError(MateError):
    """当前状态不允许该生命周期操作"""
    code = "INVALID_TRANSITION"
    status_code = 409
    default_message = "会话当前状态不允许此操作"

    def __init__(self, current_status: str, action: str):
        super().__init__(
            f"会话处于{current_status}状态，无法执行{action}",
            details={"status": current_status, "action": action}
        )


class SessionLockedError(MateError):
    """会话已开始或已结束，设置不可再修改"""
    code = "SESSION_LOCKED"
    status_code = 409
    default_message = "会话已锁定，无法修改设置"


class SessionNotActiveError(MateError):
    code = "SESSION_NOT_ACTIVE"
    status_code = 409
    default_message = "会话未在进行中"


# ============================================
# 加入会话
# ============================================

class SessionNotJoinableError(MateError):
    """会话已结束或加入码无效"""
    code = "SESSION_NOT_JOINABLE"
    status_code = 409
    default_message = "无法加入该会话"


class SessionFullError(MateError):
    """达到套餐级别的人数上限"""
    code = "SESSION_FULL"
    status_code = 409
    default_message = "会话人数已达套餐上限"


class CapacityExceededError(MateError):
    """达到主持人设置的人数上限"""
    code = "CAPACITY_EXCEEDED"
    status_code = 409
    default_message = "会话人数已满"


class ParticipantNotFoundError(MateError):
    code = "PARTICIPANT_NOT_FOUND"
    status_code = 404
    default_message = "参与者不存在"


class InvalidTokenError(MateError):
    """参与者凭证无效，不区分参与者是否存在"""
    code = "INVALID_TOKEN"
    status_code = 401
    default_message = "参与者凭证无效"


# ============================================
# 身份解析
# ============================================

class MissingNicknameError(MateError):
    code = "MISSING_NICKNAME"
    status_code = 422
    default_message = "半匿名会话需要填写昵称"


class MissingIdentityError(MateError):
    code = "MISSING_IDENTITY"
    status_code = 422
    default_message = "无法生成安全的显示名称"


# ============================================
# 投票
# ============================================

class SessionNotVotingError(MateError):
    code = "SESSION_NOT_VOTING"
    status_code = 409
    default_message = "会话当前不接受投票"


class QuotaExceededError(MateError):
    code = "QUOTA_EXCEEDED"
    status_code = 409
    default_message = "已达到最大投票数"

    def __init__(self, max_votes: int):
        super().__init__(
            f"已达到最大投票数（{max_votes}）",
            details={"max_votes_per_participant": max_votes}
        )


class DuplicateVoteError(MateError):
    code = "DUPLICATE_VOTE"
    status_code = 409
    default_message = "已经为该对象投过票"


class ReasonRequiredError(MateError):
    code = "REASON_REQUIRED"
    status_code = 422
    default_message = "该会话要求填写投票理由"


class VoteNotFoundError(MateError):
    code = "VOTE_NOT_FOUND"
    status_code = 404
    default_message = "投票不存在"


class InvalidVoteTargetError(MateError):
    code = "INVALID_VOTE_TARGET"
    status_code = 422
    default_message = "投票对象不存在于该会话"
