"""
参与者身份解析

根据会话的匿名级别和参与者记录计算显示身份。这里的函数都是纯函数：
不访问数据库，相同输入总是得到相同输出。
"""

import secrets
from dataclasses import dataclass
from typing import Any, Iterable, Optional, Union

from connected_mate.core.config import settings
from connected_mate.core.exceptions import MissingIdentityError, MissingNicknameError, ValidationError
from connected_mate.models.session import AnonymityLevel


@dataclass(frozen=True)
class DisplayIdentity:
    """参与者对外显示的身份"""
    label: str
    color: Optional[str] = None
    emoji: Optional[str] = None

    def to_dict(self) -> dict:
        return {"label": self.label, "color": self.color, "emoji": self.emoji}


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def parse_anonymity_level(level: Union[str, AnonymityLevel]) -> AnonymityLevel:
    """把字符串转换为匿名级别枚举"""
    try:
        return AnonymityLevel(level)
    except ValueError:
        raise ValidationError(
            f"未知的匿名级别: {level}",
            details={"anonymity_level": str(level)}
        )


def resolve_identity(
    level: Union[str, AnonymityLevel],
    participant: Any,
    default_color: Optional[str] = None,
    default_emoji: Optional[str] = None,
) -> DisplayIdentity:
    """计算参与者的显示身份

    - anonymous: 总是使用匿名标识，即使记录里有昵称或实名
    - semi-anonymous: 使用昵称，昵称为空时失败，绝不回退到实名
    - non-anonymous: 使用实名，实名为空时失败

    颜色和表情优先使用参与者自己的设置，否则使用会话默认值。
    """
    level = parse_anonymity_level(level)

    if level is AnonymityLevel.ANONYMOUS:
        label = _clean(getattr(participant, "anonymous_identifier", None))
        if label is None:
            raise MissingIdentityError("匿名参与者缺少匿名标识")
    elif level is AnonymityLevel.SEMI_ANONYMOUS:
        label = _clean(getattr(participant, "nickname", None))
        if label is None:
            raise MissingNicknameError()
    else:
        label = _clean(getattr(participant, "real_name", None))
        if label is None:
            raise MissingIdentityError("实名会话需要填写姓名")

    color = _clean(getattr(participant, "color", None)) or default_color
    emoji = _clean(getattr(participant, "emoji", None)) or default_emoji
    return DisplayIdentity(label=label, color=color, emoji=emoji)


def resolve_for_session(session: Any, participant: Any) -> DisplayIdentity:
    """使用会话的匿名级别和默认外观解析身份"""
    return resolve_identity(
        session.anonymity_level,
        participant,
        default_color=session.default_color,
        default_emoji=session.default_emoji,
    )


def generate_anonymous_identifier(forbidden: Iterable[Optional[str]] = ()) -> str:
    """生成随机匿名标识，保证不与参与者自己的昵称或实名相同"""
    taken = {value.strip().casefold() for value in forbidden if value and value.strip()}
    while True:
        candidate = f"{settings.ANONYMOUS_ID_PREFIX}-{secrets.token_hex(3).upper()}"
        if candidate.casefold() not in taken:
            return candidate
