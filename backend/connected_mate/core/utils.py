"""
工具函数模块
"""

import secrets
import string
from typing import Optional
from datetime import datetime, timezone

ACCESS_CODE_ALPHABET = string.ascii_uppercase + string.digits


def utcnow() -> datetime:
    """当前UTC时间（不带时区信息，与数据库存储保持一致）"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_timestamp_with_timezone(timestamp: Optional[datetime]) -> Optional[str]:
    """格式化时间戳，确保包含UTC时区标识符"""
    if not timestamp:
        return None
    if timestamp.tzinfo is not None:
        timestamp = timestamp.astimezone(timezone.utc).replace(tzinfo=None)
    # 确保发送给前端的时间戳包含'Z'后缀，表示这是UTC时间
    return timestamp.isoformat() + 'Z'


def generate_access_code(length: int) -> str:
    """生成会话加入码（大写字母和数字）"""
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))


def normalize_access_code(code: Optional[str], length: int) -> Optional[str]:
    """规范化用户输入的加入码，格式不合法时返回None"""
    if not code:
        return None
    normalized = code.strip().upper()
    if len(normalized) != length:
        return None
    if any(ch not in ACCESS_CODE_ALPHABET for ch in normalized):
        return None
    return normalized
