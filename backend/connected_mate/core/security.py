"""
参与者凭证

匿名和半匿名参与者没有账号密码，加入时发放的bearer token是唯一凭证。
数据库只保存token的SHA-256摘要。
"""

import hashlib
import hmac
import secrets

TOKEN_BYTES = 32

# 参与者不存在时用于比较的占位摘要，保证两种失败路径耗时一致
_DUMMY_DIGEST = hashlib.sha256(b"connected-mate-no-participant").hexdigest()


def generate_participant_token() -> str:
    """生成新的参与者token"""
    return secrets.token_urlsafe(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """计算token摘要"""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def verify_token(token: str, stored_digest: str = None) -> bool:
    """常量时间比较token与已存摘要"""
    candidate = hash_token(token or "")
    expected = stored_digest or _DUMMY_DIGEST
    matched = hmac.compare_digest(candidate, expected)
    return matched and stored_digest is not None
