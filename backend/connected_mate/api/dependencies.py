"""
API依赖项：主持人身份和参与者凭证
"""

from typing import Optional
from fastapi import Depends, Header
from sqlalchemy.orm import Session
from connected_mate.core.database import get_db
from connected_mate.core.exceptions import HostIdentityRequiredError, InvalidTokenError
from connected_mate.models.participant import Participant
from connected_mate.services.participant_service import ParticipantService
from connected_mate.services.websocket_service import WebSocketManager, get_websocket_manager

BEARER_PREFIX = "bearer "

async def get_host_id(x_host_id: Optional[str] = Header(default=None)) -> str:
    """主持人ID由外部身份服务提供，这里只当作不透明字符串使用"""
    if not x_host_id or not x_host_id.strip():
        raise HostIdentityRequiredError()
    return x_host_id.strip()

def get_bearer_token(authorization: Optional[str] = Header(default=None)) -> str:
    """从Authorization头中取出bearer token"""
    if not authorization or not authorization.lower().startswith(BEARER_PREFIX):
        raise InvalidTokenError()
    token = authorization[len(BEARER_PREFIX):].strip()
    if not token:
        raise InvalidTokenError()
    return token

async def get_current_participant(
    x_participant_id: Optional[int] = Header(default=None),
    token: str = Depends(get_bearer_token),
    db: Session = Depends(get_db)
) -> Participant:
    """校验参与者凭证"""
    return await ParticipantService(db).lookup(x_participant_id, token)

def get_broadcaster() -> WebSocketManager:
    return get_websocket_manager()
