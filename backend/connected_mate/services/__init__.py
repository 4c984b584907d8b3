# 业务逻辑服务包
from .session_service import SessionService
from .participant_service import ParticipantService
from .vote_service import VoteService
from .contribution_service import ContributionService
from .websocket_service import WebSocketManager

__all__ = ["SessionService", "ParticipantService", "VoteService", "ContributionService", "WebSocketManager"]
