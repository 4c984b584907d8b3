"""
API路由模块
"""

from fastapi import APIRouter
from .session_routes import router as session_router
from .participant_routes import router as participant_router
from .vote_routes import router as vote_router
from .websocket_routes import router as ws_router

# 创建主路由器
api_router = APIRouter()

# 注册各个功能模块的路由
api_router.include_router(session_router, prefix="/sessions", tags=["会话管理"])
api_router.include_router(participant_router, tags=["参与者"])
api_router.include_router(vote_router, tags=["投票"])
api_router.include_router(ws_router, prefix="/ws", tags=["WebSocket"])
