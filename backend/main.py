#!/usr/bin/env python3
"""
Connected Mate - 后端主入口
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from connected_mate.core.config import settings
from connected_mate.core.exceptions import MateError
from connected_mate.core.logging_config import get_logger, setup_logging
from connected_mate.api import api_router
from connected_mate.core.database import init_db

setup_logging()
logger = get_logger("main")

app = FastAPI(
    title=settings.APP_NAME,
    description="互动会话后端API：会话生命周期、参与者身份与投票",
    version=settings.VERSION
)

# CORS设置
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(MateError)
async def mate_error_handler(request: Request, exc: MateError):
    """业务异常统一转换为带错误码的JSON响应"""
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

# 注册API路由
app.include_router(api_router, prefix="/api")

@app.on_event("startup")
async def startup_event():
    """应用启动时的初始化"""
    logger.info(f"🚀 启动 {settings.APP_NAME} 后端服务...")
    await init_db()

@app.get("/")
async def root():
    """根路径健康检查"""
    return {"message": f"{settings.APP_NAME} 后端运行中", "status": "healthy"}

@app.get("/health")
async def health_check():
    """健康检查端点"""
    return {"status": "healthy", "service": "connected-mate"}

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG,
        log_level=settings.LOG_LEVEL.lower()
    )
