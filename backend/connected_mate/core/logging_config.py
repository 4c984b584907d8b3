"""
日志配置
开发环境输出可读文本，LOG_JSON开启时输出JSON结构化日志
"""

import json
import logging
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict

from connected_mate.core.config import settings

ROOT_LOGGER_NAME = "connected_mate"

# 当前请求所属的会话ID，用于日志关联
session_id_var: ContextVar[str] = ContextVar("session_id", default="")

# LogRecord自带的属性，不作为extra字段输出
_RESERVED_ATTRS = {
    "name", "msg", "args", "created", "filename", "funcName", "levelname",
    "levelno", "lineno", "module", "msecs", "pathname", "process",
    "processName", "relativeCreated", "stack_info", "exc_info", "exc_text",
    "thread", "threadName", "message", "taskName", "session_id",
}


def set_session_context(session_id) -> None:
    """设置当前上下文的会话ID"""
    session_id_var.set(str(session_id) if session_id is not None else "")


class JSONFormatter(logging.Formatter):
    """JSON格式化器，便于日志聚合工具解析"""

    def format(self, record: logging.LogRecord) -> str:
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        session_id = session_id_var.get()
        if session_id:
            log_data["session_id"] = session_id

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                log_data[key] = value

        return json.dumps(log_data, ensure_ascii=False, default=str)


class ContextualFormatter(logging.Formatter):
    """可读文本格式，附带会话ID"""

    def format(self, record: logging.LogRecord) -> str:
        record.session_id = session_id_var.get() or "-"
        return super().format(record)


def setup_logging() -> logging.Logger:
    """根据配置初始化应用日志"""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    if settings.LOG_JSON:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ContextualFormatter(
            "%(asctime)s %(levelname)-7s [%(name)s] [session=%(session_id)s] %(message)s"
        ))
    logger.addHandler(handler)
    logger.propagate = False
    return logger


def get_logger(name: str) -> logging.Logger:
    """获取应用命名空间下的logger"""
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
