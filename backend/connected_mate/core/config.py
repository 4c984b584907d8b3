"""
应用配置模块
"""

from typing import List
from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    """应用设置"""

    # 基础设置
    APP_NAME: str = "Connected Mate"
    VERSION: str = "1.0.0"
    DEBUG: bool = False

    # 服务器设置
    HOST: str = "0.0.0.0"
    PORT: int = 8001
    CORS_ORIGINS: List[str] = ["http://localhost:3000"]

    # 数据库设置
    DATABASE_URL: str = "sqlite:///./connected_mate.db"
    DB_BUSY_TIMEOUT: int = 30  # SQLite写锁等待时间（秒）
    DB_RETRY_ATTEMPTS: int = 3
    DB_RETRY_DELAY: float = 0.5  # 重试间隔基数（秒）

    # 日志设置
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False

    # 会话设置
    DEFAULT_MAX_PARTICIPANTS: int = 100
    PARTICIPANT_HARD_LIMIT: int = -1  # 套餐级别的每会话人数上限，-1表示不限
    ACCESS_CODE_LENGTH: int = 6
    ANONYMOUS_ID_PREFIX: str = "Participant"

    # 投票设置
    DEFAULT_MAX_VOTES_PER_PARTICIPANT: int = 3
    DEFAULT_TOP_VOTED_COUNT: int = 3
    DEFAULT_VOTING_DURATION: int = 1200  # 投票时长（秒）
    MAX_CONTRIBUTION_LENGTH: int = 2000

    class Config:
        env_file = ".env"
        case_sensitive = True

# 全局设置实例
settings = Settings()
