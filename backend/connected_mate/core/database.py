"""
数据库配置
"""
import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from connected_mate.core.config import settings
from connected_mate.core.logging_config import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


def create_db_engine(database_url: str) -> Engine:
    """根据URL创建数据库引擎"""
    connect_args = {}
    if database_url.startswith("sqlite"):
        # 多个请求线程共享同一个SQLite文件，写入按数据库锁串行化
        connect_args = {
            "check_same_thread": False,
            "timeout": settings.DB_BUSY_TIMEOUT,
        }
    return create_engine(
        database_url,
        connect_args=connect_args,
        echo=False  # 设置为True可以看到SQL查询日志
    )


engine = create_db_engine(settings.DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()

def get_db():
    """获取数据库会话"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()

def import_models():
    """导入所有模型，保证它们注册到Base.metadata"""
    from connected_mate.models.session import LiveSession  # noqa: F401
    from connected_mate.models.participant import Participant  # noqa: F401
    from connected_mate.models.contribution import Contribution  # noqa: F401
    from connected_mate.models.vote import Vote  # noqa: F401

async def init_db(bind: Optional[Engine] = None):
    """初始化数据库"""
    import_models()

    # 创建所有表
    Base.metadata.create_all(bind=bind or engine)
    logger.info("✅ 数据库表已就绪")

async def with_db_retry(
    db: Session,
    operation: Callable[[], Awaitable[T]],
    attempts: Optional[int] = None,
    delay: Optional[float] = None,
) -> T:
    """在请求边界对基础设施错误做有限次数的重试

    业务层的预期错误（MateError）不会被重试，直接向上抛出。
    """
    attempts = attempts or settings.DB_RETRY_ATTEMPTS
    delay = settings.DB_RETRY_DELAY if delay is None else delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except OperationalError as e:
            db.rollback()
            if attempt >= attempts:
                logger.error(f"❌ 数据库操作失败，已重试{attempts}次: {e}")
                raise
            logger.warning(f"⚠️ 数据库操作失败，第{attempt}次重试: {e}")
            await asyncio.sleep(delay * attempt)

    raise RuntimeError("unreachable")
