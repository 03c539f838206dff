import logging
from pathlib import Path

from sqlalchemy import Engine, event
from sqlmodel import SQLModel, create_engine

from . import models  # noqa: F401  注册表结构，create_all 之前必须导入

logger = logging.getLogger(__name__)


def create_vault_engine(db_path: Path, echo: bool = False) -> Engine:
    # SQLite 连接会在多个工作线程间共享，需要关闭 check_same_thread；
    # timeout 让并发写入排队等待文件锁而不是立即失败
    engine = create_engine(
        f"sqlite:///{Path(db_path).as_posix()}",
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    return engine


def init_db(engine: Engine) -> None:
    # 自动扫描所有继承自 SQLModel 的表并创建
    SQLModel.metadata.create_all(engine)
    logger.info("Vault schema ready at %s", engine.url.database)
