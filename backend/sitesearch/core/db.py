from sqlalchemy import Engine, event
from sqlmodel import SQLModel, create_engine

from sitesearch.core.config import settings


def make_engine(url: str) -> Engine:
    """
    Build the engine for ``url``.

    SQLite connections are shared across crawl threads, so they get a busy
    timeout and every transaction starts with ``BEGIN IMMEDIATE``: writers
    queue on the database lock instead of failing on lock upgrade.
    """
    if not url.startswith("sqlite"):
        return create_engine(url, pool_pre_ping=True)

    engine = create_engine(
        url, connect_args={"check_same_thread": False, "timeout": 30}
    )

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        # 由 SQLAlchemy 自己发出 BEGIN
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)


# 确保在初始化数据库之前导入所有 SQLModel 模型 (sitesearch.models)
# 否则，SQLModel 可能无法正确初始化关系
def init_db(db_engine: Engine) -> None:
    from sitesearch import models  # noqa: F401

    SQLModel.metadata.create_all(db_engine)
