from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, DeclarativeBase
from anchorkeeper.config import settings

# Execution option that asks SQLite to take the write lock when the transaction opens.
SQLITE_IMMEDIATE = "sqlite_immediate"


class Base(DeclarativeBase):
    pass


def _configure_sqlite(dbapi_connection, _):
    """
    Hand transaction control to SQLAlchemy (pysqlite otherwise defers BEGIN)
    and switch to WAL so readers do not block the scheduler's write lock.
    """
    dbapi_connection.isolation_level = None
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
    finally:
        cursor.close()


def _begin_sqlite(conn):
    if conn.get_execution_options().get(SQLITE_IMMEDIATE):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
    else:
        conn.exec_driver_sql("BEGIN")


def _make_lock_timeout_hook(seconds: int):
    def _set_lock_timeout(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        try:
            cursor.execute(f"SET SESSION innodb_lock_wait_timeout = {int(seconds)}")
        finally:
            cursor.close()
    return _set_lock_timeout


def make_engine(url: str, lock_timeout: int | None = None) -> Engine:
    """
    Build an engine for the request store.
    SQLite is used for development and tests; MySQL runs at READ COMMITTED
    with row locks taken by SELECT ... FOR UPDATE.
    """
    lock_timeout = settings.db_lock_timeout_seconds if lock_timeout is None else lock_timeout

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={"check_same_thread": False, "timeout": lock_timeout},
        )
        event.listen(engine, "connect", _configure_sqlite)
        event.listen(engine, "begin", _begin_sqlite)
        return engine

    engine = create_engine(
        url,
        pool_pre_ping=True,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        isolation_level="READ COMMITTED",
    )
    if engine.dialect.name == "mysql":
        event.listen(engine, "connect", _make_lock_timeout_hook(lock_timeout))
    return engine


def make_session_factory(bind: Engine) -> sessionmaker:
    # Repositories hand rows back after their session closes.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


engine = make_engine(settings.database_url)

SessionLocal = make_session_factory(engine)
