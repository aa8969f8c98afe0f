import logging

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from quiz_engine.core.config import settings

logger = logging.getLogger(__name__)


def _use_immediate_transactions(engine: Engine) -> None:
    # pysqlite defers BEGIN until the first write; take the write lock up front
    # so concurrent writers wait on the busy timeout instead of failing.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_engine(url: str, **kwargs) -> Engine:
    if url.startswith("sqlite"):
        engine = create_engine(
            url, future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
            **kwargs,
        )
        _use_immediate_transactions(engine)
        return engine
    return create_engine(url, future=True, pool_pre_ping=True, pool_size=settings.DATABASE_POOL_SIZE, **kwargs)


def make_sessionmaker(bind: Engine) -> sessionmaker:
    return sessionmaker(bind=bind, autocommit=False, autoflush=False, expire_on_commit=False, future=True)


engine = make_engine(settings.DATABASE_URL)
SessionLocal = make_sessionmaker(engine)

if settings.DATABASE_READ_REPLICA_URL:
    read_engine = make_engine(settings.DATABASE_READ_REPLICA_URL)
    ReadSessionLocal = make_sessionmaker(read_engine)
else:
    ReadSessionLocal = SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_read_db():
    """Session for the attempt read path; served by the replica when one is configured."""
    db = ReadSessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db(bind: Engine = engine) -> None:
    """Create tables if they don't exist. Production deployments use migrations."""
    from quiz_engine.models.orm import Base
    Base.metadata.create_all(bind)
    logger.info("Database schema ensured on %s", bind.url.render_as_string(hide_password=True))
