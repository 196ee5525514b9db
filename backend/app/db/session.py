"""Database session management"""
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from app.models import Base  # Import all models to register with Base.metadata
from app.core.config import settings


def enable_sqlite_savepoints(engine: Engine) -> Engine:
    """Make SAVEPOINT behave on pysqlite

    pysqlite only emits BEGIN lazily before DML, so a SAVEPOINT issued first
    would open (and RELEASE would commit) its own transaction. Disabling the
    driver's transaction handling and emitting BEGIN ourselves keeps nested
    transactions inside the outer unit of work.
    """
    @event.listens_for(engine, "connect")
    def _do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _do_begin(conn):
        conn.exec_driver_sql("BEGIN")

    return engine


def build_engine(database_url: str, **kwargs) -> Engine:
    """Create an engine; SQLite URLs get the savepoint fix applied"""
    if database_url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)
        return enable_sqlite_savepoints(create_engine(database_url, connect_args=connect_args, **kwargs))
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=3600,
        **kwargs
    )


# Create engine
engine = build_engine(settings.DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """Dependency for FastAPI endpoints"""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def init_db():
    """Initialize database (create all tables)"""
    Base.metadata.create_all(bind=engine)
