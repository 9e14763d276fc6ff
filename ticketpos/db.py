from sqlalchemy import create_engine, event
from sqlalchemy.orm import declarative_base, sessionmaker

from ticketpos.core.config import settings

# Declarative base shared by every model module
Base = declarative_base()

SQLALCHEMY_DATABASE_URL = settings.database_url
_IS_SQLITE = SQLALCHEMY_DATABASE_URL.startswith("sqlite")
_IS_MEMORY = _IS_SQLITE and (":memory:" in SQLALCHEMY_DATABASE_URL or SQLALCHEMY_DATABASE_URL == "sqlite://")

_connect_args = {"check_same_thread": False, "timeout": 60} if _IS_SQLITE else {}

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args=_connect_args,
    pool_pre_ping=True,
)


def install_sqlite_pragmas(target_engine, wal: bool = True) -> None:
    """Per-connection PRAGMAs; WAL only makes sense for file databases."""

    @event.listens_for(target_engine, "connect")
    def _on_connect(dbapi_conn, _):
        cur = dbapi_conn.cursor()
        try:
            if wal:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
            cur.execute("PRAGMA busy_timeout=60000;")
            cur.execute("PRAGMA foreign_keys=ON;")
        finally:
            cur.close()


if _IS_SQLITE:
    install_sqlite_pragmas(engine, wal=not _IS_MEMORY)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def create_schema(bind=None) -> None:
    # model modules must be imported before create_all
    from ticketpos.models import operator as _operator_models  # noqa: F401
    from ticketpos.models import table as _table_models  # noqa: F401
    from ticketpos.models import ticket as _ticket_models  # noqa: F401

    Base.metadata.create_all(bind=bind or engine)


# FastAPI dependency
def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
