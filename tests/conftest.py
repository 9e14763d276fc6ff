import os

# keep the app's own engine off the working directory
os.environ.setdefault("DATABASE_URL", "sqlite://")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticketpos.db import create_schema, get_db, install_sqlite_pragmas
from ticketpos.main import app
from ticketpos.models.enums import OperatorRole, TableZone
from ticketpos.services import operators, tables

MANAGER_SECRET = "4321"
STAFF_SECRET = "1111"


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    install_sqlite_pragmas(eng, wal=False)
    create_schema(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def staff(db_session):
    op = operators.create_operator(db_session, "Ayse", OperatorRole.STAFF, STAFF_SECRET)
    return operators.OperatorContext(id=op.id, role=op.role)


@pytest.fixture
def manager(db_session):
    op = operators.create_operator(db_session, "Mehmet", OperatorRole.MANAGER, MANAGER_SECRET)
    return operators.OperatorContext(id=op.id, role=op.role)


@pytest.fixture
def table(db_session):
    return tables.create_table(db_session, "T1", TableZone.INSIDE, 4)


@pytest.fixture
def client(session_factory):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
