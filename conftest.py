# conftest.py
import os
import random
import string

os.environ.setdefault("APP_SECRET", "test-secret")
os.environ.setdefault("APP_ENV", "dev")
os.environ.setdefault("DB_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cafepos.client import PosClient
from cafepos.context import RequestContext
from cafepos.db import Base, get_db
from cafepos.main import app
from cafepos.models.core import User

# one shared in-memory database per test
engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

ADMIN_MOBILE = "9999999999"
ADMIN_PASSWORD = "admin"
ADMIN_PIN = "1234"


@pytest.fixture
def db_session():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def other_session(db_session):
    """A second session on the same database: another terminal working the same orders."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def client(db_session):
    def override_get_db():
        try:
            yield db_session
        except Exception:
            db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def base_url():
    return "http://testserver"


@pytest.fixture
def boot(client, base_url):
    r = client.post(f"{base_url}/admin/dev-bootstrap")
    assert r.status_code == 200, f"/admin/dev-bootstrap failed: {r.text}"
    return r.json()


@pytest.fixture
def auth_headers(client, base_url, boot):
    r = client.post(f"{base_url}/auth/login", params={"mobile": ADMIN_MOBILE, "password": ADMIN_PASSWORD})
    assert r.status_code == 200, f"/auth/login failed: {r.text}"
    tok = r.json()["access_token"]
    return {"Authorization": f"Bearer {tok}"}


@pytest.fixture
def ctx(db_session, boot):
    """Request context for calling services directly, as the seeded admin."""
    u = db_session.query(User).filter(User.mobile == ADMIN_MOBILE).one()
    return RequestContext(user_id=u.id, branch_id=u.branch_id)


@pytest.fixture
def pos(client, boot):
    p = PosClient(client)
    p.login(ADMIN_MOBILE, ADMIN_PASSWORD)
    return p


@pytest.fixture
def rng_suffix():
    return "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
