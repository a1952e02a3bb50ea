import os
import tempfile

# must be set before the application modules read their settings
_tmp = tempfile.mkdtemp(prefix="qr-attendance-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_tmp}/test.db"
os.environ["QR_SECRET"] = "test-qr-secret"
os.environ["QR_TTL_SECONDS"] = "60"
os.environ["EXPIRE_SWEEP_INTERVAL_SECONDS"] = "3600"
os.environ["ALLOW_MULTI_SCAN"] = "false"
os.environ["NATS_ENABLED"] = "false"
os.environ["RL_ENABLED"] = "false"
os.environ["ADMIN_TOKEN"] = "admin-t"
os.environ["DISPLAY_TOKEN"] = "display-t"
os.environ["USER_TOKEN"] = "user-t"

import pytest
import httpx

from qr_attendance.core.broadcast import BroadcastHub
from qr_attendance.core.config import get_settings
from qr_attendance.db import engine, async_session_maker
from qr_attendance.models import Base, Company, Display
from qr_attendance.main import app

ADMIN = {"Authorization": "Bearer admin-t"}
DISPLAY = {"Authorization": "Bearer display-t"}
USER = {"Authorization": "Bearer user-t"}

def scan_payload(token: str, **overrides) -> dict:
    body = {
        "token": token,
        "fullName": "Nguyen Van A",
        "jobTitle": "Engineer",
        "employeeId": "EMP-001",
        "type": "check-in",
        "lat": 21.0285,
        "lng": 105.8542,
        "accuracy": 12.5,
    }
    body.update(overrides)
    return body

@pytest.fixture
async def schema():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield

@pytest.fixture
async def db(schema):
    async with async_session_maker() as session:
        yield session

@pytest.fixture
def session_factory(schema):
    return async_session_maker

@pytest.fixture
def settings():
    return get_settings()

@pytest.fixture
def hub():
    return BroadcastHub(queue_size=10)

@pytest.fixture
async def directory(db):
    db.add(Company(id="acme", name="Acme Corp", employee_count=12, location_label="Hanoi"))
    db.add(Company(id="globex", name="Globex", employee_count=3))
    db.add(Display(id="kiosk-acme", company_id="acme", label="Main Gate"))
    db.add(Display(id="kiosk-acme-2", company_id="acme", label="Back Door"))
    await db.commit()

@pytest.fixture
async def client(schema):
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
