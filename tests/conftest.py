# tests/conftest.py
import asyncio
import os
import sys

# Ayarlar import anında okunur; uygulamayı import etmeden önce test ortamını kur.
os.environ["SECRET_KEY"] = "test-secret-key-with-enough-length-for-hs256"
os.environ["ENVIRONMENT"] = "test"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["DEVICE_HASH_ROUNDS"] = "4"
os.environ["LOG_DIR"] = ""
os.environ["CAMPUS_LAT"] = "41.0082"
os.environ["CAMPUS_LON"] = "28.9784"
os.environ["CAMPUS_RADIUS"] = "500"
os.environ["CAMPUS_UTC_OFFSET_HOURS"] = "0"

import pytest
from fastapi.testclient import TestClient

from geoattend.backend.api import dependencies
from geoattend.backend.main import app
from geoattend.backend.tools.geofence import load_geo_config
from fakes import FakeDb, FakeRedisClient, MutableClock
from helpers import bind_device, login, seed

# This is the crucial fix for Windows asyncio issues with pytest.
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


@pytest.fixture
def fake_db() -> FakeDb:
    db = FakeDb()
    seed(db)
    return db


@pytest.fixture
def fake_redis() -> FakeRedisClient:
    return FakeRedisClient()


@pytest.fixture
def clock() -> MutableClock:
    return MutableClock()


@pytest.fixture
def geo_config():
    return load_geo_config(os.environ["CAMPUS_LAT"], os.environ["CAMPUS_LON"], os.environ["CAMPUS_RADIUS"])


@pytest.fixture
def client(fake_db, fake_redis, clock, geo_config):
    """TestClient bound to in-memory fakes. Lifespan is not run, so no real pools are opened."""
    app.dependency_overrides[dependencies.get_db_client] = lambda: fake_db
    app.dependency_overrides[dependencies.get_redis_client] = lambda: fake_redis
    app.dependency_overrides[dependencies.get_geo_config] = lambda: geo_config
    app.dependency_overrides[dependencies.get_clock] = lambda: clock
    yield TestClient(app, raise_server_exceptions=False)
    app.dependency_overrides.clear()


@pytest.fixture
def student_token(client) -> str:
    return login(client, "student1@campus.edu")


@pytest.fixture
def teacher_token(client) -> str:
    return login(client, "teacher1@campus.edu")


@pytest.fixture
def admin_token(client) -> str:
    return login(client, "admin@campus.edu")


@pytest.fixture
def bound_student(client, student_token) -> str:
    """student-1 with DEVICE_UA bound as a Linux device. Returns the student's access token."""
    response = bind_device(client, student_token)
    assert response.status_code == 201, response.text
    return student_token
