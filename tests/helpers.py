# tests/helpers.py
from fastapi.testclient import TestClient

from geoattend.backend.models.db_models import ClassInfo, Role, UserCredentials
from geoattend.backend.services.auth_service import hash_password
from fakes import FakeDb

PASSWORD = "password"
PASSWORD_HASH = hash_password(PASSWORD, rounds=4)

# Kampüs merkezine ~100 m mesafede, yarıçap 500 m.
INSIDE = {"latitude": 41.0091, "longitude": 28.9784}
# ~5.5 km kuzeyde.
OUTSIDE = {"latitude": 41.0582, "longitude": 28.9784}

DEVICE_UA = "Mozilla/5.0 (X11; Linux x86_64) GeoAttendTest/1.0"
OTHER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) OtherBrowser/2.0"


def seed(db: FakeDb):
    db.users.update({
        "admin-1": UserCredentials(id="admin-1", email="admin@campus.edu", name="Admin", role=Role.ADMIN,
                                   password_hash=PASSWORD_HASH),
        "teacher-1": UserCredentials(id="teacher-1", email="teacher1@campus.edu", name="Teacher One",
                                     role=Role.TEACHER, password_hash=PASSWORD_HASH),
        "teacher-2": UserCredentials(id="teacher-2", email="teacher2@campus.edu", name="Teacher Two",
                                     role=Role.TEACHER, password_hash=PASSWORD_HASH),
        "student-1": UserCredentials(id="student-1", email="student1@campus.edu", name="Student One",
                                     role=Role.STUDENT, enrollment_no="2024001", password_hash=PASSWORD_HASH),
        "student-2": UserCredentials(id="student-2", email="student2@campus.edu", name="Student Two",
                                     role=Role.STUDENT, enrollment_no="2024002", password_hash=PASSWORD_HASH),
    })
    db.classes.update({
        "class-1": ClassInfo(id="class-1", code="CS101", name="Intro to Computing", teacher_id="teacher-1"),
        "class-2": ClassInfo(id="class-2", code="MATH201", name="Linear Algebra", teacher_id="teacher-2"),
    })
    # student-2 hiçbir derse kayıtlı değil.
    db.schedules.update({("student-1", "class-1"), ("student-1", "class-2")})


def login(client: TestClient, email: str) -> str:
    response = client.post("/api/v1/auth/login", json={"email": email, "password": PASSWORD})
    assert response.status_code == 200, response.text
    # Cookie'yi temizle; testler kimliği açıkça Authorization başlığıyla taşır.
    client.cookies.clear()
    return response.json()["token"]


def auth_headers(token: str, user_agent: str = DEVICE_UA, **extra) -> dict:
    headers = {"Authorization": f"Bearer {token}", "User-Agent": user_agent}
    headers.update(extra)
    return headers


def bind_device(client: TestClient, token: str, user_agent: str = DEVICE_UA, platform: str = "Linux"):
    return client.post(
        "/api/v1/device/bind",
        json={"userAgent": user_agent, "platform": platform},
        headers=auth_headers(token, user_agent=user_agent),
    )


def issue_token(client: TestClient, teacher_token: str, class_id: str = "class-1", expires_in: int = 60) -> str:
    response = client.post(
        "/api/v1/attendance/token",
        json={"classId": class_id, "expiresInSeconds": expires_in},
        headers=auth_headers(teacher_token),
    )
    assert response.status_code == 201, response.text
    return response.json()["token"]


def mark(client: TestClient, token: str, session_token: str, class_code: str = "CS101",
         location: dict = INSIDE, user_agent: str = DEVICE_UA, **body):
    payload = {"classCode": class_code, "token": session_token, **location, **body}
    return client.post("/api/v1/attendance/mark", json=payload, headers=auth_headers(token, user_agent=user_agent))
