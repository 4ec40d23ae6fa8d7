from helpers import PASSWORD, auth_headers, login


def test_login_success_sets_cookie(client, fake_db, fake_redis):
    """
    Senaryo: Geçerli e-posta ve şifre ile giriş.
    Beklenti: 200, token ve kullanıcı bilgisi döner, http-only cookie set edilir, oturum Redis'te.
    """
    response = client.post("/api/v1/auth/login", json={"email": "teacher1@campus.edu", "password": PASSWORD})

    assert response.status_code == 200
    data = response.json()
    assert data["tokenType"] == "bearer"
    assert data["user"] == {
        "id": "teacher-1", "email": "teacher1@campus.edu", "name": "Teacher One",
        "role": "TEACHER", "enrollmentNo": None,
    }
    assert response.cookies.get("token") == data["token"]
    assert "httponly" in response.headers["set-cookie"].lower()
    assert "teacher-1" in fake_redis.sessions
    assert fake_db.actions("teacher-1") == ["LOGIN"]


def test_login_wrong_password(client, fake_db):
    response = client.post("/api/v1/auth/login", json={"email": "teacher1@campus.edu", "password": "wrong"})

    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_CREDENTIALS"
    assert fake_db.actions("unknown") == ["UNAUTHORIZED_ACCESS"]


def test_login_validation_error_shape(client):
    response = client.post("/api/v1/auth/login", json={"email": "teacher1@campus.edu"})
    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "VALIDATION_ERROR"
    assert body["details"]


def test_me_with_bearer_token(client, student_token):
    response = client.get("/api/v1/auth/me", headers=auth_headers(student_token))
    assert response.status_code == 200
    assert response.json()["enrollmentNo"] == "2024001"


def test_me_with_cookie(client):
    client.post("/api/v1/auth/login", json={"email": "student1@campus.edu", "password": PASSWORD})
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 200
    assert response.json()["id"] == "student-1"


def test_me_without_credentials(client, fake_db):
    response = client.get("/api/v1/auth/me")
    assert response.status_code == 401
    assert response.json()["code"] == "AUTH_REQUIRED"
    assert fake_db.actions("unknown") == ["UNAUTHORIZED_ACCESS"]


def test_me_with_forged_token(client):
    response = client.get("/api/v1/auth/me", headers=auth_headers("eyJhbGciOiJIUzI1NiJ9.e30.forged"))
    assert response.status_code == 401
    assert response.json()["code"] == "INVALID_TOKEN"


def test_logout_revokes_token(client, fake_db, student_token):
    response = client.post("/api/v1/auth/logout", headers=auth_headers(student_token))
    assert response.status_code == 204
    assert fake_db.actions("student-1")[-1] == "LOGOUT"

    response = client.get("/api/v1/auth/me", headers=auth_headers(student_token))
    assert response.status_code == 401
    assert response.json()["code"] == "SESSION_EXPIRED"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_unexpected_errors_are_not_leaked(client, fake_db, monkeypatch):
    async def broken(email):
        raise RuntimeError("connection string postgres://secret")
    monkeypatch.setattr(fake_db, "get_user_credentials", broken)

    response = client.post("/api/v1/auth/login", json={"email": "teacher1@campus.edu", "password": PASSWORD})

    assert response.status_code == 500
    assert response.json() == {"error": "An unexpected error occurred.", "code": "INTERNAL_ERROR"}


def test_login_is_case_insensitive_on_email(client):
    assert login(client, "STUDENT1@campus.edu")
