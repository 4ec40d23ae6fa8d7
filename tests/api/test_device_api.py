from helpers import DEVICE_UA, OTHER_UA, auth_headers, bind_device


def test_bind_device(client, fake_db, student_token):
    response = bind_device(client, student_token)

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    assert body["binding"]["userId"] == "student-1"
    assert body["binding"]["platform"] == "Linux"
    assert "deviceHash" not in body["binding"]
    assert fake_db.actions("student-1")[-1] == "DEVICE_BIND"


def test_bind_twice_conflicts(client, fake_db, bound_student):
    response = bind_device(client, bound_student, user_agent=OTHER_UA, platform="Windows")

    assert response.status_code == 409
    body = response.json()
    assert body["code"] == "DEVICE_ALREADY_BOUND"
    assert body["hint"]
    assert fake_db.actions("student-1")[-1] == "DEVICE_BIND_FAIL"


def test_bind_invalid_data(client, fake_db, student_token):
    response = client.post("/api/v1/device/bind", json={"userAgent": "short", "platform": "Linux"},
                           headers=auth_headers(student_token))
    assert response.status_code == 400
    assert response.json()["code"] == "INVALID_DEVICE_DATA"

    response = client.post("/api/v1/device/bind", json={"userAgent": DEVICE_UA, "platform": "PalmOS"},
                           headers=auth_headers(student_token))
    assert response.status_code == 400
    assert fake_db.bindings == {}
    assert fake_db.actions("student-1")[-2:] == ["DEVICE_BIND_FAIL", "DEVICE_BIND_FAIL"]


def test_bind_requires_authentication(client):
    response = client.post("/api/v1/device/bind", json={"userAgent": DEVICE_UA, "platform": "Linux"})
    assert response.status_code == 401


def test_device_info(client, student_token):
    missing = client.get("/api/v1/device/info", headers=auth_headers(student_token))
    assert missing.status_code == 404
    assert missing.json()["code"] == "DEVICE_NOT_BOUND"

    bind_device(client, student_token)
    response = client.get("/api/v1/device/info", headers=auth_headers(student_token))
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "bound"
    assert body["currentDevice"]["platform"] == "Linux"
    assert body["binding"]["userId"] == "student-1"


def test_validate_device(client, student_token):
    unbound = client.post("/api/v1/device/validate", headers=auth_headers(student_token))
    assert unbound.status_code == 404
    assert unbound.json()["isValid"] is False

    bind_device(client, student_token)
    same = client.post("/api/v1/device/validate", headers=auth_headers(student_token))
    assert same.status_code == 200
    assert same.json()["isValid"] is True

    other = client.post("/api/v1/device/validate", headers=auth_headers(student_token, user_agent=OTHER_UA))
    assert other.status_code == 200
    assert other.json()["isValid"] is False
    assert other.json()["code"] == "DEVICE_MISMATCH"


def test_declared_platform_header_is_used_for_validation(client, student_token):
    response = client.post("/api/v1/device/bind", json={"userAgent": DEVICE_UA, "platform": "Android",
                                                         "additionalEntropy": "seed"},
                           headers=auth_headers(student_token))
    assert response.status_code == 201

    sniffed = client.post("/api/v1/device/validate", headers=auth_headers(student_token))
    assert sniffed.json()["isValid"] is False

    declared = client.post("/api/v1/device/validate", headers=auth_headers(
        student_token, **{"X-Device-Platform": "Android", "X-Device-Entropy": "seed"}))
    assert declared.json()["isValid"] is True


def test_admin_unbind_and_list(client, fake_db, bound_student, admin_token):
    listing = client.get("/api/v1/device/list", headers=auth_headers(admin_token))
    assert listing.status_code == 200
    assert listing.json()["total"] == 1
    assert listing.json()["bindings"][0]["user"]["id"] == "student-1"

    response = client.delete("/api/v1/device/unbind", params={"userId": "student-1"},
                             headers=auth_headers(admin_token))
    assert response.status_code == 200
    assert response.json()["userId"] == "student-1"
    assert fake_db.bindings == {}
    assert fake_db.actions("student-1")[-1] == "DEVICE_UNBIND"

    again = client.delete("/api/v1/device/unbind", params={"userId": "student-1"},
                          headers=auth_headers(admin_token))
    assert again.status_code == 404


def test_unbind_requires_user_id(client, admin_token):
    response = client.delete("/api/v1/device/unbind", headers=auth_headers(admin_token))
    assert response.status_code == 400


def test_admin_endpoints_reject_students(client, fake_db, bound_student):
    response = client.delete("/api/v1/device/unbind", params={"userId": "student-1"},
                             headers=auth_headers(bound_student))
    assert response.status_code == 403
    assert response.json()["code"] == "ADMIN_REQUIRED"
    assert "student-1" in fake_db.bindings

    assert client.get("/api/v1/device/list", headers=auth_headers(bound_student)).status_code == 403
