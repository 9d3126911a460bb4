from uuid import uuid4


def test_signup_login_and_duplicate_email(client) -> None:
    email = f"dup_{uuid4().hex[:8]}@test.com"
    first = client.post("/auth/signup", json={"email": email, "password": "StrongPass123"})
    assert first.status_code == 201
    assert first.json()["token_type"] == "bearer"

    duplicate = client.post("/auth/signup", json={"email": email.upper(), "password": "StrongPass123"})
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"] == "Email already registered"

    login = client.post("/auth/login", data={"username": email, "password": "StrongPass123"})
    assert login.status_code == 200
    bad_login = client.post("/auth/login", data={"username": email, "password": "WrongPass123"})
    assert bad_login.status_code == 401


def test_invalid_token_is_rejected(client) -> None:
    response = client.get("/quota", headers={"Authorization": "Bearer not-a-token"})
    assert response.status_code == 401
