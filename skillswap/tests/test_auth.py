from datetime import timedelta
import httpx
import pytest
from fastapi.testclient import TestClient
from skillswap.auth import (
    DisabledAuthProvider, ExternalAuthProvider, LocalAuthProvider, build_auth_provider, create_access_token
)
from skillswap.main import create_app
from skillswap.models import User


def test_signup_and_login(client):
    response = client.post(
        "/api/v1/auth/signup",
        json={"email": "test@example.com", "password": "testpass123", "firstName": "Test", "lastName": "User"},
    )
    assert response.status_code == 201
    data = response.json()
    assert data["tokenType"] == "bearer"
    assert data["user"]["email"] == "test@example.com"

    response = client.post("/api/v1/auth/login", json={"email": "test@example.com", "password": "testpass123"})
    assert response.status_code == 200
    token = response.json()["accessToken"]

    me = client.get("/api/v1/auth/user", headers={"Authorization": f"Bearer {token}"})
    assert me.status_code == 200
    assert me.json()["firstName"] == "Test"


def test_login_with_wrong_password(client):
    client.post(
        "/api/v1/auth/signup",
        json={"email": "wrong@example.com", "password": "testpass123", "firstName": "W", "lastName": "P"},
    )

    response = client.post("/api/v1/auth/login", json={"email": "wrong@example.com", "password": "nope-nope"})

    assert response.status_code == 401
    assert response.json()["reauthenticate"] is True


def test_duplicate_signup(client):
    payload = {"email": "dup@example.com", "password": "testpass123", "firstName": "D", "lastName": "U"}
    assert client.post("/api/v1/auth/signup", json=payload).status_code == 201
    assert client.post("/api/v1/auth/signup", json=payload).status_code == 400


def test_expired_token(client, make_user):
    user = make_user("alice")
    token = create_access_token({"sub": user.id}, expires_delta=timedelta(minutes=-1))

    response = client.get("/api/v1/auth/user", headers={"Authorization": f"Bearer {token}"})

    assert response.status_code == 401


def test_token_for_deleted_user(client, provider, db, make_user):
    user = make_user("alice")
    headers = {"Authorization": f"Bearer {provider.issue_token(user)}"}
    db.delete(user)
    db.commit()

    assert client.get("/api/v1/auth/user", headers=headers).status_code == 401


def test_disabled_provider_rejects_everything(make_user):
    user = make_user("alice")
    token = LocalAuthProvider().issue_token(user)

    with TestClient(create_app(auth_provider=DisabledAuthProvider())) as client:
        response = client.get("/api/v1/conversations", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 401
        signup = client.post(
            "/api/v1/auth/signup",
            json={"email": "x@example.com", "password": "testpass123", "firstName": "X", "lastName": "Y"},
        )
        assert signup.status_code == 503
        assert client.get("/health").json()["authProvider"] == "none"


def identity_provider(handler):
    return ExternalAuthProvider(
        base_url="https://idp.example.com",
        api_key="anon-key",
        client=httpx.Client(base_url="https://idp.example.com", transport=httpx.MockTransport(handler)),
    )


def test_external_provider_persists_the_identity(db):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["apikey"] = request.headers["apikey"]
        if request.headers["Authorization"] != "Bearer good-token":
            return httpx.Response(401, json={"msg": "invalid JWT"})
        return httpx.Response(200, json={
            "id": "ext-1",
            "email": "ext@example.com",
            "user_metadata": {"first_name": "Ext", "last_name": "User"},
        })

    with TestClient(create_app(auth_provider=identity_provider(handler))) as client:
        response = client.get("/api/v1/auth/user", headers={"Authorization": "Bearer good-token"})
        assert response.status_code == 200
        assert response.json()["id"] == "ext-1"
        assert seen == {"auth": "Bearer good-token", "apikey": "anon-key"}

        stored = db.query(User).filter(User.id == "ext-1").one()
        assert stored.email == "ext@example.com"
        assert stored.last_name == "User"

        bad = client.get("/api/v1/auth/user", headers={"Authorization": "Bearer bad-token"})
        assert bad.status_code == 401


def test_external_provider_outage(db):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    with TestClient(create_app(auth_provider=identity_provider(handler))) as client:
        response = client.get("/api/v1/conversations", headers={"Authorization": "Bearer whatever"})
        assert response.status_code == 502


def test_external_provider_needs_a_url():
    with pytest.raises(ValueError):
        ExternalAuthProvider(base_url="", api_key="")


def test_build_auth_provider():
    assert isinstance(build_auth_provider("local"), LocalAuthProvider)
    assert isinstance(build_auth_provider("NONE"), DisabledAuthProvider)
    with pytest.raises(ValueError):
        build_auth_provider("database-free")


def test_external_identity_with_a_taken_email_is_a_conflict(db, make_user):
    make_user("alice")

    def handler(request):
        return httpx.Response(200, json={"id": "ext-123", "email": "alice@example.com"})

    with TestClient(create_app(auth_provider=identity_provider(handler))) as client:
        response = client.get("/api/v1/auth/user", headers={"Authorization": "Bearer good-token"})

    assert response.status_code == 409
    assert response.json()["error"] == "Conflict"
    assert db.query(User).filter(User.id == "ext-123").first() is None
    assert db.query(User).filter(User.email == "alice@example.com").one().id == "alice"
