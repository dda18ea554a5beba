"""
Tests for signup, session cookies and the page access middleware.
"""
from core.middleware import requires_session


def test_signup_creates_user_once(client, identity):
    token = identity.create_id_token("user-1", email="user1@example.com")

    first = client.post("/api/auth/signup", json={"idToken": token, "fullName": "Ada Lovelace"})
    assert first.status_code == 200
    assert first.json()["message"] == "User created successfully"
    assert first.json()["user"]["full_name"] == "Ada Lovelace"

    second = client.post("/api/auth/signup", json={"idToken": token, "fullName": "Someone Else"})
    assert second.json()["message"] == "User already exists"


def test_signup_rejects_bad_token(client):
    response = client.post("/api/auth/signup", json={"idToken": "not-a-token"})
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid authentication token"


def test_signup_requires_email(client, identity):
    token = identity.create_id_token("user-1")
    response = client.post("/api/auth/signup", json={"idToken": token})
    assert response.status_code == 400
    assert response.json()["error"] == "Email is required"


def test_session_cookie_lifecycle(client, identity):
    token = identity.create_id_token("user-1", email="user1@example.com")

    created = client.post("/api/auth/session", json={"idToken": token})
    assert created.status_code == 200
    set_cookie = created.headers["set-cookie"]
    assert set_cookie.startswith("session=")
    assert "HttpOnly" in set_cookie
    assert "SameSite=strict" in set_cookie
    assert "Max-Age=432000" in set_cookie

    verified = client.get("/api/auth/verify")
    assert verified.status_code == 200
    assert verified.json()["user"]["uid"] == "user-1"
    assert client.post("/api/auth/verify").status_code == 200

    cookie = client.cookies.get("session")
    assert client.post("/api/auth/logout").json()["message"] == "Logged out successfully"

    # A revoked cookie no longer verifies even if replayed
    client.cookies.set("session", cookie)
    response = client.get("/api/auth/verify")
    assert response.status_code == 401
    assert response.json()["error"] == "Invalid session"


def test_verify_without_cookie(client):
    response = client.get("/api/auth/verify")
    assert response.status_code == 401
    assert response.json()["error"] == "No session cookie found"


def test_session_rejects_bad_token(client):
    response = client.post("/api/auth/session", json={"idToken": "garbage"})
    assert response.status_code == 401
    assert response.json()["error"] == "Failed to create session"


def test_requires_session_paths():
    assert requires_session("/dashboard")
    assert requires_session("/library/123")
    assert not requires_session("/")
    assert not requires_session("/login")
    assert not requires_session("/health")
    assert not requires_session("/api/audio")
    assert not requires_session("/favicon.ico")
    assert not requires_session("/_next/static/chunk")


def test_page_without_session_redirects_to_login(client):
    response = client.get("/dashboard", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "/login"


def test_page_with_invalid_session_clears_cookie(client):
    client.cookies.set("session", "forged")
    response = client.get("/dashboard", follow_redirects=False)
    assert response.status_code == 307
    assert 'session=""' in response.headers["set-cookie"] or "Max-Age=0" in response.headers["set-cookie"]


def test_page_with_valid_session_passes_through(client, identity):
    token = identity.create_id_token("user-1", email="user1@example.com")
    client.post("/api/auth/session", json={"idToken": token})

    response = client.get("/dashboard", follow_redirects=False)
    # No page is mounted at this path, but the request got past the middleware
    assert response.status_code == 404


def test_public_and_api_paths_are_not_redirected(client):
    assert client.get("/", follow_redirects=False).status_code == 200
    assert client.get("/health").json()["status"] == "healthy"
    assert client.get("/api/audio", follow_redirects=False).status_code == 401


def test_responses_carry_request_id_and_security_headers(client):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["x-request-id"] == "req-123"
    assert response.headers["x-content-type-options"] == "nosniff"
    assert response.headers["x-frame-options"] == "DENY"
