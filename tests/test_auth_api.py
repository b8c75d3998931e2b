import uuid
from datetime import datetime, timedelta, timezone

from jose import jwt
from sqlalchemy import select, update

from authcore.crud.crud_refresh_token import hash_token
from authcore.models.refresh_token import RefreshToken
from authcore.models.user import User, UserRole

AUTH = "/api/v1/auth"
MGMT = "/api/v1/mgmt"
ADMIN = "/api/v1/admin"
PASSWORD = "Secret123!"
INTERNAL_API_KEY = "test-internal-api-key"


def _register(client, email="user@test.com", **extra):
    payload = {"email": email, "password": PASSWORD, "name": "Test User"}
    payload.update(extra)
    return client.post(f"{AUTH}/register", json=payload)


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def _run(client, statement):
    """Executa SQL direto no banco da aplicação, no event loop do TestClient."""
    session_factory = client.app.state.session_factory

    async def execute():
        async with session_factory() as db:
            result = await db.execute(statement)
            await db.commit()
            return result.all() if statement.is_select else None

    return client.portal.call(execute)


def test_health(client):
    assert client.get("/").json() == {"message": "Auth API is running!"}


def test_register_returns_user_and_tokens(client):
    response = _register(client, email="New.User@Test.com")

    assert response.status_code == 201
    body = response.json()
    assert body["success"] is True
    data = body["data"]
    assert data["user"]["email"] == "new.user@test.com"
    assert data["user"]["authMethod"] == "email"
    assert data["user"]["role"] == "user"
    assert "passwordHash" not in data["user"]
    assert data["tokenType"] == "Bearer"
    assert data["expiresIn"] == 900
    assert len(data["refreshToken"]) == 64


def test_register_duplicate_email_conflicts(client):
    assert _register(client).status_code == 201
    response = _register(client, email="USER@test.com")

    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": {"code": "EMAIL_ALREADY_EXISTS", "message": "An account with this email already exists"},
    }


def test_register_validation_error_envelope(client):
    response = client.post(f"{AUTH}/register", json={"email": "not-an-email", "password": "weak", "name": "X"})

    assert response.status_code == 422
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert "password" in error["details"]


def test_register_with_phone_only(client):
    response = client.post(
        f"{AUTH}/register",
        json={"phone": "+5511988887777", "password": PASSWORD, "name": "Phone User"},
    )

    assert response.status_code == 201
    user = response.json()["data"]["user"]
    assert user["authMethod"] == "phone"
    assert user["email"] is None

    login = client.post(f"{AUTH}/login", json={"phone": "+5511988887777", "password": PASSWORD})
    assert login.status_code == 200


def test_normal_login(client, settings):
    _register(client)

    response = client.post(f"{AUTH}/login", json={"email": "USER@test.com", "password": PASSWORD})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["user"]["email"] == "user@test.com"
    assert data["user"]["lastLoginAt"] is not None
    claims = jwt.get_unverified_claims(data["accessToken"])
    assert 899 <= claims["exp"] - claims["iat"] <= 901
    assert claims["iss"] == settings.JWT_ISSUER
    assert claims["aud"] == settings.JWT_AUDIENCE
    assert response.headers["X-RateLimit-Limit"] == str(settings.LOGIN_RATE_LIMIT)


def test_login_failures_are_indistinguishable(client):
    _register(client)

    unknown = client.post(f"{AUTH}/login", json={"email": "ghost@test.com", "password": PASSWORD})
    wrong = client.post(f"{AUTH}/login", json={"email": "user@test.com", "password": "Wrong123!"})

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.json() == wrong.json()
    assert unknown.json()["error"]["code"] == "INVALID_CREDENTIALS"


def test_login_is_rate_limited(client, settings):
    for _ in range(settings.LOGIN_RATE_LIMIT):
        response = client.post(f"{AUTH}/login", json={"email": "ghost@test.com", "password": PASSWORD})
        assert response.status_code == 401

    response = client.post(f"{AUTH}/login", json={"email": "ghost@test.com", "password": PASSWORD})

    assert response.status_code == 429
    assert response.json()["error"]["code"] == "RATE_LIMIT_EXCEEDED"
    assert response.headers["X-RateLimit-Remaining"] == "0"
    assert int(response.headers["Retry-After"]) > 0
    assert response.json()["error"]["details"]["limit"] == settings.LOGIN_RATE_LIMIT


def test_refresh_rotation_and_reuse(client):
    token_a = _register(client).json()["data"]["refreshToken"]

    rotated = client.post(f"{AUTH}/refresh", json={"refreshToken": token_a})
    assert rotated.status_code == 200
    token_b = rotated.json()["data"]["refreshToken"]
    assert token_b != token_a

    reused = client.post(f"{AUTH}/refresh", json={"refreshToken": token_a})
    assert reused.status_code == 403
    assert reused.json()["error"]["code"] == "TOKEN_REUSE_DETECTED"

    after = client.post(f"{AUTH}/refresh", json={"refreshToken": token_b})
    assert after.status_code == 403


def test_refresh_with_unknown_token(client):
    response = client.post(f"{AUTH}/refresh", json={"refreshToken": "0" * 64})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "INVALID_REFRESH_TOKEN"


def test_refresh_inactive_account(client):
    data = _register(client).json()["data"]
    _run(client, update(User).where(User.id == uuid.UUID(data["user"]["id"])).values(is_active=False))

    response = client.post(f"{AUTH}/refresh", json={"refreshToken": data["refreshToken"]})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "ACCOUNT_INACTIVE"
    rows = _run(client, select(RefreshToken.used_at).where(RefreshToken.token_hash == hash_token(data["refreshToken"])))
    assert rows[0][0] is None


def test_me_returns_current_user(client):
    data = _register(client).json()["data"]

    response = client.get(f"{AUTH}/me", headers=_bearer(data["accessToken"]))

    assert response.status_code == 200
    assert response.json()["data"]["user"]["id"] == data["user"]["id"]


def test_me_error_codes(client):
    data = _register(client).json()["data"]
    access_token = data["accessToken"]

    missing = client.get(f"{AUTH}/me")
    assert missing.status_code == 401
    assert missing.json()["error"]["code"] == "MISSING_TOKEN"
    assert missing.headers["WWW-Authenticate"] == "Bearer"

    lowercase = client.get(f"{AUTH}/me", headers={"Authorization": f"bearer {access_token}"})
    assert lowercase.json()["error"]["code"] == "INVALID_TOKEN_FORMAT"

    garbage = client.get(f"{AUTH}/me", headers=_bearer("abc.def.ghi"))
    assert garbage.json()["error"]["code"] == "INVALID_TOKEN"

    # Usuário removido depois da emissão do token
    _run(client, update(User).where(User.id == uuid.UUID(data["user"]["id"])).values(is_active=False))
    gone = client.get(f"{AUTH}/me", headers=_bearer(access_token))
    assert gone.status_code == 404
    assert gone.json()["error"]["code"] == "USER_NOT_FOUND"


def test_me_with_expired_token(client):
    codec = client.app.state.token_codec
    expired = codec.generate_access_token(
        subject=str(uuid.uuid4()),
        role="user",
        email="user@test.com",
        issued_at=datetime.now(timezone.utc) - timedelta(minutes=30),
    )
    response = client.get(f"{AUTH}/me", headers=_bearer(expired))

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "TOKEN_EXPIRED"


def test_logout_invalidates_refresh_token(client):
    data = _register(client).json()["data"]
    headers = _bearer(data["accessToken"])

    response = client.post(f"{AUTH}/logout", json={"refreshToken": data["refreshToken"]}, headers=headers)
    assert response.status_code == 200
    assert response.json()["data"]["message"] == "Logged out successfully"

    # Idempotente
    again = client.post(f"{AUTH}/logout", json={"refreshToken": data["refreshToken"]}, headers=headers)
    assert again.status_code == 200

    refresh = client.post(f"{AUTH}/refresh", json={"refreshToken": data["refreshToken"]})
    assert refresh.status_code == 403


def test_logout_requires_refresh_token(client):
    data = _register(client).json()["data"]

    response = client.post(f"{AUTH}/logout", json={}, headers=_bearer(data["accessToken"]))

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INVALID_REQUEST"


def test_logout_requires_bearer(client):
    data = _register(client).json()["data"]

    response = client.post(f"{AUTH}/logout", json={"refreshToken": data["refreshToken"]})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "MISSING_TOKEN"


def test_logout_all_revokes_every_session(client):
    data = _register(client).json()["data"]
    client.post(f"{AUTH}/login", json={"email": "user@test.com", "password": PASSWORD})

    response = client.post(f"{AUTH}/logout-all", headers=_bearer(data["accessToken"]))

    assert response.status_code == 200
    assert response.json()["data"]["revokedSessions"] == 2


def test_mgmt_requires_api_key(client):
    user_id = _register(client).json()["data"]["user"]["id"]

    missing = client.post(f"{MGMT}/users/{user_id}/revoke-sessions")
    assert missing.status_code in (401, 403)

    wrong = client.post(f"{MGMT}/users/{user_id}/revoke-sessions", headers={"X-API-Key": "wrong"})
    assert wrong.status_code == 401


def test_mgmt_deactivate_user_revokes_sessions(client):
    data = _register(client).json()["data"]
    api_key = {"X-API-Key": INTERNAL_API_KEY}

    response = client.patch(f"{MGMT}/users/{data['user']['id']}/status", json={"isActive": False}, headers=api_key)

    assert response.status_code == 200
    assert response.json()["data"]["user"]["isActive"] is False
    refresh = client.post(f"{AUTH}/refresh", json={"refreshToken": data["refreshToken"]})
    assert refresh.status_code == 403

    login = client.post(f"{AUTH}/login", json={"email": "user@test.com", "password": PASSWORD})
    assert login.status_code == 401

    reactivated = client.patch(f"{MGMT}/users/{data['user']['id']}/status", json={"isActive": True}, headers=api_key)
    assert reactivated.json()["data"]["user"]["isActive"] is True


def test_mgmt_revoke_sessions(client):
    data = _register(client).json()["data"]

    response = client.post(
        f"{MGMT}/users/{data['user']['id']}/revoke-sessions",
        headers={"X-API-Key": INTERNAL_API_KEY},
    )

    assert response.status_code == 200
    assert response.json()["data"]["revokedSessions"] == 1


def test_mgmt_unknown_user(client):
    response = client.post(
        f"{MGMT}/users/{uuid.uuid4()}/revoke-sessions",
        headers={"X-API-Key": INTERNAL_API_KEY},
    )

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "USER_NOT_FOUND"


def test_logout_cannot_end_another_users_session(client):
    victim = _register(client, email="victim@test.com").json()["data"]
    attacker = _register(client, email="attacker@test.com").json()["data"]

    response = client.post(
        f"{AUTH}/logout",
        json={"refreshToken": victim["refreshToken"]},
        headers=_bearer(attacker["accessToken"]),
    )
    assert response.status_code == 200

    refresh = client.post(f"{AUTH}/refresh", json={"refreshToken": victim["refreshToken"]})
    assert refresh.status_code == 200


def test_session_without_token(client):
    response = client.get(f"{AUTH}/session")

    assert response.status_code == 200
    assert response.json()["data"] == {"authenticated": False, "userId": None, "role": None}


def test_session_with_invalid_token(client):
    response = client.get(f"{AUTH}/session", headers=_bearer("not-a-jwt"))

    assert response.status_code == 200
    assert response.json()["data"]["authenticated"] is False


def test_session_with_valid_token(client):
    data = _register(client).json()["data"]

    response = client.get(f"{AUTH}/session", headers=_bearer(data["accessToken"]))

    assert response.status_code == 200
    assert response.json()["data"] == {"authenticated": True, "userId": data["user"]["id"], "role": "user"}


def test_admin_routes_reject_other_roles(client):
    data = _register(client).json()["data"]

    response = client.post(
        f"{ADMIN}/users/{data['user']['id']}/revoke-sessions",
        headers=_bearer(data["accessToken"]),
    )

    assert response.status_code == 403
    error = response.json()["error"]
    assert error["code"] == "FORBIDDEN"
    assert error["details"] == {"required_roles": ["admin"], "your_role": "user"}


def test_admin_routes_require_bearer(client):
    user_id = _register(client).json()["data"]["user"]["id"]

    response = client.post(f"{ADMIN}/users/{user_id}/revoke-sessions")

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "MISSING_TOKEN"


def test_admin_can_revoke_sessions(client):
    target = _register(client, email="target@test.com").json()["data"]
    _register(client, email="admin@test.com")
    _run(client, update(User).where(User.email == "admin@test.com").values(role=UserRole.ADMIN))
    login = client.post(f"{AUTH}/login", json={"email": "admin@test.com", "password": PASSWORD})
    admin_token = login.json()["data"]["accessToken"]

    response = client.post(f"{ADMIN}/users/{target['user']['id']}/revoke-sessions", headers=_bearer(admin_token))

    assert response.status_code == 200
    assert response.json()["data"]["revokedSessions"] == 1
    refresh = client.post(f"{AUTH}/refresh", json={"refreshToken": target["refreshToken"]})
    assert refresh.status_code == 403
