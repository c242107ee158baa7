from __future__ import annotations

import logging
import time

from jose import jwt

from mlchat.core import config as app_config
from mlchat.models.profile import Profile
from mlchat.services.profiles import ensure_profile

JWT_SECRET = "super-secret-jwt-token-with-at-least-32-characters"
NEW_USER_ID = "44444444-4444-4444-8444-444444444444"


def _bearer(sub: str = NEW_USER_ID, email: str = "new@example.com") -> dict:
    now = int(time.time())
    token = jwt.encode(
        {"sub": sub, "email": email, "aud": "authenticated", "iat": now, "exp": now + 3600},
        JWT_SECRET,
        algorithm="HS256",
    )
    return {"Authorization": f"Bearer {token}"}


def test_first_request_provisions_profile_with_signup_credits(anon_client, db_session):
    app_config.settings.SUPABASE_JWT_SECRET = JWT_SECRET

    res = anon_client.get("/profile", headers=_bearer())

    assert res.status_code == 200
    body = res.json()
    assert body["id"] == NEW_USER_ID
    assert body["email"] == "new@example.com"
    assert body["credits"] == 20
    assert db_session.query(Profile).count() == 1


def test_provisioning_is_once_per_user(anon_client, db_session, fake_generator):
    app_config.settings.SUPABASE_JWT_SECRET = JWT_SECRET

    anon_client.post("/chat", headers=_bearer(), json={"message": "python lambdas?"})
    res = anon_client.get("/profile", headers=_bearer())

    assert res.json()["credits"] == 19
    assert db_session.query(Profile).count() == 1


def test_auto_provision_disabled_reports_missing_profile(anon_client):
    app_config.settings.SUPABASE_JWT_SECRET = JWT_SECRET
    app_config.settings.PROFILE_AUTO_PROVISION = False

    assert anon_client.get("/profile", headers=_bearer()).status_code == 404
    chat = anon_client.post("/chat", headers=_bearer(), json={"message": "python?"})
    assert chat.status_code == 404
    assert chat.json() == {"error": "Profile not found", "code": "NOT_FOUND"}


def test_invalid_token_rejected(anon_client):
    app_config.settings.SUPABASE_JWT_SECRET = JWT_SECRET

    res = anon_client.get("/profile", headers={"Authorization": "Bearer not-a-jwt"})

    assert res.status_code == 401
    assert res.json() == {"error": "Invalid token", "code": "UNAUTHORIZED"}
    assert res.headers["www-authenticate"] == "Bearer"


def test_unconfigured_auth_rejects(anon_client):
    res = anon_client.get("/profile", headers=_bearer())
    assert res.status_code == 401


def test_ensure_profile_refreshes_email(db_session, profiles, identity_a):
    from mlchat.auth.identity import Identity

    renamed = Identity.from_supabase(sub=identity_a.user_id, email="ada.lovelace@example.com")
    profile = ensure_profile(db_session, renamed)

    assert profile.email == "ada.lovelace@example.com"
    assert profile.credits == 3


def test_resolved_identity_is_logged_without_claims(anon_client, caplog):
    app_config.settings.SUPABASE_JWT_SECRET = JWT_SECRET
    caplog.set_level(logging.DEBUG, logger="mlchat.dependencies.auth")

    anon_client.get("/profile", headers=_bearer())

    records = [r for r in caplog.records if r.getMessage() == "auth.identity_resolved"]
    assert len(records) == 1
    assert records[0].user_id == NEW_USER_ID
    assert records[0].auth_provider == "supabase"
    assert not hasattr(records[0], "raw_claims")
