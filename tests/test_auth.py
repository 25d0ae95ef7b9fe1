from __future__ import annotations

import pytest
import requests

from conftest import FakeResponse
from order_tracking.auth import GoTrueIdentityProvider, InMemoryIdentityProvider
from order_tracking.exceptions import AuthenticationError, TransportError, ValidationError

AUTH = "https://project.example.co/auth/v1"


# ----------------------------------------------------------------------
# In-memory provider
# ----------------------------------------------------------------------
def test_sign_up_issues_token(identity):
    user = identity.sign_up("maker@shop.example", "secret-pass")
    assert user.user_id
    assert user.access_token
    assert identity.get_user(user.access_token).user_id == user.user_id


def test_sign_in_and_out(identity):
    created = identity.sign_up("maker@shop.example", "secret-pass")
    signed_in = identity.sign_in("Maker@Shop.example", "secret-pass")
    assert signed_in.user_id == created.user_id
    assert signed_in.access_token != created.access_token

    identity.sign_out(signed_in.access_token)
    assert identity.get_user(signed_in.access_token) is None
    assert identity.get_user(created.access_token) is not None


def test_wrong_password(identity):
    identity.sign_up("maker@shop.example", "secret-pass")
    with pytest.raises(AuthenticationError):
        identity.sign_in("maker@shop.example", "wrong-pass")
    with pytest.raises(AuthenticationError):
        identity.sign_in("nobody@shop.example", "secret-pass")


@pytest.mark.parametrize("email, password", [("bad-email", "secret-pass"), ("a@b.example", "123")])
def test_sign_up_validation(email, password):
    with pytest.raises(ValidationError):
        InMemoryIdentityProvider().sign_up(email, password)


def test_sign_up_twice(identity):
    identity.sign_up("maker@shop.example", "secret-pass")
    with pytest.raises(ValidationError):
        identity.sign_up("maker@shop.example", "other-pass")


def test_unknown_token(identity):
    assert identity.get_user("nope") is None
    assert identity.get_user(None) is None


# ----------------------------------------------------------------------
# Hosted provider
# ----------------------------------------------------------------------
@pytest.fixture
def gotrue(fake_session):
    return GoTrueIdentityProvider(AUTH, "anon-key", timeout=3, session=fake_session)


def test_password_sign_in(gotrue, fake_session):
    fake_session.queue(
        FakeResponse(
            200,
            {"access_token": "jwt-1", "token_type": "bearer", "user": {"id": "u1", "email": "a@b.example"}},
        )
    )
    user = gotrue.sign_in("a@b.example", "secret-pass")
    assert (user.user_id, user.email, user.access_token) == ("u1", "a@b.example", "jwt-1")
    call = fake_session.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == f"{AUTH}/token"
    assert call["params"] == {"grant_type": "password"}
    assert call["json"] == {"email": "a@b.example", "password": "secret-pass"}
    assert call["headers"]["apikey"] == "anon-key"


def test_rejected_credentials(gotrue, fake_session):
    fake_session.queue(FakeResponse(400, {"error": "invalid_grant", "error_description": "Invalid login credentials"}))
    with pytest.raises(AuthenticationError) as excinfo:
        gotrue.sign_in("a@b.example", "wrong")
    assert "Invalid login credentials" in str(excinfo.value)


def test_sign_up_pending_confirmation(gotrue, fake_session):
    fake_session.queue(FakeResponse(200, {"id": "u2", "email": "new@b.example"}))
    user = gotrue.sign_up("new@b.example", "secret-pass")
    assert user.user_id == "u2"
    assert user.access_token is None
    assert fake_session.calls[0]["url"] == f"{AUTH}/signup"


def test_get_user_with_token(gotrue, fake_session):
    fake_session.queue(FakeResponse(200, {"id": "u1", "email": "a@b.example"}))
    user = gotrue.get_user("jwt-1")
    assert user.user_id == "u1"
    assert user.access_token == "jwt-1"
    call = fake_session.calls[0]
    assert call["method"] == "GET"
    assert call["url"] == f"{AUTH}/user"
    assert call["headers"]["Authorization"] == "Bearer jwt-1"


def test_expired_token_means_signed_out(gotrue, fake_session):
    fake_session.queue(FakeResponse(401, {"msg": "invalid JWT"}))
    assert gotrue.get_user("old-jwt") is None


def test_sign_out_ignores_expired_token(gotrue, fake_session):
    fake_session.queue(FakeResponse(401, {"msg": "invalid JWT"}))
    gotrue.sign_out("old-jwt")
    assert fake_session.calls[0]["url"] == f"{AUTH}/logout"


def test_provider_unreachable(gotrue, fake_session):
    fake_session.queue(requests.Timeout("timed out"))
    with pytest.raises(TransportError):
        gotrue.sign_in("a@b.example", "secret-pass")


def test_provider_server_error(gotrue, fake_session):
    fake_session.queue(FakeResponse(503, {"msg": "maintenance"}))
    with pytest.raises(TransportError):
        gotrue.get_user("jwt-1")


def test_non_json_user_body_is_a_transport_error(gotrue, fake_session):
    fake_session.queue(FakeResponse(200, None, text="<html>proxy login</html>"))
    with pytest.raises(TransportError):
        gotrue.get_user("jwt-1")


def test_malformed_token_is_rejected(gotrue, fake_session):
    fake_session.queue(FakeResponse(422, {"msg": "bad_jwt"}))
    with pytest.raises(AuthenticationError):
        gotrue.get_user("not-a-jwt")
