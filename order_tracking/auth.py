"""Clients for the external identity provider.

The tracker never stores or verifies credentials itself. It forwards them to
the provider and keeps only the returned :class:`AuthIdentity` handle.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import threading
from typing import Any, Dict, Mapping, Optional, Tuple
from uuid import uuid4

import requests

from .domain import AuthIdentity, is_valid_email
from .exceptions import AuthenticationError, TransportError, ValidationError
from .logger import get_logger

log = get_logger("auth")

MIN_PASSWORD_LENGTH = 6


def _check_credentials(email: str, password: str) -> str:
    email = (email or "").strip()
    if not is_valid_email(email):
        raise ValidationError("Please enter a valid email address")
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters long"
        )
    return email


class GoTrueIdentityProvider:
    """Identity provider hosted next to the REST store (``/auth/v1``)."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout
        self._session = session or requests.Session()

    def _post(
        self,
        path: str,
        *,
        payload: Optional[Mapping[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> requests.Response:
        return self._call("POST", path, payload=payload, params=params, access_token=access_token)

    def _call(
        self,
        method: str,
        path: str,
        *,
        payload: Optional[Mapping[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
        access_token: Optional[str] = None,
    ) -> requests.Response:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {access_token or self._api_key}",
            "Content-Type": "application/json",
        }
        url = f"{self._base_url}{path}"
        try:
            return self._session.request(
                method,
                url,
                json=payload,
                params=params,
                headers=headers,
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            log.error("%s %s failed: %s", method, url, exc)
            raise TransportError(f"Identity provider unreachable: {exc}") from exc

    @staticmethod
    def _message(resp: requests.Response) -> str:
        try:
            body = resp.json()
        except ValueError:
            return resp.text or "authentication failed"
        return (
            body.get("msg")
            or body.get("error_description")
            or body.get("message")
            or body.get("error")
            or "authentication failed"
        )

    def _raise_for(self, resp: requests.Response) -> None:
        if resp.status_code < 400:
            return
        message = self._message(resp)
        log.warning("Identity provider error %s: %s", resp.status_code, message)
        if resp.status_code in (400, 401, 403, 422):
            raise AuthenticationError(message)
        raise TransportError(message, status=resp.status_code)

    @staticmethod
    def _identity(resp: requests.Response) -> AuthIdentity:
        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportError(
                "Identity provider returned a non-JSON body", status=resp.status_code
            ) from exc
        if not isinstance(body, Mapping):
            raise TransportError("Identity provider returned an unexpected body")
        user = body.get("user") or body
        if not user.get("id"):
            raise TransportError("Identity provider returned no user id")
        return AuthIdentity(
            user_id=str(user["id"]),
            email=str(user.get("email") or ""),
            access_token=body.get("access_token"),
        )

    def sign_up(self, email: str, password: str) -> AuthIdentity:
        email = _check_credentials(email, password)
        resp = self._post("/signup", payload={"email": email, "password": password})
        self._raise_for(resp)
        identity = self._identity(resp)
        log.info("Signed up %s", identity.email)
        return identity

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        resp = self._post(
            "/token",
            params={"grant_type": "password"},
            payload={"email": (email or "").strip(), "password": password or ""},
        )
        self._raise_for(resp)
        identity = self._identity(resp)
        log.info("Signed in %s", identity.email)
        return identity

    def sign_out(self, access_token: str) -> None:
        resp = self._post("/logout", access_token=access_token)
        if resp.status_code in (401, 403):
            # Token already expired or revoked.
            return
        self._raise_for(resp)

    def get_user(self, access_token: Optional[str]) -> Optional[AuthIdentity]:
        if not access_token:
            return None
        resp = self._call("GET", "/user", access_token=access_token)
        if resp.status_code in (401, 403):
            return None
        self._raise_for(resp)
        identity = self._identity(resp)
        identity.access_token = access_token
        return identity

    def close(self) -> None:
        self._session.close()


class InMemoryIdentityProvider:
    """Stand-in provider for tests and the local demo backend."""

    def __init__(self) -> None:
        self._users: Dict[str, Tuple[str, bytes, bytes]] = {}
        self._tokens: Dict[str, str] = {}
        self._emails: Dict[str, str] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _hash(password: str, salt: bytes) -> bytes:
        return hashlib.pbkdf2_hmac("sha256", password.encode(), salt, 100_000)

    def _issue(self, user_id: str) -> AuthIdentity:
        token = secrets.token_urlsafe(32)
        self._tokens[token] = user_id
        return AuthIdentity(user_id=user_id, email=self._emails[user_id], access_token=token)

    def sign_up(self, email: str, password: str) -> AuthIdentity:
        email = _check_credentials(email, password)
        key = email.lower()
        with self._lock:
            if key in self._users:
                raise ValidationError("User already registered")
            salt = secrets.token_bytes(16)
            user_id = str(uuid4())
            self._users[key] = (user_id, salt, self._hash(password, salt))
            self._emails[user_id] = email
            log.info("Signed up %s", email)
            return self._issue(user_id)

    def sign_in(self, email: str, password: str) -> AuthIdentity:
        key = (email or "").strip().lower()
        with self._lock:
            entry = self._users.get(key)
            if entry is None:
                raise AuthenticationError("Invalid login credentials")
            user_id, salt, digest = entry
            if not hmac.compare_digest(digest, self._hash(password or "", salt)):
                raise AuthenticationError("Invalid login credentials")
            return self._issue(user_id)

    def sign_out(self, access_token: str) -> None:
        with self._lock:
            self._tokens.pop(access_token, None)

    def get_user(self, access_token: Optional[str]) -> Optional[AuthIdentity]:
        if not access_token:
            return None
        with self._lock:
            user_id = self._tokens.get(access_token)
            if user_id is None:
                return None
            return AuthIdentity(
                user_id=user_id, email=self._emails[user_id], access_token=access_token
            )

    def close(self) -> None:
        """Nothing to release."""


__all__ = ["GoTrueIdentityProvider", "InMemoryIdentityProvider", "MIN_PASSWORD_LENGTH"]
