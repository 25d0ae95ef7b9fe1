# tests/conftest.py
from __future__ import annotations

import os
import sys
from typing import Any, Dict, List, Optional

import pytest

# add the repository root (parent of /tests) to the import path
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from order_tracking.auth import InMemoryIdentityProvider  # noqa: E402
from order_tracking.repository import InMemoryStore  # noqa: E402
from order_tracking.services import TrackingService  # noqa: E402


class FakeResponse:
    """Minimal stand-in for ``requests.Response``."""

    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None):
        self.status_code = status_code
        self._body = body
        if text is None:
            import json

            text = "" if body is None else json.dumps(body)
        self.text = text
        self.content = text.encode()
        self.reason = "Error" if status_code >= 400 else "OK"

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("No JSON body")
        return self._body


class FakeSession:
    """Records requests and replays queued responses or exceptions."""

    def __init__(self) -> None:
        self.calls: List[Dict[str, Any]] = []
        self.responses: List[Any] = []
        self.closed = False

    def queue(self, response: Any) -> None:
        self.responses.append(response)

    def request(self, method, url, params=None, json=None, headers=None, timeout=None):
        self.calls.append(
            {
                "method": method,
                "url": url,
                "params": params,
                "json": json,
                "headers": headers,
                "timeout": timeout,
            }
        )
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def service(store) -> TrackingService:
    return TrackingService(store)


@pytest.fixture
def identity() -> InMemoryIdentityProvider:
    return InMemoryIdentityProvider()


@pytest.fixture
def owner(identity):
    return identity.sign_up("owner@factory.example", "secret-pass")


@pytest.fixture
def other_owner(identity):
    return identity.sign_up("rival@works.example", "secret-pass")


@pytest.fixture
def company(service, owner):
    return service.register_or_update_company(
        owner,
        "Acme Fabrication",
        "info@acme.example",
        ordered_step_names=["A", "B", "C"],
    )
