"""Persistence backends for the tracker.

``RestStore`` talks to the hosted PostgREST endpoint of the backend provider;
``TrackingDatabase`` picks the configured backend and owns its lifecycle.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from .config import BACKEND_REST, Settings
from .exceptions import DuplicateError, TransportError
from .logger import get_logger
from .repository import InMemoryStore

log = get_logger("storage")

UNIQUE_VIOLATION = "23505"


def _filter_params(filters: Optional[Mapping[str, Any]]) -> Dict[str, str]:
    return {column: f"eq.{value}" for column, value in (filters or {}).items()}


class RestStore:
    """Store implementation backed by the provider's REST query interface."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        schema: str = "custom",
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
        access_token: Optional[str] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._schema = schema
        self._timeout = timeout
        self._session = session or requests.Session()
        self._owns_session = session is None
        self._access_token = access_token

    def with_token(self, access_token: Optional[str]) -> "RestStore":
        """Return a view that acts as the identity owning ``access_token``."""

        view = RestStore(
            self._base_url,
            self._api_key,
            schema=self._schema,
            timeout=self._timeout,
            session=self._session,
            access_token=access_token,
        )
        return view

    def _headers(self, *, write: bool = False) -> Dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._access_token or self._api_key}",
            "Accept": "application/json",
            "Accept-Profile": self._schema,
        }
        if write:
            headers["Content-Type"] = "application/json"
            headers["Content-Profile"] = self._schema
            headers["Prefer"] = "return=representation"
        return headers

    def _request(
        self,
        method: str,
        table: str,
        *,
        params: Optional[Dict[str, str]] = None,
        payload: Any = None,
    ) -> List[Dict[str, Any]]:
        url = f"{self._base_url}/{table}"
        try:
            resp = self._session.request(
                method,
                url,
                params=params,
                json=payload,
                headers=self._headers(write=payload is not None),
                timeout=self._timeout,
            )
        except requests.RequestException as exc:
            log.error("%s %s failed: %s", method, url, exc)
            raise TransportError(f"Backend unreachable: {exc}") from exc

        log.debug("%s %s -> %s", method, url, resp.status_code)
        if resp.status_code >= 400:
            raise self._error_from(resp)
        if not resp.content:
            return []
        try:
            body = resp.json()
        except ValueError as exc:
            raise TransportError(
                "Backend returned a non-JSON body", status=resp.status_code
            ) from exc
        if isinstance(body, dict):
            return [body]
        return list(body)

    @staticmethod
    def _error_from(resp: requests.Response) -> Exception:
        code = None
        message = resp.text or resp.reason or "request failed"
        details = None
        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            code = body.get("code")
            message = body.get("message") or message
            details = body.get("details") or body.get("hint")
        log.warning("Backend error %s (%s): %s", resp.status_code, code, message)
        if code == UNIQUE_VIOLATION or (resp.status_code == 409 and code is None):
            return DuplicateError(message)
        return TransportError(message, status=resp.status_code, code=code, details=details)

    # ------------------------------------------------------------------
    # Query interface
    # ------------------------------------------------------------------
    def select(
        self,
        table: str,
        *,
        columns: str = "*",
        filters: Optional[Mapping[str, Any]] = None,
        order: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        params = {"select": columns.replace(" ", "")}
        params.update(_filter_params(filters))
        if order is not None:
            params["order"] = f"{order}.{'desc' if descending else 'asc'}"
        if limit is not None:
            params["limit"] = str(limit)
        return self._request("GET", table, params=params)

    def insert(self, table: str, rows: Sequence[Mapping[str, Any]]) -> List[Dict[str, Any]]:
        return self._request("POST", table, payload=[dict(row) for row in rows])

    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        filters: Mapping[str, Any],
    ) -> List[Dict[str, Any]]:
        if not filters:
            raise ValueError("Refusing to update without filters")
        return self._request(
            "PATCH", table, params=_filter_params(filters), payload=dict(values)
        )

    def close(self) -> None:
        if self._owns_session:
            self._session.close()


class TrackingDatabase:
    """Builds the configured store and ties its lifetime to the process."""

    def __init__(self, settings: Settings, *, session: Optional[requests.Session] = None) -> None:
        if settings.backend == BACKEND_REST:
            self._store = RestStore(
                settings.rest_url,
                settings.supabase_anon_key,
                schema=settings.supabase_schema,
                timeout=settings.http_timeout_seconds,
                session=session,
            )
        else:
            self._store = InMemoryStore()
        log.info("Using %s backend", settings.backend)

    @property
    def store(self):
        return self._store

    def close(self) -> None:
        self._store.close()

    def __enter__(self) -> "TrackingDatabase":  # pragma: no cover - convenience
        return self

    def __exit__(self, exc_type, exc, traceback) -> None:  # pragma: no cover - convenience
        self.close()


__all__ = ["RestStore", "TrackingDatabase"]
