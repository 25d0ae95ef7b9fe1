"""Environment driven settings for the tracker."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parents[1]

BACKEND_MEMORY = "memory"
BACKEND_REST = "rest"


def _as_bool(val: Optional[str], default: bool = False) -> bool:
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "t", "yes", "y", "on"}


@dataclass(frozen=True, slots=True)
class Settings:
    """Runtime configuration, built once at process start."""

    backend: str = BACKEND_MEMORY
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_schema: str = "custom"
    http_timeout_seconds: float = 10.0
    auth_cookie_name: str = "tracker_access"
    cookie_secure: bool = False
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    seed_demo_data: bool = True

    @property
    def rest_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/rest/v1"

    @property
    def auth_url(self) -> str:
        return f"{self.supabase_url.rstrip('/')}/auth/v1"


def load_settings(
    environ: Optional[Mapping[str, str]] = None,
    *,
    dotenv_path: Optional[Path] = None,
) -> Settings:
    """Build :class:`Settings` from the environment.

    A ``.env`` file at the repository root is read first when ``environ`` is
    not given; real environment variables win over it.
    """

    if environ is None:
        load_dotenv(dotenv_path or BASE_DIR / ".env")
        environ = os.environ

    supabase_url = environ.get("SUPABASE_URL", "").strip()
    backend = environ.get(
        "TRACKER_BACKEND", BACKEND_REST if supabase_url else BACKEND_MEMORY
    ).strip().lower()
    if backend not in {BACKEND_MEMORY, BACKEND_REST}:
        raise ValueError(f"Unknown TRACKER_BACKEND {backend!r}")
    if backend == BACKEND_REST and not supabase_url:
        raise ValueError("SUPABASE_URL is required for the rest backend")

    return Settings(
        backend=backend,
        supabase_url=supabase_url,
        supabase_anon_key=environ.get("SUPABASE_ANON_KEY", "").strip(),
        supabase_schema=environ.get("SUPABASE_SCHEMA", "custom").strip() or "custom",
        http_timeout_seconds=float(environ.get("HTTP_TIMEOUT_SECONDS", "10")),
        auth_cookie_name=environ.get("AUTH_COOKIE_NAME", "tracker_access"),
        cookie_secure=_as_bool(environ.get("COOKIE_SECURE"), default=False),
        log_level=environ.get("LOG_LEVEL", "INFO").upper(),
        log_dir=environ.get("LOG_DIR") or None,
        seed_demo_data=_as_bool(
            environ.get("SEED_DEMO_DATA"), default=backend == BACKEND_MEMORY
        ),
    )


__all__ = ["Settings", "load_settings", "BACKEND_MEMORY", "BACKEND_REST"]
