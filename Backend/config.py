"""Environment configuration loaded from .env file.

Everything is read once into a :class:`Settings` value which the server
hands to each component.  Nothing below ``server.py`` looks at the
environment directly.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from dotenv import load_dotenv

DEFAULT_SCOPES = (
    "user-read-private user-read-email "
    "playlist-read-private playlist-read-collaborative"
)


@dataclass(frozen=True)
class Settings:
    spotify_client_id: str
    spotify_client_secret: str
    spotify_redirect_uri: str
    spotify_scopes: str = DEFAULT_SCOPES

    # Frontend URL for CORS & redirect after login
    frontend_url: str = "http://127.0.0.1:3000"
    port: int = 8888

    # "numeric" or "generative"
    mood_strategy: str = "numeric"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-2.5-flash"
    # "recommendation" or "averages"
    gemini_profile_variant: str = "recommendation"

    # None = no per-call deadline
    http_timeout_seconds: Optional[float] = None
    log_level: str = "INFO"


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or not value.strip():
        return None
    return float(value)


def load_settings(env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build :class:`Settings` from *env* (defaults to ``os.environ`` + ``.env``)."""
    if env is None:
        load_dotenv()
        env = os.environ

    return Settings(
        spotify_client_id=env.get("SPOTIFY_CLIENT_ID", ""),
        spotify_client_secret=env.get("SPOTIFY_CLIENT_SECRET", ""),
        spotify_redirect_uri=env.get(
            "SPOTIFY_REDIRECT_URI", "http://127.0.0.1:8888/api/auth/callback"
        ),
        spotify_scopes=env.get("SPOTIFY_SCOPES", DEFAULT_SCOPES),
        frontend_url=env.get("FRONTEND_URL", "http://127.0.0.1:3000").rstrip("/"),
        port=int(env.get("PORT", "8888")),
        mood_strategy=env.get("MOOD_STRATEGY", "numeric").strip().lower(),
        gemini_api_key=env.get("GEMINI_API_KEY") or None,
        gemini_model=env.get("GEMINI_MODEL", "gemini-2.5-flash"),
        gemini_profile_variant=env.get(
            "GEMINI_PROFILE_VARIANT", "recommendation"
        ).strip().lower(),
        http_timeout_seconds=_optional_float(env.get("HTTP_TIMEOUT_SECONDS")),
        log_level=env.get("LOG_LEVEL", "INFO").upper(),
    )
