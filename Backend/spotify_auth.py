"""Spotify Authorization Code flow (web variant).

The server owns the cookie; this module only produces and checks values:

1. :func:`generate_state` + :func:`build_authorize_url` for ``/api/auth/login``.
2. :func:`complete_login` for ``/api/auth/callback`` – verifies the anti-forgery
   state, then swaps the authorization code for a :class:`TokenGrant`.

Tokens are returned to the caller and never stored or logged here.
"""

from __future__ import annotations

import asyncio
import hmac
import logging
import secrets
from typing import Optional
from urllib.parse import urlencode

from aiohttp import BasicAuth, ClientError, ClientSession

from config import Settings
from errors import StateMismatch, TokenExchangeFailed
from models import TokenGrant

logger = logging.getLogger(__name__)

SPOTIFY_AUTH_URL = "https://accounts.spotify.com/authorize"
SPOTIFY_TOKEN_URL = "https://accounts.spotify.com/api/token"

STATE_LENGTH = 16


def generate_state(length: int = STATE_LENGTH) -> str:
    """Return a random hex string of exactly *length* characters."""
    return secrets.token_hex((length + 1) // 2)[:length]


def build_authorize_url(settings: Settings, state: str) -> str:
    """Return the Spotify authorize URL the browser should be redirected to."""
    params = urlencode(
        {
            "response_type": "code",
            "client_id": settings.spotify_client_id,
            "scope": settings.spotify_scopes,
            "redirect_uri": settings.spotify_redirect_uri,
            "state": state,
        }
    )
    return f"{SPOTIFY_AUTH_URL}?{params}"


def states_match(state: Optional[str], stored_state: Optional[str]) -> bool:
    """True only if both values are present and identical."""
    if not state or not stored_state:
        return False
    return hmac.compare_digest(state.encode(), stored_state.encode())


async def exchange_code(
    session: ClientSession,
    settings: Settings,
    code: str,
) -> TokenGrant:
    """Exchange an authorization *code* for a :class:`TokenGrant`.

    Authenticates with the client secret via a Basic auth header.  Raises
    :class:`TokenExchangeFailed` on network errors, non-200 answers, or a
    body without an access token.
    """
    headers = {
        "Authorization": BasicAuth(
            settings.spotify_client_id, settings.spotify_client_secret
        ).encode(),
        "Content-Type": "application/x-www-form-urlencoded",
    }
    data = {
        "grant_type": "authorization_code",
        "code": code,
        "redirect_uri": settings.spotify_redirect_uri,
    }
    try:
        async with session.post(SPOTIFY_TOKEN_URL, data=data, headers=headers) as resp:
            if resp.status != 200:
                detail = await resp.text()
                logger.error(f"[auth] Token exchange rejected: HTTP {resp.status} {detail[:200]}")
                raise TokenExchangeFailed(
                    f"Spotify rejected the authorization code (HTTP {resp.status})",
                    status_code=resp.status,
                )
            body = await resp.json()
    except (ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.error(f"[auth] Token exchange failed: {type(e).__name__}")
        raise TokenExchangeFailed("Could not reach Spotify token endpoint") from e

    access_token = body.get("access_token") if isinstance(body, dict) else None
    if not access_token:
        raise TokenExchangeFailed("Token response did not contain an access token")

    return TokenGrant(
        access_token=access_token,
        refresh_token=body.get("refresh_token"),
        expires_in=int(body.get("expires_in", 3600)),
    )


async def complete_login(
    session: ClientSession,
    settings: Settings,
    code: Optional[str],
    state: Optional[str],
    stored_state: Optional[str],
) -> TokenGrant:
    """Verify the callback *state* against *stored_state*, then exchange *code*.

    A mismatch raises :class:`StateMismatch` before any network call is made.
    """
    if not states_match(state, stored_state):
        logger.warning("[auth] Callback state mismatch – possible CSRF attempt")
        raise StateMismatch("State parameter missing or does not match")

    if not code:
        raise TokenExchangeFailed("Missing authorization code", status_code=400)

    grant = await exchange_code(session, settings, code)
    logger.info("[auth] Authorization code exchanged")
    return grant
