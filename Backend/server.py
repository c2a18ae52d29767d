"""FastAPI server for playlist mood analysis.

Endpoints
---------
GET  /                     → health check
GET  /api/auth/login       → set the state cookie, redirect user to Spotify
GET  /api/auth/callback    → verify state, exchange code, redirect to frontend
                             with tokens (or an error) in the URL fragment
GET  /api/playlists        → the user's raw Spotify playlist collection
GET  /api/playlist/{id}    → mood profile for one playlist

Protected routes take the Spotify access token from
``Authorization: Bearer <token>`` on every request; nothing is stored
server-side.  Each request gets its own ``aiohttp.ClientSession``.

Run with::

    uvicorn server:app --host 0.0.0.0 --port 8888 --reload
"""

from __future__ import annotations

import logging
from typing import Optional
from urllib.parse import urlencode

import uvicorn
from aiohttp import ClientSession, ClientTimeout
from fastapi import APIRouter, Cookie, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse

from analysis import INPUT_AUDIO_FEATURES, build_aggregator
from config import Settings, load_settings
from enricher import enrich_recommendation
from errors import StateMismatch, TokenExchangeFailed, Unauthorized, VibeCastError
from models import MoodProfile, mood_profile_to_dict
from spotify_auth import build_authorize_url, complete_login, generate_state, states_match
from spotify_client import fetch_all_tracks, fetch_audio_features, get_user_playlists

logger = logging.getLogger(__name__)

STATE_COOKIE = "spotify_auth_state"
STATE_COOKIE_MAX_AGE = 600

# Paths the frontend calls; the Spotify redirect URI must point under it too.
API_PREFIX = "/api"
STATE_COOKIE_PATH = f"{API_PREFIX}/auth"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level,
        format="[%(asctime)s] %(levelname)s - %(message)s",
    )
    # Silence noisy HTTP libraries
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


def _client_session(settings: Settings) -> ClientSession:
    # total=None means no deadline, which is also the default here
    return ClientSession(timeout=ClientTimeout(total=settings.http_timeout_seconds))


def _bearer_token(request: Request) -> str:
    """Extract the Spotify access token; 401 if missing."""
    auth = request.headers.get("Authorization", "")
    token: Optional[str] = auth[7:].strip() if auth.startswith("Bearer ") else None
    if not token:
        raise Unauthorized("Authorization token not provided.")
    return token


def _frontend_redirect(settings: Settings, fragment: dict) -> RedirectResponse:
    # Tokens travel in the fragment only, never in the query string.
    return RedirectResponse(f"{settings.frontend_url}/#{urlencode(fragment)}", status_code=302)


def _clear_state_cookie(response: RedirectResponse) -> RedirectResponse:
    response.delete_cookie(STATE_COOKIE, path=STATE_COOKIE_PATH)
    return response


async def analyze_playlist(
    session: ClientSession,
    settings: Settings,
    playlist_id: str,
    token: str,
) -> MoodProfile:
    """Full pipeline for one playlist: tracks → (features) → profile → enrichment."""
    async with build_aggregator(settings) as aggregator:
        tracks = await fetch_all_tracks(session, playlist_id, token)

        if aggregator.input_kind == INPUT_AUDIO_FEATURES:
            items = await fetch_audio_features(session, [t.spotify_id for t in tracks], token)
        else:
            items = tracks

        profile = await aggregator.aggregate(items)

    if profile.recommended_song is not None:
        profile.recommended_song = await enrich_recommendation(
            session, profile.recommended_song, token
        )
    return profile


def create_app(settings: Settings) -> FastAPI:
    app = FastAPI(title="VibeCast API")
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        # Path only: query strings carry authorization codes.
        logger.info(f"[request] {request.method} {request.url.path}")
        return await call_next(request)

    @app.exception_handler(VibeCastError)
    async def _vibecast_error(request: Request, exc: VibeCastError):
        logger.error(f"[error] {request.url.path}: {exc.code} ({exc.status_code}) {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.code, "detail": exc.message},
        )

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception):
        logger.exception(f"[error] Unhandled error on {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"error": "internal_error", "detail": "Internal server error."},
        )

    @app.get("/")
    async def root():
        """Health check / root endpoint."""
        return {"status": "ok", "service": "VibeCast API", "docs": "/docs"}

    router = APIRouter(prefix=API_PREFIX)

    # -----------------------------------------------------------------------
    # Auth routes
    # -----------------------------------------------------------------------

    @router.get("/auth/login")
    async def login():
        """Redirect to Spotify authorize page with a fresh state cookie."""
        state = generate_state()
        response = RedirectResponse(build_authorize_url(settings, state), status_code=302)
        response.set_cookie(
            STATE_COOKIE,
            state,
            max_age=STATE_COOKIE_MAX_AGE,
            path=STATE_COOKIE_PATH,
            httponly=True,
            samesite="lax",
        )
        return response

    @router.get("/auth/callback")
    async def callback(
        code: Optional[str] = Query(None),
        state: Optional[str] = Query(None),
        error: Optional[str] = Query(None),
        stored_state: Optional[str] = Cookie(None, alias=STATE_COOKIE),
    ):
        """Handle Spotify redirect after the user approves (or denies)."""
        if error and states_match(state, stored_state):
            logger.warning(f"[auth] Spotify returned error: {error}")
            return _clear_state_cookie(_frontend_redirect(settings, {"error": error}))

        try:
            async with _client_session(settings) as session:
                grant = await complete_login(session, settings, code, state, stored_state)
        except StateMismatch as e:
            return _frontend_redirect(settings, {"error": e.code})
        except TokenExchangeFailed as e:
            return _clear_state_cookie(_frontend_redirect(settings, {"error": e.code}))

        fragment = {
            "access_token": grant.access_token,
            "refresh_token": grant.refresh_token or "",
            "expires_in": grant.expires_in,
        }
        return _clear_state_cookie(_frontend_redirect(settings, fragment))

    # -----------------------------------------------------------------------
    # API routes
    # -----------------------------------------------------------------------

    @router.get("/playlists")
    async def my_playlists(
        request: Request,
        limit: Optional[int] = Query(None, ge=1, le=50),
        offset: Optional[int] = Query(None, ge=0),
    ):
        """Fetch the user's Spotify playlists, passed through untouched."""
        token = _bearer_token(request)
        async with _client_session(settings) as session:
            return await get_user_playlists(session, token, limit=limit, offset=offset)

    @router.get("/playlist/{playlist_id}")
    async def playlist_mood(playlist_id: str, request: Request):
        """Compute the mood profile of one playlist."""
        token = _bearer_token(request)
        async with _client_session(settings) as session:
            profile = await analyze_playlist(session, settings, playlist_id, token)
        return mood_profile_to_dict(profile)

    app.include_router(router)
    return app


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

SETTINGS = load_settings()
configure_logging(SETTINGS.log_level)

if not SETTINGS.spotify_client_id or not SETTINGS.spotify_client_secret:
    logger.warning("SPOTIFY_CLIENT_ID / SPOTIFY_CLIENT_SECRET not set; login will fail")

app = create_app(SETTINGS)


if __name__ == "__main__":
    uvicorn.run("server:app", host="0.0.0.0", port=SETTINGS.port, reload=True)
