"""Spotify Web API helpers – playlist listing, track paging, audio features, search.

Every function takes the request's ``ClientSession`` and the caller's bearer
token.  Requests are issued one at a time and never retried: a single
failure raises :class:`UpstreamFetchFailed` and whatever was fetched so far
is discarded.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from aiohttp import ClientError, ClientSession

from errors import UpstreamFetchFailed
from models import Artist, AudioFeatures, Track

logger = logging.getLogger(__name__)

SPOTIFY_API = "https://api.spotify.com/v1"

# /audio-features accepts at most 100 ids per call.
FEATURES_BATCH_SIZE = 100

# Only what the pipeline needs: id/name/artists plus the continuation cursor.
_TRACK_FIELDS = "items(track(id,name,artists(name,id))),next"


def _auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def _get_json(
    session: ClientSession,
    url: str,
    token: str,
    label: str,
    params: Optional[dict[str, Any]] = None,
) -> dict:
    try:
        async with session.get(url, headers=_auth_header(token), params=params) as resp:
            if resp.status != 200:
                error_detail = await resp.text()
                logger.error(f"[{label}] HTTP {resp.status} error: {error_detail[:200]}")
                raise UpstreamFetchFailed(
                    f"Spotify request failed with HTTP {resp.status}",
                    status_code=resp.status,
                )
            return await resp.json()
    except (ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.error(f"[{label}] Request failed: {type(e).__name__}: {e}")
        raise UpstreamFetchFailed(f"Spotify request failed: {type(e).__name__}") from e


async def get_user_playlists(
    session: ClientSession,
    token: str,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
) -> dict:
    """Return the raw ``/me/playlists`` collection page, untouched."""
    params: dict[str, Any] = {}
    if limit is not None:
        params["limit"] = limit
    if offset is not None:
        params["offset"] = offset
    return await _get_json(
        session, f"{SPOTIFY_API}/me/playlists", token, "playlists", params=params or None
    )


def _parse_track(raw: dict) -> Track:
    return Track(
        spotify_id=raw["id"],
        title=raw.get("name", ""),
        artists=[
            Artist(name=a.get("name", ""), spotify_id=a.get("id"))
            for a in raw.get("artists") or []
        ],
    )


async def iter_track_pages(
    session: ClientSession,
    playlist_id: str,
    token: str,
) -> AsyncIterator[list[Track]]:
    """Yield one list of tracks per playlist page until ``next`` is null.

    The cursor for page N+1 is only known once page N has arrived, so the
    generator cannot be restarted mid-stream.  Removed/unavailable entries
    (null ``track`` or null id) are skipped.
    """
    url: Optional[str] = f"{SPOTIFY_API}/playlists/{playlist_id}/tracks"
    params: Optional[dict[str, Any]] = {"fields": _TRACK_FIELDS, "limit": 100}
    page_no = 0

    while url:
        page_no += 1
        data = await _get_json(session, url, token, "tracks", params=params)
        page = [
            _parse_track(item["track"])
            for item in data.get("items") or []
            if item and item.get("track") and item["track"].get("id")
        ]
        logger.debug(f"[tracks] Page {page_no}: {len(page)} track(s)")
        yield page

        url = data.get("next")
        # `next` already carries the query string
        params = None


async def fetch_all_tracks(
    session: ClientSession,
    playlist_id: str,
    token: str,
) -> list[Track]:
    """Fetch every track of a playlist, in page order, duplicates included."""
    tracks: list[Track] = []
    async for page in iter_track_pages(session, playlist_id, token):
        tracks.extend(page)
    logger.info(f"[tracks] Playlist {playlist_id}: {len(tracks)} track(s)")
    return tracks


def _parse_features(raw: dict) -> AudioFeatures:
    return AudioFeatures(
        spotify_id=raw["id"],
        danceability=float(raw["danceability"]),
        energy=float(raw["energy"]),
        valence=float(raw["valence"]),
        tempo=float(raw["tempo"]),
        acousticness=float(raw["acousticness"]),
    )


async def fetch_audio_features(
    session: ClientSession,
    track_ids: list[str],
    token: str,
    batch_size: int = FEATURES_BATCH_SIZE,
) -> list[AudioFeatures]:
    """Fetch audio features in contiguous windows of at most *batch_size* ids.

    Issues ``ceil(len(track_ids) / batch_size)`` sequential requests and
    returns the features in input order.  Null entries (tracks without
    computable features) are dropped, so the result may be shorter than the
    input, or empty.
    """
    features: list[AudioFeatures] = []
    for i in range(0, len(track_ids), batch_size):
        batch = track_ids[i : i + batch_size]
        data = await _get_json(
            session,
            f"{SPOTIFY_API}/audio-features",
            token,
            "features",
            params={"ids": ",".join(batch)},
        )
        for item in data.get("audio_features") or []:
            if item is None:
                continue
            features.append(_parse_features(item))

    logger.info(f"[features] {len(features)}/{len(track_ids)} track(s) have audio features")
    return features


async def search_track(
    session: ClientSession,
    token: str,
    name: str,
    artist: str,
) -> Optional[dict]:
    """Return the top catalog match for *name* by *artist*, or None."""
    query = f"track:{name} artist:{artist}"
    data = await _get_json(
        session,
        f"{SPOTIFY_API}/search",
        token,
        "search",
        params={"q": query, "type": "track", "limit": 1},
    )
    items = (data.get("tracks") or {}).get("items") or []
    return items[0] if items else None
