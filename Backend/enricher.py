"""Recommendation enrichment – attaches cover art and a preview clip.

Public entry point: :func:`enrich_recommendation`.  The recommended song
comes from the text-generation service and may not exist in the catalog, so
every failure here degrades to returning the song unchanged.
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Optional

from aiohttp import ClientSession

from errors import VibeCastError
from models import RecommendedSong
from spotify_client import search_track

logger = logging.getLogger(__name__)


def _cover_art(item: dict) -> Optional[str]:
    images = (item.get("album") or {}).get("images") or []
    return images[0].get("url") if images else None


async def enrich_recommendation(
    session: ClientSession,
    song: RecommendedSong,
    token: str,
) -> RecommendedSong:
    """Return *song* with ``cover_art``/``preview_url`` from the top search hit.

    Never raises: on search failure or no match the input is returned as is.
    """
    try:
        item = await search_track(session, token, song.name, song.artist)
    except VibeCastError as e:
        logger.warning(f"[enrich] Search for '{song.name}' failed: {e.message}")
        return song
    except (AttributeError, TypeError) as e:
        logger.warning(f"[enrich] Unexpected search payload: {type(e).__name__}")
        return song

    if not item:
        logger.info(f"[enrich] No catalog match for '{song.name}' by {song.artist}")
        return song

    try:
        cover_art = _cover_art(item)
        preview_url = item.get("preview_url")
    except (AttributeError, TypeError) as e:
        logger.warning(f"[enrich] Unexpected search payload: {type(e).__name__}")
        return song

    return dataclasses.replace(song, cover_art=cover_art, preview_url=preview_url)
