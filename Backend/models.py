"""Data classes shared across modules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class Artist:
    name: str
    spotify_id: Optional[str] = None


@dataclass
class Track:
    """Minimal Spotify track info collected from a playlist page."""

    spotify_id: str
    title: str
    artists: list[Artist] = field(default_factory=list)

    @property
    def artist_names(self) -> list[str]:
        return [a.name for a in self.artists]


@dataclass
class AudioFeatures:
    """Audio descriptors for one track (Spotify /audio-features)."""

    spotify_id: str
    danceability: float
    energy: float
    valence: float
    tempo: float
    acousticness: float


@dataclass
class TokenGrant:
    """Result of the authorization-code exchange.  Never persisted."""

    access_token: str
    refresh_token: Optional[str]
    expires_in: int

    def __repr__(self) -> str:
        # keep tokens out of logs and tracebacks
        return f"TokenGrant(expires_in={self.expires_in})"


@dataclass
class AudioAverages:
    """Measured means over a playlist's audio features."""

    energy: float
    valence: float
    danceability: float
    tempo: float
    acousticness: float


@dataclass
class SimulatedAverages:
    """Model-estimated values, all in [0, 1].  Not measured data."""

    energy: float
    happiness: float
    danceability: float


@dataclass
class RecommendedSong:
    name: str
    artist: str
    reason: str
    cover_art: Optional[str] = None
    preview_url: Optional[str] = None


@dataclass
class MoodProfile:
    """Top-level aggregation output for a playlist."""

    primary_mood: str
    strategy: str
    track_count: int
    tags: List[str] = field(default_factory=list)
    activity_suggestions: List[str] = field(default_factory=list)
    averages: Optional[AudioAverages] = None
    simulated_averages: Optional[SimulatedAverages] = None
    recommended_song: Optional[RecommendedSong] = None


def _recommended_song_to_dict(song: RecommendedSong) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "name": song.name,
        "artist": song.artist,
        "reason": song.reason,
    }
    if song.cover_art:
        out["coverArt"] = song.cover_art
    if song.preview_url:
        out["previewUrl"] = song.preview_url
    return out


def mood_profile_to_dict(profile: MoodProfile) -> Dict[str, Any]:
    """Convert a MoodProfile to the camelCase JSON body the frontend reads.

    Optional blocks are omitted rather than sent as null.
    """
    out: Dict[str, Any] = {
        "primaryMood": profile.primary_mood,
        "tags": list(profile.tags),
        "activitySuggestions": list(profile.activity_suggestions),
        "strategy": profile.strategy,
        "trackCount": profile.track_count,
    }
    if profile.averages is not None:
        a = profile.averages
        out["averages"] = {
            "energy": a.energy,
            "valence": a.valence,
            "danceability": a.danceability,
            "tempo": a.tempo,
            "acousticness": a.acousticness,
        }
    if profile.simulated_averages is not None:
        s = profile.simulated_averages
        out["simulatedAverages"] = {
            "energy": s.energy,
            "happiness": s.happiness,
            "danceability": s.danceability,
        }
        out["averagesAreEstimates"] = True
    if profile.recommended_song is not None:
        out["recommendedSong"] = _recommended_song_to_dict(profile.recommended_song)
    return out
