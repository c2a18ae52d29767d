"""Playlist mood aggregation.

Two interchangeable strategies produce the same :class:`MoodProfile`:

NumericAggregator     averages Spotify audio features and classifies them
                      with a fixed decision table (deterministic).
GenerativeAggregator  asks Gemini for a schema-constrained JSON answer from
                      the track names and validates it.

Public API
----------
MoodAggregator.aggregate(items)  → MoodProfile
build_aggregator(settings)       → MoodAggregator
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, Field, ValidationError

from ai_client import GeminiClient
from config import Settings
from errors import AggregationFailed, MalformedAIResponse
from models import (
    AudioAverages,
    AudioFeatures,
    MoodProfile,
    RecommendedSong,
    SimulatedAverages,
    Track,
)

logger = logging.getLogger(__name__)

INPUT_AUDIO_FEATURES = "audio_features"
INPUT_TRACKS = "tracks"


class MoodAggregator(ABC):
    """Turns an ordered sequence of inputs into a MoodProfile.

    ``input_kind`` tells the caller what to feed ``aggregate``: audio
    features or tracks.
    """

    strategy: str
    input_kind: str

    @abstractmethod
    async def aggregate(self, items: Sequence[Any]) -> MoodProfile:
        ...

    async def aclose(self) -> None:
        """Release anything the strategy holds open.  Numeric holds nothing."""

    async def __aenter__(self) -> "MoodAggregator":
        return self

    async def __aexit__(self, *exc) -> None:
        await self.aclose()


# ═══════════════════════════════════════════════════════════════════════════
# Numeric strategy
# ═══════════════════════════════════════════════════════════════════════════

EUPHORIC = "Euphoric & Energetic"
HAPPY_CHILL = "Happy & Chill"
MELANCHOLIC = "Melancholic & Reflective"
ANXIOUS = "Anxious & Intense"
NEUTRAL = "Neutral"

ACTIVITY_SUGGESTIONS: Dict[str, List[str]] = {
    EUPHORIC: ["Working out", "Pre-party warm-up", "Road trip"],
    HAPPY_CHILL: ["Sunday brunch", "Easy afternoon walk", "Cooking with friends"],
    MELANCHOLIC: ["Rainy-day reading", "Journaling", "Late-night reflection"],
    ANXIOUS: ["High-intensity training", "Deadline sprint", "Night drive"],
    NEUTRAL: ["Focused work", "Commuting", "Background listening"],
}


def mean_features(features: Sequence[AudioFeatures]) -> AudioAverages:
    """Arithmetic mean of each descriptor (plain summation, then division)."""
    if not features:
        raise AggregationFailed("No audio features available to average")
    n = len(features)
    return AudioAverages(
        energy=sum(f.energy for f in features) / n,
        valence=sum(f.valence for f in features) / n,
        danceability=sum(f.danceability for f in features) / n,
        tempo=sum(f.tempo for f in features) / n,
        acousticness=sum(f.acousticness for f in features) / n,
    )


def classify_mood(valence: float, energy: float) -> str:
    """Decision table on (valence, energy); first matching row wins."""
    if valence > 0.65 and energy > 0.65:
        return EUPHORIC
    if valence > 0.5 and energy < 0.5:
        return HAPPY_CHILL
    if valence < 0.35 and energy < 0.4:
        return MELANCHOLIC
    if valence < 0.5 and energy > 0.7:
        return ANXIOUS
    return NEUTRAL


def feature_tags(averages: AudioAverages) -> List[str]:
    tags: List[str] = []
    if averages.danceability > 0.7:
        tags.append("Highly Danceable")
    if averages.tempo > 140:
        tags.append("Fast-Paced")
    if averages.acousticness > 0.7:
        tags.append("Acoustic")
    return tags


class NumericAggregator(MoodAggregator):
    strategy = "numeric"
    input_kind = INPUT_AUDIO_FEATURES

    async def aggregate(self, items: Sequence[AudioFeatures]) -> MoodProfile:
        averages = mean_features(items)
        mood = classify_mood(averages.valence, averages.energy)
        logger.info(
            f"[numeric] {len(items)} feature set(s) → {mood} "
            f"(valence={averages.valence:.3f}, energy={averages.energy:.3f})"
        )
        return MoodProfile(
            primary_mood=mood,
            strategy=self.strategy,
            track_count=len(items),
            tags=feature_tags(averages),
            activity_suggestions=list(ACTIVITY_SUGGESTIONS[mood]),
            averages=averages,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Generative strategy
# ═══════════════════════════════════════════════════════════════════════════

# Bounds prompt size; later tracks are left out of the prompt only.
MAX_PROMPT_TRACKS = 50
MAX_TAGS = 5
MAX_ACTIVITIES = 3

VARIANT_RECOMMENDATION = "recommendation"
VARIANT_AVERAGES = "averages"

_SYSTEM_INSTRUCTION = (
    "You are a music analyst. You describe the overall mood of a playlist "
    "from its track list and answer only with JSON matching the given schema."
)


class TextGenerator(Protocol):
    async def generate_json(
        self,
        prompt: str,
        schema: Dict[str, Any],
        system_instruction: Optional[str] = None,
    ) -> str:
        ...

    async def aclose(self) -> None:
        ...


class _AISimulatedAverages(BaseModel):
    energy: float = Field(ge=0.0, le=1.0)
    happiness: float = Field(ge=0.0, le=1.0)
    danceability: float = Field(ge=0.0, le=1.0)


class _AIRecommendedSong(BaseModel):
    name: str = Field(min_length=1)
    artist: str = Field(min_length=1)
    reason: str = ""


class AIMoodResponse(BaseModel):
    """Validation model for the generative answer."""

    primary_mood: str = Field(alias="primaryMood", min_length=1)
    tags: List[str] = Field(min_length=1)
    activity_suggestions: List[str] = Field(alias="activitySuggestions", min_length=1)
    simulated_averages: Optional[_AISimulatedAverages] = Field(
        default=None, alias="simulatedAverages"
    )
    recommended_song: Optional[_AIRecommendedSong] = Field(
        default=None, alias="recommendedSong"
    )


def response_schema(variant: str) -> Dict[str, Any]:
    """Gemini response schema for the requested profile *variant*."""
    properties: Dict[str, Any] = {
        "primaryMood": {"type": "STRING"},
        "tags": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "minItems": 3,
            "maxItems": MAX_TAGS,
        },
        "activitySuggestions": {
            "type": "ARRAY",
            "items": {"type": "STRING"},
            "minItems": 2,
            "maxItems": MAX_ACTIVITIES,
        },
    }
    required = ["primaryMood", "tags", "activitySuggestions"]

    if variant == VARIANT_AVERAGES:
        unit = {"type": "NUMBER", "minimum": 0.0, "maximum": 1.0}
        properties["simulatedAverages"] = {
            "type": "OBJECT",
            "properties": {"energy": unit, "happiness": unit, "danceability": unit},
            "required": ["energy", "happiness", "danceability"],
        }
        required.append("simulatedAverages")
    else:
        properties["recommendedSong"] = {
            "type": "OBJECT",
            "properties": {
                "name": {"type": "STRING"},
                "artist": {"type": "STRING"},
                "reason": {"type": "STRING"},
            },
            "required": ["name", "artist", "reason"],
        }

    return {"type": "OBJECT", "properties": properties, "required": required}


def build_prompt(tracks: Sequence[Track], variant: str) -> str:
    lines = [
        f"- {t.title} by {', '.join(t.artist_names) or 'Unknown artist'}"
        for t in tracks[:MAX_PROMPT_TRACKS]
    ]
    if variant == VARIANT_AVERAGES:
        ask = (
            "Also estimate the playlist's average energy, happiness and "
            "danceability, each between 0 and 1."
        )
    else:
        ask = (
            "Also recommend one real song that is NOT in the list but fits "
            "its vibe, with a one-sentence reason."
        )
    return (
        "Analyze the overall vibe of this playlist.\n\n"
        + "\n".join(lines)
        + "\n\nGive a short primary mood label, 3 to 5 short descriptive tags "
        "and 2 to 3 activities this playlist suits. "
        + ask
    )


def parse_ai_response(raw: str) -> AIMoodResponse:
    try:
        return AIMoodResponse.model_validate_json(raw)
    except ValidationError as e:
        logger.error(f"[generative] Response failed validation: {e.error_count()} error(s)")
        raise MalformedAIResponse(
            "Text-generation service returned a response that does not match the mood schema"
        ) from e


def _clean(values: List[str], limit: int) -> List[str]:
    return [v.strip() for v in values if v and v.strip()][:limit]


class GenerativeAggregator(MoodAggregator):
    strategy = "generative"
    input_kind = INPUT_TRACKS

    def __init__(self, client: TextGenerator, variant: str = VARIANT_RECOMMENDATION):
        self.client = client
        self.variant = variant

    async def aclose(self) -> None:
        await self.client.aclose()

    async def aggregate(self, items: Sequence[Track]) -> MoodProfile:
        if not items:
            raise AggregationFailed("Playlist has no tracks to analyse")

        considered = min(len(items), MAX_PROMPT_TRACKS)
        raw = await self.client.generate_json(
            build_prompt(items, self.variant),
            response_schema(self.variant),
            system_instruction=_SYSTEM_INSTRUCTION,
        )
        parsed = parse_ai_response(raw)

        tags = _clean(parsed.tags, MAX_TAGS)
        activities = _clean(parsed.activity_suggestions, MAX_ACTIVITIES)
        if not parsed.primary_mood.strip() or not tags or not activities:
            raise MalformedAIResponse("Text-generation service returned blank mood fields")

        simulated = None
        if parsed.simulated_averages is not None:
            s = parsed.simulated_averages
            simulated = SimulatedAverages(
                energy=s.energy, happiness=s.happiness, danceability=s.danceability
            )

        song = None
        if parsed.recommended_song is not None:
            r = parsed.recommended_song
            song = RecommendedSong(
                name=r.name.strip(), artist=r.artist.strip(), reason=r.reason.strip()
            )

        logger.info(f"[generative] {considered}/{len(items)} track(s) → {parsed.primary_mood}")
        return MoodProfile(
            primary_mood=parsed.primary_mood.strip(),
            strategy=self.strategy,
            track_count=considered,
            tags=tags,
            activity_suggestions=activities,
            simulated_averages=simulated,
            recommended_song=song,
        )


# ═══════════════════════════════════════════════════════════════════════════
# Selection
# ═══════════════════════════════════════════════════════════════════════════

def build_aggregator(settings: Settings) -> MoodAggregator:
    """Pick the strategy named by ``settings.mood_strategy``.

    Misconfiguration raises :class:`AggregationFailed`; the server calls
    this per request so a bad setup fails the request, not the process.
    """
    if settings.mood_strategy == NumericAggregator.strategy:
        return NumericAggregator()

    if settings.mood_strategy == GenerativeAggregator.strategy:
        if not settings.gemini_api_key:
            raise AggregationFailed(
                "Generative strategy selected but GEMINI_API_KEY is not configured"
            )
        if settings.gemini_profile_variant not in (VARIANT_RECOMMENDATION, VARIANT_AVERAGES):
            raise AggregationFailed(
                f"Unknown GEMINI_PROFILE_VARIANT '{settings.gemini_profile_variant}'"
            )
        client = GeminiClient(settings.gemini_api_key, model=settings.gemini_model)
        return GenerativeAggregator(client, variant=settings.gemini_profile_variant)

    raise AggregationFailed(f"Unknown MOOD_STRATEGY '{settings.mood_strategy}'")
