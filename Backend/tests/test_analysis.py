import asyncio
import json
from dataclasses import replace

import pytest

from analysis import (
    ANXIOUS,
    EUPHORIC,
    HAPPY_CHILL,
    MAX_PROMPT_TRACKS,
    MELANCHOLIC,
    NEUTRAL,
    VARIANT_AVERAGES,
    GenerativeAggregator,
    NumericAggregator,
    build_aggregator,
    classify_mood,
)
from errors import AggregationFailed, MalformedAIResponse
from models import Artist, AudioFeatures, Track, mood_profile_to_dict


def _features(track_id="t1", **values) -> AudioFeatures:
    base = dict(danceability=0.5, energy=0.5, valence=0.5, tempo=120.0, acousticness=0.5)
    base.update(values)
    return AudioFeatures(spotify_id=track_id, **base)


def _track(i: int) -> Track:
    return Track(spotify_id=f"t{i}", title=f"Song {i}", artists=[Artist(f"Artist {i}")])


class FakeTextGenerator:
    def __init__(self, reply):
        self.reply = reply if isinstance(reply, str) else json.dumps(reply)
        self.calls = []
        self.closed = False

    async def generate_json(self, prompt, schema, system_instruction=None):
        self.calls.append({"prompt": prompt, "schema": schema})
        return self.reply

    async def aclose(self):
        self.closed = True


VALID_REPLY = {
    "primaryMood": "Dreamy Nostalgia",
    "tags": ["Lo-fi", "Warm", "Hazy"],
    "activitySuggestions": ["Late-night study", "Rainy commute"],
    "recommendedSong": {"name": "Kyoto", "artist": "Phoebe Bridgers", "reason": "Same bittersweet glow."},
}


# ═══════════════════════════════════════════════════════════════════════════
# Numeric strategy
# ═══════════════════════════════════════════════════════════════════════════


def test_single_euphoric_feature_set() -> None:
    f = _features(danceability=0.8, energy=0.9, valence=0.9, tempo=150, acousticness=0.1)

    profile = asyncio.run(NumericAggregator().aggregate([f]))

    assert profile.primary_mood == EUPHORIC
    assert "Highly Danceable" in profile.tags
    assert "Fast-Paced" in profile.tags
    assert "Acoustic" not in profile.tags
    assert profile.recommended_song is None
    assert profile.averages.tempo == 150


@pytest.mark.parametrize(
    "valence, energy, expected",
    [
        (0.7, 0.7, EUPHORIC),
        (0.6, 0.3, HAPPY_CHILL),
        (0.2, 0.3, MELANCHOLIC),
        (0.4, 0.8, ANXIOUS),
        (0.5, 0.5, NEUTRAL),
        # exactly on a threshold does not match (strict comparisons)
        (0.65, 0.9, NEUTRAL),
        # satisfies both the euphoric and happy rows' valence; first wins
        (0.9, 0.66, EUPHORIC),
    ],
)
def test_classify_mood_decision_table(valence, energy, expected) -> None:
    assert classify_mood(valence, energy) == expected


def test_numeric_averages_use_arithmetic_mean() -> None:
    items = [
        _features("a", energy=0.2, valence=0.1, tempo=100, acousticness=0.9, danceability=0.3),
        _features("b", energy=0.4, valence=0.3, tempo=160, acousticness=0.7, danceability=0.5),
    ]

    profile = asyncio.run(NumericAggregator().aggregate(items))

    assert profile.averages.energy == pytest.approx(0.3)
    assert profile.averages.valence == pytest.approx(0.2)
    assert profile.averages.tempo == pytest.approx(130)
    assert profile.averages.acousticness == pytest.approx(0.8)
    assert profile.primary_mood == MELANCHOLIC
    assert profile.tags == ["Acoustic"]
    assert profile.track_count == 2


def test_numeric_aggregation_is_deterministic() -> None:
    items = [_features(f"t{i}", energy=i / 37, valence=(i * 7 % 11) / 11) for i in range(37)]
    aggregator = NumericAggregator()

    first = mood_profile_to_dict(asyncio.run(aggregator.aggregate(items)))
    second = mood_profile_to_dict(asyncio.run(aggregator.aggregate(list(items))))

    assert json.dumps(first) == json.dumps(second)


def test_numeric_empty_input_fails() -> None:
    with pytest.raises(AggregationFailed):
        asyncio.run(NumericAggregator().aggregate([]))


def test_numeric_profile_always_has_activity_suggestions() -> None:
    profile = asyncio.run(NumericAggregator().aggregate([_features()]))

    body = mood_profile_to_dict(profile)
    assert body["activitySuggestions"]
    assert body["strategy"] == "numeric"
    assert "averages" in body
    assert "recommendedSong" not in body
    assert "simulatedAverages" not in body


# ═══════════════════════════════════════════════════════════════════════════
# Generative strategy
# ═══════════════════════════════════════════════════════════════════════════


def test_generative_builds_profile_from_reply() -> None:
    client = FakeTextGenerator(VALID_REPLY)

    profile = asyncio.run(GenerativeAggregator(client).aggregate([_track(1), _track(2)]))

    assert profile.primary_mood == "Dreamy Nostalgia"
    assert profile.tags == ["Lo-fi", "Warm", "Hazy"]
    assert profile.activity_suggestions == ["Late-night study", "Rainy commute"]
    assert profile.recommended_song.name == "Kyoto"
    assert profile.recommended_song.cover_art is None
    assert profile.averages is None
    assert "Song 1 by Artist 1" in client.calls[0]["prompt"]
    assert "recommendedSong" in client.calls[0]["schema"]["properties"]


def test_generative_prompt_caps_track_lines() -> None:
    client = FakeTextGenerator(VALID_REPLY)
    tracks = [_track(i) for i in range(MAX_PROMPT_TRACKS + 20)]

    profile = asyncio.run(GenerativeAggregator(client).aggregate(tracks))

    prompt = client.calls[0]["prompt"]
    assert f"Song {MAX_PROMPT_TRACKS - 1} by" in prompt
    assert f"Song {MAX_PROMPT_TRACKS} by" not in prompt
    assert profile.track_count == MAX_PROMPT_TRACKS


def test_generative_missing_primary_mood_is_malformed() -> None:
    reply = {k: v for k, v in VALID_REPLY.items() if k != "primaryMood"}

    with pytest.raises(MalformedAIResponse):
        asyncio.run(GenerativeAggregator(FakeTextGenerator(reply)).aggregate([_track(1)]))


@pytest.mark.parametrize("raw", ["not json", "[]", '{"primaryMood": "x", "tags": [], "activitySuggestions": ["a"]}'])
def test_generative_unparseable_reply_is_malformed(raw) -> None:
    with pytest.raises(MalformedAIResponse):
        asyncio.run(GenerativeAggregator(FakeTextGenerator(raw)).aggregate([_track(1)]))


def test_generative_empty_input_skips_service_call() -> None:
    client = FakeTextGenerator(VALID_REPLY)

    with pytest.raises(AggregationFailed):
        asyncio.run(GenerativeAggregator(client).aggregate([]))

    assert client.calls == []


def test_generative_truncates_long_lists() -> None:
    reply = dict(VALID_REPLY, tags=["a", "b", "c", "d", "e", "f", "g"], activitySuggestions=["1", "2", "3", "4"])

    profile = asyncio.run(GenerativeAggregator(FakeTextGenerator(reply)).aggregate([_track(1)]))

    assert profile.tags == ["a", "b", "c", "d", "e"]
    assert profile.activity_suggestions == ["1", "2", "3"]


def test_generative_averages_variant_marks_estimates() -> None:
    reply = {
        "primaryMood": "Upbeat",
        "tags": ["Pop", "Bright", "Catchy"],
        "activitySuggestions": ["Cleaning", "Cardio"],
        "simulatedAverages": {"energy": 0.8, "happiness": 0.7, "danceability": 0.75},
    }
    client = FakeTextGenerator(reply)

    profile = asyncio.run(GenerativeAggregator(client, variant=VARIANT_AVERAGES).aggregate([_track(1)]))

    body = mood_profile_to_dict(profile)
    assert body["simulatedAverages"] == {"energy": 0.8, "happiness": 0.7, "danceability": 0.75}
    assert body["averagesAreEstimates"] is True
    assert "averages" not in body
    assert "simulatedAverages" in client.calls[0]["schema"]["required"]


def test_generative_out_of_range_estimate_is_malformed() -> None:
    reply = dict(VALID_REPLY, simulatedAverages={"energy": 1.4, "happiness": 0.5, "danceability": 0.5})

    with pytest.raises(MalformedAIResponse):
        asyncio.run(GenerativeAggregator(FakeTextGenerator(reply)).aggregate([_track(1)]))


# ═══════════════════════════════════════════════════════════════════════════
# Selection
# ═══════════════════════════════════════════════════════════════════════════


def test_build_aggregator_numeric(settings) -> None:
    assert isinstance(build_aggregator(settings), NumericAggregator)


def test_build_aggregator_generative_without_key_fails(settings) -> None:
    with pytest.raises(AggregationFailed):
        build_aggregator(replace(settings, mood_strategy="generative"))


def test_build_aggregator_generative_with_key(settings) -> None:
    aggregator = build_aggregator(
        replace(settings, mood_strategy="generative", gemini_api_key="fake-key")
    )

    assert isinstance(aggregator, GenerativeAggregator)
    assert aggregator.input_kind == "tracks"


@pytest.mark.parametrize(
    "overrides",
    [
        {"mood_strategy": "astrology"},
        {"mood_strategy": "generative", "gemini_api_key": "k", "gemini_profile_variant": "poem"},
    ],
)
def test_build_aggregator_rejects_unknown_options(settings, overrides) -> None:
    with pytest.raises(AggregationFailed):
        build_aggregator(replace(settings, **overrides))


def test_generative_aggregator_closes_client_on_exit() -> None:
    client = FakeTextGenerator(VALID_REPLY)

    async def run():
        async with GenerativeAggregator(client) as aggregator:
            await aggregator.aggregate([_track(1)])

    asyncio.run(run())

    assert client.closed


def test_generative_aggregator_closes_client_when_reply_is_malformed() -> None:
    client = FakeTextGenerator("not json")

    async def run():
        async with GenerativeAggregator(client) as aggregator:
            await aggregator.aggregate([_track(1)])

    with pytest.raises(MalformedAIResponse):
        asyncio.run(run())
    assert client.closed


def test_numeric_aggregator_context_is_a_no_op() -> None:
    async def run():
        async with NumericAggregator() as aggregator:
            return await aggregator.aggregate([_features()])

    assert asyncio.run(run()).track_count == 1
