"""
Scoring client and tier classification tests.
"""
import json

import httpx
import pytest

from vault.services.scoring import (
    PhotoTier,
    QuotaExhaustedError,
    RateLimitedError,
    ScoreResult,
    ScoreWeights,
    ScoringClient,
    ScoringError,
    TransientScoringError,
    evaluate,
    tier_for_score,
)

SCORES = {
    "technical_score": 9.0,
    "commercial_score": 8.0,
    "artistic_score": 7.0,
    "emotional_score": 6.0,
    "ai_analysis": "  Strong light.  ",
}


def client_with(responses, sleeps=None):
    """Client whose transport answers with ``responses`` in order."""
    queue = list(responses)
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def sleep(delay):
        if sleeps is not None:
            sleeps.append(delay)

    client = ScoringClient(
        url="https://scoring.example/score",
        api_key="key",
        cooldown_seconds=5,
        transport=httpx.MockTransport(handler),
        sleep=sleep,
    )
    return client, requests


@pytest.mark.parametrize(
    "score,tier",
    [
        (None, PhotoTier.ARCHIVE),
        (10.0, PhotoTier.ELITE),
        (8.5, PhotoTier.ELITE),
        (8.49, PhotoTier.STARS),
        (7.0, PhotoTier.STARS),
        (6.99, PhotoTier.ARCHIVE),
        (0.0, PhotoTier.ARCHIVE),
    ],
)
def test_tier_thresholds(score, tier):
    assert tier_for_score(score) is tier


def test_tier_labels():
    assert PhotoTier.ELITE.label == "vault-worthy"
    assert PhotoTier.STARS.label == "high-value"
    assert PhotoTier.ARCHIVE.label == "archive"


class TestWeights:
    def test_weighted_overall(self):
        result = ScoreResult(technical=10, commercial=5, artistic=0, emotional=0)
        weights = ScoreWeights(technical=1, commercial=1, artistic=0, emotional=0)
        assert weights.overall(result) == 7.5

    def test_zero_weights_average(self):
        result = ScoreResult(technical=8, commercial=6, artistic=4, emotional=2)
        assert ScoreWeights(0, 0, 0, 0).overall(result) == 5.0

    def test_evaluate_derives_tier(self):
        scored = evaluate(ScoreResult(9, 9, 9, 9), ScoreWeights())
        assert scored.overall == 9.0
        assert scored.tier is PhotoTier.ELITE


class TestPayload:
    def test_clamps_and_accepts_short_keys(self):
        result = ScoreResult.from_payload(
            {"technical": 12, "commercial": -1, "artistic": "7.5", "emotional": 3}
        )
        assert (result.technical, result.commercial, result.artistic) == (10.0, 0.0, 7.5)

    def test_missing_score(self):
        with pytest.raises(ScoringError):
            ScoreResult.from_payload({"technical": 1, "commercial": 1, "artistic": 1})


class TestScoringClient:
    async def test_success(self):
        client, requests = client_with([httpx.Response(200, json=SCORES)])

        result = await client.score(b"\xff\xd8jpeg", "a.jpg")

        assert result.technical == 9.0
        assert result.analysis == "Strong light."
        body = json.loads(requests[0].content)
        assert body["filename"] == "a.jpg"
        assert body["mediaType"] == "image/jpeg"
        assert requests[0].headers["Authorization"] == "Bearer key"

    async def test_rate_limit_waits_and_retries_once(self):
        sleeps = []
        client, requests = client_with([httpx.Response(429), httpx.Response(200, json=SCORES)], sleeps)

        result = await client.score(b"data", "a.jpg")

        assert result.emotional == 6.0
        assert sleeps == [5]
        assert len(requests) == 2

    async def test_rate_limit_twice(self):
        client, requests = client_with([httpx.Response(429), httpx.Response(429)])
        with pytest.raises(RateLimitedError):
            await client.score(b"data", "a.jpg")
        assert len(requests) == 2

    async def test_quota_exhausted(self):
        client, _ = client_with([httpx.Response(402)])
        with pytest.raises(QuotaExhaustedError):
            await client.score(b"data", "a.jpg")

    async def test_server_error_is_transient(self):
        client, _ = client_with([httpx.Response(503)])
        with pytest.raises(TransientScoringError):
            await client.score(b"data", "a.jpg")

    async def test_transport_error_is_transient(self):
        client, _ = client_with([httpx.ConnectError("refused")])
        with pytest.raises(TransientScoringError):
            await client.score(b"data", "a.jpg")

    async def test_client_error_is_terminal(self):
        client, _ = client_with([httpx.Response(400, json={"error": "bad image"})])
        with pytest.raises(ScoringError) as exc_info:
            await client.score(b"data", "a.jpg")
        assert not isinstance(exc_info.value, TransientScoringError)

    async def test_non_json_body(self):
        client, _ = client_with([httpx.Response(200, content=b"<html>")])
        with pytest.raises(ScoringError):
            await client.score(b"data", "a.jpg")
