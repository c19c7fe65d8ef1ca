"""
Scoring oracle client and tier classification.

The oracle grades one image and returns four sub-scores (technical,
commercial, artistic, emotional) on a 0-10 scale plus a short analysis.
The overall score is computed here from per-user relative weights and the
tier is a pure function of that overall score.
"""
import asyncio
import base64
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

import httpx

from vault.config import get_settings
from vault.utils.metrics import record_external_request, scoring_requests_total

logger = logging.getLogger("vault.scoring")

ELITE_THRESHOLD = 8.5
STARS_THRESHOLD = 7.0

SCORE_MIN = 0.0
SCORE_MAX = 10.0


class PhotoTier(str, Enum):
    """Canonical photo tier. Stored values; display labels are derived."""
    ELITE = "elite"
    STARS = "stars"
    ARCHIVE = "archive"

    @property
    def label(self) -> str:
        return TIER_LABELS[self]


TIER_LABELS = {
    PhotoTier.ELITE: "vault-worthy",
    PhotoTier.STARS: "high-value",
    PhotoTier.ARCHIVE: "archive",
}


def tier_for_score(score: Optional[float]) -> PhotoTier:
    """Classify an overall score. ``None`` (unscored) is archive."""
    if score is None:
        return PhotoTier.ARCHIVE
    if score >= ELITE_THRESHOLD:
        return PhotoTier.ELITE
    if score >= STARS_THRESHOLD:
        return PhotoTier.STARS
    return PhotoTier.ARCHIVE


def clamp_score(value: float) -> float:
    return min(SCORE_MAX, max(SCORE_MIN, float(value)))


class ScoringError(Exception):
    """Terminal scoring failure for one item."""


class TransientScoringError(ScoringError):
    """Network failure or 5xx from the oracle; callers may retry."""


class RateLimitedError(ScoringError):
    """Oracle answered 429 twice in a row."""


class QuotaExhaustedError(ScoringError):
    """Oracle answered 402; no further calls will succeed until credits are added."""


@dataclass(frozen=True)
class ScoreWeights:
    """Relative weights for the sub-scores. They need not sum to 100."""
    technical: int = 70
    commercial: int = 80
    artistic: int = 60
    emotional: int = 50

    def overall(self, result: "ScoreResult") -> float:
        """Weighted average of the sub-scores, rounded to one decimal."""
        total_weight = self.technical + self.commercial + self.artistic + self.emotional
        if total_weight <= 0:
            value = (result.technical + result.commercial + result.artistic + result.emotional) / 4
        else:
            value = (
                result.technical * self.technical
                + result.commercial * self.commercial
                + result.artistic * self.artistic
                + result.emotional * self.emotional
            ) / total_weight
        return round(value, 1)

    @classmethod
    def defaults(cls) -> "ScoreWeights":
        settings = get_settings()
        return cls(
            technical=settings.default_technical_weight,
            commercial=settings.default_commercial_weight,
            artistic=settings.default_artistic_weight,
            emotional=settings.default_emotional_weight,
        )


@dataclass(frozen=True)
class ScoreResult:
    """Clamped sub-scores and the oracle's free-text analysis."""
    technical: float
    commercial: float
    artistic: float
    emotional: float
    analysis: str = ""

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> "ScoreResult":
        """
        Parse an oracle response body.

        Accepts either ``technical`` or ``technical_score`` style keys.
        Values are clamped to [0, 10].
        """
        def pick(name: str) -> float:
            value = data.get(f"{name}_score", data.get(name))
            if value is None:
                raise ScoringError(f"Scoring response missing {name} score")
            try:
                return clamp_score(float(value))
            except (TypeError, ValueError):
                raise ScoringError(f"Scoring response has non-numeric {name} score")

        analysis = data.get("ai_analysis", data.get("analysis")) or ""
        return cls(
            technical=pick("technical"),
            commercial=pick("commercial"),
            artistic=pick("artistic"),
            emotional=pick("emotional"),
            analysis=str(analysis).strip(),
        )


@dataclass(frozen=True)
class ScoredPhoto:
    """Scores plus the weighted overall score and derived tier."""
    result: ScoreResult
    overall: float
    tier: PhotoTier


def evaluate(result: ScoreResult, weights: ScoreWeights) -> ScoredPhoto:
    overall = weights.overall(result)
    return ScoredPhoto(result=result, overall=overall, tier=tier_for_score(overall))


class ScoringClient:
    """
    HTTP client for the scoring oracle.

    Rate limiting: a 429 waits ``cooldown_seconds`` once and retries exactly
    once; a second 429 raises ``RateLimitedError``. 402 raises
    ``QuotaExhaustedError``. 5xx and transport errors raise
    ``TransientScoringError``. Any other non-2xx raises ``ScoringError``.
    """

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.url = url or settings.scoring_url
        self.api_key = api_key if api_key is not None else settings.scoring_api_key
        self.timeout = timeout if timeout is not None else settings.scoring_timeout_seconds
        self.cooldown_seconds = (
            cooldown_seconds
            if cooldown_seconds is not None
            else settings.scoring_rate_limit_cooldown_seconds
        )
        self._transport = transport
        self._sleep = sleep

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _post(self, body: dict[str, Any]) -> httpx.Response:
        try:
            async with record_external_request("scoring"):
                async with httpx.AsyncClient(
                    timeout=self.timeout, transport=self._transport
                ) as client:
                    return await client.post(self.url, json=body, headers=self._headers())
        except httpx.HTTPError as e:
            scoring_requests_total.labels(result="transient").inc()
            logger.warning(
                "Scoring request failed",
                extra={"event": "scoring", "error_type": type(e).__name__},
            )
            raise TransientScoringError("Scoring service unreachable") from e

    async def score(
        self,
        payload: bytes,
        file_name: str,
        media_type: str = "image/jpeg",
    ) -> ScoreResult:
        """
        Grade one image.

        Args:
            payload: Encoded image bytes (JPEG after preprocessing)
            file_name: Filename hint passed to the oracle
            media_type: MIME type of ``payload``

        Returns:
            ScoreResult with clamped sub-scores

        Raises:
            RateLimitedError, QuotaExhaustedError, TransientScoringError, ScoringError
        """
        body = {
            "imageBase64": base64.b64encode(payload).decode("ascii"),
            "filename": file_name,
            "mediaType": media_type,
        }

        response = await self._post(body)
        if response.status_code == 429:
            scoring_requests_total.labels(result="rate_limited").inc()
            logger.warning(
                "Scoring rate limited, cooling down",
                extra={"event": "scoring", "cooldown": self.cooldown_seconds},
            )
            await self._sleep(self.cooldown_seconds)
            response = await self._post(body)
            if response.status_code == 429:
                scoring_requests_total.labels(result="rate_limited").inc()
                raise RateLimitedError("Scoring service rate limit persisted after cooldown")

        status_code = response.status_code
        if status_code == 402:
            scoring_requests_total.labels(result="quota_exhausted").inc()
            logger.error("Scoring quota exhausted", extra={"event": "scoring", "status": status_code})
            raise QuotaExhaustedError("Scoring credits exhausted")
        if status_code >= 500:
            scoring_requests_total.labels(result="transient").inc()
            logger.warning("Scoring server error", extra={"event": "scoring", "status": status_code})
            raise TransientScoringError(f"Scoring service returned HTTP {status_code}")
        if status_code >= 300:
            scoring_requests_total.labels(result="error").inc()
            logger.error("Scoring request rejected", extra={"event": "scoring", "status": status_code})
            raise ScoringError(f"Scoring service returned HTTP {status_code}")

        try:
            data = response.json()
        except ValueError as e:
            scoring_requests_total.labels(result="error").inc()
            raise ScoringError("Scoring response is not JSON") from e
        if not isinstance(data, dict):
            scoring_requests_total.labels(result="error").inc()
            raise ScoringError("Scoring response is not an object")

        try:
            result = ScoreResult.from_payload(data)
        except ScoringError:
            scoring_requests_total.labels(result="error").inc()
            raise
        scoring_requests_total.labels(result="success").inc()
        return result


# Singleton instance
_scoring_client: Optional[ScoringClient] = None


def get_scoring_client() -> ScoringClient:
    """Get the singleton scoring client."""
    global _scoring_client
    if _scoring_client is None:
        _scoring_client = ScoringClient()
    return _scoring_client
