"""
Portfolio value estimates and showcase layout curation.
"""
from dataclasses import dataclass, field
from typing import Iterable, Optional

from vault.models.photo import Photo
from vault.services.scoring import PhotoTier, tier_for_score

# Estimated licensing value per photo, USD
TIER_VALUES = {
    PhotoTier.ELITE: 2800,
    PhotoTier.STARS: 800,
    PhotoTier.ARCHIVE: 150,
}


def tier_value(count: int, tier: PhotoTier) -> int:
    return count * TIER_VALUES[tier]


def photo_value(score: Optional[float]) -> int:
    return TIER_VALUES[tier_for_score(score)]


def portfolio_value(counts: dict[PhotoTier, int]) -> int:
    """Total value for per-tier photo counts."""
    return sum(tier_value(counts.get(tier, 0), tier) for tier in PhotoTier)


def value_breakdown(scores: Iterable[Optional[float]]) -> dict[str, int]:
    """Value per tier plus ``total`` for a collection of overall scores."""
    breakdown = {tier.value: 0 for tier in PhotoTier}
    for score in scores:
        breakdown[tier_for_score(score).value] += photo_value(score)
    breakdown["total"] = sum(breakdown.values())
    return breakdown


@dataclass(frozen=True)
class LayoutPhoto:
    id: int
    score: float
    aspect_ratio: float
    temperature: str = "neutral"

    @classmethod
    def from_photo(cls, photo: Photo) -> "LayoutPhoto":
        if photo.width and photo.height:
            ratio = photo.width / photo.height
        else:
            ratio = 1.0
        return cls(
            id=photo.id,
            score=photo.overall_score or 0.0,
            aspect_ratio=ratio,
            temperature=color_temperature(photo.dominant_color),
        )


@dataclass
class CuratedLayout:
    hero: Optional[LayoutPhoto] = None
    secondary: list[LayoutPhoto] = field(default_factory=list)
    tertiary: list[LayoutPhoto] = field(default_factory=list)
    strip: list[LayoutPhoto] = field(default_factory=list)


def color_temperature(hsl: Optional[str]) -> str:
    """Classify an ``"h s% l%"`` colour as warm, cool or neutral."""
    if not hsl:
        return "neutral"
    try:
        hue_text, saturation_text, _ = hsl.split()
        hue = float(hue_text)
        saturation = float(saturation_text.rstrip("%"))
    except ValueError:
        return "neutral"
    if saturation < 15:
        return "neutral"
    if hue <= 60 or hue >= 300:
        return "warm"
    if 150 <= hue <= 270:
        return "cool"
    return "neutral"


def _balance_temperature(photos: list[LayoutPhoto], size: int = 3) -> list[LayoutPhoto]:
    """Interleave warm, cool and neutral photos, keeping score order within each."""
    buckets = {
        name: [p for p in photos if p.temperature == name]
        for name in ("warm", "cool", "neutral")
    }
    balanced: list[LayoutPhoto] = []
    while len(balanced) < size and any(buckets.values()):
        for name in ("warm", "cool", "neutral"):
            if buckets[name] and len(balanced) < size:
                balanced.append(buckets[name].pop(0))
    return balanced


def curate_layout(photos: Iterable[LayoutPhoto]) -> CuratedLayout:
    """
    Arrange photos for a showcase.

    hero: best landscape or square photo (best overall if there is none)
    secondary: two photos, preferring one landscape (> 1.2) and one portrait (< 0.8)
    tertiary: the next three, balanced by colour temperature
    strip: the four after those, best first
    """
    ranked = sorted(photos, key=lambda p: p.score, reverse=True)
    if not ranked:
        return CuratedLayout()

    wide = [p for p in ranked if p.aspect_ratio >= 1]
    hero = wide[0] if wide else ranked[0]
    remaining = [p for p in ranked if p.id != hero.id]

    landscape = next((p for p in remaining if p.aspect_ratio > 1.2), None)
    portrait = next((p for p in remaining if p.aspect_ratio < 0.8), None)
    secondary = [p for p in (landscape, portrait) if p is not None]
    for photo in remaining:
        if len(secondary) >= 2:
            break
        if photo not in secondary:
            secondary.append(photo)

    unused = [p for p in remaining if p not in secondary]
    return CuratedLayout(
        hero=hero,
        secondary=secondary,
        tertiary=_balance_temperature(unused[:3]),
        strip=unused[3:7],
    )
