"""
Portfolio value and showcase layout tests.
"""
import pytest

from vault.services.curation import (
    LayoutPhoto,
    color_temperature,
    curate_layout,
    photo_value,
    portfolio_value,
    tier_value,
    value_breakdown,
)
from vault.services.scoring import PhotoTier


def test_tier_values():
    assert tier_value(2, PhotoTier.ELITE) == 5600
    assert photo_value(7.0) == 800
    assert photo_value(None) == 150
    counts = {PhotoTier.ELITE: 1, PhotoTier.STARS: 2, PhotoTier.ARCHIVE: 3}
    assert portfolio_value(counts) == 2800 + 1600 + 450


def test_value_breakdown():
    breakdown = value_breakdown([9.0, 8.6, 7.5, 2.0, None])
    assert breakdown == {"elite": 5600, "stars": 800, "archive": 300, "total": 6700}


@pytest.mark.parametrize(
    "hsl,expected",
    [
        ("20 70% 50%", "warm"),
        ("330 40% 50%", "warm"),
        ("210 60% 40%", "cool"),
        ("100 60% 40%", "neutral"),
        ("210 10% 40%", "neutral"),
        (None, "neutral"),
        ("garbage", "neutral"),
    ],
)
def test_color_temperature(hsl, expected):
    assert color_temperature(hsl) == expected


def test_empty_layout():
    layout = curate_layout([])
    assert layout.hero is None
    assert layout.secondary == []


def test_layout_slots():
    photos = [
        LayoutPhoto(id=1, score=9.8, aspect_ratio=0.66),
        LayoutPhoto(id=2, score=9.5, aspect_ratio=1.5),
        LayoutPhoto(id=3, score=9.0, aspect_ratio=1.0),
        LayoutPhoto(id=4, score=8.8, aspect_ratio=1.6),
        LayoutPhoto(id=5, score=8.0, aspect_ratio=1.0, temperature="warm"),
        LayoutPhoto(id=6, score=7.9, aspect_ratio=1.0, temperature="warm"),
        LayoutPhoto(id=7, score=7.5, aspect_ratio=1.0, temperature="cool"),
        LayoutPhoto(id=8, score=7.0, aspect_ratio=1.0),
        LayoutPhoto(id=9, score=6.0, aspect_ratio=1.0),
    ]

    layout = curate_layout(photos)

    # Best photo is portrait, so the best wide one leads
    assert layout.hero.id == 2
    assert [p.id for p in layout.secondary] == [4, 1]
    assert [p.id for p in layout.tertiary] == [5, 3, 6]
    assert [p.id for p in layout.strip] == [7, 8, 9]


def test_layout_hero_falls_back_to_best_portrait():
    layout = curate_layout([LayoutPhoto(id=1, score=5.0, aspect_ratio=0.5), LayoutPhoto(id=2, score=9.0, aspect_ratio=0.7)])
    assert layout.hero.id == 2
    assert [p.id for p in layout.secondary] == [1]
