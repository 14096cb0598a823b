# src/core/pricing/__init__.py
"""
Расчёт цены за часть маршрута.
"""

from src.core.pricing.segments import (
    SegmentPricingResolver,
    build_route_stops,
    levenshtein,
    matches_location,
    normalize_for_search,
)

__all__ = [
    "SegmentPricingResolver",
    "build_route_stops",
    "levenshtein",
    "matches_location",
    "normalize_for_search",
]
