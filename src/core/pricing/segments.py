# src/core/pricing/segments.py
"""
Цена за часть маршрута.

Пассажир может ехать не от начала до конца поездки, а между
промежуточными городами. Цена места пропорциональна доле расстояния.
"""

from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from src.common.geo import clamp01, haversine_km
from src.common.logger import log_debug, log_warning
from src.common.money import to_decimal, to_money
from src.core.bookings.models import SegmentContext
from src.core.trips.models import Trip
from src.infra.cache import KeyValueCache

# Буквы, которые NFKD не раскладывает на базовую + диакритику
_TRANSLITERATION = str.maketrans({"ı": "i", "ß": "ss", "ø": "o", "ł": "l", "đ": "d"})
_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")


@dataclass
class RouteStopPoint:
    """Остановка маршрута."""
    city: str
    lat: Optional[float]
    lng: Optional[float]

    @property
    def has_coordinates(self) -> bool:
        return self.lat is not None and self.lng is not None


def normalize_for_search(value: str | None) -> str:
    """Приводит название города к виду для сравнения: без регистра, диакритики и знаков."""
    text = (value or "").strip().lower().translate(_TRANSLITERATION)
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = _NON_ALNUM.sub(" ", text)
    return _SPACES.sub(" ", text).strip()


def levenshtein(left: str, right: str, max_distance: int) -> int:
    """
    Расстояние Левенштейна с ранним выходом.
    Если расстояние больше max_distance, возвращает max_distance + 1.
    """
    if left == right:
        return 0
    if not left:
        return len(right)
    if not right:
        return len(left)
    if abs(len(left) - len(right)) > max_distance:
        return max_distance + 1

    previous = list(range(len(right) + 1))
    for i, left_ch in enumerate(left, start=1):
        current = [i] + [0] * len(right)
        for j, right_ch in enumerate(right, start=1):
            current[j] = min(
                current[j - 1] + 1,
                previous[j] + 1,
                previous[j - 1] + (left_ch != right_ch),
            )
        if min(current) > max_distance:
            return max_distance + 1
        previous = current
    return previous[-1]


def _token_tolerance(token: str) -> int:
    if len(token) <= 4:
        return 1
    if len(token) <= 8:
        return 2
    return 3


def _token_matches(query_token: str, candidate_token: str) -> bool:
    if query_token in candidate_token or candidate_token in query_token:
        return True
    tolerance = _token_tolerance(query_token)
    return levenshtein(query_token, candidate_token, tolerance) <= tolerance


def matches_location(query: str, candidate: str) -> bool:
    """Нечёткое сравнение запроса пассажира с названием остановки."""
    normalized_query = normalize_for_search(query)
    normalized_candidate = normalize_for_search(candidate)
    if not normalized_query or not normalized_candidate:
        return False

    if normalized_query in normalized_candidate or normalized_candidate in normalized_query:
        return True

    candidate_tokens = normalized_candidate.split()
    return all(
        any(_token_matches(token, candidate_token) for candidate_token in candidate_tokens)
        for token in normalized_query.split()
    )


def build_route_stops(trip: Trip) -> list[RouteStopPoint]:
    """Город отправления, промежуточные города без повторов, город прибытия."""
    stops = [RouteStopPoint(trip.departure_city, trip.departure_lat, trip.departure_lng)]
    seen = {normalize_for_search(trip.departure_city)}

    for via in trip.via_cities:
        key = normalize_for_search(via.city)
        if not key or key in seen:
            continue
        seen.add(key)
        stops.append(RouteStopPoint(via.city.strip(), via.lat, via.lng))

    stops.append(RouteStopPoint(trip.arrival_city, trip.arrival_lat, trip.arrival_lng))
    return stops


def _find_stop(stops: list[RouteStopPoint], query: str, start: int) -> int:
    for index in range(max(start, 0), len(stops)):
        if matches_location(query, stops[index].city):
            return index
    return -1


def _distance(a: RouteStopPoint, b: RouteStopPoint) -> Optional[float]:
    if not (a.has_coordinates and b.has_coordinates):
        return None
    return haversine_km(a.lat, a.lng, b.lat, b.lng)


class SegmentPricingResolver:
    """
    Определяет участок маршрута по запросу пассажира и считает цену места.
    Результаты кэшируются, ошибки кэша не мешают расчёту.
    """

    CACHE_PREFIX = "segment_quote"

    def __init__(self, cache: KeyValueCache | None = None, ttl: int = 600) -> None:
        self._cache = cache
        self._ttl = ttl

    def _cache_key(self, trip: Trip, from_query: str, to_query: str) -> str:
        return (
            f"{self.CACHE_PREFIX}:{trip.id}:{trip.price_per_seat}:"
            f"{normalize_for_search(from_query)}:{normalize_for_search(to_query)}"
        )

    async def resolve_segment(
        self,
        trip: Trip,
        from_query: str | None,
        to_query: str | None,
    ) -> Optional[SegmentContext]:
        """
        Возвращает участок маршрута или None, если города не найдены
        или идут в обратном порядке.
        """
        from_query = (from_query or "").strip()
        to_query = (to_query or "").strip()
        if not from_query and not to_query:
            return None

        key = self._cache_key(trip, from_query, to_query)
        cached = await self._cache_get(key)
        if cached is not None:
            return SegmentContext.model_validate(cached)

        quote = self.compute(trip, from_query, to_query)
        if quote is not None:
            await self._cache_set(key, quote.model_dump(mode="json"))
            await log_debug(
                f"Участок {quote.from_city} -> {quote.to_city}: "
                f"доля {quote.distance_ratio:.2f}, цена {quote.segment_price_per_seat}",
                extra={"trip_id": trip.id},
            )
        return quote

    def compute(self, trip: Trip, from_query: str, to_query: str) -> Optional[SegmentContext]:
        """Расчёт без кэша."""
        stops = build_route_stops(trip)
        if len(stops) < 2:
            return None

        start = _find_stop(stops, from_query, 0) if from_query else 0
        if start < 0:
            return None
        end = _find_stop(stops, to_query, start + 1 if from_query else 0) if to_query else len(stops) - 1
        if end < 0 or end <= start:
            return None

        full_price = to_money(trip.price_per_seat)
        if start == 0 and end == len(stops) - 1:
            return SegmentContext(
                match_type="full",
                from_city=stops[start].city,
                to_city=stops[end].city,
                from_index=start,
                to_index=end,
                distance_ratio=1.0,
                full_price_per_seat=full_price,
                segment_price_per_seat=full_price,
            )

        ratio = self._segment_ratio(stops, start, end)
        if ratio <= 0:
            return None

        return SegmentContext(
            match_type="segment",
            from_city=stops[start].city,
            to_city=stops[end].city,
            from_index=start,
            to_index=end,
            distance_ratio=round(ratio, 4),
            full_price_per_seat=full_price,
            segment_price_per_seat=to_money(full_price * to_decimal(ratio)),
        )

    @staticmethod
    def _segment_ratio(stops: list[RouteStopPoint], start: int, end: int) -> float:
        index_ratio = clamp01((end - start) / (len(stops) - 1))

        total = _distance(stops[0], stops[-1])
        if not total or total <= 0:
            return index_ratio

        direct = _distance(stops[start], stops[end])
        if direct is None or direct <= 0:
            return index_ratio
        return clamp01(min(direct, total) / total)

    async def _cache_get(self, key: str):
        if self._cache is None:
            return None
        try:
            return await self._cache.get_json(key)
        except Exception as e:
            await log_warning(f"Кэш участков недоступен: {e}", extra={"key": key})
            return None

    async def _cache_set(self, key: str, value: dict) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set_json(key, value, ttl=self._ttl)
        except Exception as e:
            await log_warning(f"Не удалось сохранить участок в кэш: {e}", extra={"key": key})
