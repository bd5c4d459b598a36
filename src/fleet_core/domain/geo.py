"""
Геометрия маршрута: дистанция по дуге большого круга и площадь полигона.

Площадь считается формулой шнурков прямо в координатах [lon, lat], т.е. в
градусах², без проекции. Это упрощение, а не геодезическая площадь.
"""
from __future__ import annotations
import math
from typing import Iterable, Sequence, Tuple, Union

from fleet_core.domain.models import Waypoint

EARTH_RADIUS_KM = 6371.0

Point = Union[Waypoint, Tuple[float, float]]


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    p1 = math.radians(lat1)
    p2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlmb = math.radians(lon2 - lon1)
    a = math.sin(dphi / 2) ** 2 + math.cos(p1) * math.cos(p2) * math.sin(dlmb / 2) ** 2
    return 2 * EARTH_RADIUS_KM * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def _lat_lon(p: Point) -> Tuple[float, float]:
    if isinstance(p, Waypoint):
        return p.latitude, p.longitude
    return float(p[0]), float(p[1])


def route_distance_km(points: Iterable[Point]) -> float:
    """Сумма отрезков между соседними точками; (lat, lon) или Waypoint."""
    coords = [_lat_lon(p) for p in points]
    total = 0.0
    for (lat1, lon1), (lat2, lon2) in zip(coords, coords[1:]):
        total += haversine_km(lat1, lon1, lat2, lon2)
    return total


def polygon_area(ring: Sequence[Sequence[float]]) -> float:
    n = len(ring)
    if n < 3:
        return 0.0
    area = 0.0
    for i in range(n):
        j = (i + 1) % n
        area += ring[i][0] * ring[j][1]
        area -= ring[j][0] * ring[i][1]
    return abs(area) / 2
