"""
Distance provider.

Routing is a collaborator concern; the core only needs "how far apart are these
two points". The default provider uses straight-line (haversine) distance.
"""

import math
from typing import Protocol

from domain.models import Location


EARTH_RADIUS_KM = 6371.0


class DistanceProvider(Protocol):
    def distance_km(self, origin: Location, destination: Location) -> float:
        ...


class HaversineDistanceProvider:
    """Great-circle distance between two coordinates, in kilometres."""

    def distance_km(self, origin: Location, destination: Location) -> float:
        d_lat = math.radians(destination.lat - origin.lat)
        d_lng = math.radians(destination.lng - origin.lng)
        a = (
            math.sin(d_lat / 2) ** 2
            + math.cos(math.radians(origin.lat))
            * math.cos(math.radians(destination.lat))
            * math.sin(d_lng / 2) ** 2
        )
        return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    def eta_minutes(self, origin: Location, destination: Location, speed_kmh: float) -> float:
        return self.distance_km(origin, destination) / speed_kmh * 60
