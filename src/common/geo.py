"""
Geographic helpers for the Delhi Bus Tracker.

This module provides the great-circle distance, linear interpolation and the
easing curve used by the movement engine to animate the bus between stops.
"""

import math
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import Coordinate


# Mean Earth radius in kilometers
EARTH_RADIUS_KM = 6371.0


def distance_km(a: "Coordinate", b: "Coordinate") -> float:
    """
    Calculate distance between two coordinates using the Haversine formula.

    Args:
        a: First coordinate
        b: Second coordinate

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(a.lat)
    lat2_rad = math.radians(b.lat)
    delta_lat = math.radians(b.lat - a.lat)
    delta_lng = math.radians(b.lng - a.lng)

    # Haversine formula
    h = math.sin(delta_lat / 2) ** 2 + \
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lng / 2) ** 2
    c = 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))

    return EARTH_RADIUS_KM * c


def lerp(start: float, end: float, t: float) -> float:
    """
    Linearly interpolate between two values.

    Args:
        start: Value at t = 0
        end: Value at t = 1
        t: Fraction between 0.0 and 1.0

    Returns:
        Interpolated value
    """
    if t <= 0.0:
        return start
    if t >= 1.0:
        return end
    return start + (end - start) * t


def lerp_coordinates(start: "Coordinate", end: "Coordinate", t: float) -> "Coordinate":
    """
    Interpolate a coordinate on the straight line between two coordinates.

    The endpoints are returned unchanged at t <= 0 and t >= 1 so that a bus
    which has finished a segment sits exactly on the stop.
    """
    from .models import Coordinate

    if t <= 0.0:
        return start
    if t >= 1.0:
        return end
    return Coordinate(lat=lerp(start.lat, end.lat, t), lng=lerp(start.lng, end.lng, t))


def ease_in_out_cubic(t: float) -> float:
    """
    Map a linear time fraction to a smooth motion fraction.

    The curve accelerates over the first half and decelerates over the second,
    symmetric around t = 0.5.

    Args:
        t: Linear fraction, clamped to [0, 1]

    Returns:
        Eased fraction in [0, 1]

    Examples:
        >>> ease_in_out_cubic(0.0)
        0.0
        >>> ease_in_out_cubic(0.5)
        0.5
        >>> ease_in_out_cubic(1.0)
        1.0
    """
    t = min(max(t, 0.0), 1.0)
    if t < 0.5:
        return 4 * t ** 3
    return 1 - (-2 * t + 2) ** 3 / 2
