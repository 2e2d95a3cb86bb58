"""
Display estimates for the Delhi Bus Tracker.

This module provides the speculative values shown to passengers: minutes to
arrival for upcoming stops, clock-time formatting and the speedometer reading.
None of these drive the movement engine; ETAs are redrawn independently of the
travel-time model and the speed is derived from segment progress alone.
"""

import math
import random
from datetime import datetime, timedelta
from typing import Optional


CLOCK_FORMAT = "%H:%M"

# Share of a segment spent accelerating, and decelerating
RAMP_FRACTION = 0.2

# Relative swing of the cruise speed across the middle of a segment
PLATEAU_VARIATION = 0.1


def generate_random_eta(rng: random.Random, min_minutes: int = 2, max_minutes: int = 9) -> int:
    """
    Draw a speculative ETA in whole minutes.

    Args:
        rng: Random source
        min_minutes: Smallest ETA (inclusive)
        max_minutes: Largest ETA (inclusive)

    Returns:
        ETA in minutes

    Raises:
        ValueError: If the bounds are inverted or negative
    """
    if min_minutes < 0:
        raise ValueError(f"min_minutes must be non-negative, got {min_minutes}")
    if min_minutes > max_minutes:
        raise ValueError(f"min_minutes ({min_minutes}) exceeds max_minutes ({max_minutes})")

    return rng.randint(min_minutes, max_minutes)


def format_clock_time(moment: datetime) -> str:
    """Format a wall-clock time as HH:MM."""
    return moment.strftime(CLOCK_FORMAT)


def estimate_arrival_time(now: datetime, eta_minutes: Optional[int]) -> Optional[str]:
    """
    Convert an ETA into the clock time the bus should arrive.

    Examples:
        >>> estimate_arrival_time(datetime(2024, 1, 1, 9, 58), 4)
        '10:02'
        >>> estimate_arrival_time(datetime(2024, 1, 1, 9, 58), None) is None
        True
    """
    if eta_minutes is None:
        return None
    return format_clock_time(now + timedelta(minutes=eta_minutes))


def display_speed_kmh(progress: float, cruise_speed_kmh: float) -> float:
    """
    Derive the speedometer reading from segment progress.

    The speed ramps up linearly over the first 20% of the segment, swings
    gently around the cruise speed through the middle 60% and ramps down over
    the final 20%. The curve is continuous, so the gauge never jumps.

    Args:
        progress: Linear fraction of the segment completed (0.0 to 1.0)
        cruise_speed_kmh: Speed at the edges of the plateau

    Returns:
        Display speed in km/h

    Raises:
        ValueError: If cruise_speed_kmh is negative
    """
    if cruise_speed_kmh < 0:
        raise ValueError(f"cruise_speed_kmh must be non-negative, got {cruise_speed_kmh}")

    progress = min(max(progress, 0.0), 1.0)

    if progress < RAMP_FRACTION:
        return cruise_speed_kmh * progress / RAMP_FRACTION

    if progress > 1 - RAMP_FRACTION:
        return cruise_speed_kmh * (1 - progress) / RAMP_FRACTION

    plateau = (progress - RAMP_FRACTION) / (1 - 2 * RAMP_FRACTION)
    return cruise_speed_kmh * (1 + PLATEAU_VARIATION * math.sin(math.pi * plateau))
