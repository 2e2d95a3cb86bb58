"""
Data models for the Delhi Bus Tracker.

This module contains dataclasses for the route (stops and waypoints), the
simulation settings and the read-only snapshot handed to presentation views.
All configuration models include validation methods to ensure data integrity.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .geo import distance_km


STATUS_COMPLETED = "completed"
STATUS_CURRENT = "current"
STATUS_UPCOMING = "upcoming"
VALID_STATUSES = (STATUS_COMPLETED, STATUS_CURRENT, STATUS_UPCOMING)


class RouteValidationError(ValueError):
    """Raised when a route or its stop statuses are malformed."""
    pass


@dataclass(frozen=True)
class Coordinate:
    """
    A WGS-84 position in degrees.

    Attributes:
        lat: Latitude
        lng: Longitude
    """
    lat: float
    lng: float

    def validate(self) -> None:
        """
        Validate coordinate ranges.

        Raises:
            ValueError: If validation fails
        """
        if not (-90 <= self.lat <= 90):
            raise ValueError(f"latitude must be between -90 and 90, got {self.lat}")
        if not (-180 <= self.lng <= 180):
            raise ValueError(f"longitude must be between -180 and 180, got {self.lng}")

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


# Route Models

@dataclass
class Stop:
    """
    Represents a bus stop on the route.

    Attributes:
        stop_id: Unique identifier, increasing along the route
        name: Human-readable name of the stop
        latitude: Stop latitude
        longitude: Stop longitude
        status: "completed", "current" or "upcoming"
        eta: Minutes until arrival (upcoming stops only)
        arrival_time: HH:MM the bus arrived (completed stops only)
        estimated_arrival_time: Advisory HH:MM arrival (upcoming stops only)
        waypoint_index: Position of the stop on the route waypoints
    """
    stop_id: int
    name: str
    latitude: float
    longitude: float
    status: str = STATUS_UPCOMING
    eta: Optional[int] = None
    arrival_time: Optional[str] = None
    estimated_arrival_time: Optional[str] = None
    waypoint_index: Optional[int] = None

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(lat=self.latitude, lng=self.longitude)

    def validate(self) -> None:
        """
        Validate stop configuration.

        Raises:
            ValueError: If validation fails
        """
        if not self.name:
            raise ValueError("name cannot be empty")
        self.coordinate.validate()
        if self.status not in VALID_STATUSES:
            raise ValueError(
                f"status must be one of {', '.join(VALID_STATUSES)}, got '{self.status}'"
            )
        if self.eta is not None:
            if self.status != STATUS_UPCOMING:
                raise ValueError(f"eta is only allowed on upcoming stops, stop {self.stop_id} is {self.status}")
            if self.eta < 0:
                raise ValueError(f"eta must be non-negative, got {self.eta}")
        if self.waypoint_index is not None and self.waypoint_index < 0:
            raise ValueError(f"waypoint_index must be non-negative, got {self.waypoint_index}")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.stop_id,
            "name": self.name,
            "lat": self.latitude,
            "lng": self.longitude,
            "status": self.status,
        }
        if self.eta is not None:
            data["eta"] = self.eta
        if self.arrival_time is not None:
            data["arrivalTime"] = self.arrival_time
        if self.estimated_arrival_time is not None:
            data["estimatedArrivalTime"] = self.estimated_arrival_time
        return data


def current_index(stops: Sequence[Stop]) -> int:
    """
    Get the index of the stop the bus is currently at.

    Returns:
        Index of the current stop, or -1 if every stop is completed
    """
    for i, stop in enumerate(stops):
        if stop.status == STATUS_CURRENT:
            return i
    return -1


def next_stop(stops: Sequence[Stop]) -> Optional[Stop]:
    """
    Get the stop immediately after the current one.

    Returns:
        Next stop, or None at the end of the route or once it is finished
    """
    index = current_index(stops)
    if 0 <= index < len(stops) - 1:
        return stops[index + 1]
    return None


def validate_statuses(stops: Sequence[Stop]) -> None:
    """
    Check the status ordering of a stop sequence.

    Exactly one stop is current, everything before it is completed and
    everything after it is upcoming; or every stop is completed.

    Raises:
        RouteValidationError: If the ordering is broken
    """
    if not stops:
        raise RouteValidationError("stops cannot be empty")

    current = [i for i, stop in enumerate(stops) if stop.status == STATUS_CURRENT]
    if not current:
        if all(stop.status == STATUS_COMPLETED for stop in stops):
            return
        raise RouteValidationError("route must have exactly one current stop, found none")
    if len(current) > 1:
        raise RouteValidationError(
            f"route must have exactly one current stop, found {len(current)} at indices {current}"
        )

    index = current[0]
    for i, stop in enumerate(stops):
        if i < index and stop.status != STATUS_COMPLETED:
            raise RouteValidationError(
                f"stop {stop.stop_id} precedes the current stop but is {stop.status}"
            )
        if i > index and stop.status != STATUS_UPCOMING:
            raise RouteValidationError(
                f"stop {stop.stop_id} follows the current stop but is {stop.status}"
            )


def preset_statuses(stops: Sequence[Stop], start_index: int) -> List[Stop]:
    """
    Build copies of the stops positioned at a starting stop.

    Stops before start_index are completed, the start stop is current and the
    rest are upcoming. Completed stops keep any recorded arrival time and
    upcoming stops keep their estimates.

    Raises:
        RouteValidationError: If start_index is outside the route
    """
    if not (0 <= start_index < len(stops)):
        raise RouteValidationError(
            f"start index must be between 0 and {len(stops) - 1}, got {start_index}"
        )

    preset = []
    for i, stop in enumerate(stops):
        if i < start_index:
            preset.append(replace(stop, status=STATUS_COMPLETED, eta=None, estimated_arrival_time=None))
        elif i == start_index:
            preset.append(replace(stop, status=STATUS_CURRENT, eta=None,
                                  arrival_time=None, estimated_arrival_time=None))
        else:
            preset.append(replace(stop, status=STATUS_UPCOMING, arrival_time=None))
    return preset


@dataclass
class Route:
    """
    Represents the bus line the vehicle travels along.

    Attributes:
        route_id: Unique identifier for the route
        name: Human-readable name of the route
        stops: Stops in traversal order
        waypoints: Optional polyline the bus follows, referenced by
            Stop.waypoint_index
    """
    route_id: str
    name: str
    stops: List[Stop]
    waypoints: List[Coordinate] = field(default_factory=list)
    _segment_distances: Optional[List[float]] = field(default=None, init=False, repr=False)

    def validate(self) -> None:
        """
        Validate route configuration.

        Raises:
            RouteValidationError: If validation fails
        """
        if not self.route_id:
            raise RouteValidationError("route_id cannot be empty")
        if not self.stops:
            raise RouteValidationError("stops cannot be empty")

        for stop in self.stops:
            try:
                stop.validate()
            except ValueError as e:
                raise RouteValidationError(f"stop {stop.stop_id}: {e}")

        # Stop IDs must increase along the route
        for previous, stop in zip(self.stops, self.stops[1:]):
            if stop.stop_id <= previous.stop_id:
                raise RouteValidationError(
                    f"stop ids must be strictly increasing, {stop.stop_id} follows {previous.stop_id}"
                )

        if self.waypoints:
            last_index = -1
            for stop in self.stops:
                if stop.waypoint_index is None:
                    raise RouteValidationError(f"stop {stop.stop_id} has no waypoint_index")
                if stop.waypoint_index >= len(self.waypoints):
                    raise RouteValidationError(
                        f"stop {stop.stop_id} waypoint_index {stop.waypoint_index} "
                        f"is outside {len(self.waypoints)} waypoints"
                    )
                if stop.waypoint_index < last_index:
                    raise RouteValidationError(
                        f"stop {stop.stop_id} waypoint_index goes backwards along the route"
                    )
                last_index = stop.waypoint_index

    def current_index(self) -> int:
        return current_index(self.stops)

    def next_stop(self) -> Optional[Stop]:
        return next_stop(self.stops)

    def get_coordinates(self, index: int) -> Coordinate:
        """Get the coordinate of the stop at index."""
        return self.stops[index].coordinate

    def segment_path(self, index: int) -> List[Coordinate]:
        """
        Get the polyline from stop index to the following stop.

        The slice comes from the explicit stop-to-waypoint mapping; routes
        without waypoints yield the two stop coordinates.

        Args:
            index: Index of the segment's starting stop

        Returns:
            Ordered coordinates from the stop to the next stop

        Raises:
            IndexError: If index has no following stop
        """
        if not (0 <= index < len(self.stops) - 1):
            raise IndexError(f"no segment starts at stop index {index}")

        start, end = self.stops[index], self.stops[index + 1]
        if not self.waypoints:
            return [start.coordinate, end.coordinate]
        return list(self.waypoints[start.waypoint_index:end.waypoint_index + 1])

    def _ensure_distances_calculated(self) -> None:
        """Calculate and cache segment distances if not already done."""
        if self._segment_distances is None:
            self._segment_distances = [
                distance_km(self.stops[i].coordinate, self.stops[i + 1].coordinate)
                for i in range(len(self.stops) - 1)
            ]

    def segment_distance(self, index: int) -> float:
        """Straight-line distance in kilometers from stop index to the next stop."""
        self._ensure_distances_calculated()
        return self._segment_distances[index]

    def get_total_distance(self) -> float:
        """
        Get the total distance of the route in kilometers.

        Returns:
            Sum of the straight-line distances between consecutive stops
        """
        self._ensure_distances_calculated()
        return sum(self._segment_distances)


# Simulation Models

@dataclass
class SimulationSettings:
    """
    Tunable parameters of the movement engine and its timers.

    Attributes:
        start_stop_index: Stop the bus starts at when statuses are preset
        average_speed_kmh: Speed used by the travel-time model
        minimum_segment_ms: Floor for a segment's duration
        variation: Maximum relative deviation of a segment's duration
        eta_refresh_interval_s: Seconds between ETA refreshes
        departure_check_interval_s: Seconds between departure decisions
        departure_probability: Chance a departure decision starts a segment
        initial_departure_delay_s: Delay before the first forced departure
        eta_min_minutes: Lower bound of a speculative ETA
        eta_max_minutes: Upper bound of a speculative ETA
        frame_interval_s: Seconds between ticks while moving
        seed: Optional seed for the random source
    """
    start_stop_index: int = 3
    average_speed_kmh: float = 25.0
    minimum_segment_ms: float = 3000.0
    variation: float = 0.2
    eta_refresh_interval_s: float = 5.0
    departure_check_interval_s: float = 30.0
    departure_probability: float = 0.3
    initial_departure_delay_s: float = 3.0
    eta_min_minutes: int = 2
    eta_max_minutes: int = 9
    frame_interval_s: float = 1 / 30
    seed: Optional[int] = None

    def validate(self) -> None:
        """
        Validate simulation settings.

        Raises:
            ValueError: If validation fails
        """
        if self.start_stop_index < 0:
            raise ValueError(f"start_stop_index must be non-negative, got {self.start_stop_index}")
        if self.average_speed_kmh <= 0:
            raise ValueError(f"average_speed_kmh must be positive, got {self.average_speed_kmh}")
        if self.minimum_segment_ms <= 0:
            raise ValueError(f"minimum_segment_ms must be positive, got {self.minimum_segment_ms}")
        if not (0 <= self.variation < 1):
            raise ValueError(f"variation must be in [0, 1), got {self.variation}")
        for name in ("eta_refresh_interval_s", "departure_check_interval_s", "frame_interval_s"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")
        if self.initial_departure_delay_s < 0:
            raise ValueError(
                f"initial_departure_delay_s must be non-negative, got {self.initial_departure_delay_s}"
            )
        if not (0 <= self.departure_probability <= 1):
            raise ValueError(f"departure_probability must be in [0, 1], got {self.departure_probability}")
        if self.eta_min_minutes < 0:
            raise ValueError(f"eta_min_minutes must be non-negative, got {self.eta_min_minutes}")
        if self.eta_min_minutes > self.eta_max_minutes:
            raise ValueError(
                f"eta_min_minutes ({self.eta_min_minutes}) exceeds eta_max_minutes ({self.eta_max_minutes})"
            )


@dataclass(frozen=True)
class TrackingSnapshot:
    """
    Read-only view of the engine state handed to presentation views.

    Attributes:
        stops: Copies of the stops in route order
        current_stop: Stop the bus is at or leaving, None once finished
        next_stop: Stop the bus is heading to, None at the end
        position: Live coordinate of the bus
        is_moving: Whether a segment is in progress
        progress: Linear fraction of the segment completed
        eased_progress: Progress after the easing curve
        speed_kmh: Display speed derived from progress
        next_stop_arrival_time: HH:MM estimate for the next stop
        current_stop_index: Index the engine is at
        is_finished: Whether the last stop has been reached
    """
    stops: Tuple[Stop, ...]
    current_stop: Optional[Stop]
    next_stop: Optional[Stop]
    position: Coordinate
    is_moving: bool
    progress: float
    eased_progress: float
    speed_kmh: float
    next_stop_arrival_time: Optional[str]
    current_stop_index: int
    is_finished: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stops": [stop.to_dict() for stop in self.stops],
            "currentStop": self.current_stop.to_dict() if self.current_stop else None,
            "nextStop": self.next_stop.to_dict() if self.next_stop else None,
            "position": self.position.to_dict(),
            "isMoving": self.is_moving,
            "progress": self.progress,
            "easedProgress": self.eased_progress,
            "speedKmh": self.speed_kmh,
            "nextStopArrivalTime": self.next_stop_arrival_time,
            "currentStopIndex": self.current_stop_index,
            "isFinished": self.is_finished,
        }
