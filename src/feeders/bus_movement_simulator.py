"""
Bus movement simulation for the Delhi Bus Tracker.

This module implements the movement engine: a state machine that owns the
bus's progress along the route, decides when it leaves a stop, interpolates
its position tick by tick and updates stop statuses and ETAs.

The engine is stationary at a stop or moving along one segment. Timers in the
hosting service call evaluate_departure(), refresh_etas() and tick(); each of
these applies its changes as a single update, so a snapshot never shows a
half-finished transition.
"""

import logging
import random
import time
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Optional

from src.common.geo import distance_km, ease_in_out_cubic, lerp_coordinates
from src.common.models import (
    STATUS_COMPLETED,
    STATUS_CURRENT,
    STATUS_UPCOMING,
    Coordinate,
    Route,
    SimulationSettings,
    Stop,
    TrackingSnapshot,
    current_index,
    next_stop,
    preset_statuses,
    validate_statuses,
)
from src.feeders.eta_estimator import (
    display_speed_kmh,
    estimate_arrival_time,
    format_clock_time,
    generate_random_eta,
)


logger = logging.getLogger(__name__)

SnapshotListener = Callable[[TrackingSnapshot], None]


class SimulationInvariantError(AssertionError):
    """Raised when the engine reaches a state its transitions cannot produce."""
    pass


def _monotonic_ms() -> float:
    return time.monotonic() * 1000


def draw_variation_factor(rng: random.Random, variation: float) -> float:
    """
    Draw the per-segment timing factor.

    Args:
        rng: Random source
        variation: Maximum relative deviation from 1.0

    Returns:
        Factor in [1 - variation, 1 + variation]
    """
    return rng.uniform(1 - variation, 1 + variation)


def calculate_segment_duration(
    distance: float,
    average_speed_kmh: float,
    minimum_ms: float,
    variation_factor: float = 1.0
) -> float:
    """
    Calculate how long the bus takes to cover a segment.

    Args:
        distance: Segment length in kilometers
        average_speed_kmh: Average speed in km/h
        minimum_ms: Floor for the duration, so near-coincident stops still animate
        variation_factor: Multiplier applied to the distance-based duration

    Returns:
        Duration in milliseconds

    Raises:
        ValueError: If speed is not positive or distance is negative
    """
    if average_speed_kmh <= 0:
        raise ValueError(f"average_speed_kmh must be positive, got {average_speed_kmh}")
    if distance < 0:
        raise ValueError(f"distance must be non-negative, got {distance}")

    travel_ms = distance / average_speed_kmh * 3600 * 1000 * variation_factor
    return max(minimum_ms, travel_ms)


class MovementEngine:
    """
    State machine moving a single bus along a route.

    All movement state lives here and is only changed by the transition
    methods. Randomness, the monotonic clock (milliseconds) and the wall clock
    are injected so tests can pin every outcome.
    """

    def __init__(
        self,
        route: Route,
        settings: Optional[SimulationSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None,
        wall_clock: Optional[Callable[[], datetime]] = None
    ):
        """
        Initialize the engine at the route's current stop.

        Args:
            route: Route with preset stop statuses
            settings: Simulation parameters (defaults when omitted)
            rng: Random source (seeded from settings.seed when omitted)
            clock: Monotonic clock returning milliseconds
            wall_clock: Returns the current local time for HH:MM values

        Raises:
            RouteValidationError: If the route or its statuses are malformed
            ValueError: If the settings are invalid
        """
        self.settings = settings or SimulationSettings()
        self.settings.validate()

        route.validate()
        validate_statuses(route.stops)

        self._route = route
        self._rng = rng if rng is not None else random.Random(self.settings.seed)
        self._clock = clock or _monotonic_ms
        self._wall_clock = wall_clock or datetime.now
        self._listeners: List[SnapshotListener] = []

        self._stops: List[Stop] = [replace(stop) for stop in route.stops]
        self._disposed = False
        self._paused_at: Optional[float] = None
        self._enter_stop(current_index(self._stops))
        self._stops = self._with_missing_etas(self._stops)

        logger.info(
            f"Movement engine ready on route {route.route_id}: "
            f"{len(self._stops)} stops, starting at index {self._current_stop_index}"
        )

    # Read interface

    @property
    def current_stop_index(self) -> int:
        return self._current_stop_index

    @property
    def is_moving(self) -> bool:
        return self._is_moving

    @property
    def is_paused(self) -> bool:
        return self._paused_at is not None

    @property
    def route(self) -> Route:
        """The route with its stops in their live statuses."""
        return replace(self._route, stops=[replace(stop) for stop in self._stops])

    @property
    def is_finished(self) -> bool:
        """
        Whether the bus has driven onto the last stop.

        Arriving there marks every stop completed. An engine started at, or
        reset to, the last stop keeps that stop current and is not finished,
        although it cannot depart either.
        """
        return self._finished

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    @property
    def position(self) -> Coordinate:
        return self._position

    @property
    def raw_progress(self) -> float:
        return self._raw_progress

    @property
    def eased_progress(self) -> float:
        return self._eased_progress

    @property
    def segment_start_time(self) -> Optional[float]:
        return self._segment_start_time

    @property
    def segment_duration(self) -> Optional[float]:
        return self._segment_duration

    @property
    def can_depart(self) -> bool:
        """Whether a new segment may start now."""
        return (
            not self._disposed
            and not self._is_moving
            and self._paused_at is None
            and not self._finished
            and self._current_stop_index < len(self._stops) - 1
        )

    def snapshot(self) -> TrackingSnapshot:
        """
        Build a read-only view of the current state.

        Returns:
            TrackingSnapshot holding copies of the stops
        """
        stops = tuple(replace(stop) for stop in self._stops)
        index = current_index(stops)
        upcoming = next_stop(stops)

        speed = 0.0
        if self._is_moving:
            speed = display_speed_kmh(self._raw_progress, self.settings.average_speed_kmh)

        arrival_time = None
        if upcoming is not None:
            arrival_time = estimate_arrival_time(self._wall_clock(), upcoming.eta)

        return TrackingSnapshot(
            stops=stops,
            current_stop=stops[index] if index >= 0 else None,
            next_stop=upcoming,
            position=self._position,
            is_moving=self._is_moving,
            progress=self._raw_progress,
            eased_progress=self._eased_progress,
            speed_kmh=speed,
            next_stop_arrival_time=arrival_time,
            current_stop_index=self._current_stop_index,
            is_finished=self._finished,
        )

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """
        Register a callback receiving a snapshot after every state change.

        Returns:
            Function removing the listener again
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Transitions

    def start_segment(self) -> bool:
        """
        Leave the current stop towards the next one.

        Returns:
            True if a segment started, False if the bus cannot depart
        """
        if not self.can_depart:
            logger.debug(f"Segment not started at index {self._current_stop_index}")
            return False

        index = self._current_stop_index
        origin = self._stops[index]
        destination = self._stops[index + 1]

        distance = distance_km(origin.coordinate, destination.coordinate)
        factor = draw_variation_factor(self._rng, self.settings.variation)
        duration = calculate_segment_duration(
            distance,
            self.settings.average_speed_kmh,
            self.settings.minimum_segment_ms,
            factor
        )

        self._segment_start_time = self._clock()
        self._segment_duration = duration
        self._raw_progress = 0.0
        self._eased_progress = 0.0
        self._is_moving = True

        logger.info(
            f"Departing {origin.name} for {destination.name}: "
            f"{distance:.2f} km in {duration / 1000:.1f}s"
        )
        self._emit()
        return True

    def evaluate_departure(self) -> bool:
        """
        Decide whether to leave the current stop.

        Called by the departure timer. Starts a segment with the configured
        probability; never raises.

        Returns:
            True if a segment started
        """
        try:
            if not self.can_depart:
                return False
            if self._rng.random() < self.settings.departure_probability:
                return self.start_segment()
            logger.debug(f"Bus dwelling at {self._stops[self._current_stop_index].name}")
            return False
        except Exception as e:
            logger.error(f"Departure decision failed: {e}", exc_info=True)
            return False

    def tick(self) -> bool:
        """
        Advance the bus along the current segment.

        Arrives at the next stop once the whole segment duration has elapsed.
        Errors are logged and the tick is skipped with the state unchanged.

        Returns:
            True while the bus is still moving and needs another tick

        Raises:
            SimulationInvariantError: If an arrival would pass the last stop
        """
        if self._disposed or not self._is_moving:
            return False
        if self._paused_at is not None:
            return True

        try:
            elapsed = self._clock() - self._segment_start_time
            raw = min(max(elapsed / self._segment_duration, 0.0), 1.0)

            if raw >= 1.0:
                self._arrive()
            else:
                index = self._current_stop_index
                eased = ease_in_out_cubic(raw)
                position = lerp_coordinates(
                    self._stops[index].coordinate,
                    self._stops[index + 1].coordinate,
                    eased
                )
                self._raw_progress, self._eased_progress, self._position = raw, eased, position
        except SimulationInvariantError:
            raise
        except Exception as e:
            logger.error(f"Tick skipped at index {self._current_stop_index}: {e}", exc_info=True)
            return self._is_moving

        self._emit()
        return self._is_moving

    def refresh_etas(self) -> int:
        """
        Redraw the speculative ETA of every upcoming stop.

        Completed and current stops are left untouched. Never raises.

        Returns:
            Number of stops whose ETA was redrawn
        """
        if self._disposed:
            return 0

        try:
            now = self._wall_clock()
            refreshed = 0
            stops = []
            for stop in self._stops:
                if stop.status == STATUS_UPCOMING and stop.eta is not None:
                    eta = generate_random_eta(
                        self._rng,
                        self.settings.eta_min_minutes,
                        self.settings.eta_max_minutes
                    )
                    stop = replace(stop, eta=eta, estimated_arrival_time=estimate_arrival_time(now, eta))
                    refreshed += 1
                stops.append(stop)
        except Exception as e:
            logger.error(f"ETA refresh failed: {e}", exc_info=True)
            return 0

        self._stops = stops
        logger.debug(f"Refreshed ETAs for {refreshed} upcoming stops")
        self._emit()
        return refreshed

    # Control surface

    def pause(self) -> bool:
        """
        Freeze the bus where it is and hold departures.

        Returns:
            True if the engine was running and is now paused
        """
        if self._disposed or self._paused_at is not None:
            return False
        self._paused_at = self._clock()
        logger.info(f"Paused at index {self._current_stop_index}")
        self._emit()
        return True

    def resume(self) -> bool:
        """
        Continue after pause(), shifting the segment by the time spent paused.

        Returns:
            True if the engine was paused
        """
        if self._disposed or self._paused_at is None:
            return False
        paused_for = self._clock() - self._paused_at
        if self._is_moving:
            self._segment_start_time += paused_for
        self._paused_at = None
        logger.info(f"Resumed after {paused_for / 1000:.1f}s")
        self._emit()
        return True

    def reset(self, to_index: int) -> bool:
        """
        Place the bus at a stop, abandoning any segment in progress.

        Stops before to_index become completed, the stop itself current and
        the rest upcoming with fresh ETAs.

        Args:
            to_index: Index of the stop to place the bus at

        Returns:
            True if the engine was reset

        Raises:
            RouteValidationError: If to_index is outside the route
        """
        if self._disposed:
            return False

        stops = self._with_missing_etas(preset_statuses(self._stops, to_index))

        self._stops = stops
        self._enter_stop(to_index)

        logger.info(f"Reset to {stops[to_index].name} (index {to_index})")
        self._emit()
        return True

    def dispose(self) -> None:
        """Stop the engine for good; later calls become no-ops."""
        if self._disposed:
            return
        self._disposed = True
        self._is_moving = False
        self._listeners = []
        logger.info(f"Movement engine on route {self._route.route_id} disposed")

    # Internals

    def _enter_stop(self, index: int) -> None:
        """Set the stationary movement state at a stop index (-1 when finished)."""
        self._finished = index == -1
        self._current_stop_index = len(self._stops) - 1 if self._finished else index
        self._is_moving = False
        self._segment_start_time = None
        self._segment_duration = None
        self._raw_progress = 0.0
        self._eased_progress = 0.0
        self._position = self._stops[self._current_stop_index].coordinate

    def _arrive(self) -> None:
        """Complete the current segment as one update."""
        index = self._current_stop_index
        arrival_index = index + 1
        if arrival_index >= len(self._stops):
            raise SimulationInvariantError(
                f"arrival past the last stop: index {index} of {len(self._stops)} stops"
            )

        arrival_time = format_clock_time(self._wall_clock())
        finished = arrival_index == len(self._stops) - 1

        stops = list(self._stops)
        stops[index] = replace(
            stops[index],
            status=STATUS_COMPLETED,
            eta=None,
            estimated_arrival_time=None,
            arrival_time=arrival_time
        )
        if finished:
            stops[arrival_index] = replace(
                stops[arrival_index],
                status=STATUS_COMPLETED,
                eta=None,
                estimated_arrival_time=None,
                arrival_time=arrival_time
            )
        else:
            stops[arrival_index] = replace(
                stops[arrival_index],
                status=STATUS_CURRENT,
                eta=None,
                estimated_arrival_time=None
            )

        self._stops = stops
        self._current_stop_index = arrival_index
        self._finished = finished
        self._is_moving = False
        self._segment_start_time = None
        self._segment_duration = None
        self._raw_progress = 0.0
        self._eased_progress = 0.0
        self._position = stops[arrival_index].coordinate

        if finished:
            logger.info(f"Arrived at final stop {stops[arrival_index].name} at {arrival_time}")
        else:
            logger.info(f"Arrived at {stops[arrival_index].name} at {arrival_time}")

    def _with_missing_etas(self, stops: List[Stop]) -> List[Stop]:
        """Give upcoming stops without an estimate a fresh ETA."""
        now = self._wall_clock()
        updated = []
        for stop in stops:
            if stop.status == STATUS_UPCOMING and stop.eta is None:
                eta = generate_random_eta(
                    self._rng,
                    self.settings.eta_min_minutes,
                    self.settings.eta_max_minutes
                )
                stop = replace(stop, eta=eta, estimated_arrival_time=estimate_arrival_time(now, eta))
            elif stop.status == STATUS_UPCOMING and stop.estimated_arrival_time is None:
                stop = replace(stop, estimated_arrival_time=estimate_arrival_time(now, stop.eta))
            updated.append(stop)
        return updated

    def _emit(self) -> None:
        """Send a fresh snapshot to every listener."""
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener failed: {e}", exc_info=True)
