"""
Unit tests for data models.

Tests validation logic, the pure route queries and the snapshot read contract.
"""

import pytest
from src.common.models import (
    Coordinate,
    Route,
    RouteValidationError,
    SimulationSettings,
    Stop,
    STATUS_COMPLETED,
    STATUS_CURRENT,
    STATUS_UPCOMING,
    TrackingSnapshot,
    current_index,
    next_stop,
    preset_statuses,
    validate_statuses,
)


def make_stops(count=5):
    """Stops A, B, C, ... spaced along a line through south Delhi."""
    return [
        Stop(
            stop_id=i + 1,
            name=chr(ord("A") + i),
            latitude=28.60 - 0.01 * i,
            longitude=77.20 + 0.01 * i,
        )
        for i in range(count)
    ]


class TestCoordinate:
    """Tests for Coordinate model."""

    def test_valid_coordinate(self):
        Coordinate(lat=28.6139, lng=77.2090).validate()  # Should not raise

    def test_invalid_latitude_raises_error(self):
        with pytest.raises(ValueError, match="latitude must be between -90 and 90"):
            Coordinate(lat=91.0, lng=0.0).validate()

    def test_invalid_longitude_raises_error(self):
        with pytest.raises(ValueError, match="longitude must be between -180 and 180"):
            Coordinate(lat=0.0, lng=-181.0).validate()

    def test_to_dict(self):
        assert Coordinate(lat=1.5, lng=2.5).to_dict() == {"lat": 1.5, "lng": 2.5}


class TestStop:
    """Tests for Stop model."""

    def test_valid_stop(self):
        stop = Stop(stop_id=1, name="ISBT Kashmiri Gate", latitude=28.6674, longitude=77.2275)
        stop.validate()  # Should not raise
        assert stop.status == STATUS_UPCOMING

    def test_empty_name_raises_error(self):
        stop = Stop(stop_id=1, name="", latitude=28.6674, longitude=77.2275)
        with pytest.raises(ValueError, match="name cannot be empty"):
            stop.validate()

    def test_unknown_status_raises_error(self):
        stop = Stop(stop_id=1, name="A", latitude=28.6, longitude=77.2, status="departed")
        with pytest.raises(ValueError, match="status must be one of"):
            stop.validate()

    def test_eta_on_completed_stop_raises_error(self):
        stop = Stop(stop_id=1, name="A", latitude=28.6, longitude=77.2,
                    status=STATUS_COMPLETED, eta=3)
        with pytest.raises(ValueError, match="eta is only allowed on upcoming stops"):
            stop.validate()

    def test_negative_eta_raises_error(self):
        stop = Stop(stop_id=1, name="A", latitude=28.6, longitude=77.2, eta=-1)
        with pytest.raises(ValueError, match="eta must be non-negative"):
            stop.validate()

    def test_to_dict_omits_unset_optionals(self):
        stop = Stop(stop_id=4, name="IP Power Station", latitude=28.6158,
                    longitude=77.2838, status=STATUS_CURRENT)
        assert stop.to_dict() == {
            "id": 4,
            "name": "IP Power Station",
            "lat": 28.6158,
            "lng": 77.2838,
            "status": "current",
        }

    def test_to_dict_includes_estimates(self):
        stop = Stop(stop_id=5, name="IP Depot", latitude=28.6133, longitude=77.2756,
                    eta=4, estimated_arrival_time="09:42")
        data = stop.to_dict()
        assert data["eta"] == 4
        assert data["estimatedArrivalTime"] == "09:42"
        assert "arrivalTime" not in data


class TestRouteQueries:
    """Tests for current_index and next_stop."""

    def test_current_index_finds_current_stop(self):
        stops = preset_statuses(make_stops(), 2)
        assert current_index(stops) == 2

    def test_current_index_when_finished(self):
        stops = [Stop(stop_id=s.stop_id, name=s.name, latitude=s.latitude,
                      longitude=s.longitude, status=STATUS_COMPLETED) for s in make_stops()]
        assert current_index(stops) == -1

    def test_next_stop(self):
        stops = preset_statuses(make_stops(), 2)
        assert next_stop(stops).name == "D"

    def test_next_stop_at_last_stop(self):
        stops = preset_statuses(make_stops(), 4)
        assert next_stop(stops) is None

    def test_next_stop_when_finished(self):
        stops = [Stop(stop_id=1, name="A", latitude=28.6, longitude=77.2, status=STATUS_COMPLETED)]
        assert next_stop(stops) is None

    def test_queries_do_not_mutate(self):
        stops = preset_statuses(make_stops(), 1)
        before = [(s.status, s.eta) for s in stops]
        current_index(stops)
        next_stop(stops)
        assert [(s.status, s.eta) for s in stops] == before

    def test_route_methods_delegate(self):
        route = Route(route_id="R1", name="Test", stops=preset_statuses(make_stops(), 3))
        assert route.current_index() == 3
        assert route.next_stop().name == "E"


class TestPresetAndValidateStatuses:
    """Tests for status presetting and the status invariant."""

    def test_preset_orders_statuses(self):
        stops = preset_statuses(make_stops(), 2)
        assert [s.status for s in stops] == [
            STATUS_COMPLETED, STATUS_COMPLETED, STATUS_CURRENT, STATUS_UPCOMING, STATUS_UPCOMING
        ]
        validate_statuses(stops)  # Should not raise

    def test_preset_returns_copies(self):
        original = make_stops()
        preset_statuses(original, 2)
        assert all(s.status == STATUS_UPCOMING for s in original)

    def test_preset_keeps_recorded_arrival_times(self):
        original = make_stops()
        original[0].arrival_time = "09:00"
        stops = preset_statuses(original, 2)
        assert stops[0].arrival_time == "09:00"

    def test_preset_out_of_range_raises_error(self):
        with pytest.raises(RouteValidationError, match="start index must be between"):
            preset_statuses(make_stops(), 5)

    def test_validate_empty_raises_error(self):
        with pytest.raises(RouteValidationError, match="stops cannot be empty"):
            validate_statuses([])

    def test_validate_no_current_raises_error(self):
        with pytest.raises(RouteValidationError, match="found none"):
            validate_statuses(make_stops())

    def test_validate_two_current_raises_error(self):
        stops = preset_statuses(make_stops(), 2)
        stops[3].status = STATUS_CURRENT
        with pytest.raises(RouteValidationError, match="found 2"):
            validate_statuses(stops)

    def test_validate_upcoming_before_current_raises_error(self):
        stops = preset_statuses(make_stops(), 2)
        stops[0].status = STATUS_UPCOMING
        with pytest.raises(RouteValidationError, match="precedes the current stop"):
            validate_statuses(stops)

    def test_validate_all_completed_is_terminal(self):
        stops = make_stops()
        for stop in stops:
            stop.status = STATUS_COMPLETED
        validate_statuses(stops)  # Should not raise


class TestRoute:
    """Tests for Route model."""

    def test_valid_route(self):
        Route(route_id="R1", name="Test", stops=make_stops()).validate()  # Should not raise

    def test_empty_route_raises_error(self):
        with pytest.raises(RouteValidationError, match="stops cannot be empty"):
            Route(route_id="R1", name="Test", stops=[]).validate()

    def test_non_increasing_ids_raise_error(self):
        stops = make_stops(3)
        stops[2].stop_id = 2
        with pytest.raises(RouteValidationError, match="strictly increasing"):
            Route(route_id="R1", name="Test", stops=stops).validate()

    def test_invalid_stop_reports_stop_id(self):
        stops = make_stops(3)
        stops[1].name = ""
        with pytest.raises(RouteValidationError, match="stop 2: name cannot be empty"):
            Route(route_id="R1", name="Test", stops=stops).validate()

    def test_total_distance_is_sum_of_segments(self):
        route = Route(route_id="R1", name="Test", stops=make_stops(4))
        total = sum(route.segment_distance(i) for i in range(3))
        assert route.get_total_distance() == pytest.approx(total)
        assert total > 0

    def test_segment_path_without_waypoints(self):
        route = Route(route_id="R1", name="Test", stops=make_stops(3))
        assert route.segment_path(1) == [route.get_coordinates(1), route.get_coordinates(2)]

    def test_segment_path_uses_waypoint_mapping(self):
        stops = make_stops(3)
        for i, stop in enumerate(stops):
            stop.waypoint_index = 2 * i
        waypoints = [Coordinate(lat=28.60 - 0.005 * i, lng=77.20 + 0.005 * i) for i in range(5)]
        route = Route(route_id="R1", name="Test", stops=stops, waypoints=waypoints)
        route.validate()
        assert route.segment_path(0) == waypoints[0:3]
        assert route.segment_path(1) == waypoints[2:5]

    def test_segment_path_past_last_stop_raises_error(self):
        route = Route(route_id="R1", name="Test", stops=make_stops(3))
        with pytest.raises(IndexError):
            route.segment_path(2)

    def test_missing_waypoint_index_raises_error(self):
        route = Route(route_id="R1", name="Test", stops=make_stops(2),
                      waypoints=[Coordinate(lat=28.6, lng=77.2)])
        with pytest.raises(RouteValidationError, match="has no waypoint_index"):
            route.validate()

    def test_waypoint_index_out_of_range_raises_error(self):
        stops = make_stops(2)
        stops[0].waypoint_index = 0
        stops[1].waypoint_index = 3
        route = Route(route_id="R1", name="Test", stops=stops,
                      waypoints=[Coordinate(lat=28.6, lng=77.2), Coordinate(lat=28.59, lng=77.21)])
        with pytest.raises(RouteValidationError, match="is outside 2 waypoints"):
            route.validate()


class TestSimulationSettings:
    """Tests for SimulationSettings model."""

    def test_defaults_are_valid(self):
        SimulationSettings().validate()  # Should not raise

    def test_non_positive_speed_raises_error(self):
        with pytest.raises(ValueError, match="average_speed_kmh must be positive"):
            SimulationSettings(average_speed_kmh=0).validate()

    def test_probability_out_of_range_raises_error(self):
        with pytest.raises(ValueError, match="departure_probability must be in"):
            SimulationSettings(departure_probability=1.5).validate()

    def test_variation_out_of_range_raises_error(self):
        with pytest.raises(ValueError, match="variation must be in"):
            SimulationSettings(variation=1.0).validate()

    def test_inverted_eta_bounds_raise_error(self):
        with pytest.raises(ValueError, match="exceeds eta_max_minutes"):
            SimulationSettings(eta_min_minutes=10, eta_max_minutes=2).validate()

    def test_non_positive_interval_raises_error(self):
        with pytest.raises(ValueError, match="frame_interval_s must be positive"):
            SimulationSettings(frame_interval_s=0).validate()


class TestTrackingSnapshot:
    """Tests for the snapshot read contract."""

    def test_to_dict_contract_keys(self):
        stops = tuple(preset_statuses(make_stops(3), 1))
        snapshot = TrackingSnapshot(
            stops=stops,
            current_stop=stops[1],
            next_stop=stops[2],
            position=stops[1].coordinate,
            is_moving=False,
            progress=0.0,
            eased_progress=0.0,
            speed_kmh=0.0,
            next_stop_arrival_time=None,
            current_stop_index=1,
            is_finished=False,
        )
        data = snapshot.to_dict()
        for key in ("stops", "currentStop", "nextStop", "position", "isMoving", "progress"):
            assert key in data
        assert data["currentStop"]["name"] == "B"
        assert data["position"] == {"lat": stops[1].latitude, "lng": stops[1].longitude}
        assert len(data["stops"]) == 3
