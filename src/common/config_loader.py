"""
Configuration loader for the Delhi Bus Tracker.

This module provides functionality to load the route (stops and waypoints) and
the simulation settings from a YAML configuration file.
"""

import yaml
from pathlib import Path
from typing import Any, Dict, List, Tuple
from .models import (
    Coordinate,
    Route,
    RouteValidationError,
    SimulationSettings,
    Stop,
    STATUS_UPCOMING,
    preset_statuses,
    validate_statuses,
)


class ConfigurationError(Exception):
    """Raised when configuration loading or validation fails."""
    pass


SETTINGS_FIELDS = {
    'average_speed_kmh': float,
    'minimum_segment_ms': float,
    'variation': float,
    'eta_refresh_interval_s': float,
    'departure_check_interval_s': float,
    'departure_probability': float,
    'initial_departure_delay_s': float,
    'eta_min_minutes': int,
    'eta_max_minutes': int,
    'frame_interval_s': float,
}


class ConfigLoader:
    """
    Loads and validates the tracker configuration from a YAML file.

    The loader parses route.yaml files containing the route stops, optional
    waypoints and simulation settings, and creates Route and
    SimulationSettings objects.
    """

    def __init__(self, config_path: str):
        """
        Initialize the configuration loader.

        Args:
            config_path: Path to the YAML configuration file

        Raises:
            ConfigurationError: If the file doesn't exist
        """
        self.config_path = Path(config_path)
        if not self.config_path.exists():
            raise ConfigurationError(f"Configuration file not found: {config_path}")

        self._raw_config: Dict = {}
        self._route: Route = None
        self._settings: SimulationSettings = None

    def load(self) -> None:
        """
        Load and parse the YAML configuration file.

        Raises:
            ConfigurationError: If the file can't be parsed or is invalid
        """
        try:
            with open(self.config_path, 'r', encoding='utf-8') as f:
                self._raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Failed to parse YAML: {e}")
        except OSError as e:
            raise ConfigurationError(f"Failed to read configuration file: {e}")

        if not self._raw_config:
            raise ConfigurationError("Configuration file is empty")

        if not isinstance(self._raw_config, dict) or 'route' not in self._raw_config:
            raise ConfigurationError("Configuration must contain 'route' key")

        if not isinstance(self._raw_config['route'], dict):
            raise ConfigurationError("'route' must be a mapping")

    def parse_settings(self) -> SimulationSettings:
        """
        Parse simulation settings from the loaded configuration.

        Missing keys keep their defaults; the start stop index is read from
        the route section.

        Returns:
            SimulationSettings object

        Raises:
            ConfigurationError: If a setting is invalid
        """
        if not self._raw_config:
            raise ConfigurationError("Configuration not loaded. Call load() first.")

        simulation = self._raw_config.get('simulation') or {}
        if not isinstance(simulation, dict):
            raise ConfigurationError("'simulation' must be a mapping")

        unknown = set(simulation) - set(SETTINGS_FIELDS) - {'seed'}
        if unknown:
            raise ConfigurationError(f"Unknown simulation settings: {', '.join(sorted(unknown))}")

        values: Dict[str, Any] = {}
        try:
            for key, cast in SETTINGS_FIELDS.items():
                if key in simulation:
                    values[key] = cast(simulation[key])
            if simulation.get('seed') is not None:
                values['seed'] = int(simulation['seed'])
            if 'start_stop_index' in self._raw_config['route']:
                values['start_stop_index'] = int(self._raw_config['route']['start_stop_index'])

            settings = SimulationSettings(**values)
            settings.validate()
        except (ValueError, TypeError) as e:
            raise ConfigurationError(f"Invalid simulation settings: {e}")

        self._settings = settings
        return settings

    def parse_route(self) -> Route:
        """
        Parse the route from the loaded configuration.

        Stops listing an explicit status are taken as-is; otherwise every
        status is preset from the start stop index.

        Returns:
            Route object

        Raises:
            ConfigurationError: If route data is invalid
        """
        if not self._raw_config:
            raise ConfigurationError("Configuration not loaded. Call load() first.")

        route_data = self._raw_config['route']
        for field in ('route_id', 'name', 'stops'):
            if field not in route_data:
                raise ConfigurationError(f"Route missing '{field}' field")

        route_id = str(route_data['route_id'])
        stops = self._parse_stops(route_data['stops'], route_id)
        waypoints = self._parse_waypoints(route_data.get('waypoints') or [], route_id)

        try:
            if not any('status' in stop_data for stop_data in route_data['stops']):
                start_index = int(route_data.get('start_stop_index', SimulationSettings.start_stop_index))
                stops = preset_statuses(stops, start_index)

            route = Route(
                route_id=route_id,
                name=route_data['name'],
                stops=stops,
                waypoints=waypoints
            )
            route.validate()
            validate_statuses(route.stops)
            start_index = route_data.get('start_stop_index')
            if start_index is not None and int(start_index) != route.current_index():
                raise RouteValidationError(
                    f"start_stop_index {start_index} disagrees with the current stop "
                    f"at index {route.current_index()}"
                )
        except (RouteValidationError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Error parsing route {route_id}: {e}")

        self._route = route
        return route

    def _parse_stops(self, stops_data: List[Dict], route_id: str) -> List[Stop]:
        """
        Parse stops from route configuration.

        Args:
            stops_data: List of stop dictionaries
            route_id: ID of the route (for error messages)

        Returns:
            List of Stop objects

        Raises:
            ConfigurationError: If stop data is invalid
        """
        if not isinstance(stops_data, list):
            raise ConfigurationError(f"Route {route_id}: 'stops' must be a list")

        if not stops_data:
            raise ConfigurationError(f"Route {route_id}: must have at least one stop")

        stops = []
        stop_ids_seen = set()

        for stop_data in stops_data:
            required_fields = ['stop_id', 'name', 'latitude', 'longitude']
            for field in required_fields:
                if field not in stop_data:
                    raise ConfigurationError(
                        f"Route {route_id}: Stop missing required field '{field}'"
                    )

            stop_id = stop_data['stop_id']

            if stop_id in stop_ids_seen:
                raise ConfigurationError(f"Route {route_id}: Duplicate stop_id: {stop_id}")
            stop_ids_seen.add(stop_id)

            try:
                stop = Stop(
                    stop_id=int(stop_id),
                    name=stop_data['name'],
                    latitude=float(stop_data['latitude']),
                    longitude=float(stop_data['longitude']),
                    status=stop_data.get('status', STATUS_UPCOMING),
                    eta=int(stop_data['eta']) if stop_data.get('eta') is not None else None,
                    arrival_time=stop_data.get('arrival_time'),
                    estimated_arrival_time=stop_data.get('estimated_arrival_time'),
                    waypoint_index=(
                        int(stop_data['waypoint_index'])
                        if stop_data.get('waypoint_index') is not None else None
                    )
                )

                stop.validate()

                stops.append(stop)

            except (ValueError, TypeError) as e:
                raise ConfigurationError(
                    f"Route {route_id}, Stop {stop_id}: Invalid data - {e}"
                )

        return stops

    def _parse_waypoints(self, waypoints_data: List, route_id: str) -> List[Coordinate]:
        """Parse the [lat, lng] pairs of the route polyline."""
        if not isinstance(waypoints_data, list):
            raise ConfigurationError(f"Route {route_id}: 'waypoints' must be a list")

        waypoints = []
        for i, pair in enumerate(waypoints_data):
            try:
                lat, lng = pair
                coordinate = Coordinate(lat=float(lat), lng=float(lng))
                coordinate.validate()
            except (ValueError, TypeError) as e:
                raise ConfigurationError(f"Route {route_id}, Waypoint {i}: Invalid data - {e}")
            waypoints.append(coordinate)

        return waypoints

    def get_route(self) -> Route:
        """
        Get the parsed route.

        Raises:
            ConfigurationError: If the route hasn't been parsed yet
        """
        if self._route is None:
            raise ConfigurationError("Route not parsed. Call parse_route() first.")
        return self._route

    def get_settings(self) -> SimulationSettings:
        """
        Get the parsed simulation settings.

        Raises:
            ConfigurationError: If the settings haven't been parsed yet
        """
        if self._settings is None:
            raise ConfigurationError("Settings not parsed. Call parse_settings() first.")
        return self._settings


def load_configuration(config_path: str) -> Tuple[Route, SimulationSettings]:
    """
    Convenience function to load and parse configuration in one call.

    Args:
        config_path: Path to the YAML configuration file

    Returns:
        Tuple of (route, settings)

    Raises:
        ConfigurationError: If loading or validation fails
    """
    loader = ConfigLoader(config_path)
    loader.load()
    settings = loader.parse_settings()
    route = loader.parse_route()

    return route, settings
