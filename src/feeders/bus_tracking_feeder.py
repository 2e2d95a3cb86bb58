#!/usr/bin/env python3
"""
Bus Tracking Service for the Delhi Bus Tracker.

This service hosts the movement engine on an asyncio event loop. Three timers
drive it: a recurring ETA refresh, a recurring departure decision and a
one-shot initial departure. While the bus is moving a tick task updates its
position every frame until it arrives at the next stop.

Environment Variables:
    CONFIG_FILE: Path to route.yaml configuration file (default: data/route.yaml)
    RUN_SECONDS: Stop the service after this many seconds (default: run forever)
    LOG_LEVEL: Logging level (default: INFO)

Usage:
    # Run with default settings
    python -m src.feeders.bus_tracking_feeder

    # Run with custom configuration
    CONFIG_FILE=/config/route.yaml RUN_SECONDS=120 python -m src.feeders.bus_tracking_feeder
"""

import asyncio
import logging
import os
import random
import sys
from typing import Callable, Dict, Optional

from src.common.config_loader import load_configuration, ConfigurationError
from src.common.models import SimulationSettings, TrackingSnapshot
from src.feeders.bus_movement_simulator import MovementEngine


# Configure logging
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler(sys.stdout)]
)
logger = logging.getLogger(__name__)


class BusTrackingService:
    """
    Main service class for the Bus Tracking Service.

    The service owns the engine's timers. Every timer and the tick task are
    cancelled together by stop(), after which the engine is disposed, so no
    tick can run against a disposed engine.
    """

    def __init__(
        self,
        config_file: str,
        run_seconds: Optional[float] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Initialize the Bus Tracking Service.

        Args:
            config_file: Path to route.yaml configuration file
            run_seconds: Stop after this many seconds, None to run until stopped
            rng: Random source handed to the engine
            clock: Monotonic millisecond clock handed to the engine
        """
        self.config_file = config_file
        self.run_seconds = run_seconds
        self._rng = rng
        self._clock = clock

        # State management
        self.engine: Optional[MovementEngine] = None
        self.settings: Optional[SimulationSettings] = None
        self.latest_snapshot: Optional[TrackingSnapshot] = None

        self._timers: Dict[str, asyncio.Task] = {}
        self._tick_task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

        logger.info(f"Initializing Bus Tracking Service: config={config_file}, run_seconds={run_seconds}")

    def load_configuration(self) -> None:
        """
        Load the route and simulation settings and build the engine.

        Raises:
            ConfigurationError: If configuration loading fails
        """
        logger.info(f"Loading configuration from {self.config_file}")

        try:
            route, settings = load_configuration(self.config_file)
            self.attach_engine(MovementEngine(route, settings, rng=self._rng, clock=self._clock))
        except ConfigurationError as e:
            logger.error(f"Failed to load configuration: {e}")
            raise
        except ValueError as e:
            logger.error(f"Invalid route configuration: {e}")
            raise ConfigurationError(f"Configuration loading failed: {e}")

        logger.info(
            f"Configuration loaded successfully: route {route.route_id}, "
            f"{len(route.stops)} stops, {len(route.waypoints)} waypoints"
        )

    def attach_engine(self, engine: MovementEngine) -> None:
        """Use an already constructed engine and its settings."""
        self.engine = engine
        self.settings = engine.settings
        self.latest_snapshot = engine.snapshot()
        engine.subscribe(self._on_snapshot)

    @property
    def is_running(self) -> bool:
        return bool(self._timers)

    async def start(self) -> None:
        """
        Start the ETA, departure and initial-departure timers.

        Loads the configuration first when no engine is attached.
        """
        if self.is_running:
            return
        if self.engine is None:
            self.load_configuration()
        if self.engine.is_disposed:
            logger.warning("Engine already disposed, timers not started")
            return

        self._stop_event = asyncio.Event()
        self._timers = {
            'eta_refresh': asyncio.create_task(self._eta_refresh_loop()),
            'departure_check': asyncio.create_task(self._departure_loop()),
            'initial_departure': asyncio.create_task(self._initial_departure()),
        }

        logger.info(
            f"Timers started: ETA refresh every {self.settings.eta_refresh_interval_s}s, "
            f"departure check every {self.settings.departure_check_interval_s}s "
            f"(p={self.settings.departure_probability}), "
            f"first departure in {self.settings.initial_departure_delay_s}s"
        )

    async def stop(self) -> None:
        """Cancel every timer and the tick task, then dispose the engine."""
        tasks = list(self._timers.values())
        if self._tick_task is not None:
            tasks.append(self._tick_task)

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        self._timers = {}
        self._tick_task = None

        if self.engine is not None:
            self.engine.dispose()
        if self._stop_event is not None:
            self._stop_event.set()

        logger.info("Bus Tracking Service stopped")

    async def run(self) -> None:
        """
        Main service entry point - runs until stopped or run_seconds elapse.

        The timers are always torn down on the way out, including on
        cancellation.
        """
        logger.info("Starting Bus Tracking Service")
        await self.start()
        try:
            if self.run_seconds is not None:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.run_seconds)
            else:
                await self._stop_event.wait()
        except asyncio.TimeoutError:
            logger.info(f"Run time of {self.run_seconds}s elapsed")
        finally:
            await self.stop()

    # Control surface

    def start_segment(self) -> bool:
        """Force the bus to leave its current stop now."""
        started = self.engine.start_segment()
        if started:
            self._ensure_ticking()
        return started

    def pause(self) -> bool:
        return self.engine.pause()

    def resume(self) -> bool:
        return self.engine.resume()

    def reset(self, to_index: int) -> bool:
        """Place the bus at a stop; any tick task ends on its next frame."""
        return self.engine.reset(to_index)

    # Timers

    async def _eta_refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.eta_refresh_interval_s)
            try:
                self.engine.refresh_etas()
            except Exception as e:
                logger.error(f"ETA refresh failed: {e}", exc_info=True)

    async def _departure_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.departure_check_interval_s)
            try:
                if self.engine.evaluate_departure():
                    self._ensure_ticking()
            except Exception as e:
                logger.error(f"Departure check failed: {e}", exc_info=True)

    async def _initial_departure(self) -> None:
        await asyncio.sleep(self.settings.initial_departure_delay_s)
        logger.info("Initial departure trigger fired")
        try:
            self.start_segment()
        except Exception as e:
            logger.error(f"Initial departure failed: {e}", exc_info=True)

    def _ensure_ticking(self) -> None:
        if self._tick_task is None or self._tick_task.done():
            self._tick_task = asyncio.create_task(self._tick_loop())

    async def _tick_loop(self) -> None:
        while self.engine.tick():
            await asyncio.sleep(self.settings.frame_interval_s)

    def _on_snapshot(self, snapshot: TrackingSnapshot) -> None:
        self.latest_snapshot = snapshot
        logger.debug(
            f"Bus at ({snapshot.position.lat:.6f}, {snapshot.position.lng:.6f}), "
            f"progress {snapshot.progress:.0%}, speed {snapshot.speed_kmh:.1f} km/h"
        )


def main():
    """
    Main entry point for the Bus Tracking Service.

    Reads configuration from environment variables and starts the service.
    """
    config_file = os.getenv('CONFIG_FILE', 'data/route.yaml')
    run_seconds = os.getenv('RUN_SECONDS')

    # Validate configuration
    if not os.path.exists(config_file):
        logger.error(f"Configuration file not found: {config_file}")
        sys.exit(1)

    if run_seconds is not None:
        run_seconds = float(run_seconds)
        if run_seconds <= 0:
            logger.error(f"RUN_SECONDS must be positive, got {run_seconds}")
            sys.exit(1)

    service = BusTrackingService(config_file=config_file, run_seconds=run_seconds)

    try:
        service.load_configuration()
    except ConfigurationError as e:
        logger.critical(f"Fatal error during service initialization: {e}")
        sys.exit(1)

    try:
        asyncio.run(service.run())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down gracefully")


if __name__ == '__main__':
    main()
