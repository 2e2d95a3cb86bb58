"""
Example demonstrating the movement engine.

This example shows how to use the movement engine to:
- Place a bus at a stop on a route
- Drive it along segments with a simulated clock
- Watch stop statuses, ETAs and the display speed change
"""

import random
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.common.models import Route, SimulationSettings, Stop, preset_statuses
from src.feeders.bus_movement_simulator import MovementEngine


class SimulatedClock:
    """Millisecond clock advanced by hand instead of by real time."""

    def __init__(self):
        self.now_ms = 0.0
        self.started = datetime(2024, 1, 1, 9, 30)

    def __call__(self) -> float:
        return self.now_ms

    def wall(self) -> datetime:
        return self.started + timedelta(milliseconds=self.now_ms)


def main():
    """Demonstrate the movement engine."""

    # Create a route with 5 stops
    stops = [
        Stop(stop_id=1, name="ISBT Kashmiri Gate", latitude=28.6674, longitude=77.2275),
        Stop(stop_id=2, name="Raj Ghat", latitude=28.6419, longitude=77.2506),
        Stop(stop_id=3, name="IG Stadium", latitude=28.6304, longitude=77.2422),
        Stop(stop_id=4, name="IP Power Station", latitude=28.6158, longitude=77.2838),
        Stop(stop_id=5, name="IP Depot", latitude=28.6133, longitude=77.2756),
    ]

    route = Route(
        route_id="DTC-534",
        name="Kashmiri Gate - IP Depot",
        stops=preset_statuses(stops, 1)
    )

    clock = SimulatedClock()
    settings = SimulationSettings(start_stop_index=1, average_speed_kmh=25.0)
    engine = MovementEngine(route, settings, rng=random.Random(7), clock=clock, wall_clock=clock.wall)

    print("=" * 70)
    print("Bus Movement Simulation Example")
    print("=" * 70)
    print(f"\nRoute: {route.name} ({route.route_id})")
    print(f"Total distance: {route.get_total_distance():.2f} km")
    print(f"Average speed: {settings.average_speed_kmh} km/h")

    print("\n" + "-" * 70)
    print("Driving the bus (10-second ticks):")
    print("-" * 70)

    while engine.start_segment():
        snapshot = engine.snapshot()
        print(f"\nLeaving {snapshot.current_stop.name} for {snapshot.next_stop.name} "
              f"({engine.segment_duration / 1000:.0f}s)")

        while engine.is_moving:
            clock.now_ms += 10_000
            engine.tick()
            snapshot = engine.snapshot()
            if snapshot.is_moving:
                print(f"  {snapshot.progress * 100:5.1f}%  "
                      f"({snapshot.position.lat:.4f}, {snapshot.position.lng:.4f})  "
                      f"{snapshot.speed_kmh:4.1f} km/h")

        engine.refresh_etas()
        snapshot = engine.snapshot()
        arrived = snapshot.stops[engine.current_stop_index]
        print(f"  ** ARRIVED AT: {arrived.name} **")
        for stop in snapshot.stops:
            eta = f"{stop.eta} min" if stop.eta is not None else "-"
            print(f"     {stop.name:<22} {stop.status:<10} {eta:>7}  {stop.arrival_time or ''}")

    print("\n" + "=" * 70)
    print("Simulation complete!")
    print("=" * 70)


if __name__ == "__main__":
    main()
