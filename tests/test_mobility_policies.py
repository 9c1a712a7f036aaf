from __future__ import annotations

import math

import pytest

from manet.backends.emu.mobility import EmuMobility
from manet.backends.emu.scheduler import EventScheduler
from manet.core.errors import ConfigError
from manet.core.types import Rectangle
from manet.scenario.mobility import (
    GridLayout,
    RandomWalk2dPolicy,
    RandomWaypointPolicy,
    StaticPolicy,
    policy_from_config,
)


def test_grid_layout_fills_rows_first() -> None:
    layout = GridLayout(min_x=0.0, min_y=0.0, delta_x=5.0, delta_y=10.0, grid_width=3)
    pts = [p.as_tuple() for p in layout.positions(4)]
    assert pts == [(0.0, 0.0, 0.0), (5.0, 0.0, 0.0), (10.0, 0.0, 0.0), (0.0, 10.0, 0.0)]


def test_grid_layout_column_first() -> None:
    layout = GridLayout(grid_width=2, row_first=False)
    pts = [(p.x, p.y) for p in layout.positions(3)]
    assert pts == [(0.0, 0.0), (0.0, 10.0), (5.0, 0.0)]


def test_random_waypoint_rejects_degenerate_speed_range() -> None:
    with pytest.raises(ConfigError, match="degenerate"):
        RandomWaypointPolicy(speed=(5.0, 1.0))


def test_random_walk_rejects_zero_area_bounds() -> None:
    with pytest.raises(ConfigError, match="positive area"):
        RandomWalk2dPolicy(bounds=Rectangle(0.0, 0.0, 0.0, 100.0))


def test_random_walk_rejects_unknown_mode() -> None:
    with pytest.raises(ConfigError, match="mode"):
        RandomWalk2dPolicy(mode="speed")


def test_random_walk_initial_positions_must_lie_inside_bounds() -> None:
    policy = RandomWalk2dPolicy(bounds=Rectangle(-50.0, 50.0, -50.0, 50.0))
    with pytest.raises(ConfigError, match="outside bounds"):
        policy.initial_positions(3)


def test_policy_from_config_speed_forms() -> None:
    walk = policy_from_config({"type": "random_walk_2d", "speed": 1.0}, 3)
    assert walk.speed == (1.0, 1.0)
    wp = policy_from_config({"type": "random_waypoint", "speed": {"min": 2, "max": 4}}, 3)
    assert wp.speed == (2.0, 4.0)
    wp = policy_from_config({"type": "random_waypoint", "speed": [1, 5], "bounds": [0, 10, 0, 10]}, 3)
    assert wp.speed == (1.0, 5.0)
    assert wp.bounds == Rectangle(0.0, 10.0, 0.0, 10.0)


def test_policy_from_config_static_uses_layout_or_positions() -> None:
    from_layout = policy_from_config({"type": "static", "layout": {"min_x": 1.0, "grid_width": 2}}, 3)
    assert isinstance(from_layout, StaticPolicy)
    assert [(p.x, p.y) for p in from_layout.positions] == [(1.0, 0.0), (6.0, 0.0), (1.0, 10.0)]

    explicit = policy_from_config({"type": "static", "positions": [[0, 0], [3, 4, 5]]}, 2)
    assert explicit.positions[1].as_tuple() == (3.0, 4.0, 5.0)


def test_policy_from_config_rejects_unknown_type() -> None:
    with pytest.raises(ConfigError, match="Unsupported mobility type"):
        policy_from_config({"type": "gauss_markov"}, 3)


def _walk_positions(seed: int, until: float = 60.0):
    scheduler = EventScheduler()
    mobility = EmuMobility(scheduler, seed=seed)
    policy = RandomWalk2dPolicy()
    for node, pos in enumerate(policy.initial_positions(3)):
        mobility.set_policy(node, policy, pos)
    scheduler.run(until)
    return policy, [mobility.position(n) for n in range(3)]


def test_random_walk_stays_inside_bounds() -> None:
    policy, positions = _walk_positions(seed=4, until=300.0)
    b = policy.bounds
    for pos in positions:
        assert b.x_min - 1e-6 <= pos.x <= b.x_max + 1e-6
        assert b.y_min - 1e-6 <= pos.y <= b.y_max + 1e-6


def test_mobility_is_reproducible_for_a_seed() -> None:
    _, first = _walk_positions(seed=9)
    _, second = _walk_positions(seed=9)
    _, other = _walk_positions(seed=10)
    assert first == second
    assert first != other


def test_non_finite_mobility_parameters_are_rejected() -> None:
    with pytest.raises(ConfigError, match="pause"):
        policy_from_config({"type": "random_waypoint", "pause": math.nan}, 3)
    with pytest.raises(ConfigError, match="finite"):
        policy_from_config({"type": "random_walk_2d", "speed": [1.0, math.inf]}, 3)
    with pytest.raises(ConfigError, match="period"):
        RandomWalk2dPolicy(period=math.inf)
