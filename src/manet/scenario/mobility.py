from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence, Tuple, Union

from manet.core.errors import ConfigError
from manet.core.types import NodeRef, Rectangle, Vector

if TYPE_CHECKING:
    from manet.backends.base import Engine

WALK_MODES = ("time", "distance")


@dataclass(frozen=True)
class GridLayout:
    """Row-first (or column-first) grid of initial positions."""

    min_x: float = 0.0
    min_y: float = 0.0
    delta_x: float = 5.0
    delta_y: float = 10.0
    grid_width: int = 3
    row_first: bool = True

    def __post_init__(self) -> None:
        if self.grid_width < 1:
            raise ConfigError("layout.grid_width must be >= 1")
        if not all(math.isfinite(v) for v in (self.min_x, self.min_y, self.delta_x, self.delta_y)):
            raise ConfigError("layout coordinates must be finite")

    def positions(self, count: int) -> List[Vector]:
        out: List[Vector] = []
        for i in range(count):
            if self.row_first:
                col, row = i % self.grid_width, i // self.grid_width
            else:
                row, col = i % self.grid_width, i // self.grid_width
            out.append(Vector(self.min_x + col * self.delta_x, self.min_y + row * self.delta_y, 0.0))
        return out


def _check_range(name: str, rng: Tuple[float, float], allow_zero_max: bool = False) -> None:
    lo, hi = rng
    if not (math.isfinite(lo) and math.isfinite(hi)):
        raise ConfigError(f"{name} must be finite, got [{lo}, {hi}]")
    if lo < 0:
        raise ConfigError(f"{name} minimum must be >= 0, got {lo}")
    if lo > hi:
        raise ConfigError(f"{name} range is degenerate: min {lo} > max {hi}")
    if hi <= 0 and not allow_zero_max:
        raise ConfigError(f"{name} maximum must be > 0")


def _check_bounds(bounds: Rectangle) -> None:
    if not all(math.isfinite(v) for v in (bounds.x_min, bounds.x_max, bounds.y_min, bounds.y_max)):
        raise ConfigError("bounds must be finite")
    if bounds.area <= 0:
        raise ConfigError(
            f"bounds must have positive area: x=[{bounds.x_min}, {bounds.x_max}] "
            f"y=[{bounds.y_min}, {bounds.y_max}]"
        )


@dataclass(frozen=True)
class StaticPolicy:
    positions: Tuple[Vector, ...]
    kind = "static"

    def initial_positions(self, count: int) -> List[Vector]:
        if len(self.positions) != count:
            raise ConfigError(
                f"static policy has {len(self.positions)} positions for {count} nodes"
            )
        return list(self.positions)


@dataclass(frozen=True)
class RandomWaypointPolicy:
    speed: Tuple[float, float] = (1.0, 5.0)
    pause: float = 2.0
    bounds: Rectangle = Rectangle(0.0, 200.0, 0.0, 200.0)
    layout: GridLayout = GridLayout()
    kind = "random_waypoint"

    def __post_init__(self) -> None:
        _check_range("random_waypoint.speed", self.speed)
        if not math.isfinite(self.pause) or self.pause < 0:
            raise ConfigError("random_waypoint.pause must be a finite number >= 0")
        _check_bounds(self.bounds)

    def initial_positions(self, count: int) -> List[Vector]:
        return self.layout.positions(count)


@dataclass(frozen=True)
class RandomWalk2dPolicy:
    mode: str = "time"
    period: float = 2.0
    speed: Tuple[float, float] = (1.0, 1.0)
    bounds: Rectangle = Rectangle(50.0, 150.0, 50.0, 150.0)
    layout: GridLayout = GridLayout(min_x=100.0, min_y=100.0)
    kind = "random_walk_2d"

    def __post_init__(self) -> None:
        if self.mode not in WALK_MODES:
            raise ConfigError(f"random_walk_2d.mode must be one of {WALK_MODES}, got {self.mode!r}")
        if not math.isfinite(self.period) or self.period <= 0:
            raise ConfigError("random_walk_2d.period must be a finite number > 0")
        _check_range("random_walk_2d.speed", self.speed)
        _check_bounds(self.bounds)

    def initial_positions(self, count: int) -> List[Vector]:
        positions = self.layout.positions(count)
        for i, pos in enumerate(positions):
            if not self.bounds.contains(pos):
                raise ConfigError(
                    f"random_walk_2d initial position {i} ({pos.x}, {pos.y}) lies outside bounds"
                )
        return positions


MobilityPolicy = Union[StaticPolicy, RandomWaypointPolicy, RandomWalk2dPolicy]


def _pair(raw: Any, name: str) -> Tuple[float, float]:
    if isinstance(raw, (int, float)):
        return (float(raw), float(raw))
    if isinstance(raw, dict):
        return (float(raw["min"]), float(raw["max"]))
    if isinstance(raw, (list, tuple)) and len(raw) == 2:
        return (float(raw[0]), float(raw[1]))
    raise ConfigError(f"{name} must be a number, [min, max] or {{min, max}}")


def _rect(raw: Any, name: str) -> Rectangle:
    if isinstance(raw, dict):
        return Rectangle(
            float(raw["x_min"]), float(raw["x_max"]), float(raw["y_min"]), float(raw["y_max"])
        )
    if isinstance(raw, (list, tuple)) and len(raw) == 4:
        return Rectangle(*(float(v) for v in raw))
    raise ConfigError(f"{name} must be [x_min, x_max, y_min, y_max] or a mapping")


def _layout(raw: Optional[Dict[str, Any]], default: GridLayout) -> GridLayout:
    if raw is None:
        return default
    if not isinstance(raw, dict):
        raise ConfigError("mobility.layout must be a table/object")
    return GridLayout(
        min_x=float(raw.get("min_x", default.min_x)),
        min_y=float(raw.get("min_y", default.min_y)),
        delta_x=float(raw.get("delta_x", default.delta_x)),
        delta_y=float(raw.get("delta_y", default.delta_y)),
        grid_width=int(raw.get("grid_width", default.grid_width)),
        row_first=str(raw.get("layout_type", "row_first")).lower() in {"row_first", "rowfirst"},
    )


def _vectors(raw: Sequence[Any]) -> Tuple[Vector, ...]:
    out = []
    for item in raw:
        if not isinstance(item, (list, tuple)) or len(item) not in (2, 3):
            raise ConfigError(f"position must be [x, y] or [x, y, z], got {item!r}")
        out.append(Vector(*(float(v) for v in item)))
    return tuple(out)


def policy_from_config(cfg: Dict[str, Any], size: int) -> MobilityPolicy:
    if not isinstance(cfg, dict):
        raise ConfigError("mobility must be a table/object")
    tp = str(cfg.get("type", "static")).lower()
    try:
        if tp == "static":
            if "positions" in cfg:
                return StaticPolicy(positions=_vectors(cfg["positions"]))
            layout = _layout(cfg.get("layout"), GridLayout())
            return StaticPolicy(positions=tuple(layout.positions(size)))
        if tp == "random_waypoint":
            default = RandomWaypointPolicy()
            return RandomWaypointPolicy(
                speed=_pair(cfg.get("speed", list(default.speed)), "speed"),
                pause=float(cfg.get("pause", default.pause)),
                bounds=_rect(cfg["bounds"], "bounds") if "bounds" in cfg else default.bounds,
                layout=_layout(cfg.get("layout"), default.layout),
            )
        if tp == "random_walk_2d":
            default_walk = RandomWalk2dPolicy()
            return RandomWalk2dPolicy(
                mode=str(cfg.get("mode", default_walk.mode)).lower(),
                period=float(cfg.get("period", default_walk.period)),
                speed=_pair(cfg.get("speed", list(default_walk.speed)), "speed"),
                bounds=_rect(cfg["bounds"], "bounds") if "bounds" in cfg else default_walk.bounds,
                layout=_layout(cfg.get("layout"), default_walk.layout),
            )
    except (KeyError, TypeError) as exc:
        raise ConfigError(f"invalid {tp} mobility config: {exc}") from exc
    raise ConfigError(f"Unsupported mobility type: {tp}")


class MobilityAssigner:
    """Hands each node's initial placement and motion rule to the mobility engine."""

    def __init__(self, engine: "Engine", logger: logging.Logger | None = None) -> None:
        self._engine = engine
        self._log = logger or logging.getLogger("manet.mobility")

    def assign(self, nodes: Sequence[NodeRef], policy: MobilityPolicy) -> List[Vector]:
        positions = policy.initial_positions(len(nodes))
        for ref, pos in zip(nodes, positions):
            self._engine.mobility.set_policy(ref.node_id, policy, pos)
        self._log.debug(
            "mobility %s assigned to %s",
            policy.kind,
            [ref.endpoint for ref in nodes],
        )
        return positions
