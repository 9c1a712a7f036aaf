from __future__ import annotations

import math
import random
from typing import Callable, Dict, List, Tuple

from manet.backends.base import CourseChangeCallback, MobilityEngine
from manet.backends.emu.scheduler import EventScheduler
from manet.core.errors import EngineError
from manet.core.types import NodeId, Rectangle, Vector
from manet.scenario.mobility import RandomWalk2dPolicy, RandomWaypointPolicy, StaticPolicy

_EPS = 1e-9


class MobilityModel:
    """Piecewise-linear motion: position = origin + velocity * (now - t0)."""

    def __init__(self, node: NodeId, position: Vector, scheduler: EventScheduler) -> None:
        self.node = node
        self._scheduler = scheduler
        self._origin = position
        self._velocity: Tuple[float, float] = (0.0, 0.0)
        self._t0 = scheduler.now
        self._listeners: List[Callable[[Vector], None]] = []

    def add_listener(self, listener: Callable[[Vector], None]) -> None:
        self._listeners.append(listener)

    def position(self, now: float | None = None) -> Vector:
        t = self._scheduler.now if now is None else now
        dt = t - self._t0
        return Vector(
            self._origin.x + self._velocity[0] * dt,
            self._origin.y + self._velocity[1] * dt,
            self._origin.z,
        )

    def start(self) -> None:
        pass

    def _set_motion(self, origin: Vector, velocity: Tuple[float, float]) -> None:
        self._t0 = self._scheduler.now
        self._origin = origin
        self._velocity = velocity
        pos = self.position()
        for listener in list(self._listeners):
            listener(pos)


class ConstantPositionModel(MobilityModel):
    pass


class RandomWaypointModel(MobilityModel):
    def __init__(
        self,
        node: NodeId,
        position: Vector,
        scheduler: EventScheduler,
        policy: RandomWaypointPolicy,
        rng: random.Random,
    ) -> None:
        super().__init__(node, position, scheduler)
        self._policy = policy
        self._rng = rng

    def start(self) -> None:
        self._scheduler.schedule(self._scheduler.now, self._begin_walk)

    def _begin_walk(self) -> None:
        b = self._policy.bounds
        here = self.position()
        target = Vector(self._rng.uniform(b.x_min, b.x_max), self._rng.uniform(b.y_min, b.y_max), here.z)
        lo, hi = self._policy.speed
        speed = self._rng.uniform(lo, hi)
        if speed <= _EPS:
            speed = hi
        travel = here.distance_to(target) / speed
        if travel <= _EPS:
            self._set_motion(here, (0.0, 0.0))
        else:
            self._set_motion(here, ((target.x - here.x) / travel, (target.y - here.y) / travel))
        self._scheduler.schedule_in(travel, self._arrive, target)

    def _arrive(self, target: Vector) -> None:
        self._set_motion(target, (0.0, 0.0))
        self._scheduler.schedule_in(self._policy.pause, self._begin_walk)


class RandomWalk2dModel(MobilityModel):
    """Walks in a random direction for a fixed time or distance, reflecting off the bounds."""

    def __init__(
        self,
        node: NodeId,
        position: Vector,
        scheduler: EventScheduler,
        policy: RandomWalk2dPolicy,
        rng: random.Random,
    ) -> None:
        super().__init__(node, position, scheduler)
        self._policy = policy
        self._rng = rng

    def start(self) -> None:
        self._scheduler.schedule(self._scheduler.now, self._begin_step)

    def _begin_step(self) -> None:
        lo, hi = self._policy.speed
        speed = self._rng.uniform(lo, hi)
        if speed <= _EPS:
            speed = hi
        direction = self._rng.uniform(0.0, 2.0 * math.pi)
        if self._policy.mode == "time":
            duration = self._policy.period
        else:
            duration = self._policy.period / speed
        self._walk(self.position(), speed * math.cos(direction), speed * math.sin(direction), duration)

    def _walk(self, here: Vector, vx: float, vy: float, remaining: float) -> None:
        self._set_motion(here, (vx, vy))
        hit = _time_to_boundary(self._policy.bounds, here, vx, vy)
        if hit < remaining:
            self._scheduler.schedule_in(hit, self._rebound, vx, vy, remaining - hit)
        else:
            self._scheduler.schedule_in(remaining, self._begin_step)

    def _rebound(self, vx: float, vy: float, remaining: float) -> None:
        b = self._policy.bounds
        pos = _clamp(b, self.position())
        if (vx < 0 and pos.x <= b.x_min + _EPS) or (vx > 0 and pos.x >= b.x_max - _EPS):
            vx = -vx
        if (vy < 0 and pos.y <= b.y_min + _EPS) or (vy > 0 and pos.y >= b.y_max - _EPS):
            vy = -vy
        self._walk(pos, vx, vy, remaining)


def _time_to_boundary(b: Rectangle, pos: Vector, vx: float, vy: float) -> float:
    times = [math.inf]
    if vx > _EPS:
        times.append((b.x_max - pos.x) / vx)
    elif vx < -_EPS:
        times.append((b.x_min - pos.x) / vx)
    if vy > _EPS:
        times.append((b.y_max - pos.y) / vy)
    elif vy < -_EPS:
        times.append((b.y_min - pos.y) / vy)
    return max(0.0, min(times))


def _clamp(b: Rectangle, pos: Vector) -> Vector:
    return Vector(min(max(pos.x, b.x_min), b.x_max), min(max(pos.y, b.y_min), b.y_max), pos.z)


class EmuMobility(MobilityEngine):
    def __init__(self, scheduler: EventScheduler, seed: int = 1) -> None:
        self._scheduler = scheduler
        self._seed = int(seed)
        self.models: Dict[NodeId, MobilityModel] = {}

    def set_policy(self, node: NodeId, policy: object, position: Vector) -> None:
        if node in self.models:
            raise EngineError(f"mobility already assigned to node {node}")
        rng = random.Random(self._seed * 1_000_003 + node)
        if isinstance(policy, StaticPolicy):
            model: MobilityModel = ConstantPositionModel(node, position, self._scheduler)
        elif isinstance(policy, RandomWaypointPolicy):
            model = RandomWaypointModel(node, position, self._scheduler, policy, rng)
        elif isinstance(policy, RandomWalk2dPolicy):
            model = RandomWalk2dModel(node, position, self._scheduler, policy, rng)
        else:
            raise EngineError(f"unsupported mobility policy: {type(policy).__name__}")
        self.models[node] = model
        model.start()

    def subscribe(self, node: NodeId, callback: CourseChangeCallback) -> None:
        model = self.models.get(node)
        if model is None:
            raise EngineError(f"node {node} has no mobility model to subscribe to")
        path = f"/NodeList/{node}/MobilityModel/CourseChange"
        model.add_listener(lambda pos: callback(path, pos))

    def position(self, node: NodeId) -> Vector:
        model = self.models.get(node)
        if model is None:
            raise EngineError(f"node {node} has no mobility model")
        return model.position()
