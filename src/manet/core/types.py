from __future__ import annotations

import ipaddress
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

NodeId = int
DeviceId = int
AppId = int


@dataclass(frozen=True)
class Vector:
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def distance_to(self, other: "Vector") -> float:
        return ((self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2) ** 0.5

    def as_tuple(self) -> Tuple[float, float, float]:
        return (self.x, self.y, self.z)


@dataclass(frozen=True)
class Rectangle:
    """Axis-aligned area in the x/y plane."""

    x_min: float
    x_max: float
    y_min: float
    y_max: float

    @property
    def area(self) -> float:
        return max(0.0, self.x_max - self.x_min) * max(0.0, self.y_max - self.y_min)

    def contains(self, pos: Vector) -> bool:
        return self.x_min <= pos.x <= self.x_max and self.y_min <= pos.y <= self.y_max


@dataclass(frozen=True)
class NodeRef:
    cluster: str
    index: int
    node_id: NodeId

    @property
    def endpoint(self) -> str:
        return f"{self.cluster}:{self.index}"


@dataclass(frozen=True)
class DeviceSet:
    cluster: str
    devices: Tuple[DeviceId, ...]
    channel: int

    def __len__(self) -> int:
        return len(self.devices)


@dataclass(frozen=True)
class InterfaceSet:
    cluster: str
    network: ipaddress.IPv4Network
    addresses: Tuple[ipaddress.IPv4Address, ...]

    def get_address(self, index: int) -> ipaddress.IPv4Address:
        return self.addresses[index]


class RunState(str, Enum):
    CONFIGURING = "configuring"
    VALIDATED = "validated"
    BUILT = "built"
    RUNNING = "running"
    COMPLETED = "completed"
    ABORTED = "aborted"


@dataclass
class TraceArtifacts:
    captures: Dict[str, str] = field(default_factory=dict)
    event_log: Optional[Path] = None
    animation: Optional[Path] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "captures": dict(self.captures),
            "event_log": str(self.event_log) if self.event_log else None,
            "animation": str(self.animation) if self.animation else None,
        }


@dataclass
class RunReport:
    state: RunState
    run_dir: Optional[Path]
    artifacts: TraceArtifacts
    apps: List[Dict[str, Any]] = field(default_factory=list)
    course_changes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "run_dir": str(self.run_dir) if self.run_dir else None,
            "artifacts": self.artifacts.to_dict(),
            "apps": list(self.apps),
            "course_changes": self.course_changes,
        }
