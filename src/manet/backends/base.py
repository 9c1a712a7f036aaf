"""Contracts between the scenario core and a simulation engine.

The core only configures and queries an engine through these interfaces. An
engine owns every node, device, channel and application; the core keeps the
integer handles it is given and nothing else.
"""

from __future__ import annotations

import ipaddress
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Callable, Dict, List, Sequence, Tuple

from manet.core.types import DeviceSet, NodeId, Vector

CourseChangeCallback = Callable[[str, Vector], None]
Endpoint = Tuple[Any, int]


class Scheduler(ABC):
    @property
    @abstractmethod
    def now(self) -> float:
        raise NotImplementedError

    @abstractmethod
    def schedule(self, at: float, fn: Callable[..., None], *args: Any) -> Any:
        raise NotImplementedError

    @abstractmethod
    def stop(self, at: float) -> None:
        raise NotImplementedError

    @abstractmethod
    def run(self, stop_time: float | None = None) -> None:
        """Block until the stop time is reached or the engine halts."""
        raise NotImplementedError

    @abstractmethod
    def destroy(self) -> None:
        raise NotImplementedError


class NodeFactory(ABC):
    @abstractmethod
    def create(self, count: int) -> List[NodeId]:
        raise NotImplementedError


class MobilityEngine(ABC):
    @abstractmethod
    def set_policy(self, node: NodeId, policy: Any, position: Vector) -> None:
        raise NotImplementedError

    @abstractmethod
    def subscribe(self, node: NodeId, callback: CourseChangeCallback) -> None:
        raise NotImplementedError

    @abstractmethod
    def position(self, node: NodeId) -> Vector:
        raise NotImplementedError


class ChannelFactory(ABC):
    @abstractmethod
    def create(self, wifi: Any) -> int:
        raise NotImplementedError


class WirelessStack(ABC):
    @abstractmethod
    def install(self, channel: int, wifi: Any, nodes: Sequence[NodeId], cluster: str) -> DeviceSet:
        raise NotImplementedError


class NetworkStack(ABC):
    @abstractmethod
    def install(self, nodes: Sequence[NodeId], routing: str, params: Dict[str, Any]) -> None:
        raise NotImplementedError


class AddressAllocator(ABC):
    @abstractmethod
    def assign(self, devices: DeviceSet, network: ipaddress.IPv4Network) -> List[ipaddress.IPv4Address]:
        raise NotImplementedError


class ApplicationHandle(ABC):
    app_id: int
    kind: str
    node: NodeId

    @abstractmethod
    def start(self, at: float) -> None:
        raise NotImplementedError

    @abstractmethod
    def stop(self, at: float) -> None:
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> Dict[str, Any]:
        raise NotImplementedError


class TrafficHelper(ABC):
    @abstractmethod
    def install(self, kind: str, endpoint: Endpoint, params: Dict[str, Any], node: NodeId) -> ApplicationHandle:
        raise NotImplementedError


class TraceHelper(ABC):
    @abstractmethod
    def enable_capture(self, prefix: Path, devices: DeviceSet) -> str:
        """Capture every packet seen by ``devices`` into files named after ``prefix``."""
        raise NotImplementedError

    @abstractmethod
    def enable_event_log(self, path: Path) -> Path:
        raise NotImplementedError

    @abstractmethod
    def animation(self, output_path: Path) -> "AnimationExporter":
        raise NotImplementedError


class AnimationExporter(ABC):
    @abstractmethod
    def enable_metadata(self, enabled: bool) -> None:
        raise NotImplementedError


class Engine(ABC):
    """Bundle of collaborators one run is executed against."""

    scheduler: Scheduler
    nodes: NodeFactory
    mobility: MobilityEngine
    channels: ChannelFactory
    wireless: WirelessStack
    network: NetworkStack
    addresses: AddressAllocator
    traffic: TrafficHelper
    trace: TraceHelper

    @property
    @abstractmethod
    def handles_allocated(self) -> int:
        raise NotImplementedError
