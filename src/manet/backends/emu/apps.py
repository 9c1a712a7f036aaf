from __future__ import annotations

import ipaddress
import itertools
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Type

from manet.backends.base import ApplicationHandle, Endpoint, TrafficHelper
from manet.core.errors import EngineError
from manet.core.types import NodeId

if TYPE_CHECKING:
    from manet.backends.emu.engine import EmuEngine, Packet
    from manet.backends.emu.scheduler import ScheduledEvent

EPHEMERAL_PORT_BASE = 49153


class EmuApplication(ApplicationHandle):
    kind = "app"

    def __init__(
        self,
        engine: "EmuEngine",
        app_id: int,
        node: NodeId,
        endpoint: Endpoint,
        params: Dict[str, Any],
    ) -> None:
        self._engine = engine
        self.app_id = app_id
        self.node = node
        self.endpoint = endpoint
        self.params = dict(params)
        self.flow: Optional[str] = params.get("flow")
        self.active = False
        self.started_at: Optional[float] = None
        self.stopped_at: Optional[float] = None
        self.tx_packets = 0
        self.tx_bytes = 0
        self.rx_packets = 0
        self.rx_bytes = 0
        self.tx_times: List[float] = []
        self.rx_times: List[float] = []
        self.rx_by_flow: Dict[str, int] = {}

    def start(self, at: float) -> None:
        self._engine.scheduler.schedule(at, self._start)

    def stop(self, at: float) -> None:
        self._engine.scheduler.schedule(at, self._stop)

    def _start(self) -> None:
        if self.active:
            return
        self.active = True
        self.started_at = self._engine.scheduler.now
        self.on_start()

    def _stop(self) -> None:
        if not self.active:
            return
        self.active = False
        self.stopped_at = self._engine.scheduler.now
        self.on_stop()

    def on_start(self) -> None:
        pass

    def on_stop(self) -> None:
        pass

    def receive(self, packet: "Packet") -> None:
        self.rx_packets += 1
        self.rx_bytes += packet.size
        self.rx_times.append(self._engine.scheduler.now)
        if packet.flow is not None:
            self.rx_by_flow[packet.flow] = self.rx_by_flow.get(packet.flow, 0) + 1

    def _transmit(self, dst: ipaddress.IPv4Address, dst_port: int, size: int, src_port: int) -> None:
        self._engine.send(self.node, src_port, dst, dst_port, size, kind=self.kind, flow=self.flow)
        self.tx_packets += 1
        self.tx_bytes += size
        self.tx_times.append(self._engine.scheduler.now)

    def _bind(self, port: int) -> None:
        bindings = self._engine.nodes.get(self.node).bindings
        if port in bindings:
            raise EngineError(f"port {port} already bound on node {self.node}")
        bindings[port] = self

    def _unbind(self, port: int) -> None:
        bindings = self._engine.nodes.get(self.node).bindings
        if bindings.get(port) is self:
            del bindings[port]

    def stats(self) -> Dict[str, Any]:
        return {
            "app_id": self.app_id,
            "kind": self.kind,
            "node": self.node,
            "flow": self.flow,
            "started_at": self.started_at,
            "stopped_at": self.stopped_at,
            "tx_packets": self.tx_packets,
            "tx_bytes": self.tx_bytes,
            "rx_packets": self.rx_packets,
            "rx_bytes": self.rx_bytes,
            "rx_by_flow": dict(self.rx_by_flow),
            "first_tx": self.tx_times[0] if self.tx_times else None,
            "last_tx": self.tx_times[-1] if self.tx_times else None,
            "first_rx": self.rx_times[0] if self.rx_times else None,
            "last_rx": self.rx_times[-1] if self.rx_times else None,
        }


class OnOffApplication(EmuApplication):
    """Constant-rate sender that is always in the on state while active."""

    kind = "onoff"

    def on_start(self) -> None:
        self._src_port = self._engine.traffic.ephemeral_port(self.node)
        self._next: Optional["ScheduledEvent"] = None
        self._schedule_next()

    def on_stop(self) -> None:
        self._engine.scheduler.cancel(self._next)
        self._next = None

    @property
    def interval(self) -> float:
        return int(self.params["packet_size"]) * 8.0 / float(self.params["data_rate"])

    def _schedule_next(self) -> None:
        self._next = self._engine.scheduler.schedule_in(self.interval, self._send)

    def _send(self) -> None:
        if not self.active:
            return
        dst, port = self.endpoint
        self._transmit(dst, port, int(self.params["packet_size"]), self._src_port)
        self._schedule_next()


class PacketSink(EmuApplication):
    kind = "sink"

    def on_start(self) -> None:
        self._bind(self.endpoint[1])

    def on_stop(self) -> None:
        self._unbind(self.endpoint[1])


class UdpEchoServer(EmuApplication):
    kind = "echo_server"

    def on_start(self) -> None:
        self._bind(self.endpoint[1])

    def on_stop(self) -> None:
        self._unbind(self.endpoint[1])

    def receive(self, packet: "Packet") -> None:
        super().receive(packet)
        self._engine.send(
            self.node,
            self.endpoint[1],
            packet.src,
            packet.src_port,
            packet.size,
            kind="echo_reply",
            flow=packet.flow,
        )
        self.tx_packets += 1
        self.tx_bytes += packet.size
        self.tx_times.append(self._engine.scheduler.now)


class UdpEchoClient(EmuApplication):
    kind = "echo_client"

    def on_start(self) -> None:
        self._src_port = self._engine.traffic.ephemeral_port(self.node)
        self._bind(self._src_port)
        self._next: Optional["ScheduledEvent"] = self._engine.scheduler.schedule_in(0.0, self._send)

    def on_stop(self) -> None:
        self._engine.scheduler.cancel(self._next)
        self._next = None
        self._unbind(self._src_port)

    def _send(self) -> None:
        if not self.active or self.tx_packets >= int(self.params["max_packets"]):
            return
        dst, port = self.endpoint
        self._transmit(dst, port, int(self.params["packet_size"]), self._src_port)
        if self.tx_packets < int(self.params["max_packets"]):
            self._next = self._engine.scheduler.schedule_in(float(self.params["interval"]), self._send)


_APPS: Dict[str, Type[EmuApplication]] = {
    "onoff": OnOffApplication,
    "sink": PacketSink,
    "echo_server": UdpEchoServer,
    "echo_client": UdpEchoClient,
}


class EmuTraffic(TrafficHelper):
    def __init__(self, engine: "EmuEngine") -> None:
        self._engine = engine
        self._ids = itertools.count()
        self._ports: Dict[NodeId, itertools.count] = {}
        self.apps: List[EmuApplication] = []

    def install(self, kind: str, endpoint: Endpoint, params: Dict[str, Any], node: NodeId) -> EmuApplication:
        if kind not in _APPS:
            raise EngineError(f"unknown application kind: {kind}. Available: {sorted(_APPS)}")
        if self._engine.nodes.get(node).routing is None:
            raise EngineError(f"node {node} has no network stack installed")
        app = _APPS[kind](self._engine, next(self._ids), node, endpoint, params)
        self.apps.append(app)
        return app

    def ephemeral_port(self, node: NodeId) -> int:
        counter = self._ports.setdefault(node, itertools.count(EPHEMERAL_PORT_BASE))
        return next(counter)
