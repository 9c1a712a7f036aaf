from __future__ import annotations

import ipaddress
import itertools
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from manet.backends.base import (
    AddressAllocator,
    ChannelFactory,
    Engine,
    NetworkStack,
    NodeFactory,
    WirelessStack,
)
from manet.backends.emu.apps import EmuApplication, EmuTraffic
from manet.backends.emu.mobility import EmuMobility
from manet.backends.emu.scheduler import EventScheduler
from manet.backends.emu.trace import EmuTrace
from manet.core.errors import EngineError
from manet.core.logging import JsonlLogger
from manet.core.types import DeviceSet, NodeId


@dataclass
class Channel:
    channel_id: int
    range_m: Optional[float]
    phy_rate: float
    propagation_speed: float
    devices: List[int] = field(default_factory=list)


@dataclass
class Device:
    device_id: int
    node: NodeId
    channel: int
    cluster: str
    mac: str
    address: Optional[ipaddress.IPv4Address] = None
    captures: List[JsonlLogger] = field(default_factory=list)


@dataclass
class Node:
    node_id: NodeId
    devices: List[int] = field(default_factory=list)
    routing: Optional[str] = None
    routing_params: Dict[str, Any] = field(default_factory=dict)
    bindings: Dict[int, EmuApplication] = field(default_factory=dict)


@dataclass(frozen=True)
class Packet:
    uid: int
    flow: Optional[str]
    kind: str
    src: ipaddress.IPv4Address
    src_port: int
    dst: ipaddress.IPv4Address
    dst_port: int
    size: int
    created: float


class EmuNodes(NodeFactory):
    def __init__(self) -> None:
        self.table: Dict[NodeId, Node] = {}

    def create(self, count: int) -> List[NodeId]:
        if count < 1:
            raise EngineError(f"cannot create {count} nodes")
        start = len(self.table)
        ids = list(range(start, start + count))
        for nid in ids:
            self.table[nid] = Node(node_id=nid)
        return ids

    def get(self, node: NodeId) -> Node:
        if node not in self.table:
            raise EngineError(f"unknown node {node}")
        return self.table[node]


class EmuChannels(ChannelFactory):
    def __init__(self) -> None:
        self.table: Dict[int, Channel] = {}

    def create(self, wifi: Any) -> int:
        cid = len(self.table)
        self.table[cid] = Channel(
            channel_id=cid,
            range_m=wifi.range_m,
            phy_rate=wifi.phy_rate,
            propagation_speed=wifi.propagation_speed,
        )
        return cid


class EmuWireless(WirelessStack):
    def __init__(self, engine: "EmuEngine") -> None:
        self._engine = engine
        self.table: Dict[int, Device] = {}

    def install(self, channel: int, wifi: Any, nodes: Sequence[NodeId], cluster: str) -> DeviceSet:
        if channel not in self._engine.channels.table:
            raise EngineError(f"unknown channel {channel}")
        chan = self._engine.channels.table[channel]
        ids = []
        for nid in nodes:
            node = self._engine.nodes.get(nid)
            did = len(self.table)
            self.table[did] = Device(device_id=did, node=nid, channel=channel, cluster=cluster, mac=wifi.mac)
            node.devices.append(did)
            chan.devices.append(did)
            ids.append(did)
        return DeviceSet(cluster=cluster, devices=tuple(ids), channel=channel)


class EmuNetwork(NetworkStack):
    def __init__(self, engine: "EmuEngine") -> None:
        self._engine = engine

    def install(self, nodes: Sequence[NodeId], routing: str, params: Dict[str, Any]) -> None:
        for nid in nodes:
            node = self._engine.nodes.get(nid)
            if node.routing is not None:
                raise EngineError(f"network stack already installed on node {nid}")
            node.routing = routing
            node.routing_params = dict(params)


class EmuAddresses(AddressAllocator):
    def __init__(self, engine: "EmuEngine") -> None:
        self._engine = engine
        self.owners: Dict[ipaddress.IPv4Address, int] = {}

    def assign(self, devices: DeviceSet, network: ipaddress.IPv4Network) -> List[ipaddress.IPv4Address]:
        hosts = network.hosts()
        out: List[ipaddress.IPv4Address] = []
        for did in devices.devices:
            device = self._engine.wireless.table[did]
            if self._engine.nodes.get(device.node).routing is None:
                raise EngineError(f"node {device.node} has no network stack installed")
            try:
                addr = next(hosts)
            except StopIteration as exc:
                raise EngineError(f"address block {network} exhausted") from exc
            owner = self.owners.get(addr)
            if owner is not None and owner != did:
                raise EngineError(f"address {addr} already owned by device {owner}")
            self.owners[addr] = did
            device.address = addr
            out.append(addr)
        return out


class EmuEngine(Engine):
    """Deterministic in-process engine: range-based shared channel, shortest-hop forwarding."""

    def __init__(self, seed: int = 1, logger: logging.Logger | None = None) -> None:
        self._log = logger or logging.getLogger("manet.emu")
        self.seed = int(seed)
        self.scheduler = EventScheduler()
        self.nodes = EmuNodes()
        self.mobility = EmuMobility(self.scheduler, seed=self.seed)
        self.channels = EmuChannels()
        self.wireless = EmuWireless(self)
        self.network = EmuNetwork(self)
        self.addresses = EmuAddresses(self)
        self.traffic = EmuTraffic(self)
        self.trace = EmuTrace(self)
        self.event_log = JsonlLogger(path=None)
        self._uids = itertools.count()
        self.delivered_packets = 0
        self.dropped_packets = 0

    @property
    def handles_allocated(self) -> int:
        return (
            len(self.nodes.table)
            + len(self.channels.table)
            + len(self.wireless.table)
            + len(self.traffic.apps)
        )

    def primary_address(self, node: NodeId) -> ipaddress.IPv4Address:
        for did in self.nodes.get(node).devices:
            addr = self.wireless.table[did].address
            if addr is not None:
                return addr
        raise EngineError(f"node {node} has no address")

    def send(
        self,
        node: NodeId,
        src_port: int,
        dst: ipaddress.IPv4Address,
        dst_port: int,
        size: int,
        kind: str,
        flow: Optional[str] = None,
    ) -> Packet:
        packet = Packet(
            uid=next(self._uids),
            flow=flow,
            kind=kind,
            src=self.primary_address(node),
            src_port=src_port,
            dst=ipaddress.IPv4Address(dst),
            dst_port=dst_port,
            size=int(size),
            created=self.scheduler.now,
        )
        owner = self.addresses.owners.get(packet.dst)
        if owner is None:
            self._drop(packet, node, "no-route")
            return packet
        path = self.route(node, self.wireless.table[owner].node)
        if path is None:
            self._drop(packet, node, "unreachable")
            return packet
        self._hop(packet, path, 0)
        return packet

    def route(self, src: NodeId, dst: NodeId) -> Optional[List[NodeId]]:
        """Fewest-hop path over nodes currently within radio range of each other."""
        if src == dst:
            return [src]
        prev: Dict[NodeId, NodeId] = {src: src}
        queue = deque([src])
        while queue:
            u = queue.popleft()
            for v in self._neighbors(u):
                if v in prev:
                    continue
                prev[v] = u
                if v == dst:
                    path = [dst]
                    while path[-1] != src:
                        path.append(prev[path[-1]])
                    return list(reversed(path))
                queue.append(v)
        return None

    def _neighbors(self, node: NodeId) -> List[NodeId]:
        here = self.mobility.position(node)
        out = set()
        for did in self.nodes.get(node).devices:
            chan = self.channels.table[self.wireless.table[did].channel]
            for other in chan.devices:
                peer = self.wireless.table[other].node
                if peer == node or self.nodes.get(peer).routing is None:
                    continue
                if chan.range_m is None or here.distance_to(self.mobility.position(peer)) <= chan.range_m:
                    out.add(peer)
        return sorted(out)

    def _device_on_path(self, node: NodeId) -> Device:
        return self.wireless.table[self.nodes.get(node).devices[0]]

    def _hop(self, packet: Packet, path: List[NodeId], i: int) -> None:
        now = self.scheduler.now
        sender = self._device_on_path(path[i])
        if i > 0:
            self._record("rx", sender, packet)
        if i == len(path) - 1:
            self._arrive(packet, path[i])
            return
        self._record("tx", sender, packet)
        chan = self.channels.table[sender.channel]
        dist = self.mobility.position(path[i]).distance_to(self.mobility.position(path[i + 1]))
        delay = packet.size * 8.0 / chan.phy_rate + dist / chan.propagation_speed
        self.scheduler.schedule(now + delay, self._hop, packet, path, i + 1)

    def _arrive(self, packet: Packet, node: NodeId) -> None:
        app = self.nodes.get(node).bindings.get(packet.dst_port)
        if app is None:
            self._drop(packet, node, "no-listener")
            return
        self.delivered_packets += 1
        self.event_log.log(
            "deliver",
            t=self.scheduler.now,
            uid=packet.uid,
            flow=packet.flow,
            kind=packet.kind,
            node=node,
            size=packet.size,
            delay=self.scheduler.now - packet.created,
        )
        app.receive(packet)

    def _drop(self, packet: Packet, node: NodeId, reason: str) -> None:
        self.dropped_packets += 1
        self.event_log.log(
            "drop",
            t=self.scheduler.now,
            uid=packet.uid,
            flow=packet.flow,
            kind=packet.kind,
            node=node,
            reason=reason,
        )
        self._log.debug("drop uid=%d flow=%s at node %d: %s", packet.uid, packet.flow, node, reason)

    def _record(self, direction: str, device: Device, packet: Packet) -> None:
        row = {
            "t": self.scheduler.now,
            "uid": packet.uid,
            "flow": packet.flow,
            "kind": packet.kind,
            "src": str(packet.src),
            "dst": str(packet.dst),
            "size": packet.size,
            "node": device.node,
            "device": device.device_id,
        }
        self.event_log.log(direction, **row)
        for capture in device.captures:
            capture.log(direction, **row)
