from __future__ import annotations

import ipaddress
import logging
from typing import TYPE_CHECKING, Dict, List, Tuple

from manet.core.errors import ConfigError, EngineError
from manet.core.types import DeviceSet, InterfaceSet, NodeRef

if TYPE_CHECKING:
    from manet.backends.base import Engine
    from manet.scenario.cluster import Cluster


def plan_addresses(block: ipaddress.IPv4Network, count: int) -> List[ipaddress.IPv4Address]:
    """Address of index i is the block's network address plus i + 1."""
    if count > max(0, block.num_addresses - 2):
        raise ConfigError(f"address block {block} cannot hold {count} hosts")
    base = int(block.network_address)
    return [ipaddress.IPv4Address(base + i + 1) for i in range(count)]


def parse_block(text: str) -> ipaddress.IPv4Network:
    try:
        return ipaddress.IPv4Network(text, strict=True)
    except ValueError as exc:
        raise ConfigError(f"invalid address block {text!r}: {exc}") from exc


class AddressPlanner:
    def __init__(self, engine: "Engine", logger: logging.Logger | None = None) -> None:
        self._engine = engine
        self._log = logger or logging.getLogger("manet.addressing")
        self._by_address: Dict[ipaddress.IPv4Address, NodeRef] = {}
        self._by_endpoint: Dict[Tuple[str, int], ipaddress.IPv4Address] = {}
        self._nodes: Dict[Tuple[str, int], NodeRef] = {}

    def assign(self, cluster: "Cluster", devices: DeviceSet, block: ipaddress.IPv4Network) -> InterfaceSet:
        planned = plan_addresses(block, len(devices))
        assigned = self._engine.addresses.assign(devices, block)
        if list(assigned) != planned:
            raise EngineError(
                f"address allocator returned {[str(a) for a in assigned]} for {cluster.name}, "
                f"expected {[str(a) for a in planned]}"
            )
        for ref, addr in zip(cluster.nodes, planned):
            owner = self._by_address.get(addr)
            if owner is not None and owner != ref:
                raise ConfigError(f"address {addr} already assigned to {owner.endpoint}")
            self._by_address[addr] = ref
            self._by_endpoint[(ref.cluster, ref.index)] = addr
            self._nodes[(ref.cluster, ref.index)] = ref
        self._log.info("cluster %s addressed from %s: %s", cluster.name, block, [str(a) for a in planned])
        return InterfaceSet(cluster=cluster.name, network=block, addresses=tuple(planned))

    def address_of(self, cluster: str, index: int) -> ipaddress.IPv4Address:
        key = (cluster, int(index))
        if key not in self._by_endpoint:
            raise ConfigError(f"no address assigned to {cluster}:{index}")
        return self._by_endpoint[key]

    def node_at(self, cluster: str, index: int) -> NodeRef:
        key = (cluster, int(index))
        if key not in self._nodes:
            raise ConfigError(f"no node installed at {cluster}:{index}")
        return self._nodes[key]

    def resolve(self, address: ipaddress.IPv4Address | str) -> NodeRef:
        addr = ipaddress.IPv4Address(address)
        if addr not in self._by_address:
            raise ConfigError(f"address {addr} does not resolve to an installed node")
        return self._by_address[addr]

    def release(self) -> None:
        self._by_address.clear()
        self._by_endpoint.clear()
        self._nodes.clear()
