from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import TYPE_CHECKING, Iterable, List, Tuple

from manet.core.errors import ConfigError
from manet.core.types import NodeRef, Vector
from manet.scenario.mobility import MobilityAssigner, MobilityPolicy, StaticPolicy

if TYPE_CHECKING:
    from manet.backends.base import Engine


@dataclass(frozen=True)
class ClusterSpec:
    name: str
    size: int
    mobility: MobilityPolicy
    address_block: ipaddress.IPv4Network

    @property
    def host_capacity(self) -> int:
        return max(0, self.address_block.num_addresses - 2)

    def validate(self) -> List[str]:
        errors: List[str] = []
        label = f"cluster {self.name!r}"
        if not self.name or ":" in self.name:
            errors.append(f"{label}: name must be non-empty and must not contain ':'")
        if self.size < 1:
            errors.append(f"{label}: size must be >= 1, got {self.size}")
            return errors
        if isinstance(self.mobility, StaticPolicy) and len(self.mobility.positions) != self.size:
            errors.append(
                f"{label}: static policy supplies {len(self.mobility.positions)} positions "
                f"for {self.size} nodes"
            )
        else:
            try:
                self.mobility.initial_positions(self.size)
            except ConfigError as exc:
                errors.append(f"{label}: {exc}")
        if self.size > self.host_capacity:
            errors.append(
                f"{label}: address block {self.address_block} holds {self.host_capacity} hosts, "
                f"cluster needs {self.size}"
            )
        return errors


@dataclass(frozen=True)
class Cluster:
    spec: ClusterSpec
    nodes: Tuple[NodeRef, ...]
    positions: Tuple[Vector, ...]

    @property
    def name(self) -> str:
        return self.spec.name

    def node(self, index: int) -> NodeRef:
        return self.nodes[index]

    def node_ids(self) -> List[int]:
        return [ref.node_id for ref in self.nodes]


def check_disjoint_blocks(specs: Iterable[ClusterSpec]) -> List[str]:
    errors: List[str] = []
    items = list(specs)
    for i, a in enumerate(items):
        for b in items[i + 1 :]:
            if a.address_block.overlaps(b.address_block):
                errors.append(
                    f"address blocks overlap: {a.name}={a.address_block} {b.name}={b.address_block}"
                )
    return errors


def build_cluster(
    spec: ClusterSpec,
    engine: "Engine",
    assigner: MobilityAssigner | None = None,
) -> Cluster:
    errors = spec.validate()
    if errors:
        raise ConfigError("; ".join(errors))
    node_ids = engine.nodes.create(spec.size)
    nodes = tuple(NodeRef(cluster=spec.name, index=i, node_id=nid) for i, nid in enumerate(node_ids))
    assigner = assigner or MobilityAssigner(engine)
    positions = assigner.assign(nodes, spec.mobility)
    return Cluster(spec=spec, nodes=nodes, positions=tuple(positions))
