from __future__ import annotations

from typing import Dict, List, Tuple

import pytest

from manet.backends.emu import EmuEngine
from manet.core.errors import ConfigError, EngineError
from manet.core.types import DeviceSet
from manet.scenario.addressing import AddressPlanner, parse_block, plan_addresses
from manet.scenario.cluster import Cluster, ClusterSpec, build_cluster
from manet.scenario.config import ScenarioConfig, WifiConfig
from manet.scenario.mobility import GridLayout, StaticPolicy
from manet.scenario.topology import TopologyBuilder


def _spec(name: str, block: str, size: int = 3) -> ClusterSpec:
    return ClusterSpec(
        name=name,
        size=size,
        mobility=StaticPolicy(tuple(GridLayout().positions(size))),
        address_block=parse_block(block),
    )


def _attached(engine: EmuEngine, specs: List[ClusterSpec]) -> Tuple[List[Cluster], Dict[str, DeviceSet]]:
    clusters = [build_cluster(s, engine) for s in specs]
    topo = TopologyBuilder(engine, ScenarioConfig())
    topo.build_channel()
    return clusters, {c.name: topo.attach_wireless(c) for c in clusters}


def test_plan_addresses_is_network_plus_index_plus_one() -> None:
    planned = plan_addresses(parse_block("10.1.2.0/24"), 3)
    assert [str(a) for a in planned] == ["10.1.2.1", "10.1.2.2", "10.1.2.3"]


def test_plan_addresses_rejects_overflow() -> None:
    with pytest.raises(ConfigError, match="cannot hold 3 hosts"):
        plan_addresses(parse_block("10.1.1.0/30"), 3)


def test_parse_block_rejects_host_bits() -> None:
    with pytest.raises(ConfigError, match="invalid address block"):
        parse_block("10.1.1.5/24")


def test_assign_matches_plan_and_resolves_both_ways() -> None:
    engine = EmuEngine()
    clusters, devices = _attached(engine, [_spec("A", "10.1.1.0/24"), _spec("B", "10.1.2.0/24")])
    planner = AddressPlanner(engine)
    ifaces = {c.name: planner.assign(c, devices[c.name], c.spec.address_block) for c in clusters}

    assert str(ifaces["B"].get_address(0)) == "10.1.2.1"
    assert str(planner.address_of("A", 1)) == "10.1.1.2"
    assert planner.resolve("10.1.2.3") == clusters[1].node(2)
    assert planner.node_at("B", 2) == clusters[1].node(2)
    with pytest.raises(ConfigError, match="does not resolve"):
        planner.resolve("10.1.9.1")


def test_addresses_are_identical_across_runs() -> None:
    def addresses() -> List[str]:
        engine = EmuEngine()
        clusters, devices = _attached(engine, [_spec("A", "10.1.1.0/24"), _spec("B", "10.1.2.0/24", size=2)])
        planner = AddressPlanner(engine)
        out: List[str] = []
        for c in clusters:
            out.extend(str(a) for a in planner.assign(c, devices[c.name], c.spec.address_block).addresses)
        return out

    assert addresses() == addresses() == ["10.1.1.1", "10.1.1.2", "10.1.1.3", "10.1.2.1", "10.1.2.2"]


def test_assign_requires_network_stack() -> None:
    engine = EmuEngine()
    spec = _spec("A", "10.1.1.0/24")
    cluster = build_cluster(spec, engine)
    wifi = WifiConfig()
    channel = engine.channels.create(wifi)
    devices = engine.wireless.install(channel, wifi, cluster.node_ids(), "A")

    with pytest.raises(EngineError, match="no network stack"):
        AddressPlanner(engine).assign(cluster, devices, spec.address_block)
