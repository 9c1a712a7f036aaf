from __future__ import annotations

import pytest

from manet.backends.emu import EmuEngine
from manet.core.errors import SetupOrderError
from manet.routing.registry import available_routing, load_routing
from manet.scenario.addressing import parse_block
from manet.scenario.cluster import Cluster, ClusterSpec, build_cluster
from manet.scenario.config import RoutingConfig, ScenarioConfig
from manet.scenario.mobility import GridLayout, StaticPolicy
from manet.scenario.topology import TopologyBuilder


def _cluster(engine: EmuEngine, name: str, block: str) -> Cluster:
    spec = ClusterSpec(
        name=name,
        size=3,
        mobility=StaticPolicy(tuple(GridLayout().positions(3))),
        address_block=parse_block(block),
    )
    return build_cluster(spec, engine)


def test_attach_before_channel_raises() -> None:
    engine = EmuEngine()
    cluster = _cluster(engine, "A", "10.1.1.0/24")
    topo = TopologyBuilder(engine, ScenarioConfig())

    with pytest.raises(SetupOrderError):
        topo.attach_wireless(cluster)
    with pytest.raises(SetupOrderError):
        topo.channel
    assert engine.wireless.table == {}


def test_channel_is_built_exactly_once() -> None:
    topo = TopologyBuilder(EmuEngine(), ScenarioConfig())
    topo.build_channel()
    with pytest.raises(SetupOrderError, match="exactly once"):
        topo.build_channel()


def test_clusters_share_the_single_channel() -> None:
    engine = EmuEngine()
    a = _cluster(engine, "A", "10.1.1.0/24")
    b = _cluster(engine, "B", "10.1.2.0/24")
    topo = TopologyBuilder(engine, ScenarioConfig())
    topo.build_channel()

    da = topo.attach_wireless(a)
    db = topo.attach_wireless(b)

    assert da.channel == db.channel == topo.channel
    assert len(engine.channels.table) == 1
    assert len(da) == len(db) == 3
    assert engine.nodes.get(4).routing == "aodv"
    assert engine.nodes.get(4).routing_params["hello_interval"] == 1.0


def test_attach_twice_raises() -> None:
    engine = EmuEngine()
    a = _cluster(engine, "A", "10.1.1.0/24")
    topo = TopologyBuilder(engine, ScenarioConfig())
    topo.build_channel()
    topo.attach_wireless(a)
    with pytest.raises(SetupOrderError, match="already attached"):
        topo.attach_wireless(a)


def test_routing_params_are_merged_over_variant_defaults() -> None:
    engine = EmuEngine()
    a = _cluster(engine, "A", "10.1.1.0/24")
    config = ScenarioConfig(routing=RoutingConfig(protocol="olsr", params={"tc_interval": 3.0}))
    topo = TopologyBuilder(engine, config)
    topo.build_channel()
    topo.attach_wireless(a)

    params = engine.nodes.get(0).routing_params
    assert params["tc_interval"] == 3.0
    assert params["hello_interval"] == 2.0


def test_routing_registry_lookup() -> None:
    assert available_routing() == ["aodv", "dsdv", "dsr", "olsr"]
    assert load_routing("AODV").name == "aodv"
    with pytest.raises(KeyError, match="Unknown routing variant"):
        load_routing("babel")
    with pytest.raises(KeyError, match="Unknown aodv parameters"):
        load_routing("aodv").params({"tc_interval": 1.0})
