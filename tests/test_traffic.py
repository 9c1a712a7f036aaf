from __future__ import annotations

import math
from typing import Tuple

import pytest

from manet.backends.emu import EmuEngine
from manet.core.errors import ConfigError
from manet.scenario.addressing import AddressPlanner, parse_block
from manet.scenario.cluster import ClusterSpec, build_cluster
from manet.scenario.config import ScenarioConfig
from manet.scenario.mobility import GridLayout, StaticPolicy
from manet.scenario.topology import TopologyBuilder
from manet.scenario.traffic import TrafficFlow, TrafficKind, TrafficPlan, parse_data_rate, parse_endpoint


def _flow(**kw) -> TrafficFlow:
    base = dict(
        name="f",
        kind=TrafficKind.STREAM,
        source="A:0",
        destination="B:0",
        start=1.0,
        stop=19.0,
    )
    base.update(kw)
    return TrafficFlow(**base)


def _addressed(engine: EmuEngine, stop_time: float = 20.0) -> Tuple[ScenarioConfig, AddressPlanner]:
    config = ScenarioConfig(stop_time=stop_time)
    layouts = {"A": GridLayout(0.0, 0.0), "B": GridLayout(50.0, 50.0), "C": GridLayout(100.0, 100.0)}
    clusters = []
    for i, (name, layout) in enumerate(layouts.items(), start=1):
        spec = ClusterSpec(
            name=name,
            size=3,
            mobility=StaticPolicy(tuple(layout.positions(3))),
            address_block=parse_block(f"10.1.{i}.0/24"),
        )
        clusters.append(build_cluster(spec, engine))
    topo = TopologyBuilder(engine, config)
    topo.build_channel()
    planner = AddressPlanner(engine)
    for c in clusters:
        planner.assign(c, topo.attach_wireless(c), c.spec.address_block)
    return config, planner


@pytest.mark.parametrize(
    "value,expected",
    [
        ("500kbps", 500_000.0),
        ("1Mbps", 1_000_000.0),
        ("100Kbps", 100_000.0),
        ("2KBps", 16_000.0),
        ("1.5Mb/s", 1_500_000.0),
        (2048, 2048.0),
    ],
)
def test_parse_data_rate(value, expected) -> None:
    assert parse_data_rate(value) == expected


@pytest.mark.parametrize("value", ["fast", "500kbit", "0kbps", True, -1, math.nan, math.inf, "1e999kbps"])
def test_parse_data_rate_rejects_invalid(value) -> None:
    with pytest.raises(ConfigError):
        parse_data_rate(value)


def test_parse_endpoint() -> None:
    assert parse_endpoint("B:0") == ("B", 0)
    assert parse_endpoint("10.1.2.1") is None
    with pytest.raises(ConfigError):
        parse_endpoint("B:x")


def test_flow_validation_rules() -> None:
    assert _flow().validate(20.0) == []
    assert _flow(destination="10.1.2.1").validate(20.0) == []
    assert any("exceeds scenario stop time" in e for e in _flow(stop=25.0).validate(20.0))
    assert any("0 <= start < stop" in e for e in _flow(start=5.0, stop=5.0).validate(20.0))
    assert any("must cover sender window" in e for e in _flow(receiver_start=2.0).validate(20.0))
    assert any("invalid destination" in e for e in _flow(destination="B:x").validate(20.0))
    assert any("source must be" in e for e in _flow(source="10.1.1.1").validate(20.0))
    assert any(
        "max_packets" in e
        for e in _flow(kind=TrafficKind.REQUEST_RESPONSE, max_packets=0).validate(20.0)
    )


def test_one_source_fans_out_to_two_destinations() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)

    s1, r1 = plan.install_flow(_flow(name="a-to-b", destination="B:0"))
    s2, r2 = plan.install_flow(_flow(name="a-to-c", destination="C:0"))

    assert s1.node == s2.node == planner.node_at("A", 0).node_id
    assert r1.node == planner.node_at("B", 0).node_id
    assert r2.node == planner.node_at("C", 0).node_id
    assert [app.kind for app in engine.traffic.apps] == ["sink", "onoff", "sink", "onoff"]


def test_flows_to_one_destination_share_the_receiver() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)

    _, r1 = plan.install_flow(_flow(name="f1", source="A:0"))
    _, r2 = plan.install_flow(_flow(name="f2", source="A:1"))

    assert r1 is r2
    assert [app.kind for app in engine.traffic.apps] == ["sink", "onoff", "onoff"]


def test_conflicting_receiver_kind_raises() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)
    plan.install_flow(_flow(name="f1"))

    with pytest.raises(ConfigError, match="already installed"):
        plan.install_flow(_flow(name="f2", kind=TrafficKind.REQUEST_RESPONSE))


def test_destination_by_address_resolves_to_node() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)

    _, receiver = plan.install_flow(_flow(destination="10.1.2.2"))
    assert receiver.node == planner.node_at("B", 1).node_id


def test_stream_sender_rate_and_window() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)
    sender, receiver = plan.install_flow(_flow(data_rate=500_000.0, stop=3.0))

    engine.scheduler.run(5.0)

    stats = sender.stats()
    # 1472 B at 500 kb/s is one packet every 23.552 ms
    assert stats["tx_packets"] == 84
    assert stats["first_tx"] == pytest.approx(1.023552)
    assert stats["last_tx"] < 3.0
    assert receiver.stats()["rx_by_flow"] == {"f": 84}


def test_request_response_sends_until_stop() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)
    client, server = plan.install_flow(
        _flow(kind=TrafficKind.REQUEST_RESPONSE, packet_size=1024, max_packets=100, interval=1.0)
    )

    engine.scheduler.run(20.0)

    assert client.tx_times == [float(t) for t in range(1, 19)]
    assert client.stats()["rx_packets"] == 18
    assert server.stats()["rx_packets"] == 18
    assert server.kind == "echo_server"


def test_request_response_respects_max_packets() -> None:
    engine = EmuEngine()
    config, planner = _addressed(engine)
    plan = TrafficPlan(engine, config, planner)
    client, _ = plan.install_flow(
        _flow(kind=TrafficKind.REQUEST_RESPONSE, max_packets=3, interval=0.5)
    )

    engine.scheduler.run(20.0)

    assert client.tx_times == [1.0, 1.5, 2.0]
