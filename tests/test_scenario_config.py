from __future__ import annotations

import math
from pathlib import Path

import pytest

from manet.core.errors import ConfigError
from manet.scenario.config import default_scenario, load_scenario
from manet.scenario.mobility import RandomWalk2dPolicy, RandomWaypointPolicy, StaticPolicy
from manet.scenario.traffic import TrafficKind
from manet.scenario.validate import validate_scenario

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"


def test_default_scenario_has_three_clusters_on_one_channel() -> None:
    scenario = default_scenario()

    assert [c.name for c in scenario.clusters] == ["A", "B", "C"]
    assert [str(c.address_block) for c in scenario.clusters] == ["10.1.1.0/24", "10.1.2.0/24", "10.1.3.0/24"]
    assert isinstance(scenario.clusters[0].mobility, StaticPolicy)
    assert isinstance(scenario.clusters[1].mobility, RandomWaypointPolicy)
    assert isinstance(scenario.clusters[2].mobility, RandomWalk2dPolicy)
    assert scenario.config.wifi.phy_rate == 1e6
    assert scenario.config.stop_time == 20.0

    flow = scenario.flows[0]
    assert [f.name for f in scenario.flows] == ["a-to-b", "a-to-c"]
    assert (flow.data_rate, flow.packet_size, flow.port) == (500_000.0, 1472, 9)
    assert validate_scenario(scenario) == []


def test_request_response_preset_uses_echo_defaults() -> None:
    scenario = default_scenario("request-response")
    flow = scenario.flows[1]
    assert flow.kind is TrafficKind.REQUEST_RESPONSE
    assert (flow.max_packets, flow.interval, flow.packet_size) == (100, 1.0, 1024)
    assert validate_scenario(scenario) == []


def test_unknown_traffic_preset() -> None:
    with pytest.raises(ConfigError, match="unknown traffic preset"):
        default_scenario("burst")


def test_yaml_is_merged_over_defaults_and_overrides_win(tmp_path: Path) -> None:
    cfg_path = tmp_path / "scenario.yaml"
    cfg_path.write_text(
        """
name: custom
stop_time: 30
routing:
  protocol: OLSR
traffic_defaults:
  stream:
    packet_size: 512
flows:
  - name: only
    source: "A:1"
    destination: "C:2"
    start: 2
    stop: 25
""".strip(),
        encoding="utf-8",
    )
    scenario = load_scenario(cfg_path, {"seed": 42})

    assert scenario.config.name == "custom"
    assert scenario.config.stop_time == 30.0
    assert scenario.config.seed == 42
    assert scenario.config.routing.protocol == "olsr"
    assert len(scenario.clusters) == 3
    assert [(f.name, f.packet_size, f.data_rate) for f in scenario.flows] == [("only", 512, 100_000.0)]
    assert scenario.raw["seed"] == 42
    assert validate_scenario(scenario) == []


def test_missing_file_and_bad_types_raise_config_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigError, match="cannot load scenario config"):
        load_scenario(tmp_path / "missing.yaml")
    with pytest.raises(ConfigError, match="field 'seed' must be int"):
        load_scenario(overrides={"seed": "x"})
    with pytest.raises(ConfigError, match="field 'stop_time'"):
        load_scenario(overrides={"stop_time": True})


@pytest.mark.parametrize("name", ["stream.yaml", "request_response.yaml", "mobility_only.yaml"])
def test_shipped_configs_validate(name: str) -> None:
    assert validate_scenario(load_scenario(CONFIG_DIR / name)) == []


def test_short_stop_time_is_reported() -> None:
    errors = validate_scenario(default_scenario(stop_time=5))
    assert "stopTime must be >= 10 (got 5)" in errors
    assert any("exceeds scenario stop time" in e for e in errors)


def test_min_stop_time_is_configurable() -> None:
    errors = validate_scenario(default_scenario("none", stop_time=5, min_stop_time=2))
    assert errors == []


def test_unknown_routing_and_bad_phy_mode() -> None:
    errors = validate_scenario(
        load_scenario(overrides={"routing": {"protocol": "babel"}, "wifi": {"data_mode": "Turbo"}})
    )
    assert any("Unknown routing variant" in e for e in errors)
    assert any("unrecognized wifi data_mode" in e for e in errors)


def test_flow_endpoint_errors() -> None:
    scenario = load_scenario(
        overrides={
            "flows": [
                {"name": "ghost", "source": "A:0", "destination": "B:7", "start": 1, "stop": 2},
                {"name": "nowhere", "source": "A:0", "destination": "10.1.2.9", "start": 1, "stop": 2},
                {"name": "self", "source": "A:0", "destination": "10.1.1.1", "start": 1, "stop": 2},
            ]
        }
    )
    errors = validate_scenario(scenario)
    assert any("B:7 is not a node" in e for e in errors)
    assert any("10.1.2.9 does not resolve" in e for e in errors)
    assert any("'self': source and destination are the same node" in e for e in errors)


def test_conflicting_receivers_are_reported() -> None:
    scenario = load_scenario(
        overrides={
            "flows": [
                {"name": "s", "kind": "stream", "source": "A:0", "destination": "B:0", "start": 1, "stop": 2},
                {"name": "r", "kind": "request-response", "source": "A:1", "destination": "B:0", "start": 1, "stop": 2},
            ]
        }
    )
    errors = validate_scenario(scenario)
    assert any("conflicts with flow 's'" in e for e in errors)


def test_overlapping_blocks_and_duplicate_names() -> None:
    clusters = [
        {"name": "A", "size": 2, "address_block": "10.1.0.0/16", "mobility": {"type": "static"}},
        {"name": "A", "size": 2, "address_block": "10.1.2.0/24", "mobility": {"type": "static"}},
    ]
    errors = validate_scenario(load_scenario(overrides={"clusters": clusters, "flows": []}))
    assert "duplicate cluster name: A" in errors
    assert any("address blocks overlap" in e for e in errors)


@pytest.mark.parametrize("stop_time", [math.nan, math.inf])
def test_non_finite_stop_time_is_rejected(stop_time: float) -> None:
    errors = validate_scenario(default_scenario(stop_time=stop_time))
    assert any("stopTime must be a finite number" in e for e in errors)


def test_non_finite_min_stop_time_is_rejected() -> None:
    errors = validate_scenario(default_scenario(min_stop_time=math.nan))
    assert any("min_stop_time must be a finite number" in e for e in errors)


def test_non_finite_flow_times_are_rejected() -> None:
    scenario = load_scenario(
        overrides={
            "flows": [
                {"name": "f", "source": "A:0", "destination": "B:0", "start": 1, "stop": math.nan},
                {"name": "g", "source": "A:0", "destination": "C:0", "start": 1, "stop": 2,
                 "receiver_stop": math.inf},
            ]
        }
    )
    errors = validate_scenario(scenario)
    assert "flow 'f': stop must be finite" in errors
    assert "flow 'g': receiver_stop must be finite" in errors
