from __future__ import annotations

import copy
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from manet.core.errors import ConfigError
from manet.scenario.addressing import parse_block
from manet.scenario.cluster import ClusterSpec
from manet.scenario.mobility import policy_from_config
from manet.scenario.traffic import TrafficFlow, TrafficKind, parse_data_rate
from manet.utils.io import deep_merge, load_yaml

DEFAULT_MIN_STOP_TIME = 10.0

_STREAM_FLOWS = [
    {"name": "a-to-b", "kind": "stream", "source": "A:0", "destination": "B:0",
     "data_rate": "500kbps", "start": 1.0, "stop": 19.0},
    {"name": "a-to-c", "kind": "stream", "source": "A:0", "destination": "C:0",
     "data_rate": "500kbps", "start": 1.0, "stop": 19.0},
]

_REQUEST_RESPONSE_FLOWS = [
    {"name": "a-to-b", "kind": "request_response", "source": "A:0", "destination": "B:0",
     "max_packets": 100, "interval": 1.0, "packet_size": 1024, "start": 1.0, "stop": 19.0},
    {"name": "a-to-c", "kind": "request_response", "source": "A:0", "destination": "C:0",
     "max_packets": 100, "interval": 1.0, "packet_size": 1024, "start": 1.0, "stop": 19.0},
]

TRAFFIC_PRESETS: Dict[str, list] = {
    "stream": _STREAM_FLOWS,
    "request-response": _REQUEST_RESPONSE_FLOWS,
    "none": [],
}

DEFAULTS: Dict[str, Any] = {
    "name": "manet-simulation",
    "stop_time": 20.0,
    "min_stop_time": DEFAULT_MIN_STOP_TIME,
    "seed": 1,
    "course_change": False,
    "output_dir": "results/runs",
    "wifi": {
        "standard": "802.11b",
        "data_mode": "DsssRate1Mbps",
        "mac": "adhoc",
        "range_m": 250.0,
        "propagation_speed": 299792458.0,
    },
    "routing": {"protocol": "aodv", "params": {}},
    "trace": {
        "pcap": True,
        "capture_prefix": "cluster{name}",
        "ascii": True,
        "ascii_file": "manet-simulation.tr",
        "animation": False,
        "animation_file": "manet-animation.json",
        "animation_metadata": True,
    },
    "traffic_defaults": {
        "port": 9,
        "stream": {"packet_size": 1472, "data_rate": "100kbps"},
        "request_response": {"packet_size": 1024, "max_packets": 100, "interval": 1.0},
    },
    "clusters": [
        {
            "name": "A",
            "size": 3,
            "address_block": "10.1.1.0/24",
            "mobility": {
                "type": "static",
                "layout": {"min_x": 0.0, "min_y": 0.0, "delta_x": 5.0, "delta_y": 10.0, "grid_width": 3},
            },
        },
        {
            "name": "B",
            "size": 3,
            "address_block": "10.1.2.0/24",
            "mobility": {
                "type": "random_waypoint",
                "speed": [1.0, 5.0],
                "pause": 2.0,
                "bounds": [0.0, 200.0, 0.0, 200.0],
                "layout": {"min_x": 50.0, "min_y": 50.0, "delta_x": 5.0, "delta_y": 10.0, "grid_width": 3},
            },
        },
        {
            "name": "C",
            "size": 3,
            "address_block": "10.1.3.0/24",
            "mobility": {
                "type": "random_walk_2d",
                "mode": "time",
                "period": 2.0,
                "speed": 1.0,
                "bounds": [50.0, 150.0, 50.0, 150.0],
                "layout": {"min_x": 100.0, "min_y": 100.0, "delta_x": 5.0, "delta_y": 10.0, "grid_width": 3},
            },
        },
    ],
    "flows": _STREAM_FLOWS,
}

_PHY_RATE_RE = re.compile(r"Rate(\d+(?:_\d+)?)Mbps$")


@dataclass(frozen=True)
class WifiConfig:
    standard: str = "802.11b"
    data_mode: str = "DsssRate1Mbps"
    mac: str = "adhoc"
    range_m: Optional[float] = 250.0
    propagation_speed: float = 299792458.0

    @property
    def phy_rate(self) -> float:
        m = _PHY_RATE_RE.search(self.data_mode)
        if not m:
            raise ConfigError(f"unrecognized wifi data_mode: {self.data_mode}")
        return float(m.group(1).replace("_", ".")) * 1e6


@dataclass(frozen=True)
class RoutingConfig:
    protocol: str = "aodv"
    params: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class TraceConfig:
    pcap: bool = True
    capture_prefix: str = "cluster{name}"
    ascii: bool = True
    ascii_file: str = "manet-simulation.tr"
    animation: bool = False
    animation_file: str = "manet-animation.json"
    animation_metadata: bool = True

    def capture_name(self, cluster: str) -> str:
        return self.capture_prefix.format(name=cluster)


@dataclass(frozen=True)
class ScenarioConfig:
    name: str = "manet-simulation"
    stop_time: float = 20.0
    min_stop_time: float = DEFAULT_MIN_STOP_TIME
    seed: int = 1
    course_change: bool = False
    output_dir: str = "results/runs"
    wifi: WifiConfig = WifiConfig()
    routing: RoutingConfig = RoutingConfig()
    trace: TraceConfig = TraceConfig()


@dataclass(frozen=True)
class Scenario:
    config: ScenarioConfig
    clusters: Tuple[ClusterSpec, ...]
    flows: Tuple[TrafficFlow, ...]
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


def _require(obj: Dict[str, Any], key: str, typ):
    if key not in obj:
        raise ConfigError(f"missing required field: {key}")
    if not isinstance(obj[key], typ) or isinstance(obj[key], bool) and bool not in _as_tuple(typ):
        raise ConfigError(f"field '{key}' must be {_type_name(typ)}")
    return obj[key]


def _optional(obj: Dict[str, Any], key: str, typ, default=None):
    if key not in obj or obj[key] is None:
        return default
    if not isinstance(obj[key], typ) or isinstance(obj[key], bool) and bool not in _as_tuple(typ):
        raise ConfigError(f"field '{key}' must be {_type_name(typ)}")
    return obj[key]


def _as_tuple(typ) -> tuple:
    return typ if isinstance(typ, tuple) else (typ,)


def _type_name(typ) -> str:
    return "/".join(t.__name__ for t in _as_tuple(typ))


def _table(obj: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = obj.get(key, {}) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"{key} must be a table/object")
    return value


_NUM = (int, float)


def _parse_cluster(raw: Any) -> ClusterSpec:
    if not isinstance(raw, dict):
        raise ConfigError("each cluster must be a table/object")
    name = _require(raw, "name", str)
    size = _require(raw, "size", int)
    block = parse_block(_require(raw, "address_block", str))
    mobility = policy_from_config(_table(raw, "mobility"), size)
    return ClusterSpec(name=name, size=size, mobility=mobility, address_block=block)


def _parse_flow(raw: Any, defaults: Dict[str, Any], idx: int) -> TrafficFlow:
    if not isinstance(raw, dict):
        raise ConfigError("each flow must be a table/object")
    kind_s = str(_optional(raw, "kind", str, "stream")).lower().replace("-", "_")
    try:
        kind = TrafficKind(kind_s)
    except ValueError as exc:
        raise ConfigError(f"unsupported flow kind: {kind_s}") from exc
    kind_defaults = _table(defaults, kind.value)
    merged = deep_merge(kind_defaults, raw)
    return TrafficFlow(
        name=str(_optional(merged, "name", str, f"flow{idx}")),
        kind=kind,
        source=_require(merged, "source", str),
        destination=_require(merged, "destination", str),
        start=float(_require(merged, "start", _NUM)),
        stop=float(_require(merged, "stop", _NUM)),
        port=int(_optional(merged, "port", int, defaults.get("port", 9))),
        packet_size=int(_optional(merged, "packet_size", int, 1472)),
        data_rate=parse_data_rate(merged.get("data_rate", "100kbps")),
        max_packets=int(_optional(merged, "max_packets", int, 100)),
        interval=float(_optional(merged, "interval", _NUM, 1.0)),
        receiver_start=_optional(merged, "receiver_start", _NUM, None),
        receiver_stop=_optional(merged, "receiver_stop", _NUM, None),
    )


def scenario_from_dict(raw: Dict[str, Any]) -> Scenario:
    wifi_raw = _table(raw, "wifi")
    routing_raw = _table(raw, "routing")
    trace_raw = _table(raw, "trace")
    range_m = _optional(wifi_raw, "range_m", _NUM, None)

    config = ScenarioConfig(
        name=str(_optional(raw, "name", str, DEFAULTS["name"])),
        stop_time=float(_require(raw, "stop_time", _NUM)),
        min_stop_time=float(_optional(raw, "min_stop_time", _NUM, DEFAULT_MIN_STOP_TIME)),
        seed=int(_optional(raw, "seed", int, 1)),
        course_change=bool(_optional(raw, "course_change", bool, False)),
        output_dir=str(_optional(raw, "output_dir", str, DEFAULTS["output_dir"])),
        wifi=WifiConfig(
            standard=str(_optional(wifi_raw, "standard", str, "802.11b")),
            data_mode=str(_optional(wifi_raw, "data_mode", str, "DsssRate1Mbps")),
            mac=str(_optional(wifi_raw, "mac", str, "adhoc")),
            range_m=float(range_m) if range_m is not None else None,
            propagation_speed=float(_optional(wifi_raw, "propagation_speed", _NUM, 299792458.0)),
        ),
        routing=RoutingConfig(
            protocol=str(_optional(routing_raw, "protocol", str, "aodv")).lower(),
            params=dict(_table(routing_raw, "params")),
        ),
        trace=TraceConfig(
            pcap=bool(_optional(trace_raw, "pcap", bool, True)),
            capture_prefix=str(_optional(trace_raw, "capture_prefix", str, "cluster{name}")),
            ascii=bool(_optional(trace_raw, "ascii", bool, True)),
            ascii_file=str(_optional(trace_raw, "ascii_file", str, "manet-simulation.tr")),
            animation=bool(_optional(trace_raw, "animation", bool, False)),
            animation_file=str(_optional(trace_raw, "animation_file", str, "manet-animation.json")),
            animation_metadata=bool(_optional(trace_raw, "animation_metadata", bool, True)),
        ),
    )

    clusters = tuple(_parse_cluster(c) for c in _require(raw, "clusters", list))
    traffic_defaults = _table(raw, "traffic_defaults")
    flows_raw = _optional(raw, "flows", list, [])
    flows = tuple(_parse_flow(f, traffic_defaults, i) for i, f in enumerate(flows_raw))
    return Scenario(config=config, clusters=clusters, flows=flows, raw=copy.deepcopy(raw))


def load_effective_config(
    config_path: str | Path | None = None,
    overrides: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    cfg = copy.deepcopy(DEFAULTS)
    if config_path is not None:
        try:
            cfg = deep_merge(cfg, load_yaml(config_path))
        except (OSError, ValueError) as exc:
            raise ConfigError(f"cannot load scenario config {config_path}: {exc}") from exc
    if overrides:
        cfg = deep_merge(cfg, overrides)
    return cfg


def load_scenario(
    config_path: str | Path | None = None,
    overrides: Dict[str, Any] | None = None,
) -> Scenario:
    return scenario_from_dict(load_effective_config(config_path, overrides))


def default_scenario(traffic: str = "stream", **overrides: Any) -> Scenario:
    if traffic not in TRAFFIC_PRESETS:
        raise ConfigError(f"unknown traffic preset: {traffic}. Available: {sorted(TRAFFIC_PRESETS)}")
    merged = dict(overrides)
    merged["flows"] = copy.deepcopy(TRAFFIC_PRESETS[traffic])
    return load_scenario(overrides=merged)
