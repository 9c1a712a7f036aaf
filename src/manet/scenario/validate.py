from __future__ import annotations

import ipaddress
import math
from typing import Dict, List, Tuple

from manet.core.errors import ConfigError
from manet.routing.registry import load_routing
from manet.scenario.addressing import plan_addresses
from manet.scenario.cluster import check_disjoint_blocks
from manet.scenario.config import Scenario
from manet.scenario.traffic import TrafficKind, parse_endpoint


def _planned_endpoints(scenario: Scenario) -> Dict[ipaddress.IPv4Address, Tuple[str, int]]:
    out: Dict[ipaddress.IPv4Address, Tuple[str, int]] = {}
    for spec in scenario.clusters:
        if spec.size < 1 or spec.size > spec.host_capacity:
            continue
        for idx, addr in enumerate(plan_addresses(spec.address_block, spec.size)):
            out[addr] = (spec.name, idx)
    return out


def validate_scenario(scenario: Scenario) -> list[str]:
    errors: list[str] = []
    cfg = scenario.config

    if not math.isfinite(cfg.min_stop_time) or cfg.min_stop_time <= 0:
        errors.append(f"min_stop_time must be a finite number > 0, got {cfg.min_stop_time}")
    if not math.isfinite(cfg.stop_time):
        errors.append(f"stopTime must be a finite number (got {cfg.stop_time})")
    elif cfg.stop_time < cfg.min_stop_time:
        errors.append(f"stopTime must be >= {cfg.min_stop_time:g} (got {cfg.stop_time:g})")

    try:
        load_routing(cfg.routing.protocol).params(cfg.routing.params)
    except KeyError as exc:
        errors.append(str(exc.args[0]))
    try:
        cfg.wifi.phy_rate
    except ConfigError as exc:
        errors.append(str(exc))
    if cfg.wifi.range_m is not None and not cfg.wifi.range_m > 0:
        errors.append("wifi.range_m must be > 0")
    if not math.isfinite(cfg.wifi.propagation_speed) or cfg.wifi.propagation_speed <= 0:
        errors.append("wifi.propagation_speed must be a finite number > 0")

    if not scenario.clusters:
        errors.append("at least one cluster is required")
    names = [c.name for c in scenario.clusters]
    for name in sorted({n for n in names if names.count(n) > 1}):
        errors.append(f"duplicate cluster name: {name}")
    for spec in scenario.clusters:
        errors.extend(spec.validate())
    errors.extend(check_disjoint_blocks(scenario.clusters))

    sizes = {c.name: c.size for c in scenario.clusters}
    planned = _planned_endpoints(scenario)
    flow_names = [f.name for f in scenario.flows]
    for name in sorted({n for n in flow_names if flow_names.count(n) > 1}):
        errors.append(f"duplicate flow name: {name}")

    receivers: Dict[Tuple[Tuple[str, int], int], Tuple[TrafficKind, Tuple[float, float], str]] = {}
    for flow in scenario.flows:
        flow_errors = flow.validate(cfg.stop_time)
        errors.extend(flow_errors)
        if flow_errors:
            continue
        src = parse_endpoint(flow.source)
        if src[0] not in sizes or not 0 <= src[1] < sizes[src[0]]:
            errors.append(f"flow {flow.name!r}: source {flow.source} is not a node of the scenario")
        dst = parse_endpoint(flow.destination)
        if dst is None:
            dst = planned.get(ipaddress.IPv4Address(flow.destination))
            if dst is None:
                errors.append(
                    f"flow {flow.name!r}: destination {flow.destination} does not resolve to a node"
                )
                continue
        elif dst[0] not in sizes or not 0 <= dst[1] < sizes[dst[0]]:
            errors.append(f"flow {flow.name!r}: destination {flow.destination} is not a node of the scenario")
            continue
        if dst == src:
            errors.append(f"flow {flow.name!r}: source and destination are the same node")
        window = flow.receiver_window(cfg.stop_time)
        key = (dst, flow.port)
        if key in receivers:
            kind, other_window, other = receivers[key]
            if kind is not flow.kind or other_window != window:
                errors.append(
                    f"flow {flow.name!r}: receiver on {dst[0]}:{dst[1]} port {flow.port} conflicts "
                    f"with flow {other!r}"
                )
        else:
            receivers[key] = (flow.kind, window, flow.name)
    return errors
