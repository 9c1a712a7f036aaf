from __future__ import annotations

import ipaddress
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from manet.core.errors import ConfigError

if TYPE_CHECKING:
    from manet.backends.base import ApplicationHandle, Engine
    from manet.scenario.addressing import AddressPlanner
    from manet.scenario.config import ScenarioConfig


class TrafficKind(str, Enum):
    STREAM = "stream"
    REQUEST_RESPONSE = "request_response"


_RATE_UNITS: Dict[str, float] = {
    "": 1.0,
    "bps": 1.0,
    "b/s": 1.0,
    "kbps": 1e3,
    "Kbps": 1e3,
    "kb/s": 1e3,
    "Kb/s": 1e3,
    "Mbps": 1e6,
    "Mb/s": 1e6,
    "Gbps": 1e9,
    "Gb/s": 1e9,
    "Bps": 8.0,
    "B/s": 8.0,
    "kBps": 8e3,
    "KBps": 8e3,
    "kB/s": 8e3,
    "MBps": 8e6,
    "MB/s": 8e6,
}
_RATE_RE = re.compile(r"^\s*([0-9]*\.?[0-9]+(?:[eE][-+]?[0-9]+)?)\s*([A-Za-z/]*)\s*$")


def parse_data_rate(value: Any) -> float:
    """Return a data rate in bits per second. Units are case sensitive (b = bit, B = byte)."""
    if isinstance(value, bool):
        raise ConfigError(f"invalid data rate: {value!r}")
    if isinstance(value, (int, float)):
        rate = float(value)
    else:
        m = _RATE_RE.match(str(value))
        if not m or m.group(2) not in _RATE_UNITS:
            raise ConfigError(f"invalid data rate: {value!r}")
        rate = float(m.group(1)) * _RATE_UNITS[m.group(2)]
    if not math.isfinite(rate) or rate <= 0:
        raise ConfigError(f"data rate must be a finite number > 0, got {value!r}")
    return rate


def parse_endpoint(text: str) -> Optional[Tuple[str, int]]:
    """``"B:0"`` -> ``("B", 0)``; a literal IPv4 address returns None."""
    if ":" not in text:
        return None
    cluster, index = text.rsplit(":", 1)
    if not cluster or not index.isdigit():
        raise ConfigError(f"endpoint must be '<cluster>:<index>', got {text!r}")
    return cluster, int(index)


@dataclass(frozen=True)
class TrafficFlow:
    name: str
    kind: TrafficKind
    source: str
    destination: str
    start: float
    stop: float
    port: int = 9
    packet_size: int = 1472
    data_rate: float = 100_000.0
    max_packets: int = 100
    interval: float = 1.0
    receiver_start: Optional[float] = None
    receiver_stop: Optional[float] = None

    def receiver_window(self, stop_time: float) -> Tuple[float, float]:
        start = 0.0 if self.receiver_start is None else float(self.receiver_start)
        stop = float(stop_time) if self.receiver_stop is None else float(self.receiver_stop)
        return start, stop

    def validate(self, stop_time: float) -> List[str]:
        errors: List[str] = []
        label = f"flow {self.name!r}"
        numbers = {
            "start": self.start,
            "stop": self.stop,
            "receiver_start": self.receiver_start,
            "receiver_stop": self.receiver_stop,
            "interval": self.interval,
            "data_rate": self.data_rate,
        }
        not_finite = [key for key, value in numbers.items() if value is not None and not math.isfinite(value)]
        if not_finite:
            errors.append(f"{label}: {', '.join(not_finite)} must be finite")
            return errors
        if not (0.0 <= self.start < self.stop):
            errors.append(f"{label}: window must satisfy 0 <= start < stop, got [{self.start}, {self.stop}]")
        if self.stop > stop_time:
            errors.append(f"{label}: stop {self.stop} exceeds scenario stop time {stop_time}")
        r_start, r_stop = self.receiver_window(stop_time)
        if r_start < 0 or r_stop > stop_time:
            errors.append(f"{label}: receiver window [{r_start}, {r_stop}] outside [0, {stop_time}]")
        if r_start > self.start or r_stop < self.stop:
            errors.append(
                f"{label}: receiver window [{r_start}, {r_stop}] must cover sender window "
                f"[{self.start}, {self.stop}]"
            )
        if self.port < 1 or self.port > 65535:
            errors.append(f"{label}: port out of range: {self.port}")
        if self.packet_size <= 0:
            errors.append(f"{label}: packet_size must be > 0")
        if self.kind is TrafficKind.STREAM and self.data_rate <= 0:
            errors.append(f"{label}: data_rate must be > 0")
        if self.kind is TrafficKind.REQUEST_RESPONSE:
            if self.max_packets < 1:
                errors.append(f"{label}: max_packets must be >= 1")
            if self.interval <= 0:
                errors.append(f"{label}: interval must be > 0")
        try:
            if parse_endpoint(self.source) is None:
                errors.append(f"{label}: source must be '<cluster>:<index>'")
        except ConfigError as exc:
            errors.append(f"{label}: {exc}")
        try:
            if parse_endpoint(self.destination) is None:
                ipaddress.IPv4Address(self.destination)
        except (ConfigError, ValueError) as exc:
            errors.append(f"{label}: invalid destination: {exc}")
        return errors


class TrafficPlan:
    """Installs sender/receiver application pairs for each flow."""

    def __init__(
        self,
        engine: "Engine",
        config: "ScenarioConfig",
        planner: "AddressPlanner",
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._config = config
        self._planner = planner
        self._log = logger or logging.getLogger("manet.traffic")
        self._receivers: Dict[Tuple[int, int], Tuple[TrafficKind, Tuple[float, float], "ApplicationHandle"]] = {}
        self.installed: List[Tuple[TrafficFlow, "ApplicationHandle", "ApplicationHandle"]] = []

    def destination_address(self, flow: TrafficFlow) -> ipaddress.IPv4Address:
        endpoint = parse_endpoint(flow.destination)
        if endpoint is None:
            return ipaddress.IPv4Address(flow.destination)
        return self._planner.address_of(*endpoint)

    def install_flow(self, flow: TrafficFlow) -> Tuple["ApplicationHandle", "ApplicationHandle"]:
        src_ep = parse_endpoint(flow.source)
        if src_ep is None:
            raise ConfigError(f"flow {flow.name!r}: source must be '<cluster>:<index>'")
        src = self._planner.node_at(*src_ep)
        dst_addr = self.destination_address(flow)
        dst = self._planner.resolve(dst_addr)

        receiver = self._receiver(flow, dst.node_id)
        if flow.kind is TrafficKind.STREAM:
            sender = self._engine.traffic.install(
                "onoff",
                (dst_addr, flow.port),
                {"data_rate": flow.data_rate, "packet_size": flow.packet_size, "flow": flow.name},
                src.node_id,
            )
        else:
            sender = self._engine.traffic.install(
                "echo_client",
                (dst_addr, flow.port),
                {
                    "max_packets": flow.max_packets,
                    "interval": flow.interval,
                    "packet_size": flow.packet_size,
                    "flow": flow.name,
                },
                src.node_id,
            )
        sender.start(flow.start)
        sender.stop(flow.stop)
        self.installed.append((flow, sender, receiver))
        self._log.info(
            "flow %s: %s %s -> %s (%s:%d) active [%.3f, %.3f]",
            flow.name,
            flow.kind.value,
            src.endpoint,
            dst.endpoint,
            dst_addr,
            flow.port,
            flow.start,
            flow.stop,
        )
        return sender, receiver

    def _receiver(self, flow: TrafficFlow, node_id: int) -> "ApplicationHandle":
        window = flow.receiver_window(self._config.stop_time)
        key = (node_id, flow.port)
        if key in self._receivers:
            kind, existing_window, handle = self._receivers[key]
            if kind is not flow.kind or existing_window != window:
                raise ConfigError(
                    f"flow {flow.name!r}: receiver on node {node_id} port {flow.port} already "
                    f"installed as {kind.value} {existing_window}"
                )
            return handle
        app_kind = "sink" if flow.kind is TrafficKind.STREAM else "echo_server"
        handle = self._engine.traffic.install(app_kind, (None, flow.port), {}, node_id)
        handle.start(window[0])
        handle.stop(window[1])
        self._receivers[key] = (flow.kind, window, handle)
        return handle

    def release(self) -> None:
        self._receivers.clear()
        self.installed.clear()
