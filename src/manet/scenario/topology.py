from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Dict, Optional

from manet.core.errors import SetupOrderError
from manet.core.types import DeviceSet
from manet.routing.registry import load_routing

if TYPE_CHECKING:
    from manet.backends.base import Engine
    from manet.scenario.cluster import Cluster
    from manet.scenario.config import ScenarioConfig


class TopologyBuilder:
    """Owns the single shared channel and attaches every cluster to it."""

    def __init__(self, engine: "Engine", config: "ScenarioConfig", logger: logging.Logger | None = None) -> None:
        self._engine = engine
        self._config = config
        self._log = logger or logging.getLogger("manet.topology")
        self._channel: Optional[int] = None
        self.devices: Dict[str, DeviceSet] = {}

    @property
    def channel(self) -> int:
        if self._channel is None:
            raise SetupOrderError("shared channel has not been built")
        return self._channel

    def build_channel(self) -> int:
        if self._channel is not None:
            raise SetupOrderError("shared channel must be built exactly once")
        self._channel = self._engine.channels.create(self._config.wifi)
        self._log.info(
            "channel %d: %s %s mac=%s range=%s",
            self._channel,
            self._config.wifi.standard,
            self._config.wifi.data_mode,
            self._config.wifi.mac,
            self._config.wifi.range_m,
        )
        return self._channel

    def attach_wireless(self, cluster: "Cluster") -> DeviceSet:
        if self._channel is None:
            raise SetupOrderError(f"cannot attach cluster {cluster.name} before the shared channel exists")
        if cluster.name in self.devices:
            raise SetupOrderError(f"cluster {cluster.name} is already attached")
        node_ids = cluster.node_ids()
        devices = self._engine.wireless.install(self._channel, self._config.wifi, node_ids, cluster.name)
        routing = load_routing(self._config.routing.protocol)
        self._engine.network.install(node_ids, routing.name, routing.params(self._config.routing.params))
        self.devices[cluster.name] = devices
        self._log.info(
            "cluster %s: %d devices on channel %d, routing=%s",
            cluster.name,
            len(devices),
            self._channel,
            routing.name,
        )
        return devices

    def release(self) -> None:
        self.devices.clear()
        self._channel = None
