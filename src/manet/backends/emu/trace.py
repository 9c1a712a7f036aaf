from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List

from manet.backends.base import AnimationExporter, TraceHelper
from manet.core.logging import JsonlLogger
from manet.core.types import DeviceSet, Vector
from manet.utils.io import dump_json

if TYPE_CHECKING:
    from manet.backends.emu.engine import EmuEngine


class EmuAnimation(AnimationExporter):
    """Collects node positions over time and writes one JSON document on destroy."""

    def __init__(self, engine: "EmuEngine", output_path: Path) -> None:
        self._engine = engine
        self.output_path = Path(output_path)
        self.metadata = False
        self._frames: List[Dict[str, Any]] = []
        for node in sorted(engine.mobility.models):
            engine.mobility.subscribe(node, self._on_move)
        engine.scheduler.on_destroy(self.write)

    def enable_metadata(self, enabled: bool) -> None:
        self.metadata = bool(enabled)

    def _on_move(self, path: str, pos: Vector) -> None:
        node = int(path.split("/")[2])
        self._frames.append({"t": self._engine.scheduler.now, "node": node, "x": pos.x, "y": pos.y, "z": pos.z})

    def write(self) -> None:
        nodes = []
        for nid, model in sorted(self._engine.mobility.models.items()):
            entry: Dict[str, Any] = {"id": nid, "model": type(model).__name__}
            if self.metadata:
                node = self._engine.nodes.get(nid)
                entry["routing"] = node.routing
                entry["addresses"] = [
                    str(self._engine.wireless.table[d].address) for d in node.devices
                ]
                entry["cluster"] = (
                    self._engine.wireless.table[node.devices[0]].cluster if node.devices else None
                )
            nodes.append(entry)
        doc = {"nodes": nodes, "frames": self._frames, "metadata": self.metadata}
        if self.metadata:
            doc["packets"] = {
                "delivered": self._engine.delivered_packets,
                "dropped": self._engine.dropped_packets,
            }
        dump_json(self.output_path, doc)


class EmuTrace(TraceHelper):
    def __init__(self, engine: "EmuEngine") -> None:
        self._engine = engine
        engine.scheduler.on_destroy(self.close)

    def enable_capture(self, prefix: Path, devices: DeviceSet) -> str:
        prefix = Path(prefix)
        for did in devices.devices:
            device = self._engine.wireless.table[did]
            node = self._engine.nodes.get(device.node)
            index = node.devices.index(did)
            path = prefix.parent / f"{prefix.name}-{device.node}-{index}.jsonl"
            device.captures.append(JsonlLogger(path))
        return str(prefix)

    def enable_event_log(self, path: Path) -> Path:
        self._engine.event_log.close()
        self._engine.event_log = JsonlLogger(path)
        return Path(path)

    def animation(self, output_path: Path) -> EmuAnimation:
        return EmuAnimation(self._engine, output_path)

    def close(self) -> None:
        for device in self._engine.wireless.table.values():
            for capture in device.captures:
                capture.close()
        self._engine.event_log.close()
