from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Dict, List, Sequence

from manet.core.types import DeviceSet, NodeRef, TraceArtifacts, Vector

if TYPE_CHECKING:
    from manet.backends.base import Engine
    from manet.scenario.cluster import Cluster
    from manet.scenario.config import ScenarioConfig

CourseChangeHandler = Callable[[NodeRef, str, Vector], None]


@dataclass(frozen=True)
class CourseChange:
    t: float
    node: NodeRef
    path: str
    position: Vector


@dataclass(frozen=True)
class CourseChangeSubscription:
    node: NodeRef
    handler: CourseChangeHandler

    def __call__(self, path: str, position: Vector) -> None:
        self.handler(self.node, path, position)


class TraceSink:
    """Registers the optional observability hooks of one run.

    Capture, event log, course-change subscriptions and animation export are
    independent of each other; each one is enabled by its own config flag.
    Course-change handlers only observe: they are called synchronously by the
    mobility engine and never touch simulation state.
    """

    def __init__(
        self,
        engine: "Engine",
        config: "ScenarioConfig",
        run_dir: Path,
        logger: logging.Logger | None = None,
    ) -> None:
        self._engine = engine
        self._config = config
        self._run_dir = Path(run_dir)
        self._log = logger or logging.getLogger("manet.trace")
        self.subscriptions: List[CourseChangeSubscription] = []
        self.course_changes: List[CourseChange] = []

    def attach(self, clusters: Sequence["Cluster"], devices: Dict[str, DeviceSet]) -> TraceArtifacts:
        trace = self._config.trace
        artifacts = TraceArtifacts()

        if trace.pcap:
            for cluster in clusters:
                prefix = self._run_dir / trace.capture_name(cluster.name)
                artifacts.captures[cluster.name] = self._engine.trace.enable_capture(prefix, devices[cluster.name])

        if trace.ascii:
            artifacts.event_log = self._engine.trace.enable_event_log(self._run_dir / trace.ascii_file)

        if self._config.course_change:
            for cluster in clusters:
                for ref in cluster.nodes:
                    self.subscribe(ref, self._record_course_change)

        if trace.animation:
            path = self._run_dir / trace.animation_file
            exporter = self._engine.trace.animation(path)
            exporter.enable_metadata(trace.animation_metadata)
            artifacts.animation = path

        self._log.info(
            "trace hooks: captures=%s event_log=%s course_change=%s animation=%s",
            sorted(artifacts.captures),
            artifacts.event_log,
            len(self.subscriptions),
            artifacts.animation,
        )
        return artifacts

    def subscribe(self, node: NodeRef, handler: CourseChangeHandler) -> CourseChangeSubscription:
        sub = CourseChangeSubscription(node=node, handler=handler)
        self._engine.mobility.subscribe(node.node_id, sub)
        self.subscriptions.append(sub)
        return sub

    def _record_course_change(self, node: NodeRef, path: str, position: Vector) -> None:
        self.course_changes.append(
            CourseChange(t=self._engine.scheduler.now, node=node, path=path, position=position)
        )
        self._log.info("CourseChange %s x=%g, y=%g, z=%g", path, position.x, position.y, position.z)

    def release(self) -> None:
        self.subscriptions.clear()
