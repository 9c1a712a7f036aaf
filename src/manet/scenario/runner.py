from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from manet.core.errors import ConfigError, EngineError, SetupOrderError
from manet.core.types import InterfaceSet, RunReport, RunState, TraceArtifacts
from manet.scenario.addressing import AddressPlanner
from manet.scenario.cluster import Cluster, build_cluster
from manet.scenario.config import Scenario
from manet.scenario.mobility import MobilityAssigner
from manet.scenario.topology import TopologyBuilder
from manet.scenario.trace import TraceSink
from manet.scenario.traffic import TrafficPlan
from manet.scenario.validate import validate_scenario
from manet.utils.io import dump_json, ensure_dir, now_tag

if TYPE_CHECKING:
    from manet.backends.base import Engine


class ScenarioRunner:
    """Drives one scenario through Configuring -> Validated -> Built -> Running -> Completed.

    Validation failures move the runner to Aborted before any engine call is
    made. Build steps run in a fixed order: clusters and mobility, topology,
    addressing, traffic, trace hooks. An engine failure while running also
    ends in Aborted once the engine is destroyed and every handle released;
    the failure itself propagates unchanged.
    """

    def __init__(self, scenario: Scenario, engine: "Engine", logger: logging.Logger | None = None) -> None:
        self.scenario = scenario
        self._engine = engine
        self._log = logger or logging.getLogger("manet.runner")
        self.state = RunState.CONFIGURING
        self.run_dir: Optional[Path] = None
        self.clusters: List[Cluster] = []
        self.interfaces: Dict[str, InterfaceSet] = {}
        self.artifacts = TraceArtifacts()
        self._topology: Optional[TopologyBuilder] = None
        self._planner: Optional[AddressPlanner] = None
        self._traffic: Optional[TrafficPlan] = None
        self._trace: Optional[TraceSink] = None

    def _require(self, expected: RunState, action: str) -> None:
        if self.state is not expected:
            raise SetupOrderError(f"cannot {action} in state {self.state.value} (expected {expected.value})")

    def validate(self) -> None:
        self._require(RunState.CONFIGURING, "validate")
        errors = validate_scenario(self.scenario)
        if errors:
            self.state = RunState.ABORTED
            for err in errors:
                self._log.error("invalid scenario: %s", err)
            raise ConfigError("; ".join(errors))
        self.state = RunState.VALIDATED

    def build(self) -> None:
        self._require(RunState.VALIDATED, "build")
        cfg = self.scenario.config
        try:
            self.run_dir = ensure_dir(Path(cfg.output_dir) / f"{cfg.name}_{now_tag()}")

            assigner = MobilityAssigner(self._engine)
            self.clusters = [build_cluster(spec, self._engine, assigner) for spec in self.scenario.clusters]

            self._topology = TopologyBuilder(self._engine, cfg)
            self._topology.build_channel()
            devices = {c.name: self._topology.attach_wireless(c) for c in self.clusters}

            self._planner = AddressPlanner(self._engine)
            self.interfaces = {
                c.name: self._planner.assign(c, devices[c.name], c.spec.address_block) for c in self.clusters
            }

            self._traffic = TrafficPlan(self._engine, cfg, self._planner)
            for flow in self.scenario.flows:
                self._traffic.install_flow(flow)

            self._trace = TraceSink(self._engine, cfg, self.run_dir)
            self.artifacts = self._trace.attach(self.clusters, devices)
        except ConfigError:
            self.state = RunState.ABORTED
            raise
        self.state = RunState.BUILT
        self._log.info(
            "scenario %s built: %d clusters, %d nodes, %d flows",
            cfg.name,
            len(self.clusters),
            sum(len(c.nodes) for c in self.clusters),
            len(self.scenario.flows),
        )

    def run(self) -> RunReport:
        self._require(RunState.BUILT, "run")
        stop_time = self.scenario.config.stop_time
        self.state = RunState.RUNNING
        self._log.info("running scenario %s until t=%gs", self.scenario.config.name, stop_time)
        try:
            self._engine.scheduler.run(stop_time)
        except EngineError:
            self.state = RunState.ABORTED
            self._log.error("scenario %s failed at t=%gs", self.scenario.config.name, self._engine.scheduler.now)
            self._teardown()
            raise
        return self._complete()

    def execute(self) -> RunReport:
        self.validate()
        self.build()
        return self.run()

    def _flow_stats(self) -> List[Dict[str, Any]]:
        rows = []
        for flow, sender, receiver in self._traffic.installed:
            rows.append(
                {
                    "flow": flow.name,
                    "kind": flow.kind.value,
                    "source": flow.source,
                    "destination": flow.destination,
                    "start": flow.start,
                    "stop": flow.stop,
                    "sender": sender.stats(),
                    "receiver": receiver.stats(),
                }
            )
        return rows

    def _complete(self) -> RunReport:
        report = RunReport(
            state=RunState.COMPLETED,
            run_dir=self.run_dir,
            artifacts=self.artifacts,
            apps=self._flow_stats(),
            course_changes=len(self._trace.course_changes),
        )
        cfg = self.scenario.config
        payload = report.to_dict()
        payload.update(
            {"name": cfg.name, "seed": cfg.seed, "stop_time": cfg.stop_time, "routing": cfg.routing.protocol}
        )
        dump_json(self.run_dir / "run.json", payload)
        dump_json(self.run_dir / "config.effective.json", self.scenario.raw)

        self._teardown()
        self.state = RunState.COMPLETED
        self._log.info("scenario %s completed: %s", cfg.name, self.run_dir)
        return report

    def _teardown(self) -> None:
        self._engine.scheduler.destroy()
        self._release()

    def _release(self) -> None:
        for part in (self._topology, self._planner, self._traffic, self._trace):
            if part is not None:
                part.release()
        self._topology = None
        self._planner = None
        self._traffic = None
        self._trace = None
        self.clusters = []
        self.interfaces = {}
