from __future__ import annotations

import argparse
import copy
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from manet.backends.emu import EmuEngine
from manet.core.errors import ConfigError
from manet.routing.registry import available_routing
from manet.scenario.config import TRAFFIC_PRESETS, load_scenario
from manet.scenario.runner import ScenarioRunner
from manet.scenario.validate import validate_scenario


def _parse_bool(text: str) -> bool:
    value = str(text).strip().lower()
    if value in {"1", "true", "yes", "on"}:
        return True
    if value in {"0", "false", "no", "off"}:
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean value: {text!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="manet-run",
        description="Run a multi-cluster MANET scenario to completion and collect its traces.",
    )
    parser.add_argument("--config", help="YAML scenario file merged over the built-in defaults.")
    parser.add_argument("--stopTime", dest="stop_time", type=float, help="simulation stop time (seconds)")
    parser.add_argument(
        "--useCourseChangeCallback",
        dest="course_change",
        type=_parse_bool,
        nargs="?",
        const=True,
        help="whether to enable course change tracing",
    )
    parser.add_argument(
        "--traffic",
        choices=sorted(TRAFFIC_PRESETS),
        help="replace the configured flows with a built-in traffic pattern",
    )
    parser.add_argument("--routing", choices=available_routing(), help="routing variant for every node")
    parser.add_argument("--seed", type=int, help="seed for mobility and engine randomness")
    parser.add_argument("--outputDir", dest="output_dir", help="directory receiving the run folder")
    parser.add_argument("--enablePcap", dest="pcap", type=_parse_bool, help="per-cluster packet capture")
    parser.add_argument("--enableAscii", dest="ascii", type=_parse_bool, help="aggregated event log")
    parser.add_argument("--enableAnimation", dest="animation", type=_parse_bool, help="animation export")
    parser.add_argument("--validate", action="store_true", help="validate the scenario and exit")
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging verbosity.",
    )
    return parser


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for key in ("stop_time", "course_change", "seed", "output_dir"):
        value = getattr(args, key)
        if value is not None:
            out[key] = value
    if args.traffic:
        out["flows"] = copy.deepcopy(TRAFFIC_PRESETS[args.traffic])
    if args.routing:
        out["routing"] = {"protocol": args.routing}
    trace = {key: getattr(args, key) for key in ("pcap", "ascii", "animation") if getattr(args, key) is not None}
    if trace:
        out["trace"] = trace
    return out


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        scenario = load_scenario(args.config, cli_overrides(args))
        if args.validate:
            errors = validate_scenario(scenario)
            print(json.dumps({"ok": not errors, "errors": errors}, ensure_ascii=False, indent=2))
            return 1 if errors else 0
        runner = ScenarioRunner(scenario, EmuEngine(seed=scenario.config.seed))
        report = runner.execute()
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1
    print(f"Simulation completed: {report.run_dir}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
