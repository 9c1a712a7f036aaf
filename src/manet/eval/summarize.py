from __future__ import annotations

import argparse
import csv
from pathlib import Path

from manet.eval.metrics import compute_flow_metrics
from manet.utils.io import load_json

FIELDS = [
    "run_id",
    "name",
    "routing",
    "seed",
    "flow",
    "kind",
    "tx_packets",
    "rx_packets",
    "pdr",
    "throughput_kbps",
    "replies",
]


def summarize_runs(runs_dir: str, out_csv: str) -> int:
    runs_path = Path(runs_dir)
    rows = []
    for result_file in sorted(runs_path.rglob("run.json")):
        rows.extend(compute_flow_metrics(load_json(result_file)))

    out_path = Path(out_csv)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    with out_path.open("w", encoding="utf-8", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=FIELDS)
        writer.writeheader()
        for row in rows:
            writer.writerow(row)
    return len(rows)


def main() -> None:
    parser = argparse.ArgumentParser(description="Summarize per-flow results of scenario runs into CSV")
    parser.add_argument("--runs", required=True, help="Directory containing run folders")
    parser.add_argument("--out", required=True, help="Output CSV path")
    args = parser.parse_args()
    summarize_runs(args.runs, args.out)


if __name__ == "__main__":
    main()
