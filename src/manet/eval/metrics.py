from __future__ import annotations

from pathlib import Path
from typing import Dict, List


def compute_flow_metrics(run: Dict) -> List[Dict]:
    rows = []
    run_dir = run.get("run_dir")
    for app in run.get("apps", []):
        flow = app.get("flow")
        sender = app.get("sender", {})
        receiver = app.get("receiver", {})
        tx = int(sender.get("tx_packets", 0))
        rx = int(receiver.get("rx_by_flow", {}).get(flow, 0))
        avg_size = sender.get("tx_bytes", 0) / tx if tx else 0.0
        window = float(app.get("stop", 0.0)) - float(app.get("start", 0.0))
        rows.append(
            {
                "run_id": Path(run_dir).name if run_dir else None,
                "name": run.get("name"),
                "routing": run.get("routing"),
                "seed": run.get("seed"),
                "flow": flow,
                "kind": app.get("kind"),
                "tx_packets": tx,
                "rx_packets": rx,
                "pdr": round(rx / tx, 6) if tx else 0.0,
                "throughput_kbps": round(rx * avg_size * 8.0 / window / 1000.0, 3) if window > 0 else 0.0,
                "replies": sender.get("rx_packets", 0) if app.get("kind") == "request_response" else "",
            }
        )
    return rows
