from __future__ import annotations

import argparse
import csv
from pathlib import Path


def plot_summary(input_csv: str, out_png: str) -> None:
    try:
        import matplotlib

        matplotlib.use("Agg")
        import matplotlib.pyplot as plt
    except ImportError as exc:  # pragma: no cover
        raise RuntimeError("matplotlib is required for plotting (pip install manet-scenario[plot])") from exc

    rows = []
    with Path(input_csv).open("r", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        for row in reader:
            rows.append(row)

    names = [f"{r['run_id']}:{r['flow']}" for r in rows]
    pdr = [float(r["pdr"]) if r["pdr"] not in {"", "None"} else 0.0 for r in rows]

    plt.figure(figsize=(10, 4))
    plt.bar(range(len(names)), pdr)
    plt.xticks(range(len(names)), names, rotation=75, fontsize=8)
    plt.ylabel("Packet Delivery Ratio")
    plt.ylim(0.0, 1.05)
    plt.tight_layout()
    Path(out_png).parent.mkdir(parents=True, exist_ok=True)
    plt.savefig(out_png, dpi=150)
    plt.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Plot per-flow delivery ratio from a summary CSV")
    parser.add_argument("--in", dest="input_csv", required=True)
    parser.add_argument("--out", dest="out_png", required=True)
    args = parser.parse_args()
    plot_summary(args.input_csv, args.out_png)
