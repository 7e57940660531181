#!/usr/bin/env python3
# adlotto/results/analytics.py
"""
Turn the CSV rows appended by the runs into tables, figures and a short
markdown report.

    scenario.csv    one row per runs/scenario_min.py invocation (--csv_out)
    payout_cap.csv  rows from runs/exp_payout_cap.py (--csv_out)
"""
import argparse, sys
from pathlib import Path
import numpy as np
import pandas as pd
import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt

SCENARIO_METRICS = [
    "epochs", "generations", "payout_draws", "payout_distinct", "attendances",
    "votes_cast", "voting_rewards", "yield_reserve", "voting_reserve",
    "fees_collected", "keeper_runs", "keeper_failed",
]
STATS = ["mean", "std", "min", "max"]


def read_rows(path: Path):
    """DataFrame of `path`, or None when it is absent or unreadable."""
    if not path.is_file():
        return None
    try:
        df = pd.read_csv(path)
    except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        print(f"[skip] {path.name}: {e}", file=sys.stderr)
        return None
    return None if df.empty else df


def scenario_summary(df, by="selection"):
    if df is None:
        return pd.DataFrame()
    metrics = [m for m in SCENARIO_METRICS if m in df.columns]
    if not metrics:
        return pd.DataFrame()
    keys = [by] if by in df.columns else []
    grouped = df.groupby(keys, dropna=False) if keys else df.groupby(np.zeros(len(df), dtype=int))
    out = grouped[metrics].agg(STATS)
    out.columns = [f"{metric}_{stat}" for metric, stat in out.columns]
    out.insert(0, "runs", grouped.size())
    if {"payout_distinct_mean", "payout_draws_mean"} <= set(out.columns):
        draws = out["payout_draws_mean"].replace(0, np.nan)
        out["distinct_ratio"] = out["payout_distinct_mean"] / draws
    return out.reset_index(drop=not keys)


def conservation_failures(df):
    """Runs whose ledger total drifted from what was minted."""
    if df is None or not {"minted", "conserved_money"} <= set(df.columns):
        return pd.DataFrame()
    return df.loc[df["minted"] != df["conserved_money"]]


def payout_table(df):
    if df is None:
        return pd.DataFrame()
    out = (df.groupby(["cap", "viewers"])
             .agg(draws=("draws", "mean"),
                  distinct_mean=("distinct", "mean"),
                  distinct_std=("distinct", "std"),
                  expected_distinct=("expected_distinct", "mean"),
                  max_repeat=("max_repeat", "max"),
                  trials=("seed", "count"))
             .reset_index())
    out["distinct_ratio"] = out["distinct_mean"] / out["draws"].replace(0, np.nan)
    return out


def plot_by_cap(table, y, title, path: Path):
    if table.empty or y not in table.columns:
        return
    fig, ax = plt.subplots(figsize=(6, 4))
    for cap, sub in table.sort_values("viewers").groupby("cap"):
        ax.plot(sub["viewers"], sub[y], marker="o", label=f"cap={cap}")
        if y == "distinct_mean":
            ax.plot(sub["viewers"], sub["expected_distinct"], linestyle="--", color="grey")
    ax.set_xlabel("registered viewers")
    ax.set_ylabel(y)
    ax.set_title(title)
    ax.grid(True, alpha=.3)
    ax.legend()
    path.parent.mkdir(parents=True, exist_ok=True)
    fig.savefig(path, bbox_inches="tight", dpi=150)
    plt.close(fig)


def write_csv(df, path: Path):
    if df.empty:
        return
    path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(path, index=False)


def build_report(indir: Path, outdir: Path) -> Path:
    outdir.mkdir(parents=True, exist_ok=True)
    tables, figures = outdir / "tables", outdir / "figures"
    lines = ["# adlotto run summary\n"]

    scenario = read_rows(indir / "scenario.csv")
    summary = scenario_summary(scenario)
    if not summary.empty:
        bad = conservation_failures(scenario)
        write_csv(summary, tables / "scenario_summary.csv")
        write_csv(bad, tables / "conservation_failures.csv")
        lines += ["\n## Scenario runs\n",
                  f"- {len(scenario)} runs, see `tables/scenario_summary.csv`.\n",
                  f"- conservation failures: {len(bad)}\n"]

    caps = payout_table(read_rows(indir / "payout_cap.csv"))
    if not caps.empty:
        write_csv(caps, tables / "payout_cap_summary.csv")
        plot_by_cap(caps, "distinct_mean", "distinct payees per rotation", figures / "payout_distinct.png")
        plot_by_cap(caps, "distinct_ratio", "distinct / draws", figures / "payout_distinct_ratio.png")
        lines += ["\n## Payout sampling\n",
                  "Draws are with replacement; the dashed line is the expected number of "
                  "distinct payees. See `figures/` and `tables/payout_cap_summary.csv`.\n"]

    report = outdir / "report.md"
    report.write_text("".join(lines))
    return report


def main():
    ap = argparse.ArgumentParser(description="summarize adlotto run CSVs")
    ap.add_argument("--in", dest="indir", default=".", help="directory with scenario.csv / payout_cap.csv")
    ap.add_argument("--out", dest="outdir", default="./adlotto_outputs")
    args = ap.parse_args()
    report = build_report(Path(args.indir), Path(args.outdir))
    print(f"[ok] report written to {report}")

if __name__ == "__main__":
    main()
