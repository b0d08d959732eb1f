# u1heatbath/plot_runs.py
"""
可視化ユーティリティ（実行ディレクトリ群 -> 図 & サマリ）
- 各実行の作用の時系列（action history）
- 各実行の作用のヒストグラム
- beta ごとの <action>（ビニング誤差付き）の比較図
- 集計表 runs_summary.csv

使い方:
  python -m u1heatbath.plot_runs runs/b* --outdir plots --bins 10 --skip 0

備考:
- 1つのディレクトリにつき run.json と action_measurements.csv が必要
- 同じ beta の実行が複数ある場合は格子サイズ W ごとに系列を分けて描く
"""
import argparse
import glob
import os
from pathlib import Path
from typing import List

import numpy as np
import pandas as pd
import matplotlib.pyplot as plt

from .analyze_runs import CSV_FILE, load_run, summarize_run


# ---------- helpers ----------
def ensure_dir(p: Path) -> None:
    p.mkdir(parents=True, exist_ok=True)


def run_label(meta: dict) -> str:
    start = "cold" if meta.get("ordered") else "hot"
    return f"β={meta.get('beta')} W={meta.get('lattice_width')} {start}"


def expand_dirs(patterns: List[str]) -> List[str]:
    dirs = []
    for pat in patterns:
        dirs.extend(glob.glob(pat))
    return sorted(d for d in set(dirs) if os.path.exists(os.path.join(d, CSV_FILE)))


# ---------- plots ----------
def plot_history(runs, path: Path) -> Path:
    """作用の時系列（横軸はスイープ数）"""
    plt.figure(figsize=(7.5, 4.2))
    for meta, df in runs:
        plt.plot(df["sweep"], df["action"], lw=0.8, alpha=0.85, label=run_label(meta))
    plt.xlabel("sweep")
    plt.ylabel("average plaquette action")
    plt.title("Action history")
    plt.grid(True, alpha=0.3)
    # 凡例が大きくなりすぎる場合もあるので、最大12個に制限
    handles, labels = plt.gca().get_legend_handles_labels()
    if handles:
        plt.legend(handles[:12], labels[:12], fontsize=8)
    plt.tight_layout()
    plt.savefig(path, dpi=150)
    plt.close()
    return path


def plot_histogram(runs, path: Path, skip: int = 0) -> Path:
    """作用のヒストグラム（先頭 skip 個は熱化とみなして除外）"""
    plt.figure(figsize=(7.5, 4.2))
    for meta, df in runs:
        a = df["action"].to_numpy(dtype=float)[skip:]
        if len(a):
            plt.hist(a, bins=30, alpha=0.6, label=run_label(meta))
    plt.xlabel("average plaquette action")
    plt.ylabel("count")
    plt.title("Distribution of action")
    plt.grid(True, alpha=0.3)
    handles, labels = plt.gca().get_legend_handles_labels()
    if handles:
        plt.legend(handles[:12], labels[:12], fontsize=8)
    plt.tight_layout()
    plt.savefig(path, dpi=150)
    plt.close()
    return path


def plot_beta_scan(summary: pd.DataFrame, path: Path) -> Path:
    """<action> vs beta（W ごとに系列、誤差棒はビニング誤差。無ければ素朴な誤差）"""
    plt.figure(figsize=(7.5, 6))
    for W, g in summary.groupby("lattice_width"):
        g = g.sort_values("beta")
        err = g["err_binned"].fillna(g["err_naive"]).fillna(0.0)
        plt.errorbar(g["beta"], g["mean_action"], yerr=err.values,
                     fmt="o-", ms=4, capsize=3, label=f"W={W}")
    plt.xlabel("β")
    plt.ylabel("<action>")
    plt.title("Average plaquette action vs β")
    plt.grid(True, alpha=0.3)
    plt.legend(fontsize=8)
    plt.tight_layout()
    plt.savefig(path, dpi=150)
    plt.close()
    return path


# ---------- main ----------
def main():
    ap = argparse.ArgumentParser(description="Plot/summary for u1heatbath run directories")
    ap.add_argument("patterns", nargs="+", help="実行ディレクトリ（glob 可）")
    ap.add_argument("--outdir", default="plots", help="出力ディレクトリ")
    ap.add_argument("--bins", type=int, default=10, help="ビニング誤差のビン数")
    ap.add_argument("--skip", type=int, default=0, help="先頭から捨てる測定数")
    args = ap.parse_args()

    dirs = expand_dirs(args.patterns)
    if not dirs:
        raise SystemExit(f"測定データのある実行ディレクトリが見つかりません: {args.patterns}")

    outdir = Path(args.outdir)
    ensure_dir(outdir)

    runs = [load_run(d) for d in dirs]
    summary = pd.DataFrame([summarize_run(d, n_bins=args.bins, skip=args.skip) for d in dirs])
    summary = summary.sort_values(["beta", "lattice_width"])
    summary.to_csv(outdir / "runs_summary.csv", index=False)

    plot_history(runs, outdir / "action_history.png")
    plot_histogram(runs, outdir / "action_hist.png", skip=args.skip)
    plot_beta_scan(summary, outdir / "action_vs_beta.png")

    print(f"Saved plots and tables -> {outdir}")
    print(" - action_history.png")
    print(" - action_hist.png")
    print(" - action_vs_beta.png")
    print(" - runs_summary.csv")
    print(f"Runs: {len(dirs)}  beta range: {np.nanmin(summary['beta'])} .. {np.nanmax(summary['beta'])}")
    print("Done.")


if __name__ == "__main__":
    main()
