# u1heatbath/analyze_runs.py
"""
EN: Summarize one or more run directories (run.json + action_measurements.csv):
    mean action, naive and binned errors, integrated autocorrelation time.
JA: 実行ディレクトリ（run.json + action_measurements.csv）を集計します：
    平均作用、素朴な誤差とビニング誤差、積分自己相関時間。

Usage:
  python -m u1heatbath.analyze_runs runs/b* --out runs_summary.csv --bins 10 --skip 0
"""

import argparse
import glob
import json
import math
import os
from typing import Any, Dict, Optional, Tuple

import numpy as np
import pandas as pd

META_FILE = "run.json"
CSV_FILE = "action_measurements.csv"


# --- loading -----------------------------------------------------------------

def load_metadata(rundir: str) -> Dict[str, Any]:
    with open(os.path.join(rundir, META_FILE), "r", encoding="utf-8") as f:
        return json.load(f)


def load_measurements(rundir: str) -> pd.DataFrame:
    """Measurement table of a run, sorted by measurement index."""
    df = pd.read_csv(os.path.join(rundir, CSV_FILE))
    return df.sort_values("measurement").reset_index(drop=True)


def load_run(rundir: str) -> Tuple[Dict[str, Any], pd.DataFrame]:
    return load_metadata(rundir), load_measurements(rundir)


# --- statistics --------------------------------------------------------------

def binned_error(values, n_bins: int = 10) -> Tuple[float, float]:
    """
    EN: Mean and standard error from n_bins equal bins (trailing remainder is
        dropped from the error estimate, not from the mean).
    JA: n_bins 個の等分ビンの平均から標準誤差を求める（余りは誤差推定から除外）。
    """
    x = np.asarray(values, dtype=float)
    if n_bins < 2:
        raise ValueError(f"need at least 2 bins, got {n_bins}")
    if len(x) < n_bins:
        raise ValueError(f"need at least {n_bins} values for {n_bins} bins, got {len(x)}")
    size = len(x) // n_bins
    bins = x[: size * n_bins].reshape(n_bins, size).mean(axis=1)
    return float(x.mean()), float(bins.std(ddof=1) / math.sqrt(n_bins))


def autocorrelation(values) -> np.ndarray:
    """Normalized autocorrelation function rho(t), rho(0) = 1."""
    x = np.asarray(values, dtype=float)
    x = x - x.mean()
    n = len(x)
    var = float(np.dot(x, x)) / n if n else 0.0
    if var == 0.0:
        rho = np.zeros(n)
        if n:
            rho[0] = 1.0
        return rho
    return np.array([np.dot(x[: n - t], x[t:]) / (n * var) for t in range(n)])


def integrated_autocorr_time(values, window: Optional[int] = None) -> float:
    """
    EN: tau_int = 1/2 + sum_{t=1}^{window} rho(t). Without an explicit window
        the sum stops before the first non-positive rho(t).
    JA: 積分自己相関時間。window 未指定なら最初に rho(t) <= 0 となる手前で打ち切る。
    """
    rho = autocorrelation(values)
    tau = 0.5
    upper = len(rho) - 1 if window is None else min(int(window), len(rho) - 1)
    for t in range(1, upper + 1):
        if window is None and rho[t] <= 0.0:
            break
        tau += float(rho[t])
    return tau


def summarize_run(rundir: str, n_bins: int = 10, skip: int = 0) -> Dict[str, Any]:
    """
    EN: One summary row for a run; the first `skip` measurements are dropped.
    JA: 1つの実行の要約行。先頭 `skip` 個の測定値は捨てる。
    """
    meta, df = load_run(rundir)
    a = df["action"].to_numpy(dtype=float)[skip:]
    n = len(a)
    row: Dict[str, Any] = {
        "rundir": rundir,
        "beta": meta.get("beta"),
        "lattice_width": meta.get("lattice_width"),
        "ordered": meta.get("ordered"),
        "update": meta.get("update"),
        "n": n,
        "mean_action": float(a.mean()) if n else float("nan"),
        "err_naive": float(a.std(ddof=1) / math.sqrt(n)) if n > 1 else float("nan"),
        "err_binned": float("nan"),
        "tau_int": integrated_autocorr_time(a) if n > 1 else float("nan"),
    }
    if n >= 2 * n_bins:
        row["err_binned"] = binned_error(a, n_bins)[1]
    return row


def main():
    ap = argparse.ArgumentParser(description="Summarize u1heatbath run directories")
    ap.add_argument("patterns", nargs="+", help="run directories or glob patterns")
    ap.add_argument("--out", type=str, default="runs_summary.csv")
    ap.add_argument("--bins", type=int, default=10)
    ap.add_argument("--skip", type=int, default=0, help="drop the first N measurements")
    args = ap.parse_args()

    dirs = []
    for pat in args.patterns:
        dirs.extend(glob.glob(pat))
    dirs = sorted(d for d in set(dirs) if os.path.exists(os.path.join(d, CSV_FILE)))

    rows = []
    for d in dirs:
        try:
            rows.append(summarize_run(d, n_bins=args.bins, skip=args.skip))
        except (OSError, ValueError, KeyError, pd.errors.ParserError) as e:
            # keep a row so the failure shows up in the table
            rows.append({"rundir": d, "parse_error": str(e)})

    print(f"Runs seen: {len(dirs)}")
    if not rows:
        raise SystemExit("no run directories with measurements found")

    df = pd.DataFrame(rows)
    if "beta" in df.columns:
        df = df.sort_values(["beta", "lattice_width"], na_position="last")
    df.to_csv(args.out, index=False)
    print(f"Wrote: {args.out}  (rows={len(df)})")

    for _, r in df.iterrows():
        if isinstance(r.get("parse_error"), str):
            print(f"  {r['rundir']}: parse error: {r['parse_error']}")
            continue
        print(f"  beta={r['beta']:<6} W={r['lattice_width']:<3} n={r['n']:<6} "
              f"<S>={r['mean_action']:.6f} ± {r['err_binned']:.6f} (naive {r['err_naive']:.6f})  "
              f"tau_int={r['tau_int']:.2f}  {r['rundir']}")


if __name__ == "__main__":
    main()
