"""
u1heatbath: heatbath Monte Carlo driver for 4D compact U(1) lattice gauge theory
=================================================================================
EN: Sample link configurations with the Wilson plaquette action and record the
    average action per plaquette along the Markov chain. Runs can be resumed
    from their last checkpoint.
JA: Wilson プラークエット作用でリンク配位をサンプリングし、マルコフ連鎖に沿って
    プラークエットあたりの平均作用を記録します。最後のチェックポイントから再開可能。

-------------------------------------------------------------------------------
Flow overview (処理の流れ)
-------------------------------------------------------------------------------

   ┌───────────────────────────────────────────┐
   │ 1. Setup                                  │
   │   - Parse args / RunConfig                │
   │   - Seed RandomSource                     │
   │   - Write run.json (or read it on resume) │
   └───────────────────────────────────────────┘
                        │
                        ▼
   ┌───────────────────────────────────────────┐
   │ 2. Lattice (格子)                          │
   │   - ordered → cold start (all θ = 0)      │
   │   - otherwise hot start (θ ~ U[0, 2π))    │
   └───────────────────────────────────────────┘
                        │
                        ▼
   ┌───────────────────────────────────────────┐
   │ 3. Equilibration (熱化)                    │
   │   - equilibration_sweeps heatbath sweeps  │
   │   - checkpoint.pt every checkpoint_every  │
   └───────────────────────────────────────────┘
                        │
                        ▼
   ┌───────────────────────────────────────────┐
   │ 4. Measurement loop                       │
   │   - sweeps_between_measurements sweeps    │
   │   - average action (+ Wilson loops)       │
   │   - every measurements_between_saves:     │
   │       append CSV rows + checkpoint.pt     │
   └───────────────────────────────────────────┘
                        │
                        ▼
   ┌───────────────────────────────────────────┐
   │ 5. Summary                                │
   │   - mean action ± naive error             │
   │   - optional SVG snapshot of a plane      │
   └───────────────────────────────────────────┘

Usage:
  python -m u1heatbath.simulate new --outdir runs/b1.0 --beta 1.0 --lattice_width 4 \
      --measurements 200 --equilibration_sweeps 100 \
      --sweeps_between_measurements 2 --measurements_between_saves 20 --seed 7
  python -m u1heatbath.simulate resume --outdir runs/b1.0 --measurements 400
"""

import os
import argparse
import json
import math
from typing import Dict, Any, List, Optional

import numpy as np
import torch

from .analyze_runs import load_measurements
from .gauge_field import U1GaugeField
from .heatbath import DEFAULT_MAX_TRIES, HeatbathEngine, SamplerError
from .random_source import RandomSource
from .utils import MeasurementCSV, ProgressBar, SimpleLogger, Timer, ensure_dir, format_seconds, timestamp
from .visualize import write_svg

META_FILE = "run.json"
CSV_FILE = "action_measurements.csv"
CKPT_FILE = "checkpoint.pt"
LOG_FILE = "run.log"


# ----------------------------------------------------------------------
# Config container
# ----------------------------------------------------------------------
DEFAULTS: Dict[str, Any] = {
    "outdir": "runs/u1",
    "beta": 1.0,
    "width": 4,
    "ordered": False,
    "measurements": None,
    "equilibration_sweeps": 100,
    "checkpoint_every": 100,
    "sweeps_between_measurements": 1,
    "measurements_between_saves": 10,
    "seed": None,
    "update": "sweep",
    "wilson": 0,
    "max_tries": DEFAULT_MAX_TRIES,
    "svg": None,
    "print_every": 10,
}

# keys persisted in run.json (run metadata)
META_KEYS = (
    "beta", "width", "ordered", "measurements", "equilibration_sweeps", "checkpoint_every",
    "sweeps_between_measurements", "measurements_between_saves",
    "seed", "update", "wilson", "max_tries",
)


class RunConfig:
    """
    EN: Holds all run settings (beta, lattice width, sweep counts, etc.).
    JA: 実行設定（beta、格子サイズ、スイープ回数など）を格納するコンテナ。
    """
    def __init__(self, **kwargs):
        self.__dict__.update(DEFAULTS)
        self.__dict__.update(kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.__dict__)


def validate_config(cfg: RunConfig) -> None:
    """Raise ValueError on settings the simulation cannot run with."""
    if cfg.measurements is None:
        raise ValueError("measurements is required for a new run")
    if int(cfg.width) < 1:
        raise ValueError(f"lattice width must be >= 1, got {cfg.width}")
    if not math.isfinite(float(cfg.beta)) or float(cfg.beta) <= 0.0:
        raise ValueError(f"beta must be a finite positive number, got {cfg.beta}")
    for key in ("measurements", "equilibration_sweeps", "sweeps_between_measurements", "wilson"):
        if int(getattr(cfg, key)) < 0:
            raise ValueError(f"{key} must be >= 0, got {getattr(cfg, key)}")
    for key in ("measurements_between_saves", "checkpoint_every"):
        if int(getattr(cfg, key)) < 1:
            raise ValueError(f"{key} must be >= 1, got {getattr(cfg, key)}")
    if cfg.update not in HeatbathEngine.MODES:
        raise ValueError(f"update must be one of {HeatbathEngine.MODES}, got {cfg.update!r}")
    if int(cfg.max_tries) < 1:
        raise ValueError(f"max_tries must be >= 1, got {cfg.max_tries}")


# ----------------------------------------------------------------------
# Persistence helpers
# ----------------------------------------------------------------------
def measurement_fields(cfg: RunConfig) -> List[str]:
    """CSV columns: measurement, sweep, action, then W(R,R) for R = 1..wilson."""
    return ["measurement", "sweep", "action"] + [
        f"wilson_{r}x{r}" for r in range(1, int(cfg.wilson) + 1)
    ]


def write_metadata(cfg: RunConfig) -> None:
    meta = {k: getattr(cfg, k) for k in META_KEYS}
    meta["lattice_width"] = meta.pop("width")
    meta["created"] = getattr(cfg, "created", None) or timestamp()
    with open(os.path.join(cfg.outdir, META_FILE), "w", encoding="utf-8") as f:
        json.dump(meta, f, indent=2)


def read_metadata(outdir: str) -> Dict[str, Any]:
    path = os.path.join(outdir, META_FILE)
    if not os.path.exists(path):
        raise FileNotFoundError(f"no {META_FILE} in {outdir}; nothing to resume")
    with open(path, "r", encoding="utf-8") as f:
        meta = json.load(f)
    meta["width"] = meta.pop("lattice_width")
    return meta


def save_checkpoint(cfg: RunConfig, engine: HeatbathEngine, measurements_done: int,
                    equilibration_done: int) -> str:
    """
    EN: Save lattice, RNG state and counters; written atomically via rename.
        equilibration_done counts the burn-in sweeps already applied.
    JA: 格子・乱数状態・カウンタを保存（一時ファイル→リネームで置き換え）。
        equilibration_done は実行済みの熱化スイープ数。
    """
    path = os.path.join(cfg.outdir, CKPT_FILE)
    tmp = path + ".tmp"
    torch.save({
        "field": engine.field.state_dict(),
        "rng": engine.rng.state_dict(),
        "measurements_done": int(measurements_done),
        "equilibration_done": int(equilibration_done),
        "sweeps_done": int(engine.sweeps_done),
    }, tmp)
    os.replace(tmp, path)
    return path


def load_checkpoint(outdir: str) -> Dict[str, Any]:
    path = os.path.join(outdir, CKPT_FILE)
    if not os.path.exists(path):
        raise FileNotFoundError(f"no {CKPT_FILE} in {outdir}; nothing to resume")
    return torch.load(path, map_location="cpu")


def truncate_measurements(outdir: str, done: int) -> int:
    """
    EN: Drop CSV rows with measurement >= done (rows written after the last
        checkpoint by an interrupted run). Returns the number of rows dropped.
    JA: チェックポイント以降に書かれた行（measurement >= done）を削除する。
    """
    return MeasurementCSV(os.path.join(outdir, CSV_FILE)).drop_from(done)


def measure(engine: HeatbathEngine, cfg: RunConfig, index: int) -> Dict[str, Any]:
    row = {
        "measurement": index,
        "sweep": engine.sweeps_done,
        "action": engine.read_action(),
    }
    for r in range(1, int(cfg.wilson) + 1):
        row[f"wilson_{r}x{r}"] = engine.field.wilson_loop(r, r)
    return row


def _read_actions(outdir: str) -> List[float]:
    df = load_measurements(outdir)
    return df["action"].astype(float).tolist()


# ----------------------------------------------------------------------
# Setup of a new or resumed run
# ----------------------------------------------------------------------
def _start_new(cfg: RunConfig):
    if os.path.exists(os.path.join(cfg.outdir, META_FILE)):
        raise FileExistsError(
            f"{cfg.outdir} already holds a run ({META_FILE}); use 'resume' or another --outdir"
        )
    ensure_dir(cfg.outdir)
    rng = RandomSource(cfg.seed)
    cfg.seed = rng.seed
    write_metadata(cfg)

    if cfg.ordered:
        field = U1GaugeField.create_uniform(int(cfg.width))
    else:
        field = U1GaugeField.create_random(int(cfg.width), rng)
    engine = HeatbathEngine(field, float(cfg.beta), rng, mode=cfg.update, max_tries=int(cfg.max_tries))
    save_checkpoint(cfg, engine, 0, 0)
    return engine, 0, 0


def _start_resume(cfg: RunConfig):
    meta = read_metadata(cfg.outdir)
    ckpt = load_checkpoint(cfg.outdir)

    merged = RunConfig(**{k: meta[k] for k in META_KEYS if k in meta})
    merged.created = meta.get("created")
    merged.outdir = cfg.outdir
    merged.svg = cfg.svg
    merged.print_every = cfg.print_every
    if cfg.measurements is not None:
        merged.measurements = int(cfg.measurements)
    validate_config(merged)
    write_metadata(merged)

    dropped = truncate_measurements(cfg.outdir, int(ckpt["measurements_done"]))

    rng = RandomSource(merged.seed)
    rng.load_state_dict(ckpt["rng"])
    field = U1GaugeField.from_state_dict(ckpt["field"])
    engine = HeatbathEngine(field, float(merged.beta), rng, mode=merged.update, max_tries=int(merged.max_tries))
    engine.sweeps_done = int(ckpt["sweeps_done"])
    eq_done = int(ckpt.get("equilibration_done", merged.equilibration_sweeps))
    return merged, engine, int(ckpt["measurements_done"]), eq_done, dropped


# ----------------------------------------------------------------------
# Core simulation loop
# ----------------------------------------------------------------------
def run_simulation(cfg: RunConfig, quiet: bool = False, resume: bool = False) -> Dict[str, Any]:
    """
    EN: Run (or resume) a Markov chain described by cfg, return summary dict.
    JA: cfg で指定されたマルコフ連鎖を実行（または再開）し、要約を辞書で返す。
    """
    clock = Timer()

    if resume:
        cfg, engine, done, eq_done, dropped = _start_resume(cfg)
    else:
        validate_config(cfg)
        engine, done, eq_done = _start_new(cfg)

    logger = SimpleLogger(os.path.join(cfg.outdir, LOG_FILE), mirror_stdout=not quiet)
    table = MeasurementCSV(os.path.join(cfg.outdir, CSV_FILE), measurement_fields(cfg))
    try:
        if resume:
            logger.info(f"Resuming {cfg.outdir} at measurement {done}/{cfg.measurements} "
                        f"(sweep {engine.sweeps_done}, equilibration {eq_done}/{cfg.equilibration_sweeps})")
            if dropped:
                logger.warning(f"Dropped {dropped} measurement rows written after the last checkpoint")
        else:
            logger.info(f"Starting new simulation in {cfg.outdir}")
            logger.dict({k: getattr(cfg, k) for k in META_KEYS}, prefix="CONFIG:")

        # --- burn in phase (checkpointed every checkpoint_every sweeps) ---
        eq_total = int(cfg.equilibration_sweeps)
        if eq_done < eq_total:
            every = int(cfg.checkpoint_every)
            pbar = None if quiet else ProgressBar(eq_total, label="equilibration")
            for n in range(eq_done + 1, eq_total + 1):
                engine.sweep()
                if n % every == 0 or n == eq_total:
                    save_checkpoint(cfg, engine, done, n)
                if pbar:
                    pbar.update(n)
            if pbar:
                pbar.close()
            logger.info(f"Equilibration done: sweeps={engine.sweeps_done} "
                        f"action={engine.read_action():.6f}")

        # --- measurements ---
        timer = Timer()
        pending: List[Dict[str, Any]] = []
        total = int(cfg.measurements)
        first = done
        while done < total:
            engine.sweep(int(cfg.sweeps_between_measurements))
            pending.append(measure(engine, cfg, done))
            done += 1

            if done % int(cfg.measurements_between_saves) == 0 or done == total:
                table.append(pending)
                pending.clear()
                save_checkpoint(cfg, engine, done, eq_total)

            if done % max(1, int(cfg.print_every)) == 0 or done == total:
                eta = timer.eta(done - first, total - first)
                logger.info(f"[meas {done:05d}/{total}] sweep={engine.sweeps_done} "
                            f"action={engine.read_action():.6f} ETA {format_seconds(eta)}")

        if cfg.svg:
            write_svg(engine.field, cfg.svg)
            logger.info(f"Wrote plaquette plane snapshot: {cfg.svg}")

        actions = _read_actions(cfg.outdir) if os.path.exists(os.path.join(cfg.outdir, CSV_FILE)) else []
        n = len(actions)
        mean = float(np.mean(actions)) if n else float("nan")
        err = float(np.std(actions, ddof=1) / math.sqrt(n)) if n > 1 else float("nan")
        total_time = clock.elapsed()
        logger.info(f"Finished: measurements={n} <action>={mean:.6f} ± {err:.6f} "
                    f"total time {total_time:.1f}s")
    finally:
        logger.close()

    return {
        "mean_action": mean,
        "stderr_action": err,
        "measurements": actions,
        "n_measurements": n,
        "sweeps_done": engine.sweeps_done,
        "seed": cfg.seed,
        "outdir": cfg.outdir,
        "total_time": total_time,
    }


# ----------------------------------------------------------------------
# CLI entrypoint
# ----------------------------------------------------------------------
def build_argparser() -> argparse.ArgumentParser:
    """
    EN: Build argument parser with 'new' and 'resume' subcommands.
    JA: 'new' と 'resume' サブコマンドを持つ引数パーサを構築する。
    """
    ap = argparse.ArgumentParser(
        description="Heatbath Monte Carlo for 4D compact U(1) lattice gauge theory (Wilson action)."
    )
    sub = ap.add_subparsers(dest="command", required=True)

    # ---------------- new ----------------
    new = sub.add_parser("new", help="EN: create a new run. JA: 新しい実行を作成。")
    new.add_argument(
        "--outdir", type=str, required=True,
        help="EN: Run directory (run.json, CSV, checkpoint, log). Must not hold a run. "
             "JA: 実行ディレクトリ。既存の実行があるとエラー。"
    )
    new.add_argument("--beta", type=float, required=True,
                     help="EN: Inverse coupling β. JA: 逆結合定数 β。")
    new.add_argument("--lattice_width", type=int, required=True,
                     help="EN: Lattice width W (W^4 sites). JA: 格子の一辺 W（W^4 サイト）。")
    new.add_argument("--ordered", action="store_true",
                     help="EN: Cold start (all angles 0). JA: コールドスタート（全角度 0）。")
    new.add_argument("--measurements", type=int, required=True,
                     help="EN: Number of measurements. JA: 測定回数。")
    new.add_argument("--equilibration_sweeps", type=int, required=True,
                     help="EN: Burn-in sweeps. JA: 熱化スイープ数。")
    new.add_argument("--checkpoint_every", type=int, default=100,
                     help="EN: Burn-in sweeps between checkpoints. JA: 熱化中のチェックポイント間隔（スイープ数）。")
    new.add_argument("--sweeps_between_measurements", type=int, required=True,
                     help="EN: Sweeps between measurements. JA: 測定間のスイープ数。")
    new.add_argument("--measurements_between_saves", type=int, required=True,
                     help="EN: Measurements per CSV flush + checkpoint. "
                          "JA: CSV 書き出しとチェックポイントの間隔（測定回数）。")
    new.add_argument("--seed", type=int, default=None,
                     help="EN: RNG seed. None = fresh seed (recorded in run.json). "
                          "JA: 乱数シード。未指定なら新規に生成して run.json に記録。")
    new.add_argument("--update", choices=HeatbathEngine.MODES, default="sweep",
                     help="EN: 'sweep' = ordered full sweeps, 'random' = random single-link updates. "
                          "JA: 'sweep' は順番に全リンク、'random' はランダムな単一リンク更新。")
    new.add_argument("--wilson", type=int, default=0,
                     help="EN: Also record W(R,R) for R = 1..N. JA: W(R,R)（R=1..N）も記録。")
    new.add_argument("--max_tries", type=int, default=DEFAULT_MAX_TRIES,
                     help="EN: Rejection cap of the angle sampler. JA: 角度サンプラーの棄却上限。")
    new.add_argument("--svg", type=str, default=None,
                     help="EN: Write an SVG of a plaquette plane at the end. "
                          "JA: 終了時にプラークエット平面の SVG を出力。")
    new.add_argument("--print_every", type=int, default=10,
                     help="EN: Log every N measurements. JA: N 回の測定ごとにログ出力。")
    new.add_argument("--quiet", action="store_true", help="EN: No stdout. JA: 標準出力なし。")

    # ---------------- resume ----------------
    res = sub.add_parser("resume", help="EN: continue a run from its checkpoint. JA: チェックポイントから再開。")
    res.add_argument("--outdir", type=str, required=True, help="EN: Run directory. JA: 実行ディレクトリ。")
    res.add_argument("--measurements", type=int, default=None,
                     help="EN: New total number of measurements (default: keep). "
                          "JA: 測定回数の新しい合計（未指定なら据え置き）。")
    res.add_argument("--svg", type=str, default=None)
    res.add_argument("--print_every", type=int, default=10)
    res.add_argument("--quiet", action="store_true")

    return ap


def main(argv: Optional[List[str]] = None):
    ap = build_argparser()
    args = ap.parse_args(argv)
    opts = vars(args)
    command = opts.pop("command")
    quiet = opts.pop("quiet")

    try:
        if command == "new":
            opts["width"] = opts.pop("lattice_width")
            results = run_simulation(RunConfig(**opts), quiet=quiet)
        else:
            results = run_simulation(RunConfig(**opts), quiet=quiet, resume=True)
    except (ValueError, SamplerError, FileExistsError, FileNotFoundError) as e:
        raise SystemExit(f"error: {e}")

    if not quiet:
        print("simulation complete")
    return results


if __name__ == "__main__":
    main()
