"""Run summaries, error estimates and plots."""

import json
import math
import sys

import matplotlib
matplotlib.use("Agg")

import numpy as np
import pandas as pd
import pytest

from u1heatbath import analyze_runs, plot_runs
from u1heatbath.analyze_runs import (
    binned_error, integrated_autocorr_time, load_run, summarize_run,
)


def make_run(root, name, beta, actions, width=2):
    d = root / name
    d.mkdir()
    meta = {"beta": beta, "lattice_width": width, "ordered": True, "update": "sweep",
            "measurements": len(actions)}
    (d / "run.json").write_text(json.dumps(meta), encoding="utf-8")
    pd.DataFrame({
        "measurement": range(len(actions)),
        "sweep": range(1, len(actions) + 1),
        "action": actions,
    }).to_csv(d / "action_measurements.csv", index=False)
    return d


class TestStatistics:

    def test_binned_error(self):
        mean, err = binned_error(np.arange(20.0), n_bins=4)
        assert mean == pytest.approx(9.5)
        # bin means 2, 7, 12, 17
        assert err == pytest.approx(np.std([2, 7, 12, 17], ddof=1) / 2)

    def test_binned_error_invalid(self):
        with pytest.raises(ValueError):
            binned_error([1.0, 2.0, 3.0], n_bins=1)
        with pytest.raises(ValueError):
            binned_error([1.0, 2.0, 3.0], n_bins=4)

    def test_tau_constant_and_anticorrelated(self):
        assert integrated_autocorr_time(np.ones(50)) == 0.5
        assert integrated_autocorr_time([1.0, -1.0] * 50) == 0.5

    def test_tau_correlated_series(self):
        rng = np.random.default_rng(0)
        x = np.zeros(5000)
        for t in range(1, len(x)):
            x[t] = 0.9 * x[t - 1] + rng.normal()
        tau = integrated_autocorr_time(x)
        # exact value (1 + 0.9) / (2 * 0.1) = 9.5
        assert 5.0 < tau < 14.0
        assert integrated_autocorr_time(x, window=1) == pytest.approx(0.5 + 0.9, abs=0.05)


class TestSummaries:

    def test_load_and_summarize(self, tmp_path):
        actions = [0.40 + 0.01 * math.sin(k) for k in range(40)]
        d = make_run(tmp_path, "b1", 1.0, actions)
        meta, df = load_run(str(d))
        assert meta["beta"] == 1.0
        assert len(df) == 40

        row = summarize_run(str(d), n_bins=4, skip=0)
        assert row["beta"] == 1.0
        assert row["lattice_width"] == 2
        assert row["n"] == 40
        assert row["mean_action"] == pytest.approx(np.mean(actions))
        assert row["err_naive"] > 0.0
        assert not math.isnan(row["err_binned"])
        assert row["tau_int"] >= 0.5

        skipped = summarize_run(str(d), n_bins=4, skip=10)
        assert skipped["n"] == 30

    def test_cli_summary(self, tmp_path, monkeypatch, capsys):
        make_run(tmp_path, "b2", 2.0, [0.2, 0.21, 0.19, 0.2] * 10)
        make_run(tmp_path, "b1", 1.0, [0.4, 0.41, 0.39, 0.4] * 10)
        out = tmp_path / "summary.csv"
        monkeypatch.setattr(sys, "argv", ["analyze_runs", str(tmp_path / "b*"), "--out", str(out), "--bins", "4"])
        analyze_runs.main()
        df = pd.read_csv(out)
        assert df["beta"].tolist() == [1.0, 2.0]
        assert "Runs seen: 2" in capsys.readouterr().out


class TestPlots:

    def test_plot_functions(self, tmp_path):
        d1 = make_run(tmp_path, "b1", 1.0, [0.4, 0.42, 0.38] * 10)
        d2 = make_run(tmp_path, "b2", 2.0, [0.2, 0.22, 0.18] * 10)
        runs = [load_run(str(d1)), load_run(str(d2))]
        summary = pd.DataFrame([summarize_run(str(d1), n_bins=5), summarize_run(str(d2), n_bins=5)])

        assert plot_runs.plot_history(runs, tmp_path / "h.png").exists()
        assert plot_runs.plot_histogram(runs, tmp_path / "hist.png", skip=3).exists()
        assert plot_runs.plot_beta_scan(summary, tmp_path / "scan.png").exists()

    def test_cli_plots(self, tmp_path, monkeypatch):
        make_run(tmp_path, "b1", 1.0, [0.4, 0.42, 0.38] * 10)
        outdir = tmp_path / "plots"
        monkeypatch.setattr(sys, "argv", ["plot_runs", str(tmp_path / "b*"), "--outdir", str(outdir), "--bins", "5"])
        plot_runs.main()
        for name in ("action_history.png", "action_hist.png", "action_vs_beta.png", "runs_summary.csv"):
            assert (outdir / name).exists()
