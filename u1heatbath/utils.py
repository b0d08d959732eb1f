# u1heatbath/utils.py
# =============================================================================
# EN: Run bookkeeping: wall-clock timing, the text run log, the measurement
#     CSV and a sweep progress bar.
# JA: 実行の記録まわり：経過時間、テキストの実行ログ、測定値 CSV、
#     スイープ進捗バー。
# =============================================================================

import csv
import math
import os
import sys
import time
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, TextIO


def format_seconds(seconds: float) -> str:
    """H:MM:SS, or ?:??:?? when the duration is unknown."""
    if not math.isfinite(seconds):
        return "?:??:??"
    hours, rest = divmod(int(seconds), 3600)
    minutes, secs = divmod(rest, 60)
    return f"{hours:d}:{minutes:02d}:{secs:02d}"


def timestamp() -> str:
    return datetime.now().strftime("%Y-%m-%d %H:%M:%S")


def ensure_dir(path: str) -> str:
    os.makedirs(path, exist_ok=True)
    return path


# -----------------------------------------------------------------------------
# Timer / タイマー
# -----------------------------------------------------------------------------
class Timer:
    """
    EN: perf_counter stopwatch; rate and ETA are per completed work item
        (sweeps, measurements).
    JA: perf_counter ベースのストップウォッチ。速度と残り時間は完了した作業単位
        （スイープ、測定）あたりで計算。
    """

    def __init__(self) -> None:
        self.start = time.perf_counter()

    def elapsed(self) -> float:
        return time.perf_counter() - self.start

    def rate(self, done: int) -> float:
        """Items per second so far."""
        dt = self.elapsed()
        return done / dt if dt > 0.0 else 0.0

    def eta(self, done: int, total: int) -> float:
        """Seconds left for `total - done` items at the current rate (nan before the first item)."""
        if done <= 0:
            return float("nan")
        return self.elapsed() * max(0, total - done) / done


# -----------------------------------------------------------------------------
# Run log / 実行ログ
# -----------------------------------------------------------------------------
class SimpleLogger:
    """
    EN: Appends "[timestamp] LEVEL message" lines to run.log; optionally echoes
        them to stdout. A resumed run keeps writing to the same file.
    JA: run.log に "[時刻] レベル メッセージ" 形式で追記し、必要なら標準出力にも出す。
        再開した実行も同じファイルに書き続ける。

    Example:
        with SimpleLogger("runs/b1.0/run.log", mirror_stdout=False) as log:
            log.info("equilibration done")
            log.dict({"beta": 1.0, "action": 0.41}, prefix="[meas 00010]")
    """

    def __init__(self, filepath: str, mirror_stdout: bool = True) -> None:
        ensure_dir(os.path.dirname(filepath) or ".")
        self.filepath = filepath
        self.mirror = mirror_stdout
        self._fp = open(filepath, "a", encoding="utf-8")

    def __enter__(self) -> "SimpleLogger":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def close(self) -> None:
        if not self._fp.closed:
            self._fp.close()

    def log(self, level: str, msg: str) -> None:
        line = f"[{timestamp()}] {level:<5} {msg}"
        print(line, file=self._fp, flush=True)
        if self.mirror:
            print(line, flush=True)

    def info(self, msg: str) -> None:
        self.log("INFO", msg)

    def warning(self, msg: str) -> None:
        self.log("WARN", msg)

    def dict(self, kv: Dict[str, Any], prefix: Optional[str] = None) -> None:
        """One line of key=value pairs."""
        body = " ".join(f"{k}={v}" for k, v in kv.items())
        self.info(f"{prefix} {body}" if prefix else body)


# -----------------------------------------------------------------------------
# Measurement CSV / 測定値 CSV
# -----------------------------------------------------------------------------
class MeasurementCSV:
    """
    EN: The append-only measurement table of a run. Rows are appended in
        batches; the header goes in only when the file is new or empty.
        drop_from() cuts rows written after the last checkpoint.
    JA: 実行の測定値テーブル（追記専用）。行はまとめて追記し、ヘッダは新規または
        空のファイルにだけ書く。drop_from() は最後のチェックポイント以降の行を削る。
    """

    def __init__(self, filepath: str, fieldnames: Optional[List[str]] = None) -> None:
        self.filepath = filepath
        self.fieldnames = list(fieldnames) if fieldnames else None

    def exists(self) -> bool:
        return os.path.exists(self.filepath) and os.path.getsize(self.filepath) > 0

    def append(self, rows: Iterable[Dict[str, Any]]) -> int:
        rows = list(rows)
        if not rows:
            return 0
        if self.fieldnames is None:
            raise ValueError("fieldnames are required to append measurements")
        ensure_dir(os.path.dirname(self.filepath) or ".")
        new_file = not self.exists()
        with open(self.filepath, "a", newline="", encoding="utf-8") as f:
            out = csv.DictWriter(f, fieldnames=self.fieldnames)
            if new_file:
                out.writeheader()
            out.writerows(rows)
        return len(rows)

    def drop_from(self, index: int, key: str = "measurement") -> int:
        """Remove rows whose `key` column is >= index; returns how many went."""
        if not self.exists():
            return 0
        with open(self.filepath, "r", newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)
            header = list(reader.fieldnames or [])
            rows = list(reader)
        kept = [r for r in rows if int(r[key]) < index]
        dropped = len(rows) - len(kept)
        if dropped:
            with open(self.filepath, "w", newline="", encoding="utf-8") as f:
                out = csv.DictWriter(f, fieldnames=header)
                out.writeheader()
                out.writerows(kept)
        return dropped


# -----------------------------------------------------------------------------
# Progress bar / 進捗バー
# -----------------------------------------------------------------------------
class ProgressBar:
    """
    EN: One-line sweep counter redrawn in place with rate and ETA.
    JA: その場で書き換える1行のスイープ進捗表示（速度と残り時間付き）。
    """

    def __init__(self, total: int, label: str = "", width: int = 30, stream: Optional[TextIO] = None):
        self.total = max(1, int(total))
        self.label = label
        self.width = max(10, int(width))
        self.stream = stream if stream is not None else sys.stdout
        self.timer = Timer()
        self.n = 0
        self._shown = 0

    def update(self, n: int) -> None:
        self.n = max(0, min(int(n), self.total))
        cells = self.n * self.width // self.total
        bar = "=" * cells + (">" if cells < self.width else "") + " " * max(0, self.width - cells - 1)
        text = (f"{self.label} [{bar}] {self.n}/{self.total} "
                f"{self.timer.rate(self.n):.1f}/s ETA {format_seconds(self.timer.eta(self.n, self.total))}")
        self.stream.write("\r" + text.ljust(self._shown))
        self._shown = len(text)
        if self.n == self.total:
            self.stream.write("\n")
        self.stream.flush()

    def close(self) -> None:
        if self.n < self.total:
            self.update(self.total)
