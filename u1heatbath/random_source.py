# u1heatbath/random_source.py
# =============================================================================
# EN: Explicit, seedable random source (uniform floats and fair coin flips).
# JA: 明示的に受け渡す乱数源（一様乱数とコイン投げ、シード固定可能）。
# =============================================================================

from __future__ import annotations
from typing import Any, Dict, Optional

import torch


class RandomSource:
    r"""
    EN: Wraps a CPU ``torch.Generator``. Scalars are served from a float64
        buffer refilled in blocks, so the hot heatbath loop does not pay one
        tensor allocation per draw. Same seed -> same stream.
    JA: CPU 上の ``torch.Generator`` をラップ。スカラーはブロック単位で補充する
        float64 バッファから取り出す（ホットループで毎回テンソルを作らない）。
        同じシードなら同じ乱数列。
    """

    def __init__(self, seed: Optional[int] = None, block: int = 4096) -> None:
        if block < 1:
            raise ValueError(f"block must be >= 1, got {block}")
        self.generator = torch.Generator(device="cpu")
        if seed is None:
            self.seed = int(self.generator.seed())
        else:
            self.seed = int(seed)
            self.generator.manual_seed(self.seed)
        self.block = int(block)
        self._buf: list = []
        self._pos = 0

    def _refill(self) -> None:
        self._buf = torch.rand(self.block, generator=self.generator, dtype=torch.float64).tolist()
        self._pos = 0

    # ----- scalar draws / スカラー -----
    def uniform(self) -> float:
        """Uniform float in [0, 1)."""
        if self._pos >= len(self._buf):
            self._refill()
        u = self._buf[self._pos]
        self._pos += 1
        return u

    def coin(self) -> bool:
        """Fair boolean."""
        return self.uniform() < 0.5

    def randint(self, n: int) -> int:
        """Uniform integer in [0, n)."""
        if n < 1:
            raise ValueError(f"randint needs n >= 1, got {n}")
        # min() guards the u*n == n rounding corner
        return min(int(self.uniform() * n), n - 1)

    # ----- bulk draws / 一括 -----
    def uniform_tensor(self, *shape: int) -> torch.Tensor:
        """float64 tensor of independent [0, 1) draws."""
        return torch.rand(*shape, generator=self.generator, dtype=torch.float64)

    # ----- checkpointing / チェックポイント -----
    def state_dict(self) -> Dict[str, Any]:
        return {
            "seed": self.seed,
            "block": self.block,
            "generator": self.generator.get_state(),
            "buffer": list(self._buf[self._pos:]),
        }

    def load_state_dict(self, state: Dict[str, Any]) -> None:
        self.seed = int(state["seed"])
        self.block = int(state["block"])
        self.generator.set_state(state["generator"])
        self._buf = list(state["buffer"])
        self._pos = 0
