"""Recursive V-cycle over a level hierarchy, usable as a preconditioner."""

from __future__ import annotations
import logging
import time
from collections import defaultdict

import numpy as np
import pandas as pd

from FEM.operators import Operator
from .hierarchy import Hierarchy

log = logging.getLogger(__name__)

OPERATIONS = ("operator", "smoother", "restriction", "prolongation", "coarse_solve")


class MultigridCycle(Operator):
    """One V-cycle from a zero initial guess: y = B x with B ~ A^-1.

    On level k > 0:
        pre-smooth  y += S (x - A y)      (pre_smoothing_steps times)
        restrict    r_c = P^T (x - A y),  r_c[ess_c] = 0
        recurse     e_c = cycle(k - 1, r_c)
        correct     y += P e_c
        post-smooth y += S (x - A y)      (post_smoothing_steps times)
    On level 0 the coarse solver is applied. Essential dofs return y[ess] = x[ess].

    Parameters
    ----------
    hierarchy : Hierarchy
    pre_smoothing_steps, post_smoothing_steps : int
    """

    def __init__(self, hierarchy: Hierarchy, pre_smoothing_steps: int = 3, post_smoothing_steps: int = 3):
        if pre_smoothing_steps < 0 or post_smoothing_steps < 0:
            raise ValueError("Smoothing steps must be non-negative")
        super().__init__(hierarchy.finest.operator.height)
        self.hierarchy = hierarchy
        self.pre_smoothing_steps = pre_smoothing_steps
        self.post_smoothing_steps = post_smoothing_steps
        self.cycles = 0
        self._stats = defaultdict(list)

    def _timed(self, operation: str, level: int, func, *args):
        t0 = time.perf_counter()
        out = func(*args)
        self._stats[(level, operation)].append(time.perf_counter() - t0)
        return out

    def _smooth(self, k: int, x: np.ndarray, y: np.ndarray, steps: int) -> np.ndarray:
        level = self.hierarchy[k]
        for _ in range(steps):
            r = x - self._timed("operator", k, level.operator.apply, y)
            y += self._timed("smoother", k, level.smoother.apply, r)
        return y

    def _cycle(self, k: int, x: np.ndarray) -> np.ndarray:
        level = self.hierarchy[k]
        if k == 0:
            return self._timed("coarse_solve", 0, level.coarse_solver.apply, x)

        coarse = self.hierarchy[k - 1]
        y = self._smooth(k, x, np.zeros_like(x), self.pre_smoothing_steps)

        r = x - self._timed("operator", k, level.operator.apply, y)
        r_c = self._timed("restriction", k, coarse.transfer.apply_transpose, r)
        r_c[coarse.ess_dofs] = 0.0

        e_c = self._cycle(k - 1, r_c)
        y += self._timed("prolongation", k, coarse.transfer.apply, e_c)

        y = self._smooth(k, x, y, self.post_smoothing_steps)
        y[level.ess_dofs] = x[level.ess_dofs]
        return y

    def apply(self, x):
        self.cycles += 1
        return self._cycle(self.hierarchy.num_levels - 1, np.asarray(x, dtype=np.float64))

    def reset_timings(self):
        self._stats.clear()
        self.cycles = 0

    def timings(self) -> pd.DataFrame:
        """Per level and operation: number of calls, total and mean wall time."""
        rows = [
            {
                "level": level,
                "operation": operation,
                "calls": len(times),
                "total_time": float(np.sum(times)),
                "mean_time": float(np.mean(times)),
            }
            for (level, operation), times in sorted(self._stats.items())
        ]
        return pd.DataFrame(rows, columns=["level", "operation", "calls", "total_time", "mean_time"])
