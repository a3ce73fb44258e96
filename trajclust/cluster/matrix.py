"""
Pairwise frame distance matrix used by the density clustering engine.

The matrix is held in memory as a square float array. Rows can be marked as
ignored ("sieved") so that only a subset of frames takes part in the initial
clustering pass; the ignored frames are restored afterwards.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

import numpy as np
from scipy.spatial.distance import pdist, squareform


class DistanceMatrix:
    """Symmetric all-pairs frame distances with a per-row ignored flag."""

    def __init__(self, values: np.ndarray):
        arr = np.array(values, dtype=np.float64)
        if arr.ndim != 2 or arr.shape[0] != arr.shape[1]:
            raise ValueError(f"Distance matrix must be square (N, N). Got shape {arr.shape}.")
        if not np.all(np.isfinite(arr)):
            raise ValueError("Distance matrix contains non-finite values.")
        if np.any(arr < 0):
            raise ValueError("Distance matrix contains negative distances.")
        if not np.allclose(arr, arr.T):
            raise ValueError("Distance matrix is not symmetric.")
        self._values = arr
        self._values.setflags(write=False)
        self._ignored = np.zeros(arr.shape[0], dtype=bool)

    @classmethod
    def from_condensed(cls, condensed: np.ndarray) -> "DistanceMatrix":
        """Build from an upper-triangle vector in ``scipy.spatial.distance.pdist`` order."""
        vec = np.asarray(condensed, dtype=np.float64)
        if vec.ndim != 1:
            raise ValueError(f"Condensed distances must be 1-D. Got shape {vec.shape}.")
        return cls(squareform(vec, checks=False))

    @classmethod
    def from_features(cls, features: np.ndarray, metric: str = "euclidean") -> "DistanceMatrix":
        """Compute all pairwise distances between rows of a (N, D) feature array."""
        feats = np.asarray(features, dtype=np.float64)
        if feats.ndim == 1:
            feats = feats[:, None]
        if feats.ndim != 2:
            raise ValueError(f"Features must be (N, D) shaped. Got shape {feats.shape}.")
        if feats.shape[0] < 2:
            return cls(np.zeros((feats.shape[0], feats.shape[0])))
        return cls(squareform(pdist(feats, metric=metric)))

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------
    def sample_count(self) -> int:
        return int(self._values.shape[0])

    def __len__(self) -> int:
        return self.sample_count()

    def distance(self, i: int, j: int) -> float:
        return float(self._values[i, j])

    def row(self, i: int) -> np.ndarray:
        """Read-only view of all distances from frame ``i``."""
        return self._values[i]

    @property
    def values(self) -> np.ndarray:
        return self._values

    def is_ignored(self, i: int) -> bool:
        return bool(self._ignored[i])

    def ignored_frames(self) -> np.ndarray:
        return np.flatnonzero(self._ignored)

    def active_frames(self) -> np.ndarray:
        return np.flatnonzero(~self._ignored)

    # ------------------------------------------------------------------
    # Sieving
    # ------------------------------------------------------------------
    def ignore_rows(self, frames: Iterable[int]) -> None:
        """Mark an explicit set of frames as ignored, clearing any previous sieve."""
        idx = np.asarray(list(frames), dtype=np.int64)
        if idx.size and (idx.min() < 0 or idx.max() >= self.sample_count()):
            raise ValueError(f"Ignored frame index out of range (0..{self.sample_count() - 1}).")
        self._ignored[:] = False
        self._ignored[idx] = True

    def apply_sieve(self, sieve: int, *, random_state: Optional[int] = None) -> None:
        """
        Exclude frames from the initial clustering pass.

        With a regular sieve every ``sieve``-th frame (starting at 0) is kept.
        When ``random_state`` is given, ``ceil(N / sieve)`` frames are kept at
        random instead.
        """
        n_frames = self.sample_count()
        self._ignored[:] = False
        sieve = int(sieve)
        if sieve <= 1 or n_frames == 0:
            return
        if random_state is None:
            self._ignored[np.arange(n_frames) % sieve != 0] = True
            return
        rng = np.random.default_rng(random_state)
        n_keep = int(math.ceil(n_frames / sieve))
        keep = rng.choice(n_frames, size=n_keep, replace=False)
        self._ignored[:] = True
        self._ignored[keep] = False

    def sieve_stride(self) -> Optional[int]:
        """
        Detect the sieve in effect.

        Returns 1 when nothing is ignored, the stride when the kept frames are
        evenly spaced from frame 0, and None for an irregular (random) sieve.
        """
        kept = self.active_frames()
        if kept.size == self.sample_count():
            return 1
        if kept.size == 0 or kept[0] != 0:
            return None
        if kept.size == 1:
            return self.sample_count() if self.sample_count() > 1 else 1
        deltas = np.diff(kept)
        stride = int(deltas[0])
        if np.any(deltas != stride):
            return None
        # A regular sieve keeps every stride-th frame up to the end.
        if kept[-1] + stride < self.sample_count():
            return None
        return stride
