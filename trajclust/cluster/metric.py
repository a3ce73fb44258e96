"""
Frame distance metrics used for centroid bookkeeping and sieve restoration.

A metric knows how to compute frame-frame, frame-centroid and
centroid-centroid distances. Every metric can be cloned so that worker
threads each own an instance with private scratch buffers.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Sequence

import numpy as np
from MDAnalysis.analysis.align import rotation_matrix
from MDAnalysis.analysis.rms import rmsd

from trajclust.cluster.matrix import DistanceMatrix


def _checked(value: float, what: str) -> float:
    value = float(value)
    if not np.isfinite(value) or value < 0.0:
        raise ValueError(f"Invalid {what} distance: {value!r}.")
    return value


class DistanceMetric(ABC):
    """
    Abstract interface for frame distances.
    Allows swapping a precomputed matrix for coordinate RMSD, etc.
    """

    @property
    @abstractmethod
    def n_frames(self) -> int:
        pass

    @abstractmethod
    def sample_distance(self, i: int, j: int) -> float:
        pass

    @abstractmethod
    def sample_to_centroid_distance(self, i: int, centroid: Any) -> float:
        pass

    @abstractmethod
    def centroid_to_centroid_distance(self, c1: Any, c2: Any) -> float:
        pass

    @abstractmethod
    def compute_centroid(self, frames: Sequence[int]) -> Any:
        pass

    @abstractmethod
    def clone(self) -> "DistanceMetric":
        pass


class MatrixMetric(DistanceMetric):
    """Distances looked up in a precomputed matrix; the centroid is the medoid frame."""

    def __init__(self, matrix: DistanceMatrix):
        self.matrix = matrix

    @property
    def n_frames(self) -> int:
        return self.matrix.sample_count()

    def sample_distance(self, i: int, j: int) -> float:
        if i == j:
            return 0.0
        return _checked(self.matrix.distance(i, j), "frame")

    def sample_to_centroid_distance(self, i: int, centroid: int) -> float:
        return self.sample_distance(i, int(centroid))

    def centroid_to_centroid_distance(self, c1: int, c2: int) -> float:
        return self.sample_distance(int(c1), int(c2))

    def compute_centroid(self, frames: Sequence[int]) -> int:
        idx = np.asarray(frames, dtype=np.int64)
        if idx.size == 0:
            raise ValueError("Cannot compute the centroid of an empty cluster.")
        sub = self.matrix.values[np.ix_(idx, idx)]
        # argmin returns the first (lowest frame) medoid on ties
        return int(idx[int(np.argmin(sub.sum(axis=1)))])

    def clone(self) -> "MatrixMetric":
        return MatrixMetric(self.matrix)


class EuclideanMetric(DistanceMetric):
    """Euclidean distance between per-frame feature vectors; the centroid is the member mean."""

    def __init__(self, features: np.ndarray):
        feats = np.asarray(features, dtype=np.float64)
        if feats.ndim == 1:
            feats = feats[:, None]
        if feats.ndim != 2:
            raise ValueError(f"Features must be (N, D) shaped. Got shape {feats.shape}.")
        self.features = feats
        self._diff = np.empty(feats.shape[1], dtype=np.float64)

    @property
    def n_frames(self) -> int:
        return int(self.features.shape[0])

    def _norm_to(self, i: int, other: np.ndarray, what: str) -> float:
        np.subtract(self.features[i], other, out=self._diff)
        return _checked(np.linalg.norm(self._diff), what)

    def sample_distance(self, i: int, j: int) -> float:
        return self._norm_to(i, self.features[j], "frame")

    def sample_to_centroid_distance(self, i: int, centroid: np.ndarray) -> float:
        return self._norm_to(i, centroid, "frame-centroid")

    def centroid_to_centroid_distance(self, c1: np.ndarray, c2: np.ndarray) -> float:
        return _checked(np.linalg.norm(np.asarray(c1) - np.asarray(c2)), "centroid")

    def compute_centroid(self, frames: Sequence[int]) -> np.ndarray:
        idx = np.asarray(frames, dtype=np.int64)
        if idx.size == 0:
            raise ValueError("Cannot compute the centroid of an empty cluster.")
        return self.features[idx].mean(axis=0)

    def clone(self) -> "EuclideanMetric":
        return EuclideanMetric(self.features)


class RMSDMetric(DistanceMetric):
    """
    Best-fit coordinate RMSD between frames.

    Coordinates are (n_frames, n_atoms, 3). The centroid is the average
    structure of the members after superposing each of them onto the first
    member.
    """

    def __init__(self, coordinates: np.ndarray, *, superposition: bool = True):
        coords = np.asarray(coordinates, dtype=np.float64)
        if coords.ndim != 3 or coords.shape[2] != 3:
            raise ValueError(f"Coordinates must be (n_frames, n_atoms, 3) shaped. Got shape {coords.shape}.")
        self.coordinates = coords
        self.superposition = superposition
        self._mobile = np.empty(coords.shape[1:], dtype=np.float64)

    @property
    def n_frames(self) -> int:
        return int(self.coordinates.shape[0])

    def _rmsd(self, a: np.ndarray, b: np.ndarray, what: str) -> float:
        value = rmsd(a, b, center=self.superposition, superposition=self.superposition)
        return _checked(value, what)

    def sample_distance(self, i: int, j: int) -> float:
        return self._rmsd(self.coordinates[i], self.coordinates[j], "frame")

    def sample_to_centroid_distance(self, i: int, centroid: np.ndarray) -> float:
        return self._rmsd(self.coordinates[i], centroid, "frame-centroid")

    def centroid_to_centroid_distance(self, c1: np.ndarray, c2: np.ndarray) -> float:
        return self._rmsd(c1, c2, "centroid")

    def compute_centroid(self, frames: Sequence[int]) -> np.ndarray:
        idx = np.asarray(frames, dtype=np.int64)
        if idx.size == 0:
            raise ValueError("Cannot compute the centroid of an empty cluster.")
        if not self.superposition:
            return self.coordinates[idx].mean(axis=0)
        ref = self.coordinates[idx[0]] - self.coordinates[idx[0]].mean(axis=0)
        total = np.zeros_like(ref)
        for frame in idx:
            np.subtract(self.coordinates[frame], self.coordinates[frame].mean(axis=0), out=self._mobile)
            rot, _ = rotation_matrix(self._mobile, ref)
            total += self._mobile @ np.asarray(rot).T
        return total / idx.size

    def clone(self) -> "RMSDMetric":
        return RMSDMetric(self.coordinates, superposition=self.superposition)
