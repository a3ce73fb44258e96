"""
Density-based clustering (DBSCAN) of trajectory frames over a precomputed
distance matrix.

Ester, Kriegel, Sander, Xu; Proceedings of 2nd International Conference on
Knowledge Discovery and Data Mining (KDD-96); pp 226-231.

Frames are scanned in ascending index order. The scan order decides which
cluster a border frame joins (the first expansion that reaches it), so the
growing phase is strictly sequential. Frames that were sieved out of the
matrix are restored afterwards with ``restore_sieved``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

import numpy as np
from scipy.spatial.distance import squareform

from trajclust.cluster.matrix import DistanceMatrix
from trajclust.cluster.metric import DistanceMetric
from trajclust.cluster.node import Cluster
from trajclust.cluster.sieve import SieveReport, restore_sieved_frames
from trajclust.common.runtime import RuntimePolicy
from trajclust.common.types import FrameStatus, ProgressCallback, SievePolicy

logger = logging.getLogger("trajclust.dbscan")


@dataclass(frozen=True)
class DBSCANConfig:
    min_points: int
    epsilon: float
    sieve_restore: SievePolicy = SievePolicy.TO_CENTROID

    def __post_init__(self) -> None:
        min_points = self.min_points
        if isinstance(min_points, bool) or not isinstance(min_points, (int, np.integer)) or min_points < 1:
            raise ValueError("DBSCAN requires min_points to be set and >= 1.")
        try:
            epsilon = float(self.epsilon)
        except (TypeError, ValueError) as exc:
            raise ValueError("DBSCAN requires epsilon to be a number > 0.") from exc
        if not np.isfinite(epsilon) or epsilon <= 0.0:
            raise ValueError("DBSCAN requires epsilon to be set and > 0.")
        try:
            policy = SievePolicy(self.sieve_restore)
        except ValueError as exc:
            valid = ", ".join(p.value for p in SievePolicy)
            raise ValueError(f"sieve_restore must be one of: {valid}.") from exc
        object.__setattr__(self, "min_points", int(min_points))
        object.__setattr__(self, "epsilon", epsilon)
        object.__setattr__(self, "sieve_restore", policy)

    @classmethod
    def from_mapping(cls, params: Mapping[str, Any]) -> "DBSCANConfig":
        """Build from a config section, accepting the short ``minpoints``/``sievetoframe`` keys too."""
        min_points = params.get("min_points", params.get("minpoints"))
        epsilon = params.get("epsilon")
        if min_points is None:
            raise ValueError("DBSCAN requires min_points to be set and >= 1.")
        if epsilon is None:
            raise ValueError("DBSCAN requires epsilon to be set and > 0.")
        if "sieve_restore" in params:
            policy = params["sieve_restore"]
        elif params.get("sievetoframe"):
            policy = SievePolicy.TO_FRAME
        else:
            policy = SievePolicy.TO_CENTROID
        return cls(min_points=min_points, epsilon=epsilon, sieve_restore=policy)


@dataclass
class DBSCANResult:
    clusters: List[Cluster]
    status: np.ndarray
    cluster_distances: np.ndarray
    sieve_report: Optional[SieveReport] = None

    @property
    def n_clusters(self) -> int:
        return len(self.clusters)

    @property
    def n_frames(self) -> int:
        return int(self.status.shape[0])

    def noise_frames(self) -> np.ndarray:
        return np.flatnonzero(self.status == FrameStatus.NOISE)

    def labels(self) -> np.ndarray:
        """Cluster number per frame; -1 for noise and unassigned frames."""
        labels = np.full(self.n_frames, -1, dtype=np.int64)
        for cluster in self.clusters:
            labels[cluster.member_indices()] = cluster.num
        return labels

    def summary(self) -> Dict[str, Any]:
        summary: Dict[str, Any] = {
            "n_frames": self.n_frames,
            "n_clusters": self.n_clusters,
            "n_noise": int(self.noise_frames().size),
            "cluster_sizes": [c.member_count() for c in self.clusters],
        }
        if self.sieve_report is not None:
            summary["sieve"] = self.sieve_report.as_dict()
        return summary


@dataclass
class _RunState:
    """Mutable bookkeeping for one clustering pass."""

    matrix: DistanceMatrix
    frames: np.ndarray
    visited: np.ndarray
    status: np.ndarray
    clusters: List[Cluster] = field(default_factory=list)


class DBSCAN:
    def __init__(self, config: DBSCANConfig, *, runtime: RuntimePolicy = RuntimePolicy()):
        self.config = config
        self.runtime = runtime

    def describe(self) -> str:
        cfg = self.config
        lines = [
            "DBSCAN:",
            f"  Minimum pts to form cluster= {cfg.min_points}",
            f"  Cluster distance criterion= {cfg.epsilon:.3f}",
        ]
        if cfg.sieve_restore is SievePolicy.TO_CENTROID:
            lines.append("  Sieved frames will be added back solely based on their closeness to cluster centroids.")
        else:
            lines.append(
                f"  Sieved frames will only be added back if they are within {cfg.epsilon:.3f} "
                "of a frame in an existing cluster."
            )
        return "\n".join(lines)

    def _region_query(self, run: _RunState, point: int) -> List[int]:
        dists = run.matrix.row(point)[run.frames]
        if not np.all(np.isfinite(dists)):
            raise ValueError(f"Non-finite distance found in matrix row {point}.")
        hits = run.frames[dists < self.config.epsilon]
        return [int(f) for f in hits if f != point]

    def _expand(self, run: _RunState, point: int, neighbors: List[int]) -> List[int]:
        cluster_frames = [point]
        # Index-based loop: neighbors grows while it is being walked.
        idx = 0
        while idx < len(neighbors):
            neighbor = neighbors[idx]
            if not run.visited[neighbor]:
                run.visited[neighbor] = True
                neighbors2 = self._region_query(run, neighbor)
                if len(neighbors2) >= self.config.min_points:
                    neighbors.extend(neighbors2)
            if run.status[neighbor] != FrameStatus.IN_CLUSTER:
                cluster_frames.append(neighbor)
                run.status[neighbor] = FrameStatus.IN_CLUSTER
            idx += 1
        return cluster_frames

    def cluster(
        self,
        matrix: DistanceMatrix,
        metric: DistanceMetric,
        progress_callback: ProgressCallback = None,
    ) -> DBSCANResult:
        n_frames = matrix.sample_count()
        if metric.n_frames != n_frames:
            raise ValueError(
                f"Metric covers {metric.n_frames} frames but the distance matrix has {n_frames}."
            )
        run = _RunState(
            matrix=matrix,
            frames=matrix.active_frames(),
            visited=np.zeros(n_frames, dtype=bool),
            status=np.full(n_frames, FrameStatus.UNASSIGNED, dtype=np.int8),
        )
        n_active = int(run.frames.size)
        logger.info("Starting DBSCAN clustering of %d frames (%d sieved).", n_active, n_frames - n_active)
        report_every = max(1, n_active // 100)

        for iteration, point in enumerate(run.frames):
            point = int(point)
            if not run.visited[point]:
                run.visited[point] = True
                neighbors = self._region_query(run, point)
                if len(neighbors) < self.config.min_points:
                    logger.debug("Point %d: %d neighbors, NOISE", point, len(neighbors))
                    run.status[point] = FrameStatus.NOISE
                else:
                    logger.debug("Point %d: %d neighbors, new cluster %d", point, len(neighbors), len(run.clusters))
                    # Seed is not in its own region query; it is set here.
                    run.status[point] = FrameStatus.IN_CLUSTER
                    cluster_frames = self._expand(run, point, neighbors)
                    run.clusters.append(Cluster(cluster_frames, num=len(run.clusters)))
            if progress_callback and (iteration % report_every == 0 or iteration == n_active - 1):
                progress_callback(f"DBSCAN: {iteration + 1}/{n_active}", iteration + 1, n_active)

        for cluster in run.clusters:
            cluster.recompute_centroid(metric)
        result = DBSCANResult(
            clusters=run.clusters,
            status=run.status,
            cluster_distances=self.cluster_distance_matrix(run.clusters, metric),
        )
        logger.info(
            "DBSCAN found %d clusters, %d noise frames.", result.n_clusters, int(result.noise_frames().size)
        )
        return result

    @staticmethod
    def cluster_distance_matrix(clusters: List[Cluster], metric: DistanceMetric) -> np.ndarray:
        """Centroid-to-centroid distances in discovery order; centroids must be current."""
        n_clusters = len(clusters)
        if n_clusters == 0:
            return np.zeros((0, 0), dtype=np.float64)
        pairs = [
            metric.centroid_to_centroid_distance(clusters[i].centroid, clusters[j].centroid)
            for i in range(n_clusters)
            for j in range(i + 1, n_clusters)
        ]
        return squareform(np.asarray(pairs, dtype=np.float64), checks=False)

    def restore_sieved(
        self,
        result: DBSCANResult,
        matrix: DistanceMatrix,
        metric: DistanceMetric,
        *,
        n_workers: int = 1,
        progress_callback: ProgressCallback = None,
    ) -> SieveReport:
        report = restore_sieved_frames(
            result.clusters,
            matrix,
            metric,
            epsilon=self.config.epsilon,
            policy=self.config.sieve_restore,
            n_workers=n_workers,
            runtime=self.runtime,
            progress_callback=progress_callback,
        )
        result.status[report.restored_frames] = FrameStatus.IN_CLUSTER
        result.status[report.noise_frames] = FrameStatus.NOISE
        result.sieve_report = report
        return report

    def run(
        self,
        matrix: DistanceMatrix,
        metric: DistanceMetric,
        *,
        n_workers: int = 1,
        progress_callback: ProgressCallback = None,
    ) -> DBSCANResult:
        """Cluster the non-sieved frames, restore sieved ones, then refresh centroids."""
        logger.info(self.describe())
        result = self.cluster(matrix, metric, progress_callback=progress_callback)
        if matrix.ignored_frames().size:
            self.restore_sieved(result, matrix, metric, n_workers=n_workers, progress_callback=progress_callback)
            for cluster in result.clusters:
                cluster.recompute_centroid(metric)
        return result
