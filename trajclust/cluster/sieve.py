"""
Restore sieved frames into clusters found on the non-sieved subset.

Decisions are made per frame against read-only cluster state, so they run in a
thread pool where each task owns a clone of the distance metric. Frames are
appended to their clusters only after every decision is in.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import List, Sequence, Union

import numpy as np

from trajclust.cluster.matrix import DistanceMatrix
from trajclust.cluster.metric import DistanceMetric
from trajclust.cluster.node import Cluster
from trajclust.common.runtime import RuntimePolicy
from trajclust.common.types import ProgressCallback, SievePolicy

logger = logging.getLogger("trajclust.sieve")

NO_CLUSTER = -1


@dataclass(frozen=True)
class SieveReport:
    n_sieved: int
    n_noise: int
    n_restored: int
    restored_frames: np.ndarray
    noise_frames: np.ndarray

    def as_dict(self) -> dict:
        return {
            "n_sieved": self.n_sieved,
            "n_noise": self.n_noise,
            "n_restored": self.n_restored,
        }


def nearest_cluster(frame: int, clusters: Sequence[Cluster], metric: DistanceMetric) -> tuple[int, float]:
    """Position of the cluster whose centroid is closest to ``frame`` (first wins on ties)."""
    min_pos = NO_CLUSTER
    min_dist = np.inf
    for pos, cluster in enumerate(clusters):
        dist = metric.sample_to_centroid_distance(frame, cluster.centroid)
        if dist < min_dist:
            min_dist = dist
            min_pos = pos
    return min_pos, float(min_dist)


def _within_epsilon_of_member(frame: int, cluster: Cluster, metric: DistanceMetric, epsilon: float) -> bool:
    for cidx in range(cluster.member_count()):
        if metric.sample_distance(frame, cluster.member_at(cidx)) < epsilon:
            return True
    return False


def _decide_chunk(
    frames: np.ndarray,
    clusters: Sequence[Cluster],
    metric: DistanceMetric,
    epsilon: float,
    policy: SievePolicy,
) -> np.ndarray:
    targets = np.full(frames.shape[0], NO_CLUSTER, dtype=np.int64)
    for k, frame in enumerate(frames):
        pos, min_dist = nearest_cluster(int(frame), clusters, metric)
        if pos == NO_CLUSTER:
            continue
        if policy is SievePolicy.TO_CENTROID or min_dist < epsilon:
            targets[k] = pos
        elif _within_epsilon_of_member(int(frame), clusters[pos], metric, epsilon):
            targets[k] = pos
    return targets


def restore_sieved_frames(
    clusters: List[Cluster],
    matrix: DistanceMatrix,
    metric: DistanceMetric,
    *,
    epsilon: float,
    policy: Union[SievePolicy, str] = SievePolicy.TO_CENTROID,
    n_workers: int = 1,
    runtime: RuntimePolicy = RuntimePolicy(),
    progress_callback: ProgressCallback = None,
) -> SieveReport:
    """
    Add every ignored frame of ``matrix`` to its nearest cluster, or discard it as noise.

    All cluster centroids must be up to date before calling. With
    ``SievePolicy.TO_FRAME`` a frame is only accepted when its nearest
    centroid, or at least one member of the nearest cluster, lies within
    ``epsilon``. Existing members are never moved; frames are only appended.
    """
    policy = SievePolicy(policy)
    if not np.isfinite(epsilon) or epsilon <= 0:
        raise ValueError("epsilon must be a finite number > 0.")

    sieved = matrix.ignored_frames()
    n_sieved = int(sieved.size)
    if policy is SievePolicy.TO_CENTROID:
        logger.info("Restoring sieved frames by closeness to existing centroids.")
    else:
        logger.info("Restoring sieved frames if within %.3f of frame in nearest cluster.", epsilon)

    targets = np.full(n_sieved, NO_CLUSTER, dtype=np.int64)
    if n_sieved and clusters:
        workers = runtime.resolve_workers(n_workers, n_sieved)
        if progress_callback:
            progress_callback("Restoring sieved frames...", 0, n_sieved)
        if workers == 1:
            targets[:] = _decide_chunk(sieved, clusters, metric.clone(), epsilon, policy)
            if progress_callback:
                progress_callback(f"Restoring sieved frames: {n_sieved}/{n_sieved}", n_sieved, n_sieved)
        else:
            logger.info("Parallelizing sieve restoration with %d threads.", workers)
            chunks = [c for c in np.array_split(np.arange(n_sieved), workers) if c.size]
            done = 0
            with ThreadPoolExecutor(max_workers=workers) as executor:
                futures = {
                    executor.submit(_decide_chunk, sieved[chunk], clusters, metric.clone(), epsilon, policy): chunk
                    for chunk in chunks
                }
                for fut in as_completed(futures):
                    chunk = futures[fut]
                    targets[chunk] = fut.result()
                    done += int(chunk.size)
                    if progress_callback:
                        progress_callback(f"Restoring sieved frames: {done}/{n_sieved}", done, n_sieved)

    # Mutation phase: single-threaded, ascending frame order.
    for frame, pos in zip(sieved, targets):
        if pos != NO_CLUSTER:
            clusters[int(pos)].append_member(int(frame))

    accepted = targets != NO_CLUSTER
    report = SieveReport(
        n_sieved=n_sieved,
        n_noise=int(n_sieved - accepted.sum()),
        n_restored=int(accepted.sum()),
        restored_frames=sieved[accepted],
        noise_frames=sieved[~accepted],
    )
    logger.info("%d of %d sieved frames were discarded as noise.", report.n_noise, report.n_sieved)
    return report
