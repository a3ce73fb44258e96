from __future__ import annotations

from typing import Any, Iterator, List, Sequence

import numpy as np

from trajclust.cluster.metric import DistanceMetric


class Cluster:
    """
    Frames belonging to one cluster plus its centroid.

    Members are sorted and unique on construction; afterwards frames are only
    appended. The centroid is not refreshed automatically: call
    ``recompute_centroid`` before any centroid-based distance query.
    """

    def __init__(self, frames: Sequence[int], num: int):
        self.num = int(num)
        self._frames: List[int] = [int(f) for f in np.unique(np.asarray(frames, dtype=np.int64))]
        self._centroid: Any = None

    def __repr__(self) -> str:
        return f"Cluster(num={self.num}, n_frames={len(self._frames)})"

    def __len__(self) -> int:
        return len(self._frames)

    def __iter__(self) -> Iterator[int]:
        return iter(self._frames)

    def __contains__(self, frame: object) -> bool:
        return frame in self._frames

    def member_indices(self) -> List[int]:
        return list(self._frames)

    def member_count(self) -> int:
        return len(self._frames)

    def member_at(self, idx: int) -> int:
        return self._frames[idx]

    def append_member(self, frame: int) -> None:
        self._frames.append(int(frame))

    @property
    def centroid(self) -> Any:
        if self._centroid is None:
            raise RuntimeError(f"Centroid of cluster {self.num} has not been computed.")
        return self._centroid

    @property
    def has_centroid(self) -> bool:
        return self._centroid is not None

    def recompute_centroid(self, metric: DistanceMetric) -> Any:
        self._centroid = metric.compute_centroid(self._frames)
        return self._centroid
