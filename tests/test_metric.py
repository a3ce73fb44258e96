import numpy as np
import pytest

from trajclust.cluster.matrix import DistanceMatrix
from trajclust.cluster.metric import EuclideanMetric, MatrixMetric, RMSDMetric
from trajclust.cluster.node import Cluster


def _rotation_z(angle):
    c, s = np.cos(angle), np.sin(angle)
    return np.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def test_matrix_metric_medoid_centroid():
    matrix = DistanceMatrix.from_features(np.arange(5, dtype=float))
    metric = MatrixMetric(matrix)

    assert metric.compute_centroid([0, 1, 2, 3, 4]) == 2
    assert metric.compute_centroid([3, 4]) == 3
    assert metric.sample_to_centroid_distance(0, 2) == pytest.approx(2.0)
    assert metric.centroid_to_centroid_distance(1, 4) == pytest.approx(3.0)
    assert metric.sample_distance(3, 3) == 0.0


def test_euclidean_metric_distances():
    feats = np.array([[0.0, 0.0], [3.0, 4.0], [6.0, 8.0]])
    metric = EuclideanMetric(feats)
    centroid = metric.compute_centroid([0, 2])

    assert np.allclose(centroid, [3.0, 4.0])
    assert metric.sample_distance(0, 1) == pytest.approx(5.0)
    assert metric.sample_to_centroid_distance(1, centroid) == pytest.approx(0.0)
    assert metric.centroid_to_centroid_distance(centroid, feats[0]) == pytest.approx(5.0)


def test_clone_shares_data_but_not_scratch():
    metric = EuclideanMetric(np.random.default_rng(0).normal(size=(6, 3)))
    twin = metric.clone()

    assert twin is not metric
    assert twin.features is metric.features
    assert twin._diff is not metric._diff
    assert twin.sample_distance(1, 4) == metric.sample_distance(1, 4)


def test_invalid_distance_raises():
    metric = EuclideanMetric(np.array([[0.0], [np.nan]]))
    with pytest.raises(ValueError, match="Invalid frame distance"):
        metric.sample_distance(0, 1)
    with pytest.raises(ValueError, match="empty cluster"):
        metric.compute_centroid([])


def test_rmsd_metric_ignores_rigid_motion():
    rng = np.random.default_rng(2)
    base = rng.normal(size=(12, 3))
    moved = base @ _rotation_z(0.7).T + np.array([5.0, -2.0, 1.0])
    other = base + rng.normal(scale=0.5, size=base.shape)
    metric = RMSDMetric(np.stack([base, moved, other]))

    assert metric.sample_distance(0, 1) == pytest.approx(0.0, abs=1e-6)
    assert metric.sample_distance(0, 2) > 0.1

    centroid = metric.compute_centroid([0, 1])
    assert centroid.shape == (12, 3)
    assert metric.sample_to_centroid_distance(1, centroid) == pytest.approx(0.0, abs=1e-6)
    assert metric.centroid_to_centroid_distance(centroid, base) == pytest.approx(0.0, abs=1e-6)


def test_rmsd_metric_rejects_bad_shape():
    with pytest.raises(ValueError, match="n_atoms, 3"):
        RMSDMetric(np.zeros((4, 5)))


def test_cluster_container():
    cluster = Cluster([4, 1, 4, 2], num=3)
    assert cluster.member_indices() == [1, 2, 4]
    assert cluster.member_count() == 3
    assert cluster.member_at(1) == 2
    assert not cluster.has_centroid
    with pytest.raises(RuntimeError, match="not been computed"):
        _ = cluster.centroid

    cluster.append_member(0)
    assert list(cluster) == [1, 2, 4, 0]
    assert 0 in cluster
    assert len(cluster) == 4

    metric = EuclideanMetric(np.arange(5, dtype=float))
    assert cluster.recompute_centroid(metric)[0] == pytest.approx(1.75)
    assert cluster.centroid[0] == pytest.approx(1.75)
