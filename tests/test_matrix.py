import numpy as np
import pytest
from scipy.spatial.distance import pdist

from trajclust.cluster.matrix import DistanceMatrix


def test_rejects_invalid_matrices():
    with pytest.raises(ValueError, match="square"):
        DistanceMatrix(np.zeros((2, 3)))
    with pytest.raises(ValueError, match="non-finite"):
        DistanceMatrix(np.array([[0.0, np.nan], [np.nan, 0.0]]))
    with pytest.raises(ValueError, match="negative"):
        DistanceMatrix(np.array([[0.0, -1.0], [-1.0, 0.0]]))
    with pytest.raises(ValueError, match="symmetric"):
        DistanceMatrix(np.array([[0.0, 1.0], [2.0, 0.0]]))


def test_condensed_and_features_agree():
    feats = np.array([[0.0, 0.0], [3.0, 4.0], [6.0, 8.0]])
    from_feats = DistanceMatrix.from_features(feats)
    from_condensed = DistanceMatrix.from_condensed(pdist(feats))

    assert from_feats.sample_count() == 3
    assert from_feats.distance(0, 1) == pytest.approx(5.0)
    assert from_feats.distance(2, 0) == pytest.approx(10.0)
    assert np.allclose(from_feats.values, from_condensed.values)


def test_does_not_freeze_caller_array():
    values = np.array([[0.0, 1.0], [1.0, 0.0]])
    matrix = DistanceMatrix(values)
    values[0, 1] = 5.0

    assert matrix.distance(0, 1) == 1.0
    with pytest.raises(ValueError):
        matrix.row(0)[1] = 3.0


def test_regular_sieve():
    matrix = DistanceMatrix.from_features(np.arange(10, dtype=float))
    matrix.apply_sieve(3)

    assert matrix.active_frames().tolist() == [0, 3, 6, 9]
    assert matrix.ignored_frames().tolist() == [1, 2, 4, 5, 7, 8]
    assert matrix.is_ignored(1)
    assert not matrix.is_ignored(3)
    assert matrix.sieve_stride() == 3

    matrix.apply_sieve(1)
    assert matrix.ignored_frames().size == 0
    assert matrix.sieve_stride() == 1


def test_random_sieve_is_seeded():
    first = DistanceMatrix.from_features(np.arange(10, dtype=float))
    second = DistanceMatrix.from_features(np.arange(10, dtype=float))
    first.apply_sieve(3, random_state=42)
    second.apply_sieve(3, random_state=42)

    assert first.active_frames().size == 4
    assert np.array_equal(first.active_frames(), second.active_frames())


def test_explicit_ignored_rows():
    matrix = DistanceMatrix.from_features(np.arange(6, dtype=float))
    matrix.ignore_rows([1, 2, 5])

    assert matrix.active_frames().tolist() == [0, 3, 4]
    assert matrix.sieve_stride() is None

    matrix.ignore_rows([0])
    assert matrix.sieve_stride() is None

    with pytest.raises(ValueError, match="out of range"):
        matrix.ignore_rows([6])
