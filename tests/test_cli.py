import json

import numpy as np
import pytest

from trajclust.scripts import dbscan_matrix


def _save_matrix(tmp_path):
    positions = np.concatenate([np.linspace(0.0, 1.0, 8), np.linspace(10.0, 11.0, 8), [30.0]])
    values = np.abs(positions[:, None] - positions[None, :])
    path = tmp_path / "matrix.npy"
    np.save(path, values)
    return path


def test_cli_writes_npz(tmp_path, capsys):
    matrix_path = _save_matrix(tmp_path)
    output = tmp_path / "out" / "dbscan.npz"

    code = dbscan_matrix.main(
        [
            "--matrix", str(matrix_path),
            "--min-points", "2",
            "--epsilon", "0.5",
            "--output", str(output),
            "--print-summary",
        ]
    )

    assert code == 0
    with np.load(output) as data:
        assert data["labels"].tolist() == [0] * 8 + [1] * 8 + [-1]
        assert data["noise_frames"].tolist() == [16]
        assert data["cluster_distances"].shape == (2, 2)
    summary = json.loads(capsys.readouterr().out.split("\n", 1)[1])
    assert summary["n_clusters"] == 2
    assert summary["n_noise"] == 1


def test_cli_config_with_sieve(tmp_path, capsys):
    matrix_path = _save_matrix(tmp_path)
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        "dbscan:\n"
        "  minpoints: 2\n"
        "  epsilon: 0.5\n"
        "  sievetoframe: true\n"
        "sieve:\n"
        "  stride: 2\n"
        "n_workers: 2\n"
    )

    code = dbscan_matrix.main(["--matrix", str(matrix_path), "--config", str(config_path), "--print-summary"])

    assert code == 0
    summary = json.loads(capsys.readouterr().out)
    assert summary["sieve"] == {"n_sieved": 8, "n_noise": 0, "n_restored": 8}
    assert summary["cluster_sizes"] == [8, 8]
    assert summary["n_noise"] == 1


def test_cli_rejects_bad_epsilon(tmp_path):
    matrix_path = _save_matrix(tmp_path)
    with pytest.raises(SystemExit) as excinfo:
        dbscan_matrix.main(["--matrix", str(matrix_path), "--min-points", "2", "--epsilon", "-1"])
    assert excinfo.value.code == 2


def test_cli_reports_runtime_failure(tmp_path, capsys):
    code = dbscan_matrix.main(
        ["--matrix", str(tmp_path / "missing.npy"), "--min-points", "2", "--epsilon", "0.5"]
    )
    assert code == 1
    assert "Clustering failed" in capsys.readouterr().err
