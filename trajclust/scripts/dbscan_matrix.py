from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Dict

import numpy as np


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="DBSCAN-cluster frames from a precomputed pairwise distance matrix (.npy).",
    )
    parser.add_argument("--matrix", required=True, help="Square (N, N) distance matrix saved with numpy.save.")
    parser.add_argument("--config", help="YAML file with 'dbscan', 'sieve' and 'n_workers' sections.")
    parser.add_argument("--min-points", type=int)
    parser.add_argument("--epsilon", type=float)
    parser.add_argument("--sieve", type=int, help="Cluster every Nth frame first, restore the rest afterwards.")
    parser.add_argument("--random-sieve-seed", type=int, help="Pick sieved frames at random with this seed.")
    parser.add_argument(
        "--sieve-to-frame",
        action="store_true",
        help="Only restore sieved frames within epsilon of a frame in the nearest cluster.",
    )
    parser.add_argument("--n-workers", type=int, help="Threads for sieve restoration (default=1; 0=all cpus).")
    parser.add_argument("--output", help="Write labels/status/cluster distances to this NPZ path.")
    parser.add_argument("--print-summary", action="store_true", help="Print the run summary JSON to stdout.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log per-frame DBSCAN decisions.")
    return parser


def _merge_options(args: argparse.Namespace, config: Dict[str, Any]) -> Dict[str, Any]:
    dbscan = dict(config.get("dbscan") or {})
    sieve = dict(config.get("sieve") or {})
    if args.min_points is not None:
        dbscan["min_points"] = args.min_points
    if args.epsilon is not None:
        dbscan["epsilon"] = args.epsilon
    if args.sieve_to_frame:
        dbscan["sieve_restore"] = "to_frame"
    if args.sieve is not None:
        sieve["stride"] = args.sieve
    if args.random_sieve_seed is not None:
        sieve["random_state"] = args.random_sieve_seed
    n_workers = args.n_workers if args.n_workers is not None else config.get("n_workers", 1)
    if n_workers is None or int(n_workers) <= 0:
        n_workers = os.cpu_count() or 1
    return {"dbscan": dbscan, "sieve": sieve, "n_workers": int(n_workers)}


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(message)s",
    )

    from trajclust.cluster.dbscan import DBSCAN, DBSCANConfig
    from trajclust.cluster.matrix import DistanceMatrix
    from trajclust.cluster.metric import MatrixMetric
    from trajclust.common.utils import load_config

    try:
        config = load_config(args.config) if args.config else {}
        options = _merge_options(args, config)
        dbscan_config = DBSCANConfig.from_mapping(options["dbscan"])
    except (FileNotFoundError, ValueError) as exc:
        parser.error(str(exc))
        return 2

    progress_bar = None
    progress_callback = None
    try:
        from tqdm import tqdm

        def progress_callback(message: str, current: int, total: int) -> None:
            nonlocal progress_bar
            if total <= 0:
                return
            desc = message.split(":")[0]
            if progress_bar is None or progress_bar.total != total or progress_bar.desc != desc:
                if progress_bar:
                    progress_bar.close()
                progress_bar = tqdm(total=total, desc=desc, unit="frame")
            progress_bar.n = min(current, total)
            progress_bar.refresh()
    except ImportError:
        progress_callback = None

    try:
        matrix = DistanceMatrix(np.load(args.matrix))
        stride = options["sieve"].get("stride")
        if stride:
            matrix.apply_sieve(int(stride), random_state=options["sieve"].get("random_state"))
        engine = DBSCAN(dbscan_config)
        result = engine.run(
            matrix,
            MatrixMetric(matrix),
            n_workers=options["n_workers"],
            progress_callback=progress_callback,
        )
    except Exception as exc:
        print(f"[dbscan] Clustering failed: {exc}", file=sys.stderr)
        return 1
    finally:
        if progress_bar:
            progress_bar.close()

    if args.output:
        output_path = Path(args.output)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        np.savez(
            output_path,
            labels=result.labels(),
            status=result.status,
            cluster_distances=result.cluster_distances,
            noise_frames=result.noise_frames(),
        )
        print(f"[dbscan] NPZ saved at: {output_path}")
    if args.print_summary:
        print(json.dumps(result.summary(), indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
