#!/usr/bin/env python3
"""Evaluate loop closure detection on an image sequence with ground truth.

The script feeds every image of a sequence to a loop closure session,
checks each reported loop closure against a ground truth matrix and
prints precision and recall:
1. Load parameters (YAML file, then command line overrides)
2. Run ingest + query for every image in filename order
3. Count true/false positives with a tolerance window around the match

Usage:
    uv run python scripts/evaluate_sequence.py --img-dir data/lip6indoor/images \
        --gt-file data/lip6indoor/gt.txt --work-dir /tmp/haloc
    uv run python scripts/evaluate_sequence.py --config config/mono.yaml \
        --img-dir data/lip6indoor/images --gt-file data/lip6indoor/gt.txt
    uv run python scripts/evaluate_sequence.py --stereo data/euroc/MH_01_easy/mav0 \
        --gt-file data/euroc/MH_01_easy/loops.txt --work-dir /tmp/haloc

The ground truth file is an NxN matrix of 0/1 values, one row per line.
"""

import argparse
import logging
import sys
import time
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from haloc import (
    ConfigurationError,
    DescriptorProvider,
    EvaluationStats,
    FeatureExtractor,
    ImageSequenceReader,
    LoopClosure,
    LoopClosureParams,
    LoopGroundTruth,
    StereoSequenceReader,
)


def load_params(args: argparse.Namespace) -> LoopClosureParams:
    """Build session parameters from the config file and CLI overrides."""
    overrides = {
        "work_dir": args.work_dir,
        "desc_type": args.desc_type,
        "num_proj": args.num_proj,
        "min_neighbour": args.min_neighbour,
        "n_candidates": args.n_candidates,
        "min_matches": args.min_matches,
        "min_inliers": args.min_inliers,
        "validate": True if args.validate else None,
    }

    if args.config is not None:
        return LoopClosureParams.from_yaml(args.config, **overrides)

    return LoopClosureParams.from_dict(
        {k: v for k, v in overrides.items() if v is not None}
    )


def print_params(params: LoopClosureParams) -> None:
    for key, value in params.to_dict().items():
        print(f"  {key:<16} = {value}")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Evaluate loop closure detection against ground truth",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--img-dir", type=Path, help="Directory of mono images")
    source.add_argument(
        "--stereo", type=Path, help="EuRoC mav0 directory with cam0/ and cam1/"
    )
    parser.add_argument("--gt-file", type=Path, required=True, help="Ground truth matrix")
    parser.add_argument("--config", type=Path, default=None, help="YAML parameter file")
    parser.add_argument("--work-dir", type=str, default=None, help="Working directory")
    parser.add_argument("--desc-type", type=str, default=None, help="SIFT, ORB, AKAZE, BRISK")
    parser.add_argument("--num-proj", type=int, default=None)
    parser.add_argument("--min-neighbour", type=int, default=None)
    parser.add_argument("--n-candidates", type=int, default=None)
    parser.add_argument("--min-matches", type=int, default=None)
    parser.add_argument("--min-inliers", type=int, default=None)
    parser.add_argument("--validate", action="store_true", help="Temporal cross-check")
    parser.add_argument(
        "--gt-tolerance",
        type=int,
        default=0,
        help="Accept matches within this many images of a true loop (default: 0)",
    )
    parser.add_argument("--n-features", type=int, default=1000)
    parser.add_argument(
        "--save-basis", type=Path, default=None, help="Save the hash basis to this .npz"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        params = load_params(args)
    except ConfigurationError as e:
        print(f"Error: {e}")
        sys.exit(1)

    if args.stereo is not None:
        reader = StereoSequenceReader(args.stereo)
        provider = DescriptorProvider.from_euroc(
            args.stereo, desc_type=params.desc_type, n_features=args.n_features
        )
    else:
        reader = ImageSequenceReader(args.img_dir)
        provider = DescriptorProvider(
            FeatureExtractor(desc_type=params.desc_type, n_features=args.n_features)
        )

    ground_truth = LoopGroundTruth.load(args.gt_file, num_images=len(reader))
    stats = EvaluationStats(total_loops=ground_truth.total_loops)

    print("=" * 60)
    print("Loop Closure Evaluation")
    print("=" * 60)
    print(f"Sequence: {args.stereo or args.img_dir} ({len(reader)} images)")
    print(f"Ground truth: {args.gt_file} (tolerance {args.gt_tolerance})")
    print_params(params)
    print()

    start_time = time.time()

    with LoopClosure(params, provider=provider) as lc:
        for i, item in enumerate(reader):
            if args.stereo is not None:
                left, right, name = item
                result = lc.process((left, right), name)
            else:
                image, name = item
                result = lc.process(image, name)

            tp = fp = 0
            if result.is_valid:
                correct = ground_truth.is_true_positive(
                    i, result.matched_index, tolerance=args.gt_tolerance
                )
                stats.record(correct)
                tp, fp = int(correct), int(not correct)

            print(f"{i} cl with {result.matched_index}: {int(result.is_valid)} ({tp}|{fp})")

        if args.save_basis is not None:
            lc.hash_engine.save(args.save_basis)
            print(f"Hash basis saved to: {args.save_basis}")

    elapsed = time.time() - start_time

    print()
    print("=" * 60)
    print(f"TOTAL #LC: {stats.total_loops}")
    print(f"FOUND #LC: {stats.found}")
    print(f"#TP: {stats.true_positives}")
    print(f"#FP: {stats.false_positives}")
    print(f"PRECISION: {stats.precision:.0f}%")
    print(f"RECALL: {stats.recall:.0f}%")
    print(f"TOTAL EXECUTION TIME: {elapsed:.1f} sec.")
    print("=" * 60)


if __name__ == "__main__":
    main()
