#!/usr/bin/env python3
"""Demo script for mono loop closure detection.

Feeds a directory of images, in filename order, to a loop closure
session and prints every detected loop closure.

Usage:
    uv run python examples/mono_demo.py

Requirements:
    - A directory of images at data/lip6indoor/images
"""

import logging

from haloc import ImageSequenceReader, LoopClosure, LoopClosureParams


def main() -> None:
    """Run the mono loop closure demo."""
    # Configuration
    image_dir = "data/lip6indoor/images"
    params = LoopClosureParams(
        work_dir="/tmp/haloc_mono_demo",
        desc_type="SIFT",
        min_neighbour=10,
        n_candidates=2,
        validate=True,
    )
    max_frames = None  # Set to int to limit frames

    logging.basicConfig(level=logging.INFO)

    reader = ImageSequenceReader(image_dir)
    print(f"Processing {len(reader)} images from {image_dir}...")
    print()

    loop_closures = 0
    with LoopClosure(params) as lc:
        for i, (image, name) in enumerate(reader):
            if max_frames is not None and i >= max_frames:
                break

            result = lc.process(image, name)
            if result.is_valid:
                loop_closures += 1
                print(
                    f"{i:5d} {name:<24} -> {result.matched_index:5d} "
                    f"{result.matched_name:<24} "
                    f"matches={result.num_matches:4d} inliers={result.num_inliers:4d}"
                )

    print()
    print(f"Done! {loop_closures} loop closures detected.")


if __name__ == "__main__":
    main()
