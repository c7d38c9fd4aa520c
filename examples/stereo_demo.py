#!/usr/bin/env python3
"""Demo script for stereo loop closure detection.

Processes an EuRoC sequence as stereo observations: every pair is
rectified, matched and triangulated, and loop closures are verified
with PnP, which also recovers the relative camera transform.

Usage:
    uv run python examples/stereo_demo.py

Requirements:
    - EuRoC dataset downloaded to data/euroc/MH_01_easy/mav0/
"""

import numpy as np

from haloc import DescriptorProvider, LoopClosure, LoopClosureParams, StereoSequenceReader


def main() -> None:
    """Run the stereo loop closure demo."""
    # Configuration
    dataset_path = "data/euroc/MH_01_easy/mav0"
    params = LoopClosureParams(
        work_dir="/tmp/haloc_stereo_demo",
        desc_type="ORB",
        min_neighbour=50,
        n_candidates=3,
        min_inliers=30,
    )
    max_frames = None  # Set to int to limit frames
    skip_every = 5  # Use every Nth stereo pair as an observation

    print("Initializing stereo descriptor provider...")
    reader = StereoSequenceReader(dataset_path)
    provider = DescriptorProvider.from_euroc(dataset_path, desc_type=params.desc_type)
    print(f"Stereo baseline: {provider.stereo_camera.baseline_meters:.4f} m")
    print(f"Processing {len(reader)} frames (every {skip_every})...")
    print()

    with LoopClosure(params, provider=provider) as lc:
        for i, (left, right, name) in enumerate(reader):
            if max_frames is not None and i >= max_frames:
                break
            if i % skip_every != 0:
                continue

            result = lc.process((left, right), name)
            if result.is_valid:
                transform = result.transform
                print(
                    f"{name} -> {result.matched_name}: "
                    f"{result.num_inliers} inliers, "
                    f"|t|={transform.distance:.2f} m, "
                    f"rotation={np.degrees(transform.rotation_angle):.1f} deg"
                )

        print()
        print(f"Done! {lc.num_observations} observations ingested.")


if __name__ == "__main__":
    main()
