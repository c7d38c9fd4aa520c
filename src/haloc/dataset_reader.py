"""Ordered image sequence readers for loop closure datasets."""

from pathlib import Path
from typing import Iterator

import cv2
import numpy as np

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".ppm", ".pgm", ".bmp", ".tif", ".tiff")


class ImageSequenceReader:
    """Reader for a directory of mono images, ordered by filename."""

    def __init__(self, image_dir: str | Path, grayscale: bool = True) -> None:
        """Initialize reader with path to the image directory.

        Args:
            image_dir: Directory containing one image per observation
            grayscale: Load images as single channel

        Raises:
            FileNotFoundError: If the directory doesn't exist
            ValueError: If it contains no images
        """
        self.image_dir = Path(image_dir)
        if not self.image_dir.is_dir():
            raise FileNotFoundError(f"Image directory does not exist: {self.image_dir}")

        self._paths = sorted(
            p
            for p in self.image_dir.iterdir()
            if p.is_file() and p.suffix.lower() in IMAGE_EXTENSIONS
        )
        if not self._paths:
            raise ValueError(f"No images found in {self.image_dir}")

        self._flags = cv2.IMREAD_GRAYSCALE if grayscale else cv2.IMREAD_COLOR

    def load(self, position: int) -> tuple[np.ndarray, str]:
        """Load the image at a position of the sequence.

        Returns:
            Tuple of (image, filename)

        Raises:
            ValueError: If the image cannot be decoded
        """
        path = self._paths[position]
        image = cv2.imread(str(path), self._flags)
        if image is None:
            raise ValueError(f"Failed to load image: {path}")
        return image, path.name

    def __len__(self) -> int:
        return len(self._paths)

    def __iter__(self) -> Iterator[tuple[np.ndarray, str]]:
        for position in range(len(self._paths)):
            yield self.load(position)


class StereoSequenceReader:
    """Reader for EuRoC MAV style stereo sequences.

    Expects ``cam0/data`` and ``cam1/data`` image directories and a
    ``cam0/data.csv`` listing ``timestamp,filename`` rows.
    """

    def __init__(self, dataset_path: str | Path) -> None:
        """Initialize reader with path to the mav0 directory.

        Raises:
            FileNotFoundError: If dataset path or required directories don't exist
            ValueError: If data.csv is empty or invalid
        """
        self.dataset_path = Path(dataset_path)
        self.cam0_data_path = self.dataset_path / "cam0" / "data"
        self.cam1_data_path = self.dataset_path / "cam1" / "data"
        self.csv_path = self.dataset_path / "cam0" / "data.csv"

        self._validate_paths()
        self._image_list = self._load_image_list()

        if not self._image_list:
            raise ValueError(f"No images found in {self.csv_path}")

    def _validate_paths(self) -> None:
        if not self.dataset_path.exists():
            raise FileNotFoundError(f"Dataset path does not exist: {self.dataset_path}")

        for path in (self.cam0_data_path, self.cam1_data_path):
            if not path.exists():
                raise FileNotFoundError(
                    f"{path.parent.name}/data directory not found: {path}"
                )

        if not self.csv_path.exists():
            raise FileNotFoundError(
                f"cam0/data.csv not found: {self.csv_path}\n"
                f"This file is required to list image timestamps and filenames."
            )

    def _load_image_list(self) -> list[tuple[int, str]]:
        """Parse cam0/data.csv into (timestamp_ns, filename) tuples."""
        image_list = []

        with open(self.csv_path, "r") as f:
            for line in f:
                line = line.strip()
                if not line or line.startswith("#"):
                    continue

                try:
                    timestamp_str, filename = line.split(",")
                    image_list.append((int(timestamp_str.strip()), filename.strip()))
                except ValueError as e:
                    raise ValueError(
                        f"Invalid line in {self.csv_path}: '{line}'\n"
                        f"Expected format: timestamp,filename"
                    ) from e

        return image_list

    def load(self, position: int) -> tuple[np.ndarray, np.ndarray, str]:
        """Load the stereo pair at a position of the sequence.

        Returns:
            Tuple of (left_image, right_image, filename)

        Raises:
            FileNotFoundError: If either image file doesn't exist
            ValueError: If image loading fails
        """
        _, filename = self._image_list[position]
        images = []
        for directory in (self.cam0_data_path, self.cam1_data_path):
            path = directory / filename
            if not path.exists():
                raise FileNotFoundError(f"Stereo image not found: {path}")
            image = cv2.imread(str(path), cv2.IMREAD_GRAYSCALE)
            if image is None:
                raise ValueError(f"Failed to load image: {path}")
            images.append(image)

        return images[0], images[1], filename

    def __len__(self) -> int:
        return len(self._image_list)

    def __iter__(self) -> Iterator[tuple[np.ndarray, np.ndarray, str]]:
        for position in range(len(self._image_list)):
            yield self.load(position)
