"""Key-value stores for observation records keyed by sequence index.

The orchestrator only needs ``put`` and ``get``; the backing medium
(.npz files in the working directory, or a dictionary for tests and
embedding) is interchangeable.
"""

from __future__ import annotations

import abc
import logging
import os
import shutil
import zipfile
from pathlib import Path

import numpy as np

from ..exceptions import ConfigurationError, StoreInconsistencyError
from .observation import Observation

logger = logging.getLogger(__name__)


class ObservationStore(abc.ABC):
    """Interface of an observation store."""

    @abc.abstractmethod
    def put(self, index: int, observation: Observation) -> None:
        """Persist an observation under its sequence index."""

    @abc.abstractmethod
    def get(self, index: int) -> Observation:
        """Read an observation back.

        Raises:
            StoreInconsistencyError: If the record is missing or unreadable
        """

    @abc.abstractmethod
    def __contains__(self, index: int) -> bool: ...

    @abc.abstractmethod
    def __len__(self) -> int: ...

    @abc.abstractmethod
    def reset(self) -> None:
        """Create the backing storage, discarding any previous records."""

    @abc.abstractmethod
    def destroy(self) -> None:
        """Delete the backing storage and every record in it."""

    @staticmethod
    def _check_key(index: int, observation: Observation) -> None:
        if index != observation.index:
            raise ValueError(
                f"Record key {index} does not match observation index {observation.index}"
            )


class FileObservationStore(ObservationStore):
    """One ``<index>.npz`` file per observation inside a directory.

    Each file holds the ``name``, ``keypoints``, ``descriptors`` and
    ``points_3d`` arrays of the observation.
    """

    def __init__(self, directory: str | Path) -> None:
        self._directory = Path(directory)

    def _path(self, index: int) -> Path:
        return self._directory / f"{index}.npz"

    def put(self, index: int, observation: Observation) -> None:
        self._check_key(index, observation)

        path = self._path(index)
        tmp_path = path.with_suffix(".tmp")
        with open(tmp_path, "wb") as f:
            np.savez(
                f,
                name=np.array(observation.name),
                keypoints=observation.keypoints,
                descriptors=observation.descriptors,
                points_3d=observation.points_3d,
            )
        os.replace(tmp_path, path)

    def get(self, index: int) -> Observation:
        path = self._path(index)
        if not path.exists():
            raise StoreInconsistencyError(f"No observation record for index {index}: {path}")

        try:
            with np.load(path, allow_pickle=False) as data:
                return Observation(
                    index=index,
                    name=str(data["name"]),
                    keypoints=data["keypoints"],
                    descriptors=data["descriptors"],
                    points_3d=data["points_3d"],
                )
        except (OSError, EOFError, KeyError, ValueError, zipfile.BadZipFile) as e:
            raise StoreInconsistencyError(
                f"Corrupt observation record for index {index}: {path}"
            ) from e

    def __contains__(self, index: int) -> bool:
        return self._path(index).exists()

    def __len__(self) -> int:
        if not self._directory.is_dir():
            return 0
        return sum(1 for _ in self._directory.glob("*.npz"))

    def reset(self) -> None:
        if self._directory.exists() and not self._directory.is_dir():
            raise ConfigurationError(
                f"Working directory is not a directory: {self._directory}"
            )
        if self._directory.exists():
            shutil.rmtree(self._directory)

        try:
            self._directory.mkdir(parents=True)
        except OSError as e:
            raise ConfigurationError(
                f"Cannot create working directory {self._directory}: {e}"
            ) from e

        logger.debug("Observation store ready at %s", self._directory)

    def destroy(self) -> None:
        if self._directory.is_dir():
            shutil.rmtree(self._directory)
            logger.debug("Removed observation store %s", self._directory)

    @property
    def directory(self) -> Path:
        return self._directory


class InMemoryObservationStore(ObservationStore):
    """Dictionary-backed store holding copies of the observations."""

    def __init__(self) -> None:
        self._records: dict[int, Observation] = {}

    def put(self, index: int, observation: Observation) -> None:
        self._check_key(index, observation)
        self._records[index] = Observation(
            index=observation.index,
            name=observation.name,
            keypoints=observation.keypoints.copy(),
            descriptors=observation.descriptors.copy(),
            points_3d=observation.points_3d.copy(),
        )

    def get(self, index: int) -> Observation:
        try:
            return self._records[index]
        except KeyError:
            raise StoreInconsistencyError(f"No observation record for index {index}") from None

    def __contains__(self, index: int) -> bool:
        return index in self._records

    def __len__(self) -> int:
        return len(self._records)

    def reset(self) -> None:
        self._records.clear()

    def destroy(self) -> None:
        self._records.clear()
