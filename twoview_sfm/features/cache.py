"""
Per-image cache of detected features, keyed by detector type.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable, Dict, Tuple

import numpy as np

from twoview_sfm.sfm.data_structures import Keypoint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FeatureSet:
    """Keypoints of one image and their row-aligned descriptor matrix."""

    keypoints: Tuple[Keypoint, ...]
    descriptors: np.ndarray

    def __post_init__(self) -> None:
        object.__setattr__(self, "keypoints", tuple(self.keypoints))
        object.__setattr__(self, "descriptors", np.array(self.descriptors))
        if len(self.keypoints) != len(self.descriptors):
            raise ValueError(
                f"{len(self.keypoints)} keypoints but {len(self.descriptors)} descriptor rows"
            )
        # Cached entries are shared between threads and must stay read-only.
        self.descriptors.flags.writeable = False


class FeatureCache:
    """
    Compute-once cache of FeatureSets.

    ``get_or_compute`` runs ``compute(detector_type)`` at most once per key.
    Concurrent callers asking for the same key block on that key's lock until
    the first caller has stored the result; other keys are not blocked.
    """

    def __init__(self, compute: Callable[[str], FeatureSet]) -> None:
        self._compute = compute
        self._entries: Dict[str, FeatureSet] = {}
        self._key_locks: Dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._key_locks.get(key)
            if lock is None:
                lock = self._key_locks[key] = threading.Lock()
            return lock

    def get_or_compute(self, detector_type: str) -> FeatureSet:
        entry = self._entries.get(detector_type)
        if entry is not None:
            return entry

        with self._lock_for(detector_type):
            entry = self._entries.get(detector_type)
            if entry is None:
                entry = self._compute(detector_type)
                self._entries[detector_type] = entry
                logger.debug(
                    "Cached %d %s features", len(entry.keypoints), detector_type
                )
            return entry

    def __contains__(self, detector_type: str) -> bool:
        return detector_type in self._entries

    def __len__(self) -> int:
        return len(self._entries)


__all__ = ["FeatureSet", "FeatureCache"]
