"""
Descriptor matching module.

Matches a face descriptor against the enrolled gallery using Euclidean
distance with best-of-N matching per identity.
"""

import math
from typing import List, Sequence, Tuple

import numpy as np

from ..config import Config
from ..models import GalleryEntry, IdentityId, MatchResult, as_descriptor, clamp_unit


class Gallery:
    """
    Immutable snapshot of all enrolled identities.

    Descriptors are pre-stacked into one (N, D) matrix; owners[i] is the
    entry index of row i. Entries without descriptors are dropped.
    """

    def __init__(self, entries: Sequence[GalleryEntry] = (), descriptor_length: int = 128):
        self.descriptor_length = descriptor_length
        self.entries: Tuple[GalleryEntry, ...] = tuple(e for e in entries if e.descriptors)

        rows: List[np.ndarray] = []
        owners: List[int] = []
        for index, entry in enumerate(self.entries):
            for descriptor in entry.descriptors:
                rows.append(as_descriptor(descriptor, descriptor_length))
                owners.append(index)

        if rows:
            matrix = np.stack(rows, axis=0)
        else:
            matrix = np.empty((0, descriptor_length), dtype=np.float32)
        matrix.setflags(write=False)

        self._matrix = matrix
        self._owners = np.asarray(owners, dtype=np.intp)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def is_empty(self) -> bool:
        return not self.entries

    @property
    def descriptor_count(self) -> int:
        return int(self._matrix.shape[0])

    @property
    def identity_ids(self) -> List[IdentityId]:
        return [e.identity_id for e in self.entries]

    def get(self, identity_id: IdentityId) -> GalleryEntry:
        for entry in self.entries:
            if entry.identity_id == identity_id:
                return entry
        raise KeyError(identity_id)

    def identity_distances(self, descriptor: np.ndarray) -> np.ndarray:
        """
        Best distance of each entry to the descriptor.

        Args:
            descriptor: Validated descriptor

        Returns:
            Array with one distance per entry, in gallery order
        """
        distances = np.linalg.norm(
            self._matrix.astype(np.float64) - descriptor.astype(np.float64), axis=1
        )
        best = np.full(len(self.entries), np.inf)
        np.minimum.at(best, self._owners, distances)
        return best


class FaceMatcher:
    """
    Finds the best-matching identity for a descriptor.

    Distances are scaled by matcher_distance_scale; anything farther than
    match_distance_threshold is reported as unknown.
    """

    def __init__(self, config: Config):
        self.config = config
        self.distance_threshold = config.match_distance_threshold
        self.distance_scale = config.matcher_distance_scale

    def match(self, descriptor, gallery: Gallery) -> MatchResult:
        """
        Match a descriptor against the gallery.

        Ties resolve to the first identity in gallery order.

        Args:
            descriptor: Live face descriptor
            gallery: Gallery snapshot

        Returns:
            MatchResult; unknown with confidence 0.0 for an empty gallery

        Raises:
            ValidationError: If the descriptor is malformed
        """
        descriptor = as_descriptor(descriptor, self.config.descriptor_length)

        if gallery.is_empty:
            return MatchResult.unknown()

        distances = gallery.identity_distances(descriptor) * self.distance_scale

        # argmin returns the first occurrence of the minimum
        best_index = int(np.argmin(distances))
        best_distance = float(distances[best_index])
        confidence = clamp_unit(1.0 - best_distance)

        if not math.isfinite(best_distance) or best_distance > self.distance_threshold:
            return MatchResult(identity_id=None, distance=best_distance, confidence=confidence)

        return MatchResult(
            identity_id=gallery.entries[best_index].identity_id,
            distance=best_distance,
            confidence=confidence,
        )
