"""
Gallery management module.

Builds the matching gallery from the gallery store and swaps it
atomically whenever the enrolled descriptor set changes.
"""

import threading
from typing import Any, Iterable, List, Sequence, Tuple

from .config import Config
from .errors import FaceAttendanceError, ValidationError
from .logging_config import get_logger
from .models import EnrollmentSample, GalleryEntry, IdentityId, as_descriptor
from .recognition.matching import Gallery

logger = get_logger(__name__)


def build_gallery(rows: Iterable[Tuple[IdentityId, Sequence[Any]]], descriptor_length: int) -> Gallery:
    """
    Build an immutable gallery from store rows.

    Identities without valid descriptors are left out.

    Args:
        rows: (identity id, descriptors) pairs in store order
        descriptor_length: Required descriptor length

    Returns:
        Gallery snapshot
    """
    entries = []
    for identity_id, descriptors in rows:
        valid = []
        for descriptor in descriptors:
            try:
                valid.append(as_descriptor(descriptor, descriptor_length))
            except ValidationError as e:
                logger.warning(f'Skipping descriptor of identity {identity_id}: {e}')

        if not valid:
            logger.debug(f'Identity {identity_id} has no descriptors, skipping')
            continue

        entries.append(GalleryEntry(identity_id=identity_id, descriptors=tuple(valid)))

    return Gallery(entries, descriptor_length=descriptor_length)


class GalleryManager:
    """
    Owns the current gallery snapshot.

    Readers always see a complete gallery: a rebuild prepares the new
    snapshot first and swaps the reference under a lock.
    """

    def __init__(self, store: Any, config: Config):
        """
        Initialize gallery manager.

        Args:
            store: Gallery store (InMemoryStore or BackendStore)
            config: Service configuration
        """
        self.store = store
        self.config = config
        self._gallery = Gallery(descriptor_length=config.descriptor_length)
        self._swap_lock = threading.Lock()
        self._rebuild_lock = threading.Lock()

    def current(self) -> Gallery:
        with self._swap_lock:
            return self._gallery

    @property
    def identity_count(self) -> int:
        return len(self.current())

    @property
    def descriptor_count(self) -> int:
        return self.current().descriptor_count

    def rebuild(self) -> Gallery:
        """
        Reload all descriptors from the store and swap in a new gallery.

        Returns:
            The new gallery
        """
        with self._rebuild_lock:
            rows = self.store.get_all_identity_descriptors()
            gallery = build_gallery(rows, self.config.descriptor_length)

            with self._swap_lock:
                self._gallery = gallery

        logger.info(
            f'Gallery rebuilt: {len(gallery)} identities, '
            f'{gallery.descriptor_count} descriptors'
        )
        return gallery

    def enroll(self, identity_id: IdentityId, samples: Sequence[EnrollmentSample]) -> GalleryEntry:
        """
        Persist accepted enrollment samples and rebuild the gallery.

        Args:
            identity_id: Enrolled identity
            samples: Finalized enrollment samples

        Returns:
            The identity's gallery entry after the rebuild

        Raises:
            The store's error, after descriptors written so far were removed
        """
        written: List[int] = []
        try:
            for sample in samples:
                written.append(self.store.add_descriptor(
                    identity_id,
                    sample.descriptor,
                    {'quality': sample.quality, 'timestamp': sample.timestamp},
                ))
        except Exception:
            self._roll_back(identity_id, written)
            raise

        gallery = self.rebuild()
        logger.info(f'✅ Identity {identity_id} enrolled with {len(samples)} sample(s)')
        return gallery.get(identity_id)

    def _roll_back(self, identity_id: IdentityId, descriptor_ids: Sequence[int]) -> None:
        """Remove partially written descriptors so the identity keeps its previous set."""
        logger.warning(
            f'Enrollment of identity {identity_id} failed, '
            f'removing {len(descriptor_ids)} written descriptor(s)'
        )
        for descriptor_id in descriptor_ids:
            try:
                self.store.remove_descriptor(descriptor_id)
            except FaceAttendanceError as e:
                logger.error(f'❌ Could not remove descriptor {descriptor_id}: {e}')
        try:
            self.rebuild()
        except FaceAttendanceError as e:
            logger.error(f'❌ Gallery rebuild after rollback failed: {e}')

    def remove_identity(self, identity_id: IdentityId) -> bool:
        """Delete an identity's descriptors and rebuild the gallery."""
        removed = self.store.remove_identity(identity_id)
        self.rebuild()
        if removed:
            logger.info(f'Identity {identity_id} removed from gallery')
        return removed
