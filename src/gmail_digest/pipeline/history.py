"""Read and delete access to a user's stored digests."""

from __future__ import annotations

import logging

from gmail_digest.core.exceptions import DigestNotFound
from gmail_digest.core.models import Digest, DigestPage
from gmail_digest.storage.store import DigestStore

logger = logging.getLogger(__name__)


class DigestHistory:
    """Owner-scoped queries over persisted digests."""

    def __init__(self, store: DigestStore) -> None:
        self._store = store

    def get_digest_history(self, user_id: str, page: int = 1, limit: int = 10) -> DigestPage:
        """One page of the user's digests, newest first.

        Raises:
            ValueError: If page or limit is below 1.
        """
        if page < 1:
            raise ValueError(f"page must be >= 1, got {page}")
        if limit < 1:
            raise ValueError(f"limit must be >= 1, got {limit}")

        digests = self._store.list_digests(user_id, limit=limit, offset=(page - 1) * limit)
        return DigestPage(
            digests=tuple(digests),
            page=page,
            limit=limit,
            total=self._store.count_digests(user_id),
        )

    def get_digest(self, user_id: str, digest_id: int) -> Digest:
        """Raises DigestNotFound if the digest is missing or owned by someone else."""
        digest = self._store.get_digest(user_id, digest_id)
        if digest is None:
            raise DigestNotFound(f"Digest {digest_id} not found")
        return digest

    def delete_digest(self, user_id: str, digest_id: int) -> None:
        """Delete a digest and its summaries; DigestNotFound if not the owner's."""
        if not self._store.delete_digest(user_id, digest_id):
            raise DigestNotFound(f"Digest {digest_id} not found")
        logger.info("Deleted digest %s for user %s", digest_id, user_id)
