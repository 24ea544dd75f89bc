"""Deduplication ledger (core domain).

The ledger answers "has this exact message already entered the pipeline?"
for (message_id, source_channel_id) pairs. The storage layer enforces
uniqueness of the pair; this class turns its errors into the ledger's
semantics.
"""

from __future__ import annotations

import logging

from core.errors import DuplicateRecordError, LedgerUnavailableError
from core.ports import LedgerStoragePort

LOGGER = logging.getLogger(__name__)


class DedupLedger:
    """Idempotent intake record backed by a LedgerStoragePort."""

    def __init__(self, storage: LedgerStoragePort) -> None:
        self._storage = storage

    def has_processed(self, message_id: int, source_channel_id: str) -> bool:
        """Point lookup.

        When the store is unavailable the message is treated as not yet
        processed. Answering "processed" would silently lose the message,
        so the fallback is always logged.
        """

        try:
            return self._storage.exists_processed(message_id, source_channel_id)
        except LedgerUnavailableError as exc:
            LOGGER.warning(
                "Ledger lookup failed for %s/%s, treating as not processed: %s",
                source_channel_id,
                message_id,
                exc,
            )
            return False

    def mark_processed(self, message_id: int, source_channel_id: str) -> None:
        """Record the pair. An existing record counts as success.

        Raises LedgerUnavailableError when the store cannot be written.
        """

        try:
            self._storage.insert_processed(message_id, source_channel_id)
        except DuplicateRecordError:
            # Two fragments raced on the same pair; one record exists, which is all we need.
            LOGGER.debug("Message %s/%s already in ledger", source_channel_id, message_id)
            return
        LOGGER.debug("Message %s/%s marked as processed", source_channel_id, message_id)
