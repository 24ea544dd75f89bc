"""Error taxonomy shared by the core and its adapters.

Adapters translate library-specific exceptions into these types so the core
can decide between retrying, falling back, or giving up.
"""

from __future__ import annotations


class RelayError(Exception):
    """Base class for relayscope errors."""


class DeliveryError(RelayError):
    """The destination surface refused or failed a send."""


class TransientDeliveryError(DeliveryError):
    """Network, rate-limit or temporary upstream failure. Safe to retry."""


class StructuralDeliveryError(DeliveryError):
    """The destination rejected the shape of the request."""


class MediaRetrievalError(RelayError):
    """A media reference could not be downloaded."""


class LedgerError(RelayError):
    """Base class for dedup ledger storage errors."""


class DuplicateRecordError(LedgerError):
    """The (message_id, source_channel_id) pair already exists."""


class LedgerUnavailableError(LedgerError):
    """The ledger backing store could not be reached."""
