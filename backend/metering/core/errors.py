"""Errors raised by the usage aggregation engine."""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal


class InvalidBoundary(ValueError):
    """The billing boundary cannot be aggregated over (empty or inverted period)."""


class AmbiguousFilterMatch(ValueError):
    """Several charge filters match an event with the same specificity."""

    def __init__(self, properties: dict[str, object], candidates: list[object]):
        self.properties = properties
        self.candidates = candidates
        super().__init__(
            f"{len(candidates)} charge filters match properties {properties} "
            "with the same number of keys"
        )


class EventStoreUnavailable(Exception):
    """The event store could not be reached. The caller may retry."""


@dataclass(frozen=True)
class AmbiguousDuplicate:
    """Two copies of a transaction share ``enriched_at`` but carry different payloads.

    This is a data quality warning, not an error: the deduplicator resolves it
    with the ingestion sequence and billing carries on.
    """

    transaction_id: str
    enriched_at: datetime
    kept_amount: Decimal | None
    dropped_amount: Decimal | None
