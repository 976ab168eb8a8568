"""Query-time deduplication of usage events sharing a transaction id."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime

from metering.core.errors import AmbiguousDuplicate
from metering.services.usage_events import UsageEvent

logger = logging.getLogger(__name__)

_NEVER_ENRICHED = datetime.min.replace(tzinfo=UTC)


@dataclass
class DeduplicationResult:
    events: list[UsageEvent]
    ambiguous: list[AmbiguousDuplicate] = field(default_factory=list)


def _precedence(event: UsageEvent) -> tuple[datetime, int]:
    """Greatest enriched_at wins, then the most recently stored copy."""
    return (event.enriched_at or _NEVER_ENRICHED, event.sequence)


def _same_payload(left: UsageEvent, right: UsageEvent) -> bool:
    return (
        left.precise_amount == right.precise_amount
        and dict(left.properties) == dict(right.properties)
    )


def deduplicate(events: Iterable[UsageEvent]) -> DeduplicationResult:
    """Keep one event per transaction_id.

    The surviving copy has the greatest ``enriched_at``; copies that were never
    enriched lose against enriched ones, and the ingestion sequence settles
    everything else. Copies sharing the same ``enriched_at`` but carrying
    different payloads are reported as ambiguous and resolved the same way.

    The result is ordered by ``(timestamp, sequence)``.
    """
    kept: dict[str, UsageEvent] = {}
    ambiguous: list[AmbiguousDuplicate] = []

    for event in events:
        current = kept.get(event.transaction_id)
        if current is None:
            kept[event.transaction_id] = event
            continue

        winner, loser = (
            (event, current) if _precedence(event) > _precedence(current) else (current, event)
        )
        if (
            winner.enriched_at is not None
            and winner.enriched_at == loser.enriched_at
            and not _same_payload(winner, loser)
        ):
            duplicate = AmbiguousDuplicate(
                transaction_id=winner.transaction_id,
                enriched_at=winner.enriched_at,
                kept_amount=winner.precise_amount,
                dropped_amount=loser.precise_amount,
            )
            ambiguous.append(duplicate)
            logger.warning(
                "Transaction %s has copies enriched at the same instant %s with different "
                "payloads; keeping the most recently stored one",
                duplicate.transaction_id,
                duplicate.enriched_at.isoformat(),
            )
        kept[event.transaction_id] = winner

    return DeduplicationResult(
        events=sorted(kept.values(), key=UsageEvent.sort_key),
        ambiguous=ambiguous,
    )
