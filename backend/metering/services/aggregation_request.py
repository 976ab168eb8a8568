"""Immutable description of one aggregation and the values it produces."""

import hashlib
import json
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from types import MappingProxyType
from typing import Any
from uuid import UUID

from metering.models.billable_metric import AggregationType
from metering.services.billing_boundary import BillingBoundary
from metering.services.event_grouping import GroupKey, group_key_from_json, group_key_to_json

FilterMapping = Mapping[str, tuple[str, ...]]


def _freeze_filter(values: Mapping[str, Sequence[str]]) -> FilterMapping:
    return MappingProxyType({str(k): tuple(str(v) for v in vals) for k, vals in values.items()})


@dataclass(frozen=True)
class AggregationRequest:
    organization_id: UUID
    external_subscription_id: str
    code: str
    boundary: BillingBoundary
    aggregation_type: AggregationType
    field_name: str | None = None
    prorated: bool = False
    grouped_by: tuple[str, ...] = ()
    grouped_by_values: Mapping[str, str | None] | None = None
    matching_filters: FilterMapping = field(default_factory=lambda: MappingProxyType({}))
    ignored_filters: tuple[FilterMapping, ...] = ()
    initial_value: Decimal = Decimal("0")
    # Per-group carried-over values of a grouped weighted_sum
    initial_values: Mapping[GroupKey, Decimal] = field(default_factory=lambda: MappingProxyType({}))
    persisted_duration: int | None = None
    rounding_function: str | None = None
    rounding_precision: int | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "aggregation_type", AggregationType(self.aggregation_type))
        object.__setattr__(self, "grouped_by", tuple(self.grouped_by))
        if self.grouped_by_values is not None:
            object.__setattr__(
                self, "grouped_by_values", MappingProxyType(dict(self.grouped_by_values))
            )
        object.__setattr__(self, "matching_filters", _freeze_filter(self.matching_filters))
        object.__setattr__(
            self, "ignored_filters", tuple(_freeze_filter(f) for f in self.ignored_filters)
        )
        object.__setattr__(self, "initial_value", Decimal(str(self.initial_value)))
        object.__setattr__(
            self,
            "initial_values",
            MappingProxyType(
                {tuple(group): Decimal(str(value)) for group, value in self.initial_values.items()}
            ),
        )

        if self.aggregation_type == AggregationType.UNIQUE_COUNT and not self.field_name:
            raise ValueError("unique_count aggregation requires a field_name")
        if self.persisted_duration is not None and self.persisted_duration <= 0:
            raise ValueError("persisted_duration must be positive")
        if self.initial_values:
            if self.aggregation_type != AggregationType.WEIGHTED_SUM or not self.is_grouped:
                raise ValueError("initial_values only apply to a grouped weighted_sum aggregation")
            if any(len(group) != len(self.grouped_by) for group in self.initial_values):
                raise ValueError("initial_values groups must have one value per grouped_by key")

    @property
    def is_grouped(self) -> bool:
        return bool(self.grouped_by)

    def to_payload(self, include_max_timestamp: bool = True) -> dict[str, Any]:
        """JSON-compatible representation, used for job arguments and snapshots."""
        boundary = self.boundary
        return {
            "organization_id": str(self.organization_id),
            "external_subscription_id": self.external_subscription_id,
            "code": self.code,
            "boundary": {
                "from_datetime": boundary.from_datetime.isoformat(),
                "to_datetime": boundary.to_datetime.isoformat(),
                "charges_duration": boundary.charges_duration,
                "max_timestamp": (
                    boundary.max_timestamp.isoformat()
                    if include_max_timestamp and boundary.max_timestamp is not None
                    else None
                ),
                "timezone": boundary.timezone,
            },
            "aggregation_type": self.aggregation_type.value,
            "field_name": self.field_name,
            "prorated": self.prorated,
            "grouped_by": list(self.grouped_by),
            "grouped_by_values": (
                dict(self.grouped_by_values) if self.grouped_by_values is not None else None
            ),
            "matching_filters": {k: list(v) for k, v in self.matching_filters.items()},
            "ignored_filters": [{k: list(v) for k, v in f.items()} for f in self.ignored_filters],
            "initial_value": str(self.initial_value),
            "initial_values": sorted(
                (
                    {"groups": group_key_to_json(group), "value": str(value)}
                    for group, value in self.initial_values.items()
                ),
                key=lambda item: json.dumps(item["groups"]),
            ),
            "persisted_duration": self.persisted_duration,
            "rounding_function": self.rounding_function,
            "rounding_precision": self.rounding_precision,
        }

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "AggregationRequest":
        boundary = payload["boundary"]
        max_timestamp = boundary.get("max_timestamp")
        return cls(
            organization_id=UUID(str(payload["organization_id"])),
            external_subscription_id=payload["external_subscription_id"],
            code=payload["code"],
            boundary=BillingBoundary(
                from_datetime=datetime.fromisoformat(boundary["from_datetime"]),
                to_datetime=datetime.fromisoformat(boundary["to_datetime"]),
                charges_duration=int(boundary["charges_duration"]),
                max_timestamp=datetime.fromisoformat(max_timestamp) if max_timestamp else None,
                timezone=boundary.get("timezone") or "UTC",
            ),
            aggregation_type=AggregationType(payload["aggregation_type"]),
            field_name=payload.get("field_name"),
            prorated=bool(payload.get("prorated", False)),
            grouped_by=tuple(payload.get("grouped_by") or ()),
            grouped_by_values=payload.get("grouped_by_values"),
            matching_filters=payload.get("matching_filters") or {},
            ignored_filters=tuple(payload.get("ignored_filters") or ()),
            initial_value=Decimal(str(payload.get("initial_value", "0"))),
            initial_values={
                group_key_from_json(item["groups"]): Decimal(str(item["value"]))
                for item in payload.get("initial_values") or ()
            },
            persisted_duration=payload.get("persisted_duration"),
            rounding_function=payload.get("rounding_function"),
            rounding_precision=payload.get("rounding_precision"),
        )

    def cache_key(self) -> str:
        """Stable digest identifying every request that shares the same fold.

        ``max_timestamp`` is left out: it only decides how far the events are
        read, so snapshots can serve any cutoff of the same request.
        """
        canonical = json.dumps(
            self.to_payload(include_max_timestamp=False), sort_keys=True, separators=(",", ":")
        )
        return hashlib.sha256(canonical.encode()).hexdigest()


@dataclass
class UsageResult:
    """Result of a usage aggregation containing value and event count."""

    value: Decimal | None
    events_count: int
    # Running weighted sum value at the end of the period
    total_aggregated_units: Decimal | None = None


GroupedUsageResult = dict[GroupKey, UsageResult]
