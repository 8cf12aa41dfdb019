"""Connector configuration snapshots and mapping rules.

Mapping rules carry a closed set of transform variants; each variant holds only
the parameters its kind needs, so an unknown transform kind cannot reach the
transformation engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, ClassVar

from esgsync.domain.errors import MappingConfigurationError

from .enums import EntityType, TransformKind

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 5.0
    exponential_backoff: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise MappingConfigurationError("Retry policy needs at least one attempt")
        if self.base_delay_seconds < 0:
            raise MappingConfigurationError("Retry base delay must be non-negative")

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before ``attempt`` (1-based); the first attempt never waits."""

        if attempt <= 1:
            return 0.0
        if self.exponential_backoff:
            return self.base_delay_seconds * 2 ** (attempt - 2)
        return self.base_delay_seconds


@dataclass(slots=True, frozen=True)
class DirectTransform:
    kind: ClassVar[TransformKind] = TransformKind.DIRECT


@dataclass(slots=True, frozen=True)
class SumTransform:
    kind: ClassVar[TransformKind] = TransformKind.SUM


@dataclass(slots=True, frozen=True)
class AverageTransform:
    kind: ClassVar[TransformKind] = TransformKind.AVERAGE


@dataclass(slots=True, frozen=True)
class LookupTransform:
    table: Mapping[str, str]
    kind: ClassVar[TransformKind] = TransformKind.LOOKUP

    def __post_init__(self) -> None:
        object.__setattr__(self, "table", MappingProxyType(dict(self.table)))


@dataclass(slots=True, frozen=True)
class FteTransform:
    standard_hours: float = 40.0
    kind: ClassVar[TransformKind] = TransformKind.FTE

    def __post_init__(self) -> None:
        if self.standard_hours <= 0:
            raise MappingConfigurationError(
                f"FTE standard hours must be positive, got {self.standard_hours}"
            )


type Transform = DirectTransform | SumTransform | AverageTransform | LookupTransform | FteTransform


@dataclass(slots=True, frozen=True, kw_only=True)
class FieldMappingRule:
    external_field: str
    target_attribute: str
    transform: Transform = field(default_factory=DirectTransform)
    required: bool = False
    priority: int = 0
    default: object | None = None

    def __post_init__(self) -> None:
        if not self.external_field.strip():
            raise MappingConfigurationError("Mapping rule needs an external field")
        if not self.target_attribute.strip():
            raise MappingConfigurationError(
                f"Mapping rule for {self.external_field!r} needs a target attribute"
            )


@dataclass(slots=True, frozen=True, kw_only=True)
class ConnectorConfig:
    """Read-only connector snapshot consumed for the duration of one run."""

    id: str
    name: str
    source_system: str
    entity_type: EntityType
    schema_version: int
    mapping_rules: tuple[FieldMappingRule, ...]
    enabled: bool = True
    rate_limit_per_minute: int | None = 60
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self) -> None:
        object.__setattr__(self, "mapping_rules", tuple(self.mapping_rules))
        if self.rate_limit_per_minute is not None and self.rate_limit_per_minute < 1:
            raise MappingConfigurationError("Rate limit must allow at least one call per minute")


@dataclass(slots=True, frozen=True)
class RawRecord:
    """Opaque key/value bag received from an external system."""

    external_id: str
    fields: Mapping[str, object]
    extracted_at: datetime | None = None
