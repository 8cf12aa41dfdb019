"""Pydantic models for connector, schema and record JSON documents.

Connector files, schema definition files and record JSONL are validated here
and converted into domain objects. Validation failures surface as
``MappingConfigurationError`` so callers only deal with the domain taxonomy.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from esgsync.domain.errors import MappingConfigurationError
from esgsync.domain.model import (
    AttributeDefinition,
    AverageTransform,
    ConnectorConfig,
    DataType,
    DirectTransform,
    EntityType,
    FieldMappingRule,
    FteTransform,
    LookupTransform,
    RawRecord,
    RetryPolicy,
    SumTransform,
    Transform,
)


class PayloadModel(BaseModel):
    model_config = ConfigDict(extra="forbid", populate_by_name=True)


# Transforms -------------------------------------------------------------------


class DirectTransformPayload(PayloadModel):
    kind: Literal["direct"] = "direct"

    def to_domain(self) -> Transform:
        return DirectTransform()


class SumTransformPayload(PayloadModel):
    kind: Literal["sum"] = "sum"

    def to_domain(self) -> Transform:
        return SumTransform()


class AverageTransformPayload(PayloadModel):
    kind: Literal["average"] = "average"

    def to_domain(self) -> Transform:
        return AverageTransform()


class LookupTransformPayload(PayloadModel):
    kind: Literal["lookup"] = "lookup"
    table: dict[str, str]

    def to_domain(self) -> Transform:
        return LookupTransform(self.table)


class FteTransformPayload(PayloadModel):
    kind: Literal["fte"] = "fte"
    standard_hours: float = Field(default=40.0, alias="standardHours")

    def to_domain(self) -> Transform:
        return FteTransform(self.standard_hours)


TransformPayload = Annotated[
    DirectTransformPayload
    | SumTransformPayload
    | AverageTransformPayload
    | LookupTransformPayload
    | FteTransformPayload,
    Field(discriminator="kind"),
]


def _transform_payload(transform: Transform) -> TransformPayload:
    match transform:
        case LookupTransform(table=table):
            return LookupTransformPayload(table=dict(table))
        case FteTransform(standard_hours=hours):
            return FteTransformPayload(standard_hours=hours)
        case SumTransform():
            return SumTransformPayload()
        case AverageTransform():
            return AverageTransformPayload()
        case _:
            return DirectTransformPayload()


# Connectors -------------------------------------------------------------------


class MappingRulePayload(PayloadModel):
    external_field: str = Field(alias="externalField")
    target_attribute: str = Field(alias="targetAttribute")
    transform: TransformPayload = Field(default_factory=DirectTransformPayload)
    required: bool = False
    priority: int = 0
    default: Any = None

    def to_domain(self) -> FieldMappingRule:
        return FieldMappingRule(
            external_field=self.external_field,
            target_attribute=self.target_attribute,
            transform=self.transform.to_domain(),
            required=self.required,
            priority=self.priority,
            default=self.default,
        )

    @classmethod
    def from_domain(cls, rule: FieldMappingRule) -> MappingRulePayload:
        return cls(
            external_field=rule.external_field,
            target_attribute=rule.target_attribute,
            transform=_transform_payload(rule.transform),
            required=rule.required,
            priority=rule.priority,
            default=rule.default,
        )


class RetryPolicyPayload(PayloadModel):
    max_attempts: int = Field(default=3, alias="maxAttempts", ge=1)
    base_delay_seconds: float = Field(default=5.0, alias="baseDelaySeconds", ge=0)
    exponential_backoff: bool = Field(default=True, alias="exponentialBackoff")

    def to_domain(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            base_delay_seconds=self.base_delay_seconds,
            exponential_backoff=self.exponential_backoff,
        )


class ConnectorPayload(PayloadModel):
    id: str
    name: str
    source_system: str = Field(alias="sourceSystem")
    entity_type: EntityType = Field(alias="entityType")
    schema_version: int = Field(alias="schemaVersion", ge=1)
    mapping_rules: list[MappingRulePayload] = Field(alias="mappingRules")
    enabled: bool = True
    rate_limit_per_minute: int | None = Field(default=60, alias="rateLimitPerMinute", ge=1)
    retry_policy: RetryPolicyPayload = Field(
        default_factory=RetryPolicyPayload, alias="retryPolicy"
    )

    def to_domain(self) -> ConnectorConfig:
        return ConnectorConfig(
            id=self.id,
            name=self.name,
            source_system=self.source_system,
            entity_type=self.entity_type,
            schema_version=self.schema_version,
            mapping_rules=tuple(rule.to_domain() for rule in self.mapping_rules),
            enabled=self.enabled,
            rate_limit_per_minute=self.rate_limit_per_minute,
            retry_policy=self.retry_policy.to_domain(),
        )


# Schemas ----------------------------------------------------------------------


class AttributeDefinitionPayload(PayloadModel):
    name: str
    required: bool = False
    data_type: DataType = Field(default=DataType.ANY, alias="dataType")

    def to_domain(self) -> AttributeDefinition:
        return AttributeDefinition(self.name, self.required, self.data_type)

    @classmethod
    def from_domain(cls, definition: AttributeDefinition) -> AttributeDefinitionPayload:
        return cls(
            name=definition.name,
            required=definition.required,
            data_type=definition.data_type,
        )


class SchemaDefinitionPayload(PayloadModel):
    entity_type: EntityType = Field(alias="entityType")
    attributes: list[AttributeDefinitionPayload]
    backward_compatible_with: int | None = Field(default=None, alias="backwardCompatibleWith")
    description: str | None = None

    def definitions(self) -> tuple[AttributeDefinition, ...]:
        return tuple(attribute.to_domain() for attribute in self.attributes)


# Records ----------------------------------------------------------------------


class RawRecordPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    external_id: str = Field(alias="externalId")
    record_fields: dict[str, Any] = Field(default_factory=dict[str, Any], alias="fields")
    extracted_at: datetime | None = Field(default=None, alias="extractedAt")

    @field_validator("external_id", mode="before")
    @classmethod
    def _stringify_id(cls, value: object) -> object:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value

    def to_domain(self) -> RawRecord:
        return RawRecord(self.external_id, self.record_fields, self.extracted_at)


_RULES_ADAPTER = TypeAdapter(list[MappingRulePayload])
_DEFINITIONS_ADAPTER = TypeAdapter(list[AttributeDefinitionPayload])


def _validate[TModel: BaseModel](model: type[TModel], data: object, what: str) -> TModel:
    try:
        if isinstance(data, str | bytes):
            return model.model_validate_json(data)
        return model.model_validate(data)
    except ValidationError as exc:
        raise MappingConfigurationError(f"Invalid {what}: {exc}") from exc


def parse_connector(data: str | bytes | Mapping[str, object]) -> ConnectorConfig:
    return _validate(ConnectorPayload, data, "connector configuration").to_domain()


def parse_schema_definition(data: str | bytes | Mapping[str, object]) -> SchemaDefinitionPayload:
    return _validate(SchemaDefinitionPayload, data, "schema definition")


def parse_record(data: str | bytes | Mapping[str, object]) -> RawRecord:
    return _validate(RawRecordPayload, data, "record").to_domain()


def parse_records_jsonl(lines: Iterable[str]) -> list[RawRecord]:
    """Parse one JSON record per line; blank lines are skipped."""

    records: list[RawRecord] = []
    for number, line in enumerate(lines, start=1):
        if not line.strip():
            continue
        try:
            records.append(parse_record(line))
        except MappingConfigurationError as exc:
            raise MappingConfigurationError(f"Line {number}: {exc}") from exc
    return records


def dump_rules(rules: Iterable[FieldMappingRule]) -> str:
    payloads = [MappingRulePayload.from_domain(rule) for rule in rules]
    return _RULES_ADAPTER.dump_json(payloads, by_alias=True).decode()


def load_rules(data: str) -> tuple[FieldMappingRule, ...]:
    try:
        payloads = _RULES_ADAPTER.validate_json(data)
    except ValidationError as exc:
        raise MappingConfigurationError(f"Invalid stored mapping rules: {exc}") from exc
    return tuple(payload.to_domain() for payload in payloads)


def dump_attribute_definitions(definitions: Iterable[AttributeDefinition]) -> str:
    payloads = [AttributeDefinitionPayload.from_domain(d) for d in definitions]
    return _DEFINITIONS_ADAPTER.dump_json(payloads, by_alias=True).decode()


def load_attribute_definitions(data: str) -> tuple[AttributeDefinition, ...]:
    try:
        payloads = _DEFINITIONS_ADAPTER.validate_json(data)
    except ValidationError as exc:
        raise MappingConfigurationError(f"Invalid stored schema attributes: {exc}") from exc
    return tuple(payload.to_domain() for payload in payloads)

