"""Transformation engine: field-mapping rules applied to raw external records.

The engine is a small interpreter over the closed set of transform variants.
Rules run in declaration order; a missing required field stops mapping at once
and no partial result escapes. Raw fields that no rule consumes are kept
verbatim as vendor extensions and never leak into canonical attributes.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime
from logging import getLogger
from types import MappingProxyType
from typing import TYPE_CHECKING

from esgsync.domain.errors import MappingConfigurationError, RecordValidationError
from esgsync.domain.model import (
    AverageTransform,
    DataType,
    DirectTransform,
    FteTransform,
    LookupTransform,
    SumTransform,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from esgsync.domain.model import (
        AttributeDefinition,
        FieldMappingRule,
        RawRecord,
        SchemaVersion,
        Transform,
    )

log = getLogger(__name__)


@dataclass(slots=True, frozen=True)
class MappingResult:
    """Canonical attributes and vendor extensions produced from one raw record."""

    attributes: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    extensions: Mapping[str, object] = field(default_factory=lambda: MappingProxyType({}))
    sources: Mapping[str, FieldMappingRule] = field(default_factory=lambda: MappingProxyType({}))
    rejection_reason: str | None = None

    @property
    def ok(self) -> bool:
        return self.rejection_reason is None

    @classmethod
    def rejected(cls, reason: str) -> MappingResult:
        return cls(rejection_reason=reason)


class TransformationEngine:
    """Interpret per-connector mapping rules against raw records."""

    def validate_rules(self, rules: Sequence[FieldMappingRule], schema: SchemaVersion) -> None:
        """Raise ``MappingConfigurationError`` for rules that can never map cleanly."""

        if not rules:
            raise MappingConfigurationError(
                f"No mapping rules configured for {schema.entity_type} "
                f"v{schema.version_number}"
            )

        known = schema.attribute_names
        priorities: dict[str, set[int]] = {}
        for rule in rules:
            if rule.target_attribute not in known:
                raise MappingConfigurationError(
                    f"Rule for {rule.external_field!r} targets unknown attribute "
                    f"{rule.target_attribute!r} in {schema.entity_type} v{schema.version_number}"
                )
            transform = rule.transform
            if isinstance(transform, FteTransform) and transform.standard_hours <= 0:
                raise MappingConfigurationError(
                    f"Rule for {rule.external_field!r} has non-positive standard hours"
                )
            if isinstance(transform, LookupTransform) and not transform.table:
                raise MappingConfigurationError(
                    f"Lookup rule for {rule.external_field!r} has an empty table"
                )
            seen = priorities.setdefault(rule.target_attribute, set())
            if rule.priority in seen:
                raise MappingConfigurationError(
                    f"Attribute {rule.target_attribute!r} is mapped twice with priority "
                    f"{rule.priority}"
                )
            seen.add(rule.priority)

    def map(
        self,
        record: RawRecord,
        rules: Sequence[FieldMappingRule],
        schema: SchemaVersion,
    ) -> MappingResult:
        """Map ``record`` onto ``schema``; rejections are returned, not raised."""

        try:
            attributes, sources = self._apply_rules(record, rules)
            self._validate_against_schema(attributes, schema)
        except RecordValidationError as exc:
            log.debug("Rejected record %s: %s", record.external_id, exc)
            return MappingResult.rejected(str(exc))

        consumed = {rule.external_field for rule in rules}
        extensions = {key: value for key, value in record.fields.items() if key not in consumed}
        return MappingResult(
            attributes=MappingProxyType(attributes),
            extensions=MappingProxyType(extensions),
            sources=MappingProxyType(sources),
        )

    def _apply_rules(
        self,
        record: RawRecord,
        rules: Sequence[FieldMappingRule],
    ) -> tuple[dict[str, object], dict[str, FieldMappingRule]]:
        attributes: dict[str, object] = {}
        sources: dict[str, FieldMappingRule] = {}
        for rule in rules:
            raw = record.fields.get(rule.external_field)
            if raw is None:
                if rule.default is not None:
                    value = rule.default
                elif rule.required:
                    raise RecordValidationError(
                        f"Required field {rule.external_field!r} is missing"
                    )
                else:
                    continue
            else:
                value = apply_transform(rule.transform, raw, field_name=rule.external_field)

            current = sources.get(rule.target_attribute)
            if current is not None and current.priority > rule.priority:
                continue
            attributes[rule.target_attribute] = value
            sources[rule.target_attribute] = rule
        return attributes, sources

    def _validate_against_schema(
        self,
        attributes: Mapping[str, object],
        schema: SchemaVersion,
    ) -> None:
        missing = [name for name in schema.required_attributes if name not in attributes]
        if missing:
            raise RecordValidationError(
                f"Schema {schema.entity_type} v{schema.version_number} requires "
                f"missing attribute(s): {', '.join(missing)}"
            )
        for name, value in attributes.items():
            definition = schema.definition_for(name)
            if definition is not None and not _matches_type(definition, value):
                raise RecordValidationError(
                    f"Attribute {name!r} expects {definition.data_type}, "
                    f"got {type(value).__name__}"
                )


def apply_transform(transform: Transform, value: object, *, field_name: str) -> object:
    """Apply one transform variant to a raw value."""

    if isinstance(transform, DirectTransform):
        return value
    if isinstance(transform, SumTransform):
        numbers = _numeric_elements(value, field_name=field_name)
        total = math.fsum(numbers)
        if all(isinstance(number, int) for number in numbers):
            return int(total)
        return total
    if isinstance(transform, AverageTransform):
        numbers = _numeric_elements(value, field_name=field_name)
        if not numbers:
            raise RecordValidationError(f"Cannot average empty field {field_name!r}")
        return math.fsum(numbers) / len(numbers)
    if isinstance(transform, LookupTransform):
        if isinstance(value, bool) or not isinstance(value, str | int | float):
            raise RecordValidationError(
                f"Lookup field {field_name!r} must be a scalar, got {type(value).__name__}"
            )
        key = str(value)
        if key not in transform.table:
            raise RecordValidationError(f"No lookup entry for {key!r} in field {field_name!r}")
        return transform.table[key]
    if isinstance(transform, FteTransform):
        if transform.standard_hours <= 0:
            raise MappingConfigurationError(
                f"FTE standard hours must be positive for field {field_name!r}"
            )
        return _as_number(value, field_name=field_name) / transform.standard_hours
    raise MappingConfigurationError(f"Unsupported transform {transform!r}")  # pragma: no cover


def _numeric_elements(value: object, *, field_name: str) -> list[int | float]:
    if isinstance(value, str | bytes | Mapping) or not isinstance(value, list | tuple):
        raise RecordValidationError(
            f"Field {field_name!r} must be an array, got {type(value).__name__}"
        )
    return [
        element
        for element in value
        if isinstance(element, int | float) and not isinstance(element, bool)
    ]


def _as_number(value: object, *, field_name: str) -> float:
    if isinstance(value, bool):
        raise RecordValidationError(f"Field {field_name!r} must be numeric, got bool")
    if isinstance(value, int | float):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise RecordValidationError(f"Field {field_name!r} must be numeric, got {value!r}")


def _matches_type(definition: AttributeDefinition, value: object) -> bool:  # noqa: PLR0911
    match definition.data_type:
        case DataType.ANY:
            return True
        case DataType.STRING:
            return isinstance(value, str)
        case DataType.BOOLEAN:
            return isinstance(value, bool)
        case DataType.NUMBER:
            return isinstance(value, int | float) and not isinstance(value, bool)
        case DataType.INTEGER:
            if isinstance(value, bool):
                return False
            return isinstance(value, int) or (isinstance(value, float) and value.is_integer())
        case DataType.DATE:
            return _is_date(value)
        case DataType.ARRAY:
            return isinstance(value, list | tuple)
        case DataType.OBJECT:
            return isinstance(value, Mapping)
    return False


def _is_date(value: object) -> bool:
    if isinstance(value, date | datetime):
        return True
    if not isinstance(value, str):
        return False
    try:
        datetime.fromisoformat(value)
    except ValueError:
        return False
    return True
