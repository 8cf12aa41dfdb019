from __future__ import annotations

import json
from datetime import UTC, datetime

import pytest

from esgsync.adapters.payloads import (
    dump_attribute_definitions,
    dump_rules,
    load_attribute_definitions,
    load_rules,
    parse_connector,
    parse_records_jsonl,
    parse_schema_definition,
)
from esgsync.domain.errors import MappingConfigurationError
from esgsync.domain.model import (
    DataType,
    EntityType,
    FteTransform,
    LookupTransform,
    RetryPolicy,
    SumTransform,
)
from tests.helpers.sync import EMPLOYEE_DEFINITIONS

CONNECTOR_DOCUMENT = {
    "id": "hr-system",
    "name": "Workday HR",
    "sourceSystem": "Workday",
    "entityType": "Employee",
    "schemaVersion": 2,
    "rateLimitPerMinute": 30,
    "retryPolicy": {"maxAttempts": 4, "baseDelaySeconds": 2},
    "mappingRules": [
        {"externalField": "emp_id", "targetAttribute": "employeeId", "required": True},
        {
            "externalField": "weekly_hours",
            "targetAttribute": "fteRatio",
            "transform": {"kind": "fte", "standardHours": 37.5},
        },
        {
            "externalField": "dept_code",
            "targetAttribute": "department",
            "transform": {"kind": "lookup", "table": {"FIN": "Finance"}},
            "priority": 10,
        },
        {
            "externalField": "site_headcounts",
            "targetAttribute": "totalEmployees",
            "transform": {"kind": "sum"},
        },
    ],
}


def test_parse_connector_builds_rules_with_transforms() -> None:
    connector = parse_connector(CONNECTOR_DOCUMENT)

    assert connector.id == "hr-system"
    assert connector.entity_type is EntityType.EMPLOYEE
    assert connector.schema_version == 2
    assert connector.rate_limit_per_minute == 30
    assert connector.retry_policy == RetryPolicy(max_attempts=4, base_delay_seconds=2)
    transforms = [rule.transform for rule in connector.mapping_rules]
    assert transforms[1] == FteTransform(37.5)
    assert isinstance(transforms[2], LookupTransform)
    assert transforms[2].table["FIN"] == "Finance"
    assert transforms[3] == SumTransform()
    assert connector.mapping_rules[0].required
    assert connector.mapping_rules[2].priority == 10


def test_parse_connector_accepts_json_text() -> None:
    connector = parse_connector(json.dumps(CONNECTOR_DOCUMENT))

    assert connector.name == "Workday HR"


@pytest.mark.parametrize(
    "change",
    [
        {"entityType": "Unicorn"},
        {"schemaVersion": 0},
        {"rateLimitPerMinute": 0},
        {"unexpected": True},
        {"mappingRules": [{"externalField": "a", "targetAttribute": "b", "transform": {}}]},
    ],
)
def test_invalid_connector_documents_raise_mapping_errors(change: dict[str, object]) -> None:
    with pytest.raises(MappingConfigurationError, match="connector configuration"):
        parse_connector({**CONNECTOR_DOCUMENT, **change})


def test_invalid_fte_hours_surface_as_mapping_errors() -> None:
    document = {
        **CONNECTOR_DOCUMENT,
        "mappingRules": [
            {
                "externalField": "hours",
                "targetAttribute": "fteRatio",
                "transform": {"kind": "fte", "standardHours": 0},
            }
        ],
    }

    with pytest.raises(MappingConfigurationError, match="standard hours"):
        parse_connector(document)


def test_parse_schema_definition() -> None:
    payload = parse_schema_definition(
        {
            "entityType": "Spend",
            "backwardCompatibleWith": 1,
            "attributes": [
                {"name": "amount", "required": True, "dataType": "number"},
                {"name": "currency"},
            ],
        }
    )

    definitions = payload.definitions()
    assert payload.entity_type is EntityType.SPEND
    assert payload.backward_compatible_with == 1
    assert definitions[0].data_type is DataType.NUMBER
    assert definitions[1].data_type is DataType.ANY


def test_records_jsonl_skips_blank_lines_and_stringifies_ids() -> None:
    lines = [
        '{"externalId": 42, "fields": {"emp_id": "42"}, "extractedAt": "2025-01-06T09:00:00Z"}',
        "",
        '{"externalId": "E-7", "fields": {"emp_id": "E-7", "weekly_hours": 20}}',
    ]

    records = parse_records_jsonl(lines)

    assert [record.external_id for record in records] == ["42", "E-7"]
    assert records[0].extracted_at == datetime(2025, 1, 6, 9, 0, tzinfo=UTC)
    assert records[1].fields["weekly_hours"] == 20
    assert records[1].extracted_at is None


def test_records_jsonl_reports_the_failing_line() -> None:
    lines = ['{"externalId": "E-1"}', '{"fields": {}}']

    with pytest.raises(MappingConfigurationError, match="Line 2"):
        parse_records_jsonl(lines)


def test_stored_rules_and_definitions_load_back() -> None:
    rules = parse_connector(CONNECTOR_DOCUMENT).mapping_rules

    assert load_rules(dump_rules(rules)) == rules
    assert load_attribute_definitions(dump_attribute_definitions(EMPLOYEE_DEFINITIONS)) == (
        EMPLOYEE_DEFINITIONS
    )


def test_corrupt_stored_rules_raise_mapping_errors() -> None:
    with pytest.raises(MappingConfigurationError, match="stored mapping rules"):
        load_rules('[{"externalField": "a"}]')
