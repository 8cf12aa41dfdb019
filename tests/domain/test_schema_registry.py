from __future__ import annotations

import pytest

from esgsync.domain.errors import MappingConfigurationError
from esgsync.domain.model import AttributeDefinition, DataType, EntityType, FieldMappingRule
from esgsync.domain.schema_registry import SchemaRegistry
from tests.helpers.sync import (
    EMPLOYEE_DEFINITIONS,
    FakeClock,
    FakeSyncUnitOfWorkFactory,
    make_connector,
)


@pytest.fixture
def registry(fake_uow: FakeSyncUnitOfWorkFactory, clock: FakeClock) -> SchemaRegistry:
    return SchemaRegistry(fake_uow, clock=clock)


def _headcount_rule(priority: int) -> tuple[FieldMappingRule, ...]:
    return (
        FieldMappingRule(external_field="emp_id", target_attribute="employeeId", priority=priority),
        FieldMappingRule(
            external_field="headcount",
            target_attribute="totalEmployees",
            priority=priority,
        ),
    )


def test_versions_are_strictly_increasing_per_entity_type(registry: SchemaRegistry) -> None:
    first = registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    second = registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    other = registry.create_version(EntityType.SPEND, [AttributeDefinition("amount")])

    assert (first.version_number, second.version_number) == (1, 2)
    assert other.version_number == 1
    assert [v.version_number for v in registry.list_versions(EntityType.EMPLOYEE)] == [1, 2]


def test_creating_a_version_leaves_earlier_versions_untouched(registry: SchemaRegistry) -> None:
    first = registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.create_version(
        EntityType.EMPLOYEE,
        [*EMPLOYEE_DEFINITIONS, AttributeDefinition("site")],
        backward_compatible_with=1,
    )

    stored = registry.get_version(EntityType.EMPLOYEE, 1)
    assert stored.attribute_definitions == first.attribute_definitions
    assert stored.backward_compatible_with is None


def test_compatibility_walks_the_chain(registry: SchemaRegistry) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS, backward_compatible_with=1)
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS, backward_compatible_with=2)
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)

    assert registry.is_backward_compatible(EntityType.EMPLOYEE, 1, 3)
    assert registry.is_backward_compatible(EntityType.EMPLOYEE, 2, 3)
    assert registry.is_backward_compatible(EntityType.EMPLOYEE, 3, 3)
    assert not registry.is_backward_compatible(EntityType.EMPLOYEE, 1, 4)
    assert not registry.is_backward_compatible(EntityType.EMPLOYEE, 3, 1)
    assert not registry.is_backward_compatible(EntityType.EMPLOYEE, 9, 3)


def test_compatibility_target_must_exist(registry: SchemaRegistry) -> None:
    with pytest.raises(MappingConfigurationError, match="unknown"):
        registry.create_version(
            EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS, backward_compatible_with=3
        )


def test_definitions_are_validated(registry: SchemaRegistry) -> None:
    with pytest.raises(MappingConfigurationError, match="at least one"):
        registry.create_version(EntityType.EMPLOYEE, [])
    with pytest.raises(MappingConfigurationError, match="twice"):
        registry.create_version(
            EntityType.EMPLOYEE,
            [AttributeDefinition("a"), AttributeDefinition("a", data_type=DataType.STRING)],
        )


def test_active_version_skips_deprecated(registry: SchemaRegistry) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)

    assert registry.get_active_version(EntityType.EMPLOYEE).version_number == 2

    deprecated = registry.deprecate_version(EntityType.EMPLOYEE, 2)

    assert deprecated.is_deprecated
    assert registry.get_active_version(EntityType.EMPLOYEE).version_number == 1


def test_missing_versions_raise(registry: SchemaRegistry) -> None:
    with pytest.raises(MappingConfigurationError):
        registry.get_version(EntityType.EMPLOYEE, 1)
    with pytest.raises(MappingConfigurationError):
        registry.get_active_version(EntityType.EMPLOYEE)
    with pytest.raises(MappingConfigurationError):
        registry.deprecate_version(EntityType.EMPLOYEE, 1)


def test_validate_mapping_rejects_unknown_schema_version(registry: SchemaRegistry) -> None:
    with pytest.raises(MappingConfigurationError, match="unknown schema"):
        registry.validate_mapping(make_connector(schema_version=7))


def test_equal_priority_across_connectors_is_rejected_at_registration(
    registry: SchemaRegistry,
) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.register_mapping(make_connector("hr-system", rules=_headcount_rule(10)))

    with pytest.raises(MappingConfigurationError, match="hr-system"):
        registry.register_mapping(make_connector("payroll", rules=_headcount_rule(10)))


def test_distinct_priorities_across_connectors_are_allowed(
    registry: SchemaRegistry,
    fake_uow: FakeSyncUnitOfWorkFactory,
) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.register_mapping(make_connector("hr-system", rules=_headcount_rule(10)))
    registry.register_mapping(make_connector("payroll", rules=_headcount_rule(20)))

    assert set(fake_uow.repositories.schemas.mapping_sets) == {"hr-system", "payroll"}


def test_reregistering_a_connector_replaces_its_rules(
    registry: SchemaRegistry,
    fake_uow: FakeSyncUnitOfWorkFactory,
) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.register_mapping(make_connector("hr-system", rules=_headcount_rule(10)))
    registry.register_mapping(make_connector("hr-system", rules=_headcount_rule(30)))

    stored = fake_uow.repositories.schemas.get_mapping_set("hr-system")
    assert stored is not None
    assert {rule.priority for rule in stored.rules} == {30}


def test_staging_policy_defaults_to_manual_review(registry: SchemaRegistry) -> None:
    assert registry.staging_policy(EntityType.SPEND).auto_approve is False

    registry.set_auto_approve(EntityType.EMPLOYEE, True)  # noqa: FBT003

    assert registry.staging_policy(EntityType.EMPLOYEE).auto_approve is True
    assert registry.staging_policy(EntityType.SPEND).auto_approve is False


def test_require_registered_returns_the_matching_mapping_set(registry: SchemaRegistry) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    connector = make_connector("hr-system", rules=_headcount_rule(10))
    registry.register_mapping(connector)

    mapping_set = registry.require_registered(connector)

    assert mapping_set.connector_id == "hr-system"
    assert mapping_set.rules == connector.mapping_rules


def test_require_registered_rejects_unregistered_connectors(registry: SchemaRegistry) -> None:
    with pytest.raises(MappingConfigurationError, match="no registered mapping"):
        registry.require_registered(make_connector("hr-system"))


def test_require_registered_rejects_changed_rules(registry: SchemaRegistry) -> None:
    registry.create_version(EntityType.EMPLOYEE, EMPLOYEE_DEFINITIONS)
    registry.register_mapping(make_connector("hr-system", rules=_headcount_rule(10)))

    with pytest.raises(MappingConfigurationError, match="differs from its registered mapping"):
        registry.require_registered(make_connector("hr-system", rules=_headcount_rule(30)))
