"""Canonical schema registry: versioning, compatibility and mapping registration."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from esgsync.domain.errors import MappingConfigurationError
from esgsync.domain.model import DataType, MappingSet, SchemaVersion, StagingPolicy
from esgsync.domain.transformation import TransformationEngine

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Sequence

    from esgsync.domain.clock import Clock
    from esgsync.domain.model import AttributeDefinition, ConnectorConfig, EntityType
    from esgsync.domain.ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)


class SchemaRegistry:
    """Versioned canonical schemas and the mapping sets registered against them."""

    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        *,
        clock: Clock | None = None,
        engine: TransformationEngine | None = None,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self._clock = clock
        self._engine = engine or TransformationEngine()

    # --- versions ---------------------------------------------------------

    def create_version(
        self,
        entity_type: EntityType,
        definitions: Iterable[AttributeDefinition],
        *,
        backward_compatible_with: int | None = None,
        description: str | None = None,
    ) -> SchemaVersion:
        """Create the next version for ``entity_type``; earlier versions are never touched."""

        definitions = tuple(definitions)
        _validate_definitions(entity_type, definitions)

        with self._unit_of_work_factory() as uow:
            schemas = uow.repositories.schemas
            existing = schemas.list_versions(entity_type)
            next_number = max((v.version_number for v in existing), default=0) + 1
            if backward_compatible_with is not None:
                known = {v.version_number for v in existing}
                if backward_compatible_with not in known:
                    raise MappingConfigurationError(
                        f"Cannot declare compatibility with unknown {entity_type} "
                        f"v{backward_compatible_with}"
                    )
            version = SchemaVersion(
                entity_type=entity_type,
                version_number=next_number,
                attribute_definitions=definitions,
                backward_compatible_with=backward_compatible_with,
                description=description,
            )
            if self._clock is not None:
                version.created_at = self._clock.now()
            schemas.add_version(version)
            uow.commit()

        log.info("Created schema %s v%s", entity_type, next_number)
        return version

    def get_version(self, entity_type: EntityType, version_number: int) -> SchemaVersion:
        with self._unit_of_work_factory() as uow:
            version = uow.repositories.schemas.get_version(entity_type, version_number)
        if version is None:
            raise MappingConfigurationError(
                f"Schema version {entity_type} v{version_number} does not exist"
            )
        return version

    def list_versions(self, entity_type: EntityType) -> Sequence[SchemaVersion]:
        with self._unit_of_work_factory() as uow:
            return list(uow.repositories.schemas.list_versions(entity_type))

    def get_active_version(self, entity_type: EntityType) -> SchemaVersion:
        """Return the newest non-deprecated version of ``entity_type``."""

        for version in reversed(self.list_versions(entity_type)):
            if not version.is_deprecated:
                return version
        raise MappingConfigurationError(f"No active schema version for {entity_type}")

    def deprecate_version(self, entity_type: EntityType, version_number: int) -> SchemaVersion:
        with self._unit_of_work_factory() as uow:
            schemas = uow.repositories.schemas
            version = schemas.get_version(entity_type, version_number)
            if version is None:
                raise MappingConfigurationError(
                    f"Schema version {entity_type} v{version_number} does not exist"
                )
            if not version.is_deprecated:
                version.is_deprecated = True
                schemas.add_version(version)
                uow.commit()
                log.info("Deprecated schema %s v%s", entity_type, version_number)
        return version

    def is_backward_compatible(
        self,
        entity_type: EntityType,
        from_version: int,
        to_version: int,
    ) -> bool:
        """Walk the compatibility chain back from ``to_version`` looking for ``from_version``."""

        with self._unit_of_work_factory() as uow:
            schemas = uow.repositories.schemas
            if schemas.get_version(entity_type, from_version) is None:
                return False
            current: int | None = to_version
            visited: set[int] = set()
            while current is not None and current not in visited:
                version = schemas.get_version(entity_type, current)
                if version is None:
                    return False
                if current == from_version:
                    return True
                visited.add(current)
                current = version.backward_compatible_with
        return False

    # --- mappings ---------------------------------------------------------

    def validate_mapping(self, connector: ConnectorConfig) -> SchemaVersion:
        """Check ``connector``'s rules against its target schema and other connectors.

        Returns the target schema version. Raises ``MappingConfigurationError``
        for unknown versions or attributes, bad rule configuration, and rules
        whose priority collides with another connector's rule for the same
        attribute.
        """

        with self._unit_of_work_factory() as uow:
            schemas = uow.repositories.schemas
            version = schemas.get_version(connector.entity_type, connector.schema_version)
            if version is None:
                raise MappingConfigurationError(
                    f"Connector {connector.id} targets unknown schema "
                    f"{connector.entity_type} v{connector.schema_version}"
                )
            others = [
                mapping_set
                for mapping_set in schemas.list_mapping_sets(
                    connector.entity_type, connector.schema_version
                )
                if mapping_set.connector_id != connector.id
            ]

        self._engine.validate_rules(connector.mapping_rules, version)

        claimed = {(rule.target_attribute, rule.priority) for rule in connector.mapping_rules}
        for other in others:
            for rule in other.rules:
                if (rule.target_attribute, rule.priority) in claimed:
                    raise MappingConfigurationError(
                        f"Connectors {connector.id} and {other.connector_id} both map "
                        f"{rule.target_attribute!r} with priority {rule.priority}"
                    )

        if version.is_deprecated:
            log.warning(
                "Connector %s targets deprecated schema %s v%s; only existing entities "
                "will be updated",
                connector.id,
                version.entity_type,
                version.version_number,
            )
        return version

    def register_mapping(self, connector: ConnectorConfig) -> MappingSet:
        """Validate and store the mapping set for ``connector``, replacing any earlier one."""

        self.validate_mapping(connector)
        mapping_set = MappingSet(
            connector_id=connector.id,
            entity_type=connector.entity_type,
            schema_version=connector.schema_version,
            rules=connector.mapping_rules,
        )
        with self._unit_of_work_factory() as uow:
            uow.repositories.schemas.save_mapping_set(mapping_set)
            uow.commit()
        log.info(
            "Registered %s mapping rule(s) for connector %s",
            len(mapping_set.rules),
            connector.id,
        )
        return mapping_set

    def require_registered(self, connector: ConnectorConfig) -> MappingSet:
        """Return the mapping set registered for ``connector``.

        Raises ``MappingConfigurationError`` when nothing is registered or the
        connector's schema target or rules differ from the registered set.
        """

        with self._unit_of_work_factory() as uow:
            mapping_set = uow.repositories.schemas.get_mapping_set(connector.id)
        if mapping_set is None:
            raise MappingConfigurationError(
                f"Connector {connector.id} has no registered mapping; register it before syncing"
            )
        registered = (mapping_set.entity_type, mapping_set.schema_version, mapping_set.rules)
        current = (connector.entity_type, connector.schema_version, connector.mapping_rules)
        if registered != current:
            raise MappingConfigurationError(
                f"Connector {connector.id} differs from its registered mapping; "
                "register it again before syncing"
            )
        return mapping_set

    # --- staging policy ---------------------------------------------------

    def staging_policy(self, entity_type: EntityType) -> StagingPolicy:
        with self._unit_of_work_factory() as uow:
            policy = uow.repositories.schemas.get_staging_policy(entity_type)
        return policy or StagingPolicy(entity_type=entity_type)

    def set_auto_approve(
        self, entity_type: EntityType, auto_approve: bool  # noqa: FBT001
    ) -> StagingPolicy:
        with self._unit_of_work_factory() as uow:
            schemas = uow.repositories.schemas
            policy = schemas.get_staging_policy(entity_type)
            if policy is None:
                policy = StagingPolicy(entity_type=entity_type, auto_approve=auto_approve)
            else:
                policy.auto_approve = auto_approve
            schemas.save_staging_policy(policy)
            uow.commit()
        return policy


def _validate_definitions(
    entity_type: EntityType,
    definitions: Sequence[AttributeDefinition],
) -> None:
    if not definitions:
        raise MappingConfigurationError(f"Schema for {entity_type} needs at least one attribute")
    seen: set[str] = set()
    for definition in definitions:
        name = definition.name.strip()
        if not name:
            raise MappingConfigurationError(f"Schema for {entity_type} has a blank attribute name")
        if name in seen:
            raise MappingConfigurationError(
                f"Schema for {entity_type} defines attribute {name!r} twice"
            )
        if not isinstance(definition.data_type, DataType):
            raise MappingConfigurationError(
                f"Attribute {name!r} has unknown data type {definition.data_type!r}"
            )
        seen.add(name)
