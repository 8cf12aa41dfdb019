"""Manual review operations on the staging area."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from esgsync.domain.clock import SystemClock
from esgsync.domain.errors import ConcurrentModificationError, SyncError

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

    from esgsync.domain.clock import Clock
    from esgsync.domain.model import EntityType, StagedEntity
    from esgsync.domain.ports.unit_of_work import SyncUnitOfWork

log = getLogger(__name__)


class StagedEntityNotFoundError(SyncError):
    """Raised when a review action targets an entity that was never staged."""


class StagingService:
    """Approve staged entities with the same compare-and-set the sync path uses."""

    def __init__(
        self,
        unit_of_work_factory: Callable[[], SyncUnitOfWork],
        *,
        clock: Clock | None = None,
        cas_retries: int = 3,
    ) -> None:
        self._unit_of_work_factory = unit_of_work_factory
        self._clock = clock or SystemClock()
        self.cas_retries = cas_retries

    def approve_entity(
        self,
        entity_type: EntityType,
        external_id: str,
        approved_by: str,
    ) -> StagedEntity:
        if not approved_by.strip():
            raise ValueError("approved_by must not be blank")

        for _ in range(self.cas_retries + 1):
            with self._unit_of_work_factory() as uow:
                staged = uow.repositories.staged_entities
                current = staged.get(entity_type, external_id)
                if current is None:
                    raise StagedEntityNotFoundError(
                        f"No staged {entity_type} with external id {external_id!r}"
                    )
                if current.approved:
                    return current
                entity = current.snapshot()
                entity.approved = True
                entity.approved_by = approved_by
                entity.updated_at = self._clock.now()
                if staged.compare_and_set(entity, expected_revision=current.revision):
                    uow.commit()
                    log.info("%s %s approved by %s", entity_type, external_id, approved_by)
                    return entity
                uow.rollback()

        raise ConcurrentModificationError(
            f"Staged {entity_type} {external_id} kept changing while approving"
        )

    def list_entities(self, entity_type: EntityType, *, limit: int = 100) -> Sequence[StagedEntity]:
        with self._unit_of_work_factory() as uow:
            return list(uow.repositories.staged_entities.list_by_type(entity_type, limit=limit))

    def get_entity(self, entity_type: EntityType, external_id: str) -> StagedEntity | None:
        with self._unit_of_work_factory() as uow:
            return uow.repositories.staged_entities.get(entity_type, external_id)
