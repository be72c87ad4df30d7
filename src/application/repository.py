import asyncio
import logging
from contextlib import asynccontextmanager
from types import MappingProxyType
from typing import Any, AsyncIterator, Generic, List, Mapping, Optional, TypeVar

from pydantic import BaseModel

from src.application.change_detector import detect_changes
from src.application.events import ChangeEmitter, ChangesListener
from src.domain.exceptions import IdentityAssignedError, MissingIdentityError, ReentrantOperationError
from src.domain.models import EntityMapping, RepositoryChanges
from src.domain.ports import BackendAdapter
from src.infrastructure.acl import EntityTranslator

logger = logging.getLogger(__name__)

CHANGES_EVENT = "changes"

T = TypeVar("T", bound=BaseModel)


class EntityRepository(Generic[T]):
    """
    Uniform async repository over any BackendAdapter.

    Entities are translated to and from resources through the mapping layer.
    Every mutation re-reads the backend, diffs the result against the last
    snapshot and publishes a ``changes`` event when something changed.
    find_all() is a pure read; refresh() is the polling trigger.

    Listeners run before the triggering operation returns, while the repository
    is still locked. They may read from it, but a mutation must be scheduled as
    a separate task; awaiting one directly raises ReentrantOperationError.
    """

    def __init__(self, backend: BackendAdapter, mapping: EntityMapping):
        self.backend = backend
        self.mapping = mapping
        self.translator = EntityTranslator(mapping)
        self._emitter = ChangeEmitter()
        self._snapshot: Mapping[str, T] = MappingProxyType({})
        # Serializes diff-and-replace of the snapshot together with event dispatch
        self._lock = asyncio.Lock()
        self._lock_owner: Optional[asyncio.Task] = None

    @property
    def snapshot(self) -> Mapping[str, T]:
        """Read-only view of the last observed state, keyed by identity."""
        return self._snapshot

    def on(self, event: str, listener: ChangesListener) -> None:
        self._check_event(event)
        self._emitter.subscribe(listener)

    def off(self, event: str, listener: ChangesListener) -> None:
        self._check_event(event)
        self._emitter.unsubscribe(listener)

    def remove_all_listeners(self) -> None:
        self._emitter.clear()

    async def find_all(self) -> List[T]:
        resources = await self.backend.fetch_resources()
        return [self.translator.to_domain(resource) for resource in resources]

    async def find_by(self, field: str, value: Any) -> Optional[T]:
        """
        Returns the first entity whose ``field`` equals ``value``, or None.
        Identity lookups go through the backend's native lookup.
        """
        if field not in self.mapping.fields:
            raise ValueError(f"'{field}' is not a mapped field of {self.mapping.entity_type.__name__}.")

        if field == self.mapping.identity_field:
            if value is None:
                return None
            resource = await self.backend.fetch_resource(str(value))
            return self.translator.to_domain(resource) if resource is not None else None

        for entity in await self.find_all():
            if getattr(entity, field, None) == value:
                return entity
        return None

    async def create(self, entity: T) -> T:
        identity = self._identity_key(entity)
        if identity:
            raise IdentityAssignedError(identity)

        resource = self.translator.to_resource(entity)
        # An empty identity counts as unassigned, as it does for update() and remove()
        resource.pop(self.mapping.identity_key, None)
        async with self._exclusive():
            stored = await self.backend.persist_resource(resource)
            created = self.translator.to_domain(stored)
            logger.debug(f"Created {self._describe(created)}.")
            await self._sync()
        return created

    async def update(self, entity: T) -> T:
        self._require_identity(entity)

        resource = self.translator.to_resource(entity)
        async with self._exclusive():
            stored = await self.backend.persist_resource(resource)
            updated = self.translator.to_domain(stored)
            logger.debug(f"Updated {self._describe(updated)}.")
            await self._sync()
        return updated

    async def remove(self, entity: T) -> None:
        identity = self._require_identity(entity)

        async with self._exclusive():
            await self.backend.delete_resource(identity)
            logger.debug(f"Removed {self._describe(entity)}.")
            await self._sync()

    async def refresh(self) -> RepositoryChanges:
        """Re-reads the backend, commits the new snapshot and emits any changes."""
        async with self._exclusive():
            return await self._sync()

    @asynccontextmanager
    async def _exclusive(self) -> AsyncIterator[None]:
        """
        Holds the repository lock, remembering which task owns it.
        A listener awaiting a mutation runs inside the owning task and would wait on itself forever.
        """
        if self._lock_owner is not None and self._lock_owner is asyncio.current_task():
            raise ReentrantOperationError(
                "A changes listener cannot await a mutation on the repository that notified it; "
                "schedule it with asyncio.create_task() instead."
            )
        async with self._lock:
            self._lock_owner = asyncio.current_task()
            try:
                yield
            finally:
                self._lock_owner = None

    async def _sync(self) -> RepositoryChanges:
        """Must be called with the lock held."""
        current = await self.find_all()
        changes, next_snapshot = detect_changes(self._snapshot, current, self._identity_key)

        # Commit before notifying so listeners observe the new state
        self._snapshot = MappingProxyType(next_snapshot)

        if changes.is_empty:
            logger.debug("Refresh found no changes.")
            return changes

        logger.info(
            f"{self.mapping.entity_type.__name__} changes: "
            f"{len(changes.added)} added, {len(changes.modified)} modified, {len(changes.deleted)} deleted."
        )
        await self._emitter.emit(changes)
        return changes

    def _identity_key(self, entity: T) -> Optional[str]:
        identity = self.translator.identity_of(entity)
        return None if identity is None else str(identity)

    def _require_identity(self, entity: T) -> str:
        identity = self._identity_key(entity)
        if not identity:
            raise MissingIdentityError(
                f"{type(entity).__name__} needs '{self.mapping.identity_field}' for this operation."
            )
        return identity

    def _describe(self, entity: T) -> str:
        return f"{type(entity).__name__} '{self._identity_key(entity)}'"

    @staticmethod
    def _check_event(event: str) -> None:
        if event != CHANGES_EVENT:
            raise ValueError(f"Unsupported event '{event}'; only '{CHANGES_EVENT}' is emitted.")
