"""Best-effort background synchronization of the local cache with the remote store.

A sync pass handles two entity classes, notes and edges, concurrently and
independently. For each class it:

1. Fetches the remote collection. If that fails the class is treated as
   having an empty remote side and marked `remote_available=False`, which
   makes the whole pass count as failed.
2. Selects local entities to push: entities the remote store doesn't have
   that changed after the last successful sync (all of them when there has
   never been one), then entities the remote store has an older copy of.
3. Pushes at most `SyncConfig.batch_size` of them. A failed push is logged
   and skipped; entities over the cap are deferred to the next pass.
4. Writes the reconciled collection (last-writer-wins over local, remote and
   push results; edges also deduplicated by canonical triple) back to the
   local cache.

The last-sync timestamp only advances when every class succeeded, and never
past the oldest entity that was deferred or failed to push, so those are
still selected next pass. Failed
passes increment a counter; at `SyncConfig.max_consecutive_failures` the
service refuses to sync for `SyncConfig.backoff_seconds`.

`sync_now()` never raises. Callers inspect the returned `SyncResult`.
"""

import asyncio
import time
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence, TypeVar

from pydantic import BaseModel, ValidationError

from versegraph.config import SyncConfig
from versegraph.edge import Edge
from versegraph.entity import Note, VersionedEntity, utc_now
from versegraph.logging import setup_logging
from versegraph.reconcile import dedupe_edges, merge_collections, recency
from versegraph.storage.interfaces import (
    EDGES_COLLECTION,
    NOTES_COLLECTION,
    LocalCacheInterface,
    RemoteGraphStoreInterface,
)

logger = setup_logging()

E = TypeVar("E", bound=VersionedEntity)


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    THROTTLED = "throttled"
    IN_PROGRESS = "in_progress"


class ClassSyncReport(BaseModel):
    """What one sync pass did for one entity class.

    Attributes:
        entity_class: Collection name ("notes" or "edges").
        remote_available: False when the remote collection couldn't be fetched.
        created: Entities created remotely.
        updated: Entities whose newer local copy was pushed over the remote one.
        failed_pushes: Ids whose push failed this pass.
        deferred: Entities left for a later pass by the batch cap.
        persisted: Size of the reconciled collection written to the cache.
        oldest_pending: Earliest `updated_at` among deferred and failed
            entities, which caps the next last-sync timestamp.
        error: Pass-level failure for this class, if any.
    """

    model_config = {"frozen": True}

    entity_class: str
    remote_available: bool = True
    created: int = 0
    updated: int = 0
    failed_pushes: tuple[str, ...] = ()
    deferred: int = 0
    persisted: int = 0
    oldest_pending: datetime | None = None
    error: str | None = None

    @property
    def pushed(self) -> int:
        return self.created + self.updated

    @property
    def ok(self) -> bool:
        return self.remote_available and self.error is None


class SyncResult(BaseModel):
    model_config = {"frozen": True}

    status: SyncOutcome
    reports: tuple[ClassSyncReport, ...] = ()
    last_sync: datetime | None = None
    error: str | None = None
    backoff_remaining: float = 0.0

    @property
    def ok(self) -> bool:
        return self.status is SyncOutcome.SUCCESS


class SyncStatus(BaseModel):
    model_config = {"frozen": True}

    in_progress: bool
    consecutive_failures: int
    backoff_remaining: float
    last_sync: datetime | None = None


class BackgroundSyncService:
    """Pushes local-only changes upstream and refreshes the local cache.

    Args:
        remote: The authoritative remote store.
        cache: The local cache holding the "notes" and "edges" collections.
        config: Batch cap and backoff settings.
        clock: Wall clock for sync timestamps.
        monotonic: Clock for backoff deadlines.

    Example:
        ```python
        service = BackgroundSyncService(store, JsonFileLocalCache(Path("cache.json")))
        result = await service.sync_now()
        if not result.ok:
            print(service.status())
        ```
    """

    def __init__(
        self,
        remote: RemoteGraphStoreInterface,
        cache: LocalCacheInterface,
        config: SyncConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.remote = remote
        self.cache = cache
        self.config = config or SyncConfig()
        self._clock = clock
        self._monotonic = monotonic
        self._in_progress = False
        self._consecutive_failures = 0
        self._backoff_until: float | None = None
        self._last_sync: datetime | None = None

    @property
    def in_progress(self) -> bool:
        return self._in_progress

    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    def backoff_remaining(self) -> float:
        """Seconds until sync attempts are accepted again (0 when not backing off).

        An expired backoff clears itself and resets the failure counter.
        """
        if self._backoff_until is None:
            return 0.0
        remaining = self._backoff_until - self._monotonic()
        if remaining > 0:
            return remaining
        self._backoff_until = None
        self._consecutive_failures = 0
        return 0.0

    def reset(self) -> None:
        """Clear the failure counter and any pending backoff."""
        self._consecutive_failures = 0
        self._backoff_until = None

    def status(self) -> SyncStatus:
        return SyncStatus(
            in_progress=self._in_progress,
            consecutive_failures=self._consecutive_failures,
            backoff_remaining=self.backoff_remaining(),
            last_sync=self._last_sync,
        )

    async def sync_now(self) -> SyncResult:
        """Run one sync pass unless one is running or the service is backing off."""
        if self._in_progress:
            return SyncResult(status=SyncOutcome.IN_PROGRESS, last_sync=self._last_sync)
        remaining = self.backoff_remaining()
        if remaining > 0:
            logger.debug({"message": f"Sync throttled for another {remaining:.1f}s"}, pprint=True)
            return SyncResult(status=SyncOutcome.THROTTLED, last_sync=self._last_sync, backoff_remaining=remaining)

        self._in_progress = True
        try:
            return await self._run_pass()
        except Exception as e:
            logger.error(
                {
                    "message": "Sync pass failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                pprint=True,
            )
            self._record_failure()
            return SyncResult(status=SyncOutcome.FAILED, last_sync=self._last_sync, error=str(e))
        finally:
            self._in_progress = False

    async def _run_pass(self) -> SyncResult:
        started = self._clock()
        last_sync = await self.cache.get_last_sync_timestamp()
        self._last_sync = last_sync

        reports = await asyncio.gather(
            self._sync_class(
                NOTES_COLLECTION,
                Note,
                last_sync,
                list_remote=self.remote.list_notes,
                create=self.remote.create_note,
                update=lambda note: self.remote.update_note(
                    note.id,
                    {"content": note.content, "tags": list(note.tags), "updated_at": note.updated_at},
                ),
            ),
            self._sync_class(
                EDGES_COLLECTION,
                Edge,
                last_sync,
                list_remote=self.remote.list_edges,
                create=lambda edge: self.remote.create_edge(edge.source_id, edge.target_id, edge.type, edge.description),
                update=lambda edge: self.remote.update_edge(
                    edge.id,
                    {"description": edge.description, "updated_at": edge.updated_at},
                ),
            ),
        )

        if not all(report.ok for report in reports):
            self._record_failure()
            logger.warning(
                {
                    "message": "Sync pass finished with failures",
                    "consecutive_failures": self._consecutive_failures,
                    "reports": [report.model_dump() for report in reports],
                },
                pprint=True,
            )
            return SyncResult(status=SyncOutcome.FAILED, reports=tuple(reports), last_sync=last_sync)

        new_last_sync = started
        for report in reports:
            if report.oldest_pending is not None:
                new_last_sync = min(new_last_sync, report.oldest_pending - timedelta(microseconds=1))
        await self.cache.set_last_sync_timestamp(new_last_sync)
        self._last_sync = new_last_sync
        self._consecutive_failures = 0
        logger.info(
            {
                "message": "Sync pass finished",
                "pushed": {report.entity_class: report.pushed for report in reports},
                "deferred": {report.entity_class: report.deferred for report in reports},
                "last_sync": new_last_sync.isoformat(),
            },
            pprint=True,
        )
        return SyncResult(status=SyncOutcome.SUCCESS, reports=tuple(reports), last_sync=new_last_sync)

    def _record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures >= self.config.max_consecutive_failures:
            self._backoff_until = self._monotonic() + self.config.backoff_seconds
            logger.warning(
                {
                    "message": f"Sync backing off for {self.config.backoff_seconds}s",
                    "consecutive_failures": self._consecutive_failures,
                },
                pprint=True,
            )

    async def _sync_class(
        self,
        name: str,
        model: type[E],
        last_sync: datetime | None,
        list_remote: Callable[[], Awaitable[Sequence[E]]],
        create: Callable[[E], Awaitable[E]],
        update: Callable[[E], Awaitable[E]],
    ) -> ClassSyncReport:
        try:
            local = self._parse_records(name, model, await self.cache.get_collection(name))
        except Exception as e:
            logger.error({"message": f"Cannot read local {name}", "error": str(e)}, pprint=True)
            return ClassSyncReport(entity_class=name, error=str(e))

        remote_available = True
        try:
            remote = list(await list_remote())
        except Exception as e:
            logger.warning(
                {"message": f"Remote {name} unavailable, treating as empty", "error": str(e)},
                pprint=True,
            )
            remote = []
            remote_available = False

        creates, updates = self._select(local, remote, last_sync)
        queue = [(entity, False) for entity in creates] + [(entity, True) for entity in updates]
        batch = queue[: self.config.batch_size]
        deferred = len(queue) - len(batch)
        if deferred:
            logger.info({"message": f"Deferring {deferred} {name} to the next pass"}, pprint=True)

        pushed: list[E] = []
        failed: list[str] = []
        pending = [entity for entity, _ in queue[self.config.batch_size :]]
        created = updated = 0
        for entity, is_update in batch:
            try:
                result = await (update(entity) if is_update else create(entity))
            except Exception as e:
                logger.warning(
                    {
                        "message": f"Failed to push {name} {entity.id}",
                        "error": str(e),
                        "error_type": type(e).__name__,
                    },
                    pprint=True,
                )
                failed.append(entity.id)
                pending.append(entity)
                continue
            pushed.append(result)
            if is_update:
                updated += 1
            else:
                created += 1

        oldest_pending = min((recency(entity) for entity in pending), default=None)

        reconciled: list[Any] = merge_collections(local, [*remote, *pushed])
        if model is Edge:
            # Pushed edges come first so their remote ids win timestamp ties.
            reconciled = dedupe_edges([*pushed, *reconciled])

        try:
            await self.cache.set_collection(name, [entity.model_dump(mode="json") for entity in reconciled])
        except Exception as e:
            logger.error({"message": f"Cannot write local {name}", "error": str(e)}, pprint=True)
            return ClassSyncReport(
                entity_class=name,
                remote_available=remote_available,
                created=created,
                updated=updated,
                failed_pushes=tuple(failed),
                deferred=deferred,
                oldest_pending=oldest_pending,
                error=str(e),
            )

        return ClassSyncReport(
            entity_class=name,
            remote_available=remote_available,
            created=created,
            updated=updated,
            failed_pushes=tuple(failed),
            deferred=deferred,
            persisted=len(reconciled),
            oldest_pending=oldest_pending,
        )

    @staticmethod
    def _parse_records(name: str, model: type[E], records: Sequence[dict[str, Any]]) -> list[E]:
        entities: list[E] = []
        for record in records:
            try:
                entities.append(model.model_validate(record))
            except ValidationError as e:
                logger.warning(
                    {"message": f"Skipping malformed cached {name} record", "record_id": record.get("id"), "error": str(e)},
                    pprint=True,
                )
        return entities

    @staticmethod
    def _select(local: Sequence[E], remote: Sequence[E], last_sync: datetime | None) -> tuple[list[E], list[E]]:
        """Split local entities into (to create, to update) remotely.

        Edges also match their remote copy by canonical triple, since a
        remotely created edge gets a new id.
        """
        remote_by_id = {entity.id: entity for entity in remote}
        remote_by_key = {entity.canonical_key: entity for entity in remote if isinstance(entity, Edge)}

        creates: list[E] = []
        updates: list[E] = []
        for entity in local:
            if last_sync is not None and recency(entity) <= last_sync:
                continue
            counterpart = remote_by_id.get(entity.id)
            if counterpart is None and isinstance(entity, Edge):
                counterpart = remote_by_key.get(entity.canonical_key)
                if counterpart is not None:
                    entity = entity.model_copy(update={"id": counterpart.id})
            if counterpart is None:
                creates.append(entity)
            elif recency(entity) > recency(counterpart):
                updates.append(entity)
        return creates, updates
