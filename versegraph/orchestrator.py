"""Single-flight fetch orchestration for the verse graph view.

The `FetchOrchestrator` is the entry point for "load graph for seeds" and
"expand node X". It wraps a `GraphExpansionEngine` and guarantees:

- **Single flight**: at most one load or expand is in progress. A request
  arriving meanwhile is dropped (not queued) and answered with
  `FetchStatus.REJECTED`.
- **Cancellation**: every operation gets a fresh `CancellationToken`.
  `cancel()` signals it and aborts the running task; the staged work is
  discarded and the result is `FetchStatus.ABORTED`.
- **Timeout watchdog**: if the operation hasn't finished within
  `FetchConfig.timeout_ms` (or the per-call override) it is cancelled and the
  result is `FetchStatus.TIMED_OUT` carrying a `FetchTimeoutError`.
- **Idempotent reset**: lock, token and task handle are cleared in a
  `finally` block whatever the outcome, so a hung remote call can never
  leave the orchestrator stuck in `LOADING`.

This is the only layer that turns failures into a user-visible error state.

Example usage:
    ```python
    engine = GraphExpansionEngine(store, include_notes=True)
    orchestrator = FetchOrchestrator(engine, FetchConfig(timeout_ms=5000))

    result = await orchestrator.load_references(["John 3:16"])
    if result.status is FetchStatus.SUCCESS:
        render(result.snapshot)
    ```
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Sequence

from pydantic import BaseModel, ConfigDict, Field

from versegraph.cancellation import CancellationToken
from versegraph.config import FetchConfig
from versegraph.exceptions import (
    FetchTimeoutError,
    OperationAbortedError,
    RemoteUnavailableError,
    VerseGraphError,
)
from versegraph.expansion import ExpansionDelta, GraphExpansionEngine
from versegraph.logging import setup_logging
from versegraph.references import VerseReference, ensure_verse
from versegraph.sync import BackgroundSyncService
from versegraph.view import GraphSnapshot

logger = setup_logging()


class FetchState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"


class FetchStatus(str, Enum):
    SUCCESS = "success"
    EMPTY = "empty"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    ABORTED = "aborted"
    REJECTED = "rejected"


class FetchResult(BaseModel):
    """Outcome of one orchestrated load or expand.

    Attributes:
        status: How the operation ended.
        operation: "load_seeds", "load_references" or "expand_node".
        snapshot: The committed view after the operation. Unchanged from
            before the call unless the status is SUCCESS or EMPTY.
        error: Human-readable error for ERROR and TIMED_OUT.
        exception: The underlying exception, when there is one.
        nodes_added: Nodes committed by this operation.
        edges_added: Edges committed by this operation.
        warnings: Per-item failures that were skipped.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    status: FetchStatus
    operation: str
    snapshot: GraphSnapshot = Field(default_factory=GraphSnapshot)
    error: str | None = None
    exception: Exception | None = Field(default=None, exclude=True)
    nodes_added: int = 0
    edges_added: int = 0
    warnings: tuple[str, ...] = ()

    @property
    def ok(self) -> bool:
        return self.status in (FetchStatus.SUCCESS, FetchStatus.EMPTY)


StageFn = Callable[[CancellationToken], Awaitable[ExpansionDelta]]


class FetchOrchestrator:
    """Runs expansion-engine operations one at a time under a watchdog.

    Args:
        engine: The expansion engine whose view this orchestrator drives.
        config: Fetch settings; defaults to `FetchConfig()`.
        sync_service: Optional sync service scheduled after successful loads
            when `config.sync_after_load` is set.
    """

    def __init__(
        self,
        engine: GraphExpansionEngine,
        config: FetchConfig | None = None,
        sync_service: BackgroundSyncService | None = None,
    ) -> None:
        self.engine = engine
        self.config = config or FetchConfig()
        self.sync_service = sync_service
        self._state = FetchState.IDLE
        self._token: CancellationToken | None = None
        self._task: asyncio.Future[ExpansionDelta] | None = None
        self._background: set[asyncio.Task] = set()

    @property
    def state(self) -> FetchState:
        return self._state

    @property
    def is_loading(self) -> bool:
        return self._state is FetchState.LOADING

    def snapshot(self) -> GraphSnapshot:
        return self.engine.snapshot()

    async def load_seeds(self, seed_ids: Sequence[str], timeout_ms: int | None = None) -> FetchResult:
        """Load seed nodes, their edges and the edges' endpoints."""
        return await self._run(
            "load_seeds",
            lambda token: self.engine.stage_seeds(seed_ids, token),
            timeout_ms,
        )

    async def expand_node(self, node_id: str, timeout_ms: int | None = None) -> FetchResult:
        """Expand one hop around `node_id`."""
        return await self._run(
            "expand_node",
            lambda token: self.engine.stage_expansion(node_id, token),
            timeout_ms,
        )

    async def load_references(
        self,
        references: Sequence[VerseReference | str],
        timeout_ms: int | None = None,
    ) -> FetchResult:
        """Resolve verse references to verse ids and load them as seeds.

        Missing verses are created on the spot when
        `FetchConfig.create_missing_verses` is set; otherwise they are skipped.
        Unparseable references are logged and skipped.
        """
        return await self._run(
            "load_references",
            lambda token: self._stage_references(references, token),
            timeout_ms,
        )

    def cancel(self, reason: str = "cancelled") -> bool:
        """Abort the in-flight operation, if any.

        Returns:
            True if there was an operation to cancel.
        """
        if self._token is None:
            return False
        logger.info({"message": f"Cancelling in-flight fetch: {reason}"}, pprint=True)
        self._token.cancel(reason)
        if self._task is not None:
            self._task.cancel()
        return True

    async def aclose(self) -> None:
        """Cancel in-flight and background work, and wait for background tasks."""
        self.cancel("closed")
        background = list(self._background)
        for task in background:
            task.cancel()
        if background:
            await asyncio.gather(*background, return_exceptions=True)
        self._background.clear()

    async def _stage_references(
        self,
        references: Sequence[VerseReference | str],
        token: CancellationToken,
    ) -> ExpansionDelta:
        seed_ids: list[str] = []
        remote_errors: list[RemoteUnavailableError] = []
        for reference in references:
            token.raise_if_cancelled()
            try:
                verse = await token.run(
                    ensure_verse(
                        self.engine.store,
                        reference,
                        translation=self.config.default_translation,
                        create=self.config.create_missing_verses,
                        cancel_token=token,
                    )
                )
            except OperationAbortedError:
                raise
            except RemoteUnavailableError as e:
                logger.warning({"message": f"Store unavailable resolving {reference}", "error": str(e)}, pprint=True)
                remote_errors.append(e)
                continue
            except (ValueError, VerseGraphError) as e:
                logger.warning({"message": f"Skipping reference {reference}", "error": str(e)}, pprint=True)
                continue
            if verse is None:
                logger.info({"message": f"No verse for {reference}"}, pprint=True)
                continue
            seed_ids.append(verse.id)

        if not seed_ids and remote_errors:
            raise remote_errors[0]
        return await self.engine.stage_seeds(seed_ids, token)

    async def _run(self, operation: str, stage: StageFn, timeout_ms: int | None) -> FetchResult:
        if self._state is FetchState.LOADING:
            logger.info({"message": f"Rejected {operation}: a fetch is already in progress"}, pprint=True)
            return FetchResult(status=FetchStatus.REJECTED, operation=operation, snapshot=self.engine.snapshot())

        if timeout_ms is None:
            timeout_ms = self.config.timeout_ms
        elif timeout_ms <= 0:
            raise ValueError(f"timeout_ms must be positive, got {timeout_ms}")
        token = CancellationToken()
        self._state = FetchState.LOADING
        self._token = token
        task = asyncio.ensure_future(stage(token))
        self._task = task
        try:
            done, _ = await asyncio.wait({task}, timeout=timeout_ms / 1000.0)
            if task not in done:
                token.cancel("timed out")
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                error = FetchTimeoutError(operation, timeout_ms)
                logger.warning({"message": str(error), "operation": operation}, pprint=True)
                return FetchResult(
                    status=FetchStatus.TIMED_OUT,
                    operation=operation,
                    snapshot=self.engine.snapshot(),
                    error=str(error),
                    exception=error,
                )
            return self._finish(operation, task, token)
        except asyncio.CancelledError:
            token.cancel("caller cancelled")
            task.cancel()
            raise
        finally:
            self._state = FetchState.IDLE
            self._token = None
            self._task = None

    def _finish(self, operation: str, task: asyncio.Future[ExpansionDelta], token: CancellationToken) -> FetchResult:
        try:
            delta = task.result()
        except (OperationAbortedError, asyncio.CancelledError):
            return self._aborted(operation, token)
        except Exception as e:
            logger.error(
                {
                    "message": f"{operation} failed",
                    "error": str(e),
                    "error_type": type(e).__name__,
                },
                pprint=True,
            )
            return FetchResult(
                status=FetchStatus.ERROR,
                operation=operation,
                snapshot=self.engine.snapshot(),
                error=str(e),
                exception=e,
            )

        if token.cancelled:
            return self._aborted(operation, token)

        if delta.fetch_failed:
            error = RemoteUnavailableError("; ".join(delta.errors))
            logger.error({"message": f"{operation} failed: remote store unavailable", "errors": delta.errors}, pprint=True)
            return FetchResult(
                status=FetchStatus.ERROR,
                operation=operation,
                snapshot=self.engine.snapshot(),
                error=str(error),
                exception=error,
                warnings=tuple(delta.errors),
            )

        nodes_added, edges_added = self.engine.commit(delta)
        status = FetchStatus.SUCCESS if delta.resolved else FetchStatus.EMPTY
        logger.info(
            {
                "message": f"{operation} finished: {status.value}",
                "nodes_added": nodes_added,
                "edges_added": edges_added,
                "not_found": delta.not_found,
                "errors": delta.errors,
            },
            pprint=True,
        )
        if status is FetchStatus.SUCCESS and operation != "expand_node":
            self._schedule_sync()
        return FetchResult(
            status=status,
            operation=operation,
            snapshot=self.engine.snapshot(),
            nodes_added=nodes_added,
            edges_added=edges_added,
            warnings=tuple(delta.errors),
        )

    def _aborted(self, operation: str, token: CancellationToken) -> FetchResult:
        logger.info({"message": f"{operation} aborted", "reason": token.reason}, pprint=True)
        return FetchResult(status=FetchStatus.ABORTED, operation=operation, snapshot=self.engine.snapshot())

    def _schedule_sync(self) -> None:
        if not self.config.sync_after_load or self.sync_service is None:
            return
        task = asyncio.ensure_future(self.sync_service.sync_now())
        self._background.add(task)
        task.add_done_callback(self._background.discard)
