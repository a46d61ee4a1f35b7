"""Identity-based upsert of entities and relationships into the graph store.

Per entity::

    IDENTIFY -> LOOKUP -> [HASH_MATCH -> SKIP] -> COMPARE
             -> (UPDATE | SKIP | FAIL) -> PERSIST -> AUDIT

Per relationship::

    LOOKUP_EDGE -> (CREATE | compare metadata -> UPDATE_METADATA | SKIP)

Entities are processed on a bounded pool of asyncio tasks; relationships run
only once every entity write has finished, so endpoints inserted in the same
run are visible. A relationship whose endpoint is still missing is deferred
and handed back to the caller rather than failed.
"""

import asyncio
import threading
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from loguru import logger

from ..config.settings import SyncConfig
from .audit import AuditRecorder
from .conflict import ConflictResolver, Resolution, entity_changes, normalize_value
from .descriptors import Descriptor, EntityDescriptor, RelationshipDescriptor
from .exceptions import (
    ConflictError,
    HashComputationError,
    InvalidIdentityInput,
    MissingEndpointError,
    NoContainerFound,
    StoreError,
    StoreTimeout,
    StoreUnavailable,
)
from .graph_store import GraphStore
from .hashing import HashCache
from .hierarchy import HierarchyResolver
from .identity import IdentifierResolver
from .models import (
    ContainmentCandidate,
    Decision,
    Entity,
    Relationship,
    RelationshipType,
    RunSummary,
    UpsertMode,
    UpsertResult,
)
from .resource_manager import get_configured_workers

T = TypeVar("T")


def new_operation_id() -> str:
    """Sortable, filesystem-safe operation id."""
    return f"op-{datetime.now(UTC):%Y%m%dT%H%M%S}-{uuid.uuid4().hex[:8]}"


@dataclass
class RunResult:
    """Everything a caller learns from one run."""

    summary: RunSummary
    entity_results: list[UpsertResult] = field(default_factory=list)
    relationship_results: list[UpsertResult] = field(default_factory=list)
    deferred: list[RelationshipDescriptor] = field(default_factory=list)

    @property
    def operation_id(self) -> str:
        return self.summary.operation_id


class UpsertEngine:
    """Orchestrates identity, change detection, conflict policy and audit.

    The engine keeps no state across runs besides what is handed to it: the
    hash cache is run-scoped and rebuilt by the caller for each run.
    """

    def __init__(
        self,
        store: GraphStore,
        config: SyncConfig | None = None,
        recorder: AuditRecorder | None = None,
        hash_cache: HashCache | None = None,
        candidates: Iterable[ContainmentCandidate] | None = None,
        identifier: IdentifierResolver | None = None,
        hierarchy: HierarchyResolver | None = None,
        clock: Callable[[], datetime] | None = None,
    ):
        self.store = store
        self.config = config or SyncConfig()
        self.recorder = recorder or AuditRecorder(enabled=self.config.audit_trail)
        self.recorder.enabled = self.config.audit_trail
        self.hash_cache = hash_cache
        self.candidates = list(candidates or [])
        self.identifier = identifier or IdentifierResolver()
        self.hierarchy = hierarchy or HierarchyResolver()
        self.resolver = ConflictResolver(self.config.conflict_resolution)
        self.workers = get_configured_workers(
            self.config.workers, store.max_concurrency
        )
        self._clock = clock or (lambda: datetime.now(UTC))

        # Set externally for cancellation support
        self.cancellation_flag: threading.Event | None = None
        # Optional (phase, done, total) callback for progress display
        self.progress_callback: Callable[[str, int, int], None] | None = None

        self._id_locks: dict[str, asyncio.Lock] = {}
        self._containment: list[RelationshipDescriptor] = []

    # ── run ──────────────────────────────────────────────────────────────

    async def run(
        self, descriptors: Iterable[Descriptor], operation_id: str | None = None
    ) -> RunResult:
        """Ingest an ordered stream of entity and relationship descriptors.

        Raises:
            ValueError: ``operation_id`` cannot name an audit trail
            StoreUnavailable: The store cannot be reached before any work starts
        """
        if operation_id is None:
            operation_id = new_operation_id()
        self.recorder.check_operation_id(operation_id)
        summary = RunSummary(operation_id=operation_id)
        start = time.perf_counter()

        try:
            await self._call_store(self.store.ping, retries=0)
        except StoreError as e:
            raise StoreUnavailable(
                f"Graph store unreachable, run {operation_id} aborted: {e}",
                {"operation_id": operation_id},
            ) from e

        if self.hash_cache is not None and not self.hash_cache.built:
            await asyncio.to_thread(self.hash_cache.build)

        entities: list[EntityDescriptor] = []
        relationships: list[RelationshipDescriptor] = []
        for d in descriptors:
            if isinstance(d, EntityDescriptor):
                entities.append(d)
            else:
                relationships.append(d)

        self._id_locks = {}
        self._containment = []
        logger.info(
            f"Run {operation_id}: {len(entities)} entities, "
            f"{len(relationships)} relationships, {self.workers} workers, "
            f"mode={self.config.upsert_mode}, "
            f"conflicts={self.config.conflict_resolution}"
        )

        result = RunResult(summary=summary)
        result.entity_results = await self._dispatch(
            "entities", entities, lambda d: self.upsert_entity(d, operation_id)
        )
        for r in result.entity_results:
            summary.count_entity(r.decision)

        if self._cancelled():
            summary.cancelled = True
            logger.warning(f"Run {operation_id} cancelled after entity phase")
        else:
            edges = self._containment + relationships
            outcomes = await self._dispatch(
                "relationships",
                edges,
                lambda d: self._upsert_relationship_outcome(d, operation_id),
            )
            for descriptor, (edge_result, deferred) in zip(edges, outcomes):
                result.relationship_results.append(edge_result)
                if deferred:
                    result.deferred.append(descriptor)
                    summary.edges_deferred += 1
                else:
                    summary.count_edge(edge_result.decision)
            if self._cancelled():
                summary.cancelled = True

        summary.execution_time_ms = (time.perf_counter() - start) * 1000
        logger.info(
            f"Run {operation_id} done: {summary.inserted} inserted, "
            f"{summary.updated} updated, {summary.skipped} skipped, "
            f"{summary.failed} failed; edges {summary.edges_created} created, "
            f"{summary.edges_updated} updated, {summary.edges_deferred} deferred "
            f"({summary.execution_time_ms:.0f}ms)"
        )
        return result

    def _cancelled(self) -> bool:
        return self.cancellation_flag is not None and self.cancellation_flag.is_set()

    async def _dispatch(
        self, phase: str, items: list[Any], worker: Callable[[Any], Awaitable[T]]
    ) -> list[T]:
        """Run ``worker`` over items with at most ``self.workers`` in flight.

        Cancellation stops new dispatches; tasks already started run to
        completion so no write goes unaudited.
        """
        semaphore = asyncio.Semaphore(self.workers)
        done = 0

        async def guarded(item: Any) -> T:
            nonlocal done
            try:
                return await worker(item)
            finally:
                semaphore.release()
                done += 1
                if self.progress_callback is not None:
                    self.progress_callback(phase, done, len(items))

        tasks: list[asyncio.Task] = []
        for item in items:
            if self._cancelled():
                break
            await semaphore.acquire()
            if self._cancelled():
                semaphore.release()
                break
            tasks.append(asyncio.create_task(guarded(item)))

        return list(await asyncio.gather(*tasks))

    # ── store access ─────────────────────────────────────────────────────

    async def _call_store(
        self, fn: Callable[..., T], *args: Any, retries: int | None = None
    ) -> T:
        """Call a store method with a timeout and bounded exponential backoff.

        Thread-safe stores run on worker threads under ``asyncio.wait_for``;
        the others run inline and enforce the timeout themselves. Only
        StoreTimeout and StoreUnavailable are retried.
        """
        timeout = self.config.store_timeout
        max_retries = self.config.max_retries if retries is None else retries
        attempt = 0
        while True:
            try:
                if self.store.thread_safe:
                    return await asyncio.wait_for(
                        asyncio.to_thread(fn, *args, timeout=timeout), timeout
                    )
                return fn(*args, timeout=timeout)
            except TimeoutError as e:
                error: StoreError = StoreTimeout(
                    f"{getattr(fn, '__name__', 'store call')} exceeded {timeout}s"
                )
                error.__cause__ = e
            except (StoreTimeout, StoreUnavailable) as e:
                error = e

            if attempt >= max_retries:
                raise error
            delay = min(
                self.config.retry_base_delay * (2**attempt), self.config.retry_max_delay
            )
            attempt += 1
            logger.warning(
                f"{type(error).__name__} on {getattr(fn, '__name__', 'store call')}, "
                f"retry {attempt}/{max_retries} in {delay:.2f}s"
            )
            await asyncio.sleep(delay)

    def _create_once(self, entity: Entity, timeout: float | None = None) -> None:
        # A timed-out earlier attempt may have committed after all
        if not self.store.exists(entity.id, timeout=timeout):
            self.store.create(entity, timeout=timeout)

    def _create_edge_once(
        self, rel: Relationship, timeout: float | None = None
    ) -> None:
        if not self.store.edge_exists(
            rel.from_id, rel.to_id, rel.type, timeout=timeout
        ):
            self.store.create_edge(rel, timeout=timeout)

    # ── entities ─────────────────────────────────────────────────────────

    async def upsert_entity(
        self, descriptor: EntityDescriptor, operation_id: str
    ) -> UpsertResult:
        """Upsert one entity; never raises for per-entity problems."""
        start = time.perf_counter()
        kind = str(descriptor.kind)

        try:
            entity_id = self.identifier.resolve(
                descriptor.kind,
                descriptor.container_path,
                descriptor.local_name,
                descriptor.disambiguator,
            )
        except InvalidIdentityInput as e:
            label = ":".join([*descriptor.container_path, descriptor.local_name or "?"])
            logger.warning(f"Dropping {kind} {label}: {e}")
            return self._fail(operation_id, label, kind, start, str(e), None, None)

        lock = self._id_locks.setdefault(entity_id, asyncio.Lock())
        async with lock:
            return await self._upsert_identified(
                descriptor, entity_id, operation_id, start
            )

    async def _upsert_identified(
        self,
        descriptor: EntityDescriptor,
        entity_id: str,
        operation_id: str,
        start: float,
    ) -> UpsertResult:
        kind = str(descriptor.kind)
        incoming = Entity(
            id=entity_id,
            kind=descriptor.kind,
            properties=dict(descriptor.properties),
            content_hash=self._content_hash(descriptor),
        )

        container_id = None
        if self.candidates and descriptor.source_path:
            try:
                container_id = self.hierarchy.select_container(
                    self.candidates, descriptor.source_path
                )
            except NoContainerFound as e:
                if not self.config.containment_fallback:
                    return self._fail(
                        operation_id, entity_id, kind, start, str(e), None,
                        incoming.snapshot(),
                    )
                container_id = self.config.root_container_id
                logger.warning(
                    f"No container for {descriptor.source_path}, using {container_id}"
                )

        existing: Entity | None = None
        try:
            existing = await self._call_store(self.store.get, entity_id)
            if existing is None:
                result = await self._insert(incoming, operation_id, start)
            else:
                result = await self._reconcile(existing, incoming, operation_id, start)
        except ConflictError as e:
            return self._fail(
                operation_id, entity_id, kind, start, str(e),
                existing.snapshot() if existing else None, incoming.snapshot(),
            )
        except StoreError as e:
            logger.error(f"Store write failed for {entity_id}: {e}")
            return self._fail(
                operation_id, entity_id, kind, start, str(e),
                existing.snapshot() if existing else None, incoming.snapshot(),
                retryable=e.retryable,
            )

        if container_id is not None and container_id != entity_id:
            self._containment.append(
                RelationshipDescriptor(
                    from_id=container_id,
                    to_id=entity_id,
                    type=RelationshipType.CONTAINS,
                )
            )
        return result

    def _content_hash(self, descriptor: EntityDescriptor) -> str | None:
        if descriptor.content_hash is not None:
            return descriptor.content_hash
        if descriptor.source_path and self.hash_cache is not None:
            try:
                return self.hash_cache.get(descriptor.source_path)
            except HashComputationError as e:
                logger.warning(f"No content hash, comparing properties in full: {e}")
        return None

    async def _insert(
        self, incoming: Entity, operation_id: str, start: float
    ) -> UpsertResult:
        now = self._clock()
        incoming.created_at = now
        incoming.updated_at = now
        await self._call_store(self._create_once, incoming)

        elapsed = self._elapsed(start)
        self._audit(
            operation_id, incoming.id, str(incoming.kind), Decision.INSERT,
            None, incoming.snapshot(), elapsed,
        )
        logger.debug(f"INSERT {incoming.id}")
        return UpsertResult(
            target_id=incoming.id,
            kind=str(incoming.kind),
            decision=Decision.INSERT,
            operation_id=operation_id,
            processing_time_ms=elapsed,
        )

    async def _reconcile(
        self, existing: Entity, incoming: Entity, operation_id: str, start: float
    ) -> UpsertResult:
        mode = self.config.upsert_mode
        if mode is UpsertMode.INSERT_ONLY:
            resolution = Resolution(Decision.SKIP, reason="insert-only mode")
            changes = {}
        elif (
            mode is UpsertMode.INCREMENTAL
            and existing.content_hash is not None
            and existing.content_hash == incoming.content_hash
        ):
            resolution = Resolution(Decision.SKIP, reason="content hash unchanged")
            changes = {}
        else:
            changes = entity_changes(existing, incoming)
            if not changes:
                resolution = Resolution(Decision.SKIP, reason="no changes")
            else:
                resolution = self.resolver.resolve(
                    existing, incoming, changes, self._clock()
                )

        after = existing
        if resolution.decision is Decision.UPDATE:
            after = await self._call_store(
                self.store.update, existing.id, resolution.diff
            )

        elapsed = self._elapsed(start)
        self._audit(
            operation_id, existing.id, str(existing.kind), resolution.decision,
            existing.snapshot() if resolution.decision is Decision.UPDATE else None,
            after.snapshot(), elapsed, reason=resolution.reason,
        )
        logger.debug(
            f"{resolution.decision} {existing.id} "
            f"({resolution.reason or 'changed'})"
        )
        return UpsertResult(
            target_id=existing.id,
            kind=str(existing.kind),
            decision=resolution.decision,
            operation_id=operation_id,
            changed_properties={k: c.to_dict() for k, c in changes.items()},
            processing_time_ms=elapsed,
        )

    # ── relationships ────────────────────────────────────────────────────

    async def upsert_relationship(
        self, descriptor: RelationshipDescriptor, operation_id: str
    ) -> UpsertResult:
        """Create or update the single edge keyed by (from, to, type).

        Used directly by the cross-entity analyzer. A missing endpoint comes
        back as a SKIP whose error names the missing ids.
        """
        result, _ = await self._upsert_relationship_outcome(descriptor, operation_id)
        return result

    async def _upsert_relationship_outcome(
        self, descriptor: RelationshipDescriptor, operation_id: str
    ) -> tuple[UpsertResult, bool]:
        start = time.perf_counter()
        rel_type = descriptor.type
        key = self.identifier.edge_key(descriptor.from_id, descriptor.to_id, rel_type)
        kind = str(rel_type)
        metadata = dict(descriptor.metadata)

        existing: Relationship | None = None
        try:
            existing = await self._call_store(
                self.store.get_edge, descriptor.from_id, descriptor.to_id, rel_type
            )
            if existing is None:
                now = self._clock()
                await self._call_store(
                    self._create_edge_once,
                    Relationship(
                        from_id=descriptor.from_id,
                        to_id=descriptor.to_id,
                        type=rel_type,
                        metadata=metadata,
                        created_at=now,
                        updated_at=now,
                    ),
                )
                decision, before = Decision.INSERT, None
            elif normalize_value(existing.metadata) == normalize_value(metadata):
                decision, before = Decision.SKIP, None
            else:
                await self._call_store(
                    self.store.update_edge_metadata,
                    descriptor.from_id,
                    descriptor.to_id,
                    rel_type,
                    metadata,
                    self._clock(),
                )
                decision, before = Decision.UPDATE, existing.metadata
        except MissingEndpointError as e:
            logger.warning(f"Deferring {key}: {e}")
            return (
                UpsertResult(
                    target_id=key,
                    kind=kind,
                    decision=Decision.SKIP,
                    operation_id=operation_id,
                    error=str(e),
                    processing_time_ms=self._elapsed(start),
                ),
                True,
            )
        except StoreError as e:
            logger.error(f"Store write failed for {key}: {e}")
            return (
                self._fail(
                    operation_id, key, kind, start, str(e),
                    existing.metadata if existing else None, metadata,
                    retryable=e.retryable,
                ),
                False,
            )

        elapsed = self._elapsed(start)
        self._audit(
            operation_id, key, kind, decision, before, metadata, elapsed,
            reason="metadata unchanged" if decision is Decision.SKIP else None,
        )
        logger.debug(f"{decision} {key}")
        changed = {}
        if decision is Decision.UPDATE:
            changed = {"metadata": {"before": before, "after": metadata}}
        return (
            UpsertResult(
                target_id=key,
                kind=kind,
                decision=decision,
                operation_id=operation_id,
                changed_properties=changed,
                processing_time_ms=elapsed,
            ),
            False,
        )

    # ── helpers ──────────────────────────────────────────────────────────

    @staticmethod
    def _elapsed(start: float) -> float:
        return (time.perf_counter() - start) * 1000

    def _audit(
        self,
        operation_id: str,
        target_id: str,
        kind: str,
        decision: Decision,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        elapsed_ms: float,
        reason: str | None = None,
        retryable: bool = False,
    ) -> None:
        self.recorder.record(
            operation_id,
            target_id,
            kind,
            decision,
            before,
            after,
            reason=reason,
            conflict_resolution=str(self.config.conflict_resolution),
            execution_time_ms=elapsed_ms,
            retryable=retryable,
            timestamp=self._clock(),
        )

    def _fail(
        self,
        operation_id: str,
        target_id: str,
        kind: str,
        start: float,
        error: str,
        before: dict[str, Any] | None,
        after: dict[str, Any] | None,
        retryable: bool = False,
    ) -> UpsertResult:
        elapsed = self._elapsed(start)
        self._audit(
            operation_id, target_id, kind, Decision.FAIL, before, after, elapsed,
            reason=error, retryable=retryable,
        )
        return UpsertResult(
            target_id=target_id,
            kind=kind,
            decision=Decision.FAIL,
            operation_id=operation_id,
            error=error,
            retryable=retryable,
            processing_time_ms=elapsed,
        )
