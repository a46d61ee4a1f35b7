"""Resource management for sizing the sync worker pools.

Upsert tasks spend most of their time waiting on the graph store, so the pool
is sized from how many calls the store can serve at once. Available memory
only caps it: every in-flight task holds before/after snapshots of its node.
"""

import os
from dataclasses import dataclass

import psutil
from loguru import logger

# Default memory reserve in MB, kept free for the OS and the graph database
DEFAULT_MEMORY_RESERVE_MB = 1000

# Fraction of available memory in-flight tasks may claim
DEFAULT_MEMORY_FRACTION = 0.7

# Snapshots, diffs and audit records of one in-flight upsert
DEFAULT_MEMORY_PER_WORKER_MB = 16

# Tasks kept in flight per store call slot, so identity, hashing and diffing
# overlap with the call that is waiting on the store
DEFAULT_TASKS_PER_STORE_SLOT = 4

DEFAULT_MAX_WORKERS = 64


@dataclass
class ResourceLimits:
    """Resource limits for worker spawning."""

    max_workers: int
    store_slots: int
    memory_per_worker_mb: int
    total_memory_mb: int
    available_memory_mb: int


def get_system_memory() -> tuple[int, int]:
    """Get total and available system memory in MB.

    Returns:
        Tuple of (total_mb, available_mb)
    """
    mem = psutil.virtual_memory()
    total_mb = mem.total // (1024 * 1024)
    available_mb = mem.available // (1024 * 1024)
    return total_mb, available_mb


def get_store_slots(store_concurrency: int | None) -> int:
    """Concurrent store calls the engine can actually have outstanding.

    None means the store takes calls from worker threads, which asyncio runs
    on its default executor of ``min(32, cpu_count + 4)`` threads.
    """
    if store_concurrency is not None:
        return max(1, store_concurrency)
    return min(32, (os.cpu_count() or 1) + 4)


def calculate_optimal_workers(
    store_concurrency: int | None = None,
    memory_per_worker_mb: int = DEFAULT_MEMORY_PER_WORKER_MB,
    min_workers: int = 1,
    max_workers: int = DEFAULT_MAX_WORKERS,
    memory_reserve_mb: int = DEFAULT_MEMORY_RESERVE_MB,
    memory_fraction: float = DEFAULT_MEMORY_FRACTION,
) -> ResourceLimits:
    """Calculate the upsert task count from store concurrency and memory.

    Args:
        store_concurrency: Calls the store serves at once (None = thread pool)
        memory_per_worker_mb: Memory budget per in-flight task
        min_workers: Minimum workers regardless of memory
        max_workers: Hard ceiling on in-flight tasks
        memory_reserve_mb: Memory to reserve for OS/other processes
        memory_fraction: Max fraction of available memory to use

    Returns:
        ResourceLimits with calculated values
    """
    slots = get_store_slots(store_concurrency)
    wanted = min(slots * DEFAULT_TASKS_PER_STORE_SLOT, max_workers)

    total_mb, available_mb = get_system_memory()
    usable_mb = int(available_mb * memory_fraction) - memory_reserve_mb
    memory_cap = max(usable_mb // memory_per_worker_mb, 1)

    optimal = max(min_workers, min(wanted, memory_cap))

    limits = ResourceLimits(
        max_workers=optimal,
        store_slots=slots,
        memory_per_worker_mb=memory_per_worker_mb,
        total_memory_mb=total_mb,
        available_memory_mb=available_mb,
    )

    logger.debug(
        f"Resource limits: {optimal} workers for {slots} store slots "
        f"({available_mb}MB available, {memory_per_worker_mb}MB per worker)"
    )

    return limits


def get_configured_workers(
    configured: int | None = None, store_concurrency: int | None = None
) -> int:
    """Get worker count from config, environment, or calculate automatically.

    Environment variables:
        CODE_GRAPH_SYNC_WORKERS: Override worker count
        CODE_GRAPH_SYNC_MEMORY_PER_WORKER: Memory per in-flight task in MB
    """
    if configured:
        return configured

    override = os.environ.get("CODE_GRAPH_SYNC_WORKERS")
    if override:
        return max(1, int(override))

    memory_per_worker = int(
        os.environ.get(
            "CODE_GRAPH_SYNC_MEMORY_PER_WORKER", str(DEFAULT_MEMORY_PER_WORKER_MB)
        )
    )
    limits = calculate_optimal_workers(
        store_concurrency=store_concurrency, memory_per_worker_mb=memory_per_worker
    )
    return limits.max_workers


def get_io_workers(file_count: int, cap: int = 32) -> int:
    """Thread count for bulk file reads: CPU-bound ceiling, never more than files."""
    cpu_count = os.cpu_count() or 4
    return max(1, min(cap, cpu_count * 2, file_count))
