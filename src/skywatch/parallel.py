"""
Parallel processing for batch pass scans.

Each object's scan is an independent, side-effect-free computation, so a
batch is distributed across workers one object at a time. Workers return
their own outcome; results are merged and sorted only after every worker has
finished. Cancellation is cooperative and checked at object boundaries.
"""

from concurrent.futures import (
    FIRST_COMPLETED,
    BrokenExecutor,
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    wait,
)
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional
import logging
import multiprocessing as mp
import os
import threading

from .errors import PropagationError

if TYPE_CHECKING:
    from .aperture import ApertureCone
    from .config import ScanSettings
    from .observer import GeoLocation
    from .orbit import PositionProvider, TrackedObject
    from .passes import Pass

logger = logging.getLogger(__name__)

# Global process pool for reuse (avoids repeated spawn overhead)
_process_pool: Optional[ProcessPoolExecutor] = None
_pool_max_workers: Optional[int] = None


class CancellationToken:
    """Caller-owned flag checked between objects of a batch scan."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self.cancelled})"


@dataclass(frozen=True)
class ObjectFailure:
    """An object whose scan was aborted by a propagation failure."""

    object_id: str
    object_name: str
    reason: str

    def to_dict(self) -> Dict[str, str]:
        return {"object_id": self.object_id, "object_name": self.object_name, "reason": self.reason}


@dataclass
class ObjectScanOutcome:
    """What one worker produced for one object."""

    object_id: str
    passes: List["Pass"] = field(default_factory=list)
    error: Optional[str] = None
    skipped: bool = False


@dataclass
class ScanResult:
    """Merged outcome of a batch scan."""

    passes: List["Pass"] = field(default_factory=list)
    failures: List[ObjectFailure] = field(default_factory=list)
    cancelled: bool = False
    scanned: int = 0
    skipped: int = 0

    @property
    def is_empty(self) -> bool:
        """True when no passes were found. Not an error condition."""
        return not self.passes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "passes": [p.to_dict() for p in self.passes],
            "failures": [f.to_dict() for f in self.failures],
            "cancelled": self.cancelled,
            "scanned": self.scanned,
            "skipped": self.skipped,
        }


def get_optimal_workers(max_workers: Optional[int] = None, num_objects: int = 0) -> int:
    """
    Determine optimal number of workers.

    Args:
        max_workers: Maximum number of workers (None = auto-detect)
        num_objects: Number of objects to scan

    Returns:
        Worker count, never more than the CPU count or the object count
    """
    cpu_count = os.cpu_count() or 4

    if max_workers is not None:
        optimal = min(max_workers, cpu_count)
    elif num_objects > 0 and num_objects < 20:
        # Small batches: leave headroom, spawn overhead dominates
        optimal = max(1, int(cpu_count * 0.75))
    else:
        optimal = cpu_count

    if num_objects > 0:
        optimal = min(optimal, num_objects)
    return max(1, optimal)


def get_or_create_process_pool(max_workers: int) -> ProcessPoolExecutor:
    """
    Get or create a reusable process pool.

    Args:
        max_workers: Number of worker processes

    Returns:
        ProcessPoolExecutor instance
    """
    global _process_pool, _pool_max_workers

    if _process_pool is not None and _pool_max_workers == max_workers:
        return _process_pool

    if _process_pool is not None:
        _process_pool.shutdown(wait=False)

    mp_context = None
    try:
        mp_context = mp.get_context("fork")
        logger.debug("Using 'fork' context for faster worker startup")
    except ValueError:
        logger.debug("'fork' context not available, using default")

    _process_pool = ProcessPoolExecutor(max_workers=max_workers, mp_context=mp_context)
    _pool_max_workers = max_workers
    return _process_pool


def cleanup_process_pool() -> None:
    """Shut down the shared process pool, if one exists."""
    global _process_pool, _pool_max_workers

    if _process_pool is not None:
        logger.info("Shutting down process pool...")
        _process_pool.shutdown(wait=True)
        _process_pool = None
        _pool_max_workers = None


def scan_object_worker(
    obj: "TrackedObject",
    observer: "GeoLocation",
    start_time: datetime,
    duration_hours: float,
    settings: "ScanSettings",
    aperture: Optional["ApertureCone"],
    provider: "PositionProvider",
    cancel_token: Optional[CancellationToken] = None,
) -> ObjectScanOutcome:
    """
    Scan a single object.

    Runs in-process, in a thread, or pickled into a worker process. It never
    raises: a failing object yields an outcome carrying the error.
    """
    if cancel_token is not None and cancel_token.cancelled:
        return ObjectScanOutcome(object_id=obj.id, skipped=True)

    # Import here to keep the worker picklable without circular imports
    from .passes import PassScanner

    try:
        scanner = PassScanner(provider=provider, settings=settings, aperture=aperture)
        passes = scanner.scan(obj, observer, start_time, duration_hours)
        return ObjectScanOutcome(object_id=obj.id, passes=passes)
    except PropagationError as e:
        logger.warning(f"Propagation failed for {obj.name}, skipping object: {e}")
        return ObjectScanOutcome(object_id=obj.id, error=str(e))
    except Exception as e:
        logger.error(f"Error computing passes for {obj.name}: {e}")
        return ObjectScanOutcome(object_id=obj.id, error=f"{type(e).__name__}: {e}")


class ParallelPassScanner:
    """
    Distributes per-object pass scans across workers.

    Backends: 'serial' (in the calling thread), 'thread' (ThreadPoolExecutor)
    and 'process' (shared ProcessPoolExecutor).
    """

    def __init__(
        self,
        provider: "PositionProvider",
        settings: "ScanSettings",
        aperture: Optional["ApertureCone"] = None,
    ) -> None:
        self.provider = provider
        self.settings = settings
        self.aperture = aperture

    def _worker_args(
        self,
        obj: "TrackedObject",
        observer: "GeoLocation",
        start_time: datetime,
        duration_hours: float,
    ) -> tuple:
        return (obj, observer, start_time, duration_hours, self.settings, self.aperture, self.provider)

    def run(
        self,
        objects: List["TrackedObject"],
        observer: "GeoLocation",
        start_time: datetime,
        duration_hours: float,
        cancel_token: Optional[CancellationToken] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None,
    ) -> ScanResult:
        """
        Scan every object and merge the results.

        Returns:
            ScanResult with passes ordered by (start time, object id, end time)
        """
        if not objects:
            return ScanResult()

        workers = get_optimal_workers(self.settings.max_workers, len(objects))
        backend = self.settings.backend
        if workers == 1 or len(objects) == 1:
            backend = "serial"

        logger.info(
            f"Scanning {len(objects)} objects from {start_time} for {duration_hours}h "
            f"({backend}, {workers} workers)"
        )

        if backend == "serial":
            outcomes = self._run_serial(objects, observer, start_time, duration_hours,
                                        cancel_token, progress_callback)
        else:
            if backend == "thread":
                executor: Executor = ThreadPoolExecutor(max_workers=workers)
            else:
                executor = get_or_create_process_pool(workers)
            try:
                outcomes = self._run_pool(executor, backend, workers, objects, observer, start_time,
                                          duration_hours, cancel_token, progress_callback)
            finally:
                if backend == "thread":
                    executor.shutdown(wait=True)

        result = self._merge(objects, outcomes, cancel_token)
        logger.info(
            f"Scan complete: {len(result.passes)} passes across {result.scanned} objects"
            f" ({len(result.failures)} failed, {result.skipped} skipped)"
        )
        return result

    def _run_serial(
        self,
        objects: List["TrackedObject"],
        observer: "GeoLocation",
        start_time: datetime,
        duration_hours: float,
        cancel_token: Optional[CancellationToken],
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> Dict[int, ObjectScanOutcome]:
        outcomes: Dict[int, ObjectScanOutcome] = {}
        for index, obj in enumerate(objects):
            outcomes[index] = scan_object_worker(
                *self._worker_args(obj, observer, start_time, duration_hours),
                cancel_token=cancel_token,
            )
            if progress_callback:
                progress_callback(index + 1, len(objects))
        return outcomes

    def _run_pool(
        self,
        executor: Executor,
        backend: str,
        workers: int,
        objects: List["TrackedObject"],
        observer: "GeoLocation",
        start_time: datetime,
        duration_hours: float,
        cancel_token: Optional[CancellationToken],
        progress_callback: Optional[Callable[[int, int], None]],
    ) -> Dict[int, ObjectScanOutcome]:
        # Tokens hold a lock and cannot cross process boundaries; for processes
        # the token is checked here before each object is handed out
        worker_token = cancel_token if backend == "thread" else None

        def scan_here(index: int) -> ObjectScanOutcome:
            return scan_object_worker(
                *self._worker_args(objects[index], observer, start_time, duration_hours),
                cancel_token=cancel_token,
            )

        outcomes: Dict[int, ObjectScanOutcome] = {}
        in_flight: Dict[Future, int] = {}
        next_index = 0
        completed = 0
        pool_broken = False

        def record(index: int, outcome: ObjectScanOutcome) -> None:
            nonlocal completed
            outcomes[index] = outcome
            completed += 1
            if progress_callback:
                progress_callback(completed, len(objects))

        while next_index < len(objects) or in_flight:
            # At most `workers` objects are in flight, so a tripped token
            # stops new objects from starting
            while next_index < len(objects) and len(in_flight) < workers:
                if cancel_token is not None and cancel_token.cancelled:
                    break
                index = next_index
                next_index += 1
                if pool_broken:
                    record(index, scan_here(index))
                    continue
                try:
                    future = executor.submit(
                        scan_object_worker,
                        *self._worker_args(objects[index], observer, start_time, duration_hours),
                        cancel_token=worker_token,
                    )
                except BrokenExecutor as e:
                    logger.warning(f"Worker pool is broken: {e}. Scanning remaining objects in-process.")
                    pool_broken = True
                    record(index, scan_here(index))
                    continue
                in_flight[future] = index

            if cancel_token is not None and cancel_token.cancelled:
                for index in range(next_index, len(objects)):
                    outcomes[index] = ObjectScanOutcome(object_id=objects[index].id, skipped=True)
                next_index = len(objects)

            if not in_flight:
                continue

            done, _ = wait(in_flight, return_when=FIRST_COMPLETED)
            for future in done:
                index = in_flight.pop(future)
                obj = objects[index]
                if future.cancelled():
                    record(index, ObjectScanOutcome(object_id=obj.id, skipped=True))
                    continue
                try:
                    outcome = future.result()
                except BrokenExecutor as e:
                    logger.warning(f"Worker pool broke while scanning {obj.name}: {e}. Scanning in-process.")
                    pool_broken = True
                    outcome = scan_here(index)
                except Exception as e:
                    # Dispatch failed (e.g. unpicklable provider): scan here instead
                    logger.warning(f"Worker dispatch failed for {obj.name}: {e}. Scanning in-process.")
                    outcome = scan_here(index)
                record(index, outcome)

        if pool_broken and backend == "process":
            # Drop the cached pool so the next batch builds a fresh one
            cleanup_process_pool()

        return outcomes

    def _merge(
        self,
        objects: List["TrackedObject"],
        outcomes: Dict[int, ObjectScanOutcome],
        cancel_token: Optional[CancellationToken],
    ) -> ScanResult:
        result = ScanResult(cancelled=bool(cancel_token is not None and cancel_token.cancelled))

        for index, obj in enumerate(objects):
            outcome = outcomes.get(index)
            if outcome is None or outcome.skipped:
                result.skipped += 1
                continue
            result.scanned += 1
            if outcome.error is not None:
                result.failures.append(
                    ObjectFailure(object_id=obj.id, object_name=obj.name, reason=outcome.error)
                )
                continue
            result.passes.extend(outcome.passes)

        result.passes.sort(key=lambda p: (p.start_time, p.object.id, p.end_time))
        return result
