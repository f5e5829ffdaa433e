"""
Tests for the parallel processing module.

Pool backends are mostly exercised with thread pools standing in for process
pools so the fake providers do not need to cross a process boundary; the
slow tests use a real fork-based pool.
"""

import pickle
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from concurrent.futures.process import BrokenProcessPool
from datetime import datetime
from typing import List
from unittest.mock import MagicMock, patch

import pytest

from skywatch.config import ScanSettings
from skywatch.observer import GeoLocation
from skywatch.parallel import (
    CancellationToken,
    ObjectScanOutcome,
    ParallelPassScanner,
    ScanResult,
    cleanup_process_pool,
    get_optimal_workers,
    get_or_create_process_pool,
    scan_object_worker,
)


class TestGetOptimalWorkers:
    """Tests for get_optimal_workers function."""

    @patch('os.cpu_count')
    def test_default_uses_all_cores(self, mock_cpu) -> None:
        mock_cpu.return_value = 8
        assert get_optimal_workers() == 8

    @patch('os.cpu_count')
    def test_respects_max_workers(self, mock_cpu) -> None:
        mock_cpu.return_value = 16
        assert get_optimal_workers(max_workers=4) == 4

    @patch('os.cpu_count')
    def test_max_workers_cant_exceed_cpu(self, mock_cpu) -> None:
        mock_cpu.return_value = 4
        assert get_optimal_workers(max_workers=16) == 4

    @patch('os.cpu_count')
    def test_small_batch_uses_fewer_cores(self, mock_cpu) -> None:
        mock_cpu.return_value = 8
        # 75% of 8 = 6, below the object count
        assert get_optimal_workers(num_objects=10) == 6

    @patch('os.cpu_count')
    def test_limited_by_object_count(self, mock_cpu) -> None:
        mock_cpu.return_value = 16
        assert get_optimal_workers(num_objects=5) == 5

    @patch('os.cpu_count')
    def test_large_batch_uses_all_cores(self, mock_cpu) -> None:
        mock_cpu.return_value = 8
        assert get_optimal_workers(num_objects=500) == 8

    @patch('os.cpu_count')
    def test_handles_none_cpu_count(self, mock_cpu) -> None:
        mock_cpu.return_value = None
        assert get_optimal_workers() == 4


class TestProcessPool:
    def teardown_method(self) -> None:
        cleanup_process_pool()

    @patch('skywatch.parallel.ProcessPoolExecutor')
    def test_pool_is_reused(self, mock_pool_cls) -> None:
        first = get_or_create_process_pool(2)
        second = get_or_create_process_pool(2)
        assert first is second
        assert mock_pool_cls.call_count == 1

    @patch('skywatch.parallel.ProcessPoolExecutor')
    def test_pool_recreated_for_new_size(self, mock_pool_cls) -> None:
        mock_pool_cls.side_effect = [MagicMock(), MagicMock()]
        first = get_or_create_process_pool(2)
        second = get_or_create_process_pool(4)
        assert first is not second
        first.shutdown.assert_called_once_with(wait=False)

    @patch('skywatch.parallel.ProcessPoolExecutor')
    def test_cleanup(self, mock_pool_cls) -> None:
        pool = get_or_create_process_pool(2)
        cleanup_process_pool()
        pool.shutdown.assert_called_once_with(wait=True)
        cleanup_process_pool()  # idempotent


class TestCancellationToken:
    def test_cancel(self) -> None:
        token = CancellationToken()
        assert not token.cancelled
        token.cancel()
        assert token.cancelled


class TestScanObjectWorker:
    def test_returns_passes(
        self, object_factory, london: GeoLocation, base_datetime: datetime,
        profile_provider, window_profile, serial_settings: ScanSettings,
    ) -> None:
        provider = profile_provider(london, base_datetime, window_profile([(5, 20)]))
        outcome = scan_object_worker(
            object_factory("1"), london, base_datetime, 1.0, serial_settings, None, provider
        )
        assert outcome.error is None
        assert len(outcome.passes) == 1

    def test_captures_propagation_error(
        self, object_factory, london: GeoLocation, base_datetime: datetime,
        failing_provider, serial_settings: ScanSettings,
    ) -> None:
        outcome = scan_object_worker(
            object_factory("1"), london, base_datetime, 1.0, serial_settings, None, failing_provider
        )
        assert outcome.passes == []
        assert "decayed elements" in outcome.error

    def test_captures_unexpected_error(
        self, object_factory, london: GeoLocation, base_datetime: datetime, serial_settings: ScanSettings,
    ) -> None:
        with patch('skywatch.passes.PassScanner.scan', side_effect=RuntimeError("bug")):
            outcome = scan_object_worker(
                object_factory("1"), london, base_datetime, 1.0, serial_settings, None, MagicMock()
            )
        assert outcome.error == "RuntimeError: bug"

    def test_skips_when_cancelled(
        self, object_factory, london: GeoLocation, base_datetime: datetime,
        failing_provider, serial_settings: ScanSettings,
    ) -> None:
        token = CancellationToken()
        token.cancel()
        outcome = scan_object_worker(
            object_factory("1"), london, base_datetime, 1.0, serial_settings, None,
            failing_provider, cancel_token=token,
        )
        assert outcome.skipped


class _ImmediateFailureExecutor(Executor):
    """Executor whose every submission fails as if arguments could not be pickled."""

    def submit(self, fn, *args, **kwargs):  # type: ignore[override]
        future: Future = Future()
        future.set_exception(pickle.PicklingError("cannot pickle 'function' object"))
        return future


@pytest.fixture
def objects(object_factory) -> List:
    return [object_factory(str(i)) for i in (3, 1, 2)]


@pytest.fixture
def provider(london: GeoLocation, base_datetime: datetime, profile_provider, window_profile):
    return profile_provider(london, base_datetime, window_profile([(5, 20), (40, 50)]))


class TestParallelPassScanner:
    """Tests for ParallelPassScanner.run across backends."""

    @patch('os.cpu_count', return_value=4)
    def test_thread_backend_matches_serial(
        self, _cpu, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        serial = ParallelPassScanner(provider, ScanSettings(min_elevation_deg=0.0, backend="serial"))
        threaded = ParallelPassScanner(
            provider, ScanSettings(min_elevation_deg=0.0, backend="thread", max_workers=3)
        )

        expected = serial.run(objects, london, base_datetime, 1.0)
        actual = threaded.run(objects, london, base_datetime, 1.0)

        assert actual.passes == expected.passes
        assert [p.object.id for p in actual.passes] == ["1", "2", "3", "1", "2", "3"]

    @patch('os.cpu_count', return_value=4)
    def test_process_backend_uses_shared_pool(
        self, _cpu, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        pool = ThreadPoolExecutor(max_workers=3)
        try:
            with patch('skywatch.parallel.get_or_create_process_pool', return_value=pool) as mock_get:
                result = ParallelPassScanner(
                    provider, ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=3)
                ).run(objects, london, base_datetime, 1.0)
        finally:
            pool.shutdown(wait=True)

        mock_get.assert_called_once_with(3)
        assert len(result.passes) == 6
        assert result.scanned == 3

    @patch('os.cpu_count', return_value=4)
    def test_dispatch_failure_falls_back_in_process(
        self, _cpu, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        with patch('skywatch.parallel.get_or_create_process_pool', return_value=_ImmediateFailureExecutor()):
            result = ParallelPassScanner(
                provider, ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
            ).run(objects, london, base_datetime, 1.0)

        assert len(result.passes) == 6
        assert result.failures == []

    def test_single_object_runs_serially(
        self, object_factory, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        with patch('skywatch.parallel.get_or_create_process_pool') as mock_get:
            result = ParallelPassScanner(provider, ScanSettings(min_elevation_deg=0.0)).run(
                [object_factory("1")], london, base_datetime, 1.0
            )
        mock_get.assert_not_called()
        assert len(result.passes) == 2

    def test_empty_batch(self, provider, london: GeoLocation, base_datetime: datetime) -> None:
        result = ParallelPassScanner(provider, ScanSettings()).run([], london, base_datetime, 1.0)
        assert result == ScanResult()

    def test_progress_callback(
        self, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        calls = []
        ParallelPassScanner(provider, ScanSettings(backend="serial")).run(
            objects, london, base_datetime, 1.0, progress_callback=lambda done, total: calls.append((done, total))
        )
        assert calls == [(1, 3), (2, 3), (3, 3)]

    def test_cancel_between_objects(
        self, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        token = CancellationToken()

        def cancel_after_first(done: int, total: int) -> None:
            if done == 1:
                token.cancel()

        result = ParallelPassScanner(provider, ScanSettings(min_elevation_deg=0.0, backend="serial")).run(
            objects, london, base_datetime, 1.0, cancel_token=token, progress_callback=cancel_after_first,
        )

        assert result.cancelled
        assert result.scanned == 1
        assert result.skipped == 2
        assert {p.object.id for p in result.passes} == {"3"}

    @patch('os.cpu_count', return_value=4)
    def test_pre_cancelled_thread_batch(
        self, _cpu, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        token = CancellationToken()
        token.cancel()
        result = ParallelPassScanner(provider, ScanSettings(backend="thread", max_workers=2)).run(
            objects, london, base_datetime, 1.0, cancel_token=token
        )
        assert result.cancelled
        assert result.passes == []
        assert result.skipped == 3

    def test_failures_are_recorded_per_object(
        self, objects, provider, routing_provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        routing = routing_provider({objects[0].elements.line1: provider})
        result = ParallelPassScanner(routing, ScanSettings(min_elevation_deg=0.0, backend="serial")).run(
            objects, london, base_datetime, 1.0
        )
        assert sorted(f.object_id for f in result.failures) == ["1", "2"]
        assert {p.object.id for p in result.passes} == {"3"}
        assert result.to_dict()["failures"][0]["reason"] == "no route"


class TestObjectScanOutcome:
    def test_defaults(self) -> None:
        outcome = ObjectScanOutcome(object_id="1")
        assert outcome.passes == []
        assert outcome.error is None
        assert not outcome.skipped


class _BrokenPoolExecutor(Executor):
    """Executor standing in for a process pool whose workers have died."""

    def __init__(self, raise_on_submit: bool = False) -> None:
        self.raise_on_submit = raise_on_submit
        self.submitted = 0

    def submit(self, fn, *args, **kwargs):  # type: ignore[override]
        self.submitted += 1
        if self.raise_on_submit:
            raise BrokenProcessPool("A child process terminated abruptly")
        future: Future = Future()
        future.set_exception(BrokenProcessPool("A child process terminated abruptly"))
        return future


class TestBrokenPool:
    @patch('os.cpu_count', return_value=4)
    @patch('skywatch.parallel.cleanup_process_pool')
    def test_broken_pool_is_dropped(
        self, mock_cleanup, _cpu, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        with patch('skywatch.parallel.get_or_create_process_pool', return_value=_BrokenPoolExecutor()):
            result = ParallelPassScanner(
                provider, ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
            ).run(objects, london, base_datetime, 1.0)

        mock_cleanup.assert_called_once_with()
        assert len(result.passes) == 6
        assert result.failures == []

    @patch('os.cpu_count', return_value=4)
    @patch('skywatch.parallel.cleanup_process_pool')
    def test_submit_on_broken_pool_scans_in_process(
        self, mock_cleanup, _cpu, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        executor = _BrokenPoolExecutor(raise_on_submit=True)
        with patch('skywatch.parallel.get_or_create_process_pool', return_value=executor):
            result = ParallelPassScanner(
                provider, ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
            ).run(objects, london, base_datetime, 1.0)

        # Once the pool is known to be broken nothing more is sent to it
        assert executor.submitted == 1
        mock_cleanup.assert_called_once_with()
        assert result.scanned == 3
        assert len(result.passes) == 6

    def test_thread_backend_never_drops_process_pool(
        self, objects, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        with patch('skywatch.parallel.cleanup_process_pool') as mock_cleanup:
            ParallelPassScanner(provider, ScanSettings(backend="thread", max_workers=2)).run(
                objects, london, base_datetime, 1.0
            )
        mock_cleanup.assert_not_called()


class TestPoolCancellation:
    """The token is honoured before each object is handed to a pool."""

    @patch('os.cpu_count', return_value=4)
    def test_pre_cancelled_batch_submits_nothing(
        self, _cpu, object_factory, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        token = CancellationToken()
        token.cancel()
        pool = MagicMock()
        with patch('skywatch.parallel.get_or_create_process_pool', return_value=pool):
            result = ParallelPassScanner(
                provider, ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
            ).run([object_factory(str(i)) for i in range(10)], london, base_datetime, 1.0, cancel_token=token)

        pool.submit.assert_not_called()
        assert result.cancelled
        assert result.scanned == 0
        assert result.skipped == 10
        assert result.passes == []

    @patch('os.cpu_count', return_value=4)
    def test_cancel_stops_new_objects_starting(
        self, _cpu, object_factory, provider, london: GeoLocation, base_datetime: datetime,
    ) -> None:
        token = CancellationToken()
        pool = ThreadPoolExecutor(max_workers=2)
        try:
            with patch('skywatch.parallel.get_or_create_process_pool', return_value=pool):
                result = ParallelPassScanner(
                    provider, ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
                ).run(
                    [object_factory(str(i)) for i in range(10)], london, base_datetime, 1.0,
                    cancel_token=token, progress_callback=lambda done, total: token.cancel(),
                )
        finally:
            pool.shutdown(wait=True)

        # Only the objects already in flight when the token tripped complete
        assert result.cancelled
        assert 1 <= result.scanned <= 2
        assert result.skipped == 10 - result.scanned


@pytest.mark.slow
class TestRealProcessPool:
    """Cancellation against a real fork-based pool with a picklable provider."""

    def teardown_method(self) -> None:
        cleanup_process_pool()

    @pytest.fixture
    def batch(self, object_factory) -> List:
        return [object_factory(str(i)) for i in range(10)]

    @patch('os.cpu_count', return_value=4)
    def test_pre_cancelled(
        self, _cpu, batch, fixed_point_provider, equator_observer: GeoLocation, base_datetime: datetime,
    ) -> None:
        token = CancellationToken()
        token.cancel()
        result = ParallelPassScanner(
            fixed_point_provider(0.0, 0.0), ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
        ).run(batch, equator_observer, base_datetime, 1.0, cancel_token=token)

        assert result.cancelled
        assert result.scanned == 0
        assert result.skipped == 10
        assert result.passes == []

    @patch('os.cpu_count', return_value=4)
    def test_full_batch(
        self, _cpu, batch, fixed_point_provider, equator_observer: GeoLocation, base_datetime: datetime,
    ) -> None:
        result = ParallelPassScanner(
            fixed_point_provider(0.0, 0.0), ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
        ).run(batch, equator_observer, base_datetime, 1.0)

        assert result.scanned == 10
        assert len(result.passes) == 10
        assert all(p.truncated for p in result.passes)

    @patch('os.cpu_count', return_value=4)
    def test_cancel_mid_batch(
        self, _cpu, batch, fixed_point_provider, equator_observer: GeoLocation, base_datetime: datetime,
    ) -> None:
        token = CancellationToken()
        result = ParallelPassScanner(
            fixed_point_provider(0.0, 0.0), ScanSettings(min_elevation_deg=0.0, backend="process", max_workers=2)
        ).run(
            batch, equator_observer, base_datetime, 1.0,
            cancel_token=token, progress_callback=lambda done, total: token.cancel(),
        )

        assert result.cancelled
        assert 1 <= result.scanned <= 2
        assert len(result.passes) == result.scanned
