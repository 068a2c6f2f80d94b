"""Tests for the per-run cache, cancellation token and background jobs."""
import threading
import time

import pytest

from maptracer.analyzer.cache import ResultCache
from maptracer.analyzer.errors import AnalysisCancelled, AnalysisError
from maptracer.analyzer.run import AnalysisJob, AnalysisRun, AnalysisSettings, CancellationToken


class TestResultCache:

    def test_computes_once_per_key(self):
        cache = ResultCache()
        calls = []

        def factory():
            calls.append(1)
            return [1, 2, 3]

        assert cache.get_or_compute('refs', 'a', factory) == [1, 2, 3]
        assert cache.get_or_compute('refs', 'a', factory) == [1, 2, 3]
        assert len(calls) == 1
        assert cache.contains('refs', 'a')
        assert not cache.contains('callers', 'a')

    def test_stats_per_namespace(self):
        cache = ResultCache()
        cache.get_or_compute('refs', 'a', lambda: 1)
        cache.get_or_compute('refs', 'a', lambda: 1)
        cache.get_or_compute('callers', 'b', lambda: 2)

        stats = cache.stats()
        assert stats['refs'] == {'hits': 1, 'misses': 1, 'entries': 1}
        assert stats['callers'] == {'hits': 0, 'misses': 1, 'entries': 1}
        assert stats['total'] == {'hits': 1, 'misses': 2, 'entries': 2}
        assert len(cache) == 2

    def test_failures_are_not_cached(self):
        cache = ResultCache()

        def failing():
            raise RuntimeError("lookup failed")

        with pytest.raises(RuntimeError):
            cache.get_or_compute('refs', 'a', failing)
        assert not cache.contains('refs', 'a')
        assert cache.get_or_compute('refs', 'a', lambda: 'ok') == 'ok'

    def test_clear(self):
        cache = ResultCache()
        cache.get_or_compute('refs', 'a', lambda: 1)
        cache.clear()
        assert len(cache) == 0
        assert cache.stats()['total'] == {'hits': 0, 'misses': 0, 'entries': 0}


class TestCancellation:

    def test_token(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        assert not token.is_cancelled
        token.cancel()
        assert token.is_cancelled
        with pytest.raises(AnalysisCancelled):
            token.raise_if_cancelled()

    def test_cancellation_is_not_an_analysis_error(self):
        assert not issubclass(AnalysisCancelled, AnalysisError)

    def test_run_checkpoint_and_counters(self):
        run = AnalysisRun()
        run.checkpoint()
        run.count('nodes', 3)
        run.count('nodes')
        assert run.counters == {'nodes': 4}
        run.token.cancel()
        with pytest.raises(AnalysisCancelled):
            run.checkpoint()


class TestSettings:

    def test_defaults(self):
        settings = AnalysisSettings()
        assert settings.max_depth == 12
        assert settings.prefer_native_hierarchy

    @pytest.mark.parametrize('field', ['max_depth', 'caller_limit', 'call_site_limit',
                                       'mapping_site_limit', 'implementation_limit'])
    def test_limits_must_be_positive(self, field):
        with pytest.raises(ValueError, match=field):
            AnalysisSettings(**{field: 0})


class TestAnalysisJob:

    def test_returns_result(self):
        job = AnalysisJob(lambda token: 42).start()
        assert job.result(timeout=5) == 42
        assert job.done

    def test_result_starts_lazily(self):
        assert AnalysisJob(lambda token: 'value').result(timeout=5) == 'value'

    def test_cannot_start_twice(self):
        job = AnalysisJob(lambda token: None).start()
        with pytest.raises(RuntimeError):
            job.start()
        job.result(timeout=5)

    def test_cancel_stops_worker(self):
        started = threading.Event()

        def work(token):
            started.set()
            while True:
                token.raise_if_cancelled()
                time.sleep(0.01)

        job = AnalysisJob(work).start()
        assert started.wait(timeout=5)
        job.cancel()
        with pytest.raises(AnalysisCancelled):
            job.result(timeout=5)

    def test_result_of_cancelled_job_is_discarded(self):
        token = CancellationToken()

        def work(tok):
            tok.cancel()
            return 'partial'

        with pytest.raises(AnalysisCancelled):
            AnalysisJob(work, token).start().result(timeout=5)

    def test_worker_errors_propagate(self):
        def work(token):
            raise ValueError("bad input")

        with pytest.raises(ValueError, match="bad input"):
            AnalysisJob(work).start().result(timeout=5)
