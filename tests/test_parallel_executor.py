"""Пул потоков, разбиение на куски и кооперативная отмена"""

import threading

import pytest

from parallel_executor import CancellationToken, ParallelExecutor, split
from source_errors import ComputationCancelled, ConfigurationError


@pytest.fixture(scope="module")
def executor():
    with ParallelExecutor(4) as pool:
        yield pool


class TestSplit:

    @pytest.mark.parametrize("total,chunks", [(10, 3), (3, 8), (1000, 7), (5, 1), (0, 4)])
    def test_chunks_cover_range(self, total, chunks):
        parts = split(total, chunks)
        assert sum(size for _, size in parts) == total
        sizes = [size for _, size in parts]
        assert max(sizes) - min(sizes) <= 1
        start = 0
        for s, size in parts:
            assert s == start
            start += size

    def test_no_more_chunks_than_items(self):
        assert len(split(3, 8)) == 3


class TestCancellationToken:

    def test_child_follows_parent(self):
        parent = CancellationToken()
        child = parent.child()
        parent.cancel()
        assert child.cancelled

    def test_child_does_not_cancel_parent(self):
        parent = CancellationToken()
        child = parent.child()
        child.cancel()
        assert child.cancelled
        assert not parent.cancelled

    def test_raise_if_cancelled(self):
        token = CancellationToken()
        token.raise_if_cancelled()
        token.cancel()
        with pytest.raises(ComputationCancelled):
            token.raise_if_cancelled()


class TestParallelExecutor:

    def test_invalid_thread_number(self):
        with pytest.raises(ConfigurationError):
            ParallelExecutor(0)

    def test_run_chunks_preserves_order(self, executor):
        results = executor.run_chunks(lambda i, start, size, job: (i, start, size), 10)
        assert [r[0] for r in results] == list(range(len(results)))
        assert sum(r[2] for r in results) == 10

    def test_map_points_preserves_order(self, executor):
        assert executor.map_points(lambda x, job: x * x, list(range(20))) == [x * x for x in range(20)]

    def test_uses_several_threads(self, executor):
        names = executor.map_points(lambda _, job: threading.current_thread().name, list(range(8)))
        assert all(name.startswith('thomson-worker') for name in names)

    def test_errors_propagate(self, executor):
        def func(x, job):
            if x == 3:
                raise ValueError("bad point")
            return x

        with pytest.raises(ValueError, match="bad point"):
            executor.map_points(func, list(range(8)))

    def test_cancelled_token(self, executor):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComputationCancelled):
            executor.map_points(lambda x, job: x, [1, 2, 3], token)

    def test_point_receives_job_token(self, executor):
        token = CancellationToken()

        def func(x, job):
            token.cancel()
            job.raise_if_cancelled()
            return x

        with pytest.raises(ComputationCancelled):
            executor.map_points(func, [0], token)

    def test_cancel_from_task(self, executor):
        token = CancellationToken()

        def func(i, start, size, job):
            for _ in range(size):
                if i == 0:
                    token.cancel()
                job.raise_if_cancelled()
            return size

        with pytest.raises(ComputationCancelled):
            executor.run_chunks(func, 1000, token)

    def test_nested_calls_run_inline(self, executor):
        def outer(x, job):
            return sum(executor.map_points(lambda y, _: x * y, [1, 2, 3], job))

        assert executor.map_points(outer, [1, 2, 3, 4]) == [6, 12, 18, 24]

    def test_thread_number_change(self):
        pool = ParallelExecutor(2)
        try:
            pool.map_points(lambda x, job: x, [1, 2])
            pool.thread_number = 3
            assert pool.thread_number == 3
            assert pool.map_points(lambda x, job: x + 1, [1, 2, 3]) == [2, 3, 4]
        finally:
            pool.shutdown()
