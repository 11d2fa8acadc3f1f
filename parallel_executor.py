"""Пул потоков для параллельных расчетов с кооперативной отменой"""
import concurrent.futures
import logging
import threading
from typing import Any, Callable, List, Optional, Sequence, Tuple

from source_errors import ComputationCancelled, ConfigurationError

logger = logging.getLogger(__name__)

_local = threading.local()


class CancellationToken:
    """Флаг кооперативной отмены, общий для всех частей одного задания"""

    def __init__(self, parent: Optional['CancellationToken'] = None):
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def raise_if_cancelled(self) -> None:
        """Проверка флага; вызывается во всех внутренних циклах"""
        if self.cancelled:
            raise ComputationCancelled("computation cancelled")

    def child(self) -> 'CancellationToken':
        """Токен задания: отменяется вместе с родителем, но не отменяет его"""
        return CancellationToken(self)


def split(total: int, chunks: int) -> List[Tuple[int, int]]:
    """
    Разбиение total элементов на непрерывные куски почти равного размера.

    :param total: Число элементов
    :param chunks: Желаемое число кусков
    :return: Список (начало, размер); размеры отличаются не более чем на единицу
    """
    chunks = max(1, min(chunks, total)) if total > 0 else 1
    base, extra = divmod(total, chunks)
    result = []
    start = 0
    for i in range(chunks):
        size = base + (1 if i < extra else 0)
        result.append((start, size))
        start += size
    return result


class ParallelExecutor:
    """Ограниченный пул потоков, общий для всех вычислительных компонентов источника"""

    def __init__(self, thread_number: int):
        self._lock = threading.Lock()
        self._pool: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._thread_number = 1
        self.thread_number = thread_number

    @property
    def thread_number(self) -> int:
        return self._thread_number

    @thread_number.setter
    def thread_number(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 1:
            raise ConfigurationError(f"thread number must be an integer >= 1, got {value!r}")
        with self._lock:
            if value != self._thread_number and self._pool is not None:
                self._pool.shutdown(wait=False)
                self._pool = None
            self._thread_number = value

    def _get_pool(self) -> concurrent.futures.ThreadPoolExecutor:
        with self._lock:
            if self._pool is None:
                self._pool = concurrent.futures.ThreadPoolExecutor(
                    max_workers=self._thread_number, thread_name_prefix='thomson-worker')
            return self._pool

    def shutdown(self) -> None:
        with self._lock:
            if self._pool is not None:
                self._pool.shutdown(wait=True)
                self._pool = None

    def __enter__(self) -> 'ParallelExecutor':
        return self

    def __exit__(self, *exc) -> None:
        self.shutdown()

    def run_chunks(self, func: Callable[[int, int, int, CancellationToken], Any], total: int,
                   token: Optional[CancellationToken] = None) -> List[Any]:
        """
        Выполнение func(индекс, начало, размер, токен) над кусками диапазона [0, total).

        :return: Результаты кусков в порядке индексов
        """
        parts = split(total, self._thread_number)
        logger.debug("Running %d items in %d chunks", total, len(parts))
        tasks = [(lambda job, i=i, s=s, n=n: func(i, s, n, job)) for i, (s, n) in enumerate(parts)]
        return self._run(tasks, token)

    def map_points(self, func: Callable[[Any, CancellationToken], Any], points: Sequence[Any],
                   token: Optional[CancellationToken] = None) -> List[Any]:
        """
        Вычисление func(точка, токен) в независимых точках сканирования; порядок сохраняется.

        Токен задания передаётся в func, чтобы вложенные расчёты прерывались вместе со сканом.
        """
        def task(point):
            def run(job: CancellationToken):
                job.raise_if_cancelled()
                return func(point, job)
            return run

        return self._run([task(p) for p in points], token)

    def _run(self, tasks: List[Callable[[CancellationToken], Any]],
             token: Optional[CancellationToken]) -> List[Any]:
        job = token.child() if token is not None else CancellationToken()
        job.raise_if_cancelled()
        if not tasks:
            return []
        # Вложенные задания из рабочего потока выполняются последовательно
        if getattr(_local, 'in_worker', False) or len(tasks) == 1:
            return [task(job) for task in tasks]

        def wrapped(task):
            _local.in_worker = True
            return task(job)

        pool = self._get_pool()
        futures = [pool.submit(wrapped, task) for task in tasks]
        error: Optional[BaseException] = None
        for future in concurrent.futures.as_completed(futures):
            exc = future.exception()
            if exc is not None:
                job.cancel()
                if error is None or (isinstance(error, ComputationCancelled)
                                     and not isinstance(exc, ComputationCancelled)):
                    error = exc
        if error is not None:
            if isinstance(error, ComputationCancelled):
                logger.debug("Parallel job cancelled")
            raise error
        return [future.result() for future in futures]
