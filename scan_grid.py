"""Сканирование наблюдаемых величин по сетке углов или по одному параметру"""
from abc import ABC, abstractmethod
from typing import Callable, List, Optional

import numpy as np

from parallel_executor import CancellationToken, ParallelExecutor


class GridScan(ABC):
    """Двумерная сетка значений func(x, y), вычисляемая в пуле потоков"""

    def __init__(self) -> None:
        self._udata: Optional[np.ndarray] = None
        self._umax: float = 0.0
        self._umin: float = 0.0

        # Параметры сетки (инициализируются в setup)
        self._xoffset: float = 0.0
        self._yoffset: float = 0.0
        self._xstep: float = 0.0
        self._ystep: float = 0.0
        self._xsize: int = 0
        self._ysize: int = 0

    def setup(
            self,
            xsize: int,
            ysize: int,
            xstep: float,
            ystep: float,
            xoffset: float,
            yoffset: float,
            executor: ParallelExecutor,
            token: Optional[CancellationToken] = None
    ) -> None:
        """
        Заполнение сетки; узел (j, p) имеет координаты
        (xoffset + xstep * (j - xsize / 2), yoffset + ystep * (p - ysize / 2)).

        :raises ComputationCancelled: при отмене; данные сетки сбрасываются
        """
        self._xoffset = xoffset
        self._yoffset = yoffset
        self._xstep = xstep
        self._ystep = ystep
        self._xsize = xsize
        self._ysize = ysize
        points = [(xoffset + xstep * (j - xsize / 2), yoffset + ystep * (p - ysize / 2))
                  for j in range(xsize) for p in range(ysize)]
        self._udata = None
        values = executor.map_points(lambda point, job: self.func(point[0], point[1], job),
                                     points, token)
        self._udata = np.array(values, dtype=float).reshape(xsize, ysize)
        self._umax = float(np.max(self._udata)) if values else 0.0
        self._umin = float(np.min(self._udata)) if values else 0.0

    @abstractmethod
    def func(self, x: float, y: float, token: CancellationToken) -> float:
        """
        Значение в точке (x, y).

        :param token: Токен задания; передаётся в длительные расчёты источника
        """

    @property
    def udata(self) -> Optional[np.ndarray]:
        return self._udata

    @property
    def umax(self) -> float:
        return self._umax

    @property
    def umin(self) -> float:
        return self._umin

    @property
    def xoffset(self) -> float:
        return self._xoffset

    @property
    def yoffset(self) -> float:
        return self._yoffset

    @property
    def xstep(self) -> float:
        return self._xstep

    @property
    def ystep(self) -> float:
        return self._ystep

    @property
    def xsize(self) -> int:
        return self._xsize

    @property
    def ysize(self) -> int:
        return self._ysize


class FunctionGridScan(GridScan):
    """Сетка для произвольной функции двух переменных"""

    def __init__(self, function: Callable[[float, float, CancellationToken], float]) -> None:
        super().__init__()
        self._function = function

    def func(self, x: float, y: float, token: CancellationToken) -> float:
        return self._function(x, y, token)


class LineScan:
    """Одномерное сканирование: несколько функций одной переменной или срез сетки"""

    def __init__(self):
        self._size: int = 0
        self._step: float = 0.0
        self._offset: float = 0.0
        self._data: Optional[np.ndarray] = None
        self._umax: float = 0.0
        self._umin: float = 0.0

    @property
    def size(self) -> int:
        """Количество точек"""
        return self._size

    @property
    def step(self) -> float:
        return self._step

    @property
    def offset(self) -> float:
        return self._offset

    @property
    def data(self) -> Optional[np.ndarray]:
        """Данные (строки - функции, столбцы - точки)"""
        return self._data

    @property
    def umax(self) -> float:
        return self._umax

    @property
    def umin(self) -> float:
        return self._umin

    def setup_from_data(self, data: np.ndarray, index: int, row: bool,
                        size: int, step: float, offset: float) -> None:
        """
        Срез двумерного массива.

        :param index: Индекс строки/столбца для выборки
        :param row: True - data[i, index], False - data[index, i]
        """
        data = np.asarray(data, dtype=float)
        self._size = size
        self._step = step
        self._offset = offset
        values = data[:size, index] if row else data[index, :size]
        self._data = values.reshape(1, size).copy()
        self._set_extrema()

    def setup_from_functions(self, funcs: List[Callable[[float, CancellationToken], float]], size: int, step: float,
                             offset: float, executor: ParallelExecutor,
                             token: Optional[CancellationToken] = None) -> None:
        """
        Значения функций func(x, токен) в точках x = offset + step * i.

        :raises ComputationCancelled: при отмене; данные сбрасываются
        """
        self._size = size
        self._step = step
        self._offset = offset
        self._data = None
        points = [step * i + offset for i in range(size)]
        values = executor.map_points(lambda xp, job: [func(xp, job) for func in funcs],
                                     points, token)
        self._data = np.array(values, dtype=float).reshape(size, len(funcs)).T.copy()
        self._set_extrema()

    def _set_extrema(self) -> None:
        if self._data is None or self._data.size == 0:
            self._umax = 0.0
            self._umin = 0.0
            return
        self._umax = float(np.max(self._data))
        self._umin = float(np.min(self._data))

    def __repr__(self) -> str:
        return (f"LineScan(size={self.size}, step={self.step}, "
                f"offset={self.offset}, umin={self.umin:.3f}, umax={self.umax:.3f})")
