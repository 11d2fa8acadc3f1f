"""Источник излучения обратного комптоновского рассеяния"""
import logging
import threading
import numpy as np
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Set, Tuple

import geometric_factor as gf
import source_parameters
from electron_bunch import ElectronBunch
from emission_kernel import EmissionKernel
from laser_pulse import LaserPulse
from parallel_executor import CancellationToken, ParallelExecutor
from radiation_integrator import RadiationIntegrator
from ray_generator import RayGenerator, RayRunResult, RaySink
from source_config import SourceConfig
from vector3d import Vector

logger = logging.getLogger(__name__)

AXIS = Vector(0.0, 0.0, 1.0)


@dataclass(frozen=True)
class SourceSnapshot:
    """Независимые копии моделей и конфигурации для одного задания"""
    eb: ElectronBunch
    lp: LaserPulse
    config: SourceConfig


class RadiationSource:
    """
    Движок расчёта излучения.

    Хранит ссылки на модели электронного пучка и лазерного импульса (их может менять
    вызывающая сторона между вызовами), неизменяемую конфигурацию и общий пул потоков.
    Каждое задание работает со своим снимком моделей.
    """

    def __init__(self, laser_pulse: Optional[LaserPulse] = None,
                 electron_bunch: Optional[ElectronBunch] = None,
                 config: Optional[SourceConfig] = None):
        self.lp = laser_pulse if laser_pulse is not None else LaserPulse()
        self.eb = electron_bunch if electron_bunch is not None else ElectronBunch()
        self._config = config if config is not None else SourceConfig()
        self._executor = ParallelExecutor(self._config.thread_number)
        self._lock = threading.RLock()
        self._cache: Dict[str, Tuple[Any, float]] = {}
        self._jobs: Set[CancellationToken] = set()
        self._partial_flux = 0.0
        self._ray_counter = 0
        self._montecarlo_counter = 0

    # ------------------------------------------
    # Конфигурация
    # ------------------------------------------

    @property
    def config(self) -> SourceConfig:
        return self._config

    @property
    def executor(self) -> ParallelExecutor:
        return self._executor

    def configure(self, **changes) -> SourceConfig:
        """Атомарная замена конфигурации; кэшированные величины пересчитываются по требованию"""
        with self._lock:
            config = self._config.replace(**changes)
            self._executor.thread_number = config.thread_number
            self._config = config
            self._cache.clear()
            logger.debug("Configuration updated: %s", sorted(changes))
            return config

    def set_ray_ranges(self, xangle: float, yangle: float, min_energy: float, max_energy: float) -> None:
        """Установка окна углов и энергий для генерации лучей"""
        self.configure(ray_x_angle_range=xangle, ray_y_angle_range=yangle,
                       min_energy=min_energy, max_energy=max_energy)

    def snapshot(self) -> SourceSnapshot:
        """Копии моделей, безопасные для передачи рабочим потокам"""
        with self._lock:
            return SourceSnapshot(self.eb.copy(), self.lp.copy(), self._config)

    def cancel(self) -> None:
        """Отмена всех выполняющихся заданий"""
        with self._lock:
            for job in self._jobs:
                job.cancel()

    def close(self) -> None:
        self._executor.shutdown()

    def __enter__(self) -> 'RadiationSource':
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------------------------------
    # Кэшируемые величины
    # ------------------------------------------

    def _cached(self, name: str, key: Any, compute: Callable[[], float], force: bool = False) -> float:
        with self._lock:
            entry = self._cache.get(name)
            if not force and entry is not None and entry[0] == key:
                return entry[1]
        value = compute()
        with self._lock:
            self._cache[name] = (key, value)
        return value

    def calculate_linear_total_flux(self) -> float:
        """Полный поток томсоновского рассеяния при единичном геометрическом факторе"""
        s = self.snapshot()
        return self._cached('total_flux', (s.eb.state(), s.lp.state()),
                            lambda: gf.linear_total_flux(s.eb, s.lp), force=True)

    def get_linear_total_flux(self) -> float:
        s = self.snapshot()
        return self._cached('total_flux', (s.eb.state(), s.lp.state()),
                            lambda: gf.linear_total_flux(s.eb, s.lp))

    def calculate_approx_geometric_factor(self) -> float:
        """Параксиальное приближение геометрического фактора"""
        s = self.snapshot()
        return self._cached('approx_gf', (s.eb.state(), s.lp.state()),
                            lambda: gf.approx_geometric_factor(s.eb, s.lp), force=True)

    def get_approx_geometric_factor(self) -> float:
        s = self.snapshot()
        return self._cached('approx_gf', (s.eb.state(), s.lp.state()),
                            lambda: gf.approx_geometric_factor(s.eb, s.lp))

    def calculate_geometric_factor(self, token: Optional[CancellationToken] = None) -> float:
        """Геометрический фактор методом Монте-Карло"""
        return self._geometric_factor(self.snapshot(), token, force=True)

    def get_geometric_factor(self, token: Optional[CancellationToken] = None) -> float:
        return self._geometric_factor(self.snapshot(), token)

    def _geometric_factor(self, s: SourceSnapshot, token: Optional[CancellationToken],
                          force: bool = False) -> float:
        key = (s.eb.state(), s.lp.state(), s.config.np_geometric_factor, s.config.seed)
        estimator = gf.GeometricFactorEstimator(s.eb, s.lp, self._executor,
                                                s.config.np_geometric_factor, s.config.seed)
        return self._cached('gf', key, lambda: self._run(lambda job: estimator.calculate(job), token),
                            force=force)

    def calculate_angle_linear_total_flux(self, max_angle: float) -> float:
        """Поток в конус с полууглом max_angle"""
        s = self.snapshot()
        return gf.angle_linear_total_flux(s.eb, self.get_linear_total_flux(),
                                          self._geometric_factor(s, None), max_angle)

    # ------------------------------------------
    # Запросы по направлению
    # ------------------------------------------

    def _integrator(self, token: Optional[CancellationToken]) -> RadiationIntegrator:
        s = self.snapshot()
        total_flux = self._cached('total_flux', (s.eb.state(), s.lp.state()),
                                  lambda: gf.linear_total_flux(s.eb, s.lp))
        geometric = self._geometric_factor(s, token)
        return RadiationIntegrator(s.eb, s.lp, s.config, total_flux, geometric, token)

    def _query(self, call: Callable[[RadiationIntegrator], Any], token: Optional[CancellationToken]):
        return self._run(lambda job: call(self._integrator(job)), token)

    def direction_flux(self, n: Vector, v: Vector = AXIS,
                       token: Optional[CancellationToken] = None) -> float:
        """Угловая плотность потока (фотон/с/ср)"""
        return self._query(lambda it: it.direction_flux(n, v), token)

    def direction_energy(self, n: Vector, v: Vector = AXIS,
                         token: Optional[CancellationToken] = None) -> float:
        """Средняя энергия фотона (Дж)"""
        return self._query(lambda it: it.direction_energy(n, v), token)

    def direction_frequency_flux(self, n: Vector, v: Vector, e: float,
                                 polarization: Optional[Sequence[float]] = None,
                                 token: Optional[CancellationToken] = None) -> float:
        """Спектральная плотность потока на единицу относительной полосы"""
        return self._query(lambda it: it.direction_frequency_flux(n, v, e, polarization), token)

    def direction_frequency_stokes(self, n: Vector, v: Vector, e: float,
                                   polarization: Optional[Sequence[float]] = None,
                                   token: Optional[CancellationToken] = None) -> np.ndarray:
        return self._query(lambda it: it.direction_frequency_stokes(n, v, e, polarization), token)

    def direction_frequency_polarization(self, n: Vector, v: Vector, e: float, index: int,
                                         polarization: Optional[Sequence[float]] = None,
                                         token: Optional[CancellationToken] = None) -> float:
        """Степень поляризации (index = 0) или параметр ksi_index"""
        return self._query(
            lambda it: it.direction_frequency_polarization(n, v, e, index, polarization), token)

    def direction_frequency_brilliance(self, r0: Vector, n: Vector, v: Vector, e: float,
                                       token: Optional[CancellationToken] = None) -> float:
        """Спектральная яркость"""
        return self._query(lambda it: it.direction_frequency_brilliance(r0, n, v, e), token)

    def direction_frequency_polarization_brilliance(self, r0: Vector, n: Vector, v: Vector, e: float,
                                                    polarization: Optional[Sequence[float]] = None,
                                                    token: Optional[CancellationToken] = None
                                                    ) -> np.ndarray:
        return self._query(
            lambda it: it.direction_frequency_polarization_brilliance(r0, n, v, e, polarization), token)

    # ------------------------------------------
    # Лучи
    # ------------------------------------------

    def write_rays(self, sink: RaySink, count: Optional[int] = None,
                   progress: Optional[Callable[[int], None]] = None,
                   token: Optional[CancellationToken] = None) -> RayRunResult:
        """
        Генерация лучей в sink.

        :param count: Число лучей; по умолчанию из конфигурации
        """
        s = self.snapshot()
        count = s.config.ray_number if count is None else count
        generator = RayGenerator(s.eb, s.lp, s.config, self._ray_kernel(s), self._executor)
        try:
            return self._run(lambda job: generator.write_rays(sink, count, progress, job), token)
        finally:
            result = generator.last_result
            if result is not None:
                with self._lock:
                    self._partial_flux = result.partial_flux
                    self._ray_counter = result.written
                    self._montecarlo_counter = result.candidates

    def _ray_kernel(self, s: SourceSnapshot) -> EmissionKernel:
        """Ядро излучения для генерации лучей; геометрический фактор не требуется"""
        total_flux = self._cached('total_flux', (s.eb.state(), s.lp.state()),
                                  lambda: gf.linear_total_flux(s.eb, s.lp))
        lp = s.lp
        if s.config.polarization is not None:
            lp = lp.copy()
            lp.set_polarization(*s.config.polarization)
        return EmissionKernel(lp, s.config.order, total_flux, s.config.precision)

    def get_partial_flux(self) -> float:
        """Поток в окно углов и энергий по последней генерации лучей (фотон/с)"""
        return self._partial_flux

    def get_ray_counter(self) -> int:
        return self._ray_counter

    def get_montecarlo_counter(self) -> int:
        """Число разыгранных кандидатов при последней генерации лучей"""
        return self._montecarlo_counter

    # ------------------------------------------
    # Параметры
    # ------------------------------------------

    def parameters(self) -> List[Tuple[str, Any]]:
        """Упорядоченный список (имя, значение) всех скалярных параметров"""
        with self._lock:
            return source_parameters.get_parameters(self.eb, self.lp, self._config)

    def apply_parameters(self, values: Sequence[Tuple[str, Any]]) -> None:
        """Установка параметров из списка (имя, значение); при ошибке ничего не меняется"""
        with self._lock:
            values = list(values)
            # Проверка на копиях, затем применение к моделям вызывающей стороны
            config = source_parameters.set_parameters(self.eb.copy(), self.lp.copy(), self._config, values)
            source_parameters.set_parameters(self.eb, self.lp, self._config, values)
            self._executor.thread_number = config.thread_number
            self._config = config
            self._cache.clear()

    def _run(self, func: Callable[[CancellationToken], Any], token: Optional[CancellationToken]):
        """Выполнение задания с токеном отмены, доступным через cancel()"""
        job = token.child() if token is not None else CancellationToken()
        with self._lock:
            self._jobs.add(job)
        try:
            return func(job)
        finally:
            with self._lock:
                self._jobs.discard(job)

    def __repr__(self) -> str:
        return (f"RadiationSource(order={self._config.order}, "
                f"threads={self._config.thread_number}, precision={self._config.precision})")
