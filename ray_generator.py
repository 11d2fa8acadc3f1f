"""Генерация лучей методом Монте-Карло для внешних программ трассировки"""
import abc
import cmath
import logging
import math
import threading
import numpy as np
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from electron_bunch import ElectronBunch
from emission_kernel import EmissionKernel
from geometric_factor import overlap_box, volume_flux
from laser_pulse import LaserPulse
from parallel_executor import CancellationToken, ParallelExecutor, split
from source_config import SourceConfig
from source_errors import ConfigurationError, RaySinkFormatError, RaySinkIOError, SinkNotOpenError
from vector3d import Vector, get_3d_transform

logger = logging.getLogger(__name__)

NUMBER_OF_COLUMNS = 18


class RaySink(abc.ABC):
    """Приёмник лучей: открытый поток строк фиксированной длины"""

    @property
    @abc.abstractmethod
    def is_open(self) -> bool:
        ...

    @abc.abstractmethod
    def write(self, row: Sequence[float]) -> None:
        """Запись одной строки из NUMBER_OF_COLUMNS чисел"""


class ListRaySink(RaySink):
    """Приёмник, сохраняющий строки в памяти"""

    def __init__(self):
        self.rows: List[List[float]] = []
        self._open = True

    @property
    def is_open(self) -> bool:
        return self._open

    def close(self) -> None:
        self._open = False

    def write(self, row: Sequence[float]) -> None:
        self.rows.append(list(row))

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class RayRunResult:
    """Итоги генерации лучей"""
    written: int
    requested: int
    candidates: int
    partial_flux: float


def get_polarization(ksi: Sequence[float], rng: np.random.Generator) -> List[float]:
    """
    Случайное чистое состояние поляризации фотона с заданными параметрами Стокса.

    :return: [амплитуда s, амплитуда p, фаза s, фаза p]
    """
    pol = [0.0] * 4
    p = min(math.sqrt(sum(k * k for k in ksi)), 1.0)
    if ksi[0] == -p:
        pol[0] = math.sqrt((1.0 - ksi[0]) / 2.0)
        pol[1] = math.sqrt((1.0 + ksi[0]) / 2.0)
        pol[2] = rng.random() * 2.0 * math.pi
        pol[3] = rng.random() * 2.0 * math.pi
    else:
        k1 = math.sqrt(1.0 - p)
        k2 = math.sqrt(1.0 + p)
        coef = math.sqrt((p + ksi[0]) / p) / 2.0
        ksi_complex = complex(ksi[1], ksi[2])
        phase1 = cmath.exp(1j * rng.random() * 2.0 * math.pi)
        phase2 = cmath.exp(1j * rng.random() * 2.0 * math.pi)
        e1 = (phase1 * k1 + phase2 * ksi_complex * k2 / (p + ksi[0])) * coef
        e2 = (phase2 * k2 - phase1 * ksi_complex.conjugate() * k1 / (p + ksi[0])) * coef
        pol[0] = abs(e1)
        pol[1] = abs(e2)
        pol[2] = cmath.phase(e1)
        pol[3] = cmath.phase(e2)
    return pol


class RayGenerator:
    """Выборка лучей в заданном окне углов и энергий с отбором по потоку"""

    MULT: float = 2.0  # Полуширина области розыгрыша точек в единицах ширин пучков
    INT_RANGE: float = 3.0  # Предел разброса гамма-фактора в единицах delgamma
    LOW_ACCEPTANCE: int = 100000  # Число кандидатов на луч, после которого выдаётся предупреждение
    PILOT: int = 1000  # Размер пробной выборки для нормировки отбора

    def __init__(self, eb: ElectronBunch, lp: LaserPulse, config: SourceConfig,
                 kernel: EmissionKernel, executor: ParallelExecutor):
        self.eb = eb
        self.lp = lp
        self.config = config
        self.kernel = kernel
        self.executor = executor
        # Обратный вызов прогресса выполняется под блокировкой и может читать счётчики
        self._lock = threading.RLock()
        self._written = 0
        self._candidates = 0
        self._weight_sum = 0.0
        self._last_progress = 0
        self.last_result: Optional[RayRunResult] = None
        self._half = overlap_box(eb, lp, self.MULT)
        self._center = eb.shift.to_array() / 2.0
        self._spread = config.e_spread and eb.delgamma > 0

    @property
    def volume(self) -> float:
        """Объём области розыгрыша, умноженный на площадь окна направлений"""
        return (8.0 * float(np.prod(self._half))
                * 4.0 * self.config.ray_x_angle_range * self.config.ray_y_angle_range)

    def check_window(self) -> None:
        """Проверка, что окно энергий достижимо"""
        z = Vector(0.0, 0.0, 1.0)
        gamma = self.eb.gamma
        if self._spread:
            gamma *= 1.0 + self.INT_RANGE * self.eb.delgamma
        max_energy = self.kernel.energy(z, z, gamma)
        if max_energy < self.config.min_energy:
            raise ConfigurationError(
                f"ray energy window starts at {self.config.min_energy:.4e} J, above the maximal "
                f"photon energy {max_energy:.4e} J")

    def write_rays(self, sink: RaySink, count: int,
                   progress: Optional[Callable[[int], None]] = None,
                   token: Optional[CancellationToken] = None) -> RayRunResult:
        """
        Запись ровно count лучей в sink.

        :param progress: Вызывается с возрастающим процентом выполнения (0-100)
        :raises ComputationCancelled: после отмены; записанные лучи остаются в sink
        """
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ConfigurationError(f"ray number must be a non-negative integer, got {count!r}")
        if not sink.is_open:
            raise SinkNotOpenError("ray sink is not open")
        self.check_window()
        self._written = 0
        self._candidates = 0
        self._weight_sum = 0.0
        self._last_progress = 0
        sequence = np.random.SeedSequence(self.config.seed)
        pilot, *seeds = sequence.spawn(len(split(count, self.executor.thread_number)) + 1)
        prob0 = self._reference_weight(np.random.default_rng(pilot))
        logger.debug("Generating %d rays", count)

        def chunk(index: int, start: int, size: int, job: CancellationToken) -> None:
            rng = np.random.default_rng(seeds[index])
            self._generate(sink, count, size, prob0, rng, progress, job)

        try:
            if count > 0:
                self.executor.run_chunks(chunk, count, token)
        finally:
            self.last_result = RayRunResult(self._written, count, self._candidates, self.partial_flux)
        logger.info("Generated %d rays from %d candidates, partial flux %.4e",
                    self._written, self._candidates, self.last_result.partial_flux)
        return self.last_result

    def _reference_weight(self, rng: np.random.Generator) -> float:
        """Мажоранта веса кандидата: значение на оси и максимум пробной выборки"""
        z = Vector(0.0, 0.0, 1.0)
        prob0 = (float(volume_flux(self.eb, self.lp, self._center))
                 * self.kernel.flux(z, z, self.eb.gamma))
        for _ in range(self.PILOT):
            sample = self._candidate(rng)
            if sample is not None:
                prob0 = max(prob0, sample[-1])
        if not prob0 > 0:
            raise ConfigurationError("no emission reaches the ray acceptance window")
        return prob0

    @property
    def partial_flux(self) -> float:
        """Поток в окно углов и энергий по всем разыгранным кандидатам"""
        with self._lock:
            if self._candidates == 0:
                return 0.0
            return self.volume * self._weight_sum / self._candidates

    @property
    def written(self) -> int:
        return self._written

    @property
    def candidates(self) -> int:
        return self._candidates

    def _generate(self, sink: RaySink, count: int, size: int, prob0: float,
                  rng: np.random.Generator, progress: Optional[Callable[[int], None]],
                  job: CancellationToken) -> None:
        candidates = 0
        weight_sum = 0.0
        try:
            for _ in range(size):
                lcn = 0
                while True:
                    job.raise_if_cancelled()
                    lcn += 1
                    candidates += 1
                    if lcn == self.LOW_ACCEPTANCE:
                        logger.warning("Ray acceptance below 1/%d; check the acceptance window", lcn)
                    sample = self._candidate(rng)
                    if sample is None:
                        continue
                    weight = sample[-1]
                    weight_sum += weight
                    if weight / prob0 > rng.random():
                        break
                self._emit(sink, count, self._ray(sample, rng), progress)
        finally:
            with self._lock:
                self._candidates += candidates
                self._weight_sum += weight_sum

    def _candidate(self, rng: np.random.Generator):
        """Один кандидат: точка, направление, скорость и энергия электрона; None - вне окна"""
        r = self._center + self._half * rng.uniform(-1.0, 1.0, 3)
        ax = self.config.ray_x_angle_range * rng.uniform(-1.0, 1.0)
        ay = self.config.ray_y_angle_range * rng.uniform(-1.0, 1.0)
        n = Vector(ax, ay, 1.0).normalize()
        tx = rng.normal(0.0, self.eb.get_x_spread() / math.sqrt(2.0))
        ty = rng.normal(0.0, self.eb.get_y_spread() / math.sqrt(2.0))
        v = Vector(tx, ty, math.sqrt(1.0 - tx * tx - ty * ty))
        gamma = self.eb.gamma
        if self._spread:
            gamma = rng.normal(gamma, gamma * self.eb.delgamma / math.sqrt(2.0))
            if gamma <= 1.0:
                return None
        e = self.kernel.energy(n, v, gamma)
        if not self.config.min_energy <= e <= self.config.max_energy:
            return None
        # Якобиан перехода от (ax, ay) к телесному углу
        jacobian = (1.0 + ax * ax + ay * ay) ** -1.5
        weight = float(volume_flux(self.eb, self.lp, r)) * self.kernel.flux(n, v, gamma, e) * jacobian
        if math.isnan(weight) or weight <= 0:
            return None
        return r, n, v, gamma, e, weight

    def _ray(self, sample, rng: np.random.Generator) -> List[float]:
        """Строка луча: координаты (см), направление, поля s и p, волновое число (1/см), фазы"""
        r, n, v, gamma, e, _ = sample
        stokes = self.kernel.emission(n, v, gamma, e).stokes
        ksi = [s / stokes[0] for s in stokes[1:]] if stokes[0] > 0 else [0.0, 0.0, 0.0]
        pol = get_polarization(ksi, rng)
        # В выходном формате ось пучка - вторая координата
        n_out = Vector(n.x, n.z, n.y)
        t = get_3d_transform(n_out, Vector(0.0, 1.0, 0.0))
        a_s = t @ np.array([1.0, 0.0, 0.0]) * pol[0]
        a_p = t @ np.array([0.0, 0.0, 1.0]) * pol[1]
        ray = [0.0] * NUMBER_OF_COLUMNS
        ray[0], ray[1], ray[2] = r[0] * 1e2, r[2] * 1e2, r[1] * 1e2
        ray[3], ray[4], ray[5] = n_out.x, n_out.y, n_out.z
        ray[6], ray[7], ray[8] = a_s
        ray[9] = 1.0
        ray[10] = e * 1e-2 / LaserPulse.HC
        ray[13], ray[14] = pol[2], pol[3]
        ray[15], ray[16], ray[17] = a_p
        return [float(u) for u in ray]

    def _emit(self, sink: RaySink, count: int, ray: List[float],
              progress: Optional[Callable[[int], None]]) -> None:
        with self._lock:
            if not sink.is_open:
                raise SinkNotOpenError("ray sink is not open")
            ray[11] = float(self._written + 1)
            if len(ray) != NUMBER_OF_COLUMNS or not all(math.isfinite(u) for u in ray):
                raise RaySinkFormatError(f"malformed ray row {ray!r}")
            try:
                sink.write(ray)
            except OSError as exc:
                raise RaySinkIOError(f"cannot write ray: {exc}") from exc
            except (ValueError, TypeError) as exc:
                raise RaySinkFormatError(f"ray sink rejected the row: {exc}") from exc
            self._written += 1
            percent = self._written * 100 // count
            if progress is not None and percent > self._last_progress:
                self._last_progress = percent
                progress(percent)
