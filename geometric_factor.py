"""Геометрический фактор: перекрытие электронного пучка и лазерного импульса"""
import logging
import math
import numpy as np
from typing import Optional

from electron_bunch import ElectronBunch
from laser_pulse import LaserPulse
from parallel_executor import CancellationToken, ParallelExecutor
from source_errors import ConfigurationError

logger = logging.getLogger(__name__)

SIGMA_T: float = 6.65e-29  # Томсоновское сечение (м²)


def volume_flux(eb: ElectronBunch, lp: LaserPulse, r) -> np.ndarray:
    """
    Плотность светимости в точке r, проинтегрированная по времени.

    Нормирована так, что её объёмный интеграл равен геометрическому фактору.
    :param r: Координаты (3,) или массив (3, N)
    """
    r = np.asarray(r, dtype=float)
    shift = eb.shift
    lw2 = lp.get_width_squared(0.0)
    len_total = math.sqrt(lp.length ** 2 + eb.length ** 2)
    r1 = lp.get_transformed_coordinates(r)
    k = ((r[2] - r1[2] - shift.z + lp.delay) / len_total) ** 2
    coef = 2.0 * math.sqrt(math.pi) / len_total * math.sqrt(
        (lw2 + eb.get_x_width_squared(0.0)) * (lw2 + eb.get_y_width_squared(0.0)))
    u = coef * np.exp(-k) * eb.t_spatial_distribution(r) * lp.t_spatial_distribution(r1)
    return np.where(np.isnan(u), 0.0, u)


def overlap_box(eb: ElectronBunch, lp: LaserPulse, mult: float) -> np.ndarray:
    """Полуразмеры области перекрытия пучков (x, y, z) с центром в shift/2"""
    shift = eb.shift
    lw = float(lp.get_width(0.0))
    wdx = mult * max(float(eb.get_x_width(0.0)), lw) + abs(shift.x) / 2.0
    wdy = mult * max(float(eb.get_y_width(0.0)), lw) + abs(shift.y) / 2.0
    length = mult * max(eb.length, lp.length) + abs(shift.z) / 2.0
    return np.array([wdx, wdy, length])


def linear_total_flux(eb: ElectronBunch, lp: LaserPulse) -> float:
    """Полный поток томсоновского рассеяния при единичном геометрическом факторе (фотон/с)"""
    lw2 = lp.get_width_squared(0.0)
    denominator = math.pi * math.sqrt((lw2 + eb.get_x_width_squared(0.0))
                                      * (lw2 + eb.get_y_width_squared(0.0)))
    return SIGMA_T * eb.number * lp.photon_number * lp.fq / denominator


def approx_geometric_factor(eb: ElectronBunch, lp: LaserPulse) -> float:
    """
    Приближенный геометрический фактор (параксиальный предел, без сдвигов).

    :raises ConfigurationError: для лазера, распространяющегося вдоль пучка (direction.z = -1)
    """
    direction = lp.direction
    cs2 = (1.0 + direction.z) / 2.0
    if cs2 <= 0:
        raise ConfigurationError("approximate geometric factor is undefined for a laser "
                                 "co-propagating with the electron bunch")
    sn2 = (1.0 - direction.z) / 2.0
    w2 = lp.get_width_squared(0.0) + eb.get_width_squared(0.0)
    l2 = lp.length ** 2 + eb.length ** 2
    return math.sqrt(w2 / (l2 * sn2 + w2 * cs2) / cs2)


def angle_linear_total_flux(eb: ElectronBunch, total_flux: float, geometric_factor: float,
                            max_angle: float) -> float:
    """
    Поток в конус с полууглом max_angle вокруг направления электронов.

    :param total_flux: Полный поток при единичном геометрическом факторе
    """
    gamma2 = eb.gamma ** 2
    v = math.sqrt(1.0 - 1.0 / gamma2)
    v2 = v * v
    cs = math.cos(max_angle)
    term1 = (1.0 - cs) / (1.0 - v * cs) / (1.0 - v)
    term2 = (5.0 / 6.0 + 1.0 / 6.0 / v2
             - 1.0 / 6.0 / gamma2 / v2 * (1.0 - v2 * cs) / (1.0 - v) / (1.0 - v * cs))
    term3 = 1.0 / 6.0 / gamma2 / v * (1.0 - cs * cs) / (1.0 - v * cs) ** 3
    res = 0.75 / gamma2 * (term1 * term2 + term3) * total_flux * geometric_factor
    return res if not math.isnan(res) else 0.0


class GeometricFactorEstimator:
    """Оценка геометрического фактора методом Монте-Карло"""

    MULT: float = 3.0  # Полуширина области интегрирования в единицах ширин пучков
    BATCH: int = 1000  # Число точек между проверками отмены

    def __init__(self, eb: ElectronBunch, lp: LaserPulse, executor: ParallelExecutor,
                 sample_number: int, seed: Optional[int] = None):
        self.eb = eb
        self.lp = lp
        self.executor = executor
        self.sample_number = sample_number
        self.seed = seed

    def box(self) -> np.ndarray:
        """Полуразмеры области интегрирования (x, y, z)"""
        return overlap_box(self.eb, self.lp, self.MULT)

    def calculate(self, token: Optional[CancellationToken] = None) -> float:
        """Среднее значение плотности светимости по случайным точкам области"""
        half = self.box()
        center = self.eb.shift.to_array() / 2.0
        batches = -(-self.sample_number // self.BATCH)
        # Своя последовательность для каждой пачки: результат не зависит от числа потоков
        seeds = np.random.SeedSequence(self.seed).spawn(batches)
        logger.debug("Geometric factor: %d samples in %d batches", self.sample_number, batches)

        def chunk(index: int, start: int, size: int, job: CancellationToken) -> float:
            psum = 0.0
            for b in range(start, start + size):
                job.raise_if_cancelled()
                count = min(self.BATCH, self.sample_number - b * self.BATCH)
                rng = np.random.default_rng(seeds[b])
                u = rng.uniform(-1.0, 1.0, size=(3, count))
                r = center[:, None] + half[:, None] * u
                psum += float(np.sum(volume_flux(self.eb, self.lp, r)))
            return psum

        total = sum(self.executor.run_chunks(chunk, batches, token))
        res = 8.0 * float(np.prod(half)) * total / self.sample_number
        res = res if not math.isnan(res) else 0.0
        logger.info("Geometric factor %.6f from %d samples", res, self.sample_number)
        return res
