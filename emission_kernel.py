"""Излучение одного электрона: кинематика Комптона, интенсивность и параметры Стокса"""
import logging
import math
import numpy as np
from dataclasses import dataclass
from typing import List, Optional, Tuple

from laser_pulse import LaserPulse
from source_config import KernelOrder
from vector3d import Vector, get_2d_transform

logger = logging.getLogger(__name__)

NUMBER_OF_POL_PARAM = 4
_X_AXIS = Vector(1.0, 0.0, 0.0)


@dataclass(frozen=True)
class Emission:
    """Результат ядра: интенсивность (фотон/с/ср), энергия фотона (Дж), параметры Стокса"""
    intensity: float
    energy: float
    stokes: Tuple[float, float, float, float]


ZERO_EMISSION = Emission(0.0, 0.0, (0.0, 0.0, 0.0, 0.0))


def one_minus_beta(gamma: float) -> float:
    """1 - v/c без потери точности при больших gamma"""
    beta = math.sqrt(1.0 - 1.0 / gamma / gamma)
    return 1.0 / gamma / gamma / (1.0 + beta)


def one_minus_cosine(n: Vector, v: Vector) -> float:
    """1 - n·v для единичных векторов без потери точности"""
    d = n - v
    return 0.5 * d.inner_product(d)


class EmissionKernel:
    """
    Ядро излучения одного электрона.

    Линейный вариант - томсоновский предел (гармоника 1, интенсивность лазера не
    учитывается); гармонический вариант учитывает нормированный векторный
    потенциал лазера через отношение интенсивности к насыщающей.
    """

    HC: float = LaserPulse.HC
    C: float = LaserPulse.C
    AS: float = 1.704509e3
    MAX_FOURIER_POINTS: int = 1 << 16
    MAX_PHASE_POINTS: int = 256

    def __init__(self, laser_pulse: LaserPulse, order: KernelOrder, linear_total_flux: float,
                 precision: float):
        self._lp = laser_pulse
        self._order = order
        self._total_flux = linear_total_flux
        self._precision = precision
        self._eph = laser_pulse.photon_energy
        k = self._eph / self.HC
        self._s_intensity = 1e-5 * self.C * k * k * self.AS * self.AS / 8.0 / math.pi
        self._rho = 0.0 if order.is_linear else laser_pulse.average_intensity / self._s_intensity
        a1 = laser_pulse.a1
        a2 = laser_pulse.a2
        ka1 = laser_pulse.ka1
        ka2 = laser_pulse.ka2
        self._components = [(a1[s], a2[s]) for s in range(2) if ka1[s] + ka2[s] > 0]

    @property
    def order(self) -> KernelOrder:
        return self._order

    @property
    def rho(self) -> float:
        """Отношение интенсивности лазера к насыщающей"""
        return self._rho

    @property
    def saturating_intensity(self) -> float:
        return self._s_intensity

    # ------------------------------------------
    # Кинематика
    # ------------------------------------------

    def energy(self, n: Vector, v: Vector, gamma: float) -> float:
        """Энергия рассеянного фотона в направлении n для электрона (v, gamma)"""
        omb = one_minus_beta(gamma)
        omp = one_minus_cosine(n, v)
        r = self._rho * (2.0 - omp) / 4.0
        d = omb * (1.0 + r) + (1.0 - omb) * omp
        return self._order.order * (2.0 - omb) * self._eph / d

    def gamma_for_energy(self, n: Vector, v: Vector, x: float) -> float:
        """
        Гамма-фактор электрона, излучающего фотон энергии x в направлении n.

        :return: 0.0, если такая энергия кинематически запрещена
        """
        if x <= 0:
            return 0.0
        q = x / self._order.order / self._eph
        omp = one_minus_cosine(n, v)
        p = 1.0 - omp
        r = self._rho * (1.0 + p) / 4.0
        denominator = 1.0 + q * (p + r)
        omb = (2.0 - q * omp) / denominator
        beta = (q * (1.0 + r) - 1.0) / denominator
        if omb <= 0 or beta <= 0:
            return 0.0
        return 1.0 / math.sqrt(omb * (1.0 + beta))

    def energy_gamma_derivative(self, n: Vector, v: Vector, gamma: float) -> float:
        """Производная энергии фотона по гамма-фактору"""
        omb = one_minus_beta(gamma)
        beta = 1.0 - omb
        omp = one_minus_cosine(n, v)
        p = 1.0 - omp
        r = self._rho * (1.0 + p) / 4.0
        d = omb * (1.0 + r) + beta * omp
        return self._order.order * self._eph * (1.0 + p + 2.0 * r) / (d * d * gamma ** 3 * beta)

    def cosine_for_energy(self, gamma: float, x: float) -> Optional[Tuple[float, float]]:
        """
        Угол излучения относительно скорости электрона для энергии x.

        :return: (1 - cos(угла), |dE/dcos|) или None, если энергия недостижима
        """
        if x <= 0:
            return None
        omb = one_minus_beta(gamma)
        beta = 1.0 - omb
        scale = self._order.order * (2.0 - omb) * self._eph
        b = beta - self._rho * omb / 4.0
        if b <= 0:
            return None
        omp = (scale / x - omb * (1.0 + self._rho / 2.0)) / b
        if omp < 0 or omp > 2.0:
            return None
        return omp, x * x * b / scale

    # ------------------------------------------
    # Интенсивность и поляризация
    # ------------------------------------------

    def emission(self, n: Vector, v: Vector, gamma: float, energy: Optional[float] = None) -> Emission:
        """
        Излучение электрона со скоростью v и гамма-фактором gamma в направлении n.

        :param energy: Энергия фотона; по умолчанию кинематическая
        """
        x = self.energy(n, v, gamma) if energy is None else energy
        if x <= 0 or gamma <= 1.0:
            return ZERO_EMISSION
        geometry = _Geometry(n, v, gamma)
        weight, pol = self._amplitudes(geometry, x)
        if not weight > 0:
            return Emission(0.0, x, (0.0, 0.0, 0.0, 0.0))
        intensity = self._flux_coefficient(geometry) * weight
        if math.isnan(intensity):
            return Emission(0.0, x, (0.0, 0.0, 0.0, 0.0))
        stokes = [intensity, 0.0, 0.0, 0.0]
        if pol[0] > 0:
            for i in range(1, NUMBER_OF_POL_PARAM):
                ratio = pol[i] / pol[0]
                stokes[i] = intensity * ratio if not math.isnan(ratio) else 0.0
        return Emission(intensity, x, tuple(stokes))

    def flux(self, n: Vector, v: Vector, gamma: float, energy: Optional[float] = None) -> float:
        """Угловая плотность потока одного электрона (фотон/с/ср)"""
        x = self.energy(n, v, gamma) if energy is None else energy
        if x <= 0 or gamma <= 1.0:
            return 0.0
        geometry = _Geometry(n, v, gamma)
        weight = self._amplitudes(geometry, x, with_polarization=False)[0]
        res = self._flux_coefficient(geometry) * weight
        return res if not math.isnan(res) and res > 0 else 0.0

    def _flux_coefficient(self, g: '_Geometry') -> float:
        m = self._rho * (1.0 + g.p) * g.omb / 4.0
        return (self._total_flux * self._order.order * 3.0 / 2.0 / math.pi
                / ((g.omb + g.beta * g.omp) * (1.0 + m)) ** 2 / g.gamma ** 2)

    def _amplitudes(self, g: '_Geometry', x: float,
                    with_polarization: bool = True) -> Tuple[float, List[float]]:
        """Единственная точка выбора варианта ядра"""
        if self._order.is_linear or self._rho <= 0:
            if self._order.order != 1:
                return 0.0, [0.0] * NUMBER_OF_POL_PARAM
            return self._linear_amplitudes(g, x, with_polarization)
        return self._harmonic_amplitudes(g, x, with_polarization)

    def _linear_amplitudes(self, g: '_Geometry', x: float,
                           with_polarization: bool) -> Tuple[float, List[float]]:
        # Независимые собственные поляризации складываются некогерентно
        c = x / self._eph / (1.0 + g.beta) / g.gamma
        aberration = g.beta * g.sq * x / self._eph / (1.0 + g.beta)
        weight = 0.0
        pol = [0.0] * NUMBER_OF_POL_PARAM
        for b0, b1 in self._components:
            k1 = b0.inner_product(b0)
            k2 = b1.inner_product(b1)
            wb0 = g.w.inner_product(b0)
            wb1 = g.w.inner_product(b1)
            weight += (k1 + k2 - c * c * (wb0 * wb0 + wb1 * wb1)) / 4.0
            if with_polarization:
                pol1 = (-g.e1.inner_product(b0) / 2.0,
                        (g.e2.inner_product(b0) - aberration * wb0) / 2.0)
                pol2 = (-g.e1.inner_product(b1) / 2.0,
                        (g.e2.inner_product(b1) - aberration * wb1) / 2.0)
                _add_stokes(pol, g.rotation, pol1, pol2)
        return weight, pol

    def _harmonic_amplitudes(self, g: '_Geometry', x: float,
                             with_polarization: bool) -> Tuple[float, List[float]]:
        rho = self._rho
        sqratio = math.sqrt(rho)
        cf1 = x / self._eph * sqratio / (1.0 + g.beta) / g.gamma
        cf2 = x / self._eph * rho * (1.0 + g.p) / (g.gamma * (1.0 + g.beta)) ** 2 / 8.0

        def single(b0: Vector, b1: Vector) -> Tuple[float, List[float]]:
            pol = [0.0] * NUMBER_OF_POL_PARAM
            k1 = b0.inner_product(b0)
            k2 = b1.inner_product(b1)
            if k1 == 0 and k2 == 0:
                return 0.0, pol
            a1 = cf1 * g.w.inner_product(b0)
            a2 = cf1 * g.w.inner_product(b1)
            a3 = cf2 * (k1 - k2)
            f = self._fourier_harmonics(a1, a2, a3)
            result = ((f[0] ** 2 + f[1] ** 2) * (1.0 / rho + (k1 + k2) / 2.0)
                      - (f[2] ** 2 + f[3] ** 2) * k1 - (f[4] ** 2 + f[5] ** 2) * k2
                      + (f[6] * f[0] + f[7] * f[1]) * (k1 - k2) / 2.0)
            if with_polarization:
                e1b0, e1b1 = g.e1.inner_product(b0), g.e1.inner_product(b1)
                e2b0, e2b1 = g.e2.inner_product(b0), g.e2.inner_product(b1)
                longitudinal = (g.gamma * (g.beta - rho * (k1 + k2) / 4.0 / g.gamma ** 2 / (1.0 + g.beta))
                                * g.sq / sqratio)
                quadratic = sqratio * (k1 - k2) / 4.0 / g.gamma / (1.0 + g.beta) * g.sq
                pol1 = (-e1b0 * f[2] - e1b1 * f[4],
                        longitudinal * f[0] + e2b0 * f[2] + e2b1 * f[4] - quadratic * f[6])
                pol2 = (-e1b0 * f[3] - e1b1 * f[5],
                        longitudinal * f[1] + e2b0 * f[3] + e2b1 * f[5] - quadratic * f[7])
                _add_stokes(pol, g.rotation, pol1, pol2)
            return -result, pol

        if len(self._components) == 1:
            return single(*self._components[0])
        # Частично поляризованный лазер: усреднение по суперпозициям собственных поляризаций
        return self._phase_average(single)

    def _phase_average(self, single) -> Tuple[float, List[float]]:
        def average(points: int) -> np.ndarray:
            acc = np.zeros(NUMBER_OF_POL_PARAM + 1)
            for phase in np.linspace(-math.pi, math.pi, points, endpoint=False):
                weight, pol = single(*self._lp.get_phase_weighted_polarization_vectors(phase))
                acc[0] += weight
                acc[1:] += pol
            return acc / points

        points = 8
        previous = average(points)
        while points < self.MAX_PHASE_POINTS:
            points *= 2
            current = average(points)
            if np.all(np.abs(current - previous) <= self._precision * np.max(np.abs(current))):
                return float(current[0]), list(current[1:])
            previous = current
        logger.warning("Polarization phase average did not converge with %d points", points)
        return float(previous[0]), list(previous[1:])

    def _fourier_harmonics(self, a1: float, a2: float, a3: float) -> List[float]:
        """
        Интегралы Фурье f0..f7 нелинейного рассеяния.

        Подынтегральные функции периодичны, поэтому используется формула трапеций
        с удвоением числа узлов до достижения точности.
        """
        order = self._order.order

        def harmonics(points: int) -> np.ndarray:
            tau = np.linspace(-math.pi, math.pi, points, endpoint=False)
            phase = order * tau + a1 * np.sin(tau) - a2 * np.cos(tau) + a3 * np.sin(2.0 * tau)
            cs, sn = np.cos(phase), np.sin(phase)
            ct, st, c2t = np.cos(tau), np.sin(tau), np.cos(2.0 * tau)
            return np.array([np.mean(ct * cs), np.mean(ct * sn), np.mean(st * cs),
                             np.mean(st * sn), np.mean(c2t * cs), np.mean(c2t * sn)])

        points = max(32, 4 * (order + int(math.ceil(abs(a1) + abs(a2) + 2.0 * abs(a3)))))
        previous = harmonics(points)
        while True:
            points *= 2
            current = harmonics(points)
            scale = max(np.max(np.abs(current)), 1e-300)
            if np.max(np.abs(current - previous)) <= self._precision / 100.0 * scale:
                break
            if points >= self.MAX_FOURIER_POINTS:
                logger.warning("Fourier harmonics did not converge with %d points", points)
                break
            previous = current
        f = [0.0, 0.0] + [float(u) for u in current]
        f[0] = -(a1 * f[2] + a2 * f[4] + 2.0 * a3 * f[6]) / order
        f[1] = -(a1 * f[3] + a2 * f[5] + 2.0 * a3 * f[7]) / order
        return f


class _Geometry:
    """Вспомогательные величины для пары направлений (n, v)"""

    __slots__ = ('gamma', 'omb', 'beta', 'omp', 'p', 'w', 'sq', 'e1', 'e2', 'rotation')

    def __init__(self, n: Vector, v: Vector, gamma: float):
        self.gamma = gamma
        self.omb = one_minus_beta(gamma)
        self.beta = 1.0 - self.omb
        self.omp = one_minus_cosine(n, v)
        self.p = 1.0 - self.omp
        # Составляющая n, поперечная скорости электрона
        self.w = n - v * self.p
        nv = n.cross(v)
        self.sq = nv.norm()
        e0 = _X_AXIS.cross(n).normalize()
        self.e1 = nv / self.sq if self.sq > 0 else e0
        self.e2 = n.cross(self.e1)
        # Поворот базиса (e1, e2) к базису (e0, n x e0)
        self.rotation = get_2d_transform(self.e1, e0, n)


def _add_stokes(pol: List[float], rotation: np.ndarray,
                pol1: Tuple[float, float], pol2: Tuple[float, float]) -> None:
    p1x, p1y = rotation @ pol1
    p2x, p2y = rotation @ pol2
    pol[0] += (p1x * p1x + p2x * p2x + p1y * p1y + p2y * p2y) / 2.0
    pol[1] += p1x * p1y + p2x * p2y
    pol[2] += p2x * p1y - p1x * p2y
    pol[3] += (p1y * p1y + p2y * p2y - p1x * p1x - p2x * p2x) / 2.0
