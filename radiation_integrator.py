"""Интегрирование излучения одного электрона по угловому и энергетическому разбросу пучка"""
import logging
import math
import numpy as np
from scipy.integrate import quad, quad_vec
from typing import Callable, Dict, Optional, Sequence, Tuple

from electron_bunch import ElectronBunch
from emission_kernel import NUMBER_OF_POL_PARAM, EmissionKernel
from geometric_factor import volume_flux
from laser_pulse import LaserPulse
from parallel_executor import CancellationToken
from source_config import SourceConfig
from vector3d import Vector

logger = logging.getLogger(__name__)


class RadiationIntegrator:
    """
    Усреднение ядра излучения по распределениям электронного пучка.

    Экземпляр работает с неизменяемыми копиями моделей и обслуживает одно задание.
    """

    INT_RANGE: float = 3.0  # Пределы интегрирования в единицах разброса
    SHIFT: float = 1.0e-3  # Смещение направления наблюдения в единицах углового разброса
    MAXIMAL_NUMBER_OF_EVALUATIONS: int = 200
    EPSABS: float = 1.0e-200

    def __init__(self, eb: ElectronBunch, lp: LaserPulse, config: SourceConfig,
                 linear_total_flux: float, geometric_factor: float,
                 token: Optional[CancellationToken] = None):
        self.eb = eb
        self.lp = lp
        self.config = config
        self._total_flux = linear_total_flux
        self._gf = geometric_factor
        self._token = token if token is not None else CancellationToken()
        self._spread = config.e_spread and eb.delgamma > 0
        self._kernels: Dict[Optional[Tuple[float, float, float]], EmissionKernel] = {}

    @property
    def geometric_factor(self) -> float:
        return self._gf

    @property
    def energy_spread(self) -> bool:
        """Учитывается ли разброс энергии электронов"""
        return self._spread

    def get_kernel(self, polarization: Optional[Sequence[float]] = None) -> EmissionKernel:
        """
        Ядро излучения для заданной поляризации лазера.

        :param polarization: Параметры Стокса; None - поляризация из конфигурации или лазера
        """
        if polarization is None:
            polarization = self.config.polarization
        key = tuple(float(k) for k in polarization) if polarization is not None else None
        kernel = self._kernels.get(key)
        if kernel is None:
            lp = self.lp
            if key is not None:
                lp = self.lp.copy()
                lp.set_polarization(*key)
            kernel = EmissionKernel(lp, self.config.order, self._total_flux, self.config.precision)
            self._kernels[key] = kernel
        return kernel

    # ------------------------------------------
    # Запросы по направлению
    # ------------------------------------------

    def direction_flux(self, n: Vector, v0: Vector) -> float:
        """Угловая плотность потока (фотон/с/ср) в направлении n"""
        n, v0 = self._prepare(n, v0)
        kernel = self.get_kernel()

        def density(tx: float, ty: float) -> float:
            v = self._electron_direction(tx, ty)
            if v is None:
                return 0.0
            weight = self.eb.angle_distribution(tx - v0.x, ty - v0.y)
            res = weight * self._gamma_average(lambda g: kernel.flux(n, v, g))
            return res if not math.isnan(res) else 0.0

        res = self._gf * self._angle_integral(density, v0)
        logger.debug("Direction flux %s: %.6e", tuple(n), res)
        return res

    def direction_energy(self, n: Vector, v0: Vector) -> float:
        """Средняя энергия фотона (Дж) в направлении n"""
        n, v0 = self._prepare(n, v0)
        kernel = self.get_kernel()
        if not self._spread:
            return kernel.energy(n, v0, self.eb.gamma)
        flux = self._gamma_average(lambda g: kernel.flux(n, v0, g))
        if flux <= 0:
            return kernel.energy(n, v0, self.eb.gamma)
        res = self._gamma_average(lambda g: kernel.flux(n, v0, g) * kernel.energy(n, v0, g)) / flux
        return res if not math.isnan(res) else 0.0

    def direction_frequency_flux(self, n: Vector, v0: Vector, e: float,
                                 polarization: Optional[Sequence[float]] = None) -> float:
        """
        Спектральная плотность потока на единицу относительной ширины полосы.

        :param n: Направление наблюдения
        :param v0: Среднее направление электронов
        :param e: Энергия фотона (Дж)
        :param polarization: Поляризация лазера вместо заданной
        """
        kernel = self.get_kernel(polarization)
        res = self._spectral_density(n, v0, e, lambda m, v, g: kernel.flux(m, v, g, e), False, kernel)
        return res if not math.isnan(res) else 0.0

    def direction_frequency_stokes(self, n: Vector, v0: Vector, e: float,
                                   polarization: Optional[Sequence[float]] = None) -> np.ndarray:
        """Спектральные плотности всех четырёх параметров Стокса"""
        kernel = self.get_kernel(polarization)
        res = self._spectral_density(
            n, v0, e, lambda m, v, g: np.array(kernel.emission(m, v, g, e).stokes), True, kernel)
        return np.where(np.isnan(res), 0.0, res)

    def direction_frequency_polarization(self, n: Vector, v0: Vector, e: float, index: int,
                                         polarization: Optional[Sequence[float]] = None) -> float:
        """
        Поляризация излучения в направлении n при энергии e.

        :param index: 0 - степень поляризации, 1..3 - параметры ksi1..ksi3
        """
        if not 0 <= index < NUMBER_OF_POL_PARAM:
            raise IndexError(f"polarization index must lie in [0, {NUMBER_OF_POL_PARAM}), got {index}")
        return stokes_to_polarization(self.direction_frequency_stokes(n, v0, e, polarization), index)

    def direction_frequency_brilliance(self, r0: Vector, n: Vector, v0: Vector, e: float) -> float:
        """Спектральная яркость: поток на единицу площади источника, телесного угла и полосы"""
        if self._gf <= 0:
            return 0.0
        flux = self.direction_frequency_flux(n, v0, e)
        if flux <= 0:
            return 0.0
        res = flux / self._gf * self._line_density(r0, n)
        return res if not math.isnan(res) else 0.0

    def direction_frequency_polarization_brilliance(self, r0: Vector, n: Vector, v0: Vector, e: float,
                                                    polarization: Optional[Sequence[float]] = None
                                                    ) -> np.ndarray:
        """Спектральная яркость для каждого параметра Стокса"""
        if self._gf <= 0:
            return np.zeros(NUMBER_OF_POL_PARAM)
        stokes = self.direction_frequency_stokes(n, v0, e, polarization)
        if stokes[0] <= 0:
            return np.zeros(NUMBER_OF_POL_PARAM)
        return stokes / self._gf * self._line_density(r0, n)

    # ------------------------------------------
    # Общее ядро интегрирования
    # ------------------------------------------

    def _prepare(self, n: Vector, v0: Vector) -> Tuple[Vector, Vector]:
        """Нормировка направлений и смещение n с оси симметрии"""
        n = Vector.of(n).normalize()
        v0 = Vector.of(v0).normalize()
        spread = self.eb.get_x_spread()
        if n.cross(v0).norm() < self.SHIFT * spread and self.config.shift_factor > 0:
            axis = v0.cross(Vector(0.0, 1.0, 0.0))
            if axis.norm() == 0:
                axis = v0.cross(Vector(1.0, 0.0, 0.0))
            n = (n + axis.normalize() * (self.config.shift_factor * self.SHIFT * spread)).normalize()
        return n, v0

    @staticmethod
    def _electron_direction(tx: float, ty: float) -> Optional[Vector]:
        s = 1.0 - tx * tx - ty * ty
        if s <= 0:
            return None
        return Vector(tx, ty, math.sqrt(s))

    def _spectral_density(self, n: Vector, v0: Vector, e: float, quantity: Callable, vector: bool,
                          kernel: EmissionKernel):
        """
        Спектральная плотность величины quantity(n, v, gamma) при энергии e.

        Дельта-функция по энергии снимается аналитически: по косинусу угла излучения
        без разброса энергии и по гамма-фактору с разбросом.
        """
        n, v0 = self._prepare(n, v0)
        zero = np.zeros(NUMBER_OF_POL_PARAM) if vector else 0.0
        if e <= 0:
            return zero
        if not self._spread:
            return self._gf * e * self._cone_integral(n, v0, e, quantity, vector, kernel)

        def density(tx: float, ty: float):
            v = self._electron_direction(tx, ty)
            if v is None:
                return zero
            g = kernel.gamma_for_energy(n, v, e)
            if g <= 1.0:
                return zero
            derivative = kernel.energy_gamma_derivative(n, v, g)
            weight = (self.eb.angle_distribution(tx - v0.x, ty - v0.y)
                      * self.eb.gamma_distribution(g) / derivative)
            if math.isnan(weight) or weight <= 0:
                return zero
            return weight * quantity(n, v, g)

        return self._gf * e * self._angle_integral(density, v0, vector)

    def _cone_integral(self, n: Vector, v0: Vector, e: float, quantity: Callable, vector: bool,
                       kernel: EmissionKernel):
        """Интеграл по азимуту на конусе скоростей, излучающих энергию e в направлении n"""
        zero = np.zeros(NUMBER_OF_POL_PARAM) if vector else 0.0
        g = self.eb.gamma
        solution = kernel.cosine_for_energy(g, e)
        if solution is None:
            return zero
        omp, derivative = solution
        psi = 2.0 * math.asin(math.sqrt(omp / 2.0))
        d = 2.0 * math.asin(min(1.0, (n - v0).norm() / 2.0))
        radius = self.INT_RANGE * math.sqrt(self.eb.get_x_spread() ** 2 + self.eb.get_y_spread() ** 2)
        denominator = math.sin(psi) * math.sin(d)
        if denominator > 0:
            c = (math.cos(radius) - math.cos(psi) * math.cos(d)) / denominator
        else:
            c = -2.0 if math.cos(psi) * math.cos(d) >= math.cos(radius) else 2.0
        if c >= 1.0:
            return zero
        phi_max = math.pi if c <= -1.0 else math.acos(c)
        u1 = v0 - n * n.inner_product(v0)
        if u1.norm() == 0:
            u1 = Vector(1.0, 0.0, 0.0).cross(n)
        u1 = u1.normalize()
        u2 = n.cross(u1)
        cs, sn = math.cos(psi), math.sin(psi)

        def integrand(phi: float):
            self._token.raise_if_cancelled()
            v = n * cs + (u1 * math.cos(phi) + u2 * math.sin(phi)) * sn
            weight = self.eb.angle_distribution(v.x - v0.x, v.y - v0.y) * v.z / derivative
            if math.isnan(weight) or weight <= 0:
                return zero
            return weight * quantity(n, v, g)

        return self._integrate(integrand, -phi_max, phi_max, vector, 'azimuth')

    def _angle_integral(self, density: Callable, v0: Vector, vector: bool = False):
        """Двойной интеграл по углам электронов в пределах INT_RANGE разбросов"""
        sx = self.INT_RANGE * self.eb.get_x_spread()
        sy = self.INT_RANGE * self.eb.get_y_spread()

        def inner(tx: float):
            def integrand(ty: float):
                self._token.raise_if_cancelled()
                return density(tx, ty)
            return self._integrate(integrand, v0.y - sy, v0.y + sy, vector, None)

        return self._integrate(inner, v0.x - sx, v0.x + sx, vector, 'angle')

    def _gamma_average(self, func: Callable[[float], float]) -> float:
        """Усреднение по распределению гамма-фактора (если разброс учитывается)"""
        if not self._spread:
            return func(self.eb.gamma)
        dg = self.INT_RANGE * self.eb.delgamma * self.eb.gamma
        low = max(self.eb.gamma - dg, 1.0 + 1e-9)

        def integrand(g: float) -> float:
            self._token.raise_if_cancelled()
            res = self.eb.gamma_distribution(g) * func(g)
            return res if not math.isnan(res) else 0.0

        return self._integrate(integrand, low, self.eb.gamma + dg, False, None)

    def _line_density(self, r0: Vector, n: Vector) -> float:
        """Интеграл объёмной плотности вдоль луча r0 + s n"""
        r0 = Vector.of(r0)
        n = Vector.of(n).normalize()
        center = (self.eb.shift / 2.0 - r0).inner_product(n)
        half = self.INT_RANGE * max(self.eb.length, self.lp.length)

        def integrand(s: float) -> float:
            self._token.raise_if_cancelled()
            r = r0 + n * s
            res = float(volume_flux(self.eb, self.lp, r.to_array()))
            return res if not math.isnan(res) else 0.0

        return self._integrate(integrand, center - half, center + half, False, 'line')

    def _integrate(self, func: Callable, a: float, b: float, vector: bool, name: Optional[str]):
        """
        Адаптивная квадратура с заданной относительной точностью.

        При недостижении точности возвращается лучшая оценка.
        :param name: Имя интеграла для журнала; None - внутренний интеграл без предупреждений
        """
        precision = self.config.precision
        if vector:
            res, _, info = quad_vec(func, a, b, epsabs=self.EPSABS, epsrel=precision,
                                    limit=self.MAXIMAL_NUMBER_OF_EVALUATIONS, full_output=True)
            converged = info.success
        else:
            out = quad(func, a, b, epsabs=self.EPSABS, epsrel=precision,
                       limit=self.MAXIMAL_NUMBER_OF_EVALUATIONS, full_output=1)
            res = out[0]
            converged = len(out) < 4
        if not converged:
            if name is not None:
                logger.warning("Integral over %s did not reach relative precision %g", name, precision)
            else:
                logger.debug("Inner integral did not reach relative precision %g", precision)
        return res


def stokes_to_polarization(stokes: Sequence[float], index: int) -> float:
    """Степень поляризации (index = 0) или нормированный параметр Стокса ksi_index"""
    if not stokes[0] > 0:
        return 0.0
    if index == 0:
        res = math.sqrt(stokes[1] ** 2 + stokes[2] ** 2 + stokes[3] ** 2) / stokes[0]
    else:
        res = stokes[index] / stokes[0]
    return res if not math.isnan(res) else 0.0
