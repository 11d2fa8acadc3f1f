import copy
import math
import numpy as np

from source_errors import ConfigurationError
from vector3d import Vector


def _positive(name: str, value: float) -> float:
    if not value > 0:
        raise ConfigurationError(f"{name} must be positive, got {value!r}")
    return float(value)


def _non_negative(name: str, value: float) -> float:
    if not value >= 0:
        raise ConfigurationError(f"{name} must be non-negative, got {value!r}")
    return float(value)


class ElectronBunch:
    """Гауссов электронный пучок"""

    # Константы
    E: float = 1.602e-19  # Заряд электрона (Кл)
    MC2: float = 0.5109989461  # Энергия покоя (МэВ)

    def __init__(self):
        """Инициализация с параметрами по умолчанию"""
        self._shift = Vector()
        self._gamma = 50.0 / self.MC2
        self._number = 0.2e-9 / self.E
        self._delgamma = 1.25e-3
        self._length = 1.5e-3
        self._epsx = 1.0e-6
        self._epsy = 1.0e-6
        self._betax = 0.02
        self._betay = 0.02

    def copy(self) -> 'ElectronBunch':
        """Создание независимой копии объекта"""
        new_bunch = copy.copy(self)
        new_bunch._shift = self._shift.copy()
        return new_bunch

    def state(self) -> tuple:
        """Кортеж всех параметров пучка"""
        return (tuple(self._shift), self._gamma, self._number, self._delgamma, self._length,
                self._epsx, self._epsy, self._betax, self._betay)

    # ------------------------------------------
    # Параметры пучка
    # ------------------------------------------
    @property
    def shift(self) -> Vector:
        """Смещение пучка относительно лазерного импульса (м)"""
        return self._shift.copy()

    @shift.setter
    def shift(self, value: Vector) -> None:
        self._shift = Vector.of(value)

    @property
    def gamma(self) -> float:
        return self._gamma

    @gamma.setter
    def gamma(self, value: float) -> None:
        if not value > 1.0:
            raise ConfigurationError(f"gamma must exceed 1, got {value!r}")
        self._gamma = float(value)

    @property
    def number(self) -> float:
        return self._number

    @number.setter
    def number(self, value: float) -> None:
        self._number = _non_negative("number", value)

    @property
    def delgamma(self) -> float:
        """Относительный разброс энергии"""
        return self._delgamma

    @delgamma.setter
    def delgamma(self, value: float) -> None:
        self._delgamma = _non_negative("delgamma", value)

    @property
    def length(self) -> float:
        return self._length

    @length.setter
    def length(self, value: float) -> None:
        self._length = _positive("length", value)

    @property
    def epsx(self) -> float:
        return self._epsx

    @epsx.setter
    def epsx(self, value: float) -> None:
        self._epsx = _positive("epsx", value)

    @property
    def epsy(self) -> float:
        return self._epsy

    @epsy.setter
    def epsy(self, value: float) -> None:
        self._epsy = _positive("epsy", value)

    @property
    def betax(self) -> float:
        return self._betax

    @betax.setter
    def betax(self, value: float) -> None:
        self._betax = _positive("betax", value)

    @property
    def betay(self) -> float:
        return self._betay

    @betay.setter
    def betay(self, value: float) -> None:
        self._betay = _positive("betay", value)

    # ------------------------------------------
    # Размеры, разбросы и распределения
    # ------------------------------------------
    def get_x_width(self, z):
        """Ширина пучка по X на расстоянии z"""
        return np.sqrt(self.get_x_width_squared(z))

    def set_x_width(self, width: float) -> None:
        """Установка ширины пучка по X"""
        self.betax = width ** 2 / self._epsx * self._gamma

    def get_x_width_squared(self, z):
        """Квадрат ширины пучка по X"""
        return (self._betax + z ** 2 / self._betax) * self._epsx / self._gamma

    def get_x_spread(self) -> float:
        """Угловой разброс по X"""
        return math.sqrt(self._epsx / self._gamma / self._betax)

    def get_y_width(self, z):
        """Ширина пучка по Y на расстоянии z"""
        return np.sqrt(self.get_y_width_squared(z))

    def set_y_width(self, width: float) -> None:
        """Установка ширины пучка по Y"""
        self.betay = width ** 2 / self._epsy * self._gamma

    def get_y_width_squared(self, z):
        """Квадрат ширины пучка по Y"""
        return (self._betay + z ** 2 / self._betay) * self._epsy / self._gamma

    def get_y_spread(self) -> float:
        """Угловой разброс по Y"""
        return math.sqrt(self._epsy / self._gamma / self._betay)

    def get_width(self, z):
        """Общая ширина пучка"""
        return np.sqrt(self.get_x_width(z) * self.get_y_width(z))

    def get_width_squared(self, z):
        """Квадрат общей ширины пучка"""
        return np.sqrt(self.get_x_width_squared(z) * self.get_y_width_squared(z))

    def get_spread(self) -> float:
        """Общий разброс"""
        return math.sqrt(self.get_x_spread() * self.get_y_spread())

    def angle_x_distribution(self, theta_x):
        """Распределение по углу theta_x"""
        dpx = self.get_x_spread()
        return np.exp(-(theta_x / dpx) ** 2) / dpx / math.sqrt(math.pi)

    def angle_y_distribution(self, theta_y):
        """Распределение по углу theta_y"""
        dpy = self.get_y_spread()
        return np.exp(-(theta_y / dpy) ** 2) / dpy / math.sqrt(math.pi)

    def angle_distribution(self, theta_x, theta_y):
        """Общее угловое распределение"""
        dpx = self.get_x_spread()
        dpy = self.get_y_spread()
        exponent = -((theta_x / dpx) ** 2 + (theta_y / dpy) ** 2)
        return np.exp(exponent) / (dpx * dpy * math.pi)

    def gamma_distribution(self, g):
        """Распределение по гамма-фактору"""
        dg = self._delgamma * self._gamma
        return np.exp(-((g - self._gamma) / dg) ** 2) / dg / math.sqrt(math.pi)

    def t_spatial_distribution(self, r):
        """
        Поперечное пространственное распределение.

        :param r: Точка (x, y, z); допускаются массивы координат
        """
        dz = r[2] - self._shift.z
        wx2 = self.get_x_width_squared(dz)
        wy2 = self.get_y_width_squared(dz)
        k = (r[0] - self._shift.x) ** 2 / wx2 + (r[1] - self._shift.y) ** 2 / wy2
        return np.exp(-k) / np.sqrt(wx2 * wy2) / math.pi

    def l_spatial_distribution(self, r):
        """Продольное распределение"""
        return np.exp(-(r[2] / self._length) ** 2) / self._length / math.sqrt(math.pi)

    def __repr__(self) -> str:
        return (f"ElectronBunch(gamma={self.gamma:.3f}, number={self.number:.3e}, "
                f"length={self.length:.3e} m)")
