import copy
import math
import numpy as np
from typing import List, Tuple

from source_errors import ConfigurationError
from vector3d import Vector


class LaserPulse:
    """Класс для описания гауссова лазерного импульса"""

    # Физические константы
    HC: float = 3.1614e-26  # Произведение постоянной Планка и скорости света (Дж·м)
    C: float = 299792458.0  # Скорость света (м/с)
    E: float = 1.602e-19  # Заряд электрона (Кл)

    def __init__(self):
        """Инициализация с параметрами по умолчанию"""
        self._photon_energy: float = 1.204 * self.E  # Энергия фотона (Дж)
        self._number: float = 0.0  # Количество фотонов
        self._length: float = 1.5e-3  # Длина импульса (м)
        self._rlength: float = 3.5e-4  # Рэлеевская длина (м)
        self._fq: float = 1000.0  # Частота повторения (Гц)
        self._delay: float = 0.0  # Задержка (м)
        self._rk: float = self.HC / self._photon_energy
        # Направление с небольшим наклоном (~3 градуса)
        self._direction: Vector = Vector(0.0, math.sin(0.052), math.cos(0.052))
        self._polarization: List[float] = [1.0, 0.0, 0.0]
        self._p: float = 1.0
        self._ka1: List[float] = [0.0, 0.0]
        self._ka2: List[float] = [0.0, 0.0]
        self._a1: List[Vector] = [Vector(), Vector()]
        self._a2: List[Vector] = [Vector(), Vector()]
        self._intensity: float = 0.0
        self._number = 0.1 / self._photon_energy
        self._update()

    def copy(self) -> 'LaserPulse':
        """Независимая копия импульса"""
        new_pulse = copy.copy(self)
        new_pulse._direction = self._direction.copy()
        new_pulse._polarization = list(self._polarization)
        new_pulse._ka1 = list(self._ka1)
        new_pulse._ka2 = list(self._ka2)
        new_pulse._a1 = [a.copy() for a in self._a1]
        new_pulse._a2 = [a.copy() for a in self._a2]
        return new_pulse

    def state(self) -> tuple:
        """Кортеж всех параметров импульса"""
        return (self._photon_energy, self._number, self._length, self._rlength, self._fq,
                self._delay, tuple(self._direction), tuple(self._polarization))

    # ------------------------------------------
    # Основные свойства
    # ------------------------------------------

    @property
    def photon_energy(self) -> float:
        """Энергия одного фотона (Дж)"""
        return self._photon_energy

    @photon_energy.setter
    def photon_energy(self, value: float) -> None:
        if not value > 0:
            raise ConfigurationError(f"photon energy must be positive, got {value!r}")
        # Энергия импульса сохраняется, число фотонов пересчитывается
        pulse_energy = self.pulse_energy
        self._photon_energy = float(value)
        self._rk = self.HC / self._photon_energy
        self._number = pulse_energy / self._photon_energy
        self._update()

    @property
    def photon_number(self) -> float:
        """Количество фотонов в импульсе"""
        return self._number

    @photon_number.setter
    def photon_number(self, value: float) -> None:
        if not value >= 0:
            raise ConfigurationError(f"photon number must be non-negative, got {value!r}")
        self._number = float(value)
        self._update()

    @property
    def pulse_energy(self) -> float:
        """Полная энергия импульса (Дж)"""
        return self._number * self._photon_energy

    @pulse_energy.setter
    def pulse_energy(self, value: float) -> None:
        if not value >= 0:
            raise ConfigurationError(f"pulse energy must be non-negative, got {value!r}")
        self._number = value / self._photon_energy
        self._update()

    @property
    def length(self) -> float:
        """Длина импульса (м)"""
        return self._length

    @length.setter
    def length(self, value: float) -> None:
        if not value > 0:
            raise ConfigurationError(f"pulse length must be positive, got {value!r}")
        self._length = float(value)
        self._update()

    @property
    def direction(self) -> Vector:
        """Единичный вектор направления импульса"""
        return self._direction.copy()

    @direction.setter
    def direction(self, value: Vector) -> None:
        value = Vector.of(value)
        if value.norm() == 0:
            raise ConfigurationError("laser direction must be a non-zero vector")
        self._direction = value.normalize()

    @property
    def rlength(self) -> float:
        """Рэлеевская длина (м)"""
        return self._rlength

    @rlength.setter
    def rlength(self, value: float) -> None:
        if not value > 0:
            raise ConfigurationError(f"Rayleigh length must be positive, got {value!r}")
        self._rlength = float(value)
        self._update()

    @property
    def fq(self) -> float:
        """Частота повторения импульсов (Гц)"""
        return self._fq

    @fq.setter
    def fq(self, value: float) -> None:
        if not value >= 0:
            raise ConfigurationError(f"repetition rate must be non-negative, got {value!r}")
        self._fq = float(value)

    @property
    def delay(self) -> float:
        """Задержка импульса (м)"""
        return self._delay

    @delay.setter
    def delay(self, value: float) -> None:
        self._delay = float(value)

    @property
    def polarization(self) -> Tuple[float, float, float]:
        """Параметры Стокса (ksi1, ksi2, ksi3)"""
        return tuple(self._polarization)

    @property
    def p(self) -> float:
        """Степень поляризации"""
        return self._p

    @property
    def average_intensity(self) -> float:
        """Средняя интенсивность (Вт/м²)"""
        return self._intensity

    @property
    def ka1(self) -> Tuple[float, float]:
        return tuple(self._ka1)

    @property
    def ka2(self) -> Tuple[float, float]:
        return tuple(self._ka2)

    @property
    def a1(self) -> Tuple[Vector, Vector]:
        return tuple(a.copy() for a in self._a1)

    @property
    def a2(self) -> Tuple[Vector, Vector]:
        return tuple(a.copy() for a in self._a2)

    def set_polarization(self, ksi1: float, ksi2: float, ksi3: float) -> None:
        """Установка параметров Стокса и собственных векторов поляризации"""
        p = math.sqrt(ksi1 ** 2 + ksi2 ** 2 + ksi3 ** 2)
        if p > 1.0 + 1e-12:
            raise ConfigurationError(f"Stokes vector length must not exceed 1, got {p!r}")
        self._polarization = [float(ksi1), float(ksi2), float(ksi3)]
        self._update()

    # ------------------------------------------
    # Геометрия и интенсивность
    # ------------------------------------------

    def _update(self) -> None:
        """Пересчёт интенсивности и собственных векторов поляризации"""
        self._intensity = self.pulse_energy / self._length / math.pi / self.get_width_squared(0.0) * self.C
        ksi1, ksi2, ksi3 = self._polarization
        p = min(1.0, math.sqrt(ksi1 ** 2 + ksi2 ** 2 + ksi3 ** 2))
        self._p = p
        t = (ksi3 + p, ksi3 - p)
        coef = (math.sqrt((1.0 + p) / 2.0), math.sqrt((1.0 - p) / 2.0))
        for s in range(2):
            h = math.sqrt(ksi1 ** 2 + ksi2 ** 2 + t[s] ** 2)
            if p == 0:
                # Неполяризованное излучение
                aa1 = Vector(1.0, 1.0 - 2.0 * s, 0.0) / math.sqrt(2.0)
                aa2 = Vector()
            elif h == 0:
                aa1 = Vector(1.0, 0.0, 0.0)
                aa2 = Vector()
            else:
                aa1 = Vector(ksi1, t[s], 0.0) / h
                aa2 = Vector(-ksi2, 0.0, 0.0) / h
            b1, b2 = self.get_orthogonal_polarization_vectors(aa1, aa2)
            self._a1[s] = b1 * coef[s]
            self._a2[s] = b2 * coef[s]
            self._ka1[s] = self._a1[s].inner_product(self._a1[s])
            self._ka2[s] = self._a2[s].inner_product(self._a2[s])

    @staticmethod
    def get_orthogonal_polarization_vectors(aa1: Vector, aa2: Vector) -> Tuple[Vector, Vector]:
        """
        Ортогонализация действительной и мнимой частей вектора поляризации.

        :param aa1: Действительная часть
        :param aa2: Мнимая часть
        """
        product = aa1.inner_product(aa2)
        if product == 0:
            return aa1.copy(), aa2.copy()
        a1 = aa1.inner_product(aa1)
        a2 = aa2.inner_product(aa2)
        m = abs(a1 - a2) / math.sqrt(a1 * a1 + a2 * a2 - 2.0 * a1 * a2 + 4.0 * product ** 2)
        c1 = math.sqrt((1.0 + m) / 2.0)
        # Знак поворота: c1 * c2 * (a1 - a2) = -m * product
        c2 = math.sqrt((1.0 - m) / 2.0) * (-1.0 if (a1 - a2) * product > 0 else 1.0)
        b1 = Vector(c1 * aa1.x - c2 * aa2.x, c1 * aa1.y - c2 * aa2.y, 0.0)
        b2 = Vector(c1 * aa2.x + c2 * aa1.x, c1 * aa2.y + c2 * aa1.y, 0.0)
        return b1, b2

    def get_phase_weighted_polarization_vectors(self, phase: float) -> Tuple[Vector, Vector]:
        """Суперпозиция двух независимых поляризаций с фазовыми множителями"""
        ff = (math.cos(phase) * math.sqrt(2.0), math.sin(phase) * math.sqrt(2.0))
        b1 = Vector()
        b2 = Vector()
        for s in range(2):
            b1 = b1 + self._a1[s] * ff[s]
            b2 = b2 + self._a2[s] * ff[s]
        return self.get_orthogonal_polarization_vectors(b1, b2)

    def get_width(self, z):
        """Ширина пучка на расстоянии z (м)"""
        return np.sqrt(self.get_width_squared(z))

    def set_width(self, width: float) -> None:
        """Установка ширины пучка"""
        self.rlength = width ** 2 / self._rk

    def get_width_squared(self, z):
        """Квадрат ширины пучка на расстоянии z (м²)"""
        return (self._rlength + z ** 2 / self._rlength) * self._rk

    def t_spatial_distribution(self, r):
        """Поперечное распределение в системе координат лазера"""
        w2 = self.get_width_squared(r[2])
        return np.exp(-(r[0] ** 2 + r[1] ** 2) / w2) / w2 / math.pi

    def l_spatial_distribution(self, r):
        """Продольное распределение в системе координат лазера"""
        return np.exp(-((r[2] - self._delay) / self._length) ** 2) / self._length / math.sqrt(math.pi)

    def get_intensity(self, r) -> float:
        """Локальная интенсивность в точке r (система координат лазера)"""
        return self.pulse_energy * self.t_spatial_distribution(r) * self.l_spatial_distribution(r) * self.C

    def get_transformed_coordinates(self, r) -> np.ndarray:
        """Переход в систему координат лазера; допускаются массивы координат"""
        sn = self._direction.y
        cs = self._direction.z
        x1 = r[0]
        y1 = -sn * r[2] + cs * r[1]
        z1 = cs * r[2] + sn * r[1]
        return np.array([x1, y1, -z1])

    def __repr__(self) -> str:
        return (f"LaserPulse(energy={self.pulse_energy:.3e} J, "
                f"photons={self.photon_number:.3e}, "
                f"length={self.length:.3e} m)")
