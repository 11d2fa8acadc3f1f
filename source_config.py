import math
import os
from dataclasses import dataclass, field, replace
from typing import Optional, Tuple

from source_errors import ConfigurationError

E: float = 1.602e-19  # Заряд электрона (Кл)


@dataclass(frozen=True)
class KernelOrder:
    """
    Вариант ядра излучения.

    :param kind: 'linear' - томсоновский предел, 'harmonic' - нелинейная гармоника
    :param order: Номер гармоники (>= 1)
    """
    kind: str = 'linear'
    order: int = 1

    LINEAR = 'linear'
    HARMONIC = 'harmonic'

    def __post_init__(self):
        if self.kind not in (self.LINEAR, self.HARMONIC):
            raise ConfigurationError(f"unknown kernel kind {self.kind!r}")
        if isinstance(self.order, bool) or not isinstance(self.order, int) or self.order < 1:
            raise ConfigurationError(f"harmonic order must be an integer >= 1, got {self.order!r}")
        if self.kind == self.LINEAR and self.order != 1:
            raise ConfigurationError("the linear kernel has order 1")

    @classmethod
    def linear(cls) -> 'KernelOrder':
        return cls(cls.LINEAR, 1)

    @classmethod
    def harmonic(cls, order: int) -> 'KernelOrder':
        return cls(cls.HARMONIC, order)

    @property
    def is_linear(self) -> bool:
        return self.kind == self.LINEAR


def _default_thread_number() -> int:
    return os.cpu_count() or 1


@dataclass(frozen=True)
class SourceConfig:
    """Неизменяемая конфигурация движка"""
    precision: float = 1.0e-3
    shift_factor: float = 1.0
    np_geometric_factor: int = 50000
    thread_number: int = field(default_factory=_default_thread_number)
    e_spread: bool = False
    polarization: Optional[Tuple[float, float, float]] = None
    ray_x_angle_range: float = 3.0e-4
    ray_y_angle_range: float = 3.0e-4
    min_energy: float = 40.0e3 * E
    max_energy: float = 47.0e3 * E
    ray_number: int = 1000
    order: KernelOrder = field(default_factory=KernelOrder.linear)
    seed: Optional[int] = None

    def __post_init__(self):
        if not 0.0 < self.precision < 1.0:
            raise ConfigurationError(f"precision must lie in (0, 1), got {self.precision!r}")
        if not self.shift_factor >= 0:
            raise ConfigurationError(f"shift factor must be non-negative, got {self.shift_factor!r}")
        self._check_count('np_geometric_factor', self.np_geometric_factor, 1)
        self._check_count('thread_number', self.thread_number, 1)
        self._check_count('ray_number', self.ray_number, 0)
        if not (self.ray_x_angle_range > 0 and self.ray_y_angle_range > 0):
            raise ConfigurationError("ray angle ranges must be positive")
        if not self.min_energy >= 0:
            raise ConfigurationError(f"minimal ray energy must be non-negative, got {self.min_energy!r}")
        if not self.max_energy > self.min_energy:
            raise ConfigurationError("maximal ray energy must exceed the minimal one")
        if self.polarization is not None:
            if len(self.polarization) != 3:
                raise ConfigurationError("polarization override needs three Stokes parameters")
            ksi = tuple(float(k) for k in self.polarization)
            if math.sqrt(sum(k * k for k in ksi)) > 1.0 + 1e-12:
                raise ConfigurationError(f"Stokes vector length must not exceed 1, got {ksi!r}")
            object.__setattr__(self, 'polarization', ksi)
        if not isinstance(self.order, KernelOrder):
            raise ConfigurationError(f"order must be a KernelOrder, got {self.order!r}")
        if self.seed is not None and (isinstance(self.seed, bool) or not isinstance(self.seed, int)):
            raise ConfigurationError(f"seed must be an integer, got {self.seed!r}")

    @staticmethod
    def _check_count(name: str, value: int, minimum: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
            raise ConfigurationError(f"{name} must be an integer >= {minimum}, got {value!r}")

    def replace(self, **changes) -> 'SourceConfig':
        """Новая конфигурация с изменёнными полями (с проверкой)"""
        unknown = set(changes) - set(self.__dataclass_fields__)
        if unknown:
            raise ConfigurationError(f"unknown configuration fields: {sorted(unknown)}")
        return replace(self, **changes)
