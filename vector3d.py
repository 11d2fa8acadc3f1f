import math
import numpy as np
from dataclasses import dataclass
from typing import Iterator, Optional, Sequence


@dataclass
class Vector:
    """Реализация 3D-вектора (замена org.la4j.Vector)"""
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def of(cls, values: Sequence[float]) -> 'Vector':
        return cls(float(values[0]), float(values[1]), float(values[2]))

    def get(self, index: int) -> float:
        return self[index]

    def set(self, index: int, value: float) -> None:
        if index == 0:
            self.x = value
        elif index == 1:
            self.y = value
        elif index == 2:
            self.z = value
        else:
            raise IndexError(index)

    def __getitem__(self, index: int) -> float:
        if index == 0:
            return self.x
        if index == 1:
            return self.y
        if index == 2:
            return self.z
        raise IndexError(index)

    def __iter__(self) -> Iterator[float]:
        return iter((self.x, self.y, self.z))

    def __len__(self) -> int:
        return 3

    def inner_product(self, other: 'Vector') -> float:
        return self.x * other[0] + self.y * other[1] + self.z * other[2]

    def cross(self, other: 'Vector') -> 'Vector':
        return Vector(self.y * other[2] - self.z * other[1],
                      self.z * other[0] - self.x * other[2],
                      self.x * other[1] - self.y * other[0])

    def norm(self) -> float:
        return math.sqrt(self.x * self.x + self.y * self.y + self.z * self.z)

    def normalize(self) -> 'Vector':
        n = self.norm()
        return self / n if n > 0 else self.copy()

    def copy(self) -> 'Vector':
        return Vector(self.x, self.y, self.z)

    def __mul__(self, scalar: float) -> 'Vector':
        return Vector(self.x * scalar, self.y * scalar, self.z * scalar)

    __rmul__ = __mul__

    def __truediv__(self, scalar: float) -> 'Vector':
        return Vector(self.x / scalar, self.y / scalar, self.z / scalar)

    def __add__(self, other: 'Vector') -> 'Vector':
        return Vector(self.x + other[0], self.y + other[1], self.z + other[2])

    def __sub__(self, other: 'Vector') -> 'Vector':
        return Vector(self.x - other[0], self.y - other[1], self.z - other[2])

    def __neg__(self) -> 'Vector':
        return Vector(-self.x, -self.y, -self.z)

    def outer_product(self, other: 'Vector') -> np.ndarray:
        return np.outer(self.to_array(), np.asarray(tuple(other), dtype=float))

    def to_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])


def get_3d_transform(n: Vector, n0: Vector) -> np.ndarray:
    """
    Матрица поворота, переводящая единичный вектор n0 в n.

    :param n: Целевой единичный вектор
    :param n0: Исходный единичный вектор
    """
    identity = np.eye(3)
    inner = n.inner_product(n0)
    d = (n.outer_product(n0) + n0.outer_product(n)) * inner
    d -= n.outer_product(n) + n0.outer_product(n0)
    d /= inner + 1.0
    a = n.outer_product(n0) - n0.outer_product(n) + identity * inner
    return identity * (1.0 - inner) + d + a


def get_2d_transform(n: Vector, n0: Vector, axis: Optional[Vector] = None) -> np.ndarray:
    """
    Матрица 2D-поворота на угол между n и n0.

    :param axis: Ось поворота; если задана, знак угла определяется по ней
    """
    cs = n.inner_product(n0)
    if axis is None:
        sn = math.sqrt(max(0.0, 1.0 - cs * cs))
    else:
        sn = n.cross(n0).inner_product(axis)
    return np.array([[cs, sn], [-sn, cs]])
