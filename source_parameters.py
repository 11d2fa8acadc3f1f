"""Список скалярных параметров источника для сохранения и загрузки внешним слоем"""
import math
from typing import Any, Callable, Dict, List, Sequence, Tuple

from electron_bunch import ElectronBunch
from laser_pulse import LaserPulse
from source_config import E, KernelOrder, SourceConfig
from source_errors import ConfigurationError
from vector3d import Vector

# Длина пучка в пикосекундах: L * 2 / 3e-4
PS_LENGTH: float = 3.0e-4 / 2.0
PS_DELAY: float = 3.0e-4

MODEL_PARAMETERS: List[str] = [
    "Electron_energy_MeV", "Electron_bunch_charge_nQ",
    "Electron_bunch_relative_energy_spread", "Electron_bunch_length_ps",
    "X-emittance_mm*mrad", "Y-emittance_mm*mrad", "Beta-x_function_mm", "Beta-y_function_mm",
    "Photon_energy_eV", "Pulse_energy_mJ", "Laser_pulse_length_ps", "Rayleigh_length_mm",
    "Pulse_frequency_MHz", "Delay_ps", "X-shift_mm", "Y-shift_mm", "Z-shift_mm",
    "Laser-electron_direction_x", "Laser-electron_direction_y", "Laser-electron_direction_z",
    "Laser-electron_angle_mrad"
]

CONFIG_PARAMETERS: List[str] = [
    "Precision", "Shift_factor", "Number_of_geometric_factor_points", "Number_of_threads",
    "Energy_spread", "Ray_x_angle_range_mrad", "Ray_y_angle_range_mrad",
    "Ray_min_energy_keV", "Ray_max_energy_keV", "Number_of_rays", "Harmonic_order"
]

PARAMETER_NAMES: List[str] = MODEL_PARAMETERS + CONFIG_PARAMETERS


def get_parameters(eb: ElectronBunch, lp: LaserPulse, config: SourceConfig) -> List[Tuple[str, Any]]:
    """Упорядоченный список (имя, значение) в единицах пользовательского интерфейса"""
    shift = eb.shift
    direction = lp.direction
    values = [
        eb.gamma * ElectronBunch.MC2,
        eb.number * ElectronBunch.E * 1e9,
        eb.delgamma,
        eb.length / PS_LENGTH,
        eb.epsx * 1e6,
        eb.epsy * 1e6,
        eb.betax * 1e3,
        eb.betay * 1e3,
        lp.photon_energy / E,
        lp.pulse_energy * 1e3,
        lp.length / PS_LENGTH,
        lp.rlength * 1e3,
        lp.fq * 1e-6,
        lp.delay / PS_DELAY,
        shift.x * 1e3,
        shift.y * 1e3,
        shift.z * 1e3,
        direction.x,
        direction.y,
        direction.z,
        math.atan2(direction.y, direction.z) * 1e3,
        config.precision,
        config.shift_factor,
        config.np_geometric_factor,
        config.thread_number,
        config.e_spread,
        config.ray_x_angle_range * 1e3,
        config.ray_y_angle_range * 1e3,
        config.min_energy / E * 1e-3,
        config.max_energy / E * 1e-3,
        config.ray_number,
        0 if config.order.is_linear else config.order.order,
    ]
    return list(zip(PARAMETER_NAMES, values))


def _as_float(name: str, value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"parameter {name} must be a number, got {value!r}") from exc


def _as_int(name: str, value: Any) -> int:
    number = _as_float(name, value)
    if number != int(number):
        raise ConfigurationError(f"parameter {name} must be an integer, got {value!r}")
    return int(number)


def _as_bool(name: str, value: Any) -> bool:
    if isinstance(value, str):
        if value.strip().lower() in ('true', '1', 'yes'):
            return True
        if value.strip().lower() in ('false', '0', 'no'):
            return False
        raise ConfigurationError(f"parameter {name} must be a boolean, got {value!r}")
    return bool(value)


def _model_setters(eb: ElectronBunch, lp: LaserPulse, shift: List[float],
                   direction: List[float]) -> Dict[str, Callable[[float], None]]:
    def set_item(target: List[float], index: int) -> Callable[[float], None]:
        def setter(value: float) -> None:
            target[index] = value
        return setter

    def set_angle(value: float) -> None:
        direction[:] = [0.0, math.sin(value * 1e-3), math.cos(value * 1e-3)]

    return {
        "Electron_energy_MeV": lambda u: setattr(eb, 'gamma', u / ElectronBunch.MC2),
        "Electron_bunch_charge_nQ": lambda u: setattr(eb, 'number', u / ElectronBunch.E * 1e-9),
        "Electron_bunch_relative_energy_spread": lambda u: setattr(eb, 'delgamma', u),
        "Electron_bunch_length_ps": lambda u: setattr(eb, 'length', u * PS_LENGTH),
        "X-emittance_mm*mrad": lambda u: setattr(eb, 'epsx', u * 1e-6),
        "Y-emittance_mm*mrad": lambda u: setattr(eb, 'epsy', u * 1e-6),
        "Beta-x_function_mm": lambda u: setattr(eb, 'betax', u * 1e-3),
        "Beta-y_function_mm": lambda u: setattr(eb, 'betay', u * 1e-3),
        "Photon_energy_eV": lambda u: setattr(lp, 'photon_energy', u * E),
        "Pulse_energy_mJ": lambda u: setattr(lp, 'pulse_energy', u * 1e-3),
        "Laser_pulse_length_ps": lambda u: setattr(lp, 'length', u * PS_LENGTH),
        "Rayleigh_length_mm": lambda u: setattr(lp, 'rlength', u * 1e-3),
        "Pulse_frequency_MHz": lambda u: setattr(lp, 'fq', u * 1e6),
        "Delay_ps": lambda u: setattr(lp, 'delay', u * PS_DELAY),
        "X-shift_mm": lambda u: shift.__setitem__(0, u * 1e-3),
        "Y-shift_mm": lambda u: shift.__setitem__(1, u * 1e-3),
        "Z-shift_mm": lambda u: shift.__setitem__(2, u * 1e-3),
        "Laser-electron_direction_x": set_item(direction, 0),
        "Laser-electron_direction_y": set_item(direction, 1),
        "Laser-electron_direction_z": set_item(direction, 2),
        "Laser-electron_angle_mrad": set_angle,
    }


def set_parameters(eb: ElectronBunch, lp: LaserPulse, config: SourceConfig,
                   values: Sequence[Tuple[str, Any]]) -> SourceConfig:
    """
    Установка параметров моделей из списка (имя, значение).

    Направление лазера задаётся компонентами; угол используется, только если компоненты
    не переданы.
    :return: Новая конфигурация движка
    :raises ConfigurationError: неизвестное имя или недопустимое значение
    """
    values = list(values)
    names = [name for name, _ in values]
    unknown = [name for name in names if name not in PARAMETER_NAMES]
    if unknown:
        raise ConfigurationError(f"unknown parameters: {unknown}")
    shift = list(eb.shift)
    direction = list(lp.direction)
    setters = _model_setters(eb, lp, shift, direction)
    has_components = any(name.startswith("Laser-electron_direction") for name in names)
    changes: Dict[str, Any] = {}
    for name, value in values:
        if name in setters:
            if name == "Laser-electron_angle_mrad" and has_components:
                continue
            setters[name](_as_float(name, value))
        elif name == "Precision":
            changes['precision'] = _as_float(name, value)
        elif name == "Shift_factor":
            changes['shift_factor'] = _as_float(name, value)
        elif name == "Number_of_geometric_factor_points":
            changes['np_geometric_factor'] = _as_int(name, value)
        elif name == "Number_of_threads":
            changes['thread_number'] = _as_int(name, value)
        elif name == "Energy_spread":
            changes['e_spread'] = _as_bool(name, value)
        elif name == "Ray_x_angle_range_mrad":
            changes['ray_x_angle_range'] = _as_float(name, value) * 1e-3
        elif name == "Ray_y_angle_range_mrad":
            changes['ray_y_angle_range'] = _as_float(name, value) * 1e-3
        elif name == "Ray_min_energy_keV":
            changes['min_energy'] = _as_float(name, value) * 1e3 * E
        elif name == "Ray_max_energy_keV":
            changes['max_energy'] = _as_float(name, value) * 1e3 * E
        elif name == "Number_of_rays":
            changes['ray_number'] = _as_int(name, value)
        elif name == "Harmonic_order":
            order = _as_int(name, value)
            changes['order'] = KernelOrder.linear() if order == 0 else KernelOrder.harmonic(order)
    eb.shift = Vector.of(shift)
    lp.direction = Vector.of(direction)
    return config.replace(**changes)
