"""Излучение одного электрона: кинематика Комптона, поток и параметры Стокса"""

import math

import pytest
from scipy.integrate import quad

from emission_kernel import EmissionKernel, one_minus_beta, one_minus_cosine
from laser_pulse import LaserPulse
from source_config import E, KernelOrder
from vector3d import Vector

AXIS = Vector(0.0, 0.0, 1.0)
GAMMA = 50.0 / 0.5109989461


def direction(theta: float, phi: float = 0.0) -> Vector:
    return Vector(math.sin(theta) * math.cos(phi), math.sin(theta) * math.sin(phi), math.cos(theta))


def degree(stokes) -> float:
    return math.sqrt(stokes[1] ** 2 + stokes[2] ** 2 + stokes[3] ** 2) / stokes[0]


@pytest.fixture(scope="module")
def lp() -> LaserPulse:
    pulse = LaserPulse()
    pulse.photon_energy = 1.1 * E
    return pulse


@pytest.fixture(scope="module")
def linear(lp) -> EmissionKernel:
    return EmissionKernel(lp, KernelOrder.linear(), 1.0, 1e-4)


@pytest.fixture(scope="module")
def weak_lp() -> LaserPulse:
    pulse = LaserPulse()
    pulse.pulse_energy = 1e-6
    return pulse


# -----------------------------------------------------------------------
# Helpers
# -----------------------------------------------------------------------

class TestHelpers:

    def test_one_minus_beta(self):
        assert one_minus_beta(2.0) == pytest.approx(1.0 - math.sqrt(0.75))
        assert one_minus_beta(1e4) == pytest.approx(0.5e-8, rel=1e-6)

    def test_one_minus_cosine_small_angle(self):
        assert one_minus_cosine(direction(1e-6), AXIS) == pytest.approx(0.5e-12, rel=1e-6)


# -----------------------------------------------------------------------
# Kinematics
# -----------------------------------------------------------------------

class TestKinematics:

    def test_on_axis_energy(self, linear, lp):
        """На оси энергия близка к 4 gamma^2 E_ph"""
        assert linear.energy(AXIS, AXIS, GAMMA) == pytest.approx(4 * GAMMA ** 2 * lp.photon_energy, rel=1e-3)

    def test_energy_decreases_off_axis(self, linear):
        on_axis = linear.energy(AXIS, AXIS, GAMMA)
        assert linear.energy(direction(1.0 / GAMMA), AXIS, GAMMA) == pytest.approx(on_axis / 2.0, rel=1e-3)

    def test_backward_photon_keeps_laser_energy(self, linear, lp):
        assert linear.energy(-AXIS, AXIS, GAMMA) == pytest.approx(lp.photon_energy)

    @pytest.mark.parametrize("order", [KernelOrder.linear(), KernelOrder.harmonic(1), KernelOrder.harmonic(2)])
    def test_gamma_for_energy_inverts_energy(self, lp, order):
        kernel = EmissionKernel(lp, order, 1.0, 1e-4)
        n = direction(2e-3, 0.4)
        x = kernel.energy(n, AXIS, 100.0)
        assert kernel.gamma_for_energy(n, AXIS, x) == pytest.approx(100.0, rel=1e-9)

    def test_forbidden_energies(self, linear, lp):
        assert linear.gamma_for_energy(AXIS, AXIS, 0.5 * lp.photon_energy) == 0.0
        assert linear.gamma_for_energy(-AXIS, AXIS, 2.0 * lp.photon_energy) == 0.0
        assert linear.gamma_for_energy(AXIS, AXIS, -1.0) == 0.0

    def test_energy_gamma_derivative(self, lp):
        kernel = EmissionKernel(lp, KernelOrder.harmonic(1), 1.0, 1e-4)
        n = direction(3e-3, 1.0)
        h = 1e-4 * GAMMA
        numeric = (kernel.energy(n, AXIS, GAMMA + h) - kernel.energy(n, AXIS, GAMMA - h)) / 2.0 / h
        assert kernel.energy_gamma_derivative(n, AXIS, GAMMA) == pytest.approx(numeric, rel=1e-6)

    def test_cosine_for_energy(self, linear):
        theta, h = 2e-3, 1e-6
        x = linear.energy(direction(theta), AXIS, GAMMA)
        omp, derivative = linear.cosine_for_energy(GAMMA, x)
        assert omp == pytest.approx(one_minus_cosine(direction(theta), AXIS), rel=1e-8)
        de = linear.energy(direction(theta + h), AXIS, GAMMA) - linear.energy(direction(theta - h), AXIS, GAMMA)
        dp = math.cos(theta + h) - math.cos(theta - h)
        assert derivative == pytest.approx(abs(de / dp), rel=1e-5)

    def test_cosine_for_unreachable_energy(self, linear):
        on_axis = linear.energy(AXIS, AXIS, GAMMA)
        assert linear.cosine_for_energy(GAMMA, 1.01 * on_axis) is None
        assert linear.cosine_for_energy(GAMMA, 0.0) is None


# -----------------------------------------------------------------------
# Flux and polarization
# -----------------------------------------------------------------------

class TestLinearEmission:

    def test_flux_is_non_negative(self, linear):
        for theta in (0.0, 1e-3, 1e-2, 0.5, 3.0):
            for phi in (0.0, 1.0, 2.5):
                assert linear.flux(direction(theta, phi), AXIS, GAMMA) >= 0.0

    def test_on_axis_flux(self, linear):
        """Томсоновский предел на оси: 3 gamma^2 / (2 pi) на единицу полного потока"""
        one_plus_beta = 2.0 - one_minus_beta(GAMMA)
        expected = 3.0 / 2.0 / math.pi * (one_plus_beta * GAMMA) ** 2 / 4.0
        assert linear.flux(AXIS, AXIS, GAMMA) == pytest.approx(expected, rel=1e-9)

    def test_flux_integrates_to_total_flux(self, linear):
        def ring(theta):
            value, _ = quad(lambda phi: linear.flux(direction(theta, phi), AXIS, GAMMA), 0.0, 2.0 * math.pi)
            return value * math.sin(theta)

        total = sum(quad(ring, a, b, limit=200)[0] for a, b in ((0.0, 0.02), (0.02, 0.3), (0.3, math.pi)))
        assert total == pytest.approx(1.0, rel=5e-3)

    def test_emission_matches_flux(self, linear):
        n = direction(2e-3, 0.3)
        assert linear.emission(n, AXIS, GAMMA).intensity == pytest.approx(linear.flux(n, AXIS, GAMMA))

    def test_fully_polarized_laser(self, linear):
        emission = linear.emission(direction(4e-3, 0.8), AXIS, GAMMA)
        assert emission.stokes[0] == pytest.approx(emission.intensity)
        assert degree(emission.stokes) == pytest.approx(1.0, rel=1e-9)

    def test_unpolarized_laser_on_axis(self):
        pulse = LaserPulse()
        pulse.set_polarization(0.0, 0.0, 0.0)
        kernel = EmissionKernel(pulse, KernelOrder.linear(), 1.0, 1e-4)
        emission = kernel.emission(AXIS, AXIS, GAMMA)
        assert emission.intensity > 0
        assert degree(emission.stokes) == pytest.approx(0.0, abs=1e-12)

    def test_unpolarized_laser_off_axis(self):
        pulse = LaserPulse()
        pulse.set_polarization(0.0, 0.0, 0.0)
        kernel = EmissionKernel(pulse, KernelOrder.linear(), 1.0, 1e-4)
        assert 0.0 < degree(kernel.emission(direction(1.0 / GAMMA), AXIS, GAMMA).stokes) < 1.0

    def test_emission_at_fixed_energy(self, linear):
        n = direction(1e-3)
        x = linear.energy(n, AXIS, GAMMA)
        assert linear.emission(n, AXIS, GAMMA, x).energy == pytest.approx(x)


class TestHarmonicEmission:

    def test_saturating_ratio(self, lp):
        kernel = EmissionKernel(lp, KernelOrder.harmonic(1), 1.0, 1e-4)
        assert kernel.rho == pytest.approx(lp.average_intensity / kernel.saturating_intensity)
        assert EmissionKernel(lp, KernelOrder.linear(), 1.0, 1e-4).rho == 0.0

    @pytest.mark.parametrize("theta,phi", [(0.0, 0.0), (3e-3, 0.7), (1.2e-2, 2.0)])
    def test_weak_field_first_harmonic_is_linear(self, weak_lp, theta, phi):
        linear = EmissionKernel(weak_lp, KernelOrder.linear(), 1.0, 1e-4)
        harmonic = EmissionKernel(weak_lp, KernelOrder.harmonic(1), 1.0, 1e-4)
        n = direction(theta, phi)
        assert harmonic.energy(n, AXIS, GAMMA) == pytest.approx(linear.energy(n, AXIS, GAMMA), rel=1e-6)
        expected = linear.emission(n, AXIS, GAMMA)
        result = harmonic.emission(n, AXIS, GAMMA)
        assert result.intensity == pytest.approx(expected.intensity, rel=1e-4)
        scale = expected.stokes[0]
        for got, want in zip(result.stokes, expected.stokes):
            assert got == pytest.approx(want, abs=1e-4 * scale)

    def test_weak_field_unpolarized_laser(self):
        pulse = LaserPulse()
        pulse.pulse_energy = 1e-6
        pulse.set_polarization(0.0, 0.0, 0.2)
        linear = EmissionKernel(pulse, KernelOrder.linear(), 1.0, 1e-4)
        harmonic = EmissionKernel(pulse, KernelOrder.harmonic(1), 1.0, 1e-4)
        n = direction(5e-3, 0.5)
        assert harmonic.flux(n, AXIS, GAMMA) == pytest.approx(linear.flux(n, AXIS, GAMMA), rel=1e-4)

    def test_second_harmonic(self):
        pulse = LaserPulse()
        pulse.pulse_energy = 1e-3
        first = EmissionKernel(pulse, KernelOrder.harmonic(1), 1.0, 1e-4)
        second = EmissionKernel(pulse, KernelOrder.harmonic(2), 1.0, 1e-4)
        n = direction(5e-3, 0.5)
        assert second.energy(n, AXIS, GAMMA) == pytest.approx(2.0 * first.energy(n, AXIS, GAMMA))
        assert second.flux(n, AXIS, GAMMA) < 1e-2 * first.flux(n, AXIS, GAMMA)

    def test_intensity_shifts_energy_down(self, lp):
        linear = EmissionKernel(lp, KernelOrder.linear(), 1.0, 1e-4)
        harmonic = EmissionKernel(lp, KernelOrder.harmonic(1), 1.0, 1e-4)
        assert harmonic.energy(AXIS, AXIS, GAMMA) < linear.energy(AXIS, AXIS, GAMMA)
