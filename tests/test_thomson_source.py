"""Источник излучения: кэширование, конфигурация, параметры и задания"""

import math
import threading

import pytest

from electron_bunch import ElectronBunch
from geometric_factor import GeometricFactorEstimator
from laser_pulse import LaserPulse
from parallel_executor import CancellationToken
from ray_generator import ListRaySink
from source_config import E, KernelOrder, SourceConfig
from source_errors import ComputationCancelled, ConfigurationError
from source_parameters import PARAMETER_NAMES
from thomson_source import AXIS, RadiationSource
from vector3d import Vector


def make_source(**changes) -> RadiationSource:
    config = SourceConfig(np_geometric_factor=20000, thread_number=2, seed=3).replace(**changes)
    return RadiationSource(LaserPulse(), ElectronBunch(), config)


@pytest.fixture(scope="module")
def source():
    src = make_source()
    yield src
    src.close()


# -----------------------------------------------------------------------
# Cached quantities
# -----------------------------------------------------------------------

class TestCaching:

    def test_geometric_factor_is_cached(self, source):
        first = source.get_geometric_factor()
        assert source.get_geometric_factor() == first
        assert 0.0 < first <= 1.0

    def test_recalculation_with_seed_repeats(self, source):
        assert source.calculate_geometric_factor() == source.get_geometric_factor()

    def test_model_change_invalidates_cache(self):
        with make_source() as src:
            flux = src.get_linear_total_flux()
            approx = src.get_approx_geometric_factor()
            src.lp.pulse_energy = 0.2
            assert src.get_linear_total_flux() == pytest.approx(2.0 * flux)
            src.lp.direction = Vector(0.0, math.sin(0.1), math.cos(0.1))
            assert src.get_approx_geometric_factor() < approx

    def test_geometric_factor_follows_shift(self):
        with make_source() as src:
            base = src.get_geometric_factor()
            src.eb.shift = Vector(5e-5, 0.0, 0.0)
            assert src.get_geometric_factor() < base

    def test_calculate_matches_get(self, source):
        assert source.calculate_linear_total_flux() == source.get_linear_total_flux()
        assert source.calculate_approx_geometric_factor() == source.get_approx_geometric_factor()

    def test_angle_flux_over_full_sphere(self, source):
        expected = source.get_linear_total_flux() * source.get_geometric_factor()
        assert source.calculate_angle_linear_total_flux(math.pi) == pytest.approx(expected, rel=1e-8)

    def test_monte_carlo_close_to_approximation(self):
        """Наклонное столкновение: Монте-Карло и параксиальное приближение"""
        with make_source(np_geometric_factor=400000, seed=1) as src:
            assert src.get_geometric_factor() == pytest.approx(src.get_approx_geometric_factor(), rel=3e-2)


# -----------------------------------------------------------------------
# Configuration and parameters
# -----------------------------------------------------------------------

class TestConfiguration:

    def test_configure(self):
        with make_source() as src:
            config = src.configure(thread_number=3, precision=1e-2)
            assert src.config is config
            assert src.executor.thread_number == 3
            assert src.config.precision == pytest.approx(1e-2)

    def test_invalid_configuration_keeps_old(self):
        with make_source() as src:
            before = src.config
            with pytest.raises(ConfigurationError):
                src.configure(precision=2.0)
            assert src.config is before

    def test_ray_ranges(self):
        with make_source() as src:
            src.set_ray_ranges(1e-4, 2e-4, 41e3 * E, 45e3 * E)
            assert src.config.ray_x_angle_range == pytest.approx(1e-4)
            assert src.config.ray_y_angle_range == pytest.approx(2e-4)
            assert src.config.max_energy == pytest.approx(45e3 * E)

    def test_snapshot_is_independent(self, source):
        snapshot = source.snapshot()
        snapshot.eb.gamma = 500.0
        snapshot.lp.pulse_energy = 1.0
        assert source.eb.gamma == pytest.approx(50.0 / ElectronBunch.MC2)
        assert source.lp.pulse_energy == pytest.approx(0.1)

    def test_parameter_names(self, source):
        names = [name for name, _ in source.parameters()]
        assert names == PARAMETER_NAMES
        values = dict(source.parameters())
        assert values["Electron_energy_MeV"] == pytest.approx(50.0)
        assert values["Photon_energy_eV"] == pytest.approx(1.204)
        assert values["Laser-electron_angle_mrad"] == pytest.approx(52.0)
        assert values["Harmonic_order"] == 0

    def test_parameter_round_trip(self):
        with make_source() as src:
            changed = dict(src.parameters())
            changed["Electron_energy_MeV"] = 30.0
            changed["Pulse_energy_mJ"] = 50.0
            changed["X-shift_mm"] = 0.01
            changed["Number_of_threads"] = 1
            changed["Harmonic_order"] = 2
            changed["Energy_spread"] = "true"
            src.apply_parameters(list(changed.items()))
            with make_source() as other:
                other.apply_parameters(src.parameters())
                for (name, a), (_, b) in zip(src.parameters(), other.parameters()):
                    assert a == pytest.approx(b), name
            assert src.eb.gamma * ElectronBunch.MC2 == pytest.approx(30.0)
            assert src.lp.pulse_energy == pytest.approx(0.05)
            assert src.eb.shift.x == pytest.approx(1e-5)
            assert src.config.order == KernelOrder.harmonic(2)
            assert src.config.e_spread
            assert src.executor.thread_number == 1

    def test_angle_parameter(self):
        with make_source() as src:
            src.apply_parameters([("Laser-electron_angle_mrad", 100.0)])
            assert src.lp.direction.y == pytest.approx(math.sin(0.1))
            assert src.lp.direction.z == pytest.approx(math.cos(0.1))

    @pytest.mark.parametrize("values", [
        [("Unknown_parameter", 1.0)],
        [("Electron_energy_MeV", 30.0), ("Pulse_energy_mJ", -1.0)],
        [("Electron_energy_MeV", 30.0), ("Precision", 5.0)],
        [("Number_of_rays", "many")],
        [("Energy_spread", "perhaps")],
    ])
    def test_invalid_parameters_change_nothing(self, values):
        with make_source() as src:
            before = (src.eb.state(), src.lp.state(), src.config)
            with pytest.raises(ConfigurationError):
                src.apply_parameters(values)
            assert (src.eb.state(), src.lp.state(), src.config) == before


# -----------------------------------------------------------------------
# Queries and rays
# -----------------------------------------------------------------------

class TestQueries:

    def test_photon_energy_scenario(self):
        """50 МэВ электроны и лазер 1.1 эВ: энергия на оси около 4 gamma^2 E_ph"""
        with make_source() as src:
            src.lp.photon_energy = 1.1 * E
            gamma = src.eb.gamma
            assert src.direction_energy(AXIS) == pytest.approx(4.0 * gamma ** 2 * 1.1 * E, rel=1e-3)

    def test_direction_flux(self, source):
        on_axis = source.direction_flux(AXIS)
        assert on_axis > 0
        assert source.direction_flux(Vector(0.0, 1e-2, 1.0)) < on_axis

    def test_frequency_queries(self, source):
        n = Vector(1e-3, 0.0, 1.0)
        e = source.direction_energy(n, AXIS)
        flux = source.direction_frequency_flux(n, AXIS, e)
        assert flux > 0
        assert source.direction_frequency_stokes(n, AXIS, e)[0] == pytest.approx(flux, rel=1e-2)
        assert 0.0 <= source.direction_frequency_polarization(n, AXIS, e, 0) <= 1.0 + 1e-9
        assert source.direction_frequency_brilliance(Vector(), n, AXIS, e) > 0
        assert source.direction_frequency_polarization_brilliance(Vector(), n, AXIS, e)[0] > 0

    def test_cancelled_query(self, source):
        token = CancellationToken()
        token.cancel()
        with pytest.raises(ComputationCancelled):
            source.direction_flux(Vector(1e-3, 0.0, 1.0), AXIS, token)

    def test_write_rays(self):
        with make_source(ray_number=20) as src:
            sink = ListRaySink()
            result = src.write_rays(sink)
            assert len(sink) == 20
            assert src.get_ray_counter() == 20
            assert src.get_montecarlo_counter() == result.candidates >= 20
            assert src.get_partial_flux() == pytest.approx(result.partial_flux)
            assert src.get_partial_flux() > 0

    def test_cancel_rays_from_progress(self):
        with make_source() as src:
            sink = ListRaySink()

            def progress(percent):
                if percent >= 20:
                    src.cancel()

            with pytest.raises(ComputationCancelled):
                src.write_rays(sink, 30, progress)
            assert src.get_ray_counter() == len(sink)
            assert len(sink) < 30

    def test_cancel_reaches_every_running_job(self):
        """Отмена действует на задание, начатое позже уже завершившегося"""
        with make_source(thread_number=1) as src:
            first_started, second_started, first_done = (threading.Event() for _ in range(3))
            outcome = {}

            def first_progress(percent):
                if not first_started.is_set():
                    first_started.set()
                    second_started.wait(5.0)

            def second_progress(percent):
                if not second_started.is_set():
                    second_started.set()
                    first_done.wait(5.0)
                    src.cancel()

            def second_job():
                try:
                    src.write_rays(ListRaySink(), 50, second_progress)
                    outcome['error'] = None
                except ComputationCancelled as exc:
                    outcome['error'] = exc

            first = threading.Thread(target=src.write_rays, args=(ListRaySink(), 10, first_progress))
            first.start()
            assert first_started.wait(5.0)
            second = threading.Thread(target=second_job)
            second.start()
            first.join(10.0)
            first_done.set()
            second.join(10.0)
            assert isinstance(outcome['error'], ComputationCancelled)

    def test_write_rays_skips_geometric_factor(self, monkeypatch):
        """Генерация лучей не запускает расчёт геометрического фактора"""
        def fail(self, token=None):
            raise AssertionError("geometric factor computed")

        monkeypatch.setattr(GeometricFactorEstimator, 'calculate', fail)
        with make_source(ray_number=5, polarization=(0.0, 0.0, 1.0)) as src:
            sink = ListRaySink()
            src.write_rays(sink)
            assert len(sink) == 5
