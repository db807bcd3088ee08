import math

import numpy as np
import pytest

from simulation import Simulation, sanitize_dimension
from modes import BallisticMode, FormationMode
from constants import DEFAULT_CANVAS_SIZE, MAX_CANVAS_SIZE, DEFAULT_SEED

STEP = 1.0 / 60.0


def test_defaults(sim):
    assert sim.mode.name == 'wall'
    assert sim.particle_radius == 10.0
    assert sim.color_rgb == (255, 0, 0)
    assert sim.noise_offset == 42
    assert sim.surface.pixels.shape == (256, 256, 4)
    assert sim.field.grid.shape == (64, 64)


def test_from_config_applies_overrides():
    sim = Simulation.from_config({
        'width': 128, 'height': 64, 'seed': 5, 'max_particles': 10,
        'noise_offset': 3, 'mode': 'floor', 'viscosity': 9.0, 'unused_key': 1,
    })
    assert (sim.width, sim.height) == (128, 64)
    assert sim.seed == 5
    assert sim.particles.capacity == 10
    assert sim.mode.name == 'floor'
    assert sim.params['viscosity'] == 1.0


def test_step_ignores_invalid_dt(sim):
    for dt in (0.0, -1.0, float('nan'), float('inf')):
        sim.step(dt)
    assert sim.clock == 0.0


def test_pause_freezes_state_but_not_clock(sim):
    sim.spawn(128, 50)
    before = sim.particles.y[:sim.particles.count].copy()
    sim.set_paused(True)
    sim.step(STEP)
    assert sim.clock == pytest.approx(STEP)
    assert np.array_equal(sim.particles.y[:sim.particles.count], before)
    assert not sim.toggle_pause()
    sim.step(STEP)
    assert not np.array_equal(sim.particles.y[:sim.particles.count], before)


def test_zero_time_scale_freezes_motion(sim):
    sim.spawn(128, 50)
    sim.set_time_scale(0.0)
    before = sim.particles.y[:sim.particles.count].copy()
    sim.step(STEP)
    assert np.array_equal(sim.particles.y[:sim.particles.count], before)


def test_oldest_eviction_through_engine():
    sim = Simulation(width=256, height=256, capacity=5, noise_offset=0)
    sim.set_spawn_rate(2)
    for _ in range(6):
        sim.spawn(100, 100)
    assert len(sim.particles) == 5
    assert 0 not in sim.particles.ids[:sim.particles.count]


def test_parameter_clamping(sim):
    sim.set_viscosity(5)
    assert sim.params['viscosity'] == 1.0
    sim.set_viscosity('syrup')
    assert sim.params['viscosity'] == 1.0
    sim.set_substeps(0)
    assert sim.params['substeps'] == 1
    sim.set_substeps(100)
    assert sim.params['substeps'] == 20
    sim.set_particle_size(-3)
    assert sim.particle_radius == 4.0
    sim.set_opacity(float('nan'))
    assert sim.params['opacity'] == 0.9


def test_invalid_choices_are_ignored(sim):
    sim.set_spawn_mode('hose')
    assert sim.params['spawn_mode'] == 'spray'
    sim.set_caliber('50bmg')
    assert sim.params['caliber'] == '9mm'
    sim.set_color('not-a-colour')
    assert sim.params['color'] == '#ff0000'
    assert sim.color_rgb == (255, 0, 0)
    sim.set_seed('abc')
    assert sim.seed == DEFAULT_SEED


def test_unknown_mode_falls_back_to_wall(sim):
    sim.set_mode('floor')
    sim.set_mode('swamp')
    assert sim.mode.name == 'wall'
    assert sim.params['mode'] == 'wall'


def test_apply_material(sim):
    sim.apply_material('water')
    assert sim.params['material'] == 'water'
    assert sim.params['color'] == '#2b95ff'
    assert sim.params['viscosity'] == 0.1
    assert sim.params['turbulence'] == 0.0
    sim.apply_material('blood')
    assert sim.params['turbulence'] == 0.4


def test_unknown_material_only_sets_label(sim):
    sim.set_viscosity(0.7)
    sim.apply_material('lava')
    assert sim.params['material'] == 'lava'
    assert sim.params['viscosity'] == 0.7


def test_set_caliber_updates_ballistic_mode(sim):
    sim.set_mode('ballistic')
    sim.set_caliber('556')
    assert isinstance(sim.mode, BallisticMode)
    assert sim.mode.caliber == '556'
    sim.set_mode('ballistic')
    assert sim.mode.caliber == '556'


def test_reset_clears_and_reseeds(sim):
    sim.spawn(128, 128)
    sim.spawn_smart(64, 64)
    sim.step(STEP)
    sim.reset(noise_offset=5)
    assert len(sim.particles) == 0
    assert len(sim.emitters) == 0
    assert sim.surface.pixels.max() == 0.0
    assert sim.field.total() == 0.0
    assert sim.noise_offset == 5
    assert sim.rng.snapshot() == DEFAULT_SEED


def test_set_mode_clears_mask(sim):
    sim.paint_mask(10, 10, 5)
    assert sim.mask.active
    sim.set_mode('floor')
    assert not sim.mask.active


def test_resize_falls_back_on_invalid_sizes(sim):
    sim.resize(-5, 'abc')
    assert (sim.width, sim.height) == (DEFAULT_CANVAS_SIZE, DEFAULT_CANVAS_SIZE)
    assert sim.surface.pixels.shape == (1024, 1024, 4)
    assert sim.mask.logic.shape == (1024, 1024)


def test_sanitize_dimension():
    assert sanitize_dimension(640) == 640
    assert sanitize_dimension('300') == 300
    assert sanitize_dimension(0) == DEFAULT_CANVAS_SIZE
    assert sanitize_dimension(None) == DEFAULT_CANVAS_SIZE
    assert sanitize_dimension(10 ** 6) == MAX_CANVAS_SIZE


def test_resize_keeps_paint_and_rebuilds_grid(sim):
    sim.spawn(128, 50)
    for _ in range(5):
        sim.step(STEP)
    painted = sim.surface.pixels[..., 3] > 0
    assert painted.any()
    sim.paint_mask(10, 10, 5)
    sim.resize(512, 128)
    assert sim.surface.pixels.shape == (128, 512, 4)
    assert sim.surface.pixels[..., 3].max() > 0.0
    assert sim.surface.wetness.max() == 0
    assert sim.field.grid.shape == (32, 128)
    assert not sim.mask.active
    assert sim.open_cells().shape == (32, 128)


def test_load_mask_fails_soft(sim):
    assert not sim.load_mask(np.zeros(7))
    assert not sim.mask.active
    assert sim.load_mask(np.full((4, 4), 255, dtype=np.uint8))
    assert sim.mask.active


def test_set_formation_raster(sim):
    sim.set_mode('formation')
    sheet = np.zeros((60, 60), dtype=np.uint8)
    sim.set_formation_raster(sheet)
    assert sim.formation_sheet.shape == (60, 60)
    assert isinstance(sim.mode, FormationMode)
    assert sim.mode.sheet is sim.formation_sheet
    sim.set_formation_raster(np.zeros(3))
    assert sim.formation_sheet.shape == (384, 384)


def test_state_round_trip(sim):
    sim.set_mode('floor', noise_offset=77)
    sim.apply_material('honey')
    sim.set_gravity(2.5)
    sim.set_substeps(4)
    sim.set_infinite_lifetime(True)
    state = sim.get_state()

    other = Simulation(width=128, height=128, noise_offset=1)
    other.set_state(state)
    assert other.get_state() == state
    assert other.mode.name == 'floor'
    assert other.noise_offset == 77


def test_partial_state_keeps_the_run(sim):
    sim.set_mode('floor', noise_offset=8)
    sim.spawn(128, 128)
    assert sim.spawn_pool(100, 100)
    count = len(sim.particles)
    assert count > 0
    sim.set_state({'viscosity': 0.5})
    assert len(sim.particles) == count
    assert len(sim.emitters) == 1
    assert sim.mode.name == 'floor'
    assert sim.noise_offset == 8
    assert sim.params['viscosity'] == 0.5


def test_state_carries_particle_capacity():
    small = Simulation(width=64, height=64, capacity=50, noise_offset=0)
    assert small.get_state()['capacity'] == 50
    other = Simulation(width=64, height=64, noise_offset=0)
    other.set_state(small.get_state())
    assert other.particles.capacity == 50


def test_recorded_arguments_are_copied(sim):
    log = sim.start_recording(noise_offset=1)
    alpha = np.zeros((256, 256), dtype=np.uint8)
    alpha[:, :128] = 255
    assert sim.load_mask(alpha)
    alpha[:] = 0
    snapshot = {'gravity': 2.0}
    sim.set_state(snapshot)
    snapshot['gravity'] = 4.0

    assert log.events[-2].kind == 'load_mask'
    assert log.events[-2].payload[0][:, :128].min() == 255
    assert log.events[-1].kind == 'set_state'
    assert log.events[-1].payload[0] == {'gravity': 2.0}


def test_set_state_ignores_non_mapping(sim):
    before = sim.get_state()
    sim.set_state(['not', 'a', 'dict'])
    assert sim.get_state() == before


def test_recording_captures_public_calls_only(sim):
    log = sim.start_recording(noise_offset=9)
    sim.set_spawn_mode('drop')
    sim.spawn(100, 100)
    sim.step(STEP)
    sim.set_viscosity(0.5)
    kinds = [e.kind for e in log.events]
    assert kinds == ['init', 'set_spawn_mode', 'spawn', 'set_viscosity']
    assert log.events[0].payload[0]['noise_offset'] == 9
    assert log.events[-1].time == pytest.approx(STEP)
    assert sim.stop_recording() is log
    sim.spawn(100, 100)
    assert len(log) == 4


def test_recorded_reset_stores_drawn_offset(sim):
    log = sim.start_recording()
    sim.reset()
    event = log.events[-1]
    assert event.kind == 'reset'
    assert event.payload == [sim.noise_offset]


def test_recording_snapshots_active_mask(sim):
    sim.paint_mask(50, 50, 20)
    log = sim.start_recording(noise_offset=1)
    assert [e.kind for e in log.events] == ['init', 'load_mask']
    assert sim.mask.active


def test_fingerprint_changes_with_state(sim):
    before = sim.fingerprint()
    assert before == sim.fingerprint()
    sim.spawn(128, 128)
    assert sim.fingerprint() != before


def test_views_are_read_only(sim):
    for view in (sim.surface_view(), sim.wetness_view(), sim.height_view(), sim.mask_overlay_view()):
        with pytest.raises(ValueError):
            view.flat[0] = 1
