import numpy as np

from export import export_texture, generate_flipbook, render_depth, render_frame, scale_nearest
from simulation import Simulation

STEP = 1.0 / 60.0


def recorded_log():
    sim = Simulation(width=128, height=128, noise_offset=2)
    log = sim.start_recording(noise_offset=2)
    sim.spawn(64, 20)
    for _ in range(10):
        sim.step(STEP)
    return log


def test_flipbook_layout():
    sheet = generate_flipbook(recorded_log(), 0.5, 4, 32)
    assert sheet.shape == (64, 64, 4)
    assert sheet.dtype == np.uint8
    assert sheet[..., 3].max() > 0


def test_flipbook_grid_rounds_up():
    sheet = generate_flipbook(recorded_log(), 0.2, 5, 16)
    assert sheet.shape == (48, 48, 4)
    # Frames 5 to 8 of the 3x3 grid are never filled.
    assert sheet[32:, 16:, 3].max() == 0


def test_render_frame_draws_particles_over_surface():
    sim = Simulation(width=64, height=64, noise_offset=0)
    sim.spawn(32, 32)
    with_particles = render_frame(sim)
    without = render_frame(sim, include_particles=False)
    assert with_particles.shape == (64, 64, 4)
    assert with_particles[32, 32, 3] > 0
    assert without[..., 3].max() == 0


def test_render_frame_uses_height_field_in_grid_modes():
    sim = Simulation(width=128, height=128, noise_offset=0)
    sim.set_mode('smart')
    sim.spawn(64, 64)
    for _ in range(20):
        sim.step(STEP)
    frame = render_frame(sim)
    assert frame.shape == (128, 128, 4)
    assert frame[64, 64, 3] > 0


def test_scale_nearest():
    image = np.arange(16, dtype=np.uint8).reshape(2, 2, 4)
    scaled = scale_nearest(image, (4, 2))
    assert scaled.shape == (2, 4, 4)
    assert np.array_equal(scaled[0, 0], image[0, 0])
    assert np.array_equal(scaled[1, 3], image[1, 1])


def test_render_depth_particles_over_black():
    sim = Simulation(width=64, height=64, noise_offset=0)
    sim.spawn(32, 32)
    depth = render_depth(sim, 32)
    assert depth.shape == (32, 32, 4)
    assert (depth[..., 3] == 255).all()
    assert depth[16, 16, 0] > 0
    assert depth[0, 0, 0] == 0
    # Grayscale: all three channels agree.
    assert np.array_equal(depth[..., 0], depth[..., 1])
    assert np.array_equal(depth[..., 0], depth[..., 2])


def test_render_depth_transparent_background():
    sim = Simulation(width=64, height=64, noise_offset=0)
    sim.spawn(32, 32)
    depth = render_depth(sim, 64, transparent=True)
    assert depth[0, 0, 3] == 0
    assert depth[32, 32, 3] > 0
    assert depth[32, 32, 0] > 0


def test_render_depth_grid_mode_follows_height():
    sim = Simulation(width=128, height=128, noise_offset=0)
    sim.set_mode('smart')
    sim.spawn(64, 64)
    for _ in range(20):
        sim.step(STEP)
    depth = render_depth(sim, 128, transparent=True)
    assert depth.shape == (128, 128, 4)
    assert (depth[..., 3] == 255).all()
    assert depth[64, 64, 0] > 0
    assert depth[0, 0, 0] == 0


def test_export_texture_resolution_and_depth():
    sim = Simulation(width=64, height=64, noise_offset=0)
    sim.spawn(32, 32)
    images = export_texture(sim, 256)
    assert set(images) == {'texture', 'depth'}
    assert images['texture'].shape == (256, 256, 4)
    assert images['depth'].shape == (256, 256, 4)
    assert images['texture'][128, 128, 3] > 0
    assert set(export_texture(sim, 16, include_depth=False)) == {'texture'}


def test_export_texture_leaves_particles_out_of_pools():
    sim = Simulation(width=64, height=64, noise_offset=0)
    sim.set_mode('floor', noise_offset=0)
    sim.spawn(32, 32)
    assert len(sim.particles) > 0
    images = export_texture(sim, 64)
    assert images['texture'][..., 3].max() == 0
    assert images['depth'][32, 32, 0] > 0
