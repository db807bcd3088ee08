import pytest

from emitters import (
    Emitter, ParticleEmitter, EmitterSystem, pulse, emission_count,
    KIND_POOL, KIND_SMART
)
from noise import DeterministicRNG
from particle import ParticleSystem
from constants import DEFAULT_PARAMETERS, FLAG_POOL


def test_emitter_expires_after_duration():
    e = Emitter(0.0, 0.0, KIND_SMART, duration=1.0)
    assert not e.expired
    e.age = 1.5
    assert e.expired


def test_pulse_peaks_each_period():
    assert pulse(0.0) == pytest.approx(1.0)
    assert pulse(0.4) < 0.01
    assert pulse(0.8) == pytest.approx(1.0)


def test_emission_count_matches_rate_on_average():
    rng = DeterministicRNG(1337)
    total = sum(emission_count(150.0, 1.0 / 180.0, rng) for _ in range(1800))
    assert total == pytest.approx(1500, rel=0.05)


def test_emission_count_whole_part_is_exact():
    rng = DeterministicRNG(1)
    assert emission_count(300.0, 0.01, rng) == 3


def test_aging_drops_expired_emitters():
    system = EmitterSystem()
    system.add(Emitter(0, 0, KIND_SMART, duration=0.05))
    system.add(Emitter(0, 0, KIND_POOL, duration=0.05))
    alive = system._age(0.1, (KIND_SMART,))
    assert alive == []
    assert [e.kind for e in system.emitters] == [KIND_POOL]


def test_pool_emitter_spawns_pool_particles():
    system = EmitterSystem()
    system.add(ParticleEmitter(100.0, 100.0, KIND_POOL, 600.0, origin_x=100.0, origin_y=100.0))
    particles = ParticleSystem(1000)
    rng = DeterministicRNG(1337)
    params = dict(DEFAULT_PARAMETERS)
    spawned = 0
    for _ in range(180):
        spawned += system.advance_particle_emitters(
            1.0 / 180.0, particles, rng, params, 10.0, (255, 0, 0), False, 42
        )
    assert spawned == len(particles)
    assert spawned == pytest.approx(150, rel=0.15)
    assert (particles.flags[:particles.count] & FLAG_POOL).all()
    assert particles.origin_x[0] == 100.0


def test_describe_lists_live_emitters():
    system = EmitterSystem()
    system.add(Emitter(1.0, 2.0, KIND_SMART, 10.0))
    assert system.describe() == [
        {'kind': KIND_SMART, 'x': 1.0, 'y': 2.0, 'age': 0.0, 'duration': 10.0}
    ]
