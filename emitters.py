# emitters.py
"""
Long-lived liquid sources.

Emitters age every sub-step and are dropped once their age passes their
duration. Particle emitters feed the ParticleSystem at a time-varying
rate; grid emitters inject depth into the HeightField; formation emitters
project an animated sprite frame into it.
"""
import math
from dataclasses import dataclass
from typing import List, Dict, Any

from noise import fbm
from constants import (
    FLAG_POOL, EVICT_RANDOM, PULSE_PERIOD, SMART_MAX_FILL, EXPERIMENTAL_MAX_FILL
)

# --- Data Contracts ---
#
# Emitter kinds:
#   'pool'          steady particle source
#   'pumping'       pulsed particle source (blood), heartbeat profile
#   'smart'         height-field source with wander, smart diffusion
#   'experimental'  fixed height-field source, gradient diffusion
#   'formation'     sprite-sheet projection into the height field
#
# class EmitterSystem:
#   - advance_particle_emitters(dt, particles, rng, params, radius,
#                               color, one_click, noise_offset) -> int
#     - Outputs: particles spawned this sub-step.
#     - Invariants: Average emission equals rate * dt over time via a
#       Bernoulli trial on the fractional remainder.

KIND_POOL = 'pool'
KIND_PUMPING = 'pumping'
KIND_SMART = 'smart'
KIND_EXPERIMENTAL = 'experimental'
KIND_FORMATION = 'formation'

PARTICLE_KINDS = (KIND_POOL, KIND_PUMPING)


@dataclass
class Emitter:
    x: float
    y: float
    kind: str
    duration: float
    age: float = 0.0

    @property
    def expired(self) -> bool:
        return self.age > self.duration


@dataclass
class ParticleEmitter(Emitter):
    """Particle source that drifts along a noise-steered heading."""
    origin_x: float = 0.0
    origin_y: float = 0.0
    wander_angle: float = 0.0


@dataclass
class FormationEmitter(Emitter):
    """Projects a rotated, scaled sprite-sheet frame into the height field."""
    frame_index: int = 0
    rotation: float = 0.0
    scale: float = 1.0


def pulse(age: float) -> float:
    """Heartbeat profile: a sharp peak at the start of each period, decaying fast."""
    phase = (age % PULSE_PERIOD) / PULSE_PERIOD
    return math.exp(-8.0 * phase) ** 2


def emission_count(rate: float, dt: float, rng) -> int:
    """Whole particles to emit this sub-step; the fraction is a Bernoulli trial."""
    count = rate * dt
    whole = int(math.floor(count))
    frac = count - whole
    return whole + (1 if rng.next() < frac else 0)


class EmitterSystem:
    """
    Owns every live emitter in creation order.
    """
    def __init__(self):
        self.emitters: List[Emitter] = []

    def __len__(self) -> int:
        return len(self.emitters)

    def add(self, emitter: Emitter) -> Emitter:
        self.emitters.append(emitter)
        return emitter

    def clear(self) -> None:
        self.emitters = []

    def of_kind(self, *kinds: str) -> List[Emitter]:
        return [e for e in self.emitters if e.kind in kinds]

    def _age(self, dt: float, kinds) -> List[Emitter]:
        """Ages the selected emitters and drops the expired ones."""
        alive = []
        survivors = []
        for e in self.emitters:
            if e.kind in kinds:
                e.age += dt
                if e.expired:
                    continue
                alive.append(e)
            survivors.append(e)
        self.emitters = survivors
        return alive

    def advance_particle_emitters(self, dt: float, particles, rng, params: Dict[str, Any],
                                  radius: float, color, one_click: bool,
                                  noise_offset: int) -> int:
        """
        Wanders each particle emitter and spawns its share of particles.

        Returns:
            int: Number of particles spawned.
        """
        pooling = params['pooling_randomness']
        size_randomness = params['size_randomness']
        life = params['particle_lifetime']
        turn_rate = 5.0 * (1.0 + pooling * 3.0)
        source_speed = 10.0 * pooling
        spawned = 0

        for e in self._age(dt, PARTICLE_KINDS):
            wander = fbm(e.age * 20.0, 0.0, 2, noise_offset, pooling)
            e.wander_angle += wander * turn_rate * dt
            e.x += math.cos(e.wander_angle) * source_speed * dt
            e.y += math.sin(e.wander_angle) * source_speed * dt

            if one_click:
                rate, speed = 80.0, 30.0
            elif e.kind == KIND_PUMPING:
                p = pulse(e.age)
                rate, speed = 20.0 + 400.0 * p, 12.0 + 80.0 * p
            else:
                rate, speed = 150.0, 20.0

            spread = 0.5 if e.kind == KIND_PUMPING else 1.0
            for _ in range(emission_count(rate, dt, rng)):
                angle = e.wander_angle + (rng.next() - 0.5) * spread
                offset = rng.next() * 2.0
                px = e.x + math.cos(angle) * offset
                py = e.y + math.sin(angle) * offset
                v = speed * (0.5 + rng.next() * 0.5)
                variance = (rng.next() - 0.5) * 2.0 * size_randomness
                # Jitter keeps fresh particles from stacking on one point.
                jx = (rng.next() - 0.5) * 5.0
                jy = (rng.next() - 0.5) * 5.0
                particles.spawn(
                    px + jx, py + jy, math.cos(angle) * v, math.sin(angle) * v,
                    radius * (1.0 + variance), radius, life, color,
                    flags=FLAG_POOL, origin=(e.origin_x, e.origin_y),
                    policy=EVICT_RANDOM, rng=rng
                )
                spawned += 1
        return spawned

    def inject_smart(self, dt: float, field, open_cells, params: Dict[str, Any],
                     noise_offset: int) -> None:
        """Pumps depth under each wandering smart emitter."""
        blood = params['material'] == 'blood'
        for e in self._age(dt, (KIND_SMART,)):
            wander = fbm(e.age * 5.0, 100.0, 4, noise_offset, params['pooling_randomness'])
            ex = e.x + math.cos(wander * math.pi) * 10.0
            ey = e.y + math.sin(wander * math.pi) * 10.0
            gx, gy = field.to_cell(ex, ey)

            radius = 12.0 * field.scale
            if blood:
                p = pulse(e.age)
                pump = 200.0 + 1000.0 * p
                radius *= 1.0 + p * 0.5
            else:
                pump = 500.0
            field.inject(gx, gy, int(math.ceil(radius)), dt * pump, SMART_MAX_FILL, open_cells)

    def inject_experimental(self, dt: float, field, open_cells) -> None:
        for e in self._age(dt, (KIND_EXPERIMENTAL,)):
            gx, gy = field.to_cell(e.x, e.y)
            field.inject(gx, gy, 3, 120.0 * dt * 0.2, EXPERIMENTAL_MAX_FILL, open_cells)

    def grow_formations(self, dt: float, field, sheet, open_cells) -> None:
        for e in self._age(dt, (KIND_FORMATION,)):
            gx, gy = field.to_cell(e.x, e.y)
            field.grow_formation(
                sheet, gx, gy, int(40 * e.scale), e.rotation, e.age, dt, open_cells
            )

    def describe(self) -> List[Dict[str, Any]]:
        """Plain-data summary of the live emitters, for logs and tests."""
        return [
            {'kind': e.kind, 'x': e.x, 'y': e.y, 'age': e.age, 'duration': e.duration}
            for e in self.emitters
        ]
