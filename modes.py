# modes.py
"""
Liquid behaviour modes.

Each mode is a small tagged variant that carries only the state it needs
(a caliber, a formation sprite sheet, a list of drip heads) and knows how
to spawn liquid at a point and how to advance the engine by one sub-step.
The Simulation holds exactly one active mode and dispatches through it.
"""
import logging
import math
from dataclasses import dataclass, field, fields
from typing import ClassVar, Dict, List, Optional, Type

import numpy as np

from noise import noise
from physics import integrate_wall, integrate_floor
from constants import (
    MODE_WALL, MODE_FLOOR, MODE_ONE_CLICK, MODE_BALLISTIC, MODE_SMART,
    MODE_EXPERIMENTAL, MODE_FORMATION, MODE_VECTOR_DRIP, EVICT_OLDEST,
    EVICT_RANDOM, FLAG_MIST, FLAG_SPLATTER, CALIBERS, DEFAULT_CALIBER,
    SPLATTER_FRACTION, BALLISTIC_VELOCITY_SCALE, ONE_CLICK_INTERACTION_MULT
)

# --- Data Contracts ---
#
# class Mode:
#   - name: str (class constant)
#   - eviction: EVICT_OLDEST or EVICT_RANDOM, used by spray spawns
#   - uses_grid: bool, True when the mode simulates the height field
#   - spawn(self, sim, x, y) -> None
#   - advance(self, sim, dt) -> None
#     - Inputs: sim is the owning Simulation; dt is one sub-step.
#     - Side Effects: mutates particles/height field, queues stamps.
#
# create_mode(name, **state) -> Mode
#   - Unknown names fall back to the wall mode.


# --- Spawn helpers shared by the particle modes ---

def spawn_spray(sim, x: float, y: float, eviction: int, downward: bool) -> int:
    """
    Continuous spray: a directed cone on walls, a slow ooze on floors.

    Returns:
        int: Number of particles spawned.
    """
    params = sim.params
    rng = sim.rng
    radius = sim.particle_radius
    color = sim.color_rgb
    count = int(math.ceil(params['spawn_rate'] / 2.0))
    base_speed = params['spawn_velocity'] * 20.0
    spread = math.radians(params['spread_angle'])

    for _ in range(count):
        variance = (rng.next() - 0.5) * 2.0 * params['size_randomness']
        mass = radius * (1.0 + variance) * (params['density'] / 50.0)
        px, py = x, y
        if downward:
            angle = params['spawn_direction'] + (rng.next() - 0.5) * spread
            speed = base_speed * (0.5 + rng.next())
        else:
            # Tight, slow source; internal pressure does the spreading.
            angle = rng.next() * math.pi * 2.0
            speed = base_speed * 0.1 * rng.next()
            px += (rng.next() - 0.5) * 5.0
            py += (rng.next() - 0.5) * 5.0
        sim.particles.spawn(
            px, py, math.cos(angle) * speed, math.sin(angle) * speed,
            mass, mass, params['particle_lifetime'], color,
            policy=eviction, rng=rng
        )
    return count


def spawn_blob(sim, x: float, y: float, floor: bool) -> int:
    """One-shot drop: a disc of particles with an impact velocity profile."""
    params = sim.params
    rng = sim.rng
    radius = sim.particle_radius
    color = sim.color_rgb
    count = 20 + int(math.floor(radius * 5))
    impact = params['spawn_velocity'] * 10.0

    for _ in range(count):
        angle = rng.next() * math.pi * 2.0
        r = rng.next() * radius * 2.0
        px = x + math.cos(angle) * r
        py = y + math.sin(angle) * r
        if floor:
            speed = rng.next() * impact * 0.2
            vx, vy = math.cos(angle) * speed, math.sin(angle) * speed
        else:
            vx = (rng.next() - 0.5) * impact
            vy = rng.next() * impact
        variance = (rng.next() - 0.5) * 2.0 * params['size_randomness']
        sim.particles.spawn(
            px, py, vx, vy, radius * (1.0 + variance), radius,
            params['particle_lifetime'], color, policy=EVICT_OLDEST, rng=rng
        )
    return count


def spawn_ballistic_burst(sim, x: float, y: float, angle: float,
                          distance: float, caliber: str) -> int:
    """
    Impact splatter for one shot.

    Farther shots (distance toward 1) widen the cone and add fragments.
    Each fragment is a fast splatter core, fine mist, or a heavier drop.
    """
    stats = CALIBERS.get(caliber)
    if stats is None:
        logging.debug(f"Unknown caliber {caliber!r}; using {DEFAULT_CALIBER}.")
        stats = CALIBERS[DEFAULT_CALIBER]
    params = sim.params
    rng = sim.rng
    radius = sim.particle_radius
    color = sim.color_rgb

    base_spread = stats['spread'] * (1.0 + distance * 1.5)
    count = int(math.floor(stats['count'] * (1.0 + distance * 0.5)))

    for _ in range(count):
        r = rng.next()
        flags = 0
        spread_mult = 1.0
        size_base = stats['size']
        if r < SPLATTER_FRACTION:
            flags = FLAG_SPLATTER
            spread_mult = 0.5
            size_base *= 0.4
        elif r < stats['mist'] + SPLATTER_FRACTION:
            flags = FLAG_MIST
            spread_mult = 1.2
            size_base *= 0.5

        theta = angle + (rng.next() - 0.5) * base_spread * spread_mult
        speed = stats['speed'] * (0.8 + rng.next() * 0.6) * BALLISTIC_VELOCITY_SCALE
        if flags == FLAG_SPLATTER:
            speed *= 2.0
        elif flags == FLAG_MIST:
            speed *= 1.2

        mass = radius * size_base * (1.0 if flags == 0 else 0.4)
        offset = rng.next() * 20.0
        sx = x + math.cos(theta) * offset
        sy = y + math.sin(theta) * offset
        sim.particles.spawn(
            sx, sy, math.cos(theta) * speed, math.sin(theta) * speed,
            mass, mass, params['particle_lifetime'], color,
            flags=flags, policy=EVICT_OLDEST, rng=rng
        )
    return count


def _advance_wall(sim, dt: float, ballistic: bool) -> None:
    p = sim.particles
    sim.stamps.reserve(p.count)
    sim.stamps.count = integrate_wall(
        p.x, p.y, p.prev_x, p.prev_y, p.vx, p.vy, p.mass, p.flags, p.color, p.count,
        sim.surface.wetness, sim.mask.logic, sim.mask.active, sim.rng.state,
        sim.stamps.data, sim.stamps.count,
        dt, sim.params['gravity'], sim.params['viscosity'], sim.particle_radius, ballistic
    )


def _advance_floor(sim, dt: float, one_click: bool) -> None:
    p = sim.particles
    params = sim.params
    sim.solver.rebuild(sim.width, sim.height, sim.particle_radius)
    mult = ONE_CLICK_INTERACTION_MULT if one_click else 1.0
    sim.solver.apply(p, params['density'], params['surface_tension'], mult, dt)

    sim.stamps.reserve(p.count)
    sim.stamps.count = integrate_floor(
        p.x, p.y, p.prev_x, p.prev_y, p.vx, p.vy, p.mass, p.life,
        p.origin_x, p.origin_y, p.flags, p.color, p.count,
        sim.field.roughness, sim.field.scale, sim.mask.logic, sim.mask.active,
        sim.rng.state, sim.stamps.data, sim.stamps.count,
        dt, params['viscosity'], params['turbulence'], sim.noise_offset,
        one_click, bool(params['infinite_lifetime']), params['opacity'],
        params['substeps']
    )


# --- Mode variants ---

@dataclass
class Mode:
    name: ClassVar[str] = ''
    eviction: ClassVar[int] = EVICT_OLDEST
    uses_grid: ClassVar[bool] = False

    def spawn(self, sim, x: float, y: float) -> None:
        if sim.params['spawn_mode'] == 'drop':
            sim.spawn_blob(x, y)
        else:
            spawn_spray(sim, x, y, self.eviction, downward=True)

    def advance(self, sim, dt: float) -> None:
        raise NotImplementedError


@dataclass
class WallMode(Mode):
    """Gravity-dominated drips that streak and wet the surface."""
    name: ClassVar[str] = MODE_WALL

    def advance(self, sim, dt: float) -> None:
        _advance_wall(sim, dt, ballistic=False)


@dataclass
class BallisticMode(Mode):
    """Impact splatter; integrates like the wall with harsher friction per fragment."""
    name: ClassVar[str] = MODE_BALLISTIC
    caliber: str = DEFAULT_CALIBER

    def spawn(self, sim, x: float, y: float) -> None:
        sim.spawn_ballistic(x, y, sim.params['spawn_direction'])

    def advance(self, sim, dt: float) -> None:
        _advance_wall(sim, dt, ballistic=True)


@dataclass
class FloorMode(Mode):
    """Pooling with pressure/tension between neighbours and noise fingering."""
    name: ClassVar[str] = MODE_FLOOR
    eviction: ClassVar[int] = EVICT_RANDOM

    def spawn(self, sim, x: float, y: float) -> None:
        if sim.params['spawn_mode'] == 'drop':
            sim.spawn_blob(x, y)
        else:
            spawn_spray(sim, x, y, self.eviction, downward=False)

    def advance(self, sim, dt: float) -> None:
        _advance_floor(sim, dt, one_click=False)


@dataclass
class OneClickMode(FloorMode):
    """A single click starts a pool that keeps growing outward."""
    name: ClassVar[str] = MODE_ONE_CLICK

    def spawn(self, sim, x: float, y: float) -> None:
        sim.spawn_pool(x, y)

    def advance(self, sim, dt: float) -> None:
        _advance_floor(sim, dt, one_click=True)


@dataclass
class SmartMode(Mode):
    """Height-field spreading with a constant-rate, permeability-steered front."""
    name: ClassVar[str] = MODE_SMART
    uses_grid: ClassVar[bool] = True

    def spawn(self, sim, x: float, y: float) -> None:
        sim.spawn_smart(x, y)

    def advance(self, sim, dt: float) -> None:
        open_cells = sim.open_cells()
        sim.field.begin_step()
        sim.emitters.inject_smart(dt, sim.field, open_cells, sim.params, sim.noise_offset)
        sim.field.diffuse_smart(
            dt, open_cells, sim.params['pooling_randomness'], sim.params['surface_tension']
        )
        sim.field.end_step()


@dataclass
class ExperimentalMode(Mode):
    """Height-field flow proportional to the local height difference."""
    name: ClassVar[str] = MODE_EXPERIMENTAL
    uses_grid: ClassVar[bool] = True

    def spawn(self, sim, x: float, y: float) -> None:
        sim.spawn_experimental(x, y)

    def advance(self, sim, dt: float) -> None:
        open_cells = sim.open_cells()
        sim.field.begin_step()
        sim.emitters.inject_experimental(dt, sim.field, open_cells)
        sim.field.diffuse_experimental(dt, open_cells, sim.params['viscosity'])
        sim.field.end_step()


@dataclass
class FormationMode(Mode):
    """Shape-driven growth from an animated sprite sheet."""
    name: ClassVar[str] = MODE_FORMATION
    uses_grid: ClassVar[bool] = True
    sheet: Optional[np.ndarray] = None

    def spawn(self, sim, x: float, y: float) -> None:
        sim.spawn_formation(x, y)

    def advance(self, sim, dt: float) -> None:
        sheet = self.sheet if self.sheet is not None else sim.formation_sheet
        sim.emitters.grow_formations(dt, sim.field, sheet, sim.open_cells())


@dataclass
class DripHead:
    x: float
    y: float
    vx: float
    vy: float
    width: float


@dataclass
class VectorDripMode(Mode):
    """Procedural drip tracers that paint tapering, branching trails."""
    name: ClassVar[str] = MODE_VECTOR_DRIP
    drip_heads: List[DripHead] = field(default_factory=list)

    def spawn(self, sim, x: float, y: float) -> None:
        sim.spawn_vector_drip(x, y)

    def add_splash(self, sim, x: float, y: float) -> None:
        """Stamps the impact splash and releases three to five drip heads."""
        rng = sim.rng
        color = sim.color_rgb
        r = sim.particle_radius * 3.0
        sim.stamps.disc(x, y, r, color)
        for _ in range(10):
            angle = rng.next() * math.pi * 2.0
            dist = rng.next() * r * 1.5
            size = rng.next() * r * 0.4
            sim.stamps.disc(x + math.cos(angle) * dist, y + math.sin(angle) * dist, size, color)

        for _ in range(3 + int(rng.next() * 3)):
            width = 4.0 + rng.next() * 6.0
            speed = 50.0 + rng.next() * 50.0
            hx = x + (rng.next() - 0.5) * r
            hy = y + (rng.next() - 0.5) * r
            self.drip_heads.append(DripHead(hx, hy, 0.0, speed, width))

    def advance(self, sim, dt: float) -> None:
        params = sim.params
        rng = sim.rng
        color = sim.color_rgb
        survivors = []
        born = []
        for head in self.drip_heads:
            prev_x, prev_y = head.x, head.y
            head.vy += params['gravity'] * 10.0 * dt
            n = noise(head.x * 0.05, head.y * 0.05, sim.noise_offset)
            head.vx += (n - 0.5) * 500.0 * (1.0 - params['viscosity']) * dt
            head.vx *= 0.9
            head.x += head.vx * dt
            head.y += head.vy * dt

            speed = math.hypot(head.vx, head.vy)
            head.width -= (5.0 + speed * 0.05) * dt * 0.8

            alive = sim.mask.is_open(head.x, head.y) and head.width > 0.5
            if alive:
                sim.stamps.push(prev_x, prev_y, head.x, head.y, head.width / 2.0, color, 1.0)
                if head.width > 3.0 and rng.next() < 0.02:
                    child_width = head.width * 0.6
                    head.width *= 0.7
                    born.append(DripHead(
                        head.x, head.y, head.vx + (rng.next() - 0.5) * 50.0,
                        head.vy * 0.8, child_width
                    ))
            if alive and head.y <= sim.height:
                survivors.append(head)
        self.drip_heads = survivors + born


MODES: Dict[str, Type[Mode]] = {
    cls.name: cls for cls in (
        WallMode, FloorMode, OneClickMode, BallisticMode, SmartMode,
        ExperimentalMode, FormationMode, VectorDripMode
    )
}


def resolve_mode_name(name) -> str:
    """Maps unknown names onto the wall mode."""
    if name not in MODES:
        logging.warning(f"Unknown mode {name!r}; falling back to '{MODE_WALL}'.")
        return MODE_WALL
    return name


def create_mode(name: str, **state) -> Mode:
    """Instantiates the variant for `name` with its mode-specific state."""
    cls = MODES[resolve_mode_name(name)]
    names = {f.name for f in fields(cls)}
    accepted = {k: v for k, v in state.items() if k in names}
    return cls(**accepted)
