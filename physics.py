# physics.py
"""
Particle physics kernels.

This module holds the Numba-jitted hot loops for the particle modes: the
spatial-hash pressure/tension solver used by pooling modes, and the two
integration laws (wall adhesion with streaking, floor pooling with
fingering). Kernels mutate the ParticleSystem arrays in place and append
stamp records for the compositor; they never touch pixels themselves.
"""
import logging
import math
import numpy as np
from numba import jit
from numba.core import types
from numba.typed import List

from noise import rng_next, noise
from mask import is_open_at
from constants import (
    FLAG_POOL, FLAG_MIST, FLAG_SPLATTER, MAX_INTERACTIONS, MAX_REPULSION_FORCE,
    MIN_DISTANCE_SQ, PRESSURE_STRENGTH, TENSION_STRENGTH, REST_DISTANCE_RATIO,
    INTERACTION_DISTANCE_RATIO, WALL_GRAVITY, WET_STREAK_INCREMENT,
    WET_SPREAD_INCREMENT, WET_SLIP_THRESHOLD, WET_STREAK_THRESHOLD
)

# --- Data Contracts ---
#
# class RepulsionSolver:
#   - rebuild(self, width: int, height: int, particle_radius: float) -> None:
#     - Side Effects: Reallocates the typed-list spatial grid with cell
#       size equal to the interaction distance (radius * 4).
#   - apply(self, particles, density, surface_tension, mult, dt) -> int:
#     - Side Effects: Adds equal and opposite impulses to each interacting
#       pair. Returns the number of pair interactions.
#     - Invariants: Each particle takes part in at most MAX_INTERACTIONS
#       pairs. Only the 3x3 cell neighbourhood is scanned.
#
# integrate_wall(...) -> int
# integrate_floor(...) -> int
#   - Inputs: particle arrays, the first `count` entries live.
#   - Outputs: the new stamp count. The stamp array must have room for
#     `count` more rows.
#   - Invariants: mass >= 0 afterwards. Particles landing on a blocked
#     mask pixel return to their previous position with zero velocity, or
#     die if that position is blocked too.


@jit(nopython=True)
def _update_grid_numba(x, y, mass, count, grid, grid_width, grid_height, cell_size):
    """
    Numba-jitted function to populate the spatial grid.

    Particles off the canvas or without mass are left out.
    """
    for cell in grid:
        cell.clear()

    for i in range(count):
        if mass[i] <= 0.0:
            continue
        cell_x = int(np.floor(x[i] / cell_size))
        cell_y = int(np.floor(y[i] / cell_size))
        if 0 <= cell_x < grid_width and 0 <= cell_y < grid_height:
            grid[cell_x + cell_y * grid_width].append(i)


@jit(nopython=True)
def _apply_repulsion_numba(
    x, y, vx, vy, mass, count, grid, grid_width, grid_height, cell_size,
    rest_dist, interaction_dist, pressure, tension, mult, dt, max_interactions
):
    """
    Numba-jitted pressure/tension pass.

    Each pair is visited once (j > i) and receives equal and opposite
    impulses. Pairs closer than the rest distance repel with a capped
    force; pairs between rest and interaction distance attract.
    """
    interaction_sq = interaction_dist * interaction_dist
    counts = np.zeros(count, dtype=np.int64)
    pairs = 0

    for i in range(count):
        if mass[i] <= 0.0 or counts[i] >= max_interactions:
            continue
        cell_x = int(np.floor(x[i] / cell_size))
        cell_y = int(np.floor(y[i] / cell_size))
        if not (0 <= cell_x < grid_width and 0 <= cell_y < grid_height):
            continue

        done = False
        for dy in range(-1, 2):
            if done:
                break
            ny = cell_y + dy
            if ny < 0 or ny >= grid_height:
                continue
            for dx in range(-1, 2):
                if done:
                    break
                nx = cell_x + dx
                if nx < 0 or nx >= grid_width:
                    continue
                for j in grid[nx + ny * grid_width]:
                    if j <= i or counts[j] >= max_interactions:
                        continue
                    ddx = x[i] - x[j]
                    ddy = y[i] - y[j]
                    dist_sq = ddx * ddx + ddy * ddy
                    if dist_sq >= interaction_sq or dist_sq <= MIN_DISTANCE_SQ:
                        continue

                    dist = np.sqrt(dist_sq)
                    nxv = ddx / dist
                    nyv = ddy / dist
                    if dist < rest_dist:
                        force = pressure * (1.0 - dist / rest_dist) * mult
                        if force > MAX_REPULSION_FORCE:
                            force = MAX_REPULSION_FORCE
                    else:
                        u = (dist - rest_dist) / (interaction_dist - rest_dist)
                        force = -(1.0 - u) * tension * mult

                    fx = nxv * force * dt
                    fy = nyv * force * dt
                    vx[i] += fx
                    vy[i] += fy
                    vx[j] -= fx
                    vy[j] -= fy

                    counts[i] += 1
                    counts[j] += 1
                    pairs += 1
                    if counts[i] >= max_interactions:
                        done = True
                        break
    return pairs


@jit(nopython=True)
def _settle_against_mask(i, x, y, prev_x, prev_y, vx, vy, mass, logic, mask_active):
    if not is_open_at(logic, mask_active, x[i], y[i]):
        x[i] = prev_x[i]
        y[i] = prev_y[i]
        vx[i] = 0.0
        vy[i] = 0.0
        if not is_open_at(logic, mask_active, prev_x[i], prev_y[i]):
            mass[i] = 0.0


@jit(nopython=True)
def _wet_add(wetness, ix, iy, amount):
    if 0 <= ix < wetness.shape[1] and 0 <= iy < wetness.shape[0]:
        value = np.int64(wetness[iy, ix]) + amount
        if value > 255:
            value = 255
        wetness[iy, ix] = value


@jit(nopython=True)
def integrate_wall(
    x, y, prev_x, prev_y, vx, vy, mass, flags, color, count,
    wetness, logic, mask_active, rng_state, stamps, stamp_count,
    dt, gravity, viscosity, particle_radius, ballistic
):
    """
    Wall adhesion: gravity-dominated sliding that loses mass into streaks.

    Streaking particles raise the wetness buffer, and wet pixels in turn
    loosen friction and reduce mass loss, so later drips follow earlier
    trails.
    """
    height, width = wetness.shape
    viscosity_factor = max(0.1, viscosity)
    streak_threshold = particle_radius * 0.8

    for i in range(count):
        prev_x[i] = x[i]
        prev_y[i] = y[i]
        speed = np.sqrt(vx[i] * vx[i] + vy[i] * vy[i])

        ix = int(np.floor(x[i]))
        iy = int(np.floor(y[i]))
        wet = 0
        if 0 <= ix < width and 0 <= iy < height:
            wet = wetness[iy, ix]

        vy[i] += WALL_GRAVITY * gravity * dt

        friction = 1.0 - viscosity_factor * 2.0 * dt
        if ballistic:
            if flags[i] & FLAG_SPLATTER:
                friction = 1.0 - 20.0 * dt
            elif flags[i] & FLAG_MIST:
                friction = 1.0 - 25.0 * dt
                if speed < 100.0:
                    mass[i] -= dt * 10.0
        if wet > WET_SLIP_THRESHOLD:
            friction = 1.0 - viscosity_factor * 0.5 * dt
        if friction < 0.0:
            friction = 0.0
        vx[i] *= friction
        vy[i] *= friction

        dist = speed * dt
        loss_rate = 0.01 * (1.0 - viscosity * 0.5)
        can_streak = mass[i] > streak_threshold or wet > WET_STREAK_THRESHOLD
        if can_streak:
            if wet > 0:
                loss_rate *= 0.4
            mass[i] -= dist * loss_rate
        else:
            mass[i] -= dist * loss_rate * 0.1

        if speed > 10.0:
            vx[i] += (rng_next(rng_state) - 0.5) * 150.0 * (1.0 - viscosity) * dt

        x[i] += vx[i] * dt
        y[i] += vy[i] * dt
        _settle_against_mask(i, x, y, prev_x, prev_y, vx, vy, mass, logic, mask_active)
        if mass[i] < 0.0:
            mass[i] = 0.0

        if can_streak and mass[i] > 0.5:
            stamps[stamp_count, 0] = prev_x[i]
            stamps[stamp_count, 1] = prev_y[i]
            stamps[stamp_count, 2] = x[i]
            stamps[stamp_count, 3] = y[i]
            stamps[stamp_count, 4] = mass[i]
            stamps[stamp_count, 5] = color[i, 0]
            stamps[stamp_count, 6] = color[i, 1]
            stamps[stamp_count, 7] = color[i, 2]
            stamps[stamp_count, 8] = 1.0
            stamp_count += 1

            _wet_add(wetness, ix, iy, WET_STREAK_INCREMENT)
            _wet_add(wetness, ix + 1, iy, WET_SPREAD_INCREMENT)
            _wet_add(wetness, ix - 1, iy, WET_SPREAD_INCREMENT)
            _wet_add(wetness, ix, iy + 1, WET_SPREAD_INCREMENT)

    return stamp_count


@jit(nopython=True)
def integrate_floor(
    x, y, prev_x, prev_y, vx, vy, mass, life, origin_x, origin_y, flags, color, count,
    roughness, grid_scale, logic, mask_active, rng_state, stamps, stamp_count,
    dt, viscosity, turbulence, noise_offset, one_click, infinite_lifetime,
    opacity, substeps
):
    """
    Floor pooling: noise-driven fingering with channel/rough-patch friction.

    One-click pools replace friction with heavy damping plus a constant
    push away from each particle's origin, so the pool keeps growing
    without bursting. Every live particle leaves a soft dab.
    """
    rough_h, rough_w = roughness.shape
    viscosity_factor = max(0.1, viscosity)
    base_alpha = 0.05 if opacity > 0.9 else 0.02

    for i in range(count):
        prev_x[i] = x[i]
        prev_y[i] = y[i]
        speed = np.sqrt(vx[i] * vx[i] + vy[i] * vy[i])

        friction = math.exp(-viscosity_factor * 2.0 * dt)
        n_val = noise(x[i] * 0.05, y[i] * 0.05, noise_offset)
        angle = n_val * math.pi * 4.0
        cos_a = math.cos(angle)
        sin_a = math.sin(angle)

        if turbulence > 0.0:
            turb_strength = turbulence * 80.0
            vx[i] += cos_a * turb_strength * dt
            vy[i] += sin_a * turb_strength * dt
            if turbulence > 0.5:
                vx[i] += (rng_next(rng_state) - 0.5) * turbulence * 20.0 * dt
                vy[i] += (rng_next(rng_state) - 0.5) * turbulence * 20.0 * dt

        if one_click:
            flow_boost = 200.0 * dt * dt
            vx[i] += cos_a * flow_boost
            vy[i] += sin_a * flow_boost

        # Channels flow freely, rough patches grab.
        if n_val > 0.2:
            friction *= 0.99
        else:
            friction *= 0.80
        gx = int(np.floor(x[i] * grid_scale))
        gy = int(np.floor(y[i] * grid_scale))
        if 0 <= gx < rough_w and 0 <= gy < rough_h:
            friction *= 1.0 - 0.1 * roughness[gy, gx]

        if one_click:
            vx[i] *= 0.85
            vy[i] *= 0.85
            ddx = x[i] - origin_x[i]
            ddy = y[i] - origin_y[i]
            dist = np.sqrt(ddx * ddx + ddy * ddy)
            if dist > 1.0:
                expansion = 200.0 * dt
                vx[i] += ddx / dist * expansion
                vy[i] += ddy / dist * expansion
        else:
            vx[i] *= friction
            vy[i] *= friction

        keep_alive = infinite_lifetime or (one_click and (flags[i] & FLAG_POOL) != 0)
        if not keep_alive:
            if speed < 2.0:
                life[i] -= dt * 2.0
            else:
                life[i] -= dt
            if life[i] <= 0.0:
                mass[i] = 0.0

        x[i] += vx[i] * dt
        y[i] += vy[i] * dt
        _settle_against_mask(i, x, y, prev_x, prev_y, vx, vy, mass, logic, mask_active)

        if mass[i] > 0.0:
            jagged = math.sin(x[i] * 0.5) * math.cos(y[i] * 0.5)
            alpha = base_alpha
            if one_click:
                alpha = 0.20 if speed < 5.0 else 0.12
            stamps[stamp_count, 0] = x[i]
            stamps[stamp_count, 1] = y[i]
            stamps[stamp_count, 2] = x[i]
            stamps[stamp_count, 3] = y[i]
            stamps[stamp_count, 4] = mass[i] * (1.0 + jagged * 0.3)
            stamps[stamp_count, 5] = color[i, 0]
            stamps[stamp_count, 6] = color[i, 1]
            stamps[stamp_count, 7] = color[i, 2]
            stamps[stamp_count, 8] = alpha / substeps
            stamp_count += 1

    return stamp_count


class RepulsionSolver:
    """
    Spatial-hash pressure and surface-tension solver for pooling modes.
    """
    def __init__(self):
        self.grid = None
        self.grid_width = 0
        self.grid_height = 0
        self.cell_size = 0.0
        self.rest_dist = 0.0
        self.interaction_dist = 0.0
        self._key = None

    def rebuild(self, width: int, height: int, particle_radius: float) -> None:
        """Sizes the grid so a 3x3 scan covers the interaction distance."""
        key = (width, height, particle_radius)
        if key == self._key:
            return
        self._key = key
        self.rest_dist = particle_radius * REST_DISTANCE_RATIO
        self.interaction_dist = particle_radius * INTERACTION_DISTANCE_RATIO
        self.cell_size = max(1.0, self.interaction_dist)
        self.grid_width = int(np.ceil(width / self.cell_size))
        self.grid_height = int(np.ceil(height / self.cell_size))

        # Numba requires typed data structures for JIT compilation.
        self.grid = List([List.empty_list(types.int64) for _ in range(self.grid_width * self.grid_height)])

        logging.info(
            f"Spatial grid rebuilt: {self.grid_width}x{self.grid_height} grid, "
            f"cell size {self.cell_size:.2f}px."
        )

    def apply(self, particles, density: float, surface_tension: float,
              mult: float, dt: float) -> int:
        """Runs one pressure/tension pass over the live particles."""
        if particles.count < 2:
            return 0
        _update_grid_numba(
            particles.x, particles.y, particles.mass, particles.count, self.grid,
            self.grid_width, self.grid_height, self.cell_size
        )
        return _apply_repulsion_numba(
            particles.x, particles.y, particles.vx, particles.vy, particles.mass,
            particles.count, self.grid, self.grid_width, self.grid_height,
            self.cell_size, self.rest_dist, self.interaction_dist,
            PRESSURE_STRENGTH * (density / 50.0), TENSION_STRENGTH * surface_tension,
            mult, dt, MAX_INTERACTIONS
        )
