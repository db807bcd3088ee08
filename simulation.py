# simulation.py
"""
The liquid simulation engine.

This module defines the Simulation class, the single owner of every
buffer in a run: particles, emitters, the surface and wetness rasters,
the height field and the mask. Drivers call step(dt) at a fixed rate and
feed user actions through the public spawn/setter methods. Every public
mutating method is recorded into the active EventLog so the run can be
re-simulated bit-for-bit by the replay module.
"""
import functools
import hashlib
import inspect
import logging
import math
import numpy as np
from typing import Dict, Any, Optional

from noise import DeterministicRNG, draw_noise_offset
from particle import ParticleSystem
from physics import RepulsionSolver
from emitters import (
    EmitterSystem, ParticleEmitter, Emitter, FormationEmitter,
    KIND_POOL, KIND_PUMPING, KIND_SMART, KIND_EXPERIMENTAL, KIND_FORMATION
)
from modes import (
    create_mode, resolve_mode_name, spawn_blob, spawn_ballistic_burst,
    FloorMode, BallisticMode, FormationMode, VectorDripMode
)
from height_field import HeightField, fallback_formation_sheet, decode_formation_sheet
from mask import Mask
from surface import Surface, StampBuffer
from event_log import EventLog
from utils import hex_to_rgb, clamp, clamp_parameter
from constants import (
    DEFAULT_CANVAS_SIZE, MAX_CANVAS_SIZE, DEFAULT_SEED, MAX_PARTICLES,
    DEFAULT_PARAMETERS, MATERIALS, CALIBERS, SPAWN_MODES, MODE_ONE_CLICK,
    POOL_DURATION, PERSISTENT_DURATION, FORMATION_DURATION,
    FORMATION_FRAME_COUNT, ONE_CLICK_PARTICLE_SIZE
)

# --- Data Contracts ---
#
# class Simulation:
#   - __init__(self, params=None, width=1024, height=1024, seed=1337,
#              capacity=MAX_PARTICLES, noise_offset=None):
#     - params: Optional overrides for DEFAULT_PARAMETERS (clamped).
#     - noise_offset: None draws one from OS entropy.
#
#   - step(self, dt: float) -> None:
#     - Side Effects: Advances `dt * time_scale` seconds in `substeps`
#       equal sub-steps. No-op while paused (the clock still advances).
#     - Invariants: len(particles) <= capacity; no particle with
#       mass <= MASS_EPSILON or beyond the out-of-bounds margin survives.
#
#   - get_state(self) -> Dict[str, Any] / set_state(self, snapshot) -> None:
#     - Flat key-value snapshot of particle capacity, canvas size, seed,
#       noise offset and every tunable parameter. set_state applies only
#       the keys present: capacity, resize, seed, mode (which resets with
#       the snapshot's noise offset), material, then the explicit values.
#
#   - Recording: while `event_log` is set, each public mutating call made
#     from outside the engine appends Event(clock, method name, args).
#     Calls made by the engine itself are not recorded. Array and dict
#     arguments are copied, so later changes by the caller never reach
#     the log.


def _detach(value: Any) -> Any:
    """Deep-copies arrays, dicts and lists; other values pass through."""
    if isinstance(value, np.ndarray):
        return value.copy()
    if isinstance(value, dict):
        return {k: _detach(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_detach(v) for v in value]
    return value


def recorded(method):
    """
    Marks a public mutating operation for the event log.

    Arguments are bound with their defaults so the payload replays
    identically. A `noise_offset` left as None is drawn here, before the
    call, so the recorded value is the one actually used. The method runs
    on the same copied arguments that are logged, so anything it fills in
    while running is recorded too.
    """
    signature = inspect.signature(method)

    @functools.wraps(method)
    def wrapper(self, *args, **kwargs):
        if self._record_depth == 0:
            bound = signature.bind(self, *args, **kwargs)
            bound.apply_defaults()
            if 'noise_offset' in bound.arguments and bound.arguments['noise_offset'] is None:
                bound.arguments['noise_offset'] = draw_noise_offset()
            args = [_detach(v) for v in bound.args[1:]]
            kwargs = bound.kwargs
            if self.event_log is not None:
                self.event_log.append(self.clock, method.__name__, args)

        self._record_depth += 1
        try:
            return method(self, *args, **kwargs)
        finally:
            self._record_depth -= 1

    wrapper.recorded = True
    return wrapper


def sanitize_dimension(value: Any) -> int:
    """Canvas sizes that are not positive numbers fall back to DEFAULT_CANVAS_SIZE."""
    try:
        size = int(value)
    except (TypeError, ValueError, OverflowError):
        logging.warning(f"Invalid canvas dimension {value!r}; using {DEFAULT_CANVAS_SIZE}.")
        return DEFAULT_CANVAS_SIZE
    if size <= 0:
        logging.warning(f"Non-positive canvas dimension {value!r}; using {DEFAULT_CANVAS_SIZE}.")
        return DEFAULT_CANVAS_SIZE
    if size > MAX_CANVAS_SIZE:
        logging.warning(f"Canvas dimension {size} exceeds {MAX_CANVAS_SIZE}; clamping.")
        return MAX_CANVAS_SIZE
    return size


class Simulation:
    """
    Hybrid particle / height-field liquid engine with deterministic replay.
    """
    def __init__(self, params: Optional[Dict[str, Any]] = None,
                 width: int = DEFAULT_CANVAS_SIZE, height: int = DEFAULT_CANVAS_SIZE,
                 seed: int = DEFAULT_SEED, capacity: int = MAX_PARTICLES,
                 noise_offset: Optional[int] = None):
        """
        Initializes the engine.

        Args:
            params (Dict[str, Any]): Parameter overrides, see DEFAULT_PARAMETERS.
            width (int): Canvas width in pixels.
            height (int): Canvas height in pixels.
            seed (int): Seed restored on every reset.
            capacity (int): Particle store capacity.
            noise_offset (int): Fixed noise offset; None draws one.
        """
        self.event_log: Optional[EventLog] = None
        self._record_depth = 0
        self.clock = 0.0
        self.steps = 0
        self.paused = False

        self.seed = int(seed)
        self.rng = DeterministicRNG(self.seed)
        self.params: Dict[str, Any] = dict(DEFAULT_PARAMETERS)
        self._rgb = hex_to_rgb(self.params['color'])

        self.width = sanitize_dimension(width)
        self.height = sanitize_dimension(height)
        self.surface = Surface(self.width, self.height)
        self.field = HeightField(self.width, self.height)
        self.mask = Mask(self.width, self.height)
        self._open_cells = None

        self.particles = ParticleSystem(capacity)
        self.emitters = EmitterSystem()
        self.stamps = StampBuffer()
        self.solver = RepulsionSolver()
        self.formation_sheet = fallback_formation_sheet()
        self._custom_formation = None
        self.noise_offset = 0
        self.mode = None

        self._record_depth += 1
        try:
            for key, value in (params or {}).items():
                self._apply_parameter(key, value)
        finally:
            self._record_depth -= 1

        self.mode = self._make_mode(self.params['mode'])
        self.reset(noise_offset)

        logging.info(
            f"Simulation initialized: {self.width}x{self.height} canvas, "
            f"mode '{self.mode.name}', seed {self.seed}, capacity {self.particles.capacity}."
        )

    @classmethod
    def from_config(cls, sim_params: Dict[str, Any]) -> "Simulation":
        """Builds an engine from the config.json "simulation_parameters" section."""
        overrides = {k: v for k, v in sim_params.items() if k in DEFAULT_PARAMETERS}
        return cls(
            params=overrides,
            width=sim_params.get('width', DEFAULT_CANVAS_SIZE),
            height=sim_params.get('height', DEFAULT_CANVAS_SIZE),
            seed=sim_params.get('seed', DEFAULT_SEED),
            capacity=sim_params.get('max_particles', MAX_PARTICLES),
            noise_offset=sim_params.get('noise_offset'),
        )

    # --- Derived values ---

    @property
    def particle_radius(self) -> float:
        """Base particle radius in pixels, derived from the size setting."""
        return 4.0 + self.params['particle_size'] * 2.0

    @property
    def color_rgb(self):
        return self._rgb

    def open_cells(self) -> np.ndarray:
        """Height-field cells the mask leaves open."""
        if self._open_cells is None:
            self._open_cells = self.mask.grid_view(self.field.width, self.field.height, self.field.scale)
        return self._open_cells

    def _make_mode(self, name: str):
        name = resolve_mode_name(name)
        sheet = self._custom_formation
        return create_mode(name, caliber=self.params['caliber'], sheet=sheet)

    # --- Stepping ---

    def step(self, dt: float) -> None:
        """
        Advances the simulation by one outer tick.

        Args:
            dt (float): Driver time in seconds; scaled by time_scale and
                split into `substeps` equal sub-steps.
        """
        if not dt > 0.0 or math.isinf(dt):
            return
        self.clock += dt
        if self.paused:
            return
        substeps = self.params['substeps']
        sub_dt = dt * self.params['time_scale'] / substeps
        if sub_dt <= 0.0:
            return
        for _ in range(substeps):
            self._substep(sub_dt)
        self.steps += 1

    def _substep(self, dt: float) -> None:
        self.emitters.advance_particle_emitters(
            dt, self.particles, self.rng, self.params, self.particle_radius,
            self._rgb, self.mode.name == MODE_ONE_CLICK, self.noise_offset
        )
        self.mode.advance(self, dt)
        self.particles.cull(self.width, self.height)
        self.surface.composite(self.stamps)

    # --- Lifecycle ---

    @recorded
    def reset(self, noise_offset: Optional[int] = None) -> None:
        """
        Clears all liquid and restarts the random stream.

        Args:
            noise_offset (int): Noise offset for the new run; None draws one.
        """
        self.particles.clear()
        self.emitters.clear()
        self.stamps.clear()
        self.surface.clear()
        self.field.clear()
        self.mode = self._make_mode(self.mode.name)
        self.rng.reseed(self.seed)
        self.noise_offset = draw_noise_offset() if noise_offset is None else int(noise_offset)
        self.field.rebuild_static_fields(self.noise_offset, self.params['pooling_randomness'])
        logging.info(f"Simulation reset (seed {self.seed}, noise offset {self.noise_offset}).")

    @recorded
    def set_mode(self, mode: str, noise_offset: Optional[int] = None) -> None:
        """Switches behaviour mode. Resets the run and clears the mask."""
        name = resolve_mode_name(mode)
        self.params['mode'] = name
        self.mode = self._make_mode(name)
        self.reset(noise_offset)
        self.clear_mask()
        logging.info(f"Mode switched to '{name}'.")

    @recorded
    def resize(self, width: Any, height: Any) -> None:
        """
        Reallocates every buffer for a new canvas size.

        The accumulated surface paint is stretched to the new size; the
        wetness buffer, height field and mask start over.
        """
        width = sanitize_dimension(width)
        height = sanitize_dimension(height)
        self.surface.resize(width, height)
        self.field = HeightField(width, height)
        self.field.rebuild_static_fields(self.noise_offset, self.params['pooling_randomness'])
        self.mask.resize(width, height)
        self._open_cells = None
        self.width = width
        self.height = height
        logging.info(f"Canvas resized to {width}x{height}.")

    @recorded
    def set_paused(self, paused: bool) -> None:
        self.paused = bool(paused)
        logging.info(f"Simulation {'paused' if self.paused else 'resumed'}.")

    def toggle_pause(self) -> bool:
        self.set_paused(not self.paused)
        return self.paused

    # --- Recording ---

    def start_recording(self, noise_offset: Optional[int] = None) -> EventLog:
        """
        Begins a fresh event log.

        The run restarts from a clean canvas and clock so the log's `init`
        snapshot fully describes the starting state.
        """
        self.event_log = None
        self.reset(noise_offset)
        self.clock = 0.0
        self.steps = 0
        self.event_log = EventLog()
        self.event_log.append(0.0, 'init', [self.get_state()])
        if self.mask.active:
            alpha = (self.mask.logic > 0).astype(np.uint8) * 255
            self.event_log.append(0.0, 'load_mask', [alpha])
        if self._custom_formation is not None:
            self.event_log.append(0.0, 'set_formation_raster', [self._custom_formation])
        logging.info("Event recording started.")
        return self.event_log

    def stop_recording(self) -> Optional[EventLog]:
        log, self.event_log = self.event_log, None
        if log is not None:
            logging.info(f"Event recording stopped with {len(log)} events.")
        return log

    # --- Snapshot ---

    def get_state(self) -> Dict[str, Any]:
        """Flat snapshot of the canvas, seeds and every tunable parameter."""
        state = {
            'capacity': self.particles.capacity,
            'width': self.width,
            'height': self.height,
            'seed': self.seed,
            'noise_offset': self.noise_offset,
        }
        state.update(self.params)
        return state

    @recorded
    def set_state(self, snapshot: Dict[str, Any]) -> None:
        """
        Applies a snapshot produced by get_state. Missing keys are left alone.

        Only a snapshot carrying 'mode' resets the run. A missing or None
        'noise_offset' is then drawn and written back into the snapshot,
        which is the logged copy while recording.
        """
        if not isinstance(snapshot, dict):
            logging.warning(f"Ignoring non-mapping state snapshot {type(snapshot).__name__}.")
            return
        if 'capacity' in snapshot:
            self._set_capacity(snapshot['capacity'])
        if 'width' in snapshot or 'height' in snapshot:
            self.resize(snapshot.get('width', self.width), snapshot.get('height', self.height))
        if 'seed' in snapshot:
            self.set_seed(snapshot['seed'])
        if 'mode' in snapshot:
            if snapshot.get('noise_offset') is None:
                snapshot['noise_offset'] = draw_noise_offset()
            self.set_mode(snapshot['mode'], snapshot['noise_offset'])
        material = snapshot.get('material')
        if material in MATERIALS:
            self.apply_material(material)
        for key, value in snapshot.items():
            if key in DEFAULT_PARAMETERS and key not in ('mode', 'material'):
                self._apply_parameter(key, value)
        if material is not None:
            self.params['material'] = material

    def _set_capacity(self, capacity: Any) -> None:
        """Reallocates the particle store when the capacity changes. Live particles are dropped."""
        try:
            capacity = max(1, int(capacity))
        except (TypeError, ValueError, OverflowError):
            logging.warning(f"Ignoring invalid particle capacity {capacity!r}.")
            return
        if capacity != self.particles.capacity:
            self.particles = ParticleSystem(capacity)
            logging.info(f"Particle capacity set to {capacity}.")

    def _apply_parameter(self, key: str, value: Any) -> None:
        setter = getattr(self, f"set_{key}", None)
        if key == 'material':
            self.apply_material(value)
        elif key == 'mode':
            self.params['mode'] = resolve_mode_name(value)
        elif setter is not None:
            setter(value)
        else:
            logging.debug(f"No setter for parameter '{key}'; ignored.")

    # --- Setters ---

    def _set_numeric(self, name: str, value: Any) -> None:
        self.params[name] = clamp_parameter(name, value, self.params[name])
        logging.debug(f"Parameter '{name}' set to {self.params[name]}.")

    @recorded
    def set_seed(self, seed: int) -> None:
        """Sets the seed restored on reset and restarts the stream now."""
        try:
            self.seed = int(seed)
        except (TypeError, ValueError):
            logging.warning(f"Ignoring invalid seed {seed!r}.")
            return
        self.rng.reseed(self.seed)

    @recorded
    def set_spawn_mode(self, mode: str) -> None:
        if mode not in SPAWN_MODES:
            logging.warning(f"Unknown spawn mode {mode!r}; keeping '{self.params['spawn_mode']}'.")
            return
        self.params['spawn_mode'] = mode

    @recorded
    def set_caliber(self, caliber: str) -> None:
        if caliber not in CALIBERS:
            logging.warning(f"Unknown caliber {caliber!r}; keeping '{self.params['caliber']}'.")
            return
        self.params['caliber'] = caliber
        if isinstance(self.mode, BallisticMode):
            self.mode.caliber = caliber

    @recorded
    def set_viscosity(self, value: float) -> None:
        self._set_numeric('viscosity', value)

    @recorded
    def set_density(self, value: float) -> None:
        self._set_numeric('density', value)

    @recorded
    def set_gravity(self, value: float) -> None:
        self._set_numeric('gravity', value)

    @recorded
    def set_surface_tension(self, value: float) -> None:
        self._set_numeric('surface_tension', value)

    @recorded
    def set_spawn_rate(self, value: float) -> None:
        self._set_numeric('spawn_rate', value)

    @recorded
    def set_spawn_velocity(self, value: float) -> None:
        self._set_numeric('spawn_velocity', value)

    @recorded
    def set_spawn_direction(self, radians: float) -> None:
        self._set_numeric('spawn_direction', radians)

    @recorded
    def set_spread_angle(self, degrees: float) -> None:
        self._set_numeric('spread_angle', degrees)

    @recorded
    def set_particle_size(self, value: float) -> None:
        """Size setting; the particle radius is 4 + 2 * value pixels."""
        self._set_numeric('particle_size', value)

    @recorded
    def set_opacity(self, value: float) -> None:
        self._set_numeric('opacity', value)

    @recorded
    def set_color(self, color: str) -> None:
        rgb = hex_to_rgb(color)
        self._rgb = rgb
        self.params['color'] = '#{:02x}{:02x}{:02x}'.format(*rgb)

    @recorded
    def set_turbulence(self, value: float) -> None:
        self._set_numeric('turbulence', value)

    @recorded
    def set_pooling_randomness(self, value: float) -> None:
        """Also regenerates the permeability field, which depends on it."""
        self._set_numeric('pooling_randomness', value)
        self.field.rebuild_static_fields(self.noise_offset, self.params['pooling_randomness'])

    @recorded
    def set_particle_lifetime(self, seconds: float) -> None:
        self._set_numeric('particle_lifetime', seconds)

    @recorded
    def set_infinite_lifetime(self, enabled: bool) -> None:
        self.params['infinite_lifetime'] = bool(enabled)

    @recorded
    def set_size_randomness(self, value: float) -> None:
        self._set_numeric('size_randomness', value)

    @recorded
    def set_time_scale(self, value: float) -> None:
        self._set_numeric('time_scale', value)

    @recorded
    def set_substeps(self, value: int) -> None:
        self._set_numeric('substeps', value)

    @recorded
    def apply_material(self, name: str) -> None:
        """
        Loads a material preset (colour, viscosity, density, opacity,
        surface tension, turbulence). Unknown names only set the label.
        """
        self.params['material'] = name
        preset = MATERIALS.get(name)
        if preset is None:
            logging.debug(f"Material {name!r} has no preset; parameters unchanged.")
            return
        self.set_color(preset['color'])
        self._set_numeric('viscosity', preset['viscosity'])
        self._set_numeric('density', preset['density'])
        self._set_numeric('opacity', preset['opacity'])
        self._set_numeric('surface_tension', preset.get('surface_tension', 0.3))
        self._set_numeric('turbulence', preset.get('turbulence', 0.0))
        logging.info(f"Material '{name}' applied.")

    # --- Spawning ---

    @recorded
    def spawn(self, x: float, y: float) -> None:
        """Spawns liquid at (x, y) the way the active mode does."""
        self.mode.spawn(self, float(x), float(y))

    @recorded
    def spawn_blob(self, x: float, y: float) -> int:
        return spawn_blob(self, float(x), float(y), floor=isinstance(self.mode, FloorMode))

    @recorded
    def spawn_ballistic(self, x: float, y: float, angle: float,
                        distance: float = 0.3, caliber: Optional[str] = None) -> int:
        """
        Fires one ballistic impact.

        Args:
            angle (float): Direction of travel in radians.
            distance (float): Shot distance in [0, 1]; farther widens the cone.
            caliber (str): Caliber preset; None uses the current setting.

        Returns:
            int: Number of fragments spawned.
        """
        if caliber is not None:
            self.set_caliber(caliber)
        distance = clamp(float(distance), 0.0, 1.0)
        return spawn_ballistic_burst(
            self, float(x), float(y), float(angle), distance, self.params['caliber']
        )

    @recorded
    def spawn_pool(self, x: float, y: float) -> bool:
        """
        Starts a long-lived pool emitter. Refused on blocked mask pixels.

        Returns:
            bool: True if the emitter was created.
        """
        if not self.mask.is_open(x, y):
            logging.debug(f"Pool at ({x:.1f}, {y:.1f}) refused by the mask.")
            return False
        if self.mode.name == MODE_ONE_CLICK:
            self.set_particle_size(ONE_CLICK_PARTICLE_SIZE)
        kind = KIND_PUMPING if self.params['material'] == 'blood' else KIND_POOL
        self.emitters.add(ParticleEmitter(
            x=float(x), y=float(y), kind=kind, duration=POOL_DURATION,
            origin_x=float(x), origin_y=float(y),
            wander_angle=self.rng.next() * math.pi * 2.0
        ))
        return True

    @recorded
    def spawn_smart(self, x: float, y: float) -> None:
        self.emitters.add(Emitter(x=float(x), y=float(y), kind=KIND_SMART, duration=PERSISTENT_DURATION))

    @recorded
    def spawn_experimental(self, x: float, y: float) -> bool:
        if not self.mask.is_open(x, y):
            return False
        self.emitters.add(Emitter(
            x=float(x), y=float(y), kind=KIND_EXPERIMENTAL, duration=PERSISTENT_DURATION
        ))
        return True

    @recorded
    def spawn_formation(self, x: float, y: float) -> None:
        """Starts a formation emitter with a random frame, rotation and scale."""
        self.emitters.add(FormationEmitter(
            x=float(x), y=float(y), kind=KIND_FORMATION, duration=FORMATION_DURATION,
            frame_index=int(self.rng.next() * FORMATION_FRAME_COUNT),
            rotation=self.rng.next() * math.pi * 2.0,
            scale=1.0 + self.rng.next() * 0.5
        ))

    @recorded
    def spawn_vector_drip(self, x: float, y: float) -> bool:
        if not isinstance(self.mode, VectorDripMode):
            logging.debug("Vector drips need the vector-drip mode; ignored.")
            return False
        self.mode.add_splash(self, float(x), float(y))
        return True

    # --- Mask & external rasters ---

    @recorded
    def paint_mask(self, x: float, y: float, radius: float, erase: bool = False) -> None:
        self.mask.paint(float(x), float(y), float(radius), bool(erase))
        self._open_cells = None

    @recorded
    def clear_mask(self) -> None:
        self.mask.clear()
        self._open_cells = None

    @recorded
    def load_mask(self, alpha) -> bool:
        """Loads an already-decoded alpha buffer as the mask. Fails soft."""
        ok = self.mask.load_from_raster(alpha)
        self._open_cells = None
        return ok

    @recorded
    def set_formation_raster(self, raster) -> None:
        """Installs a decoded 6x6 formation sprite sheet. Fails soft to the synthetic one."""
        self._custom_formation = decode_formation_sheet(raster)
        self.formation_sheet = self._custom_formation
        if isinstance(self.mode, FormationMode):
            self.mode.sheet = self._custom_formation

    # --- Read-only views ---

    def particle_view(self) -> Dict[str, np.ndarray]:
        return self.particles.view()

    def surface_view(self) -> np.ndarray:
        v = self.surface.pixels.view()
        v.flags.writeable = False
        return v

    def wetness_view(self) -> np.ndarray:
        v = self.surface.wetness.view()
        v.flags.writeable = False
        return v

    def height_view(self) -> np.ndarray:
        return self.field.view()

    def mask_overlay_view(self) -> np.ndarray:
        return self.mask.overlay_view()

    def fingerprint(self) -> str:
        """Digest of the full mutable state, for trajectory comparisons."""
        h = hashlib.sha256()
        p = self.particles
        n = p.count
        for arr in (p.ids, p.x, p.y, p.vx, p.vy, p.mass, p.life, p.flags):
            h.update(np.ascontiguousarray(arr[:n]).tobytes())
        h.update(self.field.grid.tobytes())
        h.update(self.surface.pixels.tobytes())
        h.update(self.surface.wetness.tobytes())
        h.update(np.int64(self.rng.snapshot()).tobytes())
        return h.hexdigest()
