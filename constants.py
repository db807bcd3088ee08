# constants.py
"""
Application-level constants.

These values are static and do not change between simulation runs.
They are fundamental to the application's framework, such as buffer
limits, liquid presets, canvas fallbacks, or core physics settings that
are not part of the experimental configuration in config.json.
"""
import math

# --- Canvas & Buffers ---
DEFAULT_CANVAS_SIZE = 1024
# Resize requests above this are clamped per axis.
MAX_CANVAS_SIZE = 8192
# Height field cells per pixel (one cell per 4 pixels).
GRID_SCALE = 0.25
DEFAULT_SEED = 1337
# Noise offsets are drawn from [0, NOISE_OFFSET_RANGE).
NOISE_OFFSET_RANGE = 1 << 24

# --- Particle Store ---
MAX_PARTICLES = 6000
# Particles at or below this mass are culled.
MASS_EPSILON = 0.2
# Distance beyond the canvas edge at which particles are culled.
OUT_OF_BOUNDS_MARGIN = 100.0

# Particle flag bits
FLAG_POOL = 1
FLAG_MIST = 2
FLAG_SPLATTER = 4

# Eviction policies
EVICT_OLDEST = 0
EVICT_RANDOM = 1

# --- Repulsion Solver ---
MAX_INTERACTIONS = 20
MAX_REPULSION_FORCE = 500.0
MIN_DISTANCE_SQ = 0.01
PRESSURE_STRENGTH = 2000.0
TENSION_STRENGTH = 1500.0
REST_DISTANCE_RATIO = 1.5
INTERACTION_DISTANCE_RATIO = 4.0
# One-click pools expand by outward bias, so their pair forces stay soft.
ONE_CLICK_INTERACTION_MULT = 0.05

# --- Wall / Streak Physics ---
WALL_GRAVITY = 2500.0
WET_STREAK_INCREMENT = 20
WET_SPREAD_INCREMENT = 10
WET_SLIP_THRESHOLD = 20
WET_STREAK_THRESHOLD = 5

# --- Emitters ---
PERSISTENT_DURATION = 99999.0
POOL_DURATION = 600.0
FORMATION_DURATION = 300.0
PULSE_PERIOD = 0.8
ONE_CLICK_PARTICLE_SIZE = 6

# --- Height Field ---
GRID_MASS_THRESHOLD = 0.005
SMART_MAX_FILL = 2.5
EXPERIMENTAL_MAX_FILL = 3.0
FORMATION_MAX_HEIGHT = 2.5

# --- Formation Sprite Sheet ---
FORMATION_SHEET_COLUMNS = 6
FORMATION_FRAME_COUNT = 36
FORMATION_FPS = 15.0
FALLBACK_FRAME_SIZE = 64

# --- Mask ---
MASK_ALPHA_THRESHOLD = 50

# --- Driver ---
FIXED_STEP = 1.0 / 60.0
# Spiral-of-death guard: longest frame time fed to the accumulator.
MAX_FRAME_TIME = 0.25
# Replay yields control every N steps during export.
EXPORT_YIELD_STEPS = 5
MIN_EXPORT_DURATION = 0.1

# --- Modes ---
MODE_WALL = 'wall'
MODE_FLOOR = 'floor'
MODE_ONE_CLICK = 'one-click'
MODE_BALLISTIC = 'ballistic'
MODE_SMART = 'smart'
MODE_EXPERIMENTAL = 'experimental'
MODE_FORMATION = 'formation'
MODE_VECTOR_DRIP = 'vector-drip'

SPAWN_MODES = ('spray', 'drop')

# Ballistic presets: fragment count, muzzle speed, cone spread (rad),
# fragment size multiplier and fraction of fragments that become mist.
CALIBERS = {
    '22lr': {'count': 20, 'speed': 120.0, 'spread': 0.10, 'size': 0.8, 'mist': 0.1},
    '9mm': {'count': 45, 'speed': 150.0, 'spread': 0.20, 'size': 1.1, 'mist': 0.25},
    '45acp': {'count': 40, 'speed': 130.0, 'spread': 0.25, 'size': 1.6, 'mist': 0.2},
    '556': {'count': 180, 'speed': 280.0, 'spread': 0.40, 'size': 0.7, 'mist': 0.85},
    '12ga': {'count': 250, 'speed': 220.0, 'spread': 0.70, 'size': 1.0, 'mist': 0.6},
}
DEFAULT_CALIBER = '9mm'
SPLATTER_FRACTION = 0.2
BALLISTIC_VELOCITY_SCALE = 30.0

MATERIALS = {
    'water': {'color': '#2b95ff', 'viscosity': 0.1, 'density': 40, 'opacity': 0.6, 'surface_tension': 0.4},
    'blood': {'color': '#7a0000', 'viscosity': 0.5, 'density': 80, 'opacity': 0.95, 'surface_tension': 0.6,
              'turbulence': 0.4},
    'oil': {'color': '#1a1a1a', 'viscosity': 0.4, 'density': 55, 'opacity': 0.98, 'surface_tension': 0.5},
    'honey': {'color': '#dca600', 'viscosity': 0.8, 'density': 80, 'opacity': 0.9, 'surface_tension': 0.8},
    'slime': {'color': '#52ff00', 'viscosity': 0.6, 'density': 65, 'opacity': 0.8, 'surface_tension': 0.6},
    'chocolate': {'color': '#3e2723', 'viscosity': 0.7, 'density': 70, 'opacity': 1.0, 'surface_tension': 0.6},
}

# Engine defaults, overridable from config.json "simulation_parameters".
DEFAULT_PARAMETERS = {
    'mode': MODE_WALL,
    'spawn_mode': 'spray',
    'caliber': DEFAULT_CALIBER,
    'viscosity': 0.2,
    'density': 50.0,
    'gravity': 1.0,
    'spawn_rate': 30.0,
    'spawn_velocity': 50.0,
    'spawn_direction': math.pi / 2,
    'spread_angle': 30.0,
    'particle_size': 3.0,
    'color': '#ff0000',
    'opacity': 0.9,
    'turbulence': 0.0,
    'material': 'custom',
    'surface_tension': 0.3,
    'time_scale': 1.0,
    'substeps': 3,
    'particle_lifetime': 10.0,
    'infinite_lifetime': False,
    'size_randomness': 0.5,
    'pooling_randomness': 0.2,
}

# Inclusive [low, high] clamp ranges for numeric parameters.
PARAM_RANGES = {
    'viscosity': (0.0, 1.0),
    'density': (1.0, 200.0),
    'gravity': (0.0, 5.0),
    'spawn_rate': (1.0, 200.0),
    'spawn_velocity': (0.0, 200.0),
    'spawn_direction': (-2 * math.pi, 2 * math.pi),
    'spread_angle': (0.0, 360.0),
    'particle_size': (0.0, 20.0),
    'opacity': (0.0, 1.0),
    'turbulence': (0.0, 1.0),
    'surface_tension': (0.0, 1.0),
    'time_scale': (0.0, 4.0),
    'substeps': (1, 20),
    'particle_lifetime': (0.1, 600.0),
    'size_randomness': (0.0, 1.0),
    'pooling_randomness': (0.0, 1.0),
}

# --- Visualization settings ---
FPS = 60
BACKGROUND_COLOR = (232, 228, 220)  # Off-white plaster
MASK_OVERLAY_COLOR = (40, 120, 255)
PARTICLE_DRAW_ALPHA = 200
