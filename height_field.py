# height_field.py
"""
Coarse height-field substrate for the grid-driven modes.

A HeightField covers the canvas at GRID_SCALE cells per pixel. Liquid
depth moves between axis neighbours by local flux exchange that never
creates or destroys mass; only emitter injection and mask-blocked cells
change the total. Static roughness and permeability fields are derived
from noise once per reset or resize.
"""
import logging
import math
import numpy as np
from numba import jit

from noise import noise, fbm
from constants import (
    GRID_SCALE, GRID_MASS_THRESHOLD, FORMATION_MAX_HEIGHT, FORMATION_SHEET_COLUMNS, FORMATION_FRAME_COUNT,
    FORMATION_FPS, FALLBACK_FRAME_SIZE
)

# --- Data Contracts ---
#
# class HeightField:
#   - __init__(self, width: int, height: int, scale: float = GRID_SCALE):
#     - grid, next_grid, roughness, permeability: (GH, GW) float32 with
#       GW = ceil(width * scale), GH = ceil(height * scale).
#   - rebuild_static_fields(offset: int, pooling_randomness: float) -> None
#   - inject(gx, gy, radius, amount, max_fill, open_cells) -> None
#     - Adds `amount` to every open cell of the disc, capped at max_fill.
#   - diffuse_smart(dt, open_cells, pooling_randomness, surface_tension)
#   - diffuse_experimental(dt, open_cells, viscosity)
#     - Invariants: Absent blocked cells, sum(grid) is unchanged.
#   - grow_formation(...) -> None: lerps heights toward a sprite frame.


@jit(nopython=True)
def _build_static_fields(roughness, permeability, offset, pooling_randomness):
    h, w = roughness.shape
    for y in range(h):
        for x in range(w):
            nx = x * 0.05
            ny = y * 0.05
            val = noise(nx, ny, offset)
            val += noise(nx * 2.0, ny * 2.0, offset) * 0.5
            val += noise(nx * 4.0, ny * 4.0, offset) * 0.25
            roughness[y, x] = val / 1.75
            p = fbm(x * 2.0, y * 2.0, 2, offset, pooling_randomness) * 0.5 + 0.5
            permeability[y, x] = min(1.0, max(0.0, p))


@jit(nopython=True)
def _inject_disc(grid, open_cells, gx, gy, radius, amount, max_fill):
    h, w = grid.shape
    r_sq = radius * radius
    for j in range(-radius, radius + 1):
        y = gy + j
        if y < 0 or y >= h:
            continue
        for i in range(-radius, radius + 1):
            x = gx + i
            if x < 0 or x >= w or i * i + j * j > r_sq:
                continue
            if open_cells[y, x] == 0:
                continue
            value = grid[y, x] + amount
            if value > max_fill:
                value = max_fill
            if grid[y, x] < max_fill:
                grid[y, x] = value


@jit(nopython=True)
def _smart_diffuse(grid, next_grid, permeability, open_cells, dt,
                   pooling_randomness, surface_tension, threshold):
    h, w = grid.shape
    perm_power = 3.0 * (1.1 - pooling_randomness)
    base_speed = 40.0 * dt
    tension_limit = surface_tension * 0.01
    offsets_y = (-1, 1, 0, 0)
    offsets_x = (0, 0, -1, 1)
    fluxes = np.zeros(4)

    for y in range(1, h - 1):
        for x in range(1, w - 1):
            val = grid[y, x]
            if val <= threshold:
                continue
            if open_cells[y, x] == 0:
                next_grid[y, x] = 0.0
                continue

            total = 0.0
            for k in range(4):
                fluxes[k] = 0.0
                ny = y + offsets_y[k]
                nx = x + offsets_x[k]
                n_val = grid[ny, nx]
                if n_val >= val or open_cells[ny, nx] == 0:
                    continue
                perm = permeability[ny, nx] ** perm_power
                if n_val < 0.001 and val < tension_limit and perm < 0.3:
                    continue
                if n_val < val * 0.95:
                    flow = base_speed * (0.2 + perm * 1.5)
                    if n_val < 0.05:
                        flow *= 2.5
                else:
                    flow = (val - n_val) * base_speed
                fluxes[k] = flow
                total += flow

            scale = 1.0
            if total > val:
                scale = val / total
            for k in range(4):
                if fluxes[k] > 0.0:
                    amount = fluxes[k] * scale
                    next_grid[y + offsets_y[k], x + offsets_x[k]] += amount
                    next_grid[y, x] -= amount


@jit(nopython=True)
def _experimental_diffuse(grid, next_grid, open_cells, dt, viscosity):
    h, w = grid.shape
    flow_speed = 200.0 * dt * (1.0 - viscosity * 0.5)
    offsets_y = (0, 0, -1, 1)
    offsets_x = (-1, 1, 0, 0)
    flows = np.zeros(4)

    for y in range(1, h - 1):
        for x in range(1, w - 1):
            val = grid[y, x]
            if val <= 0.001:
                continue
            if open_cells[y, x] == 0:
                next_grid[y, x] = 0.0
                continue

            total = 0.0
            for k in range(4):
                flows[k] = 0.0
                ny = y + offsets_y[k]
                nx = x + offsets_x[k]
                if open_cells[ny, nx] == 0:
                    continue
                diff = val - grid[ny, nx]
                if diff > 0.0:
                    flows[k] = diff * flow_speed
                    total += flows[k]

            if total > 0.0:
                if total > val:
                    f = val / total
                    for k in range(4):
                        flows[k] *= f
                for k in range(4):
                    if flows[k] > 0.0:
                        next_grid[y + offsets_y[k], x + offsets_x[k]] += flows[k]
                        next_grid[y, x] -= flows[k]


@jit(nopython=True)
def _project_formation(grid, open_cells, sheet, gx, gy, radius, rotation,
                       frame, columns, dt):
    h, w = grid.shape
    sheet_h, sheet_w = sheet.shape
    sub_w = sheet_w / columns
    sub_h = sheet_h / columns
    f_row = frame // columns
    f_col = frame % columns
    cos_r = math.cos(rotation)
    sin_r = math.sin(rotation)

    for dy in range(-radius, radius + 1):
        y = gy + dy
        if y < 0 or y >= h:
            continue
        for dx in range(-radius, radius + 1):
            x = gx + dx
            if x < 0 or x >= w or open_cells[y, x] == 0:
                continue
            lx = dx / radius
            ly = dy / radius
            rx = lx * cos_r - ly * sin_r
            ry = lx * sin_r + ly * cos_r
            if rx < -1.0 or rx > 1.0 or ry < -1.0 or ry > 1.0:
                continue
            u = rx * 0.5 + 0.5
            v = ry * 0.5 + 0.5
            tx = min(sheet_w - 1, max(0, int(np.floor((f_col + u) * sub_w))))
            ty = min(sheet_h - 1, max(0, int(np.floor((f_row + v) * sub_h))))
            shape_val = sheet[ty, tx] / 255.0
            if shape_val > 0.1:
                target = shape_val * FORMATION_MAX_HEIGHT
                current = grid[y, x]
                if current < target:
                    grid[y, x] = current + (target - current) * 10.0 * dt


def fallback_formation_sheet() -> np.ndarray:
    """
    Synthetic 6x6 sprite sheet of growing discs.

    Frame k holds a filled disc of radius 0.45 * frame_size * k / 36.
    """
    size = FALLBACK_FRAME_SIZE
    cols = FORMATION_SHEET_COLUMNS
    sheet = np.zeros((size * cols, size * cols), dtype=np.uint8)
    yy, xx = np.mgrid[0:size, 0:size]
    centre = size / 2
    dist_sq = (xx - centre) ** 2 + (yy - centre) ** 2
    for frame in range(FORMATION_FRAME_COUNT):
        radius = size * 0.45 * frame / FORMATION_FRAME_COUNT
        fy, fx = divmod(frame, cols)
        tile = sheet[fy * size:(fy + 1) * size, fx * size:(fx + 1) * size]
        tile[dist_sq < radius * radius] = 255
    return sheet


def decode_formation_sheet(raster) -> np.ndarray:
    """
    Validates a decoded formation sprite sheet.

    Accepts a 2D luminance buffer or (H, W, C) with the red channel first.
    Anything unusable yields the synthetic fallback sheet.
    """
    try:
        data = np.asarray(raster)
        if data.ndim == 3:
            data = data[..., 0]
        if data.ndim != 2 or min(data.shape) < FORMATION_SHEET_COLUMNS:
            raise ValueError(f"expected a 2D sheet of at least 6x6, got shape {data.shape}")
        if not np.issubdtype(data.dtype, np.number):
            raise ValueError(f"non-numeric dtype {data.dtype}")
        return np.ascontiguousarray(np.clip(data, 0, 255).astype(np.uint8))
    except (TypeError, ValueError) as e:
        logging.warning(f"Formation raster rejected ({e}). Using the synthetic formation.")
        return fallback_formation_sheet()


class HeightField:
    """
    Liquid depth grid plus its static roughness and permeability fields.
    """
    def __init__(self, width: int, height: int, scale: float = GRID_SCALE):
        self.scale = scale
        self.width = int(math.ceil(width * scale))
        self.height = int(math.ceil(height * scale))
        shape = (self.height, self.width)
        self.grid = np.zeros(shape, dtype=np.float32)
        self.next_grid = np.zeros(shape, dtype=np.float32)
        self.roughness = np.zeros(shape, dtype=np.float32)
        self.permeability = np.zeros(shape, dtype=np.float32)
        logging.debug(f"Height field allocated: {self.width}x{self.height} cells.")

    def clear(self) -> None:
        self.grid.fill(0.0)
        self.next_grid.fill(0.0)

    def rebuild_static_fields(self, offset: int, pooling_randomness: float) -> None:
        """Regenerates roughness and permeability from the run's noise offset."""
        _build_static_fields(self.roughness, self.permeability, offset, pooling_randomness)
        logging.debug(f"Static fields rebuilt with noise offset {offset}.")

    def to_cell(self, x: float, y: float):
        return int(math.floor(x * self.scale)), int(math.floor(y * self.scale))

    def begin_step(self) -> None:
        """Starts a double-buffered step: next_grid mirrors grid."""
        self.next_grid[...] = self.grid

    def end_step(self) -> None:
        self.grid[...] = self.next_grid

    def inject(self, gx: int, gy: int, radius: int, amount: float,
               max_fill: float, open_cells: np.ndarray) -> None:
        """Adds liquid to the next buffer in a disc of cells."""
        _inject_disc(self.next_grid, open_cells, gx, gy, int(radius), amount, max_fill)

    def diffuse_smart(self, dt: float, open_cells: np.ndarray,
                      pooling_randomness: float, surface_tension: float) -> None:
        """
        Permeability-driven spreading: a constant-rate front while the
        neighbour is still far below, plain equalization near level.
        Reads grid, writes next_grid.
        """
        _smart_diffuse(
            self.grid, self.next_grid, self.permeability, open_cells, dt,
            pooling_randomness, surface_tension, GRID_MASS_THRESHOLD
        )

    def diffuse_experimental(self, dt: float, open_cells: np.ndarray, viscosity: float) -> None:
        """Gradient flow proportional to height difference. Reads grid, writes next_grid."""
        _experimental_diffuse(self.grid, self.next_grid, open_cells, dt, viscosity)

    def grow_formation(self, sheet: np.ndarray, gx: int, gy: int, radius: int,
                       rotation: float, age: float, dt: float,
                       open_cells: np.ndarray) -> None:
        """Lerps heights under one emitter toward its current sprite frame."""
        if radius <= 0:
            return
        frame = min(FORMATION_FRAME_COUNT - 1, int(math.floor(age * FORMATION_FPS)))
        _project_formation(
            self.grid, open_cells, sheet, gx, gy, int(radius), rotation,
            frame, FORMATION_SHEET_COLUMNS, dt
        )

    def total(self) -> float:
        return float(self.grid.sum(dtype=np.float64))

    def view(self) -> np.ndarray:
        v = self.grid.view()
        v.flags.writeable = False
        return v
