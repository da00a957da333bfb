from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Mapping

# App
APP_VERSION = "0.4.0"

# Window (viewer)
WINDOW_WIDTH = 1280
WINDOW_HEIGHT = 720
FPS_CAP = 0  # 0 = uncapped

# Rendering
FOV_DEG = 70.0
NEAR = 0.5
FAR = 4000.0
FOG_START = 900.0
FOG_END = 2400.0
LIGHT_DIR = (0.35, 0.9, 0.2)  # will be normalized in shader
HUD_REFRESH_SECONDS = 0.25

# Fly camera (viewer)
DEFAULT_FLY_SPEED = 60.0  # world units / sec
FAST_MULTIPLIER = 4.0
TURN_RATE = 1.6  # rad / sec
CLIMB_SPEED = 40.0
MIN_CLEARANCE = 6.0  # above terrain
DEFAULT_EYE_HEIGHT = 40.0
HEIGHT_SMOOTH_K = 4.0

# Headless simulation
DEFAULT_SIM_TICKS = 200
DEFAULT_SIM_SPEED = 40.0  # world units / sec along +Z
DEFAULT_LOG_EVERY = 20  # ticks
DEFAULT_LOG_LEVEL = "INFO"

# Terrain density
DEFAULT_SEED = 91531
DEFAULT_NOISE = "fast"
GROUND_RAISE_VOX = 2.0  # ground baseline in base voxels above y=0

# Streaming
DEFAULT_VOXEL_SIZE = 4.0
DEFAULT_CELLS_PER_AXIS = 64
DEFAULT_Y_CELLS = 20  # flat-terrain slab height in base cells
DEFAULT_RENDER_RADIUS = 10  # rings
DEFAULT_PRELOAD_EDGE = 50.0  # world units from a chunk face
DEFAULT_MAX_WORKERS = 4
DEFAULT_UPDATE_INTERVAL = 0.15  # seconds between ticks
DEFAULT_COOLDOWN_SECONDS = 6.0
DEFAULT_STALL_WARNING_SECONDS = 30.0

# (max ring distance, voxel factor); ascending
DEFAULT_LOD_BANDS = (
    (1.0, 4.0),
    (3.0, 6.0),
    (6.0, 8.0),
    (10.0, 12.0),
    (math.inf, 16.0),
)

# Surface extraction
SNAP_STEP = 6e-4
SIGN_EPS = 0.01
DEGENERATE_AREA2 = 5e-10

# Planner
FLAT_MASK_THRESHOLD = 0.01
HEIGHT_RANGE_SAMPLES = 3

# (name, nominal height, downward overlap in world units, height per LOD)
DEFAULT_VERTICAL_BANDS = (
    ("Summit", 160.0, 20.0, {0: 140.0, 1: 120.0, 2: 100.0, 3: 80.0}),
    ("Mid", 180.0, 22.0, {0: 170.0, 1: 150.0, 2: 120.0, 3: 90.0}),
    ("Base", 200.0, 18.0, {0: 200.0, 1: 180.0, 2: 140.0, 3: 100.0}),
)
DEFAULT_TILES_PER_LOD = {0: 2, 1: 2, 2: 1, 3: 1}
DEFAULT_BAND_OVERLAP_CELLS = 2
DEFAULT_SEGMENT_OVERLAP_CELLS = 1
DEFAULT_BAND_PRIORITY = {"Summit": 1, "Mid": 2, "Base": 3}
DEFAULT_MOUNTAIN_LOD_FACTOR = {0: 1.0, 1: 1.2, 2: 1.6, 3: 2.0}

# Budget
DEFAULT_GLOBAL_TRI_CAP = 520_000
DEFAULT_GLOBAL_VERT_CAP = 780_000
DEFAULT_JOB_TRI_CAP = 18_000
DEFAULT_JOB_VERT_CAP = 52_000
DEFAULT_THRESHOLD_SIMPLIFY = 0.78
DEFAULT_THRESHOLD_SKIP_LOWER_BANDS = 0.90
DEFAULT_THRESHOLD_DEFER = 0.97
DEFERRED_RETRY_MARGIN = 0.9

# Simplification
DEFAULT_BASE_EDGE_LENGTH = {0: 6.0, 1: 9.0, 2: 14.0, 3: 18.0}
DEFAULT_EDGE_LENGTH = 10.0
DEFAULT_PRESSURE_FACTOR = 1.5

# Shading hints
FLAT_SHADE_VERT_LIMIT = 55_000
LOD_COLORS = {
    0: (1.0, 0.0, 0.0),
    1: (0.0, 1.0, 0.0),
    2: (0.0, 0.0, 1.0),
}


@dataclass(frozen=True)
class LODBand:
    max_distance: float
    factor: float


@dataclass(frozen=True)
class BandSpec:
    """A named vertical stratum of a feature chunk."""

    name: str
    height: float
    overlap: float = 0.0
    lod_heights: Mapping[int, float] = field(default_factory=dict)

    def height_for(self, lod: int) -> float:
        return float(self.lod_heights.get(lod, self.height))


@dataclass(frozen=True)
class BudgetThresholds:
    simplify: float = DEFAULT_THRESHOLD_SIMPLIFY
    skip_lower_bands: float = DEFAULT_THRESHOLD_SKIP_LOWER_BANDS
    defer: float = DEFAULT_THRESHOLD_DEFER

    def __post_init__(self) -> None:
        if not (0.0 <= self.simplify < self.skip_lower_bands < self.defer <= 1.0):
            raise ValueError(
                f"pressure thresholds must be ascending ratios in [0,1], got "
                f"{self.simplify}, {self.skip_lower_bands}, {self.defer}"
            )


def _default_bands() -> tuple[BandSpec, ...]:
    return tuple(
        BandSpec(name=name, height=height, overlap=overlap, lod_heights=dict(lod_heights))
        for name, height, overlap, lod_heights in DEFAULT_VERTICAL_BANDS
    )


@dataclass(frozen=True)
class TerrainConfig:
    """Job decomposition and budget parameters."""

    bands: tuple[BandSpec, ...] = field(default_factory=_default_bands)
    tiles_per_lod: Mapping[int, int] = field(default_factory=lambda: dict(DEFAULT_TILES_PER_LOD))
    band_overlap_cells: int = DEFAULT_BAND_OVERLAP_CELLS
    segment_overlap_cells: int = DEFAULT_SEGMENT_OVERLAP_CELLS
    band_priority: Mapping[str, int] = field(default_factory=lambda: dict(DEFAULT_BAND_PRIORITY))
    mountain_lod_factor: Mapping[int, float] = field(default_factory=lambda: dict(DEFAULT_MOUNTAIN_LOD_FACTOR))
    flat_threshold: float = FLAT_MASK_THRESHOLD

    global_tri_cap: float = DEFAULT_GLOBAL_TRI_CAP
    global_vert_cap: float = DEFAULT_GLOBAL_VERT_CAP
    job_tri_cap: float = DEFAULT_JOB_TRI_CAP
    job_vert_cap: float = DEFAULT_JOB_VERT_CAP
    thresholds: BudgetThresholds = field(default_factory=BudgetThresholds)

    base_edge_length: Mapping[int, float] = field(default_factory=lambda: dict(DEFAULT_BASE_EDGE_LENGTH))
    pressure_factor: float = DEFAULT_PRESSURE_FACTOR

    def __post_init__(self) -> None:
        if not self.bands:
            raise ValueError("at least one vertical band is required")
        if self.band_overlap_cells < 0 or self.segment_overlap_cells < 0:
            raise ValueError("overlap cell counts must be >= 0")
        if self.pressure_factor < 1.0:
            raise ValueError("pressure_factor must be >= 1.0")

    def tiles_for(self, lod: int) -> int:
        return max(1, int(self.tiles_per_lod.get(lod, 1)))

    def edge_length_for(self, lod: int) -> float:
        return float(self.base_edge_length.get(lod, DEFAULT_EDGE_LENGTH))

    def priority_for(self, band_index: int, name: str) -> int:
        return int(self.band_priority.get(name, band_index))


def _default_lod_bands() -> tuple[LODBand, ...]:
    return tuple(LODBand(max_distance=d, factor=f) for d, f in DEFAULT_LOD_BANDS)


@dataclass(frozen=True)
class StreamSettings:
    voxel_size: float = DEFAULT_VOXEL_SIZE
    cells_per_axis: int = DEFAULT_CELLS_PER_AXIS
    y_cells: int = DEFAULT_Y_CELLS
    render_radius: int = DEFAULT_RENDER_RADIUS
    preload_edge: float = DEFAULT_PRELOAD_EDGE
    max_workers: int = DEFAULT_MAX_WORKERS
    lod_bands: tuple[LODBand, ...] = field(default_factory=_default_lod_bands)
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    stall_warning_seconds: float = DEFAULT_STALL_WARNING_SECONDS

    def __post_init__(self) -> None:
        if self.voxel_size <= 0 or self.cells_per_axis <= 0 or self.y_cells <= 0:
            raise ValueError("voxel_size, cells_per_axis and y_cells must be positive")
        if self.render_radius < 0:
            raise ValueError("render_radius must be >= 0")
        if self.max_workers < 1:
            raise ValueError("max_workers must be >= 1")
        if not self.lod_bands:
            raise ValueError("at least one LOD band is required")
        dists = [b.max_distance for b in self.lod_bands]
        if dists != sorted(dists):
            raise ValueError("LOD bands must be sorted by ascending max_distance")

    @property
    def chunk_size(self) -> float:
        return self.voxel_size * self.cells_per_axis

    @property
    def baseline(self) -> float:
        return self.voxel_size * GROUND_RAISE_VOX
