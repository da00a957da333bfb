from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

import numpy as np

from dcterrain.config import HEIGHT_RANGE_SAMPLES
from dcterrain.world.noise import NoiseConfig, hash01, make_fbm


def _smoothstep01(t: np.ndarray) -> np.ndarray:
    return t * t * (3.0 - 2.0 * t)


@dataclass(frozen=True)
class Footprint:
    """Axis-aligned horizontal square [x0, x0+size) x [z0, z0+size)."""

    x0: float
    z0: float
    size: float

    @classmethod
    def for_chunk(cls, cx: int, cz: int, chunk_size: float) -> "Footprint":
        return cls(x0=cx * chunk_size, z0=cz * chunk_size, size=chunk_size)


@dataclass(frozen=True)
class HeightRange:
    min_y: float
    max_y: float
    feature_mask: float


class DensityField(Protocol):
    """Scalar field, negative = solid. Must be deterministic."""

    def density(self, points: np.ndarray, baseline: float) -> np.ndarray: ...

    def height_range(self, footprint: Footprint, baseline: float) -> HeightRange: ...


@dataclass(frozen=True)
class MountainProfile:
    mask: np.ndarray
    height: np.ndarray
    base: np.ndarray
    peak: np.ndarray
    bottom: np.ndarray


@dataclass
class TerrainField:
    """Gently rolling ground with sparse hills and masked ridge mountains.

    density(p) = p.y - height(p.x, p.z), so the field is a heightmap expressed
    as a signed distance along Y.
    """

    seed: int
    mode: str = "fast"  # "fast" | "simplex"

    # Ground fBm
    ground_amp: float = 4.0
    ground_freq: float = 0.02

    # Sparse hills (jittered one-per-cell bumps)
    hill_spacing: float = 420.0
    hill_radius: float = 120.0
    hill_height: float = 28.0
    hill_chance: float = 0.6

    # Mountain mask
    mask_freq: float = 0.0012
    mask_octaves: int = 4
    mask_gain: float = 0.48
    mask_threshold: float = 0.38
    mask_blend_width: float = 0.18
    mask_sharpness: float = 1.7

    # Mountain height
    base_lift: float = 140.0
    vertical_scale: float = 420.0
    ridge_freq: float = 0.0035
    ridge_octaves: int = 4
    ridge_gain: float = 0.46
    ridge_lacunarity: float = 2.2
    ridge_sharpness: float = 1.4
    sharp_exponent: float = 2.15
    foot_drop: float = 36.0
    base_sink: float = 18.0

    def __post_init__(self) -> None:
        self._ground = make_fbm(self.mode, self.seed, NoiseConfig(octaves=3, base_freq=self.ground_freq, gain=0.5))
        self._mask = make_fbm(
            self.mode,
            self.seed + 1709,
            NoiseConfig(octaves=self.mask_octaves, base_freq=self.mask_freq, gain=self.mask_gain, lacunarity=2.13),
        )
        self._ridge = make_fbm(
            self.mode,
            self.seed + 3301,
            NoiseConfig(
                octaves=self.ridge_octaves,
                base_freq=self.ridge_freq,
                gain=self.ridge_gain,
                lacunarity=self.ridge_lacunarity,
            ),
        )

    def _hill_bump(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        ix = np.floor(x / self.hill_spacing).astype(np.int64)
        iz = np.floor(z / self.hill_spacing).astype(np.int64)
        gate = hash01(self.seed + 11, ix, iz) > (1.0 - self.hill_chance)
        cx = (ix + hash01(self.seed + 33, ix, iz)) * self.hill_spacing
        cz = (iz + hash01(self.seed + 55, ix, iz)) * self.hill_spacing
        dist = np.hypot(x - cx, z - cz)
        t = np.clip(1.0 - dist / self.hill_radius, 0.0, 1.0)
        return np.where(gate, _smoothstep01(t) * self.hill_height, 0.0)

    def base_height(self, x: np.ndarray, z: np.ndarray, baseline: float) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        return baseline + self._ground.grid(x, z) * self.ground_amp + self._hill_bump(x, z)

    def mask_value(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        total = 0.5 + 0.5 * self._mask.grid(x, z)
        width = max(0.001, self.mask_blend_width)
        normalized = np.clip((total - self.mask_threshold) / width, 0.0, 1.0)
        return normalized ** self.mask_sharpness

    def profile(self, x: np.ndarray, z: np.ndarray, baseline: float) -> MountainProfile:
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        ground = self.base_height(x, z, baseline)
        mask = self.mask_value(x, z)

        ridge = np.clip(self._ridge.ridged(x, z, sharpness=self.ridge_sharpness), 0.0, 1.0)
        ridge_pow = ridge ** max(1.0, self.sharp_exponent)
        peak = ground + self.base_lift + self.vertical_scale * ridge_pow
        base = ground - self.base_sink * mask
        height = base + (peak - base) * np.clip(mask, 0.0, 1.0) ** 0.85

        flat = mask <= 0.0
        return MountainProfile(
            mask=mask,
            height=np.where(flat, ground, height),
            base=np.where(flat, ground, base),
            peak=np.where(flat, ground, peak),
            bottom=np.where(flat, ground, base) - self.foot_drop,
        )

    def height_grid(self, x: np.ndarray, z: np.ndarray, baseline: float) -> np.ndarray:
        return self.profile(x, z, baseline).height

    def height_at(self, x: float, z: float, baseline: float) -> float:
        return float(self.height_grid(np.array([x]), np.array([z]), baseline)[0])

    def density(self, points: np.ndarray, baseline: float) -> np.ndarray:
        p = np.asarray(points, dtype=np.float64)
        return p[..., 1] - self.height_grid(p[..., 0], p[..., 2], baseline)

    def height_range(self, footprint: Footprint, baseline: float) -> HeightRange:
        f = (np.arange(HEIGHT_RANGE_SAMPLES, dtype=np.float64) + 0.5) / HEIGHT_RANGE_SAMPLES
        gx, gz = np.meshgrid(footprint.x0 + f * footprint.size, footprint.z0 + f * footprint.size, indexing="xy")
        prof = self.profile(gx, gz, baseline)
        return HeightRange(
            min_y=float(prof.bottom.min()),
            max_y=float(prof.peak.max()),
            feature_mask=float(prof.mask.max()),
        )
