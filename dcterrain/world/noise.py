from __future__ import annotations

from dataclasses import dataclass
import numpy as np
from opensimplex import OpenSimplex


@dataclass(frozen=True)
class NoiseConfig:
    octaves: int = 3
    lacunarity: float = 2.0
    gain: float = 0.5
    base_freq: float = 0.02
    amplitude: float = 1.0


def hash01(seed: int, ix: np.ndarray, iz: np.ndarray) -> np.ndarray:
    """Deterministic hash -> [0,1) for integer grids (vectorized)."""
    x = (np.asarray(ix).astype(np.uint32) * np.uint32(374761393)) ^ (np.asarray(iz).astype(np.uint32) * np.uint32(668265263)) ^ np.uint32(seed & 0xFFFFFFFF)
    x ^= (x >> np.uint32(13))
    x *= np.uint32(1274126177)
    x ^= (x >> np.uint32(16))
    return (x.astype(np.float64) / float(2**32))


class FastValueNoise2D:
    """Fast 2D value noise with fully vectorized numpy implementation.

    Uses an integer hash on lattice points and smooth interpolation.
    Deterministic for a given seed.
    """

    def __init__(self, seed: int) -> None:
        self.seed = int(seed)

    @staticmethod
    def _fade(t: np.ndarray) -> np.ndarray:
        # smootherstep
        return t * t * t * (t * (t * 6 - 15) + 10)

    def noise(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        """Signed value noise in [-1, 1)."""
        xi0 = np.floor(x).astype(np.int64)
        zi0 = np.floor(z).astype(np.int64)
        xi1 = xi0 + 1
        zi1 = zi0 + 1

        u = self._fade(x - xi0)
        v = self._fade(z - zi0)

        a = hash01(self.seed, xi0, zi0)
        b = hash01(self.seed, xi1, zi0)
        c = hash01(self.seed, xi0, zi1)
        d = hash01(self.seed, xi1, zi1)

        ab = a + (b - a) * u
        cd = c + (d - c) * u
        return (ab + (cd - ab) * v) * 2.0 - 1.0


class _FBM:
    """Shared octave loops; subclasses provide `_octave` returning [-1,1] noise."""

    def __init__(self, seed: int, cfg: NoiseConfig | None = None) -> None:
        self.seed = int(seed)
        self.cfg = cfg or NoiseConfig()

    def _octave(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def grid(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        freq = self.cfg.base_freq
        amp = 1.0
        total = np.zeros(np.broadcast(x, z).shape, dtype=np.float64)
        norm = 0.0
        for _ in range(self.cfg.octaves):
            total += self._octave(x * freq, z * freq) * amp
            norm += amp
            freq *= self.cfg.lacunarity
            amp *= self.cfg.gain
        return total / max(norm, 1e-9) * self.cfg.amplitude

    def ridged(self, x: np.ndarray, z: np.ndarray, *, sharpness: float) -> np.ndarray:
        """Ridged multifractal; each octave is weighted by the previous one."""
        x = np.asarray(x, dtype=np.float64)
        z = np.asarray(z, dtype=np.float64)
        sharp = max(0.01, float(sharpness))
        freq = self.cfg.base_freq
        amp = 1.0
        shape = np.broadcast(x, z).shape
        total = np.zeros(shape, dtype=np.float64)
        weight = np.ones(shape, dtype=np.float64)
        for _ in range(self.cfg.octaves):
            n = 1.0 - np.abs(self._octave(x * freq, z * freq))
            n = n * n * weight
            total += n * amp
            weight = np.clip(n * sharp, 0.0, 1.0)
            freq *= self.cfg.lacunarity
            amp *= self.cfg.gain
        return total * self.cfg.amplitude


class FBMFastNoise(_FBM):
    def __init__(self, seed: int, cfg: NoiseConfig | None = None) -> None:
        super().__init__(seed, cfg)
        self.base = FastValueNoise2D(seed)

    def _octave(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        return self.base.noise(x, z)


class FBMSimplexNoise(_FBM):
    """Simplex-based fBm. Slower (per-point calls), kept for quality."""

    def __init__(self, seed: int, cfg: NoiseConfig | None = None) -> None:
        super().__init__(seed, cfg)
        self._simp = OpenSimplex(self.seed)
        self._noise2 = np.vectorize(self._simp.noise2, otypes=[np.float64])

    def _octave(self, x: np.ndarray, z: np.ndarray) -> np.ndarray:
        return self._noise2(x, z)


def make_fbm(mode: str, seed: int, cfg: NoiseConfig | None = None) -> _FBM:
    if mode == "simplex":
        return FBMSimplexNoise(seed, cfg)
    if mode == "fast":
        return FBMFastNoise(seed, cfg)
    raise ValueError(f"unknown noise mode {mode!r} (expected 'fast' or 'simplex')")
