import numpy as np
import pytest

from dcterrain.world.density import Footprint, TerrainField
from dcterrain.world.noise import FBMFastNoise, NoiseConfig, hash01, make_fbm


def test_hash_is_deterministic_and_in_unit_range():
    ix, iz = np.meshgrid(np.arange(-20, 20), np.arange(-20, 20))
    a = hash01(5, ix, iz)
    assert np.array_equal(a, hash01(5, ix, iz))
    assert a.min() >= 0.0 and a.max() < 1.0
    assert not np.array_equal(a, hash01(6, ix, iz))


def test_unknown_noise_mode_rejected():
    with pytest.raises(ValueError):
        make_fbm("perlin", 1)


@pytest.mark.parametrize("mode", ["fast", "simplex"])
def test_fbm_is_deterministic(mode):
    x = np.linspace(-50.0, 50.0, 7)
    z = np.linspace(10.0, 90.0, 7)
    a = make_fbm(mode, 42).grid(x, z)
    b = make_fbm(mode, 42).grid(x, z)
    assert np.array_equal(a, b)
    assert np.all(np.abs(a) <= 1.0)


def test_ridged_is_non_negative():
    fbm = FBMFastNoise(3, NoiseConfig(octaves=4))
    r = fbm.ridged(np.linspace(0, 400, 50), np.linspace(0, 300, 50), sharpness=1.4)
    assert np.all(r >= 0.0)


def test_density_sign_follows_height():
    field = TerrainField(seed=7)
    h = field.height_at(100.0, -40.0, 8.0)
    below = field.density(np.array([[100.0, h - 1.0, -40.0]]), 8.0)
    above = field.density(np.array([[100.0, h + 1.0, -40.0]]), 8.0)
    assert below[0] < 0.0 < above[0]


def test_density_is_deterministic_across_instances():
    pts = np.random.default_rng(0).uniform(-500, 500, size=(64, 3))
    a = TerrainField(seed=11).density(pts, 8.0)
    b = TerrainField(seed=11).density(pts, 8.0)
    assert np.array_equal(a, b)


def test_flat_region_reports_ground_band():
    # mask threshold above anything the mask noise reaches -> no mountains
    field = TerrainField(seed=3, mask_threshold=2.0)
    r = field.height_range(Footprint.for_chunk(0, 0, 256.0), 8.0)
    assert r.feature_mask == 0.0
    assert r.min_y <= r.max_y
    assert r.max_y - r.min_y < 2 * (field.ground_amp + field.hill_height) + field.foot_drop


def test_mountain_region_spans_peak_and_foot():
    field = TerrainField(seed=3, mask_threshold=-1.0)
    r = field.height_range(Footprint.for_chunk(2, 5, 256.0), 8.0)
    assert r.feature_mask == pytest.approx(1.0)
    assert r.max_y >= 8.0 + field.base_lift - field.ground_amp
    assert r.min_y < r.max_y


def test_mask_defaults():
    field = TerrainField(seed=1)
    assert (field.mask_threshold, field.mask_blend_width, field.mask_sharpness) == (0.38, 0.18, 1.7)
