import math

import pytest

from conftest import FlatField, PeakField
from dcterrain.config import StreamSettings, TerrainConfig
from dcterrain.world.planner import ChunkJob, JobKey, JobPlanner, estimate_cost, flat_dims, job_order, split_job

SETTINGS = StreamSettings(voxel_size=4.0, cells_per_axis=16, y_cells=8)


def test_estimate_cost():
    assert estimate_cost(10, 20, 10) == (4000, 11 * 21 * 11)


def test_flat_dims_scale_with_factor():
    assert flat_dims(1.0, 64, 20) == (64, 20, 64)
    assert flat_dims(4.0, 64, 20) == (16, 5, 16)
    assert flat_dims(100.0, 64, 20) == (2, 2, 2)


def test_job_key_string_form():
    assert str(JobKey(3, -2)) == "3:0:-2"
    assert str(JobKey(3, -2, band=1, tile=103)) == "3:1:-2:103"
    assert str(JobKey(3, -2, band=1, tile=103, segment=2)) == "3:1:-2:103:2"
    assert JobKey(1, 2, 1, 100, 0) == JobKey(1, 2, band=1, tile=100)


@pytest.mark.parametrize("lod", [0, 1, 2, 3])
def test_flat_footprint_is_a_single_job(lod):
    planner = JobPlanner(FlatField(), SETTINGS, TerrainConfig())
    jobs = planner.plan(2, -5, lod, 1.0 + lod)
    assert len(jobs) == 1
    job = jobs[0]
    assert job.key == JobKey(2, -5)
    assert job.band is None
    assert job.origin == (2 * SETTINGS.chunk_size, 0.0, -5 * SETTINGS.chunk_size)
    # spans the whole footprint
    assert job.dims[0] * job.voxel_size == pytest.approx(SETTINGS.chunk_size)
    assert (job.est_tris, job.est_verts) == estimate_cost(*job.dims)


def test_planning_is_idempotent():
    planner = JobPlanner(PeakField(), SETTINGS, TerrainConfig())
    assert planner.plan(1, 1, 0, 1.0) == planner.plan(1, 1, 0, 1.0)


def test_feature_footprint_uses_all_bands_top_down():
    terrain = TerrainConfig()
    jobs = JobPlanner(PeakField(0.0, 600.0), SETTINGS, terrain).plan(0, 0, 0, 1.0)
    assert len(jobs) >= 3
    tops = [j.top_y for j in jobs]
    assert all(a >= b for a, b in zip(tops, tops[1:]))
    assert {j.band.name for j in jobs} == {"Summit", "Mid", "Base"}
    assert len({j.key for j in jobs}) == len(jobs)
    for j in jobs:
        assert j.est_tris <= terrain.job_tri_cap
        assert j.est_verts <= terrain.job_vert_cap
        assert j.priority == terrain.band_priority[j.band.name]


def test_last_band_reaches_the_sampled_minimum():
    jobs = JobPlanner(PeakField(-37.0, 600.0), SETTINGS, TerrainConfig()).plan(0, 0, 0, 1.0)
    assert min(j.origin[1] for j in jobs) <= -37.0
    assert max(j.top_y for j in jobs) >= 600.0


def test_tiles_follow_lod():
    terrain = TerrainConfig(tiles_per_lod={0: 2, 1: 1})
    near = JobPlanner(PeakField(0.0, 100.0), SETTINGS, terrain).plan(0, 0, 0, 1.0)
    far = JobPlanner(PeakField(0.0, 100.0), SETTINGS, terrain).plan(0, 0, 1, 2.0)
    summit_near = [j for j in near if j.key.band == 1]
    summit_far = [j for j in far if j.key.band == 1]
    assert len(summit_near) == 4
    assert len(summit_far) == 1
    assert {j.key.tile for j in summit_near} == {100, 101, 102, 103}
    # tiles cover the footprint edge to edge
    xs = sorted({j.origin[0] for j in summit_near})
    assert xs == [0.0, SETTINGS.chunk_size / 2]


def test_simplify_coarsens_new_plans():
    planner = JobPlanner(PeakField(0.0, 300.0), SETTINGS, TerrainConfig())
    normal = planner.plan(0, 0, 0, 1.0)
    coarse = planner.plan(0, 0, 0, 1.0, simplify=True)
    assert sum(j.est_tris for j in coarse) < sum(j.est_tris for j in normal)
    assert coarse[0].edge_length > normal[0].edge_length


def _tile_job(dims=(10, 20, 10)):
    tris, verts = estimate_cost(*dims)
    return ChunkJob(
        key=JobKey(0, 0, band=1, tile=100),
        origin=(0.0, 0.0, 0.0),
        dims=dims,
        voxel_size=1.0,
        lod=0,
        est_tris=tris,
        est_verts=verts,
        priority=1,
    )


def test_oversized_tile_is_sliced_into_segments():
    job = _tile_job()
    cap = job.est_tris / 2.4  # fits 8 cell layers
    segments = split_job(job, cap, math.inf, 2)

    assert len(segments) == math.ceil(20 / 6)
    assert [s.segment for s in segments] == [0, 1, 2, 3]
    tops = [s.top_y for s in segments]
    assert all(a > b for a, b in zip(tops, tops[1:]))
    assert tops[0] == pytest.approx(job.top_y)
    assert segments[-1].origin[1] == pytest.approx(0.0)
    for s in segments:
        assert s.est_tris <= cap
        assert s.dims[1] <= 8
        assert s.key == job.key._replace(segment=s.segment)
    # consecutive segments overlap
    for upper, lower in zip(segments, segments[1:]):
        assert lower.top_y > upper.origin[1]


def test_vertex_cap_also_slices():
    job = _tile_job()
    segments = split_job(job, math.inf, 11 * 11 * 6, 1)
    assert len(segments) > 1
    assert all(s.est_verts <= 11 * 11 * 6 for s in segments)


def test_job_under_caps_is_not_split():
    job = _tile_job()
    assert split_job(job, job.est_tris, job.est_verts, 2) == [job]


def test_job_order_sorts_by_top_then_segment_then_priority():
    a = _tile_job()
    b = ChunkJob(JobKey(0, 0, 2, 200), (0.0, 0.0, 0.0), (10, 20, 10), 1.0, 0, 1, 1, priority=2)
    c = ChunkJob(JobKey(0, 0, 1, 101), (0.0, 10.0, 0.0), (10, 20, 10), 1.0, 0, 1, 1, priority=1)
    assert sorted([a, b, c], key=job_order) == [c, a, b]


def test_short_feature_range_still_gets_every_band():
    terrain = TerrainConfig()
    jobs = JobPlanner(PeakField(0.0, 60.0), SETTINGS, terrain).plan(0, 0, 2, 1.0)
    assert len(jobs) >= len(terrain.bands)
    assert [j.band.name for j in jobs] == ["Summit", "Mid", "Base"]
    for j in jobs:
        assert j.dims[1] >= 2 + terrain.band_overlap_cells
    bottoms = [j.origin[1] for j in jobs]
    assert all(a > b for a, b in zip(bottoms, bottoms[1:]))
    assert jobs[0].top_y >= 60.0
