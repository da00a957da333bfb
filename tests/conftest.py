import math
import queue

import numpy as np
import pytest

from dcterrain.config import LODBand, StreamSettings
from dcterrain.world.density import HeightRange
from dcterrain.world.extractor import SurfaceMesh
from dcterrain.world.workers import ExtractResult, WorkerPool


class FlatField:
    """Level ground at a fixed height; never has features."""

    def __init__(self, height=10.0):
        self.height = float(height)

    def density(self, points, baseline):
        return np.asarray(points, dtype=np.float64)[..., 1] - self.height

    def height_range(self, footprint, baseline):
        return HeightRange(self.height, self.height, 0.0)


class PeakField:
    """Reports a fixed height range with a full feature mask."""

    def __init__(self, min_y=0.0, max_y=600.0, mask=1.0):
        self.min_y = float(min_y)
        self.max_y = float(max_y)
        self.mask = float(mask)

    def density(self, points, baseline):
        p = np.asarray(points, dtype=np.float64)
        return p[..., 1] - (self.min_y + self.max_y) * 0.5

    def height_range(self, footprint, baseline):
        return HeightRange(self.min_y, self.max_y, self.mask)


class FakeClock:
    def __init__(self, t=0.0):
        self.t = float(t)

    def __call__(self):
        return self.t

    def advance(self, dt):
        self.t += float(dt)
        return self.t


def tiny_mesh():
    return SurfaceMesh(
        vertices=np.array([[0, 0, 0], [1, 0, 0], [0, 0, 1]], dtype=np.float32),
        triangles=np.array([[0, 1, 2]], dtype=np.int32),
    )


def take_tasks(pool):
    """Pull every queued task off an unstarted pool."""
    tasks = []
    while True:
        try:
            tasks.append(pool.task_q.get_nowait())
        except queue.Empty:
            return tasks


def finish(pool, task, mesh=None, error=None):
    if error is None and mesh is None:
        mesh = tiny_mesh()
    pool.out_q.put(ExtractResult(task.slot, task.token, task.job, mesh, error=error))


def make_pool(size=2):
    # threads are never started; tests play the worker role via take_tasks/finish
    return WorkerPool(size, lambda job: tiny_mesh(), start=False)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def small_settings():
    # chunk_size 64; Euclidean LOD metric: within 40 units of a chunk centre -> LOD 0
    return StreamSettings(
        voxel_size=4.0,
        cells_per_axis=16,
        y_cells=8,
        render_radius=0,
        preload_edge=0.0,
        max_workers=2,
        lod_bands=(LODBand(40.0, 1.0), LODBand(math.inf, 2.0)),
        cooldown_seconds=5.0,
        stall_warning_seconds=0.0,
    )
