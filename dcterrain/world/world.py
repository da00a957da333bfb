from __future__ import annotations

import logging
import time
from typing import Callable

from dcterrain.config import StreamSettings, TerrainConfig
from dcterrain.world.density import TerrainField
from dcterrain.world.scheduler import Scheduler, SchedulerStats
from dcterrain.world.sink import ResultSink
from dcterrain.world.workers import JobExtractor, WorkerPool

log = logging.getLogger(__name__)


class StreamWorld:
    """Terrain field, worker pool and scheduler wired together for one viewer."""

    def __init__(
        self,
        sink: ResultSink,
        *,
        seed: int,
        noise_mode: str = "fast",
        settings: StreamSettings | None = None,
        terrain: TerrainConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or StreamSettings()
        self.terrain = terrain or TerrainConfig()
        self.field = TerrainField(seed=int(seed), mode=str(noise_mode))
        self.pool = WorkerPool(self.settings.max_workers, JobExtractor(self.field, self.settings.baseline))
        self.scheduler = Scheduler(
            self.field,
            sink,
            self.pool,
            settings=self.settings,
            terrain=self.terrain,
            clock=clock,
        )
        log.info(
            "streaming: seed=%d noise=%s voxel=%.1f cells=%d y=%d radius=%d preload=%.0f workers=%d",
            seed,
            noise_mode,
            self.settings.voxel_size,
            self.settings.cells_per_axis,
            self.settings.y_cells,
            self.settings.render_radius,
            self.settings.preload_edge,
            self.settings.max_workers,
        )

    def height_at(self, x: float, z: float) -> float:
        return self.field.height_at(x, z, self.settings.baseline)

    def update(self, x: float, z: float) -> SchedulerStats:
        self.scheduler.tick(x, z)
        return self.scheduler.snapshot()

    def shutdown(self) -> None:
        self.scheduler.shutdown()
