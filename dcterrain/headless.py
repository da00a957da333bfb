from __future__ import annotations

import logging
import time

from dcterrain.config import StreamSettings, TerrainConfig
from dcterrain.world.scheduler import SchedulerStats
from dcterrain.world.sink import MemorySink
from dcterrain.world.world import StreamWorld

log = logging.getLogger(__name__)


def run_simulation(
    *,
    seed: int,
    noise_mode: str,
    settings: StreamSettings,
    terrain: TerrainConfig,
    ticks: int,
    speed: float,
    update_interval: float,
    log_every: int,
    realtime: bool = False,
) -> SchedulerStats:
    """Fly a viewer along +Z without a window and log streaming statistics.

    With `realtime` the loop sleeps between ticks; otherwise it runs as fast as
    it can and workers simply fall behind.
    """
    sink = MemorySink()
    world = StreamWorld(sink, seed=seed, noise_mode=noise_mode, settings=settings, terrain=terrain)
    x = z = settings.chunk_size * 0.5
    stats = world.scheduler.snapshot()
    t0 = time.perf_counter()
    try:
        for i in range(int(ticks)):
            stats = world.update(x, z)
            if log_every > 0 and (i % log_every == 0 or i == ticks - 1):
                log.info("z=%.0f %s", z, stats.summary())
            z += speed * update_interval
            if realtime:
                time.sleep(update_interval)
    finally:
        world.shutdown()

    mesh = sink.total()
    log.info(
        "done: %d ticks in %.2fs, %d dispatched, %d committed, %d stale, %d failed, %d evicted, %d held upgrades",
        stats.ticks,
        time.perf_counter() - t0,
        stats.total_dispatched,
        stats.total_committed,
        stats.stale_results,
        stats.failed_results,
        stats.evictions,
        stats.held_upgrades,
    )
    log.info("resident meshes: %d (%d tris, %d verts)", len(sink.meshes), mesh.tris, mesh.verts)
    return stats
