from __future__ import annotations

import enum
import itertools
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, Sequence, Set, Tuple

from dcterrain.config import LODBand, StreamSettings, TerrainConfig
from dcterrain.world.budget import Admission, BudgetController, BudgetState, PressureStage
from dcterrain.world.density import DensityField
from dcterrain.world.mesh import shading_hints
from dcterrain.world.planner import ChunkJob, JobKey, JobPlanner
from dcterrain.world.sink import ResultSink
from dcterrain.world.workers import ExtractResult, WorkerPool

log = logging.getLogger(__name__)

ChunkCoord = Tuple[int, int]


def ring_offsets(radius: int) -> Iterator[tuple[int, int, int]]:
    """Yield (dx, dz, ring) in Chebyshev-ring order, each ring walked from (-r, -r)."""
    yield 0, 0, 0
    for r in range(1, int(radius) + 1):
        for dx in range(-r, r + 1):
            yield dx, -r, r
        for dz in range(-r + 1, r + 1):
            yield r, dz, r
        for dx in range(r - 1, -r - 1, -1):
            yield dx, r, r
        for dz in range(r - 1, -r, -1):
            yield -r, dz, r


def choose_lod(bands: Sequence[LODBand], ring: int, distance: float, radius: int) -> int:
    # band thresholds small enough to be ring counts are compared against rings
    use_rings = bands[0].max_distance <= radius + 0.5
    metric = ring if use_rings else distance
    for i, band in enumerate(bands):
        if metric <= band.max_distance:
            return i
    return len(bands) - 1


def preload_offsets(lx: float, lz: float, chunk_size: float, edge: float) -> list[tuple[int, int]]:
    if edge <= 0:
        return []
    left = lx <= edge
    right = chunk_size - lx <= edge
    front = lz <= edge
    back = chunk_size - lz <= edge
    out = []
    if left:
        out.append((-1, 0))
    if right:
        out.append((1, 0))
    if front:
        out.append((0, -1))
    if back:
        out.append((0, 1))
    if left and front:
        out.append((-1, -1))
    if left and back:
        out.append((-1, 1))
    if right and front:
        out.append((1, -1))
    if right and back:
        out.append((1, 1))
    return out


class RecordState(enum.Enum):
    REQUESTED = "requested"
    DISPATCHED = "dispatched"
    COMMITTED = "committed"


@dataclass
class ChunkRecord:
    """Runtime state of one job key. No record means the key is absent."""

    key: JobKey
    state: RecordState = RecordState.REQUESTED
    job: ChunkJob | None = None  # latest admitted job
    token: int = 0
    lod: int | None = None  # committed LOD
    tris: int = 0
    verts: int = 0
    dispatched_at: float = 0.0


@dataclass
class ChunkLODState:
    lod: int | None = None  # finest-to-date committed LOD of the footprint
    last_upgrade: float = -math.inf
    plan_key: tuple[int, bool] | None = None  # (lod, simplify) the cached plan was made for
    jobs: list[ChunkJob] | None = None


@dataclass(frozen=True)
class SchedulerStats:
    ticks: int
    chunks: int
    requested: int
    dispatched: int
    committed: int
    backlog: int
    deferred: int
    busy_slots: int
    budget: BudgetState
    total_dispatched: int
    total_committed: int
    stale_results: int
    failed_results: int
    evictions: int
    held_upgrades: int

    @property
    def stage(self) -> PressureStage:
        return self.budget.stage

    def summary(self) -> str:
        b = self.budget
        return (
            f"tick={self.ticks} chunks={self.chunks} req={self.requested} inflight={self.dispatched} "
            f"done={self.committed} backlog={self.backlog} deferred={self.deferred} busy={self.busy_slots} "
            f"tris={b.actual_tris}+{b.pending_tris} verts={b.actual_verts}+{b.pending_verts} "
            f"ratio={b.ratio:.3f} stage={b.stage.name}"
        )


class Scheduler:
    """Decides each tick which jobs should exist, admits them against the
    budget, dispatches them to the pool and commits finished meshes.

    All state is owned by the thread calling `tick`; workers only talk back
    through the pool's result queue.
    """

    def __init__(
        self,
        density: DensityField,
        sink: ResultSink,
        pool: WorkerPool,
        *,
        settings: StreamSettings | None = None,
        terrain: TerrainConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or StreamSettings()
        self.terrain = terrain or TerrainConfig()
        self.density = density
        self.sink = sink
        self.pool = pool
        self.clock = clock

        self.planner = JobPlanner(density, self.settings, self.terrain)
        top = min(self.terrain.priority_for(i, b.name) for i, b in enumerate(self.terrain.bands, start=1))
        self.budget = BudgetController(
            self.terrain.global_tri_cap,
            self.terrain.global_vert_cap,
            self.terrain.thresholds,
            top_priority=top,
        )

        self.records: Dict[JobKey, ChunkRecord] = {}
        self.chunks: Dict[ChunkCoord, ChunkLODState] = {}
        self.backlog: Dict[JobKey, ChunkJob] = {}
        self.desired: Set[JobKey] = set()
        self._tokens = itertools.count(1)

        self.ticks = 0
        self.total_dispatched = 0
        self.total_committed = 0
        self.stale_results = 0
        self.failed_results = 0
        self.evictions = 0
        self.held_upgrades = 0

    # -- public ----------------------------------------------------------
    def tick(self, x: float, z: float) -> None:
        now = self.clock()
        self.ticks += 1
        stage = self.budget.update_pressure()

        self._drain_results(now)

        wanted = self.desired_chunks(x, z)
        desired: Set[JobKey] = set()
        for coord, lod in wanted.items():
            for job in self._jobs_for(coord, lod, now, stage):
                desired.add(job.key)
                self._submit(job, now)
        self.desired = desired

        for job in self.budget.retry_candidates():
            if job.key in desired:
                self._submit(job, now)

        self._evict(wanted, desired)
        self._drain_backlog(now)
        self._check_stalls(now)

    def desired_chunks(self, x: float, z: float) -> Dict[ChunkCoord, int]:
        """Chunk coordinates wanted around (x, z) mapped to their LOD, near first."""
        s = self.settings
        size = s.chunk_size
        ccx = int(math.floor(x / size))
        ccz = int(math.floor(z / size))

        wanted: Dict[ChunkCoord, int] = {}
        for dx, dz, ring in ring_offsets(s.render_radius):
            cx, cz = ccx + dx, ccz + dz
            dist = math.hypot((cx + 0.5) * size - x, (cz + 0.5) * size - z)
            wanted[(cx, cz)] = choose_lod(s.lod_bands, ring, dist, s.render_radius)

        for dx, dz in preload_offsets(x - ccx * size, z - ccz * size, size, s.preload_edge):
            wanted[(ccx + dx, ccz + dz)] = 0
        return wanted

    def snapshot(self) -> SchedulerStats:
        counts = {state: 0 for state in RecordState}
        for rec in self.records.values():
            counts[rec.state] += 1
        return SchedulerStats(
            ticks=self.ticks,
            chunks=len(self.chunks),
            requested=counts[RecordState.REQUESTED],
            dispatched=counts[RecordState.DISPATCHED],
            committed=counts[RecordState.COMMITTED],
            backlog=len(self.backlog),
            deferred=len(self.budget.deferred),
            busy_slots=len(self.pool.busy_slots()),
            budget=self.budget.snapshot(),
            total_dispatched=self.total_dispatched,
            total_committed=self.total_committed,
            stale_results=self.stale_results,
            failed_results=self.failed_results,
            evictions=self.evictions,
            held_upgrades=self.held_upgrades,
        )

    def shutdown(self) -> None:
        self.pool.shutdown()

    # -- planning --------------------------------------------------------
    def _jobs_for(self, coord: ChunkCoord, lod: int, now: float, stage: PressureStage) -> list[ChunkJob]:
        st = self.chunks.get(coord)
        if st is None:
            st = self.chunks[coord] = ChunkLODState()

        if st.lod is not None and lod < st.lod and now - st.last_upgrade < self.settings.cooldown_seconds:
            log.debug("hold upgrade %s lod %d -> %d (cooldown)", coord, st.lod, lod)
            self.held_upgrades += 1
            lod = st.lod

        # the field is deterministic, so a plan only changes with its inputs
        plan_key = (lod, stage >= PressureStage.SIMPLIFY)
        if st.jobs is None or st.plan_key != plan_key:
            bands = self.settings.lod_bands
            factor = bands[min(lod, len(bands) - 1)].factor
            st.jobs = self.planner.plan(coord[0], coord[1], lod, factor, simplify=plan_key[1])
            st.plan_key = plan_key
        return st.jobs

    def _submit(self, job: ChunkJob, now: float) -> None:
        rec = self.records.get(job.key)
        if rec is None:
            rec = self.records[job.key] = ChunkRecord(job.key)

        # identical work already queued, in flight or committed
        if job.same_work(rec.job) and (rec.state is not RecordState.REQUESTED or job.key in self.backlog):
            return

        if self.budget.admit(job) is not Admission.ADMITTED:
            return

        # a fresh token makes any older in-flight result for this key stale
        rec.token = next(self._tokens)
        rec.job = job
        rec.state = RecordState.REQUESTED
        self.backlog.pop(job.key, None)
        if not self._dispatch(rec, now):
            self.backlog[job.key] = job

    def _dispatch(self, rec: ChunkRecord, now: float) -> bool:
        slot = self.pool.dispatch(rec.job, rec.token, now)
        if slot is None:
            return False
        rec.state = RecordState.DISPATCHED
        rec.dispatched_at = now
        self.total_dispatched += 1
        log.debug("dispatch %s lod=%d token=%d slot=%d", rec.key, rec.job.lod, rec.token, slot.index)
        return True

    def _drain_backlog(self, now: float) -> None:
        for key in list(self.backlog):
            if key not in self.desired:
                self.backlog.pop(key)
                self.budget.release_pending(key)
                continue
            if not self.pool.has_free_slot():
                break
            self.backlog.pop(key)
            rec = self.records.get(key)
            if rec is not None and rec.job is not None:
                self._dispatch(rec, now)

    # -- completion ------------------------------------------------------
    def _drain_results(self, now: float) -> None:
        for res in self.pool.poll_results():
            self.pool.release(res.slot)
            rec = self.records.get(res.key)
            if rec is None or rec.token != res.token or rec.state is not RecordState.DISPATCHED:
                self.stale_results += 1
                log.debug("discard stale result %s token=%d", res.key, res.token)
                continue
            self._commit(rec, res, now)

    def _commit(self, rec: ChunkRecord, res: ExtractResult, now: float) -> None:
        key = rec.key
        self.budget.release_pending(key)
        if not res.ok:
            self.failed_results += 1
            log.warning("extraction of %s failed (%s); re-planning", key, res.error)
            rec.state = RecordState.REQUESTED
            rec.job = None
            return

        job, mesh = res.job, res.mesh
        hints = shading_hints(job.lod, mesh.tri_count, job.edge_length)
        stats = self.sink.commit(key, mesh.vertices, mesh.triangles, hints, res.token)
        if stats is not None:
            tris, verts = stats.tris, stats.verts
        else:
            tris, verts = mesh.tri_count, mesh.vert_count
        self.budget.apply_stats(key, tris, verts)

        rec.state = RecordState.COMMITTED
        rec.lod = job.lod
        rec.tris, rec.verts = tris, verts
        self.total_committed += 1

        st = self.chunks.get(key.chunk)
        if st is not None:
            if st.lod is None or job.lod < st.lod:
                st.last_upgrade = now
            st.lod = job.lod
        log.debug("commit %s lod=%d tris=%d verts=%d (%.1f ms)", key, job.lod, tris, verts, res.elapsed * 1000.0)

    # -- eviction --------------------------------------------------------
    def _evict(self, wanted: Dict[ChunkCoord, int], desired: Set[JobKey]) -> None:
        for key in [k for k in self.records if k not in desired]:
            self.sink.unload(key)
            self.budget.forget(key)
            self.backlog.pop(key, None)
            del self.records[key]
            self.evictions += 1
            log.debug("evict %s", key)
        for coord in [c for c in self.chunks if c not in wanted]:
            del self.chunks[coord]

    def _check_stalls(self, now: float) -> None:
        limit = self.settings.stall_warning_seconds
        if limit <= 0:
            return
        for slot in self.pool.busy_slots():
            if not slot.stall_reported and now - slot.started_at >= limit:
                slot.stall_reported = True
                log.warning("slot %d busy with %s for %.1fs; it is not reclaimed", slot.index, slot.key, now - slot.started_at)
