from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Dict

from dcterrain.config import DEFERRED_RETRY_MARGIN, BudgetThresholds
from dcterrain.world.planner import ChunkJob, JobKey

log = logging.getLogger(__name__)


class PressureStage(enum.IntEnum):
    NORMAL = 0
    SIMPLIFY = 1
    SKIP_LOWER_BANDS = 2
    DEFER = 3


class Admission(enum.Enum):
    ADMITTED = "admitted"
    DEFERRED = "deferred"
    SKIPPED = "skipped"


@dataclass
class Cost:
    tris: int = 0
    verts: int = 0


@dataclass(frozen=True)
class BudgetState:
    actual_tris: int
    actual_verts: int
    pending_tris: int
    pending_verts: int
    stage: PressureStage
    ratio: float


class BudgetController:
    """Global triangle/vertex accounting with staged admission control.

    `pending` holds optimistic reservations for admitted jobs that have not
    committed yet, `actual` holds committed mesh stats. Both are tracked per
    key so replacing or evicting a key always releases exactly what it added.
    """

    def __init__(
        self,
        tri_cap: float,
        vert_cap: float,
        thresholds: BudgetThresholds | None = None,
        *,
        top_priority: int = 1,
        retry_margin: float = DEFERRED_RETRY_MARGIN,
    ) -> None:
        self.tri_cap = float(tri_cap)
        self.vert_cap = float(vert_cap)
        self.thresholds = thresholds or BudgetThresholds()
        self.top_priority = int(top_priority)
        self.retry_margin = float(retry_margin)

        self.actual = Cost()
        self.pending = Cost()
        self._pending_by_key: Dict[JobKey, Cost] = {}
        self._actual_by_key: Dict[JobKey, Cost] = {}
        self.deferred: Dict[JobKey, ChunkJob] = {}
        self.stage = PressureStage.NORMAL

    # -- bookkeeping ---------------------------------------------------
    def reserve(self, key: JobKey, tris: int, verts: int) -> None:
        self.release_pending(key)
        self._pending_by_key[key] = Cost(int(tris), int(verts))
        self.pending.tris += int(tris)
        self.pending.verts += int(verts)

    def release_pending(self, key: JobKey) -> None:
        prev = self._pending_by_key.pop(key, None)
        if prev is not None:
            self.pending.tris = max(0, self.pending.tris - prev.tris)
            self.pending.verts = max(0, self.pending.verts - prev.verts)

    def apply_stats(self, key: JobKey, tris: int, verts: int) -> None:
        self.remove_stats(key)
        self._actual_by_key[key] = Cost(int(tris), int(verts))
        self.actual.tris += int(tris)
        self.actual.verts += int(verts)

    def remove_stats(self, key: JobKey) -> None:
        prev = self._actual_by_key.pop(key, None)
        if prev is not None:
            self.actual.tris = max(0, self.actual.tris - prev.tris)
            self.actual.verts = max(0, self.actual.verts - prev.verts)

    def forget(self, key: JobKey) -> None:
        """Drop every trace of `key` (eviction)."""
        self.release_pending(key)
        self.remove_stats(key)
        self.deferred.pop(key, None)

    def pending_for(self, key: JobKey) -> Cost | None:
        return self._pending_by_key.get(key)

    def committed_for(self, key: JobKey) -> Cost | None:
        return self._actual_by_key.get(key)

    # -- pressure ------------------------------------------------------
    def ratio_with(self, tris: int = 0, verts: int = 0) -> float:
        total_tris = self.actual.tris + self.pending.tris + tris
        total_verts = self.actual.verts + self.pending.verts + verts
        tri_ratio = total_tris / self.tri_cap if self.tri_cap > 0 else 0.0
        vert_ratio = total_verts / self.vert_cap if self.vert_cap > 0 else 0.0
        return max(tri_ratio, vert_ratio)

    def stage_for(self, ratio: float) -> PressureStage:
        th = self.thresholds
        if ratio >= th.defer:
            return PressureStage.DEFER
        if ratio >= th.skip_lower_bands:
            return PressureStage.SKIP_LOWER_BANDS
        if ratio >= th.simplify:
            return PressureStage.SIMPLIFY
        return PressureStage.NORMAL

    def update_pressure(self) -> PressureStage:
        ratio = self.ratio_with()
        stage = self.stage_for(ratio)
        if stage != self.stage:
            log.info("pressure stage %s -> %s (ratio=%.3f)", self.stage.name, stage.name, ratio)
        self.stage = stage
        return stage

    # -- admission -----------------------------------------------------
    def admit(self, job: ChunkJob) -> Admission:
        # a re-admitted key replaces its own reservation
        prev = self._pending_by_key.get(job.key) or Cost()
        projected = self.ratio_with(job.est_tris - prev.tris, job.est_verts - prev.verts)
        if projected >= self.thresholds.defer:
            self.deferred[job.key] = job
            log.debug("defer %s ratio=%.3f stage=%s", job.key, projected, self.stage.name)
            return Admission.DEFERRED
        if self.stage >= PressureStage.SKIP_LOWER_BANDS and job.band is not None and job.priority > self.top_priority:
            log.debug("skip lower band %s stage=%s", job.key, self.stage.name)
            return Admission.SKIPPED
        self.deferred.pop(job.key, None)
        self.reserve(job.key, job.est_tris, job.est_verts)
        return Admission.ADMITTED

    def retry_candidates(self) -> list[ChunkJob]:
        """Deferred jobs whose projected ratio is now comfortably below the defer gate."""
        if self.stage >= PressureStage.DEFER:
            return []
        limit = self.thresholds.defer * self.retry_margin
        ready = [job for job in self.deferred.values() if self.ratio_with(job.est_tris, job.est_verts) < limit]
        for job in ready:
            del self.deferred[job.key]
        return ready

    def snapshot(self) -> BudgetState:
        return BudgetState(
            actual_tris=self.actual.tris,
            actual_verts=self.actual.verts,
            pending_tris=self.pending.tris,
            pending_verts=self.pending.verts,
            stage=self.stage,
            ratio=self.ratio_with(),
        )
