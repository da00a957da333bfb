from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass
from typing import Callable, List

from dcterrain.world.density import DensityField
from dcterrain.world.extractor import SurfaceMesh, extract_surface
from dcterrain.world.planner import ChunkJob, JobKey

log = logging.getLogger(__name__)


@dataclass
class WorkerSlot:
    index: int
    busy: bool = False
    key: JobKey | None = None
    token: int = 0
    started_at: float = 0.0
    stall_reported: bool = False


@dataclass(frozen=True)
class ExtractTask:
    slot: int
    token: int
    job: ChunkJob


@dataclass(frozen=True)
class ExtractResult:
    slot: int
    token: int
    job: ChunkJob
    mesh: SurfaceMesh | None
    elapsed: float = 0.0
    error: str | None = None

    @property
    def key(self) -> JobKey:
        return self.job.key

    @property
    def ok(self) -> bool:
        return self.error is None and self.mesh is not None


class JobExtractor:
    """Binds a density field and ground baseline into a job -> mesh function."""

    def __init__(self, density: DensityField, baseline: float) -> None:
        self.density = density
        self.baseline = float(baseline)

    def _density_fn(self, points):
        return self.density.density(points, self.baseline)

    def __call__(self, job: ChunkJob) -> SurfaceMesh:
        return extract_surface(job.origin, job.voxel_size, job.dims, self._density_fn)


class ExtractWorker(threading.Thread):
    def __init__(
        self,
        task_q: "queue.Queue[ExtractTask]",
        out_q: "queue.Queue[ExtractResult]",
        *,
        extract_fn: Callable[[ChunkJob], SurfaceMesh],
        name: str,
    ) -> None:
        super().__init__(daemon=True, name=name)
        self.task_q = task_q
        self.out_q = out_q
        self.extract_fn = extract_fn
        self._stop_event = threading.Event()

    def stop(self) -> None:
        self._stop_event.set()

    def run(self) -> None:
        while not self._stop_event.is_set():
            try:
                task = self.task_q.get(timeout=0.1)
            except queue.Empty:
                continue
            t0 = time.perf_counter()
            try:
                mesh = self.extract_fn(task.job)
                result = ExtractResult(task.slot, task.token, task.job, mesh, time.perf_counter() - t0)
            except Exception as e:
                log.exception("extraction failed for %s", task.job.key)
                result = ExtractResult(task.slot, task.token, task.job, None, time.perf_counter() - t0, error=repr(e))
            finally:
                self.task_q.task_done()
            self.out_q.put(result)


class WorkerPool:
    """Bounded set of execution slots backed by worker threads.

    Slots are owned by the caller's thread (the scheduler tick); workers only
    see tasks on a FIFO queue and answer with result messages. Tasks queue up
    in FIFO order if every thread is busy.
    """

    def __init__(self, size: int, extract_fn: Callable[[ChunkJob], SurfaceMesh], *, start: bool = True) -> None:
        if size < 1:
            raise ValueError("worker pool needs at least one slot")
        self.slots: List[WorkerSlot] = [WorkerSlot(index=i) for i in range(int(size))]
        self.task_q: "queue.Queue[ExtractTask]" = queue.Queue()
        self.out_q: "queue.Queue[ExtractResult]" = queue.Queue()
        self.workers = [
            ExtractWorker(self.task_q, self.out_q, extract_fn=extract_fn, name=f"extract-{i}")
            for i in range(int(size))
        ]
        if start:
            for w in self.workers:
                w.start()

    @property
    def size(self) -> int:
        return len(self.slots)

    def free_count(self) -> int:
        return sum(1 for s in self.slots if not s.busy)

    def has_free_slot(self) -> bool:
        return any(not s.busy for s in self.slots)

    def busy_slots(self) -> list[WorkerSlot]:
        return [s for s in self.slots if s.busy]

    def dispatch(self, job: ChunkJob, token: int, now: float) -> WorkerSlot | None:
        for slot in self.slots:
            if not slot.busy:
                slot.busy = True
                slot.key = job.key
                slot.token = token
                slot.started_at = now
                slot.stall_reported = False
                self.task_q.put(ExtractTask(slot.index, token, job))
                return slot
        return None

    def release(self, index: int) -> None:
        slot = self.slots[index]
        slot.busy = False
        slot.key = None
        slot.token = 0

    def poll_results(self, max_items: int | None = None) -> list[ExtractResult]:
        ready: list[ExtractResult] = []
        while max_items is None or len(ready) < max_items:
            try:
                ready.append(self.out_q.get_nowait())
            except queue.Empty:
                break
        return ready

    def shutdown(self) -> None:
        for w in self.workers:
            w.stop()
        for w in self.workers:
            if w.is_alive():
                w.join(timeout=1.0)
