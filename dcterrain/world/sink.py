from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Protocol

import numpy as np

from dcterrain.world.mesh import ShadingHints
from dcterrain.world.planner import JobKey


@dataclass(frozen=True)
class MeshStats:
    tris: int
    verts: int


class ResultSink(Protocol):
    """Receives committed geometry. Completion is signalled by the scheduler's
    result channel, never by this interface."""

    def commit(
        self,
        key: JobKey,
        vertices: np.ndarray,
        triangles: np.ndarray,
        hints: ShadingHints,
        token: int,
    ) -> MeshStats | None: ...

    def unload(self, key: JobKey) -> None: ...


@dataclass
class CommittedMesh:
    vertices: np.ndarray
    triangles: np.ndarray
    hints: ShadingHints
    token: int


class MemorySink:
    """Keeps the latest committed mesh per key in a dict (headless runs, tests)."""

    def __init__(self) -> None:
        self.meshes: Dict[JobKey, CommittedMesh] = {}
        self.commits = 0
        self.unloads = 0

    def commit(self, key, vertices, triangles, hints, token) -> MeshStats:
        self.meshes[key] = CommittedMesh(vertices, triangles, hints, token)
        self.commits += 1
        return MeshStats(tris=int(triangles.shape[0]), verts=int(vertices.shape[0]))

    def unload(self, key) -> None:
        if self.meshes.pop(key, None) is not None:
            self.unloads += 1

    def total(self) -> MeshStats:
        return MeshStats(
            tris=sum(int(m.triangles.shape[0]) for m in self.meshes.values()),
            verts=sum(int(m.vertices.shape[0]) for m in self.meshes.values()),
        )
