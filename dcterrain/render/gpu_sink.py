from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict

import moderngl
import numpy as np

from dcterrain.world.mesh import ShadingHints, pack_vertices
from dcterrain.world.planner import JobKey
from dcterrain.world.sink import MeshStats

log = logging.getLogger(__name__)


@dataclass
class MeshGPU:
    key: JobKey
    vao: moderngl.VertexArray
    vbo: moderngl.Buffer
    ibo: moderngl.Buffer
    hints: ShadingHints
    token: int

    def release(self) -> None:
        self.vao.release()
        self.vbo.release()
        self.ibo.release()


class GpuSink:
    """ResultSink that uploads committed meshes into ModernGL buffers.

    Must be driven from the thread that owns the GL context.
    """

    def __init__(self, ctx: moderngl.Context, prog: moderngl.Program) -> None:
        self.ctx = ctx
        self.prog = prog
        self.meshes: Dict[JobKey, MeshGPU] = {}

    def commit(self, key: JobKey, vertices: np.ndarray, triangles: np.ndarray, hints: ShadingHints, token: int) -> MeshStats:
        self.unload(key)
        data, idx = pack_vertices(vertices, triangles, hints)
        stats = MeshStats(tris=int(idx.size // 3), verts=int(data.shape[0]))
        if idx.size == 0:
            return stats

        vbo = self.ctx.buffer(data.tobytes())
        ibo = self.ctx.buffer(idx.tobytes())
        vao = self.ctx.vertex_array(self.prog, [(vbo, "3f 3f 3f", "in_pos", "in_norm", "in_color")], ibo)
        self.meshes[key] = MeshGPU(key=key, vao=vao, vbo=vbo, ibo=ibo, hints=hints, token=token)
        return stats

    def unload(self, key: JobKey) -> None:
        mesh = self.meshes.pop(key, None)
        if mesh is not None:
            mesh.release()

    def draw(self) -> None:
        for mesh in self.meshes.values():
            mesh.vao.render()

    def release(self) -> None:
        for key in list(self.meshes):
            self.unload(key)
