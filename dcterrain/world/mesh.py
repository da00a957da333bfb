from __future__ import annotations

from dataclasses import dataclass

import numpy as np

from dcterrain.config import FLAT_SHADE_VERT_LIMIT, LOD_COLORS

_FALLBACK_COLOR = (0.8, 0.8, 0.8)


@dataclass(frozen=True)
class ShadingHints:
    lod: int
    color: tuple[float, float, float]
    flat: bool
    double_sided: bool
    edge_length: float = 0.0


def shading_hints(lod: int, tri_count: int, edge_length: float = 0.0) -> ShadingHints:
    """Per-LOD colour, and flat shading for close meshes that stay small.

    Flat shading un-indexes the mesh (3 verts per triangle, 6 if double
    sided), so it is only chosen while that count fits FLAT_SHADE_VERT_LIMIT.
    """
    double_sided = lod == 0
    per_tri = 6 if double_sided else 3
    flat = lod == 0 and tri_count * per_tri <= FLAT_SHADE_VERT_LIMIT
    return ShadingHints(
        lod=lod,
        color=LOD_COLORS.get(lod, _FALLBACK_COLOR),
        flat=flat,
        double_sided=double_sided,
        edge_length=float(edge_length),
    )


def face_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    p0 = vertices[triangles[:, 0]]
    p1 = vertices[triangles[:, 1]]
    p2 = vertices[triangles[:, 2]]
    n = np.cross(p1 - p0, p2 - p0)
    length = np.linalg.norm(n, axis=1, keepdims=True)
    return (n / np.maximum(length, 1e-12)).astype(np.float32)


def vertex_normals(vertices: np.ndarray, triangles: np.ndarray) -> np.ndarray:
    """Area-weighted smooth normals."""
    p0 = vertices[triangles[:, 0]]
    p1 = vertices[triangles[:, 1]]
    p2 = vertices[triangles[:, 2]]
    n = np.cross(p1 - p0, p2 - p0)
    acc = np.zeros_like(vertices, dtype=np.float64)
    for c in range(3):
        np.add.at(acc, triangles[:, c], n)
    length = np.linalg.norm(acc, axis=1, keepdims=True)
    out = np.where(length > 1e-12, acc / np.maximum(length, 1e-12), np.array([0.0, 1.0, 0.0]))
    return out.astype(np.float32)


def pack_vertices(vertices: np.ndarray, triangles: np.ndarray, hints: ShadingHints) -> tuple[np.ndarray, np.ndarray]:
    """Return interleaved (pos3, norm3, color3) float32 data and uint32 indices."""
    vertices = np.asarray(vertices, dtype=np.float32)
    triangles = np.asarray(triangles, dtype=np.int64)
    if triangles.shape[0] == 0:
        return np.zeros((0, 9), dtype=np.float32), np.zeros((0,), dtype=np.uint32)

    if hints.flat:
        pos = vertices[triangles.reshape(-1)]
        nrm = np.repeat(face_normals(vertices, triangles), 3, axis=0)
        idx = np.arange(pos.shape[0], dtype=np.uint32).reshape(-1, 3)
    else:
        pos = vertices
        nrm = vertex_normals(vertices, triangles)
        idx = triangles.astype(np.uint32)

    if hints.double_sided:
        # back faces get their own vertices with flipped normals
        offset = pos.shape[0]
        pos = np.concatenate([pos, pos], axis=0)
        nrm = np.concatenate([nrm, -nrm], axis=0)
        idx = np.concatenate([idx, idx[:, [0, 2, 1]] + offset], axis=0)

    col = np.broadcast_to(np.asarray(hints.color, dtype=np.float32), (pos.shape[0], 3))
    data = np.concatenate([pos, nrm, col], axis=1).astype(np.float32)
    return data, idx.reshape(-1).astype(np.uint32)
