from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Sequence

import numpy as np

from dcterrain.config import DEGENERATE_AREA2, SIGN_EPS, SNAP_STEP

# Surface-nets style dual contouring over a 1-cell halo lattice.
# Solid where density < 0. X and Z are open (half-open ownership, tileable);
# Y is capped.

_CORNERS = np.array(
    [
        (0, 0, 0), (1, 0, 0), (0, 1, 0), (1, 1, 0),
        (0, 0, 1), (1, 0, 1), (0, 1, 1), (1, 1, 1),
    ],
    dtype=np.int64,
)
_EDGES = (
    (0, 1), (0, 2), (0, 4), (1, 3), (1, 5), (2, 3),
    (2, 6), (3, 7), (4, 5), (4, 6), (5, 7), (6, 7),
)

_AXIS_X, _AXIS_Y, _AXIS_Z = 0, 1, 2


@dataclass(frozen=True)
class SurfaceMesh:
    vertices: np.ndarray  # (N,3) float32
    triangles: np.ndarray  # (M,3) int32

    @classmethod
    def empty(cls) -> "SurfaceMesh":
        return cls(np.zeros((0, 3), dtype=np.float32), np.zeros((0, 3), dtype=np.int32))

    @property
    def vert_count(self) -> int:
        return int(self.vertices.shape[0])

    @property
    def tri_count(self) -> int:
        return int(self.triangles.shape[0])

    @property
    def is_empty(self) -> bool:
        return self.tri_count == 0


def snap(p: np.ndarray, step: float) -> np.ndarray:
    """Quantize coordinates so independently built regions agree bit-for-bit."""
    return np.round(np.asarray(p, dtype=np.float64) / step) * step


def _emit_partial_face(
    ids: Sequence[int],
    flip: bool,
    axis: int,
    verts: list[np.ndarray],
    cell_size: float,
    snap_step: float,
) -> list[tuple[int, int, int]]:
    """Triangulate a face with fewer than four cell vertices.

    Missing corners are bridged with synthesized vertices appended to `verts`.
    """
    w = [int(i) for i in ids if i >= 0]
    h = cell_size
    if not w:
        return []
    if len(w) >= 4:
        a, b, c, d = w[:4]
        if flip:
            return [(a, c, b), (a, d, c)]
        return [(a, b, c), (a, c, d)]
    if len(w) == 3:
        a, b, c = w
        return [(a, c, b)] if flip else [(a, b, c)]

    if len(w) == 2:
        a, b = w
        pa, pb = verts[a], verts[b]
        seg = pb - pa
        length = float(np.linalg.norm(seg))
        if length <= 1e-9:
            return []
        direction = seg / length
        # in-plane axis least aligned with the segment
        in_plane = [ax for ax in (_AXIS_X, _AXIS_Y, _AXIS_Z) if ax != axis]
        t = np.zeros(3)
        t[min(in_plane, key=lambda ax: abs(float(direction[ax])))] = 1.0
        # perpendicular to the segment
        t = t - direction * float(direction @ t)
        t /= max(float(np.linalg.norm(t)), 1e-12)
        half = max(h * 0.5, min(h * 0.8, length * 0.49))
        mid = (pa + pb) * 0.5
        i1 = len(verts)
        verts.append(snap(mid + t * half, snap_step))
        i2 = len(verts)
        verts.append(snap(mid - t * half, snap_step))
        if flip:
            return [(a, i2, i1), (a, b, i2)]
        return [(a, i1, i2), (a, i2, b)]

    # single vertex: degenerate fan along the two in-plane axes
    a = w[0]
    p0 = verts[a]
    u, v = [ax for ax in (_AXIS_X, _AXIS_Y, _AXIS_Z) if ax != axis]
    off1 = np.zeros(3)
    off1[u] = h * 0.25
    off2 = np.zeros(3)
    off2[v] = h * 0.25
    i1 = len(verts)
    verts.append(snap(p0 + off1, snap_step))
    i2 = len(verts)
    verts.append(snap(p0 + off2, snap_step))
    return [(a, i2, i1)] if flip else [(a, i1, i2)]


def _quad_triangles(quads: np.ndarray, flip: np.ndarray) -> np.ndarray:
    t1 = np.where(flip[:, None], quads[:, [0, 2, 1]], quads[:, [0, 1, 2]])
    t2 = np.where(flip[:, None], quads[:, [0, 3, 2]], quads[:, [0, 2, 3]])
    return np.concatenate([t1, t2], axis=0)


def extract_surface(
    origin: Sequence[float],
    cell_size: float,
    dims: Sequence[int],
    density_fn: Callable[[np.ndarray], np.ndarray],
    *,
    snap_step: float = SNAP_STEP,
    sign_eps: float = SIGN_EPS,
) -> SurfaceMesh:
    """Extract the solid/empty boundary inside one axis-aligned region.

    `density_fn` takes an (..., 3) array of world points and returns an array
    of the same leading shape. The region spans `origin + [0, dims*cell_size]`.
    """
    ox, oy, oz = (float(v) for v in origin)
    h = float(cell_size)
    nx, ny, nz = (int(v) for v in dims)
    if h <= 0.0 or min(nx, ny, nz) < 1:
        raise ValueError(f"invalid extraction region: cell_size={h} dims={(nx, ny, nz)}")

    # 1) sample with a 1-cell halo: sample s sits at origin + (s-1)*h
    xs = ox + (np.arange(nx + 3, dtype=np.float64) - 1.0) * h
    ys = oy + (np.arange(ny + 3, dtype=np.float64) - 1.0) * h
    zs = oz + (np.arange(nz + 3, dtype=np.float64) - 1.0) * h
    gx, gy, gz = np.meshgrid(xs, ys, zs, indexing="ij")
    pts = np.stack([gx, gy, gz], axis=-1)

    d = np.asarray(density_fn(pts), dtype=np.float64).reshape(gx.shape)
    near = np.abs(d) < sign_eps
    d = np.where(near, np.where(d <= 0.0, -sign_eps, sign_eps), d)
    solid = d < 0.0

    # 2) one vertex per mixed-sign halo cell
    cx, cy, cz = nx + 2, ny + 2, nz + 2
    acc = np.zeros((cx, cy, cz, 3), dtype=np.float64)
    cnt = np.zeros((cx, cy, cz), dtype=np.int64)
    for ea, eb in _EDGES:
        a0, a1, a2 = _CORNERS[ea]
        b0, b1, b2 = _CORNERS[eb]
        da = d[a0:a0 + cx, a1:a1 + cy, a2:a2 + cz]
        db = d[b0:b0 + cx, b1:b1 + cy, b2:b2 + cz]
        crossing = (da < 0.0) != (db < 0.0)
        if not crossing.any():
            continue
        t = np.clip(da / np.where(crossing, da - db, 1.0), 0.0, 1.0)
        pa = pts[a0:a0 + cx, a1:a1 + cy, a2:a2 + cz]
        pb = pts[b0:b0 + cx, b1:b1 + cy, b2:b2 + cz]
        p = pa + (pb - pa) * t[..., None]
        acc += np.where(crossing[..., None], p, 0.0)
        cnt += crossing

    mixed = cnt > 0
    if not mixed.any():
        return SurfaceMesh.empty()

    cell_id = np.full((cx, cy, cz), -1, dtype=np.int64)
    cell_id[mixed] = np.arange(int(mixed.sum()), dtype=np.int64)
    base_verts = snap(acc[mixed] / cnt[mixed][:, None], snap_step)

    # generous tolerance on Y so floor/ceiling never get culled post-snap
    y_tol = max(1e-6, snap_step * 4.0, h * 1e-3) * 10.0
    min_y, max_y = oy, oy + ny * h

    tris: list[np.ndarray] = []
    partial: list[tuple[np.ndarray, bool, int]] = []

    def collect(quads: np.ndarray, flip: np.ndarray, axis: int, keep: np.ndarray | None = None) -> None:
        full = (quads >= 0).all(axis=1)
        sel = full if keep is None else (full & keep)
        if sel.any():
            tris.append(_quad_triangles(quads[sel], flip[sel]))
        for row, f in zip(quads[~full], flip[~full]):
            partial.append((row, bool(f), axis))

    # 3) faces for sign-changing lattice edges owned by this region
    # X edges: samples (a, j, k) -> (a+1, j, k); a in 1..nx, j in 1..ny+1, k in 1..nz
    lo = solid[1:nx + 1, 1:ny + 2, 1:nz + 1]
    hi = solid[2:nx + 2, 1:ny + 2, 1:nz + 1]
    ia, ij, ik = np.nonzero(lo != hi)
    a, j, k = ia + 1, ij + 1, ik + 1
    quads = np.stack(
        [cell_id[a, j - 1, k - 1], cell_id[a, j, k - 1], cell_id[a, j, k], cell_id[a, j - 1, k]],
        axis=1,
    )
    collect(quads, hi[ia, ij, ik], _AXIS_X)

    # Y edges: samples (i, b, k) -> (i, b+1, k); b in 0..ny, i in 1..nx, k in 1..nz
    lo = solid[1:nx + 1, 0:ny + 1, 1:nz + 1]
    hi = solid[1:nx + 1, 1:ny + 2, 1:nz + 1]
    ii, b, ik = np.nonzero(lo != hi)
    i, k = ii + 1, ik + 1
    quads = np.stack(
        [cell_id[i - 1, b, k - 1], cell_id[i, b, k - 1], cell_id[i, b, k], cell_id[i - 1, b, k]],
        axis=1,
    )
    boundary = (b == 0) | (b == ny)
    safe = np.where(quads >= 0, quads, 0)
    centroid_y = base_verts[safe, 1].mean(axis=1)
    inside = (centroid_y >= min_y - y_tol) & (centroid_y <= max_y + y_tol)
    collect(quads, lo[ii, b, ik], _AXIS_Y, keep=boundary | inside)

    # Z edges: samples (i, j, c) -> (i, j, c+1); c in 1..nz, i in 1..nx, j in 1..ny+1
    lo = solid[1:nx + 1, 1:ny + 2, 1:nz + 1]
    hi = solid[1:nx + 1, 1:ny + 2, 2:nz + 2]
    ii, ij, ic = np.nonzero(lo != hi)
    i, j, c = ii + 1, ij + 1, ic + 1
    quads = np.stack(
        [cell_id[i - 1, j - 1, c], cell_id[i, j - 1, c], cell_id[i, j, c], cell_id[i - 1, j, c]],
        axis=1,
    )
    collect(quads, hi[ii, ij, ic], _AXIS_Z)

    verts = base_verts
    if partial:
        vert_list = list(base_verts)
        extra: list[tuple[int, int, int]] = []
        for row, flip, axis in partial:
            extra.extend(_emit_partial_face(row, flip, axis, vert_list, h, snap_step))
        if extra:
            tris.append(np.asarray(extra, dtype=np.int64))
        verts = np.asarray(vert_list, dtype=np.float64)

    if not tris:
        return SurfaceMesh.empty()
    tri = np.concatenate(tris, axis=0)

    # 5) drop zero-area triangles, compact unused vertices
    p0, p1, p2 = verts[tri[:, 0]], verts[tri[:, 1]], verts[tri[:, 2]]
    area2 = np.linalg.norm(np.cross(p1 - p0, p2 - p0), axis=1)
    tri = tri[area2 >= DEGENERATE_AREA2]
    if tri.shape[0] == 0:
        return SurfaceMesh.empty()

    used = np.unique(tri)
    remap = np.full(verts.shape[0], -1, dtype=np.int64)
    remap[used] = np.arange(used.shape[0], dtype=np.int64)
    return SurfaceMesh(
        vertices=verts[used].astype(np.float32),
        triangles=remap[tri].astype(np.int32),
    )
