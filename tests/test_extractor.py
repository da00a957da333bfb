import math
from collections import Counter

import numpy as np
import pytest

from dcterrain.world.extractor import SurfaceMesh, _emit_partial_face, extract_surface, snap


def _sphere(center, radius):
    c = np.asarray(center, dtype=np.float64)

    def density(p):
        return np.linalg.norm(np.asarray(p, dtype=np.float64) - c, axis=-1) - radius

    return density


def _edge_counts(triangles):
    counts = Counter()
    for a, b, c in triangles.tolist():
        for u, v in ((a, b), (b, c), (c, a)):
            counts[(min(u, v), max(u, v))] += 1
    return counts


def _signed_volume(mesh):
    v = mesh.vertices.astype(np.float64)
    t = mesh.triangles
    return float(np.einsum("ij,ij->i", v[t[:, 0]], np.cross(v[t[:, 1]], v[t[:, 2]])).sum() / 6.0)


def _merge(meshes):
    """Weld meshes by exact vertex coordinates."""
    index = {}
    verts = []
    tris = []
    for m in meshes:
        remap = []
        for p in map(tuple, m.vertices.tolist()):
            if p not in index:
                index[p] = len(verts)
                verts.append(p)
            remap.append(index[p])
        remap = np.asarray(remap, dtype=np.int64)
        tris.append(remap[m.triangles])
    return SurfaceMesh(np.asarray(verts, dtype=np.float32), np.concatenate(tris).astype(np.int32))


def test_enclosed_sphere_is_watertight():
    mesh = extract_surface((0.0, 0.0, 0.0), 1.0, (16, 16, 16), _sphere((8.0, 8.0, 8.0), 5.3))
    assert not mesh.is_empty
    counts = _edge_counts(mesh.triangles)
    assert all(n >= 2 for n in counts.values())


def test_sphere_normals_point_outward():
    r = 5.3
    mesh = extract_surface((0.0, 0.0, 0.0), 1.0, (16, 16, 16), _sphere((8.0, 8.0, 8.0), r))
    vol = _signed_volume(mesh)
    assert vol == pytest.approx(4.0 / 3.0 * math.pi * r**3, rel=0.1)


def test_output_types():
    mesh = extract_surface((0.0, 0.0, 0.0), 1.0, (8, 8, 8), _sphere((4.0, 4.0, 4.0), 2.5))
    assert mesh.vertices.dtype == np.float32
    assert mesh.triangles.dtype == np.int32
    assert mesh.vertices.shape[1] == 3 and mesh.triangles.shape[1] == 3
    assert mesh.triangles.min() >= 0
    assert mesh.triangles.max() < mesh.vert_count


def test_extraction_is_deterministic():
    fn = _sphere((5.1, 4.7, 6.3), 3.9)
    a = extract_surface((0.0, 0.0, 0.0), 1.0, (12, 12, 12), fn)
    b = extract_surface((0.0, 0.0, 0.0), 1.0, (12, 12, 12), fn)
    assert np.array_equal(a.vertices, b.vertices)
    assert np.array_equal(a.triangles, b.triangles)


def test_vertices_are_quantized():
    mesh = extract_surface((0.0, 0.0, 0.0), 1.0, (10, 10, 10), _sphere((5.0, 5.0, 5.0), 3.3), snap_step=0.01)
    v = mesh.vertices.astype(np.float64)
    assert np.allclose(v / 0.01, np.round(v / 0.01), atol=1e-3)


def test_neighbouring_regions_share_their_boundary():
    fn = _sphere((8.0, 8.0, 8.0), 5.3)
    left = extract_surface((0.0, 0.0, 0.0), 1.0, (8, 16, 16), fn)
    right = extract_surface((8.0, 0.0, 0.0), 1.0, (8, 16, 16), fn)
    whole = extract_surface((0.0, 0.0, 0.0), 1.0, (16, 16, 16), fn)

    merged = _merge([left, right])
    # no cracks and no duplicated faces across x = 8
    assert all(n >= 2 for n in _edge_counts(merged.triangles).values())
    assert merged.tri_count == whole.tri_count
    assert merged.vert_count == whole.vert_count


def test_ground_plane_caps_on_y_and_stays_open_on_xz():
    mesh = extract_surface((0.0, 0.0, 0.0), 1.0, (4, 8, 4), lambda p: p[..., 1] - 4.5)
    assert mesh.tri_count == 2 * 4 * 4
    assert np.allclose(mesh.vertices[:, 1], 4.5)
    boundary = [e for e, n in _edge_counts(mesh.triangles).items() if n == 1]
    assert boundary  # open sides


def test_region_without_sign_change_is_empty():
    mesh = extract_surface((0.0, 0.0, 0.0), 1.0, (6, 6, 6), lambda p: np.ones(p.shape[:-1]))
    assert mesh.is_empty
    assert mesh.vert_count == 0


def test_invalid_region_rejected():
    with pytest.raises(ValueError):
        extract_surface((0.0, 0.0, 0.0), 0.0, (4, 4, 4), lambda p: p[..., 1])
    with pytest.raises(ValueError):
        extract_surface((0.0, 0.0, 0.0), 1.0, (4, 0, 4), lambda p: p[..., 1])


def test_snap_rounds_to_step():
    out = snap(np.array([0.00031, -0.00029, 1.0]), 6e-4)
    assert np.allclose(out, [6e-4, -0.0, 1.0 + 0.0], atol=1e-3)
    assert np.allclose(out / 6e-4, np.round(out / 6e-4))


def test_partial_face_with_three_vertices_emits_one_triangle():
    verts = [np.array([0.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0]), np.array([0.0, 1.0, 1.0])]
    tris = _emit_partial_face([0, 1, 2, -1], False, 0, verts, 1.0, 6e-4)
    assert tris == [(0, 1, 2)]
    assert _emit_partial_face([0, 1, 2, -1], True, 0, verts, 1.0, 6e-4) == [(0, 2, 1)]
    assert len(verts) == 3


def test_partial_face_with_two_vertices_bridges_the_gap():
    verts = [np.array([0.0, 0.0, 0.0]), np.array([0.0, 1.0, 0.0])]
    tris = _emit_partial_face([0, -1, 1, -1], False, 0, verts, 1.0, 6e-4)
    assert len(tris) == 2
    assert len(verts) == 4
    # bridging vertices sit off the segment, either side of its midpoint
    assert verts[2][2] == pytest.approx(-verts[3][2])
    assert abs(verts[2][2]) >= 0.49


def test_partial_face_with_one_vertex_builds_a_fan():
    verts = [np.array([2.0, 3.0, 4.0])]
    tris = _emit_partial_face([-1, 0, -1, -1], False, 1, verts, 1.0, 6e-4)
    assert len(tris) == 1
    assert len(verts) == 3
    assert np.allclose(verts[1], [2.25, 3.0, 4.0], atol=1e-3)
    assert np.allclose(verts[2], [2.0, 3.0, 4.25], atol=1e-3)


def test_partial_face_with_no_vertices_is_skipped():
    verts = []
    assert _emit_partial_face([-1, -1, -1, -1], False, 2, verts, 1.0, 6e-4) == []


def _area(verts, tri):
    a, b, c = (np.asarray(verts[i], dtype=np.float64) for i in tri)
    return 0.5 * float(np.linalg.norm(np.cross(b - a, c - a)))


@pytest.mark.parametrize("axis, seg", [(0, (0.0, 0.0, 1.0)), (0, (0.0, 1.0, 0.0)), (1, (1.0, 0.0, 0.0)), (2, (0.0, 1.0, 0.0))])
def test_partial_face_bridge_stays_in_plane_and_has_area(axis, seg):
    verts = [np.zeros(3), np.array(seg)]
    tris = _emit_partial_face([0, -1, 1, -1], False, axis, verts, 1.0, 6e-4)
    assert len(tris) == 2
    assert all(_area(verts, t) > 0.1 for t in tris)
    # bridging vertices stay on the face plane
    assert verts[2][axis] == pytest.approx(0.0, abs=1e-3)
    assert verts[3][axis] == pytest.approx(0.0, abs=1e-3)
