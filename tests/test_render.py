import math

import numpy as np
import pytest

from dcterrain.render.camera import FlyCamera
from dcterrain.render.renderer import hud_quad
from dcterrain.util.math import forward_vector, look_at


def _camera():
    return FlyCamera(speed=10.0, fast_multiplier=4.0, turn_rate=1.0, climb_speed=5.0, min_clearance=6.0, smooth_k=4.0)


def test_hud_quad_is_pixel_sized_in_top_left():
    q = hud_quad(200, 100, 800, 400, margin=0).reshape(6, 4)
    xs, ys = q[:, 0], q[:, 1]
    assert xs.min() == pytest.approx(-1.0) and xs.max() == pytest.approx(-0.5)
    assert ys.max() == pytest.approx(1.0) and ys.min() == pytest.approx(0.5)
    # top edge samples the first texture row
    assert set(q[ys == ys.max(), 3]) == {0.0}


def test_camera_moves_along_heading():
    cam = _camera()
    cam.place(0.0, 0.0, lambda x, z: 0.0, 40.0)
    cam.update(1.0, lambda x, z: 0.0, forward=1.0, strafe=0.0, turn=0.0, look=0.0, climb=0.0)
    assert (cam.x, cam.z) == pytest.approx((0.0, 10.0))
    cam.update(1.0, lambda x, z: 0.0, forward=1.0, strafe=0.0, turn=0.0, look=0.0, climb=0.0, fast=True)
    assert cam.z == pytest.approx(50.0)


def test_camera_keeps_clearance_over_terrain():
    cam = _camera()
    cam.place(0.0, 0.0, lambda x, z: 10.0, 8.0)
    for _ in range(200):
        cam.update(0.05, lambda x, z: 10.0, forward=0.0, strafe=0.0, turn=0.0, look=0.0, climb=-1.0)
    assert cam.y >= 10.0 + 6.0 * 0.5


def test_pitch_is_clamped():
    cam = _camera()
    cam.update(100.0, lambda x, z: 0.0, forward=0.0, strafe=0.0, turn=0.0, look=1.0, climb=0.0)
    assert cam.pitch < math.pi / 2


def test_view_matrix_maps_target_onto_negative_z():
    eye = np.array([1.0, 2.0, 3.0], dtype=np.float32)
    target = eye + forward_vector(0.3, -0.2)
    m = look_at(eye, target, np.array([0.0, 1.0, 0.0], dtype=np.float32))
    # column-major: transform row vectors by m
    p = np.append(target, 1.0) @ m
    assert p[:2] == pytest.approx([0.0, 0.0], abs=1e-5)
    assert p[2] == pytest.approx(-1.0, abs=1e-5)
