from __future__ import annotations

import math

import numpy as np


def clamp(x: float, lo: float, hi: float) -> float:
    return lo if x < lo else hi if x > hi else x


def normalize(v: np.ndarray) -> np.ndarray:
    n = float(np.linalg.norm(v))
    return v if n == 0.0 else v / n


def forward_vector(yaw: float, pitch: float = 0.0) -> np.ndarray:
    """Unit view direction; yaw == 0 looks down +Z, positive pitch looks up."""
    cp = math.cos(pitch)
    return np.array([math.sin(yaw) * cp, math.sin(pitch), math.cos(yaw) * cp], dtype=np.float32)


def look_at(eye: np.ndarray, target: np.ndarray, up: np.ndarray) -> np.ndarray:
    """Column-major view matrix (as uploaded to OpenGL)."""
    f = normalize(np.asarray(target, dtype=np.float32) - eye)
    s = normalize(np.cross(f, up))
    u = np.cross(s, f)

    m = np.eye(4, dtype=np.float32)
    m[:3, 0] = s
    m[:3, 1] = u
    m[:3, 2] = -f
    m[3, 0] = -float(np.dot(s, eye))
    m[3, 1] = -float(np.dot(u, eye))
    m[3, 2] = float(np.dot(f, eye))
    return m


def perspective(fov_deg: float, aspect: float, near: float, far: float) -> np.ndarray:
    f = 1.0 / math.tan(math.radians(fov_deg) * 0.5)
    m = np.zeros((4, 4), dtype=np.float32)
    m[0, 0] = f / aspect
    m[1, 1] = f
    m[2, 2] = (far + near) / (near - far)
    m[2, 3] = -1.0
    m[3, 2] = (2.0 * far * near) / (near - far)
    return m


def exp_smooth(current: float, target: float, k: float, dt: float) -> float:
    return current + (target - current) * (1.0 - math.exp(-k * dt))
