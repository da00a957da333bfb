from __future__ import annotations

import math

import numpy as np

from dcterrain.util.math import clamp, exp_smooth, forward_vector, look_at

_PITCH_LIMIT = 1.45


class FlyCamera:
    """Free-flying viewer camera.

    Moves along its yaw heading in the XZ plane, climbs and sinks on demand
    and never drops below `min_clearance` over the terrain.
    """

    def __init__(
        self,
        *,
        speed: float,
        fast_multiplier: float,
        turn_rate: float,
        climb_speed: float,
        min_clearance: float,
        smooth_k: float,
    ) -> None:
        self.speed = float(speed)
        self.fast_multiplier = float(fast_multiplier)
        self.turn_rate = float(turn_rate)
        self.climb_speed = float(climb_speed)
        self.min_clearance = float(min_clearance)
        self.smooth_k = float(smooth_k)

        self.x = 0.0
        self.y = 0.0
        self.z = 0.0
        self.yaw = 0.0
        self.pitch = -0.25

    def place(self, x: float, z: float, height_fn, eye_height: float) -> None:
        self.x = float(x)
        self.z = float(z)
        self.y = float(height_fn(self.x, self.z)) + float(eye_height)

    def update(
        self,
        dt: float,
        height_fn,
        *,
        forward: float,
        strafe: float,
        turn: float,
        look: float,
        climb: float,
        fast: bool = False,
    ) -> None:
        """Advance by dt. Inputs are -1..1 axes."""
        dt = float(dt)
        self.yaw -= clamp(turn, -1.0, 1.0) * self.turn_rate * dt
        self.pitch = clamp(self.pitch + clamp(look, -1.0, 1.0) * self.turn_rate * dt, -_PITCH_LIMIT, _PITCH_LIMIT)

        speed = self.speed * (self.fast_multiplier if fast else 1.0)
        s, c = math.sin(self.yaw), math.cos(self.yaw)
        self.x += (s * forward - c * strafe) * speed * dt
        self.z += (c * forward + s * strafe) * speed * dt
        self.y += clamp(climb, -1.0, 1.0) * self.climb_speed * dt

        floor_y = float(height_fn(self.x, self.z)) + self.min_clearance
        if self.y < floor_y:
            self.y = exp_smooth(self.y, floor_y, self.smooth_k, dt)
            self.y = max(self.y, floor_y - self.min_clearance * 0.5)

    def eye(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z], dtype=np.float32)

    def view_matrix(self) -> np.ndarray:
        eye = self.eye()
        target = eye + forward_vector(self.yaw, self.pitch)
        return look_at(eye, target, np.array([0.0, 1.0, 0.0], dtype=np.float32))
