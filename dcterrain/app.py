from __future__ import annotations

import logging
import time

import moderngl
import numpy as np
import pygame

from dcterrain.config import (
    APP_VERSION,
    CLIMB_SPEED,
    DEFAULT_EYE_HEIGHT,
    DEFAULT_FLY_SPEED,
    FAST_MULTIPLIER,
    FOG_END,
    FOG_START,
    FPS_CAP,
    HEIGHT_SMOOTH_K,
    HUD_REFRESH_SECONDS,
    LIGHT_DIR,
    MIN_CLEARANCE,
    TURN_RATE,
    WINDOW_HEIGHT,
    WINDOW_WIDTH,
    StreamSettings,
    TerrainConfig,
)
from dcterrain.render.camera import FlyCamera
from dcterrain.render.gpu_sink import GpuSink
from dcterrain.render.renderer import Renderer
from dcterrain.util.math import normalize
from dcterrain.world.scheduler import SchedulerStats
from dcterrain.world.world import StreamWorld

log = logging.getLogger(__name__)


def _init_pygame_gl() -> None:
    pygame.init()
    pygame.display.gl_set_attribute(pygame.GL_CONTEXT_MAJOR_VERSION, 3)
    pygame.display.gl_set_attribute(pygame.GL_CONTEXT_MINOR_VERSION, 3)
    pygame.display.gl_set_attribute(pygame.GL_CONTEXT_PROFILE_MASK, pygame.GL_CONTEXT_PROFILE_CORE)
    pygame.display.gl_set_attribute(pygame.GL_DEPTH_SIZE, 24)
    pygame.display.gl_set_attribute(pygame.GL_DOUBLEBUFFER, 1)


def _axis(keys, pos: int, neg: int) -> float:
    return float(keys[pos]) - float(keys[neg])


def _hud_lines(stats: SchedulerStats, cam: FlyCamera, fps: float, seed: int) -> list[str]:
    b = stats.budget
    return [
        f"dcterrain v{APP_VERSION} seed={seed} fps~{fps:.0f}",
        f"pos=({cam.x:.0f}, {cam.y:.0f}, {cam.z:.0f}) chunks={stats.chunks}",
        f"jobs: req={stats.requested} inflight={stats.dispatched} done={stats.committed} backlog={stats.backlog}",
        f"deferred={stats.deferred} busy={stats.busy_slots} stale={stats.stale_results} failed={stats.failed_results}",
        f"tris {b.actual_tris}+{b.pending_tris}  verts {b.actual_verts}+{b.pending_verts}",
        f"pressure {b.ratio:.2f} {b.stage.name}",
    ]


def _render_hud(renderer: Renderer, font: pygame.font.Font, lines: list[str]) -> None:
    pad = 6
    line_h = font.get_linesize()
    w = max(font.size(line)[0] for line in lines) + pad * 2
    h = line_h * len(lines) + pad * 2
    surf = pygame.Surface((w, h), pygame.SRCALPHA)
    surf.fill((0, 0, 0, 130))
    y = pad
    for line in lines:
        surf.blit(font.render(line, True, (255, 255, 255)), (pad, y))
        y += line_h
    rgba = pygame.image.tobytes(surf, "RGBA", False)
    renderer.hud_update_rgba(rgba, w, h)


def run_app(
    *,
    seed: int,
    noise_mode: str,
    settings: StreamSettings,
    terrain: TerrainConfig,
    update_interval: float,
    wireframe: bool = False,
    hud: bool = False,
    lod_tint: bool = False,
    fly_speed: float = DEFAULT_FLY_SPEED,
) -> None:
    _init_pygame_gl()

    flags = pygame.OPENGL | pygame.DOUBLEBUF | pygame.RESIZABLE
    pygame.display.set_mode((WINDOW_WIDTH, WINDOW_HEIGHT), flags)
    pygame.display.set_caption(f"dcterrain v{APP_VERSION} (seed={seed})")

    try:
        ctx = moderngl.create_context()
    except Exception as e:
        pygame.quit()
        raise RuntimeError("Failed to create ModernGL context (need OpenGL 3.2+)") from e

    log.debug(
        "moderngl ctx version_code=%s vendor=%s renderer=%s",
        ctx.version_code,
        ctx.info.get("GL_VENDOR"),
        ctx.info.get("GL_RENDERER"),
    )
    ctx.viewport = (0, 0, WINDOW_WIDTH, WINDOW_HEIGHT)

    renderer = Renderer(ctx, WINDOW_WIDTH, WINDOW_HEIGHT)
    renderer.wireframe = wireframe
    sink = GpuSink(ctx, renderer.prog)
    world = StreamWorld(sink, seed=seed, noise_mode=noise_mode, settings=settings, terrain=terrain)

    cam = FlyCamera(
        speed=fly_speed,
        fast_multiplier=FAST_MULTIPLIER,
        turn_rate=TURN_RATE,
        climb_speed=CLIMB_SPEED,
        min_clearance=MIN_CLEARANCE,
        smooth_k=HEIGHT_SMOOTH_K,
    )
    half = settings.chunk_size * 0.5
    cam.place(half, half, world.height_at, DEFAULT_EYE_HEIGHT)

    light_dir = normalize(np.array(LIGHT_DIR, dtype=np.float32))
    pygame.font.init()
    font = pygame.font.SysFont("Menlo", 16) or pygame.font.Font(None, 16)

    clock = pygame.time.Clock()
    last_t = time.perf_counter()
    last_tick = -float("inf")
    last_hud = last_t
    fps_est = 0.0
    stats = world.update(cam.x, cam.z)
    running = True

    try:
        while running:
            now = time.perf_counter()
            dt = min(now - last_t, 0.05)
            last_t = now

            for event in pygame.event.get():
                if event.type == pygame.QUIT:
                    running = False
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_ESCAPE:
                    running = False
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_l:
                    lod_tint = not lod_tint
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_h:
                    hud = not hud
                elif event.type == pygame.KEYDOWN and event.key == pygame.K_f:
                    renderer.wireframe = not renderer.wireframe
                elif event.type == pygame.VIDEORESIZE:
                    w, h = max(64, event.w), max(64, event.h)
                    pygame.display.set_mode((w, h), flags)
                    renderer.resize(w, h)

            keys = pygame.key.get_pressed()
            cam.update(
                dt,
                world.height_at,
                forward=_axis(keys, pygame.K_w, pygame.K_s),
                strafe=_axis(keys, pygame.K_d, pygame.K_a),
                turn=_axis(keys, pygame.K_RIGHT, pygame.K_LEFT),
                look=_axis(keys, pygame.K_UP, pygame.K_DOWN),
                climb=_axis(keys, pygame.K_e, pygame.K_q),
                fast=bool(keys[pygame.K_LSHIFT]),
            )

            if now - last_tick >= update_interval:
                last_tick = now
                stats = world.update(cam.x, cam.z)

            if dt > 0:
                inst_fps = 1.0 / dt
                fps_est = (0.9 * fps_est + 0.1 * inst_fps) if fps_est > 0 else inst_fps

            renderer.begin_frame()
            renderer.set_common_uniforms(
                view=cam.view_matrix(),
                cam_pos=cam.eye(),
                light_dir=light_dir,
                fog_start=FOG_START,
                fog_end=FOG_END,
                lod_tint=1.0 if lod_tint else 0.0,
            )
            renderer.draw_terrain(sink)

            if hud:
                if now - last_hud >= HUD_REFRESH_SECONDS:
                    last_hud = now
                    _render_hud(renderer, font, _hud_lines(stats, cam, fps_est, seed))
                renderer.draw_hud()

            pygame.display.flip()
            if FPS_CAP and FPS_CAP > 0:
                clock.tick(FPS_CAP)
            else:
                clock.tick()
    finally:
        world.shutdown()
        sink.release()
        renderer.release()
        pygame.quit()
