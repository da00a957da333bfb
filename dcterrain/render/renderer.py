from __future__ import annotations

import moderngl
import numpy as np

from dcterrain.config import FAR, FOV_DEG, NEAR
from dcterrain.render.shaders import hud_shader_sources, shader_sources
from dcterrain.util.math import perspective

SKY_COLOR = (0.70, 0.80, 0.92)
HUD_MARGIN_PX = 8


def hud_quad(tex_w: int, tex_h: int, view_w: int, view_h: int, margin: int = HUD_MARGIN_PX) -> np.ndarray:
    """Two triangles (pos2, uv2) covering tex_w x tex_h pixels in the top-left corner."""
    x0 = -1.0 + 2.0 * margin / view_w
    y0 = 1.0 - 2.0 * margin / view_h
    x1 = x0 + 2.0 * tex_w / view_w
    y1 = y0 - 2.0 * tex_h / view_h
    # pygame surfaces are uploaded top row first, so v=0 is the top edge
    return np.array(
        [
            x0, y0, 0.0, 0.0,
            x1, y0, 1.0, 0.0,
            x0, y1, 0.0, 1.0,
            x1, y0, 1.0, 0.0,
            x1, y1, 1.0, 1.0,
            x0, y1, 0.0, 1.0,
        ],
        dtype=np.float32,
    )


class Renderer:
    """Terrain program plus a pixel-exact HUD overlay."""

    def __init__(self, ctx: moderngl.Context, width: int, height: int) -> None:
        self.ctx = ctx
        self.width = width
        self.height = height
        self.wireframe = False

        vert, frag = shader_sources(ctx.version_code)
        self.prog = ctx.program(vertex_shader=vert, fragment_shader=frag)
        self.prog["u_lod_tint"].value = 0.0
        self._update_projection()

        ctx.enable(moderngl.DEPTH_TEST)
        # near meshes carry their own back faces
        ctx.disable(moderngl.CULL_FACE)

        hvert, hfrag = hud_shader_sources(ctx.version_code)
        self._hud_prog = ctx.program(vertex_shader=hvert, fragment_shader=hfrag)
        self._hud_vbo = ctx.buffer(reserve=6 * 4 * 4)
        self._hud_vao = ctx.vertex_array(self._hud_prog, [(self._hud_vbo, "2f 2f", "in_pos", "in_uv")])
        self._hud_tex: moderngl.Texture | None = None

    @property
    def proj(self) -> np.ndarray:
        return self._proj

    def _update_projection(self) -> None:
        self._proj = perspective(FOV_DEG, self.width / self.height, NEAR, FAR)
        self.prog["u_proj"].write(self._proj.tobytes())

    def _update_hud_quad(self) -> None:
        if self._hud_tex is not None:
            w, h = self._hud_tex.size
            self._hud_vbo.write(hud_quad(w, h, self.width, self.height).tobytes())

    def resize(self, width: int, height: int) -> None:
        self.width = width
        self.height = height
        self.ctx.viewport = (0, 0, width, height)
        self._update_projection()
        self._update_hud_quad()

    def release(self) -> None:
        if self._hud_tex is not None:
            self._hud_tex.release()
        for obj in (self._hud_vao, self._hud_vbo, self._hud_prog, self.prog):
            obj.release()

    def begin_frame(self) -> None:
        self.ctx.clear(*SKY_COLOR, 1.0)

    def set_common_uniforms(
        self,
        view: np.ndarray,
        cam_pos: np.ndarray,
        light_dir: np.ndarray,
        fog_start: float,
        fog_end: float,
        *,
        lod_tint: float = 0.0,
    ) -> None:
        p = self.prog
        p["u_view"].write(np.asarray(view, dtype=np.float32).tobytes())
        p["u_cam_pos"].value = tuple(float(c) for c in cam_pos[:3])
        p["u_light_dir"].value = tuple(float(c) for c in light_dir[:3])
        p["u_fog_start"].value = float(fog_start)
        p["u_fog_end"].value = float(fog_end)
        p["u_lod_tint"].value = float(lod_tint)

    def draw_terrain(self, sink) -> None:
        """Draw every mesh resident in `sink`; wireframe applies to this pass only."""
        self.ctx.wireframe = self.wireframe
        try:
            sink.draw()
        finally:
            self.ctx.wireframe = False

    # --- HUD ---
    def hud_update_rgba(self, rgba_bytes: bytes, w: int, h: int) -> None:
        if self._hud_tex is not None and self._hud_tex.size == (w, h):
            self._hud_tex.write(rgba_bytes)
            return
        if self._hud_tex is not None:
            self._hud_tex.release()
        self._hud_tex = self.ctx.texture((w, h), 4, data=rgba_bytes)
        self._hud_tex.filter = (moderngl.NEAREST, moderngl.NEAREST)
        self._hud_tex.repeat_x = False
        self._hud_tex.repeat_y = False
        self._update_hud_quad()

    def draw_hud(self) -> None:
        if self._hud_tex is None:
            return
        ctx = self.ctx
        ctx.disable(moderngl.DEPTH_TEST)
        ctx.enable(moderngl.BLEND)
        ctx.blend_func = (moderngl.SRC_ALPHA, moderngl.ONE_MINUS_SRC_ALPHA)
        self._hud_tex.use(location=0)
        self._hud_prog["u_tex"].value = 0
        self._hud_vao.render(mode=moderngl.TRIANGLES)
        ctx.disable(moderngl.BLEND)
        ctx.enable(moderngl.DEPTH_TEST)
