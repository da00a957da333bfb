from __future__ import annotations


def _pick_glsl_version(ctx_version_code: int) -> int:
    """GLSL 330 on OpenGL 3.3+, otherwise 150 (3.2 core)."""
    return 330 if ctx_version_code >= 330 else 150


_VERT_BODY = """
in vec3 in_pos;
in vec3 in_norm;
in vec3 in_color;

uniform mat4 u_proj;
uniform mat4 u_view;

out vec3 v_world_pos;
out vec3 v_norm;
out vec3 v_color;

void main() {
    v_world_pos = in_pos;
    v_norm = in_norm;
    v_color = in_color;
    gl_Position = u_proj * u_view * vec4(in_pos, 1.0);
}
"""

_FRAG_BODY = """in vec3 v_world_pos;
in vec3 v_norm;
in vec3 v_color;

uniform vec3 u_light_dir;
uniform vec3 u_cam_pos;
uniform float u_fog_start;
uniform float u_fog_end;
uniform float u_lod_tint;

out vec4 f_color;

vec3 terrain_color(float h, float slope) {
    vec3 grass = vec3(0.16, 0.38, 0.17);
    vec3 rock  = vec3(0.42, 0.40, 0.38);
    vec3 snow  = vec3(0.92, 0.94, 0.98);
    vec3 col = mix(rock, grass, smoothstep(0.55, 0.80, slope));
    float snow_amt = smoothstep(260.0, 340.0, h) * smoothstep(0.45, 0.75, slope);
    return mix(col, snow, snow_amt);
}

void main() {
    vec3 n = normalize(v_norm);
    vec3 l = normalize(u_light_dir);
    float diff = max(dot(n, l), 0.0);

    vec3 base = terrain_color(v_world_pos.y, clamp(n.y, 0.0, 1.0));
    base = mix(base, v_color, u_lod_tint);
    vec3 col = base * (0.45 + 0.85 * diff);

    float dist = length(v_world_pos.xz - u_cam_pos.xz);
    float fog_amount = smoothstep(u_fog_start, u_fog_end, dist);
    col = mix(col, vec3(0.70, 0.80, 0.92), fog_amount);

    f_color = vec4(col, 1.0);
}"""


_HUD_VERT = """
in vec2 in_pos;
in vec2 in_uv;
out vec2 v_uv;
void main() {
    v_uv = in_uv;
    gl_Position = vec4(in_pos, 0.0, 1.0);
}
"""

_HUD_FRAG = """
uniform sampler2D u_tex;
in vec2 v_uv;
out vec4 f_color;
void main() {
    f_color = texture(u_tex, v_uv);
}
"""


def shader_sources(ctx_version_code: int) -> tuple[str, str]:
    prefix = f"#version {_pick_glsl_version(ctx_version_code)}\n"
    return prefix + _VERT_BODY, prefix + _FRAG_BODY


def hud_shader_sources(ctx_version_code: int) -> tuple[str, str]:
    prefix = f"#version {_pick_glsl_version(ctx_version_code)}\n"
    return prefix + _HUD_VERT, prefix + _HUD_FRAG
