# =============================
# GLSL shaders
# =============================

# =============================
# Phosphor decay / excitation compute shader
# prev brightness image → walk the pixel's chunk → next image + display
# =============================

PHOSPHOR_COMPUTE_SHADER = """
#version 430

layout(local_size_x = 16, local_size_y = 16) in;

// std140, 1056 bytes, packed by scope_types.pack_uniforms()
layout(std140, binding = 0) uniform Config {
    uvec4 chunks[64];      // chunk i at [i >> 2][i & 3]: offset | size << 16
    vec2 window_size;
    float line_radius;
    float decay;           // fraction retained per sample period
    float sigma;
    float intensity;
    float total_time;      // frame length in sample periods
};

struct Line {
    uint start;   // 2x16snorm
    uint v;       // 2x16snorm, end - start
    float time;
};

// Lines grouped by chunk, time-sorted inside each chunk
layout(std430, binding = 0) readonly buffer Lines {
    Line lines[];
};

layout(r32f, binding = 0) uniform readonly image2D prev_img;
layout(r32f, binding = 1) uniform writeonly image2D next_img;
layout(rgba32f, binding = 2) uniform writeonly image2D display_img;

uniform float norm_k;          // k in excitation / (k * sigma + |v|)
uniform float discard_margin;  // 1.1
uniform float brightness_max;  // 2.0

const float INV_SQRT_2PI = 0.3989422804014327;

float excitation(float d) {
    float z = d / sigma;
    return intensity * (INV_SQRT_2PI / sigma) * exp(-0.5 * z * z);
}

void main() {
    ivec2 gid = ivec2(gl_GlobalInvocationID.xy);
    ivec2 size = imageSize(next_img);
    if (gid.x >= size.x || gid.y >= size.y) return;

    // ── Pixel centre → square, row 0 at the top, longer axis stretched ──
    vec2 frag = vec2(gid) + 0.5;
    float scale = min(window_size.x, window_size.y);
    vec2 pos = vec2(2.0 * frag.x - window_size.x,
                    window_size.y - 2.0 * frag.y) / scale;
    if (max(abs(pos.x), abs(pos.y)) > discard_margin) return;

    // ── Chunk lookup ──
    ivec2 cell = clamp(ivec2(floor(8.0 * (pos + 1.0))), ivec2(0), ivec2(15));
    int i_chunk = cell.y * 16 + cell.x;
    uint offset_size = chunks[i_chunk >> 2][i_chunk & 3];
    uint offset = offset_size & 0xFFFFu;
    uint stop = min(offset + (offset_size >> 16), uint(lines.length()));

    // ── Decay + excitation fold (strictly in stored order) ──
    float next = imageLoad(prev_img, gid).r;
    float t = 0.0;
    for (uint i = offset; i < stop; ++i) {
        Line line = lines[i];
        next *= pow(decay, line.time - t);
        t = line.time;

        vec2 start = unpackSnorm2x16(line.start);
        vec2 v = unpackSnorm2x16(line.v);
        vec2 u = pos - start;
        float vv = dot(v, v);
        if (vv != 0.0) {
            u -= v * clamp(dot(u, v) / vv, 0.0, 1.0);
        }

        float contrib = excitation(length(u)) / (norm_k * sigma + sqrt(vv));
        if (!isinf(contrib) && !isnan(contrib)) {
            next += contrib;
        }
    }
    next *= pow(decay, total_time - t);
    next = clamp(next, 0.0, brightness_max);

    imageStore(next_img, gid, vec4(next, 0.0, 0.0, 0.0));
    imageStore(display_img, gid, vec4(0.0, sqrt(next), 0.0, 1.0));
}
"""

# =============================
# Display blit (fullscreen triangle, no VBO)
# =============================

FULLSCREEN_VERTEX_SHADER = """
#version 330
out vec2 uv;
void main() {
    // fullscreen triangle trick: 3 vertices, no VBO needed
    uv = vec2((gl_VertexID << 1) & 2, gl_VertexID & 2);
    gl_Position = vec4(uv * 2.0 - 1.0, 0.0, 1.0);
}
"""

DISPLAY_FRAGMENT_SHADER = """
#version 330
in vec2 uv;
out vec4 fragColor;

uniform sampler2D display_tex;
uniform vec3 bg_color;

void main() {
    // display rows are stored top-down
    vec4 c = texture(display_tex, vec2(uv.x, 1.0 - uv.y));
    fragColor = vec4(mix(bg_color, min(c.rgb, vec3(1.0)), c.a), 1.0);
}
"""
