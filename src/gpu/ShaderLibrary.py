"""
GLSL sources for every pipeline stage (OpenGL 4.3 core).

Raster passes share one vertex shader that draws the unit quad and applies
``uSTMatrix`` to the texture coordinates (camera lens/orientation transform
for the first pass, identity afterwards).

Compute passes run on 16x16 workgroups for image-shaped dispatches and
256-wide workgroups for the flags-clear dispatch.
"""

VERTEX_2D = """
#version 430
in vec2 in_position;
in vec2 in_texcoord;
uniform mat4 uSTMatrix;
out vec2 v_texcoord;

void main() {
    gl_Position = vec4(in_position, 0.0, 1.0);
    v_texcoord = (uSTMatrix * vec4(in_texcoord, 0.0, 1.0)).xy;
}
"""

# Camera colour -> luminance, replicated over RGB
GRAY_FRAG = """
#version 430
uniform sampler2D uTexture;
in vec2 v_texcoord;
out vec4 fragColor;

void main() {
    vec3 rgb = texture(uTexture, v_texcoord).rgb;
    float luma = dot(rgb, vec3(0.299, 0.587, 0.114));
    fragColor = vec4(vec3(luma), 1.0);
}
"""

# 1-D box min/max along one axis; kernelSize is the half-width.
# kernelSize = 0 with a zero step degenerates to a plain copy (blit).
_MORPH_FRAG_TEMPLATE = """
#version 430
uniform sampler2D uTexture;
uniform int kernelSize;
uniform float {step_uniform};
in vec2 v_texcoord;
out vec4 fragColor;

void main() {{
    vec4 acc = texture(uTexture, v_texcoord);
    for (int i = -kernelSize; i <= kernelSize; ++i) {{
        vec2 offset = vec2({offset_expr});
        acc = {op}(acc, texture(uTexture, v_texcoord + offset));
    }}
    fragColor = vec4(acc.rgb, 1.0);
}}
"""


def _morph_frag(op: str, horizontal: bool) -> str:
    if horizontal:
        return _MORPH_FRAG_TEMPLATE.format(
            step_uniform="texelWidth", offset_expr="float(i) * texelWidth, 0.0", op=op
        )
    return _MORPH_FRAG_TEMPLATE.format(
        step_uniform="texelHeight", offset_expr="0.0, float(i) * texelHeight", op=op
    )


ERODE_H_FRAG = _morph_frag("min", horizontal=True)
ERODE_V_FRAG = _morph_frag("min", horizontal=False)
DILATE_H_FRAG = _morph_frag("max", horizontal=True)
DILATE_V_FRAG = _morph_frag("max", horizontal=False)

# Negative results clamp to 0 when stored into the RGBA8 target
SUBTRACT_FRAG = """
#version 430
uniform sampler2D uMinuend;
uniform sampler2D uSubtrahend;
in vec2 v_texcoord;
out vec4 fragColor;

void main() {
    vec3 a = texture(uMinuend, v_texcoord).rgb;
    vec3 b = texture(uSubtrahend, v_texcoord).rgb;
    fragColor = vec4(a - b, 1.0);
}
"""

# Inputs are 8-bit; comparing quantized levels keeps v >= t exact
THRESHOLD_FRAG = """
#version 430
uniform sampler2D uTexture;
uniform float uThreshold;
in vec2 v_texcoord;
out vec4 fragColor;

void main() {
    float level = floor(texture(uTexture, v_texcoord).r * 255.0 + 0.5);
    float cut = floor(uThreshold * 255.0 + 0.5);
    fragColor = level >= cut ? vec4(1.0) : vec4(0.0, 0.0, 0.0, 1.0);
}
"""

# Background black, every label a stable pseudo-random colour
LABEL_COLOR_FRAG = """
#version 430
uniform usampler2D uLabelTexture;
in vec2 v_texcoord;
out vec4 fragColor;

vec3 labelColor(uint l) {
    l ^= l >> 16;
    l *= 0x7feb352du;
    l ^= l >> 15;
    l *= 0x846ca68bu;
    l ^= l >> 16;
    vec3 c = vec3(float(l & 255u), float((l >> 8) & 255u), float((l >> 16) & 255u)) / 255.0;
    return 0.25 + 0.75 * c;
}

void main() {
    uint label = texture(uLabelTexture, v_texcoord).r;
    fragColor = label == 0u ? vec4(0.0, 0.0, 0.0, 1.0) : vec4(labelColor(label), 1.0);
}
"""

LABEL_INIT_COMP = """
#version 430
layout(local_size_x = 16, local_size_y = 16) in;

layout(binding = 0) uniform sampler2D uTexture;
layout(r32ui, binding = 0) writeonly uniform uimage2D uLabelOut;
uniform float uThreshold;

void main() {
    ivec2 size = imageSize(uLabelOut);
    ivec2 p = ivec2(gl_GlobalInvocationID.xy);
    if (p.x >= size.x || p.y >= size.y) {
        return;
    }
    float level = floor(texelFetch(uTexture, p, 0).r * 255.0 + 0.5);
    float cut = floor(uThreshold * 255.0 + 0.5);
    uint label = level >= cut ? uint(p.y * size.x + p.x) + 1u : 0u;
    imageStore(uLabelOut, p, uvec4(label, 0u, 0u, 0u));
}
"""

# 4-connected max propagation, two steps per round along each axis.
# The far sample only counts when the adjacent one is foreground, so labels
# never cross background.
LABEL_PROPAGATE_COMP = """
#version 430
layout(local_size_x = 16, local_size_y = 16) in;

layout(r32ui, binding = 0) readonly uniform uimage2D uLabelIn;
layout(r32ui, binding = 1) writeonly uniform uimage2D uLabelOut;

uint labelAt(ivec2 q, ivec2 size) {
    if (q.x < 0 || q.y < 0 || q.x >= size.x || q.y >= size.y) {
        return 0u;
    }
    return imageLoad(uLabelIn, q).r;
}

void main() {
    ivec2 size = imageSize(uLabelIn);
    ivec2 p = ivec2(gl_GlobalInvocationID.xy);
    if (p.x >= size.x || p.y >= size.y) {
        return;
    }

    uint center = labelAt(p, size);
    if (center == 0u) {
        imageStore(uLabelOut, p, uvec4(0u));
        return;
    }

    const ivec2 dirs[4] = ivec2[4](ivec2(1, 0), ivec2(-1, 0), ivec2(0, 1), ivec2(0, -1));
    uint best = center;
    for (int i = 0; i < 4; ++i) {
        uint adjacent = labelAt(p + dirs[i], size);
        if (adjacent == 0u) {
            continue;
        }
        best = max(best, adjacent);
        best = max(best, labelAt(p + 2 * dirs[i], size));
    }
    imageStore(uLabelOut, p, uvec4(best, 0u, 0u, 0u));
}
"""

LABEL_CLEAR_COMP = """
#version 430
layout(local_size_x = 256) in;

layout(std430, binding = 1) buffer SeenFlags { uint seen[]; };
layout(std430, binding = 2) buffer Counter { uint count; };
uniform uint uWordCount;

void main() {
    uint i = gl_GlobalInvocationID.x;
    if (i == 0u) {
        count = 0u;
    }
    if (i < uWordCount) {
        seen[i] = 0u;
    }
}
"""

LABEL_COUNT_COMP = """
#version 430
layout(local_size_x = 16, local_size_y = 16) in;

layout(binding = 0) uniform usampler2D uLabelTexture;
layout(std430, binding = 1) buffer SeenFlags { uint seen[]; };
layout(std430, binding = 2) buffer Counter { uint count; };

void main() {
    ivec2 size = textureSize(uLabelTexture, 0);
    ivec2 p = ivec2(gl_GlobalInvocationID.xy);
    if (p.x >= size.x || p.y >= size.y) {
        return;
    }
    uint label = texelFetch(uLabelTexture, p, 0).r;
    if (label == 0u) {
        return;
    }
    uint bit = 1u << (label & 31u);
    uint prev = atomicOr(seen[label >> 5], bit);
    if ((prev & bit) == 0u) {
        atomicAdd(count, 1u);
    }
}
"""

# name -> (vertex, fragment) for raster programs
RASTER_PROGRAMS = {
    "gray": (VERTEX_2D, GRAY_FRAG),
    "erode_h": (VERTEX_2D, ERODE_H_FRAG),
    "erode_v": (VERTEX_2D, ERODE_V_FRAG),
    "dilate_h": (VERTEX_2D, DILATE_H_FRAG),
    "dilate_v": (VERTEX_2D, DILATE_V_FRAG),
    "subtract": (VERTEX_2D, SUBTRACT_FRAG),
    "threshold": (VERTEX_2D, THRESHOLD_FRAG),
    "label_color": (VERTEX_2D, LABEL_COLOR_FRAG),
}

COMPUTE_PROGRAMS = {
    "label_init": LABEL_INIT_COMP,
    "label_propagate": LABEL_PROPAGATE_COMP,
    "label_clear": LABEL_CLEAR_COMP,
    "label_count": LABEL_COUNT_COMP,
}
