"""
Application constants for TopHatBlobCounter.
"""

# OpenGL enums not re-exported by moderngl
GL_R32UI = 0x8236
GL_TEXTURE_FETCH_BARRIER_BIT = 0x00000008
GL_SHADER_IMAGE_ACCESS_BARRIER_BIT = 0x00000020
GL_TEXTURE_UPDATE_BARRIER_BIT = 0x00000100
GL_BUFFER_UPDATE_BARRIER_BIT = 0x00000200
GL_SHADER_STORAGE_BARRIER_BIT = 0x00002000

# Histogram
HISTOGRAM_BINS = 256

# Keys accepted in the control file / POST /api/config
kernel_preset_key = 'kernel_preset'
subtraction_enabled_key = 'subtraction_enabled'
opening_key = 'opening'
display_mode_key = 'display_mode'

CONFIG_KEYS = [
    kernel_preset_key,
    subtraction_enabled_key,
    opening_key,
    display_mode_key,
]
