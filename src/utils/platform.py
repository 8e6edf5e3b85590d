"""
Platform detection for choosing the OpenGL context backend.

Offscreen contexts on Linux without a display server need the EGL backend;
everywhere else the platform default (WGL/CGL/GLX) is used.
"""

import os
import sys

IS_WINDOWS = sys.platform == 'win32'
IS_MACOS = sys.platform == 'darwin'
IS_LINUX = sys.platform.startswith('linux')

# No X11/Wayland display available
IS_HEADLESS = IS_LINUX and not (os.getenv('DISPLAY') or os.getenv('WAYLAND_DISPLAY'))

# moderngl backend name, None = platform default
DEFAULT_GL_BACKEND = 'egl' if IS_HEADLESS else None

if IS_WINDOWS:
    PLATFORM_NAME = "Windows"
elif IS_MACOS:
    PLATFORM_NAME = "macOS"
elif IS_HEADLESS:
    PLATFORM_NAME = "Linux (headless)"
else:
    PLATFORM_NAME = "Linux"
