"""
Pipeline visualizer for overlays, display and keyboard controls.

Separates window and input concerns from the GPU pipeline. Key presses never
change the running frame: they only stage values in the config store, which
the pipeline picks up at the next frame boundary.
"""

from typing import Optional

import cv2
import numpy as np

from src.config.pipeline_config import DisplayMode, KernelPreset, PipelineConfig, PipelineConfigStore
from src.utils.AppLogging import logger

KEY_BINDINGS = {
    '1': "kernel ORIGINAL",
    '2': "kernel X2",
    '3': "kernel X4",
    's': "toggle subtraction",
    'o': "toggle opening/closing",
    'm': "cycle display mode",
    'i': "toggle info",
    'q': "quit",
}


def format_stats(fps: int, label_count: int, display_mode: DisplayMode) -> str:
    """'FPS: n | Labels: k', labels only while labeling is active."""
    if display_mode.labeling_enabled:
        return f"FPS: {fps} | Labels: {label_count}"
    return f"FPS: {fps}"


class PipelineVisualizer:
    """
    Handles overlay drawing and the display window.

    Responsibilities:
    - Draw the stats line and the optional info panel
    - Manage the display window
    - Translate key presses into config store updates

    Does NOT handle:
    - Processing logic
    - Frame acquisition
    """

    COLORS = {
        'panel_bg': (30, 30, 35),          # Dark charcoal
        'panel_border': (70, 70, 80),      # Subtle gray border
        'text_primary': (255, 255, 255),
        'text_secondary': (180, 180, 190),
        'text_success': (100, 230, 120),   # Green for label counts
        'text_info': (255, 200, 100),      # Gold for headers
    }

    FONT = cv2.FONT_HERSHEY_SIMPLEX
    FONT_SCALE_LARGE = 0.6
    FONT_SCALE_SMALL = 0.45
    FONT_WEIGHT_BOLD = 2
    FONT_WEIGHT_NORMAL = 1

    PANEL_PADDING = 12
    LINE_HEIGHT = 22

    def __init__(
        self,
        config_store: PipelineConfigStore,
        window_name: str = "TopHat GPU",
        display_size: tuple = (1280, 720),
        base_radius: int = 7,
    ):
        """
        Args:
            config_store: Store receiving staged changes from key presses
            window_name: OpenCV window name
            display_size: Display resolution (width, height)
            base_radius: Base structuring-element radius (info panel)
        """
        self.config_store = config_store
        self.window_name = window_name
        self.display_size = display_size
        self.base_radius = base_radius
        self.show_info = False
        self.stats_text = "FPS: 0"
        self._window_created = False

    def update_stats(self, fps: int, label_count: int) -> None:
        """Stats callback target (called at most once per second)."""
        self.stats_text = format_stats(fps, label_count, self.config_store.current.display_mode)

    def _draw_panel_background(self, frame: np.ndarray, x: int, y: int, w: int, h: int, alpha: float = 0.8):
        overlay = frame.copy()
        cv2.rectangle(overlay, (x, y), (x + w, y + h), self.COLORS['panel_bg'], -1)
        cv2.addWeighted(overlay, alpha, frame, 1 - alpha, 0, frame)
        cv2.rectangle(frame, (x, y), (x + w, y + h), self.COLORS['panel_border'], 1)

    def annotate_frame(
        self,
        frame: np.ndarray,
        config: PipelineConfig,
        gl_version: str = "",
        threshold: Optional[float] = None,
    ) -> np.ndarray:
        """
        Draw overlays on a copy of *frame*.

        Args:
            frame: BGR display frame
            config: Config the frame was rendered with
            gl_version: Graphics API version string (info panel)
            threshold: Threshold used this frame, if any
        """
        annotated = frame.copy()
        color = self.COLORS['text_success'] if config.display_mode.labeling_enabled else self.COLORS['text_primary']

        text_size = cv2.getTextSize(self.stats_text, self.FONT, self.FONT_SCALE_LARGE, self.FONT_WEIGHT_BOLD)[0]
        self._draw_panel_background(annotated, 10, 10, text_size[0] + 2 * self.PANEL_PADDING, self.LINE_HEIGHT + 14)
        cv2.putText(
            annotated, self.stats_text, (10 + self.PANEL_PADDING, 10 + self.LINE_HEIGHT + 2),
            self.FONT, self.FONT_SCALE_LARGE, color, self.FONT_WEIGHT_BOLD
        )

        if self.show_info:
            self._draw_info_panel(annotated, config, gl_version, threshold)
        return annotated

    def _info_lines(self, config: PipelineConfig, gl_version: str, threshold: Optional[float]):
        lines = [
            f"GL: {gl_version or 'Unknown'}",
            f"Kernel: {config.kernel_preset.name} (r={config.radius(self.base_radius)})",
            f"Mode: {'opening' if config.opening else 'closing'}, "
            f"subtraction {'on' if config.subtraction_enabled else 'off'}",
            f"Display: {config.display_mode.value}",
        ]
        if threshold is not None:
            lines.append(f"Threshold: {threshold:.3f} ({int(round(threshold * 255))})")
        return lines

    def _draw_info_panel(self, frame: np.ndarray, config: PipelineConfig, gl_version: str,
                         threshold: Optional[float]):
        lines = self._info_lines(config, gl_version, threshold)
        width = max(cv2.getTextSize(l, self.FONT, self.FONT_SCALE_SMALL, self.FONT_WEIGHT_NORMAL)[0][0] for l in lines)
        x, y = 10, 56
        h = len(lines) * self.LINE_HEIGHT + self.PANEL_PADDING
        self._draw_panel_background(frame, x, y, width + 2 * self.PANEL_PADDING, h)
        for i, line in enumerate(lines):
            cv2.putText(
                frame, line, (x + self.PANEL_PADDING, y + (i + 1) * self.LINE_HEIGHT),
                self.FONT, self.FONT_SCALE_SMALL,
                self.COLORS['text_info'] if i == 0 else self.COLORS['text_secondary'],
                self.FONT_WEIGHT_NORMAL
            )

    def handle_key(self, key: int) -> bool:
        """
        Apply one key press.

        Returns:
            False if the key asks to quit
        """
        if key < 0 or key == 255:
            return True
        char = chr(key & 0xFF).lower()

        if char == 'q':
            return False
        if char in ('1', '2', '3'):
            preset = (KernelPreset.ORIGINAL, KernelPreset.X2, KernelPreset.X4)[int(char) - 1]
            self.config_store.update(kernel_preset=preset)
        elif char == 's':
            self.config_store.toggle("subtraction_enabled")
        elif char == 'o':
            self.config_store.toggle("opening")
        elif char == 'm':
            mode = self.config_store.cycle_display_mode()
            logger.info(f"[Visualizer] Display mode -> {mode.value}")
        elif char == 'i':
            self.show_info = not self.show_info
        return True

    def show(self, frame: np.ndarray) -> bool:
        """
        Display frame in window and process one key.

        Returns:
            False if user pressed 'q' to quit
        """
        if not self._window_created:
            cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
            self._window_created = True
            logger.info(
                "[Visualizer] Keys: " + ", ".join(f"{k}={v}" for k, v in KEY_BINDINGS.items())
            )

        if (frame.shape[1], frame.shape[0]) != tuple(self.display_size):
            frame = cv2.resize(frame, tuple(self.display_size))
        cv2.imshow(self.window_name, frame)

        key = cv2.waitKey(1)
        return self.handle_key(key)

    def cleanup(self):
        """Close display window."""
        if self._window_created:
            cv2.destroyWindow(self.window_name)
            self._window_created = False
