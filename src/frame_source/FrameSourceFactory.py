"""
Frame source factory for creating appropriate frame sources.
"""

from src.frame_source.FrameSource import FrameSource
from src.frame_source.ImageFrameSource import ImageFrameSource
from src.frame_source.OpenCvFrameSource import OpenCVFrameSource

_IMAGE_SUFFIXES = ('.png', '.jpg', '.jpeg', '.bmp', '.tif', '.tiff')


class FrameSourceFactory:
    """
    Factory for creating frame sources based on type.
    """

    @staticmethod
    def create(source_type: str, **kwargs) -> FrameSource:
        """
        Create a frame source.

        Args:
            source_type: 'opencv', 'image' or 'auto' (image suffix -> 'image')

        Kwargs for OpenCV:
            source: Video source (file path, camera index, or RTSP URL)
            queue_size: Bounded queue size
            target_fps: Target FPS for frame pacing
            testing_mode: If True, enables synchronous reading
            rotation: Orientation correction in degrees

        Kwargs for image:
            source: Image path or array
            target_fps, max_frames, rotation

        Returns:
            FrameSource instance
        """
        source = kwargs.get('source', 0)
        rotation = kwargs.get('rotation', 0)
        kind = source_type.lower()

        if kind == 'auto':
            is_image = isinstance(source, str) and source.lower().endswith(_IMAGE_SUFFIXES)
            kind = 'image' if is_image else 'opencv'

        if kind == 'opencv':
            if isinstance(source, str) and source.isdigit():
                source = int(source)
            return OpenCVFrameSource(
                source,
                queue_size=kwargs.get('queue_size', 4),
                target_fps=kwargs.get('target_fps', None),
                testing_mode=kwargs.get('testing_mode', False),
                rotation=rotation,
            )

        elif kind == 'image':
            return ImageFrameSource(
                source,
                target_fps=kwargs.get('target_fps', None),
                max_frames=kwargs.get('max_frames', None),
                rotation=rotation,
            )

        else:
            raise ValueError(f"Unknown source_type: {source_type}")
