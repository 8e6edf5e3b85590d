"""
Test for frame sources and orientation handling.

Tests:
- ImageFrameSource from an array and from a file, bounded by max_frames
- Rotation transform maps texture corners as expected
- FrameSourceFactory type selection
- OpenCVFrameSource testing mode reads every frame of a short clip
"""

import os
import sys
import tempfile

import cv2
import numpy as np

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from src.frame_source.FrameSource import CameraFrame, rotation_transform
from src.frame_source.FrameSourceFactory import FrameSourceFactory
from src.frame_source.ImageFrameSource import ImageFrameSource
from src.frame_source.OpenCvFrameSource import OpenCVFrameSource


def _apply(matrix, u, v):
    out = matrix @ np.array([u, v, 0.0, 1.0], dtype=np.float32)
    return round(float(out[0]), 6), round(float(out[1]), 6)


def test_rotation_transform():
    assert np.array_equal(rotation_transform(0), np.eye(4, dtype=np.float32))
    assert _apply(rotation_transform(90), 0.0, 0.0) == (0.0, 1.0)
    assert _apply(rotation_transform(90), 1.0, 0.0) == (0.0, 0.0)
    assert _apply(rotation_transform(180), 0.25, 0.75) == (0.75, 0.25)
    assert _apply(rotation_transform(270), 0.0, 0.0) == (1.0, 0.0)
    assert np.allclose(rotation_transform(360), rotation_transform(0))

    try:
        rotation_transform(45)
        assert False, "Expected ValueError"
    except ValueError:
        pass
    print("PASS: rotation transforms")


def test_camera_frame_orientation():
    image = np.zeros((480, 640, 3), dtype=np.uint8)
    assert CameraFrame.from_image(image).oriented_size == (640, 480)
    assert CameraFrame.from_image(image, rotation=90).oriented_size == (480, 640)
    assert CameraFrame.from_image(image, rotation=-90).rotation == 270
    print("PASS: oriented size follows rotation")


def test_image_source_from_array():
    image = np.full((90, 160, 3), 77, dtype=np.uint8)
    source = ImageFrameSource(image, max_frames=3, rotation=180)

    frames = list(source.frames())
    source.cleanup()

    assert len(frames) == 3
    frame, latency = frames[0]
    assert latency == 0.0
    assert frame.image is image
    assert frame.rotation == 180
    assert all(f.width == 160 and f.height == 90 for f, _ in frames)
    print("PASS: image source yields bounded frames")


def test_image_source_from_file_and_factory():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "scene.png")
        image = np.zeros((40, 60, 3), dtype=np.uint8)
        image[10:20, 10:20] = 255
        assert cv2.imwrite(path, image)

        source = FrameSourceFactory.create('auto', source=path, max_frames=2)
        assert isinstance(source, ImageFrameSource)
        frames = [f for f, _ in source.frames()]
        source.cleanup()
        assert len(frames) == 2
        assert np.array_equal(frames[0].image, image)

        try:
            ImageFrameSource(os.path.join(tmp, "missing.png"))
            assert False, "Expected ValueError"
        except ValueError:
            pass

    try:
        FrameSourceFactory.create('gstreamer')
        assert False, "Expected ValueError"
    except ValueError:
        pass
    print("PASS: file image source and factory")


def test_opencv_source_testing_mode():
    with tempfile.TemporaryDirectory() as tmp:
        path = os.path.join(tmp, "clip.avi")
        writer = cv2.VideoWriter(path, cv2.VideoWriter_fourcc(*"MJPG"), 10.0, (64, 48))
        if not writer.isOpened():
            print("SKIP: no MJPG encoder available")
            return
        for i in range(12):
            writer.write(np.full((48, 64, 3), i * 20, dtype=np.uint8))
        writer.release()

        source = FrameSourceFactory.create('opencv', source=path, testing_mode=True, rotation=90)
        assert isinstance(source, OpenCVFrameSource)
        frames = [f for f, _ in source.frames()]
        source.cleanup()

        assert len(frames) == 12, "Testing mode drops nothing"
        assert frames[0].oriented_size == (48, 64)
    print("PASS: OpenCV testing mode")


if __name__ == "__main__":
    test_rotation_transform()
    test_camera_frame_orientation()
    test_image_source_from_array()
    test_image_source_from_file_and_factory()
    test_opencv_source_testing_mode()
    print("\nAll frame source tests passed")
