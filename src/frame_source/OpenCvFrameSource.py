"""
OpenCV-based frame source for video files, webcams, or RTSP streams.

The GPU pipeline only ever wants the newest frame, so production mode keeps
a short bounded queue and the reader blocks (backpressure) rather than
growing memory when the renderer falls behind.
"""

import queue
import threading
import time
from typing import Iterator, Optional, Tuple

import cv2

from src.frame_source.FrameSource import CameraFrame, FrameSource
from src.utils.AppLogging import logger


class OpenCVFrameSource(FrameSource):
    """
    OpenCV-based frame source.

    Modes:
    1. Production: background thread reads into a bounded queue
    2. Testing: synchronous on-demand reading, no frame drops
    """

    def __init__(
        self,
        source,
        queue_size: int = 4,
        target_fps: Optional[float] = None,
        testing_mode: bool = False,
        rotation: int = 0,
    ):
        """
        Args:
            source: Video source (file path, camera index, or RTSP URL)
            queue_size: Bounded queue size for production mode
            target_fps: Reader pacing (None = source FPS)
            testing_mode: If True, read frames synchronously (no drops)
            rotation: Orientation correction in degrees (0/90/180/270)
        """
        self.source = source
        self.testing_mode = testing_mode
        self.rotation = rotation % 360
        self.cap = cv2.VideoCapture(source)

        if not self.cap.isOpened():
            raise ValueError(f"Could not open video source: {source}")

        self.source_fps = self.cap.get(cv2.CAP_PROP_FPS) or 30.0
        self.total_frames = int(self.cap.get(cv2.CAP_PROP_FRAME_COUNT))
        self.frame_width = int(self.cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        self.frame_height = int(self.cap.get(cv2.CAP_PROP_FRAME_HEIGHT))

        logger.info(
            f"[OpenCVFrameSource] Source: {source}, FPS: {self.source_fps}, "
            f"Frames: {self.total_frames}, Size: {self.frame_width}x{self.frame_height}, "
            f"Rotation: {self.rotation}"
        )

        self.running = True
        self._stopped = threading.Event()
        self.last_frame_time = None
        self._frame_count = 0
        self._queue_full_count = 0

        if testing_mode:
            logger.info("[OpenCVFrameSource] Testing mode - synchronous frame reading")
            self.queue = None
            self.read_thread = None
            self.frame_interval = None
        else:
            self.queue = queue.Queue(maxsize=queue_size)
            fps = target_fps if target_fps and target_fps > 0 else self.source_fps
            # Live cameras pace themselves; only files need throttling
            self.frame_interval = 1.0 / fps if self.total_frames > 0 else None
            logger.info(
                f"[OpenCVFrameSource] Production mode - queue {queue_size}, "
                f"pacing {'off' if self.frame_interval is None else f'{fps:.1f} FPS'}"
            )
            self.read_thread = threading.Thread(target=self._read_frames, name="FrameReader", daemon=True)
            self.read_thread.start()

    def _make_frame(self, image) -> CameraFrame:
        return CameraFrame.from_image(image, rotation=self.rotation)

    def _inter_frame_ms(self, now: float) -> float:
        latency = 0.0 if self.last_frame_time is None else (now - self.last_frame_time) * 1000.0
        self.last_frame_time = now
        return latency

    def _sleep_responsive(self, duration: float) -> None:
        """Sleep in 10 ms chunks so cleanup() is not held up."""
        deadline = time.perf_counter() + duration
        while self.running and not self._stopped.is_set():
            remaining = deadline - time.perf_counter()
            if remaining <= 0:
                break
            time.sleep(min(0.01, remaining))

    def _read_frames(self):
        """Background reader (production mode) with backpressure and pacing."""
        logger.info("[OpenCVFrameSource] Background reader started")

        while self.running and not self._stopped.is_set():
            cycle_start = time.perf_counter()

            ret, image = self.cap.read()
            if not ret:
                logger.info("[OpenCVFrameSource] End of video stream")
                self.running = False
                break

            self._frame_count += 1
            item = (self._make_frame(image), self._inter_frame_ms(cycle_start))

            while not self._stopped.is_set():
                try:
                    self.queue.put(item, block=True, timeout=0.5)
                    break
                except queue.Full:
                    self._queue_full_count += 1
                    if self._queue_full_count % 10 == 1:
                        logger.warning(
                            f"[OpenCVFrameSource] Queue full (renderer slow), "
                            f"waiting... (count: {self._queue_full_count})"
                        )

            if self.frame_interval is not None:
                self._sleep_responsive(self.frame_interval - (time.perf_counter() - cycle_start))

        if self.cap.isOpened():
            self.cap.release()

        logger.info(
            f"[OpenCVFrameSource] Background reader stopped. "
            f"Total frames: {self._frame_count}, Queue full events: {self._queue_full_count}"
        )

    def _read_frame_sync(self) -> Optional[Tuple[CameraFrame, float]]:
        """Synchronously read the next frame (testing mode)."""
        if not self.running:
            return None

        cycle_start = time.perf_counter()
        ret, image = self.cap.read()
        if not ret:
            self.running = False
            return None

        self._frame_count += 1
        if self._frame_count % 100 == 0:
            logger.info(f"[OpenCVFrameSource] Read {self._frame_count}/{self.total_frames or '?'} frames")

        return self._make_frame(image), self._inter_frame_ms(cycle_start)

    def frames(self) -> Iterator[Tuple[CameraFrame, float]]:
        """
        Yield frames from the video source.

        Yields:
            Tuple of (frame, latency_ms)
        """
        if self.testing_mode:
            while self.running:
                result = self._read_frame_sync()
                if result is None:
                    break
                yield result
            logger.info(f"[OpenCVFrameSource] Completed: {self._frame_count} frames")
        else:
            while self.running or not self.queue.empty():
                try:
                    yield self.queue.get(timeout=0.1)
                except queue.Empty:
                    continue

    def cleanup(self):
        """Stop the reader, drain the queue and release the capture."""
        logger.info("[OpenCVFrameSource] Cleanup starting...")

        self.running = False
        self._stopped.set()

        if self.read_thread is not None and self.read_thread.is_alive():
            self.read_thread.join(timeout=3.0)
            if self.read_thread.is_alive():
                logger.warning("[OpenCVFrameSource] Background thread did not stop cleanly")

        if self.queue is not None:
            while True:
                try:
                    self.queue.get_nowait()
                except queue.Empty:
                    break

        if self.cap is not None and self.cap.isOpened():
            self.cap.release()

        logger.info(
            f"[OpenCVFrameSource] Cleanup complete. Read {self._frame_count} frames, "
            f"queue full events: {self._queue_full_count}"
        )
