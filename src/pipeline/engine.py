"""
Perception pipeline engine.

Two threads connected by a BoundedFrameChannel:

- acquisition: owns the ObservationSource, reads frames and sends them
  down the channel (blocking when it is full).
- processing: owns the InferenceSession, receives frames, runs
  preprocess -> forward -> decode and hands Detections to the sinks.

Frames and their ownership move only through the channel, and each
resource has exactly one owning thread, so the hot path takes no locks.
Shutdown is cooperative: stop() sets a shared event that both threads
check at every blocking point.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import List, Optional

from inference.session import InferenceSession
from models.config import Config, PipelineConfig
from models.errors import (
    ChannelClosed,
    DeviceError,
    InvalidFrame,
    MalformedTensor,
)
from models.frame import FrameData
from observation import ObservationSource, OpenCVSource, OpenCVSourceConfig
from .channel import BoundedFrameChannel
from .rate import RateMonitor
from .sink import DetectionSink


@dataclass
class PipelineStats:
    """
    Runtime statistics for the pipeline.

    Each counter is written by a single thread (acquisition or processing).
    """
    frames_acquired: int = 0
    frames_received: int = 0
    frames_processed: int = 0
    frames_dropped: int = 0
    detections_emitted: int = 0
    device_retries: int = 0
    camera_fps: Optional[float] = None
    recv_fps: Optional[float] = None
    start_time: float = field(default_factory=time.time)


class PerceptionPipeline:
    """
    Acquisition -> channel -> inference pipeline.

    Example:
        source = OpenCVSource(OpenCVSourceConfig(device_id=0))
        session = InferenceSession.load(model_config)
        pipeline = PerceptionPipeline(source, session, PipelineConfig())
        pipeline.add_sink(lambda frame, detections: print(detections))
        pipeline.run()
    """

    def __init__(
        self,
        source: ObservationSource,
        session: Optional[InferenceSession],
        config: PipelineConfig,
    ):
        if config.run_inference and session is None:
            raise ValueError("An InferenceSession is required when run_inference is enabled")
        self.source = source
        self.session = session
        self.config = config
        self.stats = PipelineStats()
        self.error: Optional[BaseException] = None

        self._cancel = threading.Event()
        source.bind_cancel(self._cancel)
        self.channel = BoundedFrameChannel(
            capacity=config.channel_capacity,
            cancel_event=self._cancel,
            poll_interval=config.poll_interval,
        )
        self._sinks: List[DetectionSink] = []
        self._threads: List[threading.Thread] = []
        self._error_lock = threading.Lock()

    def add_sink(self, sink: DetectionSink) -> None:
        """
        Register a callable receiving (frame_data, detections) for every
        processed frame. Called on the processing thread.
        """
        self._sinks.append(sink)

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the acquisition and processing threads."""
        if self._threads:
            raise RuntimeError("Pipeline already started")
        self.stats = PipelineStats()
        self._threads = [
            threading.Thread(target=self._acquire_loop, name="acquisition", daemon=True),
            threading.Thread(target=self._process_loop, name="processing", daemon=True),
        ]
        for t in self._threads:
            t.start()
        logging.info(
            f"Pipeline started: source={self.source.source_id}, "
            f"capacity={self.config.channel_capacity}, inference={self.config.run_inference}"
        )

    def stop(self) -> None:
        """Request shutdown; both threads exit at their next suspension point."""
        if not self._cancel.is_set():
            logging.info("Pipeline stop requested")
        self._cancel.set()
        self.channel.cancel()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for both threads. Returns True if they have finished."""
        deadline = None if timeout is None else time.monotonic() + timeout
        for t in self._threads:
            remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
            t.join(remaining)
        return not self.running

    def run(self) -> PipelineStats:
        """
        Run until the source is exhausted, stop() is called, or a fatal error.

        Raises:
            DeviceError: If acquisition failed beyond the retry budget.
            MalformedTensor: If the model output does not match its config.
        """
        self.start()
        try:
            while not self.join(timeout=self.config.poll_interval):
                pass
        except KeyboardInterrupt:
            logging.info("Pipeline interrupted by user")
            self.stop()
            self.join()
        logging.info(
            f"Pipeline stopped: acquired={self.stats.frames_acquired}, "
            f"processed={self.stats.frames_processed}, dropped={self.stats.frames_dropped}"
        )
        if self.error is not None:
            raise self.error
        return self.stats

    def _fail(self, error: BaseException) -> None:
        with self._error_lock:
            if self.error is None:
                self.error = error
        logging.error(f"Pipeline failed: {error}")
        self.stop()

    def _on_rate(self, label: str, rate: float) -> None:
        if label == "camera":
            self.stats.camera_fps = rate
        else:
            self.stats.recv_fps = rate

    # Acquisition thread

    def _acquire_loop(self) -> None:
        rate = RateMonitor("camera", window=self.config.rate_window, on_report=self._on_rate)
        try:
            self.source.open()
            while not self._cancel.is_set():
                frame_data = self._read_with_retry()
                if frame_data is None:
                    logging.info("Source exhausted")
                    break
                self.channel.send(frame_data)
                self.stats.frames_acquired += 1
                rate.record_one()
        except ChannelClosed:
            pass
        except DeviceError as e:
            self._fail(e)
        except Exception as e:
            logging.exception("Unexpected acquisition error")
            self._fail(e)
        finally:
            self.channel.close()
            try:
                self.source.close()
            except Exception as e:
                logging.warning(f"Error closing source: {e}")

    def _read_with_retry(self) -> Optional[FrameData]:
        """
        Read one frame, retrying DeviceError with exponential backoff.

        Returns None when the source is exhausted or shutdown was requested
        while backing off.
        """
        attempt = 0
        while True:
            try:
                return self.source.read()
            except DeviceError as e:
                if attempt >= self.config.max_device_retries:
                    raise
                delay = self.config.retry_backoff * (2 ** attempt)
                attempt += 1
                self.stats.device_retries += 1
                logging.warning(
                    f"Frame read failed ({attempt}/{self.config.max_device_retries}): {e}; "
                    f"retrying in {delay:.2f}s"
                )
                if self._cancel.wait(delay):
                    return None

    # Processing thread

    def _process_loop(self) -> None:
        rate = RateMonitor("recv", window=self.config.rate_window, on_report=self._on_rate)
        try:
            while True:
                frame_data = self.channel.receive()
                self.stats.frames_received += 1
                rate.record_one()
                if self.config.run_inference:
                    self._process_frame(frame_data)
        except ChannelClosed:
            pass
        except MalformedTensor as e:
            self._fail(e)
        except Exception as e:
            logging.exception("Unexpected processing error")
            self._fail(e)

    def _process_frame(self, frame_data: FrameData) -> None:
        try:
            detections = self.session.detect(
                frame_data,
                conf_thresh=self.config.conf_thresh,
                nms_thresh=self.config.nms_thresh,
                clip=self.config.clip_boxes,
            )
        except InvalidFrame as e:
            self.stats.frames_dropped += 1
            logging.warning(f"Dropping frame {frame_data.frame_index}: {e}")
            return

        self.stats.frames_processed += 1
        self.stats.detections_emitted += len(detections)

        for sink in self._sinks:
            try:
                sink(frame_data, detections)
            except Exception as e:
                logging.warning(f"Sink error: {e}")


def create_pipeline_from_config(
    config: Config,
    session: Optional[InferenceSession],
    source: Optional[ObservationSource] = None,
) -> PerceptionPipeline:
    """
    Factory function to create a PerceptionPipeline from the typed config.

    Args:
        config: Full application config.
        session: Loaded session, or None when run_inference is disabled.
        source: Override the camera built from config.camera.
    """
    if source is None:
        source = OpenCVSource(
            OpenCVSourceConfig.from_camera_config(config.camera.to_dict(), source_id="main-camera")
        )
    return PerceptionPipeline(source, session, config.pipeline)
