"""
Robot perception entry point.

Opens the camera, loads the detection model and runs the acquisition ->
channel -> inference pipeline until interrupted, logging detections and
the camera/delivery frame rates.

Usage:
    python src/main.py --config config/config.yaml

Arguments:
    --config: Path to configuration file
    --no-inference: Only measure frame delivery rate through the channel
    --duration: Stop after this many seconds
"""

import os
import sys
import argparse
import logging
import signal
import threading
import yaml
from typing import Dict, Any, Tuple, Optional

from inference.session import InferenceSession
from models.config import Config
from models.detection import Detections
from models.errors import PerceptionError
from models.frame import FrameData
from ops.logging import setup_logging
from pipeline.engine import create_pipeline_from_config


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively merge override into base and return base."""
    for k, v in (override or {}).items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
    return base


def load_config(config_path: str) -> Dict[str, Any]:
    """
    Load configuration with layering:
    - `config/default.yaml` (checked in)
    - `config/config.yaml` (local overrides)
    - plus any explicitly provided `--config` path (treated as overrides)
    """
    config_dir = os.path.dirname(config_path)
    base_path = os.path.join(config_dir, "default.yaml")
    local_overrides_path = os.path.join(config_dir, "config.yaml")

    merged: Dict[str, Any] = {}
    for path in (base_path, local_overrides_path):
        if os.path.exists(path):
            with open(path, "r") as f:
                _deep_merge(merged, yaml.safe_load(f) or {})

    if os.path.exists(config_path) and os.path.abspath(config_path) not in (
        os.path.abspath(base_path),
        os.path.abspath(local_overrides_path),
    ):
        with open(config_path, "r") as f:
            _deep_merge(merged, yaml.safe_load(f) or {})

    return merged


def validate_config(config: Dict[str, Any]) -> Tuple[bool, Optional[str]]:
    """
    Validate configuration file structure and values.

    Returns:
        Tuple of (is_valid, error_message)
    """
    for section in ("camera", "model", "pipeline"):
        if not isinstance(config.get(section), dict):
            return False, f"Missing required configuration section: {section}"

    camera = config["camera"]
    if "device_id" not in camera:
        return False, "Missing camera.device_id"
    if not isinstance(camera["device_id"], (int, str)):
        return False, "camera.device_id must be an integer (index) or string (URL/path)"
    if isinstance(camera["device_id"], int) and camera["device_id"] < 0:
        return False, "camera.device_id integer must be non-negative"
    resolution = camera.get("resolution")
    if resolution is not None:
        if not isinstance(resolution, list) or len(resolution) != 2:
            return False, "camera.resolution must be a list of [width, height]"
        if not all(isinstance(x, int) and x > 0 for x in resolution):
            return False, "camera.resolution values must be positive integers"

    model = config["model"]
    if "config_file" not in model and "model_path" not in model:
        return False, "model section needs either config_file or model_path"

    pipeline = config["pipeline"]
    capacity = pipeline.get("channel_capacity", 100)
    if not isinstance(capacity, int) or capacity <= 0:
        return False, "pipeline.channel_capacity must be a positive integer"
    for key in ("conf_thresh", "nms_thresh"):
        value = pipeline.get(key, 0.5)
        if not isinstance(value, (int, float)) or not 0.0 <= value <= 1.0:
            return False, f"pipeline.{key} must be between 0 and 1"

    return True, None


def log_detections(class_names):
    """Sink that logs non-empty detection results."""
    def _sink(frame_data: FrameData, detections: Detections) -> None:
        if not detections:
            return
        labels = ", ".join(
            f"{b.label(class_names)}@{b.confidence:.2f}" for b in detections
        )
        logging.info(f"Frame {frame_data.frame_index}: {len(detections)} detections [{labels}]")
    return _sink


def main(argv=None) -> int:
    """Main application function."""
    parser = argparse.ArgumentParser(description="Robot perception pipeline")
    parser.add_argument("--config", type=str, default="config/config.yaml",
                        help="Path to configuration file")
    parser.add_argument("--no-inference", action="store_true",
                        help="Only measure delivery rate, skip the model")
    parser.add_argument("--duration", type=float, default=None,
                        help="Stop after this many seconds")
    parser.add_argument("--conf-thresh", type=float, default=None,
                        help="Override pipeline.conf_thresh")
    parser.add_argument("--nms-thresh", type=float, default=None,
                        help="Override pipeline.nms_thresh")
    args = parser.parse_args(argv)

    try:
        raw_config = load_config(args.config)
    except (OSError, yaml.YAMLError) as e:
        logging.error(f"Failed to load configuration: {e}")
        return 1

    pipeline_overrides = raw_config.setdefault("pipeline", {})
    if args.no_inference:
        pipeline_overrides["run_inference"] = False
    if args.conf_thresh is not None:
        pipeline_overrides["conf_thresh"] = args.conf_thresh
    if args.nms_thresh is not None:
        pipeline_overrides["nms_thresh"] = args.nms_thresh

    is_valid, error_msg = validate_config(raw_config)
    if not is_valid:
        logging.error(f"Configuration validation failed: {error_msg}")
        return 1

    config = Config.from_dict(raw_config)
    setup_logging(config.log_path, config.log_level)
    logging.info("Starting robot perception pipeline")

    try:
        session = None
        if config.pipeline.run_inference:
            model_config = config.model_config(base_dir=os.path.dirname(os.path.abspath(args.config)))
            session = InferenceSession.load(model_config, letterboxed=config.pipeline.letterbox)

        pipeline = create_pipeline_from_config(config, session)
        if session is not None:
            pipeline.add_sink(log_detections(session.class_names))

        def _request_stop(signum, _frame):
            logging.info(f"Received signal {signum}, shutting down")
            pipeline.stop()

        signal.signal(signal.SIGTERM, _request_stop)
        signal.signal(signal.SIGINT, _request_stop)

        timer = None
        if args.duration is not None:
            timer = threading.Timer(args.duration, pipeline.stop)
            timer.daemon = True
            timer.start()

        try:
            stats = pipeline.run()
        finally:
            if timer is not None:
                timer.cancel()
    except PerceptionError as e:
        logging.error(f"Fatal: {e}")
        return 1

    logging.info(
        f"Done: acquired={stats.frames_acquired}, processed={stats.frames_processed}, "
        f"dropped={stats.frames_dropped}, detections={stats.detections_emitted}"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
