"""
Typed configuration models matching the YAML config structure.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import yaml

from .errors import ModelLoadError


@dataclass
class CameraConfig:
    """Camera configuration."""
    device_id: Union[int, str] = 0
    resolution: Optional[List[int]] = None
    fps: Optional[int] = None
    fourcc: Optional[str] = "MJPG"
    use_v4l: bool = True
    max_retries: int = 3

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "CameraConfig":
        """Adapter: Create from config dictionary."""
        return cls(
            device_id=d.get("device_id", 0),
            resolution=d.get("resolution"),
            fps=d.get("fps"),
            fourcc=d.get("fourcc", "MJPG"),
            use_v4l=d.get("use_v4l", True),
            max_retries=d.get("max_retries", 3),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "device_id": self.device_id,
            "resolution": self.resolution,
            "fps": self.fps,
            "fourcc": self.fourcc,
            "use_v4l": self.use_v4l,
            "max_retries": self.max_retries,
        }


@dataclass(frozen=True)
class ModelConfig:
    """
    Detection model configuration.

    class_names is the sole source of truth for the class count; index in
    the list is the class id the model emits.
    """
    model_path: str
    class_names: List[str] = field(default_factory=list)
    input_size: int = 640

    @property
    def num_classes(self) -> int:
        return len(self.class_names)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "ModelConfig":
        try:
            return cls(
                model_path=str(d["model_path"]),
                class_names=[str(n) for n in d.get("class_names") or []],
                input_size=d.get("input_size", 640),
            )
        except (KeyError, TypeError) as e:
            raise ModelLoadError(f"Invalid model config: {e}") from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model_path": self.model_path,
            "class_names": list(self.class_names),
            "input_size": self.input_size,
        }

    def validate(self) -> None:
        """
        Raise ModelLoadError unless the config describes a usable model.
        """
        if not isinstance(self.input_size, int) or isinstance(self.input_size, bool) or self.input_size <= 0:
            raise ModelLoadError(f"input_size must be a positive integer, got {self.input_size!r}")
        if not self.class_names:
            raise ModelLoadError("class_names must not be empty")
        if not self.model_path or not os.path.exists(self.model_path):
            raise ModelLoadError(f"Model artifact does not exist: {self.model_path}")


def load_model_config(path: str) -> ModelConfig:
    """
    Load a ModelConfig from a JSON or YAML file.

    JSON is read through the YAML parser. A relative model_path is resolved
    against the config file's directory.

    Raises:
        ModelLoadError: If the file is missing, unparsable or invalid.
    """
    if not os.path.exists(path):
        raise ModelLoadError(f"Model config does not exist: {path}")
    try:
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ModelLoadError(f"Invalid model config {path}: {e}") from e
    if not isinstance(raw, dict):
        raise ModelLoadError(f"Invalid model config {path}: expected a mapping")

    cfg = ModelConfig.from_dict(raw)
    if not os.path.isabs(cfg.model_path):
        resolved = os.path.join(os.path.dirname(os.path.abspath(path)), cfg.model_path)
        cfg = ModelConfig(model_path=resolved, class_names=cfg.class_names, input_size=cfg.input_size)
    cfg.validate()
    return cfg


@dataclass
class PipelineConfig:
    """Detection pipeline tuning."""
    channel_capacity: int = 100
    conf_thresh: float = 0.5
    nms_thresh: float = 0.5
    run_inference: bool = True
    clip_boxes: bool = False
    letterbox: bool = True
    rate_window: float = 1.0
    poll_interval: float = 0.1
    max_device_retries: int = 3
    retry_backoff: float = 0.5

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PipelineConfig":
        return cls(
            channel_capacity=d.get("channel_capacity", 100),
            conf_thresh=d.get("conf_thresh", 0.5),
            nms_thresh=d.get("nms_thresh", 0.5),
            run_inference=d.get("run_inference", True),
            clip_boxes=d.get("clip_boxes", False),
            letterbox=d.get("letterbox", True),
            rate_window=d.get("rate_window", 1.0),
            poll_interval=d.get("poll_interval", 0.1),
            max_device_retries=d.get("max_device_retries", 3),
            retry_backoff=d.get("retry_backoff", 0.5),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "channel_capacity": self.channel_capacity,
            "conf_thresh": self.conf_thresh,
            "nms_thresh": self.nms_thresh,
            "run_inference": self.run_inference,
            "clip_boxes": self.clip_boxes,
            "letterbox": self.letterbox,
            "rate_window": self.rate_window,
            "poll_interval": self.poll_interval,
            "max_device_retries": self.max_device_retries,
            "retry_backoff": self.retry_backoff,
        }


@dataclass
class Config:
    """
    Complete application configuration.

    This is a typed representation of the YAML config structure. The model
    section is kept as a raw dict because it may point at a separate file
    (model.config_file) that is only resolved when the session is loaded.
    """
    camera: CameraConfig = field(default_factory=CameraConfig)
    model: Dict[str, Any] = field(default_factory=dict)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    log_path: str = "logs/perception.log"
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Config":
        """Adapter: Create Config from raw dictionary (e.g., from load_config)."""
        return cls(
            camera=CameraConfig.from_dict(d.get("camera") or {}),
            model=dict(d.get("model") or {}),
            pipeline=PipelineConfig.from_dict(d.get("pipeline") or {}),
            log_path=d.get("log_path", "logs/perception.log"),
            log_level=d.get("log_level", "INFO"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert back to dictionary."""
        return {
            "camera": self.camera.to_dict(),
            "model": dict(self.model),
            "pipeline": self.pipeline.to_dict(),
            "log_path": self.log_path,
            "log_level": self.log_level,
        }

    def model_config(self, base_dir: str = ".") -> ModelConfig:
        """
        Resolve the model section into a validated ModelConfig.

        Raises:
            ModelLoadError: If the section or the file it points at is invalid.
        """
        config_file = self.model.get("config_file")
        if config_file:
            if not os.path.isabs(config_file):
                config_file = os.path.join(base_dir, config_file)
            return load_model_config(config_file)
        if not self.model:
            raise ModelLoadError("Missing model configuration section")
        cfg = ModelConfig.from_dict(self.model)
        cfg.validate()
        return cfg
