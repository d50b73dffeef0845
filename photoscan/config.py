# all configurations in one place

import logging
from dataclasses import dataclass, field, fields, is_dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

import yaml

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent
DATA_DIR = PROJECT_ROOT / "data"
MODELS_DIR = PROJECT_ROOT / "models"


class ConfigError(ValueError):
    """Raised when a configuration file cannot be applied."""


@dataclass
class VideoConfig:
    source: Union[int, str] = 0  # 0 for webcam, or path to video file
    detector: str = "classical"  # "classical" or "segmentation"
    min_interval_ms: int = 200   # throttle between accepted frames
    export_crops: bool = True

@dataclass
class PreprocessConfig:
    processing_width: int = 640  # longer side of the working image
    clahe_clip_limit: float = 2.5
    clahe_tile_grid: int = 8
    blur_ksize: int = 5

@dataclass
class ClassicalConfig:
    canny_low_ratio: float = 0.66
    canny_high_ratio: float = 1.33
    close_ksize: int = 3
    min_area_ratio: float = 0.02
    max_area_ratio: float = 0.95
    approx_epsilon_ratio: float = 0.02
    angle_tolerance: float = 20.0     # degrees from 90
    aspect_range: Tuple[float, float] = (0.6, 1.8)
    min_fill_ratio: float = 0.70
    min_texture: float = 8.0          # Laplacian variance
    texture_erode_px: int = 3
    target_aspect: float = 1.33
    max_results: int = 5

@dataclass
class SegmentationConfig:
    model_path: Path = MODELS_DIR / "segmenter" / "photo_seg.torchscript"
    fallback_weights: Optional[str] = "yolov8n-seg.pt"
    device: str = "auto"              # "auto", "cpu", "cuda", "mps"
    layout: str = "yolov8"            # "yolov8" (raw head) or "end2end"
    input_size: int = 640
    score_threshold: float = 0.25     # applied while parsing network rows
    nms_iou: float = 0.7
    max_detections: int = 10
    confidence_threshold: float = 0.4 # applied by the mask decoder
    mask_threshold: float = 0.45
    median_ksize: int = 7
    min_contour_area: float = 2000.0
    crop_to_box: bool = True
    max_results: int = 5

@dataclass
class QualityConfig:
    overlap_iou: float = 0.05         # box IoU above which a weaker candidate is OVERLAPPING
    frame_margin_px: float = 2.0      # corners further outside than this are OUT_OF_FRAME

@dataclass
class TrackerConfig:
    enabled: bool = True
    iou_threshold: float = 0.35
    alpha: float = 0.75
    max_miss_frames: int = 6

@dataclass
class RectifyConfig:
    downscale: int = 4
    mirror: bool = False              # set for laterally-flipped previews
    border_value: Tuple[int, int, int] = (255, 255, 255)

@dataclass
class DisplayConfig:
    rotation: int = 0                 # capture rotation, clockwise degrees
    viewport_width: int = 720
    viewport_height: int = 960
    target_aspect: Optional[float] = 0.75  # width / height of the visible region

@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    log_path: Optional[Path] = None
    crops_dir: Path = DATA_DIR / "crops"

@dataclass
class PipelineConfig:
    video: VideoConfig = field(default_factory=VideoConfig)
    preprocess: PreprocessConfig = field(default_factory=PreprocessConfig)
    classical: ClassicalConfig = field(default_factory=ClassicalConfig)
    segmentation: SegmentationConfig = field(default_factory=SegmentationConfig)
    quality: QualityConfig = field(default_factory=QualityConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    rectify: RectifyConfig = field(default_factory=RectifyConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _coerce(name: str, default: Any, value: Any) -> Any:
    """Convert a YAML scalar/list to the type of the dataclass default."""
    if value is None:
        return None
    if isinstance(default, Path) or name.endswith(("_path", "_dir")):
        path = Path(value).expanduser()
        # relative paths are anchored at the project, like the built-in defaults
        return path if path.is_absolute() else PROJECT_ROOT / path
    if isinstance(default, tuple):
        if not isinstance(value, (list, tuple)) or len(value) != len(default):
            raise ConfigError(f"{name}: expected a list of {len(default)} values, got {value!r}")
        return tuple(type(d)(v) for d, v in zip(default, value))
    if isinstance(default, bool):
        if not isinstance(value, bool):
            raise ConfigError(f"{name}: expected true/false, got {value!r}")
        return value
    if isinstance(default, float) and isinstance(value, (int, float)):
        return float(value)
    if isinstance(default, int) and not isinstance(default, bool) and isinstance(value, float):
        raise ConfigError(f"{name}: expected an integer, got {value!r}")
    return value


def _apply_section(section: Any, values: Dict[str, Any], prefix: str) -> None:
    known = {f.name for f in fields(section)}
    for key, value in values.items():
        if key not in known:
            raise ConfigError(f"unknown key '{prefix}.{key}'")
        setattr(section, key, _coerce(f"{prefix}.{key}", getattr(section, key), value))


def config_from_dict(data: Optional[Dict[str, Any]]) -> PipelineConfig:
    """
    Build a PipelineConfig from a nested dict, section by section over
    the defaults. Unknown sections or keys raise ConfigError.
    """
    cfg = PipelineConfig()
    if not data:
        return cfg
    if not isinstance(data, dict):
        raise ConfigError("top level of the configuration must be a mapping")

    for name, values in data.items():
        section = getattr(cfg, name, None)
        if section is None or not is_dataclass(section):
            raise ConfigError(f"unknown section '{name}'")
        if not isinstance(values, dict):
            raise ConfigError(f"section '{name}' must be a mapping")
        _apply_section(section, values, name)

    if cfg.video.detector not in ("classical", "segmentation"):
        raise ConfigError(f"video.detector must be 'classical' or 'segmentation', got {cfg.video.detector!r}")
    if cfg.segmentation.layout not in ("yolov8", "end2end"):
        raise ConfigError(f"segmentation.layout must be 'yolov8' or 'end2end', got {cfg.segmentation.layout!r}")
    if cfg.display.rotation not in (0, 90, 180, 270):
        raise ConfigError(f"display.rotation must be 0, 90, 180 or 270, got {cfg.display.rotation!r}")
    return cfg


def load_config(path: Union[str, Path]) -> PipelineConfig:
    """Read a YAML configuration file and merge it over the defaults."""
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"config file not found: {path}")
    with open(path, "r") as f:
        try:
            data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid YAML in {path}: {e}") from e
    return config_from_dict(data)


def configure_logging(config: LoggingConfig) -> None:
    handlers = [logging.StreamHandler()]
    if config.log_path is not None:
        Path(config.log_path).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(config.log_path))
    logging.basicConfig(
        level=getattr(logging, str(config.level).upper(), logging.INFO),
        format=config.format,
        handlers=handlers,
        force=True,
    )
