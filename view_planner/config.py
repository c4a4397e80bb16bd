from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Tuple

DEFAULT_CONFIG_FILENAME = "view_planner.json"

METRIC_NAMES = (
    "NrOfUnknownVoxels",
    "AverageUncertainty",
    "AverageEndPointUncertainty",
    "UnknownObjectSideFrontier",
    "UnknownObjectVolumeFrontier",
    "ClassicFrontier",
    "EndNodeOccupancySum",
    "TotalOccupancyCertainty",
    "TotalNrOfOccupieds",
)


@dataclass
class RayCastingConfig:
    ray_resolution_x: float = 0.5
    ray_resolution_y: float = 0.5
    ray_step_size: int = 2

    image_center_x: float = 376.0  # [px]
    image_center_y: float = 240.0  # [px]
    subwindow_width: float = 188.0  # [px]
    subwindow_height: float = 120.0  # [px]

    min_ray_depth: float = 0.05
    max_ray_depth: float = 1.5
    occupied_passthrough_threshold: float = 0.0

    def to_payload(self) -> Dict[str, float]:
        return {
            "ray_resolution_x": self.ray_resolution_x,
            "ray_resolution_y": self.ray_resolution_y,
            "ray_step_size": self.ray_step_size,
            "min_x": self.image_center_x - self.subwindow_width / 2.0,
            "max_x": self.image_center_x + self.subwindow_width / 2.0,
            "min_y": self.image_center_y - self.subwindow_height / 2.0,
            "max_y": self.image_center_y + self.subwindow_height / 2.0,
            "min_ray_depth": self.min_ray_depth,
            "max_ray_depth": self.max_ray_depth,
            "occupied_passthrough_threshold": self.occupied_passthrough_threshold,
        }


@dataclass
class PlannerConfig:
    host: str = "0.0.0.0"
    port: int = 8780
    api_token: str = ""

    robot_interface_url: str = "http://127.0.0.1:8781"
    model_url: str = "http://127.0.0.1:8782"
    request_timeout_s: float = 30.0

    data_folder: str = ""
    cost_weight: float = 1.0
    information_weights: Dict[str, float] = field(default_factory=dict)

    command_queue_size: int = 16
    retry_interval_s: float = 2.0
    start_poll_s: float = 0.5
    pause_poll_s: float = 1.0

    termination: Dict[str, Any] = field(default_factory=lambda: {"name": "never"})
    ray_casting: RayCastingConfig = field(default_factory=RayCastingConfig)

    def weight_vector(self) -> List[float]:
        return [float(self.information_weights.get(name, 0.0)) for name in METRIC_NAMES]


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return int(default)


def _to_float(value: Any, default: float) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return float(default)


def _clip(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(value)))


def _load_json(path: Path) -> Tuple[Dict[str, Any], str]:
    if not path.exists():
        return {}, ""

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        return {}, f"Failed reading {path.name}: {exc}"

    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError as exc:
        return {}, f"Invalid JSON in {path.name}: {exc}"

    if not isinstance(parsed, dict):
        return {}, f"{path.name} must contain a JSON object."

    return parsed, ""


def _ray_casting_from(raw: Any) -> RayCastingConfig:
    defaults = RayCastingConfig()
    if not isinstance(raw, dict):
        return defaults
    return RayCastingConfig(
        ray_resolution_x=_to_float(raw.get("ray_resolution_x"), defaults.ray_resolution_x),
        ray_resolution_y=_to_float(raw.get("ray_resolution_y"), defaults.ray_resolution_y),
        ray_step_size=_to_int(raw.get("ray_step_size"), defaults.ray_step_size),
        image_center_x=_to_float(raw.get("image_center_x"), defaults.image_center_x),
        image_center_y=_to_float(raw.get("image_center_y"), defaults.image_center_y),
        subwindow_width=_to_float(raw.get("subwindow_width"), defaults.subwindow_width),
        subwindow_height=_to_float(raw.get("subwindow_height"), defaults.subwindow_height),
        min_ray_depth=_to_float(raw.get("min_ray_depth"), defaults.min_ray_depth),
        max_ray_depth=_to_float(raw.get("max_ray_depth"), defaults.max_ray_depth),
        occupied_passthrough_threshold=_to_float(
            raw.get("occupied_passthrough_threshold"),
            defaults.occupied_passthrough_threshold,
        ),
    )


def load_planner_config(base_dir: Path | None = None) -> Tuple[PlannerConfig, List[str]]:
    root = base_dir if base_dir is not None else Path.cwd()

    config_override = os.environ.get("NBV_PLANNER_CONFIG", "").strip()
    config_path = Path(config_override).expanduser() if config_override else (root / DEFAULT_CONFIG_FILENAME)

    raw, warning = _load_json(config_path)
    notes: List[str] = []
    if warning:
        notes.append(warning)

    def pick_str(env_name: str, json_key: str, default: str = "") -> str:
        env_val = os.environ.get(env_name)
        if env_val is not None and env_val.strip():
            return env_val.strip()
        value = raw.get(json_key, default)
        if value is None:
            return default
        return str(value).strip()

    def pick_num(env_name: str, json_key: str, default: Any) -> Any:
        env_val = os.environ.get(env_name)
        if env_val is not None and env_val.strip():
            return env_val.strip()
        return raw.get(json_key, default)

    def has_value(env_name: str, json_key: str) -> bool:
        env_val = os.environ.get(env_name)
        return (env_val is not None and bool(env_val.strip())) or raw.get(json_key) is not None

    cfg = PlannerConfig(
        host=pick_str("NBV_SERVICE_HOST", "host", "0.0.0.0"),
        port=_to_int(pick_num("NBV_SERVICE_PORT", "port", 8780), 8780),
        api_token=pick_str("NBV_API_TOKEN", "api_token", ""),
        robot_interface_url=pick_str("NBV_ROBOT_INTERFACE_URL", "robot_interface_url", "http://127.0.0.1:8781"),
        model_url=pick_str("NBV_MODEL_URL", "model_url", "http://127.0.0.1:8782"),
        request_timeout_s=_to_float(pick_num("NBV_REQUEST_TIMEOUT_S", "request_timeout_s", 30.0), 30.0),
        data_folder=pick_str("NBV_DATA_FOLDER", "data_folder", ""),
        cost_weight=_to_float(pick_num("NBV_COST_WEIGHT", "cost_weight", 1.0), 1.0),
        command_queue_size=_to_int(raw.get("command_queue_size", 16), 16),
        retry_interval_s=_to_float(pick_num("NBV_RETRY_INTERVAL_S", "retry_interval_s", 2.0), 2.0),
        start_poll_s=_to_float(raw.get("start_poll_s", 0.5), 0.5),
        pause_poll_s=_to_float(raw.get("pause_poll_s", 1.0), 1.0),
        ray_casting=_ray_casting_from(raw.get("ray_casting")),
    )

    if not has_value("NBV_DATA_FOLDER", "data_folder"):
        notes.append("No data folder configured. Planning data will be saved to the working directory.")
    if not has_value("NBV_COST_WEIGHT", "cost_weight"):
        notes.append("No cost weight configured. Default '1.0' will be used.")

    metric_cfg = raw.get("information_metric", {})
    if not isinstance(metric_cfg, dict):
        notes.append("information_metric must be a JSON object; all metric weights default to zero.")
        metric_cfg = {}

    for name in METRIC_NAMES:
        entry = metric_cfg.get(name)
        weight = entry.get("weight") if isinstance(entry, dict) else None
        if weight is None:
            notes.append(
                f"No weight found for {name} metric (information_metric/{name}/weight). "
                "Weight will be set to zero and the metric thus not considered in calculations."
            )
        cfg.information_weights[name] = _to_float(weight, 0.0)

    termination = raw.get("termination")
    if isinstance(termination, dict) and termination.get("name"):
        cfg.termination = dict(termination)

    if not cfg.host:
        cfg.host = "0.0.0.0"
    cfg.port = int(_clip(cfg.port, 1, 65535))
    cfg.command_queue_size = int(_clip(cfg.command_queue_size, 1, 256))
    cfg.request_timeout_s = _clip(cfg.request_timeout_s, 0.5, 600.0)
    cfg.retry_interval_s = _clip(cfg.retry_interval_s, 0.01, 60.0)
    cfg.start_poll_s = _clip(cfg.start_poll_s, 0.01, 10.0)
    cfg.pause_poll_s = _clip(cfg.pause_poll_s, 0.01, 10.0)

    cfg.robot_interface_url = cfg.robot_interface_url.rstrip("/")
    cfg.model_url = cfg.model_url.rstrip("/")
    if cfg.data_folder and not cfg.data_folder.endswith("/"):
        cfg.data_folder += "/"

    return cfg, notes
