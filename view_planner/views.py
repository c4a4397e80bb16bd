from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np

INVALID_COST = -1.0  # legitimate costs are never negative


@dataclass
class Pose:
    position: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)  # x, y, z, w

    def as_list(self) -> List[float]:
        return [float(v) for v in self.position] + [float(v) for v in self.orientation]

    def to_payload(self) -> Dict[str, List[float]]:
        return {
            "position": [float(v) for v in self.position],
            "orientation": [float(v) for v in self.orientation],
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Pose":
        position = [float(v) for v in payload["position"]]
        orientation = np.asarray([float(v) for v in payload["orientation"]], dtype=np.float64)
        if len(position) != 3 or orientation.shape != (4,):
            raise ValueError("Pose needs 3 position and 4 orientation values.")
        if not all(math.isfinite(v) for v in position) or not np.all(np.isfinite(orientation)):
            raise ValueError("Pose contains non-finite values.")

        norm = float(np.linalg.norm(orientation))
        if norm <= 1e-12:
            orientation = np.array([0.0, 0.0, 0.0, 1.0])
        else:
            orientation = orientation / norm

        qx, qy, qz, qw = (float(v) for v in orientation)
        return cls(
            position=(position[0], position[1], position[2]),
            orientation=(qx, qy, qz, qw),
        )


@dataclass
class View:
    pose: Pose = field(default_factory=Pose)
    bad: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {"pose": self.pose.to_payload()}

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "View":
        return cls(pose=Pose.from_payload(payload["pose"]), bad=bool(payload.get("bad", False)))


class ViewSpace:
    """Ordered candidate views. Indices stay valid until the next wholesale refresh."""

    def __init__(self, views: Optional[Sequence[View]] = None) -> None:
        self._views: List[View] = list(views or [])

    def __len__(self) -> int:
        return len(self._views)

    def get_view(self, index: int) -> View:
        return self._views[index]

    def set_bad(self, index: int) -> None:
        self._views[index].bad = True

    def good_indices(self) -> List[int]:
        return [i for i, view in enumerate(self._views) if not view.bad]

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ViewSpace":
        raw_views = payload["views"]
        if not isinstance(raw_views, list):
            raise ValueError("views must be a list.")
        return cls([View.from_payload(item) for item in raw_views])


@dataclass
class MovementCost:
    cost: float
    exception: str = "NONE"

    @property
    def is_valid(self) -> bool:
        return self.exception == "NONE" and math.isfinite(self.cost) and self.cost >= 0.0

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "MovementCost":
        exception = str(payload.get("exception", "NONE")).strip().upper() or "NONE"
        return cls(cost=float(payload["cost"]), exception=exception)


class ReceiveInfo(str, Enum):
    RECEIVED = "RECEIVED"
    FAILED = "FAILED"
    PENDING = "PENDING"
