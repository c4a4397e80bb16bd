from __future__ import annotations

import logging
import os
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from view_planner.scoring import ReturnValueInfo
from view_planner.views import View

logger = logging.getLogger(__name__)

BASE_FIELDS = (
    "pos_x",
    "pos_y",
    "pos_z",
    "rot_x",
    "rot_y",
    "rot_z",
    "rot_w",
    "return_value",
    "winning_margin",
    "return_value_mean",
    "return_value_stddev",
    "cost",
)

DEFAULT_FILL = 0.0


class PlanningDataRecorder:
    """One row per planner iteration; columns can be added while recording."""

    def __init__(self, data_folder: str, metric_names: Sequence[str]) -> None:
        self.data_folder = data_folder
        self.metric_names = list(metric_names)

        self._names: List[str] = []
        self._index: Dict[str, int] = {}
        for name in list(BASE_FIELDS) + self.metric_names:
            self.index_for(name)
        self._base_width = len(self._names)

        self._rows: List[Dict[int, float]] = []
        self._row_widths: List[int] = []

    @property
    def names(self) -> List[str]:
        return list(self._names)

    @property
    def row_count(self) -> int:
        return len(self._rows)

    def index_for(self, name: str) -> int:
        existing = self._index.get(name)
        if existing is not None:
            return existing
        self._names.append(name)
        self._index[name] = len(self._names) - 1
        return self._index[name]

    def append_record(
        self,
        base_values: Sequence[float],
        extra_fields: Optional[Mapping[str, float]] = None,
    ) -> int:
        if len(base_values) > self._base_width:
            raise ValueError(
                f"Record has {len(base_values)} base values but the base schema "
                f"only has {self._base_width} columns."
            )

        row: Dict[int, float] = {i: float(v) for i, v in enumerate(base_values)}
        width = len(base_values)

        for name, value in (extra_fields or {}).items():
            index = self.index_for(name)
            row[index] = float(value)
            width = max(width, index + 1)

        self._rows.append(row)
        self._row_widths.append(width)
        return len(self._rows) - 1

    def record_nbv(
        self,
        view: View,
        return_info: ReturnValueInfo,
        cost: float,
        information: Sequence[float],
        extra_fields: Optional[Mapping[str, float]] = None,
    ) -> int:
        info = list(information)
        if len(info) > len(self.metric_names):
            logger.warning(
                "Got %d information values for %d metric columns; surplus values are not recorded.",
                len(info),
                len(self.metric_names),
            )
            info = info[: len(self.metric_names)]

        base = view.pose.as_list() + [
            return_info.return_value,
            return_info.winning_margin,
            return_info.return_value_mean,
            return_info.return_value_stddev,
            cost,
        ]
        return self.append_record(base + info, extra_fields)

    def row(self, index: int) -> List[float]:
        """Row over the current schema; columns it never set read as the default."""
        values = self._rows[index]
        return [values.get(i, DEFAULT_FILL) for i in range(len(self._names))]

    def rows(self) -> List[List[float]]:
        return [self.row(i) for i in range(len(self._rows))]

    def written_width(self, index: int) -> int:
        return self._row_widths[index]

    def as_matrix(self) -> np.ndarray:
        matrix = np.full((len(self._rows), len(self._names)), DEFAULT_FILL, dtype=np.float64)
        for r, values in enumerate(self._rows):
            for c, value in values.items():
                matrix[r, c] = value
        return matrix

    def output_path(self, now: Optional[datetime] = None) -> str:
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S_%f")
        return f"{self.data_folder}planning_data{stamp}.data"

    def persist(self, now: Optional[datetime] = None) -> str:
        path = self.output_path(now)
        folder = os.path.dirname(path)
        if folder:
            os.makedirs(folder, exist_ok=True)

        matrix = self.as_matrix()
        with open(path, "w", encoding="utf-8", newline="\n") as f:
            f.write(" ".join(self._names) + "\n")
            if matrix.shape[0] > 0:
                np.savetxt(f, matrix, fmt="%.10g", delimiter=" ")

        logger.info("Saved %d planning records to %s.", len(self._rows), path)
        return path
