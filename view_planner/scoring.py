from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from view_planner.views import INVALID_COST

logger = logging.getLogger(__name__)


@dataclass
class Selection:
    index: int
    return_value: float
    winning_margin: float


@dataclass
class ReturnValueInfo:
    return_value: float
    winning_margin: float
    return_value_mean: float
    return_value_stddev: float


def compute_return(
    cost: float,
    information: Sequence[float],
    weights: Sequence[float],
    cost_weight: float = 1.0,
) -> float:
    view_return = -1.0 * float(cost_weight) * float(cost)

    if len(information) > len(weights):
        logger.error(
            "Not enough information weights available (%d) for the number of information "
            "values given (%d). Information is not considered for return value.",
            len(weights),
            len(information),
        )
        return view_return

    for weight, value in zip(weights, information):
        view_return += float(weight) * float(value)
    return view_return


def select_nbv(costs: Sequence[float], returns: Sequence[float]) -> Optional[Selection]:
    """
    Pick the candidate with the highest return among those with a valid cost.

    Ties go to the lowest index. Returns None when every candidate is invalid.
    """
    best_index: Optional[int] = None
    highest = 0.0
    second: Optional[float] = None

    for i, (cost, value) in enumerate(zip(costs, returns)):
        if cost == INVALID_COST:
            continue

        value = float(value)
        if best_index is None:
            best_index = i
            highest = value
        elif value > highest:
            second = highest
            best_index = i
            highest = value
        elif second is None or value > second:
            second = value

    if best_index is None:
        return None

    margin = highest - second if second is not None else 0.0
    return Selection(index=best_index, return_value=highest, winning_margin=margin)


def summarize_returns(selection: Selection, valid_returns: Sequence[float]) -> ReturnValueInfo:
    values = np.asarray(valid_returns, dtype=np.float64)
    if values.size == 0:
        mean = selection.return_value
        stddev = 0.0
    else:
        mean = float(values.mean())
        stddev = float(values.std())

    return ReturnValueInfo(
        return_value=selection.return_value,
        winning_margin=selection.winning_margin,
        return_value_mean=mean,
        return_value_stddev=stddev,
    )
