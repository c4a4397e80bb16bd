"""
Termination strategies for the view planner loop.

The planner consults exactly one strategy per iteration, after the next best
view was selected and recorded. Strategies may keep state across iterations.
"""
from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Sequence, Type


class TerminationPolicy:
    name: str = "BaseTermination"

    def __init__(self, params: Dict[str, Any]):
        self.params = dict(params or {})

    def should_terminate(
        self,
        winning_return: float,
        winning_cost: float,
        winning_information: Sequence[float],
    ) -> bool:
        raise NotImplementedError


class NeverTerminate(TerminationPolicy):
    """Reconstruction runs until an operator stops it."""

    name = "never"

    def should_terminate(self, winning_return, winning_cost, winning_information) -> bool:
        return False


class ReturnThresholdTermination(TerminationPolicy):
    """Stop once the best achievable return drops below `min_return`."""

    name = "return_threshold"

    def __init__(self, params: Dict[str, Any]):
        super().__init__(params)
        self.min_return = float(self.params.get("min_return", 0.0))

    def should_terminate(self, winning_return, winning_cost, winning_information) -> bool:
        return float(winning_return) < self.min_return


class InformationSaturationTermination(TerminationPolicy):
    """
    Stop once one information metric of the winning view stops changing.

    The metric at `metric_index` is tracked over the last `window` iterations;
    when max - min of that history is within `tolerance` the metric is
    considered saturated.
    """

    name = "information_saturation"

    def __init__(self, params: Dict[str, Any]):
        super().__init__(params)
        self.metric_index = int(self.params.get("metric_index", 0))
        self.window = max(2, int(self.params.get("window", 5)))
        self.tolerance = abs(float(self.params.get("tolerance", 1e-3)))
        self._history: Deque[float] = deque(maxlen=self.window)

    def should_terminate(self, winning_return, winning_cost, winning_information) -> bool:
        if self.metric_index >= len(winning_information):
            return False

        self._history.append(float(winning_information[self.metric_index]))
        if len(self._history) < self.window:
            return False
        return (max(self._history) - min(self._history)) <= self.tolerance


_REGISTRY: Dict[str, Type[TerminationPolicy]] = {
    NeverTerminate.name: NeverTerminate,
    ReturnThresholdTermination.name: ReturnThresholdTermination,
    InformationSaturationTermination.name: InformationSaturationTermination,
}


def make_termination_policy(cfg: Dict[str, Any]) -> TerminationPolicy:
    params = dict(cfg or {})
    name = str(params.pop("name", NeverTerminate.name)).strip()
    if name not in _REGISTRY:
        raise ValueError(f"Unknown termination policy '{name}'. Known: {sorted(_REGISTRY.keys())}")
    return _REGISTRY[name](params)
