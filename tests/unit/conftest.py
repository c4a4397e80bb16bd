from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from view_planner.config import METRIC_NAMES, PlannerConfig
from view_planner.recorder import PlanningDataRecorder
from view_planner.state_machine import CommandChannel, PlannerSession
from view_planner.views import MovementCost, Pose, ReceiveInfo, View, ViewSpace


def make_view(x: float, bad: bool = False) -> View:
    return View(pose=Pose(position=(x, 0.0, 1.0), orientation=(0.0, 0.0, 0.0, 1.0)), bad=bad)


class FakeRobot:
    """In-memory stand-in for RobotInterfaceClient with scripted answers."""

    def __init__(self, views: List[View], costs: Dict[float, MovementCost]) -> None:
        self.views = views
        self.costs = costs
        self.calls: List[str] = []
        self.moves: List[View] = []
        self.move_results: List[Tuple[bool, bool]] = []
        self.receive_results: List[Tuple[bool, Optional[ReceiveInfo]]] = []
        self.on_cost: Optional[Callable[[int], None]] = None
        self.on_move: Optional[Callable[[View], None]] = None
        self.current = make_view(-1.0)

    async def feasible_view_space(self):
        self.calls.append("feasible_view_space")
        return True, ViewSpace([View(pose=v.pose, bad=v.bad) for v in self.views])

    async def current_view(self):
        self.calls.append("current_view")
        return True, self.current

    async def retrieve_data(self):
        self.calls.append("retrieve_data")
        if self.receive_results:
            return self.receive_results.pop(0)
        return True, ReceiveInfo.RECEIVED

    async def movement_cost(self, start, target, additional_information=True):
        self.calls.append("movement_cost")
        count = self.calls.count("movement_cost")
        if self.on_cost is not None:
            self.on_cost(count)
        cost = self.costs.get(target.pose.position[0])
        if cost is None:
            return False, None
        return True, cost

    async def move_to(self, target):
        self.calls.append("move_to")
        self.moves.append(target)
        if self.on_move is not None:
            self.on_move(target)
        if self.move_results:
            return self.move_results.pop(0)
        return True, True


class FakeModel:
    def __init__(self, values_by_x: Dict[float, List[float]]) -> None:
        self.values_by_x = values_by_x
        self.calls: List[Dict[str, Any]] = []

    async def view_information(self, poses, metric_names, ray_casting):
        self.calls.append({"poses": list(poses), "metric_names": list(metric_names)})
        values = self.values_by_x.get(poses[0].position[0])
        if values is None:
            return False, None
        return True, list(values)


class FakeSleep:
    def __init__(self) -> None:
        self.calls: List[float] = []
        self.hooks: List[Callable[[int], None]] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        for hook in self.hooks:
            hook(len(self.calls))


@pytest.fixture
def planner_config(tmp_path) -> PlannerConfig:
    cfg = PlannerConfig(
        data_folder=str(tmp_path) + "/",
        cost_weight=1.0,
        retry_interval_s=0.25,
        start_poll_s=0.1,
        pause_poll_s=0.2,
    )
    cfg.information_weights = {name: 0.0 for name in METRIC_NAMES}
    cfg.information_weights[METRIC_NAMES[0]] = 2.0
    return cfg


@pytest.fixture
def session() -> PlannerSession:
    return PlannerSession(channel=CommandChannel(max_queue_size=16))


@pytest.fixture
def recorder(planner_config) -> PlanningDataRecorder:
    return PlanningDataRecorder(planner_config.data_folder, METRIC_NAMES)
