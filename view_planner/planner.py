from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

from view_planner.config import METRIC_NAMES, PlannerConfig
from view_planner.recorder import PlanningDataRecorder
from view_planner.retry import RetryResult, call_with_retry
from view_planner.scoring import Selection, compute_return, select_nbv, summarize_returns
from view_planner.services import ModelInformationClient, RobotInterfaceClient
from view_planner.state_machine import PlannerSession
from view_planner.termination import NeverTerminate, TerminationPolicy
from view_planner.views import INVALID_COST, ReceiveInfo, View, ViewSpace

logger = logging.getLogger(__name__)


class ViewPlanner:
    """
    Next-best-view loop.

    Waits for START, acquires the view space and the current view, then
    repeatedly scores every good candidate view, records the winner and moves
    there until the termination policy or a STOP_AND_PRINT ends the mission.
    Commands are only applied at yield points: the start wait, pause gates,
    retry back-offs and the end of every iteration.
    """

    def __init__(
        self,
        config: PlannerConfig,
        session: PlannerSession,
        robot: RobotInterfaceClient,
        model: ModelInformationClient,
        recorder: PlanningDataRecorder,
        termination: Optional[TerminationPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        self._cfg = config
        self._session = session
        self._robot = robot
        self._model = model
        self._recorder = recorder
        self._termination = termination if termination is not None else NeverTerminate({})
        self._sleep = sleep if sleep is not None else asyncio.sleep

        self._weights = config.weight_vector()
        self._view_space = ViewSpace()
        self._current_view: Optional[View] = None
        self._last_selection: Optional[Dict[str, Any]] = None

        if self._session.print_handler is None:
            self._session.print_handler = self._recorder.persist

    @property
    def view_space(self) -> ViewSpace:
        return self._view_space

    @property
    def current_view(self) -> Optional[View]:
        return self._current_view

    async def run(self) -> None:
        await self._wait_for_start()
        await self._initialize()

        while True:
            try:
                terminated = await self._iterate()
            except Exception as exc:
                logger.exception("View planner iteration failed.")
                self._session.update_status(f"Planner iteration error: {exc}")
                await self._wait(self._cfg.retry_interval_s)
                terminated = False

            if terminated:
                break

            self._session.poll_commands()
            if self._session.stop_requested:
                break

        logger.info("Saving data to file.")
        try:
            path = self._recorder.persist()
        except OSError as exc:
            logger.error("Failed to save planning data: %s", exc)
            self._session.mark_terminated(f"Planner finished. Saving planning data failed: {exc}")
            return
        self._session.mark_terminated(f"Planner finished. Planning data saved to {path}.")

    def debug_snapshot(self) -> Dict[str, Any]:
        return {
            "iteration": self._session.iteration,
            "view_space_size": len(self._view_space),
            "good_view_count": len(self._view_space.good_indices()),
            "current_pose": self._current_view.pose.as_list() if self._current_view else None,
            "last_selection": self._last_selection,
            "record_count": self._recorder.row_count,
            "termination": self._termination.name,
        }

    # ----- yield points -----
    async def _wait(self, seconds: float) -> None:
        await self._sleep(seconds)
        self._session.poll_commands()

    async def _wait_for_start(self) -> None:
        self._session.poll_commands()
        while not self._session.is_running:
            await self._wait(self._cfg.start_poll_s)
        logger.info("Start command received.")

    async def _pause_if_requested(self) -> None:
        self._session.poll_commands()
        if not self._session.is_paused:
            return

        logger.info("Paused.")
        while self._session.is_paused:
            await self._wait(self._cfg.pause_poll_s)
        self._session.update_status("Resumed.")

    # ----- retry-wrapped checkpoints -----
    async def _with_retry(self, operation, is_success, label: str) -> RetryResult:
        return await call_with_retry(
            operation,
            is_success,
            token=self._session.abort,
            interval_s=self._cfg.retry_interval_s,
            label=label,
            sleep=self._sleep,
            poll=self._session.poll_commands,
        )

    async def _initialize(self) -> None:
        self._session.update_status("Initializing: acquiring view space and current view.")
        await self._acquire_view_space()
        await self._acquire_current_view()
        await self._retrieve_data_and_wait()
        self._session.update_status("Planning.")

    async def _acquire_view_space(self) -> None:
        result = await self._with_retry(
            self._robot.feasible_view_space,
            lambda view_space: view_space is not None,
            "View space service",
        )
        if result.succeeded:
            self._view_space = result.value
            logger.info("Received view space with %d views.", len(self._view_space))
        else:
            logger.warning("Continuing with the previous view space (%d views).", len(self._view_space))

    async def _acquire_current_view(self) -> None:
        result = await self._with_retry(
            self._robot.current_view,
            lambda view: view is not None,
            "Current view service",
        )
        if result.succeeded:
            self._current_view = result.value
        elif self._current_view is None:
            logger.warning("No current view available; using the origin as start view.")
            self._current_view = View()

    async def _retrieve_data_and_wait(self) -> bool:
        result = await self._with_retry(
            self._robot.retrieve_data,
            lambda info: info == ReceiveInfo.RECEIVED,
            "Data retrieval service",
        )
        if result.succeeded:
            logger.info("Data retrieval service reported successful data retrieval.")
        return result.succeeded

    async def _move_to_and_wait(self, target: View) -> bool:
        result = await self._with_retry(
            lambda: self._robot.move_to(target),
            bool,
            "Robot movement service",
        )
        if result.succeeded:
            logger.info("Robot movement service reported successful movement.")
            self._current_view = target
            return True

        ok, view = await self._robot.current_view()
        if ok and view is not None:
            self._current_view = view
        return False

    # ----- iteration -----
    async def _iterate(self) -> bool:
        await self._pause_if_requested()
        iteration = self._session.next_iteration()

        if self._session.consume_reinit():
            logger.info("Reinitializing view space and current view.")
            await self._acquire_view_space()
            await self._acquire_current_view()

        candidates = self._view_space.good_indices()
        await self._pause_if_requested()

        logger.info("Retrieve movement costs...")
        costs = await self._collect_costs(candidates)
        await self._pause_if_requested()

        logger.info("Retrieve information gain...")
        information = await self._collect_information(candidates, costs)
        await self._pause_if_requested()

        logger.info("Calculating next best view...")
        returns: List[float] = [0.0] * len(candidates)
        for i in range(len(candidates)):
            if costs[i] == INVALID_COST:
                continue
            returns[i] = compute_return(costs[i], information[i], self._weights, self._cfg.cost_weight)

        selection = select_nbv(costs, returns)
        if selection is None:
            self._handle_no_feasible_view(iteration, len(candidates))
            await self._wait(self._cfg.retry_interval_s)
            return False

        valid_returns = [returns[i] for i in range(len(candidates)) if costs[i] != INVALID_COST]
        return_info = summarize_returns(selection, valid_returns)

        winner_index = candidates[selection.index]
        nbv = self._view_space.get_view(winner_index)
        winning_cost = costs[selection.index]
        winning_information = information[selection.index]

        self._recorder.record_nbv(nbv, return_info, winning_cost, winning_information)
        self._remember_selection(iteration, winner_index, selection)

        if self._termination.should_terminate(selection.return_value, winning_cost, winning_information):
            logger.info(
                "The termination criteria was fulfilled and the reconstruction is thus considered "
                "to have succeeded. The view planner will shut down."
            )
            return True

        self._session.update_status(f"Iteration {iteration}: moving to view {winner_index}.")
        await self._move_to_and_wait(nbv)
        await self._retrieve_data_and_wait()
        return False

    async def _collect_costs(self, candidates: List[int]) -> List[float]:
        start = self._current_view if self._current_view is not None else View()
        costs: List[float] = []
        for index in candidates:
            ok, cost = await self._robot.movement_cost(start, self._view_space.get_view(index))
            if not ok or cost is None or not cost.is_valid:
                self._view_space.set_bad(index)
                costs.append(INVALID_COST)
            else:
                costs.append(float(cost.cost))
        return costs

    async def _collect_information(
        self,
        candidates: List[int],
        costs: List[float],
    ) -> List[List[float]]:
        information: List[List[float]] = [[] for _ in candidates]
        for i, index in enumerate(candidates):
            if costs[i] == INVALID_COST:
                continue

            pose = self._view_space.get_view(index).pose
            ok, values = await self._model.view_information([pose], METRIC_NAMES, self._cfg.ray_casting)
            if not ok or values is None:
                logger.warning("No information gain for view %d; skipping it this iteration.", index)
                costs[i] = INVALID_COST
                continue
            information[i] = values
        return information

    def _handle_no_feasible_view(self, iteration: int, candidate_count: int) -> None:
        logger.warning(
            "Iteration %d: none of %d candidate views is feasible. Skipping move.",
            iteration,
            candidate_count,
        )
        self._last_selection = None
        self._session.update_status(
            "No feasible view left. Send REINIT to refresh the view space or STOP_AND_PRINT to finish."
        )

    def _remember_selection(self, iteration: int, view_index: int, selection: Selection) -> None:
        self._last_selection = {
            "iteration": iteration,
            "view_index": view_index,
            "return_value": selection.return_value,
            "winning_margin": selection.winning_margin,
        }
