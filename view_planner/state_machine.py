from __future__ import annotations

import logging
import queue
import threading
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from view_planner.retry import CancelToken

logger = logging.getLogger(__name__)


class Command(str, Enum):
    START = "START"
    PAUSE = "PAUSE"
    STOP_AND_PRINT = "STOP_AND_PRINT"
    REINIT = "REINIT"
    ABORT_LOOP = "ABORT_LOOP"
    PRINT_DATA = "PRINT_DATA"

    @classmethod
    def parse(cls, text: Any) -> Optional["Command"]:
        try:
            return cls(str(text).strip())
        except ValueError:
            return None


class RunMode(str, Enum):
    WAITING = "waiting"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    TERMINATED = "terminated"


class CommandChannel:
    """Bounded buffer between the command surface and the planner loop."""

    def __init__(self, max_queue_size: int = 16) -> None:
        self._queue: "queue.Queue[Command]" = queue.Queue(maxsize=max(1, int(max_queue_size)))

    @property
    def queue_size(self) -> int:
        return self._queue.qsize()

    def submit(self, command: Union[Command, str]) -> Tuple[bool, str]:
        parsed = command if isinstance(command, Command) else Command.parse(command)
        if parsed is None:
            logger.debug("Ignoring unrecognized command %r.", command)
            return False, "Unrecognized command ignored."

        try:
            self._queue.put_nowait(parsed)
        except queue.Full:
            return False, "Command queue is full. Try again."
        return True, f"{parsed.value} queued."

    def drain(self) -> List[Command]:
        commands: List[Command] = []
        while True:
            try:
                commands.append(self._queue.get_nowait())
            except queue.Empty:
                break
        return commands


class PlannerSession:
    """Run state of the view planner, mutated only through handle_command."""

    def __init__(
        self,
        channel: Optional[CommandChannel] = None,
        print_handler: Optional[Callable[[], Any]] = None,
    ) -> None:
        self._lock = threading.Lock()

        self.channel = channel if channel is not None else CommandChannel()
        self.abort = CancelToken()
        self.print_handler = print_handler

        self.mode: RunMode = RunMode.WAITING
        self.reinit_requested: bool = False
        self.status_text: str = "Ready. Waiting for START command."
        self.iteration: int = 0

    @property
    def is_running(self) -> bool:
        with self._lock:
            return self.mode == RunMode.RUNNING

    @property
    def is_paused(self) -> bool:
        with self._lock:
            return self.mode == RunMode.PAUSED

    @property
    def stop_requested(self) -> bool:
        with self._lock:
            return self.mode == RunMode.STOPPING

    def handle_command(self, command: Command) -> None:
        if command == Command.PRINT_DATA:
            if self.print_handler is None:
                return
            try:
                self.print_handler()
            except OSError as exc:
                logger.error("Failed to save planning data: %s", exc)
                self.update_status(f"Failed to save planning data: {exc}")
            return

        if command == Command.ABORT_LOOP:
            self.abort.set()
            return

        with self._lock:
            if command == Command.REINIT:
                self.reinit_requested = True
                return

            if self.mode == RunMode.TERMINATED:
                logger.info("Ignoring %s: planner has terminated.", command.value)
                return

            if command == Command.START:
                self.mode = RunMode.RUNNING
            elif command == Command.PAUSE:
                self.mode = RunMode.PAUSED
                self.status_text = "Paused."
            elif command == Command.STOP_AND_PRINT:
                self.mode = RunMode.STOPPING
                self.status_text = "Stop requested. Finishing current iteration."

    def submit(self, command: Union[Command, str]) -> Tuple[bool, str]:
        """Queue a command for the planner loop, or answer it here once the loop has ended."""
        with self._lock:
            terminated = self.mode == RunMode.TERMINATED
        if not terminated:
            return self.channel.submit(command)

        parsed = command if isinstance(command, Command) else Command.parse(command)
        if parsed != Command.PRINT_DATA:
            return False, "Planner has terminated."
        if self.print_handler is None:
            return False, "No planning data recorder attached."
        try:
            self.print_handler()
        except OSError as exc:
            logger.error("Failed to save planning data: %s", exc)
            return False, f"Failed to save planning data: {exc}"
        return True, "Planning data saved."

    def poll_commands(self) -> int:
        commands = self.channel.drain()
        for command in commands:
            self.handle_command(command)
        return len(commands)

    def consume_reinit(self) -> bool:
        with self._lock:
            requested = self.reinit_requested
            self.reinit_requested = False
            return requested

    def mark_terminated(self, status_text: str) -> None:
        with self._lock:
            self.mode = RunMode.TERMINATED
            self.status_text = status_text.strip() or self.status_text

    def update_status(self, status_text: str) -> None:
        with self._lock:
            if status_text.strip():
                self.status_text = status_text.strip()

    def next_iteration(self) -> int:
        with self._lock:
            self.iteration += 1
            return self.iteration

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "mode": self.mode.value,
                "status_text": self.status_text,
                "iteration": self.iteration,
                "reinit_requested": self.reinit_requested,
                "abort_pending": self.abort.is_set(),
                "ui": {
                    "can_start": self.mode in (RunMode.WAITING, RunMode.PAUSED, RunMode.STOPPING),
                    "can_pause": self.mode == RunMode.RUNNING,
                    "can_stop": self.mode in (RunMode.RUNNING, RunMode.PAUSED),
                },
            }
