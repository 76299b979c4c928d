"""Processing progress view-model."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, List, Optional, Sequence

logger = logging.getLogger(__name__)


class StepState(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"


class Phase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"


class ProgressReporter:
    """State behind a step-by-step progress panel.

    Surfaces subscribe to change notifications and read ``step_states``,
    ``fill_percent``, ``message`` and ``action_label``. The primary action
    cancels a running job, and only closes the panel after an error or a
    success.
    """

    def __init__(
        self,
        labels: Sequence[str],
        dismiss_after: float = 2.0,
        cancel_label: str = "Cancel",
        close_label: str = "Close",
    ) -> None:
        self.labels: List[str] = list(labels)
        self.dismiss_after = dismiss_after
        self.cancel_label = cancel_label
        self.close_label = close_label
        self.visible = False
        self.phase = Phase.IDLE
        self.current_step = 0
        self.message = ""
        self.action_label = cancel_label
        self._on_cancel: Optional[Callable[[], None]] = None
        self._cancel_used = False
        self._dismiss: Optional[asyncio.TimerHandle] = None
        self._listeners: List[Callable[["ProgressReporter"], None]] = []

    def subscribe(self, listener: Callable[["ProgressReporter"], None]) -> None:
        self._listeners.append(listener)

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener(self)

    @property
    def step_states(self) -> List[StepState]:
        states = []
        for index in range(len(self.labels)):
            if index < self.current_step:
                states.append(StepState.COMPLETED)
            elif index == self.current_step:
                states.append(StepState.ACTIVE)
            else:
                states.append(StepState.PENDING)
        return states

    @property
    def fill_percent(self) -> float:
        total = len(self.labels)
        if total <= 1:
            return 100.0 if self.current_step > 0 else 0.0
        return min(100.0, self.current_step / (total - 1) * 100.0)

    def show(
        self,
        on_cancel: Optional[Callable[[], None]] = None,
        labels: Optional[Sequence[str]] = None,
    ) -> None:
        self._clear_dismiss()
        if labels is not None:
            self.labels = list(labels)
        self._on_cancel = on_cancel
        self._cancel_used = False
        self.current_step = 0
        self.message = ""
        self.phase = Phase.RUNNING
        self.action_label = self.cancel_label
        self.visible = True
        self._notify()

    def set_step(self, index: int, message: Optional[str] = None) -> None:
        self.current_step = index
        if message:
            self.message = message
        self._notify()

    def set_error(self, message: str) -> None:
        self._clear_dismiss()
        self.phase = Phase.ERROR
        self.message = message
        self.action_label = self.close_label
        self._notify()

    def set_success(self, message: str) -> None:
        self._clear_dismiss()
        self.phase = Phase.SUCCESS
        self.message = message
        self._notify()
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.hide()
            return
        self._dismiss = loop.call_later(self.dismiss_after, self.hide)

    def press_action(self) -> None:
        if self.phase == Phase.RUNNING:
            self.cancel()
        else:
            self.hide()

    def cancel(self) -> bool:
        if self.phase != Phase.RUNNING:
            return False
        invoked = False
        if self._on_cancel is not None and not self._cancel_used:
            self._cancel_used = True
            logger.info("Processing cancelled by user")
            self._on_cancel()
            invoked = True
        self.hide()
        return invoked

    def hide(self) -> None:
        self._clear_dismiss()
        if not self.visible:
            return
        self.visible = False
        self._notify()

    def close(self) -> None:
        self._clear_dismiss()
        self._on_cancel = None
        self.visible = False

    def _clear_dismiss(self) -> None:
        if self._dismiss is not None:
            self._dismiss.cancel()
            self._dismiss = None
