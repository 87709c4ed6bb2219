"""Common behaviour of per-target actions."""

import logging
from abc import ABC, abstractmethod
from typing import Any

from ..config import RunConfig
from ..events import ActionEvent, EmitFn, Phase
from ..target_host import TargetHost

logger = logging.getLogger(__name__)


def _discard(event: ActionEvent) -> None:
    pass


class Action(ABC):
    """Base class for work performed against one target.

    Subclasses implement ``perform_action`` and report progress with
    ``notify``. ``run`` wraps it so that any failure is announced with the
    action's error phase before it propagates.

    Attributes:
        target_host: The target this action works on
        config: Run configuration
        error_phase: Phase emitted when ``perform_action`` raises
    """

    error_phase: Phase

    def __init__(self, target_host: TargetHost, config: RunConfig, emit: EmitFn | None = None):
        self.target_host = target_host
        self.config = config
        self._emit = emit or _discard

    def notify(self, phase: Phase, **data: Any) -> None:
        self._emit(ActionEvent(phase, data))

    async def run(self) -> Any:
        try:
            return await self.perform_action()
        except Exception as e:
            logger.debug("[%s] %s failed: %s", self.target_host.name, type(self).__name__, e)
            self.notify(self.error_phase, exception=e)
            raise

    @abstractmethod
    async def perform_action(self) -> Any:
        """Do the work. Raise on failure."""
