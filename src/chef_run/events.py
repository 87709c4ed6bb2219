"""Progress events emitted by chef-run actions.

Actions report what they are doing through ActionEvent objects handed to
an ``emit`` callback. The phase of every event belongs to one of two
closed enums, so consumers can dispatch on it with a lookup table.

Example:
    def emit(event: ActionEvent) -> None:
        print(event.phase.value, event.data)

    emit(ActionEvent(InstallPhase.DOWNLOADING))
    emit(ActionEvent(InstallPhase.INSTALL_COMPLETE, {"version": "18.2.7"}))
"""

from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class InstallPhase(str, Enum):
    """Events emitted while ensuring chef-client is installed."""

    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    INSTALLING = "installing"
    ALREADY_INSTALLED = "already_installed"
    INSTALL_COMPLETE = "install_complete"
    ERROR = "error"


class ConvergePhase(str, Enum):
    """Events emitted while converging a target."""

    CREATING_REMOTE_POLICY = "creating_remote_policy"
    RUNNING_CHEF = "running_chef"
    SUCCESS = "success"
    REBOOT = "reboot"
    CONVERGE_ERROR = "converge_error"
    ERROR = "error"


Phase = InstallPhase | ConvergePhase


@dataclass
class ActionEvent:
    """A single progress notification from an action.

    Attributes:
        phase: What happened
        data: Phase specific values (versions, exit codes, the exception
            for ``error`` events)
    """

    phase: Phase
    data: dict[str, Any] = field(default_factory=dict)

    @property
    def is_error(self) -> bool:
        return self.phase in (
            InstallPhase.ERROR,
            ConvergePhase.ERROR,
            ConvergePhase.CONVERGE_ERROR,
        )


EmitFn = Callable[[ActionEvent], None]
