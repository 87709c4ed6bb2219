"""Per-target actions: installing chef-client and converging."""

from .base import Action
from .converge_target import Converger
from .install_chef import AgentInstaller, decide_install

__all__ = ["Action", "AgentInstaller", "Converger", "decide_install"]
