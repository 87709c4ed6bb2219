"""Status text shown for each action event."""

from .events import ActionEvent, ConvergePhase, InstallPhase

CONNECTING = "Connecting..."
CONNECTED = "Connected."
VERIFYING = "Checking for Chef Infra Client..."

INSTALL_MESSAGES = {
    InstallPhase.DOWNLOADING: "Downloading Chef Infra Client installer",
    InstallPhase.UPLOADING: "Uploading Chef Infra Client installer to target",
    InstallPhase.INSTALLING: "Installing Chef Infra Client {version}",
    InstallPhase.ALREADY_INSTALLED: "Chef Infra Client {version} is already installed",
    InstallPhase.INSTALL_COMPLETE: "Chef Infra Client {version} installed",
    InstallPhase.ERROR: "Failed to install Chef Infra Client: {error}",
}

UPGRADE_MESSAGES = {
    InstallPhase.INSTALLING: "Upgrading Chef Infra Client from {upgrading_from} to {version}",
    InstallPhase.INSTALL_COMPLETE: "Chef Infra Client upgraded from {upgrading_from} to {version}",
}

CONVERGE_MESSAGES = {
    ConvergePhase.CREATING_REMOTE_POLICY: "Uploading configuration policy",
    ConvergePhase.RUNNING_CHEF: "Applying {run_list}",
    ConvergePhase.SUCCESS: "Successfully converged {run_list}",
    ConvergePhase.REBOOT: "Converged {run_list}; a reboot is required (exit code {exit_code})",
    ConvergePhase.CONVERGE_ERROR: "Failed to converge {run_list} (exit code {exit_code})",
    ConvergePhase.ERROR: "Failed to converge {run_list}: {error}",
}


def converging_recipe(spec: str) -> str:
    return f"Converging recipe {spec}..."


def converging_resource(resource_type: str, resource_name: str) -> str:
    return f"Converging resource {resource_type}[{resource_name}]..."


def _error_text(data: dict) -> str:
    exc = data.get("exception")
    if exc is None:
        return "unknown error"
    return str(exc) or type(exc).__name__


def status_message(event: ActionEvent, run_list: str = "") -> str:
    """Render the status line for ``event``.

    Args:
        event: Event emitted by an action
        run_list: Run list of the bundle, used by converge messages
    """
    values = {"run_list": run_list, "error": _error_text(event.data), **event.data}
    if isinstance(event.phase, InstallPhase):
        template = INSTALL_MESSAGES[event.phase]
        if "upgrading_from" in event.data:
            template = UPGRADE_MESSAGES.get(event.phase, template)
    else:
        template = CONVERGE_MESSAGES[event.phase]
    return template.format(**values)
