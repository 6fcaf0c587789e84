from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

from ..shell import Runner

AGENT_SERVICE_FALLBACK = "azdevops-agent"


def agent_service_name(agent_dir: str) -> str:
    """Unit name written by the agent's svc.sh into ``<agent_dir>/.service``."""
    marker = Path(agent_dir) / ".service"
    try:
        name = marker.read_text(encoding="utf-8").strip()
    except OSError:
        return AGENT_SERVICE_FALLBACK
    return name or AGENT_SERVICE_FALLBACK


class SystemdService:
    def __init__(self, name: str, runner: Runner) -> None:
        self.name = name
        self.runner = runner

    def enable(self, check: bool = True) -> bool:
        return self.runner.run(["systemctl", "enable", self.name], privileged=True, check=check).ok

    def start(self, check: bool = True) -> bool:
        return self.runner.run(["systemctl", "start", self.name], privileged=True, check=check).ok

    def is_active(self) -> bool:
        return self.runner.succeeds(["systemctl", "is-active", "--quiet", self.name], privileged=True)

    def status(self, lines: int = 10) -> str:
        # non-zero for inactive units, the text is still the status
        result = self.runner.run(["systemctl", "status", self.name, "--no-pager"],
                                 privileged=True, capture=True, check=False)
        return "\n".join(result.stdout.splitlines()[:lines])

    def management_commands(self) -> List[Tuple[str, str]]:
        return [
            (f"sudo systemctl status {self.name}", "Check service status"),
            (f"sudo systemctl start {self.name}", "Start service"),
            (f"sudo systemctl stop {self.name}", "Stop service"),
            (f"sudo systemctl restart {self.name}", "Restart service"),
            (f"sudo journalctl -u {self.name} -f", "View service logs"),
        ]
