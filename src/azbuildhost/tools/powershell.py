from __future__ import annotations

from .base import Tool


class PowerShellTool(Tool):
    name = "powershell"
    description = "PowerShell"
    version_command = ("pwsh", "--version")

    def install(self) -> None:
        self.add_microsoft_repo()
        self.ctx.packages.install(["powershell"])
