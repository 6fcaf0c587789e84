from __future__ import annotations

from .base import Tool

INSTALL_SCRIPT_DEB = "https://aka.ms/InstallAzureCLIDeb"
MICROSOFT_KEY = "https://packages.microsoft.com/keys/microsoft.asc"


class AzureCliTool(Tool):
    name = "azure_cli"
    description = "Azure CLI"
    version_command = ("az", "version", "--query", '"azure-cli"', "-o", "tsv")

    def install(self) -> None:
        ctx = self.ctx
        if ctx.os_release.is_debian_family:
            self.run_script(INSTALL_SCRIPT_DEB, "install-azure-cli.sh")
            return
        ctx.runner.run(["rpm", "--import", MICROSOFT_KEY], privileged=True)
        self.add_microsoft_repo()
        ctx.packages.install(["azure-cli"])
