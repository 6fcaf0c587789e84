from __future__ import annotations

from .base import Tool


class DotnetTool(Tool):
    name = "dotnet"
    description = ".NET SDK"
    version_command = ("dotnet", "--version")

    @property
    def label(self) -> str:
        return f".NET SDK {self.ctx.settings.dotnet_version}"

    def install(self) -> None:
        self.add_microsoft_repo(rhel_channel="centos/8")
        self.ctx.packages.install([f"dotnet-sdk-{self.ctx.settings.dotnet_version}"])
