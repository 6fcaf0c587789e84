from __future__ import annotations

from .base import Tool


class NodejsTool(Tool):
    name = "nodejs"
    description = "Node.js"
    version_command = ("node", "--version")

    @property
    def label(self) -> str:
        return f"Node.js {self.ctx.settings.nodejs_version}"

    def setup_url(self) -> str:
        host = "deb.nodesource.com" if self.ctx.os_release.is_debian_family else "rpm.nodesource.com"
        return f"https://{host}/setup_{self.ctx.settings.nodejs_version}.x"

    def install(self) -> None:
        self.run_script(self.setup_url(), "nodesource_setup.sh", preserve_env=True)
        self.ctx.packages.install(["nodejs"])
