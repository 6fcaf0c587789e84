from __future__ import annotations

from ..system.services import SystemdService
from .base import Tool

GET_DOCKER_URL = "https://get.docker.com"
DOCKER_CE_REPO = "https://download.docker.com/linux/centos/docker-ce.repo"


class DockerTool(Tool):
    name = "docker"
    description = "Docker"
    version_command = ("docker", "--version")

    def install(self) -> None:
        ctx = self.ctx
        if ctx.os_release.is_debian_family:
            self.run_script(GET_DOCKER_URL, "get-docker.sh", interpreter="sh")
        else:
            ctx.packages.install(["yum-utils"])
            ctx.packages.add_repo(DOCKER_CE_REPO)
            ctx.packages.install(["docker-ce", "docker-ce-cli", "containerd.io"])
            service = SystemdService("docker", ctx.runner)
            service.enable()
            service.start()
        ctx.runner.run(["usermod", "-aG", "docker", ctx.settings.agent_user], privileged=True)
