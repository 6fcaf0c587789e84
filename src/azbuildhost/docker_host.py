from __future__ import annotations

import json
import logging
import platform
from pathlib import Path
from typing import List, Optional

import httpx

from .download import Downloader, default_staging_dir
from .errors import ProvisionError
from .packages import Apt, Yum, package_manager_for
from .run_logger import NullRunLogger
from .settings import DockerSettings
from .shell import Runner
from .system.osinfo import OsRelease, detect_os
from .system.services import SystemdService

logger = logging.getLogger("azbuildhost.docker")

DAEMON_JSON = "/etc/docker/daemon.json"
KEYRING_DIR = "/etc/apt/keyrings"
KEYRING = f"{KEYRING_DIR}/docker.gpg"
APT_SOURCE = "/etc/apt/sources.list.d/docker.list"
DOCKER_CE_REPO = "https://download.docker.com/linux/centos/docker-ce.repo"
COMPOSE_RELEASES_API = "https://api.github.com/repos/docker/compose/releases/latest"
COMPOSE_BINARY = "/usr/local/bin/docker-compose"

APT_PREREQUISITES = [
    "apt-transport-https",
    "ca-certificates",
    "curl",
    "gnupg",
    "lsb-release",
    "software-properties-common",
]
YUM_PREREQUISITES = ["yum-utils", "device-mapper-persistent-data", "lvm2"]
LEGACY_PACKAGES = [
    "docker",
    "docker-client",
    "docker-client-latest",
    "docker-common",
    "docker-latest",
    "docker-latest-logrotate",
    "docker-logrotate",
    "docker-engine",
    "podman",
    "runc",
]


def engine_packages(settings: DockerSettings) -> List[str]:
    packages = ["docker-ce", "docker-ce-cli", "containerd.io"]
    if settings.install_buildx:
        packages.append("docker-buildx-plugin")
    packages.append("docker-compose-plugin")
    return packages


def apt_source_line(os_release: OsRelease, arch: str) -> str:
    return (
        f"deb [arch={arch} signed-by={KEYRING}] "
        f"https://download.docker.com/linux/{os_release.id} {os_release.codename} stable\n"
    )


def render_daemon_json(settings: DockerSettings) -> str:
    return json.dumps(settings.daemon_config(), indent=2) + "\n"


def compose_download_url(version: str, system: str | None = None, machine: str | None = None) -> str:
    system = system or platform.system()
    machine = machine or platform.machine()
    return f"https://github.com/docker/compose/releases/download/{version}/docker-compose-{system}-{machine}"


class DockerHostInstaller:
    def __init__(
        self,
        settings: DockerSettings,
        runner: Runner,
        downloader: Downloader,
        reporter: NullRunLogger | None = None,
        *,
        os_release_path: Path | None = None,
        staging_dir: Path | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.downloader = downloader
        self.reporter = reporter or NullRunLogger()
        self.os_release_path = os_release_path
        self.staging_dir = staging_dir or default_staging_dir()
        self.os_release: Optional[OsRelease] = None
        self.service = SystemdService("docker", runner)
        self.user_added = False

    def detect_os(self) -> OsRelease:
        os_release = detect_os(self.os_release_path)
        self.reporter.info(f"Detected OS: {os_release.pretty_name or os_release.id}")
        logger.info("os id=%s family=%s", os_release.id, os_release.family)
        self.os_release = os_release
        return os_release

    def install_engine(self) -> None:
        os_release = self.os_release or self.detect_os()
        pm = package_manager_for(os_release, self.runner)
        if isinstance(pm, Apt):
            self._install_debian(os_release, pm)
        elif isinstance(pm, Yum):
            self._install_rhel(pm)

    def _install_debian(self, os_release: OsRelease, apt: Apt) -> None:
        self.reporter.header("Installing Docker on Ubuntu/Debian")
        self.reporter.info("Updating package index...")
        apt.update()
        self.reporter.info("Installing prerequisites...")
        apt.install(APT_PREREQUISITES)

        self.reporter.info("Adding Docker's GPG key...")
        self.runner.run(["install", "-m", "0755", "-d", KEYRING_DIR], privileged=True)
        key = self.downloader.get_text(f"https://download.docker.com/linux/{os_release.id}/gpg")
        self.runner.run(["gpg", "--batch", "--yes", "--dearmor", "-o", KEYRING], privileged=True, input=key)
        self.runner.run(["chmod", "a+r", KEYRING], privileged=True)

        self.reporter.info("Adding Docker repository...")
        arch = self.runner.capture(["dpkg", "--print-architecture"], check=True).strip() or "amd64"
        self.runner.write_file(APT_SOURCE, apt_source_line(os_release, arch))
        apt.update()

        self.reporter.info("Installing Docker Engine...")
        apt.install(engine_packages(self.settings))
        self.reporter.success("Docker installed successfully on Ubuntu/Debian")

    def _install_rhel(self, yum: Yum) -> None:
        self.reporter.header("Installing Docker on CentOS/RHEL")
        self.reporter.info("Removing old Docker versions (if any)...")
        yum.remove(LEGACY_PACKAGES)
        self.reporter.info("Installing prerequisites...")
        yum.install(YUM_PREREQUISITES)
        self.reporter.info("Adding Docker repository...")
        yum.add_repo(DOCKER_CE_REPO)
        self.reporter.info("Installing Docker Engine...")
        yum.install(engine_packages(self.settings))
        self.reporter.success("Docker installed successfully on CentOS/RHEL")

    def configure_docker(self) -> None:
        if not self.settings.configure_logging:
            return
        self.reporter.header("Configuring Docker Daemon")
        self.reporter.info("Creating Docker daemon configuration...")
        self.runner.run(["mkdir", "-p", str(Path(DAEMON_JSON).parent)], privileged=True)
        self.runner.write_file(DAEMON_JSON, render_daemon_json(self.settings))
        self.reporter.success("Docker daemon configured")

    def add_user_to_docker_group(self) -> None:
        user = self.settings.docker_user
        self.reporter.header("Configuring Docker Permissions")
        if not self.runner.succeeds(["id", user]):
            self.reporter.warning(f"User '{user}' does not exist. Skipping group assignment.")
            return
        self.reporter.info(f"Adding user '{user}' to docker group...")
        self.runner.run(["usermod", "-aG", "docker", user], privileged=True)
        self.user_added = True
        self.reporter.success(f"User '{user}' added to docker group")
        self.reporter.warning("Note: User needs to log out and back in for group changes to take effect")
        self.reporter.info("Or run: newgrp docker")

    def manage_docker_service(self) -> None:
        self.reporter.header("Managing Docker Service")
        if self.settings.enable_service:
            self.reporter.info("Enabling Docker service to start on boot...")
            self.service.enable()
            self.reporter.success("Docker service enabled")
        if self.settings.start_now:
            self.reporter.info("Starting Docker service...")
            self.service.start()
            self.reporter.success("Docker service started")
        self.reporter.info("Docker service status:")
        self.reporter.output(self.service.status(lines=5), title="docker")

    def resolve_compose_version(self) -> str:
        requested = self.settings.compose_version.strip()
        if requested and requested != "latest":
            return requested if requested.startswith("v") else f"v{requested}"
        self.reporter.info("Fetching latest Docker Compose version...")
        version = self.downloader.lookup_version(COMPOSE_RELEASES_API, strip_v=False)
        if not version:
            raise ProvisionError("Could not determine the latest Docker Compose release")
        self.reporter.info(f"Latest version: {version}")
        return version

    def install_compose_standalone(self) -> None:
        if not self.settings.install_compose:
            return
        self.reporter.header("Installing Docker Compose (Standalone)")
        try:
            version = self.resolve_compose_version()
            self.reporter.info(f"Downloading Docker Compose {version}...")
            binary = self.staging_dir / "docker-compose"
            self.downloader.download(compose_download_url(version), binary)
            try:
                self.runner.run(["install", "-m", "0755", str(binary), COMPOSE_BINARY], privileged=True)
            finally:
                binary.unlink(missing_ok=True)
        except (ProvisionError, httpx.HTTPError, OSError) as exc:
            self.reporter.warning(f"Docker Compose standalone installation failed: {exc}")
            return
        self.runner.run(["ln", "-sf", COMPOSE_BINARY, "/usr/bin/docker-compose"], privileged=True, check=False)
        self.reporter.success("Docker Compose installed")

    def verify_installation(self) -> bool:
        self.reporter.header("Verifying Installation")
        self.reporter.info("Docker version:")
        self.reporter.output(self.runner.capture(["docker", "--version"]), title="docker --version")
        self.reporter.info("Docker Compose (plugin) version:")
        plugin = self.runner.run(["docker", "compose", "version"], capture=True, check=False)
        if plugin.ok:
            self.reporter.output(plugin.stdout, title="docker compose version")
        else:
            self.reporter.warning("Docker Compose plugin not installed")
        if Path(COMPOSE_BINARY).exists():
            self.reporter.info("Docker Compose (standalone) version:")
            self.reporter.output(self.runner.capture(["docker-compose", "--version"]), title="docker-compose")

        active = self.service.is_active()
        self.reporter.info(f"Docker service status: {'active' if active else 'inactive'}")
        if not active:
            return False
        self.reporter.info("Running test container...")
        if self.runner.succeeds(["docker", "run", "--rm", "hello-world"], privileged=True):
            self.reporter.success("Docker is working correctly!")
            return True
        self.reporter.warning("Docker test container failed")
        return False

    def cleanup(self) -> None:
        self.reporter.header("Cleanup")
        self.reporter.info("Removing test images...")
        self.runner.run(["docker", "rmi", "hello-world"], privileged=True, capture=True, check=False)
        self.reporter.success("Cleanup complete")

    def display_post_install_info(self) -> None:
        user = self.settings.docker_user
        self.reporter.header("Post-Installation Information")
        self.reporter.success("Docker has been successfully installed!")
        if self.user_added:
            self.reporter.bullets("Important Notes:", [
                f"1. User '{user}' has been added to the docker group",
                "2. Log out and back in for group changes to take effect",
                "3. Or run: newgrp docker to activate group in current session",
            ])
        else:
            self.reporter.bullets("Important Notes:", [
                f"User '{user}' was not found; add it later with: sudo usermod -aG docker {user}",
            ])
        self.reporter.bullets("Useful Commands:", [
            "docker --version              - Check Docker version",
            "docker ps                     - List running containers",
            "docker ps -a                  - List all containers",
            "docker images                 - List images",
            "docker compose version        - Check Docker Compose version",
            "sudo systemctl status docker  - Check Docker service status",
            "sudo systemctl restart docker - Restart Docker service",
            "docker run hello-world        - Test Docker installation",
        ])
        self.reporter.bullets("Configuration Files:", [
            f"{DAEMON_JSON}      - Docker daemon configuration",
            "/var/lib/docker/             - Docker data directory",
        ])
        self.reporter.bullets("Documentation:", ["https://docs.docker.com/"])

    def run(self) -> bool:
        self.reporter.header("Docker Installation Script")
        self.detect_os()
        self.install_engine()
        self.configure_docker()
        self.add_user_to_docker_group()
        self.manage_docker_service()
        self.install_compose_standalone()
        working = self.verify_installation()
        self.cleanup()
        self.display_post_install_info()
        self.reporter.success("Installation complete!")
        return working
