from __future__ import annotations

from typing import Dict, List, Sequence

from .shell import Runner
from .system.osinfo import DEBIAN, RHEL, OsRelease

BASE_DEPENDENCIES: Dict[str, List[str]] = {
    DEBIAN: [
        "curl",
        "wget",
        "git",
        "jq",
        "ca-certificates",
        "apt-transport-https",
        "software-properties-common",
        "libicu-dev",
        "build-essential",
    ],
    RHEL: [
        "curl",
        "wget",
        "git",
        "jq",
        "ca-certificates",
        "libicu",
        "gcc",
        "gcc-c++",
        "make",
    ],
}


class PackageManager:
    family: str = ""

    def __init__(self, runner: Runner) -> None:
        self.runner = runner

    def update(self) -> None:
        raise NotImplementedError

    def install(self, packages: Sequence[str]) -> None:
        raise NotImplementedError

    def remove(self, packages: Sequence[str]) -> None:
        raise NotImplementedError

    def install_local(self, path_or_url: str) -> None:
        raise NotImplementedError


class Apt(PackageManager):
    family = DEBIAN

    def update(self) -> None:
        self.runner.run(["apt-get", "update", "-y"], privileged=True)

    def install(self, packages: Sequence[str]) -> None:
        self.runner.run(["apt-get", "install", "-y", *packages], privileged=True)

    def remove(self, packages: Sequence[str]) -> None:
        self.runner.run(["apt-get", "remove", "-y", *packages], privileged=True, check=False)

    def install_local(self, path_or_url: str) -> None:
        self.runner.run(["dpkg", "-i", path_or_url], privileged=True)


class Yum(PackageManager):
    family = RHEL

    def update(self) -> None:
        self.runner.run(["yum", "makecache", "-y"], privileged=True)

    def install(self, packages: Sequence[str]) -> None:
        self.runner.run(["yum", "install", "-y", *packages], privileged=True)

    def remove(self, packages: Sequence[str]) -> None:
        self.runner.run(["yum", "remove", "-y", *packages], privileged=True, check=False)

    def install_local(self, path_or_url: str) -> None:
        self.runner.run(["rpm", "-Uvh", path_or_url], privileged=True)

    def add_repo(self, url: str) -> None:
        self.runner.run(["yum-config-manager", "--add-repo", url], privileged=True)


PACKAGE_MANAGERS = {
    DEBIAN: Apt,
    RHEL: Yum,
}


def package_manager_for(os_release: OsRelease, runner: Runner) -> PackageManager:
    return PACKAGE_MANAGERS[os_release.family](runner)


def microsoft_repo_url(os_release: OsRelease, rhel_channel: str = "rhel/8") -> str:
    """packages-microsoft-prod package for the host (deb per release, rpm per channel)."""
    if os_release.is_debian_family:
        return (
            f"https://packages.microsoft.com/config/{os_release.id}/"
            f"{os_release.version_id}/packages-microsoft-prod.deb"
        )
    return f"https://packages.microsoft.com/config/{rhel_channel}/packages-microsoft-prod.rpm"
