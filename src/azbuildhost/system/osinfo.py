"""Linux distribution detection from ``/etc/os-release``."""

from __future__ import annotations

import platform
import shlex
from dataclasses import dataclass
from pathlib import Path
from typing import Dict

from ..errors import UnsupportedOSError

OS_RELEASE = Path("/etc/os-release")

DEBIAN = "debian"
RHEL = "rhel"

FAMILIES: Dict[str, str] = {
    "ubuntu": DEBIAN,
    "debian": DEBIAN,
    "centos": RHEL,
    "rhel": RHEL,
    "rocky": RHEL,
    "almalinux": RHEL,
}

# uname -m -> release-asset architecture used by kubectl, terraform and helm
GO_ARCH = {
    "x86_64": "amd64",
    "amd64": "amd64",
    "aarch64": "arm64",
    "arm64": "arm64",
}


def parse_os_release(text: str) -> Dict[str, str]:
    values: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip().strip('"').strip("'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


@dataclass(frozen=True)
class OsRelease:
    id: str
    version_id: str = ""
    pretty_name: str = ""
    codename: str = ""
    id_like: str = ""

    @property
    def family(self) -> str:
        family = FAMILIES.get(self.id)
        if family is None:
            raise UnsupportedOSError(f"Unsupported OS: {self.id or '<unknown>'}")
        return family

    @property
    def is_debian_family(self) -> bool:
        return self.family == DEBIAN

    @property
    def is_rhel_family(self) -> bool:
        return self.family == RHEL

    @classmethod
    def from_text(cls, text: str) -> "OsRelease":
        values = parse_os_release(text)
        return cls(
            id=values.get("ID", "").lower(),
            version_id=values.get("VERSION_ID", ""),
            pretty_name=values.get("PRETTY_NAME", values.get("NAME", "")),
            codename=values.get("VERSION_CODENAME", ""),
            id_like=values.get("ID_LIKE", ""),
        )


def detect_os(path: Path | None = None) -> OsRelease:
    path = path or OS_RELEASE
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError as err:
        raise UnsupportedOSError(f"Cannot detect OS. {path} not found.") from err
    return OsRelease.from_text(text)


def go_arch(machine: str | None = None) -> str:
    machine = (machine or platform.machine()).lower()
    return GO_ARCH.get(machine, machine)
