from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Sequence

from ..download import Downloader
from ..packages import PackageManager, microsoft_repo_url
from ..run_logger import NullRunLogger
from ..settings import AgentSettings
from ..shell import Runner
from ..system.osinfo import OsRelease


@dataclass
class ToolContext:
    runner: Runner
    downloader: Downloader
    os_release: OsRelease
    packages: PackageManager
    settings: AgentSettings
    staging_dir: Path
    reporter: NullRunLogger = field(default_factory=NullRunLogger)

    def staging_path(self, name: str) -> Path:
        self.staging_dir.mkdir(parents=True, exist_ok=True)
        return self.staging_dir / name


@dataclass
class ToolOutcome:
    name: str
    status: str  # installed | failed | skipped
    detail: str = ""


class Tool:
    name: str = "tool"
    description: str = "Base tool"
    version_command: Sequence[str] = ()

    def __init__(self, ctx: ToolContext) -> None:
        self.ctx = ctx

    @property
    def label(self) -> str:
        return self.description

    def install(self) -> None:
        raise NotImplementedError("install must be defined in subclasses")

    def version(self) -> str:
        if not self.version_command:
            return ""
        out = self.ctx.runner.capture(list(self.version_command))
        lines = out.strip().splitlines()
        return lines[0] if lines else ""

    def run_script(self, url: str, filename: str, *, interpreter: str = "bash",
                   preserve_env: bool = False, args: Sequence[str] = ()) -> None:
        """Download an installer script and run it as root."""
        script = self.ctx.staging_path(filename)
        self.ctx.downloader.download(url, script)
        try:
            self.ctx.runner.run([interpreter, str(script), *args], privileged=True, preserve_env=preserve_env)
        finally:
            script.unlink(missing_ok=True)

    def install_binary(self, source: Path, name: str | None = None) -> None:
        target = f"/usr/local/bin/{name or self.name}"
        self.ctx.runner.run(
            ["install", "-o", "root", "-g", "root", "-m", "0755", str(source), target],
            privileged=True,
        )

    def add_microsoft_repo(self, rhel_channel: str = "rhel/8") -> None:
        """Register packages.microsoft.com for the host's package manager."""
        ctx = self.ctx
        if ctx.os_release.is_debian_family:
            deb = ctx.staging_path("packages-microsoft-prod.deb")
            ctx.downloader.download(microsoft_repo_url(ctx.os_release), deb)
            try:
                ctx.packages.install_local(str(deb))
            finally:
                deb.unlink(missing_ok=True)
            ctx.packages.update()
        else:
            ctx.packages.install_local(microsoft_repo_url(ctx.os_release, rhel_channel=rhel_channel))
