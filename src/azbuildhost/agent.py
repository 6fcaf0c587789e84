"""Azure DevOps self-hosted agent installation.

:class:`AgentInstaller` runs the named steps in a fixed order (see
:meth:`AgentInstaller.run`). Configuration problems, an unsupported OS, a
download that fails on every mirror and a broken archive stop the run;
optional tools only ever produce warnings.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Type

import httpx

from .download import (
    AGENT_RELEASES_API,
    AGENT_RELEASES_PAGE,
    Downloader,
    agent_download_urls,
    agent_package_name,
    default_staging_dir,
)
from .errors import CommandError, ConfigError, DownloadError, ExtractionError, ProvisionError
from .packages import BASE_DEPENDENCIES, PackageManager, package_manager_for
from .run_logger import NullRunLogger
from .settings import AgentSettings
from .shell import Runner
from .system.analyzer import HostAnalyzer, Report
from .system.osinfo import OsRelease, detect_os
from .system.services import SystemdService, agent_service_name
from .tools.base import Tool, ToolContext, ToolOutcome
from .tools.registry import TOOL_REGISTRY

logger = logging.getLogger("azbuildhost.agent")

DOCS_URL = "https://docs.microsoft.com/azure/devops/pipelines/agents/linux-agent"


def build_config_command(settings: AgentSettings) -> List[str]:
    """Arguments for the agent's unattended ``config.sh``."""
    cmd = [
        "./config.sh",
        "--unattended",
        "--url", settings.azdo_url,
        "--auth", "pat",
        "--token", settings.azdo_pat,
        "--pool", settings.azdo_pool,
        "--agent", settings.azdo_agent_name,
        "--work", settings.agent_work_dir,
    ]
    if settings.accepts_tee_eula:
        cmd.append("--acceptTeeEula")
    if settings.replace_agent:
        cmd.append("--replace")
    if settings.agent_tags.strip():
        cmd.extend(["--addvirtualmachineresourcetags", "--virtualmachineresourcetags", settings.agent_tags.strip()])
    return cmd


def agent_pool_url(settings: AgentSettings) -> str:
    return f"{settings.azdo_url.rstrip('/')}/_settings/agentpools?poolId={settings.azdo_pool}&view=agents"


@dataclass
class InstallResult:
    os_release: Optional[OsRelease] = None
    agent_version: Optional[str] = None
    source_url: Optional[str] = None
    service_name: Optional[str] = None
    tools: List[ToolOutcome] = field(default_factory=list)
    report: Optional[Report] = None


class AgentInstaller:
    def __init__(
        self,
        settings: AgentSettings,
        runner: Runner,
        downloader: Downloader,
        reporter: NullRunLogger | None = None,
        *,
        os_release_path: Path | None = None,
        staging_dir: Path | None = None,
        tool_registry: Dict[str, Type[Tool]] | None = None,
    ) -> None:
        self.settings = settings
        self.runner = runner
        self.downloader = downloader
        self.reporter = reporter or NullRunLogger()
        self.os_release_path = os_release_path
        self.staging_dir = staging_dir or default_staging_dir()
        self.tool_registry = tool_registry if tool_registry is not None else TOOL_REGISTRY
        self.os_release: Optional[OsRelease] = None
        self.packages: Optional[PackageManager] = None
        self.result = InstallResult()
        runner.add_secret(settings.azdo_pat)

    # -- steps ---------------------------------------------------------
    def validate_config(self) -> None:
        self.reporter.header("Validating Configuration")
        missing = self.settings.missing_required()
        if not missing:
            self.reporter.success("Configuration validated")
            return
        lines: List[str] = []
        for name in missing:
            lines.append(f"{name} is required. Set it via environment variable or .env file.")
            if name == "AZDO_URL":
                lines.append("Example: export AZDO_URL=https://dev.azure.com/yourorg")
            if name == "AZDO_PAT":
                lines.append("Example: export AZDO_PAT=your_personal_access_token")
                if self.settings.azdo_url:
                    lines.append(f"Create PAT at: {self.settings.azdo_url.rstrip('/')}/_usersSettings/tokens")
                lines.append("Required scopes: Agent Pools (read, manage)")
        for name in missing:
            self.reporter.error(f"{name} is required")
        raise ConfigError("\n".join(lines))

    def detect_os(self) -> OsRelease:
        os_release = detect_os(self.os_release_path)
        self.reporter.info(f"Detected OS: {os_release.pretty_name or os_release.id}")
        # unknown IDs fail here, before any package command
        family = os_release.family
        logger.info("os id=%s version=%s family=%s", os_release.id, os_release.version_id, family)
        self.os_release = os_release
        self.packages = package_manager_for(os_release, self.runner)
        self.result.os_release = os_release
        return os_release

    def _require_os(self) -> OsRelease:
        if self.os_release is None:
            return self.detect_os()
        return self.os_release

    def install_dependencies(self) -> None:
        os_release = self._require_os()
        self.reporter.header("Installing Dependencies")
        self.reporter.info(f"Installing dependencies for {os_release.family} family...")
        if os_release.is_debian_family:
            self.packages.update()
        self.packages.install(BASE_DEPENDENCIES[os_release.family])
        self.reporter.success("Dependencies installed")

    def create_agent_user(self) -> None:
        s = self.settings
        self.reporter.header("Creating Agent User")
        if self.runner.succeeds(["id", s.agent_user]):
            self.reporter.warning(f"User '{s.agent_user}' already exists")
        else:
            self.reporter.info(f"Creating user '{s.agent_user}'...")
            self.runner.run(["useradd", "-m", "-d", s.agent_home, "-s", "/bin/bash", s.agent_user], privileged=True)
            self.reporter.success(f"User '{s.agent_user}' created")
        self.runner.run(["mkdir", "-p", s.agent_dir], privileged=True)
        self.runner.run(["chown", "-R", f"{s.agent_user}:{s.agent_user}", s.agent_home], privileged=True)

    def resolve_agent_version(self) -> str:
        requested = self.settings.agent_version.strip()
        if requested and requested != "latest":
            return requested.lstrip("v")
        self.reporter.info("Fetching latest agent version...")
        version = self.downloader.lookup_version(AGENT_RELEASES_API)
        if not version:
            self.reporter.warning("Could not fetch latest version from GitHub, using fallback version")
            version = self.settings.agent_fallback_version
        return version

    def _manual_package(self, package: str) -> Optional[Path]:
        candidate = Path(self.settings.agent_dir) / package
        try:
            return candidate if candidate.is_file() else None
        except OSError:
            return None

    def download_agent(self) -> Path:
        self.reporter.header("Downloading Azure DevOps Agent")
        version = self.resolve_agent_version()
        self.reporter.info(f"Agent version: {version}")
        self.result.agent_version = version
        package = agent_package_name(version)

        manual = self._manual_package(package)
        if manual is not None:
            self.reporter.info(f"Using existing package {manual}")
            self.result.source_url = str(manual)
            return manual

        dest = self.staging_dir / package
        hint = (
            f"Please download manually from:\n  {AGENT_RELEASES_PAGE}\n"
            f"Place the file in: {self.settings.agent_dir}"
        )
        try:
            url = self.downloader.first_available(
                agent_download_urls(version),
                dest,
                hint=hint,
                on_attempt=lambda u: self.reporter.info(f"Attempting download from: {u}"),
                on_failure=lambda u: self.reporter.warning("Download failed, trying next source..."),
            )
        except DownloadError:
            self.reporter.error("Failed to download agent from all sources")
            self.reporter.info("Please download manually from:")
            self.reporter.info(f"  {AGENT_RELEASES_PAGE}")
            self.reporter.info(f"Place the file in: {self.settings.agent_dir}")
            raise
        self.reporter.success("Successfully downloaded agent")
        self.result.source_url = url
        return dest

    def extract_agent(self, package: Path) -> None:
        s = self.settings
        self.reporter.info("Extracting agent...")
        staged = package.parent != Path(s.agent_dir)
        if staged and package.exists():
            # tar runs as the agent user
            os.chmod(package, 0o644)
        try:
            self.runner.run(["tar", "-xzf", str(package), "-C", s.agent_dir], as_user=s.agent_user)
        except CommandError as exc:
            self.reporter.error("Failed to extract agent package")
            raise ExtractionError(f"Failed to extract agent package {package.name}: {exc}") from exc
        finally:
            if staged:
                package.unlink(missing_ok=True)
        if not staged:
            self.runner.run(["rm", "-f", str(package)], as_user=s.agent_user)
        self.reporter.success("Agent extracted successfully")

    def configure_agent(self) -> None:
        s = self.settings
        self.reporter.header("Configuring Azure DevOps Agent")
        self.reporter.info(f"Configuring agent '{s.azdo_agent_name}' in pool '{s.azdo_pool}'...")
        self.runner.run(build_config_command(s), as_user=s.agent_user, cwd=s.agent_dir)
        self.reporter.success("Agent configured successfully")

    def install_agent_service(self) -> Optional[str]:
        s = self.settings
        if not s.run_as_service:
            self.reporter.warning("Service installation skipped (RUN_AS_SERVICE=false)")
            self.reporter.info(f"To start agent manually, run: sudo -u {s.agent_user} {s.agent_dir}/run.sh")
            return None
        self.reporter.header("Installing Agent as Service")
        svc = f"{s.agent_dir}/svc.sh"
        self.reporter.info("Installing systemd service...")
        self.runner.run([svc, "install", s.agent_user], privileged=True, cwd=s.agent_dir)
        self.reporter.info("Starting agent service...")
        self.runner.run([svc, "start"], privileged=True, cwd=s.agent_dir)
        name = agent_service_name(s.agent_dir)
        self.reporter.info("Enabling agent service on boot...")
        if not SystemdService(name, self.runner).enable(check=False):
            self.reporter.warning(f"Could not enable {name}; svc.sh may have done so already")
        self.reporter.success("Agent service installed and started")
        self.result.service_name = name
        return name

    def tool_context(self) -> ToolContext:
        os_release = self._require_os()
        return ToolContext(
            runner=self.runner,
            downloader=self.downloader,
            os_release=os_release,
            packages=self.packages,
            settings=self.settings,
            staging_dir=self.staging_dir,
            reporter=self.reporter,
        )

    def install_tools(self, names: Iterable[str] | None = None) -> List[ToolOutcome]:
        selected = list(names) if names is not None else self.settings.enabled_tools
        unknown = [n for n in selected if n not in self.tool_registry]
        if unknown:
            raise ConfigError(f"Unknown tool(s): {', '.join(unknown)}. Known: {', '.join(self.tool_registry)}")
        ctx = self.tool_context()
        outcomes: List[ToolOutcome] = []
        for name in self.tool_registry:
            if name not in selected:
                continue
            tool = self.tool_registry[name](ctx)
            self.reporter.header(f"Installing {tool.label}")
            try:
                tool.install()
            except (ProvisionError, httpx.HTTPError, OSError) as exc:
                logger.warning("tool %s failed: %s", name, exc)
                self.reporter.warning(f"{tool.label} installation failed: {self.runner.mask(str(exc))}")
                outcomes.append(ToolOutcome(name, "failed", str(exc)))
                continue
            version = "" if self.runner.dry_run else tool.version()
            self.reporter.success(f"{tool.label} {version}".strip() + " installed")
            outcomes.append(ToolOutcome(name, "installed", version))
        self.result.tools = outcomes
        return outcomes

    def verify_installation(self) -> Report:
        s = self.settings
        self.reporter.header("Verifying Installation")
        commands = {
            name: cls.version_command
            for name, cls in self.tool_registry.items()
            if name in s.enabled_tools
        }
        service = self.result.service_name or (agent_service_name(s.agent_dir) if s.run_as_service else None)
        rep = HostAnalyzer(self.runner).analyze(agent_dir=s.agent_dir, tools=commands, service=service)
        if rep["agent"] is not None:
            self.reporter.info("Agent configuration:")
            self.reporter.output(json.dumps(rep["agent"], indent=2), title=".agent")
        if rep["tools"]:
            self.reporter.info("Installed tools:")
            for name, version in rep["tools"].items():
                self.reporter.info(f"  {name}: {version}")
        if rep["service"]:
            self.reporter.info("Agent service status:")
            self.reporter.output(rep["service"]["status"], title=rep["service"]["name"])
        self.result.report = rep
        return rep

    def display_post_install_info(self) -> None:
        s = self.settings
        self.reporter.header("Installation Complete!")
        self.reporter.success("Azure DevOps self-hosted agent has been successfully installed!")
        self.reporter.summary("Agent Information", [
            ("Organization", s.azdo_url),
            ("Agent Pool", s.azdo_pool),
            ("Agent Name", s.azdo_agent_name),
            ("Agent User", s.agent_user),
            ("Agent Dir", s.agent_dir),
        ])
        if s.run_as_service:
            service = SystemdService(self.result.service_name or agent_service_name(s.agent_dir), self.runner)
            self.reporter.bullets("Service Management:", [
                f"{cmd}  - {desc}" for cmd, desc in service.management_commands()
            ])
            unit_file = f"/etc/systemd/system/{service.name}.service"
        else:
            self.reporter.bullets("Service Management:", [
                f"sudo -u {s.agent_user} {s.agent_dir}/run.sh  - Run agent interactively",
            ])
            unit_file = None
        self.reporter.bullets("Agent Management:", ["View agent in Azure DevOps:", agent_pool_url(s)])
        labels = {name: cls.description for name, cls in self.tool_registry.items()}
        labels["dotnet"] = f".NET SDK {s.dotnet_version}"
        labels["nodejs"] = f"Node.js {s.nodejs_version}"
        failed = {o.name for o in self.result.tools if o.status == "failed"}
        self.reporter.bullets("Installed Tools:", [
            f"{'⚠' if name in failed else '✓'} {labels.get(name, name)}" for name in s.enabled_tools
        ])
        files = [
            f"{s.agent_dir}/.agent  - Agent configuration",
            f"{s.agent_dir}/.credentials  - Agent credentials",
        ]
        if unit_file:
            files.append(f"{unit_file}  - Service file")
        self.reporter.bullets("Configuration Files:", files)
        self.reporter.bullets("Next Steps:", [
            "1. Verify agent is online in Azure DevOps",
            "2. Configure agent capabilities if needed",
            f"3. Create a pipeline and assign it to the '{s.azdo_pool}' pool",
        ])
        self.reporter.bullets("Documentation:", [DOCS_URL])

    # -- orchestration -------------------------------------------------
    def run(self, *, skip_tools: bool = False) -> InstallResult:
        self.reporter.header("Azure DevOps Self-Hosted Agent Setup")
        self.validate_config()
        self.detect_os()
        self.install_dependencies()
        self.create_agent_user()
        package = self.download_agent()
        self.extract_agent(package)
        self.configure_agent()
        self.install_agent_service()
        if not skip_tools:
            self.install_tools()
        self.verify_installation()
        self.display_post_install_info()
        self.reporter.success("Setup complete!")
        return self.result


__all__ = [
    "AgentInstaller",
    "InstallResult",
    "agent_pool_url",
    "build_config_command",
]
