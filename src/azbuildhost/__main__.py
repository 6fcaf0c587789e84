from __future__ import annotations

import json
import logging
import pathlib
from contextlib import contextmanager
from typing import Iterator, Type, TypeVar

import click
import httpx
from pydantic import ValidationError
from pydantic_settings import BaseSettings
from rich.console import Console

from .agent import AgentInstaller
from .aks import AksConfigurator
from .config import Config, save_to_env
from .docker_host import DockerHostInstaller
from .download import Downloader
from .errors import ProvisionError
from .logutil import init_logging, log_event
from .run_logger import RunLogger
from .settings import TOOL_NAMES, AgentSettings, AksSettings, DockerSettings
from .shell import Runner
from .system.analyzer import HostAnalyzer
from .system.services import agent_service_name
from .tools.registry import TOOL_REGISTRY

console = Console()

S = TypeVar("S", bound=BaseSettings)


def _load(settings_cls: Type[S]) -> S:
    try:
        return settings_cls()
    except ValidationError as exc:
        raise click.ClickException(f"Invalid configuration:\n{exc}") from exc


@contextmanager
def _fatal(runner: Runner) -> Iterator[None]:
    try:
        yield
    except ProvisionError as exc:
        raise click.ClickException(runner.mask(str(exc))) from exc
    except httpx.HTTPError as exc:
        raise click.ClickException(f"HTTP request failed: {exc}") from exc


def _staging(cfg: Config) -> pathlib.Path | None:
    return pathlib.Path(cfg.staging_dir).expanduser() if cfg.staging_dir else None


@click.group()
@click.version_option()
@click.option("--dry-run", is_flag=True, default=False, help="Log commands instead of running them")
@click.option("--no-sudo", is_flag=True, default=False, help="Never prefix privileged commands with sudo")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Override AZBH_LOG_LEVEL",
)
@click.option("--os-release", type=click.Path(dir_okay=False, path_type=pathlib.Path), hidden=True)
@click.pass_context
def cli_main(
    ctx: click.Context,
    dry_run: bool,
    no_sudo: bool,
    log_level: str | None,
    os_release: pathlib.Path | None,
) -> None:
    """azbuildhost: provision Azure DevOps build hosts and AKS private clusters."""
    cfg = Config.from_env()
    if dry_run:
        cfg.dry_run = True
    if no_sudo:
        cfg.use_sudo = False
    if log_level:
        cfg.log_level = log_level.upper()
    init_logging(cfg)
    log_event(cfg, logging.INFO, f"run {ctx.invoked_subcommand}")
    ctx.ensure_object(dict)
    ctx.obj["cfg"] = cfg
    ctx.obj["os_release"] = os_release
    ctx.obj["runner"] = Runner(use_sudo=cfg.use_sudo, dry_run=cfg.dry_run)


@cli_main.command("install-agent")
@click.option("--skip-tools", is_flag=True, help="Install the agent only")
@click.pass_context
def install_agent_cmd(ctx: click.Context, skip_tools: bool) -> None:
    """Install and register the Azure DevOps self-hosted agent."""
    cfg: Config = ctx.obj["cfg"]
    runner: Runner = ctx.obj["runner"]
    installer = AgentInstaller(
        _load(AgentSettings),
        runner,
        Downloader(runner),
        RunLogger(console),
        os_release_path=ctx.obj["os_release"],
        staging_dir=_staging(cfg),
    )
    with _fatal(runner):
        installer.run(skip_tools=skip_tools)


@cli_main.command("install-docker")
@click.pass_context
def install_docker_cmd(ctx: click.Context) -> None:
    """Install Docker Engine and configure the daemon."""
    cfg: Config = ctx.obj["cfg"]
    runner: Runner = ctx.obj["runner"]
    installer = DockerHostInstaller(
        _load(DockerSettings),
        runner,
        Downloader(runner),
        RunLogger(console),
        os_release_path=ctx.obj["os_release"],
        staging_dir=_staging(cfg),
    )
    with _fatal(runner):
        working = installer.run()
    if not working:
        console.print("[yellow]Docker is installed but the test container did not run.[/]")


@cli_main.command("install-tools")
@click.argument("names", nargs=-1, type=click.Choice(list(TOOL_NAMES)))
@click.pass_context
def install_tools_cmd(ctx: click.Context, names: tuple[str, ...]) -> None:
    """Install build tools (default: those enabled by INSTALL_* settings)."""
    cfg: Config = ctx.obj["cfg"]
    runner: Runner = ctx.obj["runner"]
    reporter = RunLogger(console)
    installer = AgentInstaller(
        _load(AgentSettings),
        runner,
        Downloader(runner),
        reporter,
        os_release_path=ctx.obj["os_release"],
        staging_dir=_staging(cfg),
    )
    with _fatal(runner):
        outcomes = installer.install_tools(list(names) if names else None)
    if not outcomes:
        console.print("[yellow]No tools selected.[/]")
        return
    reporter.summary("Tools", [(o.name, f"{o.status} {o.detail}".strip()) for o in outcomes])


@cli_main.command("configure-aks")
@click.pass_context
def configure_aks_cmd(ctx: click.Context) -> None:
    """Configure app routing, Key Vault TLS and DNS on an AKS private cluster."""
    runner: Runner = ctx.obj["runner"]
    configurator = AksConfigurator(_load(AksSettings), runner, RunLogger(console))
    with _fatal(runner):
        configurator.run()


@cli_main.command("verify")
@click.option("--report", "fmt", type=click.Choice(["md", "json"]), default="md", show_default=True)
@click.pass_context
def verify_cmd(ctx: click.Context, fmt: str) -> None:
    """Report agent configuration, tool versions and service state."""
    runner: Runner = ctx.obj["runner"]
    settings = _load(AgentSettings)
    commands = {
        name: cls.version_command
        for name, cls in TOOL_REGISTRY.items()
        if name in settings.enabled_tools
    }
    service = agent_service_name(settings.agent_dir) if settings.run_as_service else None
    rep = HostAnalyzer(runner).analyze(agent_dir=settings.agent_dir, tools=commands, service=service)
    if fmt == "json":
        click.echo(json.dumps(rep, indent=2, ensure_ascii=False))
    else:
        click.echo(HostAnalyzer.render_markdown(rep))


@cli_main.command("show-config")
@click.option(
    "--section",
    type=click.Choice(["agent", "docker", "aks", "runtime"]),
    help="Print a single section",
)
@click.pass_context
def show_config_cmd(ctx: click.Context, section: str | None) -> None:
    """Print the effective configuration as JSON (secrets masked)."""
    cfg: Config = ctx.obj["cfg"]
    sections = {
        "agent": lambda: _load(AgentSettings).masked_dump(),
        "docker": lambda: _load(DockerSettings).model_dump(),
        "aks": lambda: _load(AksSettings).model_dump(),
        "runtime": cfg.model_dump,
    }
    if section:
        data = sections[section]()
    else:
        data = {name: build() for name, build in sections.items()}
    click.echo(json.dumps(data, indent=2, ensure_ascii=False))


@cli_main.command("save-config")
@click.argument("path", required=False, type=click.Path(dir_okay=False))
@click.pass_context
def save_config_cmd(ctx: click.Context, path: str | None) -> None:
    """Write the runtime options (AZBH_*) to an env file."""
    cfg: Config = ctx.obj["cfg"]
    target = path or ".env"
    try:
        save_to_env(cfg, target)
    except OSError as exc:
        raise click.ClickException(f"Failed to write {target}: {exc}") from exc
    console.print(f"[green]Saved →[/green] {target}")


if __name__ == "__main__":
    cli_main()
