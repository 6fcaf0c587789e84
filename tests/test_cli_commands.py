import json

import httpx
import pytest
from click.testing import CliRunner

from azbuildhost import __main__ as cli
from azbuildhost.__main__ import cli_main
from azbuildhost.download import AGENT_RELEASES_PAGE

from fakes import FakeRunner, mock_downloader, write_os_release


@pytest.fixture
def runners(tmp_path, monkeypatch):
    """Patch the CLI to use FakeRunner and an offline Downloader."""
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("AZBH_LOG_CONSOLE", "false")
    monkeypatch.setenv("AZBH_STAGING_DIR", str(tmp_path / "stage"))
    monkeypatch.setenv("AGENT_HOME", str(tmp_path / "home"))
    monkeypatch.setenv("AGENT_VERSION", "3.243.1")
    for name in ("AZDO_URL", "AZDO_PAT", "AKS_RESOURCE_GROUP", "AKS_CLUSTER_NAME"):
        monkeypatch.delenv(name, raising=False)

    created = []
    replies = {("wget",): (4, "")}

    def make_runner(**kwargs):
        runner = FakeRunner(dict(replies), **kwargs)
        created.append(runner)
        return runner

    monkeypatch.setattr(cli, "Runner", make_runner)
    monkeypatch.setattr(cli, "Downloader", lambda runner: mock_downloader(runner, lambda r: httpx.Response(404)))
    return created


def test_install_agent_requires_url(runners):
    result = CliRunner().invoke(cli_main, ["install-agent"])
    assert result.exit_code == 1
    assert "AZDO_URL is required" in result.output
    assert "export AZDO_URL=" in result.output
    assert runners[0].history == []


def test_install_agent_unknown_os(runners, tmp_path, monkeypatch):
    monkeypatch.setenv("AZDO_URL", "https://dev.azure.com/contoso")
    monkeypatch.setenv("AZDO_PAT", "pat-s3cret")
    os_release = write_os_release(tmp_path / "os-release", "arch", "rolling", "")
    result = CliRunner().invoke(cli_main, ["--os-release", str(os_release), "install-agent"])
    assert result.exit_code == 1
    assert "Unsupported OS: arch" in result.output
    assert not any(c[0] in ("apt-get", "yum") for c in runners[0].commands())


def test_install_agent_all_mirrors_fail(runners, tmp_path, monkeypatch):
    monkeypatch.setenv("AZDO_URL", "https://dev.azure.com/contoso")
    monkeypatch.setenv("AZDO_PAT", "pat-s3cret")
    os_release = write_os_release(tmp_path / "os-release", "ubuntu")
    result = CliRunner().invoke(cli_main, ["--os-release", str(os_release), "install-agent"])
    assert result.exit_code == 1
    assert "Failed to download from all sources" in result.output
    assert AGENT_RELEASES_PAGE in result.output
    assert "pat-s3cret" not in result.output
    runner = runners[0]
    assert runner.ran("apt-get", "install")
    assert not runner.ran("tar")
    assert len([c for c in runner.commands() if c[0] == "wget"]) == 3


def test_install_tools_rejects_unknown_name(runners):
    result = CliRunner().invoke(cli_main, ["install-tools", "cobol"])
    assert result.exit_code == 2


def test_show_config_masks_pat(runners, monkeypatch):
    monkeypatch.setenv("AZDO_PAT", "supersecret")
    result = CliRunner().invoke(cli_main, ["show-config", "--section", "agent"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert data["azdo_pat"] == "***"
    assert "supersecret" not in result.output
    assert data["agent_version"] == "3.243.1"


def test_show_config_all_sections(runners):
    result = CliRunner().invoke(cli_main, ["--dry-run", "show-config"])
    assert result.exit_code == 0, result.output
    data = json.loads(result.output)
    assert set(data) == {"agent", "docker", "aks", "runtime"}
    assert data["runtime"]["dry_run"] is True
    assert data["docker"]["log_max_size"] == "10m"
    assert data["aks"]["ingress_controller_name"] == "nginx-internal"


def test_save_config_keeps_other_settings(runners, tmp_path, monkeypatch):
    monkeypatch.setenv("CUSTOM_SETTING", "1")
    monkeypatch.setenv("AZBH_LOG_LEVEL", "INFO")
    (tmp_path / ".env").write_text("CUSTOM_SETTING=1\nAZBH_LOG_LEVEL=INFO\n")
    result = CliRunner().invoke(cli_main, ["--log-level", "debug", "save-config"])
    assert result.exit_code == 0, result.output
    text = (tmp_path / ".env").read_text()
    assert "CUSTOM_SETTING=1" in text
    assert "AZBH_LOG_LEVEL=DEBUG" in text
    assert text.count("AZBH_LOG_LEVEL=") == 1


def test_verify_json_report(runners, tmp_path):
    agent_dir = tmp_path / "home" / "azagent"
    agent_dir.mkdir(parents=True)
    (agent_dir / ".agent").write_text(json.dumps({"agentName": "build01", "poolId": 1}), encoding="utf-8")
    result = CliRunner().invoke(cli_main, ["verify", "--report", "json"])
    assert result.exit_code == 0, result.output
    rep = json.loads(result.output)
    assert rep["agent"]["poolId"] == 1
    assert rep["service"]["name"] == "azdevops-agent"
    assert set(rep["tools"]) == {"docker", "dotnet", "nodejs", "azure_cli", "kubectl"}


def test_configure_aks_requires_cluster(runners):
    result = CliRunner().invoke(cli_main, ["configure-aks"])
    assert result.exit_code == 1
    assert "AKS_RESOURCE_GROUP is required" in result.output


def test_configure_aks_dry_run(runners, monkeypatch):
    monkeypatch.setenv("AKS_RESOURCE_GROUP", "rg-build")
    monkeypatch.setenv("AKS_CLUSTER_NAME", "aks-private")
    monkeypatch.setenv("AKS_DNS_FORWARDERS", "corp.local=10.0.0.4")
    result = CliRunner().invoke(cli_main, ["--dry-run", "configure-aks"])
    assert result.exit_code == 0, result.output
    runner = runners[0]
    assert runner.executed == []
    assert ["az", "aks", "approuting", "enable", "-g", "rg-build", "-n", "aks-private"] in runner.commands()
    invokes = [c for c in runner.commands() if c[:4] == ["az", "aks", "command", "invoke"]]
    assert [c[c.index("--command") + 1] for c in invokes] == [
        "kubectl apply -f nginx-internal.json",
        "kubectl apply -f coredns-custom.json",
        "kubectl -n kube-system rollout restart deployment coredns",
    ]
