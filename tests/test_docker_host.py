import json

import httpx
import pytest

from azbuildhost.docker_host import (
    APT_SOURCE,
    COMPOSE_BINARY,
    DAEMON_JSON,
    DockerHostInstaller,
    apt_source_line,
    compose_download_url,
    engine_packages,
    render_daemon_json,
)
from azbuildhost.errors import UnsupportedOSError
from azbuildhost.run_logger import NullRunLogger
from azbuildhost.settings import DockerSettings
from azbuildhost.system.osinfo import OsRelease

from fakes import FakeRunner, mock_downloader, write_os_release


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)


def _gpg(request):
    if request.url.path.endswith("/gpg"):
        return httpx.Response(200, text="-----BEGIN PGP PUBLIC KEY BLOCK-----\n")
    return httpx.Response(404)


class _Notes(NullRunLogger):
    def __init__(self):
        self.lines = []

    def bullets(self, title, items):
        self.lines.extend(items)


def _installer(tmp_path, runner, os_id="ubuntu", handler=_gpg, reporter=None, **settings):
    return DockerHostInstaller(
        DockerSettings(**settings),
        runner,
        mock_downloader(runner, handler),
        reporter,
        os_release_path=write_os_release(tmp_path / "os-release", os_id, "22.04", "jammy"),
        staging_dir=tmp_path / "stage",
    )


def test_daemon_json():
    assert json.loads(render_daemon_json(DockerSettings(log_max_size="50m"))) == {
        "log-driver": "json-file",
        "log-opts": {"max-size": "50m", "max-file": "3"},
        "storage-driver": "overlay2",
    }


def test_apt_source_line():
    line = apt_source_line(OsRelease("ubuntu", "22.04", codename="jammy"), "arm64")
    assert line == (
        "deb [arch=arm64 signed-by=/etc/apt/keyrings/docker.gpg] "
        "https://download.docker.com/linux/ubuntu jammy stable\n"
    )


def test_engine_packages():
    assert "docker-buildx-plugin" in engine_packages(DockerSettings())
    assert engine_packages(DockerSettings(install_buildx=False)) == [
        "docker-ce", "docker-ce-cli", "containerd.io", "docker-compose-plugin",
    ]


def test_compose_url():
    assert compose_download_url("v2.29.7", "Linux", "x86_64") == (
        "https://github.com/docker/compose/releases/download/v2.29.7/docker-compose-Linux-x86_64"
    )


def test_ubuntu_install(tmp_path):
    runner = FakeRunner({("dpkg", "--print-architecture"): (0, "arm64\n")})
    assert _installer(tmp_path, runner).run() is True

    cmds = runner.commands()
    assert ["gpg", "--batch", "--yes", "--dearmor", "-o", "/etc/apt/keyrings/docker.gpg"] in cmds
    assert runner.inputs[f"tee {APT_SOURCE}"].startswith("deb [arch=arm64 ")
    assert json.loads(runner.inputs[f"tee {DAEMON_JSON}"])["log-driver"] == "json-file"
    assert ["apt-get", "install", "-y", *engine_packages(DockerSettings())] in cmds
    assert ["usermod", "-aG", "docker", "azureuser"] in cmds
    assert ["systemctl", "enable", "docker"] in cmds
    assert ["docker", "run", "--rm", "hello-world"] in cmds
    assert ["docker", "rmi", "hello-world"] in cmds


def test_rhel_install(tmp_path):
    runner = FakeRunner({("yum", "remove"): (1, "No packages marked for removal")})
    _installer(tmp_path, runner, os_id="centos", configure_logging=False).run()
    cmds = runner.commands()
    assert cmds[0][:3] == ["yum", "remove", "-y"]
    assert ["yum-config-manager", "--add-repo", "https://download.docker.com/linux/centos/docker-ce.repo"] in cmds
    assert not runner.ran("apt-get")
    assert f"tee {DAEMON_JSON}" not in runner.inputs


def test_missing_user_skips_group(tmp_path):
    runner = FakeRunner({("id",): (1, "id: 'azureuser': no such user")})
    _installer(tmp_path, runner).add_user_to_docker_group()
    assert not runner.ran("usermod")


def test_group_note_only_for_added_user(tmp_path):
    notes = _Notes()
    inst = _installer(tmp_path, FakeRunner({("id",): (1, "no such user")}), reporter=notes)
    inst.add_user_to_docker_group()
    inst.display_post_install_info()
    assert not any("has been added to the docker group" in line for line in notes.lines)
    assert any("usermod -aG docker azureuser" in line for line in notes.lines)

    notes = _Notes()
    inst = _installer(tmp_path, FakeRunner(), reporter=notes)
    inst.add_user_to_docker_group()
    inst.display_post_install_info()
    assert "1. User 'azureuser' has been added to the docker group" in notes.lines


def test_unknown_os_stops_before_any_command(tmp_path):
    runner = FakeRunner()
    with pytest.raises(UnsupportedOSError):
        _installer(tmp_path, runner, os_id="arch").run()
    assert runner.history == []


def test_failed_hello_world_is_not_fatal(tmp_path):
    runner = FakeRunner({("docker", "run"): (125, "Cannot connect to the Docker daemon")})
    assert _installer(tmp_path, runner).run() is False
    assert runner.ran("docker", "rmi")


def test_compose_failure_is_not_fatal(tmp_path):
    runner = FakeRunner()
    inst = _installer(tmp_path, runner, handler=lambda request: httpx.Response(500), install_compose=True)
    inst.install_compose_standalone()
    assert not any(COMPOSE_BINARY in c for c in runner.commands())


def test_compose_pinned_version(tmp_path):
    def handler(request):
        assert "/v2.29.7/" in request.url.path
        return httpx.Response(200, content=b"\x7fELF")

    runner = FakeRunner()
    inst = _installer(tmp_path, runner, handler=handler, install_compose=True, compose_version="2.29.7")
    inst.install_compose_standalone()
    assert runner.commands()[0] == ["install", "-m", "0755", str(tmp_path / "stage" / "docker-compose"), COMPOSE_BINARY]
    assert not (tmp_path / "stage" / "docker-compose").exists()
