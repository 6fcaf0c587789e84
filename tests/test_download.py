import httpx
import pytest

from azbuildhost.download import AGENT_RELEASES_PAGE, agent_download_urls
from azbuildhost.errors import DownloadError

from fakes import FakeRunner, mock_downloader

URLS = agent_download_urls("3.243.1")


def _only(url_ok: str, body: bytes = b"agent-bytes"):
    def handler(request: httpx.Request) -> httpx.Response:
        if str(request.url) == url_ok:
            return httpx.Response(200, content=body)
        return httpx.Response(404)

    return handler


def test_mirror_urls_in_order():
    assert URLS[0].startswith("https://download.agent.dev.azure.com/agent/3.243.1/")
    assert "/releases/download/v3.243.1/" in URLS[1]
    assert URLS[2].startswith("https://vstsagentpackage.azureedge.net/")
    assert all(u.endswith("vsts-agent-linux-x64-3.243.1.tar.gz") for u in URLS)


def test_third_mirror_wins(tmp_path):
    runner = FakeRunner({("wget",): (8, "server error")})
    dl = mock_downloader(runner, _only(URLS[2]))
    dest = tmp_path / "agent.tar.gz"

    tried = []
    url = dl.first_available(URLS, dest, on_attempt=tried.append)

    assert url == URLS[2]
    assert tried == URLS
    assert dest.read_bytes() == b"agent-bytes"
    assert [(a.method, a.ok) for a in dl.attempts] == [
        ("http", False), ("wget", False),
        ("http", False), ("wget", False),
        ("http", True),
    ]
    assert len([c for c in runner.commands() if c[0] == "wget"]) == 2


def test_all_mirrors_fail(tmp_path):
    runner = FakeRunner({("wget",): (4, "")})
    dl = mock_downloader(runner, lambda request: httpx.Response(503))
    dest = tmp_path / "agent.tar.gz"
    failures = []

    with pytest.raises(DownloadError) as err:
        dl.first_available(URLS, dest, hint=f"Download manually from {AGENT_RELEASES_PAGE}",
                           on_failure=failures.append)

    assert err.value.urls == URLS
    assert failures == URLS
    message = str(err.value)
    assert AGENT_RELEASES_PAGE in message
    for url in URLS:
        assert url in message
    assert not dest.exists()


def test_empty_body_is_a_failure(tmp_path):
    def handler(request):
        if str(request.url) == URLS[0]:
            return httpx.Response(200, content=b"")
        return httpx.Response(200, content=b"data")

    runner = FakeRunner()  # wget "succeeds" but leaves no file
    dl = mock_downloader(runner, handler)
    dest = tmp_path / "agent.tar.gz"

    assert dl.first_available(URLS, dest) == URLS[1]
    assert dest.read_bytes() == b"data"


def test_wget_used_when_client_fails(tmp_path):
    dest = tmp_path / "agent.tar.gz"

    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    def wget(args):
        dest.write_bytes(b"from-wget")
        return 0, ""

    runner = FakeRunner({("wget",): wget})
    dl = mock_downloader(runner, handler)

    assert dl.first_available(URLS, dest) == URLS[0]
    assert dl.attempts[-1].method == "wget"
    assert runner.commands()[0] == ["wget", "-q", "-O", str(dest), URLS[0]]


def test_dry_run_does_not_download(tmp_path):
    def handler(request):
        raise AssertionError("no request expected")

    runner = FakeRunner(dry_run=True)
    dl = mock_downloader(runner, handler)

    assert dl.first_available(URLS, tmp_path / "x") == URLS[0]
    assert not (tmp_path / "x").exists()


def test_single_source_download_error(tmp_path):
    runner = FakeRunner({("wget",): (1, "")})
    dl = mock_downloader(runner, lambda request: httpx.Response(404))
    with pytest.raises(DownloadError) as err:
        dl.download("https://example.invalid/file", tmp_path / "file")
    assert err.value.urls == ["https://example.invalid/file"]


def test_unwritable_destination_falls_through(tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory")
    runner = FakeRunner({("wget",): (1, "")})
    dl = mock_downloader(runner, lambda request: httpx.Response(200, content=b"agent-bytes"))

    with pytest.raises(DownloadError):
        dl.first_available(URLS, blocker / "agent.tar.gz")

    assert [(a.method, a.ok) for a in dl.attempts if a.method == "http"] == [("http", False)] * len(URLS)


@pytest.mark.parametrize(
    "response, expected",
    [
        (httpx.Response(200, json={"tag_name": "v3.250.1"}), "3.250.1"),
        (httpx.Response(200, json={"tag_name": None}), None),
        (httpx.Response(200, json={"tag_name": "null"}), None),
        (httpx.Response(200, json={}), None),
        (httpx.Response(500), None),
        (httpx.Response(200, content=b"<html>rate limited</html>"), None),
    ],
)
def test_lookup_version(response, expected):
    dl = mock_downloader(FakeRunner(), lambda request: response)
    assert dl.lookup_version("https://api.example/releases/latest") == expected


def test_lookup_version_keeps_prefix():
    dl = mock_downloader(FakeRunner(), lambda request: httpx.Response(200, json={"tag_name": "v2.29.7"}))
    assert dl.lookup_version("https://api.example/releases/latest", strip_v=False) == "v2.29.7"
